from __future__ import annotations

from chatcore.core.security import create_access_token


def _signup(client, user_id: str) -> str:
    token = create_access_token(subject=user_id, email=f"{user_id}@example.com")
    response = client.put("/v1/users/me", json={"display_name": user_id}, headers=_auth_headers(token))
    assert response.status_code == 200
    return token


def _auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _direct_conversation(client, alice: str, bob: str) -> str:
    request_id = client.post(
        "/v1/friends/requests",
        json={"email": "bob@example.com"},
        headers=_auth_headers(alice),
    ).json()["data"]["id"]
    client.post(f"/v1/friends/requests/{request_id}/accept", headers=_auth_headers(bob))
    response = client.post("/v1/conversations/direct", json={"friend_id": "bob"}, headers=_auth_headers(alice))
    assert response.status_code == 201
    return response.json()["data"]["id"]


def test_send_and_list_messages_in_order(client):
    alice = _signup(client, "alice")
    bob = _signup(client, "bob")
    conversation_id = _direct_conversation(client, alice, bob)

    sent = []
    for index, token in enumerate([alice, bob, alice]):
        response = client.post(
            f"/v1/conversations/{conversation_id}/messages",
            json={"content": f"message {index}"},
            headers=_auth_headers(token),
        )
        assert response.status_code == 201
        sent.append(response.json()["data"])

    assert sent[0]["sender_id"] == "alice"
    assert sent[0]["conversation_id"] == conversation_id
    assert sent[0]["is_read"] is True

    listed = client.get(f"/v1/conversations/{conversation_id}/messages", headers=_auth_headers(bob))
    assert listed.status_code == 200
    messages = listed.json()["data"]["messages"]
    assert [message["id"] for message in messages] == [message["id"] for message in sent]
    assert [message["is_read"] for message in messages] == [False, True, False]

    client.post(f"/v1/conversations/{conversation_id}/read", headers=_auth_headers(bob))
    messages = client.get(f"/v1/conversations/{conversation_id}/messages", headers=_auth_headers(bob)).json()["data"]["messages"]
    assert all(message["is_read"] for message in messages)


def test_blank_message_is_refused_without_side_effects(client):
    alice = _signup(client, "alice")
    bob = _signup(client, "bob")
    conversation_id = _direct_conversation(client, alice, bob)

    for content in ["", "   \n\t"]:
        response = client.post(
            f"/v1/conversations/{conversation_id}/messages",
            json={"content": content},
            headers=_auth_headers(alice),
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "empty_content"

    messages = client.get(f"/v1/conversations/{conversation_id}/messages", headers=_auth_headers(alice)).json()["data"]["messages"]
    assert messages == []
    detail = client.get(f"/v1/conversations/{conversation_id}", headers=_auth_headers(alice)).json()["data"]
    assert detail["last_message_at"] is None


def test_oversized_message_fails_validation(client):
    alice = _signup(client, "alice")
    bob = _signup(client, "bob")
    conversation_id = _direct_conversation(client, alice, bob)

    response = client.post(
        f"/v1/conversations/{conversation_id}/messages",
        json={"content": "x" * 2001},
        headers=_auth_headers(alice),
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "validation_error"


def test_sending_updates_conversation_activity(client):
    alice = _signup(client, "alice")
    bob = _signup(client, "bob")
    conversation_id = _direct_conversation(client, alice, bob)

    message = client.post(
        f"/v1/conversations/{conversation_id}/messages",
        json={"content": "hello"},
        headers=_auth_headers(alice),
    ).json()["data"]

    detail = client.get(f"/v1/conversations/{conversation_id}", headers=_auth_headers(bob)).json()["data"]
    assert detail["last_message"]["id"] == message["id"]
    assert detail["last_message_at"] == message["created_at"]


def test_non_participant_cannot_read_or_write(client):
    alice = _signup(client, "alice")
    bob = _signup(client, "bob")
    mallory = _signup(client, "mallory")
    conversation_id = _direct_conversation(client, alice, bob)

    write = client.post(
        f"/v1/conversations/{conversation_id}/messages",
        json={"content": "let me in"},
        headers=_auth_headers(mallory),
    )
    assert write.status_code == 403
    assert write.json()["error"]["code"] == "not_authorized"

    read = client.get(f"/v1/conversations/{conversation_id}/messages", headers=_auth_headers(mallory))
    assert read.status_code == 403

    missing = client.get("/v1/conversations/unknown/messages", headers=_auth_headers(alice))
    assert missing.status_code == 404
