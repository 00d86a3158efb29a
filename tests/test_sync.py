from __future__ import annotations

from chatcore.core.security import create_access_token


def _signup(client, user_id: str) -> str:
    token = create_access_token(subject=user_id, email=f"{user_id}@example.com")
    response = client.put("/v1/users/me", json={"display_name": user_id}, headers=_auth_headers(token))
    assert response.status_code == 200
    return token


def _auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def test_sync_bootstrap_returns_me_and_hydrated_conversations(client):
    alice = _signup(client, "alice")
    bob = _signup(client, "bob")
    request_id = client.post(
        "/v1/friends/requests",
        json={"email": "bob@example.com"},
        headers=_auth_headers(alice),
    ).json()["data"]["id"]
    client.post(f"/v1/friends/requests/{request_id}/accept", headers=_auth_headers(bob))
    conversation_id = client.post(
        "/v1/conversations/direct",
        json={"friend_id": "bob"},
        headers=_auth_headers(alice),
    ).json()["data"]["id"]

    send_response = client.post(
        f"/v1/conversations/{conversation_id}/messages",
        json={"content": "hello"},
        headers=_auth_headers(bob),
    )
    assert send_response.status_code == 201

    bootstrap = client.get("/v1/sync/bootstrap", headers=_auth_headers(alice))
    assert bootstrap.status_code == 200
    payload = bootstrap.json()["data"]

    assert payload["me"]["id"] == "alice"
    assert len(payload["conversations"]) == 1
    conversation = payload["conversations"][0]
    assert conversation["id"] == conversation_id
    assert conversation["unread_count"] == 1
    assert conversation["last_message"]["content"] == "hello"
    participant_ids = {participant["id"] for participant in conversation["participants"]}
    assert participant_ids == set(conversation["participant_ids"]) == {"alice", "bob"}


def test_sync_bootstrap_for_identity_without_profile(client):
    token = create_access_token(subject="fresh-uid", email="fresh@example.com")
    bootstrap = client.get("/v1/sync/bootstrap", headers=_auth_headers(token))
    assert bootstrap.status_code == 200
    assert bootstrap.json()["data"] == {"me": None, "conversations": []}


def test_sync_bootstrap_requires_identity(client):
    response = client.get("/v1/sync/bootstrap")
    assert response.status_code == 401
