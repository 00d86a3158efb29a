from __future__ import annotations

from chatcore.core.rate_limit import friend_request_limiter
from chatcore.core.security import create_access_token


def _signup(client, user_id: str) -> str:
    token = create_access_token(subject=user_id, email=f"{user_id}@example.com")
    response = client.put("/v1/users/me", json={"display_name": user_id}, headers=_auth_headers(token))
    assert response.status_code == 200
    return token


def _auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _send_request(client, token: str, email: str):
    return client.post("/v1/friends/requests", json={"email": email}, headers=_auth_headers(token))


def test_request_accept_makes_both_sides_friends(client):
    alice = _signup(client, "alice")
    bob = _signup(client, "bob")

    created = _send_request(client, alice, "bob@example.com")
    assert created.status_code == 201
    request = created.json()["data"]
    assert request["requester_id"] == "alice"
    assert request["recipient_id"] == "bob"
    assert request["status"] == "pending"

    pending = client.get("/v1/friends/requests", headers=_auth_headers(bob)).json()["data"]["requests"]
    assert [entry["friendship_id"] for entry in pending] == [request["id"]]
    assert pending[0]["friend"]["id"] == "alice"

    # Outgoing requests are not listed for the requester.
    assert client.get("/v1/friends/requests", headers=_auth_headers(alice)).json()["data"]["requests"] == []
    assert client.get("/v1/friends", headers=_auth_headers(alice)).json()["data"]["friends"] == []

    accepted = client.post(f"/v1/friends/requests/{request['id']}/accept", headers=_auth_headers(bob))
    assert accepted.status_code == 200
    assert accepted.json()["data"]["status"] == "accepted"

    alice_friends = client.get("/v1/friends", headers=_auth_headers(alice)).json()["data"]["friends"]
    bob_friends = client.get("/v1/friends", headers=_auth_headers(bob)).json()["data"]["friends"]
    assert [entry["friend"]["id"] for entry in alice_friends] == ["bob"]
    assert [entry["friend"]["id"] for entry in bob_friends] == ["alice"]
    assert client.get("/v1/friends/requests", headers=_auth_headers(bob)).json()["data"]["requests"] == []


def test_accept_is_idempotent(client):
    alice = _signup(client, "alice")
    bob = _signup(client, "bob")
    request_id = _send_request(client, alice, "bob@example.com").json()["data"]["id"]

    first = client.post(f"/v1/friends/requests/{request_id}/accept", headers=_auth_headers(bob))
    second = client.post(f"/v1/friends/requests/{request_id}/accept", headers=_auth_headers(bob))
    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["data"]["status"] == "accepted"
    assert len(client.get("/v1/friends", headers=_auth_headers(alice)).json()["data"]["friends"]) == 1

    reverse = _send_request(client, bob, "alice@example.com")
    assert reverse.status_code == 409
    assert reverse.json()["error"]["code"] == "duplicate_request"


def test_only_recipient_can_accept(client):
    alice = _signup(client, "alice")
    _signup(client, "bob")
    request_id = _send_request(client, alice, "bob@example.com").json()["data"]["id"]

    response = client.post(f"/v1/friends/requests/{request_id}/accept", headers=_auth_headers(alice))
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"


def test_duplicate_requests_in_either_direction_are_refused(client):
    alice = _signup(client, "alice")
    bob = _signup(client, "bob")
    assert _send_request(client, alice, "bob@example.com").status_code == 201

    again = _send_request(client, alice, "bob@example.com")
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "duplicate_request"

    reverse = _send_request(client, bob, "alice@example.com")
    assert reverse.status_code == 409
    assert reverse.json()["error"]["code"] == "duplicate_request"


def test_request_to_self_or_unknown_email_fails(client):
    alice = _signup(client, "alice")

    to_self = _send_request(client, alice, "ALICE@example.com")
    assert to_self.status_code == 400
    assert to_self.json()["error"]["code"] == "self_reference"

    unknown = _send_request(client, alice, "nobody@example.com")
    assert unknown.status_code == 404
    assert unknown.json()["error"]["code"] == "not_found"


def test_reject_removes_request_and_allows_a_new_one(client):
    alice = _signup(client, "alice")
    bob = _signup(client, "bob")
    request_id = _send_request(client, alice, "bob@example.com").json()["data"]["id"]

    rejected = client.post(f"/v1/friends/requests/{request_id}/reject", headers=_auth_headers(bob))
    assert rejected.status_code == 200
    assert rejected.json()["data"] == {"ok": True}

    again = client.post(f"/v1/friends/requests/{request_id}/reject", headers=_auth_headers(bob))
    assert again.status_code == 404

    accept_after_reject = client.post(f"/v1/friends/requests/{request_id}/accept", headers=_auth_headers(bob))
    assert accept_after_reject.status_code == 404

    assert _send_request(client, bob, "alice@example.com").status_code == 201


def test_friend_requests_are_rate_limited(client):
    alice = _signup(client, "alice")
    original_limit = friend_request_limiter.max_requests
    friend_request_limiter.max_requests = 1
    try:
        _send_request(client, alice, "nobody@example.com")
        limited = _send_request(client, alice, "nobody@example.com")
        assert limited.status_code == 429
        assert limited.json()["error"]["code"] == "rate_limited"
    finally:
        friend_request_limiter.max_requests = original_limit
