"""REST endpoints around the chat socket."""

from bson import ObjectId


def create_conversation(client, user, other, pet_id=None):
    body = {"otherUserId": other.id}
    if pet_id:
        body["petId"] = pet_id
    response = client.post("/conversations", json=body, headers=user.headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestAuth:

    def test_missing_token(self, client):
        response = client.get("/conversations")

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_garbage_token(self, client):
        response = client.get("/conversations", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_token_for_unknown_user(self, client):
        from petchat.utils.security import create_access_token

        token = create_access_token(str(ObjectId()))
        response = client.get("/conversations", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401


class TestConversations:

    def test_create_is_idempotent(self, client, api_users):
        first = create_conversation(client, api_users.alice, api_users.bob, pet_id="pet-42")
        second = create_conversation(client, api_users.bob, api_users.alice)

        assert first["id"] == second["id"]
        assert first["relatedRef"] == "pet-42"
        assert first["other"]["id"] == api_users.bob.id
        assert second["other"]["name"] == "Alice"
        assert first["unread"] == 0

    def test_self_conversation(self, client, api_users):
        response = client.post("/conversations", json={"otherUserId": api_users.alice.id}, headers=api_users.alice.headers)

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidParticipant"

    def test_unknown_other_user(self, client, api_users):
        response = client.post("/conversations", json={"otherUserId": str(ObjectId())}, headers=api_users.alice.headers)

        assert response.status_code == 404
        assert response.json()["error"] == "UserNotFound"

    def test_list_shows_preview_and_unread(self, client, api_users):
        convo = create_conversation(client, api_users.alice, api_users.bob)
        client.post(f"/conversations/{convo['id']}/messages", json={"text": "hi"}, headers=api_users.alice.headers)

        listed = client.get("/conversations", headers=api_users.bob.headers).json()

        assert len(listed) == 1
        assert listed[0]["id"] == convo["id"]
        assert listed[0]["lastMessagePreview"] == "hi"
        assert listed[0]["unread"] == 1
        assert listed[0]["online"] is False
        assert listed[0]["other"]["id"] == api_users.alice.id


class TestMessages:

    def test_send_and_fetch_history(self, client, api_users):
        convo = create_conversation(client, api_users.alice, api_users.bob)
        for text, user in [("one", api_users.alice), ("two", api_users.bob), ("three", api_users.alice)]:
            response = client.post(f"/conversations/{convo['id']}/messages", json={"text": text}, headers=user.headers)
            assert response.status_code == 201

        history = client.get(f"/conversations/{convo['id']}/messages", headers=api_users.bob.headers).json()

        assert [m["text"] for m in history] == ["one", "two", "three"]
        assert history[0]["senderId"] == api_users.alice.id
        assert set(history[0]) == {"id", "conversationId", "senderId", "text", "createdAt"}

    def test_history_does_not_mark_read(self, client, api_users):
        convo = create_conversation(client, api_users.alice, api_users.bob)
        client.post(f"/conversations/{convo['id']}/messages", json={"text": "hi"}, headers=api_users.alice.headers)

        client.get(f"/conversations/{convo['id']}/messages", headers=api_users.bob.headers)

        snapshot = client.get("/conversations/unread-count", headers=api_users.bob.headers).json()
        assert snapshot == {"aggregateCount": 1, "perConversation": {convo["id"]: 1}}

    def test_outsider_forbidden(self, client, api_users):
        convo = create_conversation(client, api_users.alice, api_users.bob)

        history = client.get(f"/conversations/{convo['id']}/messages", headers=api_users.carol.headers)
        send = client.post(f"/conversations/{convo['id']}/messages", json={"text": "x"}, headers=api_users.carol.headers)

        assert history.status_code == 403
        assert send.status_code == 403
        assert send.json()["error"] == "NotAParticipant"

    def test_blank_message(self, client, api_users):
        convo = create_conversation(client, api_users.alice, api_users.bob)

        response = client.post(f"/conversations/{convo['id']}/messages", json={"text": "   "}, headers=api_users.alice.headers)

        assert response.status_code == 400
        assert response.json()["error"] == "EmptyMessage"

    def test_unknown_conversation(self, client, api_users):
        response = client.get("/conversations/does-not-exist/messages", headers=api_users.alice.headers)

        assert response.status_code == 404
        assert response.json()["error"] == "ConversationNotFound"


class TestUnread:

    def test_mark_read_is_idempotent_and_scoped(self, client, api_users):
        with_alice = create_conversation(client, api_users.bob, api_users.alice)
        with_carol = create_conversation(client, api_users.bob, api_users.carol)
        client.post(f"/conversations/{with_alice['id']}/messages", json={"text": "a"}, headers=api_users.alice.headers)
        client.post(f"/conversations/{with_alice['id']}/messages", json={"text": "b"}, headers=api_users.alice.headers)
        client.post(f"/conversations/{with_carol['id']}/messages", json={"text": "c"}, headers=api_users.carol.headers)

        first = client.post(f"/conversations/{with_alice['id']}/read", headers=api_users.bob.headers).json()
        second = client.post(f"/conversations/{with_alice['id']}/read", headers=api_users.bob.headers).json()

        assert first == {"ok": True, "changed": True}
        assert second == {"ok": True, "changed": False}
        snapshot = client.get("/conversations/unread-count", headers=api_users.bob.headers).json()
        assert snapshot == {"aggregateCount": 1, "perConversation": {with_carol["id"]: 1}}

    def test_sender_has_nothing_unread(self, client, api_users):
        convo = create_conversation(client, api_users.alice, api_users.bob)
        for _ in range(3):
            client.post(f"/conversations/{convo['id']}/messages", json={"text": "hey"}, headers=api_users.alice.headers)

        alice = client.get("/conversations/unread-count", headers=api_users.alice.headers).json()
        bob = client.get("/conversations/unread-count", headers=api_users.bob.headers).json()

        assert alice == {"aggregateCount": 0, "perConversation": {}}
        assert bob["perConversation"] == {convo["id"]: 3}


class TestPresence:

    def test_offline_by_default(self, client, api_users):
        response = client.get(f"/presence/{api_users.bob.id}", headers=api_users.alice.headers)

        assert response.json() == {"user_id": api_users.bob.id, "online": False}


def test_root(client):
    assert client.get("/").json() == {"status": "ok", "service": "petchat"}
