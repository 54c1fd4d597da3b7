from unittest.mock import AsyncMock

import pytest
import socketio

from relay.domain.chat.sockets import ChatNamespace

A = {"X-User-Id": "user-a"}
B = {"X-User-Id": "user-b"}
C = {"X-User-Id": "user-c"}


@pytest.mark.asyncio
async def test_chat_full_flow(api_client):
    create = await api_client.post("/chat/conversations", json={"participantIds": ["user-b"]}, headers=A)
    assert create.status_code == 201
    conversation = create.json()
    assert conversation["isGroup"] is False
    assert set(conversation["participantIds"]) == {"user-a", "user-b"}

    again = await api_client.post("/chat/conversations", json={"participantIds": ["user-a"]}, headers=B)
    assert again.json()["id"] == conversation["id"]

    sent = await api_client.post(
        "/chat/messages",
        json={"conversationId": conversation["id"], "content": "hello"},
        headers=A,
    )
    assert sent.status_code == 201
    message = sent.json()
    assert message["readBy"] == ["user-a"]

    listing = await api_client.get("/chat/conversations", headers=B)
    assert listing.status_code == 200
    [summary] = listing.json()
    assert summary["unreadCount"] == 1
    assert summary["lastMessage"]["content"] == "hello"

    read = await api_client.post(f"/chat/messages/{message['id']}/read", headers=B)
    assert read.status_code == 200
    assert read.json() == {"success": True}

    messages = await api_client.get(f"/chat/conversations/{conversation['id']}/messages", headers=B)
    [fetched] = messages.json()
    assert fetched["readBy"] == ["user-a", "user-b"]
    assert fetched["isRead"] is True

    listing = await api_client.get("/chat/conversations", headers=B)
    assert listing.json()[0]["unreadCount"] == 0


@pytest.mark.asyncio
async def test_outsider_gets_forbidden(api_client):
    create = await api_client.post("/chat/conversations", json={"participantIds": ["user-b"]}, headers=A)
    conversation_id = create.json()["id"]

    detail = await api_client.get(f"/chat/conversations/{conversation_id}", headers=C)
    messages = await api_client.get(f"/chat/conversations/{conversation_id}/messages", headers=C)
    send = await api_client.post(
        "/chat/messages",
        json={"conversationId": conversation_id, "content": "hi"},
        headers=C,
    )

    for response in (detail, messages, send):
        assert response.status_code == 403
        assert response.json()["detail"] == "forbidden"


@pytest.mark.asyncio
async def test_error_mapping(api_client):
    missing = await api_client.get("/chat/conversations/nope", headers=A)
    assert missing.status_code == 404
    assert missing.json() == {"detail": "not_found", "message": "conversation_not_found"}

    unknown_user = await api_client.post("/chat/conversations", json={"participantIds": ["ghost"]}, headers=A)
    assert unknown_user.status_code == 404

    malformed = await api_client.post("/chat/messages", json={"content": "hi"}, headers=A)
    assert malformed.status_code == 422
    assert malformed.json()["detail"] == "validation_failed"

    anonymous = await api_client.get("/chat/conversations")
    assert anonymous.status_code == 401
    assert anonymous.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_direct_lookup_and_read_all(api_client):
    direct = await api_client.get("/chat/direct/user-b", headers=A)
    assert direct.status_code == 200
    conversation_id = direct.json()["id"]
    assert (await api_client.get("/chat/direct/user-a", headers=B)).json()["id"] == conversation_id
    assert (await api_client.get("/chat/direct/user-a", headers=A)).status_code == 422

    for text in ("one", "two"):
        await api_client.post("/chat/messages", json={"conversationId": conversation_id, "content": text}, headers=A)

    read_all = await api_client.post(f"/chat/conversations/{conversation_id}/read-all", headers=B)
    assert read_all.status_code == 200
    listing = await api_client.get("/chat/conversations", headers=B)
    assert listing.json()[0]["unreadCount"] == 0


@pytest.mark.asyncio
async def test_delete_only_by_sender(api_client):
    direct = await api_client.get("/chat/direct/user-b", headers=A)
    conversation_id = direct.json()["id"]
    sent = await api_client.post("/chat/messages", json={"conversationId": conversation_id, "content": "x"}, headers=A)
    message_id = sent.json()["id"]

    assert (await api_client.delete(f"/chat/messages/{message_id}", headers=B)).status_code == 403
    assert (await api_client.delete(f"/chat/messages/{message_id}", headers=A)).status_code == 200
    messages = await api_client.get(f"/chat/conversations/{conversation_id}/messages", headers=A)
    assert messages.json() == []


@pytest.mark.asyncio
async def test_rest_message_is_fanned_out_to_sockets(api_client, chat_gateway):
    server = socketio.AsyncServer(async_mode="asgi")
    namespace = ChatNamespace(chat_gateway)
    server.register_namespace(namespace)
    namespace.emit = AsyncMock()
    await namespace.trigger_event("connect", "sid-b", {"asgi.scope": {"headers": [(b"x-user-id", b"user-b")]}})

    # The conversation is created after user-b connected; REST attaches the live socket.
    direct = await api_client.get("/chat/direct/user-b", headers=A)
    conversation_id = direct.json()["id"]
    await api_client.post("/chat/messages", json={"conversationId": conversation_id, "content": "ping"}, headers=A)
    await namespace.flush()

    events = {call.args[0]: call.args[1] for call in namespace.emit.await_args_list}
    assert events["newMessage"]["conversationId"] == conversation_id
    assert events["newMessage"]["message"]["content"] == "ping"
