import asyncio
from unittest.mock import AsyncMock

import pytest
import socketio

from relay.domain.chat.gateway import ChatGateway
from relay.domain.chat.sockets import ChatNamespace
from relay.infra.jwt import encode_access
from relay.realtime.connection import ConnectionState
from relay.realtime.rooms import ConversationRoom
from relay.realtime.typing_indicators import TypingTracker
from relay.settings import settings


def _scope_for(user_id: str) -> dict:
    return {"asgi.scope": {"headers": [(b"x-user-id", user_id.encode())]}}


def _scope_with_authorization(token: str) -> dict:
    return {"asgi.scope": {"headers": [(b"authorization", f"Bearer {token}".encode())]}}


def _namespace(gateway: ChatGateway) -> ChatNamespace:
    server = socketio.AsyncServer(async_mode="asgi")
    namespace = ChatNamespace(gateway)
    server.register_namespace(namespace)
    namespace.emit = AsyncMock()
    namespace.disconnect = AsyncMock()
    return namespace


def _frames(namespace: ChatNamespace, sid: str) -> list:
    return [call.args[:2] for call in namespace.emit.await_args_list if call.kwargs.get("to") == sid]


def _events(namespace: ChatNamespace, sid: str) -> list:
    return [event for event, _ in _frames(namespace, sid)]


async def _connected(namespace: ChatNamespace, *users: str) -> None:
    for user_id in users:
        await namespace.trigger_event("connect", f"sid-{user_id}", _scope_for(user_id))
    await namespace.flush()
    namespace.emit.reset_mock()


@pytest.mark.asyncio
async def test_connect_requires_token(chat_gateway):
    namespace = _namespace(chat_gateway)

    with pytest.raises(ConnectionRefusedError):
        await namespace.trigger_event("connect", "sid-1", {"asgi.scope": {"headers": []}})

    assert namespace.get_handle("sid-1") is None
    assert not await chat_gateway.is_user_online("user-a")


@pytest.mark.asyncio
async def test_connect_with_jwt_joins_conversations(chat_gateway):
    conversation = await chat_gateway.service.create_conversation("user-a", ["user-b"])
    namespace = _namespace(chat_gateway)
    token = encode_access("user-a")

    await namespace.trigger_event("connect", "sid-1", _scope_with_authorization(token))
    await namespace.flush()

    assert ("chat:ready", {"userId": "user-a", "conversationIds": [conversation.id]}) in _frames(namespace, "sid-1")
    assert await chat_gateway.is_user_online("user-a")


@pytest.mark.asyncio
async def test_presence_is_broadcast_to_others(chat_gateway):
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-a")

    await namespace.trigger_event("connect", "sid-user-b", _scope_for("user-b"))
    await namespace.flush()

    assert ("userOnline", {"userId": "user-b"}) in _frames(namespace, "sid-user-a")
    assert "userOnline" not in _events(namespace, "sid-user-b")

    namespace.emit.reset_mock()
    await namespace.trigger_event("disconnect", "sid-user-b")
    await namespace.flush()

    assert _frames(namespace, "sid-user-a") == [("userOffline", {"userId": "user-b"})]


@pytest.mark.asyncio
async def test_send_message_reaches_room_and_acks_sender(chat_gateway):
    conversation = await chat_gateway.service.create_conversation("user-a", ["user-b"])
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-a", "user-b")

    await namespace.trigger_event(
        "sendMessage",
        "sid-user-a",
        {"conversationId": conversation.id, "content": "hello"},
    )
    await namespace.flush()

    received = dict(_frames(namespace, "sid-user-b"))
    assert received["newMessage"]["conversationId"] == conversation.id
    assert received["newMessage"]["message"]["content"] == "hello"
    assert received["newMessage"]["message"]["readBy"] == ["user-a"]

    sender_events = _events(namespace, "sid-user-a")
    assert sender_events.count("newMessage") == 1
    assert "messageSent" in sender_events
    stored = await chat_gateway.service.get_messages(conversation.id, "user-b")
    assert [m.content for m in stored] == ["hello"]


@pytest.mark.asyncio
async def test_business_errors_are_scoped_to_caller(chat_gateway):
    conversation = await chat_gateway.service.create_conversation("user-a", ["user-b"])
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-a", "user-c")

    await namespace.trigger_event(
        "sendMessage",
        "sid-user-c",
        {"conversationId": conversation.id, "content": "let me in"},
    )
    await namespace.trigger_event("joinConversation", "sid-user-c", {"conversationId": conversation.id})
    await namespace.trigger_event("sendMessage", "sid-user-c", {"content": "no conversation"})
    await namespace.trigger_event("fly", "sid-user-c", {})
    await namespace.flush()

    errors = [payload for event, payload in _frames(namespace, "sid-user-c") if event == "error"]
    assert [(e["kind"], e["action"]) for e in errors] == [
        ("forbidden", "sendMessage"),
        ("forbidden", "joinConversation"),
        ("validation_failed", "sendMessage"),
        ("validation_failed", "fly"),
    ]
    assert _frames(namespace, "sid-user-a") == []
    namespace.disconnect.assert_not_awaited()
    assert namespace.get_handle("sid-user-c") is not None


@pytest.mark.asyncio
async def test_event_from_unknown_sid_is_rejected(chat_gateway):
    namespace = _namespace(chat_gateway)

    await namespace.trigger_event("sendMessage", "sid-x", {"conversationId": "c", "content": "hi"})

    namespace.emit.assert_awaited_once()
    event, payload = namespace.emit.await_args.args
    assert event == "error"
    assert payload["kind"] == "unauthorized"
    assert namespace.emit.await_args.kwargs["to"] == "sid-x"


@pytest.mark.asyncio
async def test_read_receipts_include_conversation(chat_gateway):
    conversation = await chat_gateway.service.create_conversation("user-a", ["user-b"])
    message = await chat_gateway.service.send_message("user-a", conversation.id, "hello")
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-a", "user-b")

    await namespace.trigger_event("markMessageRead", "sid-user-b", {"messageId": message.id})
    await namespace.trigger_event("markAllRead", "sid-user-b", {"conversationId": conversation.id})
    await namespace.flush()

    assert _frames(namespace, "sid-user-a") == [
        ("messageRead", {"messageId": message.id, "conversationId": conversation.id, "userId": "user-b"}),
        ("allMessagesRead", {"conversationId": conversation.id, "userId": "user-b"}),
    ]
    assert _frames(namespace, "sid-user-b") == []
    assert await chat_gateway.service.get_unread_count(conversation.id, "user-b") == 0


@pytest.mark.asyncio
async def test_typing_broadcasts_transitions_only(chat_gateway):
    conversation = await chat_gateway.service.create_conversation("user-a", ["user-b"])
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-a", "user-b")

    payload = {"conversationId": conversation.id, "isTyping": True}
    await namespace.trigger_event("typing", "sid-user-a", payload)
    await namespace.trigger_event("typing", "sid-user-a", payload)
    await namespace.trigger_event(
        "sendMessage",
        "sid-user-a",
        {"conversationId": conversation.id, "content": "done typing"},
    )
    await namespace.flush()

    frames = _frames(namespace, "sid-user-b")
    assert [event for event, _ in frames] == ["userTyping", "userTyping", "newMessage"]
    assert frames[0][1]["isTyping"] is True
    assert frames[1][1]["isTyping"] is False
    assert "userTyping" not in _events(namespace, "sid-user-a")
    assert not chat_gateway.typing.is_typing(conversation.id, "user-a")


@pytest.mark.asyncio
async def test_typing_expires_after_idle(chat_service):
    gateway = ChatGateway(chat_service, typing=TypingTracker(0.05), evict_previous=True)
    conversation = await chat_service.create_conversation("user-a", ["user-b"])
    namespace = _namespace(gateway)
    await _connected(namespace, "user-a", "user-b")

    await namespace.trigger_event("typing", "sid-user-a", {"conversationId": conversation.id, "isTyping": True})
    await asyncio.sleep(0.15)
    await namespace.flush()

    assert _frames(namespace, "sid-user-b") == [
        ("userTyping", {"conversationId": conversation.id, "userId": "user-a", "isTyping": True}),
        ("userTyping", {"conversationId": conversation.id, "userId": "user-a", "isTyping": False}),
    ]
    assert _events(namespace, "sid-user-a") == []
    await gateway.shutdown()


@pytest.mark.asyncio
async def test_leave_conversation_stops_room_events(chat_gateway):
    conversation = await chat_gateway.service.create_conversation("user-a", ["user-b"])
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-a", "user-b")

    await namespace.trigger_event("leaveConversation", "sid-user-b", {"conversationId": conversation.id})
    await namespace.trigger_event(
        "sendMessage",
        "sid-user-a",
        {"conversationId": conversation.id, "content": "anyone?"},
    )
    await namespace.flush()

    assert "newMessage" not in _events(namespace, "sid-user-b")
    assert ("userLeftConversation", {"conversationId": conversation.id, "userId": "user-b"}) in _frames(
        namespace, "sid-user-a"
    )

    namespace.emit.reset_mock()
    await namespace.trigger_event("joinConversation", "sid-user-b", {"conversationId": conversation.id})
    await namespace.trigger_event(
        "sendMessage",
        "sid-user-a",
        {"conversationId": conversation.id, "content": "welcome back"},
    )
    await namespace.flush()

    assert _events(namespace, "sid-user-b") == ["newMessage"]


@pytest.mark.asyncio
async def test_get_messages_returns_chronological_page(chat_gateway):
    conversation = await chat_gateway.service.create_conversation("user-a", ["user-b", "user-c"], is_group=True)
    for text in ("one", "two", "three"):
        await chat_gateway.service.send_message("user-a", conversation.id, text)
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-c")

    await namespace.trigger_event("getMessages", "sid-user-c", {"conversationId": conversation.id})
    await namespace.flush()

    [(event, payload)] = _frames(namespace, "sid-user-c")
    assert event == "messages"
    assert payload["conversationId"] == conversation.id
    assert [m["content"] for m in payload["messages"]] == ["one", "two", "three"]
    assert [m["isRead"] for m in payload["messages"]] == [False, False, False]


@pytest.mark.asyncio
async def test_delete_message_is_broadcast(chat_gateway):
    conversation = await chat_gateway.service.create_conversation("user-a", ["user-b"])
    message = await chat_gateway.service.send_message("user-a", conversation.id, "oops")
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-a", "user-b")

    await namespace.trigger_event("deleteMessage", "sid-user-b", {"messageId": message.id})
    await namespace.trigger_event("deleteMessage", "sid-user-a", {"messageId": message.id})
    await namespace.flush()

    assert _frames(namespace, "sid-user-b") == [
        ("error", {"kind": "forbidden", "detail": "not_message_sender", "action": "deleteMessage"}),
        ("messageDeleted", {"messageId": message.id, "conversationId": conversation.id}),
    ]


@pytest.mark.asyncio
async def test_new_connection_evicts_previous_one(chat_gateway):
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-b")
    await namespace.trigger_event("connect", "sid-1", _scope_for("user-a"))
    await namespace.trigger_event("connect", "sid-2", _scope_for("user-a"))
    await namespace.flush()

    namespace.disconnect.assert_awaited_once_with("sid-1")
    current = await chat_gateway.presence.lookup("user-a")
    assert current.sid == "sid-2"

    # The transport reports the evicted socket closing; user-a is still online.
    namespace.emit.reset_mock()
    await namespace.trigger_event("disconnect", "sid-1")
    await namespace.flush()
    assert "userOffline" not in _events(namespace, "sid-user-b")
    assert await chat_gateway.is_user_online("user-a")

    await namespace.trigger_event("disconnect", "sid-2")
    await namespace.flush()
    assert ("userOffline", {"userId": "user-a"}) in _frames(namespace, "sid-user-b")
    assert not await chat_gateway.is_user_online("user-a")


@pytest.mark.asyncio
async def test_send_rate_limit_emits_scoped_error(chat_gateway, monkeypatch):
    monkeypatch.setattr(settings, "chat_send_rate_per_minute", 1)
    conversation = await chat_gateway.service.create_conversation("user-a", ["user-b"])
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-a")

    payload = {"conversationId": conversation.id, "content": "hi"}
    await namespace.trigger_event("sendMessage", "sid-user-a", payload)
    await namespace.trigger_event("sendMessage", "sid-user-a", payload)
    await namespace.flush()

    errors = [p for event, p in _frames(namespace, "sid-user-a") if event == "error"]
    assert errors == [{"kind": "rate_limited", "detail": "rate_limited", "action": "sendMessage"}]
    assert len(await chat_gateway.service.get_messages(conversation.id, "user-a")) == 1


@pytest.mark.asyncio
async def test_disconnect_while_joining_stays_disconnected(chat_gateway, monkeypatch):
    conversation = await chat_gateway.service.create_conversation("user-a", ["user-b"])
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-b")
    entered = asyncio.Event()
    release = asyncio.Event()
    load = chat_gateway.service.get_user_conversations

    async def slow_conversations(user_id):
        entered.set()
        await release.wait()
        return await load(user_id)

    monkeypatch.setattr(chat_gateway.service, "get_user_conversations", slow_conversations)
    connecting = asyncio.create_task(namespace.trigger_event("connect", "sid-user-a", _scope_for("user-a")))
    await entered.wait()
    handle = namespace.get_handle("sid-user-a")
    await namespace.trigger_event("disconnect", "sid-user-a")
    release.set()
    await connecting
    await namespace.flush()

    assert handle.state is ConnectionState.DISCONNECTED
    assert not await chat_gateway.is_user_online("user-a")
    assert await chat_gateway.membership.rooms_of(handle) == set()
    members = await chat_gateway.membership.members(ConversationRoom(conversation.id))
    assert [member.sid for member in members] == ["sid-user-b"]
    assert "userOnline" not in _events(namespace, "sid-user-b")

    await namespace.trigger_event("sendMessage", "sid-user-a", {"conversationId": conversation.id, "content": "hi"})
    assert await chat_gateway.service.get_messages(conversation.id, "user-b") == []


@pytest.mark.asyncio
async def test_send_to_user_reaches_only_that_user(chat_gateway):
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-a", "user-b", "user-c")

    delivered = await chat_gateway.send_to_user("user-b", "conversationUpdated", {"conversationId": "c-1"})
    await namespace.flush()

    assert delivered == 1
    assert _frames(namespace, "sid-user-b") == [("conversationUpdated", {"conversationId": "c-1"})]
    assert _frames(namespace, "sid-user-a") == []
    assert _frames(namespace, "sid-user-c") == []


@pytest.mark.asyncio
async def test_send_to_conversation_reaches_only_participants(chat_gateway):
    conversation = await chat_gateway.service.create_conversation("user-a", ["user-b"])
    namespace = _namespace(chat_gateway)
    await _connected(namespace, "user-a", "user-b", "user-c")

    delivered = await chat_gateway.send_to_conversation(conversation.id, "conversationUpdated", {"conversationId": conversation.id})
    await namespace.flush()

    assert delivered == 2
    expected = [("conversationUpdated", {"conversationId": conversation.id})]
    assert _frames(namespace, "sid-user-a") == expected
    assert _frames(namespace, "sid-user-b") == expected
    assert _frames(namespace, "sid-user-c") == []
