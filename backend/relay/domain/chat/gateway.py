"""Chat protocol state machine.

Each inbound event maps to one ChatService call. What the result means for
other connections is decided by ``relay.realtime.fanout``; the Socket.IO
adapter in ``sockets.py`` only moves frames.
"""

from __future__ import annotations

from typing import Any, Optional

from relay.domain.errors import RelayError
from relay.infra import rate_limit
from relay.infra.auth import AuthenticatedUser
from relay.obs import metrics as obs_metrics
from relay.realtime import fanout
from relay.realtime.connection import ConnectionHandle, ConnectionState
from relay.realtime.gateway import Gateway, parse_payload
from relay.realtime.presence import PresenceRegistry
from relay.realtime.rooms import ConversationRoom, RoomMembership
from relay.realtime.typing_indicators import TypingTracker
from relay.settings import settings

from .models import Conversation
from .schemas import (
	ConversationRef,
	GetMessagesRequest,
	MessageRef,
	MessageResponse,
	SendMessageRequest,
	TypingRequest,
)
from .service import ChatService

NAMESPACE = "/chat"


class ChatGateway(Gateway):
	namespace = NAMESPACE

	def __init__(
		self,
		service: Optional[ChatService] = None,
		*,
		presence: Optional[PresenceRegistry] = None,
		membership: Optional[RoomMembership] = None,
		typing: Optional[TypingTracker] = None,
		evict_previous: Optional[bool] = None,
	) -> None:
		super().__init__(presence=presence, membership=membership, evict_previous=evict_previous)
		self.service = service or ChatService()
		self.typing = typing or TypingTracker(settings.typing_idle_seconds)
		self.typing.set_on_expire(self._on_typing_expired)
		self._handlers = {
			"joinConversation": self._join_conversation,
			"leaveConversation": self._leave_conversation,
			"sendMessage": self._send_message,
			"markMessageRead": self._mark_message_read,
			"markAllRead": self._mark_all_read,
			"typing": self._typing,
			"deleteMessage": self._delete_message,
			"getMessages": self._get_messages,
		}

	async def on_joining(self, handle: ConnectionHandle, user: AuthenticatedUser) -> None:
		try:
			summaries = await self.service.get_user_conversations(user.id)
		except RelayError as exc:
			# Stay connected; rooms can still be joined explicitly once storage recovers.
			self.reply_error(handle, exc, "connect")
			return
		rooms = [ConversationRoom(summary.conversation.id) for summary in summaries]
		await self.membership.join_many(handle, rooms)

	async def on_joined(self, handle: ConnectionHandle, user: AuthenticatedUser) -> None:
		rooms = await self.membership.rooms_of(handle)
		conversation_ids = sorted(room.conversation_id for room in rooms if isinstance(room, ConversationRoom))
		handle.send("chat:ready", {"userId": user.id, "conversationIds": conversation_ids})
		await self._publish(fanout.PresenceChanged(user.id, True), handle)

	async def on_offline(self, handle: ConnectionHandle, user_id: str) -> None:
		for conversation_id in self.typing.clear_user(user_id):
			await self._publish(fanout.TypingChanged(conversation_id, user_id, False))
		await self._publish(fanout.PresenceChanged(user_id, False))

	async def shutdown(self) -> None:
		await self.typing.shutdown()
		await super().shutdown()

	async def send_to_conversation(self, conversation_id: str, event: str, payload: dict) -> int:
		obs_metrics.socket_event(NAMESPACE, event)
		return await self.membership.broadcast(ConversationRoom(conversation_id), event, payload)

	async def publish(self, result: fanout.FanoutResult, origin: Optional[ConnectionHandle] = None) -> int:
		"""Fan out a result produced outside a socket handler, e.g. by a REST call."""
		return await self._publish(result, origin)

	async def attach_participants(self, conversation: Conversation) -> int:
		"""Join the live connections of every participant to the conversation room."""
		room = ConversationRoom(conversation.id)
		joined = 0
		for participant_id in conversation.participant_ids:
			handle = await self.presence.lookup(participant_id)
			if handle is None or handle.state is not ConnectionState.JOINED:
				continue
			if await self.membership.join(handle, room):
				joined += 1
		return joined

	# Inbound events

	async def _join_conversation(self, handle: ConnectionHandle, payload: Any) -> None:
		ref = parse_payload(ConversationRef, payload)
		await self.service.get_conversation_by_id(ref.conversation_id, handle.user_id)
		await self.membership.join(handle, ConversationRoom(ref.conversation_id))
		await self._publish(fanout.ConversationJoined(ref.conversation_id, handle.user_id), handle)

	async def _leave_conversation(self, handle: ConnectionHandle, payload: Any) -> None:
		ref = parse_payload(ConversationRef, payload)
		await self.membership.leave(handle, ConversationRoom(ref.conversation_id))
		await self._publish(fanout.ConversationLeft(ref.conversation_id, handle.user_id), handle)

	async def _send_message(self, handle: ConnectionHandle, payload: Any) -> None:
		request = parse_payload(SendMessageRequest, payload)
		await self._check_rate("chat_send", handle.user_id, settings.chat_send_rate_per_minute)
		message = await self.service.send_message(
			handle.user_id,
			request.conversation_id,
			request.content,
			request.type,
		)
		if self.typing.stop(message.conversation_id, handle.user_id):
			obs_metrics.inc_chat_typing("stop")
			await self._publish(fanout.TypingChanged(message.conversation_id, handle.user_id, False), handle)
		await self._publish(fanout.MessageSent(message), handle)
		handle.send("messageSent", {"messageId": message.id, "conversationId": message.conversation_id})

	async def _mark_message_read(self, handle: ConnectionHandle, payload: Any) -> None:
		ref = parse_payload(MessageRef, payload)
		message = await self.service.mark_message_as_read(ref.message_id, handle.user_id)
		await self._publish(fanout.MessageRead(message.id, message.conversation_id, handle.user_id), handle)

	async def _mark_all_read(self, handle: ConnectionHandle, payload: Any) -> None:
		ref = parse_payload(ConversationRef, payload)
		count = await self.service.mark_all_messages_as_read(ref.conversation_id, handle.user_id)
		await self._publish(fanout.AllMessagesRead(ref.conversation_id, handle.user_id, count), handle)

	async def _typing(self, handle: ConnectionHandle, payload: Any) -> None:
		request = parse_payload(TypingRequest, payload)
		await self._check_rate("chat_typing", handle.user_id, settings.chat_typing_rate_per_minute)
		await self.service.get_conversation_by_id(request.conversation_id, handle.user_id)
		if request.is_typing:
			changed = self.typing.start(request.conversation_id, handle.user_id)
			state = "start"
		else:
			changed = self.typing.stop(request.conversation_id, handle.user_id)
			state = "stop"
		if not changed:
			return
		obs_metrics.inc_chat_typing(state)
		await self._publish(
			fanout.TypingChanged(request.conversation_id, handle.user_id, request.is_typing),
			handle,
		)

	async def _delete_message(self, handle: ConnectionHandle, payload: Any) -> None:
		ref = parse_payload(MessageRef, payload)
		message = await self.service.delete_message(ref.message_id, handle.user_id)
		await self._publish(fanout.MessageDeleted(message.id, message.conversation_id, handle.user_id), handle)

	async def _get_messages(self, handle: ConnectionHandle, payload: Any) -> None:
		request = parse_payload(GetMessagesRequest, payload)
		messages = await self.service.get_messages(
			request.conversation_id,
			handle.user_id,
			limit=request.limit,
			offset=request.offset,
		)
		handle.send(
			"messages",
			{
				"conversationId": request.conversation_id,
				"messages": [MessageResponse.from_model(m, viewer_id=handle.user_id).to_wire() for m in messages],
				"offset": request.offset,
			},
		)

	# Internals

	async def _publish(self, result: fanout.FanoutResult, origin: Optional[ConnectionHandle] = None) -> int:
		return await fanout.deliver(self.membership, fanout.plan(result, origin), namespace=NAMESPACE)

	async def _check_rate(self, kind: str, user_id: str, limit: int) -> None:
		await rate_limit.enforce(kind, user_id, limit=limit, window_seconds=60)

	async def _on_typing_expired(self, conversation_id: str, user_id: str) -> None:
		obs_metrics.inc_chat_typing("expired")
		origin = await self.presence.lookup(user_id)
		await self._publish(fanout.TypingChanged(conversation_id, user_id, False), origin)
