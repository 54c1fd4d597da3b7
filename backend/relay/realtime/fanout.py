"""Turn service results into room broadcasts.

Gateways call a service, wrap what came back in one of the result types below
and hand it to ``plan``. ``deliver`` then queues the frames on the members of
each target room. Nothing here touches the transport.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from relay.domain.chat.models import Message
from relay.domain.chat.schemas import MessageResponse
from relay.obs import metrics as obs_metrics
from relay.realtime.connection import ConnectionHandle
from relay.realtime.rooms import ConversationRoom, Room, RoomMembership


@dataclass(frozen=True, slots=True)
class MessageSent:
	message: Message


@dataclass(frozen=True, slots=True)
class MessageRead:
	message_id: str
	conversation_id: str
	user_id: str


@dataclass(frozen=True, slots=True)
class AllMessagesRead:
	conversation_id: str
	user_id: str
	count: int


@dataclass(frozen=True, slots=True)
class MessageDeleted:
	message_id: str
	conversation_id: str
	user_id: str


@dataclass(frozen=True, slots=True)
class TypingChanged:
	conversation_id: str
	user_id: str
	is_typing: bool


@dataclass(frozen=True, slots=True)
class ConversationJoined:
	conversation_id: str
	user_id: str


@dataclass(frozen=True, slots=True)
class ConversationLeft:
	conversation_id: str
	user_id: str


@dataclass(frozen=True, slots=True)
class PresenceChanged:
	user_id: str
	online: bool


FanoutResult = Union[
	MessageSent,
	MessageRead,
	AllMessagesRead,
	MessageDeleted,
	TypingChanged,
	ConversationJoined,
	ConversationLeft,
	PresenceChanged,
]


@dataclass(frozen=True, slots=True)
class Broadcast:
	"""One outbound event. ``room=None`` targets every connection in the namespace."""

	room: Optional[Room]
	event: str
	payload: dict
	exclude: Optional[ConnectionHandle] = None


def message_payload(message: Message) -> dict:
	return {
		"conversationId": message.conversation_id,
		"message": MessageResponse.from_model(message).to_wire(),
	}


def plan(result: FanoutResult, origin: Optional[ConnectionHandle] = None) -> List[Broadcast]:
	"""Map a service result to the broadcasts it causes.

	Each result kind has exactly one target: conversation events go to the
	conversation room, presence changes go to everyone else.
	"""
	if isinstance(result, MessageSent):
		room = ConversationRoom(result.message.conversation_id)
		return [Broadcast(room, "newMessage", message_payload(result.message))]
	if isinstance(result, MessageRead):
		payload = {
			"messageId": result.message_id,
			"conversationId": result.conversation_id,
			"userId": result.user_id,
		}
		return [Broadcast(ConversationRoom(result.conversation_id), "messageRead", payload, origin)]
	if isinstance(result, AllMessagesRead):
		payload = {"conversationId": result.conversation_id, "userId": result.user_id}
		return [Broadcast(ConversationRoom(result.conversation_id), "allMessagesRead", payload, origin)]
	if isinstance(result, MessageDeleted):
		payload = {"messageId": result.message_id, "conversationId": result.conversation_id}
		return [Broadcast(ConversationRoom(result.conversation_id), "messageDeleted", payload)]
	if isinstance(result, TypingChanged):
		payload = {
			"conversationId": result.conversation_id,
			"userId": result.user_id,
			"isTyping": result.is_typing,
		}
		return [Broadcast(ConversationRoom(result.conversation_id), "userTyping", payload, origin)]
	if isinstance(result, ConversationJoined):
		payload = {"conversationId": result.conversation_id, "userId": result.user_id}
		return [Broadcast(ConversationRoom(result.conversation_id), "userJoinedConversation", payload, origin)]
	if isinstance(result, ConversationLeft):
		payload = {"conversationId": result.conversation_id, "userId": result.user_id}
		return [Broadcast(ConversationRoom(result.conversation_id), "userLeftConversation", payload, origin)]
	if isinstance(result, PresenceChanged):
		event = "userOnline" if result.online else "userOffline"
		return [Broadcast(None, event, {"userId": result.user_id}, origin)]
	raise TypeError(f"unsupported fan-out result: {type(result).__name__}")


async def deliver(membership: RoomMembership, broadcasts: Iterable[Broadcast], *, namespace: str = "/chat") -> int:
	"""Queue every broadcast; returns how many connection frames were accepted."""
	delivered = 0
	for item in broadcasts:
		if item.room is None:
			delivered += await membership.broadcast_all(item.event, item.payload, exclude=item.exclude)
		else:
			delivered += await membership.broadcast(item.room, item.event, item.payload, exclude=item.exclude)
		obs_metrics.socket_event(namespace, item.event)
	return delivered
