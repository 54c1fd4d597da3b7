"""Conversation and message operations.

Everything here is transport independent: callers (socket gateway, REST
routers) get plain domain objects back and decide what to fan out.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from relay.domain.errors import Forbidden, NotFound, ValidationFailure
from relay.obs import metrics as obs_metrics

from .models import Conversation, ConversationSummary, Message, MessageType, ordered_unique
from .repo import ChatRepository, build_repository
from .schemas import MAX_CONTENT_LENGTH

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_LIMIT = 50
MAX_MESSAGE_LIMIT = 100


def _clamp_limit(limit: Optional[int]) -> int:
	if limit is None:
		return DEFAULT_MESSAGE_LIMIT
	return max(1, min(MAX_MESSAGE_LIMIT, int(limit)))


def _normalise_content(content: str) -> str:
	text = (content or "").strip()
	if not text:
		raise ValidationFailure("empty_content")
	if len(text) > MAX_CONTENT_LENGTH:
		raise ValidationFailure("content_too_long")
	return text


class ChatService:
	def __init__(self, repository: ChatRepository | None = None) -> None:
		self._repo = repository or build_repository()

	@property
	def repository(self) -> ChatRepository:
		return self._repo

	async def create_conversation(
		self,
		requester_id: str,
		participant_ids: Iterable[str],
		name: Optional[str] = None,
		is_group: bool = False,
	) -> Conversation:
		"""Create a conversation, or return the existing direct one for the pair."""
		others = [pid for pid in ordered_unique(participant_ids) if pid != requester_id]
		if not others:
			raise ValidationFailure("participants_required")
		if not is_group and len(others) != 1:
			raise ValidationFailure("direct_needs_one_participant")
		members = (requester_id, *others)
		known = await self._repo.existing_user_ids(members)
		if len(known) != len(members):
			raise NotFound("participant_not_found")

		if not is_group:
			existing = await self._repo.find_direct_conversation(requester_id, others[0])
			if existing is not None:
				return existing

		clean_name = (name or "").strip() or None
		conversation = await self._repo.create_conversation(
			name=clean_name if is_group else None,
			is_group=is_group,
			participant_ids=members,
			created_at=datetime.now(timezone.utc),
		)
		logger.info(
			"conversation_created",
			extra={"conversation_id": conversation.id, "participants": len(members), "is_group": is_group},
		)
		return conversation

	async def find_direct_conversation(self, user_a: str, user_b: str) -> Optional[Conversation]:
		if user_a == user_b:
			return None
		return await self._repo.find_direct_conversation(user_a, user_b)

	async def get_or_create_direct_conversation(self, user_id: str, other_user_id: str) -> Conversation:
		if user_id == other_user_id:
			raise ValidationFailure("cannot_message_self")
		existing = await self.find_direct_conversation(user_id, other_user_id)
		if existing is not None:
			return existing
		return await self.create_conversation(user_id, [other_user_id], is_group=False)

	async def get_user_conversations(self, user_id: str) -> List[ConversationSummary]:
		conversations = await self._repo.list_conversations_for_user(user_id)
		summaries: List[ConversationSummary] = []
		for conversation in conversations:
			last = await self._repo.last_message(conversation.id)
			unread = await self._repo.count_unread(conversation.id, user_id)
			summaries.append(ConversationSummary(conversation=conversation, last_message=last, unread_count=unread))
		return summaries

	async def get_conversation_by_id(self, conversation_id: str, requester_id: str) -> Conversation:
		conversation = await self._repo.get_conversation(conversation_id)
		if conversation is None:
			raise NotFound("conversation_not_found")
		if not conversation.is_participant(requester_id):
			raise Forbidden("not_a_participant")
		return conversation

	async def send_message(
		self,
		sender_id: str,
		conversation_id: str,
		content: str,
		message_type: MessageType | str = MessageType.TEXT,
	) -> Message:
		conversation = await self.get_conversation_by_id(conversation_id, sender_id)
		text = _normalise_content(content)
		try:
			kind = MessageType(message_type)
		except ValueError:
			raise ValidationFailure("invalid_message_type") from None
		created_at = datetime.now(timezone.utc)
		message = await self._repo.create_message(
			conversation_id=conversation.id,
			sender_id=sender_id,
			content=text,
			message_type=kind,
			created_at=created_at,
		)
		await self._repo.touch_conversation(conversation.id, created_at)
		obs_metrics.inc_chat_send()
		return message

	async def get_messages(
		self,
		conversation_id: str,
		requester_id: str,
		limit: Optional[int] = DEFAULT_MESSAGE_LIMIT,
		offset: int = 0,
	) -> List[Message]:
		"""Return a page in chronological order. Use ``Message.is_read_by`` for the viewer flag."""
		await self.get_conversation_by_id(conversation_id, requester_id)
		if offset < 0:
			raise ValidationFailure("invalid_offset")
		newest_first = await self._repo.list_messages(conversation_id, limit=_clamp_limit(limit), offset=offset)
		return list(reversed(newest_first))

	async def mark_message_as_read(self, message_id: str, user_id: str) -> Message:
		message = await self._require_message(message_id)
		await self.get_conversation_by_id(message.conversation_id, user_id)
		if await self._repo.add_reader(message_id, user_id):
			obs_metrics.inc_chat_read("message")
		current = await self._repo.get_message(message_id)
		return current if current is not None else message.with_reader(user_id)

	async def mark_all_messages_as_read(self, conversation_id: str, user_id: str) -> int:
		await self.get_conversation_by_id(conversation_id, user_id)
		added = await self._repo.add_reader_to_conversation(conversation_id, user_id)
		obs_metrics.inc_chat_read("conversation", added)
		return added

	async def get_unread_count(self, conversation_id: str, user_id: str) -> int:
		await self.get_conversation_by_id(conversation_id, user_id)
		return await self._repo.count_unread(conversation_id, user_id)

	async def delete_message(self, message_id: str, user_id: str) -> Message:
		message = await self._require_message(message_id)
		if message.sender_id != user_id:
			raise Forbidden("not_message_sender")
		if not await self._repo.delete_message(message_id):
			raise NotFound("message_not_found")
		obs_metrics.inc_chat_deleted()
		return message

	async def _require_message(self, message_id: str) -> Message:
		message = await self._repo.get_message(message_id)
		if message is None:
			raise NotFound("message_not_found")
		return message
