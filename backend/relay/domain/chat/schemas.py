"""Pydantic schemas for chat events and REST payloads.

Wire payloads use camelCase field names; Python code uses snake_case.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from relay.domain.common.schemas import CamelModel

from .models import Conversation, ConversationSummary, Message, MessageType

MAX_CONTENT_LENGTH = 4000


class CreateConversationRequest(CamelModel):
	participant_ids: List[str] = Field(..., min_length=1)
	name: Optional[str] = Field(default=None, max_length=120)
	is_group: bool = False


class SendMessageRequest(CamelModel):
	conversation_id: str = Field(..., min_length=1)
	content: str = Field(..., min_length=1, max_length=MAX_CONTENT_LENGTH)
	type: MessageType = MessageType.TEXT


class ConversationRef(CamelModel):
	conversation_id: str = Field(..., min_length=1)


class MessageRef(CamelModel):
	message_id: str = Field(..., min_length=1)


class TypingRequest(CamelModel):
	conversation_id: str = Field(..., min_length=1)
	is_typing: bool = True


class GetMessagesRequest(CamelModel):
	conversation_id: str = Field(..., min_length=1)
	limit: int = 50
	offset: int = Field(default=0, ge=0)


class MessageResponse(CamelModel):
	id: str
	conversation_id: str
	sender_id: str
	content: str
	type: MessageType
	created_at: datetime
	read_by: List[str]
	is_read: Optional[bool] = None

	@classmethod
	def from_model(cls, message: Message, *, viewer_id: Optional[str] = None) -> "MessageResponse":
		return cls(
			id=message.id,
			conversation_id=message.conversation_id,
			sender_id=message.sender_id,
			content=message.content,
			type=message.type,
			created_at=message.created_at,
			read_by=sorted(message.read_by),
			is_read=message.is_read_by(viewer_id) if viewer_id is not None else None,
		)


class ConversationResponse(CamelModel):
	id: str
	name: Optional[str] = None
	is_group: bool
	participant_ids: List[str]
	created_at: datetime
	updated_at: datetime
	last_message: Optional[MessageResponse] = None
	unread_count: Optional[int] = None

	@classmethod
	def from_model(cls, conversation: Conversation) -> "ConversationResponse":
		return cls(
			id=conversation.id,
			name=conversation.name,
			is_group=conversation.is_group,
			participant_ids=list(conversation.participant_ids),
			created_at=conversation.created_at,
			updated_at=conversation.updated_at,
		)

	@classmethod
	def from_summary(cls, summary: ConversationSummary) -> "ConversationResponse":
		response = cls.from_model(summary.conversation)
		if summary.last_message is not None:
			response.last_message = MessageResponse.from_model(summary.last_message)
		response.unread_count = summary.unread_count
		return response
