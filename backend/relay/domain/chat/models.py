"""Domain models for conversations and messages."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import FrozenSet, Optional, Tuple


class MessageType(str, enum.Enum):
	TEXT = "text"
	IMAGE = "image"
	FILE = "file"
	SYSTEM = "system"


@dataclass(slots=True)
class Conversation:
	id: str
	name: Optional[str]
	is_group: bool
	participant_ids: Tuple[str, ...]
	created_at: datetime
	updated_at: datetime

	def is_participant(self, user_id: str) -> bool:
		return user_id in self.participant_ids

	def is_direct_between(self, user_a: str, user_b: str) -> bool:
		return not self.is_group and set(self.participant_ids) == {user_a, user_b}


@dataclass(slots=True)
class Message:
	id: str
	conversation_id: str
	sender_id: str
	content: str
	type: MessageType
	created_at: datetime
	read_by: FrozenSet[str] = field(default_factory=frozenset)

	def is_read_by(self, user_id: str) -> bool:
		return user_id in self.read_by

	def with_reader(self, user_id: str) -> "Message":
		if user_id in self.read_by:
			return self
		return replace(self, read_by=self.read_by | {user_id})


@dataclass(slots=True)
class ConversationSummary:
	conversation: Conversation
	last_message: Optional[Message]
	unread_count: int


def ordered_unique(ids) -> Tuple[str, ...]:
	"""De-duplicate identifiers while keeping their first-seen order."""
	seen: dict[str, None] = {}
	for raw in ids:
		value = str(raw).strip()
		if value:
			seen.setdefault(value, None)
	return tuple(seen)
