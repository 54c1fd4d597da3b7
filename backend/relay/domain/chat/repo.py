"""Message store for conversations and messages.

Two interchangeable backends: asyncpg for deployments and an in-process store
for tests and local runs. Read receipts live in their own ``message_reads``
table keyed by (message, user) so marking a message read is an idempotent
insert rather than a read-modify-write of the message row.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set

import asyncpg
import ulid

from relay.infra import postgres
from relay.settings import settings

from .models import Conversation, Message, MessageType

_STORE = "chat"

# Participant ids are checked against an existing `users` table (id column) owned
# by the account service; ensure_schema does not create it.
SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
	id TEXT PRIMARY KEY,
	name TEXT,
	is_group BOOLEAN NOT NULL DEFAULT FALSE,
	created_at TIMESTAMPTZ NOT NULL,
	updated_at TIMESTAMPTZ NOT NULL
);
CREATE TABLE IF NOT EXISTS conversation_participants (
	conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
	user_id TEXT NOT NULL,
	position INTEGER NOT NULL,
	PRIMARY KEY (conversation_id, user_id)
);
CREATE INDEX IF NOT EXISTS idx_conversation_participants_user ON conversation_participants(user_id);
CREATE TABLE IF NOT EXISTS messages (
	id TEXT PRIMARY KEY,
	seq BIGSERIAL,
	conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
	sender_id TEXT NOT NULL,
	content TEXT NOT NULL,
	type TEXT NOT NULL,
	created_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation_seq ON messages(conversation_id, seq DESC);
CREATE TABLE IF NOT EXISTS message_reads (
	message_id TEXT NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
	user_id TEXT NOT NULL,
	read_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
	PRIMARY KEY (message_id, user_id)
);
"""

_CONVERSATION_SELECT = """
SELECT c.id, c.name, c.is_group, c.created_at, c.updated_at,
	array_agg(p.user_id ORDER BY p.position) AS participant_ids
FROM conversations c
JOIN conversation_participants p ON p.conversation_id = c.id
"""

_MESSAGE_SELECT = """
SELECT m.id, m.conversation_id, m.sender_id, m.content, m.type, m.created_at,
	COALESCE(array_agg(r.user_id) FILTER (WHERE r.user_id IS NOT NULL), '{}') AS read_by
FROM messages m
LEFT JOIN message_reads r ON r.message_id = m.id
"""


class ChatRepository(Protocol):
	async def existing_user_ids(self, user_ids: Sequence[str]) -> Set[str]:
		...

	async def create_conversation(
		self,
		*,
		name: Optional[str],
		is_group: bool,
		participant_ids: Sequence[str],
		created_at: datetime,
	) -> Conversation:
		...

	async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
		...

	async def find_direct_conversation(self, user_a: str, user_b: str) -> Optional[Conversation]:
		...

	async def list_conversations_for_user(self, user_id: str) -> List[Conversation]:
		...

	async def touch_conversation(self, conversation_id: str, updated_at: datetime) -> None:
		...

	async def create_message(
		self,
		*,
		conversation_id: str,
		sender_id: str,
		content: str,
		message_type: MessageType,
		created_at: datetime,
	) -> Message:
		...

	async def get_message(self, message_id: str) -> Optional[Message]:
		...

	async def list_messages(self, conversation_id: str, *, limit: int, offset: int) -> List[Message]:
		...

	async def last_message(self, conversation_id: str) -> Optional[Message]:
		...

	async def count_unread(self, conversation_id: str, user_id: str) -> int:
		...

	async def add_reader(self, message_id: str, user_id: str) -> bool:
		...

	async def add_reader_to_conversation(self, conversation_id: str, user_id: str) -> int:
		...

	async def delete_message(self, message_id: str) -> bool:
		...


class MemoryChatRepository:
	"""In-process store guarded by a single lock.

	``known_users`` is the user directory; ``None`` accepts any identifier.
	"""

	def __init__(self, known_users: Optional[Iterable[str]] = None) -> None:
		self._lock = asyncio.Lock()
		self._users: Optional[Set[str]] = set(known_users) if known_users is not None else None
		self._conversations: Dict[str, Conversation] = {}
		self._messages: Dict[str, Message] = {}
		self._timeline: Dict[str, List[str]] = {}

	async def existing_user_ids(self, user_ids: Sequence[str]) -> Set[str]:
		async with self._lock:
			if self._users is None:
				return set(user_ids)
			return {uid for uid in user_ids if uid in self._users}

	async def create_conversation(
		self,
		*,
		name: Optional[str],
		is_group: bool,
		participant_ids: Sequence[str],
		created_at: datetime,
	) -> Conversation:
		conversation = Conversation(
			id=str(ulid.new()),
			name=name,
			is_group=is_group,
			participant_ids=tuple(participant_ids),
			created_at=created_at,
			updated_at=created_at,
		)
		async with self._lock:
			self._conversations[conversation.id] = conversation
			self._timeline[conversation.id] = []
		return conversation

	async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
		async with self._lock:
			return self._conversations.get(conversation_id)

	async def find_direct_conversation(self, user_a: str, user_b: str) -> Optional[Conversation]:
		async with self._lock:
			matches = [c for c in self._conversations.values() if c.is_direct_between(user_a, user_b)]
		if not matches:
			return None
		return min(matches, key=lambda c: (c.created_at, c.id))

	async def list_conversations_for_user(self, user_id: str) -> List[Conversation]:
		async with self._lock:
			owned = [c for c in self._conversations.values() if c.is_participant(user_id)]
		return sorted(owned, key=lambda c: (c.updated_at, c.id), reverse=True)

	async def touch_conversation(self, conversation_id: str, updated_at: datetime) -> None:
		async with self._lock:
			conversation = self._conversations.get(conversation_id)
			if conversation is not None:
				conversation.updated_at = updated_at

	async def create_message(
		self,
		*,
		conversation_id: str,
		sender_id: str,
		content: str,
		message_type: MessageType,
		created_at: datetime,
	) -> Message:
		message = Message(
			id=str(ulid.new()),
			conversation_id=conversation_id,
			sender_id=sender_id,
			content=content,
			type=message_type,
			created_at=created_at,
			read_by=frozenset({sender_id}),
		)
		async with self._lock:
			self._messages[message.id] = message
			self._timeline.setdefault(conversation_id, []).append(message.id)
		return message

	async def get_message(self, message_id: str) -> Optional[Message]:
		async with self._lock:
			return self._messages.get(message_id)

	async def list_messages(self, conversation_id: str, *, limit: int, offset: int) -> List[Message]:
		async with self._lock:
			ids = list(reversed(self._timeline.get(conversation_id, [])))
			return [self._messages[mid] for mid in ids[offset : offset + limit]]

	async def last_message(self, conversation_id: str) -> Optional[Message]:
		async with self._lock:
			ids = self._timeline.get(conversation_id)
			return self._messages[ids[-1]] if ids else None

	async def count_unread(self, conversation_id: str, user_id: str) -> int:
		async with self._lock:
			return sum(
				1
				for mid in self._timeline.get(conversation_id, [])
				if self._messages[mid].sender_id != user_id and not self._messages[mid].is_read_by(user_id)
			)

	async def add_reader(self, message_id: str, user_id: str) -> bool:
		async with self._lock:
			message = self._messages.get(message_id)
			if message is None or message.is_read_by(user_id):
				return False
			self._messages[message_id] = message.with_reader(user_id)
			return True

	async def add_reader_to_conversation(self, conversation_id: str, user_id: str) -> int:
		added = 0
		async with self._lock:
			for mid in self._timeline.get(conversation_id, []):
				message = self._messages[mid]
				if not message.is_read_by(user_id):
					self._messages[mid] = message.with_reader(user_id)
					added += 1
		return added

	async def delete_message(self, message_id: str) -> bool:
		async with self._lock:
			message = self._messages.pop(message_id, None)
			if message is None:
				return False
			timeline = self._timeline.get(message.conversation_id, [])
			if message_id in timeline:
				timeline.remove(message_id)
			return True


def _row_to_conversation(row: asyncpg.Record) -> Conversation:
	return Conversation(
		id=str(row["id"]),
		name=row["name"],
		is_group=bool(row["is_group"]),
		participant_ids=tuple(str(pid) for pid in row["participant_ids"]),
		created_at=row["created_at"],
		updated_at=row["updated_at"],
	)


def _row_to_message(row: asyncpg.Record) -> Message:
	return Message(
		id=str(row["id"]),
		conversation_id=str(row["conversation_id"]),
		sender_id=str(row["sender_id"]),
		content=row["content"],
		type=MessageType(row["type"]),
		created_at=row["created_at"],
		read_by=frozenset(str(uid) for uid in row["read_by"] or ()),
	)


class PostgresChatRepository:
	"""asyncpg-backed store. Driver failures surface as StorageFailure."""

	async def ensure_schema(self) -> None:
		async with postgres.connection(_STORE) as conn:
			await conn.execute(SCHEMA)

	async def existing_user_ids(self, user_ids: Sequence[str]) -> Set[str]:
		async with postgres.connection(_STORE) as conn:
			rows = await conn.fetch(
				"SELECT id::text AS id FROM users WHERE id::text = ANY($1::text[])",
				list(user_ids),
			)
		return {str(row["id"]) for row in rows}

	async def create_conversation(
		self,
		*,
		name: Optional[str],
		is_group: bool,
		participant_ids: Sequence[str],
		created_at: datetime,
	) -> Conversation:
		conversation_id = str(ulid.new())
		async with postgres.connection(_STORE) as conn:
			async with conn.transaction():
				await conn.execute(
					"""
					INSERT INTO conversations (id, name, is_group, created_at, updated_at)
					VALUES ($1, $2, $3, $4, $4)
					""",
					conversation_id,
					name,
					is_group,
					created_at,
				)
				await conn.executemany(
					"""
					INSERT INTO conversation_participants (conversation_id, user_id, position)
					VALUES ($1, $2, $3)
					""",
					[(conversation_id, uid, idx) for idx, uid in enumerate(participant_ids)],
				)
		return Conversation(
			id=conversation_id,
			name=name,
			is_group=is_group,
			participant_ids=tuple(participant_ids),
			created_at=created_at,
			updated_at=created_at,
		)

	async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
		async with postgres.connection(_STORE) as conn:
			row = await conn.fetchrow(
				_CONVERSATION_SELECT + " WHERE c.id = $1 GROUP BY c.id",
				conversation_id,
			)
		return _row_to_conversation(row) if row else None

	async def find_direct_conversation(self, user_a: str, user_b: str) -> Optional[Conversation]:
		async with postgres.connection(_STORE) as conn:
			row = await conn.fetchrow(
				_CONVERSATION_SELECT
				+ """
				WHERE c.is_group = FALSE
				GROUP BY c.id
				HAVING COUNT(*) = 2
					AND COUNT(*) FILTER (WHERE p.user_id IN ($1, $2)) = 2
				ORDER BY c.created_at ASC
				LIMIT 1
				""",
				user_a,
				user_b,
			)
		return _row_to_conversation(row) if row else None

	async def list_conversations_for_user(self, user_id: str) -> List[Conversation]:
		async with postgres.connection(_STORE) as conn:
			rows = await conn.fetch(
				_CONVERSATION_SELECT
				+ """
				WHERE c.id IN (SELECT conversation_id FROM conversation_participants WHERE user_id = $1)
				GROUP BY c.id
				ORDER BY c.updated_at DESC, c.id DESC
				""",
				user_id,
			)
		return [_row_to_conversation(row) for row in rows]

	async def touch_conversation(self, conversation_id: str, updated_at: datetime) -> None:
		async with postgres.connection(_STORE) as conn:
			await conn.execute(
				"UPDATE conversations SET updated_at = GREATEST(updated_at, $2) WHERE id = $1",
				conversation_id,
				updated_at,
			)

	async def create_message(
		self,
		*,
		conversation_id: str,
		sender_id: str,
		content: str,
		message_type: MessageType,
		created_at: datetime,
	) -> Message:
		message_id = str(ulid.new())
		async with postgres.connection(_STORE) as conn:
			async with conn.transaction():
				await conn.execute(
					"""
					INSERT INTO messages (id, conversation_id, sender_id, content, type, created_at)
					VALUES ($1, $2, $3, $4, $5, $6)
					""",
					message_id,
					conversation_id,
					sender_id,
					content,
					message_type.value,
					created_at,
				)
				await conn.execute(
					"INSERT INTO message_reads (message_id, user_id, read_at) VALUES ($1, $2, $3)",
					message_id,
					sender_id,
					created_at,
				)
		return Message(
			id=message_id,
			conversation_id=conversation_id,
			sender_id=sender_id,
			content=content,
			type=message_type,
			created_at=created_at,
			read_by=frozenset({sender_id}),
		)

	async def get_message(self, message_id: str) -> Optional[Message]:
		async with postgres.connection(_STORE) as conn:
			row = await conn.fetchrow(_MESSAGE_SELECT + " WHERE m.id = $1 GROUP BY m.id", message_id)
		return _row_to_message(row) if row else None

	async def list_messages(self, conversation_id: str, *, limit: int, offset: int) -> List[Message]:
		async with postgres.connection(_STORE) as conn:
			rows = await conn.fetch(
				_MESSAGE_SELECT
				+ """
				WHERE m.conversation_id = $1
				GROUP BY m.id
				ORDER BY m.seq DESC
				LIMIT $2 OFFSET $3
				""",
				conversation_id,
				limit,
				offset,
			)
		return [_row_to_message(row) for row in rows]

	async def last_message(self, conversation_id: str) -> Optional[Message]:
		messages = await self.list_messages(conversation_id, limit=1, offset=0)
		return messages[0] if messages else None

	async def count_unread(self, conversation_id: str, user_id: str) -> int:
		async with postgres.connection(_STORE) as conn:
			count = await conn.fetchval(
				"""
				SELECT COUNT(*)
				FROM messages m
				WHERE m.conversation_id = $1
					AND m.sender_id <> $2
					AND NOT EXISTS (
						SELECT 1 FROM message_reads r WHERE r.message_id = m.id AND r.user_id = $2
					)
				""",
				conversation_id,
				user_id,
			)
		return int(count or 0)

	async def add_reader(self, message_id: str, user_id: str) -> bool:
		async with postgres.connection(_STORE) as conn:
			status = await conn.execute(
				"""
				INSERT INTO message_reads (message_id, user_id)
				VALUES ($1, $2)
				ON CONFLICT (message_id, user_id) DO NOTHING
				""",
				message_id,
				user_id,
			)
		return postgres.rows_affected(status) > 0

	async def add_reader_to_conversation(self, conversation_id: str, user_id: str) -> int:
		async with postgres.connection(_STORE) as conn:
			status = await conn.execute(
				"""
				INSERT INTO message_reads (message_id, user_id)
				SELECT m.id, $2 FROM messages m WHERE m.conversation_id = $1
				ON CONFLICT (message_id, user_id) DO NOTHING
				""",
				conversation_id,
				user_id,
			)
		return postgres.rows_affected(status)

	async def delete_message(self, message_id: str) -> bool:
		async with postgres.connection(_STORE) as conn:
			status = await conn.execute("DELETE FROM messages WHERE id = $1", message_id)
		return postgres.rows_affected(status) > 0


def build_repository() -> ChatRepository:
	if settings.store_backend == "memory":
		return MemoryChatRepository()
	return PostgresChatRepository()
