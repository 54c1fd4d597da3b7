"""Notification storage: asyncpg with an in-process alternative for tests."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Protocol

import asyncpg
import ulid

from relay.infra import postgres
from relay.settings import settings

from .models import Notification, NotificationType

_STORE = "notifications"

SCHEMA = """
CREATE TABLE IF NOT EXISTS notifications (
	id TEXT PRIMARY KEY,
	type TEXT NOT NULL,
	message TEXT NOT NULL,
	recipient_id TEXT NOT NULL,
	actor_id TEXT,
	post_id TEXT,
	is_read BOOLEAN NOT NULL DEFAULT FALSE,
	created_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_notifications_recipient_created ON notifications(recipient_id, created_at DESC);
"""

_COLUMNS = "id, type, message, recipient_id, actor_id, post_id, is_read, created_at"


class NotificationRepository(Protocol):
	async def create(
		self,
		*,
		kind: NotificationType,
		message: str,
		recipient_id: str,
		actor_id: Optional[str],
		post_id: Optional[str],
		created_at: datetime,
	) -> Notification:
		...

	async def list_for_user(self, user_id: str, *, limit: int) -> List[Notification]:
		...

	async def list_since(self, user_id: str, since: datetime, *, limit: int) -> List[Notification]:
		...

	async def count_unread(self, user_id: str) -> int:
		...

	async def mark_read(self, notification_id: str, user_id: str) -> bool:
		...

	async def mark_all_read(self, user_id: str) -> int:
		...


class MemoryNotificationRepository:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._items: Dict[str, Notification] = {}

	async def create(
		self,
		*,
		kind: NotificationType,
		message: str,
		recipient_id: str,
		actor_id: Optional[str],
		post_id: Optional[str],
		created_at: datetime,
	) -> Notification:
		notification = Notification(
			id=str(ulid.new()),
			type=kind,
			message=message,
			recipient_id=recipient_id,
			actor_id=actor_id,
			post_id=post_id,
			is_read=False,
			created_at=created_at,
		)
		async with self._lock:
			self._items[notification.id] = notification
		return notification

	async def list_for_user(self, user_id: str, *, limit: int) -> List[Notification]:
		async with self._lock:
			owned = [n for n in self._items.values() if n.recipient_id == user_id]
		owned.sort(key=lambda n: (n.created_at, n.id), reverse=True)
		return owned[:limit]

	async def list_since(self, user_id: str, since: datetime, *, limit: int) -> List[Notification]:
		async with self._lock:
			owned = [n for n in self._items.values() if n.recipient_id == user_id and n.created_at >= since]
		owned.sort(key=lambda n: (n.created_at, n.id), reverse=True)
		return owned[:limit]

	async def count_unread(self, user_id: str) -> int:
		async with self._lock:
			return sum(1 for n in self._items.values() if n.recipient_id == user_id and not n.is_read)

	async def mark_read(self, notification_id: str, user_id: str) -> bool:
		async with self._lock:
			current = self._items.get(notification_id)
			if current is None or current.recipient_id != user_id or current.is_read:
				return False
			self._items[notification_id] = current.mark_read()
			return True

	async def mark_all_read(self, user_id: str) -> int:
		updated = 0
		async with self._lock:
			for key, item in list(self._items.items()):
				if item.recipient_id == user_id and not item.is_read:
					self._items[key] = item.mark_read()
					updated += 1
		return updated


def _row_to_notification(row: asyncpg.Record) -> Notification:
	return Notification(
		id=str(row["id"]),
		type=NotificationType(row["type"]),
		message=row["message"],
		recipient_id=str(row["recipient_id"]),
		actor_id=str(row["actor_id"]) if row["actor_id"] is not None else None,
		post_id=str(row["post_id"]) if row["post_id"] is not None else None,
		is_read=bool(row["is_read"]),
		created_at=row["created_at"],
	)


class PostgresNotificationRepository:
	async def ensure_schema(self) -> None:
		async with postgres.connection(_STORE) as conn:
			await conn.execute(SCHEMA)

	async def create(
		self,
		*,
		kind: NotificationType,
		message: str,
		recipient_id: str,
		actor_id: Optional[str],
		post_id: Optional[str],
		created_at: datetime,
	) -> Notification:
		async with postgres.connection(_STORE) as conn:
			row = await conn.fetchrow(
				f"""
				INSERT INTO notifications (id, type, message, recipient_id, actor_id, post_id, is_read, created_at)
				VALUES ($1, $2, $3, $4, $5, $6, FALSE, $7)
				RETURNING {_COLUMNS}
				""",
				str(ulid.new()),
				kind.value,
				message,
				recipient_id,
				actor_id,
				post_id,
				created_at,
			)
		return _row_to_notification(row)

	async def list_for_user(self, user_id: str, *, limit: int) -> List[Notification]:
		async with postgres.connection(_STORE) as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_COLUMNS} FROM notifications
				WHERE recipient_id = $1
				ORDER BY created_at DESC, id DESC
				LIMIT $2
				""",
				user_id,
				limit,
			)
		return [_row_to_notification(row) for row in rows]

	async def list_since(self, user_id: str, since: datetime, *, limit: int) -> List[Notification]:
		async with postgres.connection(_STORE) as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_COLUMNS} FROM notifications
				WHERE recipient_id = $1 AND created_at >= $2
				ORDER BY created_at DESC, id DESC
				LIMIT $3
				""",
				user_id,
				since,
				limit,
			)
		return [_row_to_notification(row) for row in rows]

	async def count_unread(self, user_id: str) -> int:
		async with postgres.connection(_STORE) as conn:
			count = await conn.fetchval(
				"SELECT COUNT(*) FROM notifications WHERE recipient_id = $1 AND is_read = FALSE",
				user_id,
			)
		return int(count or 0)

	async def mark_read(self, notification_id: str, user_id: str) -> bool:
		async with postgres.connection(_STORE) as conn:
			status = await conn.execute(
				"""
				UPDATE notifications SET is_read = TRUE
				WHERE id = $1 AND recipient_id = $2 AND is_read = FALSE
				""",
				notification_id,
				user_id,
			)
		return postgres.rows_affected(status) > 0

	async def mark_all_read(self, user_id: str) -> int:
		async with postgres.connection(_STORE) as conn:
			status = await conn.execute(
				"UPDATE notifications SET is_read = TRUE WHERE recipient_id = $1 AND is_read = FALSE",
				user_id,
			)
		return postgres.rows_affected(status)


def build_repository() -> NotificationRepository:
	if settings.store_backend == "memory":
		return MemoryNotificationRepository()
	return PostgresNotificationRepository()
