"""Domain logic for feed notifications."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from relay.obs import metrics as obs_metrics

from .models import Notification, NotificationType, render_message
from .repo import NotificationRepository, build_repository

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
DEFAULT_SINCE_LIMIT = 10


def _clamp(limit: Optional[int], default: int) -> int:
	if limit is None:
		return default
	return max(1, min(MAX_LIMIT, int(limit)))


class NotificationService:
	def __init__(self, repository: NotificationRepository | None = None) -> None:
		self._repo = repository or build_repository()

	@property
	def repository(self) -> NotificationRepository:
		return self._repo

	async def create_like_notification(
		self,
		actor_id: str,
		recipient_id: str,
		post_id: str,
		actor_name: str,
	) -> Optional[Notification]:
		return await self._create(NotificationType.LIKE, actor_id, recipient_id, actor_name, post_id=post_id)

	async def create_comment_notification(
		self,
		actor_id: str,
		recipient_id: str,
		post_id: str,
		actor_name: str,
	) -> Optional[Notification]:
		return await self._create(NotificationType.COMMENT, actor_id, recipient_id, actor_name, post_id=post_id)

	async def create_follow_notification(
		self,
		actor_id: str,
		recipient_id: str,
		actor_name: str,
	) -> Optional[Notification]:
		return await self._create(NotificationType.FOLLOW, actor_id, recipient_id, actor_name)

	async def get_user_notifications(self, user_id: str, limit: Optional[int] = DEFAULT_LIMIT) -> List[Notification]:
		"""Most recent first."""
		return await self._repo.list_for_user(user_id, limit=_clamp(limit, DEFAULT_LIMIT))

	async def get_unread_count(self, user_id: str) -> int:
		return await self._repo.count_unread(user_id)

	async def mark_as_read(self, notification_id: str, user_id: str) -> bool:
		"""Only the recipient can mark a notification; returns whether anything changed."""
		return await self._repo.mark_read(notification_id, user_id)

	async def mark_all_as_read(self, user_id: str) -> int:
		return await self._repo.mark_all_read(user_id)

	async def get_notifications_since(
		self,
		user_id: str,
		since: datetime,
		limit: Optional[int] = DEFAULT_SINCE_LIMIT,
	) -> List[Notification]:
		return await self._repo.list_since(user_id, since, limit=_clamp(limit, DEFAULT_SINCE_LIMIT))

	# Entry points for the posts/users collaborators: persist, then push live.

	async def notify_like(self, actor_id: str, recipient_id: str, post_id: str, actor_name: str) -> Optional[Notification]:
		notification = await self.create_like_notification(actor_id, recipient_id, post_id, actor_name)
		await self._push(notification)
		return notification

	async def notify_comment(
		self,
		actor_id: str,
		recipient_id: str,
		post_id: str,
		actor_name: str,
	) -> Optional[Notification]:
		notification = await self.create_comment_notification(actor_id, recipient_id, post_id, actor_name)
		await self._push(notification)
		return notification

	async def notify_follow(self, actor_id: str, recipient_id: str, actor_name: str) -> Optional[Notification]:
		notification = await self.create_follow_notification(actor_id, recipient_id, actor_name)
		await self._push(notification)
		return notification

	async def _create(
		self,
		kind: NotificationType,
		actor_id: str,
		recipient_id: str,
		actor_name: str,
		*,
		post_id: Optional[str] = None,
	) -> Optional[Notification]:
		if str(actor_id) == str(recipient_id):
			obs_metrics.notification_persisted(kind.value, "self_skipped")
			return None
		notification = await self._repo.create(
			kind=kind,
			message=render_message(kind, actor_name),
			recipient_id=str(recipient_id),
			actor_id=str(actor_id),
			post_id=str(post_id) if post_id is not None else None,
			created_at=datetime.now(timezone.utc),
		)
		obs_metrics.notification_persisted(kind.value, "created")
		return notification

	async def _push(self, notification: Optional[Notification]) -> None:
		if notification is None:
			return
		from . import sockets

		try:
			await sockets.send_notification_to_user(notification.recipient_id, notification)
		except Exception:
			# The feed action already succeeded; live delivery is best effort.
			logger.warning(
				"notification push failed",
				extra={"notification_id": notification.id, "recipient_id": notification.recipient_id},
				exc_info=True,
			)
