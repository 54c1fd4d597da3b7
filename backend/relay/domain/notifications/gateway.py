"""Notification delivery over the /notifications namespace."""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from relay.domain.errors import RelayError
from relay.infra.auth import AuthenticatedUser
from relay.obs import metrics as obs_metrics
from relay.realtime.connection import ConnectionHandle
from relay.realtime.gateway import Gateway, parse_payload
from relay.realtime.presence import PresenceRegistry
from relay.realtime.rooms import RoomMembership, UserRoom
from relay.settings import settings

from .models import Notification
from .schemas import GetNotificationsRequest, NotificationRef, NotificationResponse
from .service import NotificationService

logger = logging.getLogger(__name__)

NAMESPACE = "/notifications"


def _wire(notification: Notification) -> dict:
	return NotificationResponse.from_model(notification).to_wire()


def _list_payload(notifications: List[Notification]) -> dict:
	return {"notifications": [_wire(n) for n in notifications]}


class NotificationGateway(Gateway):
	"""Pushes the unread count and recent notifications on connect, then catches up.

	The catch-up replays unread notifications from the last
	``notification_catchup_hours`` one at a time so the client can animate
	each arrival. It runs as its own task and dies with the connection.
	"""

	namespace = NAMESPACE

	def __init__(
		self,
		service: Optional[NotificationService] = None,
		*,
		presence: Optional[PresenceRegistry] = None,
		membership: Optional[RoomMembership] = None,
		evict_previous: Optional[bool] = None,
	) -> None:
		super().__init__(presence=presence, membership=membership, evict_previous=evict_previous)
		self.service = service or NotificationService()
		self._catchup: Dict[str, asyncio.Task] = {}
		self._handlers = {
			"getNotifications": self._get_notifications,
			"markAsRead": self._mark_as_read,
			"markAllAsRead": self._mark_all_as_read,
		}

	async def on_joined(self, handle: ConnectionHandle, user: AuthenticatedUser) -> None:
		try:
			count = await self.service.get_unread_count(user.id)
			recent = await self.service.get_user_notifications(user.id, limit=settings.notification_initial_limit)
		except RelayError as exc:
			self.reply_error(handle, exc, "connect")
			return
		if not handle.is_open:
			return
		handle.send("unreadCount", {"count": count})
		handle.send("notifications", _list_payload(recent))
		task = asyncio.get_running_loop().create_task(
			self._catch_up(handle, user.id), name=f"notification-catchup:{handle.sid}"
		)
		self._catchup[handle.sid] = task
		task.add_done_callback(functools.partial(self._forget_catch_up, handle.sid))

	async def on_closed(self, handle: ConnectionHandle) -> None:
		task = self._catchup.pop(handle.sid, None)
		if task is None or task.done():
			return
		task.cancel()
		try:
			await task
		except asyncio.CancelledError:
			pass

	def _forget_catch_up(self, sid: str, task: asyncio.Task) -> None:
		if self._catchup.get(sid) is task:
			del self._catchup[sid]

	async def wait_for_catch_up(self, sid: str) -> None:
		task = self._catchup.get(sid)
		if task is not None:
			await asyncio.gather(task, return_exceptions=True)

	async def send_notification_to_user(self, user_id: str, notification: Notification) -> int:
		"""Push a freshly created notification and the new unread count to the user room."""
		room = UserRoom(user_id)
		delivered = await self.membership.broadcast(room, "newNotification", {"notification": _wire(notification)})
		count = await self.service.get_unread_count(user_id)
		await self.membership.broadcast(room, "unreadCount", {"count": count})
		obs_metrics.socket_event(NAMESPACE, "newNotification")
		obs_metrics.notification_pushed("live" if delivered else "offline")
		return delivered

	async def _catch_up(self, handle: ConnectionHandle, user_id: str) -> None:
		try:
			since = datetime.now(timezone.utc) - timedelta(hours=settings.notification_catchup_hours)
			recent = await self.service.get_notifications_since(user_id, since)
			pending = [n for n in recent if not n.is_read][: settings.notification_catchup_max]
			for index, notification in enumerate(pending):
				if index:
					await asyncio.sleep(settings.notification_catchup_delay_seconds)
				if not handle.send("newNotification", {"notification": _wire(notification)}):
					return
				obs_metrics.notification_pushed("catch_up")
		except asyncio.CancelledError:
			raise
		except Exception:
			logger.warning("notification catch-up failed", extra={"user_id": user_id}, exc_info=True)

	async def _get_notifications(self, handle: ConnectionHandle, payload: Any) -> None:
		request = parse_payload(GetNotificationsRequest, payload)
		notifications = await self.service.get_user_notifications(handle.user_id, limit=request.limit)
		handle.send("notifications", _list_payload(notifications))

	async def _mark_as_read(self, handle: ConnectionHandle, payload: Any) -> None:
		ref = parse_payload(NotificationRef, payload)
		await self.service.mark_as_read(ref.notification_id, handle.user_id)
		count = await self.service.get_unread_count(handle.user_id)
		handle.send("unreadCount", {"count": count})

	async def _mark_all_as_read(self, handle: ConnectionHandle, payload: Any) -> None:
		await self.service.mark_all_as_read(handle.user_id)
		handle.send("unreadCount", {"count": 0})
