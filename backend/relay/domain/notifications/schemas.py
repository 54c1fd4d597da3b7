"""Pydantic schemas for notification events and REST payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from relay.domain.common.schemas import CamelModel

from .models import Notification, NotificationType


class GetNotificationsRequest(CamelModel):
	limit: int = 20


class NotificationRef(CamelModel):
	notification_id: str = Field(..., min_length=1)


class NotificationResponse(CamelModel):
	id: str
	type: NotificationType
	message: str
	recipient_id: str
	actor_id: Optional[str] = None
	post_id: Optional[str] = None
	is_read: bool
	created_at: datetime

	@classmethod
	def from_model(cls, notification: Notification) -> "NotificationResponse":
		return cls(
			id=notification.id,
			type=notification.type,
			message=notification.message,
			recipient_id=notification.recipient_id,
			actor_id=notification.actor_id,
			post_id=notification.post_id,
			is_read=notification.is_read,
			created_at=notification.created_at,
		)


class UnreadCountResponse(CamelModel):
	count: int
