"""Domain models for feed notifications."""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional


class NotificationType(str, enum.Enum):
	LIKE = "like"
	COMMENT = "comment"
	FOLLOW = "follow"


@dataclass(slots=True)
class Notification:
	id: str
	type: NotificationType
	message: str
	recipient_id: str
	actor_id: Optional[str]
	post_id: Optional[str]
	is_read: bool
	created_at: datetime

	def mark_read(self) -> "Notification":
		return self if self.is_read else replace(self, is_read=True)


def render_message(kind: NotificationType, actor_name: str) -> str:
	actor = (actor_name or "").strip() or "Someone"
	if kind is NotificationType.LIKE:
		return f"{actor} liked your post"
	if kind is NotificationType.COMMENT:
		return f"{actor} commented on your post"
	return f"{actor} started following you"
