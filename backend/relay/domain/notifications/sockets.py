"""Socket.IO namespace for notification delivery."""

from __future__ import annotations

from typing import Optional

from relay.realtime.namespace import GatewayNamespace

from .gateway import NotificationGateway
from .models import Notification

_namespace: "NotificationNamespace" | None = None


class NotificationNamespace(GatewayNamespace):
	gateway: NotificationGateway

	def __init__(self, gateway: Optional[NotificationGateway] = None) -> None:
		super().__init__(gateway or NotificationGateway())


def set_namespace(namespace: Optional[NotificationNamespace]) -> None:
	global _namespace
	_namespace = namespace


def get_gateway() -> NotificationGateway:
	if _namespace is None:
		raise RuntimeError("notification namespace not registered")
	return _namespace.gateway


async def send_notification_to_user(user_id: str, notification: Notification) -> int:
	if _namespace is None:
		return 0
	return await _namespace.gateway.send_notification_to_user(user_id, notification)
