"""Socket.IO namespace for chat transport."""

from __future__ import annotations

from typing import Optional

from relay.realtime.namespace import GatewayNamespace

from .gateway import ChatGateway

_namespace: "ChatNamespace" | None = None


class ChatNamespace(GatewayNamespace):
	gateway: ChatGateway

	def __init__(self, gateway: Optional[ChatGateway] = None) -> None:
		super().__init__(gateway or ChatGateway())


def set_namespace(namespace: Optional[ChatNamespace]) -> None:
	global _namespace
	_namespace = namespace


def get_gateway() -> ChatGateway:
	if _namespace is None:
		raise RuntimeError("chat namespace not registered")
	return _namespace.gateway
