"""Socket.IO adapter that feeds a transport-independent gateway."""

from __future__ import annotations

from typing import Any, Dict, Optional

import socketio

from relay.domain.errors import AuthenticationFailure
from relay.realtime.connection import ConnectionHandle
from relay.realtime.gateway import Gateway


class GatewayNamespace(socketio.AsyncNamespace):
	"""Wraps each sid in a ConnectionHandle and routes every event through the gateway.

	Outbound frames leave through the handle's writer task, which calls
	``emit(..., to=sid)``; eviction calls ``disconnect(sid)``.
	"""

	def __init__(self, gateway: Gateway) -> None:
		super().__init__(gateway.namespace)
		self.gateway = gateway
		self._handles: Dict[str, ConnectionHandle] = {}

	async def trigger_event(self, event: str, *args: Any):
		if event in ("connect", "disconnect"):
			return await super().trigger_event(event, *args)
		sid = args[0]
		payload = args[1] if len(args) > 1 else None
		handle = self._handles.get(sid)
		if handle is None:
			await self.emit("error", AuthenticationFailure("not_authenticated").to_payload(event), to=sid)
			return None
		await self.gateway.handle_event(handle, event, payload)
		return None

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		handle = ConnectionHandle(sid, self.namespace, self._send, closer=self._close)
		self._handles[sid] = handle
		try:
			await self.gateway.connect(handle, environ, auth)
		except AuthenticationFailure as exc:
			self._handles.pop(sid, None)
			raise ConnectionRefusedError(exc.to_payload("connect")) from None

	async def on_disconnect(self, sid: str, reason: Optional[str] = None) -> None:
		handle = self._handles.pop(sid, None)
		if handle is not None:
			await self.gateway.disconnect(handle)

	def get_handle(self, sid: str) -> Optional[ConnectionHandle]:
		return self._handles.get(sid)

	async def flush(self) -> None:
		"""Wait for every connection's queued frames to reach the transport."""
		for handle in list(self._handles.values()):
			await handle.flush()

	async def _send(self, event: str, payload: dict, sid: str) -> None:
		await self.emit(event, payload, to=sid)

	async def _close(self, sid: str) -> None:
		await self.disconnect(sid)
