"""Connection lifecycle shared by the chat and notification gateways.

A gateway authenticates a handle once, registers it in presence (evicting the
previous connection of the same user when configured), joins it to its user
room and then dispatches inbound events by name. Subclasses fill in the
``on_*`` hooks and the handler table.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from relay.domain.errors import AuthenticationFailure, RelayError, ValidationFailure
from relay.infra.auth import AuthenticatedUser, authenticate_handshake
from relay.obs import metrics as obs_metrics
from relay.obs.logging import bind_context, reset_context
from relay.realtime.connection import ConnectionHandle, ConnectionState
from relay.realtime.presence import PresenceRegistry
from relay.realtime.rooms import RoomMembership, UserRoom
from relay.settings import settings

logger = logging.getLogger(__name__)

_Model = TypeVar("_Model", bound=BaseModel)
Handler = Callable[[ConnectionHandle, Any], Awaitable[None]]


def parse_payload(model: Type[_Model], payload: Any) -> _Model:
	"""Validate an inbound payload, mapping pydantic errors to ValidationFailure."""
	try:
		return model.model_validate(payload if payload is not None else {})
	except ValidationError as exc:
		raise ValidationFailure("invalid_payload") from exc


class Gateway:
	namespace = "/"

	def __init__(
		self,
		*,
		presence: Optional[PresenceRegistry] = None,
		membership: Optional[RoomMembership] = None,
		evict_previous: Optional[bool] = None,
	) -> None:
		self.presence = presence or PresenceRegistry(self.namespace)
		self.membership = membership or RoomMembership()
		self.evict_previous = settings.presence_evict_previous if evict_previous is None else evict_previous
		self._handles: Dict[str, ConnectionHandle] = {}
		self._handlers: Dict[str, Handler] = {}

	async def connect(
		self,
		handle: ConnectionHandle,
		environ: Mapping,
		auth: Optional[Mapping] = None,
	) -> AuthenticatedUser:
		"""Authenticate ``handle`` and move it to JOINED.

		Raises AuthenticationFailure; the handle is already closed when it does.
		"""
		handle.state = ConnectionState.AUTHENTICATING
		try:
			user = authenticate_handshake(environ, auth)
		except AuthenticationFailure:
			obs_metrics.socket_auth_rejected(self.namespace)
			await handle.close()
			raise

		handle.user_id = user.id
		tokens = bind_context(user_id=user.id, sid=handle.sid, namespace=self.namespace)
		try:
			previous = await self.presence.register(user.id, handle)
			if previous is not None and self.evict_previous:
				await self._evict(previous)
			await self.membership.join(handle, UserRoom(user.id))
			await self.on_joining(handle, user)
			# The client may have dropped while storage was answering.
			if not handle.is_open:
				await self._abandon(handle, user.id)
				return user
			handle.state = ConnectionState.JOINED
			self._handles[handle.sid] = handle
			obs_metrics.socket_connected(self.namespace)
			await self.on_joined(handle, user)
			logger.info("socket_connected", extra={"replaced": previous is not None})
		finally:
			reset_context(tokens)
		return user

	async def disconnect(self, handle: ConnectionHandle) -> None:
		was_joined = self._handles.pop(handle.sid, None) is not None
		await handle.close()
		await self.membership.leave_all(handle)
		await self.on_closed(handle)
		if was_joined:
			obs_metrics.socket_disconnected(self.namespace)
		user_id = handle.user_id
		if user_id is None:
			return
		if not await self.presence.unregister(user_id, handle):
			# A newer connection owns this user.
			return
		await self.on_offline(handle, user_id)
		logger.info(
			"socket_disconnected",
			extra={"user_id": user_id, "sid": handle.sid, "namespace": self.namespace},
		)

	async def handle_event(self, handle: ConnectionHandle, event: str, payload: Any = None) -> None:
		"""Run one inbound event. Errors become a scoped ``error`` frame for the caller."""
		obs_metrics.socket_event(self.namespace, event)
		tokens = bind_context(user_id=handle.user_id, sid=handle.sid, namespace=self.namespace)
		try:
			if handle.state is not ConnectionState.JOINED:
				raise AuthenticationFailure("not_authenticated")
			handler = self._handlers.get(event)
			if handler is None:
				raise ValidationFailure("unknown_event")
			await handler(handle, payload)
		except RelayError as exc:
			self.reply_error(handle, exc, event)
		finally:
			reset_context(tokens)

	async def shutdown(self) -> None:
		for handle in list(self._handles.values()):
			await handle.close()
			await self.on_closed(handle)
		self._handles.clear()

	async def is_user_online(self, user_id: str) -> bool:
		return await self.presence.is_online(user_id)

	async def send_to_user(self, user_id: str, event: str, payload: dict) -> int:
		obs_metrics.socket_event(self.namespace, event)
		return await self.membership.broadcast(UserRoom(user_id), event, payload)

	def reply_error(self, handle: ConnectionHandle, exc: RelayError, action: str) -> None:
		obs_metrics.scoped_error(self.namespace, exc.kind)
		logger.info("scoped_error", extra={"kind": exc.kind, "detail": exc.detail, "action": action})
		handle.send("error", exc.to_payload(action))

	# Hooks

	async def on_joining(self, handle: ConnectionHandle, user: AuthenticatedUser) -> None:
		"""Runs before the handle is JOINED; join extra rooms here."""

	async def on_joined(self, handle: ConnectionHandle, user: AuthenticatedUser) -> None:
		"""Runs once the handle is JOINED; send the initial frames here."""

	async def on_closed(self, handle: ConnectionHandle) -> None:
		"""Runs for every closed handle, current presence entry or not."""

	async def on_offline(self, handle: ConnectionHandle, user_id: str) -> None:
		"""Runs when the closed handle was the user's presence entry."""

	async def _evict(self, previous: ConnectionHandle) -> None:
		if self._handles.pop(previous.sid, None) is not None:
			obs_metrics.socket_disconnected(self.namespace)
		obs_metrics.socket_evicted(self.namespace)
		await self.membership.leave_all(previous)
		await previous.close()
		await self.on_closed(previous)
		await previous.evict()
		logger.info("socket_evicted", extra={"evicted_sid": previous.sid})

	async def _abandon(self, handle: ConnectionHandle, user_id: str) -> None:
		"""Undo a half-finished connect for a handle that closed mid-way."""
		await self.membership.leave_all(handle)
		await self.presence.unregister(user_id, handle)
		logger.info("socket_closed_while_joining")
