"""Per-connection handles with a bounded outbound queue."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional

from relay.obs import metrics as obs_metrics
from relay.settings import settings

logger = logging.getLogger(__name__)

Sender = Callable[[str, dict, str], Awaitable[None]]
Closer = Callable[[str], Awaitable[None]]


class ConnectionState(str, enum.Enum):
	CONNECTING = "connecting"
	AUTHENTICATING = "authenticating"
	JOINED = "joined"
	DISCONNECTED = "disconnected"


class ConnectionHandle:
	"""A live socket as seen by presence, rooms and fan-out.

	Frames are queued and written by a single writer task so a slow peer never
	blocks whoever is broadcasting to it. When the queue is full the oldest
	frame is dropped.
	"""

	def __init__(
		self,
		sid: str,
		namespace: str,
		sender: Sender,
		*,
		closer: Optional[Closer] = None,
		queue_size: Optional[int] = None,
	) -> None:
		self.sid = sid
		self.namespace = namespace
		self.user_id: Optional[str] = None
		self.state = ConnectionState.CONNECTING
		self.dropped = 0
		self._sender = sender
		self._closer = closer
		self._queue: asyncio.Queue[tuple[str, dict]] = asyncio.Queue(
			maxsize=max(1, queue_size or settings.socket_send_queue_size)
		)
		self._writer: Optional[asyncio.Task] = None
		self._broken = False

	def __repr__(self) -> str:
		return f"ConnectionHandle(sid={self.sid!r}, user_id={self.user_id!r}, state={self.state.value})"

	@property
	def is_open(self) -> bool:
		return self.state is not ConnectionState.DISCONNECTED and not self._broken

	def send(self, event: str, payload: dict) -> bool:
		"""Queue a frame without waiting on the transport."""
		if not self.is_open:
			return False
		if self._queue.full():
			try:
				self._queue.get_nowait()
				self._queue.task_done()
			except asyncio.QueueEmpty:
				pass
			self.dropped += 1
			obs_metrics.socket_frame_dropped(self.namespace)
			logger.debug("outbound frame dropped sid=%s event=%s", self.sid, event)
		self._queue.put_nowait((event, payload))
		self._ensure_writer()
		return True

	async def flush(self) -> None:
		"""Wait until every queued frame has been handed to the transport."""
		if self._writer is None or self._writer.done():
			return
		await self._queue.join()

	async def evict(self) -> None:
		"""Ask the transport to drop this connection."""
		if self._closer is None:
			return
		try:
			await self._closer(self.sid)
		except Exception:
			logger.warning("evict failed sid=%s", self.sid, exc_info=True)

	async def close(self) -> None:
		self.state = ConnectionState.DISCONNECTED
		writer = self._writer
		self._writer = None
		if writer is not None and not writer.done():
			writer.cancel()
			try:
				await writer
			except asyncio.CancelledError:
				pass
		self._discard_pending()

	def _ensure_writer(self) -> None:
		if self._writer is None or self._writer.done():
			self._writer = asyncio.get_running_loop().create_task(
				self._drain(), name=f"socket-writer:{self.namespace}:{self.sid}"
			)

	async def _drain(self) -> None:
		while True:
			event, payload = await self._queue.get()
			try:
				await self._sender(event, payload, self.sid)
			except asyncio.CancelledError:
				self._queue.task_done()
				raise
			except Exception:
				# Dead transport: stop writing for this socket, the disconnect handler cleans up.
				logger.warning("socket write failed sid=%s event=%s", self.sid, event, exc_info=True)
				self._broken = True
				self._queue.task_done()
				self._discard_pending()
				return
			self._queue.task_done()

	def _discard_pending(self) -> None:
		while True:
			try:
				self._queue.get_nowait()
			except asyncio.QueueEmpty:
				return
			self._queue.task_done()
