"""Typed broadcast rooms and the membership manager that fans out to them."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Union

from relay.realtime.connection import ConnectionHandle


@dataclass(frozen=True, slots=True)
class UserRoom:
	"""Direct delivery to one user regardless of the active conversation."""

	user_id: str

	@property
	def key(self) -> str:
		return f"user:{self.user_id}"


@dataclass(frozen=True, slots=True)
class ConversationRoom:
	"""Message, typing and read-receipt fan-out for one conversation."""

	conversation_id: str

	@property
	def key(self) -> str:
		return f"conversation:{self.conversation_id}"


Room = Union[UserRoom, ConversationRoom]


class RoomMembership:
	"""Tracks which connections are joined to which rooms."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._members: Dict[Room, Dict[str, ConnectionHandle]] = {}
		self._rooms: Dict[str, Set[Room]] = {}
		self._handles: Dict[str, ConnectionHandle] = {}

	async def join(self, handle: ConnectionHandle, room: Room) -> bool:
		async with self._lock:
			members = self._members.setdefault(room, {})
			if handle.sid in members:
				return False
			members[handle.sid] = handle
			self._rooms.setdefault(handle.sid, set()).add(room)
			self._handles[handle.sid] = handle
			return True

	async def join_many(self, handle: ConnectionHandle, rooms: Iterable[Room]) -> int:
		joined = 0
		for room in rooms:
			if await self.join(handle, room):
				joined += 1
		return joined

	async def leave(self, handle: ConnectionHandle, room: Room) -> bool:
		async with self._lock:
			return self._leave_locked(handle.sid, room)

	async def leave_all(self, handle: ConnectionHandle) -> List[Room]:
		async with self._lock:
			rooms = list(self._rooms.get(handle.sid, ()))
			for room in rooms:
				self._leave_locked(handle.sid, room)
			self._rooms.pop(handle.sid, None)
			self._handles.pop(handle.sid, None)
			return rooms

	async def is_member(self, handle: ConnectionHandle, room: Room) -> bool:
		async with self._lock:
			return handle.sid in self._members.get(room, {})

	async def members(self, room: Room) -> List[ConnectionHandle]:
		async with self._lock:
			return list(self._members.get(room, {}).values())

	async def rooms_of(self, handle: ConnectionHandle) -> Set[Room]:
		async with self._lock:
			return set(self._rooms.get(handle.sid, ()))

	async def broadcast(
		self,
		room: Room,
		event: str,
		payload: dict,
		*,
		exclude: Optional[ConnectionHandle] = None,
	) -> int:
		"""Queue ``event`` on every member of ``room``; returns how many accepted it."""
		targets = await self.members(room)
		return _send_all(targets, event, payload, exclude)

	async def broadcast_all(
		self,
		event: str,
		payload: dict,
		*,
		exclude: Optional[ConnectionHandle] = None,
	) -> int:
		async with self._lock:
			targets = list(self._handles.values())
		return _send_all(targets, event, payload, exclude)

	def _leave_locked(self, sid: str, room: Room) -> bool:
		members = self._members.get(room)
		if not members or sid not in members:
			return False
		del members[sid]
		if not members:
			del self._members[room]
		rooms = self._rooms.get(sid)
		if rooms is not None:
			rooms.discard(room)
		return True


def _send_all(
	targets: Iterable[ConnectionHandle],
	event: str,
	payload: dict,
	exclude: Optional[ConnectionHandle],
) -> int:
	delivered = 0
	for handle in targets:
		if exclude is not None and handle.sid == exclude.sid:
			continue
		if handle.send(event, payload):
			delivered += 1
	return delivered
