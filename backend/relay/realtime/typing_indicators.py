"""Ephemeral typing indicators with per-key idle timers."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

ExpireCallback = Callable[[str, str], Awaitable[None]]


class TypingTracker:
	"""conversation id -> {user id: timer}.

	Every ``start`` resets the timer for that (conversation, user) pair. When
	it fires the entry is removed and ``on_expire`` runs. Only users who are
	currently typing hold memory.
	"""

	def __init__(self, idle_seconds: float, on_expire: Optional[ExpireCallback] = None) -> None:
		self.idle_seconds = idle_seconds
		self._on_expire = on_expire
		self._timers: Dict[str, Dict[str, asyncio.TimerHandle]] = {}
		self._tasks: Set[asyncio.Task] = set()

	def set_on_expire(self, callback: Optional[ExpireCallback]) -> None:
		self._on_expire = callback

	def start(self, conversation_id: str, user_id: str) -> bool:
		"""Mark the user as typing; returns True when they were not typing before."""
		loop = asyncio.get_running_loop()
		timers = self._timers.setdefault(conversation_id, {})
		existing = timers.pop(user_id, None)
		if existing is not None:
			existing.cancel()
		timers[user_id] = loop.call_later(self.idle_seconds, self._expire, conversation_id, user_id)
		return existing is None

	def stop(self, conversation_id: str, user_id: str) -> bool:
		"""Clear the indicator; returns True when the user was typing."""
		timers = self._timers.get(conversation_id)
		if not timers:
			return False
		handle = timers.pop(user_id, None)
		if not timers:
			self._timers.pop(conversation_id, None)
		if handle is None:
			return False
		handle.cancel()
		return True

	def clear_user(self, user_id: str) -> List[str]:
		"""Drop every indicator held by ``user_id``; returns affected conversations."""
		cleared = [conversation_id for conversation_id, timers in self._timers.items() if user_id in timers]
		for conversation_id in cleared:
			self.stop(conversation_id, user_id)
		return cleared

	def is_typing(self, conversation_id: str, user_id: str) -> bool:
		return user_id in self._timers.get(conversation_id, {})

	def typing_users(self, conversation_id: str) -> Set[str]:
		return set(self._timers.get(conversation_id, {}))

	async def shutdown(self) -> None:
		for timers in self._timers.values():
			for handle in timers.values():
				handle.cancel()
		self._timers.clear()
		tasks = list(self._tasks)
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)

	def _expire(self, conversation_id: str, user_id: str) -> None:
		timers = self._timers.get(conversation_id)
		if not timers or timers.pop(user_id, None) is None:
			return
		if not timers:
			self._timers.pop(conversation_id, None)
		if self._on_expire is None:
			return
		task = asyncio.get_running_loop().create_task(self._run_callback(conversation_id, user_id))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

	async def _run_callback(self, conversation_id: str, user_id: str) -> None:
		try:
			await self._on_expire(conversation_id, user_id)  # type: ignore[misc]
		except Exception:
			logger.warning(
				"typing expiry callback failed conversation=%s user=%s",
				conversation_id,
				user_id,
				exc_info=True,
			)
