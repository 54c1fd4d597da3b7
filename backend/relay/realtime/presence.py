"""Process-local presence registry: user id -> live connection handle."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from relay.obs import metrics as obs_metrics
from relay.realtime.connection import ConnectionHandle


class PresenceRegistry:
	"""Single source of truth for "is this user reachable right now".

	One entry per user, last connection wins. Whether the replaced connection
	gets closed is the caller's decision (see ``settings.presence_evict_previous``).
	"""

	def __init__(self, namespace: str) -> None:
		self.namespace = namespace
		self._lock = asyncio.Lock()
		self._entries: Dict[str, ConnectionHandle] = {}

	async def register(self, user_id: str, handle: ConnectionHandle) -> Optional[ConnectionHandle]:
		"""Point ``user_id`` at ``handle`` and return the handle it replaced."""
		async with self._lock:
			previous = self._entries.get(user_id)
			self._entries[user_id] = handle
			count = len(self._entries)
		obs_metrics.presence_online(self.namespace, count)
		if previous is handle:
			return None
		return previous

	async def unregister(self, user_id: str, handle: ConnectionHandle) -> bool:
		"""Remove the entry only if it still belongs to ``handle``."""
		async with self._lock:
			current = self._entries.get(user_id)
			if current is not handle:
				return False
			del self._entries[user_id]
			count = len(self._entries)
		obs_metrics.presence_online(self.namespace, count)
		return True

	async def lookup(self, user_id: str) -> Optional[ConnectionHandle]:
		async with self._lock:
			return self._entries.get(user_id)

	async def is_online(self, user_id: str) -> bool:
		async with self._lock:
			return user_id in self._entries

	async def online_user_ids(self) -> List[str]:
		async with self._lock:
			return list(self._entries)
