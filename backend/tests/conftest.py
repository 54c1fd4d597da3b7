import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

# Settings are read at import time; tests run against the in-process stores.
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("ENV", "dev")

from relay.domain.chat import sockets as chat_sockets
from relay.domain.chat.gateway import ChatGateway
from relay.domain.chat.repo import MemoryChatRepository
from relay.domain.chat.service import ChatService
from relay.domain.chat.sockets import ChatNamespace
from relay.domain.notifications import sockets as notification_sockets
from relay.domain.notifications.gateway import NotificationGateway
from relay.domain.notifications.repo import MemoryNotificationRepository
from relay.domain.notifications.service import NotificationService
from relay.domain.notifications.sockets import NotificationNamespace
from relay.infra import postgres
from relay.main import app, chat_namespace, notification_namespace
from relay.settings import settings

USERS = ("user-a", "user-b", "user-c", "user-d")


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from relay.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API and socket tests authenticate via the X-User-Id header, which is only
	accepted in dev mode.
	"""
	original_env = settings.environment
	original_backend = settings.store_backend
	original_delay = settings.notification_catchup_delay_seconds
	settings.environment = "dev"
	settings.store_backend = "memory"
	settings.notification_catchup_delay_seconds = 0.0
	try:
		yield
	finally:
		settings.environment = original_env
		settings.store_backend = original_backend
		settings.notification_catchup_delay_seconds = original_delay


@pytest.fixture
def chat_service():
	return ChatService(repository=MemoryChatRepository(known_users=USERS))


@pytest.fixture
def notification_service():
	return NotificationService(repository=MemoryNotificationRepository())


@pytest_asyncio.fixture
async def chat_gateway(chat_service):
	gateway = ChatGateway(chat_service, typing=None, evict_previous=True)
	chat_sockets.set_namespace(ChatNamespace(gateway))
	try:
		yield gateway
	finally:
		await gateway.shutdown()
		chat_sockets.set_namespace(chat_namespace)


@pytest_asyncio.fixture
async def notification_gateway(notification_service):
	gateway = NotificationGateway(notification_service, evict_previous=True)
	notification_sockets.set_namespace(NotificationNamespace(gateway))
	try:
		yield gateway
	finally:
		await gateway.shutdown()
		notification_sockets.set_namespace(notification_namespace)


@pytest_asyncio.fixture
async def api_client(chat_gateway, notification_gateway):
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
