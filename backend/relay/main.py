"""ASGI entry point: FastAPI app with the chat and notification Socket.IO namespaces."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relay.api import chat, notifications, ops
from relay.api.errors import install_error_handlers
from relay.domain.chat.sockets import ChatNamespace
from relay.domain.chat.sockets import set_namespace as set_chat_namespace
from relay.domain.notifications.sockets import NotificationNamespace
from relay.domain.notifications.sockets import set_namespace as set_notification_namespace
from relay.infra import postgres
from relay.infra.redis import close_redis
from relay.obs import init as obs_init
from relay.settings import allowed_origins, settings

logger = logging.getLogger(__name__)

chat_namespace = ChatNamespace()
notification_namespace = NotificationNamespace()
set_chat_namespace(chat_namespace)
set_notification_namespace(notification_namespace)


async def _ensure_schemas() -> None:
	for repository in (
		chat_namespace.gateway.service.repository,
		notification_namespace.gateway.service.repository,
	):
		ensure_schema = getattr(repository, "ensure_schema", None)
		if callable(ensure_schema):
			await ensure_schema()


@asynccontextmanager
async def lifespan(app: FastAPI):
	if settings.store_backend == "postgres":
		await postgres.init_pool()
		await _ensure_schemas()
	logger.info("relay_started", extra={"store_backend": settings.store_backend})
	try:
		yield
	finally:
		await chat_namespace.gateway.shutdown()
		await notification_namespace.gateway.shutdown()
		await postgres.close_pool()
		await close_redis()


app = FastAPI(title="Relay Realtime", lifespan=lifespan)
install_error_handlers(app)

allow_origins = allowed_origins()

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

# Use the same allowed origins for Socket.IO as for the REST API
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
sio.register_namespace(chat_namespace)
sio.register_namespace(notification_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs_init(app, namespaces=(chat_namespace.namespace, notification_namespace.namespace))

app.include_router(chat.router)
app.include_router(notifications.router)
app.include_router(ops.router)
