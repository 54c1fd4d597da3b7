"""Central registry for Prometheus metrics used across the realtime backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"relay_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"relay_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"relay_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"relay_socketio_events_total",
	"Socket.IO events handled or emitted per namespace",
	["namespace", "event"],
)

SOCKET_AUTH_REJECTS = Counter(
	"relay_socketio_auth_rejects_total",
	"Socket.IO connections refused during authentication",
	["namespace"],
)

SOCKET_EVICTIONS = Counter(
	"relay_socketio_evictions_total",
	"Connections closed because the same user connected again",
	["namespace"],
)

SOCKET_FRAMES_DROPPED = Counter(
	"relay_socketio_frames_dropped_total",
	"Outbound frames dropped by the per-socket backpressure policy",
	["namespace"],
)

SCOPED_ERRORS = Counter(
	"relay_scoped_errors_total",
	"Error events sent back to a single connection",
	["namespace", "kind"],
)

PRESENCE_ONLINE = Gauge(
	"relay_presence_online_users",
	"Users with a registered connection",
	["namespace"],
)

CHAT_SEND = Counter(
	"relay_chat_messages_sent_total",
	"Chat messages persisted",
)

CHAT_READ_UPDATES = Counter(
	"relay_chat_read_updates_total",
	"Read receipts recorded",
	["scope"],
)

CHAT_DELETED = Counter(
	"relay_chat_messages_deleted_total",
	"Chat messages removed by their sender",
)

CHAT_TYPING = Counter(
	"relay_chat_typing_events_total",
	"Typing indicator transitions",
	["state"],
)

NOTIFICATION_PERSISTED = Counter(
	"relay_notifications_persisted_total",
	"Notifications persisted or skipped",
	["type", "result"],
)

NOTIFICATION_PUSHED = Counter(
	"relay_notifications_pushed_total",
	"Notifications pushed to live connections",
	["channel"],
)

STORAGE_FAILURES = Counter(
	"relay_storage_failures_total",
	"Message store operations that failed",
	["store"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def socket_auth_rejected(namespace: str) -> None:
	SOCKET_AUTH_REJECTS.labels(namespace=namespace).inc()


def socket_evicted(namespace: str) -> None:
	SOCKET_EVICTIONS.labels(namespace=namespace).inc()


def socket_frame_dropped(namespace: str) -> None:
	SOCKET_FRAMES_DROPPED.labels(namespace=namespace).inc()


def scoped_error(namespace: str, kind: str) -> None:
	SCOPED_ERRORS.labels(namespace=namespace, kind=kind).inc()


def presence_online(namespace: str, count: int) -> None:
	PRESENCE_ONLINE.labels(namespace=namespace).set(count)


def inc_chat_send() -> None:
	CHAT_SEND.inc()


def inc_chat_read(scope: str, count: int = 1) -> None:
	if count > 0:
		CHAT_READ_UPDATES.labels(scope=scope).inc(count)


def inc_chat_deleted() -> None:
	CHAT_DELETED.inc()


def inc_chat_typing(state: str) -> None:
	CHAT_TYPING.labels(state=state).inc()


def notification_persisted(kind: str, result: str) -> None:
	NOTIFICATION_PERSISTED.labels(type=kind, result=result).inc()


def notification_pushed(channel: str) -> None:
	NOTIFICATION_PUSHED.labels(channel=channel).inc()


def storage_failure(store: str) -> None:
	STORAGE_FAILURES.labels(store=store).inc()
