"""Logging, request metrics and socket gauges for the relay app."""

from __future__ import annotations

from typing import Iterable

from fastapi import FastAPI

from relay.obs import logging as obs_logging
from relay.obs import metrics, middleware
from relay.settings import settings

_initialised = False


def init(app: FastAPI, *, namespaces: Iterable[str] = ()) -> None:
	global _initialised
	if _initialised or not settings.obs_enabled:
		return
	obs_logging.configure_logging()
	middleware.install(app)
	# Expose zeroed gauges before the first client connects.
	for namespace in namespaces:
		metrics.SOCKET_CLIENTS.labels(namespace=namespace).set(0)
		metrics.presence_online(namespace, 0)
	_initialised = True


__all__ = ["init"]
