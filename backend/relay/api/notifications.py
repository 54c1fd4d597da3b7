"""FastAPI endpoints for feed notifications."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query

from relay.domain.common.schemas import OkResponse
from relay.domain.notifications import sockets as notification_sockets
from relay.domain.notifications.schemas import NotificationResponse, UnreadCountResponse
from relay.domain.notifications.service import NotificationService
from relay.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_service() -> NotificationService:
	return notification_sockets.get_gateway().service


@router.get("", response_model=List[NotificationResponse])
async def list_notifications_endpoint(
	limit: int = Query(default=20),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: NotificationService = Depends(get_service),
) -> List[NotificationResponse]:
	notifications = await service.get_user_notifications(auth_user.id, limit=limit)
	return [NotificationResponse.from_model(n) for n in notifications]


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: NotificationService = Depends(get_service),
) -> UnreadCountResponse:
	return UnreadCountResponse(count=await service.get_unread_count(auth_user.id))


@router.post("/read-all", response_model=OkResponse)
async def mark_all_read_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: NotificationService = Depends(get_service),
) -> OkResponse:
	await service.mark_all_as_read(auth_user.id)
	return OkResponse()


@router.post("/{notification_id}/read", response_model=OkResponse)
async def mark_read_endpoint(
	notification_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: NotificationService = Depends(get_service),
) -> OkResponse:
	await service.mark_as_read(notification_id, auth_user.id)
	return OkResponse()
