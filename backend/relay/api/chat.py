"""FastAPI endpoints for conversations and messages.

Writes made over HTTP are fanned out to live sockets through the chat gateway,
so a REST client and a socket client see the same events.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status

from relay.domain.chat import sockets as chat_sockets
from relay.domain.chat.gateway import ChatGateway
from relay.domain.chat.schemas import (
	ConversationResponse,
	CreateConversationRequest,
	MessageResponse,
	SendMessageRequest,
)
from relay.domain.chat.service import ChatService
from relay.domain.common.schemas import OkResponse
from relay.infra.auth import AuthenticatedUser, get_current_user
from relay.realtime import fanout

router = APIRouter(prefix="/chat", tags=["chat"])


def get_gateway() -> ChatGateway:
	return chat_sockets.get_gateway()


def get_service(gateway: ChatGateway = Depends(get_gateway)) -> ChatService:
	return gateway.service


@router.post("/conversations", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation_endpoint(
	payload: CreateConversationRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	gateway: ChatGateway = Depends(get_gateway),
) -> ConversationResponse:
	conversation = await gateway.service.create_conversation(
		auth_user.id,
		payload.participant_ids,
		name=payload.name,
		is_group=payload.is_group,
	)
	await gateway.attach_participants(conversation)
	return ConversationResponse.from_model(conversation)


@router.get("/conversations", response_model=List[ConversationResponse])
async def list_conversations_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_service),
) -> List[ConversationResponse]:
	summaries = await service.get_user_conversations(auth_user.id)
	return [ConversationResponse.from_summary(summary) for summary in summaries]


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation_endpoint(
	conversation_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_service),
) -> ConversationResponse:
	conversation = await service.get_conversation_by_id(conversation_id, auth_user.id)
	return ConversationResponse.from_model(conversation)


@router.get("/conversations/{conversation_id}/messages", response_model=List[MessageResponse])
async def list_messages_endpoint(
	conversation_id: str,
	limit: int = Query(default=50),
	offset: int = Query(default=0, ge=0),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_service),
) -> List[MessageResponse]:
	messages = await service.get_messages(conversation_id, auth_user.id, limit=limit, offset=offset)
	return [MessageResponse.from_model(message, viewer_id=auth_user.id) for message in messages]


@router.post("/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message_endpoint(
	payload: SendMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	gateway: ChatGateway = Depends(get_gateway),
) -> MessageResponse:
	message = await gateway.service.send_message(
		auth_user.id,
		payload.conversation_id,
		payload.content,
		payload.type,
	)
	await gateway.publish(fanout.MessageSent(message))
	return MessageResponse.from_model(message, viewer_id=auth_user.id)


@router.post("/messages/{message_id}/read", response_model=OkResponse)
async def mark_message_read_endpoint(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	gateway: ChatGateway = Depends(get_gateway),
) -> OkResponse:
	message = await gateway.service.mark_message_as_read(message_id, auth_user.id)
	await gateway.publish(fanout.MessageRead(message.id, message.conversation_id, auth_user.id))
	return OkResponse()


@router.post("/conversations/{conversation_id}/read-all", response_model=OkResponse)
async def mark_all_read_endpoint(
	conversation_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	gateway: ChatGateway = Depends(get_gateway),
) -> OkResponse:
	count = await gateway.service.mark_all_messages_as_read(conversation_id, auth_user.id)
	await gateway.publish(fanout.AllMessagesRead(conversation_id, auth_user.id, count))
	return OkResponse()


@router.delete("/messages/{message_id}", response_model=OkResponse)
async def delete_message_endpoint(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	gateway: ChatGateway = Depends(get_gateway),
) -> OkResponse:
	message = await gateway.service.delete_message(message_id, auth_user.id)
	await gateway.publish(fanout.MessageDeleted(message.id, message.conversation_id, auth_user.id))
	return OkResponse()


@router.get("/direct/{user_id}", response_model=ConversationResponse)
async def direct_conversation_endpoint(
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	gateway: ChatGateway = Depends(get_gateway),
) -> ConversationResponse:
	conversation = await gateway.service.get_or_create_direct_conversation(auth_user.id, user_id)
	await gateway.attach_participants(conversation)
	return ConversationResponse.from_model(conversation)
