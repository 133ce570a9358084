from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Annotated, Optional
from datetime import datetime
from uuid import UUID

from portal.core.database import get_db
from portal.api.deps import CurrentIdentity
from portal.models.enums import MessageType
from portal.realtime.gateway import MESSAGES_CHANGED, notify_profiles
from portal.schemas.message import (
    ClientBroadcastCreate,
    MessageCreate,
    MessageResponse,
    MessageStatsResponse,
)
from portal.schemas.profile import PeerResponse
from portal.services.message_service import MessageFilters, message_service

router = APIRouter()


@router.get("", response_model=list[MessageResponse])
async def list_messages(
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
    message_type: Optional[MessageType] = None,
    unread: Optional[bool] = None,
    sender_id: Optional[UUID] = None,
    recipient_id: Optional[UUID] = None,
    search: Annotated[Optional[str], Query(max_length=200)] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
):
    filters = MessageFilters(
        message_type=message_type,
        unread=unread,
        sender_id=sender_id,
        recipient_id=recipient_id,
        search=search,
        date_from=date_from,
        date_to=date_to,
    )
    return await message_service.list_messages(db, identity, filters)


@router.get("/stats", response_model=MessageStatsResponse)
async def message_stats(
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    stats = await message_service.stats(db, identity)
    return MessageStatsResponse(**stats.__dict__)


@router.get("/peers", response_model=list[PeerResponse])
async def messageable_peers(
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await message_service.peers(db, identity)


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    request: MessageCreate,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    message = await message_service.send(
        db,
        identity,
        recipient_id=request.recipient_id,
        content=request.content,
        subject=request.subject,
        message_type=request.message_type,
    )
    notify_profiles(MESSAGES_CHANGED, [message.sender_id, message.recipient_id])
    return message


@router.post("/broadcast", response_model=list[MessageResponse], status_code=status.HTTP_201_CREATED)
async def broadcast_to_client(
    request: ClientBroadcastCreate,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    messages = await message_service.broadcast_to_client(db, identity, request.content, request.subject)
    notify_profiles(MESSAGES_CHANGED, [identity.id, *(m.recipient_id for m in messages)])
    return messages


@router.post("/read-all")
async def mark_all_read(
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    updated = await message_service.mark_all_read(db, identity)
    if updated:
        notify_profiles(MESSAGES_CHANGED, [identity.id])
    return {"updated": updated}


@router.get("/{message_id}", response_model=MessageResponse)
async def get_message(
    message_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await message_service.get_message(db, identity, message_id)


@router.post("/{message_id}/read", response_model=MessageResponse)
async def mark_read(
    message_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    message = await message_service.mark_read(db, identity, message_id)
    notify_profiles(MESSAGES_CHANGED, [message.sender_id, message.recipient_id])
    return message


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    message = await message_service.get_message(db, identity, message_id)
    participants = [message.sender_id, message.recipient_id]
    await message_service.delete(db, identity, message_id)
    notify_profiles(MESSAGES_CHANGED, participants)
