from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Annotated, Optional
from datetime import datetime
from uuid import UUID

from portal.core.database import get_db
from portal.api.deps import CurrentIdentity
from portal.realtime.gateway import NEWS_CHANGED, notify_rooms, rooms_for_targets
from portal.schemas.news import (
    NewsAssignRequest,
    NewsAssignmentResponse,
    NewsCreate,
    NewsResponse,
    NewsUpdate,
    NewsWithAssignmentsResponse,
)
from portal.services.news_service import NewsFilters, news_service

router = APIRouter()


@router.get("", response_model=list[NewsResponse])
async def list_news(
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
    search: Annotated[Optional[str], Query(max_length=200)] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    assigned_to_me: bool = False,
):
    filters = NewsFilters(search=search, date_from=date_from, date_to=date_to, assigned_to_me=assigned_to_me)
    return await news_service.list_news(db, identity, filters)


@router.post("", response_model=NewsWithAssignmentsResponse, status_code=status.HTTP_201_CREATED)
async def create_news(
    request: NewsCreate,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    targets = [target.to_target() for target in request.targets]
    news, assignments = await news_service.create_and_assign(db, identity, request.title, request.content, targets)
    if assignments:
        notify_rooms(NEWS_CHANGED, rooms_for_targets(a.target for a in assignments))
    return NewsWithAssignmentsResponse(
        **NewsResponse.model_validate(news).model_dump(),
        assignments=[NewsAssignmentResponse.from_row(a) for a in assignments],
    )


@router.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_assignment(
    assignment_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await news_service.remove_assignment(db, identity, assignment_id)


@router.get("/{news_id}", response_model=NewsResponse)
async def get_news(
    news_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await news_service.get_visible_news(db, identity, news_id)


@router.patch("/{news_id}", response_model=NewsResponse)
async def update_news(
    news_id: UUID,
    request: NewsUpdate,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await news_service.update(db, identity, news_id, request.title, request.content)


@router.delete("/{news_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_news(
    news_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    assignments = await news_service.list_assignments(db, identity, news_id)
    await news_service.delete(db, identity, news_id)
    notify_rooms(NEWS_CHANGED, rooms_for_targets(a.target for a in assignments))


@router.get("/{news_id}/assignments", response_model=list[NewsAssignmentResponse])
async def list_assignments(
    news_id: UUID,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    assignments = await news_service.list_assignments(db, identity, news_id)
    return [NewsAssignmentResponse.from_row(a) for a in assignments]


@router.post("/{news_id}/assignments", response_model=list[NewsAssignmentResponse], status_code=status.HTTP_201_CREATED)
async def assign_news(
    news_id: UUID,
    request: NewsAssignRequest,
    identity: CurrentIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    targets = [target.to_target() for target in request.targets]
    assignments = await news_service.assign(db, identity, news_id, targets)
    notify_rooms(NEWS_CHANGED, rooms_for_targets(targets))
    return [NewsAssignmentResponse.from_row(a) for a in assignments]
