from typing import Any, Optional, Sequence
from dataclasses import dataclass
from datetime import datetime
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, or_

from portal.core import policy
from portal.core.errors import NotFound, PermissionDenied, ValidationError
from portal.core.targets import AssignmentTarget, ClientTarget, UserTarget, to_columns
from portal.models.client import Client
from portal.models.enums import UserRole
from portal.models.news import News, NewsAssignment
from portal.models.user import Profile

logger = logging.getLogger(__name__)


@dataclass
class NewsFilters:
    search: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    assigned_to_me: bool = False


class NewsService:
    async def member_ids(self, db: AsyncSession, actor: Any) -> list[uuid.UUID]:
        """Profile ids of the users a client manager looks after."""
        if policy.role_of(actor) != UserRole.CLIENT or actor.client_id is None:
            return []
        result = await db.execute(
            select(Profile.id)
            .where(Profile.client_id == actor.client_id)
            .where(Profile.role == UserRole.USER)
        )
        return list(result.scalars().all())

    async def get_news(self, db: AsyncSession, news_id: uuid.UUID) -> News:
        result = await db.execute(select(News).where(News.id == news_id))
        news = result.scalar_one_or_none()
        if not news:
            raise NotFound("News item not found")
        return news

    def _require(self, actor: Any, permission: str) -> None:
        if not policy.has_permission(actor, permission):
            raise PermissionDenied("Only administrators can manage news")

    async def create(self, db: AsyncSession, actor: Any, title: str, content: str) -> News:
        self._require(actor, policy.CREATE_NEWS)
        if not title or not title.strip():
            raise ValidationError("title", "Title is required", title)
        if not content or not content.strip():
            raise ValidationError("content", "Content is required", content)

        news = News(title=title.strip(), content=content.strip(), created_by=actor.id)
        db.add(news)
        await db.commit()
        await db.refresh(news)
        return news

    async def update(
        self,
        db: AsyncSession,
        actor: Any,
        news_id: uuid.UUID,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> News:
        self._require(actor, policy.CREATE_NEWS)
        news = await self.get_news(db, news_id)
        if title is not None:
            if not title.strip():
                raise ValidationError("title", "Title is required", title)
            news.title = title.strip()
        if content is not None:
            if not content.strip():
                raise ValidationError("content", "Content is required", content)
            news.content = content.strip()
        await db.commit()
        await db.refresh(news)
        return news

    async def _check_target(self, db: AsyncSession, target: AssignmentTarget) -> None:
        if isinstance(target, UserTarget):
            result = await db.execute(select(Profile.id).where(Profile.id == target.user_id))
            if result.scalar_one_or_none() is None:
                raise NotFound("Target user not found")
        elif isinstance(target, ClientTarget):
            result = await db.execute(select(Client.id).where(Client.id == target.client_id))
            if result.scalar_one_or_none() is None:
                raise NotFound("Target client not found")

    async def assign(
        self,
        db: AsyncSession,
        actor: Any,
        news_id: uuid.UUID,
        targets: Sequence[AssignmentTarget],
    ) -> list[NewsAssignment]:
        self._require(actor, policy.ASSIGN_NEWS)
        await self.get_news(db, news_id)
        if not targets:
            raise ValidationError("targets", "At least one target is required")

        existing = await db.execute(select(NewsAssignment).where(NewsAssignment.news_id == news_id))
        already = {assignment.target for assignment in existing.scalars().all()}

        assignments = []
        for target in dict.fromkeys(targets):
            if target in already:
                continue
            await self._check_target(db, target)
            assigned_to_user, assigned_to_client = to_columns(target)
            assignments.append(NewsAssignment(
                news_id=news_id,
                assigned_to_user=assigned_to_user,
                assigned_to_client=assigned_to_client,
                assigned_by=actor.id,
            ))

        db.add_all(assignments)
        await db.commit()
        for assignment in assignments:
            await db.refresh(assignment)
        return assignments

    async def create_and_assign(
        self,
        db: AsyncSession,
        actor: Any,
        title: str,
        content: str,
        targets: Sequence[AssignmentTarget],
    ) -> tuple[News, list[NewsAssignment]]:
        news = await self.create(db, actor, title, content)
        if not targets:
            return news, []
        return news, await self.assign(db, actor, news.id, targets)

    async def list_news(
        self,
        db: AsyncSession,
        actor: Any,
        filters: Optional[NewsFilters] = None,
    ) -> list[News]:
        filters = filters or NewsFilters()
        query = select(News)

        if filters.assigned_to_me:
            direct = [NewsAssignment.assigned_to_user == actor.id]
            if actor.client_id is not None:
                direct.append(NewsAssignment.assigned_to_client == actor.client_id)
            query = query.where(News.id.in_(select(NewsAssignment.news_id).where(or_(*direct))))
        elif not policy.is_admin(actor):
            clause = policy.news_assignment_clause(actor, await self.member_ids(db, actor))
            query = query.where(News.id.in_(select(NewsAssignment.news_id).where(clause)))

        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            query = query.where(or_(News.title.ilike(pattern), News.content.ilike(pattern)))
        if filters.date_from:
            query = query.where(News.created_at >= filters.date_from)
        if filters.date_to:
            query = query.where(News.created_at <= filters.date_to)

        result = await db.execute(query.order_by(News.created_at.desc()))
        return list(result.scalars().all())

    async def get_visible_news(self, db: AsyncSession, actor: Any, news_id: uuid.UUID) -> News:
        news = await self.get_news(db, news_id)
        if policy.is_admin(actor):
            return news
        result = await db.execute(select(NewsAssignment).where(NewsAssignment.news_id == news_id))
        member_ids = await self.member_ids(db, actor)
        if not any(policy.target_visible_to(actor, a.target, member_ids) for a in result.scalars().all()):
            raise NotFound("News item not found")
        return news

    async def list_assignments(self, db: AsyncSession, actor: Any, news_id: uuid.UUID) -> list[NewsAssignment]:
        self._require(actor, policy.ASSIGN_NEWS)
        result = await db.execute(
            select(NewsAssignment)
            .where(NewsAssignment.news_id == news_id)
            .order_by(NewsAssignment.created_at.desc())
        )
        return list(result.scalars().all())

    async def remove_assignment(self, db: AsyncSession, actor: Any, assignment_id: uuid.UUID) -> None:
        result = await db.execute(select(NewsAssignment).where(NewsAssignment.id == assignment_id))
        assignment = result.scalar_one_or_none()
        if not assignment:
            raise NotFound("Assignment not found")
        if not policy.can_remove_assignment(actor, assignment):
            raise PermissionDenied("Only the assigner or an admin can remove this assignment")
        await db.execute(delete(NewsAssignment).where(NewsAssignment.id == assignment_id))
        await db.commit()

    async def delete(self, db: AsyncSession, actor: Any, news_id: uuid.UUID) -> None:
        self._require(actor, policy.CREATE_NEWS)
        await self.get_news(db, news_id)
        await db.execute(delete(NewsAssignment).where(NewsAssignment.news_id == news_id))
        await db.execute(delete(News).where(News.id == news_id))
        await db.commit()
        logger.info("News %s deleted by %s", news_id, actor.id)


news_service = NewsService()
