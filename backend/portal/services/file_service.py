from typing import Any, Callable, Optional, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError

from portal.core import policy
from portal.core.errors import (
    FileOperationError,
    NotFound,
    PermissionDenied,
    PortalError,
    ValidationError,
    error_log,
    user_message,
)
from portal.core.rate_limit import OperationLimits, operation_limits
from portal.core.security import generate_storage_name
from portal.core.targets import AssignmentTarget, Broadcast, ClientTarget, UserTarget, to_columns
from portal.models.client import Client
from portal.models.enums import AccessType, UserRole
from portal.models.file import File, FileAssignment, FileAccessLog
from portal.models.user import Profile
from portal.services.access_log import AccessLogEmitter, access_log_emitter
from portal.services.file_validation import validate_upload
from portal.services.storage_service import SignedUrlCache, signed_url_cache, storage_service

logger = logging.getLogger(__name__)


@dataclass
class BulkAssignmentFailure:
    file_id: uuid.UUID
    target: AssignmentTarget
    error: str


@dataclass
class BulkAssignmentResult:
    created: list[FileAssignment] = field(default_factory=list)
    failed: list[BulkAssignmentFailure] = field(default_factory=list)


@dataclass
class FileStats:
    total_files: int
    total_size: int
    recent_uploads: int
    active_assignments: int


class FileService:
    def __init__(
        self,
        storage: Any = None,
        url_cache: Optional[SignedUrlCache] = None,
        emitter: Optional[AccessLogEmitter] = None,
        limits: Optional[OperationLimits] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage if storage is not None else storage_service
        self.url_cache = url_cache if url_cache is not None else signed_url_cache
        self.emitter = emitter if emitter is not None else access_log_emitter
        self.limits = limits if limits is not None else operation_limits
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_file(self, db: AsyncSession, file_id: uuid.UUID) -> File:
        result = await db.execute(select(File).where(File.id == file_id))
        file = result.scalar_one_or_none()
        if not file:
            raise NotFound("File not found")
        return file

    async def targets_for(self, db: AsyncSession, file_id: uuid.UUID) -> list[AssignmentTarget]:
        result = await db.execute(select(FileAssignment).where(FileAssignment.file_id == file_id))
        return [assignment.target for assignment in result.scalars().all()]

    async def get_visible_file(self, db: AsyncSession, actor: Any, file_id: uuid.UUID) -> File:
        file = await self.get_file(db, file_id)
        if not policy.can_view_file(actor, file, await self.targets_for(db, file_id)):
            raise PermissionDenied("You don't have access to this file")
        return file

    def _visible_query(self, actor: Any):
        query = select(File)
        if policy.is_admin(actor):
            return query
        assigned = select(FileAssignment.file_id).where(policy.file_assignment_clause(actor))
        if policy.role_of(actor) == UserRole.CLIENT:
            return query.where((File.id.in_(assigned)) | (File.uploaded_by == actor.id))
        return query.where(File.id.in_(assigned))

    async def list_files(self, db: AsyncSession, actor: Any) -> list[File]:
        result = await db.execute(self._visible_query(actor).order_by(File.created_at.desc()))
        return list(result.scalars().all())

    async def upload(
        self,
        db: AsyncSession,
        actor: Any,
        filename: str,
        content_type: Optional[str],
        data: bytes,
        description: Optional[str] = None,
    ) -> File:
        if not policy.has_permission(actor, policy.UPLOAD_FILES):
            raise PermissionDenied("You are not allowed to upload files")
        self.limits.check("upload", actor.id)

        resolved_type = validate_upload(filename, content_type, data)
        stored_name = generate_storage_name(filename, now=self.clock())
        storage_path = f"uploads/{actor.id}/{stored_name}"

        try:
            self.storage.upload_file(storage_path, data, resolved_type)
        except Exception as e:
            raise FileOperationError("UPLOAD_FAILED", f"Storage upload failed: {e}") from e

        file = File(
            filename=stored_name,
            original_filename=filename,
            storage_path=storage_path,
            file_size=len(data),
            file_type=resolved_type,
            uploaded_by=actor.id,
            description=description,
        )
        db.add(file)
        try:
            await db.commit()
        except Exception as e:
            await db.rollback()
            self._remove_orphan(storage_path)
            raise FileOperationError("UPLOAD_FAILED", f"Failed to save file metadata: {e}") from e
        await db.refresh(file)

        self.url_cache.clear()
        logger.info("Uploaded %s as %s by %s", filename, storage_path, actor.id)
        return file

    def _remove_orphan(self, storage_path: str) -> None:
        try:
            self.storage.delete_file(storage_path)
        except Exception as cleanup_error:
            logger.error("Orphaned object left in storage: %s (%s)", storage_path, cleanup_error)
            error_log.record(cleanup_error, context="upload.cleanup")

    async def _target_profile(self, db: AsyncSession, target: AssignmentTarget) -> Optional[Profile]:
        if isinstance(target, UserTarget):
            result = await db.execute(select(Profile).where(Profile.id == target.user_id))
            profile = result.scalar_one_or_none()
            if not profile:
                raise NotFound("Target user not found")
            return profile
        if isinstance(target, ClientTarget):
            result = await db.execute(select(Client.id).where(Client.id == target.client_id))
            if result.scalar_one_or_none() is None:
                raise NotFound("Target client not found")
        return None

    async def assign(
        self,
        db: AsyncSession,
        actor: Any,
        file_id: uuid.UUID,
        target: AssignmentTarget,
    ) -> FileAssignment:
        if not policy.has_permission(actor, policy.ASSIGN_FILES):
            raise PermissionDenied("You are not allowed to assign files")
        if isinstance(target, Broadcast):
            raise ValidationError("target", "Files must be assigned to a user or a client")

        await self.get_visible_file(db, actor, file_id)
        target_profile = await self._target_profile(db, target)
        if not policy.can_assign(actor, target, target_profile):
            raise PermissionDenied("You cannot assign files to this target")

        assigned_to_user, assigned_to_client = to_columns(target)
        existing = await db.execute(
            select(FileAssignment.id)
            .where(FileAssignment.file_id == file_id)
            .where(FileAssignment.assigned_to_user.is_(None) if assigned_to_user is None
                   else FileAssignment.assigned_to_user == assigned_to_user)
            .where(FileAssignment.assigned_to_client.is_(None) if assigned_to_client is None
                   else FileAssignment.assigned_to_client == assigned_to_client)
        )
        if existing.first() is not None:
            raise ValidationError("target", "File is already assigned to this target")

        assignment = FileAssignment(
            file_id=file_id,
            assigned_to_user=assigned_to_user,
            assigned_to_client=assigned_to_client,
            assigned_by=actor.id,
        )
        db.add(assignment)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise ValidationError("target", user_message(e)) from e
        await db.refresh(assignment)
        return assignment

    async def bulk_assign(
        self,
        db: AsyncSession,
        actor: Any,
        file_ids: Sequence[uuid.UUID],
        targets: Sequence[AssignmentTarget],
    ) -> BulkAssignmentResult:
        """Assign every file to every target; failures are reported per item."""
        report = BulkAssignmentResult()
        for file_id in file_ids:
            for target in targets:
                try:
                    report.created.append(await self.assign(db, actor, file_id, target))
                except PortalError as e:
                    report.failed.append(BulkAssignmentFailure(file_id, target, user_message(e)))
        if report.failed:
            # A failed commit rolls back and expires the rows created before it.
            for assignment in report.created:
                await db.refresh(assignment)
        return report

    async def list_assignments(self, db: AsyncSession, actor: Any, file_id: uuid.UUID) -> list[FileAssignment]:
        file = await self.get_visible_file(db, actor, file_id)
        query = select(FileAssignment).where(FileAssignment.file_id == file_id)
        if not policy.is_admin(actor) and file.uploaded_by != actor.id:
            query = query.where(policy.file_assignment_clause(actor))
        result = await db.execute(query.order_by(FileAssignment.created_at.desc()))
        return list(result.scalars().all())

    async def remove_assignment(self, db: AsyncSession, actor: Any, assignment_id: uuid.UUID) -> None:
        result = await db.execute(select(FileAssignment).where(FileAssignment.id == assignment_id))
        assignment = result.scalar_one_or_none()
        if not assignment:
            raise NotFound("Assignment not found")
        if not policy.can_remove_assignment(actor, assignment):
            raise PermissionDenied("Only the assigner or an admin can remove this assignment")
        await db.execute(delete(FileAssignment).where(FileAssignment.id == assignment_id))
        await db.commit()

    async def delete_file(self, db: AsyncSession, actor: Any, file_id: uuid.UUID) -> None:
        self.limits.check("delete", actor.id)
        file = await self.get_file(db, file_id)
        if not policy.can_delete_file(actor, file):
            raise PermissionDenied("Only the uploader or an admin can delete this file")

        try:
            self.storage.delete_file(file.storage_path)
        except Exception as e:
            # The metadata row is authoritative; a leftover object is only logged.
            logger.warning("Storage delete failed for %s: %s", file.storage_path, e)
            error_log.record(e, context="file.delete.storage", actor_id=actor.id)

        await db.execute(delete(FileAccessLog).where(FileAccessLog.file_id == file_id))
        await db.execute(delete(FileAssignment).where(FileAssignment.file_id == file_id))
        await db.execute(delete(File).where(File.id == file_id))
        await db.commit()
        self.url_cache.clear()

    def _signed_url(self, file: File, download: bool, failure_code: str) -> str:
        def factory() -> str:
            return self.storage.get_presigned_download_url(
                file.storage_path,
                download_name=file.original_filename if download else None,
            )

        try:
            return self.url_cache.get_or_create(file.storage_path, factory, download=download)
        except Exception as e:
            raise FileOperationError(failure_code, f"Could not sign URL: {e}", {"file_id": str(file.id)}) from e

    async def download_url(self, db: AsyncSession, actor: Any, file_id: uuid.UUID) -> str:
        self.limits.check("download", actor.id)
        file = await self.get_visible_file(db, actor, file_id)
        url = self._signed_url(file, download=True, failure_code="DOWNLOAD_FAILED")
        self.emitter.emit(file.id, actor.id, AccessType.DOWNLOAD)
        return url

    async def preview_url(self, db: AsyncSession, actor: Any, file_id: uuid.UUID) -> str:
        file = await self.get_visible_file(db, actor, file_id)
        url = self._signed_url(file, download=False, failure_code="PREVIEW_FAILED")
        self.emitter.emit(file.id, actor.id, AccessType.PREVIEW)
        return url

    async def record_view(self, db: AsyncSession, actor: Any, file_id: uuid.UUID) -> File:
        file = await self.get_visible_file(db, actor, file_id)
        self.emitter.emit(file.id, actor.id, AccessType.VIEW)
        return file

    async def access_counts(self, db: AsyncSession, actor: Any) -> dict[uuid.UUID, int]:
        query = select(FileAccessLog.file_id, func.count(FileAccessLog.id)).group_by(FileAccessLog.file_id)
        if not policy.is_admin(actor):
            query = query.where(FileAccessLog.file_id.in_(select(File.id).where(File.uploaded_by == actor.id)))
        result = await db.execute(query)
        return {file_id: count for file_id, count in result.all()}

    async def stats(self, db: AsyncSession, actor: Any) -> FileStats:
        visible_ids = self._visible_query(actor).with_only_columns(File.id)
        totals = await db.execute(
            select(func.count(File.id), func.coalesce(func.sum(File.file_size), 0))
            .where(File.id.in_(visible_ids))
        )
        total_files, total_size = totals.one()

        since = self.clock() - timedelta(days=7)
        recent = await db.execute(
            select(func.count(File.id))
            .where(File.id.in_(visible_ids))
            .where(File.created_at >= since)
        )
        assignments = await db.execute(
            select(func.count(FileAssignment.id)).where(FileAssignment.file_id.in_(visible_ids))
        )
        return FileStats(
            total_files=total_files,
            total_size=int(total_size),
            recent_uploads=recent.scalar_one(),
            active_assignments=assignments.scalar_one(),
        )


file_service = FileService()
