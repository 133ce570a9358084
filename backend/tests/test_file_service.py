import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from portal.core.errors import FileOperationError, NotFound, PermissionDenied, ValidationError
from portal.core.targets import Broadcast, ClientTarget, UserTarget
from portal.models.enums import AccessType
from portal.models.file import File, FileAccessLog, FileAssignment
from portal.workers.tasks import write_access_log

from conftest import RecordingDispatch, make_file_service, portal_db, seed_portal

PDF = b"%PDF-1.7 quarterly numbers"


async def count_rows(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def test_report_shared_with_a_client_is_visible_to_its_users_only():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, storage, _ = make_file_service()

        report = await service.upload(db, p.acme_manager, "report.pdf", "application/pdf", PDF)
        assert report.storage_path.startswith(f"uploads/{p.acme_manager.id}/")
        assert report.storage_path in storage.objects
        assert report.original_filename == "report.pdf"
        assert report.file_size == len(PDF)

        await service.assign(db, p.acme_manager, report.id, ClientTarget(p.acme.id))

        for viewer in (p.alice, p.bob, p.acme_manager, p.admin):
            assert [f.id for f in await service.list_files(db, viewer)] == [report.id]
        assert await service.list_files(db, p.carol) == []
        assert await service.list_files(db, p.globex_manager) == []

        with pytest.raises(PermissionDenied):
            await service.get_visible_file(db, p.carol, report.id)
        with pytest.raises(PermissionDenied):
            await service.download_url(db, p.carol, report.id)


async def test_direct_assignment_is_private_to_the_user():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, _, _ = make_file_service()

        payslip = await service.upload(db, p.admin, "payslip.pdf", "application/pdf", PDF)
        await service.assign(db, p.admin, payslip.id, UserTarget(p.alice.id))

        assert [f.id for f in await service.list_files(db, p.alice)] == [payslip.id]
        assert await service.list_files(db, p.bob) == []


async def test_file_reachable_through_two_assignments_is_listed_once():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, _, _ = make_file_service()

        contract = await service.upload(db, p.admin, "contract.pdf", "application/pdf", PDF)
        await service.assign(db, p.admin, contract.id, UserTarget(p.alice.id))
        await service.assign(db, p.admin, contract.id, ClientTarget(p.acme.id))

        assert [f.id for f in await service.list_files(db, p.alice)] == [contract.id]
        assert [f.id for f in await service.list_files(db, p.bob)] == [contract.id]


async def test_assignment_rows_hold_exactly_one_target():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, _, _ = make_file_service()
        contract = await service.upload(db, p.admin, "contract.pdf", "application/pdf", PDF)
        contract_id, admin_id = contract.id, p.admin.id
        both = (p.alice.id, p.acme.id)

        for user_id, client_id in (both, (None, None)):
            db.add(FileAssignment(
                file_id=contract_id,
                assigned_to_user=user_id,
                assigned_to_client=client_id,
                assigned_by=admin_id,
            ))
            with pytest.raises(IntegrityError):
                await db.commit()
            await db.rollback()

        assert await count_rows(db, FileAssignment) == 0


async def test_mismatched_upload_never_reaches_storage():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, storage, _ = make_file_service()

        with pytest.raises(ValidationError):
            await service.upload(db, p.admin, "report.pdf", "image/png", PDF)

        assert storage.objects == {}
        assert await count_rows(db, File) == 0


async def test_users_cannot_upload():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, storage, _ = make_file_service()

        with pytest.raises(PermissionDenied):
            await service.upload(db, p.alice, "report.pdf", "application/pdf", PDF)
        assert storage.objects == {}


async def test_storage_failure_leaves_no_metadata():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, storage, _ = make_file_service()
        storage.fail_uploads = True

        with pytest.raises(FileOperationError) as excinfo:
            await service.upload(db, p.admin, "report.pdf", "application/pdf", PDF)
        assert excinfo.value.code == "UPLOAD_FAILED"
        assert await count_rows(db, File) == 0


async def test_failed_metadata_write_removes_the_stored_object():
    async with portal_db() as db:
        p = await seed_portal(db)
        admin_id = p.admin.id
        service, storage, _ = make_file_service()

        async def failing_commit():
            raise RuntimeError("database went away")

        db.commit = failing_commit
        try:
            with pytest.raises(FileOperationError) as excinfo:
                await service.upload(db, p.admin, "report.pdf", "application/pdf", PDF)
        finally:
            del db.commit

        assert excinfo.value.code == "UPLOAD_FAILED"
        assert storage.objects == {}
        assert len(storage.deleted) == 1
        assert storage.deleted[0].startswith(f"uploads/{admin_id}/")
        assert await count_rows(db, File) == 0


async def test_assignment_rules():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, _, _ = make_file_service()
        file = await service.upload(db, p.acme_manager, "plan.pdf", "application/pdf", PDF)

        assignment = await service.assign(db, p.acme_manager, file.id, UserTarget(p.alice.id))
        assert assignment.assigned_by == p.acme_manager.id
        assert assignment.target == UserTarget(p.alice.id)

        with pytest.raises(ValidationError):
            await service.assign(db, p.acme_manager, file.id, UserTarget(p.alice.id))
        with pytest.raises(ValidationError):
            await service.assign(db, p.acme_manager, file.id, Broadcast())
        with pytest.raises(PermissionDenied):
            await service.assign(db, p.acme_manager, file.id, UserTarget(p.carol.id))
        with pytest.raises(PermissionDenied):
            await service.assign(db, p.acme_manager, file.id, ClientTarget(p.globex.id))
        with pytest.raises(NotFound):
            await service.assign(db, p.acme_manager, file.id, UserTarget(uuid.uuid4()))
        with pytest.raises(PermissionDenied):
            await service.assign(db, p.alice, file.id, UserTarget(p.bob.id))

        assert await count_rows(db, FileAssignment) == 1


async def test_manager_cannot_assign_files_it_cannot_see():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, _, _ = make_file_service()
        secret = await service.upload(db, p.globex_manager, "secret.pdf", "application/pdf", PDF)

        with pytest.raises(PermissionDenied):
            await service.assign(db, p.acme_manager, secret.id, ClientTarget(p.acme.id))


async def test_bulk_assign_reports_each_failure():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, _, _ = make_file_service()
        first = await service.upload(db, p.acme_manager, "a.pdf", "application/pdf", PDF)
        second = await service.upload(db, p.acme_manager, "b.pdf", "application/pdf", PDF)

        report = await service.bulk_assign(
            db,
            p.acme_manager,
            [first.id, second.id],
            [UserTarget(p.alice.id), UserTarget(p.carol.id)],
        )

        assert len(report.created) == 2
        assert {a.file_id for a in report.created} == {first.id, second.id}
        assert all(a.id is not None for a in report.created)
        assert len(report.failed) == 2
        assert {f.target for f in report.failed} == {UserTarget(p.carol.id)}
        assert all(f.error for f in report.failed)


async def test_remove_assignment_is_limited_to_assigner_and_admin():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, _, _ = make_file_service()
        file = await service.upload(db, p.acme_manager, "a.pdf", "application/pdf", PDF)
        assignment = await service.assign(db, p.acme_manager, file.id, UserTarget(p.alice.id))

        with pytest.raises(PermissionDenied):
            await service.remove_assignment(db, p.alice, assignment.id)
        await service.remove_assignment(db, p.admin, assignment.id)
        assert await service.list_files(db, p.alice) == []
        with pytest.raises(NotFound):
            await service.remove_assignment(db, p.admin, assignment.id)


async def test_download_urls_are_cached_and_logged():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, storage, dispatch = make_file_service()
        file = await service.upload(db, p.admin, "a.pdf", "application/pdf", PDF)
        await service.assign(db, p.admin, file.id, ClientTarget(p.acme.id))

        first = await service.download_url(db, p.alice, file.id)
        second = await service.download_url(db, p.bob, file.id)
        assert first == second
        assert storage.signed == [(file.storage_path, "a.pdf")]

        preview = await service.preview_url(db, p.alice, file.id)
        assert preview != first
        assert storage.signed[-1] == (file.storage_path, None)

        await service.record_view(db, p.alice, file.id)
        assert [event[2] for event in dispatch.events] == ["download", "download", "preview", "view"]
        assert dispatch.events[0] == (str(file.id), str(p.alice.id), "download")


async def test_failing_access_log_does_not_break_downloads():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, _, _ = make_file_service(dispatch=RecordingDispatch(fail=True))
        file = await service.upload(db, p.admin, "a.pdf", "application/pdf", PDF)

        assert await service.download_url(db, p.admin, file.id)


async def test_signing_failure_is_reported_per_operation():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, storage, _ = make_file_service()
        file = await service.upload(db, p.admin, "a.pdf", "application/pdf", PDF)
        storage.fail_signing = True

        with pytest.raises(FileOperationError) as excinfo:
            await service.preview_url(db, p.admin, file.id)
        assert excinfo.value.code == "PREVIEW_FAILED"


async def test_delete_file():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, storage, _ = make_file_service()
        file = await service.upload(db, p.acme_manager, "a.pdf", "application/pdf", PDF)
        await service.assign(db, p.acme_manager, file.id, ClientTarget(p.acme.id))
        await write_access_log(db, str(file.id), str(p.alice.id), AccessType.VIEW.value)

        with pytest.raises(PermissionDenied):
            await service.delete_file(db, p.globex_manager, file.id)

        storage.fail_deletes = True
        await service.delete_file(db, p.acme_manager, file.id)

        assert await count_rows(db, File) == 0
        assert await count_rows(db, FileAssignment) == 0
        assert await count_rows(db, FileAccessLog) == 0
        with pytest.raises(NotFound):
            await service.get_file(db, file.id)


async def test_access_counts_and_stats():
    async with portal_db() as db:
        p = await seed_portal(db)
        service, _, _ = make_file_service()
        mine = await service.upload(db, p.acme_manager, "a.pdf", "application/pdf", PDF)
        theirs = await service.upload(db, p.globex_manager, "b.pdf", "application/pdf", PDF + b"!")
        await service.assign(db, p.acme_manager, mine.id, ClientTarget(p.acme.id))

        for viewer in (p.alice, p.bob):
            await write_access_log(db, str(mine.id), str(viewer.id), AccessType.DOWNLOAD.value)
        await write_access_log(db, str(theirs.id), str(p.carol.id), AccessType.VIEW.value)

        assert await service.access_counts(db, p.acme_manager) == {mine.id: 2}
        assert await service.access_counts(db, p.admin) == {mine.id: 2, theirs.id: 1}

        stats = await service.stats(db, p.alice)
        assert stats.total_files == 1
        assert stats.total_size == len(PDF)
        assert stats.active_assignments == 1

        admin_stats = await service.stats(db, p.admin)
        assert admin_stats.total_files == 2
        assert admin_stats.total_size == 2 * len(PDF) + 1
