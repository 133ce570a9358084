import logging
import uuid
from typing import Any, Callable, Optional

from portal.models.enums import AccessType

logger = logging.getLogger(__name__)

Dispatch = Callable[[str, Optional[str], str], Any]


def celery_dispatch(file_id: str, user_id: Optional[str], access_type: str) -> Any:
    from portal.workers.tasks import record_file_access_task

    return record_file_access_task.delay(file_id, user_id, access_type)


class AccessLogEmitter:
    """Emits one access event per view/download/preview.

    Emission is fire-and-forget: a failing dispatch is logged and never
    surfaces to the caller.
    """

    def __init__(self, dispatch: Dispatch = celery_dispatch):
        self.dispatch = dispatch

    def emit(self, file_id: uuid.UUID, user_id: Optional[uuid.UUID], access_type: AccessType) -> bool:
        try:
            self.dispatch(str(file_id), str(user_id) if user_id else None, AccessType(access_type).value)
            return True
        except Exception as e:
            logger.warning("Failed to emit %s access event for file %s: %s", access_type, file_id, e)
            return False


access_log_emitter = AccessLogEmitter()
