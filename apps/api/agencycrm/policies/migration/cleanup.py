from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agencycrm import audit
from agencycrm.metrics import observe_cleanup_deleted
from agencycrm.otel import get_tracer
from agencycrm.policies.migration.backup import BackupManager
from agencycrm.policies.repository import LegacyPolicyRepository
from agencycrm.policies.schemas import CleanupOptions, CleanupResult

logger = logging.getLogger("agencycrm.policies.migration.cleanup")
tracer = get_tracer(__name__)


class CleanupController:
    def __init__(self, session: Session, backup_manager: BackupManager | None = None) -> None:
        self.session = session
        self.backup_manager = backup_manager or BackupManager(session)

    def cleanup_old_policies(self, options: CleanupOptions | None = None) -> CleanupResult:
        options = options or CleanupOptions()

        with tracer.start_as_current_span("policy_migration.cleanup") as span:
            backup_id: str | None = None
            if options.create_final_backup:
                backup = self.backup_manager.create_backup()
                if not backup.success:
                    return CleanupResult(success=False, error=f"Backup failed: {backup.error}")
                backup_id = backup.backup_id

            policies = LegacyPolicyRepository(self.session)
            try:
                expected = policies.count()
                deleted = policies.delete_all()
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.error("migration.cleanup_failed", extra={"backup_id": backup_id, "error": str(exc)})
                return CleanupResult(success=False, backup_id=backup_id, error=str(exc))

            # Some drivers report -1 for bulk deletes.
            deleted_count = deleted if deleted >= 0 else expected
            span.set_attribute("cleanup.deleted_count", deleted_count)

        observe_cleanup_deleted(deleted_count)
        audit.record(
            entity_type="policy",
            entity_id="*",
            action="cleanup",
            before={"row_count": expected},
            after={"row_count": 0, "backup_id": backup_id},
        )
        logger.info("migration.cleanup_completed", extra={"backup_id": backup_id, "deleted_count": deleted_count})
        return CleanupResult(success=True, deleted_count=deleted_count, backup_id=backup_id)
