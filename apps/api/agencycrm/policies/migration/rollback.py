from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agencycrm import audit
from agencycrm.metrics import observe_rollback
from agencycrm.otel import get_tracer
from agencycrm.policies.errors import RollbackError
from agencycrm.policies.migration.backup import BackupManager
from agencycrm.policies.models import LegacyPolicy
from agencycrm.policies.repository import PolicyInstanceRepository, PolicyTemplateRepository
from agencycrm.policies.schemas import RollbackResult
from agencycrm.policies.store_admin import StoreAdmin, is_valid_identifier

logger = logging.getLogger("agencycrm.policies.migration.rollback")
tracer = get_tracer(__name__)


class RollbackController:
    def __init__(self, session: Session, backup_manager: BackupManager | None = None) -> None:
        self.session = session
        self.backup_manager = backup_manager or BackupManager(session)

    def rollback(self, backup_id: str) -> RollbackResult:
        """Restore the legacy table from ``backup_id`` and drop every template and instance.

        Runs as a single transaction: on any failure the prior state is left untouched.
        """
        with tracer.start_as_current_span("policy_migration.rollback") as span:
            span.set_attribute("backup.id", backup_id)
            try:
                if not is_valid_identifier(backup_id):
                    raise RollbackError(f"Invalid backup identifier: {backup_id}")
                if not self.backup_manager.backup_exists(backup_id):
                    raise RollbackError(f"Backup {backup_id} not found")

                admin = StoreAdmin(self.session)
                expected = admin.count_rows(backup_id)
                instances_before = PolicyInstanceRepository(self.session).delete_all()
                templates_before = PolicyTemplateRepository(self.session).delete_all()
                restored = admin.restore_from_snapshot(backup_id, LegacyPolicy.__tablename__)
                if restored != expected:
                    raise RollbackError(f"Restored {restored} policies but backup {backup_id} holds {expected}")
                self.session.commit()
            except (RollbackError, SQLAlchemyError) as exc:
                self.session.rollback()
                observe_rollback("failed")
                span.set_attribute("rollback.success", False)
                logger.error("migration.rollback_failed", extra={"backup_id": backup_id, "error": str(exc)})
                return RollbackResult(success=False, backup_id=backup_id, error=str(exc))

            span.set_attribute("rollback.success", True)

        observe_rollback("restored")
        audit.record(
            entity_type="policy_backup",
            entity_id=backup_id,
            action="rollback",
            before={"policy_templates": templates_before, "policy_instances": instances_before},
            after={"restored_count": restored},
        )
        logger.info("migration.rollback_completed", extra={"backup_id": backup_id, "restored_count": restored})
        return RollbackResult(success=True, backup_id=backup_id, restored_count=restored)
