from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agencycrm import audit
from agencycrm.metrics import observe_backup
from agencycrm.otel import get_tracer
from agencycrm.policies.errors import BackupError
from agencycrm.policies.models import LegacyPolicy
from agencycrm.policies.schemas import BackupInfo, BackupResult
from agencycrm.policies.store_admin import StoreAdmin, is_valid_identifier

logger = logging.getLogger("agencycrm.policies.migration.backup")
tracer = get_tracer(__name__)

BACKUP_PREFIX = "policy_backup_"


def backup_timestamp(backup_id: str) -> datetime | None:
    suffix = backup_id[len(BACKUP_PREFIX):] if backup_id.startswith(BACKUP_PREFIX) else ""
    if not suffix.isdigit():
        return None
    return datetime.fromtimestamp(int(suffix) / 1000, tz=timezone.utc)


@dataclass(slots=True)
class BackupManager:
    session: Session
    clock: Callable[[], float] = field(default=time.time)

    def _admin(self) -> StoreAdmin:
        return StoreAdmin(self.session)

    def next_backup_id(self) -> str:
        return f"{BACKUP_PREFIX}{int(self.clock() * 1000)}"

    def create_backup(self) -> BackupResult:
        """Snapshot the legacy policy table into ``policy_backup_<unix_ms>``.

        Failures are returned, never raised; a failed attempt leaves no snapshot behind.
        """
        backup_id = self.next_backup_id()
        admin = self._admin()
        source = LegacyPolicy.__tablename__

        with tracer.start_as_current_span("policy_migration.backup") as span:
            span.set_attribute("backup.id", backup_id)
            try:
                if not is_valid_identifier(backup_id):
                    raise BackupError(f"Invalid backup identifier: {backup_id}")
                if admin.table_exists(backup_id):
                    raise BackupError(f"Backup table {backup_id} already exists")
                row_count = admin.snapshot_table(source, backup_id)
                self.session.commit()
            except (BackupError, SQLAlchemyError) as exc:
                self.session.rollback()
                observe_backup("failed")
                logger.warning("migration.backup_failed", extra={"backup_id": backup_id, "error": str(exc)})
                span.set_attribute("backup.success", False)
                return BackupResult(success=False, backup_id="", error=str(exc))

            span.set_attribute("backup.success", True)

        observe_backup("created")
        audit.record(
            entity_type="policy_backup",
            entity_id=backup_id,
            action="create",
            before=None,
            after={"source": source, "row_count": row_count},
        )
        logger.info("migration.backup_created", extra={"backup_id": backup_id, "row_count": row_count})
        return BackupResult(success=True, backup_id=backup_id, row_count=row_count)

    def backup_exists(self, backup_id: str) -> bool:
        if not is_valid_identifier(backup_id) or not backup_id.startswith(BACKUP_PREFIX):
            return False
        return self._admin().table_exists(backup_id)

    def list_backups(self) -> list[BackupInfo]:
        backups: list[BackupInfo] = []
        for name in self._admin().list_tables(prefix=BACKUP_PREFIX):
            created_at = backup_timestamp(name)
            if created_at is None:
                continue
            backups.append(BackupInfo(backup_id=name, created_at=created_at))
        backups.sort(key=lambda item: item.created_at, reverse=True)
        return backups

    def prune_backups(self, retention_days: int, now: datetime | None = None) -> list[str]:
        """Drop snapshots older than the retention window and return their ids."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        expired = [backup.backup_id for backup in self.list_backups() if backup.created_at < cutoff]
        if not expired:
            return []

        admin = self._admin()
        try:
            for backup_id in expired:
                admin.drop_table(backup_id)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

        for backup_id in expired:
            audit.record(
                entity_type="policy_backup",
                entity_id=backup_id,
                action="prune",
                before={"retention_days": retention_days},
                after=None,
            )
        logger.info("migration.backups_pruned", extra={"deleted_count": len(expired)})
        return expired
