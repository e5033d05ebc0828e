from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Row
from sqlalchemy.orm import Session

from agencycrm import audit
from agencycrm.metrics import observe_migration_record, observe_migration_run
from agencycrm.otel import get_tracer
from agencycrm.policies.errors import RecordMigrationError
from agencycrm.policies.migration.backup import BackupManager
from agencycrm.policies.migration.validator import PolicyValidator
from agencycrm.policies.repository import (
    ClientRepository,
    LegacyPolicyRepository,
    PolicyInstanceRepository,
    PolicyTemplateRepository,
)
from agencycrm.policies.schemas import MigrationOptions, MigrationResult, MigrationStatus

logger = logging.getLogger("agencycrm.policies.migration.engine")
tracer = get_tracer(__name__)

TemplateKey = tuple[str, str, str]


@dataclass(slots=True)
class _RunState:
    options: MigrationOptions
    template_ids: dict[TemplateKey, uuid.UUID] = field(default_factory=dict)
    planned_instances: set[tuple[uuid.UUID, str]] = field(default_factory=set)
    templates_created: int = 0
    instances_created: int = 0
    policies_migrated: int = 0
    duplicate_templates: int = 0
    duplicate_instances: int = 0
    skipped_policies: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def mode(self) -> str:
        return "dry_run" if self.options.dry_run else "live"

    def skip(self, message: str) -> str:
        self.skipped_policies += 1
        self.errors.append(message)
        return "skipped"


def resolve_status(errors: list[str], policies_migrated: int) -> MigrationStatus:
    if not errors:
        return "SUCCESS"
    if policies_migrated > 0:
        return "PARTIAL_SUCCESS"
    return "FAILED"


class PolicyMigrationEngine:
    def __init__(
        self,
        session: Session,
        *,
        validator: PolicyValidator | None = None,
        backup_manager: BackupManager | None = None,
    ) -> None:
        self.session = session
        self.validator = validator or PolicyValidator(session)
        self.backup_manager = backup_manager or BackupManager(session)
        self.policies = LegacyPolicyRepository(session)
        self.templates = PolicyTemplateRepository(session)
        self.instances = PolicyInstanceRepository(session)
        self.clients = ClientRepository(session)

    def migrate(self, options: MigrationOptions | None = None) -> MigrationResult:
        """Convert legacy policy rows into templates and instances.

        Per-record failures are collected on the result; the run keeps going. A dry run
        makes the same decisions against the store but writes nothing.
        """
        options = options or MigrationOptions()
        state = _RunState(options=options)
        started = time.perf_counter()

        with tracer.start_as_current_span("policy_migration.migrate") as span:
            span.set_attribute("migration.dry_run", options.dry_run)
            span.set_attribute("migration.batch_size", options.batch_size)

            validation = self.validator.validate()
            if not validation.is_valid:
                state.errors.extend(validation.errors)
                return self._finish(state, started, span)

            backup_id: str | None = None
            if options.create_backup and not options.dry_run:
                backup = self.backup_manager.create_backup()
                if not backup.success:
                    state.errors.append(f"Backup failed: {backup.error}")
                    return self._finish(state, started, span)
                backup_id = backup.backup_id

            offset = 0
            while True:
                batch = self.policies.fetch_batch(offset, options.batch_size)
                for record in batch:
                    outcome = self._migrate_record(record, state)
                    observe_migration_record(state.mode, outcome)

                logger.info(
                    "migration.batch_processed",
                    extra={
                        "mode": state.mode,
                        "batch_offset": offset,
                        "batch_size": options.batch_size,
                        "batch_rows": len(batch),
                        "policies_migrated": state.policies_migrated,
                        "error_count": len(state.errors),
                    },
                )
                if len(batch) < options.batch_size:
                    break
                offset += options.batch_size

            return self._finish(state, started, span, backup_id=backup_id)

    def _migrate_record(self, record: Row[Any], state: _RunState) -> str:
        policy_number = record.policy_number
        try:
            client = self.clients.get_active(record.client_id)
            if client is None:
                return state.skip(f"Skipped policy {policy_number}: Client not found")

            key: TemplateKey = (record.policy_number, record.policy_type, record.provider)
            template_id = state.template_ids.get(key)
            if template_id is None:
                existing = self.templates.find_by_key(*key)
                if existing is not None:
                    if not state.options.skip_duplicates:
                        return state.skip(f"Template already exists for policy {policy_number}")
                    state.duplicate_templates += 1
                    template_id = existing.id
                else:
                    template_id = self._create_template(record, state)
                    state.templates_created += 1
                state.template_ids[key] = template_id

            pair = (template_id, client.id)
            if pair in state.planned_instances or self.instances.find(*pair) is not None:
                if not state.options.skip_duplicates:
                    return state.skip(f"Instance already exists for client {client.name} and policy {policy_number}")
                state.duplicate_instances += 1
            else:
                self._create_instance(record, template_id, client.id, state)
                state.instances_created += 1
            state.planned_instances.add(pair)

            state.policies_migrated += 1
            return "migrated"
        except Exception as exc:
            self.session.rollback()
            error = RecordMigrationError(policy_number, str(exc))
            state.errors.append(str(error))
            logger.warning(
                "migration.record_failed",
                extra={"policy_number": policy_number, "error": str(exc)},
            )
            return "failed"

    def _create_template(self, record: Row[Any], state: _RunState) -> uuid.UUID:
        if state.options.dry_run:
            return uuid.uuid4()
        template = self.templates.create(
            policy_number=record.policy_number,
            policy_type=record.policy_type,
            provider=record.provider,
            description=f"Migrated from policy {record.policy_number}",
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        template_id = template.id
        self.session.commit()
        return template_id

    def _create_instance(self, record: Row[Any], template_id: uuid.UUID, client_id: str, state: _RunState) -> None:
        if state.options.dry_run:
            return
        self.instances.create(
            policy_template_id=template_id,
            client_id=client_id,
            premium_amount=record.premium_amount,
            commission_amount=record.commission_amount,
            status=record.status,
            start_date=record.start_date,
            expiry_date=record.expiry_date,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        self.session.commit()

    def _finish(self, state: _RunState, started: float, span: Any, *, backup_id: str | None = None) -> MigrationResult:
        status = resolve_status(state.errors, state.policies_migrated)
        result = MigrationResult(
            success=status != "FAILED",
            status=status,
            dry_run=state.options.dry_run,
            backup_id=backup_id,
            templates_created=state.templates_created,
            instances_created=state.instances_created,
            policies_migrated=state.policies_migrated,
            duplicate_templates=state.duplicate_templates,
            duplicate_instances=state.duplicate_instances,
            skipped_policies=state.skipped_policies,
            errors=list(state.errors),
        )
        duration = time.perf_counter() - started

        span.set_attribute("migration.status", status)
        span.set_attribute("migration.policies_migrated", result.policies_migrated)
        observe_migration_run(
            state.mode,
            status,
            duration,
            templates_created=result.templates_created,
            instances_created=result.instances_created,
        )
        if not result.dry_run and (result.templates_created or result.instances_created):
            audit.record(
                entity_type="policy_migration",
                entity_id=backup_id or "no-backup",
                action="migrate",
                before=None,
                after={
                    "status": status,
                    "templates_created": result.templates_created,
                    "instances_created": result.instances_created,
                    "policies_migrated": result.policies_migrated,
                },
            )
        logger.info(
            "migration.completed",
            extra={
                "mode": state.mode,
                "status": status,
                "duration_ms": round(duration * 1000, 2),
                "templates_created": result.templates_created,
                "instances_created": result.instances_created,
                "policies_migrated": result.policies_migrated,
                "duplicate_templates": result.duplicate_templates,
                "duplicate_instances": result.duplicate_instances,
                "skipped_policies": result.skipped_policies,
                "error_count": len(result.errors),
            },
        )
        return result
