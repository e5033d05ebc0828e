from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from agencycrm.policies.repository import (
    LegacyPolicyRepository,
    PolicyInstanceRepository,
    PolicyTemplateRepository,
)
from agencycrm.policies.schemas import MigrationState, MigrationStatusReport

STATE_HINTS: dict[str, str] = {
    "READY": "Legacy policies are waiting to be migrated. Run `validate`, then `migrate --dry-run`.",
    "PARTIAL": "Migration is incomplete. Re-run `migrate` (duplicates are reused) or `rollback <backup_id>`.",
    "COMPLETED_LEGACY_PRESENT": "Every legacy policy has an instance. Run `verify`, then `cleanup`.",
    "COMPLETED": "Migration is complete and legacy policies have been removed.",
    "EMPTY": "No policy data found.",
}


def classify(legacy: int, templates: int, instances: int) -> MigrationState:
    if legacy == 0 and templates == 0 and instances == 0:
        return "EMPTY"
    if legacy == 0:
        return "COMPLETED"
    if templates == 0 and instances == 0:
        return "READY"
    if instances == legacy:
        return "COMPLETED_LEGACY_PRESENT"
    return "PARTIAL"


@dataclass(slots=True)
class MigrationStatusReporter:
    session: Session

    def get_status(self) -> MigrationStatusReport:
        legacy = LegacyPolicyRepository(self.session).count()
        templates = PolicyTemplateRepository(self.session).count()
        instances = PolicyInstanceRepository(self.session).count()
        state = classify(legacy, templates, instances)
        return MigrationStatusReport(
            state=state,
            legacy_policies=legacy,
            policy_templates=templates,
            policy_instances=instances,
            hint=STATE_HINTS[state],
        )
