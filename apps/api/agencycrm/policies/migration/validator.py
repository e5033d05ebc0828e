from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from agencycrm.otel import get_tracer
from agencycrm.policies.errors import PolicyValidationError
from agencycrm.policies.repository import LegacyPolicyRepository
from agencycrm.policies.schemas import DuplicatePolicyNumber, ValidationResult
from agencycrm.policies.store_admin import StoreAdmin

logger = logging.getLogger("agencycrm.policies.migration.validator")
tracer = get_tracer(__name__)


@dataclass(slots=True)
class PolicyValidator:
    session: Session

    def validate(self, now: datetime | None = None) -> ValidationResult:
        """Inspect legacy policy rows without mutating anything.

        Missing required data and orphaned client references block migration; duplicate
        policy numbers, future start dates and negative amounts are advisory.
        """
        current = now or datetime.now(timezone.utc)
        policies = LegacyPolicyRepository(self.session)
        admin = StoreAdmin(self.session)

        with tracer.start_as_current_span("policy_migration.validate") as span:
            total = policies.count()
            span.set_attribute("policy.total", total)
            if total == 0:
                logger.info("migration.validation_completed", extra={"status": "empty", "row_count": 0})
                return ValidationResult(is_valid=True, warnings=["No policies found to migrate"])

            errors: list[str] = []
            warnings: list[str] = []

            missing_required = policies.count_missing_required()
            if missing_required > 0:
                errors.append(f"{missing_required} policies have missing required data")

            orphaned = admin.count_orphaned_policies()
            if orphaned > 0:
                errors.append(f"{orphaned} policies reference non-existent clients")

            duplicates = [
                DuplicatePolicyNumber(policy_number=number, variant_count=variants)
                for number, variants in policies.duplicate_policy_numbers()
            ]
            if duplicates:
                warnings.append(f"{len(duplicates)} duplicate policy numbers found - will create separate templates")

            future_start = policies.count_where(policies.future_start(current))
            if future_start > 0:
                warnings.append(f"{future_start} policies have future start dates")

            negative_amounts = policies.count_where(policies.negative_amounts())
            if negative_amounts > 0:
                warnings.append(f"{negative_amounts} policies have negative amounts")

            result = ValidationResult(
                is_valid=not errors,
                errors=errors,
                warnings=warnings,
                total_policies=total,
                unique_templates=policies.count_distinct_templates(),
                missing_required_count=missing_required,
                orphaned_count=orphaned,
                future_start_count=future_start,
                negative_amount_count=negative_amounts,
                duplicate_policy_numbers=duplicates,
            )
            span.set_attribute("policy.valid", result.is_valid)

        logger.info(
            "migration.validation_completed",
            extra={
                "status": "valid" if result.is_valid else "invalid",
                "row_count": total,
                "error_count": len(errors),
            },
        )
        return result

    def ensure_valid(self, now: datetime | None = None) -> ValidationResult:
        result = self.validate(now)
        if not result.is_valid:
            raise PolicyValidationError(result.errors)
        return result
