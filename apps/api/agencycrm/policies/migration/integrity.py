from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agencycrm.metrics import observe_integrity_failure
from agencycrm.otel import get_tracer
from agencycrm.policies.repository import (
    LegacyPolicyRepository,
    PolicyInstanceRepository,
    PolicyTemplateRepository,
)
from agencycrm.policies.schemas import (
    DataIntegrityReport,
    DuplicateInstanceKey,
    DuplicateTemplateKey,
    IntegrityCheck,
    IntegrityReport,
    IntegritySummary,
)
from agencycrm.policies.store_admin import StoreAdmin

logger = logging.getLogger("agencycrm.policies.migration.integrity")
tracer = get_tracer(__name__)


@dataclass(slots=True)
class PolicyIntegrityVerifier:
    session: Session

    @property
    def _policies(self) -> LegacyPolicyRepository:
        return LegacyPolicyRepository(self.session)

    @property
    def _templates(self) -> PolicyTemplateRepository:
        return PolicyTemplateRepository(self.session)

    @property
    def _instances(self) -> PolicyInstanceRepository:
        return PolicyInstanceRepository(self.session)

    @property
    def _admin(self) -> StoreAdmin:
        return StoreAdmin(self.session)

    def verify_migration_integrity(self, now: datetime | None = None) -> IntegrityReport:
        """Post-migration checks. Read-only; failures are reported, never repaired."""
        current = now or datetime.now(timezone.utc)
        instances = self._instances

        with tracer.start_as_current_span("policy_migration.verify") as span:
            checks: list[IntegrityCheck] = []

            policy_count = self._policies.count()
            instance_count = instances.count()
            checks.append(
                IntegrityCheck(
                    name="Policy to Instance Count Match",
                    passed=policy_count == instance_count,
                    details=f"Policies: {policy_count}, Instances: {instance_count}",
                    affected_records=abs(policy_count - instance_count),
                )
            )

            orphaned = self._admin.count_orphaned_instances()
            checks.append(
                IntegrityCheck(
                    name="No Orphaned Instances",
                    passed=orphaned == 0,
                    details=f"Orphaned instances: {orphaned}",
                    affected_records=orphaned,
                    sample_ids=self._admin.orphaned_instance_ids() if orphaned else [],
                )
            )

            duplicate_templates = [
                DuplicateTemplateKey(policy_number=number, policy_type=policy_type, provider=provider, count=count)
                for number, policy_type, provider, count in self._templates.duplicate_keys()
            ]
            checks.append(
                IntegrityCheck(
                    name="Template Uniqueness",
                    passed=not duplicate_templates,
                    details=f"Duplicate templates: {len(duplicate_templates)}",
                    affected_records=sum(item.count for item in duplicate_templates),
                )
            )

            duplicate_instances = [
                DuplicateInstanceKey(policy_template_id=template_id, client_id=client_id, count=count)
                for template_id, client_id, count in instances.duplicate_keys()
            ]
            checks.append(
                IntegrityCheck(
                    name="Instance Uniqueness",
                    passed=not duplicate_instances,
                    details=f"Duplicate instances: {len(duplicate_instances)}",
                    affected_records=sum(item.count for item in duplicate_instances),
                )
            )

            inconsistent = instances.negative_amounts() | instances.future_start(current)
            invalid = instances.count_where(inconsistent)
            checks.append(
                IntegrityCheck(
                    name="Data Consistency",
                    passed=invalid == 0,
                    details=f"Invalid instances: {invalid}",
                    affected_records=invalid,
                    sample_ids=instances.sample_ids(inconsistent) if invalid else [],
                )
            )

            success = all(check.passed for check in checks)
            span.set_attribute("integrity.success", success)

        for check in checks:
            if not check.passed:
                observe_integrity_failure(check.name)
        logger.info(
            "migration.integrity_verified",
            extra={
                "passed": success,
                "error_count": sum(1 for check in checks if not check.passed),
            },
        )
        return IntegrityReport(
            success=success,
            checks=checks,
            duplicate_templates=duplicate_templates,
            duplicate_instances=duplicate_instances,
        )

    def run_all_checks(self, now: datetime | None = None) -> DataIntegrityReport:
        """Broader data-quality report for operators.

        Each check is isolated: a store failure turns that check into a failed error
        check and the remaining checks still run.
        """
        current = now or datetime.now(timezone.utc)
        runners: list[tuple[str, str, Callable[[], IntegrityCheck]]] = [
            (
                "Template Uniqueness",
                "Check that policy templates are unique per policy number, type and provider",
                self._check_template_uniqueness,
            ),
            (
                "Template-Instance Consistency",
                "Check that all instances have valid template references",
                self._check_template_references,
            ),
            (
                "Templates Without Instances",
                "Check for templates that no client holds",
                self._check_unused_templates,
            ),
            (
                "Client References",
                "Check that all policies/instances have valid client references",
                self._check_client_references,
            ),
            (
                "Date Consistency",
                "Check that start dates are before expiry dates",
                self._check_date_ranges,
            ),
            (
                "Amount Validation",
                "Check that premium and commission amounts are non-negative",
                self._check_amounts,
            ),
            (
                "Status Consistency",
                "Check that all policies have valid status values",
                self._check_statuses,
            ),
            (
                "Duplicate Instances",
                "Check for duplicate policy instances per client-template combination",
                self._check_duplicate_instances,
            ),
            (
                "Business Rule Compliance",
                "Check for expired policies still marked as Active",
                lambda: self._check_business_rules(current),
            ),
        ]

        checks: list[IntegrityCheck] = []
        with tracer.start_as_current_span("policy_migration.integrity_report"):
            for name, description, runner in runners:
                try:
                    check = runner()
                except SQLAlchemyError as exc:
                    self.session.rollback()
                    logger.warning("migration.integrity_check_failed", extra={"check": name, "error": str(exc)})
                    check = IntegrityCheck(
                        name=name,
                        passed=False,
                        severity="error",
                        details=f"Check failed: {exc}",
                    )
                check = check.model_copy(update={"name": name, "description": description})
                if not check.passed and check.severity != "info":
                    observe_integrity_failure(name)
                checks.append(check)

        summary = IntegritySummary(
            total_checks=len(checks),
            passed=sum(1 for check in checks if check.passed),
            warnings=sum(1 for check in checks if not check.passed and check.severity == "warning"),
            errors=sum(1 for check in checks if not check.passed and check.severity == "error"),
        )
        if summary.errors > 0:
            overall_status = "failed"
        elif summary.warnings > 0:
            overall_status = "warnings"
        else:
            overall_status = "passed"

        logger.info(
            "migration.integrity_report_generated",
            extra={"status": overall_status, "error_count": summary.errors},
        )
        return DataIntegrityReport(
            generated_at=current,
            overall_status=overall_status,
            checks=checks,
            summary=summary,
        )

    def _check_template_uniqueness(self) -> IntegrityCheck:
        duplicates = self._templates.duplicate_keys()
        sample_ids = self._templates.ids_for_policy_number(duplicates[0][0]) if duplicates else []
        return IntegrityCheck(
            name="",
            passed=not duplicates,
            details=(
                "All policy templates are unique"
                if not duplicates
                else f"{len(duplicates)} duplicate template keys found"
            ),
            affected_records=sum(count for *_, count in duplicates),
            sample_ids=sample_ids,
        )

    def _check_template_references(self) -> IntegrityCheck:
        orphaned = self._admin.count_orphaned_instances(check_template=True, check_client=False)
        return IntegrityCheck(
            name="",
            passed=orphaned == 0,
            details=(
                "All instances reference existing templates"
                if orphaned == 0
                else f"{orphaned} instances reference missing templates"
            ),
            affected_records=orphaned,
            sample_ids=self._admin.orphaned_instance_ids(check_client=False) if orphaned else [],
        )

    def _check_unused_templates(self) -> IntegrityCheck:
        templates = self._templates
        criterion = templates.without_instances()
        unused = templates.count_where(criterion)
        return IntegrityCheck(
            name="",
            passed=unused == 0,
            severity="info",
            details="Every template has instances" if unused == 0 else f"{unused} templates have no instances",
            affected_records=unused,
            sample_ids=templates.sample_ids(criterion) if unused else [],
        )

    def _check_client_references(self) -> IntegrityCheck:
        admin = self._admin
        orphaned_instances = admin.count_orphaned_instances(check_template=False, check_client=True)
        orphaned_policies = admin.count_orphaned_policies()
        total = orphaned_instances + orphaned_policies
        sample_ids = admin.orphaned_instance_ids(check_template=False) + admin.orphaned_policy_ids() if total else []
        return IntegrityCheck(
            name="",
            passed=total == 0,
            details=(
                "All client references are valid"
                if total == 0
                else f"{orphaned_instances} instances and {orphaned_policies} old policies reference missing clients"
            ),
            affected_records=total,
            sample_ids=sample_ids[:5],
        )

    def _check_date_ranges(self) -> IntegrityCheck:
        return self._terms_check(
            lambda repo: repo.invalid_date_range(),
            ok="All date ranges are valid",
            problem="have start dates on or after expiry",
            severity="error",
        )

    def _check_amounts(self) -> IntegrityCheck:
        return self._terms_check(
            lambda repo: repo.negative_amounts(),
            ok="All amounts are valid",
            problem="have negative amounts",
            severity="warning",
        )

    def _check_statuses(self) -> IntegrityCheck:
        return self._terms_check(
            lambda repo: repo.invalid_status(),
            ok="All status values are valid",
            problem="have invalid status values",
            severity="warning",
        )

    def _check_business_rules(self, now: datetime) -> IntegrityCheck:
        return self._terms_check(
            lambda repo: repo.expired_but_active(now),
            ok="All business rules are compliant",
            problem="are expired but still marked as Active",
            severity="warning",
        )

    def _check_duplicate_instances(self) -> IntegrityCheck:
        duplicates = self._instances.duplicate_keys()
        return IntegrityCheck(
            name="",
            passed=not duplicates,
            details=(
                "No duplicate instances found"
                if not duplicates
                else f"{len(duplicates)} duplicate client-template combinations found"
            ),
            affected_records=sum(count for *_, count in duplicates),
        )

    def _terms_check(self, criterion_for, *, ok: str, problem: str, severity: str) -> IntegrityCheck:
        instances = self._instances
        policies = self._policies
        instance_criterion = criterion_for(instances)
        policy_criterion = criterion_for(policies)
        bad_instances = instances.count_where(instance_criterion)
        bad_policies = policies.count_where(policy_criterion)
        total = bad_instances + bad_policies

        sample_ids: list[str] = []
        if bad_instances:
            sample_ids.extend(instances.sample_ids(instance_criterion))
        if bad_policies:
            sample_ids.extend(policies.sample_ids(policy_criterion))

        return IntegrityCheck(
            name="",
            passed=total == 0,
            severity=severity,
            details=ok if total == 0 else f"{bad_instances} instances and {bad_policies} old policies {problem}",
            affected_records=total,
            sample_ids=sample_ids[:5],
        )


def render_markdown(report: DataIntegrityReport) -> str:
    lines = [
        "# Policy Data Integrity Report",
        "",
        f"**Generated:** {report.generated_at.isoformat()}",
        f"**Overall Status:** {report.overall_status.upper()}",
        "",
        "## Summary",
        "",
        f"- Total Checks: {report.summary.total_checks}",
        f"- Passed: {report.summary.passed}",
        f"- Warnings: {report.summary.warnings}",
        f"- Errors: {report.summary.errors}",
        "",
        "## Detailed Results",
        "",
    ]
    for check in report.checks:
        if check.passed:
            label = "PASS"
        elif check.severity == "warning":
            label = "WARN"
        elif check.severity == "info":
            label = "INFO"
        else:
            label = "FAIL"
        lines.extend(
            [
                f"### {check.name} - {label}",
                "",
                f"**Description:** {check.description}",
                "",
                f"**Details:** {check.details}",
                "",
                f"**Affected Records:** {check.affected_records}",
                "",
            ]
        )
        if check.sample_ids:
            lines.extend([f"**Sample IDs:** {', '.join(check.sample_ids)}", ""])
        lines.extend(["---", ""])
    return "\n".join(lines)
