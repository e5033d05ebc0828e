from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


MigrationStatus = Literal["SUCCESS", "PARTIAL_SUCCESS", "FAILED"]
CheckSeverity = Literal["error", "warning", "info"]
OverallIntegrityStatus = Literal["passed", "warnings", "failed"]
MigrationState = Literal["READY", "PARTIAL", "COMPLETED_LEGACY_PRESENT", "COMPLETED", "EMPTY"]


class DuplicatePolicyNumber(BaseModel):
    policy_number: str
    variant_count: int


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    total_policies: int = 0
    unique_templates: int = 0
    missing_required_count: int = 0
    orphaned_count: int = 0
    future_start_count: int = 0
    negative_amount_count: int = 0
    duplicate_policy_numbers: list[DuplicatePolicyNumber] = Field(default_factory=list)


class BackupResult(BaseModel):
    success: bool
    backup_id: str = ""
    row_count: int = 0
    error: str | None = None


class BackupInfo(BaseModel):
    backup_id: str
    created_at: datetime


class MigrationOptions(BaseModel):
    dry_run: bool = False
    batch_size: int = Field(default=100, ge=1)
    skip_duplicates: bool = True
    create_backup: bool = True


class MigrationResult(BaseModel):
    success: bool
    status: MigrationStatus
    dry_run: bool = False
    backup_id: str | None = None
    templates_created: int = 0
    instances_created: int = 0
    policies_migrated: int = 0
    duplicate_templates: int = 0
    duplicate_instances: int = 0
    skipped_policies: int = 0
    errors: list[str] = Field(default_factory=list)


class IntegrityCheck(BaseModel):
    name: str
    passed: bool
    details: str
    severity: CheckSeverity = "error"
    description: str = ""
    affected_records: int = 0
    sample_ids: list[str] = Field(default_factory=list)


class DuplicateTemplateKey(BaseModel):
    policy_number: str
    policy_type: str
    provider: str
    count: int


class DuplicateInstanceKey(BaseModel):
    policy_template_id: UUID
    client_id: str
    count: int


class IntegrityReport(BaseModel):
    success: bool
    checks: list[IntegrityCheck] = Field(default_factory=list)
    duplicate_templates: list[DuplicateTemplateKey] = Field(default_factory=list)
    duplicate_instances: list[DuplicateInstanceKey] = Field(default_factory=list)


class IntegritySummary(BaseModel):
    total_checks: int
    passed: int
    warnings: int
    errors: int


class DataIntegrityReport(BaseModel):
    generated_at: datetime
    overall_status: OverallIntegrityStatus
    checks: list[IntegrityCheck]
    summary: IntegritySummary


class RollbackResult(BaseModel):
    success: bool
    backup_id: str
    restored_count: int = 0
    error: str | None = None


class CleanupOptions(BaseModel):
    create_final_backup: bool = True


class CleanupResult(BaseModel):
    success: bool
    deleted_count: int = 0
    backup_id: str | None = None
    error: str | None = None


class MigrationStatusReport(BaseModel):
    state: MigrationState
    legacy_policies: int
    policy_templates: int
    policy_instances: int
    hint: str
