from agencycrm.policies.errors import (
    BackupError,
    IntegrityViolation,
    PolicyMigrationError,
    PolicyValidationError,
    RecordMigrationError,
    RollbackError,
)
from agencycrm.policies.models import VALID_POLICY_STATUSES, LegacyPolicy, PolicyInstance, PolicyTemplate
from agencycrm.policies.schemas import (
    BackupResult,
    CleanupOptions,
    CleanupResult,
    DataIntegrityReport,
    IntegrityCheck,
    IntegrityReport,
    MigrationOptions,
    MigrationResult,
    MigrationStatusReport,
    RollbackResult,
    ValidationResult,
)

__all__ = [
    "BackupError",
    "IntegrityViolation",
    "PolicyMigrationError",
    "PolicyValidationError",
    "RecordMigrationError",
    "RollbackError",
    "VALID_POLICY_STATUSES",
    "LegacyPolicy",
    "PolicyInstance",
    "PolicyTemplate",
    "BackupResult",
    "CleanupOptions",
    "CleanupResult",
    "DataIntegrityReport",
    "IntegrityCheck",
    "IntegrityReport",
    "MigrationOptions",
    "MigrationResult",
    "MigrationStatusReport",
    "RollbackResult",
    "ValidationResult",
]
