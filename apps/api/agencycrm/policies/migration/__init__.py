from agencycrm.policies.migration.backup import BackupManager
from agencycrm.policies.migration.cleanup import CleanupController
from agencycrm.policies.migration.engine import PolicyMigrationEngine
from agencycrm.policies.migration.integrity import PolicyIntegrityVerifier, render_markdown
from agencycrm.policies.migration.rollback import RollbackController
from agencycrm.policies.migration.status import MigrationStatusReporter
from agencycrm.policies.migration.validator import PolicyValidator

__all__ = [
    "BackupManager",
    "CleanupController",
    "PolicyMigrationEngine",
    "PolicyIntegrityVerifier",
    "render_markdown",
    "RollbackController",
    "MigrationStatusReporter",
    "PolicyValidator",
]
