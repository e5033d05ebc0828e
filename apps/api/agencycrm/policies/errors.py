from __future__ import annotations


class PolicyMigrationError(Exception):
    """Base error for policy migration failures."""


class PolicyValidationError(PolicyMigrationError):
    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Policy validation failed")


class RecordMigrationError(PolicyMigrationError):
    """Raised for a single legacy record; the engine collects these and moves on."""

    def __init__(self, policy_number: str, message: str) -> None:
        self.policy_number = policy_number
        self.message = message
        super().__init__(f"Failed to migrate policy {policy_number}: {message}")


class BackupError(PolicyMigrationError):
    pass


class IntegrityViolation(PolicyMigrationError):
    def __init__(self, failed_checks: list[str]) -> None:
        self.failed_checks = list(failed_checks)
        super().__init__(f"Integrity checks failed: {', '.join(self.failed_checks)}")


class RollbackError(PolicyMigrationError):
    pass
