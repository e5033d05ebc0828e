from __future__ import annotations

import re

from sqlalchemy import func, inspect, select, text
from sqlalchemy.orm import Session

from agencycrm.crm.models import Client
from agencycrm.policies.models import LegacyPolicy, PolicyInstance, PolicyTemplate

_IDENTIFIER_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


def is_valid_identifier(name: str) -> bool:
    return bool(_IDENTIFIER_RE.match(name or ""))


class StoreAdmin:
    """Dialect-facing table operations used by backup, rollback and integrity checks.

    Table names are never interpolated into SQL unless they pass ``is_valid_identifier``
    and are quoted by the bound dialect.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def _quote(self, name: str) -> str:
        if not is_valid_identifier(name):
            raise ValueError(f"Invalid table identifier: {name!r}")
        return self.session.get_bind().dialect.identifier_preparer.quote(name)

    def table_exists(self, name: str) -> bool:
        return inspect(self.session.connection()).has_table(name)

    def list_tables(self, prefix: str = "") -> list[str]:
        names = inspect(self.session.connection()).get_table_names()
        return sorted(name for name in names if name.startswith(prefix))

    def table_columns(self, name: str) -> list[str]:
        return [column["name"] for column in inspect(self.session.connection()).get_columns(name)]

    def count_rows(self, name: str) -> int:
        return self.session.execute(text(f"SELECT COUNT(*) FROM {self._quote(name)}")).scalar_one()

    def snapshot_table(self, source: str, target: str) -> int:
        """Copy ``source`` into a new table ``target`` in a single statement and return its row count."""
        self.session.execute(text(f"CREATE TABLE {self._quote(target)} AS SELECT * FROM {self._quote(source)}"))
        return self.count_rows(target)

    def restore_from_snapshot(self, snapshot: str, table: str) -> int:
        """Replace every row of ``table`` with the rows of ``snapshot``. Caller owns the transaction."""
        quoted_table = self._quote(table)
        quoted_snapshot = self._quote(snapshot)
        columns = ", ".join(self._quote(name) for name in self.table_columns(table))

        self.session.execute(text(f"DELETE FROM {quoted_table}"))
        self.session.execute(
            text(f"INSERT INTO {quoted_table} ({columns}) SELECT {columns} FROM {quoted_snapshot}")
        )
        return self.count_rows(table)

    def drop_table(self, name: str) -> None:
        self.session.execute(text(f"DROP TABLE {self._quote(name)}"))

    def count_orphaned_policies(self) -> int:
        stmt = select(func.count()).select_from(LegacyPolicy).where(*self._orphaned_policy_criteria())
        return self.session.scalar(stmt) or 0

    def orphaned_policy_ids(self, limit: int = 5) -> list[str]:
        stmt = select(LegacyPolicy.id).where(*self._orphaned_policy_criteria()).order_by(LegacyPolicy.id).limit(limit)
        return list(self.session.scalars(stmt).all())

    @staticmethod
    def _orphaned_policy_criteria() -> tuple:
        # Blank client ids are reported as missing data, not as orphans.
        has_client = select(Client.id).where(Client.id == LegacyPolicy.client_id).exists()
        return (LegacyPolicy.client_id.is_not(None), func.trim(LegacyPolicy.client_id) != "", ~has_client)

    def count_orphaned_instances(self, *, check_template: bool = True, check_client: bool = True) -> int:
        return self.session.scalar(
            select(func.count()).select_from(PolicyInstance).where(self._orphan_criterion(check_template, check_client))
        ) or 0

    def orphaned_instance_ids(
        self, *, check_template: bool = True, check_client: bool = True, limit: int = 5
    ) -> list[str]:
        stmt = (
            select(PolicyInstance.id)
            .where(self._orphan_criterion(check_template, check_client))
            .order_by(PolicyInstance.id)
            .limit(limit)
        )
        return [str(value) for value in self.session.scalars(stmt).all()]

    @staticmethod
    def _orphan_criterion(check_template: bool, check_client: bool):
        has_template = select(PolicyTemplate.id).where(PolicyTemplate.id == PolicyInstance.policy_template_id).exists()
        has_client = select(Client.id).where(Client.id == PolicyInstance.client_id).exists()
        if check_template and check_client:
            return ~has_template | ~has_client
        if check_template:
            return ~has_template
        if check_client:
            return ~has_client
        raise ValueError("At least one reference must be checked")
