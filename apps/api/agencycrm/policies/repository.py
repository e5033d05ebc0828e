from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Row, delete, func, or_, select
from sqlalchemy.orm import Session

from agencycrm.crm.models import Client
from agencycrm.policies.models import VALID_POLICY_STATUSES, LegacyPolicy, PolicyInstance, PolicyTemplate

SAMPLE_LIMIT = 5


def _blank(column: Any) -> Any:
    return or_(column.is_(None), func.trim(column) == "")


class BaseRepository:
    model: Any = None

    def __init__(self, session: Session) -> None:
        self.session = session

    def count(self) -> int:
        return self.session.scalar(select(func.count()).select_from(self.model)) or 0

    def delete_all(self) -> int:
        result = self.session.execute(delete(self.model))
        return result.rowcount or 0

    def count_where(self, *criteria: Any) -> int:
        return self.session.scalar(select(func.count()).select_from(self.model).where(*criteria)) or 0

    def sample_ids(self, *criteria: Any) -> list[str]:
        rows = self.session.scalars(
            select(self.model.id).where(*criteria).order_by(self.model.id).limit(SAMPLE_LIMIT)
        ).all()
        return [str(value) for value in rows]


class PolicyTermsRepository(BaseRepository):
    """Criteria shared by legacy rows and instances, which carry the same policy terms."""

    def negative_amounts(self) -> Any:
        return or_(self.model.premium_amount < 0, self.model.commission_amount < 0)

    def future_start(self, now: datetime) -> Any:
        return self.model.start_date > now

    def invalid_date_range(self) -> Any:
        return self.model.start_date >= self.model.expiry_date

    def invalid_status(self) -> Any:
        return or_(self.model.status.is_(None), self.model.status.not_in(VALID_POLICY_STATUSES))

    def expired_but_active(self, now: datetime) -> Any:
        return (self.model.status == "Active") & (self.model.expiry_date < now)


class LegacyPolicyRepository(PolicyTermsRepository):
    model = LegacyPolicy

    def fetch_batch(self, offset: int, limit: int) -> list[Row[Any]]:
        table = LegacyPolicy.__table__
        stmt = (
            select(table)
            .order_by(table.c.created_at.asc(), table.c.id.asc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.execute(stmt).all())

    def count_missing_required(self) -> int:
        return self.count_where(
            or_(
                _blank(LegacyPolicy.policy_number),
                _blank(LegacyPolicy.policy_type),
                _blank(LegacyPolicy.provider),
                _blank(LegacyPolicy.client_id),
            )
        )

    def _template_keys(self) -> Any:
        return (
            select(LegacyPolicy.policy_number, LegacyPolicy.policy_type, LegacyPolicy.provider)
            .distinct()
            .subquery()
        )

    def count_distinct_templates(self) -> int:
        return self.session.scalar(select(func.count()).select_from(self._template_keys())) or 0

    def duplicate_policy_numbers(self) -> list[tuple[str, int]]:
        keys = self._template_keys()
        stmt = (
            select(keys.c.policy_number, func.count().label("variant_count"))
            .group_by(keys.c.policy_number)
            .having(func.count() > 1)
            .order_by(keys.c.policy_number)
        )
        return [(row.policy_number, int(row.variant_count)) for row in self.session.execute(stmt)]


class PolicyTemplateRepository(BaseRepository):
    model = PolicyTemplate

    def find_by_key(self, policy_number: str, policy_type: str, provider: str) -> PolicyTemplate | None:
        stmt = (
            select(PolicyTemplate)
            .where(
                PolicyTemplate.policy_number == policy_number,
                PolicyTemplate.policy_type == policy_type,
                PolicyTemplate.provider == provider,
            )
            .order_by(PolicyTemplate.created_at.asc(), PolicyTemplate.id.asc())
            .limit(1)
        )
        return self.session.scalar(stmt)

    def create(self, **values: Any) -> PolicyTemplate:
        template = PolicyTemplate(id=uuid.uuid4(), **values)
        self.session.add(template)
        self.session.flush()
        return template

    def duplicate_keys(self) -> list[tuple[str, str, str, int]]:
        stmt = (
            select(
                PolicyTemplate.policy_number,
                PolicyTemplate.policy_type,
                PolicyTemplate.provider,
                func.count().label("row_count"),
            )
            .group_by(PolicyTemplate.policy_number, PolicyTemplate.policy_type, PolicyTemplate.provider)
            .having(func.count() > 1)
            .order_by(PolicyTemplate.policy_number)
        )
        return [
            (row.policy_number, row.policy_type, row.provider, int(row.row_count)) for row in self.session.execute(stmt)
        ]

    def ids_for_policy_number(self, policy_number: str) -> list[str]:
        return self.sample_ids(PolicyTemplate.policy_number == policy_number)

    def without_instances(self) -> Any:
        return ~select(PolicyInstance.id).where(PolicyInstance.policy_template_id == PolicyTemplate.id).exists()


class PolicyInstanceRepository(PolicyTermsRepository):
    model = PolicyInstance

    def find(self, policy_template_id: uuid.UUID, client_id: str) -> PolicyInstance | None:
        stmt = (
            select(PolicyInstance)
            .where(
                PolicyInstance.policy_template_id == policy_template_id,
                PolicyInstance.client_id == client_id,
            )
            .limit(1)
        )
        return self.session.scalar(stmt)

    def create(self, **values: Any) -> PolicyInstance:
        instance = PolicyInstance(id=uuid.uuid4(), **values)
        self.session.add(instance)
        self.session.flush()
        return instance

    def duplicate_keys(self) -> list[tuple[uuid.UUID, str, int]]:
        stmt = (
            select(PolicyInstance.policy_template_id, PolicyInstance.client_id, func.count().label("row_count"))
            .group_by(PolicyInstance.policy_template_id, PolicyInstance.client_id)
            .having(func.count() > 1)
        )
        return [(row.policy_template_id, row.client_id, int(row.row_count)) for row in self.session.execute(stmt)]


class ClientRepository(BaseRepository):
    model = Client

    def get_active(self, client_id: str) -> Client | None:
        stmt = select(Client).where(Client.id == client_id, Client.deleted_at.is_(None))
        return self.session.scalar(stmt)
