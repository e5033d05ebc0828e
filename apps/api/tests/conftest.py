from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agencycrm import audit
from agencycrm.core.config import get_settings
from agencycrm.core.database import Base
from agencycrm.crm.models import Client
from agencycrm.policies.models import LegacyPolicy

BASE_TIME = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_state() -> Generator[None, None, None]:
    get_settings.cache_clear()
    audit.audit_entries.clear()
    yield
    get_settings.cache_clear()
    audit.audit_entries.clear()


@pytest.fixture()
def make_client(db_session: Session) -> Callable[..., Client]:
    def _make(client_id: str, name: str | None = None, *, deleted: bool = False) -> Client:
        client = Client(
            id=client_id,
            name=name or f"Client {client_id}",
            deleted_at=BASE_TIME if deleted else None,
        )
        db_session.add(client)
        db_session.commit()
        return client

    return _make


@pytest.fixture()
def make_policy(db_session: Session) -> Callable[..., LegacyPolicy]:
    sequence = {"value": 0}

    def _make(
        policy_number: str,
        client_id: str,
        *,
        policy_type: str = "Life",
        provider: str = "X",
        premium: str = "1200.00",
        commission: str = "120.00",
        status: str = "Active",
        start_date: datetime | None = None,
        expiry_date: datetime | None = None,
    ) -> LegacyPolicy:
        sequence["value"] += 1
        created_at = BASE_TIME + timedelta(minutes=sequence["value"])
        start = start_date or datetime(2024, 1, 1, tzinfo=timezone.utc)
        policy = LegacyPolicy(
            id=f"pol-{sequence['value']:04d}",
            policy_number=policy_number,
            policy_type=policy_type,
            provider=provider,
            premium_amount=Decimal(premium),
            commission_amount=Decimal(commission),
            status=status,
            start_date=start,
            expiry_date=expiry_date or start + timedelta(days=365 * 20),
            client_id=client_id,
            created_at=created_at,
            updated_at=created_at,
        )
        db_session.add(policy)
        db_session.commit()
        return policy

    return _make


@pytest.fixture()
def scenario_a(make_client: Callable[..., Client], make_policy: Callable[..., LegacyPolicy]) -> None:
    """Three legacy rows: two share ("POL-1", "Life", "X") for different clients."""
    make_client("c1", "Ada")
    make_client("c2", "Grace")
    make_policy("POL-1", "c1")
    make_policy("POL-1", "c2")
    make_policy("POL-2", "c1", policy_type="Auto", provider="Y")
