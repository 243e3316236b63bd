import asyncio
import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

# Settings are read at import time; keep tests off real infrastructure.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["SMTP_ENABLED"] = "false"
os.environ["QR_ENABLED"] = "true"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import hivex.models  # noqa: F401
from hivex.core.db import Base, get_db
from hivex.main import app
from hivex.models.member import Member
from hivex.models.venue import Venue
from hivex.services import deals as deal_service
from hivex.services.issuance import issue_deal
from hivex.services.qr_storage import FileQrStorage, get_qr_storage


def utc(days: float = 0) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


@pytest.fixture
def session_factory(tmp_path) -> Generator[async_sessionmaker, None, None]:
    # File-backed so separate sessions really are separate connections.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hivex.db'}", poolclass=NullPool)
    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield factory
    asyncio.run(engine.dispose())


@pytest.fixture
def qr_storage(tmp_path) -> FileQrStorage:
    return FileQrStorage(tmp_path / "qr")


@pytest.fixture
def client(session_factory, qr_storage) -> Generator[TestClient, None, None]:
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_qr_storage] = lambda: qr_storage
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class Seeder:
    """Runs service calls against the test database, one session per call."""

    def __init__(self, factory: async_sessionmaker):
        self.factory = factory

    def call(self, fn, /, **kwargs):
        async def _go():
            async with self.factory() as session:
                return await fn(session, **kwargs)

        return asyncio.run(_go())

    def _add(self, obj):
        async def _go():
            async with self.factory() as session:
                session.add(obj)
                await session.commit()
                await session.refresh(obj)
                return obj

        return asyncio.run(_go())

    def venue(self, name: str = "Blue Bar", email: str | None = None) -> Venue:
        email = email or f"{name.lower().replace(' ', '-')}@venues.example.com"
        return self._add(Venue(name=name, address="1 Main St", email=email, password_hash="x"))

    def member(self, email: str = "ann@members.example.com", *, is_broker: bool = False) -> Member:
        return self._add(Member(email=email, password_hash="x", first_name="Ann", is_broker=is_broker))

    def deal(
        self,
        venue_id: int,
        *,
        title: str = "Two for one",
        total_created: int = 3,
        expiry: datetime | None = None,
        issue: bool = True,
        activate: bool = True,
        storage=None,
    ):
        deal = self.call(
            deal_service.create_deal,
            venue_id=venue_id,
            title=title,
            value="50%",
            description="Happy hour",
            expiry=expiry,
            total_created=total_created,
        )
        if issue:
            self.call(
                issue_deal,
                deal_id=deal.id,
                venue_id=venue_id,
                with_qr=storage is not None,
                qr_storage=storage,
            )
        if activate:
            self.call(deal_service.activate_deal, deal_id=deal.id, venue_id=venue_id)
        return self.call(deal_service.get_deal, deal_id=deal.id)


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)
