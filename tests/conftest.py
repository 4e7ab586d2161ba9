"""Shared fixtures: in-memory SQLite schema, a tenant, and a three-page funnel"""
import os

os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient

import app.models  # noqa: F401  registers every table on Base.metadata
from app.db.session import Base, SessionLocal, engine, get_db
from app.main import app as fastapi_app
from app.models.funnel import Funnel, FunnelPage, FunnelStatus
from app.models.organization import Organization
from app.models.variant import FunnelVariant, VariantStatus


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    def _get_test_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = _get_test_db
    yield TestClient(fastapi_app)
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def org(db):
    org = Organization(name="Acme Coaching")
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


@pytest.fixture
def other_org(db):
    org = Organization(name="Someone Else")
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


@pytest.fixture
def funnel(db, org):
    funnel = Funnel(org_id=org.id, name="Webinar signup", slug="webinar", status=FunnelStatus.ACTIVE)
    db.add(funnel)
    db.flush()
    for position, name in enumerate(["Landing", "Checkout", "Thank you"], start=1):
        db.add(FunnelPage(org_id=org.id, funnel_id=funnel.id, position=position, name=name))
    db.commit()
    db.refresh(funnel)
    return funnel


@pytest.fixture
def pages(db, funnel):
    return db.query(FunnelPage).filter(FunnelPage.funnel_id == funnel.id).order_by(FunnelPage.position).all()


@pytest.fixture
def make_variant(db, funnel):
    def _make(key, traffic=50, is_control=False, status=VariantStatus.ACTIVE, target=None):
        target = target or funnel
        variant = FunnelVariant(
            org_id=target.org_id,
            funnel_id=target.id,
            name=f"Variant {key}",
            variant_key=key,
            traffic_percentage=traffic,
            is_control=is_control,
            status=status,
        )
        db.add(variant)
        db.commit()
        db.refresh(variant)
        return variant
    return _make
