"""
Pytest fixtures for StitchLine backend tests.

Provides the in-memory database, one user (and Actor) per role, and helpers
that walk a SKU through the pipeline stages.
"""

import pytest
from stitchline import create_app
from stitchline.config import TestConfig
from stitchline.extensions import db
from stitchline.services import ledger_service, sku_service
from stitchline.services.permission_service import make_actor
from stitchline.services.user_service import bootstrap_user


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _actor_for(role: str):
    user = bootstrap_user(username=f"{role}_user", role=role, email=f"{role}@example.com")
    return make_actor(user_id=user.id)


@pytest.fixture(scope='function')
def admin(db_session):
    return _actor_for("admin")


@pytest.fixture(scope='function')
def qc(db_session):
    return _actor_for("qc_team")


@pytest.fixture(scope='function')
def sales_user(db_session):
    return _actor_for("sales_team")


@pytest.fixture(scope='function')
def line_master(db_session):
    return _actor_for("line_master")


@pytest.fixture(scope='function')
def sku(db_session, admin):
    """SKU AB-1 with no ledger history."""
    return sku_service.create_sku(
        actor=admin,
        payload={"sku": "ab-1", "product_name": "Cotton Shirt", "category": "Shirts", "price_cents": 89900},
    )


@pytest.fixture(scope='function')
def stocked_sku(db_session, admin, sku):
    """
    AB-1 walked through the whole line:
    100m fabric, 80m cut into 60 pieces, 60 stitched, 55 finished + 5 rejected,
    50 received into the warehouse.
    """
    record(admin, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=10_000)
    record(admin, "cutting", sku.id, total_fabric_used_cm=8_000, total_pieces_cut=60)
    record(admin, "production", sku.id, total_stitched=60)
    record(admin, "finishing", sku.id, finished_pieces=55, rejected_pieces=5)
    record(admin, "warehouse", sku.id, quantity_received=50, storage_location="Rack A")
    return sku


def record(actor, stage, sku_id, **fields):
    """Create one stage event through the public service."""
    return ledger_service.create_record(stage, actor=actor, payload={"sku_id": sku_id, **fields})


@pytest.fixture(scope='function')
def record_event(db_session):
    """The `record` helper as a fixture."""
    return record
