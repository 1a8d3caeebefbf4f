import os
import shutil
import tempfile
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import event

# Create a temporary SQLite database file for the whole test session
_TEMP_DIR = tempfile.mkdtemp(prefix="affiliate_ledger_tests_")
_DB_FILE = os.path.join(_TEMP_DIR, "test_ledger.db")
os.environ["AFFILIATE_LEDGER_DATABASE_URL"] = f"sqlite:///{_DB_FILE}"
os.environ["AFFILIATE_LEDGER_ADMIN_TOKEN"] = "test-admin-token"
os.environ["ENABLE_SCHEDULER"] = "false"

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Initialize a fresh temporary SQLite database for tests and clean it up after."""
    # Import after setting env var so the app uses the temp DB
    from affiliate_ledger.database import engine, init_db

    # Enable SQLite foreign keys on every pooled connection
    if "sqlite" in str(engine.url):
        engine.dispose()

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    init_db()

    yield

    try:
        engine.dispose()
    except Exception:
        pass
    shutil.rmtree(_TEMP_DIR, ignore_errors=True)


# Function-scope autouse fixture so each test starts from empty tables.
@pytest.fixture(autouse=True)
def _clean_domain_tables():
    from affiliate_ledger import crud
    from affiliate_ledger.database import SessionLocal

    session = SessionLocal()
    try:
        crud.reset_application_data(session)
    finally:
        session.close()


@pytest.fixture
def test_db():
    """Provide a database session for each test with automatic rollback."""
    from affiliate_ledger.database import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        try:
            session.rollback()
        except Exception:
            pass
        session.close()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from affiliate_ledger.main import app

    return TestClient(app)


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)


@pytest.fixture
def make_link(test_db):
    """Seed a merchant, offer and affiliate and return their tracked link."""
    from affiliate_ledger import crud
    from affiliate_ledger.models import Affiliate, Merchant, Offer

    def _make(
        affiliate_terms=("percent", "30"),
        platform_terms=("percent", "10"),
        destination_url="https://merchant.example.com/coaching",
        currency=None,
    ):
        merchant = Merchant(
            name="Acme Coaching",
            affiliate_commission_type=affiliate_terms[0],
            affiliate_commission_value=Decimal(affiliate_terms[1]),
            platform_commission_type=platform_terms[0],
            platform_commission_value=Decimal(platform_terms[1]),
            commission_currency=currency,
        )
        test_db.add(merchant)
        test_db.flush()
        offer = Offer(merchant_id=merchant.id, title="Coaching Program", destination_url=destination_url)
        affiliate = Affiliate(name="Pat Partner", email="pat@example.com")
        test_db.add_all([offer, affiliate])
        test_db.commit()
        return crud.get_or_create_tracked_link(test_db, affiliate, offer)

    return _make


@pytest.fixture
def make_click(test_db):
    """Record a click on a tracked link the way the redirect endpoint does."""
    from affiliate_ledger import crud
    from affiliate_ledger.core.tracking import RequestMeta

    def _make(link):
        return crud.create_click(test_db, link, str(uuid.uuid4()), RequestMeta(ip_address="198.51.100.7"))

    return _make
