# resumeapi/conftest.py
import os

# Settings are read at import time; pin the test environment first
os.environ["ENV"] = "test"
os.environ["SKIP_ENV_VALIDATION"] = "1"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRICE_ID_PROFESSIONAL"] = "price_1ProMonthly"
os.environ["STRIPE_PRICE_ID_PREMIUM"] = "price_1TopMonthly"
os.environ["AUTH_JWT_SECRET"] = "test-jwt-secret"
os.environ["FRONTEND_URL"] = "http://localhost:3000"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import delete  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def database(tmp_path_factory):
    """
    SQLite database for the whole test session.

    Tables are created once; rows are cleared before every test.
    """
    from resumeapi.core.database import init_engine, create_all_tables

    url = f"sqlite:///{tmp_path_factory.mktemp('db') / 'resumeapi_test.db'}"
    os.environ["TEST_DATABASE_URL"] = url
    init_engine(url)
    create_all_tables()
    yield url


@pytest.fixture(scope="function", autouse=True)
def reset_db(database):
    """Empty every table and zero the metrics before each test."""
    from resumeapi.core.database import get_db_session, metadata
    from resumeapi.core.metrics import METRICS

    with get_db_session() as session:
        for table in reversed(metadata.sorted_tables):
            session.execute(delete(table))
    METRICS.reset()
    yield


@pytest.fixture
def fake_provider():
    from resumeapi.tests.mocks import FakeBillingProvider

    return FakeBillingProvider()


@pytest.fixture
def app(fake_provider):
    from resumeapi.main import create_app

    return create_app(provider=fake_provider)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def alice():
    from resumeapi.features.users.service import get_or_create_user

    return get_or_create_user("user_alice", email="alice@example.com")


@pytest.fixture
def alice_headers(alice):
    return {"X-User-Id": alice.user_id}
