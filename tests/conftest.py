import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="envelope-ledger-tests-")

os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ["AUTO_CATEGORIZE_AI"] = "0"

from datetime import date  # noqa: E402
from decimal import Decimal  # noqa: E402

from fastapi.testclient import TestClient  # noqa: E402
import pytest  # noqa: E402

from db import Base, SessionLocal, engine  # noqa: E402
from envelopes.main import app  # noqa: E402
from envelopes.services import accounts, ledger  # noqa: E402
from envelopes.services.notifications import RecordingNotifier  # noqa: E402
from envelopes.services.periods import Period  # noqa: E402

USER = "user-1"
OTHER_USER = "user-2"

# Fixed past month so results never depend on today's date
PERIOD = Period(2024, 3)
NEXT_PERIOD = Period(2024, 4)


def _reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_db():
    _reset_db()
    yield


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def client(notifier) -> TestClient:
    app.state.notifier = notifier
    return TestClient(app, headers={"X-User-Id": USER})


# -------------------------------------------------------------------
# Builders
# -------------------------------------------------------------------

def day(n: int, period: Period = PERIOD) -> date:
    return date(period.year, period.month, n)


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


@pytest.fixture()
def checking(db):
    return accounts.create_account(db, USER, "Checking", "cash", balance=1000)


@pytest.fixture()
def visa(db):
    return accounts.create_account(db, USER, "Visa", "credit", balance=0)


def spend(db, account, amount, category, on=None, **kwargs):
    """Record an outflow of `amount` (positive number) in PERIOD."""
    return ledger.create_transaction(
        db, USER, account.id, -money(amount), f"{category} purchase", category,
        txn_date=on or day(10), **kwargs,
    )
