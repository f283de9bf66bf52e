import pytest
import os
from datetime import date, timedelta
from decimal import Decimal

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LEAVE_STATUS_EMAIL_DELAY_SECONDS"] = "3600"
os.environ.pop("SMTP_USER", None)
os.environ.pop("SMTP_PASSWORD", None)

from fastapi.testclient import TestClient

from intranet.core.init_system import seed_reference_data
from intranet.database import Base, SessionLocal, engine, get_db
from intranet.main import app
from intranet.models.leave_balance import LeaveBalance
from intranet.models.user import User, UserRole
from intranet.services import auth as auth_service
from intranet.services.leave_notifications import status_email_scheduler

# A fixed Wednesday keeps date rules deterministic in service tests
TODAY = date(2030, 1, 9)
PASSWORD = "Password123!"
PASSWORD_HASH = auth_service.get_password_hash(PASSWORD)


def next_weekday(start: date, offset: int) -> date:
    """First Monday-Friday date at least `offset` days after `start`."""
    day = start + timedelta(days=offset)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day


class FakeSender:
    """Records outgoing mail instead of talking to SMTP."""

    def __init__(self):
        self.sent = []

    def send(self, to, subject, html, text=None, cc=None):
        self.sent.append({"to": list(to), "cc": list(cc or []), "subject": subject, "html": html, "text": text})
        return True


class FakeScheduler:
    def __init__(self):
        self.scheduled = []
        self.cancelled = []

    def schedule(self, request_id):
        self.scheduled.append(request_id)

    def cancel(self, request_id):
        self.cancelled.append(request_id)
        return True


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema per test on the shared in-memory engine."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_status_emails():
    yield
    status_email_scheduler.cancel_all()


def make_user(db, emp_id, role, first_name, manager=None, email=None):
    user = User(
        emp_id=emp_id,
        email=email or f"{emp_id.lower()}@acme.com",
        hashed_password=PASSWORD_HASH,
        first_name=first_name,
        last_name="Test",
        role=role,
        reporting_manager_id=manager.id if manager else None,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def users(db_session):
    """
    super_admin
      └─ hr
          ├─ manager ── employee
          └─ other_manager ── outsider
    """
    admin = make_user(db_session, "SA001", UserRole.SUPER_ADMIN, "Sara")
    hr = make_user(db_session, "HR001", UserRole.HR, "Hana", manager=admin)
    manager = make_user(db_session, "MG001", UserRole.MANAGER, "Omar", manager=hr)
    other_manager = make_user(db_session, "MG002", UserRole.MANAGER, "Rami", manager=hr)
    employee = make_user(db_session, "EM001", UserRole.EMPLOYEE, "Lina", manager=manager)
    outsider = make_user(db_session, "EM002", UserRole.EMPLOYEE, "Yusuf", manager=other_manager)
    return {
        "super_admin": admin,
        "hr": hr,
        "manager": manager,
        "other_manager": other_manager,
        "employee": employee,
        "outsider": outsider,
    }


def set_balance(db, user, casual="0", sick="0", lop="10"):
    balance = db.query(LeaveBalance).filter(LeaveBalance.employee_id == user.id).first()
    if balance is None:
        balance = LeaveBalance(employee_id=user.id)
        db.add(balance)
    balance.casual_balance = Decimal(casual)
    balance.sick_balance = Decimal(sick)
    balance.lop_balance = Decimal(lop)
    db.commit()
    return balance


def get_balance(db, user):
    db.expire_all()
    return db.query(LeaveBalance).filter(LeaveBalance.employee_id == user.id).first()


@pytest.fixture(scope="function")
def balances(db_session, users):
    for key in ("employee", "manager", "hr", "outsider"):
        set_balance(db_session, users[key], casual="5", sick="3", lop="10")
    return users


@pytest.fixture(scope="function")
def rules(db_session):
    seed_reference_data(db_session)


@pytest.fixture(scope="function")
def get_token():
    def _get_token(user):
        return auth_service.create_access_token(data={
            "sub": user.email,
            "role": user.role.value,
            "user_id": user.id,
        })
    return _get_token


@pytest.fixture(scope="function")
def auth_headers(get_token):
    def _headers(user):
        return {"Authorization": f"Bearer {get_token(user)}"}
    return _headers


@pytest.fixture(scope="function")
def client(db_session):
    """Get a TestClient that uses the test database session via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
