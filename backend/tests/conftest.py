import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "billing-test-secret-key-0123456789abcdef")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import create_access_token
from app.core.settings import settings
from app.db.session import get_db
from app.main import app
from app.models import Base, Bill, Patient, Role, User
from app.schemas.billing import BillCreate, BillItemCreate
from app.services.bills import create_bill
from app.services.payments import ReplacingRecorder
from app.services.ref_codes import ensure_billing_line_codes


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )

    # pysqlite needs to be told to leave transaction control to SQLAlchemy
    # before SAVEPOINT works.
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False)
    session = TestingSession()
    ensure_billing_line_codes(session)
    yield session
    session.close()


@pytest.fixture()
def users(db_session):
    staff = {
        role: User(email=f"{role}@stmarys-hospital.in", full_name=f"{role.title()} Desk", role=Role(role))
        for role in ("admin", "billing", "pharmacist", "reception")
    }
    db_session.add_all(staff.values())
    db_session.commit()
    return staff


@pytest.fixture()
def cashier(users):
    return users["billing"]


@pytest.fixture()
def patient(db_session, users):
    patient = Patient(
        uhid="UH000123",
        first_name="Asha",
        last_name="Menon",
        phone="9800000000",
        created_by_user_id=users["admin"].id,
    )
    db_session.add(patient)
    db_session.commit()
    return patient


def consultation_and_lab_items() -> list[BillItemCreate]:
    return [
        BillItemCreate(description="Consultation", quantity=1, unit_amount_paise=50000),
        BillItemCreate(
            description="Lab Test", quantity=1, unit_amount_paise=30000, category="lab_test"
        ),
    ]


@pytest.fixture()
def make_bill(db_session, cashier, patient):
    def _make(items: list[BillItemCreate] | None = None, **fields):
        payload = BillCreate(
            patient_id=patient.id,
            items=items or consultation_and_lab_items(),
            **fields,
        )
        bill = create_bill(db_session, payload, cashier)
        db_session.commit()
        return bill

    return _make


def bearer_for(user: User) -> dict[str, str]:
    token = create_access_token(
        subject=str(user.id),
        secret=settings.secret_key,
        alg=settings.jwt_alg,
        expires_minutes=30,
        extra={"role": user.role.value},
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def api_client(db_session):
    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    # Not entered as a context manager: startup would touch the configured database.
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers(cashier):
    return bearer_for(cashier)


@pytest.fixture()
def headers_for():
    return bearer_for


class ConcurrentEditRecorder(ReplacingRecorder):
    """Bumps the bill's version behind the session's back, as another request would."""

    def record(self, db, bill, splits, actor, now):
        rows = super().record(db, bill, splits, actor, now)
        bills = Bill.__table__
        db.execute(
            update(bills)
            .where(bills.c.id == bill.id)
            .values(version_id=bills.c.version_id + 1)
        )
        return rows


@pytest.fixture()
def concurrent_edit_recorder():
    return ConcurrentEditRecorder()
