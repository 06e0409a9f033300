import os
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ.setdefault("IDENTITY_TOKEN_SECRET", "test-secret")
os.environ["ADMIN_EMAILS"] = "admin@example.com"
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path
import uuid
from datetime import datetime, timezone

sys.path.append(str(Path(__file__).resolve().parents[2]))

from filetracker.main import app
from filetracker.database import Base, get_db
from filetracker import models, notify, pubsub
from filetracker.auth import create_identity_token
from filetracker.rbac import AuthContext, Identity
from filetracker.services.provisioning import sync_user_on_login
from filetracker.store import hub

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db
hub.bind(TestingSessionLocal)

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
ADMIN_EMAIL = "admin@example.com"


@pytest.fixture(autouse=True)
def clean_state():
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    notify.EMAIL_OUTBOX.clear()
    notify.PUSH_OUTBOX.clear()
    hub.clear()
    # the fake broker is bound to the event loop of the client that created it
    pubsub._redis = None
    yield
    hub.clear()


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def make_identity(email: str | None = None, *, name: str | None = None, uid: str | None = None) -> Identity:
    email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
    return Identity(
        uid=uid or f"uid-{uuid.uuid5(uuid.NAMESPACE_DNS, email).hex[:12]}",
        email=email,
        display_name=name or email.split("@")[0].title(),
    )


def login(db, email: str | None = None, **kwargs) -> AuthContext:
    """Reconcile an identity as a login and return its context."""
    user = sync_user_on_login(db, make_identity(email, **kwargs))
    return AuthContext.from_user(user)


def admin_ctx(db) -> AuthContext:
    return login(db, ADMIN_EMAIL, name="Ada Admin")


def auth_headers(email: str | None = None, **kwargs) -> dict:
    token = create_identity_token(make_identity(email, **kwargs))
    return {"Authorization": f"Bearer {token}"}


def seed_study_ids(db, *participant_ids: str, active: bool = True) -> list[models.StudyId]:
    entries = [
        models.StudyId(participant_id=pid, is_active=active, description=f"{pid} files")
        for pid in participant_ids
    ]
    db.add_all(entries)
    db.commit()
    return entries
