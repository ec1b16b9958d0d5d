from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from main import app
from core.db import Base, build_engine, get_db
from core import config as core_config
from models.store import Store
from models.subscription import Subscription
from models.user import User, user_store_map
from security.password import hash_password
from security import jwt as jwt_utils
from services import email as email_service


@pytest.fixture(scope="session", autouse=True)
def test_settings():
    core_config.settings.JWT_SECRET = "test-secret"
    core_config.settings.TESTING = True
    core_config.settings.SUBSCRIPTION_DEFAULT_GRACE_DAYS = 7
    core_config.settings.SUBSCRIPTION_EXPIRY_WARNING_DAYS = 7
    core_config.settings.SUBSCRIPTION_PERIOD_DAYS = 30
    yield


@pytest.fixture()
def db():
    """Fresh in-memory database shared by the test and the app under test."""
    engine = build_engine("sqlite:///:memory:")
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()

    def _get_db():
        yield session

    app.dependency_overrides[get_db] = _get_db
    try:
        yield session
    finally:
        session.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    sent = []

    def _fake_send(to_email: str, subject: str, body: str) -> None:
        sent.append({"to": to_email, "subject": subject, "body": body})

    monkeypatch.setattr(email_service, "send_email", _fake_send)
    return sent


@pytest.fixture()
def client(db):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db):
    def _make_user(email: str, name: str = "Test User", system_role: str | None = None, password: str | None = None) -> User:
        user = User(
            name=name,
            email=email,
            password_hash=hash_password(password) if password else None,
            system_role=system_role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture
def make_store(db):
    def _make_store(name: str = "Test Store", owner: User | None = None, status: str = "active", plan: str = "basic") -> Store:
        store = Store(name=name, plan=plan, status=status, owner_id=owner.id if owner else None)
        db.add(store)
        db.commit()
        db.refresh(store)
        if owner:
            add_membership(db, owner, store, "owner")
        return store
    return _make_store


@pytest.fixture
def make_subscription(db):
    def _make_subscription(store: Store, end_date: datetime, status: str = "active", grace_days: int | None = 7, **extra) -> Subscription:
        subscription = Subscription(
            store_id=store.id,
            plan=extra.pop("plan", "basic"),
            status=status,
            start_date=extra.pop("start_date", end_date - timedelta(days=30)),
            end_date=end_date,
            grace_days=grace_days,
            **extra,
        )
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
        return subscription
    return _make_subscription


def add_membership(db, user: User, store: Store, role: str) -> None:
    db.execute(user_store_map.insert().values(
        user_id=user.id,
        store_id=store.id,
        role=role,
        name=user.name,
        email=user.email,
    ))
    db.commit()


@pytest.fixture
def add_member(db):
    def _add_member(user: User, store: Store, role: str) -> None:
        add_membership(db, user, store, role)
    return _add_member


@pytest.fixture
def owner(make_user):
    return make_user("owner@example.com", name="Olivia Owner")


@pytest.fixture
def super_admin(make_user):
    return make_user("root@example.com", name="Platform Admin", system_role="super_admin", password="adminpass123")


@pytest.fixture
def store(make_store, owner):
    return make_store("Corner Shop", owner=owner)


def auth_header(user: User) -> dict:
    return {"Authorization": f"Bearer {jwt_utils.create_access_token(str(user.id))}"}


@pytest.fixture
def owner_headers(owner):
    return auth_header(owner)


@pytest.fixture
def admin_headers(super_admin):
    return auth_header(super_admin)


@pytest.fixture
def headers_for():
    return auth_header
