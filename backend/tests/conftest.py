"""
Pytest fixtures for BookStack backend tests.

Provides the app with an in-memory database, per-test table wipe with
seeded membership plans, record factories, recording collaborators and
auth headers.
"""

from datetime import datetime

import pytest

from bookstack import create_app
from bookstack.extensions import db
from bookstack.models import Address, Title, User
from bookstack.models.accounts import ROLE_ADMIN, ROLE_USER
from bookstack.models.catalog import AVAILABILITY_AVAILABLE, AVAILABILITY_OUT_OF_STOCK
from bookstack.services import membership_service, session_service
from bookstack.services.auth_service import hash_password
from bookstack.services.invoice_service import TextInvoiceRenderer
from bookstack.services.blob_service import LocalBlobStore


# Fixed clock used by service-level tests
NOW = datetime(2026, 3, 15, 12, 0, 0)


class RecordingNotifier:
    """Notifier fake; keeps every call for assertions."""

    def __init__(self):
        self.sent = []
        self.role_messages = []

    def notify(self, recipient_user_id, category, message, *, title_id=None, target_id=None):
        self.sent.append({
            "user_id": recipient_user_id,
            "category": category,
            "message": message,
            "title_id": title_id,
            "target_id": target_id,
        })

    def notify_role(self, role, message, *, category="SYSTEM"):
        self.role_messages.append({"role": role, "message": message, "category": category})

    def messages_for(self, user_id):
        return [n["message"] for n in self.sent if n["user_id"] == user_id]

    def reset(self):
        self.sent.clear()
        self.role_messages.clear()


class RecordingMailer:
    def __init__(self):
        self.outbox = []

    def send(self, to_address, subject, text_body, *, html_body=None, attachments=None):
        self.outbox.append({
            "to": to_address,
            "subject": subject,
            "text_body": text_body,
            "attachments": list(attachments or []),
        })

    def reset(self):
        self.outbox.clear()


@pytest.fixture(scope='session')
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope='session')
def mailer():
    return RecordingMailer()


@pytest.fixture(scope='session')
def blob_root(tmp_path_factory):
    return tmp_path_factory.mktemp("blobs")


@pytest.fixture(scope='session')
def app(notifier, mailer, blob_root):
    """Create application for testing."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'BCRYPT_ROUNDS': 4,
            'EXPIRY_SWEEP_ENABLED': False,
        },
        notifier=notifier,
        mailer=mailer,
        invoice_renderer=TextInvoiceRenderer(),
        blob_store=LocalBlobStore(blob_root),
    )

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app, notifier, mailer):
    """Fresh database (with seeded plans) for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    membership_service.seed_default_plans()
    notifier.reset()
    mailer.reset()

    yield db.session

    # Cleanup after test
    db.session.rollback()
    db.session.remove()


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: user on a named plan (None leaves the plan unassigned)."""
    counter = {"n": 0}

    def _make(plan="basic", *, role=ROLE_USER, enrolled_at=NOW, name=None):
        counter["n"] += 1
        plan_obj = membership_service.get_plan_by_name(plan) if plan else None
        user = User(
            name=name or f"Reader {counter['n']}",
            email=f"reader{counter['n']}@bookstack.test",
            password_hash=hash_password("Password123"),
            role=role,
            is_active=True,
            membership_plan=plan_obj,
            enrollment_start_date=enrolled_at if plan_obj is not None else None,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def make_title(db_session):
    counter = {"n": 0}

    def _make(*, copies=5, price_cents=10000, restricted=False, status=None, content_key=None):
        counter["n"] += 1
        title = Title(
            title=f"Title {counter['n']}",
            author="A. Author",
            isbn=f"978000000{counter['n']:04d}",
            price_cents=price_cents,
            is_restricted=restricted,
            content_key=content_key,
            copies_available=copies,
            availability_status=status or (AVAILABILITY_AVAILABLE if copies > 0 else AVAILABILITY_OUT_OF_STOCK),
        )
        db_session.add(title)
        db_session.commit()
        return title

    return _make


@pytest.fixture(scope='function')
def make_address(db_session):
    def _make(user, city="Springfield"):
        address = Address(user_id=user.id, line1="1 Library Lane", city=city, postal_code="12345")
        db_session.add(address)
        db_session.commit()
        return address

    return _make


@pytest.fixture(scope='function')
def reader(make_user):
    return make_user("basic")


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user(None, role=ROLE_ADMIN, name="Admin")


def auth_headers(user) -> dict:
    """Helper to create Authorization headers for a user."""
    _, token = session_service.create_session(user.id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def reader_headers(reader):
    return auth_headers(reader)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture(scope='function')
def make_headers(db_session):
    return auth_headers
