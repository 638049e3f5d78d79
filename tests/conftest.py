import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["LINE_CHANNEL_SECRET"] = "test-channel-secret"

from datetime import timedelta
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import lineflow.models  # noqa: F401
from lineflow.database import Base, get_db, utcnow
from lineflow.models import Contact, ContactAttribute, ContactTag, Message, Tag
from lineflow.services.line_service import LineProfile, LineService


@pytest.fixture
def db_session():
    """In-memory SQLite session with the full schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def mock_line():
    """LINE client double; every call succeeds unless a test says otherwise."""
    line = Mock(spec=LineService)
    line.get_profile.return_value = LineProfile(displayName="Taro", pictureUrl="https://example.com/p.png")
    return line


@pytest.fixture
def client(db_session):
    from lineflow.main import app

    app.dependency_overrides[get_db] = lambda: db_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": "test-admin-token"}


@pytest.fixture
def make_contact(db_session):
    counter = {"n": 0}

    def _make(line_user_id=None, status="active", display_name=None, tags=(), attributes=None):
        counter["n"] += 1
        now = utcnow()
        contact = Contact(
            line_user_id=line_user_id or f"U{counter['n']:032d}",
            display_name=display_name,
            status=status,
            # Distinct creation times keep ordering deterministic
            created_at=now + timedelta(microseconds=counter["n"]),
            updated_at=now,
        )
        db_session.add(contact)
        db_session.flush()
        for name in tags:
            tag = db_session.query(Tag).filter(Tag.name == name).first()
            if tag is None:
                tag = Tag(name=name)
                db_session.add(tag)
                db_session.flush()
            db_session.add(ContactTag(contact_id=contact.id, tag_id=tag.id))
        for key, value in (attributes or {}).items():
            db_session.add(ContactAttribute(contact_id=contact.id, key=key, value=value))
        db_session.commit()
        return contact

    return _make


@pytest.fixture
def add_message(db_session):
    def _add(contact, content="hello", direction="inbound", created_at=None, message_type="text"):
        message = Message(
            contact_id=contact.id,
            direction=direction,
            message_type=message_type,
            content=content,
            created_at=created_at or utcnow(),
        )
        db_session.add(message)
        db_session.commit()
        return message

    return _add
