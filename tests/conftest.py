import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
for _name in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_WHATSAPP_FROM", "CRON_SECRET_TOKEN"):
    os.environ[_name] = ""

from datetime import datetime, timezone  # noqa: E402
from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import orderdesk.models  # noqa: E402,F401
from orderdesk.database import Base  # noqa: E402
from orderdesk.schemas.analysis import Analysis, TaskMatchResult  # noqa: E402
from orderdesk.services.result import Result  # noqa: E402

USER = "whatsapp:+919800000001"
OTHER_USER = "whatsapp:+919800000002"


@pytest.fixture
def engine():
    """In-memory SQLite shared by every connection of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def now():
    """Monday 19 October 2026, 10:00 UTC."""
    return datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def analysis(intent="unknown", entity_type=None, **parameters) -> Analysis:
    return Analysis.model_validate({"intent": intent, "entityType": entity_type, "parameters": parameters})


@pytest.fixture
def classifier():
    """Classifier double; tests set `classify.return_value` / `side_effect`."""
    fake = Mock()
    fake.classify.return_value = Analysis.unknown()
    fake.match_task.return_value = TaskMatchResult.empty()
    fake.llm = Mock()
    return fake


class FakeMessenger:
    def __init__(self, configured=True, fail=False):
        self._configured = configured
        self.fail = fail
        self.sent = []
        self.media = {}

    @property
    def configured(self):
        return self._configured

    def send(self, to, body):
        if self.fail:
            return Result.failure("boom", code="twilio_500")
        self.sent.append((to, body))
        return Result.success(f"SM{len(self.sent):04d}")

    def download_media(self, url):
        if url not in self.media:
            return Result.failure("not found", code="download_failed")
        return Result.success((self.media[url], "audio/ogg"))


@pytest.fixture
def messenger():
    return FakeMessenger()
