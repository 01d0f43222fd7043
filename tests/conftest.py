import asyncio
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-memory storage, fixed public URLs
os.environ.setdefault("STORAGE_BACKEND", "memory")
# Mongo backend tests use this database and skip when it is unreachable
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "hndigest_test")
os.environ.setdefault("BASE_URL", "http://api.test")
os.environ.setdefault("SITE_URL", "http://site.test")
os.environ.setdefault("NOTIFICATION_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("SEND_CONCURRENCY", "2")

from hndigest.core.exceptions import CaptchaError, MailerError  # noqa: E402
from hndigest.models import Item, StrategyConfig  # noqa: E402
from hndigest.services.captcha import CaptchaVerifier  # noqa: E402
from hndigest.services.fetcher import ContentSource  # noqa: E402
from hndigest.services.mailer import Mailer  # noqa: E402
from hndigest.storage.memory import MemoryBackend  # noqa: E402
from hndigest.storage.table import TableStorage  # noqa: E402


class FakeMailer(Mailer):
    """Records every send. Addresses in fail_for raise MailerError."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.fail_for = fail_for or set()
        self.verifications: list[tuple[str, str, str]] = []
        self.preference_updates: list[tuple[str, str, str]] = []
        self.digests: list[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send_verification(self, email: str, verify_url: str, strategy_description: str) -> None:
        if email in self.fail_for:
            raise MailerError(f"Failed to send email to {email}")
        self.verifications.append((email, verify_url, strategy_description))

    async def send_preference_update(self, email: str, old_description: str, new_description: str) -> None:
        if email in self.fail_for:
            raise MailerError(f"Failed to send email to {email}")
        self.preference_updates.append((email, old_description, new_description))

    async def send_digest(self, subject: str, html: str, text: str, email: str, unsubscribe_url: str) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if email in self.fail_for:
                raise MailerError(f"Failed to send email to {email}")
            self.digests.append(
                {"subject": subject, "html": html, "text": text, "email": email, "unsubscribe_url": unsubscribe_url}
            )
        finally:
            self.in_flight -= 1


class FakeCaptcha(CaptchaVerifier):
    def __init__(self, result: bool = True, error: bool = False) -> None:
        self.result = result
        self.error = error
        self.tokens: list[str] = []

    async def verify(self, token: str) -> bool:
        self.tokens.append(token)
        if self.error:
            raise CaptchaError()
        return self.result


class FakeContentSource(ContentSource):
    def __init__(self, items: list[Item] | None = None) -> None:
        self.items = items or []
        self.calls: list[dict] = []

    async def fetch_candidate_items(self, min_count: int, min_score: int, since: int) -> dict[str, Item]:
        self.calls.append({"min_count": min_count, "min_score": min_score, "since": since})
        return {item.id: item for item in self.items}


@pytest.fixture
def make_item():
    def _make(item_id: str, score: int, title: str | None = None) -> Item:
        return Item(
            id=item_id,
            title=title or f"Story {item_id}",
            url=f"https://example.com/{item_id}",
            score=score,
            created_at="2026-10-18T12:00:00Z",
        )

    return _make


@pytest.fixture
def strategies() -> StrategyConfig:
    return StrategyConfig()


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest_asyncio.fixture
async def mongo_backend():
    """MongoBackend on an emptied test database."""
    from pymongo.errors import PyMongoError

    from hndigest.db.init import connect
    from hndigest.storage.mongo import MongoBackend, Record

    try:
        client = await connect(
            os.environ["MONGODB_URI"],
            os.environ["MONGODB_DB_NAME"],
            serverSelectionTimeoutMS=1000,
        )
    except PyMongoError as e:
        pytest.skip(f"MongoDB not reachable: {e}")
    collection = Record.get_motor_collection()
    await collection.delete_many({})
    yield MongoBackend()
    await collection.delete_many({})
    client.close()


@pytest.fixture
def storage(backend: MemoryBackend, strategies: StrategyConfig) -> TableStorage:
    # Small pages so listing crosses page boundaries
    return TableStorage(backend, strategies, page_size=2)


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def captcha() -> FakeCaptcha:
    return FakeCaptcha()


@pytest.fixture
def content_source() -> FakeContentSource:
    return FakeContentSource()


@pytest_asyncio.fixture
async def client(storage, mailer, captcha) -> AsyncGenerator[AsyncClient, None]:
    from hndigest import deps
    from hndigest.main import app

    app.dependency_overrides[deps.get_storage] = lambda: storage
    app.dependency_overrides[deps.get_mailer] = lambda: mailer
    app.dependency_overrides[deps.get_captcha] = lambda: captcha
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
