"""Shared pytest fixtures for the Autoflow test suite.

Provides:
- A per-test async SQLite database file (aiosqlite)
- Fake AI and delivery collaborators that record what they were asked to do
- An ExecutorService wired to both
- A helper for saving workflows
"""

import os

# Override settings BEFORE any autoflow imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./autoflow_test.db")
os.environ.setdefault("AI_PROVIDER", "simulated")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from autoflow.db.database import init_db  # noqa: E402
from autoflow.schemas.workflow import WorkflowCreate  # noqa: E402
from autoflow.services import workflow_service  # noqa: E402
from autoflow.services.ai_service import AIServiceError  # noqa: E402
from autoflow.services.delivery_service import DeliveryError, DeliveryReceipt, DeliveryService  # noqa: E402
from autoflow.services.executor_service import ExecutorService  # noqa: E402

OWNER = "user-1"

CONTACTS = [
    {"email": "ada@example.com", "name": "Ada", "company": "Analytical Engines", "score": 92},
    {"email": "grace@example.com", "name": "Grace", "company": "Navy", "score": 75},
    {"email": "linus@example.com", "name": "Linus", "company": "Kernel Co", "score": 40},
]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeAI:
    def __init__(self, fail: bool = False, analysis: dict | None = None):
        self.fail = fail
        self.analysis = analysis
        self.prompts: list[str] = []

    async def generate(self, prompt: str, context: dict) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise AIServiceError("model unavailable")
        return f"Generated: {prompt}"

    async def analyze(self, prompt: str, data: list[dict]) -> dict:
        self.prompts.append(prompt)
        if self.fail:
            raise AIServiceError("model unavailable")
        if self.analysis is not None:
            return self.analysis
        return {
            "segments": [{"name": "all", "count": len(data)}],
            "insights": [],
            "recommendations": [],
            "priority_contacts": [r for r in data if r.get("score", 0) > 80],
        }


class FakeDelivery(DeliveryService):
    def __init__(self, fail_for: tuple[str, ...] = (), fail_all: bool = False):
        super().__init__()
        self.fail_for = set(fail_for)
        self.fail_all = fail_all
        self.sent = []

    async def send(self, provider, credentials, message):
        if self.fail_all or message.to in self.fail_for:
            raise DeliveryError(provider, f"recipient {message.to} rejected", 422)
        self.sent.append((provider, message))
        return DeliveryReceipt(provider=provider, recipient=message.to, message_id=f"msg-{len(self.sent)}")


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'autoflow.db'}", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_ai():
    return FakeAI()


@pytest.fixture
def fake_delivery():
    return FakeDelivery()


@pytest.fixture
def executor(session_factory, fake_ai, fake_delivery):
    return ExecutorService(
        session_factory=session_factory,
        ai=fake_ai,
        delivery=fake_delivery,
        wait_inline_max_ms=1_000,
    )


@pytest.fixture
def make_workflow(session_factory):
    """Save a workflow owned by OWNER and return it."""

    async def _make(steps: list[dict], **fields):
        fields.setdefault("name", "Test workflow")
        async with session_factory() as db:
            return await workflow_service.save_workflow(db, WorkflowCreate(steps=steps, **fields), OWNER)

    return _make


def data_source_step(step_id: str = "step_1", records=None, required=("email", "name")) -> dict:
    return {
        "id": step_id,
        "type": "data_source",
        "name": "Load contacts",
        "config": {
            "source_type": "upload",
            "required_fields": list(required),
            "records": CONTACTS if records is None else records,
        },
        "position": {"x": 0, "y": 0},
    }


def email_step(step_id: str = "step_2", **config) -> dict:
    return {
        "id": step_id,
        "type": "email_send",
        "name": "Send",
        "config": {"email_service": "resend", "from_email": "team@example.com", **config},
    }
