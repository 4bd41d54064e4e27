"""
Pytest configuration and shared fixtures.

The app reads its settings at import time, so the environment is pinned here
before anything under `app` is imported:
- in-memory SQLite (single shared connection)
- local file storage under a temp directory (R2 disabled)
- no real OpenAI / Stripe credentials
"""

import os
import sys
import tempfile
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

_FILES_DIR = tempfile.mkdtemp(prefix="whisperoo-files-")

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FILE_BASE_PATH"] = _FILES_DIR
os.environ["OPENAI_API_KEY"] = ""
os.environ["LLM_DEFAULT_PROVIDER"] = "openai"
os.environ["R2_ACCOUNT_ID"] = ""
os.environ["R2_ACCESS_KEY_ID"] = ""
os.environ["R2_SECRET_ACCESS_KEY"] = ""
os.environ["R2_PUBLIC_URL"] = ""
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-whisperoo-backend-0123456789"
os.environ["BCRYPT_ROUNDS"] = "4"

from typing import Any, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.application.auth.token_service import TokenService  # noqa: E402
from app.common.errors import BadRequestError  # noqa: E402
from app.domain import models  # noqa: E402
from app.infra.config import settings  # noqa: E402
from app.infra.db import Base, SessionLocal, engine  # noqa: E402
from app.infra.stripe_gateway import StripeGateway, get_stripe_gateway  # noqa: E402
from app.llm.base import LlmProvider  # noqa: E402
from app.llm.model_selector import LlmModelSelector  # noqa: E402
from app.llm.registry import LlmProviderRegistry  # noqa: E402
from app.main import app  # noqa: E402


# ---------- fakes ----------

TOPIC_AXES = ("sleep", "feeding", "tantrum")


class FakeProvider(LlmProvider):
    """Deterministic provider: one embedding axis per topic keyword."""

    name = "fake"

    def __init__(self, reply: str = "Here is some advice.", fail_chat: bool = False, fail_embed: bool = False):
        self.reply = reply
        self.fail_chat = fail_chat
        self.fail_embed = fail_embed
        self.chat_calls: List[Dict[str, Any]] = []
        self.embed_calls: List[str] = []

    async def chat(self, messages, model, *, max_tokens=256, temperature=0.8, extra_params=None) -> str:
        self.chat_calls.append(
            {"messages": list(messages), "model": model, "max_tokens": max_tokens, "temperature": temperature}
        )
        if self.fail_chat:
            raise RuntimeError("llm down")
        return self.reply

    async def embed(self, text: str, model: str) -> List[float]:
        self.embed_calls.append(text)
        if self.fail_embed:
            raise RuntimeError("embedding down")
        lowered = (text or "").lower()
        vec = [1.0 if axis in lowered else 0.0 for axis in TOPIC_AXES]
        if not any(vec):
            vec = [0.0, 0.0, 0.0, 1.0]
        else:
            vec.append(0.0)
        return vec


class FakeStripeGateway(StripeGateway):
    def __init__(self, fail_create: bool = False):
        super().__init__(secret_key="sk_test_fake", webhook_secret="whsec_fake")
        self.fail_create = fail_create
        self.created: List[Dict[str, Any]] = []
        self.cancelled: List[str] = []
        self.events: Dict[str, Dict[str, Any]] = {}

    def create_payment_intent(self, *, amount, currency, metadata, description):
        intent_id = f"pi_test_{len(self.created) + 1}"
        self.created.append(
            {"id": intent_id, "amount": amount, "currency": currency, "metadata": metadata, "description": description}
        )
        return {"id": intent_id, "client_secret": f"{intent_id}_secret"}

    def cancel_payment_intent(self, intent_id: str) -> None:
        self.cancelled.append(intent_id)

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        event = self.events.get(signature)
        if event is None:
            raise BadRequestError(code="INVALID_SIGNATURE", message="Webhook signature verification failed")
        return event


def make_selector(provider: Optional[LlmProvider]) -> LlmModelSelector:
    providers = {"fake": provider} if provider is not None else {}
    return LlmModelSelector(LlmProviderRegistry(providers))


# ---------- fixtures ----------

@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def fake_stripe():
    gateway = FakeStripeGateway()
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway
    yield gateway
    app.dependency_overrides.pop(get_stripe_gateway, None)


@pytest.fixture
def make_profile(db):
    counter = {"n": 0}

    def _make(account_type: str = "parent", **fields) -> models.Profile:
        counter["n"] += 1
        fields.setdefault("email", f"user{counter['n']}@example.com")
        fields.setdefault("first_name", f"User{counter['n']}")
        profile = models.Profile(account_type=account_type, **fields)
        db.add(profile)
        db.commit()
        db.refresh(profile)
        return profile

    return _make


@pytest.fixture
def auth_headers():
    tokens = TokenService()

    def _headers(profile: models.Profile) -> Dict[str, str]:
        token = tokens.encode_access_token(profile_id=profile.id, email=profile.email)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture(autouse=True)
def files_dir(tmp_path, monkeypatch) -> str:
    """Each test writes local storage into its own directory."""
    monkeypatch.setattr(settings, "FILE_BASE_PATH", str(tmp_path))
    return str(tmp_path)
