"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
from cryptography.fernet import Fernet

from hookrelay.config import Settings
from hookrelay.crypto import SecretBox
from hookrelay.models import Subscription
from hookrelay.registry import SubscriptionRegistry
from hookrelay.storage import HookStorage
from hookrelay.webhooks.dispatcher import DeliveryDispatcher
from hookrelay.webhooks.signing import generate_secret

# Add tests directory to path so helpers can be imported by test modules
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

OWNER_ID = "acct_1"
RECEIVER_URL = "https://receiver.example.com/hooks"


class RecordingSleep:
    """Stands in for asyncio.sleep and records every requested delay."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class Receiver:
    """A scripted webhook receiver for httpx.MockTransport.

    Each entry in ``script`` is either an httpx.Response or an exception
    instance to raise; the last entry repeats once the script is used up.
    """

    def __init__(self, *script: httpx.Response | Exception) -> None:
        self.script = list(script) or [httpx.Response(200, text="ok")]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        step = self.script[min(len(self.requests), len(self.script) - 1)]
        self.requests.append(request)
        if isinstance(step, Exception):
            raise step
        return httpx.Response(step.status_code, headers=step.headers, content=step.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def timeout_error() -> httpx.ReadTimeout:
    return httpx.ReadTimeout("timed out")


def connect_error() -> httpx.ConnectError:
    return httpx.ConnectError("connection refused")


@pytest.fixture
def test_settings() -> Settings:
    """Settings for unit tests: inline retries, one-second backoff unit."""
    return Settings(
        env="test",
        retry_mode="inline",
        backoff_base_seconds=1.0,
        secret_encryption_key=Fernet.generate_key().decode("ascii"),
    )


@pytest.fixture
def queued_settings(test_settings: Settings) -> Settings:
    return test_settings.model_copy(update={"retry_mode": "queued"})


@pytest.fixture
async def storage(test_settings: Settings):
    """In-memory Qdrant storage. No external server is required."""
    store = HookStorage(
        prefix="test",
        location=":memory:",
        secret_box=SecretBox(test_settings.effective_encryption_key),
    )
    await store.initialize()

    yield store

    await store.close()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_subscription(storage: HookStorage) -> Callable[..., Any]:
    """Factory that stores a subscription and returns it."""

    async def _make(**overrides: Any) -> Subscription:
        data: dict[str, Any] = {
            "owner_id": OWNER_ID,
            "name": "Test hook",
            "url": RECEIVER_URL,
            "secret": generate_secret(),
            "events": ["post.created"],
        }
        data.update(overrides)
        subscription = Subscription.model_validate(data)
        await storage.store_subscription(subscription)
        return subscription

    return _make


@pytest.fixture
def make_dispatcher(
    storage: HookStorage, test_settings: Settings, sleep: RecordingSleep
) -> Callable[..., DeliveryDispatcher]:
    """Factory for a dispatcher wired to a scripted receiver."""

    def _make(
        receiver: Receiver,
        settings: Settings | None = None,
        **kwargs: Any,
    ) -> DeliveryDispatcher:
        return DeliveryDispatcher(
            storage,
            settings or test_settings,
            transport=receiver.transport,
            sleep=sleep,
            **kwargs,
        )

    return _make


@pytest.fixture
def registry(storage: HookStorage) -> SubscriptionRegistry:
    return SubscriptionRegistry(storage)
