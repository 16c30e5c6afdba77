"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

from orderdesk.core.container import ServiceContainer  # noqa: E402
from orderdesk.schemas.order import OrderCreate  # noqa: E402
from orderdesk.services.admin_policy import AdminPolicy  # noqa: E402
from orderdesk.services.order_service import OrderIntakeService  # noqa: E402
from orderdesk.services.status_service import StatusTransitionManager  # noqa: E402
from orderdesk.services.webhook_service import WebhookIngestor  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakePaymentGateway,
    InMemoryOrderRepository,
    InMemoryWebhookEventRepository,
    RecordingNotifier,
)

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache."""
    from orderdesk.core.config import get_settings

    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def mock_supabase_client() -> MagicMock:
    """Provide a mocked Supabase client with an empty default response."""
    mock_client = MagicMock()
    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )
    return mock_client


@pytest.fixture
def repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def event_repository() -> InMemoryWebhookEventRepository:
    return InMemoryWebhookEventRepository()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def policy(mock_supabase_client: MagicMock) -> AdminPolicy:
    return AdminPolicy(
        mock_supabase_client,
        location_admins={"downtown": ["kitchen@example.com"]},
    )


@pytest.fixture
def transitions(
    repository: InMemoryOrderRepository,
    notifier: RecordingNotifier,
    policy: AdminPolicy,
) -> StatusTransitionManager:
    return StatusTransitionManager(repository, notifier, policy)


@pytest.fixture
def intake(
    repository: InMemoryOrderRepository,
    gateway: FakePaymentGateway,
    transitions: StatusTransitionManager,
    policy: AdminPolicy,
) -> OrderIntakeService:
    return OrderIntakeService(
        repository,
        gateway,
        transitions,
        frontend_url="https://shop.example.com",
        policy=policy,
    )


@pytest.fixture
def ingestor(
    repository: InMemoryOrderRepository,
    event_repository: InMemoryWebhookEventRepository,
    gateway: FakePaymentGateway,
    transitions: StatusTransitionManager,
) -> WebhookIngestor:
    return WebhookIngestor(
        repository,
        event_repository,
        gateway,
        transitions,
        signing_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def container(
    mock_supabase_client: MagicMock,
    repository: InMemoryOrderRepository,
    policy: AdminPolicy,
    transitions: StatusTransitionManager,
    intake: OrderIntakeService,
    ingestor: WebhookIngestor,
) -> ServiceContainer:
    return ServiceContainer(
        database=mock_supabase_client,
        orders=repository,
        policy=policy,
        transitions=transitions,
        intake=intake,
        webhooks=ingestor,
    )


@pytest.fixture
def client(container: ServiceContainer) -> Generator[TestClient, None, None]:
    """Provide a test client wired to in-memory services."""
    from orderdesk.main import create_app

    app = create_app(container=container)
    with TestClient(app) as test_client:
        yield test_client


def order_payload(**overrides: Any) -> dict[str, Any]:
    """JSON body for a valid in-store taco order."""
    payload: dict[str, Any] = {
        "items": [{"name": "Taco", "quantity": 2, "unit_price": "3.50", "location": "downtown"}],
        "customer_info": {"name": "Ana Diaz", "email": "ana@example.com", "phone": "555-0100"},
        "subtotal": "7.00",
        "tax": "0.56",
        "total": "7.56",
        "payment_method": "in_store",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def taco_order() -> OrderCreate:
    return OrderCreate.model_validate(order_payload())
