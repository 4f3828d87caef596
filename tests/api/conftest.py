import pytest
from fastapi.testclient import TestClient

from omnidesk.core.config import Settings
from omnidesk.domain.enums import Channel
from omnidesk.infra.memory.store import InMemoryStorageProvider
from omnidesk.integrations.ai import GeneratedReply, ReplyContext
from omnidesk.integrations.delivery import DeliveryResult
from omnidesk.main import create_app
from omnidesk.services.delivery import RetryPolicy
from omnidesk.services.webhook_service import ReplyCollaborators

APP_SECRET = "test-app-secret"
VERIFY_TOKEN = "test-verify-token"


class CannedReplyGenerator:
    def __init__(self) -> None:
        self.contexts: list[ReplyContext] = []

    async def generate_reply(self, context: ReplyContext) -> GeneratedReply:
        self.contexts.append(context)
        return GeneratedReply(text="Thanks, checking that for you.")


class RecordingSender:
    def __init__(self) -> None:
        self.sent: list[tuple[Channel, str, str]] = []

    async def send_message(self, channel: Channel, recipient_id: str, content: str):
        self.sent.append((channel, recipient_id, content))
        return DeliveryResult(delivery_id=f"out-{len(self.sent)}")


@pytest.fixture
def reply_generator() -> CannedReplyGenerator:
    return CannedReplyGenerator()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def client(provider: InMemoryStorageProvider, reply_generator, sender):
    settings = Settings(
        _env_file=None,
        storage_backend="memory",
        sla_sweep_enabled=False,
        webhook_verify_token=VERIFY_TOKEN,
        meta_app_secret=APP_SECRET,
    )
    app = create_app(
        settings,
        storage_provider=provider,
        collaborators=ReplyCollaborators(
            reply_generator=reply_generator,
            sender=sender,
            retry_policy=RetryPolicy(retries=0, backoff_seconds=()),
        ),
    )
    with TestClient(app) as test_client:
        yield test_client
