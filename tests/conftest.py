import pytest

from omnidesk.infra.memory.store import InMemoryStorageProvider


@pytest.fixture
def provider() -> InMemoryStorageProvider:
    return InMemoryStorageProvider()
