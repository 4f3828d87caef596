from fastapi import APIRouter, Depends

from omnidesk.api.deps import get_storage_provider
from omnidesk.infra.storage import StorageProvider

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/db")
async def db_health(provider: StorageProvider = Depends(get_storage_provider)):
    await provider.ping()
    return {"db": "ok", "escalation_history": provider.capabilities.escalation_history}
