from fastapi import APIRouter

from omnidesk.api.v1.routes import health, inbox, sessions, tickets, webhooks

api_router = APIRouter()
api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(webhooks.router, prefix="/v1/webhooks", tags=["webhooks"])
api_router.include_router(tickets.router, prefix="/v1/tickets", tags=["tickets"])
api_router.include_router(inbox.router, prefix="/v1/inbox", tags=["inbox"])
api_router.include_router(sessions.router, prefix="/v1/sessions", tags=["sessions"])
