"""
Task Gateway — HTTP surface.

POST /telegram/webhook              Telegram Updates (always answered 200)
POST /jobs/reminders                reminder sweep, for the external scheduler
POST /jobs/daily-summary            admin daily summary
POST /jobs/purge                    drop stale pending commands and old update ids
POST /accounts/{id}/telegram/verify connection code entered in the app
DELETE /accounts/{id}/telegram      disconnect Telegram from an account
GET  /health
"""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from pydantic import BaseModel

from gateway.bot.webhook import GatewayComponents, WebhookGateway, build_components
from gateway.config import settings

logger = logging.getLogger(__name__)

UPDATE_LOG_RETENTION = timedelta(days=2)


class VerifyCodeRequest(BaseModel):
    code: str


def _matches(expected: str, given: str | None) -> bool:
    """Constant-time comparison. An unset secret never matches."""
    if not expected:
        return False
    return secrets.compare_digest(expected.encode(), (given or "").encode())


def require_jobs_secret(x_jobs_secret: str | None = Header(default=None)) -> None:
    if not _matches(settings.JOBS_SECRET, x_jobs_secret):
        if not settings.JOBS_SECRET:
            logger.warning("Rejected /jobs or /accounts call: JOBS_SECRET is not configured")
        raise HTTPException(status_code=403, detail="Forbidden")


def create_app(components: GatewayComponents | None = None) -> FastAPI:
    """Build the FastAPI app around a set of gateway components."""
    components = components or build_components()
    gateway = WebhookGateway(components)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        messenger = components.messenger
        if hasattr(messenger, "initialize"):
            await messenger.initialize()
        if not settings.WEBHOOK_SECRET_TOKEN:
            logger.warning("WEBHOOK_SECRET_TOKEN is not set; all webhook calls will be rejected")
        if not settings.JOBS_SECRET:
            logger.warning("JOBS_SECRET is not set; /jobs and /accounts endpoints will be rejected")
        logger.info("Task gateway started")
        yield
        if hasattr(messenger, "shutdown"):
            await messenger.shutdown()
        logger.info("Task gateway stopped")

    app = FastAPI(title="Task Gateway", lifespan=lifespan)
    app.state.components = components

    @app.post("/telegram/webhook")
    async def telegram_webhook(
        request: Request,
        x_telegram_bot_api_secret_token: str | None = Header(default=None),
    ) -> dict:
        if not _matches(settings.WEBHOOK_SECRET_TOKEN, x_telegram_bot_api_secret_token):
            logger.warning("Webhook call with invalid secret token from %s", request.client)
            return {"ok": False, "error": "unauthorized"}

        body = await request.body()
        return await gateway.handle_payload(body)

    @app.post("/jobs/reminders", dependencies=[Depends(require_jobs_secret)])
    async def run_reminders() -> dict:
        result = await components.dispatcher.run_reminder_sweep()
        return {
            "sent": result.sent,
            "skipped": result.skipped,
            "failed": result.failed,
            "unrecorded": result.unrecorded,
        }

    @app.post("/jobs/daily-summary", dependencies=[Depends(require_jobs_secret)])
    async def run_daily_summary() -> dict:
        sent = await components.dispatcher.run_daily_summary()
        return {"sent": sent}

    @app.post("/jobs/purge", dependencies=[Depends(require_jobs_secret)])
    async def run_purge() -> dict:
        now = datetime.now(timezone.utc)
        commands = components.linking.purge_stale_commands(now)
        updates = components.updates.purge_before(now - UPDATE_LOG_RETENTION)
        return {"commands": commands, "updates": updates}

    @app.post(
        "/accounts/{account_id}/telegram/verify",
        dependencies=[Depends(require_jobs_secret)],
    )
    async def verify_code(account_id: str, payload: VerifyCodeRequest) -> dict:
        result = components.linking.verify_connection_code(account_id, payload.code)
        if not result.success:
            return {"success": False, "reason": result.reason}
        return {
            "success": True,
            "telegram_username": result.account.telegram_username if result.account else None,
        }

    @app.delete("/accounts/{account_id}/telegram", dependencies=[Depends(require_jobs_secret)])
    async def disconnect(account_id: str) -> dict:
        return {"disconnected": components.linking.disconnect_account(account_id)}

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app
