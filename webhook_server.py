"""Webhook server for production deployment - Telegram updates plus the magic-link callback."""
import logging
import os
from contextlib import asynccontextmanager
from html import escape
from fastapi import FastAPI, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse
from aiogram.types import Update
from aiogram.exceptions import TelegramAPIError
from pydantic import BaseModel

from bot.main import TelegramBot
from bot.config import Config
from bot.services.verification import VerificationOutcome

# Don't configure logging here - it's configured in bot/main.py
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Global bot instance
telegram_bot: TelegramBot = None
config = Config.from_env()


def _update_kind(update: Update) -> str:
    if getattr(update, "message", None) is not None:
        return "message"
    if getattr(update, "callback_query", None) is not None:
        return "callback_query"
    return "other"


def _log_update_summary(update: Update) -> None:
    # Never log message text; commands only.
    kind = _update_kind(update)
    if kind == "message":
        text = update.message.text or ""
        cmd = text.split(maxsplit=1)[0].split("@", 1)[0] if text.startswith("/") else None
        from_id = getattr(update.message.from_user, "id", None)
        if cmd:
            logger.info("tg_update=%s kind=message from=%s cmd=%s", update.update_id, from_id, cmd)
        else:
            logger.info("tg_update=%s kind=message from=%s text_len=%s", update.update_id, from_id, len(text))
        return
    logger.info("tg_update=%s kind=%s", update.update_id, kind)


def _get_admin_token_from_request(request: Request) -> str | None:
    # Prefer Authorization: Bearer <token>, fallback to X-Admin-Token header
    auth = request.headers.get("authorization")
    if auth:
        parts = auth.strip().split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]
    token = request.headers.get("x-admin-token")
    return token.strip() if token else None


def _is_admin_request(request: Request) -> bool:
    expected = (config.admin_api_token or os.getenv("ADMIN_API_TOKEN", "")).strip()
    if not expected:
        return False
    provided = _get_admin_token_from_request(request)
    return bool(provided) and provided == expected


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    global telegram_bot

    logger.info("🚀 Starting Webhook Server...")

    try:
        telegram_bot = TelegramBot(config)
        await telegram_bot.initialize()
        await telegram_bot.start()

        if config.webhook_url:
            webhook_url = f"{config.webhook_url}{config.webhook_path}"
            webhook_kwargs = {
                "url": webhook_url,
                "allowed_updates": telegram_bot.dispatcher.resolve_used_update_types(),
            }
            if config.webhook_secret:
                webhook_kwargs["secret_token"] = config.webhook_secret
                logger.info("🔒 Webhook secret token configured")
            else:
                logger.warning("⚠️ WEBHOOK_SECRET not set - webhook requests are NOT validated!")

            await telegram_bot.bot.set_webhook(**webhook_kwargs)
            logger.info(f"✅ Webhook set to: {webhook_url}")

        yield

        logger.info("🛑 Shutting down Webhook Server...")
        if config.webhook_url:
            await telegram_bot.bot.delete_webhook()
        await telegram_bot.stop()

    except Exception as e:
        logger.error(f"❌ Failed to start webhook server: {e}", exc_info=True)
        raise


app = FastAPI(
    lifespan=lifespan,
    title="Community Link Bot",
    description="Telegram bot linking accounts by magic link and managing communities",
    version=VERSION,
)


class LinkTelegramPayload(BaseModel):
    access_token: str
    telegram_id: int
    username: str | None = None
    first_name: str | None = None


def _render_page(outcome: VerificationOutcome) -> str:
    icon = "✅" if outcome.success else "❌"
    hint = "You can close this page and return to Telegram." if outcome.success else "Please request a new magic link from the Telegram bot."
    return f"""<!DOCTYPE html>
<html>
    <head><meta charset="utf-8"><title>{escape(outcome.title)}</title></head>
    <body>
        <h1>{icon} {escape(outcome.title)}</h1>
        <p>{escape(outcome.message)}</p>
        <p>{hint}</p>
    </body>
</html>"""


def _verification_service():
    if telegram_bot is None or telegram_bot.container is None:
        return None
    return telegram_bot.container.verification


@app.post(config.webhook_path)
async def webhook_handler(request: Request):
    """
    Handle incoming webhook updates from Telegram.

    Security: Validates X-Telegram-Bot-Api-Secret-Token header if WEBHOOK_SECRET is configured.
    """
    if config.webhook_secret:
        secret_header = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
        if secret_header != config.webhook_secret:
            logger.warning("⚠️ Rejected webhook request: invalid or missing secret token")
            return Response(status_code=401)

    try:
        update = Update(**(await request.json()))
        _log_update_summary(update)

        try:
            await telegram_bot.dispatcher.feed_update(telegram_bot.bot, update)
        except TelegramAPIError as e:
            # Ack so Telegram doesn't retry forever.
            logger.warning("tg_update=%s dropped: %s", update.update_id, e)

        return Response(status_code=200)

    except Exception as e:
        logger.error(f"❌ Error processing webhook update: {e}", exc_info=True)
        return Response(status_code=500)


@app.get("/verify")
async def verify_magic_link(
    access_token: str | None = None,
    telegram_id: str | None = None,
    username: str | None = None,
    first_name: str | None = None,
):
    """Magic-link landing page: verify the token, link the identity, render the outcome."""
    service = _verification_service()
    if service is None:
        outcome = VerificationOutcome(False, 503, "Service Starting", "The service is starting up. Please try again shortly.")
    else:
        outcome = await service.verify(access_token, telegram_id, username, first_name, bot=telegram_bot.bot)
    return HTMLResponse(content=_render_page(outcome), status_code=outcome.status_code)


@app.post("/linkTelegram")
async def link_telegram(payload: LinkTelegramPayload):
    """JSON variant of /verify for programmatic callers."""
    service = _verification_service()
    if service is None:
        return JSONResponse({"success": False, "error": "Service is starting up"}, status_code=503)

    outcome = await service.verify(
        payload.access_token,
        str(payload.telegram_id),
        payload.username,
        payload.first_name,
        bot=telegram_bot.bot,
    )
    if not outcome.success:
        return JSONResponse({"success": False, "error": outcome.message}, status_code=outcome.status_code)
    return {"success": True, "data": {"email": outcome.email, "role": outcome.role}}


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    try:
        running = bool(telegram_bot and telegram_bot.is_running())
        payload = {"status": "ok", "running": running, "version": VERSION}
        if not running:
            payload["detail"] = "initializing"

        # Only include internal details if an admin token is configured + provided.
        if _is_admin_request(request) and telegram_bot and telegram_bot.container:
            payload["database_ok"] = await telegram_bot.container.db.health_check()
        return payload
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {"status": "unhealthy", "error": "health check failed"}


@app.get("/status")
async def status(request: Request):
    """Row counts and limiter settings (admin token required)."""
    if not _is_admin_request(request):
        return Response(status_code=403)

    try:
        if telegram_bot and telegram_bot.is_running():
            container = telegram_bot.container
            return {
                "status": "running",
                "version": VERSION,
                "uptime_seconds": telegram_bot.uptime_seconds(),
                "stats": {
                    **(await container.db.get_table_counts()),
                    "active_sessions": await container.sessions.count_active(),
                },
                "config": {
                    "message_rate_limit": f"{container.config.message_rate_limit}/{container.config.message_rate_window}s",
                    "magic_link_rate_limit": f"{container.config.magic_link_rate_limit}/{container.config.magic_link_rate_window}s",
                    "rate_limit_fail_open": container.config.rate_limit_fail_open,
                    "session_ttl_seconds": container.config.session_ttl_seconds,
                },
            }
        return {"status": "initializing", "message": "Bot is starting up..."}
    except Exception as e:
        logger.error(f"Status check failed: {e}")
        return {"status": "error", "error": "status check failed"}


@app.get("/")
async def root():
    """
    Root endpoint with API information.
    Note: Webhook path is intentionally not exposed for security.
    """
    return {
        "name": "Community Link Bot",
        "version": VERSION,
        "status": "running" if telegram_bot and telegram_bot.is_running() else "initializing",
        "endpoints": {
            "health": "/health",
            "status": "/status",
            "verify": "/verify",
            "link": "/linkTelegram",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        log_level="info"
    )
