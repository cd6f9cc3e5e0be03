import hmac
from typing import Optional

import pydantic
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from .commands import CommandDispatcher
from .config import Settings, get_settings
from .errors import AuthError, UpstreamTransportError
from .logging_utils import iso_now, logger, logging_middleware, setup_logging
from .metrics import inc_webhook_result, render_metrics
from .schemas import (
    AdminUserItem,
    AdminUsersResponse,
    DataEntryItem,
    MessageItem,
    TelegramUpdate,
    WebhookSetupRequest,
)
from .storage import get_db, get_stats, init_db, list_users
from .telegram_client import TelegramClient


SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
ADMIN_HEADER = "X-Admin-Key"

setup_logging(get_settings().LOG_LEVEL)

app = FastAPI(title="Telegram Data Bot")

# Attach logging middleware
app.middleware("http")(logging_middleware)


# ---------- Startup ----------


@app.on_event("startup")
async def on_startup() -> None:
    settings = get_settings()
    # refuse to start without a bot token
    settings.validate()
    init_db()

    client = TelegramClient(settings.TELEGRAM_BOT_TOKEN)
    await client.initialize()
    app.state.telegram_client = client
    logger.info("Telegram client initialized")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    client: Optional[TelegramClient] = getattr(app.state, "telegram_client", None)
    if client is not None:
        await client.shutdown()


# ---------- Dependencies ----------


def get_telegram_client(request: Request) -> TelegramClient:
    return request.app.state.telegram_client


def require_admin(request: Request, settings: Settings = Depends(get_settings)) -> None:
    if not settings.ADMIN_API_KEY:
        return
    given = request.headers.get(ADMIN_HEADER, "")
    if not _secrets_match(given, settings.ADMIN_API_KEY):
        raise HTTPException(status_code=401, detail="invalid admin key")


# ---------- Helpers ----------


def _secrets_match(given: str, expected: str) -> bool:
    # headers arrive latin-1 decoded; compare_digest only accepts ASCII str
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def verify_webhook_secret(settings: Settings, header_value: Optional[str]) -> None:
    """Raise AuthError unless the header matches the configured secret."""
    expected = settings.TELEGRAM_WEBHOOK_SECRET
    if not expected:
        return
    if header_value is None or not _secrets_match(header_value, expected):
        raise AuthError("webhook secret mismatch")


def is_ready(settings: Settings, db: Session | None = None) -> tuple[bool, str]:
    problems = settings.problems()
    if problems:
        return False, "; ".join(problems)
    if db is None:
        return True, "ok"
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        return False, f"DB error: {e}"
    return True, "ok"


def _user_projection(user) -> AdminUserItem:
    return AdminUserItem(
        id=user.id,
        telegram_id=user.telegram_id,
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
        is_bot=user.is_bot,
        language_code=user.language_code,
        created_at=user.created_at,
        user_data=[
            DataEntryItem(
                id=e.id,
                data_key=e.data_key,
                data_value=e.data_value,
                data_type=e.data_type,
                created_at=e.created_at,
                updated_at=e.updated_at,
            )
            for e in user.entries
        ],
        user_messages=[
            MessageItem(
                id=m.id,
                message_text=m.message_text,
                message_type=m.message_type,
                telegram_message_id=m.telegram_message_id,
                created_at=m.created_at,
            )
            for m in user.messages
        ],
    )


# ---------- Exception handlers ----------


@app.exception_handler(AuthError)
async def auth_exception_handler(request: Request, exc: AuthError):
    inc_webhook_result("unauthorized")
    request.state.log_extra = getattr(request.state, "log_extra", {})
    request.state.log_extra.update({"result": "unauthorized"})
    return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Unauthorized"})


@app.exception_handler(UpstreamTransportError)
async def upstream_exception_handler(request: Request, exc: UpstreamTransportError):
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"error": "Telegram API request failed"},
    )


# ---------- Endpoints ----------


@app.get("/health/live")
def health_live():
    return {"status": "ok"}


@app.get("/health/ready")
def health_ready(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    ok, msg = is_ready(settings, db)
    if not ok:
        raise HTTPException(status_code=503, detail=msg)
    return {"status": "ok"}


@app.post("/telegram/webhook")
async def telegram_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    client: TelegramClient = Depends(get_telegram_client),
):
    verify_webhook_secret(settings, request.headers.get(SECRET_HEADER))

    raw_body = await request.body()
    try:
        update = TelegramUpdate.model_validate_json(raw_body)
    except pydantic.ValidationError:
        inc_webhook_result("invalid_payload")
        request.state.log_extra.update({"result": "invalid_payload"})
        return JSONResponse(status_code=400, content={"error": "Invalid update"})

    message = update.effective_message
    if message is None:
        inc_webhook_result("ignored")
        request.state.log_extra.update({"update_id": update.update_id, "result": "ignored"})
        return {"ok": True}

    try:
        command = await CommandDispatcher(db, client).handle(message)
    except Exception:
        logger.exception("webhook failed for update %s", update.update_id)
        inc_webhook_result("error")
        request.state.log_extra.update({"update_id": update.update_id, "result": "error"})
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    result = "processed" if command else "ignored"
    inc_webhook_result(result)
    request.state.log_extra.update(
        {
            "update_id": update.update_id,
            "command": command,
            "result": result,
        }
    )
    return {"ok": True}


@app.get("/telegram/webhook")
def telegram_webhook_status():
    return {
        "status": "Telegram webhook endpoint is active",
        "timestamp": iso_now(),
    }


@app.post("/telegram/setup", dependencies=[Depends(require_admin)])
async def telegram_setup(
    body: Optional[WebhookSetupRequest] = None,
    settings: Settings = Depends(get_settings),
    client: TelegramClient = Depends(get_telegram_client),
):
    webhook_url = (body.webhook_url if body else None) or settings.TELEGRAM_WEBHOOK_URL
    if not webhook_url:
        raise HTTPException(status_code=400, detail="webhook_url is required")

    result = await client.set_webhook(webhook_url, secret_token=settings.TELEGRAM_WEBHOOK_SECRET)
    bot = await client.get_me()
    logger.info("Telegram webhook set to %s", webhook_url)
    return {"success": True, "webhook": result, "bot": bot}


@app.get("/telegram/setup", dependencies=[Depends(require_admin)])
async def telegram_setup_info(
    settings: Settings = Depends(get_settings),
    client: TelegramClient = Depends(get_telegram_client),
):
    bot = await client.get_me()
    webhook = await client.get_webhook_info()
    return {
        "bot": bot,
        "webhook_url": settings.TELEGRAM_WEBHOOK_URL or "Not configured",
        "webhook": webhook,
    }


@app.delete("/telegram/setup", dependencies=[Depends(require_admin)])
async def telegram_setup_delete(client: TelegramClient = Depends(get_telegram_client)):
    result = await client.delete_webhook()
    logger.info("Telegram webhook removed")
    return {"success": True, "result": result}


@app.get(
    "/admin/users",
    response_model=AdminUsersResponse,
    dependencies=[Depends(require_admin)],
)
def admin_users(db: Session = Depends(get_db)):
    users = [_user_projection(u) for u in list_users(db)]
    return AdminUsersResponse(users=users, count=len(users))


@app.get("/stats", dependencies=[Depends(require_admin)])
def stats(db: Session = Depends(get_db)):
    return get_stats(db)


@app.get("/metrics")
def metrics():
    text = render_metrics()
    return PlainTextResponse(content=text, media_type="text/plain")
