"""FastAPI server for DevCast."""
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Query, Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .. import __version__
from ..core.config import settings
from ..core.errors import AuthorizationError, PayloadValidationError, ValidationError
from ..core.logging import configure_logging
from ..integrations.telegram import TelegramTransport, parse_update
from ..services import Services, build_services
from .security import verify_api_key, verify_github_signature

logger = logging.getLogger(__name__)

# Global service container, built on startup unless already injected
services: Optional[Services] = None

# Rate limiter configuration
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup."""
    global services

    configure_logging(settings.log_level, settings.log_json)
    owned = services is None
    if owned:
        services = build_services(settings)
        logger.info(f"DevCast started ({settings.app_env})")
    try:
        yield
    finally:
        if owned and services is not None:
            await services.close()
            services = None
        logger.info("DevCast shutting down")


app = FastAPI(
    title="DevCast API",
    description="GitHub activity to reviewed social posts",
    version=__version__,
    lifespan=lifespan,
)

# Add rate limiter to app state and exception handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


def _services() -> Services:
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services


async def _json_body(request: Request) -> tuple[bytes, dict]:
    body = await request.body()
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(400, "Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(400, "JSON body must be an object")
    return body, payload


# --- Endpoints ---

@app.get("/health")
@limiter.limit("300/minute")
async def health_check(request: Request):
    """Health check endpoint - no authentication required."""
    return {
        "status": "healthy",
        "service": "devcast",
        "version": __version__,
    }


@app.post("/webhooks/github")
@limiter.limit("120/minute")
async def github_webhook(
    request: Request,
    x_github_event: Optional[str] = Header(None),
    x_hub_signature_256: Optional[str] = Header(None),
):
    """Receive a GitHub webhook delivery."""
    svc = _services()
    if not x_github_event:
        raise HTTPException(400, "Missing X-GitHub-Event header")

    body, payload = await _json_body(request)
    signature_valid = verify_github_signature(
        svc.settings.github_webhook_secret,
        body,
        x_hub_signature_256,
    )
    try:
        result = await svc.webhook_handler.handle(x_github_event, payload, signature_valid)
    except AuthorizationError as e:
        raise HTTPException(401, str(e))
    except PayloadValidationError as e:
        raise HTTPException(400, str(e))
    except Exception as e:
        logger.exception(f"Webhook processing failed: {e}")
        raise HTTPException(500, "Error processing webhook")
    return result.to_dict()


@app.post("/telegram/webhook")
@limiter.limit("300/minute")
async def telegram_webhook(request: Request):
    """
    Receive a Telegram update.

    Always answers 200 so Telegram does not redeliver; the user sees
    problems as a chat reply instead.
    """
    svc = _services()
    _, update = await _json_body(request)
    message = parse_update(update)
    if message is None:
        return {"ok": True, "handled": False}

    reply = await svc.processor.handle(message)
    if message.callback_id and isinstance(svc.transport, TelegramTransport):
        await svc.transport.answer_callback(message.callback_id)
    return {"ok": True, "handled": True, "reply": reply.text}


@app.post("/cron/run-jobs")
@limiter.limit("10/minute")
async def run_jobs(
    request: Request,
    job: Optional[str] = Query(None, description="Job to run; all jobs when omitted"),
    x_api_key: Optional[str] = Header(None),
):
    """Run scheduled jobs. Requires the cron API key."""
    svc = _services()
    if not verify_api_key(svc.settings.cron_api_key, x_api_key):
        raise HTTPException(401, "Unauthorized")

    try:
        summary = await svc.runner.run(job)
    except ValidationError as e:
        raise HTTPException(400, str(e))
    except Exception as e:
        logger.exception(f"Scheduled job {job or 'all'} failed: {e}")
        raise HTTPException(500, f"Job failed: {e}")

    return {
        "success": True,
        "message": f"Successfully ran job: {job or 'all'}",
        "summary": summary,
    }


# Run with: uvicorn devcast.api.server:app --reload
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "devcast.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
    )
