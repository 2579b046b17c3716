from fastapi import FastAPI, Request
import contextvars
import logging
import re
import uuid
from datetime import datetime, timezone

from . import __version__
from .api import proxy_router, configure_proxy_api
from .config.settings import load_settings
from .gateway.service import GatewayService
from .monitoring.metrics import metrics_router

settings = load_settings()

_trace_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "trace_id", default="system"
)

# Printable ASCII only, so a caller cannot forge or split log lines
_UNSAFE_TRACE_CHARS = re.compile(r"[^\x21-\x7e]")
MAX_TRACE_ID_LENGTH = 64


def sanitize_trace_id(value: str | None) -> str:
    cleaned = _UNSAFE_TRACE_CHARS.sub("", value or "")[:MAX_TRACE_ID_LENGTH]
    return cleaned or str(uuid.uuid4())


class AddTraceIdFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "trace_id"):
            record.trace_id = _trace_id.get()
        return True


logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - trace_id=%(trace_id)s - %(message)s",
)
# Attach to handlers so records from every module logger get a trace_id
for _handler in logging.getLogger().handlers:
    _handler.addFilter(AddTraceIdFilter())
logger = logging.getLogger("corsgate")

app = FastAPI(
    title="corsgate",
    version=__version__,
    docs_url=None,
    redoc_url=None,
)

gateway_service = None  # Will be initialized on startup

app.include_router(proxy_router)
app.include_router(metrics_router)


@app.middleware("http")
async def bind_trace_id(request: Request, call_next):
    token = _trace_id.set(sanitize_trace_id(request.headers.get("x-request-id")))
    try:
        return await call_next(request)
    finally:
        _trace_id.reset(token)


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.on_event("startup")
async def startup_event():
    global gateway_service
    logger.info("corsgate starting")

    if gateway_service is None:
        gateway_service = GatewayService(settings)
    await gateway_service.start()
    configure_proxy_api(svc=gateway_service)
    logger.info("Gateway service ready")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("corsgate shutting down")

    try:
        if gateway_service is not None:
            await gateway_service.stop()
    except Exception as e:  # noqa: BLE001
        logger.error(f"Error stopping gateway service: {e}")


def run(host: str = settings.host, port: int = settings.port, log_level: str = settings.log_level):
    import uvicorn

    uvicorn.run(app, host=host, port=port, log_level=log_level.lower())
