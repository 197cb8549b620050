import re
import time
import uuid

import structlog
from fastapi import Request

from credit_ledger.utils.logger import get_client_ip, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
SKIP_LOGGING_PATHS = ("/health/liveness",)

# /v1/ledger/owners/{owner_type}/{owner_id}/...
_OWNER_PATH = re.compile(r"/owners/(user|organization)/([0-9a-fA-F-]{32,36})(?:/|$)")


def owner_from_path(path: str) -> str | None:
    """Owner key (``type:id``) addressed by an owner-scoped route, if any."""
    match = _OWNER_PATH.search(path)
    if match is None:
        return None
    return f"{match.group(1)}:{match.group(2).lower()}"


async def logging_middleware(request: Request, call_next):
    path = request.url.path
    if path in SKIP_LOGGING_PATHS:
        return await call_next(request)

    started = time.perf_counter()
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex

    structlog.contextvars.clear_contextvars()
    context = {
        "request_id": request_id,
        "ip_address": get_client_ip(request),
        "method": request.method,
        "path": path,
    }
    owner = owner_from_path(path)
    if owner:
        context["owner"] = owner
    structlog.contextvars.bind_contextvars(**context)

    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id

    log = logger.warning if response.status_code >= 500 else logger.info
    log(
        "request",
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response
