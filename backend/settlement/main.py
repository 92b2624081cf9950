# This file bootstraps the FastAPI app, wires up middlewares for
# logging and metrics, sets up CORS, and includes all the routers.

import logging
import os

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

import settlement.models  # noqa: F401  (register tables on Base.metadata)
from settlement.core.db import Base, engine
from settlement.core.errors import SettlementError
from settlement.core.logging import APILoggingMiddleware
from settlement.core.metrics import MetricsMiddleware
from settlement.core.request_context import RequestContextMiddleware
from settlement.core.startup_checks import run_startup_checks

from settlement.api.admin_queue import router as admin_queue_router
from settlement.api.bookings import router as bookings_router
from settlement.api.invoices import router as invoices_router
from settlement.api.referrals import router as referrals_router
from settlement.api.reports import router as reports_router
from settlement.api.webhooks import router as webhooks_router


API_V1_PREFIX = "/api/v1"

logger = logging.getLogger(__name__)

# Local runs and tests get tables without alembic; deployments migrate.
if os.getenv("SKIP_MIGRATIONS") != "1":
    Base.metadata.create_all(bind=engine)

app = FastAPI(title="Commission Settlement")


@app.on_event("startup")
def _run_startup_checks() -> None:
    run_startup_checks()


@app.exception_handler(SettlementError)
def handle_settlement_error(request: Request, exc: SettlementError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request.rejected",
        extra={
            "error_code": exc.code,
            "status_code": exc.status_code,
            "detail": exc.message,
            "request_id": getattr(request.state, "request_id", None),
        },
    )
    response = JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    response.headers["X-Error-Code"] = exc.code
    return response


# Observability layers
app.add_middleware(APILoggingMiddleware)
app.add_middleware(MetricsMiddleware)

api_v1 = APIRouter(prefix=API_V1_PREFIX)
api_root = APIRouter(prefix="")

routers = [
    webhooks_router,
    bookings_router,
    referrals_router,
    invoices_router,
    reports_router,
    admin_queue_router,
]

for r in routers:
    api_v1.include_router(r)
    api_root.include_router(r)

app.include_router(api_v1)
app.include_router(api_root)

# Attach request context (request_id, client_ip) early.
app.add_middleware(RequestContextMiddleware)


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/ping")
@app.get(f"{API_V1_PREFIX}/health")
def ping():
    return {"message": "pong"}


app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "X-Error-Code"],
    max_age=86400,
)
