from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from daycare.application.errors import (
    ConflictError,
    GatewayError,
    NotFoundError,
    PaymentFailedError,
    RefundFailedError,
    SignatureError,
    ValidationError,
)
from daycare.config import settings
from daycare.infrastructure.logging import configure_logging, get_logger
from daycare.interfaces.api.v1.router import api_router

logger = get_logger(__name__)

OPENAPI_DESCRIPTION = """
Daycare payments API: records invoice payments, settles online card and mobile money payments
through the payment gateway, and keeps invoice ledgers consistent.

How to call this API:
- Send `X-Tenant-Id` on every tenant-scoped endpoint.
- Send `X-Center-Id` when creating payments, and optionally to scope lists and statistics.
- The gateway webhook (`POST /api/v1/payments/webhook`) is authenticated by its signature header.
"""

OPENAPI_TAGS = [
    {"name": "health", "description": "Service health and connectivity checks."},
    {"name": "payments", "description": "Payment recording, online settlement, refunds, and ledger audits."},
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    logger.info("app_startup", app_name=settings.app_name, version=settings.app_version)
    yield
    logger.info("app_shutdown", app_name=settings.app_name)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=OPENAPI_DESCRIPTION,
    openapi_tags=OPENAPI_TAGS,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"message": f"{settings.app_name} is running"}


@app.exception_handler(NotFoundError)
async def handle_not_found(_: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def handle_conflict(_: Request, exc: ConflictError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def handle_validation(_: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(PaymentFailedError)
async def handle_payment_failed(_: Request, exc: PaymentFailedError):
    return JSONResponse(status_code=status.HTTP_402_PAYMENT_REQUIRED, content={"detail": exc.reason})


@app.exception_handler(GatewayError)
async def handle_gateway_error(_: Request, exc: GatewayError):
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


@app.exception_handler(SignatureError)
async def handle_signature_error(_: Request, exc: SignatureError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(RefundFailedError)
async def handle_refund_failed(_: Request, exc: RefundFailedError):
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


app.include_router(api_router)
