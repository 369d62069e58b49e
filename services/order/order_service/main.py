"""
Order Service — FastAPI エントリーポイント

注文登録 (POST /orders) を受け付け、オーケストレーターに委譲する。
失敗の分類 (errors.py) はここで HTTP ステータスに対応づける。

  ValidationFailure       → 422
  BusinessRuleFailure     → 400
  ExternalServiceFailure  → 503 (429 由来なら Retry-After を付ける)
  Storage / Transaction / Configuration → 500 (内部情報は返さない)
  その他の想定外の例外                  → 500 INTERNAL_ERROR (CRITICAL で記録)
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings
from .db import create_engine, create_schema, create_session_factory
from .directory import CustomerValidator
from .errors import ExternalServiceFailure, FailureKind, OrderFailure
from .events import OrderEventPublisher
from .logging_config import configure_logging
from .orchestrator import OrderRegistrationOrchestrator
from .retry import RetryPolicy
from .schemas import ErrorResponse, OrderRequest, OrderResult
from .store import OrderStore

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    FailureKind.VALIDATION: 422,
    FailureKind.BUSINESS_RULE: 400,
    FailureKind.EXTERNAL_SERVICE: 503,
    FailureKind.STORAGE: 500,
    FailureKind.TRANSACTION: 500,
    FailureKind.CONFIGURATION: 500,
}

GENERIC_MESSAGES = {
    FailureKind.EXTERNAL_SERVICE: "A required service is temporarily unavailable. Try again later.",
    FailureKind.STORAGE: "The order could not be stored.",
    FailureKind.TRANSACTION: "The order transaction failed.",
    FailureKind.CONFIGURATION: "The service is misconfigured.",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    起動時に設定を読み込み、DB エンジン・顧客ディレクトリ・Redis を用意する。
    テストでは app.state.settings / app.state.directory_transport を事前に差し込める。
    """
    settings = getattr(app.state, "settings", None) or Settings.from_env()
    configure_logging(settings.log_level)

    engine = create_engine(settings.database_url)
    if settings.create_schema:
        await create_schema(engine)

    redis_pool: aioredis.Redis | None = None
    if settings.redis_url:
        redis_pool = aioredis.from_url(settings.redis_url, decode_responses=True)

    app.state.session_factory = create_session_factory(engine)
    app.state.retry_policy = RetryPolicy(
        max_attempts=settings.store_retry_attempts,
        delay_seconds=settings.store_retry_delay_seconds,
    )
    app.state.validator = CustomerValidator(
        settings.directory_base_url,
        settings.order_total_ceiling,
        settings.directory_timeout_seconds,
        transport=getattr(app.state, "directory_transport", None),
    )
    app.state.publisher = OrderEventPublisher(redis_pool) if redis_pool else None
    yield
    if redis_pool is not None:
        await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Order Service", lifespan=lifespan)


# ── Command Endpoint ──────────────────────────

@app.post("/orders", status_code=201, response_model=OrderResult)
async def create_order(req: OrderRequest, request: Request):
    """注文登録"""
    state = request.app.state
    async with state.session_factory() as session:
        orchestrator = OrderRegistrationOrchestrator(
            OrderStore(session, state.retry_policy),
            state.validator,
            state.publisher,
        )
        return await orchestrator.register_order(req)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}


# ── 例外ハンドラ ──────────────────────────────

@app.exception_handler(OrderFailure)
async def handle_order_failure(request: Request, exc: OrderFailure):
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if exc.kind.is_business:
        body = _error_body(status_code, exc.message, exc.code, exc.metadata)
    else:
        body = _error_body(status_code, GENERIC_MESSAGES.get(exc.kind, "Internal error."), exc.code)

    headers = {}
    if isinstance(exc, ExternalServiceFailure) and exc.retry_after:
        headers["Retry-After"] = exc.retry_after
    return JSONResponse(status_code=status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors())
    body = _error_body(422, "Malformed order request", "VALIDATION_ERROR", {"errors": errors})
    return JSONResponse(status_code=422, content=body)


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.critical("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    body = _error_body(500, "An unexpected error occurred.", "INTERNAL_ERROR")
    return JSONResponse(status_code=500, content=body)


def _error_body(status_code: int, message: str, error_code: str, details: dict | None = None) -> dict:
    return ErrorResponse(
        status_code=status_code,
        message=message,
        error_code=error_code,
        timestamp=datetime.now(timezone.utc),
        details=details or {},
    ).model_dump(mode="json")
