import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import (
    IntegrityError,
    MultipleResultsFound,
    NoResultFound,
    ProgrammingError,
    SQLAlchemyError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from .authz.enforcer import EnforcementEngine
from .config import get_settings, settings
from .crud.policy import SqlPolicyStore
from .database import AsyncSessionLocal, engine as db_engine
from .domain.invariants import InvariantViolation
from .errors import (
    AppError,
    AuthError,
    ConflictError,
    InternalError,
    NotFoundError,
    PermissionError,
    RateLimitExceededError,
    ValidationError,
    error_payload,
    resolve_error_code,
)
from .infra.incidents import IncidentReporter
from .infra.redis import DistributedLock, PolicyChangeNotifier, get_async_redis_client
from .routers import auth, policies, roles, users
from .security.tokens import TokenManager
from .services.seeding import (
    create_default_operator,
    seed_default_policies,
    seed_default_roles,
)

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()


def _resolve_log_level(value: str) -> int:
    level = logging.getLevelName(value)
    return level if isinstance(level, int) else logging.INFO


log_level = _resolve_log_level(log_level_name)

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
logger = logging.getLogger("procurement")
logger.setLevel(log_level)

SEED_LOCK_KEY = "catalog-seed"
SEED_LOCK_TTL_SECONDS = 120


def _health_response(status_text: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": status_text})


async def seed_catalog(policy_engine: EnforcementEngine, lock: DistributedLock) -> None:
    """Seed roles, policies and the bootstrap operator. One worker at a time."""
    current = get_settings()
    async with lock:
        if not lock.acquired:
            logger.info("Catalog seeding skipped: lock held by another worker")
            return
        async with AsyncSessionLocal() as session:
            await seed_default_roles(session)
        await seed_default_policies(policy_engine, current.default_domain)
        if current.bootstrap_operator_email and current.bootstrap_operator_password:
            async with AsyncSessionLocal() as session:
                await create_default_operator(
                    session,
                    policy_engine,
                    email=current.bootstrap_operator_email,
                    password=current.bootstrap_operator_password,
                )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application")
    if settings.debug:
        logger.warning("DEBUG=true, do not use in production")

    policy_engine = EnforcementEngine(
        SqlPolicyStore(AsyncSessionLocal),
        global_domain=settings.global_domain,
        fail_mode=settings.enforcement_fail_mode,
    )
    # A failed initial load aborts startup
    await policy_engine.load()

    redis_client = get_async_redis_client(settings.redis_url)
    notifier = PolicyChangeNotifier(redis_client, policy_engine)
    notifier.attach()
    notifier.start()

    await seed_catalog(
        policy_engine,
        DistributedLock(redis_client, SEED_LOCK_KEY, ttl_seconds=SEED_LOCK_TTL_SECONDS),
    )

    app.state.engine = policy_engine
    app.state.token_manager = TokenManager.from_settings(get_settings())
    app.state.incident_reporter = IncidentReporter.from_settings(get_settings())

    yield

    await notifier.stop()
    await redis_client.aclose()
    await db_engine.dispose()


app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)

_allowed_origins_set = set(settings.allowed_origins)


class OptionsPreflightMiddleware(BaseHTTPMiddleware):
    """
    Answers OPTIONS preflight requests with 204 before they reach CORSMiddleware.
    Allowed origins still get CORS headers from this middleware.
    """

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            origin = request.headers.get("origin")
            response = Response(status_code=status.HTTP_204_NO_CONTENT)

            if origin and origin in _allowed_origins_set:
                response.headers["Access-Control-Allow-Origin"] = origin
                response.headers["Access-Control-Allow-Credentials"] = "true"
                response.headers["Access-Control-Allow-Methods"] = (
                    "GET, POST, PUT, PATCH, DELETE, OPTIONS, HEAD"
                )
                requested_headers = request.headers.get("access-control-request-headers")
                response.headers["Access-Control-Allow-Headers"] = (
                    requested_headers or "authorization, content-type"
                )
                response.headers["Access-Control-Max-Age"] = "600"
                response.headers["Vary"] = "Origin"

            return response

        return await call_next(request)


# CORSMiddleware is added first so it runs after the preflight middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
    allow_headers=["*"],
)

app.add_middleware(OptionsPreflightMiddleware)

for router in (auth.router, roles.router, users.router, policies.router):
    app.include_router(router)

SAFE_HTTP_MESSAGES: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: ValidationError.message,
    status.HTTP_401_UNAUTHORIZED: AuthError.message,
    status.HTTP_403_FORBIDDEN: PermissionError.message,
    status.HTTP_404_NOT_FOUND: NotFoundError.message,
    status.HTTP_409_CONFLICT: ConflictError.message,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ValidationError.message,
    status.HTTP_429_TOO_MANY_REQUESTS: RateLimitExceededError.message,
}


def _log_error(
    request: Request, status_code: int, code: str, message: str, exc: Exception | None = None
) -> None:
    request_id = request.headers.get("x-request-id")
    log_message = (
        f"[{code}] path={request.url.path} request_id={request_id or 'n/a'} message={message}"
    )
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(log_message, exc_info=exc)
    else:
        logger.warning(log_message, exc_info=exc)


async def _report_incident(request: Request, status_code: int, exc: Exception) -> None:
    if status_code < status.HTTP_500_INTERNAL_SERVER_ERROR:
        return
    reporter: IncidentReporter | None = getattr(request.app.state, "incident_reporter", None)
    if reporter is None:
        return
    await reporter.report(
        exc,
        status_code=status_code,
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def _extract_canonical_error(detail: object) -> dict[str, object] | None:
    if not isinstance(detail, dict):
        return None
    error = detail.get("error")
    if not isinstance(error, dict):
        return None
    if not isinstance(error.get("code"), str) or not isinstance(error.get("message"), str):
        return None
    if "details" not in error:
        return {"error": {**error, "details": None}}
    return detail


@app.exception_handler(AppError)
async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    _log_error(request, exc.status_code, exc.code, exc.message, exc)
    await _report_incident(request, exc.status_code, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(exc.code, exc.message, exc.details),
    )


@app.exception_handler(InvariantViolation)
async def handle_invariant_violation(request: Request, exc: InvariantViolation) -> JSONResponse:
    _log_error(request, status.HTTP_400_BAD_REQUEST, ValidationError.code, exc.message)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload(
            ValidationError.code,
            exc.message,
            {"invariant": exc.invariant, **exc.details},
        ),
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(
    request: Request, exc: HTTPException | StarletteHTTPException
) -> JSONResponse:
    payload = _extract_canonical_error(exc.detail)
    if payload is not None:
        error = payload["error"]
        code = error.get("code", resolve_error_code(exc.status_code))
        message = error.get("message", "")
        _log_error(request, exc.status_code, str(code), str(message))
        return JSONResponse(status_code=exc.status_code, content=payload)
    safe_message = SAFE_HTTP_MESSAGES.get(
        exc.status_code,
        InternalError.message
        if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR
        else "Request failed",
    )
    detail = exc.detail
    detail_message = detail if isinstance(detail, str) else ""
    log_message = detail_message.strip() or safe_message
    code = resolve_error_code(exc.status_code)
    _log_error(request, exc.status_code, code, log_message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(code, safe_message, detail),
    )


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    message = "Request validation failed"
    _log_error(request, status.HTTP_422_UNPROCESSABLE_ENTITY, ValidationError.code, message, exc)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_payload(ValidationError.code, message, exc.errors()),
    )


@app.exception_handler(ValueError)
async def handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
    log_message = str(exc).strip() or "Invalid request"
    _log_error(request, status.HTTP_400_BAD_REQUEST, ValidationError.code, log_message, exc)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload(ValidationError.code, "Invalid request", log_message),
    )


@app.exception_handler(IntegrityError)
async def handle_integrity_error(request: Request, exc: IntegrityError) -> JSONResponse:
    message = "Request could not be completed due to a conflict"
    _log_error(request, status.HTTP_409_CONFLICT, ConflictError.code, message, exc)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_payload(ConflictError.code, message, None),
    )


@app.exception_handler(ProgrammingError)
async def handle_programming_error(request: Request, exc: ProgrammingError) -> JSONResponse:
    message = "Database not initialized. Ensure migrations are applied."
    _log_error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, InternalError.code, message, exc)
    await _report_incident(request, status.HTTP_500_INTERNAL_SERVER_ERROR, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(InternalError.code, message, None),
    )


@app.exception_handler(NoResultFound)
async def handle_no_result_found(request: Request, exc: NoResultFound) -> JSONResponse:
    message = "Requested resource was not found"
    _log_error(request, status.HTTP_404_NOT_FOUND, NotFoundError.code, message, exc)
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=error_payload(NotFoundError.code, message, None),
    )


@app.exception_handler(MultipleResultsFound)
async def handle_multiple_results_found(
    request: Request, exc: MultipleResultsFound
) -> JSONResponse:
    message = "Multiple resources found where one expected"
    _log_error(request, status.HTTP_409_CONFLICT, ConflictError.code, message, exc)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_payload(ConflictError.code, message, None),
    )


@app.exception_handler(Exception)
async def handle_unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    _log_error(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        InternalError.code,
        InternalError.message,
        exc,
    )
    await _report_incident(request, status.HTTP_500_INTERNAL_SERVER_ERROR, exc)
    # Internal details stay in the log, never in the response
    details = str(exc) if settings.debug else None
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(InternalError.code, InternalError.message, details),
    )


@app.exception_handler(StarletteHTTPException)
async def handle_starlette_http_exception(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return await handle_http_exception(request, exc)


@app.get("/health", tags=["health"])
async def healthcheck(request: Request) -> Response:
    try:
        async with db_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Healthcheck database query failed: %s", exc)
        return _health_response("error", status.HTTP_503_SERVICE_UNAVAILABLE)

    policy_engine = getattr(request.app.state, "engine", None)
    if policy_engine is None or not policy_engine.loaded:
        logger.warning("Healthcheck: policy snapshot not loaded")
        return _health_response("degraded", status.HTTP_503_SERVICE_UNAVAILABLE)

    logger.debug("Healthcheck passed")
    return _health_response("ok", status.HTTP_200_OK)
