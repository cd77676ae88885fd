from types import SimpleNamespace

from fastapi import FastAPI, HTTPException, status
from fastapi.testclient import TestClient
import pytest
from sqlalchemy.exc import OperationalError

from procurement_auth import main
from procurement_auth.domain.invariants import InvariantViolation
from procurement_auth.errors import AppError, RoleInUseError, StoreUnavailableError
from tests.authz_helpers import InMemoryPolicyStore, loaded_engine


class RecordingReporter:
    def __init__(self) -> None:
        self.reports: list[tuple[type, int, str]] = []

    async def report(self, exc, **request_info) -> bool:
        self.reports.append((type(exc), request_info["status_code"], request_info["path"]))
        return True


def make_app(reporter: RecordingReporter | None = None) -> TestClient:
    app = FastAPI()
    app.state.incident_reporter = reporter
    app.add_exception_handler(AppError, main.handle_app_error)
    app.add_exception_handler(InvariantViolation, main.handle_invariant_violation)
    app.add_exception_handler(HTTPException, main.handle_http_exception)
    app.add_exception_handler(Exception, main.handle_unhandled_exception)

    @app.get("/in-use")
    async def in_use():
        raise RoleInUseError(details={"user_count": 2})

    @app.get("/store-down")
    async def store_down():
        raise StoreUnavailableError()

    @app.get("/invariant")
    async def invariant():
        raise InvariantViolation(
            "Tenant roles require a tenant", invariant="role.tenant_required", details={"name": "Buyer"}
        )

    @app.get("/http")
    async def http_error():
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="slow down")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    return TestClient(app, raise_server_exceptions=False)


def test_app_error_envelope() -> None:
    response = make_app().get("/in-use")

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json() == {
        "error": {
            "code": "ROLE_IN_USE",
            "message": "Role is assigned to users and cannot be deactivated",
            "details": {"user_count": 2},
        }
    }


def test_invariant_violation_is_a_validation_error() -> None:
    response = make_app().get("/invariant")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert response.json()["error"]["details"] == {
        "invariant": "role.tenant_required",
        "name": "Buyer",
    }


def test_http_exception_uses_safe_message() -> None:
    response = make_app().get("/http")

    assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    assert response.json()["error"]["code"] == "RATE_LIMITED"
    assert response.json()["error"]["message"] == main.SAFE_HTTP_MESSAGES[429]


def test_server_errors_are_reported_and_hidden() -> None:
    reporter = RecordingReporter()
    client = make_app(reporter)

    store = client.get("/store-down")
    boom = client.get("/boom")
    client.get("/in-use")

    assert store.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert store.json()["error"]["code"] == "STORE_UNAVAILABLE"
    assert boom.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert "secret internals" not in boom.text
    assert reporter.reports == [
        (StoreUnavailableError, 503, "/store-down"),
        (RuntimeError, 500, "/boom"),
    ]


class FakeConnection:
    def __init__(self, fail: bool) -> None:
        self.fail = fail

    async def __aenter__(self) -> "FakeConnection":
        if self.fail:
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))
        return self

    async def __aexit__(self, *_exc_info) -> None:
        return None

    async def execute(self, _statement) -> None:
        return None


class FakeDatabase:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail

    def connect(self) -> FakeConnection:
        return FakeConnection(self.fail)


@pytest.mark.anyio
async def test_healthcheck_states(monkeypatch: pytest.MonkeyPatch) -> None:
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(engine=None)))

    monkeypatch.setattr(main, "db_engine", FakeDatabase(fail=True))
    response = await main.healthcheck(request)
    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.body == b'{"status":"error"}'

    monkeypatch.setattr(main, "db_engine", FakeDatabase())
    response = await main.healthcheck(request)
    assert response.body == b'{"status":"degraded"}'

    request.app.state.engine = await loaded_engine(InMemoryPolicyStore())
    response = await main.healthcheck(request)
    assert response.status_code == status.HTTP_200_OK
    assert response.body == b'{"status":"ok"}'
