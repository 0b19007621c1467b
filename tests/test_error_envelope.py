"""Tests for the error envelope and the exception handlers that produce it.

Every failure leaves the API in the same shape:
{
    "status": "error",
    "data": null,
    "error": {"code": "<stable_code>", "message": "<sentence>", "details": ...},
    "request_id": "<id>"
}
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from pixelist.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from pixelist.api.schemas import Envelope, ErrorBody
from pixelist.service.errors import (
    AuthenticationError,
    ChallengeExpiredError,
    ConflictError,
    InvalidChallengeError,
    InvalidCodeError,
    InvalidCredentialsError,
    LoginThrottledError,
    MalformedCodeError,
    MissingCredentialsError,
    NotFoundError,
    RateLimitedError,
    ServerError,
    ServiceError,
    TwoFactorUnavailableError,
    ValidationError,
    VerificationThrottledError,
)
from pixelist.storage.errors import ConstraintViolation


class _Body(BaseModel):
    count: int


@pytest.fixture
def failing_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/raise/{kind}")
    async def raise_error(kind: str):
        errors = {
            "validation": MissingCredentialsError(),
            "auth": InvalidCredentialsError(),
            "expired": ChallengeExpiredError(),
            "missing": NotFoundError(),
            "conflict": ConflictError("username already exists", detail={"field": "username"}),
            "limited": LoginThrottledError(),
            "server": ServerError("Login failed"),
            "constraint": ConstraintViolation("user not found", {"user_id": "u1"}),
            "boom": RuntimeError("database password=hunter2 leaked"),
        }
        raise errors[kind]

    @app.post("/body")
    async def with_body(body: _Body):
        return {"count": body.count}

    return TestClient(app, raise_server_exceptions=False)


class TestErrorBody:
    def test_required_fields(self):
        error = ErrorBody(code="unauthorized", message="Invalid credentials")

        assert error.details is None

    def test_missing_code_raises(self):
        with pytest.raises(PydanticValidationError):
            ErrorBody(message="Error occurred")

    def test_unknown_code_rejected(self):
        with pytest.raises(PydanticValidationError):
            ErrorBody(code="teapot", message="short and stout")

    def test_details_may_be_list(self):
        error = ErrorBody(
            code="validation_error",
            message="Multiple errors",
            details=[{"loc": ["body", "code"]}, {"loc": ["body", "secret"]}],
        )
        assert len(error.details) == 2


class TestEnvelope:
    def test_ok_envelope(self):
        envelope = Envelope(status="ok", data={"user_id": "123"})

        assert envelope.error is None
        assert envelope.data == {"user_id": "123"}

    def test_request_id_generated(self):
        assert len(Envelope(status="ok").request_id) == 36

    def test_request_id_custom(self):
        assert Envelope(status="ok", request_id="req-1").request_id == "req-1"

    @pytest.mark.parametrize("status", ["pending", "success", ""])
    def test_invalid_status_rejected(self, status):
        with pytest.raises(PydanticValidationError):
            Envelope(status=status)


class TestErrorCodeMapping:
    @pytest.mark.parametrize(
        "status_code,code",
        [
            (400, "validation_error"),
            (401, "unauthorized"),
            (404, "not_found"),
            (409, "conflict"),
            (422, "validation_error"),
            (429, "rate_limited"),
            (500, "server_error"),
        ],
    )
    def test_known_statuses(self, status_code, code):
        assert _error_code_for_status(status_code) == code

    def test_unknown_client_error_is_validation_error(self):
        assert _error_code_for_status(405) == "validation_error"

    def test_unknown_server_error(self):
        assert _error_code_for_status(503) == "server_error"

    def test_mapping_only_uses_stable_codes(self):
        assert set(_STATUS_TO_CODE.values()) == {
            "unauthorized",
            "not_found",
            "rate_limited",
            "validation_error",
            "conflict",
            "server_error",
        }

    def test_error_response_shape(self):
        response = _error_response(404, "User not found", details=None)

        data = json.loads(response.body.decode())
        assert response.status_code == 404
        assert data["status"] == "error"
        assert data["error"] == {"code": "not_found", "message": "User not found", "details": None}
        assert data["request_id"]


class TestHandlers:
    @pytest.mark.parametrize(
        "kind,status_code,code,message",
        [
            ("validation", 400, "validation_error", "Username and password required"),
            ("auth", 401, "unauthorized", "Invalid credentials"),
            ("expired", 401, "unauthorized", "Challenge expired. Please log in again."),
            ("missing", 404, "not_found", "User not found"),
            ("limited", 429, "rate_limited", "Too many login attempts. Please try again later."),
            ("server", 500, "server_error", "Login failed"),
        ],
    )
    def test_service_errors(self, failing_client, kind, status_code, code, message):
        response = failing_client.get(f"/raise/{kind}")

        assert response.status_code == status_code
        body = response.json()
        assert body["status"] == "error"
        assert body["error"] == {"code": code, "message": message, "details": None}

    def test_service_error_details_are_forwarded(self, failing_client):
        response = failing_client.get("/raise/conflict")

        assert response.status_code == 409
        assert response.json()["error"]["details"] == {"field": "username"}

    def test_constraint_violation_is_conflict(self, failing_client):
        response = failing_client.get("/raise/constraint")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"

    def test_unhandled_exception_hides_message(self, failing_client):
        response = failing_client.get("/raise/boom")

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "server_error"
        assert error["message"] == "internal server error"
        assert "hunter2" not in response.text

    def test_request_validation(self, failing_client):
        response = failing_client.post("/body", json={"count": "many"})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["details"][0]["loc"] == ["body", "count"]

    def test_unknown_route(self, failing_client):
        response = failing_client.get("/nowhere")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_method_not_allowed(self, failing_client):
        response = failing_client.delete("/body")

        assert response.status_code == 405
        assert response.json()["error"]["code"] == "validation_error"


class TestErrorHierarchy:
    @pytest.mark.parametrize(
        "error_cls,parent,message",
        [
            (MissingCredentialsError, ValidationError, "Username and password required"),
            (MalformedCodeError, ValidationError, "Invalid authenticator code format"),
            (InvalidCredentialsError, AuthenticationError, "Invalid credentials"),
            (InvalidChallengeError, AuthenticationError, "Invalid or expired challenge"),
            (ChallengeExpiredError, AuthenticationError, "Challenge expired. Please log in again."),
            (TwoFactorUnavailableError, AuthenticationError, "Invalid user or 2FA not set up"),
            (InvalidCodeError, AuthenticationError, "Invalid authenticator code"),
            (
                LoginThrottledError,
                RateLimitedError,
                "Too many login attempts. Please try again later.",
            ),
            (
                VerificationThrottledError,
                RateLimitedError,
                "Too many verification attempts. Please try again later.",
            ),
        ],
    )
    def test_flow_errors_carry_fixed_messages(self, error_cls, parent, message):
        error = error_cls()

        assert isinstance(error, parent)
        assert error.message == message
        assert str(error) == message
        assert error.status_code == parent.status_code
        assert error.error_code == parent.error_code

    def test_explicit_message_wins(self):
        error = InvalidCodeError("Invalid code")

        assert error.message == "Invalid code"
        assert error.status_code == 401

    def test_detail_defaults_to_empty(self):
        assert ServiceError().detail == {}
        assert ConflictError(detail={"field": "username"}).detail == {"field": "username"}

    def test_forbidden_is_not_a_known_code(self):
        assert _error_code_for_status(403) == "validation_error"
        with pytest.raises(PydanticValidationError):
            ErrorBody(code="forbidden", message="Forbidden")
