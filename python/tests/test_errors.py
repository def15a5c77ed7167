"""Tests for error handling and response envelopes.

Verifies:
- Error envelope shape is correct, including merged details
- Every error code maps to correct HTTP status
- Unknown exceptions return E_INTERNAL with 500
- Malformed JSON and invalid bodies return E_INVALID_REQUEST
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from refyn.errors import (
    ERROR_CODE_TO_STATUS,
    ApiError,
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    QuotaExceededError,
)
from refyn.responses import error_response, success_response, unhandled_exception_handler
from tests.helpers import auth_headers, create_test_user_id


class TestErrorResponse:
    """Tests for error response envelope format."""

    def test_error_response_has_correct_shape(self):
        response = error_response(ApiErrorCode.E_NOT_FOUND, "Resource not found")

        assert response == {"error": {"code": "E_NOT_FOUND", "message": "Resource not found"}}

    def test_error_response_includes_request_id(self):
        response = error_response(ApiErrorCode.E_INTERNAL, "boom", request_id="req-1")

        assert response["error"]["request_id"] == "req-1"

    def test_details_are_merged(self):
        response = error_response(
            ApiErrorCode.E_QUOTA_EXCEEDED, "limit", details={"used": 5, "limit": 5}
        )

        assert response["error"]["used"] == 5
        assert response["error"]["limit"] == 5

    def test_details_do_not_override_code_or_message(self):
        response = error_response(
            ApiErrorCode.E_NOT_FOUND, "Missing", details={"code": "X", "message": "Y"}
        )

        assert response["error"]["code"] == "E_NOT_FOUND"
        assert response["error"]["message"] == "Missing"


class TestSuccessResponse:
    def test_success_response_has_data_key(self):
        assert success_response({"id": "123"}) == {"data": {"id": "123"}}

    def test_success_response_with_list(self):
        assert success_response([1, 2]) == {"data": [1, 2]}

    def test_success_response_with_none(self):
        assert success_response(None) == {"data": None}


class TestErrorCodeToStatus:
    def test_all_error_codes_have_status_mapping(self):
        missing = [code for code in ApiErrorCode if code not in ERROR_CODE_TO_STATUS]
        assert missing == []

    @pytest.mark.parametrize(
        "code,expected_status",
        [
            (ApiErrorCode.E_UNAUTHENTICATED, 401),
            (ApiErrorCode.E_INTERNAL_ONLY, 403),
            (ApiErrorCode.E_QUOTA_EXCEEDED, 403),
            (ApiErrorCode.E_CONVERSATION_NOT_FOUND, 404),
            (ApiErrorCode.E_FILE_NOT_FOUND, 404),
            (ApiErrorCode.E_INVALID_FILE_TYPE, 400),
            (ApiErrorCode.E_FILE_TOO_LARGE, 400),
            (ApiErrorCode.E_TOO_MANY_FILES, 400),
            (ApiErrorCode.E_NO_FILES, 400),
            (ApiErrorCode.E_AUTH_UNAVAILABLE, 503),
            (ApiErrorCode.E_ANALYSIS_FAILED, 500),
            (ApiErrorCode.E_CHAT_FAILED, 500),
            (ApiErrorCode.E_STORAGE_ERROR, 500),
        ],
    )
    def test_error_code_maps_to_correct_status(self, code: ApiErrorCode, expected_status: int):
        assert ApiError(code, "x").status_code == expected_status


class TestApiErrorClass:
    def test_not_found_error_defaults(self):
        error = NotFoundError()
        assert error.code == ApiErrorCode.E_NOT_FOUND
        assert error.status_code == 404

    def test_forbidden_error_defaults(self):
        error = ForbiddenError()
        assert error.code == ApiErrorCode.E_FORBIDDEN
        assert error.status_code == 403

    def test_invalid_request_error_defaults(self):
        error = InvalidRequestError()
        assert error.code == ApiErrorCode.E_INVALID_REQUEST
        assert error.status_code == 400

    def test_quota_exceeded_carries_usage(self):
        error = QuotaExceededError(used=5, limit=5)

        assert error.status_code == 403
        assert error.details == {"used": 5, "limit": 5, "needsUpgrade": True}
        assert "5/5" in error.message


class TestMalformedJsonHandling:
    def test_malformed_json_returns_400(self, client: TestClient):
        response = client.post(
            "/api/analyze",
            content="{invalid json",
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == {
            "code": "E_INVALID_REQUEST",
            "message": "Malformed JSON body",
            "request_id": response.headers["X-Request-ID"],
        }

    def test_wrong_field_type_returns_400(self, auth_client):
        response = auth_client.post(
            "/api/chat",
            json={"sessionId": ["not", "a", "string"], "message": "hi"},
            headers=auth_headers(create_test_user_id()),
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_unknown_route_returns_404_envelope(self, auth_client):
        response = auth_client.get("/api/nothing-here", headers=auth_headers(create_test_user_id()))

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_NOT_FOUND"


class TestUnhandledExceptionHandling:
    @pytest.fixture
    def crash_client(self):
        test_app = FastAPI()

        @test_app.get("/crash")
        def crash_endpoint():
            raise RuntimeError("SECRET_INTERNAL_DETAIL")

        test_app.add_exception_handler(Exception, unhandled_exception_handler)
        return TestClient(test_app, raise_server_exceptions=False)

    def test_unhandled_exception_returns_500_with_e_internal(self, crash_client):
        response = crash_client.get("/crash")

        assert response.status_code == 500
        data = response.json()
        assert data["error"]["code"] == "E_INTERNAL"
        assert data["error"]["message"] == "Internal server error"

    def test_unhandled_exception_does_not_leak_details(self, crash_client):
        response = crash_client.get("/crash")

        assert "SECRET_INTERNAL_DETAIL" not in response.text
