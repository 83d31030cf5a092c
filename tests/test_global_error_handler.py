import pytest
from unittest.mock import MagicMock, patch
from starlette.requests import Request
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from fastapi import FastAPI, status

from app.core.exceptions import GatewayError, NotFoundError, PaymentNotFoundError, ReconciliationConflict, ValidationError
from app.core.global_error_handler import (
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
    payment_validation_exception_handler,
    gateway_exception_handler,
    reconciliation_exception_handler,
    create_error_response,
    register_global_exception_handlers
)

# --- Mocking dependencies ---
# Mocking logging to check if it's called
@pytest.fixture
def mock_logger():
    with patch("app.core.global_error_handler.logger") as mock:
        yield mock

# Mocking traceback for general exception handler
@pytest.fixture
def mock_traceback():
    with patch("app.core.global_error_handler.traceback") as mock:
        mock.format_exc.return_value = "Mocked Traceback"
        yield mock

# Mocking JSONResponse to check its arguments
@pytest.fixture
def mock_json_response():
    with patch("app.core.global_error_handler.JSONResponse") as mock:
        yield mock

# Mocking FastAPI app for registration tests
@pytest.fixture
def mock_fastapi_app():
    mock_app = MagicMock(spec=FastAPI)
    mock_app.exception_handler = MagicMock() # Mock the exception_handler decorator
    return mock_app

def make_request(method: str, path: str):
    mock_request = MagicMock(spec=Request)
    mock_request.method = method
    mock_request.url.path = path
    return mock_request

# --- Test Cases ---

# Test for create_error_response helper function
def test_create_error_response():
    response = create_error_response(status.HTTP_404_NOT_FOUND, "Not Found")
    assert response == {"message": "Not Found", "code": 404}

    response_with_details = create_error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation Error", {"field": "phoneNumber"})
    assert response_with_details == {"message": "Validation Error", "code": 422, "details": {"field": "phoneNumber"}}

# Test for http_exception_handler
@pytest.mark.asyncio
async def test_http_exception_handler(mock_logger, mock_json_response):
    exc = StarletteHTTPException(status_code=404, detail="Resource not found")

    await http_exception_handler(make_request("GET", "/test"), exc)

    mock_logger.warning.assert_called_once_with("HTTP Exception: 404 - Resource not found for GET /test")
    mock_json_response.assert_called_once_with(
        status_code=404,
        content={"message": "Resource not found", "code": 404},
        headers=None,
    )

# Test for validation_exception_handler
@pytest.mark.asyncio
async def test_validation_exception_handler(mock_logger, mock_json_response):
    # Sample validation error structure
    validation_errors = [
        {"loc": ["path", "business_id"], "msg": "Input should be a valid integer", "type": "int_parsing"},
    ]
    exc = RequestValidationError(errors=validation_errors)

    await validation_exception_handler(make_request("GET", "/api/payment/history/abc"), exc)

    mock_logger.warning.assert_called_once() # Check if warning was logged
    mock_json_response.assert_called_once_with(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "message": "Validation failed",
            "code": status.HTTP_422_UNPROCESSABLE_ENTITY,
            "details": {
                "errors": [
                    "Field 'path.business_id': Input should be a valid integer",
                ]
            }
        }
    )

# Test for the bad-input handler (400 and 404 share it)
@pytest.mark.asyncio
async def test_payment_validation_exception_handler(mock_logger, mock_json_response):
    exc = ValidationError("Invalid request data", details={"errors": ["Field 'phoneNumber': bad format"]})

    await payment_validation_exception_handler(make_request("POST", "/api/payment/pay"), exc)

    mock_json_response.assert_called_once_with(
        status_code=400,
        content={
            "message": "Invalid request data",
            "code": 400,
            "details": {"errors": ["Field 'phoneNumber': bad format"]},
        },
    )

@pytest.mark.asyncio
async def test_not_found_uses_404(mock_logger, mock_json_response):
    await payment_validation_exception_handler(make_request("GET", "/api/payment/status/x"), NotFoundError("Payment not found"))

    mock_json_response.assert_called_once_with(
        status_code=404,
        content={"message": "Payment not found", "code": 404},
    )

@pytest.mark.asyncio
async def test_gateway_exception_handler(mock_logger, mock_json_response):
    await gateway_exception_handler(make_request("GET", "/api/payment/status/x"), GatewayError("Could not reach M-Pesa"))

    mock_json_response.assert_called_once_with(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"message": "Could not reach M-Pesa", "code": 502},
    )

@pytest.mark.asyncio
async def test_reconciliation_exception_handler(mock_logger, mock_json_response):
    exc = PaymentNotFoundError("ws_CO_missing")
    assert isinstance(exc, ReconciliationConflict)

    await reconciliation_exception_handler(make_request("POST", "/api/payment/callback"), exc)

    mock_logger.error.assert_called_once()
    mock_json_response.assert_called_once_with(
        status_code=status.HTTP_409_CONFLICT,
        content={"message": "No payment attempt with CheckoutRequestID ws_CO_missing", "code": 409},
    )

# Test for general_exception_handler
@pytest.mark.asyncio
async def test_general_exception_handler(mock_logger, mock_traceback, mock_json_response):
    exc = ValueError("Something went wrong internally")

    await general_exception_handler(make_request("GET", "/internal"), exc)

    mock_logger.error.assert_called_once() # Check if error was logged
    mock_json_response.assert_called_once_with(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "An unexpected internal server error occurred.", "code": 500}
    )

# Test for register_global_exception_handlers
def test_register_global_exception_handlers(mock_fastapi_app):
    register_global_exception_handlers(mock_fastapi_app)

    # Check if exception_handler was called for each type
    assert mock_fastapi_app.exception_handler.call_count == 6

    # Verify calls for specific handlers
    mock_fastapi_app.exception_handler.assert_any_call(ValidationError)
    mock_fastapi_app.exception_handler.assert_any_call(GatewayError)
    mock_fastapi_app.exception_handler.assert_any_call(ReconciliationConflict)
    mock_fastapi_app.exception_handler.assert_any_call(StarletteHTTPException)
    mock_fastapi_app.exception_handler.assert_any_call(RequestValidationError)
    mock_fastapi_app.exception_handler.assert_any_call(Exception)
