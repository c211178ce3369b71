"""Application error taxonomy and its HTTP translation.

Services raise these; the handlers registered in ``main.create_app`` turn them
into ``{"message": ..., "error": code}`` JSON responses.
"""

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from logging_config import get_logger

logger = get_logger(__name__)


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None, details: Any = None):
        self.message = message or self.message
        self.code = code or self.code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"message": self.message, "error": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationFailed(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid request"


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


class Unauthenticated(AppError):
    status_code = 401
    code = "UNAUTHENTICATED"
    message = "Authentication required"


class Forbidden(AppError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Not allowed"


class BusinessRuleViolation(AppError):
    status_code = 400
    code = "BUSINESS_RULE_VIOLATION"
    message = "Request violates a business rule"


class ProductNotFound(BusinessRuleViolation):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OutOfStock(BusinessRuleViolation):
    code = "OUT_OF_STOCK"

    def __init__(self, product_name: str, requested: int, available: int):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient stock for {product_name}")


class UpstreamError(AppError):
    status_code = 502
    code = "UPSTREAM_ERROR"
    message = "Upstream service failed"


class PaymentGatewayError(UpstreamError):
    code = "PAYMENT_GATEWAY_ERROR"
    message = "Payment gateway request failed"


def register_error_handlers(app: FastAPI, debug: bool = False) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.code, message=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"message": "Invalid request", "error": ValidationFailed.code, "details": details},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path, method=request.method)
        body = {"message": "Internal Server Error", "error": AppError.code}
        if debug:
            body["details"] = str(exc)
        return JSONResponse(status_code=500, content=body)
