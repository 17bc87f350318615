import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger(component="errors")


class PaymentError(Exception):
    """Base class for every error the payment API reports to clients."""

    status_code = 500
    code = "InternalError"
    default_message = "An unexpected error occurred."

    def __init__(self, message=None, details=None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(PaymentError):
    status_code = 400
    code = "ValidationError"
    default_message = "Invalid request"


class InvalidProductId(ValidationError):
    code = "InvalidProductId"
    default_message = "Invalid product ID"


class InvalidPriceError(ValidationError):
    code = "InvalidPriceError"
    default_message = "Invalid total amount"


class Unauthorized(PaymentError):
    status_code = 401
    code = "Unauthorized"
    default_message = "Invalid or missing token"


class Forbidden(PaymentError):
    status_code = 403
    code = "Forbidden"
    default_message = "Forbidden"


class NotFoundError(PaymentError):
    status_code = 404
    code = "NotFoundError"
    default_message = "Not found"


class InvalidSignature(PaymentError):
    status_code = 400
    code = "InvalidSignature"
    default_message = "Invalid payment signature"


class PaymentMismatch(PaymentError):
    status_code = 400
    code = "PaymentMismatch"
    default_message = "Payment amount mismatch"


class PaymentNotCaptured(PaymentError):
    status_code = 400
    code = "PaymentNotCaptured"
    default_message = "Payment not captured"


class OrderNotCancellable(PaymentError):
    status_code = 409
    code = "OrderNotCancellable"
    default_message = "A completed payment cannot be cancelled"


class OrderNotPayable(PaymentError):
    status_code = 409
    code = "OrderNotPayable"
    default_message = "Payment order is no longer awaiting payment"


class InsufficientInventory(PaymentError):
    status_code = 409
    code = "InsufficientInventory"
    default_message = "Insufficient inventory"


class SubscriptionCreationError(PaymentError):
    code = "SubscriptionCreationError"
    default_message = "Failed to create subscription"


class PersistenceError(PaymentError):
    code = "PersistenceError"
    default_message = "Database operation failed"


class PaymentGatewayError(PaymentError):
    code = "PaymentGatewayError"
    default_message = "Payment gateway request failed"


def error_body(code, message, details=None):
    return {"success": False, "error": code, "message": message, "details": details}


async def payment_error_handler(request: Request, exc: PaymentError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.code, message=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(error_body(exc.code, exc.message, exc.details)),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder(
            error_body(ValidationError.code, "Invalid request body", exc.errors())
        ),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body("InternalError", PaymentError.default_message),
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(PaymentError, payment_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
