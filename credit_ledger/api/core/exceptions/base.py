"""Exception types and FastAPI handlers rendering every error as the ledger envelope."""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..messages import MessageCode, get_default_message
from credit_ledger.utils.logger import get_logger

logger = get_logger(__name__)


class LedgerException(Exception):
    """Error carrying a message code, an HTTP status and structured details."""

    def __init__(
        self,
        message_code: MessageCode,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict | None = None,
        headers: dict | None = None,
    ):
        self.message_code = message_code
        self.status_code = status_code
        self.message: str = get_default_message(message_code)
        self.details = details or {}
        self.headers = headers or {}
        super().__init__(self.message)

    def to_response_dict(self) -> dict:
        return error_body(self.message_code, self.message, self.details)


def error_body(
    message_code: MessageCode, message: str | None = None, details: dict | None = None
) -> dict:
    return {
        "message_code": message_code,
        "message": message or get_default_message(message_code),
        "details": details or {},
    }


def _serializable_errors(errors) -> list[dict]:
    serializable = []
    for error in errors:
        error_dict = dict(error)
        if hasattr(error_dict.get("input"), "isoformat"):
            error_dict["input"] = error_dict["input"].isoformat()
        if "ctx" in error_dict:
            error_dict["ctx"] = {k: str(v) for k, v in error_dict["ctx"].items()}
        serializable.append(error_dict)
    return serializable


def _validation_response(message_code: MessageCode, errors) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body(
            message_code, details={"validation_errors": _serializable_errors(errors)}
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""

    @app.exception_handler(LedgerException)
    async def ledger_exception_handler(
        request: Request, exc: LedgerException
    ) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"Ledger exception: {exc.message_code.value}",
            status_code=exc.status_code,
            details=exc.details,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response_dict(),
            headers=exc.headers,
        )

    # Also receives fastapi.HTTPException, which subclasses it
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        logger.warning(f"HTTP exception {exc.status_code}: {exc.detail}")
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            message_code = MessageCode.NOT_FOUND
        elif exc.status_code < 500:
            message_code = MessageCode.BAD_REQUEST
        else:
            message_code = MessageCode.INTERNAL_ERROR
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(message_code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("Request validation failed", error_count=len(exc.errors()))
        return _validation_response(MessageCode.INVALID_INPUT, exc.errors())

    @app.exception_handler(ValidationError)
    async def model_validation_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        logger.warning("Model validation failed", error_count=exc.error_count())
        return _validation_response(MessageCode.VALIDATION_ERROR, exc.errors())

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(
        request: Request, exc: SQLAlchemyError
    ) -> JSONResponse:
        logger.error("Database error", exception_type=type(exc).__name__, error=str(exc))
        # Integrity failures that escape the unit-of-work retries
        if isinstance(exc, IntegrityError):
            return JSONResponse(
                status_code=status.HTTP_409_CONFLICT,
                content=error_body(MessageCode.CONCURRENCY_CONFLICT),
            )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(MessageCode.INTERNAL_ERROR, "Database error occurred"),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception("Unhandled exception", exception_type=type(exc).__name__)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(
                MessageCode.INTERNAL_ERROR, details={"error_type": type(exc).__name__}
            ),
        )
