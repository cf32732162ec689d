import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

logger = logging.getLogger(__name__)


class QuizError(Exception):
    """
    Erreur métier typée. Les routes ne construisent pas de HTTPException :
    les handlers enregistrés dans create_app() la traduisent en enveloppe
    {success: false, message}.
    """

    status_code: int = HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def public_message(self) -> str:
        if self.field:
            return f"{self.field}: {self.message}"
        return self.message


class ValidationError(QuizError):
    status_code = HTTP_400_BAD_REQUEST


class NotFoundError(QuizError):
    status_code = HTTP_404_NOT_FOUND


class InternalError(QuizError):
    status_code = HTTP_500_INTERNAL_SERVER_ERROR

    def public_message(self) -> str:
        # le détail reste dans les logs
        return "Internal server error"


def _envelope(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def _format_request_errors(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        # loc = ("body", "sessionId") -> "sessionId"
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc) or "request"
        parts.append(f"{field}: {err.get('msg', 'invalid value')}")
    return "; ".join(parts)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(QuizError)
    async def quiz_error_handler(request: Request, exc: QuizError):
        if isinstance(exc, InternalError):
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _envelope(exc.status_code, exc.public_message())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _envelope(HTTP_400_BAD_REQUEST, _format_request_errors(exc))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unexpected error on %s %s", request.method, request.url.path)
        return _envelope(HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")
