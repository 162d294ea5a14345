from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.features.scan.exceptions import ScanNotFound
from app.platform.logger import get_logger
from app.platform.response import api_response

logger = get_logger("exceptions")


def _field_errors(exc: RequestValidationError) -> dict:
    errors = {}
    for error in exc.errors():
        # loc looks like ("body", "url"); keep the field part only
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        field = ".".join(loc) or "body"
        errors[field] = error.get("msg", "Invalid value")
    return errors


def add_exception_handlers(app):
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        response = api_response(message=str(exc.detail) or "Error", status_code=exc.status_code)
        if getattr(exc, "headers", None):
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return api_response(
            message="Validation failed",
            status_code=status.HTTP_400_BAD_REQUEST,
            data={"errors": _field_errors(exc)},
        )

    @app.exception_handler(ScanNotFound)
    async def scan_not_found_handler(request: Request, exc: ScanNotFound):
        # Same answer for "missing" and "someone else's" so ids can't be enumerated
        return api_response(message="Scan not found", status_code=status.HTTP_404_NOT_FOUND)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return api_response(
            message="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
