"""
Map typed errors to stable JSON responses.

    {"success": false, "error": {"code", "message", "field"?, "provider"?}}
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from trackprofit.errors import InvalidInput, TrackProfitError
from trackprofit.utils.logger import log


def error_response(error: TrackProfitError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "error": error.to_dict()},
    )


async def handle_trackprofit_error(request: Request, exc: TrackProfitError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc!r}")
    else:
        log.warning(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return error_response(exc)


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = (exc.errors() or [{}])[0]
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    return error_response(InvalidInput(first.get("msg") or "Invalid request", field=".".join(location) or None))


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    log.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": {"code": "internal_error", "message": "Internal server error"}},
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(TrackProfitError, handle_trackprofit_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
