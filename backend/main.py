"""Run the FastAPI app for the chat session service."""

from __future__ import annotations

import logging
import os

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.chat_orchestrator.errors import ValidationError
from src.routers import chat_router
from src.routers.chat import ApiMessages

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Keep client libraries quiet; they log full URLs including query keys.
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Conclave Chat", version="0.1.0")
    app.include_router(chat_router)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code in (404, 405):
            return JSONResponse({"success": False, "error": ApiMessages.NOT_FOUND}, status_code=404)
        return JSONResponse({"success": False, "error": ApiMessages.INTERNAL_ERROR}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"success": False, "error": "Invalid request"}, status_code=400)

    @app.exception_handler(ValidationError)
    async def invalid_input(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse({"success": False, "error": exc.message}, status_code=400)

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Request handling error on %s %s", request.method, request.url.path)
        return JSONResponse({"success": False, "error": ApiMessages.INTERNAL_ERROR}, status_code=500)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
