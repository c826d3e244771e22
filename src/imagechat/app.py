"""Application factory for the FastAPI service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .gemini import GeminiClient
from .logging_handlers import DateStampedFileHandler, cleanup_old_logs
from .routers.generate import router as generate_router

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _configure_logging(settings: Settings) -> None:
    """Configure root logging from LOG_LEVEL and LOG_DIR."""
    # .env may set LOG_LEVEL for processes that bypass Settings
    load_dotenv()

    log_level_str = (os.getenv("LOG_LEVEL") or settings.log_level).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    formatter = logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = []
    if settings.log_dir is not None:
        file_handler = DateStampedFileHandler(settings.log_dir)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("imagechat").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    if settings.log_dir is not None:
        cleanup_old_logs([settings.log_dir], settings.log_retention_hours, logger)


def create_app(
    *, upstream_transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    settings = get_settings()
    _configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("imagechat server starting (default model %s)", settings.default_model)
        try:
            yield
        finally:
            await GeminiClient.aclose_shared()

    app = FastAPI(title="imagechat", lifespan=lifespan)
    app.state.upstream_transport = upstream_transport

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(generate_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return app


__all__ = ["create_app"]
