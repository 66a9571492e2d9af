from __future__ import annotations

from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from logging.handlers import RotatingFileHandler

from legalease.config import Settings
from legalease.errors import ConfigurationError, LegalEaseError
from legalease.models.base import init_db
from legalease.api.devices import router as devices_router
from legalease.api.documents import router as documents_router
from legalease.api.history import router as history_router
from legalease.api.relay import router as relay_router
from legalease.api.speech import router as speech_router
from legalease.api.status import router as status_router
from legalease.api.transcripts import router as transcripts_router


settings = Settings()


def create_app() -> FastAPI:
    app = FastAPI(title="LegalEase Backend", version=settings.version)

    # The capture context runs on the meeting host page
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=settings.allowed_headers,
        max_age=settings.cors_max_age,
    )

    @app.on_event("startup")
    def _startup() -> None:
        settings.ensure_dirs()
        try:
            log_file = settings.logs_dir / "backend.log"
            handler = RotatingFileHandler(str(log_file), maxBytes=5_000_000, backupCount=2)
            formatter = logging.Formatter(
                fmt='%(asctime)s %(levelname)s %(name)s %(message)s'
            )
            handler.setFormatter(formatter)
            root = logging.getLogger()
            if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
                root.addHandler(handler)
            root.setLevel(logging.INFO)
        except OSError:
            logging.getLogger("legalease").warning("File logging unavailable", exc_info=True)
        init_db()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(transcripts_router)
    app.include_router(relay_router)
    app.include_router(documents_router)
    app.include_router(history_router)
    app.include_router(speech_router)
    app.include_router(status_router)
    app.include_router(devices_router)

    @app.exception_handler(ConfigurationError)
    async def _configuration_error_handler(request: Request, exc: ConfigurationError):  # type: ignore[override]
        logging.getLogger("legalease.api").error("Configuration error: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Server configuration error", "detail": str(exc)})

    @app.exception_handler(LegalEaseError)
    async def _domain_error_handler(request: Request, exc: LegalEaseError):  # type: ignore[override]
        logging.getLogger("legalease.api").error("Request failed: %s", exc)
        return JSONResponse(status_code=500, content={"error": type(exc).__name__, "details": str(exc)})

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):  # type: ignore[override]
        logging.getLogger("legalease").exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return app


app = create_app()


def main(argv: Optional[List[str]] = None) -> None:
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="LegalEase Backend Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload (dev only)")

    args = parser.parse_args(argv)

    uvicorn.run(
        "legalease.main:app" if args.reload else app,
        host=args.host,
        port=args.port,
        reload=args.reload
    )


if __name__ == "__main__":
    main()
