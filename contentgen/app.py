from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from contentgen.application import GenerationService, build_generation_service, configure_generation_service
from contentgen.config import Settings, load_settings
from contentgen.logging_config import setup_logging
from contentgen.routes import ai


def create_app(
    settings: Settings | None = None,
    *,
    service: GenerationService | None = None,
    configure_logging: bool = True,
) -> FastAPI:
    settings = settings or load_settings()
    if configure_logging:
        setup_logging(settings.log_level)

    service = service or build_generation_service(settings)
    configure_generation_service(service)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        service.worker.start()
        try:
            yield
        finally:
            await service.worker.shutdown()
            service.client.close()

    app = FastAPI(title="Content Generation API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(ai.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Content Generation API",
                "docs": "/docs",
                "health": "/api/ai/health",
            }
        )

    return app


app = create_app()
