"""
Application principale FastAPI.

Ce module assemble les composants du service d'ancrage : conteneur, middlewares, gestionnaires
d'erreurs, routes et métriques.

Responsabilités du module:
- Initialiser le logging structuré
- Construire (ou recevoir) le conteneur et le publier sur `app.state`
- Ajouter les middlewares (request id, Prometheus)
- Monter les routers (santé, ancrage, upload, métriques)
- Fournir le point d'entrée `anchor-backend` (uvicorn)
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from anchor_backend.api.errors import register_error_handlers
from anchor_backend.api.routes_anchor import router as anchor_router
from anchor_backend.api.routes_health import router as health_router
from anchor_backend.api.routes_upload import router as upload_router
from anchor_backend.app.metrics import PrometheusMiddleware, metrics_router
from anchor_backend.core.container import Container
from anchor_backend.core.logging import setup_logging
from anchor_backend.core.settings import get_settings
from anchor_backend.middlewares.request_id import RequestIDMiddleware


def create_app(container: Container | None = None) -> FastAPI:
    """
    Construit et retourne l'application FastAPI prête à l'usage.

    Étapes:
    - Configure le logging structuré (structlog)
    - Construit le conteneur depuis les settings si aucun n'est fourni
    - Ajoute les middlewares de traçabilité et de mesure
    - Publie les routes
    """
    setup_logging()
    container = container or Container()
    settings = container.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await container.aclose()

    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG, lifespan=lifespan)
    app.state.container = container
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(anchor_router)
    app.include_router(upload_router)
    app.include_router(metrics_router)
    return app


def main() -> None:
    """Lance le serveur HTTP (`APP_HOST`/`PORT`)."""
    settings = get_settings()
    uvicorn.run(
        "anchor_backend.app.main:create_app",
        factory=True,
        host=settings.APP_HOST,
        port=settings.PORT,
        reload=False,
    )


if __name__ == "__main__":
    main()
