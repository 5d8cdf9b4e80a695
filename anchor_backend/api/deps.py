"""Dépendances partagées pour les routes de l'API.

Les routes ne créent aucun client: elles lisent le conteneur publié par `create_app` sur
`app.state.container`, ce qui permet aux tests d'injecter des adaptateurs en mémoire.
"""

from fastapi import Request

from anchor_backend.core.container import Container
from anchor_backend.domain.orchestrator import AnchorOrchestrator


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_orchestrator(request: Request) -> AnchorOrchestrator:
    return request.app.state.container.orchestrator
