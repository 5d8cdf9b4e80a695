"""Configuration de test pour pytest avec gestion des chemins.

Ce module ajoute la racine du projet au sys.path et fournit une application câblée sur les
adaptateurs en mémoire (ledger et store de contenu), sans Redis ni réseau.
"""

import os
import sys

import pytest

# Ensure project root is on sys.path so that
# imports like `from anchor_backend...` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from fastapi.testclient import TestClient  # noqa: E402

from anchor_backend.app.main import create_app  # noqa: E402
from anchor_backend.core.container import Container  # noqa: E402
from anchor_backend.core.settings import Settings  # noqa: E402
from anchor_backend.infra.content.memory import InMemoryContentStore  # noqa: E402
from anchor_backend.infra.ledger.memory import InMemoryLedger  # noqa: E402
from tests.fakes import make_settings  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def content_store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def container(settings, ledger, content_store) -> Container:
    return Container(settings, content_store=content_store, ledger=ledger)


@pytest.fixture
def client(container):
    """Client HTTP sur une application câblée en mémoire (une seule boucle pour le test)."""
    with TestClient(create_app(container)) as c:
        yield c
