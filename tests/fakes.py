"""
Fakes pour les tests unitaires.

Stores de contenu en mémoire au comportement contrôlable (pannes programmées, blocage jusqu'à
libération) et fabrique d'orchestrateur sans délai de retry.
"""

from __future__ import annotations

import asyncio
from typing import Any

from anchor_backend.core.settings import Settings
from anchor_backend.domain.entities import ContentPayload, ContentReference
from anchor_backend.domain.errors import ErrorKind, UploadError
from anchor_backend.domain.inflight import InFlightRegistry
from anchor_backend.domain.orchestrator import AnchorOrchestrator, OrchestratorConfig
from anchor_backend.domain.retry import RetryPolicy
from anchor_backend.infra.content.memory import InMemoryContentStore
from anchor_backend.infra.ledger.memory import InMemoryLedger
from anchor_backend.infra.ops.outcome_store import OutcomeStore

OWNER = "0x" + "ab" * 20
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def make_settings(**overrides: Any) -> Settings:
    """Settings de test: adaptateurs mémoire, retries rapides, pas de Redis."""
    values: dict[str, Any] = {
        "LEDGER_BACKEND": "memory",
        "CONTENT_BACKEND": "memory",
        "REDIS_URL": None,
        "VAULT_ENABLED": False,
        "CONFIRMATION_TIMEOUT_S": 2.0,
        "RETRY_BASE_DELAY_S": 0.001,
        "RETRY_MAX_DELAY_S": 0.002,
        "INFLIGHT_RETENTION_S": 60.0,
    }
    values.update(overrides)
    return Settings(**values)


async def no_sleep(_delay: float) -> None:
    """Remplace asyncio.sleep dans les retries."""
    await asyncio.sleep(0)


def fast_policy(max_attempts: int = 3) -> RetryPolicy:
    return RetryPolicy(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0, jitter=False)


def payload(**kwargs: Any) -> ContentPayload:
    return ContentPayload(data=kwargs.pop("data", PNG_BYTES), filename="art.png", **kwargs)


class FlakyContentStore(InMemoryContentStore):
    """Échoue `failures` fois (par appel) avant de déléguer au store mémoire."""

    def __init__(self, failures: int = 1, kind: ErrorKind = ErrorKind.TRANSIENT) -> None:
        super().__init__()
        self.failures = failures
        self.kind = kind
        self.calls = 0

    async def put_bytes(self, data: bytes, filename: str) -> ContentReference:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise UploadError("storage provider returned 503", self.kind)
        return await super().put_bytes(data, filename)


class GatedContentStore(InMemoryContentStore):
    """Bloque l'upload d'image jusqu'à `gate.set()`."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def put_bytes(self, data: bytes, filename: str) -> ContentReference:
        self.entered.set()
        await self.gate.wait()
        return await super().put_bytes(data, filename)


def make_orchestrator(
    ledger: InMemoryLedger | None = None,
    content: InMemoryContentStore | None = None,
    *,
    timeout: float = 1.0,
    outcome_store: OutcomeStore | None = None,
    upload_attempts: int = 3,
    submit_attempts: int = 3,
) -> AnchorOrchestrator:
    registry = InFlightRegistry(retention_seconds=60, outcome_store=outcome_store)
    config = OrchestratorConfig(
        confirmation_timeout_s=timeout,
        upload_policy=fast_policy(upload_attempts),
        submit_policy=fast_policy(submit_attempts),
    )
    return AnchorOrchestrator(
        content or InMemoryContentStore(),
        ledger or InMemoryLedger(),
        registry,
        config,
        sleep=no_sleep,
    )
