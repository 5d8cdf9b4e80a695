"""Rétention des issues d'opérations d'ancrage (Redis ou mémoire).

- OutcomeStore: `remember(key, payload)` / `recall(key)` avec TTL, pour qu'un retry client reçu
  dans la fenêtre de rétention (éventuellement par un autre processus) obtienne l'issue déjà
  connue au lieu de resoumettre une transaction.

Clé recommandée: `anchor:{kind}:{target}:{hash}` (voir `InFlightRegistry.make_key`).

Ces helpers utilisent Redis si `REDIS_URL` est fourni; sinon un KV en mémoire adapté aux tests.
Le client Redis est synchrone et borné par `socket_timeout`; depuis la boucle d'événements, passer
par `arecall`/`aremember`, qui délèguent l'appel réseau à un thread.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any

import redis
import structlog

log = structlog.get_logger(__name__)

_PREFIX = "outcome:"


class _InMemoryKV:
    def __init__(self) -> None:
        self._exp: dict[str, float] = {}
        self._vals: dict[str, str] = {}

    def _purge(self, key: str) -> None:
        exp = self._exp.get(key)
        if exp is not None and exp <= time.time():
            self._exp.pop(key, None)
            self._vals.pop(key, None)

    def get(self, key: str) -> str | None:
        self._purge(key)
        return self._vals.get(key)

    def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._vals[key] = value
        if ex:
            self._exp[key] = time.time() + int(ex)


def _redis_client(url: str | None, timeout: float):
    if not url:
        return None
    try:
        return redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
    except Exception as err:  # URL invalide: on retombe sur la mémoire
        log.warning("outcome_store_redis_unavailable", error=str(err))
        return None


@dataclass
class OutcomeStore:
    """Store des issues terminales avec TTL."""

    ttl_seconds: int = 120
    redis_url: str | None = None
    socket_timeout: float = 0.5
    client: Any = field(default=None)

    def __post_init__(self) -> None:
        """Initialise le client Redis ou fallback en mémoire."""
        if self.client is None:
            self.client = _redis_client(self.redis_url, self.socket_timeout) or _InMemoryKV()

    @property
    def backend(self) -> str:
        return "memory" if isinstance(self.client, _InMemoryKV) else "redis"

    def remember(self, key: str, payload: dict[str, Any]) -> None:
        """Enregistre l'issue d'une opération soumise pour la fenêtre de rétention."""
        raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        try:
            self.client.set(_PREFIX + key, raw, ex=max(1, int(self.ttl_seconds)))
        except redis.RedisError as err:
            log.warning("outcome_store_write_failed", key=key, error=str(err))

    def recall(self, key: str) -> dict[str, Any] | None:
        """Retourne l'issue enregistrée pour `key`, ou None."""
        try:
            raw = self.client.get(_PREFIX + key)
        except redis.RedisError as err:
            log.warning("outcome_store_read_failed", key=key, error=str(err))
            return None
        return json.loads(raw) if raw else None

    async def aremember(self, key: str, payload: dict[str, Any]) -> None:
        if self.backend == "memory":
            self.remember(key, payload)
            return
        await asyncio.to_thread(self.remember, key, payload)

    async def arecall(self, key: str) -> dict[str, Any] | None:
        if self.backend == "memory":
            return self.recall(key)
        return await asyncio.to_thread(self.recall, key)
