"""Registre des opérations d'ancrage en cours.

Le registre est l'unique propriétaire des `AnchorOperation`: il les indexe par identifiant et par
clé d'idempotence (type + cible + hash lié), admet une seule opération par clé et rend aux
doublons l'opération d'origine. Les entrées terminales restent visibles pendant une fenêtre de
rétention pour absorber les retries immédiats des clients, puis sont évincées. Au-delà du processus,
les issues des opérations soumises sont conservées dans l'OutcomeStore (`record`/`recall`).

Les accès sont synchronisés par un verrou court, jamais tenu à travers un point de suspension.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from anchor_backend.domain.entities import AnchorKind, AnchorOperation
from anchor_backend.infra.ops.outcome_store import OutcomeStore

log = structlog.get_logger(__name__)


def make_key(kind: AnchorKind | str, target: str, commitment: str) -> str:
    """Compose une clé d'idempotence stable `anchor:{kind}:{target}:{hash}`."""
    kind_value = kind.value if isinstance(kind, AnchorKind) else str(kind)
    parts = [str(p).replace("\n", " ").replace("\r", " ") for p in (kind_value, target, commitment)]
    return "anchor:" + ":".join(parts)


@dataclass(frozen=True)
class Admission:
    """Décision de `register`: admise, ou doublon rattaché à l'opération en vol."""

    admitted: bool
    operation: AnchorOperation | None = None


class InFlightRegistry:
    """Index des opérations par id et par clé d'idempotence."""

    def __init__(
        self,
        retention_seconds: float = 120.0,
        outcome_store: OutcomeStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.retention_seconds = retention_seconds
        self.outcomes = outcome_store or OutcomeStore(ttl_seconds=int(retention_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._by_id: dict[str, AnchorOperation] = {}
        self._by_key: dict[str, AnchorOperation] = {}
        self._retired: dict[str, float] = {}
        self._superseded: set[str] = set()

    def track(self, operation: AnchorOperation) -> None:
        """Prend en charge une opération dont la clé n'est pas encore connue."""
        with self._lock:
            self._purge_locked()
            self._by_id[operation.id] = operation

    def register(self, key: str, operation: AnchorOperation) -> Admission:
        """Admet `operation` sous `key`, ou renvoie l'opération qui la porte déjà.

        Admettre une évolution invalide les issues retenues des évolutions précédentes de la même
        cible: leur référence n'est plus forcément celle du ledger.
        """
        with self._lock:
            self._purge_locked()
            existing = self._by_key.get(key)
            if existing is not None and existing is not operation:
                return Admission(admitted=False, operation=existing)
            if operation.kind is AnchorKind.UPDATE:
                self._evict_superseded_locked(key, operation)
            operation.key = key
            self._by_key[key] = operation
            self._by_id[operation.id] = operation
        return Admission(admitted=True, operation=operation)

    def retire(self, operation: AnchorOperation) -> None:
        """Marque une opération terminale.

        Une opération jamais soumise est libérée aussitôt (un retry est sans risque); une opération
        soumise reste indexée pendant la rétention.
        """
        now = self._clock()
        with self._lock:
            operation.retired_at = now
            released = not operation.submitted or operation.id in self._superseded
            self._superseded.discard(operation.id)
            if released and operation.key and self._by_key.get(operation.key) is operation:
                del self._by_key[operation.key]
            self._retired[operation.id] = now
        log.debug(
            "inflight_retired",
            operation_id=operation.id,
            state=operation.state.value,
            retained=operation.submitted,
        )

    async def record(self, operation: AnchorOperation, outcome: dict[str, Any]) -> None:
        """Conserve l'issue d'une opération soumise (OutcomeStore, partagé entre processus)."""
        if operation.submitted and operation.key:
            await self.outcomes.aremember(operation.key, outcome)

    async def recall(self, key: str) -> dict[str, Any] | None:
        return await self.outcomes.arecall(key)

    def get(self, operation_id: str) -> AnchorOperation | None:
        with self._lock:
            self._purge_locked()
            return self._by_id.get(operation_id)

    def lookup(self, key: str) -> AnchorOperation | None:
        with self._lock:
            self._purge_locked()
            return self._by_key.get(key)

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for op in self._by_id.values() if not op.terminal)

    def purge(self) -> int:
        with self._lock:
            return self._purge_locked()

    def _evict_superseded_locked(self, key: str, operation: AnchorOperation) -> None:
        # Les opérations évincées restent consultables par id jusqu'à la fin de la rétention;
        # celles encore en vol gardent leurs doublons et sont libérées à leur retrait.
        stale = [
            (other_key, other)
            for other_key, other in self._by_key.items()
            if other_key != key
            and other.kind is operation.kind
            and other.target == operation.target
        ]
        for other_key, other in stale:
            if other.terminal:
                del self._by_key[other_key]
            else:
                self._superseded.add(other.id)
            log.debug("inflight_superseded", key=other_key, by=operation.id)

    def _purge_locked(self) -> int:
        cutoff = self._clock() - self.retention_seconds
        expired = [op_id for op_id, ts in self._retired.items() if ts <= cutoff]
        for op_id in expired:
            self._retired.pop(op_id, None)
            op = self._by_id.pop(op_id, None)
            if op is not None and op.key and self._by_key.get(op.key) is op:
                del self._by_key[op.key]
        return len(expired)
