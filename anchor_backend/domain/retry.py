"""Politique de retry avec backoff pour les appels aux fournisseurs externes.

Seules les erreurs marquées transitoires (`AnchorError.transient`) sont rejouées, dans la limite
d'un plafond de tentatives; toute autre erreur est propagée immédiatement.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from anchor_backend.domain.errors import AnchorError

T = TypeVar("T")


class RetryStrategy(Enum):
    """Stratégies de retry disponibles."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


@dataclass(frozen=True)
class RetryPolicy:
    """Plafond de tentatives et paramètres de backoff."""

    max_attempts: int = 3
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: bool = True


def calculate_retry_delay(attempt: int, policy: RetryPolicy) -> float:
    """Calculate retry delay (attempt starts at 0) according to the policy strategy."""
    if policy.strategy == RetryStrategy.EXPONENTIAL:
        delay = policy.base_delay * (2**attempt)
    elif policy.strategy == RetryStrategy.LINEAR:
        delay = policy.base_delay * (attempt + 1)
    else:  # FIXED
        delay = policy.base_delay

    if policy.jitter:
        delay *= random.uniform(0.5, 1.5)

    return min(delay, policy.max_delay)


async def retry_async(
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    on_retry: Callable[[int, AnchorError, float], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Exécute `call` en rejouant les erreurs transitoires.

    Args:
        call: fabrique de coroutine, rappelée à chaque tentative.
        policy: plafond et backoff.
        on_retry: notifié (tentative, erreur, délai) avant chaque nouvelle tentative.
        sleep: injectable pour les tests.

    Raises:
        AnchorError: la dernière erreur transitoire une fois le plafond atteint, ou la première
        erreur non transitoire.
    """
    attempt = 0
    while True:
        try:
            return await call()
        except AnchorError as exc:
            attempt += 1
            if not exc.transient or attempt >= policy.max_attempts:
                raise
            delay = calculate_retry_delay(attempt - 1, policy)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            await sleep(delay)
