from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Protocol, TypeVar

from ist.domain.errors import TransactionConflictError
from ist.repositories.document_store import Transaction

log = logging.getLogger("ist.store")

T = TypeVar("T")


class TransactionFactory(Protocol):
    def transaction(self) -> Transaction: ...


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    backoff_seconds: float = 0.05
    max_backoff_seconds: float = 1.0
    jitter: float = 0.5

    def delay_for(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        base = min(self.max_backoff_seconds, self.backoff_seconds * (2 ** (attempt - 1)))
        return base * (1.0 + self.jitter * rand())


@dataclass
class TransactionRunner:
    """Runs a read-modify-write closure as one atomic unit.

    The closure gets a fresh Transaction on every attempt and must only stage
    writes through it. Conflicts are retried with backoff up to
    policy.max_attempts; any other error aborts the attempt and propagates
    unchanged, so business-rule failures are never retried.
    """

    store: TransactionFactory
    policy: RetryPolicy = RetryPolicy()
    sleep: Callable[[float], None] = time.sleep

    def run(self, fn: Callable[[Transaction], T]) -> T:
        attempts = max(1, int(self.policy.max_attempts))
        for attempt in range(1, attempts + 1):
            tx = self.store.transaction()
            try:
                result = fn(tx)
                tx.commit()
                return result
            except TransactionConflictError as exc:
                tx.rollback()
                if attempt >= attempts:
                    log.warning("tx_retries_exhausted attempts=%s error=%s", attempt, exc)
                    raise TransactionConflictError(
                        f"Could not commit after {attempt} attempts; reload and try again."
                    ) from exc
                delay = self.policy.delay_for(attempt)
                log.info("tx_retry attempt=%s delay=%.3f error=%s", attempt, delay, exc)
                self.sleep(delay)
            except Exception:
                tx.rollback()
                raise
        raise AssertionError("unreachable")
