"""
retry.py - Bounded exponential backoff with fatal-error short-circuit.

State machine:

    ATTEMPTING --SUCCESS--> DONE
    ATTEMPTING --FATAL----> DONE
    ATTEMPTING --RETRYABLE (fatal phrase)--> DONE (as FATAL)
    ATTEMPTING --RETRYABLE--> BACKOFF --> ATTEMPTING   (while attempts remain)

Delay before retry n (n = failures so far, 0-indexed) is
initial_delay_ms * 2**n. Uncapped; max_attempts bounds total time.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional, Tuple

from loguru import logger

from ...domain.models import AttemptOutcome, OutcomeKind, RetryPolicy


# Unrecoverable conditions: retrying cannot change the outcome.
FATAL_ERROR_PHRASES: Tuple[str, ...] = (
    "insufficient funds",
    "insufficient balance",
    "insufficient lamports",
    "insufficientfunds",
    "account not found",
    "accountnotfound",
    "could not find account",
    "unauthorized",
    "forbidden",
    "invalid api key",
    "signature verification failed",
)


AttemptFn = Callable[[], Awaitable[AttemptOutcome]]
SleepFn = Callable[[float], Awaitable[None]]


class RetryState(Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    DONE = "done"


def is_fatal_error(reason: Optional[str], phrases: Iterable[str] = FATAL_ERROR_PHRASES) -> bool:
    if not reason:
        return False
    lowered = reason.lower()
    return any(p in lowered for p in phrases)


def backoff_delay_seconds(policy: RetryPolicy, failures: int) -> float:
    return policy.initial_delay_ms * (2 ** failures) / 1000.0


class RetryController:
    """Drives one fallible operation to SUCCESS, FATAL, or exhaustion."""

    def __init__(
        self,
        policy: RetryPolicy,
        sleep: SleepFn = asyncio.sleep,
        fatal_phrases: Iterable[str] = FATAL_ERROR_PHRASES,
    ):
        self.policy = policy
        self._sleep = sleep
        self._fatal_phrases = tuple(fatal_phrases)
        self.state = RetryState.DONE
        self.invocations = 0

    async def run(self, attempt: AttemptFn, label: str = "attempt") -> AttemptOutcome:
        self.state = RetryState.ATTEMPTING
        self.invocations = 0
        failures = 0
        outcome = AttemptOutcome.retryable("not attempted")

        while self.state is not RetryState.DONE:
            if self.state is RetryState.BACKOFF:
                delay = backoff_delay_seconds(self.policy, failures - 1)
                logger.info(f"RETRY_BACKOFF | {label} | failures={failures} | delay={delay:.3f}s")
                await self._sleep(delay)
                self.state = RetryState.ATTEMPTING
                continue

            self.invocations += 1
            try:
                outcome = await attempt()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                outcome = AttemptOutcome.retryable(f"{type(e).__name__}: {e}")
                logger.warning(f"RETRY_EXCEPTION | {label} | attempt={self.invocations} | {outcome.reason}")

            if outcome.kind is OutcomeKind.SUCCESS:
                logger.info(f"RETRY_SUCCESS | {label} | attempt={self.invocations}")
                self.state = RetryState.DONE
            elif outcome.kind is OutcomeKind.FATAL:
                logger.error(f"RETRY_FATAL | {label} | attempt={self.invocations} | {outcome.reason}")
                self.state = RetryState.DONE
            elif is_fatal_error(outcome.reason, self._fatal_phrases):
                logger.error(f"RETRY_FATAL_PHRASE | {label} | attempt={self.invocations} | {outcome.reason}")
                outcome = AttemptOutcome.fatal(outcome.reason or "")
                self.state = RetryState.DONE
            else:
                failures += 1
                logger.warning(
                    f"RETRY_FAILURE | {label} | attempt={self.invocations}/{self.policy.max_attempts} | "
                    f"{outcome.reason}"
                )
                if self.invocations >= self.policy.max_attempts:
                    logger.error(f"RETRY_EXHAUSTED | {label} | attempts={self.invocations}")
                    self.state = RetryState.DONE
                else:
                    self.state = RetryState.BACKOFF

        return outcome


async def run_with_retry(
    attempt: AttemptFn,
    policy: RetryPolicy,
    sleep: SleepFn = asyncio.sleep,
) -> AttemptOutcome:
    return await RetryController(policy, sleep=sleep).run(attempt)
