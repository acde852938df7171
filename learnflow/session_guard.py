"""
Single-flight, bounded-retry lifecycle manager for the shared browser session.

The headless browser is expensive to start and fails in transient ways
(launch crashes, detection blocks, dropped connections). SessionGuard owns
its lifecycle:

- ensure_ready(): at most one acquisition is in flight at any time; every
  concurrent caller awaits that same attempt and observes the same outcome.
  Failed acquisitions are retried with exponential backoff (2s, 4s, ...).
- run_with_retry(): runs a unit of work against the ready session. Any
  failure (including an empty result) invalidates the session so the next
  attempt re-acquires it, then waits on a linear schedule (2s, 4s, ...).

DESIGN NOTES:
- The in-flight acquisition is a cached asyncio.Task, cleared when it
  settles. Waiters use asyncio.shield so a cancelled caller never cancels
  the shared attempt.
- Initialization is serialized; use of the ready session is not.
- Each acquisition bumps a generation counter. A failing operation only
  invalidates the generation it ran against, so a late failure cannot tear
  down a session another caller has already re-acquired.

DO NOT:
- Set self._state from outside this class - consumers call invalidate()
- Sleep after the final attempt - exhaustion is reported immediately
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .config import (
    OPERATION_MAX_RETRIES,
    OPERATION_RETRY_DELAY_SECONDS,
    SESSION_INIT_BACKOFF_BASE,
    SESSION_INIT_MAX_ATTEMPTS,
    SESSION_INIT_MAX_DELAY_SECONDS,
)
from .error_handler import AcquisitionError, EmptyResultError, OperationExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

AsyncCallable = Callable[[], Awaitable[Any]]
SleepFunc = Callable[[float], Awaitable[Any]]


class SessionState(Enum):
    """Lifecycle phase of the shared browser session."""

    UNINITIALIZED = auto()
    INITIALIZING = auto()
    READY = auto()
    FAILED = auto()  # Not terminal: the next ensure_ready() starts over


@dataclass(frozen=True)
class SessionStatus:
    """Snapshot of the guard for health reporting."""

    state: SessionState
    attempts: int = 0
    last_error: Optional[str] = None
    ready_since: Optional[float] = None
    acquisitions: int = 0
    invalidations: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.name,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "ready_since": self.ready_since,
            "acquisitions": self.acquisitions,
            "invalidations": self.invalidations,
        }


def is_empty_result(value: Any) -> bool:
    """None and zero-length sized values count as 'no data'."""
    if value is None:
        return True
    try:
        return len(value) == 0
    except TypeError:
        return False


class SessionGuard:
    """
    Owns the shared browser session and guards every call into it.

    Args:
        acquire: async callable that starts the underlying resource
        release: optional async callable that tears it down; it may overlap a
            new acquire, so it must detach its handles before its first await
        max_attempts: acquisition attempts per ensure_ready() sequence
        backoff_base: exponential base; the delay after failed attempt n is base**n
        max_backoff: cap on a single acquisition backoff delay
        retry_delay: linear step between run_with_retry() attempts
        max_retries: default retry budget for run_with_retry()
        sleep: awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        acquire: AsyncCallable,
        release: Optional[AsyncCallable] = None,
        *,
        max_attempts: int = SESSION_INIT_MAX_ATTEMPTS,
        backoff_base: float = SESSION_INIT_BACKOFF_BASE,
        max_backoff: float = SESSION_INIT_MAX_DELAY_SECONDS,
        retry_delay: float = OPERATION_RETRY_DELAY_SECONDS,
        max_retries: int = OPERATION_MAX_RETRIES,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")

        self._acquire = acquire
        self._release = release
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._max_backoff = max_backoff
        self._retry_delay = retry_delay
        self._max_retries = max_retries
        self._sleep = sleep

        self._state = SessionState.UNINITIALIZED
        self._inflight: Optional["asyncio.Task[None]"] = None
        self._generation = 0
        self._attempts = 0
        self._last_error: Optional[str] = None
        self._ready_since: Optional[float] = None
        self._acquisitions = 0
        self._invalidations = 0

    # ---- state ---------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def generation(self) -> int:
        """Counter bumped on every successful acquisition."""
        return self._generation

    def status(self) -> SessionStatus:
        return SessionStatus(
            state=self._state,
            attempts=self._attempts,
            last_error=self._last_error,
            ready_since=self._ready_since,
            acquisitions=self._acquisitions,
            invalidations=self._invalidations,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given failed acquisition attempt (1-based): 2, 4, 8..."""
        return min(self._backoff_base**attempt, self._max_backoff)

    def retry_delay(self, attempt: int) -> float:
        """Delay after the given failed operation attempt (0-based): 2, 4, 6..."""
        return self._retry_delay * (attempt + 1)

    # ---- acquisition ---------------------------------------------------------

    async def ensure_ready(self) -> None:
        """
        Make sure the session is ready, starting at most one acquisition.

        Raises:
            AcquisitionError: every attempt of the shared sequence failed
        """
        if self._state is SessionState.READY:
            return

        task = self._inflight
        if task is None or task.done():
            logger.debug("Browser session not ready (%s); acquiring", self._state.name)
            self._state = SessionState.INITIALIZING
            task = asyncio.create_task(self._acquire_with_retry())
            task.add_done_callback(_retrieve_task_exception)
            self._inflight = task
        else:
            logger.debug("Joining in-flight browser session acquisition")

        await asyncio.shield(task)

    async def _acquire_with_retry(self) -> None:
        last_error: Optional[BaseException] = None
        try:
            for attempt in range(1, self._max_attempts + 1):
                self._attempts = attempt
                try:
                    await self._acquire()
                except Exception as exc:
                    last_error = exc
                    self._last_error = str(exc)
                    logger.warning(
                        f"Browser session acquisition attempt {attempt}/"
                        f"{self._max_attempts} failed: {exc}"
                    )
                    if attempt < self._max_attempts:
                        delay = self.backoff_delay(attempt)
                        logger.info(f"Retrying browser session acquisition in {delay:.1f}s")
                        await self._sleep(delay)
                    continue

                self._generation += 1
                self._acquisitions += 1
                self._last_error = None
                self._ready_since = time.time()
                self._state = SessionState.READY
                logger.info(
                    f"Browser session ready (attempt {attempt}, "
                    f"generation {self._generation})"
                )
                return

            self._state = SessionState.FAILED
            logger.error(
                f"Browser session acquisition gave up after {self._max_attempts} attempts"
            )
            raise AcquisitionError(self._max_attempts, last_error) from last_error
        except asyncio.CancelledError:
            self._state = SessionState.UNINITIALIZED
            raise
        finally:
            self._inflight = None

    # ---- invalidation / shutdown ---------------------------------------------

    async def invalidate(self, generation: Optional[int] = None) -> bool:
        """
        Report that the session is no longer usable.

        Args:
            generation: the generation the caller used; stale reports are ignored

        Returns:
            True if the session was invalidated, False if the report was ignored
        """
        if self._inflight is not None:
            logger.debug("Invalidation ignored: acquisition already in flight")
            return False
        if generation is not None and generation != self._generation:
            logger.debug(
                f"Invalidation ignored: generation {generation} is stale "
                f"(current {self._generation})"
            )
            return False

        if self._state is SessionState.READY:
            self._invalidations += 1
            logger.info(f"Browser session generation {self._generation} invalidated")
        self._state = SessionState.UNINITIALIZED
        self._ready_since = None
        await self._release_quietly()
        return True

    async def close(self) -> None:
        """Release the session for shutdown; a later ensure_ready() starts over."""
        task = self._inflight
        if task is not None and not task.done():
            logger.info("Cancelling in-flight browser session acquisition")
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        # A task cancelled before it first ran never reaches its finally block
        self._inflight = None

        self._state = SessionState.UNINITIALIZED
        self._ready_since = None
        await self._release_quietly()
        logger.info("Browser session closed")

    async def _release_quietly(self) -> None:
        # A broken session often fails to close; the handle is dropped either way.
        # State is already UNINITIALIZED here, so ensure_ready() may run acquire
        # concurrently: release must drop its handles before its first await.
        if self._release is None:
            return
        try:
            await self._release()
        except Exception as exc:
            logger.warning(f"Releasing browser session failed: {exc}")

    # ---- guarded operations --------------------------------------------------

    async def run_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        label: str,
        max_retries: Optional[int] = None,
    ) -> T:
        """
        Run `operation` against a ready session, retrying on failure.

        An empty result counts as a failure. Every failure invalidates the
        session before the next attempt.

        Args:
            operation: zero-argument coroutine function using the session
            label: human-readable name used in error messages
            max_retries: extra attempts after the first (default from config)

        Raises:
            OperationExhaustedError: every attempt failed; the last failure is
                available as `last_error` and `__cause__`
        """
        retries = self._max_retries if max_retries is None else max_retries
        if retries < 0:
            raise ValueError("max_retries must be non-negative")

        last_error: Optional[BaseException] = None
        for attempt in range(retries + 1):
            generation: Optional[int] = None
            try:
                await self.ensure_ready()
                generation = self._generation
                result = await operation()
                if is_empty_result(result):
                    raise EmptyResultError(f"{label} returned empty result")
                if attempt > 0:
                    logger.info(f"{label} succeeded on attempt {attempt + 1}")
                return result
            except Exception as exc:
                last_error = exc
                logger.warning(
                    f"{label} attempt {attempt + 1}/{retries + 1} failed: {exc}"
                )
                await self.invalidate(generation)
                if attempt < retries:
                    await self._sleep(self.retry_delay(attempt))

        logger.error(f"{label} failed after all retry attempts")
        raise OperationExhaustedError(label, last_error) from last_error


def _retrieve_task_exception(task: "asyncio.Task[None]") -> None:
    # Waiters may all be cancelled; mark the outcome as observed
    if not task.cancelled():
        task.exception()
