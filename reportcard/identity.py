"""
Anonymous identity bootstrap.

Establishes one stable anonymous actor id per process. Every concurrent
caller shares a single resolution, so the identity-creation endpoint (rate
limited, occasionally flaky) is hit at most once per attempt cycle.

States: UNINITIALIZED → RESOLVING → ESTABLISHED | UNAVAILABLE
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
)

from reportcard.errors import StoreError
from reportcard.utils.helpers import race_timeout

logger = logging.getLogger("identity.bootstrap")

DEFAULT_BACKOFF_DELAYS = (0.0, 0.5, 1.5)


class IdentityState(Enum):
    UNINITIALIZED = "uninitialized"
    RESOLVING = "resolving"
    ESTABLISHED = "established"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class AnonymousIdentity:
    id: str


@dataclass(frozen=True)
class IdentityStatus:
    """What the presentation layer sees: {identity, loading}."""
    identity: Optional[AnonymousIdentity]
    loading: bool

    def to_dict(self) -> dict:
        return {
            "identity": {"id": self.identity.id} if self.identity else None,
            "loading": self.loading,
        }


class AuthGateway(Protocol):
    """Session and anonymous sign-in calls of the backing store."""

    async def get_session_user(self) -> Optional[str]:
        """Id of the already-established session user, or None."""
        ...

    async def sign_in_anonymously(self) -> str:
        """Create an anonymous user and return its id; raises StoreError."""
        ...


class BackoffPolicy:
    """
    Delays between identity-creation attempts.

    delays[i] is the wait before attempt i + 1; the number of delays is the
    number of attempts.
    """

    def __init__(self, delays: Sequence[float] = DEFAULT_BACKOFF_DELAYS):
        if not delays:
            raise ValueError("at least one attempt is required")
        self.delays = tuple(float(d) for d in delays)

    @property
    def max_attempts(self) -> int:
        return len(self.delays)

    def delay_before(self, attempt_number: int) -> float:
        """Seconds to wait before the 1-based attempt_number."""
        index = min(max(attempt_number - 1, 0), len(self.delays) - 1)
        return self.delays[index]

    def wait(self, retry_state: RetryCallState) -> float:
        """tenacity wait strategy: delay before the next attempt."""
        return self.delay_before(retry_state.attempt_number + 1)


class IdentityAttemptFailed(Exception):
    """One sign-in attempt (and the session re-check after it) failed."""


class AnonymousIdentityBootstrap:
    """
    Memoized, coalesced anonymous identity resolution.

    Usage:
        bootstrap = AnonymousIdentityBootstrap(gateway)
        identity = await bootstrap.ensure()   # None means UNAVAILABLE
    """

    def __init__(
        self,
        gateway: AuthGateway,
        backoff: Optional[BackoffPolicy] = None,
        session_timeout: float = 8.0,
        create_timeout: float = 15.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._gateway = gateway
        self._backoff = backoff or BackoffPolicy()
        self._session_timeout = session_timeout
        self._create_timeout = create_timeout
        self._sleep = sleep

        self._state = IdentityState.UNINITIALIZED
        self._identity: Optional[AnonymousIdentity] = None
        self._pending: Optional["asyncio.Task[Optional[AnonymousIdentity]]"] = None
        self._generation = 0

    @property
    def state(self) -> IdentityState:
        return self._state

    @property
    def identity(self) -> Optional[AnonymousIdentity]:
        return self._identity

    def status(self) -> IdentityStatus:
        loading = self._state in (IdentityState.UNINITIALIZED, IdentityState.RESOLVING)
        return IdentityStatus(identity=self._identity, loading=loading)

    async def ensure(self) -> Optional[AnonymousIdentity]:
        """
        Return the identity, resolving it first if needed.

        Never raises for expected failures; None means UNAVAILABLE.
        """
        if self._state in (IdentityState.ESTABLISHED, IdentityState.UNAVAILABLE):
            return self._identity

        if self._pending is None:
            self._state = IdentityState.RESOLVING
            self._pending = asyncio.ensure_future(self._resolve(self._generation))
        return await asyncio.shield(self._pending)

    def reset(self) -> None:
        """Forget the memoized identity and any resolution in flight."""
        self._generation += 1
        self._state = IdentityState.UNINITIALIZED
        self._identity = None
        self._pending = None

    async def _resolve(self, generation: int) -> Optional[AnonymousIdentity]:
        try:
            user_id = await self._find_session("session check")
            if user_id is None:
                user_id = await self._create_with_retries()
        except Exception:
            logger.exception("Unexpected error ensuring anonymous identity")
            user_id = None

        identity = AnonymousIdentity(id=user_id) if user_id else None
        if generation == self._generation:
            self._identity = identity
            self._state = IdentityState.ESTABLISHED if identity else IdentityState.UNAVAILABLE
            self._pending = None
            if identity:
                logger.info(f"Anonymous identity established: {identity.id}")
            else:
                logger.warning("Anonymous identity unavailable; continuing without one")
        return identity

    async def _find_session(self, label: str) -> Optional[str]:
        try:
            return await race_timeout(
                self._gateway.get_session_user(), self._session_timeout, f"get_session_user ({label})"
            )
        except (StoreError, asyncio.TimeoutError) as e:
            logger.warning(f"Session lookup failed ({label}): {e}")
            return None

    async def _create_with_retries(self) -> Optional[str]:
        first_delay = self._backoff.delay_before(1)
        if first_delay > 0:
            await self._sleep(first_delay)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._backoff.max_attempts),
            wait=self._backoff.wait,
            retry=retry_if_exception_type(IdentityAttemptFailed),
            sleep=self._sleep,
        )
        user_id: Optional[str] = None
        try:
            async for attempt in retrying:
                with attempt:
                    user_id = await self._attempt_create(attempt.retry_state.attempt_number)
        except RetryError:
            logger.warning(f"Anonymous sign-in gave up after {self._backoff.max_attempts} attempts")
            return None
        return user_id

    async def _attempt_create(self, attempt_number: int) -> str:
        try:
            user_id = await race_timeout(
                self._gateway.sign_in_anonymously(), self._create_timeout, "sign_in_anonymously"
            )
            if user_id:
                return user_id
            logger.warning(f"Anonymous sign-in attempt {attempt_number} returned no user")
        except (StoreError, asyncio.TimeoutError) as e:
            logger.warning(f"Anonymous sign-in attempt {attempt_number} failed: {e}")

        # The sign-in may have succeeded server-side even though our call failed.
        user_id = await self._find_session(f"after attempt {attempt_number}")
        if user_id:
            return user_id
        raise IdentityAttemptFailed(f"attempt {attempt_number}")
