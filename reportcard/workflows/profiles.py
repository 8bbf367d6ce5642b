"""
Profile role selection with a local-only fallback.

Anonymous actors are often blocked from writing profiles by row-level
policies. A rejected (or failed) central write is not an error: the role is
kept in durable client storage instead and reported as unpersisted.
"""
import asyncio
import logging
from typing import Optional

from reportcard.cache import DurableStore, ResourceCache
from reportcard.clients import BackingStore
from reportcard.errors import StoreError, StoreErrorKind, ValidationError, WorkflowError
from reportcard.models import Profile, ReviewerRole, RoleRecord
from reportcard.utils.helpers import race_timeout, safe_strip

logger = logging.getLogger("workflows.profiles")

ROLE_KEY_PREFIX = "venue_reviews_role_"


class LocalRoleStore:
    """Write-once roles in durable client storage, keyed by actor id."""

    def __init__(self, durable: DurableStore):
        self._durable = durable

    def get(self, user_id: str) -> Optional[str]:
        if not user_id:
            return None
        result = self._durable.get(f"{ROLE_KEY_PREFIX}{user_id}")
        if not result.ok:
            return None
        return result.value if result.value in ("artist", "fan") else None

    def set_once(self, user_id: str, role: str) -> bool:
        """
        Store the role unless one is already stored.

        Returns:
            True if we stored it, False if a role existed or storage failed
        """
        if self.get(user_id) is not None:
            return False
        result = self._durable.set(f"{ROLE_KEY_PREFIX}{user_id}", role)
        if not result.ok:
            logger.warning(f"Could not store local role for {user_id}: {result.error.reason}")
        return result.ok


class ProfileWorkflow:
    def __init__(
        self,
        store: BackingStore,
        profile_cache: ResourceCache,
        local_roles: LocalRoleStore,
        timeout: float = 15.0,
    ):
        self._store = store
        self._profile_cache = profile_cache
        self._local_roles = local_roles
        self._timeout = timeout

    async def set_role(self, user_id: str, role: str) -> RoleRecord:
        """
        Record an actor's role, centrally if allowed, locally otherwise.

        An existing central role is never overwritten; the stored role is
        returned.

        Raises:
            ValidationError: missing actor id or unknown role
            WorkflowError: unexpected failure
        """
        user_id = safe_strip(user_id)
        if not user_id:
            raise ValidationError("user_id", "userId is required")
        try:
            parsed = ReviewerRole.parse(role)
        except ValueError:
            parsed = None
        if parsed is None:
            raise ValidationError("role", 'role must be "artist" or "fan"')

        try:
            profile: Profile = await race_timeout(
                self._store.create_profile(user_id, parsed.value), self._timeout, "create_profile"
            )
        except (StoreError, asyncio.TimeoutError) as e:
            reason = e.kind.value if isinstance(e, StoreError) else "timeout"
            if isinstance(e, StoreError) and e.kind == StoreErrorKind.POLICY_REJECTED:
                logger.info(f"Profile write blocked by policy for {user_id}; keeping role locally")
            else:
                logger.warning(f"Profile write failed for {user_id} ({reason}); keeping role locally")
            self._local_roles.set_once(user_id, parsed.value)
            return RoleRecord(role=self._local_roles.get(user_id) or parsed.value, persisted=False)
        except Exception as e:
            logger.exception(f"Unexpected error setting role for {user_id}")
            raise WorkflowError() from e

        self._profile_cache.invalidate(user_id)
        return RoleRecord(role=profile.role or parsed.value, persisted=True)

    def effective_role(self, user_id: str, profile: Optional[Profile]) -> Optional[str]:
        """Central role when set, else the local fallback."""
        if profile is not None and profile.role:
            return profile.role
        return self._local_roles.get(user_id)
