"""
GradeLedger - Account Lockout

Temporary login suppression after repeated failed passwords.

States per user:
    unlocked -> locked   when the failure counter reaches max_attempts
    locked   -> unlocked when locked_until passes, or on a successful login

A non-positive max_attempts or lockout_minutes disables locking entirely.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from backend.auth.models import User, utcnow
from backend.auth.store import UserStore
from backend.config import settings


logger = logging.getLogger("gradeledger.auth.lockout")


class LockoutTracker:
    """
    Tracks failed logins and temporary locks through the user store.

    Usage:
        tracker = LockoutTracker(user_store)
        if tracker.minutes_remaining(user) is not None:
            ...  # reject before touching the password
        await tracker.record_failure(user)
    """

    def __init__(
        self,
        user_store: UserStore,
        max_attempts: Optional[int] = None,
        lockout_minutes: Optional[int] = None,
    ):
        self._store = user_store
        self.max_attempts = settings.MAX_LOGIN_ATTEMPTS if max_attempts is None else max_attempts
        self.lockout_minutes = settings.LOCKOUT_MINUTES if lockout_minutes is None else lockout_minutes

    @property
    def enabled(self) -> bool:
        return self.max_attempts > 0 and self.lockout_minutes > 0

    def minutes_remaining(self, user: User, now: Optional[datetime] = None) -> Optional[int]:
        """
        Whole minutes left on the user's lock, rounded up.

        Returns:
            None when the user is not currently locked
        """
        if user.locked_until is None:
            return None
        now = now or utcnow()
        if now >= user.locked_until:
            return None
        seconds = (user.locked_until - now).total_seconds()
        return max(1, math.ceil(seconds / 60))

    async def record_failure(self, user: User, now: Optional[datetime] = None) -> User:
        """
        Count one failed password and lock the account at the threshold.

        Returns:
            The user as stored after the update
        """
        now = now or utcnow()
        lock_until = now + timedelta(minutes=self.lockout_minutes) if self.enabled else None

        updated = await self._store.record_failed_login(
            user.id,
            max_attempts=self.max_attempts,
            lock_until=lock_until,
        )
        if updated is None:
            return user

        if updated.locked_until is not None and updated.locked_until > now:
            logger.warning(
                "Account %s locked after %d failed attempts",
                user.id, updated.login_attempts,
            )
        return updated

    async def record_success(self, user: User, now: Optional[datetime] = None) -> User:
        """Reset the counter, clear any lock and stamp last_login."""
        updated = await self._store.record_successful_login(user.id, now or utcnow())
        return updated or user
