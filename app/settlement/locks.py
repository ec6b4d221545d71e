"""
Concurrency helpers for settlement operations.

Exactly-once effects rest on unique constraints and status-conditional
updates in the database. The helpers here cover the two remaining cases:

1. **DistributedLock**
   - Redis mutual exclusion with a TTL so a crashed worker cannot wedge it
   - Serializes payout rail calls for one Payout / DriverWithdrawal row
   - Keeps periodic sweeps from overlapping (non-blocking mode)

2. **check_version**
   - Optimistic check for operator actions that carry the version they saw

Usage:
    from settlement.locks import DistributedLock, check_version, lock_key

    with DistributedLock(lock_key("payout", payout.id), ttl=120, timeout=10):
        PayoutService.execute(payout.id)

    with transaction.atomic():
        payout = check_version(Payout, payout_id, expected_version=3)
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction

from django_redis import get_redis_connection

from settlement.exceptions import LockAcquisitionError, SettlementNotFoundError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)

# Pause between attempts in blocking mode (seconds)
RETRY_INTERVAL = 0.05


def lock_key(kind: str, identifier: Any) -> str:
    """Namespaced lock key, e.g. ``settlement:payout:<uuid>``."""
    return f"settlement:{kind}:{identifier}"


class DistributedLock:
    """
    Redis lock owned through a random token.

    Release and extend run as Lua scripts that compare the token first, so
    a worker whose TTL lapsed can never free a lock someone else now holds.

    Example:
        try:
            with DistributedLock("settlement:sweep:pending", ttl=300, blocking=False):
                purge()
        except LockAcquisitionError:
            return 0  # another worker is sweeping

    Args:
        key: Lock identifier (stored as "lock:<key>")
        ttl: Seconds before the lock expires on its own
        blocking: Wait for the lock instead of failing at once
        timeout: Maximum wait in blocking mode (seconds)
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    end
    return 0
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Take the lock.

        Raises:
            LockAcquisitionError: Lock held elsewhere (non-blocking) or not
                obtained within ``timeout`` (blocking)
        """
        token = uuid.uuid4().hex
        deadline = time.monotonic() + self.timeout

        while True:
            if self.redis.set(self.key, token, nx=True, ex=self.ttl):
                self._token = token
                return True
            if not self.blocking:
                raise LockAcquisitionError(
                    f"Lock '{self.key}' is already held",
                    details={"key": self.key},
                )
            if time.monotonic() >= deadline:
                raise LockAcquisitionError(
                    f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                    details={"key": self.key, "timeout": self.timeout},
                )
            time.sleep(RETRY_INTERVAL)

    def release(self) -> bool:
        """Release the lock if this instance holds it. Safe to call twice."""
        if self._token is None:
            return False
        released = self.redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(released)

    def extend(self, ttl: int | None = None) -> bool:
        """Reset the remaining TTL (to ``ttl`` or the original TTL)."""
        if self._token is None:
            return False
        extended = self.redis.eval(
            self.EXTEND_SCRIPT, 1, self.key, self._token, ttl or self.ttl
        )
        return bool(extended)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


def check_version(model_class: type[T], pk: Any, expected_version: int) -> T:
    """
    Lock a row for update, provided it is still at ``expected_version``.

    Must run inside the caller's transaction; the row lock is held until
    it commits.

    Raises:
        SettlementNotFoundError: No such row
        StaleRecordError: The row was saved since the caller read it
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )
        if instance is not None:
            return instance

        model_name = model_class.__name__
        current_version = (
            model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
        )
        if current_version is None:
            raise SettlementNotFoundError(
                f"{model_name} {pk} not found",
                error_code=f"{model_name.upper()}_NOT_FOUND",
                details={"pk": str(pk)},
            )
        raise StaleRecordError(
            f"{model_name} {pk} has been modified "
            f"(expected version {expected_version}, current {current_version})",
            details={
                "pk": str(pk),
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )
