"""
Helpers shared by the gateway and payout rail adapters.
"""

from __future__ import annotations

import hashlib
import random
import uuid

from django.conf import settings


class IdempotencyKeyGenerator:
    """
    Idempotency keys for external calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same (operation, entity, attempt) always yields the same key, so a
    crashed call replayed with the same attempt number cannot pay twice.
    A new attempt number (operator retry) yields a new key.

    Example:
        key = IdempotencyKeyGenerator.generate("payout", payout.id, payout.attempts)
        # "payout:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(operation: str, entity_id: uuid.UUID | str, attempt: int = 1) -> str:
        entity = str(entity_id)
        digest = hashlib.sha256(
            f"{operation}:{entity}:{attempt}:{settings.SECRET_KEY}".encode()
        ).hexdigest()[:8]
        return f"{operation}:{entity}:{attempt}:{digest}"


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Exponential backoff with 0-25% jitter.

    Example:
        # attempt 0: 1.0-1.25s, attempt 1: 2.0-2.5s, attempt 2: 4.0-5.0s
        countdown = backoff_delay(self.request.retries)
    """
    delay = min(base * (2**attempt), max_delay)
    return delay + delay * random.uniform(0, 0.25)
