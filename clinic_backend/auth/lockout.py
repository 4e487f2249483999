"""Failed-login tracking.

Counters live behind ``LoginAttemptStore`` so the lockout policy can be
backed by something that outlives the process, and so tests can drive it
with a fake clock.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Protocol

from clinic_backend.core import config

logger = logging.getLogger(__name__)


class LoginAttemptStore(Protocol):
    def is_locked(self, identifier: str) -> bool: ...

    def record_failure(self, identifier: str) -> None: ...

    def clear(self, identifier: str) -> None: ...


@dataclass
class _Attempts:
    count: int
    last_attempt: datetime


class InMemoryLoginAttemptStore:
    def __init__(
        self,
        max_attempts: int = config.MAX_LOGIN_ATTEMPTS,
        lockout: timedelta = timedelta(minutes=config.LOCKOUT_MINUTES),
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.max_attempts = max_attempts
        self.lockout = lockout
        self.clock = clock
        self._attempts: dict[str, _Attempts] = {}
        self._lock = Lock()

    def is_locked(self, identifier: str) -> bool:
        with self._lock:
            attempts = self._attempts.get(identifier)
            if attempts is None:
                return False
            if self.clock() - attempts.last_attempt >= self.lockout:
                del self._attempts[identifier]
                return False
            return attempts.count >= self.max_attempts

    def record_failure(self, identifier: str) -> None:
        with self._lock:
            attempts = self._attempts.get(identifier)
            if attempts is None:
                attempts = self._attempts[identifier] = _Attempts(count=0, last_attempt=self.clock())
            attempts.count += 1
            attempts.last_attempt = self.clock()
            if attempts.count == self.max_attempts:
                logger.warning('Locking out %s after %s failed login attempts', identifier, attempts.count)

    def clear(self, identifier: str) -> None:
        with self._lock:
            self._attempts.pop(identifier, None)


_default_store = InMemoryLoginAttemptStore()


def get_login_attempt_store() -> LoginAttemptStore:
    return _default_store
