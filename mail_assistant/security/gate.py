"""Privileged-sender verification and unauthorized-attempt tracking."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from mail_assistant.directory.users import UserDirectory, UserRole

logger = logging.getLogger(__name__)

DEFAULT_MAX_VIOLATIONS = 3


@dataclass(frozen=True)
class Violation:
    address: str
    subject: str
    at: datetime


class SecurityGate:
    """Decides whether a sender may run admin commands.

    Authority comes only from the directory record (role and active flag);
    nothing in the message itself is trusted. Violations are kept in memory
    per lower-cased address and reset on restart.
    """

    def __init__(
        self, directory: UserDirectory, max_violations: int = DEFAULT_MAX_VIOLATIONS
    ) -> None:
        self._directory = directory
        self._max_violations = max(max_violations, 1)
        self._violations: dict[str, list[Violation]] = {}

    @property
    def max_violations(self) -> int:
        return self._max_violations

    def is_authorized_admin(self, address: str) -> bool:
        user = self._directory.get_by_email(address)
        return user is not None and user.role == UserRole.ADMIN and user.is_active

    def record_unauthorized_access(self, address: str, subject: str) -> bool:
        """Record one attempt; True once the address has reached the threshold."""
        key = address.strip().lower()
        attempts = self._violations.setdefault(key, [])
        attempts.append(Violation(key, subject, datetime.now()))
        logger.warning(
            "Unauthorized admin command from %s (%d/%d): %r",
            key,
            len(attempts),
            self._max_violations,
            subject,
        )
        return len(attempts) >= self._max_violations

    def violation_count(self, address: str) -> int:
        return len(self._violations.get(address.strip().lower(), []))

    def violations(self, address: str) -> list[Violation]:
        return list(self._violations.get(address.strip().lower(), []))

    def reset(self, address: str) -> None:
        self._violations.pop(address.strip().lower(), None)
