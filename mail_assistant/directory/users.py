"""User records and the directory interface the assistant consumes."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DEFAULT_MORNING_TIME = "09:00"
DEFAULT_EVENING_TIME = "18:00"
DEFAULT_TIMEZONE = "Asia/Shanghai"


class UserRole(str, Enum):
    """Directory role. Only ADMIN may run slash commands."""

    ADMIN = "admin"
    USER = "user"


@dataclass(frozen=True)
class ScheduleConfig:
    """Reminder times in HH:MM, interpreted in ``timezone``."""

    morning_reminder_time: str = DEFAULT_MORNING_TIME
    evening_reminder_time: str = DEFAULT_EVENING_TIME
    timezone: str = DEFAULT_TIMEZONE


@dataclass(frozen=True)
class UserConfig:
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    language: str = "zh"
    reminder_paused: bool = False
    resume_date: str | None = None  # ISO timestamp


@dataclass(frozen=True)
class User:
    """A directory entry. Immutable; changes go through UserDirectory.update()."""

    id: str
    email: str
    name: str
    role: UserRole = UserRole.USER
    is_active: bool = True
    config: UserConfig = field(default_factory=UserConfig)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def new_user(
    email: str,
    name: str,
    *,
    role: UserRole = UserRole.USER,
    morning_time: str | None = None,
    evening_time: str | None = None,
    timezone: str = DEFAULT_TIMEZONE,
    language: str = "zh",
) -> User:
    """Build a fresh active User with a random id."""
    schedule = ScheduleConfig(
        morning_reminder_time=morning_time or DEFAULT_MORNING_TIME,
        evening_reminder_time=evening_time or DEFAULT_EVENING_TIME,
        timezone=timezone,
    )
    return User(
        id=uuid.uuid4().hex,
        email=email.strip(),
        name=name,
        role=role,
        config=UserConfig(schedule=schedule, language=language),
    )


# ── Directory interface ────────────────────────────────────────────────────────


@runtime_checkable
class UserDirectory(Protocol):
    """Durable identity store. The assistant never persists users itself."""

    def get_by_email(self, email: str) -> User | None: ...

    def get_by_id(self, user_id: str) -> User | None: ...

    def update(self, user_id: str, changes: dict[str, Any]) -> User | None:
        """Apply field changes and return the updated record (None if unknown)."""
        ...

    def all(self) -> list[User]: ...

    def add(self, user: User) -> User: ...

    def delete(self, user_id: str) -> bool: ...


class InMemoryUserDirectory:
    """Process-local UserDirectory used for development and tests.

    Email lookups are case-insensitive. Records are replaced, never mutated.
    """

    def __init__(self, users: list[User] | None = None) -> None:
        self._users: dict[str, User] = {}
        for user in users or []:
            self.add(user)

    def get_by_email(self, email: str) -> User | None:
        needle = email.strip().lower()
        if not needle:
            return None
        for user in self._users.values():
            if user.email.lower() == needle:
                return user
        return None

    def get_by_id(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    def update(self, user_id: str, changes: dict[str, Any]) -> User | None:
        user = self._users.get(user_id)
        if user is None:
            return None
        updated = replace(user, **changes)
        self._users[user_id] = updated
        logger.debug("User %s updated: %s", user_id, sorted(changes))
        return updated

    def all(self) -> list[User]:
        return list(self._users.values())

    def add(self, user: User) -> User:
        if self.get_by_email(user.email) is not None:
            raise ValueError(f"User with email {user.email!r} already exists")
        self._users[user.id] = user
        return user

    def delete(self, user_id: str) -> bool:
        return self._users.pop(user_id, None) is not None
