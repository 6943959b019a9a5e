"""
fee_services.ports -- collaborator interfaces consumed by the billing engine.

Responsibility:
    Declares the two outside systems the fee ledger talks to: the member
    directory (who is enrolled, and who to notify for them) and the
    notifier (in-app/push delivery).  Ships in-memory and logging
    implementations for wiring and tests.

Architecture position:
    Services.  The kernel never imports this module; it duck-types the
    directory (``get_member``, ``members_for_user``).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from fee_kernel.logging_config import get_logger

logger = get_logger("services.ports")

STUDENT_ROLE = "STUDENT"
PARENT_ROLE = "PARENT"


@dataclass(frozen=True)
class MemberInfo:
    """
    A member of a coaching tenant.

    ``user_id`` is the member's own login, if any; ``ward_parent_id`` is
    the user id of the parent of a ward (a student without a login).
    """

    member_id: str
    coaching_id: str
    role: str = STUDENT_ROLE
    user_id: str | None = None
    ward_parent_id: str | None = None
    name: str | None = None


@runtime_checkable
class MemberDirectory(Protocol):
    def get_member(self, coaching_id: str, member_id: str) -> MemberInfo | None:
        ...

    def members_for_user(self, coaching_id: str, user_id: str) -> list[MemberInfo]:
        ...


@runtime_checkable
class Notifier(Protocol):
    def notify(self, user_id: str, title: str, message: str, payload: dict[str, Any]) -> None:
        ...


class InMemoryMemberDirectory:
    """Thread-safe dict-backed MemberDirectory."""

    def __init__(self, members: list[MemberInfo] | None = None):
        self._members: dict[tuple[str, str], MemberInfo] = {}
        self._lock = threading.Lock()
        for member in members or []:
            self.add_member(member)

    def add_member(self, member: MemberInfo) -> MemberInfo:
        with self._lock:
            self._members[(member.coaching_id, member.member_id)] = member
        return member

    def remove_member(self, coaching_id: str, member_id: str) -> None:
        with self._lock:
            self._members.pop((coaching_id, member_id), None)

    def get_member(self, coaching_id: str, member_id: str) -> MemberInfo | None:
        with self._lock:
            return self._members.get((coaching_id, member_id))

    def members_for_user(self, coaching_id: str, user_id: str) -> list[MemberInfo]:
        """The member whose login is ``user_id``, then their wards by member id."""
        with self._lock:
            tenant = [m for (c, _), m in self._members.items() if c == coaching_id]
        own = [m for m in tenant if m.user_id == user_id]
        wards = sorted(
            (m for m in tenant if m.ward_parent_id == user_id and m.user_id != user_id),
            key=lambda m: m.member_id,
        )
        return own + wards


class LoggingNotifier:
    """Notifier that only writes a log line; the default when none is wired."""

    def notify(self, user_id: str, title: str, message: str, payload: dict[str, Any]) -> None:
        logger.info(
            "notification_logged",
            extra={"user_id": user_id, "title": title, "type": payload.get("type")},
        )
