"""InMemoryDirectory — reference DirectoryAdapter backed by dicts.

Useful for embedding and tests.  Production deployments adapt their
own user store (LDAP, database) to the ``DirectoryAdapter`` protocol.
Mutators only change directory state; callers notify the sharing
lifecycle hooks themselves.
"""

from __future__ import annotations


class InMemoryDirectory:
    """Users, groups, and display names held in memory."""

    def __init__(self) -> None:
        self._users: dict[str, str] = {}
        self._groups: dict[str, set[str]] = {}

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def add_user(self, uid: str, display_name: str | None = None) -> None:
        self._users[uid] = display_name or uid

    def delete_user(self, uid: str) -> None:
        self._users.pop(uid, None)
        for members in self._groups.values():
            members.discard(uid)

    def add_group(self, gid: str, members: set[str] | None = None) -> None:
        self._groups.setdefault(gid, set()).update(members or set())

    def delete_group(self, gid: str) -> None:
        self._groups.pop(gid, None)

    def add_to_group(self, gid: str, uid: str) -> None:
        self._groups.setdefault(gid, set()).add(uid)

    def remove_from_group(self, gid: str, uid: str) -> None:
        self._groups.get(gid, set()).discard(uid)

    # ------------------------------------------------------------------
    # DirectoryAdapter
    # ------------------------------------------------------------------

    def user_exists(self, uid: str) -> bool:
        return uid in self._users

    def group_exists(self, gid: str) -> bool:
        return gid in self._groups

    def users_in_group(self, gid: str) -> set[str]:
        return set(self._groups.get(gid, set()))

    def groups_of_user(self, uid: str) -> set[str]:
        return {gid for gid, members in self._groups.items() if uid in members}

    def display_name(self, uid: str) -> str:
        return self._users.get(uid, uid)
