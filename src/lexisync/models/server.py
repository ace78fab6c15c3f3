"""Server-side relationship of the local lineage."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Role(Enum):
    """Relationship of the current user to a lineage on the server."""
    NONE = "none"
    MAIN = "main"
    BRANCH = "branch"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "Role":
        if value == "main":
            return cls.MAIN
        if value == "branch":
            return cls.BRANCH
        return cls.NONE


@dataclass
class ServerSyncState:
    """
    What the server knows about the local lineage.

    ``checked`` is False until one successful lineage lookup has completed.
    ``requires_choice`` is set when the lineage exists on the server but the
    user neither owns nor contributes to it; the caller must choose to
    contribute as a branch or to fork.
    """
    exists: bool = False
    role: Role = Role.NONE
    remote_id: Optional[int] = None
    remote_hash: Optional[str] = None
    owner_name: Optional[str] = None
    branch_count: int = 0
    checked: bool = False
    requires_choice: bool = False

    @property
    def is_owned(self) -> bool:
        return self.role in (Role.MAIN, Role.BRANCH)


__all__ = ['Role', 'ServerSyncState']
