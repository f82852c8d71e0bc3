from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    VIEWER = "viewer"
    MODERATOR = "moderator"
    SUPER_ADMIN = "super_admin"


@dataclass(slots=True)
class Principal:
    subject: str
    scopes: set[str]
    role: Role = Role.VIEWER

    @property
    def actor_id(self) -> str:
        return self.subject

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")
