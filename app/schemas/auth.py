from enum import Enum

from pydantic import BaseModel


class Role(str, Enum):
    CLIENT = "client"
    ADMIN = "admin"


class Identity(BaseModel):
    """Caller identity as asserted by the external auth service."""

    user_id: str
    role: Role = Role.CLIENT

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
