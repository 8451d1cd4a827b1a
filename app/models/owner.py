from typing import Literal

from pydantic import BaseModel


class Owner(BaseModel):
    """Authenticated end user resolved from the identity provider's session."""
    id: str
    email: str = ""
    role: Literal["user", "admin"] = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
