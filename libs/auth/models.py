from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AuthUser(BaseModel):
    """
    Represents an authenticated caller, decoded from the bearer token.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
