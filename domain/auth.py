"""Domain Entities - Auth"""
from typing import Optional

from pydantic import BaseModel


class AdminUser(BaseModel):
    """Back-office operator allowed to drive reservation transitions"""
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    disabled: bool = False

    class Config:
        from_attributes = True

    @property
    def actor(self) -> str:
        """Name recorded in audit entries"""
        return f"admin:{self.username}"


class AdminUserInDB(AdminUser):
    hashed_password: str
