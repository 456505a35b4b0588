"""Request/response bodies for the registration and login endpoints."""
from typing import Optional

from pydantic import BaseModel, Field


class CredentialsRequest(BaseModel):
    """Username/password pair.

    Both fields are optional at the schema level so that missing values are
    reported as 400 by the endpoint instead of a generic validation error.
    """
    username: Optional[str] = Field(None, description="Account name")
    password: Optional[str] = Field(None, description="Plain-text password")

    def is_complete(self) -> bool:
        return bool(self.username and self.username.strip() and self.password)


class MessageResponse(BaseModel):
    message: str


class LoginResponse(BaseModel):
    message: str
    token: str
