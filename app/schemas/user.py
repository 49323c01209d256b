from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Provider = Literal["google", "github", "facebook"]


class AuthorizeRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    alias: str = Field(pattern=r"^[A-Za-z0-9_]{3,20}$")
    provider: Provider


class AuthorizeResponse(BaseModel):
    message: str = "User created, authorization required"
    auth_url: str
    user_id: str


class LookupRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1)


class LookupResponse(BaseModel):
    alias: str
    provider: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    alias: str
    email: Optional[str] = None
    image: Optional[str] = None


class SessionOut(BaseModel):
    user: Optional[UserOut] = None
    provider: Optional[str] = None
    provider_id: Optional[str] = None
