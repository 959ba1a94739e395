from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ..models.users import Role


class _Credentials(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=64)

    @field_validator('email', mode='before')
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class SignupIn(_Credentials):
    pass


class AddUserIn(_Credentials):
    role: Literal['EDITOR', 'VIEWER']

    @field_validator('role', mode='before')
    @classmethod
    def upper_role(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class LoginIn(BaseModel):
    email: EmailStr
    password: str

    @field_validator('email', mode='before')
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class UpdatePasswordIn(BaseModel):
    old_password: str
    new_password: str = Field(min_length=8, max_length=64)


class TokenOut(BaseModel):
    token: str
    token_type: str = 'bearer'


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    role: Role
    created_at: Optional[datetime] = None


class UserPage(BaseModel):
    count: int
    rows: List[UserOut]


class IdentityOut(BaseModel):
    user_id: int
    role: str


class RevokedOut(BaseModel):
    revoked: int


class Envelope(BaseModel):
    status: int
    error: bool = False
    message: str
    data: Optional[Any] = None
