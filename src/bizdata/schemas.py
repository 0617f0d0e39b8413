"""Request and response schemas for the HTTP API.

Request fields are optional so that missing values reach the service layer,
which reports them with the same messages regardless of the entry point.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserOut(BaseModel):
    """Public view of an account; the password hash is never included."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    role: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class AuthResponse(BaseModel):
    user: UserOut
    token: str
    message: str


class UserResponse(BaseModel):
    user: UserOut


class UserListResponse(BaseModel):
    users: List[UserOut]


class ProfileUpdate(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


class UserCreate(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None


class UserUpdate(UserCreate):
    id: Optional[str] = None


class RecordIn(BaseModel):
    title: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    value: Optional[float] = None
    status: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class RecordUpdate(RecordIn):
    id: Optional[str] = None


class RecordOut(BaseModel):
    """Serialized business data record."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    owner_id: str
    title: str
    category: str
    description: str
    value: float
    status: str
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    created_at: datetime
    updated_at: datetime


class RecordResponse(BaseModel):
    data: RecordOut


class RecordListResponse(BaseModel):
    data: List[RecordOut]


class MessageResponse(BaseModel):
    message: str


class ImportResults(BaseModel):
    imported: int
    errors: List[str]
    total: int


class ImportResponse(BaseModel):
    message: str
    results: ImportResults


class CleanupResponse(BaseModel):
    removed: int
