"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. Update payloads are partial: only the
fields a client sends are applied, and fields that map to NOT NULL
columns may be omitted but never set to null.
"""

import uuid
from datetime import date, datetime
from typing import ClassVar, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from .models import EnrollmentStatus, UserRole

T = TypeVar("T")


class _In(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


class _PartialUpdate(_In):
    """Base for PATCH bodies: rejects explicit nulls on required columns."""
    non_nullable: ClassVar[tuple] = ()

    @model_validator(mode="after")
    def reject_nulls(self):
        for name in self.non_nullable:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class _Out(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# auth

class RegisterIn(_In):
    """Payload for the registration endpoint."""
    name: str = Field(min_length=1, max_length=120)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)


class LoginIn(_In):
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshIn(_In):
    """Body of `/auth/refresh-tokens` and `/auth/logout`."""
    refresh_token: str = Field(min_length=1)


class TokenOut(BaseModel):
    token: str
    expires: datetime


class AuthTokens(BaseModel):
    """An access/refresh token pair with their expiry timestamps."""
    access: TokenOut
    refresh: TokenOut


class UserOut(_Out):
    id: uuid.UUID
    name: str
    email: str
    role: UserRole
    created_at: datetime
    updated_at: datetime


class AuthOut(BaseModel):
    user: UserOut
    tokens: AuthTokens


class TokensOut(BaseModel):
    tokens: AuthTokens


class UserUpdate(_PartialUpdate):
    non_nullable: ClassVar[tuple] = ("name", "email", "password", "role")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)
    role: Optional[UserRole] = None


# clients

class ClientCreate(_In):
    full_name: str = Field(min_length=1, max_length=200)
    dob: date
    gender: str = Field(min_length=1, max_length=32)
    contact: str = Field(min_length=1, max_length=64)
    notes: Optional[str] = None


class ClientUpdate(_PartialUpdate):
    non_nullable: ClassVar[tuple] = ("full_name", "dob", "gender", "contact")

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    dob: Optional[date] = None
    gender: Optional[str] = Field(default=None, min_length=1, max_length=32)
    contact: Optional[str] = Field(default=None, min_length=1, max_length=64)
    notes: Optional[str] = None


class ClientOut(_Out):
    id: uuid.UUID
    full_name: str
    dob: date
    gender: str
    contact: str
    notes: Optional[str] = None
    user_id: uuid.UUID
    created_at: datetime
    updated_at: datetime


# programs

class ProgramCreate(_In):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None


class ProgramUpdate(_PartialUpdate):
    non_nullable: ClassVar[tuple] = ("name",)

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None


class ProgramOut(_Out):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# enrollments

class EnrollmentCreate(_In):
    client_id: uuid.UUID
    program_id: uuid.UUID
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    notes: Optional[str] = None


class EnrollmentUpdate(_PartialUpdate):
    non_nullable: ClassVar[tuple] = ("status",)

    status: Optional[EnrollmentStatus] = None
    notes: Optional[str] = None


class EnrollmentOut(_Out):
    id: uuid.UUID
    client_id: uuid.UUID
    program_id: uuid.UUID
    enrolled_at: datetime
    status: EnrollmentStatus
    notes: Optional[str] = None


class EnrollmentDetailOut(EnrollmentOut):
    """Enrollment with its client and program embedded."""
    client: ClientOut
    program: ProgramOut


class ClientEnrollmentOut(EnrollmentOut):
    program: ProgramOut


class ClientProfileOut(ClientOut):
    """A client together with every program they are enrolled in."""
    enrollments: List[ClientEnrollmentOut] = []


# listings and statistics

class Page(BaseModel, Generic[T]):
    results: List[T]
    total_results: int
    limit: int
    page: int
    total_pages: int
    has_next_page: bool


class RecentClient(_Out):
    id: uuid.UUID
    full_name: str
    created_at: datetime


class ClientStats(BaseModel):
    total: int
    recent: List[RecentClient]


class ProgramStats(BaseModel):
    total: int


class EnrollmentDistribution(BaseModel):
    active: int = 0
    completed: int = 0
    dropped: int = 0


class EnrollmentStats(BaseModel):
    total: int
    distribution: EnrollmentDistribution


class Statistics(BaseModel):
    client: ClientStats
    programs: ProgramStats
    enrollments: EnrollmentStats
