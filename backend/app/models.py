"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
Primary keys are UUID4 values generated by the application.
"""

import enum
import uuid
from typing import List, Optional
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, date, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"


class EnrollmentStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED = "dropped"


class User(SQLModel, table=True):
    """A registered user of the backend (clinician or administrator).

    Fields:
    - `email`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    - `role`: `admin` users may manage other accounts
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    role: UserRole = Field(default=UserRole.USER)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})


class Token(SQLModel, table=True):
    """An issued refresh token. Rows are deleted when the token is rotated."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    token: str = Field(index=True, unique=True)
    user_id: uuid.UUID = Field(foreign_key='user.id', index=True)
    expires_at: datetime
    created_at: datetime = Field(default_factory=utcnow)


class Client(SQLModel, table=True):
    """A person receiving care. `user_id` records who registered them."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    full_name: str = Field(index=True)
    dob: date
    gender: str
    contact: str
    notes: Optional[str] = None
    user_id: uuid.UUID = Field(foreign_key='user.id', index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})
    enrollments: List['Enrollment'] = Relationship(
        back_populates='client',
        sa_relationship_kwargs={'cascade': 'save-update, merge, delete'},
    )


class HealthProgram(SQLModel, table=True):
    """A health program (e.g. TB, Malaria, HIV) clients can be enrolled in."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(index=True, unique=True)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})
    enrollments: List['Enrollment'] = Relationship(
        back_populates='program',
        sa_relationship_kwargs={'cascade': 'save-update, merge, delete'},
    )


class Enrollment(SQLModel, table=True):
    """Links a `Client` to a `HealthProgram`.

    A client can be enrolled in a given program at most once.
    """
    __table_args__ = (UniqueConstraint('client_id', 'program_id', name='uq_enrollment_client_program'),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    client_id: uuid.UUID = Field(foreign_key='client.id', index=True)
    program_id: uuid.UUID = Field(foreign_key='healthprogram.id', index=True)
    enrolled_at: datetime = Field(default_factory=utcnow)
    status: EnrollmentStatus = Field(default=EnrollmentStatus.ACTIVE, index=True)
    notes: Optional[str] = None
    client: Optional[Client] = Relationship(back_populates='enrollments')
    program: Optional[HealthProgram] = Relationship(back_populates='enrollments')
