"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Projects, tasks and answers share the same shape: an owner (`user_id`),
a lifecycle `status` and a free-form JSON `attrs` payload. Parent
references are plain indexed columns; deleting a parent never touches
its children.
"""

import uuid
from datetime import datetime, timezone
from enum import IntEnum
from typing import Optional

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EntityStatus(IntEnum):
    """Lifecycle flag shared by projects, tasks and answers.

    Any value may be set by the owner at any time; only `ACTIVE`
    entities are visible in public listings.
    """
    DRAFT = 0
    ACTIVE = 1
    BLOCKED = 2


def is_publicly_visible(entity) -> bool:
    """Return True when `entity` may appear in public list endpoints."""
    return entity.status == EntityStatus.ACTIVE


class UserStatus(IntEnum):
    ACTIVE = 1
    BLOCKED = 2


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `email`/`username`: unique login identifiers
    - `password_hash`: hashed password string (never store plaintext)
    - `user_role`: selects the credential set granted at login
    - `user_attrs`: public profile (`first_name`, `last_name`, `picture`, `about`)
    - `user_settings`: `{"email_subscriptions": {"transactional": bool, "marketing": bool}}`
    """
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    email: str = Field(index=True, unique=True, max_length=255)
    username: str = Field(index=True, unique=True, max_length=18)
    password_hash: str
    user_status: int = Field(default=int(UserStatus.ACTIVE))
    user_role: str = Field(default="user")
    user_attrs: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    user_settings: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))


class Project(SQLModel, table=True):
    """A project owned by one user; `alias` is a short public slug."""
    __tablename__ = "projects"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    user_id: uuid.UUID = Field(index=True)
    alias: str = Field(index=True, unique=True, max_length=16)
    status: int = Field(default=int(EntityStatus.DRAFT), index=True)
    attrs: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))


class Task(SQLModel, table=True):
    """A task inside a project."""
    __tablename__ = "tasks"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    user_id: uuid.UUID = Field(index=True)
    project_id: uuid.UUID = Field(index=True)
    status: int = Field(default=int(EntityStatus.DRAFT), index=True)
    attrs: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))


class Answer(SQLModel, table=True):
    """A user-submitted answer to a task."""
    __tablename__ = "answers"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    user_id: uuid.UUID = Field(index=True)
    project_id: uuid.UUID = Field(index=True)
    task_id: uuid.UUID = Field(index=True)
    status: int = Field(default=int(EntityStatus.DRAFT), index=True)
    attrs: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
