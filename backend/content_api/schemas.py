"""Pydantic request schemas used by the API.

The `*Attrs` models describe the JSON payloads stored on projects,
tasks and answers. They are validated inside the services, not by
FastAPI, so that credential and ownership checks run first. Unknown
keys are rejected and only the keys the caller sent are stored.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class RegisterIn(BaseModel):
    """Payload for user sign-up."""
    email: EmailStr
    username: str = Field(min_length=1, max_length=18)
    password: str = Field(min_length=8)


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class PasswordChangeIn(BaseModel):
    old_password: str
    new_password: str = Field(min_length=8)


class UserAttrsIn(BaseModel):
    """Public profile fields a user may edit."""
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    picture: str = ""
    about: str = Field(default="", max_length=1000)


class ProjectAttrs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    category: str = Field(min_length=1)
    website_url: str = ""
    picture: str = ""
    tags: List[str] = Field(default_factory=list)


class TaskStep(BaseModel):
    model_config = ConfigDict(extra="forbid")

    position: int = Field(ge=1)
    description: str = Field(min_length=1)


class TaskAttrs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    steps: List[TaskStep] = Field(min_length=1)
    documents: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    links: List[str] = Field(default_factory=list)


class AnswerAttrs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: str = Field(min_length=1)
    documents: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    links: List[str] = Field(default_factory=list)


class PostmarkSubscriptionIn(BaseModel):
    """Postmark subscription-change webhook body.

    `SuppressSending` is True when the recipient unsubscribed and False
    when they were reactivated.
    """
    Recipient: EmailStr
    SuppressSending: bool = False


class RemoveFileIn(BaseModel):
    key: str = Field(min_length=1)
    version_id: Optional[str] = None
