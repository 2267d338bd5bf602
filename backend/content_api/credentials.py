"""Credential strings carried in access tokens.

A credential names a `(resource, action, owner_only)` triple. Routes
declare the credential they need and tokens carry the set a user was
granted at login; the two are compared by set membership only, so the
encoding is never parsed back.
"""

from enum import Enum
from typing import FrozenSet

DELIMITER = ":"
OWN_SUFFIX = "own"


class Resource(str, Enum):
    PROJECTS = "projects"
    TASKS = "tasks"
    ANSWERS = "answers"
    USERS = "users"


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def encode(resource: Resource, action: Action, owner_only: bool = False) -> str:
    """Return the canonical credential string, e.g. `projects:update:own`."""
    parts = [Resource(resource).value, Action(action).value]
    if owner_only:
        parts.append(OWN_SUFFIX)
    return DELIMITER.join(parts)


def _content_credentials() -> FrozenSet[str]:
    creds = set()
    for resource in (Resource.PROJECTS, Resource.TASKS, Resource.ANSWERS):
        creds.add(encode(resource, Action.CREATE))
        creds.add(encode(resource, Action.UPDATE, owner_only=True))
        creds.add(encode(resource, Action.DELETE, owner_only=True))
    return frozenset(creds)


# What each user role is granted when a token is minted
ROLE_CREDENTIALS: dict[str, FrozenSet[str]] = {
    "user": _content_credentials() | {encode(Resource.USERS, Action.UPDATE, owner_only=True)},
    "reader": frozenset({encode(Resource.USERS, Action.UPDATE, owner_only=True)}),
}


def credentials_for_role(role: str) -> FrozenSet[str]:
    """Return the credential set for `role`; unknown roles get nothing."""
    return ROLE_CREDENTIALS.get(role, frozenset())
