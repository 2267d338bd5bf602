"""Authorization policy and ownership guard.

Both checks are pure functions over a `Principal` and raise
`ForbiddenError` on denial. Token problems are handled earlier in
`auth.py` and surface as 401; everything here is a 403.
"""

import logging
import uuid
from typing import Iterable, Protocol

from .auth import Principal
from .errors import ForbiddenError

logger = logging.getLogger("content_api.policies")


class Owned(Protocol):
    user_id: uuid.UUID


def is_authorized(principal: Principal, required: Iterable[str]) -> bool:
    """Return True iff every credential in `required` was granted."""
    return all(cred in principal.credentials for cred in required)


def authorize(principal: Principal, required: Iterable[str], scope: str = "") -> None:
    """Raise `ForbiddenError` unless the principal holds all `required` credentials."""
    required = list(required)
    if not is_authorized(principal, required):
        missing = [c for c in required if c not in principal.credentials]
        logger.info("credential_denied user_id=%s missing=%s", principal.user_id, ",".join(missing))
        raise ForbiddenError("you have no permissions for this action", scope=scope)


def check_ownership(principal_user_id: uuid.UUID, owner_id: uuid.UUID, scope: str = "") -> None:
    """Raise `ForbiddenError` unless the two user ids are equal.

    Callers must confirm the entity exists first so that a missing
    entity reports 404 rather than 403.
    """
    if principal_user_id != owner_id:
        logger.info("ownership_denied user_id=%s owner_id=%s scope=%s", principal_user_id, owner_id, scope)
        raise ForbiddenError("you have no permissions for this action", scope=scope)


def ensure_owner(principal: Principal, entity: Owned, scope: str = "") -> None:
    check_ownership(principal.user_id, entity.user_id, scope=scope)
