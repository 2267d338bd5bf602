"""Business logic services used by HTTP controllers.

Services coordinate repositories, the authorization policy and the
ownership guard. Controllers hand them the current `Principal` and the
raw request body; services validate, enforce access rules in a fixed
order and raise `errors.ApiError` subclasses on failure.

Entity lifecycle (projects, tasks, answers):

* create: credential -> attrs -> parents exist -> stamp -> insert
* update: credential -> id -> entity exists -> owner -> attrs/status -> save
* delete: credential -> id -> entity exists -> owner -> delete

Existence is always checked before ownership so a missing entity is a
404 for everyone.
"""

import logging
import secrets
import uuid
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlmodel import Session

from . import models, repositories, schemas
from .auth import Principal, create_access_token, hash_password, verify_password
from .config import Settings
from .credentials import Action, Resource, credentials_for_role, encode
from .errors import AuthTokenError, ForbiddenError, NotFoundError, ValidationError
from .policies import authorize, check_ownership, ensure_owner

logger = logging.getLogger("content_api.services")

ALIAS_ATTEMPTS = 5


def _format_pydantic_errors(exc: PydanticValidationError, prefix: str = "") -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in (prefix, *err.get("loc", ())) if p != "")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def validate_model(schema, raw: Any, field: str):
    """Validate `raw` against `schema`, raising our `ValidationError`."""
    if raw is None:
        raise ValidationError(f"{field} is required", scope=field)
    try:
        return schema.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(_format_pydantic_errors(exc, field), scope=field)


def _parse_uuid(raw: Any, field: str) -> uuid.UUID:
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} is required and must be a UUID", scope=field)


def author_view(user: Optional[models.User]) -> Optional[dict]:
    """Public author card for list/detail payloads."""
    if user is None:
        return None
    attrs = user.user_attrs or {}
    return {
        "user_id": user.id,
        "username": user.username,
        "first_name": attrs.get("first_name", ""),
        "last_name": attrs.get("last_name", ""),
        "picture": attrs.get("picture", ""),
    }


def entity_view(entity) -> dict:
    return entity.model_dump()


class EntityLifecycleService:
    """Create/update/delete orchestration shared by all content entities.

    Subclasses set the resource used for credentials, the JSON key
    prefix of the request body (`project` -> `project_attrs`,
    `project_status`), the attrs schema and the repository class, and
    override `_resolve_parents` when the entity has parents.
    """
    resource: Resource
    prefix: str
    attrs_schema: type
    repo_class: type

    def __init__(self, session: Session):
        self.session = session
        self.repo = self.repo_class(session)
        self.users = repositories.UserRepository(session)

    @property
    def attrs_key(self) -> str:
        return f"{self.prefix}_attrs"

    @property
    def status_key(self) -> str:
        return f"{self.prefix}_status"

    def get(self, entity_id: uuid.UUID):
        """Return the entity with `entity_id` or raise `NotFoundError`."""
        entity = self.repo.get(entity_id)
        if entity is None:
            raise NotFoundError(f"{self.prefix} with this ID not found", scope=self.prefix)
        return entity

    def create(self, principal: Principal, payload: Any):
        """Create an entity owned by `principal` in the draft state.

        Any `user_id`, `id`, status or timestamp in the payload is
        ignored; those fields are always stamped here.
        """
        authorize(principal, [encode(self.resource, Action.CREATE)], scope=self.prefix)
        body = self._as_object(payload)
        attrs = self._validate_attrs(body.get(self.attrs_key))
        parents = self._resolve_parents(principal, body)
        entity = self.repo.model(
            id=uuid.uuid4(),
            created_at=models.utc_now(),
            user_id=principal.user_id,
            status=int(models.EntityStatus.DRAFT),
            attrs=attrs,
            **parents,
            **self._creation_fields(),
        )
        created = self.repo.create(entity)
        logger.info("%s_created id=%s user_id=%s", self.prefix, created.id, principal.user_id)
        return created

    def update(self, principal: Principal, payload: Any):
        """Replace attrs (and optionally status) of an entity the principal owns."""
        authorize(principal, [encode(self.resource, Action.UPDATE, owner_only=True)], scope=self.prefix)
        body = self._as_object(payload)
        existing = self.get(_parse_uuid(body.get("id"), "id"))
        ensure_owner(principal, existing, scope=self.prefix)
        attrs = self._validate_attrs(body.get(self.attrs_key))
        status = self._validate_status(body.get(self.status_key, existing.status))
        existing.attrs = attrs
        existing.status = status
        existing.updated_at = models.utc_now()
        updated = self.repo.save(existing)
        logger.info("%s_updated id=%s user_id=%s status=%s", self.prefix, updated.id, principal.user_id, status)
        return updated

    def delete(self, principal: Principal, payload: Any) -> None:
        """Hard-delete an entity the principal owns. Children are left in place."""
        authorize(principal, [encode(self.resource, Action.DELETE, owner_only=True)], scope=self.prefix)
        body = self._as_object(payload)
        existing = self.get(_parse_uuid(body.get("id"), "id"))
        ensure_owner(principal, existing, scope=self.prefix)
        self.repo.delete(existing)
        logger.info("%s_deleted id=%s user_id=%s", self.prefix, existing.id, principal.user_id)

    def list_for_owner(self, principal: Principal) -> List[dict]:
        """Everything the principal owns, including drafts and blocked entities."""
        return [entity_view(e) for e in self.repo.list_by_owner(principal.user_id)]

    def _as_object(self, payload: Any) -> dict:
        if not isinstance(payload, dict):
            raise ValidationError("request body must be a JSON object", scope=self.prefix)
        return payload

    def _validate_attrs(self, raw: Any) -> dict:
        return validate_model(self.attrs_schema, raw, self.attrs_key).model_dump(exclude_unset=True)

    def _validate_status(self, raw: Any) -> int:
        # bool is an int subclass; reject it explicitly
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ValidationError(f"{self.status_key} must be an integer", scope=self.status_key)
        try:
            return int(models.EntityStatus(raw))
        except ValueError:
            raise ValidationError(f"{self.status_key} must be one of 0, 1, 2", scope=self.status_key)

    def _resolve_parents(self, principal: Principal, body: dict) -> Dict[str, uuid.UUID]:
        return {}

    def _creation_fields(self) -> Dict[str, Any]:
        return {}

    def _get_project(self, body: dict) -> models.Project:
        project_id = _parse_uuid(body.get("project_id"), "project_id")
        project = repositories.ProjectRepository(self.session).get(project_id)
        if project is None:
            raise NotFoundError("project with this ID not found", scope="project")
        return project


class ProjectService(EntityLifecycleService):
    resource = Resource.PROJECTS
    prefix = "project"
    attrs_schema = schemas.ProjectAttrs
    repo_class = repositories.ProjectRepository

    def get_by_ref(self, ref: str) -> models.Project:
        """Look a project up by UUID or, failing that, by alias."""
        try:
            project = self.repo.get(uuid.UUID(ref))
        except ValueError:
            project = self.repo.get_by_alias(ref)
        if project is None:
            raise NotFoundError("project with this ID or alias not found", scope=self.prefix)
        return project

    def list_public(self) -> List[dict]:
        return self._list_views(self.repo.list_active())

    def list_public_by_user(self, user_id: uuid.UUID) -> List[dict]:
        return self._list_views(self.repo.list_active_by_user(user_id))

    def list_public_by_user_ref(self, ref: str) -> List[dict]:
        """Active projects of a user given by UUID or username."""
        try:
            user_id = uuid.UUID(ref)
        except ValueError:
            user = self.users.get_by_username(ref)
            if user is None:
                raise NotFoundError("user with this username not found", scope="user")
            user_id = user.id
        return self.list_public_by_user(user_id)

    def detail(self, project: models.Project) -> dict:
        """Project payload with author and its active tasks."""
        tasks = repositories.TaskRepository(self.session).list_active_by_project(project.id)
        out = self._base_view(project, self.users.get(project.user_id), len(tasks))
        out["tasks"] = [
            {
                "id": t.id,
                "status": t.status,
                "name": t.attrs.get("name", ""),
                "description": t.attrs.get("description", ""),
                "steps_count": len(t.attrs.get("steps") or []),
            }
            for t in tasks
        ]
        return out

    def _list_views(self, projects: List[models.Project]) -> List[dict]:
        ids = [p.id for p in projects]
        counts = repositories.TaskRepository(self.session).count_active_by_project(ids)
        authors = self.users.get_many(p.user_id for p in projects)
        return [self._base_view(p, authors.get(p.user_id), counts.get(p.id, 0)) for p in projects]

    def _base_view(self, project: models.Project, author: Optional[models.User], tasks_count: int) -> dict:
        return {
            "id": project.id,
            "created_at": project.created_at,
            "updated_at": project.updated_at,
            "alias": project.alias,
            "status": project.status,
            "attrs": project.attrs,
            "author": author_view(author),
            "tasks_count": tasks_count,
        }

    def _creation_fields(self) -> Dict[str, Any]:
        for _ in range(ALIAS_ATTEMPTS):
            alias = secrets.token_urlsafe(6)
            if not self.repo.alias_exists(alias):
                return {"alias": alias}
        raise RuntimeError("could not generate a unique project alias")


class TaskService(EntityLifecycleService):
    resource = Resource.TASKS
    prefix = "task"
    attrs_schema = schemas.TaskAttrs
    repo_class = repositories.TaskRepository

    def _resolve_parents(self, principal: Principal, body: dict) -> Dict[str, uuid.UUID]:
        # only the project owner may add tasks to it
        project = self._get_project(body)
        check_ownership(principal.user_id, project.user_id, scope="project")
        return {"project_id": project.id}

    def list_public_by_project(self, project_id: uuid.UUID) -> List[dict]:
        ProjectService(self.session).get(project_id)
        tasks = self.repo.list_active_by_project(project_id)
        counts = repositories.AnswerRepository(self.session).count_active_by_task(t.id for t in tasks)
        return [self.detail(t, counts.get(t.id, 0)) for t in tasks]

    def detail(self, task: models.Task, answers_count: Optional[int] = None) -> dict:
        if answers_count is None:
            answers_count = repositories.AnswerRepository(self.session).count_active_by_task([task.id]).get(task.id, 0)
        out = entity_view(task)
        out["answers_count"] = answers_count
        return out


class AnswerService(EntityLifecycleService):
    resource = Resource.ANSWERS
    prefix = "answer"
    attrs_schema = schemas.AnswerAttrs
    repo_class = repositories.AnswerRepository

    def _resolve_parents(self, principal: Principal, body: dict) -> Dict[str, uuid.UUID]:
        project = self._get_project(body)
        task_id = _parse_uuid(body.get("task_id"), "task_id")
        task = repositories.TaskRepository(self.session).get(task_id)
        if task is None:
            raise NotFoundError("task with this ID not found", scope="task")
        if task.project_id != project.id:
            raise ValidationError("task does not belong to the given project", scope="task_id")
        return {"project_id": project.id, "task_id": task.id}

    def list_public_by_project(self, project_id: uuid.UUID) -> List[dict]:
        ProjectService(self.session).get(project_id)
        return self._list_views(self.repo.list_active_by_project(project_id))

    def list_public_by_task(self, task_id: uuid.UUID) -> List[dict]:
        TaskService(self.session).get(task_id)
        return self._list_views(self.repo.list_active_by_task(task_id))

    def detail(self, answer: models.Answer) -> dict:
        out = entity_view(answer)
        out.pop("user_id", None)
        out["author"] = author_view(self.users.get(answer.user_id))
        return out

    def _list_views(self, answers: List[models.Answer]) -> List[dict]:
        authors = self.users.get_many(a.user_id for a in answers)
        out = []
        for a in answers:
            item = entity_view(a)
            item.pop("user_id", None)
            item["author"] = author_view(authors.get(a.user_id))
            out.append(item)
        return out


class AuthService:
    """Sign-up and login; login mints the access token for the user's role."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, payload: schemas.RegisterIn) -> models.User:
        """Create a new user with a hashed password.

        Raises `ValidationError` when the email or username is taken.
        """
        if self.user_repo.get_by_email(payload.email):
            raise ValidationError("user with this email already exists", scope="user")
        if self.user_repo.get_by_username(payload.username):
            raise ValidationError("user with this username already exists", scope="user")
        user = models.User(
            email=payload.email.lower(),
            username=payload.username,
            password_hash=hash_password(payload.password),
            user_role="user",
            user_attrs={"first_name": "", "last_name": "", "picture": "", "about": ""},
            user_settings={"email_subscriptions": {"transactional": True, "marketing": True}},
        )
        created = self.user_repo.create(user)
        logger.info("user_registered id=%s", created.id)
        return created

    def authenticate(self, payload: schemas.LoginIn, settings: Settings):
        """Verify credentials and return `(token, expires_at)`."""
        user = self.user_repo.get_by_email(payload.email)
        if not user or not verify_password(payload.password, user.password_hash):
            raise AuthTokenError("wrong email or password", scope="user")
        if user.user_status != models.UserStatus.ACTIVE:
            raise ForbiddenError("user is blocked", scope="user")
        return create_access_token(user.id, credentials_for_role(user.user_role), settings)


class UserService:
    """Self-service updates of the authenticated user's own record."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def _own_user(self, principal: Principal) -> models.User:
        authorize(principal, [encode(Resource.USERS, Action.UPDATE, owner_only=True)], scope="user")
        user = self.user_repo.get(principal.user_id)
        if user is None:
            raise NotFoundError("user with this ID not found", scope="user")
        return user

    def change_password(self, principal: Principal, payload: schemas.PasswordChangeIn) -> None:
        user = self._own_user(principal)
        if not verify_password(payload.old_password, user.password_hash):
            raise ForbiddenError("wrong email or password", scope="user")
        user.password_hash = hash_password(payload.new_password)
        user.updated_at = models.utc_now()
        self.user_repo.save(user)
        logger.info("user_password_changed id=%s", user.id)

    def update_attrs(self, principal: Principal, payload: schemas.UserAttrsIn) -> models.User:
        user = self._own_user(principal)
        user.user_attrs = payload.model_dump()
        user.updated_at = models.utc_now()
        return self.user_repo.save(user)


class SubscriptionService:
    """Apply Postmark subscription-change notifications to user settings."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def apply(self, change: schemas.PostmarkSubscriptionIn) -> models.User:
        user = self.user_repo.get_by_email(change.Recipient)
        if user is None:
            raise NotFoundError("user with this email not found", scope="user")
        subscribed = not change.SuppressSending
        user.user_settings = {
            **(user.user_settings or {}),
            "email_subscriptions": {"transactional": subscribed, "marketing": subscribed},
        }
        user.updated_at = models.utc_now()
        saved = self.user_repo.save(user)
        logger.info("user_subscriptions_changed id=%s subscribed=%s", user.id, subscribed)
        return saved
