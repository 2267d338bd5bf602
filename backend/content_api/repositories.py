"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
projects, tasks, answers). Repositories return SQLModel objects and
commit/refresh where appropriate; they never make authorization
decisions.
"""

import uuid
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def save(self, user: models.User) -> models.User:
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get(self, user_id: uuid.UUID) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found.

        Emails are stored lower-cased, so the lookup is case-insensitive.
        """
        stmt = select(models.User).where(models.User.email == email.lower())
        return self.session.exec(stmt).first()

    def get_by_username(self, username: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get_many(self, user_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, models.User]:
        """Return users keyed by id; unknown ids are simply absent."""
        ids = set(user_ids)
        if not ids:
            return {}
        stmt = select(models.User).where(models.User.id.in_(ids))
        return {u.id: u for u in self.session.exec(stmt).all()}


class EntityRepository:
    """Shared persistence for projects, tasks and answers.

    Subclasses set `model`; every entity has `id`, `user_id`, `status`
    and `created_at` columns.
    """
    model = None

    def __init__(self, session: Session):
        self.session = session

    def create(self, entity):
        self.session.add(entity)
        self.session.commit()
        self.session.refresh(entity)
        return entity

    def save(self, entity):
        self.session.add(entity)
        self.session.commit()
        self.session.refresh(entity)
        return entity

    def delete(self, entity) -> None:
        self.session.delete(entity)
        self.session.commit()

    def get(self, entity_id: uuid.UUID):
        """Fetch one entity by id regardless of its status."""
        return self.session.get(self.model, entity_id)

    def list_by_owner(self, user_id: uuid.UUID) -> List:
        """All entities owned by `user_id`, any status, newest first."""
        stmt = (
            select(self.model)
            .where(self.model.user_id == user_id)
            .order_by(self.model.created_at.desc())
        )
        return self.session.exec(stmt).all()

    def _list_active(self, *conditions) -> List:
        stmt = (
            select(self.model)
            .where(self.model.status == models.EntityStatus.ACTIVE, *conditions)
            .order_by(self.model.created_at.desc())
        )
        return self.session.exec(stmt).all()

    def _count_active_by(self, column, parent_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, int]:
        ids = set(parent_ids)
        if not ids:
            return {}
        stmt = (
            select(column, func.count())
            .where(column.in_(ids), self.model.status == models.EntityStatus.ACTIVE)
            .group_by(column)
        )
        return {parent_id: count for parent_id, count in self.session.exec(stmt).all()}


class ProjectRepository(EntityRepository):
    """Queries for `Project` records."""
    model = models.Project

    def get_by_alias(self, alias: str) -> Optional[models.Project]:
        stmt = select(models.Project).where(models.Project.alias == alias)
        return self.session.exec(stmt).first()

    def alias_exists(self, alias: str) -> bool:
        stmt = select(models.Project.id).where(models.Project.alias == alias)
        return self.session.exec(stmt).first() is not None

    def list_active(self) -> List[models.Project]:
        """Publicly visible projects, newest first."""
        return self._list_active()

    def list_active_by_user(self, user_id: uuid.UUID) -> List[models.Project]:
        return self._list_active(models.Project.user_id == user_id)


class TaskRepository(EntityRepository):
    """Queries for `Task` records."""
    model = models.Task

    def list_active_by_project(self, project_id: uuid.UUID) -> List[models.Task]:
        return self._list_active(models.Task.project_id == project_id)

    def count_active_by_project(self, project_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, int]:
        return self._count_active_by(models.Task.project_id, project_ids)


class AnswerRepository(EntityRepository):
    """Queries for `Answer` records."""
    model = models.Answer

    def list_active_by_project(self, project_id: uuid.UUID) -> List[models.Answer]:
        return self._list_active(models.Answer.project_id == project_id)

    def list_active_by_task(self, task_id: uuid.UUID) -> List[models.Answer]:
        return self._list_active(models.Answer.task_id == task_id)

    def count_active_by_task(self, task_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, int]:
        return self._count_active_by(models.Answer.task_id, task_ids)
