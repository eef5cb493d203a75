from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Sequence

from .api import ZebraApi
from .errors import ConflictError, DeserializationError, NotFoundError
from .models import (
    Activity,
    EntityKey,
    EntitySource,
    Identifier,
    Project,
    ProjectStatus,
)
from .serialization import project_from_dict, project_to_dict
from .storage import LOCAL_PROJECTS_FILE, PROJECTS_CACHE_FILE, JsonFileStorage

logger = logging.getLogger(__name__)

ACTIVE_ONLY = (ProjectStatus.ACTIVE,)


def _filter_status(projects: Iterable[Project], statuses: Sequence[ProjectStatus]) -> list[Project]:
    if not statuses:
        return list(projects)
    return [project for project in projects if project.status in statuses]


def _match_name(projects: Iterable[Project], name: str) -> list[Project]:
    needle = name.strip().lower()
    starts: list[Project] = []
    contains: list[Project] = []
    for project in projects:
        candidate = project.name.strip().lower()
        if candidate.startswith(needle):
            starts.append(project)
        elif needle in candidate:
            contains.append(project)
    return sorted(starts or contains, key=lambda project: project.name.lower())


class _ProjectSource:
    source: EntitySource

    def _projects(self) -> dict[str, Project]:
        raise NotImplementedError

    def all(self, statuses: Sequence[ProjectStatus] = ACTIVE_ONLY) -> list[Project]:
        return _filter_status(self._projects().values(), statuses)

    def get(self, key: EntityKey) -> Project | None:
        if key.source is not self.source:
            return None
        return self._projects().get(str(key))

    def get_by_name_like(self, name: str) -> list[Project]:
        return _match_name(self.all(), name)

    def get_by_activity(self, key: EntityKey) -> Project | None:
        if key.source is not self.source:
            return None
        for project in self._projects().values():
            if any(activity.entity_key == key for activity in project.activities):
                return project
        return None

    def get_by_activity_alias(self, alias: str) -> Project | None:
        for project in self.all():
            if any(activity.alias == alias for activity in project.activities):
                return project
        return None

    def aliases(self) -> list[str]:
        return [
            activity.alias
            for project in self.all()
            for activity in project.activities
            if activity.alias
        ]


class LocalProjectRepository(_ProjectSource):
    source = EntitySource.LOCAL

    def __init__(self, root: Path) -> None:
        self.storage = JsonFileStorage(root / LOCAL_PROJECTS_FILE)
        self._cache: dict[str, Project] | None = None

    def create(
        self,
        name: str,
        description: str = "",
        status: ProjectStatus = ProjectStatus.ACTIVE,
    ) -> Project:
        if not name.strip():
            raise ConflictError("Project name cannot be empty.")
        project = Project(
            entity_key=EntityKey.local(Identifier.generate()),
            name=name.strip(),
            description=description,
            status=status,
        )
        self._write({**self._projects(), str(project.entity_key): project})
        return project

    def update(self, project: Project) -> None:
        projects = self._projects()
        if str(project.entity_key) not in projects:
            raise NotFoundError(f"Local project {project.entity_key} does not exist.")
        self._write({**projects, str(project.entity_key): project})

    def delete(self, key: EntityKey, *, force: bool = False) -> Project:
        projects = self._projects()
        project = projects.get(str(key)) if key.source is self.source else None
        if project is None:
            raise NotFoundError(f"Local project {key} does not exist.")
        if project.activities and not force:
            raise ConflictError(
                f"Project '{project.name}' still has {len(project.activities)} activities; use --force to delete it."
            )
        self._write({uid: item for uid, item in projects.items() if uid != str(key)})
        return project

    def create_activity(
        self,
        project_key: EntityKey,
        name: str,
        description: str = "",
        alias: str | None = None,
    ) -> Activity:
        project = self.get(project_key)
        if project is None:
            raise NotFoundError(f"Local project {project_key} does not exist.")
        if alias and alias in self.aliases():
            raise ConflictError(f"Activity alias '{alias}' is already in use.")
        activity = Activity(
            entity_key=EntityKey.local(Identifier.generate()),
            name=name.strip(),
            description=description,
            project_entity_key=project.entity_key,
            alias=alias or None,
        )
        self.update(replace(project, activities=(*project.activities, activity)))
        return activity

    def update_activity(self, activity: Activity) -> None:
        project = self.get_by_activity(activity.entity_key)
        if project is None:
            raise NotFoundError(f"Local activity {activity.entity_key} does not exist.")
        activities = tuple(
            activity if item.entity_key == activity.entity_key else item
            for item in project.activities
        )
        self.update(replace(project, activities=activities))

    def delete_activity(self, key: EntityKey) -> Activity:
        project = self.get_by_activity(key)
        if project is None:
            raise NotFoundError(f"Local activity {key} does not exist.")
        removed = next(item for item in project.activities if item.entity_key == key)
        activities = tuple(item for item in project.activities if item.entity_key != key)
        self.update(replace(project, activities=activities))
        return removed

    def _projects(self) -> dict[str, Project]:
        if self._cache is None:
            self._cache = self._load()
        return self._cache

    def _load(self) -> dict[str, Project]:
        projects: dict[str, Project] = {}
        for uid, payload in self.storage.read().items():
            try:
                project = project_from_dict(payload, EntitySource.LOCAL)
            except DeserializationError as exc:
                logger.debug("Skipping unreadable local project %s: %s", uid, exc)
                continue
            projects[str(project.entity_key)] = project
        return projects

    def _write(self, projects: dict[str, Project]) -> None:
        self.storage.write({uid: project_to_dict(project) for uid, project in projects.items()})
        self._cache = None


class ZebraProjectRepository(_ProjectSource):
    """Zebra projects cached on disk, fetched from the API when the cache is empty."""

    source = EntitySource.REMOTE

    def __init__(self, api: ZebraApi, cache_dir: Path) -> None:
        self.api = api
        self.storage = JsonFileStorage(cache_dir / PROJECTS_CACHE_FILE)
        self._cache: dict[str, Project] | None = None

    def refresh(self) -> list[Project]:
        data = self.api.fetch_all_projects()
        self.storage.write({str(key): value for key, value in data.items()})
        self._cache = None
        return self.all(statuses=())

    def _projects(self) -> dict[str, Project]:
        if self._cache is None:
            data = self.storage.read()
            if not data:
                logger.debug("Project cache empty, fetching from Zebra")
                data = {str(key): value for key, value in self.api.fetch_all_projects().items()}
                self.storage.write(data)
            self._cache = self._parse(data)
        return self._cache

    def _parse(self, data: dict) -> dict[str, Project]:
        projects: dict[str, Project] = {}
        for pid, payload in data.items():
            try:
                project = project_from_dict(payload, EntitySource.REMOTE)
            except DeserializationError as exc:
                logger.debug("Skipping unreadable Zebra project %s: %s", pid, exc)
                continue
            projects[str(project.entity_key)] = project
        return projects


class ProjectRepository:
    def __init__(self, local: LocalProjectRepository, zebra: ZebraProjectRepository) -> None:
        self.local = local
        self.zebra = zebra

    def _route(self, key: EntityKey) -> _ProjectSource:
        return self.local if key.source is EntitySource.LOCAL else self.zebra

    def all(self, statuses: Sequence[ProjectStatus] = ACTIVE_ONLY) -> list[Project]:
        return [*self.local.all(statuses), *self.zebra.all(statuses)]

    def get(self, key: EntityKey) -> Project | None:
        return self._route(key).get(key)

    def get_by_name_like(self, name: str) -> list[Project]:
        return _match_name(self.all(), name)

    def get_by_activity(self, key: EntityKey) -> Project | None:
        return self._route(key).get_by_activity(key)

    def get_by_activity_alias(self, alias: str) -> Project | None:
        return self.local.get_by_activity_alias(alias) or self.zebra.get_by_activity_alias(alias)


class ActivityRepository:
    def __init__(self, projects: ProjectRepository) -> None:
        self.projects = projects

    def all(self) -> list[Activity]:
        return [activity for project in self.projects.all() for activity in project.activities]

    def get(self, key: EntityKey) -> Activity | None:
        project = self.projects.get_by_activity(key)
        if project is None:
            return None
        return next(item for item in project.activities if item.entity_key == key)

    def get_by_alias(self, alias: str) -> Activity | None:
        project = self.projects.get_by_activity_alias(alias)
        if project is None:
            return None
        return next(item for item in project.activities if item.alias == alias)

    def search(self, text: str) -> list[Activity]:
        needle = text.strip().lower()
        return [
            activity
            for activity in self.all()
            if needle in activity.name.lower() or needle in (activity.alias or "").lower()
        ]

    def resolve(self, text: str) -> Activity:
        """Find one activity by alias, id or unique name fragment."""
        activity = self.get_by_alias(text)
        if activity is not None:
            return activity
        for source in (EntitySource.LOCAL, EntitySource.REMOTE):
            try:
                key = EntityKey(source, text)
            except ValueError:
                continue
            activity = self.get(key)
            if activity is not None:
                return activity
        matches = self.search(text)
        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise NotFoundError(f"No activity matches '{text}'.")
        names = ", ".join(sorted(f"{item.name} ({item.entity_key})" for item in matches))
        raise NotFoundError(f"Activity '{text}' is ambiguous: {names}")
