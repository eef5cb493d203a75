from __future__ import annotations

import math
import re
import secrets
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum, IntEnum
from pathlib import Path

from .errors import ValidationError
from .timeutil import to_utc, utc_now

ISSUE_KEY_PATTERN = re.compile(r"\b[A-Z]{2,5}-\d+\b")
HEX_DIGITS = set("0123456789abcdef")


@dataclass(frozen=True)
class Identifier:
    """Eight lowercase hex characters containing at least one letter.

    The letter keeps a local identifier distinguishable from a numeric
    remote id once both are serialized as bare strings.
    """

    hex: str

    LENGTH = 8
    MAX_ATTEMPTS = 100

    def __post_init__(self) -> None:
        value = str(self.hex).lower()
        if len(value) != self.LENGTH:
            raise ValidationError(f"Identifier must be {self.LENGTH} hex characters: {self.hex!r}")
        if not set(value) <= HEX_DIGITS:
            raise ValidationError(f"Identifier must be hexadecimal: {self.hex!r}")
        if value.isdigit():
            raise ValidationError(f"Identifier must contain a letter: {self.hex!r}")
        object.__setattr__(self, "hex", value)

    @classmethod
    def generate(cls) -> Identifier:
        for _ in range(cls.MAX_ATTEMPTS):
            candidate = secrets.token_hex(cls.LENGTH // 2)
            if not candidate.isdigit():
                return cls(candidate)
        raise RuntimeError("Unable to generate an identifier containing a letter.")

    @classmethod
    def is_valid(cls, value: object) -> bool:
        try:
            cls(str(value))
        except ValidationError:
            return False
        return True

    def __str__(self) -> str:
        return self.hex


class EntitySource(str, Enum):
    LOCAL = "local"
    REMOTE = "zebra"


@dataclass(frozen=True)
class EntityKey:
    source: EntitySource
    id: Identifier | int

    def __post_init__(self) -> None:
        source = EntitySource(self.source)
        object.__setattr__(self, "source", source)
        if source is EntitySource.LOCAL:
            if isinstance(self.id, Identifier):
                return
            if isinstance(self.id, str):
                object.__setattr__(self, "id", Identifier(self.id))
                return
            raise ValidationError(f"Local entity key requires an identifier, got {self.id!r}")
        if isinstance(self.id, bool):
            raise ValidationError(f"Remote entity key requires an integer, got {self.id!r}")
        if isinstance(self.id, int):
            return
        if isinstance(self.id, str) and re.fullmatch(r"-?\d+", self.id.strip()):
            object.__setattr__(self, "id", int(self.id.strip()))
            return
        raise ValidationError(f"Remote entity key requires an integer, got {self.id!r}")

    @classmethod
    def local(cls, value: Identifier | str) -> EntityKey:
        return cls(EntitySource.LOCAL, value)

    @classmethod
    def remote(cls, value: int | str) -> EntityKey:
        return cls(EntitySource.REMOTE, value)

    @property
    def is_remote(self) -> bool:
        return self.source is EntitySource.REMOTE

    def __str__(self) -> str:
        return str(self.id)


@dataclass(frozen=True)
class Activity:
    entity_key: EntityKey
    name: str
    description: str
    project_entity_key: EntityKey
    alias: str | None = None


class ProjectStatus(IntEnum):
    INACTIVE = 0
    ACTIVE = 1
    OTHER = 2


@dataclass(frozen=True)
class Project:
    entity_key: EntityKey
    name: str
    description: str
    status: ProjectStatus
    activities: tuple[Activity, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", ProjectStatus(int(self.status)))
        object.__setattr__(self, "activities", tuple(self.activities))


@dataclass(frozen=True)
class Role:
    id: int
    parent_id: int | None = None
    name: str = ""
    full_name: str = ""
    type: str = ""
    status: str = ""


@dataclass(frozen=True)
class User:
    id: int
    username: str
    firstname: str
    lastname: str
    name: str
    email: str
    employee_type: str = ""
    employee_status: str = ""
    roles: tuple[Role, ...] = field(default_factory=tuple)

    def find_role(self, role_id: int) -> Role | None:
        for role in self.roles:
            if role.id == role_id:
                return role
        return None

    def find_roles_by_name(self, text: str) -> list[Role]:
        needle = text.lower()
        return [
            role
            for role in self.roles
            if needle in role.name.lower() or needle in role.full_name.lower()
        ]


def extract_issue_keys(text: str) -> tuple[str, ...]:
    keys: list[str] = []
    for match in ISSUE_KEY_PATTERN.findall(text or ""):
        if match not in keys:
            keys.append(match)
    return tuple(keys)


def _check_role_or_individual(role: Role | None, individual: bool, subject: str) -> None:
    if role is not None and individual:
        raise ValidationError(f"Individual {subject} cannot have a role.")
    if role is None and not individual:
        raise ValidationError(f"{subject.capitalize()} must have either a role or be marked as individual.")


@dataclass(frozen=True)
class Frame:
    uuid: str
    start_time: datetime
    stop_time: datetime | None
    activity: Activity
    is_individual: bool
    role: Role | None
    description: str = ""
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "uuid", Identifier(self.uuid).hex)
        object.__setattr__(self, "start_time", to_utc(self.start_time))
        if self.stop_time is not None:
            object.__setattr__(self, "stop_time", to_utc(self.stop_time))
            if self.stop_time < self.start_time:
                raise ValidationError("Frame stop time cannot be before its start time.")
        object.__setattr__(self, "updated_at", to_utc(self.updated_at))
        object.__setattr__(self, "description", self.description or "")
        _check_role_or_individual(self.role, self.is_individual, "frame")

    @classmethod
    def create(
        cls,
        *,
        start_time: datetime,
        activity: Activity,
        stop_time: datetime | None = None,
        is_individual: bool = False,
        role: Role | None = None,
        description: str | None = None,
    ) -> Frame:
        return cls(
            uuid=Identifier.generate().hex,
            start_time=start_time,
            stop_time=stop_time,
            activity=activity,
            is_individual=is_individual,
            role=role,
            description=description or "",
        )

    @property
    def issue_keys(self) -> tuple[str, ...]:
        return extract_issue_keys(self.description)

    @property
    def is_active(self) -> bool:
        return self.stop_time is None

    @property
    def duration(self) -> int | None:
        if self.stop_time is None:
            return None
        return int((self.stop_time - self.start_time).total_seconds())

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Frame):
            return NotImplemented
        return self.start_time < other.start_time

    def with_stop_time(self, stop_time: datetime) -> Frame:
        return replace(self, stop_time=stop_time, updated_at=utc_now())


@dataclass(frozen=True)
class Timesheet:
    uuid: str
    activity: Activity
    description: str
    time: float
    date: date
    role: Role | None
    individual_action: bool
    frame_uuids: tuple[str, ...] = field(default_factory=tuple)
    client_description: str | None = None
    zebra_id: int | None = None
    updated_at: datetime = field(default_factory=utc_now)
    do_not_sync: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "uuid", Identifier(self.uuid).hex)
        if not self.activity.entity_key.is_remote:
            raise ValidationError("Timesheet activity must come from Zebra.")
        if not self.activity.project_entity_key.is_remote:
            raise ValidationError("Timesheet project must come from Zebra.")
        if not math.isfinite(self.time):
            raise ValidationError(f"Timesheet time must be a finite number, got {self.time}.")
        if self.time < 0:
            raise ValidationError("Timesheet time cannot be negative.")
        if abs(math.fmod(self.time * 100, 25)) > 0.0001:
            raise ValidationError(f"Timesheet time must be a multiple of 0.25, got {self.time}.")
        _check_role_or_individual(self.role, self.individual_action, "timesheet")
        frame_uuids = tuple(self.frame_uuids)
        if not all(isinstance(item, str) for item in frame_uuids):
            raise ValidationError("Timesheet frame uuids must be strings.")
        object.__setattr__(self, "frame_uuids", frame_uuids)
        object.__setattr__(self, "time", float(self.time))
        object.__setattr__(self, "updated_at", to_utc(self.updated_at))

    @property
    def project_id(self) -> int:
        return int(self.activity.project_entity_key.id)


@dataclass(frozen=True)
class Config:
    base_uri: str
    token_env_var: str
    user_id: int | None
    default_role_id: int | None
    timezone: str | None
    storage_path: Path
