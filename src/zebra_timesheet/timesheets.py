from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Protocol, Sequence

from .api import ZebraApi
from .errors import (
    ConflictError,
    DeserializationError,
    NotFoundError,
    ValidationError,
    ZebraApiError,
    ZebraError,
)
from .models import Timesheet
from .projects import ActivityRepository
from .serialization import timesheet_from_api, timesheet_from_dict, timesheet_to_api, timesheet_to_dict
from .storage import TIMESHEETS_FILE, JsonFileStorage
from .users import UserRepository

logger = logging.getLogger(__name__)


class Confirmer(Protocol):
    def confirm(self, subject: Timesheet) -> bool: ...


class AlwaysConfirm:
    def confirm(self, subject: Timesheet) -> bool:
        return True


def merge_timesheets(timesheets: Sequence[Timesheet]) -> Timesheet:
    """Fold timesheets of one activity and role into the first of them.

    Times are summed, descriptions joined with `` | `` and frame uuids
    united in order. The result is a new local entry: it loses any Zebra id.
    """
    if len(timesheets) < 2:
        raise ValidationError("At least two timesheets are needed to merge.")
    first = timesheets[0]
    for timesheet in timesheets[1:]:
        if timesheet.activity.entity_key != first.activity.entity_key:
            raise ConflictError(
                f"Timesheet {timesheet.uuid} has a different activity ({timesheet.activity.name}) "
                f"than {first.uuid} ({first.activity.name})."
            )
        if _role_id(timesheet) != _role_id(first):
            raise ConflictError(f"Timesheet {timesheet.uuid} has a different role than {first.uuid}.")
    total = sum(timesheet.time for timesheet in timesheets)
    if total <= 0:
        raise ValidationError("Merged time must be positive.")
    frame_uuids: list[str] = []
    for timesheet in timesheets:
        frame_uuids.extend(uuid for uuid in timesheet.frame_uuids if uuid not in frame_uuids)
    client_descriptions = [
        timesheet.client_description.strip()
        for timesheet in timesheets
        if timesheet.client_description and timesheet.client_description.strip()
    ]
    return replace(
        first,
        description=" | ".join(timesheet.description for timesheet in timesheets),
        client_description=" | ".join(client_descriptions) or None,
        time=total,
        frame_uuids=tuple(frame_uuids),
        zebra_id=None,
        updated_at=min(timesheet.updated_at for timesheet in timesheets),
        do_not_sync=False,
    )


def _role_id(timesheet: Timesheet) -> int | None:
    return timesheet.role.id if timesheet.role is not None else None


class LocalTimesheetRepository:
    def __init__(self, root: Path) -> None:
        self.storage = JsonFileStorage(root / TIMESHEETS_FILE)

    def save(self, timesheet: Timesheet) -> None:
        data = self.storage.read()
        self._check_zebra_id(data, timesheet)
        data[timesheet.uuid] = timesheet_to_dict(timesheet)
        self.storage.write(data)

    def update(self, timesheet: Timesheet) -> None:
        data = self.storage.read()
        if timesheet.uuid not in data:
            raise NotFoundError(f"Cannot update timesheet: {timesheet.uuid} does not exist.")
        self._check_zebra_id(data, timesheet)
        data[timesheet.uuid] = timesheet_to_dict(timesheet)
        self.storage.write(data)

    def remove(self, uuid: str) -> None:
        data = self.storage.read()
        if uuid not in data:
            raise NotFoundError(f"Cannot remove timesheet: {uuid} does not exist.")
        del data[uuid]
        self.storage.write(data)

    def merge(self, uuids: Sequence[str]) -> Timesheet:
        if len(set(uuids)) != len(uuids):
            raise ValidationError("Cannot merge a timesheet with itself.")
        timesheets = []
        missing = []
        for uuid in uuids:
            timesheet = self.get(uuid)
            if timesheet is None:
                missing.append(uuid)
            else:
                timesheets.append(timesheet)
        if missing:
            raise NotFoundError(f"Timesheets not found: {', '.join(missing)}")
        merged = merge_timesheets(timesheets)
        data = self.storage.read()
        for timesheet in timesheets[1:]:
            data.pop(timesheet.uuid, None)
        data[merged.uuid] = timesheet_to_dict(merged)
        self.storage.write(data)
        logger.debug("Merged %d timesheets into %s", len(timesheets), merged.uuid)
        return merged

    def all(self) -> list[Timesheet]:
        return list(self._load())

    def get(self, uuid: str) -> Timesheet | None:
        payload = self.storage.read().get(uuid)
        if payload is None:
            return None
        try:
            return timesheet_from_dict(payload)
        except DeserializationError as exc:
            logger.debug("Timesheet %s is unreadable: %s", uuid, exc)
            return None

    def get_by_zebra_id(self, zebra_id: int) -> Timesheet | None:
        return next((item for item in self._load() if item.zebra_id == zebra_id), None)

    def get_by_date_range(self, start: date, end: date | None = None) -> list[Timesheet]:
        end = end or start
        return sorted(
            (item for item in self._load() if start <= item.date <= end),
            key=lambda item: (item.date, item.updated_at),
        )

    def get_by_frame_uuids(self, frame_uuids: Iterable[str]) -> list[Timesheet]:
        wanted = set(frame_uuids)
        return [item for item in self._load() if wanted & set(item.frame_uuids)]

    def get_unsynced(self) -> list[Timesheet]:
        return [item for item in self._load() if item.zebra_id is None and not item.do_not_sync]

    def _check_zebra_id(self, data: dict[str, Any], timesheet: Timesheet) -> None:
        if timesheet.zebra_id is None:
            return
        for uuid, payload in data.items():
            if uuid != timesheet.uuid and isinstance(payload, dict) and payload.get("zebraId") == timesheet.zebra_id:
                raise ConflictError(
                    f"Zebra id {timesheet.zebra_id} is already used by local timesheet {uuid}."
                )

    def _load(self) -> Iterable[Timesheet]:
        for uuid, payload in self.storage.read().items():
            try:
                yield timesheet_from_dict(payload)
            except DeserializationError as exc:
                logger.debug("Skipping unreadable timesheet %s: %s", uuid, exc)


class ZebraTimesheetRepository:
    def __init__(self, api: ZebraApi, activities: ActivityRepository, users: UserRepository) -> None:
        self.api = api
        self.activities = activities
        self.users = users

    def get_by_zebra_id(self, zebra_id: int) -> Timesheet | None:
        try:
            data = self.api.fetch_timesheet_by_id(zebra_id)
        except ZebraApiError as exc:
            if exc.is_not_found:
                return None
            raise
        try:
            return self._from_api(data)
        except DeserializationError as exc:
            logger.debug("Zebra timesheet %s is unreadable: %s", zebra_id, exc)
            return None

    def get_by_date_range(self, start: date, end: date | None = None) -> list[Timesheet]:
        records = self.api.fetch_all_timesheets(
            {"start_date": start.isoformat(), "end_date": (end or start).isoformat()}
        )
        return self._parse_all(records.values())

    def all(self) -> list[Timesheet]:
        return self._parse_all(self.api.fetch_all_timesheets().values())

    def create(self, timesheet: Timesheet) -> Timesheet:
        response = self.api.create_timesheet(timesheet_to_api(timesheet))
        data = response.get("data")
        if isinstance(data, dict):
            if isinstance(data.get("timesheet"), dict):
                try:
                    return self._from_api(data["timesheet"])
                except DeserializationError as exc:
                    logger.debug("Create response timesheet unreadable: %s", exc)
            if isinstance(data.get("id"), int):
                created = self.get_by_zebra_id(data["id"])
                if created is not None:
                    return created
            if data.get("id") is not None:
                try:
                    return self._from_api(data)
                except DeserializationError as exc:
                    logger.debug("Create response data unreadable: %s", exc)

        for candidate in self.get_by_date_range(timesheet.date):
            if (
                candidate.project_id == timesheet.project_id
                and candidate.activity.entity_key == timesheet.activity.entity_key
                and candidate.description == timesheet.description
            ):
                return candidate
        raise ZebraError(
            "Failed to retrieve the created timesheet from Zebra. "
            "It may have been created but could not be fetched."
        )

    def update(self, timesheet: Timesheet, confirmer: Confirmer) -> Timesheet | None:
        if timesheet.zebra_id is None:
            raise ConflictError("Cannot update a timesheet that was never pushed to Zebra.")
        if not confirmer.confirm(timesheet):
            return None
        self.api.update_timesheet(timesheet.zebra_id, timesheet_to_api(timesheet))
        return self.get_by_zebra_id(timesheet.zebra_id)

    def delete(self, timesheet: Timesheet, confirmer: Confirmer) -> bool:
        if timesheet.zebra_id is None:
            raise ConflictError("Cannot delete a timesheet that was never pushed to Zebra.")
        if not confirmer.confirm(timesheet):
            return False
        self.api.delete_timesheet(timesheet.zebra_id)
        return True

    def _from_api(self, data: dict) -> Timesheet:
        return timesheet_from_api(data, self.activities.get, self.users.current_user())

    def _parse_all(self, records: Iterable[dict]) -> list[Timesheet]:
        timesheets: list[Timesheet] = []
        for record in records:
            try:
                timesheets.append(self._from_api(record))
            except DeserializationError as exc:
                logger.debug("Skipping Zebra timesheet %s: %s", record.get("id"), exc)
        return timesheets
