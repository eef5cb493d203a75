from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, replace
from datetime import date, datetime, tzinfo
from typing import Sequence

from .frames import FrameRepository
from .models import Frame, Identifier, Role, Timesheet
from .report import FrameGroup, ReportService
from .timesheets import Confirmer, LocalTimesheetRepository, ZebraTimesheetRepository
from .timeutil import api_date, day_bounds, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Time entry"


def _as_api_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return api_date(value)
    return value


def _keep_local_fields(remote: Timesheet, local: Timesheet) -> Timesheet:
    return replace(
        remote,
        uuid=local.uuid,
        frame_uuids=local.frame_uuids,
        do_not_sync=local.do_not_sync,
    )


class TimesheetSyncService:
    """Push local timesheets to Zebra and pull remote changes back.

    Frame uuids only exist locally, so every merge keeps the local uuid and
    frame uuids. Pull is last-write-wins on ``updated_at``.
    """

    def __init__(self, local: LocalTimesheetRepository, zebra: ZebraTimesheetRepository) -> None:
        self.local = local
        self.zebra = zebra

    def push_local_to_zebra(
        self, timesheet: Timesheet, confirmer: Confirmer | None = None
    ) -> Timesheet | None:
        if timesheet.zebra_id is None:
            remote = self.zebra.create(timesheet)
            merged = _keep_local_fields(remote, timesheet)
            self.local.save(merged)
            logger.debug("Created Zebra timesheet %s for %s", merged.zebra_id, merged.uuid)
            return merged

        if confirmer is None:
            logger.debug("Update of %s skipped: no confirmation available", timesheet.uuid)
            return None
        remote = self.zebra.update(timesheet, confirmer)
        if remote is None:
            logger.debug("Update of %s declined or no longer in Zebra", timesheet.uuid)
            return None
        merged = _keep_local_fields(remote, timesheet)
        self.local.update(merged)
        logger.debug("Updated Zebra timesheet %s", merged.zebra_id)
        return merged

    def pull_from_zebra(
        self, start: date | datetime, end: date | datetime | None = None
    ) -> list[Timesheet]:
        first = _as_api_date(start)
        last = _as_api_date(end) if end is not None else first
        changed: list[Timesheet] = []
        for remote in self.zebra.get_by_date_range(first, last):
            local = self.local.get_by_zebra_id(remote.zebra_id)
            if local is None:
                self.local.save(remote)
                changed.append(remote)
                logger.debug("Pulled new timesheet %s", remote.zebra_id)
                continue
            if remote.updated_at > local.updated_at:
                merged = _keep_local_fields(remote, local)
                self.local.update(merged)
                changed.append(merged)
                logger.debug("Pulled update for timesheet %s", remote.zebra_id)
            else:
                logger.debug("Local timesheet %s is up to date", local.uuid)
        return changed

    def delete(self, timesheet: Timesheet, confirmer: Confirmer) -> bool:
        if timesheet.zebra_id is not None:
            if not self.zebra.delete(timesheet, confirmer):
                return False
        self.local.remove(timesheet.uuid)
        return True


def round_hours(seconds: int, alias: str | None = None) -> float:
    hours = seconds / 3600
    if hours <= 0.25:
        return 0.25
    if alias and alias.startswith("_"):
        return math.floor(hours * 4) / 4
    return math.floor(hours * 4 + 0.5) / 4


def _description(frames: Sequence[Frame]) -> str:
    parts: list[str] = []
    for frame in frames:
        text = frame.description.strip()
        if text and text not in parts:
            parts.append(text)
    return " ".join(parts) or DEFAULT_DESCRIPTION


def _role(frames: Sequence[Frame]) -> Role | None:
    roles = [frame.role for frame in frames if frame.role is not None]
    if not roles:
        return None
    role_id, _ = Counter(role.id for role in roles).most_common(1)[0]
    return next(role for role in roles if role.id == role_id)


@dataclass(frozen=True)
class TimesheetChange:
    timesheet: Timesheet
    created: bool
    frame_count: int


class TimesheetFromFrames:
    """Aggregate one day of completed Zebra frames into timesheets."""

    def __init__(
        self,
        frames: FrameRepository,
        timesheets: LocalTimesheetRepository,
        report: ReportService | None = None,
    ) -> None:
        self.frames = frames
        self.timesheets = timesheets
        self.report = report or ReportService()

    def plan(self, day: date, zone: tzinfo) -> list[TimesheetChange]:
        start, end = day_bounds(day, zone)
        frames = sorted(
            (
                frame
                for frame in self.frames.filter(start=start, end=end, include_partial_frames=True)
                if not frame.is_active and frame.activity.entity_key.is_remote
            ),
            key=lambda frame: frame.start_time,
        )
        existing = self.timesheets.get_by_date_range(day)
        changes: list[TimesheetChange] = []
        for group in self.report.generate_report_by_issue_key(frames):
            change = self._change_for(group, day, existing)
            if change is not None:
                changes.append(change)
        return changes

    def apply(self, changes: Sequence[TimesheetChange]) -> None:
        for change in changes:
            if change.created:
                self.timesheets.save(change.timesheet)
            else:
                self.timesheets.update(change.timesheet)

    def _change_for(
        self, group: FrameGroup, day: date, existing: Sequence[Timesheet]
    ) -> TimesheetChange | None:
        uuids = group.frame_uuids
        for timesheet in existing:
            if not set(uuids) & set(timesheet.frame_uuids):
                continue
            new_uuids = [uuid for uuid in uuids if uuid not in timesheet.frame_uuids]
            if not new_uuids:
                logger.debug("Frames already recorded in timesheet %s", timesheet.uuid)
                return None
            merged = replace(
                timesheet,
                frame_uuids=(*timesheet.frame_uuids, *new_uuids),
                updated_at=utc_now(),
            )
            return TimesheetChange(merged, created=False, frame_count=len(new_uuids))

        role = _role(group.frames)
        timesheet = Timesheet(
            uuid=Identifier.generate().hex,
            activity=group.activity,
            description=_description(group.frames),
            time=round_hours(group.seconds, group.activity.alias),
            date=day,
            role=role,
            individual_action=role is None,
            frame_uuids=tuple(uuids),
        )
        return TimesheetChange(timesheet, created=True, frame_count=len(uuids))
