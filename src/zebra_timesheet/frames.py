from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Iterable, Sequence

from .errors import (
    ConflictError,
    DeserializationError,
    FrameAlreadyStarted,
    InvalidTime,
    NoFrameStarted,
    NotFoundError,
)
from .models import Activity, Frame, Role
from .serialization import frame_from_dict, frame_to_dict
from .storage import CURRENT_FRAME_FILE, FRAMES_FILE, JsonFileStorage
from .timeutil import to_utc, utc_now

logger = logging.getLogger(__name__)


class FrameRepository:
    """Completed frames keyed by uuid plus the single current frame slot."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.frames = JsonFileStorage(root / FRAMES_FILE)
        self.current = JsonFileStorage(root / CURRENT_FRAME_FILE)

    def save(self, frame: Frame) -> None:
        if frame.is_active:
            raise ConflictError(
                f"Cannot save active frame {frame.uuid}; stop it before storing it."
            )
        data = self.frames.read()
        data[frame.uuid] = frame_to_dict(frame)
        self.frames.write(data)

    def all(self) -> list[Frame]:
        return list(self._load_frames())

    def get(self, uuid: str) -> Frame | None:
        payload = self.frames.read().get(uuid)
        if payload is None:
            return None
        try:
            return frame_from_dict(payload)
        except DeserializationError as exc:
            logger.debug("Frame %s is unreadable: %s", uuid, exc)
            return None

    def resolve(self, identifier: str | None = None) -> Frame | None:
        """Frame by uuid or by position among completed frames, newest first.

        ``-1`` (or ``1``) is the latest completed frame, ``-2`` the one before.
        Without an identifier the current frame wins over the latest one.
        """
        if identifier is None:
            return self.get_current() or self.resolve("-1")
        text = identifier.strip()
        if re.fullmatch(r"-?\d+", text):
            completed = sorted((frame for frame in self._load_frames() if not frame.is_active), reverse=True)
            index = abs(int(text)) - 1
            return completed[index] if 0 <= index < len(completed) else None
        current = self.get_current()
        if current is not None and current.uuid == text.lower():
            return current
        return self.get(text.lower())

    def get_by_date_range(self, start: datetime, end: datetime | None = None) -> list[Frame]:
        start = to_utc(start)
        end = to_utc(end) if end is not None else None
        return [
            frame
            for frame in self._load_frames()
            if frame.start_time >= start and (end is None or frame.start_time <= end)
        ]

    def get_by_activity(self, activity: Activity) -> list[Frame]:
        return [
            frame
            for frame in self._load_frames()
            if frame.activity.entity_key == activity.entity_key
        ]

    def filter(
        self,
        *,
        project_ids: Sequence[int] | None = None,
        ignore_project_ids: Sequence[int] | None = None,
        issue_keys: Sequence[str] | None = None,
        ignore_issue_keys: Sequence[str] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        include_partial_frames: bool = False,
    ) -> list[Frame]:
        start = to_utc(start) if start is not None else None
        end = to_utc(end) if end is not None else None
        now = utc_now()
        selected: list[Frame] = []
        for frame in self._load_frames():
            project_key = frame.activity.project_entity_key
            project_id = project_key.id if project_key.is_remote else None
            if project_ids and (project_id is None or project_id not in project_ids):
                continue
            if ignore_project_ids and project_id is not None and project_id in ignore_project_ids:
                continue
            keys = frame.issue_keys
            if issue_keys and not any(key in keys for key in issue_keys):
                continue
            if ignore_issue_keys and any(key in keys for key in ignore_issue_keys):
                continue
            if start is not None or end is not None:
                effective_stop = frame.stop_time or now
                if include_partial_frames:
                    if end is not None and frame.start_time > end:
                        continue
                    if start is not None and effective_stop < start:
                        continue
                else:
                    if start is not None and frame.start_time < start:
                        continue
                    if end is not None and effective_stop > end:
                        continue
            selected.append(frame)
        return selected

    def save_current(self, frame: Frame) -> None:
        if not frame.is_active:
            raise ConflictError(f"Frame {frame.uuid} is already stopped and cannot be current.")
        if frame.start_time > utc_now():
            raise InvalidTime("A frame cannot start in the future.")
        existing = self.get_current()
        if existing is not None and existing.uuid != frame.uuid:
            raise FrameAlreadyStarted(
                f"Frame {existing.uuid} is already running; stop or cancel it first."
            )
        self.current.write(frame_to_dict(frame))
        logger.debug("Current frame set to %s", frame.uuid)

    def get_current(self) -> Frame | None:
        payload = self.current.read()
        if not payload:
            return None
        try:
            return frame_from_dict(payload)
        except DeserializationError as exc:
            logger.debug("Current frame is unreadable: %s", exc)
            return None

    def complete_current(self, stop_time: datetime | None = None) -> Frame:
        current = self.get_current()
        if current is None:
            raise NoFrameStarted("No frame is currently running.")
        stop_time = to_utc(stop_time) if stop_time is not None else utc_now()
        if stop_time > utc_now():
            raise InvalidTime("A frame cannot stop in the future.")
        completed = current.with_stop_time(stop_time)
        self.save(completed)
        self.clear_current()
        logger.debug("Completed frame %s", completed.uuid)
        return completed

    def clear_current(self) -> None:
        if self.current.exists():
            self.current.write({})
            logger.debug("Cleared current frame")

    def update(self, frame: Frame) -> None:
        data = self.frames.read()
        current = self.get_current()
        is_current = current is not None and current.uuid == frame.uuid
        if frame.uuid in data:
            if frame.is_active:
                if not is_current:
                    raise ConflictError(f"Cannot reopen completed frame {frame.uuid}.")
                del data[frame.uuid]
                self.frames.write(data)
                self.current.write(frame_to_dict(frame))
                return
            data[frame.uuid] = frame_to_dict(frame)
            self.frames.write(data)
            if is_current:
                self.clear_current()
            return
        if not is_current:
            raise NotFoundError(f"Cannot update frame: frame {frame.uuid} does not exist.")
        if frame.is_active:
            self.current.write(frame_to_dict(frame))
        else:
            self.save(frame)
            self.clear_current()

    def remove(self, uuid: str) -> None:
        data = self.frames.read()
        current = self.get_current()
        is_current = current is not None and current.uuid == uuid
        if uuid not in data and not is_current:
            raise NotFoundError(f"Cannot remove frame: frame {uuid} does not exist.")
        if uuid in data:
            del data[uuid]
            self.frames.write(data)
        if is_current:
            self.clear_current()

    def get_last_used_role_for_activity(self, activity: Activity) -> Role | None:
        candidates = [
            frame
            for frame in self._load_frames()
            if not frame.is_active
            and not frame.is_individual
            and frame.role is not None
            and frame.activity.entity_key == activity.entity_key
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda frame: frame.start_time).role

    def get_last_activity_for_issue_keys(self, issue_keys: Iterable[str]) -> Activity | None:
        wanted = sorted(set(issue_keys))
        if not wanted:
            return None
        candidates = [
            frame
            for frame in self._load_frames()
            if not frame.is_active and frame.issue_keys and sorted(set(frame.issue_keys)) == wanted
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda frame: frame.start_time).activity

    def last_completed(self, before: datetime | None = None) -> Frame | None:
        """Latest-starting completed frame whose stop is not after ``before``."""
        before = to_utc(before) if before is not None else utc_now()
        completed = [frame for frame in self._load_frames() if frame.stop_time is not None]
        candidates = [frame for frame in completed if frame.stop_time <= before]
        skipped = len(completed) - len(candidates)
        if skipped:
            logger.warning("Ignoring %d frame(s) stored with a stop time in the future", skipped)
        if not candidates:
            return None
        return max(candidates, key=lambda frame: frame.start_time)

    def _load_frames(self) -> Iterable[Frame]:
        for uuid, payload in self.frames.read().items():
            try:
                yield frame_from_dict(payload)
            except DeserializationError as exc:
                logger.debug("Skipping unreadable frame %s: %s", uuid, exc)
