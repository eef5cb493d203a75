from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, tzinfo
from typing import Protocol

from .errors import FrameAlreadyStarted, InvalidTime, NoFrameStarted, TrackError
from .frames import FrameRepository
from .models import Activity, Frame, Role
from .timeutil import to_local, to_utc, utc_now

logger = logging.getLogger(__name__)


class DefaultRoleProvider(Protocol):
    def default_role(self) -> Role | None: ...


class Track:
    """Start, stop, add and cancel frames.

    Idle means no current frame; running means exactly one. ``add`` inserts a
    completed frame without touching the current slot.
    """

    def __init__(
        self,
        frames: FrameRepository,
        users: DefaultRoleProvider,
        *,
        zone: tzinfo | None = None,
    ) -> None:
        self.frames = frames
        self.users = users
        self.zone = zone

    def start(
        self,
        activity: Activity,
        description: str | None = None,
        start_at: datetime | None = None,
        *,
        gap: bool = True,
        is_individual: bool = False,
        role: Role | None = None,
    ) -> Frame:
        current = self.frames.get_current()
        if current is not None:
            raise FrameAlreadyStarted(
                "A frame is already started. Stop or cancel it before starting a new one. "
                f"Current frame: {current.uuid}, started {self._format(current.start_time)}, "
                f"activity {current.activity.name}, role {self._role_label(current)}."
            )

        now = utc_now()
        start_time = to_utc(start_at) if start_at is not None else now
        last = self.frames.last_completed(before=now)
        if not gap and last is not None:
            start_time = last.stop_time

        if start_time > now:
            raise InvalidTime(
                f"Cannot start a frame in the future ({self._format(start_time)}, "
                f"now {self._format(now)})."
            )
        if gap and start_at is not None and last is not None and start_time < last.stop_time:
            raise InvalidTime(
                f"Cannot start a frame before the previous frame ends ({self._format(start_time)} "
                f"is before {self._format(last.stop_time)})."
            )

        frame = Frame.create(
            start_time=start_time,
            activity=activity,
            is_individual=is_individual,
            role=self._resolve_role(role, is_individual),
            description=description,
        )
        self.frames.save_current(frame)
        logger.debug("Started frame %s on %s", frame.uuid, activity.name)
        return frame

    def stop(self, stop_at: datetime | None = None) -> Frame:
        current = self.frames.get_current()
        if current is None:
            raise NoFrameStarted("No frame is started.")
        now = utc_now()
        stop_time = to_utc(stop_at) if stop_at is not None else now
        if stop_time > now:
            raise InvalidTime(f"Cannot stop a frame in the future ({self._format(stop_time)}).")
        if stop_time < current.start_time:
            raise InvalidTime(
                f"Stop time {self._format(stop_time)} is before the frame start "
                f"{self._format(current.start_time)}."
            )
        return self.frames.complete_current(stop_time)

    def add(
        self,
        activity: Activity,
        start: datetime,
        stop: datetime,
        description: str | None = None,
        *,
        is_individual: bool = False,
        role: Role | None = None,
    ) -> Frame:
        start, stop = to_utc(start), to_utc(stop)
        if start > stop:
            raise InvalidTime(
                f"Start {self._format(start)} must not be after stop {self._format(stop)}."
            )
        frame = Frame.create(
            start_time=start,
            stop_time=stop,
            activity=activity,
            is_individual=is_individual,
            role=self._resolve_role(role, is_individual),
            description=description,
        )
        self.frames.save(frame)
        return frame

    def cancel(self) -> Frame:
        current = self.frames.get_current()
        if current is None:
            raise NoFrameStarted("No frame is started.")
        self.frames.clear_current()
        logger.debug("Cancelled frame %s", current.uuid)
        return current

    def restart(
        self,
        frame: Frame,
        start_at: datetime | None = None,
        *,
        gap: bool = True,
        stop_current: bool = False,
    ) -> Frame:
        """Start a new frame with the activity, description and role of ``frame``."""
        if stop_current and self.is_started():
            self.stop()
        return self.start(
            frame.activity,
            frame.description,
            start_at,
            gap=gap,
            is_individual=frame.is_individual,
            role=frame.role,
        )

    def edit(
        self,
        frame: Frame,
        *,
        start_time: datetime | None = None,
        stop_time: datetime | None = None,
        activity: Activity | None = None,
        description: str | None = None,
        is_individual: bool | None = None,
        role: Role | None = None,
    ) -> Frame:
        individual = frame.is_individual if is_individual is None else is_individual
        if individual and role is not None:
            raise TrackError("Cannot set a role on an individual frame.")
        start = to_utc(start_time) if start_time is not None else frame.start_time
        stop = to_utc(stop_time) if stop_time is not None else frame.stop_time
        now = utc_now()
        if start > now:
            raise InvalidTime(f"Start time cannot be in the future ({self._format(start)}).")
        if stop is not None and stop > now:
            raise InvalidTime(f"Stop time cannot be in the future ({self._format(stop)}).")
        if stop is not None and stop < start:
            raise InvalidTime(
                f"Stop time {self._format(stop)} is before the start {self._format(start)}."
            )
        edited = replace(
            frame,
            start_time=start,
            stop_time=stop,
            activity=activity or frame.activity,
            description=frame.description if description is None else description,
            is_individual=individual,
            role=self._resolve_role(role or frame.role, individual),
            updated_at=now,
        )
        self.frames.update(edited)
        logger.debug("Edited frame %s", edited.uuid)
        return edited

    def is_started(self) -> bool:
        return self.frames.get_current() is not None

    def get_current(self) -> Frame | None:
        return self.frames.get_current()

    def _resolve_role(self, role: Role | None, is_individual: bool) -> Role | None:
        if is_individual:
            return None
        if role is not None:
            return role
        role = self.users.default_role()
        if role is None:
            raise TrackError("No default role found. Please configure user.defaultRole.id in config.")
        return role

    def _format(self, value: datetime) -> str:
        return to_local(value, self.zone).isoformat()

    @staticmethod
    def _role_label(frame: Frame) -> str:
        if frame.is_individual:
            return "Individual"
        return frame.role.name if frame.role is not None else "No role"
