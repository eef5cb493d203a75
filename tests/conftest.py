from __future__ import annotations

from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest

from zebra_timesheet.frames import FrameRepository
from zebra_timesheet.models import Activity, EntityKey, Frame, Identifier, Role, Timesheet
from zebra_timesheet.timesheets import LocalTimesheetRepository
from zebra_timesheet.timeutil import utc_now
from zebra_timesheet.track import Track


@pytest.fixture
def project_key():
    return EntityKey.remote(100)


@pytest.fixture
def activity(project_key):
    return Activity(EntityKey.remote(200), "Development", "Writing code", project_key, alias="dev")


@pytest.fixture
def other_activity(project_key):
    return Activity(EntityKey.remote(201), "Meetings", "", project_key, alias="_meet")


@pytest.fixture
def local_activity():
    project = EntityKey.local(Identifier.generate())
    return Activity(EntityKey.local(Identifier.generate()), "Reading", "", project)


@pytest.fixture
def role():
    return Role(id=7, parent_id=1, name="Developer", full_name="Engineering / Developer", type="role", status="active")


@pytest.fixture
def frames(tmp_path):
    return FrameRepository(tmp_path)


@pytest.fixture
def users(role):
    provider = MagicMock()
    provider.default_role.return_value = role
    return provider


@pytest.fixture
def track(frames, users):
    return Track(frames, users)


@pytest.fixture
def local_timesheets(tmp_path):
    return LocalTimesheetRepository(tmp_path)


@pytest.fixture
def make_frame(activity, role):
    def factory(start_offset=timedelta(hours=3), duration=timedelta(hours=1), **overrides):
        start = utc_now() - start_offset
        values = {
            "start_time": start,
            "stop_time": start + duration if duration is not None else None,
            "activity": activity,
            "role": role,
            "description": "",
        }
        values.update(overrides)
        if values.get("is_individual"):
            values["role"] = None
        return Frame.create(**values)

    return factory


@pytest.fixture
def make_timesheet(activity, role):
    def factory(**overrides):
        values = {
            "uuid": Identifier.generate().hex,
            "activity": activity,
            "description": "Work on ABC-1",
            "time": 1.5,
            "date": date(2024, 3, 4),
            "role": role,
            "individual_action": False,
            "frame_uuids": ("f1",),
        }
        values.update(overrides)
        return Timesheet(**values)

    return factory
