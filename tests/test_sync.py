from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from zebra_timesheet.models import Frame, Role
from zebra_timesheet.sync import TimesheetFromFrames, TimesheetSyncService, round_hours

T1 = datetime(2024, 3, 4, 10, tzinfo=timezone.utc)
T2 = datetime(2024, 3, 4, 12, tzinfo=timezone.utc)


@pytest.fixture
def zebra():
    return MagicMock()


@pytest.fixture
def service(local_timesheets, zebra):
    return TimesheetSyncService(local_timesheets, zebra)


class TestPush:
    def test_create_preserves_provenance(self, service, zebra, local_timesheets, make_timesheet):
        local = make_timesheet(frame_uuids=("f1",))
        zebra.create.return_value = make_timesheet(frame_uuids=(), zebra_id=42, description="Canonical")
        result = service.push_local_to_zebra(local)
        assert result.zebra_id == 42
        assert result.frame_uuids == ("f1",)
        assert result.uuid == local.uuid
        assert result.description == "Canonical"
        assert local_timesheets.get(local.uuid) == result

    def test_update_without_confirmer_aborts(self, service, zebra, make_timesheet):
        assert service.push_local_to_zebra(make_timesheet(zebra_id=42)) is None
        zebra.update.assert_not_called()

    def test_update_declined(self, service, zebra, local_timesheets, make_timesheet):
        local = make_timesheet(zebra_id=42)
        local_timesheets.save(local)
        zebra.update.return_value = None
        confirmer = MagicMock()
        assert service.push_local_to_zebra(local, confirmer) is None
        assert local_timesheets.get(local.uuid) == local

    def test_update_merges_remote_state(self, service, zebra, local_timesheets, make_timesheet):
        local = make_timesheet(zebra_id=42, frame_uuids=("f1", "f2"), do_not_sync=True)
        local_timesheets.save(local)
        zebra.update.return_value = make_timesheet(zebra_id=42, frame_uuids=(), time=2.0)
        confirmer = MagicMock()
        result = service.push_local_to_zebra(local, confirmer)
        zebra.update.assert_called_once_with(local, confirmer)
        assert result.time == 2.0
        assert result.frame_uuids == ("f1", "f2")
        assert result.do_not_sync is True
        assert local_timesheets.get(local.uuid) == result


class TestPull:
    def test_new_remote_records_are_saved(self, service, zebra, local_timesheets, make_timesheet):
        remote = make_timesheet(zebra_id=7, frame_uuids=())
        zebra.get_by_date_range.return_value = [remote]
        assert service.pull_from_zebra(date(2024, 3, 4)) == [remote]
        zebra.get_by_date_range.assert_called_once_with(date(2024, 3, 4), date(2024, 3, 4))
        assert local_timesheets.get_by_zebra_id(7) == remote

    def test_newer_remote_wins(self, service, zebra, local_timesheets, make_timesheet):
        local = make_timesheet(zebra_id=7, frame_uuids=("f1",), updated_at=T1)
        local_timesheets.save(local)
        zebra.get_by_date_range.return_value = [
            make_timesheet(zebra_id=7, frame_uuids=(), updated_at=T2, description="Remote edit")
        ]
        [merged] = service.pull_from_zebra(date(2024, 3, 4), date(2024, 3, 5))
        assert merged.uuid == local.uuid
        assert merged.frame_uuids == ("f1",)
        assert merged.description == "Remote edit"
        assert local_timesheets.get(local.uuid) == merged

    @pytest.mark.parametrize("remote_time", [T1, T1 - timedelta(hours=1)])
    def test_local_newer_or_equal_is_untouched(
        self, service, zebra, local_timesheets, make_timesheet, remote_time
    ):
        local = make_timesheet(zebra_id=7, updated_at=T1)
        local_timesheets.save(local)
        zebra.get_by_date_range.return_value = [
            make_timesheet(zebra_id=7, updated_at=remote_time, description="Stale")
        ]
        assert service.pull_from_zebra(date(2024, 3, 4)) == []
        assert local_timesheets.get(local.uuid) == local

    def test_datetime_bounds_use_zurich_dates(self, service, zebra):
        zebra.get_by_date_range.return_value = []
        service.pull_from_zebra(datetime(2024, 3, 3, 23, 30, tzinfo=timezone.utc))
        zebra.get_by_date_range.assert_called_once_with(date(2024, 3, 4), date(2024, 3, 4))


class TestDelete:
    def test_delete_pushed(self, service, zebra, local_timesheets, make_timesheet):
        timesheet = make_timesheet(zebra_id=3)
        local_timesheets.save(timesheet)
        zebra.delete.return_value = True
        assert service.delete(timesheet, MagicMock())
        assert local_timesheets.get(timesheet.uuid) is None

    def test_delete_declined(self, service, zebra, local_timesheets, make_timesheet):
        timesheet = make_timesheet(zebra_id=3)
        local_timesheets.save(timesheet)
        zebra.delete.return_value = False
        assert not service.delete(timesheet, MagicMock())
        assert local_timesheets.get(timesheet.uuid) == timesheet

    def test_delete_local_only(self, service, zebra, local_timesheets, make_timesheet):
        timesheet = make_timesheet()
        local_timesheets.save(timesheet)
        assert service.delete(timesheet, MagicMock())
        zebra.delete.assert_not_called()


@pytest.mark.parametrize(
    "seconds,alias,expected",
    [
        (60, None, 0.25),
        (900, None, 0.25),
        (1400, None, 0.5),
        (3600 + 449, None, 1.0),
        (3600 + 450, None, 1.25),
        (3600 + 899, "_meet", 1.0),
        (5400, "dev", 1.5),
    ],
)
def test_round_hours(seconds, alias, expected):
    assert round_hours(seconds, alias) == expected


class TestTimesheetFromFrames:
    DAY = date(2024, 3, 4)

    def frame(self, activity, start_hour, minutes, description="", role=None, individual=False):
        start = datetime(2024, 3, 4, start_hour, tzinfo=timezone.utc)
        return Frame.create(
            start_time=start,
            stop_time=start + timedelta(minutes=minutes),
            activity=activity,
            role=None if individual else role,
            is_individual=individual,
            description=description,
        )

    @pytest.fixture
    def builder(self, frames, local_timesheets):
        return TimesheetFromFrames(frames, local_timesheets)

    def test_groups_by_issue_keys_and_activity(
        self, builder, frames, activity, other_activity, local_activity, role
    ):
        for frame in (
            self.frame(activity, 8, 60, "ABC-1 coding", role),
            self.frame(activity, 10, 30, "ABC-1 coding", role),
            self.frame(activity, 11, 20, "DEF-2 review", role),
            self.frame(other_activity, 13, 50, "", individual=True),
            self.frame(local_activity, 14, 60, "local only", role),
        ):
            frames.save(frame)
        changes = builder.plan(self.DAY, timezone.utc)
        by_description = {change.timesheet.description: change for change in changes}
        assert set(by_description) == {"ABC-1 coding", "DEF-2 review", "Time entry"}
        coding = by_description["ABC-1 coding"].timesheet
        assert coding.time == 1.5
        assert coding.role == role
        assert len(coding.frame_uuids) == 2
        meeting = by_description["Time entry"].timesheet
        assert meeting.individual_action
        assert meeting.time == 0.75
        assert all(change.created for change in changes)

    def test_most_common_role_wins(self, builder, frames, activity, role):
        lead = Role(8, name="Lead")
        frames.save(self.frame(activity, 8, 30, "ABC-1", lead))
        frames.save(self.frame(activity, 9, 30, "ABC-1", role))
        frames.save(self.frame(activity, 10, 30, "ABC-1", role))
        [change] = builder.plan(self.DAY, timezone.utc)
        assert change.timesheet.role == role

    def test_apply_and_merge_new_frames(self, builder, frames, local_timesheets, activity, role):
        first = self.frame(activity, 8, 60, "ABC-1", role)
        frames.save(first)
        builder.apply(builder.plan(self.DAY, timezone.utc))
        [saved] = local_timesheets.all()
        assert builder.plan(self.DAY, timezone.utc) == []

        frames.save(self.frame(activity, 10, 60, "ABC-1", role))
        [change] = builder.plan(self.DAY, timezone.utc)
        assert not change.created
        assert change.timesheet.uuid == saved.uuid
        assert change.timesheet.time == saved.time
        assert len(change.timesheet.frame_uuids) == 2
        builder.apply([change])
        assert local_timesheets.get(saved.uuid).frame_uuids == change.timesheet.frame_uuids

    def test_other_days_are_ignored(self, builder, frames, activity, role):
        start = datetime(2024, 3, 5, 8, tzinfo=timezone.utc)
        frames.save(
            Frame.create(start_time=start, stop_time=start + timedelta(hours=1), activity=activity, role=role)
        )
        assert builder.plan(self.DAY, timezone.utc) == []

