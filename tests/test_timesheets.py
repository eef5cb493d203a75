from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock

import pytest

from zebra_timesheet.errors import ConflictError, NotFoundError, ValidationError, ZebraApiError, ZebraError
from zebra_timesheet.models import Role
from zebra_timesheet.timesheets import AlwaysConfirm, ZebraTimesheetRepository, merge_timesheets


def api_record(zebra_id, **overrides):
    record = {
        "id": zebra_id,
        "occupation_id": 200,
        "date": "2024-03-04",
        "time": 1.5,
        "description": "Work on ABC-1",
        "role_id": 7,
        "lu_date": "2024-03-04 12:00:00",
    }
    record.update(overrides)
    return record


class TestLocalTimesheetRepository:
    def test_save_get_all(self, local_timesheets, make_timesheet):
        timesheet = make_timesheet()
        local_timesheets.save(timesheet)
        assert local_timesheets.get(timesheet.uuid) == timesheet
        assert local_timesheets.all() == [timesheet]

    def test_zebra_id_must_be_unique(self, local_timesheets, make_timesheet):
        local_timesheets.save(make_timesheet(zebra_id=5))
        with pytest.raises(ConflictError):
            local_timesheets.save(make_timesheet(zebra_id=5))
        other = make_timesheet()
        local_timesheets.save(other)
        with pytest.raises(ConflictError):
            local_timesheets.update(make_timesheet(uuid=other.uuid, zebra_id=5))

    def test_saving_same_record_again_is_allowed(self, local_timesheets, make_timesheet):
        timesheet = make_timesheet(zebra_id=5)
        local_timesheets.save(timesheet)
        local_timesheets.update(timesheet)
        assert local_timesheets.get_by_zebra_id(5) == timesheet

    def test_update_and_remove_unknown(self, local_timesheets, make_timesheet):
        with pytest.raises(NotFoundError):
            local_timesheets.update(make_timesheet())
        with pytest.raises(NotFoundError):
            local_timesheets.remove("abcdef12")

    def test_queries(self, local_timesheets, make_timesheet):
        monday = make_timesheet(date=date(2024, 3, 4), frame_uuids=("f1", "f2"))
        tuesday = make_timesheet(date=date(2024, 3, 5), frame_uuids=("f3",), zebra_id=9)
        skipped = make_timesheet(date=date(2024, 3, 6), frame_uuids=(), do_not_sync=True)
        for item in (monday, tuesday, skipped):
            local_timesheets.save(item)
        assert local_timesheets.get_by_date_range(date(2024, 3, 4)) == [monday]
        assert local_timesheets.get_by_date_range(date(2024, 3, 4), date(2024, 3, 5)) == [monday, tuesday]
        assert local_timesheets.get_by_frame_uuids(["f2", "zz"]) == [monday]
        assert local_timesheets.get_unsynced() == [monday]
        local_timesheets.remove(monday.uuid)
        assert local_timesheets.get(monday.uuid) is None


class TestMerge:
    def test_merge_timesheets(self, make_timesheet):
        first = make_timesheet(time=1.5, frame_uuids=("f1", "f2"), zebra_id=4, client_description="Client A")
        second = make_timesheet(time=0.75, description="Review ABC-2", frame_uuids=("f2", "f3"))
        merged = merge_timesheets([first, second])
        assert merged.uuid == first.uuid
        assert merged.time == 2.25
        assert merged.frame_uuids == ("f1", "f2", "f3")
        assert merged.description == "Work on ABC-1 | Review ABC-2"
        assert merged.client_description == "Client A"
        assert merged.zebra_id is None
        assert merged.date == first.date

    def test_merge_needs_two(self, make_timesheet):
        with pytest.raises(ValidationError):
            merge_timesheets([make_timesheet()])

    def test_merge_rejects_different_activity_or_role(self, make_timesheet, other_activity):
        with pytest.raises(ConflictError, match="different activity"):
            merge_timesheets([make_timesheet(), make_timesheet(activity=other_activity)])
        with pytest.raises(ConflictError, match="different role"):
            merge_timesheets([make_timesheet(), make_timesheet(role=Role(99))])
        with pytest.raises(ConflictError, match="different role"):
            merge_timesheets([make_timesheet(), make_timesheet(role=None, individual_action=True)])

    def test_repository_merge_removes_others(self, local_timesheets, make_timesheet):
        first, second, other = make_timesheet(), make_timesheet(time=0.5), make_timesheet()
        for item in (first, second, other):
            local_timesheets.save(item)
        merged = local_timesheets.merge([first.uuid, second.uuid])
        assert merged.time == 2.0
        assert local_timesheets.get(first.uuid) == merged
        assert local_timesheets.get(second.uuid) is None
        assert local_timesheets.get(other.uuid) == other

    def test_repository_merge_unknown_or_repeated(self, local_timesheets, make_timesheet):
        first = make_timesheet()
        local_timesheets.save(first)
        with pytest.raises(NotFoundError, match="abcdef12"):
            local_timesheets.merge([first.uuid, "abcdef12"])
        with pytest.raises(ValidationError):
            local_timesheets.merge([first.uuid, first.uuid])
        assert local_timesheets.get(first.uuid) == first


class TestZebraTimesheetRepository:
    @pytest.fixture
    def api(self):
        return MagicMock()

    @pytest.fixture
    def repo(self, api, activity, role):
        activities = MagicMock()
        activities.get.side_effect = lambda key: activity if key == activity.entity_key else None
        users = MagicMock()
        users.current_user.return_value = MagicMock(find_role=lambda role_id: role if role_id == role.id else None)
        return ZebraTimesheetRepository(api, activities, users)

    def test_get_by_zebra_id(self, repo, api, role):
        api.fetch_timesheet_by_id.return_value = api_record(42)
        timesheet = repo.get_by_zebra_id(42)
        assert timesheet.zebra_id == 42
        assert timesheet.role == role

    def test_get_by_zebra_id_not_found(self, repo, api):
        api.fetch_timesheet_by_id.side_effect = ZebraApiError("gone", status=404)
        assert repo.get_by_zebra_id(42) is None

    def test_get_by_zebra_id_other_errors_propagate(self, repo, api):
        api.fetch_timesheet_by_id.side_effect = ZebraApiError("boom", status=500)
        with pytest.raises(ZebraApiError):
            repo.get_by_zebra_id(42)

    def test_get_by_date_range_skips_unknown_activities(self, repo, api):
        api.fetch_all_timesheets.return_value = {1: api_record(1), 2: api_record(2, occupation_id=999)}
        timesheets = repo.get_by_date_range(date(2024, 3, 4), date(2024, 3, 8))
        assert [item.zebra_id for item in timesheets] == [1]
        api.fetch_all_timesheets.assert_called_once_with({"start_date": "2024-03-04", "end_date": "2024-03-08"})

    def test_get_by_date_range_skips_bad_role_ids(self, repo, api):
        api.fetch_all_timesheets.return_value = {1: api_record(1, role_id="n/a"), 2: api_record(2)}
        timesheets = repo.get_by_date_range(date(2024, 3, 4))
        assert [item.zebra_id for item in timesheets] == [2]

    def test_create_from_timesheet_in_response(self, repo, api, make_timesheet):
        api.create_timesheet.return_value = {"success": True, "data": {"timesheet": api_record(42)}}
        assert repo.create(make_timesheet()).zebra_id == 42

    def test_create_from_id_in_response(self, repo, api, make_timesheet):
        api.create_timesheet.return_value = {"success": True, "data": {"id": 43}}
        api.fetch_timesheet_by_id.return_value = api_record(43)
        assert repo.create(make_timesheet()).zebra_id == 43

    def test_create_falls_back_to_matching(self, repo, api, make_timesheet):
        api.create_timesheet.return_value = {"success": True, "data": None}
        api.fetch_all_timesheets.return_value = {
            1: api_record(1, description="Something else"),
            2: api_record(2),
        }
        assert repo.create(make_timesheet()).zebra_id == 2

    def test_create_without_match_fails(self, repo, api, make_timesheet):
        api.create_timesheet.return_value = {"success": True}
        api.fetch_all_timesheets.return_value = {}
        with pytest.raises(ZebraError, match="Failed to retrieve"):
            repo.create(make_timesheet())

    def test_update_requires_confirmation(self, repo, api, make_timesheet):
        declined = MagicMock()
        declined.confirm.return_value = False
        timesheet = make_timesheet(zebra_id=42)
        assert repo.update(timesheet, declined) is None
        api.update_timesheet.assert_not_called()
        declined.confirm.assert_called_once_with(timesheet)

    def test_update_refetches(self, repo, api, make_timesheet):
        api.fetch_timesheet_by_id.return_value = api_record(42, description="Canonical")
        result = repo.update(make_timesheet(zebra_id=42), AlwaysConfirm())
        assert result.description == "Canonical"
        api.update_timesheet.assert_called_once()

    def test_update_and_delete_need_zebra_id(self, repo, make_timesheet):
        with pytest.raises(ConflictError):
            repo.update(make_timesheet(), AlwaysConfirm())
        with pytest.raises(ConflictError):
            repo.delete(make_timesheet(), AlwaysConfirm())

    def test_delete(self, repo, api, make_timesheet):
        assert repo.delete(make_timesheet(zebra_id=42), AlwaysConfirm())
        api.delete_timesheet.assert_called_once_with(42)
