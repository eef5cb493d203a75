from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Mapping

from .errors import DeserializationError, ZebraError
from .models import (
    Activity,
    EntityKey,
    EntitySource,
    Frame,
    Identifier,
    Project,
    Role,
    Timesheet,
    User,
)
from .timeutil import from_timestamp, parse_api_datetime, to_timestamp

logger = logging.getLogger(__name__)

ActivityLookup = Callable[[EntityKey], "Activity | None"]


def _require(data: Mapping[str, Any], *keys: str) -> None:
    missing = [key for key in keys if data.get(key) is None]
    if missing:
        raise DeserializationError(f"Missing required field(s): {', '.join(missing)}")


def _mapping(value: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise DeserializationError(f"Field '{name}' must be an object.")
    return value


def _flag(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise DeserializationError(f"Field '{name}' must be a boolean, got {value!r}.")


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def entity_key_to_dict(key: EntityKey) -> dict[str, Any]:
    return {"source": key.source.value, "id": key.id if key.is_remote else str(key.id)}


def entity_key_from_dict(data: Any) -> EntityKey:
    data = _mapping(data, "key")
    _require(data, "source", "id")
    try:
        return EntityKey(EntitySource(data["source"]), data["id"])
    except ValueError as exc:
        raise DeserializationError(f"Invalid entity key: {exc}") from exc


def activity_to_dict(activity: Activity) -> dict[str, Any]:
    return {
        "key": entity_key_to_dict(activity.entity_key),
        "name": activity.name,
        "desc": activity.description,
        "project": entity_key_to_dict(activity.project_entity_key),
        "alias": activity.alias,
    }


def activity_from_dict(data: Any) -> Activity:
    data = _mapping(data, "activity")
    _require(data, "key", "project")
    return Activity(
        entity_key=entity_key_from_dict(data["key"]),
        name=str(data.get("name") or ""),
        description=str(data.get("desc") or ""),
        project_entity_key=entity_key_from_dict(data["project"]),
        alias=data.get("alias") or None,
    )


def role_to_dict(role: Role | None) -> dict[str, Any] | None:
    if role is None:
        return None
    return {
        "id": role.id,
        "parentId": role.parent_id,
        "name": role.name,
        "fullName": role.full_name,
        "type": role.type,
        "status": role.status,
    }


def role_from_dict(data: Any) -> Role | None:
    if data is None:
        return None
    data = _mapping(data, "role")
    _require(data, "id")
    return Role(
        id=int(data["id"]),
        parent_id=_optional_int(data.get("parentId", data.get("parent_id"))),
        name=str(data.get("name") or ""),
        full_name=str(data.get("fullName", data.get("full_name")) or ""),
        type=str(data.get("type") or ""),
        status=str(data.get("status") or ""),
    )


def frame_to_dict(frame: Frame) -> dict[str, Any]:
    return {
        "uuid": frame.uuid,
        "start": to_timestamp(frame.start_time),
        "stop": to_timestamp(frame.stop_time) if frame.stop_time else None,
        "activity": activity_to_dict(frame.activity),
        "isIndividual": frame.is_individual,
        "role": role_to_dict(frame.role),
        "issues": list(frame.issue_keys),
        "desc": frame.description,
        "updatedAt": to_timestamp(frame.updated_at),
    }


def frame_from_dict(data: Any) -> Frame:
    data = _mapping(data, "frame")
    _require(data, "uuid", "start", "activity", "isIndividual")
    try:
        stop = data.get("stop")
        updated_at = data.get("updatedAt")
        kwargs: dict[str, Any] = {}
        if updated_at is not None:
            kwargs["updated_at"] = from_timestamp(updated_at)
        return Frame(
            uuid=str(data["uuid"]),
            start_time=from_timestamp(data["start"]),
            stop_time=from_timestamp(stop) if stop is not None else None,
            activity=activity_from_dict(data["activity"]),
            is_individual=_flag(data["isIndividual"], "isIndividual"),
            role=role_from_dict(data.get("role")),
            description=str(data.get("desc") or ""),
            **kwargs,
        )
    except DeserializationError:
        raise
    except (TypeError, ValueError, OverflowError) as exc:
        raise DeserializationError(f"Invalid frame data: {exc}") from exc


def timesheet_to_dict(timesheet: Timesheet) -> dict[str, Any]:
    return {
        "uuid": timesheet.uuid,
        "projectId": timesheet.project_id,
        "activity": activity_to_dict(timesheet.activity),
        "description": timesheet.description,
        "clientDescription": timesheet.client_description,
        "time": timesheet.time,
        "date": timesheet.date.isoformat(),
        "role": role_to_dict(timesheet.role),
        "individualAction": timesheet.individual_action,
        "frameUuids": list(timesheet.frame_uuids),
        "zebraId": timesheet.zebra_id,
        "updatedAt": to_timestamp(timesheet.updated_at),
        "doNotSync": timesheet.do_not_sync,
    }


def timesheet_from_dict(data: Any) -> Timesheet:
    data = _mapping(data, "timesheet")
    _require(data, "uuid", "activity", "description", "time", "date")
    frame_uuids = data.get("frameUuids")
    if not isinstance(frame_uuids, list):
        raise DeserializationError("Field 'frameUuids' must be a list.")
    try:
        kwargs: dict[str, Any] = {}
        if data.get("updatedAt") is not None:
            kwargs["updated_at"] = from_timestamp(data["updatedAt"])
        return Timesheet(
            uuid=str(data["uuid"]),
            activity=activity_from_dict(data["activity"]),
            description=str(data["description"]),
            client_description=data.get("clientDescription") or None,
            time=float(data["time"]),
            date=date.fromisoformat(str(data["date"])),
            role=role_from_dict(data.get("role")),
            individual_action=_flag(data.get("individualAction") or False, "individualAction"),
            frame_uuids=tuple(frame_uuids),
            zebra_id=_optional_int(data.get("zebraId")),
            do_not_sync=_flag(data.get("doNotSync") or False, "doNotSync"),
            **kwargs,
        )
    except DeserializationError:
        raise
    except (TypeError, ValueError, OverflowError) as exc:
        raise DeserializationError(f"Invalid timesheet data: {exc}") from exc


def timesheet_to_api(timesheet: Timesheet) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "project_id": timesheet.project_id,
        "activity_id": int(timesheet.activity.entity_key.id),
        "description": timesheet.description,
        "time": timesheet.time,
        "date": timesheet.date.isoformat(),
    }
    if timesheet.client_description:
        payload["client_description"] = timesheet.client_description
    if timesheet.role is not None:
        payload["role_id"] = timesheet.role.id
    if timesheet.individual_action:
        payload["individual_action"] = 1
    return payload


def timesheet_from_api(
    data: Any,
    find_activity: ActivityLookup,
    user: User | None = None,
    *,
    uuid: str | None = None,
) -> Timesheet:
    """Build a timesheet from a Zebra API record.

    The activity is resolved through ``find_activity`` so that the local
    model carries the project and alias known from the cached projects.
    """
    data = _mapping(data, "timesheet")
    activity_id = data.get("occupation_id", data.get("occupid"))
    if activity_id is None:
        raise DeserializationError("Timesheet record has no activity id.")
    _require(data, "date", "time", "description")
    try:
        activity = find_activity(EntityKey.remote(activity_id))
    except ZebraError as exc:
        raise DeserializationError(f"Unable to resolve activity {activity_id}: {exc}") from exc
    if activity is None:
        raise DeserializationError(f"Activity {activity_id} not found. Run 'zebra refresh'.")

    individual = data.get("individual_action") in (True, 1, "1")
    role = None
    role_id = data.get("role_id")
    if role_id not in (None, "", 0, "0") and not individual:
        try:
            role_id = int(role_id)
        except (TypeError, ValueError) as exc:
            raise DeserializationError(f"Invalid role id {role_id!r} on timesheet {data.get('id')}.") from exc
        role = (user.find_role(role_id) if user else None) or Role(id=role_id)
    if role is None and not individual:
        # Zebra accepts entries without a role; keep them as individual actions.
        individual = True

    kwargs: dict[str, Any] = {}
    modified = data.get("lu_date") or data.get("modified")
    if modified:
        try:
            kwargs["updated_at"] = parse_api_datetime(str(modified))
        except ValueError:
            logger.debug("Unparseable modification date %r on timesheet %s", modified, data.get("id"))
    zebra_id = data.get("id")
    try:
        return Timesheet(
            uuid=uuid or Identifier.generate().hex,
            activity=activity,
            description=str(data["description"]),
            client_description=data.get("client_description") or None,
            time=float(data["time"]),
            date=date.fromisoformat(str(data["date"])[:10]),
            role=role,
            individual_action=individual,
            frame_uuids=(),
            zebra_id=int(zebra_id) if zebra_id is not None else None,
            do_not_sync=False,
            **kwargs,
        )
    except (TypeError, ValueError) as exc:
        raise DeserializationError(f"Invalid timesheet record: {exc}") from exc


def project_to_dict(project: Project) -> dict[str, Any]:
    return {
        "id": project.entity_key.id if project.entity_key.is_remote else str(project.entity_key.id),
        "name": project.name,
        "description": project.description,
        "status": int(project.status),
        "activities": [
            {
                "id": activity.entity_key.id
                if activity.entity_key.is_remote
                else str(activity.entity_key.id),
                "name": activity.name,
                "description": activity.description,
                "alias": activity.alias,
            }
            for activity in project.activities
        ],
    }


def project_from_dict(data: Any, source: EntitySource) -> Project:
    data = _mapping(data, "project")
    _require(data, "id", "name")
    try:
        project_key = EntityKey(source, data["id"])
        activities = tuple(
            Activity(
                entity_key=EntityKey(source, item["id"]),
                name=str(item.get("name") or ""),
                description=str(item.get("description") or ""),
                project_entity_key=project_key,
                alias=item.get("alias") or None,
            )
            for item in data.get("activities") or []
            if isinstance(item, Mapping) and item.get("id") is not None
        )
        return Project(
            entity_key=project_key,
            name=str(data["name"]),
            description=str(data.get("description") or ""),
            status=int(data.get("status", 1)),
            activities=activities,
        )
    except (TypeError, ValueError) as exc:
        raise DeserializationError(f"Invalid project data: {exc}") from exc


def user_from_dict(data: Any) -> User:
    data = _mapping(data, "user")
    user_data = _mapping(data.get("user"), "user")
    _require(user_data, "id")
    roles = tuple(
        Role(
            id=int(item["id"]),
            parent_id=_optional_int(item.get("parent_id")),
            name=str(item.get("name") or ""),
            full_name=str(item.get("full_name") or ""),
            type=str(item.get("type") or ""),
            status=str(item.get("status") or ""),
        )
        for item in data.get("roles") or []
        if isinstance(item, Mapping) and item.get("id") is not None
    )
    return User(
        id=int(user_data["id"]),
        username=str(user_data.get("username") or ""),
        firstname=str(user_data.get("firstname") or ""),
        lastname=str(user_data.get("lastname") or ""),
        name=str(user_data.get("name") or ""),
        email=str(user_data.get("email") or ""),
        employee_type=str(user_data.get("employee_type") or ""),
        employee_status=str(user_data.get("employee_status") or ""),
        roles=roles,
    )
