from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, replace
from datetime import date, datetime, tzinfo
from pathlib import Path
from typing import Sequence

from . import __version__
from .api import ZebraApi
from .errors import NotFoundError, ValidationError, ZebraError
from .frames import FrameRepository
from .models import Activity, Config, EntityKey, Frame, Identifier, Role, Timesheet, extract_issue_keys
from .projects import (
    ActivityRepository,
    LocalProjectRepository,
    ProjectRepository,
    ZebraProjectRepository,
)
from .report import (
    ReportService,
    format_duration,
    format_groups_text,
    format_report_csv,
    format_report_json,
    format_report_text,
)
from .storage import (
    CACHE_DIR,
    DEFAULT_CONFIG_PATH,
    DEFAULT_STORAGE_PATH,
    get_config_value,
    load_config,
    read_config_data,
    save_config,
    set_config_value,
    write_config_data,
)
from .sync import TimesheetFromFrames, TimesheetSyncService
from .timesheets import (
    AlwaysConfirm,
    Confirmer,
    LocalTimesheetRepository,
    ZebraTimesheetRepository,
    merge_timesheets,
)
from .timeutil import day_bounds, parse_local, resolve_timezone, to_local, utc_now
from .track import Track
from .users import UserRepository

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class App:
    config: Config
    zone: tzinfo
    frames: FrameRepository
    users: UserRepository
    local_projects: LocalProjectRepository
    zebra_projects: ZebraProjectRepository
    projects: ProjectRepository
    activities: ActivityRepository
    track: Track
    local_timesheets: LocalTimesheetRepository
    sync: TimesheetSyncService
    report: ReportService


def build_app(config: Config) -> App:
    root = config.storage_path
    cache_dir = root / CACHE_DIR
    zone = resolve_timezone(config.timezone)
    api = ZebraApi.from_config(config)
    frames = FrameRepository(root)
    users = UserRepository(
        api, cache_dir, user_id=config.user_id, default_role_id=config.default_role_id
    )
    local_projects = LocalProjectRepository(root)
    zebra_projects = ZebraProjectRepository(api, cache_dir)
    projects = ProjectRepository(local_projects, zebra_projects)
    activities = ActivityRepository(projects)
    local_timesheets = LocalTimesheetRepository(root)
    zebra_timesheets = ZebraTimesheetRepository(api, activities, users)
    return App(
        config=config,
        zone=zone,
        frames=frames,
        users=users,
        local_projects=local_projects,
        zebra_projects=zebra_projects,
        projects=projects,
        activities=activities,
        track=Track(frames, users, zone=zone),
        local_timesheets=local_timesheets,
        sync=TimesheetSyncService(local_timesheets, zebra_timesheets),
        report=ReportService(projects),
    )


def load_app(args: argparse.Namespace) -> App:
    return build_app(load_config(Path(args.config).expanduser()))


def ask(question: str, action: str) -> bool:
    if not sys.stdin.isatty():
        print(f"Refusing to {action.lower()} without confirmation. Use --yes.", file=sys.stderr)
        return False
    return input(f"{question} [y/N] ").strip().lower() in {"y", "yes"}


class PromptConfirmer:
    def __init__(self, action: str) -> None:
        self.action = action

    def confirm(self, subject: Timesheet) -> bool:
        return ask(
            f"{self.action} Zebra timesheet {subject.zebra_id} "
            f"({subject.date.isoformat()}, {subject.time:.2f}h, {subject.description})?",
            self.action,
        )


def confirmer_for(args: argparse.Namespace, action: str) -> Confirmer:
    return AlwaysConfirm() if args.yes else PromptConfirmer(action)


def parse_bound(value: str, zone: tzinfo, *, end: bool = False) -> datetime:
    text = value.strip()
    if len(text) == 10:
        start, stop = day_bounds(date.fromisoformat(text), zone)
        return stop if end else start
    return parse_local(text, zone)


def parse_range(args: argparse.Namespace, zone: tzinfo) -> tuple[datetime, datetime]:
    today = datetime.now(zone).date().isoformat()
    start = parse_bound(args.start or today, zone)
    stop = parse_bound(args.end or args.start or today, zone, end=True)
    return start, stop


def parse_day(value: str | None, zone: tzinfo) -> date:
    if value:
        return date.fromisoformat(value)
    return datetime.now(zone).date()


def resolve_role(app: App, value: str) -> Role:
    if value.isdigit():
        role_id = int(value)
        user = app.users.current_user()
        role = user.find_role(role_id) if user is not None else None
        return role or Role(id=role_id)
    matches = app.users.find_roles(value)
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise NotFoundError(f"No role matches '{value}'. Run 'zebra roles'.")
    names = ", ".join(f"{role.name} ({role.id})" for role in matches)
    raise NotFoundError(f"Role '{value}' is ambiguous: {names}")


def resolve_frame_role(app: App, args: argparse.Namespace, activity: Activity) -> Role | None:
    if args.individual:
        return None
    if args.role:
        return resolve_role(app, args.role)
    return app.frames.get_last_used_role_for_activity(activity)


def resolve_activity(app: App, value: str | None, description: str | None) -> Activity:
    if value:
        return app.activities.resolve(value)
    activity = app.frames.get_last_activity_for_issue_keys(extract_issue_keys(description or ""))
    if activity is None:
        raise NotFoundError("No activity given and none could be inferred from the description.")
    return activity


def format_frame(frame: Frame, zone: tzinfo) -> str:
    start = to_local(frame.start_time, zone).strftime("%Y-%m-%d %H:%M")
    stop = to_local(frame.stop_time, zone).strftime("%H:%M") if frame.stop_time else "now"
    seconds = frame.duration
    if seconds is None:
        seconds = int((utc_now() - frame.start_time).total_seconds())
    role = "individual" if frame.is_individual else (frame.role.name or str(frame.role.id))
    return (
        f"{frame.uuid} | {start} -> {stop} | {format_duration(seconds)} | "
        f"{frame.activity.name} | {role} | {frame.description}"
    )


def format_timesheet(timesheet: Timesheet) -> str:
    zebra_id = timesheet.zebra_id if timesheet.zebra_id is not None else "-"
    role = "individual" if timesheet.individual_action else (timesheet.role.name or str(timesheet.role.id))
    flags = " (do not sync)" if timesheet.do_not_sync else ""
    return (
        f"{timesheet.uuid} | {timesheet.date.isoformat()} | {timesheet.time:.2f}h | "
        f"{timesheet.activity.name} | {role} | zebra:{zebra_id} | {timesheet.description}{flags}"
    )


def init_command(args: argparse.Namespace) -> int:
    config_path = Path(args.config).expanduser()
    storage_path = Path(args.storage).expanduser() if args.storage else DEFAULT_STORAGE_PATH
    config = Config(
        base_uri=args.base_uri or "",
        token_env_var=args.token_env_var,
        user_id=args.user_id,
        default_role_id=args.default_role_id,
        timezone=args.timezone,
        storage_path=storage_path,
    )
    save_config(config_path, config)
    storage_path.mkdir(parents=True, exist_ok=True)
    print(f"Initialized config at {config_path}")
    print(f"Storage: {storage_path}")
    return 0


def config_get_command(args: argparse.Namespace) -> int:
    data = read_config_data(Path(args.config).expanduser())
    value = get_config_value(data, args.key)
    if value is None:
        print(f"{args.key} is not set.", file=sys.stderr)
        return 1
    print(value)
    return 0


def config_set_command(args: argparse.Namespace) -> int:
    path = Path(args.config).expanduser()
    data = read_config_data(path)
    set_config_value(data, args.key, args.value)
    write_config_data(path, data)
    print(f"Set {args.key} = {get_config_value(data, args.key)}")
    return 0


def refresh_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    projects = app.zebra_projects.refresh()
    print(f"Refreshed {len(projects)} Zebra projects.")
    if app.config.user_id is not None:
        user = app.users.refresh()
        print(f"Refreshed user {user.name or user.username} with {len(user.roles)} roles.")
    return 0


def projects_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    projects = app.projects.get_by_name_like(args.name) if args.name else app.projects.all()
    if not projects:
        print("No projects found.")
        return 0
    for project in projects:
        print(f"{project.entity_key} | {project.name} | {len(project.activities)} activities")
    return 0


def project_add_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    project = app.local_projects.create(args.name, args.description or "")
    print(f"Created local project {project.name} ({project.entity_key})")
    return 0


def project_delete_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    project = app.local_projects.delete(EntityKey.local(args.key), force=args.force)
    print(f"Deleted local project {project.name}")
    return 0


def activities_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    activities = app.activities.search(args.search) if args.search else app.activities.all()
    if not activities:
        print("No activities found.")
        return 0
    for activity in activities:
        alias = f" [{activity.alias}]" if activity.alias else ""
        print(f"{activity.entity_key} | {activity.name}{alias}")
    return 0


def activity_add_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    activity = app.local_projects.create_activity(
        EntityKey.local(args.project), args.name, args.description or "", args.alias
    )
    print(f"Created local activity {activity.name} ({activity.entity_key})")
    return 0


def activity_delete_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    activity = app.local_projects.delete_activity(EntityKey.local(args.key))
    print(f"Deleted local activity {activity.name}")
    return 0


def roles_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    roles = app.users.roles()
    if not roles:
        print("No roles found. Set user.id and run 'zebra refresh'.")
        return 0
    for role in roles:
        marker = "*" if role.id == app.config.default_role_id else " "
        print(f"{marker} {role.id} | {role.name} | {role.full_name}")
    return 0


def start_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    activity = resolve_activity(app, args.activity, args.description)
    frame = app.track.start(
        activity,
        args.description,
        parse_local(args.at, app.zone) if args.at else None,
        gap=not args.no_gap,
        is_individual=args.individual,
        role=resolve_frame_role(app, args, activity),
    )
    started = to_local(frame.start_time, app.zone).strftime("%H:%M")
    print(f"Starting {activity.name} at {started} ({frame.uuid})")
    return 0


def stop_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    frame = app.track.stop(parse_local(args.at, app.zone) if args.at else None)
    print(f"Stopped {frame.activity.name}, {format_duration(frame.duration or 0)} ({frame.uuid})")
    return 0


def cancel_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    frame = app.track.cancel()
    print(f"Cancelled {frame.activity.name} ({frame.uuid})")
    return 0


def status_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    frame = app.track.get_current()
    if frame is None:
        print("No frame started.")
        return 0
    print(format_frame(frame, app.zone))
    return 0


def add_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    activity = resolve_activity(app, args.activity, args.description)
    frame = app.track.add(
        activity,
        parse_local(args.start, app.zone),
        parse_local(args.end, app.zone),
        args.description,
        is_individual=args.individual,
        role=resolve_frame_role(app, args, activity),
    )
    print(f"Added {format_frame(frame, app.zone)}")
    return 0


def resolve_frame(app: App, identifier: str | None) -> Frame:
    frame = app.frames.resolve(identifier)
    if frame is None:
        raise NotFoundError(f"Frame '{identifier or -1}' not found.")
    return frame


def edit_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    frame = resolve_frame(app, args.frame)
    is_individual = True if args.individual else (False if args.role else None)
    changes = {
        "start_time": parse_local(args.start, app.zone) if args.start else None,
        "stop_time": parse_local(args.end, app.zone) if args.end else None,
        "activity": app.activities.resolve(args.activity) if args.activity else None,
        "description": args.description,
        "is_individual": is_individual,
        "role": resolve_role(app, args.role) if args.role else None,
    }
    if all(value is None for value in changes.values()):
        print("No changes made.")
        return 0
    edited = app.track.edit(frame, **changes)
    print(f"Edited {format_frame(edited, app.zone)}")
    return 0


def restart_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    frame = resolve_frame(app, args.frame or "-1")
    restarted = app.track.restart(
        frame,
        parse_local(args.at, app.zone) if args.at else None,
        gap=not args.no_gap,
        stop_current=args.stop,
    )
    started = to_local(restarted.start_time, app.zone).strftime("%H:%M")
    print(f"Restarting {restarted.activity.name} at {started} ({restarted.uuid})")
    return 0


def select_frames(app: App, args: argparse.Namespace) -> tuple[datetime, datetime, list[Frame]]:
    start, end = parse_range(args, app.zone)
    frames = app.frames.filter(
        project_ids=args.project,
        ignore_project_ids=args.ignore_project,
        issue_keys=args.issue,
        ignore_issue_keys=args.ignore_issue,
        start=start,
        end=end,
        include_partial_frames=args.partial,
    )
    return start, end, sorted(frames)


def frames_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    _, _, frames = select_frames(app, args)
    if not frames:
        print("No frames found.")
        return 0
    for frame in frames:
        print(format_frame(frame, app.zone))
    return 0


def remove_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    for uuid in args.uuid:
        app.frames.remove(uuid)
        print(f"Removed frame {uuid}")
    return 0


def report_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    start, end, frames = select_frames(app, args)
    if args.format == "issues":
        print(format_groups_text(app.report.generate_report_by_issue_key(frames)))
        return 0
    report = app.report.generate_report(frames, start, end)
    if args.format == "json":
        print(format_report_json(report))
    elif args.format == "csv":
        sys.stdout.write(format_report_csv(report))
    else:
        print(format_report_text(report, app.zone))
    return 0


def timesheet_from_frames_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    day = parse_day(args.date, app.zone)
    builder = TimesheetFromFrames(app.frames, app.local_timesheets, app.report)
    changes = builder.plan(day, app.zone)
    if not changes:
        print(f"No new frames to turn into timesheets on {day.isoformat()}.")
        return 0
    for change in changes:
        verb = "Create" if change.created else "Merge into"
        print(f"{verb}: {format_timesheet(change.timesheet)} ({change.frame_count} frame(s))")
    if args.dry_run:
        print("Dry run only. Nothing was saved.")
        return 0
    builder.apply(changes)
    print(f"Saved {len(changes)} timesheet(s).")
    return 0


def positive_hours(value: float) -> float:
    if value <= 0:
        raise ValidationError(f"Time must be positive, got {value}.")
    return value


def required_text(value: str, name: str) -> str:
    text = value.strip()
    if not text:
        raise ValidationError(f"{name} cannot be empty.")
    return text


def get_timesheet(app: App, uuid: str) -> Timesheet:
    timesheet = app.local_timesheets.get(uuid)
    if timesheet is None:
        raise NotFoundError(f"Timesheet {uuid} does not exist.")
    return timesheet


def timesheet_create_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    activity = app.activities.resolve(args.activity)
    role = None
    if not args.individual:
        role = resolve_role(app, args.role) if args.role else app.users.default_role()
        if role is None:
            raise NotFoundError("No default role configured. Use --role or --individual.")
    timesheet = Timesheet(
        uuid=Identifier.generate().hex,
        activity=activity,
        description=required_text(args.description, "Description"),
        client_description=(args.client_description or "").strip() or None,
        time=positive_hours(args.time),
        date=parse_day(args.date, app.zone),
        role=role,
        individual_action=args.individual,
    )
    app.local_timesheets.save(timesheet)
    print(f"Created {format_timesheet(timesheet)}")
    return 0


def timesheet_edit_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    timesheet = get_timesheet(app, args.uuid)
    changes: dict = {}
    if args.activity:
        changes["activity"] = app.activities.resolve(args.activity)
    if args.description is not None:
        changes["description"] = required_text(args.description, "Description")
    if args.client_description is not None:
        changes["client_description"] = args.client_description.strip() or None
    if args.time is not None:
        changes["time"] = positive_hours(args.time)
    if args.date:
        changes["date"] = date.fromisoformat(args.date)
    if args.individual:
        changes.update(individual_action=True, role=None)
    elif args.role:
        changes.update(individual_action=False, role=resolve_role(app, args.role))
    if args.do_not_sync is not None:
        changes["do_not_sync"] = args.do_not_sync
    if not changes:
        print("No changes made.")
        return 0
    edited = replace(timesheet, updated_at=utc_now(), **changes)
    app.local_timesheets.update(edited)
    print(f"Updated {format_timesheet(edited)}")
    if edited.zebra_id is not None:
        print(f"Run 'zebra timesheet push {edited.uuid}' to send the change to Zebra.")
    return 0


def timesheet_merge_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    timesheets = [get_timesheet(app, uuid) for uuid in args.uuid]
    merged = merge_timesheets(timesheets)
    for timesheet in timesheets:
        print(f"  {format_timesheet(timesheet)}")
    print(f"Merged: {format_timesheet(merged)}")
    if any(timesheet.zebra_id is not None for timesheet in timesheets):
        print("Warning: synced timesheets lose their Zebra id when merged.", file=sys.stderr)
    if not args.yes and not ask("Merge these timesheets?", "Merge"):
        print("Merge cancelled.")
        return 1
    app.local_timesheets.merge(args.uuid)
    print(f"Merged {len(timesheets)} timesheets into {merged.uuid}")
    return 0


def timesheet_list_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    if args.unsynced:
        timesheets = app.local_timesheets.get_unsynced()
    else:
        first = parse_day(args.start, app.zone)
        last = date.fromisoformat(args.end) if args.end else first
        timesheets = app.local_timesheets.get_by_date_range(first, last)
    if not timesheets:
        print("No timesheets found.")
        return 0
    for timesheet in timesheets:
        print(format_timesheet(timesheet))
    print(f"Total: {sum(item.time for item in timesheets):.2f}h")
    return 0


def timesheet_push_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    if args.uuid:
        timesheets = []
        for uuid in args.uuid:
            timesheet = app.local_timesheets.get(uuid)
            if timesheet is None:
                raise NotFoundError(f"Timesheet {uuid} does not exist.")
            timesheets.append(timesheet)
    else:
        timesheets = app.local_timesheets.get_unsynced()
    if not timesheets:
        print("Nothing to push.")
        return 0
    confirmer = confirmer_for(args, "Update")
    pushed = 0
    for timesheet in timesheets:
        if timesheet.do_not_sync:
            print(f"Skipping {timesheet.uuid}: marked as do not sync.")
            continue
        result = app.sync.push_local_to_zebra(timesheet, confirmer)
        if result is None:
            print(f"Skipped {timesheet.uuid}.")
            continue
        pushed += 1
        print(f"Pushed {format_timesheet(result)}")
    print(f"Pushed {pushed} of {len(timesheets)} timesheet(s).")
    return 0


def timesheet_pull_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    first = parse_day(args.start, app.zone)
    last = date.fromisoformat(args.end) if args.end else first
    changed = app.sync.pull_from_zebra(first, last)
    for timesheet in changed:
        print(f"Pulled {format_timesheet(timesheet)}")
    print(f"Pulled {len(changed)} timesheet(s).")
    return 0


def timesheet_delete_command(args: argparse.Namespace) -> int:
    app = load_app(args)
    timesheet = app.local_timesheets.get(args.uuid)
    if timesheet is None:
        raise NotFoundError(f"Timesheet {args.uuid} does not exist.")
    if not app.sync.delete(timesheet, confirmer_for(args, "Delete")):
        print("Deletion cancelled.")
        return 1
    print(f"Deleted timesheet {timesheet.uuid}")
    return 0


def add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--from", dest="start", help="YYYY-MM-DD or ISO datetime (default: today)")
    parser.add_argument("--to", dest="end", help="YYYY-MM-DD or ISO datetime (default: end of --from day)")
    parser.add_argument("--project", type=int, action="append", help="Zebra project id to include")
    parser.add_argument("--ignore-project", type=int, action="append")
    parser.add_argument("--issue", action="append", help="Issue key to include")
    parser.add_argument("--ignore-issue", action="append")
    parser.add_argument(
        "--partial",
        action="store_true",
        help="Include frames that only overlap the range",
    )


def add_role_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--role", help="Role id or name (default: last used or user.defaultRole.id)")
    group.add_argument("--individual", action="store_true", help="Log as an individual action")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zebra",
        description="Track work time in frames and sync timesheets with Zebra.",
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to config file (default: ~/.zebra_timesheet/config.yaml)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create config + storage")
    init_parser.add_argument("--base-uri", help="Zebra base URI")
    init_parser.add_argument("--user-id", type=int, help="Your Zebra user id")
    init_parser.add_argument("--default-role-id", type=int, help="Role used when none is given")
    init_parser.add_argument("--timezone", help="IANA timezone for input and display")
    init_parser.add_argument("--storage", help="Data directory")
    init_parser.add_argument(
        "--token-env-var",
        default="ZEBRA_TOKEN",
        help="Environment variable name containing the API token",
    )
    init_parser.set_defaults(func=init_command)

    config_parser = subparsers.add_parser("config", help="Read or change config values")
    config_subparsers = config_parser.add_subparsers(dest="config_command", required=True)
    config_get = config_subparsers.add_parser("get", help="Print a dotted config key")
    config_get.add_argument("key")
    config_get.set_defaults(func=config_get_command)
    config_set = config_subparsers.add_parser("set", help="Set a dotted config key")
    config_set.add_argument("key")
    config_set.add_argument("value")
    config_set.set_defaults(func=config_set_command)

    refresh_parser = subparsers.add_parser("refresh", help="Refresh cached projects and user")
    refresh_parser.set_defaults(func=refresh_command)

    projects_parser = subparsers.add_parser("projects", help="List active projects")
    projects_parser.add_argument("name", nargs="?", help="Filter by name")
    projects_parser.set_defaults(func=projects_command)

    project_parser = subparsers.add_parser("project", help="Manage local projects")
    project_subparsers = project_parser.add_subparsers(dest="project_command", required=True)
    project_add = project_subparsers.add_parser("add", help="Create a local project")
    project_add.add_argument("name")
    project_add.add_argument("--description")
    project_add.set_defaults(func=project_add_command)
    project_delete = project_subparsers.add_parser("delete", help="Delete a local project")
    project_delete.add_argument("key")
    project_delete.add_argument("--force", action="store_true", help="Delete even with activities")
    project_delete.set_defaults(func=project_delete_command)

    activities_parser = subparsers.add_parser("activities", help="List activities")
    activities_parser.add_argument("search", nargs="?", help="Filter by name or alias")
    activities_parser.set_defaults(func=activities_command)

    activity_parser = subparsers.add_parser("activity", help="Manage local activities")
    activity_subparsers = activity_parser.add_subparsers(dest="activity_command", required=True)
    activity_add = activity_subparsers.add_parser("add", help="Create a local activity")
    activity_add.add_argument("project", help="Local project key")
    activity_add.add_argument("name")
    activity_add.add_argument("--alias")
    activity_add.add_argument("--description")
    activity_add.set_defaults(func=activity_add_command)
    activity_delete = activity_subparsers.add_parser("delete", help="Delete a local activity")
    activity_delete.add_argument("key")
    activity_delete.set_defaults(func=activity_delete_command)

    roles_parser = subparsers.add_parser("roles", help="List your Zebra roles")
    roles_parser.set_defaults(func=roles_command)

    start_parser = subparsers.add_parser("start", help="Start a frame")
    start_parser.add_argument("activity", nargs="?", help="Activity alias, id or name")
    start_parser.add_argument("-m", "--description")
    start_parser.add_argument("--at", help="Start time (HH:MM or ISO datetime)")
    start_parser.add_argument(
        "--no-gap",
        action="store_true",
        help="Start where the previous frame stopped",
    )
    add_role_arguments(start_parser)
    start_parser.set_defaults(func=start_command)

    stop_parser = subparsers.add_parser("stop", help="Stop the current frame")
    stop_parser.add_argument("--at", help="Stop time (HH:MM or ISO datetime)")
    stop_parser.set_defaults(func=stop_command)

    cancel_parser = subparsers.add_parser("cancel", help="Discard the current frame")
    cancel_parser.set_defaults(func=cancel_command)

    status_parser = subparsers.add_parser("status", help="Show the current frame")
    status_parser.set_defaults(func=status_command)

    add_parser = subparsers.add_parser("add", help="Add a completed frame")
    add_parser.add_argument("activity", nargs="?", help="Activity alias, id or name")
    add_parser.add_argument("--from", dest="start", required=True)
    add_parser.add_argument("--to", dest="end", required=True)
    add_parser.add_argument("-m", "--description")
    add_role_arguments(add_parser)
    add_parser.set_defaults(func=add_command)

    edit_parser = subparsers.add_parser("edit", help="Change a frame")
    edit_parser.add_argument(
        "frame",
        nargs="?",
        help="Frame uuid or position (-1 last, -2 before; default: current or last)",
    )
    edit_parser.add_argument("--from", dest="start", help="New start (HH:MM or ISO datetime)")
    edit_parser.add_argument("--to", dest="end", help="New stop (HH:MM or ISO datetime)")
    edit_parser.add_argument("--activity", help="Activity alias, id or name")
    edit_parser.add_argument("-m", "--description")
    add_role_arguments(edit_parser)
    edit_parser.set_defaults(func=edit_command)

    restart_parser = subparsers.add_parser("restart", help="Start again like a previous frame")
    restart_parser.add_argument("frame", nargs="?", help="Frame uuid or position (default: -1)")
    restart_parser.add_argument("--at", help="Start time (HH:MM or ISO datetime)")
    restart_parser.add_argument("--no-gap", action="store_true", help="Start where the previous frame stopped")
    restart_parser.add_argument("--stop", action="store_true", help="Stop the current frame first")
    restart_parser.set_defaults(func=restart_command)

    frames_parser = subparsers.add_parser("frames", help="List frames")
    add_filter_arguments(frames_parser)
    frames_parser.set_defaults(func=frames_command)

    remove_parser = subparsers.add_parser("remove", help="Remove frames")
    remove_parser.add_argument("uuid", nargs="+")
    remove_parser.set_defaults(func=remove_command)

    report_parser = subparsers.add_parser("report", help="Summarize tracked time")
    add_filter_arguments(report_parser)
    report_parser.add_argument(
        "--format",
        choices=["text", "json", "csv", "issues"],
        default="text",
    )
    report_parser.set_defaults(func=report_command)

    timesheet_parser = subparsers.add_parser("timesheet", help="Manage Zebra timesheets")
    timesheet_subparsers = timesheet_parser.add_subparsers(dest="timesheet_command", required=True)

    ts_from_frames = timesheet_subparsers.add_parser(
        "from-frames", help="Create timesheets from a day of frames"
    )
    ts_from_frames.add_argument("--date", help="YYYY-MM-DD (default: today)")
    ts_from_frames.add_argument("--dry-run", action="store_true")
    ts_from_frames.set_defaults(func=timesheet_from_frames_command)

    ts_list = timesheet_subparsers.add_parser("list", help="List local timesheets")
    ts_list.add_argument("--from", dest="start", help="YYYY-MM-DD (default: today)")
    ts_list.add_argument("--to", dest="end", help="YYYY-MM-DD")
    ts_list.add_argument("--unsynced", action="store_true", help="Only timesheets not in Zebra yet")
    ts_list.set_defaults(func=timesheet_list_command)

    ts_push = timesheet_subparsers.add_parser("push", help="Push timesheets to Zebra")
    ts_push.add_argument("uuid", nargs="*", help="Timesheets to push (default: all unsynced)")
    ts_push.add_argument("--yes", action="store_true", help="Update without asking")
    ts_push.set_defaults(func=timesheet_push_command)

    ts_pull = timesheet_subparsers.add_parser("pull", help="Pull timesheets from Zebra")
    ts_pull.add_argument("--from", dest="start", help="YYYY-MM-DD (default: today)")
    ts_pull.add_argument("--to", dest="end", help="YYYY-MM-DD")
    ts_pull.set_defaults(func=timesheet_pull_command)

    ts_delete = timesheet_subparsers.add_parser("delete", help="Delete a timesheet")
    ts_delete.add_argument("uuid")
    ts_delete.add_argument("--yes", action="store_true", help="Delete without asking")
    ts_delete.set_defaults(func=timesheet_delete_command)

    ts_create = timesheet_subparsers.add_parser("create", help="Create a local timesheet")
    ts_create.add_argument("activity", help="Activity alias, id or name")
    ts_create.add_argument("description")
    ts_create.add_argument("time", type=float, help="Hours, a multiple of 0.25")
    ts_create.add_argument("-d", "--date", help="YYYY-MM-DD (default: today)")
    ts_create.add_argument("-c", "--client-description")
    add_role_arguments(ts_create)
    ts_create.set_defaults(func=timesheet_create_command)

    ts_edit = timesheet_subparsers.add_parser("edit", help="Change a local timesheet")
    ts_edit.add_argument("uuid")
    ts_edit.add_argument("--activity", help="Activity alias, id or name")
    ts_edit.add_argument("-m", "--description")
    ts_edit.add_argument("-c", "--client-description")
    ts_edit.add_argument("--time", type=float, help="Hours, a multiple of 0.25")
    ts_edit.add_argument("-d", "--date", help="YYYY-MM-DD")
    add_role_arguments(ts_edit)
    sync_group = ts_edit.add_mutually_exclusive_group()
    sync_group.add_argument(
        "--do-not-sync", dest="do_not_sync", action="store_const", const=True, help="Keep out of pushes"
    )
    sync_group.add_argument("--sync", dest="do_not_sync", action="store_const", const=False)
    ts_edit.set_defaults(func=timesheet_edit_command)

    ts_merge = timesheet_subparsers.add_parser("merge", help="Merge timesheets into the first one")
    ts_merge.add_argument("uuid", nargs="+")
    ts_merge.add_argument("--yes", action="store_true", help="Merge without asking")
    ts_merge.set_defaults(func=timesheet_merge_command)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        format=LOG_FORMAT,
        level=logging.DEBUG if args.debug else logging.WARNING,
        stream=sys.stderr,
    )
    try:
        return args.func(args)
    except (ZebraError, ValueError) as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(str(exc), file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
