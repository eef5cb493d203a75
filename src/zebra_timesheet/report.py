from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Iterable, Sequence

from .models import Activity, EntityKey, Frame
from .projects import ProjectRepository
from .timeutil import to_local

NO_ISSUE_KEY = "(no issue key)"


@dataclass
class IssueTotal:
    issue_key: str
    seconds: int = 0


@dataclass
class ActivityTotal:
    activity: Activity
    seconds: int = 0
    issues: list[IssueTotal] = field(default_factory=list)


@dataclass
class ProjectTotal:
    entity_key: EntityKey
    name: str
    seconds: int = 0
    activities: list[ActivityTotal] = field(default_factory=list)


@dataclass(frozen=True)
class Report:
    start: datetime
    end: datetime
    seconds: int
    projects: list[ProjectTotal]


@dataclass
class FrameGroup:
    issue_keys: tuple[str, ...]
    activity: Activity
    frames: list[Frame] = field(default_factory=list)

    @property
    def seconds(self) -> int:
        return sum(frame.duration or 0 for frame in self.frames)

    @property
    def frame_uuids(self) -> list[str]:
        return [frame.uuid for frame in self.frames]


def split_duration(seconds: int, issue_keys: Sequence[str]) -> list[tuple[str, int]]:
    """Share ``seconds`` evenly across issue keys, remainder to the first key."""
    if not issue_keys:
        return [(NO_ISSUE_KEY, seconds)]
    share = seconds // len(issue_keys)
    remainder = seconds - share * len(issue_keys)
    return [
        (key, share + remainder if index == 0 else share)
        for index, key in enumerate(issue_keys)
    ]


def _issue_sort_key(issue_key: str) -> tuple[bool, str]:
    return (issue_key == NO_ISSUE_KEY, issue_key.lower())


def format_duration(seconds: int) -> str:
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


class ReportService:
    def __init__(self, projects: ProjectRepository | None = None) -> None:
        self.projects = projects

    def generate_report(self, frames: Iterable[Frame], start: datetime, end: datetime) -> Report:
        projects: dict[EntityKey, ProjectTotal] = {}
        activities: dict[EntityKey, ActivityTotal] = {}
        issues: dict[tuple[EntityKey, str], IssueTotal] = {}
        total = 0
        for frame in frames:
            if frame.duration is None:
                continue
            activity = frame.activity
            project_key = activity.project_entity_key
            project = projects.get(project_key)
            if project is None:
                project = projects[project_key] = ProjectTotal(project_key, self._project_name(project_key))
            activity_total = activities.get(activity.entity_key)
            if activity_total is None:
                activity_total = activities[activity.entity_key] = ActivityTotal(activity)
                project.activities.append(activity_total)
            for issue_key, seconds in split_duration(frame.duration, frame.issue_keys):
                issue = issues.get((activity.entity_key, issue_key))
                if issue is None:
                    issue = issues[(activity.entity_key, issue_key)] = IssueTotal(issue_key)
                    activity_total.issues.append(issue)
                issue.seconds += seconds
            activity_total.seconds += frame.duration
            project.seconds += frame.duration
            total += frame.duration

        ordered = sorted(projects.values(), key=lambda item: item.name.lower())
        for project in ordered:
            project.activities.sort(key=lambda item: item.activity.name.lower())
            for activity_total in project.activities:
                activity_total.issues.sort(key=lambda item: _issue_sort_key(item.issue_key))
        return Report(start=start, end=end, seconds=total, projects=ordered)

    def generate_report_by_issue_key(self, frames: Iterable[Frame]) -> list[FrameGroup]:
        groups: dict[tuple[tuple[str, ...], EntityKey], FrameGroup] = {}
        for frame in frames:
            if frame.duration is None:
                continue
            keys = tuple(sorted(frame.issue_keys))
            group_key = (keys, frame.activity.entity_key)
            group = groups.get(group_key)
            if group is None:
                group = groups[group_key] = FrameGroup(keys, frame.activity)
            group.frames.append(frame)
        return sorted(
            groups.values(),
            key=lambda group: (
                not group.issue_keys,
                [key.lower() for key in group.issue_keys],
                group.activity.name.lower(),
            ),
        )

    def _project_name(self, key: EntityKey) -> str:
        project = self.projects.get(key) if self.projects is not None else None
        return project.name if project is not None else f"Project {key}"


def report_to_dict(report: Report) -> dict:
    return {
        "from": report.start.isoformat(),
        "to": report.end.isoformat(),
        "time": report.seconds,
        "projects": [
            {
                "key": {"source": project.entity_key.source.value, "id": str(project.entity_key)},
                "name": project.name,
                "time": project.seconds,
                "activities": [
                    {
                        "name": item.activity.name,
                        "alias": item.activity.alias,
                        "time": item.seconds,
                        "issues": [
                            {"key": issue.issue_key, "time": issue.seconds} for issue in item.issues
                        ],
                    }
                    for item in project.activities
                ],
            }
            for project in report.projects
        ],
    }


def format_report_json(report: Report) -> str:
    return json.dumps(report_to_dict(report), indent=2)


def format_report_csv(report: Report) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["project", "activity", "issue_key", "seconds", "duration"])
    for project in report.projects:
        for item in project.activities:
            for issue in item.issues:
                writer.writerow(
                    [
                        project.name,
                        item.activity.name,
                        issue.issue_key,
                        issue.seconds,
                        format_duration(issue.seconds),
                    ]
                )
    return buffer.getvalue()


def format_report_text(report: Report, zone: tzinfo | None = None) -> str:
    start = to_local(report.start, zone).strftime("%a %d %b %Y")
    end = to_local(report.end, zone).strftime("%a %d %b %Y")
    lines = [f"{start} -> {end}", ""]
    for project in report.projects:
        lines.append(f"{project.name} - {format_duration(project.seconds)}")
        for item in project.activities:
            lines.append(f"  [{item.activity.name} {format_duration(item.seconds)}]")
            for issue in item.issues:
                lines.append(f"    {issue.issue_key} {format_duration(issue.seconds)}")
        lines.append("")
    lines.append(f"Total: {format_duration(report.seconds)}")
    return "\n".join(lines)


def format_groups_text(groups: Sequence[FrameGroup]) -> str:
    if not groups:
        return "No frames found."
    lines = []
    for group in groups:
        label = ", ".join(group.issue_keys) or NO_ISSUE_KEY
        lines.append(
            f"{label} | {group.activity.name} | {format_duration(group.seconds)} | "
            f"{len(group.frames)} frame(s)"
        )
    return "\n".join(lines)
