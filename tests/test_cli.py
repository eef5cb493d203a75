from __future__ import annotations

import json
import re

import pytest

from zebra_timesheet.cli import build_parser, main


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.delenv("ZEBRA_TOKEN", raising=False)
    monkeypatch.delenv("ZEBRA_BASE_URI", raising=False)
    path = tmp_path / "config.yaml"
    assert main(["--config", str(path), "init", "--storage", str(tmp_path / "data"), "--timezone", "UTC"]) == 0
    return path


@pytest.fixture
def zebra(config_path, capsys):
    def run(*argv):
        code = main(["--config", str(config_path), *argv])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return run


@pytest.fixture
def local_alias(zebra):
    _, out, _ = zebra("project", "add", "Side project")
    project_key = re.search(r"\(([0-9a-f]{8})\)", out).group(1)
    code, out, _ = zebra("activity", "add", project_key, "Reading", "--alias", "read")
    assert code == 0
    return "read"


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_config_get_and_set(zebra):
    assert zebra("config", "set", "user.defaultRole.id", "12")[0] == 0
    code, out, _ = zebra("config", "get", "user.defaultRole.id")
    assert (code, out.strip()) == (0, "12")
    code, _, err = zebra("config", "get", "nope")
    assert code == 1
    assert "not set" in err


def test_missing_config(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "missing.yaml"), "status"]) == 2
    assert "zebra init" in capsys.readouterr().err


def test_track_cycle(zebra, local_alias):
    code, out, _ = zebra("start", local_alias, "--individual", "-m", "ABC-12 chapter one")
    assert code == 0
    assert out.startswith("Starting Reading")

    code, out, _ = zebra("start", local_alias, "--individual")
    assert code == 2

    code, out, _ = zebra("status")
    assert "Reading" in out
    assert "individual" in out

    code, out, _ = zebra("stop")
    assert code == 0
    assert out.startswith("Stopped Reading")

    code, out, _ = zebra("status")
    assert out.strip() == "No frame started."

    code, out, _ = zebra("report", "--format", "json")
    assert code == 0
    data = json.loads(out)
    assert data["projects"][0]["name"] == "Side project"
    assert data["projects"][0]["activities"][0]["issues"][0]["key"] == "ABC-12"


def test_stop_without_frame(zebra):
    code, _, err = zebra("stop")
    assert code == 2
    assert err.strip()


def test_unknown_activity_without_zebra(zebra, local_alias):
    code, _, err = zebra("start", "--individual", "-m", "no issue here")
    assert code == 2
    assert "inferred" in err


def test_empty_lists(zebra):
    assert zebra("timesheet", "list")[1].strip() == "No timesheets found."
    assert zebra("frames")[1].strip() == "No frames found."
    assert zebra("roles")[1].startswith("No roles found.")


@pytest.fixture
def zebra_alias(tmp_path):
    cache = tmp_path / "data" / "cache"
    cache.mkdir(parents=True, exist_ok=True)
    projects = {
        "100": {
            "id": 100,
            "name": "Acme Website",
            "status": 1,
            "activities": [{"id": 200, "name": "Development", "alias": "dev"}],
        }
    }
    (cache / "projects.json").write_text(json.dumps(projects))
    return "dev"


def frame_uuid(out):
    return out.split()[1]


def test_edit_and_restart(zebra, local_alias):
    code, out, _ = zebra(
        "add", local_alias, "--from", "2024-03-04T09:00", "--to", "2024-03-04T10:00", "--individual", "-m", "intro"
    )
    assert code == 0
    uuid = frame_uuid(out)

    code, out, _ = zebra("edit", "-1", "--to", "2024-03-04T10:30", "-m", "ABC-5 notes")
    assert code == 0
    assert out.startswith(f"Edited {uuid}")
    assert "10:30" in out
    assert "ABC-5 notes" in out

    assert zebra("edit", uuid)[1].strip() == "No changes made."
    assert zebra("edit", "-4", "-m", "x")[0] == 2

    code, out, _ = zebra("restart")
    assert code == 0
    assert out.startswith("Restarting Reading")
    code, out, _ = zebra("status")
    assert "ABC-5 notes" in out
    assert "individual" in out
    assert zebra("restart")[0] == 2


def test_timesheet_create_edit_merge(zebra, zebra_alias, local_alias):
    code, _, err = zebra("timesheet", "create", local_alias, "Local work", "1")
    assert code == 2
    assert err.strip()

    uuids = []
    for description, hours in (("Work on ABC-1", "1.5"), ("Review ABC-2", "0.5")):
        code, out, _ = zebra(
            "timesheet", "create", zebra_alias, description, hours, "-d", "2024-03-04", "--role", "12"
        )
        assert code == 0
        uuids.append(out.split()[1])
    assert zebra("timesheet", "create", zebra_alias, "Odd", "0.3", "--role", "12")[0] == 2

    code, out, _ = zebra("timesheet", "edit", uuids[1], "--time", "0.75", "--do-not-sync")
    assert code == 0
    assert "0.75h" in out
    assert "(do not sync)" in out

    code, out, _ = zebra("timesheet", "merge", *uuids)
    assert code == 1
    assert "Merge cancelled." in out

    code, out, _ = zebra("timesheet", "merge", *uuids, "--yes")
    assert code == 0
    assert f"Merged 2 timesheets into {uuids[0]}" in out

    code, out, _ = zebra("timesheet", "list", "--from", "2024-03-04")
    lines = out.strip().splitlines()
    assert len(lines) == 2
    assert lines[0].startswith(f"{uuids[0]} | 2024-03-04 | 2.25h")
    assert "Work on ABC-1 | Review ABC-2" in lines[0]
    assert lines[1] == "Total: 2.25h"
