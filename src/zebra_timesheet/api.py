from __future__ import annotations

import json
import logging
import os
from typing import Any, Mapping
from urllib import error, parse, request

from .errors import ConfigError, ZebraApiError
from .models import Config

logger = logging.getLogger(__name__)

TIMESHEETS_PATH = "/api/v2/timesheets"
PROJECTS_PATH = "/api/v2/projects"
USERS_PATH = "/api/v2/users"
ALL_PROJECT_STATUSES = (0, 1, 2)


def format_query(params: Mapping[str, Any] | None) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((f"{key}[]", str(item)) for item in value)
        elif isinstance(value, bool):
            pairs.append((key, "1" if value else "0"))
        else:
            pairs.append((key, str(value)))
    return pairs


class ZebraApi:
    def __init__(
        self,
        base_uri: str,
        token: str,
        *,
        token_env_var: str = "ZEBRA_TOKEN",
        timeout: int = 30,
    ) -> None:
        self.base_uri = base_uri.rstrip("/")
        self.token = token
        self.token_env_var = token_env_var
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Config) -> ZebraApi:
        return cls(
            os.environ.get("ZEBRA_BASE_URI") or config.base_uri,
            os.environ.get(config.token_env_var, ""),
            token_env_var=config.token_env_var,
        )

    def request(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
    ) -> dict:
        if not self.base_uri:
            raise ConfigError(
                "base_uri is required to talk to Zebra. Set ZEBRA_BASE_URI or run 'zebra config set base_uri ...'."
            )
        if not self.token:
            raise ConfigError(
                f"Missing API token. Set {self.token_env_var} in the environment to talk to Zebra."
            )
        query = parse.urlencode(format_query(params))
        url = f"{self.base_uri}{path}"
        if query:
            url = f"{url}?{query}"
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }
        logger.debug("%s %s", method, url)
        req = request.Request(url, headers=headers, method=method)
        try:
            with request.urlopen(req, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise ZebraApiError(
                f"Zebra request failed: {exc.code} {detail}".strip(), status=exc.code
            ) from exc
        except error.URLError as exc:
            raise ZebraApiError(f"Zebra request failed: {exc.reason}") from exc
        try:
            payload = json.loads(body) if body else {}
        except json.JSONDecodeError as exc:
            raise ZebraApiError(f"Unable to decode Zebra response: {exc}") from exc
        if not isinstance(payload, dict) or payload.get("success") is not True:
            raise ZebraApiError("Zebra request was not successful.")
        return payload

    def _list(self, payload: dict) -> dict | list:
        data = payload.get("data")
        if not isinstance(data, dict):
            return {}
        items = data.get("list")
        return items if isinstance(items, (dict, list)) else {}

    def fetch_all_projects(self) -> dict[int, dict]:
        payload = self.request("GET", PROJECTS_PATH, {"statuses": list(ALL_PROJECT_STATUSES)})
        items = self._list(payload)
        values = items.values() if isinstance(items, dict) else items
        return {int(item["id"]): item for item in values if isinstance(item, dict) and "id" in item}

    def fetch_all_timesheets(self, filters: Mapping[str, Any] | None = None) -> dict[int, dict]:
        items = self._list(self.request("GET", TIMESHEETS_PATH, filters))
        values = items.values() if isinstance(items, dict) else items
        return {
            item["id"]: item
            for item in values
            if isinstance(item, dict) and isinstance(item.get("id"), int)
        }

    def fetch_timesheet_by_id(self, zebra_id: int) -> dict:
        payload = self.request("GET", f"{TIMESHEETS_PATH}/{zebra_id}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise ZebraApiError(f"Timesheet {zebra_id} missing from Zebra response.")
        return data

    def create_timesheet(self, data: Mapping[str, Any]) -> dict:
        return self.request("POST", TIMESHEETS_PATH, data)

    def update_timesheet(self, zebra_id: int, data: Mapping[str, Any]) -> dict:
        return self.request("PUT", f"{TIMESHEETS_PATH}/{zebra_id}", data)

    def delete_timesheet(self, zebra_id: int) -> None:
        self.request("DELETE", f"{TIMESHEETS_PATH}/{zebra_id}")

    def fetch_all_users(self) -> dict[int, dict]:
        items = self._list(self.request("GET", USERS_PATH))
        values = items.values() if isinstance(items, dict) else items
        return {int(item["id"]): item for item in values if isinstance(item, dict) and "id" in item}

    def fetch_user_by_id(self, user_id: int) -> dict:
        payload = self.request("GET", f"{USERS_PATH}/{user_id}")
        data = payload.get("data")
        if not isinstance(data, dict) or not isinstance(data.get("user"), dict):
            raise ZebraApiError(f"User {user_id} missing from Zebra response.")
        return data
