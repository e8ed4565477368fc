"""HTTP client for the time-tracking API."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import requests

from .models import Day, Project, TimeEntry
from .parsing import build_days

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15
LIST_KEYS = ("data", "time_entries", "timeEntries", "entries", "items")

SNAKE = "snake"
CAMEL = "camel"


class ApiError(Exception):
    """Raised for transport, HTTP and payload-shape failures."""


@dataclass
class FetchResult:
    days: List[Day]


def _session(token: str) -> requests.Session:
    s = requests.Session()
    s.headers["Authorization"] = f"Bearer {token}"
    s.headers["Accept"] = "application/json"
    return s


def _first_line(text: str) -> str:
    lines = (text or "").splitlines()
    return lines[0] if lines else ""


class ApiClient:
    def __init__(self, base_url: str, token: str, timeout: float = DEFAULT_TIMEOUT):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token or ""
        self.timeout = timeout
        self.session = _session(self.token)

    def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            logger.warning("GET %s failed: %s", url, exc)
            raise ApiError(str(exc)) from exc

    def create_time_entry(self, date: str, project_id: int, description: str, minutes: int, is_billable: bool) -> None:
        url = f"{self.base_url}/time-entries"
        body = {
            "date": date,
            "project_id": project_id,
            "description": description,
            "minutes": minutes,
            "is_billable": is_billable,
            "tag_ids": [],
        }
        logger.info("POST %s (token len %d)", url, len(self.token))
        logger.debug("POST body: %s", json.dumps(body, ensure_ascii=False))
        try:
            resp = self.session.post(url, json=body, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            logger.warning("POST %s failed: %s", url, exc)
            raise ApiError(f"request error: {exc}") from exc
        logger.info("POST response status: %s", resp.status_code)
        if 200 <= resp.status_code < 300:
            return
        logger.warning("POST error body: %s", resp.text[:500])
        raise ApiError(f"{resp.status_code} {resp.text}")

    def fetch_projects_list(self) -> List[Project]:
        resp = self._get("/projects")
        logger.info("Projects response status: %s", resp.status_code)
        if resp.status_code >= 300:
            raise ApiError(f"{resp.status_code} {_first_line(resp.text)}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise ApiError(f"error parsing projects: {exc} | response start: {resp.text[:50]}") from exc
        if not isinstance(data, dict):
            raise ApiError(f"error parsing projects: expected mapping | response start: {resp.text[:50]}")
        projects: List[Project] = []
        for client, items in data.items():
            if not isinstance(items, list):
                continue
            for item in items:
                if not isinstance(item, dict):
                    continue
                try:
                    pid = int(item.get("id") or 0)
                except (TypeError, ValueError):
                    pid = 0
                projects.append(Project(id=pid, name=str(item.get("name") or ""), client_name=str(client)))
        projects.sort(key=lambda p: (p.client_name, p.name))
        return projects

    def fetch_days(self, start: str, end: str) -> FetchResult:
        logger.info("Fetching days: %s to %s", start, end)
        projects = self.fetch_projects_list()
        entries, _style = self.get_time_entries(start, end)
        logger.info("Fetched %d entries", len(entries))
        return FetchResult(days=build_days(entries, projects, start, end))

    def get_time_entries(self, start: str, end: str) -> Tuple[List[TimeEntry], str]:
        primary = self._time_entries_with_params(start, end, SNAKE)
        if primary:
            return primary, SNAKE
        # Some deployments only honour camelCase query params; zero results is not an error.
        try:
            alt = self._time_entries_with_params(start, end, CAMEL)
        except ApiError as exc:
            logger.debug("camelCase retry failed: %s", exc)
            return primary, SNAKE
        if len(alt) > len(primary):
            return alt, CAMEL
        return primary, SNAKE

    def _time_entries_with_params(self, start: str, end: str, style: str) -> List[TimeEntry]:
        if style == CAMEL:
            params = {"startDate": start, "endDate": end}
        else:
            params = {"start_date": start, "end_date": end}
        resp = self._get("/time-entries", params=params)
        if resp.status_code >= 300:
            raise ApiError(f"{resp.status_code} {_first_line(resp.text)}")
        return parse_time_entries(resp.text)


def parse_time_entries(body: str) -> List[TimeEntry]:
    try:
        value = json.loads(body)
    except ValueError as exc:
        snippet = _first_line(body)
        raise ApiError(f"invalid json ({exc}) {snippet}".rstrip()) from exc

    if isinstance(value, dict) and value and all(_is_object_list(v) for v in value.values()):
        out: List[TimeEntry] = []
        for items in value.values():
            out.extend(TimeEntry.from_dict(item) for item in items)
        return out

    found = extract_list(value, LIST_KEYS)
    if found is None:
        raise ApiError(f"json without list (keys: {', '.join(LIST_KEYS)})")
    return [TimeEntry.from_dict(item) for item in found]


def _is_object_list(value: object) -> bool:
    return isinstance(value, list) and all(isinstance(item, dict) for item in value)


def extract_list(value: object, keys: Sequence[str]) -> Optional[list]:
    """Find the first list of objects under ``keys``, searching nested mappings."""
    if isinstance(value, list):
        return value if _is_object_list(value) else None
    if isinstance(value, dict):
        for key in keys:
            if key in value and _is_object_list(value[key]):
                return value[key]
        for item in value.values():
            found = extract_list(item, keys)
            if found is not None:
                return found
    return None
