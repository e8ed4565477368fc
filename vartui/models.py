"""Value types shared by the API client, the session state machine and the UI."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

DEFAULT_BASE_URL = "https://var.elaniin.com/api"
DEFAULT_THEME = "tokyo-night"


@dataclass(frozen=True)
class Entry:
    project: str
    hours: float
    note: str

    def to_dict(self) -> Dict[str, object]:
        return {"project": self.project, "hours": self.hours, "note": self.note}


@dataclass(frozen=True)
class Day:
    date: str
    entries: List[Entry] = field(default_factory=list)

    def total_hours(self) -> float:
        return sum(e.hours for e in self.entries)

    def to_dict(self) -> Dict[str, object]:
        return {"date": self.date, "entries": [e.to_dict() for e in self.entries]}


@dataclass(frozen=True)
class Project:
    id: int
    name: str
    client_name: str = ""


@dataclass
class TimeEntry:
    """Raw time entry as returned by ``GET /time-entries``."""
    date: str
    description: str = ""
    project_id: int = 0
    project_ref_id: int = 0
    project_ref_name: str = ""
    project_name: str = ""
    minutes: int = 0

    @classmethod
    def from_dict(cls, raw: Dict[str, object]) -> "TimeEntry":
        project = raw.get("project") if isinstance(raw.get("project"), dict) else {}
        return cls(
            date=str(raw.get("date") or ""),
            description=str(raw.get("description") or ""),
            project_id=_as_int(raw.get("projectId")),
            project_ref_id=_as_int(project.get("id")),
            project_ref_name=str(project.get("name") or ""),
            project_name=str(raw.get("projectName") or ""),
            minutes=_as_int(raw.get("minutes")),
        )


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


@dataclass(frozen=True)
class DateRange:
    start: str
    end: str

    def label(self) -> str:
        return f"{self.start}..{self.end}"


@dataclass
class Config:
    token: str = ""
    base_url: str = DEFAULT_BASE_URL
    default_date_range: Optional[str] = None
    theme: str = DEFAULT_THEME

    @classmethod
    def from_dict(cls, raw: Dict[str, object]) -> "Config":
        cfg = cls()
        if not isinstance(raw, dict):
            return cfg
        if raw.get("var_token") is not None:
            cfg.token = str(raw.get("var_token"))
        if raw.get("base_url") is not None:
            cfg.base_url = str(raw.get("base_url"))
        dr = raw.get("default_date_range")
        cfg.default_date_range = str(dr) if dr not in (None, "") else None
        if raw.get("theme"):
            cfg.theme = str(raw.get("theme"))
        return cfg

    def to_dict(self) -> Dict[str, object]:
        return {
            "var_token": self.token,
            "base_url": self.base_url,
            "default_date_range": self.default_date_range,
            "theme": self.theme,
        }
