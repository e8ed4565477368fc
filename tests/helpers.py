import datetime as dt
from typing import List, Optional

from vartui import parsing
from vartui.api_client import ApiError, FetchResult
from vartui.models import DateRange, Day, Entry, Project

FIXED_TODAY = dt.date(2024, 3, 15)


class FakeClient:
    """Stands in for ApiClient; records every call it receives."""

    def __init__(self, projects: Optional[List[Project]] = None, days: Optional[List[Day]] = None):
        self.projects = projects or []
        self.days = days
        self.created = []
        self.fetches = []
        self.create_error: Optional[str] = None
        self.fetch_error: Optional[str] = None
        self.credentials = []

    def __call__(self, base_url: str, token: str) -> "FakeClient":
        self.credentials.append((base_url, token))
        return self

    def fetch_projects_list(self) -> List[Project]:
        return list(self.projects)

    def fetch_days(self, start: str, end: str) -> FetchResult:
        self.fetches.append((start, end))
        if self.fetch_error:
            raise ApiError(self.fetch_error)
        if self.days is not None:
            return FetchResult(days=list(self.days))
        return FetchResult(days=parsing.build_empty_days(DateRange(start, end)))

    def create_time_entry(self, date, project_id, description, minutes, is_billable) -> None:
        if self.create_error:
            raise ApiError(self.create_error)
        self.created.append({
            "date": date,
            "project_id": project_id,
            "description": description,
            "minutes": minutes,
            "is_billable": is_billable,
        })


def sample_projects() -> List[Project]:
    return [
        Project(id=7, name="Alpha Site", client_name="Acme"),
        Project(id=8, name="Beta App", client_name="Acme"),
        Project(id=12, name="Internal", client_name="Elaniin"),
    ]


def many_projects(n: int) -> List[Project]:
    return [Project(id=i + 1, name=f"Project {i + 1:02d}", client_name="Bulk") for i in range(n)]


def sample_days() -> List[Day]:
    return [
        Day(date="2024-03-15", entries=[
            Entry(project="Alpha Site", hours=1.5, note="standup and review"),
            Entry(project="Beta App", hours=6.0, note="feature work"),
        ]),
        Day(date="2024-03-14", entries=[Entry(project="Internal", hours=9.0, note="planning")]),
        Day(date="2024-03-13", entries=[]),
    ]
