"""Background fetches handed back to the foreground loop through one-shot futures.

A fetch runs on its own daemon thread and resolves a ``Future`` exactly once.
The foreground loop only ever calls ``Future.done()``/``result()`` on futures
that are done, so polling never blocks. Superseding a fetch means replacing
the stored future; the old thread still finishes but nobody reads its result.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .api_client import ApiClient
from .config import effective_base_url, effective_token
from .models import Config, DateRange, Day, Project

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], ApiClient]


@dataclass
class DaysResult:
    days: List[Day] = field(default_factory=list)
    status: str = ""
    ok: bool = True


@dataclass
class ProjectsResult:
    projects: List[Project] = field(default_factory=list)
    error: Optional[str] = None


def run_in_thread(fn: Callable[[], object], name: str) -> Future:
    fut: Future = Future()

    def worker():
        try:
            fut.set_result(fn())
        except Exception as exc:
            logger.exception("Background task %s failed", name)
            fut.set_exception(exc)

    threading.Thread(target=worker, name=f"vartui-{name}", daemon=True).start()
    return fut


def spawn_load(date_range: DateRange, cfg: Config, client_factory: ClientFactory = ApiClient) -> Future:
    """Fetch the days of ``date_range``; resolves to a DaysResult, never raises."""
    token = effective_token(cfg)
    base_url = effective_base_url(cfg)

    def do_fetch() -> DaysResult:
        try:
            client = client_factory(base_url, token)
            res = client.fetch_days(date_range.start, date_range.end)
        except Exception as exc:
            logger.warning("Day fetch %s failed: %s", date_range.label(), exc)
            return DaysResult(days=[], status=f"load error: {exc}", ok=False)
        return DaysResult(days=res.days, status=f"updated: {len(res.days)} days")

    return run_in_thread(do_fetch, "days")


def spawn_load_projects(cfg: Config, client_factory: ClientFactory = ApiClient) -> Future:
    """Fetch the project list; resolves to a ProjectsResult, never raises."""
    token = effective_token(cfg)
    base_url = effective_base_url(cfg)

    def do_fetch() -> ProjectsResult:
        try:
            client = client_factory(base_url, token)
            return ProjectsResult(projects=client.fetch_projects_list())
        except Exception as exc:
            logger.warning("Project fetch failed: %s", exc)
            return ProjectsResult(error=str(exc))

    return run_in_thread(do_fetch, "projects")
