"""vartui: terminal client for a time-tracking API with a stdio automation server."""
import os

DEVELOPMENT_VERSION = "development"


def build_version() -> str:
    version = os.environ.get("VARTUI_RELEASE_VERSION", "")
    if version.strip():
        return version.strip()
    return DEVELOPMENT_VERSION


from .models import Config, DateRange, Day, Entry, Project, TimeEntry  # noqa: E402
from .app import App, AppFocus, InputMode  # noqa: E402
