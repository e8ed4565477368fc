"""Session state machine shared by the terminal UI and the automation server.

Every mutation happens through an ``App`` method; neither driver touches the
fields directly except through the accessors below. The active input mode is
one of four mode records, and the entry/config forms live inside their mode
record so a form exists exactly while its mode is active.
"""
from __future__ import annotations

import datetime as dt
import enum
import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, ClassVar, List, Optional, Union

from .api_client import ApiClient
from .background import ClientFactory, DaysResult, ProjectsResult, spawn_load, spawn_load_projects
from .config import ConfigError, effective_base_url, effective_token, load_config, save_config
from .models import DEFAULT_BASE_URL, DEFAULT_THEME, Config, DateRange, Day, Entry, Project
from .parsing import (
    RangeError,
    build_empty_days,
    format_minutes,
    initial_date_range,
    parse_date_range,
    parse_minutes,
)
from .themes import cycle_theme, normalize_theme_key

logger = logging.getLogger(__name__)

PROJECT_FILTER_LIMIT = 20
RANGE_INPUT_LIMIT = 64
POLL_INTERVAL = 0.05


class InputMode(enum.Enum):
    NORMAL = "n"
    EDITING = "e"
    ADDING_ENTRY = "a"
    CONFIGURING = "c"


class AppFocus(enum.Enum):
    DAYS = "d"
    ENTRIES = "e"


class FormField(enum.Enum):
    DATE = "d"
    PROJECT = "p"
    DESCRIPTION = "n"
    MINUTES = "m"
    BILLABLE = "b"


FORM_FIELD_ORDER = [FormField.DATE, FormField.PROJECT, FormField.DESCRIPTION, FormField.MINUTES, FormField.BILLABLE]


class ConfigField(enum.Enum):
    TOKEN = "t"
    BASE_URL = "u"
    DEFAULT_RANGE = "r"
    THEME = "h"


CONFIG_FIELD_ORDER = [ConfigField.TOKEN, ConfigField.BASE_URL, ConfigField.DEFAULT_RANGE, ConfigField.THEME]


def _step(order: list, current, delta: int):
    return order[(order.index(current) + delta) % len(order)]


@dataclass
class EntryForm:
    date: str
    description: str = ""
    minutes: str = ""
    is_billable: bool = True
    focused: FormField = FormField.DATE
    project_search: str = ""
    filtered_indices: List[int] = field(default_factory=list)
    cursor: Optional[int] = None
    selected_project: Optional[Project] = None

    @classmethod
    def from_entry(cls, date: str, entry: Entry) -> "EntryForm":
        return cls(
            date=date,
            description=entry.note,
            minutes=format_minutes(round(entry.hours * 60)),
            focused=FormField.DESCRIPTION,
            project_search=entry.project,
        )

    def next_field(self) -> None:
        self.focused = _step(FORM_FIELD_ORDER, self.focused, 1)

    def prev_field(self) -> None:
        self.focused = _step(FORM_FIELD_ORDER, self.focused, -1)


@dataclass
class ConfigForm:
    token: str
    base_url: str
    default_range: str
    theme: str = DEFAULT_THEME
    focused: ConfigField = ConfigField.TOKEN

    def get(self, f: ConfigField) -> str:
        return {
            ConfigField.TOKEN: self.token,
            ConfigField.BASE_URL: self.base_url,
            ConfigField.DEFAULT_RANGE: self.default_range,
            ConfigField.THEME: self.theme,
        }[f]

    def set(self, f: ConfigField, value: str) -> None:
        if f is ConfigField.TOKEN:
            self.token = value
        elif f is ConfigField.BASE_URL:
            self.base_url = value
        elif f is ConfigField.DEFAULT_RANGE:
            self.default_range = value
        else:
            self.theme = value


@dataclass
class NormalMode:
    kind: ClassVar[InputMode] = InputMode.NORMAL


@dataclass
class EditingMode:
    buffer: str = ""
    kind: ClassVar[InputMode] = InputMode.EDITING


@dataclass
class AddingEntryMode:
    form: EntryForm
    kind: ClassVar[InputMode] = InputMode.ADDING_ENTRY


@dataclass
class ConfiguringMode:
    form: ConfigForm
    kind: ClassVar[InputMode] = InputMode.CONFIGURING


Mode = Union[NormalMode, EditingMode, AddingEntryMode, ConfiguringMode]


class App:
    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        client_factory: ClientFactory = ApiClient,
        config_saver: Callable[[Config], None] = save_config,
    ):
        self.config = config if config is not None else load_config()
        self.client_factory = client_factory
        self.config_saver = config_saver

        self.date_range = initial_date_range()
        if self.config.default_date_range:
            try:
                self.date_range = parse_date_range(self.config.default_date_range)
            except RangeError as exc:
                logger.warning("Ignoring configured range %r: %s", self.config.default_date_range, exc)

        self.days: List[Day] = []
        self.day_index: Optional[int] = None
        self.entry_index: Optional[int] = None
        self.focus = AppFocus.DAYS
        self.mode: Mode = NormalMode()
        self.projects: List[Project] = []
        self.status = "loading..."

        self._days_future: Optional[Future] = None
        self._projects_future: Optional[Future] = None

        self.set_days(build_empty_days(self.date_range))
        self._projects_future = spawn_load_projects(self.config, self.client_factory)
        self._days_future = spawn_load(self.date_range, self.config, self.client_factory)

    @classmethod
    def headless(cls, **kwargs) -> "App":
        """Same state as the interactive app; used by the automation server."""
        return cls(**kwargs)

    # ----- mode accessors -----
    @property
    def input_mode(self) -> InputMode:
        return self.mode.kind

    @property
    def input(self) -> str:
        return self.mode.buffer if isinstance(self.mode, EditingMode) else ""

    @property
    def entry_form(self) -> Optional[EntryForm]:
        return self.mode.form if isinstance(self.mode, AddingEntryMode) else None

    @property
    def config_form(self) -> Optional[ConfigForm]:
        return self.mode.form if isinstance(self.mode, ConfiguringMode) else None

    # ----- days & selection -----
    def set_days(self, days: List[Day]) -> None:
        self.days = list(days)
        if not self.days:
            self.day_index = None
        else:
            self.day_index = min(self.day_index or 0, len(self.days) - 1)
        self._clamp_entry_selection()

    def _clamp_entry_selection(self) -> None:
        if self.focus is not AppFocus.ENTRIES:
            self.entry_index = None
            return
        day = self.selected_day()
        if day is None or not day.entries:
            self.focus_days()
            return
        self.entry_index = min(self.entry_index or 0, len(day.entries) - 1)

    def selected_day(self) -> Optional[Day]:
        if self.day_index is None or not (0 <= self.day_index < len(self.days)):
            return None
        return self.days[self.day_index]

    def selected_entry(self) -> Optional[Entry]:
        day = self.selected_day()
        if day is None or self.entry_index is None or not (0 <= self.entry_index < len(day.entries)):
            return None
        return day.entries[self.entry_index]

    def next_day(self) -> None:
        if not self.days:
            return
        idx = self.day_index
        self.day_index = idx + 1 if idx is not None and idx + 1 < len(self.days) else 0
        self._clamp_entry_selection()

    def previous_day(self) -> None:
        if not self.days:
            return
        idx = self.day_index
        self.day_index = len(self.days) - 1 if not idx else idx - 1
        self._clamp_entry_selection()

    def focus_entries(self) -> None:
        day = self.selected_day()
        if day is not None and day.entries:
            self.focus = AppFocus.ENTRIES
            self.entry_index = 0

    def focus_days(self) -> None:
        self.focus = AppFocus.DAYS
        self.entry_index = None

    def next_entry(self) -> None:
        day = self.selected_day()
        if self.focus is not AppFocus.ENTRIES or day is None or not day.entries:
            return
        idx = self.entry_index
        self.entry_index = idx + 1 if idx is not None and idx + 1 < len(day.entries) else 0

    def previous_entry(self) -> None:
        day = self.selected_day()
        if self.focus is not AppFocus.ENTRIES or day is None or not day.entries:
            return
        idx = self.entry_index
        self.entry_index = len(day.entries) - 1 if not idx else idx - 1

    # ----- background loading -----
    def refresh(self) -> None:
        self.status = "refreshing..."
        self._days_future = spawn_load(self.date_range, self.config, self.client_factory)

    def reload_projects(self) -> None:
        self._projects_future = spawn_load_projects(self.config, self.client_factory)

    @property
    def has_pending_load(self) -> bool:
        return self._days_future is not None or self._projects_future is not None

    def check_background_load(self) -> bool:
        """Merge finished fetches; returns True when state changed."""
        changed = False
        fut = self._days_future
        if fut is not None and fut.done():
            self._days_future = None
            self._apply_days_result(fut)
            changed = True
        fut = self._projects_future
        if fut is not None and fut.done():
            self._projects_future = None
            self._apply_projects_result(fut)
            changed = True
        return changed

    def _apply_days_result(self, fut: Future) -> None:
        exc = fut.exception()
        if exc is not None:
            self.status = f"load error: {exc}"
            return
        res: DaysResult = fut.result()
        if res.ok:
            self.set_days(res.days)
        self.status = res.status

    def _apply_projects_result(self, fut: Future) -> None:
        exc = fut.exception()
        if exc is not None:
            self.status = f"projects error: {exc}"
            return
        res: ProjectsResult = fut.result()
        if res.error is not None:
            self.status = f"projects error: {res.error}"
            return
        self.projects = list(res.projects)
        self.status = f"projects loaded: {len(self.projects)}"
        if self.entry_form is not None and self.entry_form.selected_project is None:
            self.update_project_filter()

    def wait_background_load(self, timeout: float) -> None:
        """Poll until both fetches landed or ``timeout`` seconds passed."""
        deadline = time.monotonic() + max(0.0, timeout)
        while True:
            self.check_background_load()
            if not self.has_pending_load or time.monotonic() >= deadline:
                return
            time.sleep(POLL_INTERVAL)

    # ----- range editor -----
    def start_input(self) -> bool:
        if not isinstance(self.mode, NormalMode):
            return False
        self.mode = EditingMode(buffer=self.date_range.label())
        return True

    def cancel_input(self) -> None:
        if isinstance(self.mode, EditingMode):
            self.mode = NormalMode()

    def set_input(self, text: str) -> None:
        if isinstance(self.mode, EditingMode):
            self.mode.buffer = text

    def input_push(self, ch: str) -> None:
        if not isinstance(self.mode, EditingMode):
            return
        if ch.isascii() and ch.isprintable() and len(self.mode.buffer) < RANGE_INPUT_LIMIT:
            self.mode.buffer += ch

    def input_backspace(self) -> None:
        if isinstance(self.mode, EditingMode):
            self.mode.buffer = self.mode.buffer[:-1]

    def submit_input(self) -> bool:
        if not isinstance(self.mode, EditingMode):
            return False
        try:
            new_range = parse_date_range(self.mode.buffer)
        except RangeError as exc:
            self.status = f"status: {exc}"
            return False
        self.date_range = new_range
        self.mode = NormalMode()
        self.set_days(build_empty_days(self.date_range))
        self.refresh()
        return True

    # ----- add / duplicate entry -----
    def open_add_entry(self) -> bool:
        if not isinstance(self.mode, NormalMode):
            return False
        day = self.selected_day()
        default_date = day.date if day is not None else dt.date.today().isoformat()
        self.mode = AddingEntryMode(form=EntryForm(date=default_date))
        self.update_project_filter()
        return True

    def open_duplicate_entry(self) -> bool:
        if not isinstance(self.mode, NormalMode) or self.focus is not AppFocus.ENTRIES:
            return False
        day = self.selected_day()
        entry = self.selected_entry()
        if day is None or entry is None:
            return False
        self.mode = AddingEntryMode(form=EntryForm.from_entry(day.date, entry))
        self.update_project_filter()
        return True

    def close_add_entry(self) -> None:
        if isinstance(self.mode, AddingEntryMode):
            self.mode = NormalMode()

    def form_next_field(self) -> None:
        form = self.entry_form
        if form is not None:
            form.next_field()

    def form_prev_field(self) -> None:
        form = self.entry_form
        if form is not None:
            form.prev_field()

    def form_input_push(self, ch: str) -> None:
        form = self.entry_form
        if form is None:
            return
        if form.focused is FormField.DATE:
            form.date += ch
        elif form.focused is FormField.PROJECT:
            self.set_project_search(form.project_search + ch)
        elif form.focused is FormField.DESCRIPTION:
            form.description += ch
        elif form.focused is FormField.MINUTES:
            form.minutes += ch
        elif ch == ' ':
            form.is_billable = not form.is_billable

    def form_input_backspace(self) -> None:
        form = self.entry_form
        if form is None:
            return
        if form.focused is FormField.DATE:
            form.date = form.date[:-1]
        elif form.focused is FormField.PROJECT:
            self.set_project_search(form.project_search[:-1])
        elif form.focused is FormField.DESCRIPTION:
            form.description = form.description[:-1]
        elif form.focused is FormField.MINUTES:
            form.minutes = form.minutes[:-1]

    def set_project_search(self, text: str) -> None:
        """Replace the search text; a resolved project never survives an edit."""
        form = self.entry_form
        if form is None:
            return
        form.project_search = text
        form.selected_project = None
        self.update_project_filter()

    def set_project_id(self, project_id: int) -> Optional[Project]:
        form = self.entry_form
        if form is None:
            return None
        project = next((p for p in self.projects if p.id == project_id), None)
        if project is None:
            self.set_project_search(str(project_id))
            return None
        form.project_search = project.name
        form.selected_project = project
        form.filtered_indices = []
        form.cursor = None
        return project

    def update_project_filter(self) -> None:
        form = self.entry_form
        if form is None:
            return
        query = form.project_search.lower()
        if not query:
            indices = list(range(min(len(self.projects), PROJECT_FILTER_LIMIT)))
        else:
            indices = [i for i, p in enumerate(self.projects) if query in p.name.lower()][:PROJECT_FILTER_LIMIT]
        form.filtered_indices = indices
        form.cursor = 0 if indices else None

    def filtered_projects(self) -> List[Project]:
        form = self.entry_form
        if form is None:
            return []
        return [self.projects[i] for i in form.filtered_indices if 0 <= i < len(self.projects)]

    def form_nav_up(self) -> None:
        form = self.entry_form
        if form is None or form.focused is not FormField.PROJECT or not form.filtered_indices:
            return
        i = form.cursor or 0
        if i > 0:
            form.cursor = i - 1

    def form_nav_down(self) -> None:
        form = self.entry_form
        if form is None or form.focused is not FormField.PROJECT or not form.filtered_indices:
            return
        i = form.cursor or 0
        if i + 1 < len(form.filtered_indices):
            form.cursor = i + 1

    def select_filtered_project(self, index: int, move_next: bool = True) -> Optional[Project]:
        """Resolve the project at ``index`` of the filtered list, closing the dropdown."""
        form = self.entry_form
        if form is None or not (0 <= index < len(form.filtered_indices)):
            return None
        project_idx = form.filtered_indices[index]
        if not (0 <= project_idx < len(self.projects)):
            return None
        project = self.projects[project_idx]
        form.selected_project = project
        form.project_search = project.name
        form.filtered_indices = []
        form.cursor = None
        if move_next:
            form.next_field()
        return project

    def form_enter(self) -> None:
        form = self.entry_form
        if form is None:
            return
        if form.focused is FormField.PROJECT and form.cursor is not None:
            if self.select_filtered_project(form.cursor) is not None:
                return
        if form.focused is FormField.BILLABLE:
            self.submit_entry()
        else:
            form.next_field()

    def submit_entry(self) -> bool:
        form = self.entry_form
        if form is None:
            return False
        if form.selected_project is not None:
            project_id = form.selected_project.id
        else:
            try:
                project_id = int(form.project_search.strip())
            except ValueError:
                project_id = 0

        if not form.date or project_id <= 0 or not form.description or not form.minutes:
            self.status = "error: empty fields or invalid project"
            return False
        minutes = parse_minutes(form.minutes)
        if minutes == 0:
            self.status = "error: invalid time (zero or bad format)"
            return False

        self.status = "creating entry..."
        try:
            client = self.client_factory(effective_base_url(self.config), effective_token(self.config))
            client.create_time_entry(form.date, project_id, form.description, minutes, form.is_billable)
        except Exception as exc:
            logger.warning("Create entry failed: %s", exc)
            self.status = f"create error: {exc}"
            return False
        logger.info("Entry created: %s project=%s minutes=%s", form.date, project_id, minutes)
        self.close_add_entry()
        self.refresh()
        self.status = "entry created!"
        return True

    # ----- config form -----
    def open_config(self) -> bool:
        if not isinstance(self.mode, NormalMode):
            return False
        self.mode = ConfiguringMode(form=ConfigForm(
            token=effective_token(self.config),
            base_url=effective_base_url(self.config),
            default_range=self.config.default_date_range or "",
            theme=normalize_theme_key(self.config.theme),
        ))
        self.status = "Configuring..."
        return True

    def close_config(self) -> None:
        if isinstance(self.mode, ConfiguringMode):
            self.mode = NormalMode()
            self.status = "Cancelled"

    def save_config_form(self) -> bool:
        form = self.config_form
        if form is None:
            return False
        dr = form.default_range.strip()
        new_config = Config(
            token=form.token.strip(),
            base_url=form.base_url.strip(),
            default_date_range=dr or None,
            theme=normalize_theme_key(form.theme),
        )
        try:
            self.config_saver(new_config)
        except ConfigError as exc:
            self.status = f"Save error: {exc}"
            return False
        self.config = new_config
        if new_config.default_date_range:
            try:
                self.date_range = parse_date_range(new_config.default_date_range)
            except RangeError as exc:
                logger.info("Stored range %r not applied: %s", new_config.default_date_range, exc)
            else:
                self.set_days(build_empty_days(self.date_range))
        self.mode = NormalMode()
        self.refresh()
        self.status = "Configuration saved!"
        return True

    def config_next_field(self) -> None:
        form = self.config_form
        if form is not None:
            form.focused = _step(CONFIG_FIELD_ORDER, form.focused, 1)

    def config_prev_field(self) -> None:
        form = self.config_form
        if form is not None:
            form.focused = _step(CONFIG_FIELD_ORDER, form.focused, -1)

    def config_input(self, ch: str) -> None:
        form = self.config_form
        if form is None or form.focused is ConfigField.THEME:
            return
        form.set(form.focused, form.get(form.focused) + ch)

    def config_backspace(self) -> None:
        form = self.config_form
        if form is None or form.focused is ConfigField.THEME:
            return
        form.set(form.focused, form.get(form.focused)[:-1])

    def config_clear_field(self, target: Optional[ConfigField] = None) -> None:
        form = self.config_form
        if form is None:
            return
        target = target or form.focused
        if target is ConfigField.THEME:
            self.config_set_theme_value("")
        else:
            form.set(target, "")

    def config_set_theme_value(self, value: str) -> None:
        form = self.config_form
        if form is not None:
            form.theme = normalize_theme_key(value)

    def config_theme_next(self) -> None:
        form = self.config_form
        if form is not None:
            form.theme = cycle_theme(form.theme, 1)

    def config_theme_previous(self) -> None:
        form = self.config_form
        if form is not None:
            form.theme = cycle_theme(form.theme, -1)

    def config_reset_defaults(self) -> None:
        form = self.config_form
        if form is None:
            return
        form.base_url = DEFAULT_BASE_URL
        form.default_range = ""
        form.theme = DEFAULT_THEME
        self.status = "Defaults restored (token kept)"
