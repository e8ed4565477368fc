"""Headless automation server speaking framed JSON-RPC over stdio.

Each frame is ``Content-Length: N`` followed by a blank line and N bytes of
JSON. Sessions are independent ``App`` instances driven through the same key
dispatcher the terminal UI uses, so both front-ends stay in lockstep.
"""
from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml

from . import build_version
from .app import App, AppFocus, ConfigField, FormField, InputMode
from .keys import BACKSPACE, BACKTAB, CTRL_C, CTRL_R, CTRL_U, DOWN, ENTER, ESC, TAB, UP, handle_key
from .parsing import RangeError, parse_date_range

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "vartui-mcp"
TOOL_PREFIX = "vartui."
INITIAL_LOAD_TIMEOUT = 10.0

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601


class ToolError(Exception):
    """A tool call could not be carried out; reported as an error payload."""


class FramingError(Exception):
    """A frame could not be read. ``fatal`` is set when the stream is unusable."""

    def __init__(self, message: str, fatal: bool = False):
        super().__init__(message)
        self.fatal = fatal


# ----- framing -----
LENGTH_HEADER = b"content-length:"


class FrameReader:
    """Reads framed bodies from a binary stream.

    A frame without a usable ``Content-Length`` is reported once; its bytes are
    then skipped up to the next ``Content-Length:`` header so the following
    frame is still read.
    """

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self._pending: Optional[bytes] = None

    def _readline(self) -> bytes:
        if self._pending is not None:
            line, self._pending = self._pending, None
            return line
        return self.stream.readline()

    def _resync(self) -> None:
        while True:
            line = self.stream.readline()
            if not line:
                return
            pos = line.lower().find(LENGTH_HEADER)
            if pos >= 0:
                self._pending = line[pos:]
                return

    def read(self) -> Optional[str]:
        """Read one framed body; None at a clean end of input."""
        length: Optional[int] = None
        saw_header = False
        while True:
            line = self._readline()
            if not line:
                if saw_header:
                    raise FramingError("unexpected end of input in headers", fatal=True)
                return None
            if line in (b"\r\n", b"\n"):
                if not saw_header:
                    continue
                break
            saw_header = True
            name, sep, value = line.decode("latin-1").rstrip("\r\n").partition(":")
            if sep and name.strip().lower() == "content-length":
                try:
                    length = int(value.strip())
                except ValueError:
                    length = None
        if length is None or length < 0:
            self._resync()
            raise FramingError("missing Content-Length header")
        body = self.stream.read(length)
        if len(body) < length:
            raise FramingError(f"truncated body: expected {length} bytes, got {len(body)}", fatal=True)
        try:
            return body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FramingError(f"invalid utf-8: {exc}") from exc


def read_frame(stream: BinaryIO) -> Optional[str]:
    return FrameReader(stream).read()


def write_frame(stream: BinaryIO, message: Mapping[str, Any]) -> None:
    payload = json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    stream.write(f"Content-Length: {len(payload)}\r\n\r\n".encode("ascii"))
    stream.write(payload)
    stream.flush()


def rpc_result(rpc_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": rpc_id, "result": result}


def rpc_error(rpc_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": rpc_id, "error": {"code": code, "message": message}}


# ----- payload helpers -----
def clip_text(value: Optional[str], max_chars: int) -> str:
    """Flatten line breaks to spaces, then cut to ``max_chars`` with a ``~`` marker."""
    value = " ".join((value or "").splitlines())
    if len(value) <= max_chars:
        return value
    return value[:max_chars] + "~"


def mask_secret(value: Optional[str]) -> str:
    # At most half of the secret is ever shown, and never more than 4 chars.
    if not value:
        return ""
    keep = min(4, len(value) // 2)
    return "***" + (value[-keep:] if keep else "")


def encode_compact(value: Any) -> str:
    """Single-line YAML flow rendering; keys keep insertion order."""
    return yaml.safe_dump(
        value,
        default_flow_style=True,
        sort_keys=False,
        allow_unicode=True,
        width=float("inf"),
    ).strip()


def build_tool_result(content: Mapping[str, Any], include_structured: bool) -> Dict[str, Any]:
    result: Dict[str, Any] = {"content": [{"type": "text", "text": encode_compact(dict(content))}]}
    if include_structured:
        result["structuredContent"] = dict(content)
    return result


def tool_error_result(message: str) -> Dict[str, Any]:
    payload = {"e": "er", "m": clip_text(message, 220)}
    return {"content": [{"type": "text", "text": encode_compact(payload)}], "isError": True}


# ----- argument parsing -----
Args = Mapping[str, Any]


def arg(args: Args, keys: Sequence[str]) -> Any:
    for key in keys:
        if key in args:
            return args[key]
    return None


def _string_value(value: Any, name: str) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    raise ToolError(f"{name} must be a string, number or bool")


def required_string(args: Args, keys: Sequence[str]) -> str:
    value = arg(args, keys)
    if value is None:
        raise ToolError(f"missing required field: {keys[0]}")
    return _string_value(value, keys[0])


def required_int(args: Args, keys: Sequence[str]) -> int:
    value = arg(args, keys)
    if value is None:
        raise ToolError(f"missing required field: {keys[0]}")
    if isinstance(value, bool):
        raise ToolError(f"{keys[0]} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ToolError(f"{keys[0]} must be an integer")


def optional_index(args: Args, keys: Sequence[str], default: int = 0) -> int:
    value = arg(args, keys)
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return default


def parse_boolish(raw: Any) -> Optional[bool]:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int):
        return {1: True, 0: False}.get(raw)
    if isinstance(raw, str):
        value = raw.strip().lower()
        if value in ("1", "true", "yes", "y"):
            return True
        if value in ("0", "false", "no", "n"):
            return False
    return None


def bool_arg(args: Args, keys: Sequence[str], default: bool) -> bool:
    raw = arg(args, keys)
    if raw is None:
        return default
    value = parse_boolish(raw)
    if value is None:
        raise ToolError(f"{keys[0]} must be a bool")
    return value


def parse_limit(raw: Any, default: int, maximum: int) -> int:
    if raw is None:
        return default
    if isinstance(raw, int) and not isinstance(raw, bool) and raw >= 0:
        value = raw
    elif isinstance(raw, str) and raw.strip().isdigit():
        value = int(raw.strip())
    else:
        raise ToolError("limits must be positive integers")
    if value == 0:
        raise ToolError("limits must be greater than 0")
    return min(value, maximum)


# ----- snapshots -----
class SnapshotView(enum.IntEnum):
    NONE = 0
    TINY = 1
    NORMAL = 2
    FULL = 3


VIEW_NAMES = {
    "none": SnapshotView.NONE, "0": SnapshotView.NONE,
    "tiny": SnapshotView.TINY, "t": SnapshotView.TINY,
    "normal": SnapshotView.NORMAL, "n": SnapshotView.NORMAL,
    "full": SnapshotView.FULL, "f": SnapshotView.FULL,
}


def parse_view(raw: Any, default: SnapshotView) -> SnapshotView:
    if raw is None:
        return default
    if not isinstance(raw, str):
        raise ToolError("view must be a string")
    value = raw.strip().lower()
    try:
        return VIEW_NAMES[value]
    except KeyError:
        raise ToolError(f"invalid view: {value}") from None


@dataclass
class ResponseOptions:
    view: SnapshotView
    max_days: int = 14
    max_entries: int = 20
    include_structured: bool = False


def parse_response_options(args: Args, default_view: SnapshotView) -> ResponseOptions:
    return ResponseOptions(
        view=parse_view(arg(args, ("view", "vw")), default_view),
        max_days=parse_limit(arg(args, ("max_days", "md")), 14, 120),
        max_entries=parse_limit(arg(args, ("max_entries_per_day", "me")), 20, 300),
        include_structured=bool_arg(args, ("structured", "stc"), False),
    )


def tiny_snapshot(session_id: str, app: App) -> Dict[str, Any]:
    return {
        "sid": session_id,
        "im": app.input_mode.value,
        "fc": app.focus.value,
        "dr": app.date_range.label(),
        "di": app.day_index,
        "ei": app.entry_index,
        "dc": len(app.days),
        "pc": len(app.projects),
        "st": clip_text(app.status, 120),
    }


def normal_snapshot(session_id: str, app: App) -> Dict[str, Any]:
    snap = tiny_snapshot(session_id, app)
    day = app.selected_day()
    snap["sd"] = {"d": clip_text(day.date, 32), "ec": len(day.entries), "th": day.total_hours()} if day else None
    entry = app.selected_entry()
    snap["se"] = {"p": clip_text(entry.project, 48), "h": entry.hours, "n": clip_text(entry.note, 140)} if entry else None
    form = app.entry_form
    snap["ef"] = {
        "f": form.focused.value,
        "d": clip_text(form.date, 32),
        "p": clip_text(form.project_search, 48),
        "m": clip_text(form.minutes, 16),
        "b": form.is_billable,
        "fc": len(form.filtered_indices),
    } if form else None
    cfg = app.config_form
    snap["cf"] = {
        "f": cfg.focused.value,
        "u": clip_text(cfg.base_url, 96),
        "r": clip_text(cfg.default_range, 48),
        "th": clip_text(cfg.theme, 40),
        "v": build_version(),
        "t": mask_secret(cfg.token),
    } if cfg else None
    return snap


def full_snapshot(session_id: str, app: App, max_days: int, max_entries: int) -> Dict[str, Any]:
    snap = normal_snapshot(session_id, app)
    snap["ds"] = [
        {
            "d": clip_text(day.date, 32),
            "th": day.total_hours(),
            "ec": len(day.entries),
            "e": [
                {"p": clip_text(e.project, 64), "h": e.hours, "n": clip_text(e.note, 220)}
                for e in day.entries[:max_entries]
            ],
        }
        for day in app.days[:max_days]
    ]
    return snap


def build_snapshot(session_id: str, app: App, options: ResponseOptions) -> Optional[Dict[str, Any]]:
    if options.view is SnapshotView.NONE:
        return None
    if options.view is SnapshotView.TINY:
        return tiny_snapshot(session_id, app)
    if options.view is SnapshotView.NORMAL:
        return normal_snapshot(session_id, app)
    return full_snapshot(session_id, app, options.max_days, options.max_entries)


# ----- key sequences -----
NAMED_KEYS = {
    "up": UP,
    "down": DOWN,
    "left": "h",
    "right": "l",
    "enter": ENTER,
    "esc": ESC,
    "tab": TAB,
    "backtab": BACKTAB,
    "backspace": BACKSPACE,
    "space": " ",
    "ctrl+c": CTRL_C,
    "ctrl+r": CTRL_R,
    "ctrl+u": CTRL_U,
}
for _letter in "jkhlqrfndc":
    NAMED_KEYS[_letter] = _letter


def parse_key_sequence(key: str, text: Optional[str] = None) -> List[str]:
    if key == "text":
        if text is None:
            raise ToolError("key=text requires a text argument")
        if not text:
            raise ToolError("text must not be empty")
        return list(text)
    if key.startswith("char:"):
        ch = key[len("char:"):]
        if not ch:
            raise ToolError("char: requires a character")
        return [ch[0]]
    try:
        return [NAMED_KEYS[key]]
    except KeyError:
        raise ToolError(f"unsupported key: {key}. Use text, char:<x> or a TUI key") from None


def run_key_sequence(app: App, keys: Sequence[str]) -> bool:
    """Feed keys through the dispatcher; True when one of them requested exit."""
    for key in keys:
        if handle_key(app, key):
            return True
        app.check_background_load()
    return False


# ----- actions -----
class Action(enum.Enum):
    NOOP = "noop"
    REFRESH = "refresh"
    FOCUS_DAYS = "focus_days"
    FOCUS_ENTRIES = "focus_entries"
    NEXT_DAY = "next_day"
    PREVIOUS_DAY = "previous_day"
    NEXT_ENTRY = "next_entry"
    PREVIOUS_ENTRY = "previous_entry"
    OPEN_DUPLICATE_ENTRY = "open_duplicate_entry"
    OPEN_ADD_ENTRY = "open_add_entry"
    CLOSE_ADD_ENTRY = "close_add_entry"
    SUBMIT_ENTRY = "submit_entry"
    ENTRY_NEXT_FIELD = "entry_next_field"
    ENTRY_PREV_FIELD = "entry_prev_field"
    ENTRY_ENTER = "entry_enter"
    ENTRY_NAV_UP = "entry_nav_up"
    ENTRY_NAV_DOWN = "entry_nav_down"
    ENTRY_BACKSPACE = "entry_backspace"
    TOGGLE_BILLABLE = "toggle_billable"
    SET_ENTRY_FIELD = "set_entry_field"
    SELECT_PROJECT = "select_project"
    OPEN_CONFIG = "open_config"
    CLOSE_CONFIG = "close_config"
    SAVE_CONFIG = "save_config"
    CONFIG_NEXT_FIELD = "config_next_field"
    CONFIG_BACKSPACE = "config_backspace"
    CONFIG_RESET_DEFAULTS = "config_reset_defaults"
    CONFIG_CLEAR_FIELD = "config_clear_field"
    SET_CONFIG_FIELD = "set_config_field"
    OPEN_RANGE_EDITOR = "open_range_editor"
    SUBMIT_RANGE = "submit_range"
    CANCEL_RANGE_EDITOR = "cancel_range_editor"
    SET_RANGE = "set_range"
    SEND_KEY = "send_key"
    TYPE_TEXT = "type_text"


ACTION_ALIASES: Dict[str, Action] = {
    "n": Action.NEXT_DAY,
    "nd": Action.NEXT_DAY,
    "p": Action.PREVIOUS_DAY,
    "pd": Action.PREVIOUS_DAY,
    "ne": Action.NEXT_ENTRY,
    "pe": Action.PREVIOUS_ENTRY,
    "fd": Action.FOCUS_DAYS,
    "fe": Action.FOCUS_ENTRIES,
    "rf": Action.REFRESH,
    "oa": Action.OPEN_ADD_ENTRY,
    "ca": Action.CLOSE_ADD_ENTRY,
    "se": Action.SUBMIT_ENTRY,
    "sf": Action.SET_ENTRY_FIELD,
    "sp": Action.SELECT_PROJECT,
    "tb": Action.TOGGLE_BILLABLE,
    "oc": Action.OPEN_CONFIG,
    "cc": Action.CLOSE_CONFIG,
    "sv": Action.SAVE_CONFIG,
    "scf": Action.SET_CONFIG_FIELD,
    "clf": Action.CONFIG_CLEAR_FIELD,
    "sr": Action.SET_RANGE,
    "sk": Action.SEND_KEY,
    "tt": Action.TYPE_TEXT,
    "dup": Action.OPEN_DUPLICATE_ENTRY,
}


def resolve_action(name: str) -> Action:
    if name in ACTION_ALIASES:
        return ACTION_ALIASES[name]
    try:
        return Action(name)
    except ValueError:
        raise ToolError(f"unsupported action: {name}") from None


FORM_FIELD_NAMES = {
    "date": FormField.DATE, "d": FormField.DATE,
    "project": FormField.PROJECT, "project_id": FormField.PROJECT, "p": FormField.PROJECT,
    "description": FormField.DESCRIPTION, "desc": FormField.DESCRIPTION, "n": FormField.DESCRIPTION,
    "minutes": FormField.MINUTES, "m": FormField.MINUTES,
    "billable": FormField.BILLABLE, "b": FormField.BILLABLE,
}

CONFIG_FIELD_NAMES = {
    "token": ConfigField.TOKEN, "t": ConfigField.TOKEN,
    "base_url": ConfigField.BASE_URL, "url": ConfigField.BASE_URL, "u": ConfigField.BASE_URL,
    "default_range": ConfigField.DEFAULT_RANGE, "range": ConfigField.DEFAULT_RANGE,
    "r": ConfigField.DEFAULT_RANGE,
    "theme": ConfigField.THEME, "th": ConfigField.THEME,
}


def parse_form_field(value: str) -> FormField:
    try:
        return FORM_FIELD_NAMES[value]
    except KeyError:
        raise ToolError(f"unsupported form field: {value}") from None


def parse_config_field(value: str) -> ConfigField:
    try:
        return CONFIG_FIELD_NAMES[value]
    except KeyError:
        raise ToolError(f"unsupported config field: {value}") from None


def _ensure_entry_form(app: App):
    if app.entry_form is None:
        app.open_add_entry()
    if app.entry_form is None:
        raise ToolError("entry form cannot be opened in the current mode")
    return app.entry_form


def _ensure_config_form(app: App):
    if app.config_form is None:
        app.open_config()
    if app.config_form is None:
        raise ToolError("config form cannot be opened in the current mode")
    return app.config_form


def toggle_billable(app: App, args: Args) -> None:
    form = _ensure_entry_form(app)
    form.is_billable = not form.is_billable


def set_entry_field(app: App, args: Args) -> None:
    form = _ensure_entry_form(app)
    name = required_string(args, ("field", "f"))
    if name in ("date", "d"):
        form.date = required_string(args, ("value", "v"))
    elif name in ("project", "project_search", "p"):
        app.set_project_search(required_string(args, ("value", "v")))
    elif name in ("project_id", "pid"):
        app.set_project_id(required_int(args, ("value", "v")))
    elif name in ("description", "desc", "n"):
        form.description = required_string(args, ("value", "v"))
    elif name in ("minutes", "m"):
        form.minutes = required_string(args, ("value", "v"))
    elif name in ("billable", "b"):
        form.is_billable = bool_arg(args, ("value", "v"), True)
    elif name in ("focused", "focus"):
        form.focused = parse_form_field(required_string(args, ("value", "v")))
    else:
        raise ToolError(f"unsupported entry field: {name}")


def select_project(app: App, args: Args) -> None:
    form = _ensure_entry_form(app)
    if not form.filtered_indices:
        app.update_project_filter()
    index = optional_index(args, ("index", "i"))
    move_next = bool_arg(args, ("move_next", "mn"), True)
    if app.select_filtered_project(index, move_next) is None:
        raise ToolError(f"no filtered project at index {index}")


def set_config_field(app: App, args: Args) -> None:
    form = _ensure_config_form(app)
    name = required_string(args, ("field", "f"))
    value = required_string(args, ("value", "v"))
    if name in ("focused", "focus"):
        form.focused = parse_config_field(value)
        return
    target = CONFIG_FIELD_NAMES.get(name)
    if target is None:
        raise ToolError(f"unsupported config field: {name}")
    if target is ConfigField.THEME:
        app.config_set_theme_value(value)
    else:
        form.set(target, value)


def clear_config_field(app: App, args: Args) -> None:
    _ensure_config_form(app)
    name = arg(args, ("field", "f"))
    if isinstance(name, str):
        app.config_clear_field(parse_config_field(name))
    else:
        app.config_clear_field()


def set_range(app: App, args: Args) -> None:
    value = required_string(args, ("value", "v", "range", "r"))
    try:
        parse_date_range(value)
    except RangeError as exc:
        raise ToolError(f"invalid range ({value}): {exc}") from exc
    if app.input_mode is not InputMode.EDITING and not app.start_input():
        raise ToolError("range editor cannot be opened in the current mode")
    app.set_input(value)
    app.submit_input()


SIMPLE_ACTIONS: Dict[Action, Callable[[App], Any]] = {
    Action.NOOP: lambda app: None,
    Action.REFRESH: App.refresh,
    Action.FOCUS_DAYS: App.focus_days,
    Action.FOCUS_ENTRIES: App.focus_entries,
    Action.NEXT_DAY: App.next_day,
    Action.PREVIOUS_DAY: App.previous_day,
    Action.NEXT_ENTRY: App.next_entry,
    Action.PREVIOUS_ENTRY: App.previous_entry,
    Action.OPEN_DUPLICATE_ENTRY: App.open_duplicate_entry,
    Action.OPEN_ADD_ENTRY: App.open_add_entry,
    Action.CLOSE_ADD_ENTRY: App.close_add_entry,
    Action.SUBMIT_ENTRY: App.submit_entry,
    Action.ENTRY_NEXT_FIELD: App.form_next_field,
    Action.ENTRY_PREV_FIELD: App.form_prev_field,
    Action.ENTRY_ENTER: App.form_enter,
    Action.ENTRY_NAV_UP: App.form_nav_up,
    Action.ENTRY_NAV_DOWN: App.form_nav_down,
    Action.ENTRY_BACKSPACE: App.form_input_backspace,
    Action.OPEN_CONFIG: App.open_config,
    Action.CLOSE_CONFIG: App.close_config,
    Action.SAVE_CONFIG: App.save_config_form,
    Action.CONFIG_NEXT_FIELD: App.config_next_field,
    Action.CONFIG_BACKSPACE: App.config_backspace,
    Action.CONFIG_RESET_DEFAULTS: App.config_reset_defaults,
    Action.OPEN_RANGE_EDITOR: App.start_input,
    Action.SUBMIT_RANGE: App.submit_input,
    Action.CANCEL_RANGE_EDITOR: App.cancel_input,
}

ARG_ACTIONS: Dict[Action, Callable[[App, Args], None]] = {
    Action.TOGGLE_BILLABLE: toggle_billable,
    Action.SET_ENTRY_FIELD: set_entry_field,
    Action.SELECT_PROJECT: select_project,
    Action.SET_CONFIG_FIELD: set_config_field,
    Action.CONFIG_CLEAR_FIELD: clear_config_field,
    Action.SET_RANGE: set_range,
}


def apply_action(app: App, action: Action, args: Args) -> bool:
    """Run one action; True when it asked the program to exit."""
    if action is Action.SEND_KEY:
        text = arg(args, ("text", "t"))
        keys = parse_key_sequence(required_string(args, ("key", "k")), text if isinstance(text, str) else None)
        return run_key_sequence(app, keys)
    if action is Action.TYPE_TEXT:
        return run_key_sequence(app, parse_key_sequence("text", required_string(args, ("text", "t"))))
    if action in ARG_ACTIONS:
        ARG_ACTIONS[action](app, args)
    else:
        SIMPLE_ACTIONS[action](app)
    app.check_background_load()
    return False


def parse_action_steps(args: Args) -> List[Tuple[Action, Args]]:
    if "actions" in args:
        items = args["actions"]
        if not isinstance(items, list):
            raise ToolError("actions must be a list")
        if not items:
            raise ToolError("actions must not be empty")
        steps = []
        for item in items:
            if not isinstance(item, dict):
                raise ToolError("each item in actions must be an object")
            steps.append((resolve_action(required_string(item, ("action", "a"))), item))
        return steps
    return [(resolve_action(required_string(args, ("action", "a"))), args)]


# ----- server -----
AppFactory = Callable[[], App]


class ServerState:
    """Owns every live session; only the request loop touches it."""

    def __init__(self, app_factory: Optional[AppFactory] = None, load_timeout: float = INITIAL_LOAD_TIMEOUT):
        self.app_factory = app_factory or App.headless
        self.load_timeout = load_timeout
        self.next_session_id = 0
        self.sessions: Dict[str, App] = {}

    def create_session(self) -> str:
        self.next_session_id += 1
        session_id = f"session-{self.next_session_id}"
        self.sessions[session_id] = self.app_factory()
        logger.info("Session %s created", session_id)
        return session_id

    def get_session(self, session_id: str) -> App:
        try:
            return self.sessions[session_id]
        except KeyError:
            raise ToolError(f"session not found: {session_id}") from None

    def close_session(self, session_id: str) -> bool:
        removed = self.sessions.pop(session_id, None) is not None
        if removed:
            logger.info("Session %s closed", session_id)
        return removed


def session_id_arg(args: Args) -> str:
    return required_string(args, ("session_id", "sid"))


def tool_session_create(args: Args, state: ServerState) -> Dict[str, Any]:
    options = parse_response_options(args, SnapshotView.TINY)
    session_id = state.create_session()
    app = state.get_session(session_id)
    app.wait_background_load(state.load_timeout)
    content = {"e": "sc", "sid": session_id, "s": build_snapshot(session_id, app, options)}
    return build_tool_result(content, options.include_structured)


def tool_session_snapshot(args: Args, state: ServerState) -> Dict[str, Any]:
    options = parse_response_options(args, SnapshotView.NORMAL)
    session_id = session_id_arg(args)
    app = state.get_session(session_id)
    app.check_background_load()
    content = {"e": "ss", "sid": session_id, "s": build_snapshot(session_id, app, options)}
    return build_tool_result(content, options.include_structured)


def tool_session_key(args: Args, state: ServerState) -> Dict[str, Any]:
    options = parse_response_options(args, SnapshotView.TINY)
    session_id = session_id_arg(args)
    key = required_string(args, ("key", "k"))
    text = arg(args, ("text", "t"))
    keys = parse_key_sequence(key, text if isinstance(text, str) else None)
    app = state.get_session(session_id)

    exit_requested = run_key_sequence(app, keys)
    snapshot = None
    if exit_requested:
        state.close_session(session_id)
    else:
        snapshot = build_snapshot(session_id, app, options)
    content = {"e": "sk", "sid": session_id, "k": clip_text(key, 32), "n": len(keys), "x": exit_requested, "s": snapshot}
    return build_tool_result(content, options.include_structured)


def tool_session_action(args: Args, state: ServerState) -> Dict[str, Any]:
    options = parse_response_options(args, SnapshotView.TINY)
    session_id = session_id_arg(args)
    steps = parse_action_steps(args)
    app = state.get_session(session_id)

    applied = 0
    last_action = ""
    names: List[str] = []
    exit_requested = False
    for action, step_args in steps:
        step_exit = apply_action(app, action, step_args)
        applied += 1
        last_action = action.value
        names.append(action.value)
        if step_exit:
            exit_requested = True
            break

    snapshot = None
    if exit_requested:
        state.close_session(session_id)
    else:
        snapshot = build_snapshot(session_id, app, options)
    content: Dict[str, Any] = {
        "e": "sa", "sid": session_id, "n": applied, "la": last_action, "x": exit_requested, "s": snapshot,
    }
    if options.view >= SnapshotView.NORMAL:
        content["as"] = names
    return build_tool_result(content, options.include_structured)


def tool_session_close(args: Args, state: ServerState) -> Dict[str, Any]:
    include_structured = bool_arg(args, ("structured", "stc"), False)
    session_id = session_id_arg(args)
    content = {"e": "sx", "sid": clip_text(session_id, 64), "c": state.close_session(session_id)}
    return build_tool_result(content, include_structured)


TOOLS: Dict[str, Callable[[Args, ServerState], Dict[str, Any]]] = {
    TOOL_PREFIX + "session.create": tool_session_create,
    TOOL_PREFIX + "session.snapshot": tool_session_snapshot,
    TOOL_PREFIX + "session.key": tool_session_key,
    TOOL_PREFIX + "session.action": tool_session_action,
    TOOL_PREFIX + "session.close": tool_session_close,
}


def _view_properties() -> Dict[str, Any]:
    return {
        "view": {"type": "string", "enum": ["none", "tiny", "normal", "full"]},
        "vw": {"type": "string", "enum": ["n", "t", "f", "0"]},
        "max_days": {"type": "integer", "minimum": 1, "maximum": 120},
        "md": {"type": "integer", "minimum": 1, "maximum": 120},
        "max_entries_per_day": {"type": "integer", "minimum": 1, "maximum": 300},
        "me": {"type": "integer", "minimum": 1, "maximum": 300},
        "structured": {"type": "boolean"},
        "stc": {"type": "boolean"},
    }


def _session_properties() -> Dict[str, Any]:
    return {"session_id": {"type": "string"}, "sid": {"type": "string"}}


def tool_catalog() -> List[Dict[str, Any]]:
    return [
        {
            "name": TOOL_PREFIX + "session.create",
            "description": "Create an isolated TUI session. Compact text output (default view=tiny).",
            "inputSchema": {"type": "object", "properties": _view_properties()},
        },
        {
            "name": TOOL_PREFIX + "session.snapshot",
            "description": "Read session state. Use view=tiny or view=none for smaller replies.",
            "inputSchema": {
                "type": "object",
                "required": ["session_id"],
                "properties": {**_session_properties(), **_view_properties()},
            },
        },
        {
            "name": TOOL_PREFIX + "session.key",
            "description": "Send one TUI keystroke (or key=text with text) exactly as the keyboard would.",
            "inputSchema": {
                "type": "object",
                "required": ["session_id", "key"],
                "properties": {
                    **_session_properties(),
                    "key": {"type": "string"}, "k": {"type": "string"},
                    "text": {"type": "string"}, "t": {"type": "string"},
                    **_view_properties(),
                },
            },
        },
        {
            "name": TOOL_PREFIX + "session.action",
            "description": "Semantic actions, single or batched. Short aliases accepted (a,f,v,k,t,i,sid,vw).",
            "inputSchema": {
                "type": "object",
                "required": ["session_id"],
                "properties": {
                    **_session_properties(),
                    "action": {"type": "string"}, "a": {"type": "string"},
                    "actions": {"type": "array", "items": {"type": "object"}},
                    "field": {"type": "string"}, "f": {"type": "string"},
                    "value": {}, "v": {},
                    "key": {"type": "string"}, "k": {"type": "string"},
                    "text": {"type": "string"}, "t": {"type": "string"},
                    "index": {"type": "integer", "minimum": 0}, "i": {"type": "integer", "minimum": 0},
                    **_view_properties(),
                },
            },
        },
        {
            "name": TOOL_PREFIX + "session.close",
            "description": "Close a TUI session and release it.",
            "inputSchema": {
                "type": "object",
                "required": ["session_id"],
                "properties": {
                    **_session_properties(),
                    "structured": {"type": "boolean"}, "stc": {"type": "boolean"},
                },
            },
        },
    ]


def handle_tool_call(params: Any, state: ServerState) -> Dict[str, Any]:
    if not isinstance(params, dict):
        raise ToolError("tools/call requires object params")
    name = params.get("name")
    if not isinstance(name, str):
        raise ToolError("tools/call requires a name")
    arguments = params.get("arguments")
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise ToolError("tools/call arguments must be an object")
    tool = TOOLS.get(name)
    if tool is None:
        raise ToolError(f"unsupported tool: {name}. See tools/list")
    return tool(arguments, state)


def handle_rpc_request(request: Mapping[str, Any], state: ServerState) -> Tuple[Optional[Dict[str, Any]], bool]:
    """Return ``(response or None, exit)`` for one decoded request."""
    method = request.get("method")
    has_id = "id" in request and request["id"] is not None
    rpc_id = request.get("id")

    def reply(result: Any) -> Optional[Dict[str, Any]]:
        return rpc_result(rpc_id, result) if has_id else None

    if method == "initialize":
        return reply({
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": build_version()},
            "instructions": (
                "Headless server for the vartui TUI. Prefer vartui.session.action for fewer "
                "tokens and view=tiny|none for minimal replies."
            ),
        }), False
    if method == "notifications/initialized":
        return None, False
    if method in ("ping", "shutdown"):
        return reply({}), False
    if method == "tools/list":
        return reply({"tools": tool_catalog()}), False
    if method == "tools/call":
        if not has_id:
            return None, False
        try:
            result = handle_tool_call(request.get("params"), state)
        except (ToolError, RangeError) as exc:
            result = tool_error_result(str(exc))
        except Exception as exc:
            logger.exception("Tool call failed")
            result = tool_error_result(str(exc))
        return rpc_result(rpc_id, result), False
    if method == "exit":
        return None, True
    if not has_id:
        return None, False
    return rpc_error(rpc_id, METHOD_NOT_FOUND, f"method not supported: {method}"), False


def run_server(stdin: BinaryIO, stdout: BinaryIO, state: Optional[ServerState] = None) -> None:
    state = state or ServerState()
    reader = FrameReader(stdin)
    logger.info("Automation server started")
    while True:
        try:
            body = reader.read()
        except FramingError as exc:
            logger.warning("Framing error: %s", exc)
            write_frame(stdout, rpc_error(None, PARSE_ERROR, f"framing error: {exc}"))
            if exc.fatal:
                break
            continue
        if body is None:
            break
        if not body.strip():
            continue
        try:
            request = json.loads(body)
        except ValueError as exc:
            write_frame(stdout, rpc_error(None, PARSE_ERROR, f"invalid JSON: {exc}"))
            continue
        if not isinstance(request, dict) or not isinstance(request.get("method"), str):
            write_frame(stdout, rpc_error(None, PARSE_ERROR, "request must be an object with a method"))
            continue
        response, exit_requested = handle_rpc_request(request, state)
        if response is not None:
            write_frame(stdout, response)
        if exit_requested:
            break
    logger.info("Automation server stopped with %d open sessions", len(state.sessions))
