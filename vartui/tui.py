"""Full-screen prompt_toolkit front-end for the session state machine."""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import List, Optional, Tuple

from prompt_toolkit import Application
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import HSplit, Layout, VSplit, Window
from prompt_toolkit.layout.containers import ConditionalContainer, Float, FloatContainer
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Frame

from .app import App, AppFocus, ConfigField, FormField, InputMode
from .keys import handle_key
from .parsing import format_minutes, parse_date
from .themes import style_rules

logger = logging.getLogger(__name__)

Fragments = List[Tuple[str, str]]

TICK_SECONDS = 0.25
CURSOR = "█"


def target_hours(date_text: str) -> float:
    """Expected hours for a day: Mon-Thu 9, Fri 8, weekend 0."""
    day = parse_date(date_text)
    if day is None:
        return 0.0
    wd = day.weekday()
    if wd <= 3:
        return 9.0
    if wd == 4:
        return 8.0
    return 0.0


def day_style(date_text: str, total: float, today: Optional[dt.date] = None) -> str:
    today = today or dt.date.today()
    day = parse_date(date_text)
    if day is None or day > today:
        return 'class:day.muted'
    target = target_hours(date_text)
    if target == 0:
        return 'class:day.muted' if total == 0 else 'class:day.ok'
    return 'class:day.ok' if total >= target else 'class:day.short'


def _hours(h: float) -> str:
    return format_minutes(round(h * 60))


def _mask(token: str) -> str:
    if len(token) <= 4:
        return "*" * len(token)
    return "*" * (len(token) - 4) + token[-4:]


def days_fragments(state: App) -> Fragments:
    out: Fragments = []
    if not state.days:
        return [('class:day.muted', ' no days\n')]
    today = dt.date.today()
    for i, day in enumerate(state.days):
        total = day.total_hours()
        text = f" {day.date}  {_hours(total)}\n"
        if i == state.day_index:
            out.append(('[SetCursorPosition]', ''))
            focused = state.focus is AppFocus.DAYS
            out.append(('class:row.selected' if focused else 'reverse', text))
        else:
            out.append((day_style(day.date, total, today), text))
    return out


def entries_fragments(state: App) -> Fragments:
    day = state.selected_day()
    if day is None or not day.entries:
        return [('class:day.muted', ' no entries\n')]
    width = max(len(e.project) for e in day.entries)
    out: Fragments = []
    for i, entry in enumerate(day.entries):
        text = f" {entry.project.ljust(width)}  {_hours(entry.hours)}  {entry.note}\n"
        if state.focus is AppFocus.ENTRIES and i == state.entry_index:
            out.append(('[SetCursorPosition]', ''))
            out.append(('class:entry.selected', text))
        else:
            out.append(('', text))
    return out


def status_fragments(state: App) -> Fragments:
    if state.input_mode is InputMode.EDITING:
        return [
            ('class:status', f" Range: {state.input}{CURSOR}"),
            ('class:status.keys', "   Enter apply  Esc cancel  (AUTO, AUTO-WEEK, YYYY-MM-DD..YYYY-MM-DD)"),
        ]
    return [
        ('class:status', f" {state.status}"),
        ('class:status.keys', "   j/k move  h/l focus  n new  d duplicate  f range  r refresh  c config  q quit"),
    ]


def _field_line(label: str, value: str, focused: bool) -> Fragments:
    cls = 'class:modal.field.focused' if focused else 'class:modal.field'
    marker = '>' if focused else ' '
    return [(cls, f"{marker} {label:<14}{value}{CURSOR if focused else ''}\n")]


def entry_modal_fragments(state: App) -> Fragments:
    form = state.entry_form
    if form is None:
        return []
    out: Fragments = []
    project_label = form.project_search
    if form.selected_project is not None:
        project_label = f"{form.selected_project.name} (#{form.selected_project.id})"
    out += _field_line("Date", form.date, form.focused is FormField.DATE)
    out += _field_line("Project", project_label, form.focused is FormField.PROJECT)
    if form.focused is FormField.PROJECT and form.filtered_indices:
        for i, project in enumerate(state.filtered_projects()):
            cls = 'class:modal.dropdown.cursor' if i == form.cursor else 'class:modal.dropdown'
            client = f"{project.client_name} / " if project.client_name else ""
            out.append((cls, f"    {client}{project.name}\n"))
    out += _field_line("Description", form.description, form.focused is FormField.DESCRIPTION)
    out += _field_line("Time (H:MM)", form.minutes, form.focused is FormField.MINUTES)
    billable = "[x]" if form.is_billable else "[ ]"
    cls = 'class:modal.field.focused' if form.focused is FormField.BILLABLE else 'class:modal.field'
    marker = '>' if form.focused is FormField.BILLABLE else ' '
    out.append((cls, f"{marker} {'Billable':<14}{billable}\n"))
    out.append(('class:modal.hint', "\n Tab/S-Tab fields  Up/Down pick project  Space toggle  Enter next/save  Esc close"))
    return out


def config_modal_fragments(state: App) -> Fragments:
    form = state.config_form
    if form is None:
        return []
    out: Fragments = []
    out += _field_line("Token", _mask(form.token), form.focused is ConfigField.TOKEN)
    out += _field_line("Base URL", form.base_url, form.focused is ConfigField.BASE_URL)
    out += _field_line("Default range", form.default_range, form.focused is ConfigField.DEFAULT_RANGE)
    theme_focused = form.focused is ConfigField.THEME
    cls = 'class:modal.field.focused' if theme_focused else 'class:modal.field'
    out.append((cls, f"{'>' if theme_focused else ' '} {'Theme':<14}< {form.theme} >\n"))
    out.append(('class:modal.hint', "\n Tab fields  Up/Down theme  C-u clear  C-r defaults  Enter save  Esc cancel"))
    return out


def run_ui(state: App) -> None:
    """Run the interactive UI until the dispatcher asks to exit."""
    days_control = FormattedTextControl(lambda: days_fragments(state), focusable=True, show_cursor=False)
    entries_control = FormattedTextControl(lambda: entries_fragments(state), show_cursor=False)
    status_control = FormattedTextControl(lambda: status_fragments(state))

    def days_title():
        idx = (state.day_index or 0) + 1 if state.days else 0
        return [('class:frame.label', f"Days ({idx}/{len(state.days)}) {state.date_range.label()}")]

    def entries_title():
        day = state.selected_day()
        return [('class:frame.label', f"Entries - {day.date if day else '-'}")]

    body = VSplit([
        Frame(Window(days_control, width=24), title=days_title),
        Frame(Window(entries_control, wrap_lines=False), title=entries_title),
    ])
    root_content = HSplit([body, Window(status_control, height=1, style='class:status')])

    adding = Condition(lambda: state.input_mode is InputMode.ADDING_ENTRY)
    configuring = Condition(lambda: state.input_mode is InputMode.CONFIGURING)
    entry_window = Frame(
        Window(FormattedTextControl(lambda: entry_modal_fragments(state)), width=72, style='class:modal'),
        title="New entry",
    )
    config_window = Frame(
        Window(FormattedTextControl(lambda: config_modal_fragments(state)), width=72, style='class:modal'),
        title="Configuration",
    )
    floats = [
        Float(content=ConditionalContainer(entry_window, filter=adding), top=3, left=4),
        Float(content=ConditionalContainer(config_window, filter=configuring), top=3, left=4),
    ]
    container = FloatContainer(content=root_content, floats=floats)

    current_theme = {'name': None}

    def theme_name() -> str:
        form = state.config_form
        return form.theme if form is not None else state.config.theme

    def apply_theme() -> None:
        name = theme_name()
        if name == current_theme['name']:
            return
        current_theme['name'] = name
        app.style = Style.from_dict(style_rules(name))

    kb = KeyBindings()

    @kb.add(Keys.Any)
    def _(event):
        key = event.key_sequence[0].key
        if handle_key(state, key):
            event.app.exit()
            return
        apply_theme()

    app = Application(
        layout=Layout(container, focused_element=days_control),
        key_bindings=kb,
        full_screen=True,
        style=Style.from_dict(style_rules(theme_name())),
    )
    apply_theme()

    # Merge background fetch results and repaint.
    async def _ticker():
        while True:
            await asyncio.sleep(TICK_SECONDS)
            if state.check_background_load():
                app.invalidate()

    logger.info("UI started for range %s", state.date_range.label())
    app.run(pre_run=lambda: app.create_background_task(_ticker()))
    logger.info("UI exited")
