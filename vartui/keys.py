"""Key dispatcher shared by the terminal UI and the automation server.

Keys are prompt_toolkit key names (``Keys.ControlC`` is ``"c-c"``, Enter is
``"c-m"``); printable characters are passed through as themselves.
"""
from __future__ import annotations

from prompt_toolkit.keys import Keys

from .app import App, AppFocus, InputMode

ESC = Keys.Escape.value
ENTER = Keys.Enter.value
TAB = Keys.Tab.value
BACKTAB = Keys.BackTab.value
BACKSPACE = Keys.Backspace.value
UP = Keys.Up.value
DOWN = Keys.Down.value
CTRL_C = Keys.ControlC.value
CTRL_R = Keys.ControlR.value
CTRL_U = Keys.ControlU.value


def _is_char(key: str) -> bool:
    return len(key) == 1 and key.isprintable()


def handle_key(app: App, key) -> bool:
    """Apply one keystroke to ``app``; returns True when the program should exit."""
    key = getattr(key, "value", key)
    if key == CTRL_C:
        return True

    mode = app.input_mode
    if mode is InputMode.EDITING:
        if key == ESC:
            app.cancel_input()
        elif key == ENTER:
            app.submit_input()
        elif key == BACKSPACE:
            app.input_backspace()
        elif _is_char(key):
            app.input_push(key)
        return False

    if mode is InputMode.ADDING_ENTRY:
        if key == ESC:
            app.close_add_entry()
        elif key == BACKTAB:
            app.form_prev_field()
        elif key == TAB:
            app.form_next_field()
        elif key == ENTER:
            app.form_enter()
        elif key == UP:
            app.form_nav_up()
        elif key == DOWN:
            app.form_nav_down()
        elif key == BACKSPACE:
            app.form_input_backspace()
        elif _is_char(key):
            app.form_input_push(key)
        return False

    if mode is InputMode.CONFIGURING:
        if key == ESC:
            app.close_config()
        elif key == BACKTAB:
            app.config_prev_field()
        elif key == TAB:
            app.config_next_field()
        elif key == UP:
            app.config_theme_previous()
        elif key == DOWN:
            app.config_theme_next()
        elif key == ENTER:
            app.save_config_form()
        elif key == BACKSPACE:
            app.config_backspace()
        elif key == CTRL_U:
            app.config_clear_field()
        elif key == CTRL_R:
            app.config_reset_defaults()
        elif _is_char(key):
            app.config_input(key)
        return False

    if key == 'q':
        return True
    if key in (DOWN, 'j'):
        if app.focus is AppFocus.ENTRIES:
            app.next_entry()
        else:
            app.next_day()
    elif key in (UP, 'k'):
        if app.focus is AppFocus.ENTRIES:
            app.previous_entry()
        else:
            app.previous_day()
    elif key == 'l':
        app.focus_entries()
    elif key in ('h', ESC):
        app.focus_days()
    elif key == 'd':
        app.open_duplicate_entry()
    elif key == 'r':
        app.refresh()
    elif key == 'f':
        app.start_input()
    elif key == 'n':
        app.open_add_entry()
    elif key == 'c':
        app.open_config()
    return False
