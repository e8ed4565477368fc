from prompt_toolkit.keys import Keys

from vartui.app import AppFocus, ConfigField, FormField, InputMode
from vartui.keys import handle_key


def press(app, *keys):
    results = [handle_key(app, k) for k in keys]
    return results[-1]


def test_ctrl_c_exits_from_every_mode(make_app):
    app = make_app()
    assert handle_key(app, Keys.ControlC)
    app.open_add_entry()
    assert handle_key(app, Keys.ControlC)
    app.close_add_entry()
    app.open_config()
    assert handle_key(app, "c-c")
    app.close_config()
    app.start_input()
    assert handle_key(app, "c-c")


def test_q_exits_only_in_normal_mode(make_app):
    app = make_app()
    app.start_input()
    assert not handle_key(app, "q")
    assert app.input.endswith("q")
    press(app, Keys.Escape)
    assert handle_key(app, "q")


def test_normal_mode_navigation(make_app):
    app = make_app()
    press(app, "j")
    assert app.day_index == 1
    press(app, Keys.Up)
    assert app.day_index == 0
    press(app, "k")
    assert app.day_index == 2
    press(app, Keys.Down)
    press(app, "l")
    assert app.focus is AppFocus.ENTRIES
    press(app, "j")
    assert app.entry_index == 1
    press(app, Keys.Down)
    assert app.entry_index == 0
    press(app, "h")
    assert app.focus is AppFocus.DAYS
    press(app, "l", Keys.Escape)
    assert app.focus is AppFocus.DAYS


def test_normal_mode_openers(make_app, fake_client):
    app = make_app()
    press(app, "f")
    assert app.input_mode is InputMode.EDITING
    press(app, Keys.Escape, "n")
    assert app.input_mode is InputMode.ADDING_ENTRY
    press(app, Keys.Escape, "c")
    assert app.input_mode is InputMode.CONFIGURING
    press(app, Keys.Escape)
    assert app.status == "Cancelled"
    press(app, "d")
    assert app.input_mode is InputMode.NORMAL
    press(app, "l", "d")
    assert app.input_mode is InputMode.ADDING_ENTRY
    press(app, Keys.Escape, "r")
    assert app.status == "refreshing..."
    app.wait_background_load(5)


def test_unmatched_keys_are_noops(make_app):
    app = make_app()
    before = (app.day_index, app.focus, app.input_mode)
    for key in ("z", Keys.F5, Keys.PageDown, "c-x"):
        assert not handle_key(app, key)
    assert (app.day_index, app.focus, app.input_mode) == before


def test_range_editor_keys(make_app):
    app = make_app()
    press(app, "f")
    for _ in range(len(app.input)):
        press(app, Keys.Backspace)
    for ch in "2024-03-01..2024-03-03":
        press(app, ch)
    press(app, Keys.Enter)
    assert app.input_mode is InputMode.NORMAL
    assert app.date_range.label() == "2024-03-01..2024-03-03"
    app.wait_background_load(5)


def test_entry_form_keys(make_app):
    app = make_app()
    press(app, "n", Keys.Tab)
    assert app.entry_form.focused is FormField.PROJECT
    press(app, "b", "e", "t", "a")
    assert app.entry_form.project_search == "beta"
    press(app, Keys.Down, Keys.Up, Keys.Enter)
    assert app.entry_form.selected_project.id == 8
    assert app.entry_form.focused is FormField.DESCRIPTION
    press(app, "o", "k", Keys.BackTab)
    assert app.entry_form.focused is FormField.PROJECT
    press(app, Keys.Tab, Keys.Backspace)
    assert app.entry_form.description == "o"
    press(app, Keys.Tab, "1", ":", "0", "0", Keys.Tab, " ")
    assert app.entry_form.minutes == "1:00"
    assert app.entry_form.is_billable is False
    press(app, Keys.Escape)
    assert app.entry_form is None


def test_entry_form_enter_walks_fields_then_submits(make_app, fake_client):
    app = make_app()
    press(app, "n")
    form = app.entry_form
    form.minutes = "45"
    form.description = "demo"
    app.set_project_id(12)
    form.focused = FormField.DATE
    press(app, Keys.Enter, Keys.Enter, Keys.Enter, Keys.Enter)
    assert app.entry_form.focused is FormField.BILLABLE
    press(app, Keys.Enter)
    assert fake_client.created[0]["project_id"] == 12
    assert fake_client.created[0]["minutes"] == 45
    assert app.input_mode is InputMode.NORMAL
    app.wait_background_load(5)


def test_config_form_keys(make_app, saved_configs):
    app = make_app()
    press(app, "c")
    press(app, Keys.ControlU)
    assert app.config_form.token == ""
    for ch in "newtoken":
        press(app, ch)
    press(app, Keys.Backspace)
    assert app.config_form.token == "newtoke"
    press(app, Keys.BackTab)
    assert app.config_form.focused is ConfigField.THEME
    press(app, Keys.Down)
    assert app.config_form.theme == "solarized-dark"
    press(app, Keys.Up, Keys.Up)
    assert app.config_form.theme == "gruvbox-light"
    press(app, Keys.ControlR)
    assert app.config_form.theme == "tokyo-night"
    assert app.config_form.token == "newtoke"
    press(app, Keys.Tab)
    assert app.config_form.focused is ConfigField.TOKEN
    press(app, Keys.Enter)
    assert saved_configs[0].token == "newtoke"
    assert app.input_mode is InputMode.NORMAL
    app.wait_background_load(5)
