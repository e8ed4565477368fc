import threading

import pytest

from vartui.api_client import ApiError
from vartui.app import (
    PROJECT_FILTER_LIMIT,
    AppFocus,
    ConfigField,
    EditingMode,
    FormField,
    InputMode,
    NormalMode,
)
from vartui.config import ConfigError
from vartui.models import DEFAULT_BASE_URL, Config, DateRange, Day, Entry

from .helpers import FakeClient, many_projects, sample_days


# ----- startup & background -----
def test_startup_issues_both_fetches(make_app, fake_client):
    app = make_app()
    assert app.date_range == DateRange("2024-03-01", "2024-03-15")
    assert fake_client.fetches == [("2024-03-01", "2024-03-15")]
    assert len(app.projects) == 3
    assert [d.date for d in app.days] == ["2024-03-15", "2024-03-14", "2024-03-13"]
    assert app.day_index == 0
    assert app.focus is AppFocus.DAYS
    assert app.input_mode is InputMode.NORMAL
    assert not app.has_pending_load


def test_configured_range_is_used_and_bad_one_ignored(make_app):
    app = make_app(Config(default_date_range="2024-03-01..2024-03-03"))
    assert app.date_range == DateRange("2024-03-01", "2024-03-03")
    app = make_app(Config(default_date_range="garbage"))
    assert app.date_range == DateRange("2024-03-01", "2024-03-15")


def test_skeleton_shown_before_first_fetch(make_app):
    gate = threading.Event()

    class SlowClient(FakeClient):
        def fetch_days(self, start, end):
            gate.wait(5)
            return super().fetch_days(start, end)

    app = make_app(client=SlowClient(days=sample_days()), wait=False)
    assert app.status == "loading..."
    assert len(app.days) == 15
    assert all(d.entries == [] for d in app.days)
    app.wait_background_load(0)
    assert app.has_pending_load
    gate.set()
    app.wait_background_load(5)
    assert len(app.days) == 3


def test_poll_without_pending_results_changes_nothing(make_app):
    app = make_app()
    app.status = "steady"
    before = (list(app.days), app.day_index, app.entry_index, app.focus)
    assert app.check_background_load() is False
    assert app.status == "steady"
    assert (list(app.days), app.day_index, app.entry_index, app.focus) == before


def test_failed_refresh_keeps_days_and_reports(make_app, fake_client):
    app = make_app()
    fake_client.fetch_error = "503 unavailable"
    app.refresh()
    assert app.status == "refreshing..."
    app.wait_background_load(5)
    assert app.status == "load error: 503 unavailable"
    assert len(app.days) == 3


def test_projects_error_sets_status(make_app):
    class NoProjects(FakeClient):
        def fetch_projects_list(self):
            raise ApiError("401 Unauthorized")

    app = make_app(client=NoProjects(days=sample_days()))
    app.reload_projects()
    app.wait_background_load(5)
    assert app.status == "projects error: 401 Unauthorized"
    assert app.projects == []


def test_projects_loaded_status(make_app):
    app = make_app()
    app.reload_projects()
    app.wait_background_load(5)
    assert app.status == "projects loaded: 3"


# ----- selection -----
def test_day_navigation_wraps(make_app):
    app = make_app()
    app.previous_day()
    assert app.day_index == 2
    app.next_day()
    assert app.day_index == 0
    app.next_day()
    app.next_day()
    app.next_day()
    assert app.day_index == 0


def test_single_day_navigation_is_noop(make_app):
    app = make_app()
    app.set_days([Day(date="2024-03-15")])
    app.next_day()
    assert app.day_index == 0
    app.previous_day()
    assert app.day_index == 0


def test_set_days_reclamps_selection(make_app):
    app = make_app()
    app.previous_day()
    assert app.day_index == 2
    app.set_days(sample_days()[:2])
    assert app.day_index == 1
    app.set_days([])
    assert app.day_index is None
    assert app.selected_day() is None
    app.set_days(sample_days())
    assert app.day_index == 0


def test_focus_entries_requires_entries(make_app):
    app = make_app()
    app.previous_day()  # 2024-03-13 has no entries
    app.focus_entries()
    assert app.focus is AppFocus.DAYS
    assert app.entry_index is None
    app.next_day()
    app.focus_entries()
    assert app.focus is AppFocus.ENTRIES
    assert app.entry_index == 0
    assert app.selected_entry().project == "Alpha Site"


def test_entry_navigation_wraps_and_clears_on_focus_days(make_app):
    app = make_app()
    app.focus_entries()
    app.previous_entry()
    assert app.entry_index == 1
    app.next_entry()
    assert app.entry_index == 0
    app.focus_days()
    assert app.entry_index is None
    app.next_entry()
    assert app.entry_index is None


def test_set_days_drops_entry_focus_when_day_empties(make_app):
    app = make_app()
    app.focus_entries()
    app.set_days([Day(date="2024-03-15")])
    assert app.focus is AppFocus.DAYS
    assert app.entry_index is None


def test_day_moves_recheck_entry_focus(make_app):
    app = make_app()
    app.focus_entries()
    app.next_entry()
    assert app.entry_index == 1
    app.next_day()
    assert app.focus is AppFocus.ENTRIES
    assert app.entry_index == 0
    app.next_day()
    assert app.selected_day().entries == []
    assert app.focus is AppFocus.DAYS
    assert app.entry_index is None
    app.next_day()
    app.focus_entries()
    app.previous_day()
    assert app.day_index == 2
    assert app.focus is AppFocus.DAYS
    assert app.selected_entry() is None


# ----- range editor -----
def test_range_editor_seeds_buffer_and_cancels(make_app):
    app = make_app()
    assert app.start_input()
    assert isinstance(app.mode, EditingMode)
    assert app.input == "2024-03-01..2024-03-15"
    app.cancel_input()
    assert isinstance(app.mode, NormalMode)
    assert app.input == ""


def test_range_submit_rebuilds_skeleton_and_refreshes(make_app, fake_client):
    app = make_app()
    app.start_input()
    app.set_input("2024-03-01..2024-03-03")
    assert app.submit_input()
    assert app.input_mode is InputMode.NORMAL
    assert [d.date for d in app.days] == ["2024-03-03", "2024-03-02", "2024-03-01"]
    assert all(d.entries == [] for d in app.days)
    assert app.status == "refreshing..."
    app.wait_background_load(5)
    assert fake_client.fetches[-1] == ("2024-03-01", "2024-03-03")


def test_bad_range_stays_in_editor(make_app):
    app = make_app()
    app.start_input()
    app.set_input("yesterday")
    assert not app.submit_input()
    assert app.input_mode is InputMode.EDITING
    assert app.input == "yesterday"
    assert app.status.startswith("status: bad format")


def test_range_buffer_accepts_printable_ascii_only(make_app):
    app = make_app()
    app.start_input()
    app.set_input("")
    for ch in "ab\té":
        app.input_push(ch)
    assert app.input == "ab"
    for _ in range(100):
        app.input_push("x")
    assert len(app.input) == 64
    app.input_backspace()
    assert len(app.input) == 63


# ----- entry form -----
def test_add_entry_defaults_to_selected_day(make_app):
    app = make_app()
    app.next_day()
    assert app.open_add_entry()
    form = app.entry_form
    assert form.date == "2024-03-14"
    assert form.focused is FormField.DATE
    assert form.is_billable
    assert form.filtered_indices == [0, 1, 2]
    assert form.cursor == 0
    assert app.config_form is None


def test_entry_form_field_cycle(make_app):
    app = make_app()
    app.open_add_entry()
    seen = []
    for _ in range(5):
        app.form_next_field()
        seen.append(app.entry_form.focused)
    assert seen == [FormField.PROJECT, FormField.DESCRIPTION, FormField.MINUTES, FormField.BILLABLE, FormField.DATE]
    app.form_prev_field()
    assert app.entry_form.focused is FormField.BILLABLE
    app.form_input_push(" ")
    assert app.entry_form.is_billable is False
    app.form_input_push("x")
    assert app.entry_form.is_billable is False


def test_project_filter_is_case_insensitive_substring(make_app):
    app = make_app()
    app.open_add_entry()
    app.form_next_field()
    for ch in "APP":
        app.form_input_push(ch)
    assert [p.name for p in app.filtered_projects()] == ["Beta App"]
    app.form_input_backspace()
    app.form_input_backspace()
    app.form_input_backspace()
    assert len(app.filtered_projects()) == 3


def test_project_filter_caps_at_twenty(make_app):
    client = FakeClient(projects=many_projects(30), days=sample_days())
    app = make_app(client=client)
    app.open_add_entry()
    assert app.entry_form.filtered_indices == list(range(PROJECT_FILTER_LIMIT))
    app.set_project_search("project 1")
    names = [p.name for p in app.filtered_projects()]
    assert names == [f"Project {i}" for i in range(10, 20)]
    app.set_project_search("project")
    assert len(app.entry_form.filtered_indices) == 20


def test_dropdown_navigation_and_enter_selects(make_app):
    app = make_app()
    app.open_add_entry()
    app.form_next_field()
    app.form_nav_down()
    app.form_nav_down()
    app.form_nav_down()
    assert app.entry_form.cursor == 2
    app.form_nav_up()
    assert app.entry_form.cursor == 1
    app.form_enter()
    form = app.entry_form
    assert form.selected_project.id == 8
    assert form.project_search == "Beta App"
    assert form.filtered_indices == []
    assert form.focused is FormField.DESCRIPTION


def test_editing_search_clears_resolved_project(make_app):
    app = make_app()
    app.open_add_entry()
    app.select_filtered_project(0, move_next=False)
    assert app.entry_form.selected_project.id == 7
    app.entry_form.focused = FormField.PROJECT
    app.form_input_push("x")
    assert app.entry_form.selected_project is None


def _fill_form(app, project_id=7, minutes="2:15", description="x", date="2024-03-01"):
    app.open_add_entry()
    form = app.entry_form
    form.minutes = minutes
    app.set_project_id(project_id)
    form.description = description
    form.date = date


def test_submit_entry_creates_and_refreshes(make_app, fake_client):
    app = make_app()
    _fill_form(app)
    assert app.submit_entry()
    assert fake_client.created == [{
        "date": "2024-03-01",
        "project_id": 7,
        "description": "x",
        "minutes": 135,
        "is_billable": True,
    }]
    assert app.input_mode is InputMode.NORMAL
    assert app.entry_form is None
    assert app.status == "entry created!"
    app.wait_background_load(5)
    assert len(fake_client.fetches) == 2
    assert fake_client.credentials[-1] == (DEFAULT_BASE_URL, "secret-token-1234")


@pytest.mark.parametrize("kwargs", [
    {"description": ""},
    {"minutes": ""},
    {"date": ""},
    {"project_id": 0},
])
def test_submit_entry_requires_fields(make_app, fake_client, kwargs):
    app = make_app()
    _fill_form(app, **kwargs)
    assert not app.submit_entry()
    assert app.status == "error: empty fields or invalid project"
    assert app.input_mode is InputMode.ADDING_ENTRY
    assert fake_client.created == []


@pytest.mark.parametrize("minutes", ["0:00", "0", "abc"])
def test_submit_entry_rejects_bad_time(make_app, fake_client, minutes):
    app = make_app()
    _fill_form(app, minutes=minutes)
    assert not app.submit_entry()
    assert app.status == "error: invalid time (zero or bad format)"
    assert fake_client.created == []


def test_unknown_project_id_typed_as_text_is_used(make_app, fake_client):
    app = make_app()
    _fill_form(app, project_id=4242)
    assert app.entry_form.selected_project is None
    assert app.entry_form.project_search == "4242"
    assert app.submit_entry()
    assert fake_client.created[0]["project_id"] == 4242


def test_remote_failure_keeps_form_open(make_app, fake_client):
    app = make_app()
    fake_client.create_error = "422 invalid project"
    _fill_form(app)
    assert not app.submit_entry()
    assert app.status == "create error: 422 invalid project"
    assert app.entry_form is not None


def test_enter_on_last_field_submits(make_app, fake_client):
    app = make_app()
    _fill_form(app)
    app.entry_form.focused = FormField.BILLABLE
    app.form_enter()
    assert len(fake_client.created) == 1


def test_duplicate_entry_prefills_form(make_app):
    app = make_app()
    assert not app.open_duplicate_entry()
    app.focus_entries()
    assert app.open_duplicate_entry()
    form = app.entry_form
    assert form.date == "2024-03-15"
    assert form.project_search == "Alpha Site"
    assert form.description == "standup and review"
    assert form.minutes == "01:30"
    assert form.focused is FormField.DESCRIPTION
    assert form.selected_project is None


def test_duplicate_rounds_fractional_hours(make_app):
    app = make_app()
    app.set_days([Day(date="2024-03-15", entries=[Entry(project="P", hours=0.1 * 7, note="n")])])
    app.focus_entries()
    app.open_duplicate_entry()
    assert app.entry_form.minutes == "00:42"


def test_modal_opens_only_from_normal_mode(make_app):
    app = make_app()
    app.open_add_entry()
    assert not app.open_config()
    assert not app.start_input()
    assert app.input_mode is InputMode.ADDING_ENTRY
    app.close_add_entry()
    assert app.entry_form is None
    assert app.input_mode is InputMode.NORMAL


# ----- config form -----
def test_open_config_seeds_effective_values(make_app, monkeypatch):
    monkeypatch.setenv("VAR_BASE_URL", "https://env.test/api/")
    app = make_app(Config(token="secret-token-1234", default_date_range="AUTO-WEEK", theme="gruvbox"))
    assert app.open_config()
    form = app.config_form
    assert form.token == "secret-token-1234"
    assert form.base_url == "https://env.test/api"
    assert form.default_range == "AUTO-WEEK"
    assert form.theme == "gruvbox-dark"
    assert app.status == "Configuring..."


def test_config_field_cycle_and_typing(make_app):
    app = make_app()
    app.open_config()
    order = []
    for _ in range(4):
        app.config_next_field()
        order.append(app.config_form.focused)
    assert order == [ConfigField.BASE_URL, ConfigField.DEFAULT_RANGE, ConfigField.THEME, ConfigField.TOKEN]
    app.config_prev_field()
    assert app.config_form.focused is ConfigField.THEME
    app.config_input("x")
    app.config_backspace()
    assert app.config_form.theme == "tokyo-night"
    app.config_prev_field()
    for ch in "WEEK":
        app.config_input(ch)
    app.config_backspace()
    assert app.config_form.default_range == "WEE"


def test_config_theme_cycles_and_clears(make_app):
    app = make_app()
    app.open_config()
    app.config_theme_next()
    assert app.config_form.theme == "solarized-dark"
    app.config_theme_previous()
    app.config_theme_previous()
    assert app.config_form.theme == "gruvbox-light"
    app.config_clear_field(ConfigField.THEME)
    assert app.config_form.theme == "tokyo-night"
    app.config_set_theme_value("Latte")
    assert app.config_form.theme == "catppuccin-latte"


def test_config_reset_defaults_keeps_token(make_app):
    app = make_app()
    app.open_config()
    form = app.config_form
    form.base_url = "https://other.test"
    form.default_range = "AUTO"
    form.theme = "nord"
    app.config_reset_defaults()
    assert form.token == "secret-token-1234"
    assert form.base_url == DEFAULT_BASE_URL
    assert form.default_range == ""
    assert form.theme == "tokyo-night"


def test_config_clear_focused_field(make_app):
    app = make_app()
    app.open_config()
    app.config_clear_field()
    assert app.config_form.token == ""


def test_save_config_applies_range_and_persists(make_app, saved_configs, fake_client):
    app = make_app()
    app.open_config()
    form = app.config_form
    form.default_range = " 2024-03-01..2024-03-03 "
    form.theme = "nord"
    assert app.save_config_form()
    assert saved_configs == [Config(
        token="secret-token-1234",
        base_url=DEFAULT_BASE_URL,
        default_date_range="2024-03-01..2024-03-03",
        theme="nord",
    )]
    assert app.config == saved_configs[0]
    assert app.input_mode is InputMode.NORMAL
    assert app.date_range == DateRange("2024-03-01", "2024-03-03")
    assert len(app.days) == 3
    assert app.status == "Configuration saved!"
    app.wait_background_load(5)
    assert fake_client.fetches[-1] == ("2024-03-01", "2024-03-03")


def test_save_config_failure_keeps_form(make_app):
    app = make_app()

    def failing(cfg):
        raise ConfigError("read-only file system")

    app.config_saver = failing
    app.open_config()
    assert not app.save_config_form()
    assert app.status == "Save error: read-only file system"
    assert app.config_form is not None


def test_close_config_discards(make_app, saved_configs):
    app = make_app()
    app.open_config()
    app.config_form.token = "changed"
    app.close_config()
    assert app.status == "Cancelled"
    assert app.config_form is None
    assert saved_configs == []
    app.open_config()
    assert app.config_form.token == "secret-token-1234"
