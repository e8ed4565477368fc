from typing import Optional

import pytest

from vartui import parsing
from vartui.app import App
from vartui.models import Config

from .helpers import FIXED_TODAY, FakeClient, sample_days, sample_projects


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in ("VAR_TOKEN", "VAR_BASE_URL", "VARTUI_CONFIG", "VARTUI_LOG", "VARTUI_RELEASE_VERSION"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setattr(parsing, "_today", lambda: FIXED_TODAY)


@pytest.fixture
def fake_client():
    return FakeClient(projects=sample_projects(), days=sample_days())


@pytest.fixture
def saved_configs():
    return []


@pytest.fixture
def make_app(fake_client, saved_configs):
    def factory(config: Optional[Config] = None, client: Optional[FakeClient] = None, wait: bool = True) -> App:
        app = App(
            config if config is not None else Config(token="secret-token-1234"),
            client_factory=client or fake_client,
            config_saver=saved_configs.append,
        )
        if wait:
            app.wait_background_load(5)
        return app
    return factory
