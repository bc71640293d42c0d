import pytest

import uma_client as m
from uma_client.default_session import reset_default_session


@pytest.fixture(autouse=True)
def clean_default_session():
    reset_default_session()
    yield
    reset_default_session()


def test_returns_same_instance():
    m.configure_default_session(settings=m.SessionSettings(client_id="app"))
    first = m.get_default_session()
    assert m.get_default_session() is first
    assert first.settings.client_id == "app"


def test_configure_after_creation_fails():
    m.get_default_session()
    with pytest.raises(m.SessionAlreadyCreated):
        m.configure_default_session(settings=m.SessionSettings())


def test_reconfigure_before_creation_replaces_options():
    m.configure_default_session(settings=m.SessionSettings(client_id="one"))
    m.configure_default_session(settings=m.SessionSettings(client_id="two"))
    assert m.get_default_session().settings.client_id == "two"


def test_settings_default_to_environment(monkeypatch):
    monkeypatch.setattr("uma_client.config.load_dotenv", lambda: False)
    monkeypatch.setenv("UMA_OIDC_ISSUER", "https://idp.example")
    assert m.get_default_session().settings.issuer == "https://idp.example"


def test_reset_allows_a_new_session():
    first = m.get_default_session()
    reset_default_session()
    assert m.get_default_session() is not first
