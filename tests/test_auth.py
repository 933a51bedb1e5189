import json
import os

from loyalty_pos_server.auth import AuthManager
from loyalty_pos_server.config import Settings
from loyalty_pos_server.models import OperatorIdentity

from conftest import OPERATOR_PHONE


def test_session_round_trips_through_file(tmp_path):
    path = tmp_path / "session.json"
    AuthManager(session_file=str(path)).save_session("tok", OperatorIdentity(phone=OPERATOR_PHONE, role="Admin"))

    reloaded = AuthManager(session_file=str(path))
    assert reloaded.is_authenticated()
    assert reloaded.get_token() == "tok"
    assert reloaded.get_operator().role == "Admin"
    assert oct(os.stat(path).st_mode & 0o777) == "0o600"


def test_corrupted_session_file_is_ignored(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("{not json")

    assert not AuthManager(session_file=str(path)).is_authenticated()


def test_clear_session_removes_file(tmp_path):
    path = tmp_path / "session.json"
    manager = AuthManager(session_file=str(path))
    manager.save_session("tok", OperatorIdentity(phone=OPERATOR_PHONE))

    manager.clear_session()

    assert not path.exists()
    assert manager.get_operator() is None


def test_token_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("LOYALTY_POS_TOKEN", "env-token")
    monkeypatch.setenv("LOYALTY_POS_PHONE", OPERATOR_PHONE)
    path = tmp_path / "session.json"

    manager = AuthManager(session_file=str(path))

    assert manager.get_token() == "env-token"
    assert manager.get_operator() == OperatorIdentity(phone=OPERATOR_PHONE, name="App", role="Admin")
    assert json.loads(path.read_text())["token"] == "env-token"


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("LOYALTY_POS_API_URL", "https://loyalty.example/api")
    monkeypatch.setenv("LOYALTY_POS_TIMEOUT", "5")
    monkeypatch.setenv("LOYALTY_POS_PHONE", OPERATOR_PHONE)
    monkeypatch.setenv("LOYALTY_POS_LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.api_url == "https://loyalty.example/api"
    assert settings.timeout == 5.0
    assert settings.country_code == "52"
    assert settings.credentials.phone == OPERATOR_PHONE
    assert settings.credentials.password is None
    assert settings.logging_level == 10


def test_settings_defaults():
    settings = Settings.from_env()
    assert settings.credentials is None
    assert settings.logging_level == 20
