"""Tests for the operator CLI in main.py.

run_command() is exercised against services built by bootstrap.start() with a
FakeDirectory. main() is exercised end to end through environment variables,
including the startup-failure exit status.
"""

from __future__ import annotations

import logging

import pytest

import bootstrap
import main
from core.config import Settings, get_settings


@pytest.fixture
def services(db_url, make_directory):
    settings = Settings(radius_server_id="site-A", database_url=db_url)
    svc = bootstrap.start(settings, directory=make_directory({"alice@example.com": "Alice"}))
    yield svc
    svc.close()


def _run(argv, services):
    return main.run_command(main._build_parser().parse_args(argv), services)


class TestRunCommand:
    def test_init(self, services, capsys):
        assert _run(["init"], services) == main.EXIT_OK
        assert "site-A" in capsys.readouterr().out

    def test_check_directory_user(self, services, capsys):
        assert _run(["check", "alice@example.com"], services) == main.EXIT_OK
        assert "ALLOWED" in capsys.readouterr().out
        assert services.store.find("alice@example.com") is not None

    def test_check_unknown_user(self, services, capsys):
        assert _run(["check", "mallory@example.com"], services) == main.EXIT_FAILED
        assert "DENIED" in capsys.readouterr().out

    def test_add_remove_cycle(self, services):
        assert _run(["add", "bob@example.com", "--display-name", "Bob"], services) == main.EXIT_OK
        assert services.store.find("bob@example.com").display_name == "Bob"
        assert _run(["add", "bob@example.com"], services) == main.EXIT_FAILED
        assert _run(["remove", "bob@example.com"], services) == main.EXIT_OK
        assert _run(["remove", "bob@example.com"], services) == main.EXIT_FAILED

    def test_list(self, services, capsys):
        _run(["add", "bob@example.com"], services)
        assert _run(["list"], services) == main.EXIT_OK
        out = capsys.readouterr().out
        assert "bob@example.com" in out
        assert "1 grant(s) on site-A" in out

    def test_set_password_with_flag(self, services):
        _run(["add", "bob@example.com"], services)
        assert _run(["set-password", "bob@example.com", "--password", "s3cret"], services) == main.EXIT_OK
        assert services.credentials.authenticate_offline("bob@example.com", "s3cret")

    def test_set_password_prompts(self, services, monkeypatch):
        _run(["add", "bob@example.com"], services)
        monkeypatch.setattr(main.getpass, "getpass", lambda prompt: "prompted")
        assert _run(["set-password", "bob@example.com"], services) == main.EXIT_OK
        assert services.credentials.authenticate_offline("bob@example.com", "prompted")

    def test_set_password_unknown_user(self, services):
        assert _run(["set-password", "ghost@example.com", "--password", "x"], services) == main.EXIT_FAILED

    def test_sync(self, services, capsys):
        assert _run(["sync"], services) == main.EXIT_OK
        assert "1 user(s) added" in capsys.readouterr().out


class TestMain:
    @pytest.fixture(autouse=True)
    def env(self, monkeypatch, tmp_path):
        for name in ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET", "DB_HOST", "ADMIN_API_KEY"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.chdir(tmp_path)
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_init_creates_database(self, monkeypatch, db_url):
        monkeypatch.setenv("RADIUS_SERVER_ID", "site-A")
        monkeypatch.setenv("DATABASE_URL", db_url)
        assert main.main(["init"]) == main.EXIT_OK

    def test_missing_server_context_is_startup_failure(self, monkeypatch, db_url):
        monkeypatch.delenv("RADIUS_SERVER_ID", raising=False)
        monkeypatch.setenv("DEBUG", "false")
        monkeypatch.setenv("DATABASE_URL", db_url)
        assert main.main(["init"]) == main.EXIT_STARTUP

    def test_unreachable_database_is_startup_failure(self, monkeypatch, tmp_path):
        monkeypatch.setenv("RADIUS_SERVER_ID", "site-A")
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'missing-dir' / 'grants.db'}")
        monkeypatch.setenv("DB_WAIT_TIMEOUT_MS", "200")
        monkeypatch.setenv("DB_WAIT_INTERVAL_MS", "50")
        assert main.main(["list"]) == main.EXIT_STARTUP

    def test_local_only_mode_without_directory_credentials(self, monkeypatch, db_url):
        monkeypatch.setenv("RADIUS_SERVER_ID", "site-A")
        monkeypatch.setenv("DATABASE_URL", db_url)
        assert main.main(["add", "bob@example.com"]) == main.EXIT_OK
        assert main.main(["check", "bob@example.com"]) == main.EXIT_OK
        assert main.main(["check", "alice@example.com"]) == main.EXIT_FAILED


class TestStartupLog:
    def test_reports_local_only_mode(self, db_url, make_directory, caplog):
        settings = Settings(radius_server_id="site-A", database_url=db_url)
        with caplog.at_level(logging.INFO, logger="radiusauthz.bootstrap"):
            svc = bootstrap.start(settings, directory=make_directory())
        svc.close()
        assert "local-only mode" in caplog.text

    def test_reports_configured_directory(self, db_url, make_directory, caplog):
        settings = Settings(
            radius_server_id="site-A",
            database_url=db_url,
            azure_tenant_id="t",
            azure_client_id="c",
            azure_client_secret="s",
        )
        with caplog.at_level(logging.INFO, logger="radiusauthz.bootstrap"):
            svc = bootstrap.start(settings, directory=make_directory())
        svc.close()
        assert "directory credentials configured" in caplog.text
