"""
Unit tests for environment-driven settings.
"""

from autopilot.settings import AutopilotSettings


ENV_VARS = [
    "SLACK_WEBHOOK_URL",
    "AUTOPILOT_AUDIT_LOG_FILE",
    "AUTOPILOT_STORE_DIR",
    "AUTOPILOT_GENERATOR_TIMEOUT",
    "AUTOPILOT_MAX_WORKERS",
    "AUTOPILOT_GLOBAL_ENABLED",
]


class TestSettings:
    """Test AutopilotSettings.from_env."""

    def test_defaults(self, monkeypatch):
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)

        settings = AutopilotSettings.from_env()

        assert settings.slack_webhook_url is None
        assert settings.store_dir is None
        assert settings.generator_timeout == 30.0
        assert settings.max_workers == 4
        assert settings.global_enabled is True

    def test_values_from_env(self, monkeypatch):
        monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.slack.test/x")
        monkeypatch.setenv("AUTOPILOT_STORE_DIR", "/tmp/autopilot")
        monkeypatch.setenv("AUTOPILOT_GENERATOR_TIMEOUT", "2.5")
        monkeypatch.setenv("AUTOPILOT_MAX_WORKERS", "8")
        monkeypatch.setenv("AUTOPILOT_GLOBAL_ENABLED", "off")

        settings = AutopilotSettings.from_env()

        assert settings.slack_webhook_url == "https://hooks.slack.test/x"
        assert settings.store_dir == "/tmp/autopilot"
        assert settings.generator_timeout == 2.5
        assert settings.max_workers == 8
        assert settings.global_enabled is False

    def test_empty_values_mean_unset(self, monkeypatch):
        monkeypatch.setenv("SLACK_WEBHOOK_URL", "")
        monkeypatch.setenv("AUTOPILOT_GLOBAL_ENABLED", "")

        settings = AutopilotSettings.from_env()

        assert settings.slack_webhook_url is None
        assert settings.global_enabled is True
