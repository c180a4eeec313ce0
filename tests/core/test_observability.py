"""
Tests for the Logfire setup helpers.
"""

from unittest.mock import patch

from orbcast.core import observability
from orbcast.core.observability import get_logfire, setup_logfire


class TestSetupLogfire:
    def test_skipped_without_token(self, monkeypatch):
        monkeypatch.delenv("LOGFIRE_TOKEN", raising=False)
        monkeypatch.setattr(observability, "_logfire_configured", False)
        assert setup_logfire() is False

    def test_configures_with_token(self, monkeypatch):
        monkeypatch.setenv("LOGFIRE_TOKEN", "token")
        monkeypatch.setattr(observability, "_logfire_configured", False)
        with patch.object(observability.logfire, "configure") as configure, \
                patch.object(observability.logfire, "instrument_pydantic"):
            assert setup_logfire(project_name="orbcast-test") is True
        assert configure.call_args.kwargs["project_name"] == "orbcast-test"
        assert observability.is_logfire_configured() is True

    def test_configure_failure_returns_false(self, monkeypatch):
        monkeypatch.setenv("LOGFIRE_TOKEN", "token")
        monkeypatch.setattr(observability, "_logfire_configured", False)
        with patch.object(observability.logfire, "configure", side_effect=RuntimeError("boom")):
            assert setup_logfire() is False


class TestGetLogfire:
    def test_stub_when_not_configured(self, monkeypatch):
        monkeypatch.setattr(observability, "_logfire_configured", False)
        lf = get_logfire()
        with lf.span("safe_predict", ad_id="a"):
            lf.info("ignored")

    def test_module_when_configured(self, monkeypatch):
        monkeypatch.setattr(observability, "_logfire_configured", True)
        assert get_logfire() is observability.logfire
