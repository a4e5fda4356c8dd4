"""Tests for v4compat.core.config — settings loading and overrides."""

from __future__ import annotations

import os
from unittest.mock import patch

from v4compat.core.config import Settings, get_settings
from v4compat.executor.probe_executor import PhaseTimeouts


class TestSettings:
    """Verify settings defaults and environment overrides."""

    def test_default_app_env(self):
        s = Settings()
        assert s.app_env == "development"

    def test_default_rpc_url(self):
        s = Settings()
        assert s.rpc_url.startswith("http://")

    def test_phase_deadline_defaults(self):
        s = Settings()
        assert s.dry_run_timeout_seconds == 15.0
        assert s.estimate_timeout_seconds == 10.0
        assert s.commit_timeout_seconds == 45.0
        assert s.extended_commit_timeout_seconds == 60.0
        assert s.soft_warning_seconds == 30.0

    def test_env_override(self):
        with patch.dict(os.environ, {"V4COMPAT_COMMIT_TIMEOUT_SECONDS": "90", "V4COMPAT_APP_ENV": "production"}):
            s = Settings()
        assert s.commit_timeout_seconds == 90.0
        assert s.app_env == "production"

    def test_tester_address_from_env(self):
        with patch.dict(os.environ, {"V4COMPAT_TESTER_ADDRESS": "0xabc"}):
            s = Settings()
        assert s.tester_address == "0xabc"

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()


class TestPhaseTimeoutsFromSettings:
    def test_maps_fields(self):
        s = Settings(dry_run_timeout_seconds=3, estimate_timeout_seconds=2, commit_timeout_seconds=7, soft_warning_seconds=1)
        timeouts = PhaseTimeouts.from_settings(s)
        assert timeouts.dry_run == 3
        assert timeouts.estimate == 2
        assert timeouts.commit == 7
        assert timeouts.verify == 3
        assert timeouts.soft_warning == 1
