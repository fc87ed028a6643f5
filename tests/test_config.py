"""
Tests for local/config.py and the command-line parser in main.py.
"""

import importlib

import pytest

import pingguard.settings as default_settings
from helpers import make_config
from pingguard.local.config import ConfigError, MergedSettings, parse_listen_addr
from pingguard.main import parse_args


@pytest.mark.unit
class TestParseListenAddr:

    @pytest.mark.parametrize("addr, expected", [
        ("0.0.0.0:12345", ("0.0.0.0", 12345)),
        ("127.0.0.1:0", ("127.0.0.1", 0)),
        ("[::1]:8080", ("::1", 8080)),
        (" localhost:53 ", ("localhost", 53)),
    ])
    def test_valid_addresses(self, addr, expected):
        assert parse_listen_addr(addr) == expected

    @pytest.mark.parametrize("addr", ["12345", ":12345", "127.0.0.1:", "127.0.0.1:http", "127.0.0.1:70000"])
    def test_invalid_addresses(self, addr):
        with pytest.raises(ConfigError):
            parse_listen_addr(addr)


@pytest.mark.unit
class TestMergedSettings:

    def test_defaults_come_from_settings_module(self):
        config = MergedSettings()

        assert config.EXIT_CODE_TIMEOUT == 1
        assert config.EXIT_CODE_LISTENER_FAILED == 3
        assert config.CHILD_BINARY == ""
        assert config.CHILD_ARGS == []

    def test_none_override_keeps_default(self):
        config = MergedSettings()
        default_timeout = config.TIMEOUT_SECS

        config.apply_overrides({"TIMEOUT_SECS": None, "LISTEN_ADDR": "127.0.0.1:9"})

        assert config.TIMEOUT_SECS == default_timeout
        assert config.listen_address == ("127.0.0.1", 9)

    def test_unknown_override_is_ignored(self):
        config = make_config(NOT_A_SETTING=1)

        assert config.get("NOT_A_SETTING") is None
        assert config.get("NOT_A_SETTING", "fallback") == "fallback"

    def test_valid_configuration_passes(self):
        make_config(CHILD_BINARY="/bin/true", TIMEOUT_SECS=3).validate()

    def test_numeric_settings_are_parsed_from_strings(self):
        config = make_config(CHILD_BINARY="/bin/true", TIMEOUT_SECS="7", KILL_GRACE_PERIOD="0.25")

        config.validate()

        assert config.TIMEOUT_SECS == 7
        assert config.KILL_GRACE_PERIOD == 0.25
        assert isinstance(config.SHUTDOWN_GRACE_PERIOD, float)

    @pytest.mark.parametrize("overrides", [
        {"TIMEOUT_SECS": "soon"},
        {"TIMEOUT_SECS": "2.5"},
        {"KILL_GRACE_PERIOD": "fast"},
        {"SHUTDOWN_GRACE_PERIOD": ""},
    ])
    def test_malformed_numbers_are_config_errors(self, overrides):
        with pytest.raises(ConfigError):
            make_config(CHILD_BINARY="/bin/true", **overrides).validate()

    def test_malformed_environment_value_fails_validation_not_import(self, monkeypatch):
        monkeypatch.setenv("PINGGUARD_TIMEOUT_SECS", "five")
        try:
            importlib.reload(default_settings)
            config = make_config(CHILD_BINARY="/bin/true")

            assert config.TIMEOUT_SECS == "five"
            with pytest.raises(ConfigError, match="TIMEOUT_SECS"):
                config.validate()
        finally:
            monkeypatch.delenv("PINGGUARD_TIMEOUT_SECS")
            importlib.reload(default_settings)

    @pytest.mark.parametrize("overrides", [
        {"CHILD_BINARY": "/bin/true", "TIMEOUT_SECS": 0},
        {"CHILD_BINARY": "/bin/true", "TIMEOUT_SECS": -4},
        {"CHILD_BINARY": ""},
        {"CHILD_BINARY": "/bin/true", "LISTEN_ADDR": "nowhere"},
        {"CHILD_BINARY": "/bin/true", "KILL_GRACE_PERIOD": -0.5},
        {"CHILD_BINARY": "/bin/true", "SHUTDOWN_GRACE_PERIOD": -1.0},
    ])
    def test_rejected_configurations(self, overrides):
        with pytest.raises(ConfigError):
            make_config(**overrides).validate()


@pytest.mark.unit
class TestCommandLine:

    def test_defaults(self):
        args = parse_args(["/usr/bin/worker"])

        assert args.binary == "/usr/bin/worker"
        assert args.listen_addr is None
        assert args.timeout_secs is None
        assert args.verbose is False
        assert args.child_args == []

    def test_options_and_child_arguments(self):
        args = parse_args(["-l", "127.0.0.1:9999", "-t", "10", "-v", "/usr/bin/worker", "--", "--port", "80"])

        assert args.listen_addr == "127.0.0.1:9999"
        assert args.timeout_secs == 10
        assert args.verbose is True
        assert args.child_args == ["--port", "80"]

    def test_non_numeric_timeout_is_rejected(self):
        with pytest.raises(SystemExit):
            parse_args(["-t", "soon", "/usr/bin/worker"])

    def test_missing_binary_is_rejected(self):
        with pytest.raises(SystemExit):
            parse_args([])
