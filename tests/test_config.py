"""Tests for configuration loading and sandboxing."""

from pathlib import Path

from walletagent.config import (
    WalletAgentConfig,
    ensure_sessions_dir,
    get_config_path,
    get_sessions_dir,
    load_config,
)


class TestWalletAgentConfig:
    def test_defaults(self):
        c = WalletAgentConfig()
        assert c.api_base_url is None
        assert c.stream_path == "/agent/stream"
        assert c.chain_id == 8453
        assert c.watchdog_timeout == 300.0
        assert c.render_interval == 1.0 / 60.0
        assert c.connect_timeout == 30.0
        assert c.controls == {}
        assert c.save_sessions is False

    def test_custom_settings(self):
        c = WalletAgentConfig()
        c.set("my_key", "my_value")
        assert c.get("my_key") == "my_value"
        assert c.get("missing", "default") == "default"

    def test_stream_url(self):
        c = WalletAgentConfig()
        c.api_base_url = "https://api.example.com/"
        assert c.stream_url == "https://api.example.com/agent/stream"


class TestConfigPath:
    def test_xdg_config_home(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert get_config_path() == tmp_path / "walletagent"

    def test_default(self, monkeypatch):
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        assert get_config_path() == Path.home() / ".config" / "walletagent"


class TestLoadConfig:
    def test_no_config_file(self, monkeypatch, tmp_path):
        """When no init.py exists, should return defaults with no error."""
        monkeypatch.setattr("walletagent.config.get_init_script_path", lambda: tmp_path / "init.py")
        config, error = load_config()
        assert error is None
        assert config.api_base_url is None

    def test_valid_config(self, monkeypatch, tmp_config_dir):
        init_file = tmp_config_dir / "init.py"
        init_file.write_text(
            'config.api_base_url = "https://agent.example.com"\n'
            'config.chain_id = 1\n'
            'config.controls = {"autoExecute": False}\n'
            'config.watchdog_timeout = 60\n'
        )
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_config_dir.parent))
        config, error = load_config()
        assert error is None
        assert config.api_base_url == "https://agent.example.com"
        assert config.chain_id == 1
        assert config.controls == {"autoExecute": False}
        assert config.watchdog_timeout == 60

    def test_sandbox_blocks_import(self, monkeypatch, tmp_path):
        """The sandbox should prevent __import__ calls."""
        init_file = tmp_path / "init.py"
        init_file.write_text("import os\n")
        monkeypatch.setattr("walletagent.config.get_init_script_path", lambda: init_file)
        config, error = load_config()
        assert error is not None
        assert "Error" in error

    def test_sandbox_blocks_open(self, monkeypatch, tmp_path):
        init_file = tmp_path / "init.py"
        init_file.write_text("f = open('/etc/passwd')\n")
        monkeypatch.setattr("walletagent.config.get_init_script_path", lambda: init_file)
        config, error = load_config()
        assert error is not None

    def test_sandbox_allows_basic_types(self, monkeypatch, tmp_path):
        init_file = tmp_path / "init.py"
        init_file.write_text(
            'x = str(42)\n'
            'y = list(range(3))\n'
            'config.set("x", x)\n'
            'config.set("y", y)\n'
        )
        monkeypatch.setattr("walletagent.config.get_init_script_path", lambda: init_file)
        config, error = load_config()
        assert error is None
        assert config.get("x") == "42"
        assert config.get("y") == [0, 1, 2]

    def test_syntax_error_in_config(self, monkeypatch, tmp_path):
        init_file = tmp_path / "init.py"
        init_file.write_text("def f(:\n")
        monkeypatch.setattr("walletagent.config.get_init_script_path", lambda: init_file)
        config, error = load_config()
        assert error is not None
        assert "SyntaxError" in error


class TestSessionsDir:
    def test_default_path(self):
        c = WalletAgentConfig()
        assert get_sessions_dir(c) == Path.home() / ".walletagent" / "sessions"

    def test_tilde_expansion(self):
        c = WalletAgentConfig()
        c.sessions_dir = "~/my_sessions"
        result = get_sessions_dir(c)
        assert str(result).startswith(str(Path.home()))
        assert result.name == "my_sessions"

    def test_ensure_creates_directory(self, tmp_path):
        c = WalletAgentConfig()
        c.sessions_dir = str(tmp_path / "a" / "b")
        path = ensure_sessions_dir(c)
        assert path.is_dir()
