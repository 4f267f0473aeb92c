"""Configuration management for the wallet agent client.

This module handles loading user configuration from
~/.config/walletagent/init.py and provides a sandboxed execution
environment for user settings.
"""

from __future__ import annotations

import os
import traceback
from pathlib import Path
from typing import Any, Optional


class WalletAgentConfig:
    """Configuration container for wallet agent settings.

    This class stores configuration values that can be set by the user's
    init.py file. All settings have sensible defaults.
    """

    def __init__(self):
        # Backend
        self.api_base_url: Optional[str] = None  # e.g., https://api.example.com
        self.stream_path: str = "/agent/stream"
        self.connect_timeout: float = 30.0

        # Wallet
        self.wallet_address: Optional[str] = None
        self.chain_id: int = 8453  # Base mainnet
        self.controls: dict[str, Any] = {}

        # Streaming
        self.watchdog_timeout: float = 300.0
        self.render_interval: float = 1.0 / 60.0

        # Session settings
        self.save_sessions: bool = False
        self.sessions_dir: Optional[str] = None  # Defaults to ~/.walletagent/sessions/

        # Custom settings (user can add any additional settings)
        self._custom: dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        """Set a custom configuration value."""
        self._custom[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a custom configuration value."""
        return self._custom.get(key, default)

    @property
    def stream_url(self) -> str:
        return (self.api_base_url or "").rstrip("/") + self.stream_path


def get_config_path() -> Path:
    """Get the path to the user's config directory."""
    config_home = os.environ.get('XDG_CONFIG_HOME')
    if config_home:
        return Path(config_home) / 'walletagent'
    return Path.home() / '.config' / 'walletagent'


def get_init_script_path() -> Path:
    """Get the path to the user's init.py script."""
    return get_config_path() / 'init.py'


def load_config() -> tuple[WalletAgentConfig, Optional[str]]:
    """Load configuration from ~/.config/walletagent/init.py.

    The init.py file is executed in a sandboxed environment where it can set
    configuration values on a 'config' object.

    Returns:
        A tuple of (config, error_message). If loading fails, error_message
        will contain details about the failure.
    """
    config = WalletAgentConfig()
    init_path = get_init_script_path()

    if not init_path.exists():
        return config, None

    sandbox = {
        '__builtins__': {
            'True': True,
            'False': False,
            'None': None,
            'str': str,
            'int': int,
            'float': float,
            'bool': bool,
            'list': list,
            'dict': dict,
            'tuple': tuple,
            'set': set,
            'len': len,
            'range': range,
            'enumerate': enumerate,
            'zip': zip,
            'print': print,
            # Denied
            '__import__': None,
            'open': None,
            'exec': None,
            'eval': None,
            'compile': None,
        },
        'config': config,
    }

    try:
        with open(init_path, 'r') as f:
            code = f.read()

        exec(code, sandbox)
        return config, None

    except Exception:
        error_msg = f"Error loading config from {init_path}:\n{traceback.format_exc()}"
        return config, error_msg


def get_sessions_dir(config: WalletAgentConfig) -> Path:
    """Get the directory for storing session transcripts.

    Returns the configured sessions directory, or the default
    ~/.walletagent/sessions/
    """
    if config.sessions_dir:
        return Path(config.sessions_dir).expanduser()

    return Path.home() / '.walletagent' / 'sessions'


def ensure_sessions_dir(config: WalletAgentConfig) -> Path:
    """Ensure the sessions directory exists and return it."""
    sessions_dir = get_sessions_dir(config)
    sessions_dir.mkdir(parents=True, exist_ok=True)
    return sessions_dir
