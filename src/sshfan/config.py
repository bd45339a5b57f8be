"""User configuration management for sshfan."""

from __future__ import annotations

import logging
import os
import shlex
from pathlib import Path
from typing import Any

import yaml
from vpd.next.util import read_yaml

from sshfan.orchestration.ssh import DEFAULT_CONNECT_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "sshfan"
CONFIG_ENV_VAR = "SSHFAN_CONFIG"


class ConfigError(Exception):
    """Raised when the config file exists but cannot be used."""

    pass


def default_config_path() -> Path:
    """Config path from ``$SSHFAN_CONFIG``, falling back to DEFAULT_CONFIG_DIR."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_DIR / "config.yaml"


class SshfanConfig:
    """Manages sshfan user configuration.

    Example ``config.yaml``::

        ssh:
          user: ops
          key: ~/.ssh/id_ed25519
          jumpbox: bastion.example.com
          options: ["-o ServerAliveInterval=15"]
        defaults:
          processes: 16
          connect_timeout: 10
          timeout: 600
    """

    def __init__(self, config_path: Path | None = None):
        self.config_path = Path(config_path).expanduser() if config_path else default_config_path()
        self._data: dict[str, Any] = {}
        self._load()

    def _load(self):
        if not self.config_path.exists():
            self._data = {}
            return
        try:
            data = read_yaml(str(self.config_path)) or {}
        except yaml.YAMLError as e:
            raise ConfigError("Invalid YAML in %s: %s" % (self.config_path, e)) from e
        if not isinstance(data, dict):
            raise ConfigError("Config file %s must contain a mapping" % self.config_path)
        self._data = data
        self._validate()
        logger.debug("Loaded config from %s", self.config_path)

    def _validate(self):
        """Check section shapes up front so bad files fail at load time."""
        for name in ("ssh", "defaults"):
            self._section(name)
        _ = self.ssh_options

    def _section(self, name: str) -> dict[str, Any]:
        section = self._data.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigError("Config section '%s' in %s must be a mapping" % (name, self.config_path))
        return section

    @property
    def ssh_user(self) -> str | None:
        return self._section("ssh").get("user")

    @property
    def ssh_key(self) -> str | None:
        key = self._section("ssh").get("key")
        return os.path.expanduser(key) if key else None

    @property
    def ssh_options(self) -> list[str]:
        """Extra ssh arguments; ``"-o Foo=bar"`` entries are split shell-style."""
        options = self._section("ssh").get("options", [])
        if options is None:
            return []
        if isinstance(options, str):
            options = [options]
        if not isinstance(options, list):
            raise ConfigError("Config key 'ssh.options' in %s must be a list or a string, got %s"
                              % (self.config_path, type(options).__name__))
        args: list[str] = []
        for opt in options:
            try:
                args.extend(shlex.split(str(opt)))
            except ValueError as e:
                raise ConfigError("Cannot parse ssh option %r in %s: %s" % (opt, self.config_path, e)) from e
        return args

    @property
    def ssh_binary(self) -> str:
        return self._section("ssh").get("binary", "ssh")

    @property
    def jumpbox(self) -> str | None:
        return self._section("ssh").get("jumpbox")

    @property
    def default_processes(self) -> int | None:
        return self._section("defaults").get("processes")

    @property
    def connect_timeout(self) -> int:
        return self._section("defaults").get("connect_timeout", DEFAULT_CONNECT_TIMEOUT)

    @property
    def timeout(self) -> int | None:
        return self._section("defaults").get("timeout")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a config value by dot-separated key path."""
        parts = key.split(".")
        current = self._data
        for part in parts:
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current


def build_ssh_kwargs(
        config: SshfanConfig | None,
        ssh_user: str | None = None,
        ssh_key: str | None = None,
) -> dict[str, Any]:
    """Extract SSH connection parameters from a SshfanConfig.

    Explicit *ssh_user* / *ssh_key* (from the CLI) win over the config.
    Returns a dict suitable for ``**kwargs`` into :func:`run_remote_script`.
    """
    if not config:
        kwargs: dict[str, Any] = {}
    else:
        kwargs = {
            "ssh_user": config.ssh_user,
            "ssh_key": config.ssh_key,
            "ssh_options": config.ssh_options,
            "ssh_binary": config.ssh_binary,
        }
    if ssh_user:
        kwargs["ssh_user"] = ssh_user
    if ssh_key:
        kwargs["ssh_key"] = os.path.expanduser(ssh_key)
    return kwargs
