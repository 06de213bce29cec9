"""Reading and writing the TOML configuration file and locating home directories."""

from __future__ import annotations

import base64
import binascii
import os
import re
import sys
import tempfile
import tomllib
from pathlib import Path
from typing import Any

import tomli_w

CD_GENERATED_HEADER = "# AUTO-GENERATED VIA CD FLAG - DO NOT MODIFY\n\n"
DEFAULT_HOME_DIR = "/etc/controld"
SOCKET_DIR = "/var/run"

_POSITION_RE = re.compile(r"\(at line (\d+), column (\d+)\)")


class ConfigDecodeError(ValueError):
    """Raised when a config document is not valid TOML; carries its position."""

    def __init__(self, message: str, line: int, column: int) -> None:
        super().__init__(message)
        self.line = line
        self.column = column

    @property
    def position(self) -> tuple[int, int]:
        """Return (line, column) of the error."""
        return self.line, self.column


def _error_position(message: str, text: str) -> tuple[int, int]:
    match = _POSITION_RE.search(message)
    if match:
        return int(match.group(1)), int(match.group(2))
    # Errors at the end of the document carry no explicit position.
    lines = text.split("\n")
    return len(lines), len(lines[-1]) + 1


def read_config_text(text: str) -> dict[str, Any]:
    """Parse a TOML config document; raise ConfigDecodeError if invalid."""
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        message = str(exc)
        line, column = _error_position(message, text)
        raise ConfigDecodeError(message, line, column) from exc


def read_base64_config(data: str) -> dict[str, Any] | None:
    """Decode a base64 encoded TOML config; return None for empty input."""
    if not data:
        return None
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64 config: {exc}") from exc
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError(f"invalid base64 config: {exc}") from exc
    return read_config_text(text)


def read_config_file(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Read and parse the config file at path."""
    return read_config_text(Path(path).read_text(encoding="utf-8"))


def write_config_file(
    cfg: dict[str, Any], path: str | os.PathLike[str], cd_generated: bool = False
) -> None:
    """Write cfg as TOML to path, marking it as generated when cd_generated is set."""
    fd = os.open(os.fspath(path), os.O_CREAT | os.O_TRUNC | os.O_WRONLY, 0o644)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        if cd_generated:
            f.write(CD_GENERATED_HEADER)
        f.write(tomli_w.dumps(cfg))


def set_listener_default_value(cfg: dict[str, Any]) -> None:
    """Add a default listener to cfg if it defines none."""
    if not cfg.get("listener"):
        cfg["listener"] = {"0": {"ip": "", "port": 0}}


def dir_writable(directory: str | os.PathLike[str]) -> bool:
    """Report whether a file can be created in directory."""
    try:
        fd, name = tempfile.mkstemp(dir=directory)
    except OSError:
        return False
    os.close(fd)
    try:
        os.remove(name)
    except OSError:
        pass
    return True


def user_home_dir() -> str:
    """Return the directory holding the config file."""
    if sys.platform == "win32":
        return os.path.dirname(os.path.abspath(sys.argv[0] or sys.executable))
    directory = DEFAULT_HOME_DIR
    try:
        os.makedirs(directory, mode=0o750, exist_ok=True)
    except OSError:
        return os.path.expanduser("~")
    if not dir_writable(directory):
        return os.path.expanduser("~")
    return directory


def socket_dir() -> str:
    """Return the directory where control sockets are created."""
    if sys.platform == "win32":
        return user_home_dir()
    if not dir_writable(SOCKET_DIR):
        return user_home_dir()
    return SOCKET_DIR


def abs_home_dir(filename: str, homedir: str = "") -> str:
    """Return filename joined to homedir, or to the user home directory."""
    if homedir:
        return os.path.join(homedir, filename)
    try:
        directory = user_home_dir()
    except OSError:
        return filename
    return os.path.join(directory, filename)