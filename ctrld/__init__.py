"""Local DNS forwarding proxy management: listeners, control socket, config and self checks."""

__version__ = "0.1.0"

__all__ = [
    "client_info",
    "logconn",
    "control",
    "options",
    "listener",
    "configfile",
    "selfcheck",
    "cli",
]