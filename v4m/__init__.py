"""v4m: provision and launch a local VM from a cloud image."""

__version__ = "1.0.0"

__all__ = [
    "cli",
    "cloudinit",
    "config",
    "constants",
    "disk",
    "exceptions",
    "identity",
    "images",
    "launcher",
    "models",
    "network",
    "readiness",
    "runtime",
    "state",
    "tools",
    "utils",
    "vm",
]
