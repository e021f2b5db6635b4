"""Docker-backed management of game server containers, files, volumes and backups."""

__version__ = "0.1.0"
__all__ = ["__version__"]