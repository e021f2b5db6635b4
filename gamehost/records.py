"""Plain records describing gameservers, files and volumes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class GameserverStatus(str, Enum):
    """Lifecycle state of a gameserver container."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


@dataclass
class PortMapping:
    """A container port published on the host."""

    name: str
    protocol: str
    container_port: int
    host_port: int = 0

    def port_key(self) -> str:
        """The engine's port key, e.g. ``25565/tcp``."""
        return f"{self.container_port}/{self.protocol}"


@dataclass
class Gameserver:
    """A gameserver and the container that runs it."""

    id: str
    name: str
    game_id: str = ""
    game_type: str = ""
    image: str = ""
    memory_mb: int = 0
    cpu_cores: float = 0.0
    port_mappings: list[PortMapping] = field(default_factory=list)
    environment: list[str] = field(default_factory=list)
    volumes: list[str] = field(default_factory=list)
    container_id: str = ""
    status: GameserverStatus = GameserverStatus.STOPPED
    updated_at: datetime | None = None


@dataclass
class FileInfo:
    """One entry of a directory listing inside a container."""

    name: str
    path: str
    is_dir: bool
    size: int
    modified: str


@dataclass
class VolumeInfo:
    """Details of a managed volume."""

    name: str
    mount_point: str
    driver: str
    created_at: str = ""
    labels: dict[str, str] = field(default_factory=dict)