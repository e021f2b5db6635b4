"""Gameserver container, image and volume management on top of the engine client."""

from __future__ import annotations

import base64
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from .backups import BackupOperations
from .engine import DockerError, EngineClient
from .records import Gameserver, GameserverStatus, VolumeInfo

logger = logging.getLogger(__name__)

_DEFAULT_AUTH = base64.urlsafe_b64encode(b"{}").decode("ascii")
_CPU_PERIOD = 100_000
_MANAGED_LABEL = "gameserver.managed"
_ID_LABEL = "gameserver.id"

_STATE_TO_STATUS = {
    "running": GameserverStatus.RUNNING,
    "exited": GameserverStatus.STOPPED,
    "created": GameserverStatus.STOPPED,
    "restarting": GameserverStatus.STARTING,
}


def needs_pull(local_digest: str, remote_digest: str) -> bool:
    """Whether a local image whose digest is ``local_digest`` is behind ``remote_digest``."""
    return remote_digest not in local_digest and local_digest != remote_digest


class DockerManager(BackupOperations):
    """Creates and drives gameserver containers, their images and data volumes."""

    def __init__(
        self,
        client: Any,
        namespace: str = "gameservers",
        stop_timeout: float | timedelta = 30.0,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(client, clock=clock)
        self.namespace = namespace
        if isinstance(stop_timeout, timedelta):
            stop_timeout = stop_timeout.total_seconds()
        self.stop_timeout = float(stop_timeout)

    @classmethod
    def connect(
        cls,
        docker_socket: str = "",
        namespace: str = "gameservers",
        stop_timeout: float | timedelta = 30.0,
    ) -> DockerManager:
        """Build a manager talking to ``docker_socket``, or to the environment's engine."""
        logger.info("Connecting to Docker daemon")
        if docker_socket:
            logger.info("Using custom Docker socket %s", docker_socket)
        try:
            client = EngineClient(docker_socket)
        except DockerError as exc:
            logger.error("Failed to create Docker client: %s", exc)
            raise DockerError("connect", "failed to create Docker client", exc) from exc
        manager = cls(client, namespace, stop_timeout)
        logger.info("Docker client ready (namespace=%s, stop_timeout=%ss)", namespace, manager.stop_timeout)
        return manager

    # -- containers ---------------------------------------------------------

    def create_container(self, server: Gameserver) -> None:
        """Create the container for ``server`` and record its id and status on it."""
        logger.info("Creating container for gameserver %s (%s) from %s", server.id, server.name, server.image)

        try:
            self.pull_image_if_needed(server.image)
        except DockerError as exc:
            logger.warning("Failed to pull image %s, proceeding anyway: %s", server.image, exc)

        env = list(server.environment)
        if server.memory_mb > 0:
            env.append(f"MEMORY_MB={server.memory_mb}")

        exposed_ports = {mapping.port_key(): {} for mapping in server.port_mappings}

        port_bindings: dict[str, list[dict[str, str]]] = {}
        for mapping in server.port_mappings:
            if mapping.host_port == 0:
                raise DockerError(
                    "create",
                    f"port mapping for {mapping.protocol}:{mapping.container_port} has no assigned host port",
                )
            port_bindings[mapping.port_key()] = [{"HostIp": "0.0.0.0", "HostPort": str(mapping.host_port)}]

        host_config: dict[str, Any] = {
            "PortBindings": port_bindings,
            "RestartPolicy": {"Name": "unless-stopped"},
            "Memory": server.memory_mb * 1024 * 1024,
        }
        if server.cpu_cores > 0:
            host_config["CpuQuota"] = int(server.cpu_cores * _CPU_PERIOD)
            host_config["CpuPeriod"] = _CPU_PERIOD

        volume_name = self.volume_name_for(server)
        try:
            self.create_volume(volume_name)
        except DockerError as exc:
            logger.error("Failed to create volume %s: %s", volume_name, exc)
            raise
        host_config["Binds"] = [f"{volume_name}:/data", *server.volumes]

        config = {
            "Image": server.image,
            "Env": env,
            "ExposedPorts": exposed_ports,
            "Labels": {
                _ID_LABEL: server.id,
                "gameserver.name": server.name,
                "gameserver.type": server.game_type,
            },
            "HostConfig": host_config,
            "NetworkingConfig": {},
        }

        container_name = f"{self.namespace}-{server.name}"
        try:
            response = self._client.container_create(container_name, config)
        except DockerError as exc:
            logger.error("Failed to create container for gameserver %s: %s", server.id, exc)
            raise DockerError("create", f"failed to create container for server {server.name}", exc) from exc

        server.container_id = response["Id"]
        server.status = GameserverStatus.STOPPED
        server.updated_at = datetime.now()
        logger.info("Container %s created for gameserver %s", server.container_id, server.id)

    def start_container(self, container_id: str) -> None:
        try:
            self._client.container_start(container_id)
        except DockerError as exc:
            raise DockerError("start", f"failed to start container {container_id}", exc) from exc

    def stop_container(self, container_id: str) -> None:
        """Stop the container, giving it the configured grace period."""
        try:
            self._client.container_stop(container_id, int(self.stop_timeout))
        except DockerError as exc:
            raise DockerError("stop", f"failed to stop container {container_id}", exc) from exc

    def remove_container(self, container_id: str) -> None:
        try:
            self._client.container_remove(container_id, True)
        except DockerError as exc:
            raise DockerError("remove", f"failed to remove container {container_id}", exc) from exc

    def get_container_status(self, container_id: str) -> GameserverStatus:
        """Map the container's engine state onto a gameserver status."""
        try:
            inspect = self._client.container_inspect(container_id)
        except DockerError as exc:
            raise DockerError("inspect", f"failed to inspect container {container_id}", exc) from exc
        state = (inspect.get("State") or {}).get("Status", "")
        return _STATE_TO_STATUS.get(state, GameserverStatus.ERROR)

    def list_containers(self) -> list[str]:
        """Ids of every gameserver container, running or not."""
        try:
            containers = self._client.container_list(True, {"label": [_ID_LABEL]})
        except DockerError as exc:
            raise DockerError("list", "failed to list containers", exc) from exc
        return [container["Id"] for container in containers]

    # -- volumes ------------------------------------------------------------

    def create_volume(self, volume_name: str) -> None:
        """Create a managed volume unless one by that name already exists."""
        try:
            self._client.volume_inspect(volume_name)
        except DockerError:
            pass
        else:
            logger.debug("Volume %s already exists", volume_name)
            return

        logger.info("Creating volume %s", volume_name)
        try:
            self._client.volume_create(volume_name, {_MANAGED_LABEL: "true"})
        except DockerError as exc:
            raise DockerError("create_volume", f"failed to create volume {volume_name}", exc) from exc
        logger.info("Created volume %s", volume_name)

    def remove_volume(self, volume_name: str) -> None:
        logger.info("Removing volume %s", volume_name)
        try:
            self._client.volume_remove(volume_name, True)
        except DockerError as exc:
            raise DockerError("remove_volume", f"failed to remove volume {volume_name}", exc) from exc
        logger.info("Removed volume %s", volume_name)

    def get_volume_info(self, volume_name: str) -> VolumeInfo:
        try:
            volume = self._client.volume_inspect(volume_name)
        except DockerError as exc:
            raise DockerError("inspect_volume", f"failed to inspect volume {volume_name}", exc) from exc
        return VolumeInfo(
            name=volume.get("Name", ""),
            mount_point=volume.get("Mountpoint", ""),
            driver=volume.get("Driver", ""),
            created_at=volume.get("CreatedAt", ""),
            labels=dict(volume.get("Labels") or {}),
        )

    def volume_name_for(self, server: Gameserver) -> str:
        """The data volume name for a gameserver."""
        return f"gameservers-{server.name}-data"

    # -- images -------------------------------------------------------------

    def should_pull_image(self, image_name: str) -> bool:
        """True when the image is missing locally or the registry has a different digest."""
        try:
            local = self._client.image_inspect(image_name)
        except DockerError:
            logger.debug("Image %s not found locally, should pull", image_name)
            return True

        repo_digests = local.get("RepoDigests") or []
        local_digest = repo_digests[0] if repo_digests else local.get("Id", "")

        try:
            remote = self._client.distribution_inspect(image_name, _DEFAULT_AUTH)
            remote_digest = remote["Descriptor"]["digest"]
        except (DockerError, KeyError, TypeError) as exc:
            logger.warning("Failed to get remote digest of %s, skipping pull: %s", image_name, exc)
            return False

        result = needs_pull(local_digest, remote_digest)
        logger.debug("Image %s local=%s remote=%s needs_pull=%s", image_name, local_digest, remote_digest, result)
        return result

    def pull_image(self, image_name: str) -> None:
        logger.info("Pulling image %s", image_name)
        try:
            output = self._client.image_pull(image_name, _DEFAULT_AUTH)
        except DockerError as exc:
            raise DockerError("pull", f"failed to pull image {image_name}", exc) from exc
        if output and output.strip():
            logger.debug("Pull output for %s: %s", image_name, output)
        logger.info("Pulled image %s", image_name)

    def pull_image_if_needed(self, image_name: str) -> None:
        """Pull the image only when the registry holds a newer one."""
        if not self.should_pull_image(image_name):
            logger.debug("Image %s is up to date", image_name)
            return
        self.pull_image(image_name)