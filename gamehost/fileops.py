"""File and command operations inside gameserver containers."""

from __future__ import annotations

import io
import logging
import posixpath
import tarfile
from collections.abc import Iterable
from typing import Any, BinaryIO

import httpx

from .engine import DockerError
from .listing import (
    BACKUPS_ROOT,
    SERVER_AND_BACKUPS,
    SERVER_ONLY,
    SERVER_ROOT,
    create_tar_archive,
    parse_ls_output,
    sort_files,
    validate_path,
)
from .records import FileInfo

logger = logging.getLogger(__name__)

MAX_READ_SIZE = 10 * 1024 * 1024
SEND_COMMAND_SCRIPT = "/data/scripts/send-command.sh"


def _is_timeout(exc: BaseException | None) -> bool:
    while exc is not None:
        if isinstance(exc, httpx.TimeoutException):
            return True
        exc = exc.err if isinstance(exc, DockerError) else exc.__cause__
    return False


class FileOperations:
    """Runs commands and moves files in and out of containers through an engine client."""

    def __init__(self, client: Any):
        self._client = client

    # -- commands -----------------------------------------------------------

    def exec_command(self, container_id: str, cmd: Iterable[str]) -> str:
        """Run ``cmd`` in the container and return its output; a non-zero exit raises."""
        try:
            exec_id = self._client.exec_create(container_id, list(cmd))
        except DockerError as exc:
            raise DockerError(
                "exec_create", f"failed to create exec for container {container_id}", exc
            ) from exc

        try:
            raw = self._client.exec_start(exec_id)
        except DockerError as exc:
            if _is_timeout(exc):
                raise DockerError("exec_timeout", f"exec timed out for container {container_id}", exc) from exc
            raise DockerError("exec_start", f"failed to start exec for container {container_id}", exc) from exc
        output = raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else str(raw)

        try:
            info = self._client.exec_inspect(exec_id)
        except DockerError as exc:
            raise DockerError(
                "exec_inspect", f"failed to inspect exec for container {container_id}", exc
            ) from exc

        exit_code = info.get("ExitCode") or 0
        if exit_code != 0:
            raise DockerError("exec_failed", f"command failed with exit code {exit_code}: {output}")
        return output

    def _exec_simple(self, container_id: str, cmd: list[str], operation: str) -> None:
        try:
            self.exec_command(container_id, cmd)
        except DockerError as exc:
            raise DockerError(operation, f"failed to {operation} in container {container_id}", exc) from exc

    def send_command(self, container_id: str, command: str) -> None:
        """Send a line to the gameserver console."""
        self._exec_simple(container_id, [SEND_COMMAND_SCRIPT, command], "send_command")

    # -- streams ------------------------------------------------------------

    def stream_container_logs(self, container_id: str):
        """Follow the container's log, starting from its last 100 lines."""
        try:
            return self._client.container_logs(container_id, follow=True, tail="100", timestamps=True)
        except DockerError as exc:
            raise DockerError("stream_logs", f"failed to stream logs for container {container_id}", exc) from exc

    def stream_container_stats(self, container_id: str):
        """Open a live stream of the container's resource statistics."""
        try:
            return self._client.container_stats(container_id, stream=True)
        except DockerError as exc:
            raise DockerError("stream_stats", f"failed to stream stats for container {container_id}", exc) from exc

    # -- files --------------------------------------------------------------

    def list_files(self, container_id: str, path: str) -> list[FileInfo]:
        """List a directory under the server or backups tree."""
        valid_path = validate_path(path, SERVER_AND_BACKUPS)
        output = self.exec_command(container_id, ["ls", "-la", valid_path])
        return sort_files(parse_ls_output(output, valid_path), "/backups" in valid_path)

    def read_file(self, container_id: str, path: str) -> bytes:
        """Read a file of at most 10 MiB from the container."""
        validate_path(path, SERVER_ONLY)
        data = self._copy_from_container(container_id, path)

        try:
            archive = tarfile.open(fileobj=io.BytesIO(data), mode="r:")
            member = archive.next()
            if member is None:
                raise tarfile.ReadError("empty archive")
        except tarfile.TarError as exc:
            raise DockerError("read_tar_header", f"failed to read tar header for file {path}", exc) from exc

        with archive:
            if member.size > MAX_READ_SIZE:
                raise DockerError(
                    "read_file",
                    f"file {path} is too large ({member.size} bytes, max {MAX_READ_SIZE} bytes)",
                    ValueError("file too large"),
                )
            try:
                handle = archive.extractfile(member)
                return handle.read() if handle is not None else b""
            except (tarfile.TarError, OSError) as exc:
                raise DockerError(
                    "read_file_content", f"failed to read file content for {path}", exc
                ) from exc

    def write_file(self, container_id: str, path: str, content: bytes) -> None:
        """Write ``content`` to ``path`` inside the container."""
        validate_path(path, SERVER_ONLY)
        self._copy_to_container(container_id, path, content)

    def _copy_to_container(self, container_id: str, path: str, content: bytes) -> None:
        try:
            archive = create_tar_archive(posixpath.basename(path), bytes(content))
        except (tarfile.TarError, ValueError, OSError) as exc:
            raise DockerError("create_tar", f"failed to create tar archive for file {path}", exc) from exc
        try:
            self._client.copy_to_container(container_id, posixpath.dirname(path) or ".", archive)
        except DockerError as exc:
            raise DockerError(
                "copy_to_container", f"failed to copy file to container {container_id}", exc
            ) from exc

    def create_directory(self, container_id: str, path: str) -> None:
        """Create a directory and its parents."""
        validate_path(path, SERVER_ONLY)
        self._exec_simple(container_id, ["mkdir", "-p", path], "create_directory")

    def delete_path(self, container_id: str, path: str) -> None:
        """Remove a file or directory tree; the root directories are protected."""
        validate_path(path, SERVER_AND_BACKUPS)
        if path in (SERVER_ROOT, BACKUPS_ROOT):
            raise DockerError("delete_path", "cannot delete root directories")
        self._exec_simple(container_id, ["rm", "-rf", path], "delete_path")

    def download_file(self, container_id: str, path: str) -> BinaryIO:
        """Return a stream holding a tar archive of ``path``."""
        valid_path = validate_path(path, SERVER_AND_BACKUPS)
        logger.info("Validated path for download (original=%s, valid=%s, container=%s)",
                    path, valid_path, container_id)
        return io.BytesIO(self._copy_from_container(container_id, valid_path))

    def _copy_from_container(self, container_id: str, path: str) -> bytes:
        logger.info("Copying %s from container %s", path, container_id)
        try:
            data = self._client.copy_from_container(container_id, path)
        except DockerError as exc:
            logger.error("Copy of %s from container %s failed: %s", path, container_id, exc)
            raise DockerError(
                "copy_from_container", f"failed to copy file from container {container_id}: {exc}", exc
            ) from exc
        return data

    def upload_file(self, container_id: str, dest_path: str, reader: BinaryIO) -> None:
        """Extract the tar archive read from ``reader`` into directory ``dest_path``."""
        validate_path(dest_path, SERVER_ONLY)
        try:
            self._client.copy_to_container(container_id, dest_path, reader)
        except DockerError as exc:
            raise DockerError("upload_file", f"failed to upload file to container {container_id}", exc) from exc

    def rename_file(self, container_id: str, old_path: str, new_path: str) -> None:
        """Move ``old_path`` to ``new_path``."""
        validate_path(old_path, SERVER_ONLY)
        validate_path(new_path, SERVER_ONLY)
        self._exec_simple(container_id, ["mv", old_path, new_path], "rename_file")