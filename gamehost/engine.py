"""A small client for the container engine's HTTP API."""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, BinaryIO
from urllib.parse import quote

import httpx

DEFAULT_HOST = "unix:///var/run/docker.sock"
MAX_API_VERSION = "1.47"
_FALLBACK_API_VERSION = "1.24"

STDIN, STDOUT, STDERR = 0, 1, 2
_HEADER_SIZE = 8
_CHUNK_SIZE = 64 * 1024


class DockerError(Exception):
    """An error raised by an engine operation."""

    def __init__(self, op: str, msg: str, err: BaseException | None = None, status: int | None = None):
        super().__init__(msg)
        self.op = op
        self.msg = msg
        self.err = err
        self.status = status

    def __str__(self) -> str:
        if self.err is not None:
            return f"docker {self.op}: {self.msg}: {self.err}"
        return f"docker {self.op}: {self.msg}"


def resolve_host(host: str = "") -> tuple[str, str | None]:
    """Return ``(base_url, unix_socket_path)`` for an engine host string.

    An empty host falls back to ``DOCKER_HOST`` and then to the default socket.
    """
    host = host or os.environ.get("DOCKER_HOST") or DEFAULT_HOST
    scheme, sep, rest = host.partition("://")
    if not sep or not rest:
        raise DockerError("connect", f"unable to parse docker host {host!r}")
    if scheme == "unix":
        return "http://docker", rest
    if scheme == "tcp":
        return "http://" + rest.rstrip("/"), None
    if scheme in ("http", "https"):
        return host.rstrip("/"), None
    raise DockerError("connect", f"unsupported protocol scheme {scheme!r}")


def _looks_framed(data: bytes) -> bool:
    return len(data) >= _HEADER_SIZE and data[0] in (STDIN, STDOUT, STDERR) and data[1:4] == b"\0\0\0"


def demultiplex_stream(data: bytes) -> list[tuple[int, bytes]]:
    """Split a multiplexed attach stream into ``(stream, payload)`` frames.

    Data that does not carry frame headers is returned as a single stdout frame.
    """
    if not data:
        return []
    if not _looks_framed(data):
        return [(STDOUT, data)]
    frames: list[tuple[int, bytes]] = []
    offset = 0
    while offset < len(data):
        header = data[offset:offset + _HEADER_SIZE]
        if not _looks_framed(header):
            frames.append((STDOUT, data[offset:]))
            break
        size = int.from_bytes(header[4:8], "big")
        start = offset + _HEADER_SIZE
        frames.append((header[0], data[start:start + size]))
        offset = start + size
    return frames


def _version_tuple(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in version.split("."))


def _split_reference(name: str) -> tuple[str, str]:
    if "@" in name:
        image, _, digest = name.partition("@")
        return image, digest
    slash = name.rfind("/")
    colon = name.rfind(":")
    if colon > slash:
        return name[:colon], name[colon + 1:]
    return name, "latest"


def _segment(value: str) -> str:
    return quote(value, safe="/:@")


def _read_chunks(reader: BinaryIO) -> Iterator[bytes]:
    while chunk := reader.read(_CHUNK_SIZE):
        yield chunk


class _ResponseStream:
    """A streamed response body that must be closed by its user."""

    def __init__(self, response: httpx.Response):
        self._response = response

    def __iter__(self) -> Iterator[bytes]:
        return self._response.iter_bytes()

    def read(self) -> bytes:
        return self._response.read()

    def close(self) -> None:
        self._response.close()

    def __enter__(self) -> _ResponseStream:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class EngineClient:
    """Talks to the container engine over a unix socket or TCP."""

    def __init__(
        self,
        host: str = "",
        *,
        transport: httpx.BaseTransport | None = None,
        api_version: str | None = None,
        timeout: float | None = 30.0,
    ):
        base_url, socket_path = resolve_host(host)
        if transport is None:
            transport = httpx.HTTPTransport(uds=socket_path) if socket_path else httpx.HTTPTransport()
        self._http = httpx.Client(base_url=base_url, transport=transport, timeout=timeout)
        self._api_version = api_version

    def __enter__(self) -> EngineClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the underlying connections."""
        self._http.close()

    # -- plumbing -----------------------------------------------------------

    def _version(self) -> str:
        if self._api_version is not None:
            return self._api_version
        try:
            response = self._http.get("/_ping")
        except httpx.HTTPError:
            return MAX_API_VERSION
        server = response.headers.get("API-Version") or _FALLBACK_API_VERSION
        try:
            chosen = min(server, MAX_API_VERSION, key=_version_tuple)
        except ValueError:
            chosen = MAX_API_VERSION
        self._api_version = chosen
        return chosen

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return response.text.strip() or response.reason_phrase or f"status {response.status_code}"

    def _request(
        self,
        method: str,
        path: str,
        op: str,
        *,
        stream: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        url = f"/v{self._version()}{path}"
        try:
            request = self._http.build_request(method, url, **kwargs)
            response = self._http.send(request, stream=stream)
        except httpx.HTTPError as exc:
            raise DockerError(op, f"{method} {path} failed", exc) from exc
        if response.status_code >= 400:
            if stream:
                response.read()
                response.close()
            raise DockerError(op, self._error_message(response), status=response.status_code)
        return response

    # -- containers ---------------------------------------------------------

    def container_create(self, name: str, config: Mapping[str, Any]) -> dict:
        """Create a container; ``config`` holds the create body including ``HostConfig``."""
        params = {"name": name} if name else None
        return self._request("POST", "/containers/create", "container_create", params=params, json=dict(config)).json()

    def container_start(self, container_id: str) -> None:
        self._request("POST", f"/containers/{_segment(container_id)}/start", "container_start")

    def container_stop(self, container_id: str, timeout: int | None) -> None:
        params = {"t": str(timeout)} if timeout is not None else None
        self._request(
            "POST", f"/containers/{_segment(container_id)}/stop", "container_stop", params=params, timeout=None
        )

    def container_remove(self, container_id: str, force: bool) -> None:
        params = {"force": "1"} if force else None
        self._request("DELETE", f"/containers/{_segment(container_id)}", "container_remove", params=params)

    def container_inspect(self, container_id: str) -> dict:
        return self._request("GET", f"/containers/{_segment(container_id)}/json", "container_inspect").json()

    def container_list(self, all: bool, filters: Mapping[str, Iterable[str]] | None) -> list[dict]:
        params: dict[str, str] = {}
        if all:
            params["all"] = "1"
        if filters:
            params["filters"] = json.dumps({key: {value: True for value in values} for key, values in filters.items()})
        return self._request("GET", "/containers/json", "container_list", params=params).json()

    # -- exec ---------------------------------------------------------------

    def exec_create(self, container_id: str, cmd: Iterable[str]) -> str:
        """Create an exec instance attached to stdout and stderr and return its id."""
        body = {"Cmd": list(cmd), "AttachStdout": True, "AttachStderr": True}
        response = self._request("POST", f"/containers/{_segment(container_id)}/exec", "exec_create", json=body)
        return response.json()["Id"]

    def exec_start(self, exec_id: str) -> bytes:
        """Run an exec instance and return its combined output."""
        response = self._request(
            "POST", f"/exec/{_segment(exec_id)}/start", "exec_start", json={"Detach": False, "Tty": False}
        )
        return b"".join(payload for _, payload in demultiplex_stream(response.content))

    def exec_inspect(self, exec_id: str) -> dict:
        return self._request("GET", f"/exec/{_segment(exec_id)}/json", "exec_inspect").json()

    # -- streams ------------------------------------------------------------

    def container_logs(self, container_id: str, follow: bool, tail: str, timestamps: bool) -> _ResponseStream:
        """Open the raw log stream of a container; close it when done."""
        params = {
            "stdout": "1",
            "stderr": "1",
            "follow": "1" if follow else "0",
            "tail": tail,
            "timestamps": "1" if timestamps else "0",
        }
        response = self._request(
            "GET", f"/containers/{_segment(container_id)}/logs", "container_logs",
            params=params, stream=True, timeout=None,
        )
        return _ResponseStream(response)

    def container_stats(self, container_id: str, stream: bool) -> _ResponseStream:
        """Open the stats stream of a container; close it when done."""
        response = self._request(
            "GET", f"/containers/{_segment(container_id)}/stats", "container_stats",
            params={"stream": "1" if stream else "0"}, stream=True, timeout=None,
        )
        return _ResponseStream(response)

    # -- archives -----------------------------------------------------------

    def copy_from_container(self, container_id: str, path: str) -> bytes:
        """Return a tar archive of ``path`` inside the container."""
        return self._request(
            "GET", f"/containers/{_segment(container_id)}/archive", "copy_from_container", params={"path": path}
        ).content

    def copy_to_container(self, container_id: str, path: str, data: bytes | BinaryIO | Iterable[bytes]) -> None:
        """Extract a tar archive into directory ``path`` inside the container."""
        if isinstance(data, (bytes, bytearray, memoryview)):
            content: Any = bytes(data)
        elif hasattr(data, "read"):
            content = _read_chunks(data)
        else:
            content = data
        self._request(
            "PUT", f"/containers/{_segment(container_id)}/archive", "copy_to_container",
            params={"path": path, "noOverwriteDirNonDir": "true"},
            content=content,
            headers={"Content-Type": "application/x-tar"},
        )

    # -- images -------------------------------------------------------------

    def image_inspect(self, name: str) -> dict:
        return self._request("GET", f"/images/{_segment(name)}/json", "image_inspect").json()

    def distribution_inspect(self, name: str, auth: str) -> dict:
        return self._request(
            "GET", f"/distribution/{_segment(name)}/json", "distribution_inspect",
            headers={"X-Registry-Auth": auth},
        ).json()

    def image_pull(self, name: str, auth: str) -> str:
        """Pull an image and return the engine's progress output."""
        image, tag = _split_reference(name)
        response = self._request(
            "POST", "/images/create", "image_pull",
            params={"fromImage": image, "tag": tag},
            headers={"X-Registry-Auth": auth},
            timeout=None,
        )
        return response.text

    # -- volumes ------------------------------------------------------------

    def volume_inspect(self, name: str) -> dict:
        return self._request("GET", f"/volumes/{_segment(name)}", "volume_inspect").json()

    def volume_create(self, name: str, labels: Mapping[str, str]) -> dict:
        body = {"Name": name, "Labels": dict(labels)}
        return self._request("POST", "/volumes/create", "volume_create", json=body).json()

    def volume_remove(self, name: str, force: bool) -> None:
        params = {"force": "true"} if force else None
        self._request("DELETE", f"/volumes/{_segment(name)}", "volume_remove", params=params)