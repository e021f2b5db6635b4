# gamehost

`gamehost` runs game servers as Docker containers. It talks to the Docker
Engine API over its unix socket or TCP and covers the life of a server:

- creating containers with port bindings, memory and CPU limits, and a
  managed data volume (`gameservers-<name>-data`) mounted at `/data`;
- starting, stopping, removing, listing and inspecting those containers;
- pulling an image only when it is missing locally or the registry holds a
  different digest;
- listing, reading (up to 10 MiB), writing, uploading, downloading, renaming
  and deleting files under `/data/server`; listing, downloading and deleting
  also reach `/data/backups`;
- creating timestamped `backup-YYYY-MM-DD_HH-MM-SS.tar.gz` archives,
  restoring them, and pruning all but the newest ones;
- sending console commands through `/data/scripts/send-command.sh` and
  streaming container logs and statistics.

## Installation

```
pip install .
```

Python 3.10 or later is required. The Docker daemon must be reachable, either
through the socket named by `DOCKER_HOST`, the default
`unix:///var/run/docker.sock`, or a host you pass in.

## Usage

`DockerManager` (in `gamehost.manager`) does container, image and volume work,
and also has every file and backup operation:

```python
from gamehost.manager import DockerManager
from gamehost.records import Gameserver, PortMapping

manager = DockerManager.connect("", "gameservers", 30.0)

server = Gameserver(
    id="mc-1",
    name="survival",
    game_type="minecraft",
    image="minecraft:latest",
    memory_mb=2048,
    cpu_cores=1.5,
    port_mappings=[PortMapping(name="game", protocol="tcp",
                               container_port=25565, host_port=25565)],
    environment=["EULA=true"],
)
manager.create_container(server)          # sets server.container_id and status
manager.start_container(server.container_id)
print(manager.get_container_status(server.container_id))

for entry in manager.list_files(server.container_id, "/data/server"):
    print(entry.name, entry.size, entry.modified)

name = manager.create_backup(server.container_id, server.name)
removed = manager.cleanup_old_backups(server.container_id, 5)
```

Every port mapping must have a `host_port`; a mapping without one raises.
`cleanup_old_backups` keeps every backup when the limit is zero or less, and
returns the paths it deleted.

The lower layers can be used on their own:

- `gamehost.engine.EngineClient` is the HTTP client for the engine API. It is
  a context manager, negotiates the API version on first use, and accepts an
  `httpx` transport for testing.
- `gamehost.fileops.FileOperations` and `gamehost.backups.BackupOperations`
  take any such client.
- `gamehost.listing` has the helpers for path checks (`validate_path`),
  `ls -la` parsing, sorting, backup names and single-file tar archives.
- `gamehost.records` has the `Gameserver`, `PortMapping`, `FileInfo`,
  `VolumeInfo` and `GameserverStatus` records.

```python
from gamehost.engine import EngineClient
from gamehost.fileops import FileOperations

with EngineClient("unix:///var/run/docker.sock") as client:
    files = FileOperations(client)
    files.write_file("abc123", "/data/server/motd.txt", b"Welcome\n")
    print(files.read_file("abc123", "/data/server/motd.txt"))
```

Failed engine operations raise `gamehost.engine.DockerError`. It names the
operation that failed (`op`) and keeps the error that caused it (`err`).

For web handlers, `gamehost.errors` has `HTTPError`, `not_found`,
`bad_request`, `internal_error`, `wrap_error`, `require_method`, `parse_form`,
`error_response` and `log_and_respond`, built on Werkzeug requests and
responses.

## What it does not do

The package is a library. It has no command-line program and no web server
or routes of its own, and it does not store gameserver records anywhere;
keeping track of servers between runs is left to the caller.

## Tests

```
pip install ".[test]"
pytest
```