import io
import posixpath
import tarfile

import httpx
import pytest

from gamehost.engine import DockerError
from gamehost.fileops import FileOperations


def _tar_of(name, content):
    buffer = io.BytesIO()
    info = tarfile.TarInfo(name=name)
    info.size = len(content)
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class FakeEngine:
    def __init__(self, respond=None):
        self.respond = respond or (lambda cmd: (0, "mock command output"))
        self.commands = []
        self.files = {}
        self.copied_from = []
        self.copied_to = []
        self.stream_calls = []
        self.fail = set()
        self._cmds = {}
        self._codes = {}

    def _check(self, op):
        if op in self.fail:
            raise DockerError(op, "boom")

    def exec_create(self, container_id, cmd):
        self._check("exec_create")
        self.commands.append((container_id, list(cmd)))
        exec_id = f"exec-{len(self.commands)}"
        self._cmds[exec_id] = list(cmd)
        return exec_id

    def exec_start(self, exec_id):
        self._check("exec_start")
        code, output = self.respond(self._cmds[exec_id])
        self._codes[exec_id] = code
        return output.encode()

    def exec_inspect(self, exec_id):
        self._check("exec_inspect")
        return {"ExitCode": self._codes[exec_id]}

    def copy_from_container(self, container_id, path):
        self._check("copy_from_container")
        self.copied_from.append((container_id, path))
        if path not in self.files:
            raise DockerError("copy_from_container", "no such file", status=404)
        return _tar_of(posixpath.basename(path), self.files[path])

    def copy_to_container(self, container_id, path, data):
        self._check("copy_to_container")
        if hasattr(data, "read"):
            data = data.read()
        self.copied_to.append((container_id, path, data))
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as archive:
            for member in archive.getmembers():
                self.files[posixpath.join(path, member.name)] = archive.extractfile(member).read()

    def container_logs(self, container_id, follow, tail, timestamps):
        self._check("container_logs")
        self.stream_calls.append(("logs", container_id, follow, tail, timestamps))
        return io.BytesIO(b"log line\n")

    def container_stats(self, container_id, stream):
        self._check("container_stats")
        self.stream_calls.append(("stats", container_id, stream))
        return io.BytesIO(b"{}")


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def ops(engine):
    return FileOperations(engine)


def test_exec_command_returns_output(ops, engine):
    output = ops.exec_command("container-123", ["ls", "-la", "/data/server"])
    assert output == "mock command output"
    assert engine.commands == [("container-123", ["ls", "-la", "/data/server"])]


def test_exec_command_nonzero_exit(engine):
    engine.respond = lambda cmd: (2, "no such file")
    with pytest.raises(DockerError) as info:
        FileOperations(engine).exec_command("c", ["fail", "command"])
    assert info.value.op == "exec_failed"
    assert str(info.value) == "docker exec_failed: command failed with exit code 2: no such file"


def test_exec_command_create_failure(ops, engine):
    engine.fail.add("exec_create")
    with pytest.raises(DockerError) as info:
        ops.exec_command("c", ["true"])
    assert info.value.op == "exec_create"
    assert info.value.err.op == "exec_create"


def test_exec_command_inspect_failure(ops, engine):
    engine.fail.add("exec_inspect")
    with pytest.raises(DockerError) as info:
        ops.exec_command("c", ["true"])
    assert info.value.op == "exec_inspect"


def test_exec_command_timeout():
    class SlowEngine(FakeEngine):
        def exec_start(self, exec_id):
            raise DockerError("exec_start", "POST failed", httpx.ReadTimeout("timed out"))

    with pytest.raises(DockerError) as info:
        FileOperations(SlowEngine()).exec_command("c", ["sleep", "60"])
    assert info.value.op == "exec_timeout"
    assert "exec timed out for container c" in str(info.value)


def test_send_command(ops, engine):
    result = ops.send_command("container-123", "say Hello World")
    assert result is None
    assert engine.commands == [("container-123", ["/data/scripts/send-command.sh", "say Hello World"])]


def test_send_command_failure(engine):
    engine.respond = lambda cmd: (1, "")
    with pytest.raises(DockerError) as info:
        FileOperations(engine).send_command("container-123", "say Goodbye")
    assert info.value.op == "send_command"
    assert info.value.err.op == "exec_failed"


LS_SERVER = """total 12
drwxr-xr-x 2 root root 4096 Jan  1 12:00 .
drwxr-xr-x 3 root root 4096 Jan  1 12:00 ..
drwxr-xr-x 2 root root 4096 Mar  3  2023 world
drwxr-xr-x 2 root root 4096 Mar  3  2023 Plugins
-rw-r--r-- 1 root root 120 Mar  3  2023 server.properties
-rw-r--r-- 1 root root 5000 Mar  3  2023 server.jar
"""


def test_list_files_server(engine):
    engine.respond = lambda cmd: (0, LS_SERVER)
    files = FileOperations(engine).list_files("container-123", "/data/server")
    assert [f.name for f in files] == ["Plugins", "world", "server.jar", "server.properties"]
    assert [f.is_dir for f in files] == [True, True, False, False]
    assert files[1].path == "/data/server/world"
    assert files[2].size == 5000
    assert files[3].modified == "2023-03-03 12:00:00"
    assert engine.commands == [("container-123", ["ls", "-la", "/data/server"])]


def test_list_files_outside_tree_uses_default(engine):
    engine.respond = lambda cmd: (0, "total 0\n")
    files = FileOperations(engine).list_files("c", "/etc")
    assert files == []
    assert engine.commands == [("c", ["ls", "-la", "/data/server"])]


def test_list_files_backups_newest_first(engine):
    listing = (
        "total 8\n"
        "-rw-r--r-- 1 root root 900 Jan  1  2024 backup-2024-01-01_12-00-00.tar.gz\n"
        "-rw-r--r-- 1 root root 100 Feb  1  2024 backup-2024-02-01_08-30-00.tar.gz\n"
    )
    engine.respond = lambda cmd: (0, listing)
    files = FileOperations(engine).list_files("c", "/data/backups")
    assert [f.name for f in files] == [
        "backup-2024-02-01_08-30-00.tar.gz",
        "backup-2024-01-01_12-00-00.tar.gz",
    ]
    assert files[0].modified == "2024-02-01 08:30:00"
    assert files[0].path == "/data/backups/backup-2024-02-01_08-30-00.tar.gz"


def test_list_files_failure(engine):
    engine.fail.add("exec_start")
    with pytest.raises(DockerError) as info:
        FileOperations(engine).list_files("c", "/data/server")
    assert info.value.op == "exec_start"


def test_write_then_read_round_trip(ops, engine):
    content = b"server-name=My Server\ndifficulty=normal\n"
    ops.write_file("container-123", "/data/server/server.properties", content)
    container_id, directory, archive = engine.copied_to[0]
    assert (container_id, directory) == ("container-123", "/data/server")
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r:") as tar:
        assert tar.getnames() == ["server.properties"]
    assert ops.read_file("container-123", "/data/server/server.properties") == content


@pytest.mark.parametrize("size", [1024, 10240, 102400])
def test_large_file_round_trip(ops, size):
    content = bytes(i % 256 for i in range(size))
    path = f"/data/server/large_{size}.bin"
    ops.write_file("large-file-container", path, content)
    assert ops.read_file("large-file-container", path) == content


def test_read_file_too_large(engine):
    info = tarfile.TarInfo("big.bin")
    info.size = 11 * 1024 * 1024

    class BigEngine(FakeEngine):
        def copy_from_container(self, container_id, path):
            return info.tobuf()

    with pytest.raises(DockerError) as raised:
        FileOperations(BigEngine()).read_file("c", "/data/server/big.bin")
    assert raised.value.op == "read_file"
    assert "is too large (11534336 bytes, max 10485760 bytes)" in str(raised.value)


def test_read_file_bad_archive():
    class EmptyEngine(FakeEngine):
        def copy_from_container(self, container_id, path):
            return b""

    with pytest.raises(DockerError) as raised:
        FileOperations(EmptyEngine()).read_file("c", "/data/server/x")
    assert raised.value.op == "read_tar_header"


def test_read_file_missing(ops):
    with pytest.raises(DockerError) as raised:
        ops.read_file("c", "/data/server/missing.txt")
    assert raised.value.op == "copy_from_container"


def test_write_file_failure(ops, engine):
    engine.fail.add("copy_to_container")
    with pytest.raises(DockerError) as raised:
        ops.write_file("c", "/data/server/config.yml", b"x")
    assert raised.value.op == "copy_to_container"


def test_create_directory(ops, engine):
    result = ops.create_directory("c", "/data/server/plugins")
    assert result is None
    assert engine.commands == [("c", ["mkdir", "-p", "/data/server/plugins"])]


def test_create_directory_failure(engine):
    engine.respond = lambda cmd: (1, "")
    with pytest.raises(DockerError) as raised:
        FileOperations(engine).create_directory("c", "/data/server/mods")
    assert raised.value.op == "create_directory"


def test_delete_path(ops, engine):
    result = ops.delete_path("c", "/data/server/test.txt")
    assert result is None
    assert engine.commands == [("c", ["rm", "-rf", "/data/server/test.txt"])]


@pytest.mark.parametrize("root", ["/data/server", "/data/backups"])
def test_delete_root_refused(ops, engine, root):
    with pytest.raises(DockerError) as raised:
        ops.delete_path("c", root)
    assert str(raised.value) == "docker delete_path: cannot delete root directories"
    assert engine.commands == []


def test_delete_path_failure(engine):
    engine.respond = lambda cmd: (1, "")
    with pytest.raises(DockerError) as raised:
        FileOperations(engine).delete_path("c", "/data/server/another.txt")
    assert raised.value.op == "delete_path"


def test_rename_file(ops, engine):
    result = ops.rename_file("c", "/data/server/old.txt", "/data/server/new.txt")
    assert result is None
    assert engine.commands == [("c", ["mv", "/data/server/old.txt", "/data/server/new.txt"])]


def test_rename_file_failure(engine):
    engine.respond = lambda cmd: (1, "")
    with pytest.raises(DockerError) as raised:
        FileOperations(engine).rename_file("c", "/data/server/new.txt", "/data/server/final.txt")
    assert raised.value.op == "rename_file"


def test_download_file_returns_archive(ops, engine):
    engine.files["/data/server/world/level.dat"] = b"world data"
    with ops.download_file("c", "/data/server/world/level.dat") as stream:
        with tarfile.open(fileobj=stream, mode="r:") as archive:
            member = archive.next()
            assert member.name == "level.dat"
            assert archive.extractfile(member).read() == b"world data"


def test_download_file_outside_tree_uses_default(ops, engine):
    engine.files["/data/server"] = b""
    with ops.download_file("c", "/etc/passwd") as stream:
        with tarfile.open(fileobj=stream, mode="r:") as archive:
            assert archive.getnames() == ["server"]
    assert engine.copied_from == [("c", "/data/server")]


def test_download_file_failure(ops, engine):
    engine.fail.add("copy_from_container")
    with pytest.raises(DockerError) as raised:
        ops.download_file("c", "/data/server/x")
    assert raised.value.op == "copy_from_container"


def test_upload_file(ops, engine):
    archive = _tar_of("uploaded.txt", b"uploaded content")
    ops.upload_file("c", "/data/server", io.BytesIO(archive))
    assert engine.files["/data/server/uploaded.txt"] == b"uploaded content"
    assert ops.read_file("c", "/data/server/uploaded.txt") == b"uploaded content"


def test_upload_file_failure(ops, engine):
    engine.fail.add("copy_to_container")
    with pytest.raises(DockerError) as raised:
        ops.upload_file("c", "/data/server", io.BytesIO(_tar_of("f.txt", b"fail content")))
    assert raised.value.op == "upload_file"


def test_stream_logs(ops, engine):
    stream = ops.stream_container_logs("c")
    assert stream.read() == b"log line\n"
    assert engine.stream_calls == [("logs", "c", True, "100", True)]


def test_stream_logs_failure(ops, engine):
    engine.fail.add("container_logs")
    with pytest.raises(DockerError) as raised:
        ops.stream_container_logs("c")
    assert raised.value.op == "stream_logs"


def test_stream_stats(ops, engine):
    assert ops.stream_container_stats("c").read() == b"{}"
    assert engine.stream_calls == [("stats", "c", True)]


def test_stream_stats_failure(ops, engine):
    engine.fail.add("container_stats")
    with pytest.raises(DockerError) as raised:
        ops.stream_container_stats("c")
    assert raised.value.op == "stream_stats"