"""Tests for RemoteFileSession over the in-process SFTP stand-in."""
from __future__ import annotations

import errno
import hashlib
import os
import stat
import threading
from pathlib import Path

import pytest

from remotefs.core.exceptions import (
    ChecksumMismatchError,
    CommandError,
    FilenameEncodingError,
    ConnectionError,
    NotFoundError,
    OperationTimeoutError,
    PermissionDeniedError,
    RetryExhaustedError,
    TransferCancelledError,
)
from remotefs.domain.connection.models import HostDescriptor
from remotefs.domain.session.cache import DirectoryCache
from remotefs.domain.session.models import FileType, RetryPolicy, SessionConfig, SessionState
from remotefs.domain.session.service import RemoteFileSession


def write_remote(sftp, path: str, data: bytes) -> Path:
    target = sftp.local(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    return target


PAYLOAD = bytes(range(40))


class TestListing:
    """Directory listings, caching and error mapping."""

    def test_directories_first_with_sentinel_size(self, session, sftp):
        write_remote(sftp, "/srv/b.txt", b"bb")
        write_remote(sftp, "/srv/a.txt", b"a")
        sftp.local("/srv/zdir").mkdir()

        entries = session.list("/srv")

        assert [e.name for e in entries] == ["zdir", "a.txt", "b.txt"]
        assert entries[0].type == FileType.DIRECTORY
        assert entries[0].size == -1
        assert entries[1].size == 1
        assert entries[1].path == "/srv/a.txt"
        assert entries[1].permissions.startswith("-")

    def test_second_list_served_from_cache(self, session, sftp):
        write_remote(sftp, "/srv/a.txt", b"a")
        first = session.list("/srv")
        second = session.list("/srv")
        assert first == second
        assert sftp.calls["listdir_attr"] == 1

    def test_use_cache_false_refetches(self, session, sftp):
        write_remote(sftp, "/srv/a.txt", b"a")
        session.list("/srv")
        session.list("/srv", use_cache=False)
        assert sftp.calls["listdir_attr"] == 2

    def test_refetch_after_ttl(self, host, pool, session_config, sftp):
        now = [0.0]
        cache = DirectoryCache(ttl=30, clock=lambda: now[0])
        session = RemoteFileSession(host, pool, cache=cache, config=session_config)
        try:
            write_remote(sftp, "/srv/a.txt", b"a")
            session.list("/srv")
            now[0] = 31.0
            session.list("/srv")
            assert sftp.calls["listdir_attr"] == 2
        finally:
            session.close()

    def test_upload_invalidates_parent_listing(self, session, sftp, tmp_path):
        write_remote(sftp, "/srv/a.txt", b"a")
        session.list("/srv")
        source = tmp_path / "new.txt"
        source.write_bytes(b"new")

        session.put(source, "/srv/new.txt")

        assert [e.name for e in session.list("/srv")] == ["a.txt", "new.txt"]
        assert sftp.calls["listdir_attr"] == 2

    def test_missing_directory_not_retried(self, session, sftp):
        with pytest.raises(NotFoundError):
            session.list("/nope")
        assert sftp.calls["listdir_attr"] == 1

    def test_permission_denied(self, session, sftp):
        sftp.local("/srv").mkdir()
        sftp.fail("listdir_attr", PermissionError(errno.EACCES, "Permission denied"))
        with pytest.raises(PermissionDeniedError):
            session.list("/srv")

    def test_home_expansion(self, session, sftp):
        write_remote(sftp, "/home/tester/notes.md", b"x")
        assert session.expand_path("~/docs") == "/home/tester/docs"
        assert session.expand_path("~") == "/home/tester"
        assert [e.name for e in session.list("~")] == ["notes.md"]

    def test_symlink_entries(self, session, sftp):
        target = write_remote(sftp, "/srv/a.txt", b"a")
        os.symlink("a.txt", target.parent / "link")

        link = [e for e in session.list("/srv") if e.name == "link"][0]
        assert link.type == FileType.SYMLINK
        assert link.link_target == "a.txt"

    def test_unreadable_symlink_target(self, session, sftp):
        target = write_remote(sftp, "/srv/a.txt", b"a")
        os.symlink("a.txt", target.parent / "link")
        sftp.fail("readlink", OSError("Failure"))

        link = [e for e in session.list("/srv") if e.name == "link"][0]
        assert link.link_target == "(unresolved)"

    def test_stat_reports_real_directory_size(self, session, sftp):
        sftp.local("/srv").mkdir()
        entry = session.stat("/srv")
        assert entry.is_dir
        assert entry.size >= 0
        assert session.exists("/srv")
        assert not session.exists("/srv/missing")


class TestFilenameEncoding:
    """Hosts whose filenames are not UTF-8."""

    def make_latin1_file(self, sftp) -> None:
        directory = sftp.local("/srv/enc")
        directory.mkdir(parents=True)
        with open(os.path.join(os.fsencode(directory), b"caf\xe9.txt"), "wb") as handle:
            handle.write(b"menu")

    def test_undecodable_name_raises_typed_error(self, session, sftp):
        self.make_latin1_file(sftp)
        with pytest.raises(FilenameEncodingError) as exc:
            session.list("/srv/enc")
        assert "latin-1" in exc.value.hint
        assert sftp.calls["listdir_attr"] == 1

    def test_host_encoding_decodes_names(self, pool, session_config, sftp):
        self.make_latin1_file(sftp)
        host = HostDescriptor(id="web", address="10.0.0.5", username="deploy", encoding="latin-1")
        session = RemoteFileSession(host, pool, config=session_config)
        try:
            (entry,) = session.list("/srv/enc")
        finally:
            session.close()

        assert entry.name == "caf\u00e9.txt"
        assert entry.path == "/srv/enc/caf\u00e9.txt"
        assert entry.size == 4
        assert entry.owner == "tester"
        assert sftp.handles == {}

    def test_unknown_encoding_rejected(self):
        with pytest.raises(ValueError):
            HostDescriptor(id="web", address="10.0.0.5", username="deploy", encoding="no-such-codec")


class TestResilience:
    """Retries and channel replacement."""

    def test_transient_failure_retried_on_new_transport(self, session, sftp, factory):
        write_remote(sftp, "/srv/a.txt", b"a")
        sftp.fail("listdir_attr", EOFError("connection lost"))

        entries = session.list("/srv")

        assert [e.name for e in entries] == ["a.txt"]
        assert factory.opened == 2
        assert factory.clients[0].closed

    def test_retry_exhausted(self, session, sftp):
        sftp.local("/srv").mkdir()
        sftp.fail("listdir_attr", *[ConnectionResetError("reset")] * 3)

        with pytest.raises(RetryExhaustedError) as exc:
            session.list("/srv")
        assert exc.value.attempts == 3
        assert isinstance(exc.value.last_error, ConnectionResetError)

    def test_listing_timeout_drops_channel(self, host, pool, sftp, factory):
        config = SessionConfig(
            operation_timeout=0.05,
            retry=RetryPolicy(max_retries=0, initial_delay=0),
            health_monitoring=False,
        )
        session = RemoteFileSession(host, pool, config=config)
        try:
            sftp.local("/srv").mkdir()
            session.list("/")
            sftp.delays["listdir_attr"] = 0.3

            with pytest.raises(RetryExhaustedError) as exc:
                session.list("/srv")
            assert isinstance(exc.value.last_error, OperationTimeoutError)
            assert exc.value.last_error.phase == OperationTimeoutError.OPERATION
            assert not pool.has_connection(host.id)

            sftp.delays.clear()
            assert session.list("/srv") == []
            assert factory.opened == 2
        finally:
            session.close()

    def test_closed_session_refuses_calls(self, session):
        session.close()
        assert session.state == SessionState.CLOSED
        with pytest.raises(ConnectionError):
            session.list("/")

    def test_state_becomes_ready(self, session):
        assert session.state == SessionState.UNINITIALIZED
        session.list("/")
        assert session.state == SessionState.READY


class TestDownload:
    """Resumable downloads through a partial file."""

    def test_get_writes_file_and_removes_partial(self, session, sftp, tmp_path):
        write_remote(sftp, "/srv/data.bin", PAYLOAD)
        local = tmp_path / "out" / "data.bin"

        assert session.get("/srv/data.bin", local) == len(PAYLOAD)
        assert local.read_bytes() == PAYLOAD
        assert not (tmp_path / "out" / "data.bin.part").exists()

    def test_resume_after_cancel(self, session, sftp, tmp_path):
        """An interrupted download continues from the partial file's size."""
        write_remote(sftp, "/srv/data.bin", PAYLOAD)
        local = tmp_path / "data.bin"
        part = tmp_path / "data.bin.part"
        cancel = threading.Event()

        with pytest.raises(TransferCancelledError):
            session.get("/srv/data.bin", local, on_progress=lambda pct, speed: cancel.set(), cancel_event=cancel)
        assert part.stat().st_size == 8
        assert not local.exists()

        progress = []
        session.get("/srv/data.bin", local, on_progress=lambda pct, speed: progress.append(pct))

        assert sftp.seeks == [8]
        assert local.read_bytes() == PAYLOAD
        assert hashlib.md5(local.read_bytes()).hexdigest() == hashlib.md5(PAYLOAD).hexdigest()
        assert not part.exists()
        assert progress[0] == pytest.approx(40.0)
        assert progress[-1] == pytest.approx(100.0)

    def test_oversized_partial_starts_over(self, session, sftp, tmp_path):
        write_remote(sftp, "/srv/data.bin", PAYLOAD)
        (tmp_path / "data.bin.part").write_bytes(b"x" * 64)

        session.get("/srv/data.bin", tmp_path / "data.bin")

        assert (tmp_path / "data.bin").read_bytes() == PAYLOAD
        assert sftp.seeks == []

    def test_restart_discards_partial(self, session, sftp, tmp_path):
        write_remote(sftp, "/srv/data.bin", PAYLOAD)
        (tmp_path / "data.bin.part").write_bytes(b"X" * 8)

        session.get("/srv/data.bin", tmp_path / "data.bin", restart=True)

        assert (tmp_path / "data.bin").read_bytes() == PAYLOAD

    def test_checksum_verification(self, host, pool, sftp, factory, tmp_path):
        config = SessionConfig(
            retry=RetryPolicy(max_retries=0, initial_delay=0),
            health_monitoring=False,
            verify_checksum=True,
        )
        session = RemoteFileSession(host, pool, config=config)
        try:
            write_remote(sftp, "/srv/data.bin", PAYLOAD)
            session.get("/srv/data.bin", tmp_path / "data.bin")
            assert any(cmd.startswith("md5sum") for cmd in factory.clients[0].commands)
        finally:
            session.close()

    def test_checksum_mismatch_keeps_partial(self, host, pool, sftp, tmp_path, monkeypatch):
        monkeypatch.setattr(
            "remotefs.domain.session.service.compute_file_hash", lambda path, algorithm: "0" * 32
        )
        config = SessionConfig(
            retry=RetryPolicy(max_retries=0, initial_delay=0),
            health_monitoring=False,
            verify_checksum=True,
        )
        session = RemoteFileSession(host, pool, config=config)
        try:
            write_remote(sftp, "/srv/data.bin", PAYLOAD)
            with pytest.raises(ChecksumMismatchError):
                session.get("/srv/data.bin", tmp_path / "data.bin")
            assert (tmp_path / "data.bin.part").exists()
            assert not (tmp_path / "data.bin").exists()
        finally:
            session.close()

    def test_escaped_checksum_output_is_verified(self, host, pool, sftp, factory, tmp_path, monkeypatch):
        monkeypatch.setattr(
            "remotefs.domain.session.service.compute_file_hash", lambda path, algorithm: "0" * 32
        )
        config = SessionConfig(
            retry=RetryPolicy(max_retries=0, initial_delay=0),
            health_monitoring=False,
            verify_checksum=True,
        )
        session = RemoteFileSession(host, pool, config=config)
        try:
            write_remote(sftp, "/srv/back\\slash.bin", PAYLOAD)
            with pytest.raises(ChecksumMismatchError):
                session.get("/srv/back\\slash.bin", tmp_path / "data.bin")
            assert any(cmd.startswith("md5sum") for cmd in factory.clients[0].commands)
        finally:
            session.close()

    def test_missing_remote_file(self, session, tmp_path):
        with pytest.raises(NotFoundError):
            session.get("/srv/missing.bin", tmp_path / "missing.bin")

    def test_directory_round_trip(self, session, sftp, tmp_path):
        source = tmp_path / "src"
        (source / "nested").mkdir(parents=True)
        (source / "top.txt").write_bytes(b"top")
        (source / "nested" / "deep.txt").write_bytes(b"deep")

        assert session.put_directory(source, "/srv/tree") == 2
        assert sftp.local("/srv/tree/nested/deep.txt").read_bytes() == b"deep"

        done = []
        assert session.get_directory("/srv/tree", tmp_path / "back", on_progress=lambda i, n, p: done.append(i)) == 2
        assert (tmp_path / "back" / "top.txt").read_bytes() == b"top"
        assert (tmp_path / "back" / "nested" / "deep.txt").read_bytes() == b"deep"
        assert done == [1, 2]


class TestUpload:
    def test_put(self, session, sftp, tmp_path):
        source = tmp_path / "up.bin"
        source.write_bytes(PAYLOAD)
        sftp.local("/srv").mkdir()

        assert session.put(source, "/srv/up.bin") == len(PAYLOAD)
        assert sftp.local("/srv/up.bin").read_bytes() == PAYLOAD

    def test_put_missing_local_file(self, session, tmp_path):
        with pytest.raises(NotFoundError):
            session.put(tmp_path / "nope.bin", "/srv/nope.bin")

    def test_put_cancelled(self, session, sftp, tmp_path):
        source = tmp_path / "up.bin"
        source.write_bytes(PAYLOAD)
        sftp.local("/srv").mkdir()
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(TransferCancelledError):
            session.put(source, "/srv/up.bin", cancel_event=cancel)


class TestMutations:
    """Mutating operations and their cache invalidation."""

    def test_mkdir_parents(self, session, sftp):
        session.mkdir("/srv/a/b/c", parents=True)
        assert sftp.local("/srv/a/b/c").is_dir()
        session.mkdir("/srv/a/b/c", parents=True)

    def test_delete_file(self, session, sftp):
        write_remote(sftp, "/srv/a.txt", b"a")
        session.list("/srv")
        session.delete("/srv/a.txt")
        assert session.list("/srv") == []

    def test_delete_recursive(self, session, sftp):
        write_remote(sftp, "/srv/tree/x/y/z.txt", b"z")
        write_remote(sftp, "/srv/tree/top.txt", b"t")
        session.delete("/srv/tree", recursive=True)
        assert not sftp.local("/srv/tree").exists()

    def test_rename(self, session, sftp):
        write_remote(sftp, "/srv/old.txt", b"o")
        session.list("/srv")
        session.move("/srv/old.txt", "/srv/new.txt")
        assert [e.name for e in session.list("/srv")] == ["new.txt"]

    def test_symlink_create_and_resolve(self, session, sftp):
        write_remote(sftp, "/srv/real/a.txt", b"a")
        session.list("/srv")

        session.create_symlink("real/a.txt", "/srv/link")

        assert [e.name for e in session.list("/srv")] == ["real", "link"]
        assert session.resolve_symlink("/srv/link") == "/srv/real/a.txt"

    def test_chmod_octal_string(self, session, sftp):
        target = write_remote(sftp, "/srv/a.txt", b"a")
        session.chmod("/srv/a.txt", "640")
        assert stat.S_IMODE(target.stat().st_mode) == 0o640

    def test_chmod_recursive(self, session, sftp):
        write_remote(sftp, "/srv/tree/x/one.txt", b"1")
        write_remote(sftp, "/srv/tree/two.txt", b"2")
        progress = []

        failed = session.chmod_recursive(
            "/srv/tree", 0o750, on_progress=lambda i, n, p: progress.append((i, n)), progress_every=2
        )

        assert failed == []
        for path in ("/srv/tree", "/srv/tree/x", "/srv/tree/x/one.txt", "/srv/tree/two.txt"):
            assert stat.S_IMODE(sftp.local(path).stat().st_mode) == 0o750
        assert progress[-1] == (4, 4)

    def test_copy_on_server(self, session, sftp, factory):
        write_remote(sftp, "/srv/a.txt", b"a")
        session.copy("/srv/a.txt", "/srv/b.txt")
        assert sftp.local("/srv/b.txt").read_bytes() == b"a"
        assert factory.clients[0].commands[0].startswith("cp -r ")

    def test_copy_falls_back_to_streaming(self, session, sftp, factory):
        """Without a usable cp the tree is copied over the SFTP channel."""
        write_remote(sftp, "/srv/tree/x/one.txt", b"one")
        write_remote(sftp, "/srv/tree/two.txt", b"two")
        os.symlink("two.txt", sftp.local("/srv/tree/link"))
        session.list("/")
        factory.clients[0].fail_commands = True

        session.copy("/srv/tree", "/srv/copy")

        assert sftp.local("/srv/copy/x/one.txt").read_bytes() == b"one"
        assert sftp.local("/srv/copy/two.txt").read_bytes() == b"two"
        assert os.readlink(sftp.local("/srv/copy/link")) == "two.txt"


class TestAggregates:
    def test_directory_size(self, session, sftp):
        write_remote(sftp, "/srv/tree/a.bin", b"x" * 10)
        write_remote(sftp, "/srv/tree/sub/b.bin", b"x" * 20)
        write_remote(sftp, "/srv/tree/sub/deeper/c.bin", b"x" * 30)

        assert session.calculate_directory_size("/srv/tree") == 60
        assert session.calculate_directory_size("/srv/tree", max_depth=1) == 10
        assert session.calculate_directory_size("/srv/tree", max_depth=2) == 30

    def test_directory_size_progress(self, session, sftp):
        for index in range(5):
            write_remote(sftp, f"/srv/tree/{index}.bin", b"x")
        reports = []
        session.calculate_directory_size("/srv/tree", on_progress=lambda n, b: reports.append((n, b)), progress_every=2)
        assert reports == [(2, 2), (4, 4)]

    def test_checksum(self, session, sftp):
        write_remote(sftp, "/srv/a.txt", b"hello")
        assert session.checksum("/srv/a.txt") == hashlib.md5(b"hello").hexdigest()
        assert session.checksum("/srv/a.txt", "sha256") == hashlib.sha256(b"hello").hexdigest()

    def test_checksum_missing_file(self, session):
        with pytest.raises(NotFoundError):
            session.checksum("/srv/missing.txt")

    def test_checksum_unknown_algorithm(self, session):
        with pytest.raises(ValueError):
            session.checksum("/srv/a.txt", "crc32")

    def test_checksum_of_escaped_name(self, session, sftp):
        write_remote(sftp, "/srv/back\\slash.txt", b"hello")
        assert session.checksum("/srv/back\\slash.txt") == hashlib.md5(b"hello").hexdigest()

    def test_search_by_content(self, session, sftp):
        write_remote(sftp, "/srv/a.txt", b"needle here")
        write_remote(sftp, "/srv/b.txt", b"nothing")
        assert session.search_files("/srv", "needle", by_content=True) == ["/srv/a.txt"]


class TestCacheControl:
    def test_clear_and_invalidate(self, session, sftp):
        write_remote(sftp, "/srv/a.txt", b"a")
        session.list("/srv")
        session.list("/srv")
        assert sftp.calls["listdir_attr"] == 1

        session.clear_cache("/srv")
        session.list("/srv")
        session.clear_cache()
        session.list("/srv")
        session.invalidate("/srv/a.txt")
        session.list("/srv")
        assert sftp.calls["listdir_attr"] == 4


class TestCommands:
    def test_exec_reports_exit_code(self, session):
        result = session.exec("uptime")
        assert result.exit_code == 127
        assert not result.success

    def test_run_raises(self, session):
        with pytest.raises(CommandError) as exc:
            session.run("uptime")
        assert exc.value.result.exit_code == 127

    def test_exec_not_retried(self, session, factory):
        session.exec("uptime")
        assert len(factory.clients[0].commands) == 1

    def test_exec_timeout_names_command_timeout(self, session, factory):
        session.exec("uptime")
        factory.clients[0].command_delay = 0.5
        session.config.command_timeout = 0.05

        with pytest.raises(OperationTimeoutError) as exc:
            session.exec("uptime")
        assert "command_timeout" in exc.value.hint
        assert "operation_timeout" not in exc.value.hint
