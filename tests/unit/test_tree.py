"""Unit tests for recursive tree transfers against an in-memory server."""

import posixpath
import threading
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from ftpclient.ftp.connection import FTPSession
from ftpclient.ftp.exceptions import (
    ConfigurationError,
    DirectoryNonExistent,
    FTPTransferError,
    PermanentError,
    ProtocolError,
)
from ftpclient.ftp.reply import NameFacts, Reply
from ftpclient.ftp.tree import TreeOrchestrator


class FakeRemote:
    """Shared remote filesystem seen by every FakeSession."""

    def __init__(self, mlsd: bool = False):
        self.dirs = {"/"}
        self.files = {}
        self.mlsd = mlsd
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.clones = 0
        self.commands = []
        self.fail_names = set()
        self.delay = 0.0
        # Server answers PWD with a 257 that carries no quoted path
        self.unquoted_pwd = False

    def children(self, path):
        prefix = path.rstrip("/") + "/"
        names = set()
        for entry in list(self.dirs) + list(self.files):
            if entry != path and entry.startswith(prefix):
                names.add(entry[len(prefix):].split("/")[0])
        return sorted(names)


def _reply_error(code, text):
    return PermanentError(Reply(code, text))


class FakeSession:
    """Session double implementing the operations the orchestrator uses."""

    remote_directory = FTPSession.remote_directory

    def __init__(self, remote: FakeRemote):
        self.remote = remote
        self.cwd_path = "/"

    def _resolve(self, path):
        return posixpath.normpath(posixpath.join(self.cwd_path, path or "."))

    def _log(self, *cmd):
        with self.remote.lock:
            self.remote.commands.append(" ".join(cmd))

    def pwd(self):
        self._log("PWD")
        return "" if self.remote.unquoted_pwd else self.cwd_path

    def cwd(self, path):
        self._log("CWD", path)
        target = self._resolve(path)
        if target not in self.remote.dirs:
            raise _reply_error(550, f"{path}: No such directory")
        self.cwd_path = target

    def mkd(self, name):
        self._log("MKD", name)
        target = self._resolve(name)
        if target in self.remote.dirs:
            raise _reply_error(550, "File exists")
        self.remote.dirs.add(target)
        return target

    def rmd(self, name):
        self._log("RMD", name)
        target = self._resolve(name)
        if self.remote.children(target):
            raise _reply_error(550, "Directory not empty")
        self.remote.dirs.discard(target)

    def delete(self, name):
        self._log("DELE", name)
        del self.remote.files[self._resolve(name)]

    def dir(self):
        self._log("LIST")
        lines = ["total 2",
                 "drwxr-xr-x 2 o g 0 Jan 01 00:00 .",
                 "drwxr-xr-x 2 o g 0 Jan 01 00:00 .."]
        for name in self.remote.children(self.cwd_path):
            full = posixpath.join(self.cwd_path, name)
            if full in self.remote.dirs:
                lines.append(f"drwxr-xr-x 2 o g 0 Jan 01 00:00 {name}")
            else:
                lines.append(f"-rw-r--r-- 1 o g {len(self.remote.files[full])} Jan 01 00:00 {name}")
        return lines

    def feat(self):
        return ["MLST type*;size*;"] if self.remote.mlsd else ["UTF8"]

    def mlsd(self, path="", facts=()):
        self._log("MLSD")
        entries = [NameFacts(".", {"type": "cdir"}, ".")]
        for name in self.remote.children(self.cwd_path):
            full = posixpath.join(self.cwd_path, name)
            kind = "dir" if full in self.remote.dirs else "file"
            entries.append(NameFacts(name.lower(), {"type": kind}, name))
        return entries

    def _transfer(self, name):
        with self.remote.lock:
            self.remote.active += 1
            self.remote.peak = max(self.remote.peak, self.remote.active)
        try:
            if self.remote.delay:
                time.sleep(self.remote.delay)
            if name in self.remote.fail_names:
                raise FTPTransferError(name, name, _reply_error(553, "Not allowed"))
        finally:
            with self.remote.lock:
                self.remote.active -= 1

    def upload_file(self, name, local_path, line_mode=False, callback=None):
        self._log("STOR", name)
        self._transfer(name)
        data = Path(local_path).read_bytes()
        self.remote.files[self._resolve(name)] = data
        return SimpleNamespace(bytes_transferred=len(data))

    def download_file(self, name, local_path, line_mode=False, offset=0, callback=None):
        self._log("RETR", name)
        self._transfer(name)
        data = self.remote.files[self._resolve(name)]
        Path(local_path).write_bytes(data)
        return SimpleNamespace(bytes_transferred=len(data))

    def clone(self):
        with self.remote.lock:
            self.remote.clones += 1
        return FakeSession(self.remote)

    def disconnect(self):
        pass


@pytest.fixture
def remote():
    fs = FakeRemote()
    fs.dirs.add("/up")
    return fs


@pytest.fixture
def session(remote):
    return FakeSession(remote)


@pytest.fixture
def local_tree(tmp_path):
    """
    proj/
        a.txt, b.txt
        .git/config
        Build/out.o
        sub/c.txt
        sub/deeper/d.txt
    """
    root = tmp_path / "proj"
    (root / ".git").mkdir(parents=True)
    (root / "Build").mkdir()
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"aaa")
    (root / "b.txt").write_bytes(b"bbbb")
    (root / ".git" / "config").write_bytes(b"x")
    (root / "Build" / "out.o").write_bytes(b"x")
    (root / "sub" / "c.txt").write_bytes(b"c")
    (root / "sub" / "deeper" / "d.txt").write_bytes(b"dd")
    return root


class TestUploadDirTree:
    def test_uploads_tree_with_exclusions(self, session, remote, local_tree):
        result = TreeOrchestrator(session).upload_dir_tree(
            local_tree, "/up", excluded_dirs=[".GIT", "build"]
        )

        assert result.success
        assert result.files_transferred == 4
        assert result.bytes_transferred == 3 + 4 + 1 + 2
        assert remote.files == {
            "/up/proj/a.txt": b"aaa",
            "/up/proj/b.txt": b"bbbb",
            "/up/proj/sub/c.txt": b"c",
            "/up/proj/sub/deeper/d.txt": b"dd",
        }
        assert not any(".git" in c.lower() or "build" in c.lower() for c in remote.commands)
        assert session.cwd_path == "/"

    def test_files_uploaded_in_name_order(self, session, remote, local_tree):
        TreeOrchestrator(session).upload_dir_tree(local_tree, "/up", excluded_dirs=[".git", "build"])
        stores = [c for c in remote.commands if c.startswith("STOR")]
        assert stores == ["STOR a.txt", "STOR b.txt", "STOR c.txt", "STOR d.txt"]

    def test_empty_remote_root_rejected(self, session, local_tree):
        with pytest.raises(ConfigurationError):
            TreeOrchestrator(session).upload_dir_tree(local_tree, "")

    def test_missing_remote_root_reports_error(self, session, remote, local_tree):
        result = TreeOrchestrator(session).upload_dir_tree(local_tree, "/nowhere")
        assert isinstance(result.error, PermanentError)
        assert result.files_transferred == 0
        assert remote.files == {}

    def test_first_failure_stops_walk(self, session, remote, local_tree):
        remote.fail_names.add("b.txt")

        result = TreeOrchestrator(session).upload_dir_tree(
            local_tree, "/up", excluded_dirs=[".git", "build"]
        )

        assert isinstance(result.error, FTPTransferError)
        assert result.files_transferred == 1
        assert "/up/proj/sub" not in remote.dirs
        assert session.cwd_path == "/"

    def test_existing_directory_fails_by_default(self, session, remote, local_tree):
        remote.dirs.add("/up/proj")
        result = TreeOrchestrator(session).upload_dir_tree(local_tree, "/up")
        assert result.error is not None
        assert result.error.code == 550

    def test_existing_directory_tolerated(self, session, remote, local_tree):
        orchestrator = TreeOrchestrator(session, tolerate_existing=True)
        first = orchestrator.upload_dir_tree(local_tree, "/up", excluded_dirs=[".git", "build"])
        shape = (set(remote.dirs), set(remote.files))
        second = orchestrator.upload_dir_tree(local_tree, "/up", excluded_dirs=[".git", "build"])

        assert first.success and second.success
        assert second.files_transferred == 4
        assert (set(remote.dirs), set(remote.files)) == shape

    def test_parallel_upload_bounded(self, session, remote, tmp_path):
        root = tmp_path / "many"
        root.mkdir()
        for i in range(8):
            (root / f"f{i}.bin").write_bytes(b"x" * i)
        remote.delay = 0.05

        result = TreeOrchestrator(session).upload_dir_tree(root, "/up", max_workers=3)

        assert result.success
        assert result.files_transferred == 8
        assert len([p for p in remote.files if p.startswith("/up/many/")]) == 8
        assert remote.peak <= 3
        assert remote.clones <= 3
        assert session.cwd_path == "/"

    def test_parallel_failure_waits_for_level(self, session, remote, local_tree):
        remote.fail_names.add("a.txt")
        remote.delay = 0.02

        result = TreeOrchestrator(session).upload_dir_tree(
            local_tree, "/up", max_workers=2, excluded_dirs=[".git", "build"]
        )

        assert isinstance(result.error, FTPTransferError)
        assert remote.active == 0
        assert "/up/proj/sub" not in remote.dirs

    def test_parallel_upload_without_reported_directory(self, session, remote, local_tree):
        remote.unquoted_pwd = True

        result = TreeOrchestrator(session).upload_dir_tree(
            local_tree, "/up", max_workers=2, excluded_dirs=[".git", "build"]
        )

        assert result.success, result.error
        assert sorted(remote.files) == [
            "/up/proj/a.txt",
            "/up/proj/b.txt",
            "/up/proj/sub/c.txt",
            "/up/proj/sub/deeper/d.txt",
        ]

    def test_parallel_relative_root_needs_reported_directory(self, session, remote, local_tree):
        remote.unquoted_pwd = True
        session.cwd("/up")

        result = TreeOrchestrator(session).upload_dir_tree(local_tree, "incoming", max_workers=2)

        assert isinstance(result.error, ProtocolError)
        assert remote.files == {}

    def test_parallel_relative_root_resolved(self, session, remote, local_tree):
        remote.dirs.add("/up/incoming")
        session.cwd("/up")

        result = TreeOrchestrator(session).upload_dir_tree(
            local_tree, "incoming", max_workers=2, excluded_dirs=[".git", "build"]
        )

        assert result.success, result.error
        assert "/up/incoming/proj/sub/deeper/d.txt" in remote.files
        assert session.cwd_path == "/up"

    def test_invalid_worker_count(self, session, local_tree):
        with pytest.raises(ConfigurationError):
            TreeOrchestrator(session).upload_dir_tree(local_tree, "/up", max_workers=0)


@pytest.fixture
def populated(remote):
    remote.dirs.update({"/data", "/data/Docs", "/data/Docs/old", "/data/skip"})
    remote.files.update({
        "/data/readme.md": b"hello",
        "/data/Docs/guide.txt": b"guide",
        "/data/Docs/old/v1.txt": b"v1",
        "/data/skip/ignored.bin": b"zz",
    })
    return remote


class TestDownloadDirTree:
    @pytest.mark.parametrize("use_mlsd", [False, True])
    def test_download_tree(self, session, populated, tmp_path, use_mlsd):
        populated.mlsd = use_mlsd

        result = TreeOrchestrator(session).download_dir_tree(
            "/data", tmp_path, excluded_dirs=["SKIP"]
        )

        assert result.success
        assert result.files_transferred == 3
        assert (tmp_path / "data" / "readme.md").read_bytes() == b"hello"
        assert (tmp_path / "data" / "Docs" / "guide.txt").read_bytes() == b"guide"
        assert (tmp_path / "data" / "Docs" / "old" / "v1.txt").read_bytes() == b"v1"
        assert not (tmp_path / "data" / "skip").exists()
        assert session.cwd_path == "/"
        listing = "MLSD" if use_mlsd else "LIST"
        assert listing in populated.commands

    def test_parallel_download(self, session, populated, tmp_path):
        result = TreeOrchestrator(session).download_dir_tree("/data", tmp_path, max_workers=2)
        assert result.files_transferred == 4
        assert (tmp_path / "data" / "skip" / "ignored.bin").read_bytes() == b"zz"

    def test_parallel_download_without_reported_directory(self, session, populated, tmp_path):
        populated.unquoted_pwd = True

        result = TreeOrchestrator(session).download_dir_tree("/data", tmp_path, max_workers=2)

        assert result.success, result.error
        assert (tmp_path / "data" / "Docs" / "old" / "v1.txt").read_bytes() == b"v1"

    def test_missing_remote_dir(self, session, populated, tmp_path):
        result = TreeOrchestrator(session).download_dir_tree("/absent", tmp_path)
        assert result.error is not None


class TestRemoveRemoteDirTree:
    def test_removes_everything(self, session, populated):
        TreeOrchestrator(session).remove_remote_dir_tree("/data")

        assert not any(d.startswith("/data") for d in populated.dirs)
        assert not any(f.startswith("/data") for f in populated.files)
        assert session.cwd_path == "/"

    def test_relative_directory(self, session, populated):
        session.cwd("/data")
        TreeOrchestrator(session).remove_remote_dir_tree("Docs")

        assert "/data/Docs" not in populated.dirs
        assert "/data/readme.md" in populated.files
        assert session.cwd_path == "/data"

    def test_missing_directory(self, session, populated):
        with pytest.raises(DirectoryNonExistent):
            TreeOrchestrator(session).remove_remote_dir_tree("/absent")
        assert session.cwd_path == "/"

    def test_dot_entries_skipped(self, session, populated):
        TreeOrchestrator(session).remove_remote_dir_tree("/data/Docs/old")
        assert not any(c in ("DELE .", "DELE ..") for c in populated.commands)
