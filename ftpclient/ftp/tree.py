"""Recursive directory tree transfers for the FTP transfer client.

Uploads a local tree, downloads a remote tree and removes a remote tree.
Directory structure operations (MKD, CWD, RMD) always run on the calling
session, one after another. File transfers of one directory level may be
spread over a WorkerPool whose workers each own a cloned session; all of
them finish before the walk moves on.
"""

import logging
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from ftpclient.ftp.connection import FTPSession
from ftpclient.ftp.exceptions import (
    ConfigurationError,
    DirectoryNonExistent,
    FTPError,
    PermanentError,
    ProtocolError,
)
from ftpclient.ftp.reply import parse_list_line
from ftpclient.ftp.transfer import ProgressCallback
from ftpclient.local.scanner import DirectoryPlan, ExclusionSet
from ftpclient.utils.threading import TaskHandle, WorkerPool
from ftpclient.utils.validators import validate_ftp_path

logger = logging.getLogger("ftpclient.tree")

# MKD replies meaning "already exists" on common servers
EXISTS_CODES = (521, 550)


@dataclass
class TreeTransferResult:
    """Outcome of a tree transfer."""
    files_transferred: int = 0
    bytes_transferred: int = 0
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class _RemoteEntry:
    name: str
    is_directory: bool


class TreeOrchestrator:
    """Walks directory trees over one FTP session."""

    def __init__(self, session: FTPSession, tolerate_existing: bool = False):
        """
        Initialize the orchestrator.

        Args:
            session: Connected session used for structure operations
            tolerate_existing: Treat MKD "already exists" replies as success,
                so uploading the same tree twice works
        """
        self._session = session
        self._tolerate_existing = tolerate_existing

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload_dir_tree(
        self,
        local_dir: Union[str, Path],
        remote_root: str,
        max_workers: int = 1,
        excluded_dirs: Iterable[str] = (),
        callback: Optional[ProgressCallback] = None,
    ) -> TreeTransferResult:
        """
        Upload local_dir and everything below it into remote_root.

        A remote directory named after local_dir is created under
        remote_root. Files are always sent in binary mode. The remote
        working directory is restored before returning.

        Args:
            local_dir: Local directory to upload
            remote_root: Existing remote directory receiving the tree
            max_workers: Files of one directory uploaded in parallel
            excluded_dirs: Folder names (case-insensitive) to leave out
            callback: Progress callback (runs on worker threads when
                max_workers > 1)

        Returns:
            TreeTransferResult with the files uploaded before any failure

        Raises:
            ConfigurationError: If remote_root is empty or max_workers < 1
        """
        _check_remote_path(remote_root)
        if max_workers < 1:
            raise ConfigurationError(f"max_workers must be at least 1, got {max_workers}")

        local_dir = Path(local_dir)
        plan = DirectoryPlan(local_dir, excluded_dirs)
        result = TreeTransferResult()

        logger.info(f"Uploading {local_dir} to {remote_root} ({max_workers} workers)")
        with _Dispatcher(self._session, max_workers) as dispatcher:
            try:
                worker_root = self._worker_path(remote_root, dispatcher)
                with self._session.remote_directory(remote_root):
                    self._upload_level(plan, local_dir, (), worker_root, dispatcher, callback, result)
            except FTPError as e:
                result.error = e
            except OSError as e:
                result.error = FTPError(f"Cannot read local directory {local_dir}", e)

        if result.error is not None:
            logger.error(f"Upload of {local_dir} stopped after {result.files_transferred} files: {result.error}")
        else:
            logger.info(f"Uploaded {result.files_transferred} files from {local_dir}")
        return result

    def _worker_path(self, remote_dir: str, dispatcher: "_Dispatcher") -> str:
        """
        Absolute form of remote_dir for worker sessions, which start in the
        login directory. Empty when the files are transferred inline.

        Raises:
            ProtocolError: If a relative remote_dir cannot be resolved
                because the server does not report its working directory
        """
        if not dispatcher.parallel:
            return ""
        if posixpath.isabs(remote_dir):
            return posixpath.normpath(remote_dir)
        base = self._session.pwd()
        if not base:
            raise ProtocolError(
                f"cannot resolve '{remote_dir}' for parallel transfer: "
                "server did not report its working directory"
            )
        return posixpath.normpath(posixpath.join(base, remote_dir))

    def _make_directory(self, name: str) -> None:
        try:
            self._session.mkd(name)
        except PermanentError as e:
            if not (self._tolerate_existing and e.code in EXISTS_CODES):
                raise
            logger.debug(f"Remote directory {name} already exists")

    def _upload_level(
        self,
        plan: DirectoryPlan,
        path: Path,
        relative: Tuple[str, ...],
        worker_parent: str,
        dispatcher: "_Dispatcher",
        callback: Optional[ProgressCallback],
        result: TreeTransferResult,
    ) -> None:
        session = self._session
        self._make_directory(path.name)
        with session.remote_directory(path.name):
            level = plan.level(path, relative)
            remote_dir = posixpath.join(worker_parent, path.name) if worker_parent else ""

            jobs = [
                (entry.name, path / entry.name) for entry in level.files
            ]
            dispatcher.run(
                jobs,
                lambda s, name, local: _upload_one(s, remote_dir, name, local, callback),
                result,
            )

            for entry in level.subdirs:
                self._upload_level(
                    plan, path / entry.name, relative + (entry.name,), remote_dir,
                    dispatcher, callback, result,
                )

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def download_dir_tree(
        self,
        remote_dir: str,
        local_root: Union[str, Path],
        max_workers: int = 1,
        excluded_dirs: Iterable[str] = (),
        callback: Optional[ProgressCallback] = None,
    ) -> TreeTransferResult:
        """
        Download remote_dir and everything below it into local_root.

        A local directory named after remote_dir is created under
        local_root. Directory listings use MLSD when the server announces
        it in FEAT and LIST otherwise.

        Returns:
            TreeTransferResult with the files downloaded before any failure

        Raises:
            ConfigurationError: If remote_dir is empty or max_workers < 1
        """
        _check_remote_path(remote_dir)
        if max_workers < 1:
            raise ConfigurationError(f"max_workers must be at least 1, got {max_workers}")

        excluded = ExclusionSet(excluded_dirs)
        name = posixpath.basename(remote_dir.rstrip("/")) or "root"
        target = Path(local_root) / name
        result = TreeTransferResult()
        use_mlsd = self._supports_mlsd()

        logger.info(f"Downloading {remote_dir} to {target} (MLSD: {use_mlsd})")
        with _Dispatcher(self._session, max_workers) as dispatcher:
            try:
                worker_path = self._worker_path(remote_dir, dispatcher)
                self._download_level(
                    remote_dir, worker_path, target, excluded, use_mlsd, dispatcher, callback, result
                )
            except FTPError as e:
                result.error = e
            except OSError as e:
                result.error = FTPError(f"Cannot write local directory {target}", e)
        return result

    def _supports_mlsd(self) -> bool:
        try:
            features = self._session.feat()
        except FTPError as e:
            logger.debug(f"FEAT not available: {e}")
            return False
        return any(f.upper().startswith(("MLST", "MLSD")) for f in features)

    def _list_remote(self, use_mlsd: bool) -> List[_RemoteEntry]:
        entries = []
        if use_mlsd:
            for facts in self._session.mlsd("", ("type", "size")):
                if facts.facts.get("type", "").lower() in ("cdir", "pdir"):
                    continue
                entries.append(_RemoteEntry(facts.original_name, facts.is_directory))
        else:
            for line in self._session.dir():
                entry = parse_list_line(line)
                if entry is None or entry.name in (".", ".."):
                    continue
                entries.append(_RemoteEntry(entry.name, entry.is_directory))
        return entries

    def _download_level(
        self,
        remote_dir: str,
        worker_path: str,
        local_dir: Path,
        excluded: ExclusionSet,
        use_mlsd: bool,
        dispatcher: "_Dispatcher",
        callback: Optional[ProgressCallback],
        result: TreeTransferResult,
    ) -> None:
        session = self._session
        local_dir.mkdir(parents=True, exist_ok=True)
        with session.remote_directory(remote_dir):
            entries = sorted(self._list_remote(use_mlsd), key=lambda e: e.name)
            jobs = [(e.name, local_dir / e.name) for e in entries if not e.is_directory]
            dispatcher.run(
                jobs,
                lambda s, name, local: _download_one(s, worker_path, name, local, callback),
                result,
            )

            for entry in entries:
                if not entry.is_directory:
                    continue
                if entry.name in excluded:
                    logger.debug(f"Skipping excluded remote directory: {entry.name}")
                    continue
                child_path = posixpath.join(worker_path, entry.name) if worker_path else ""
                self._download_level(
                    entry.name, child_path, local_dir / entry.name, excluded, use_mlsd,
                    dispatcher, callback, result,
                )

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove_remote_dir_tree(self, remote_dir: str) -> None:
        """
        Remove a remote directory with all its files and subdirectories.

        The remote working directory is restored afterwards.

        Raises:
            DirectoryNonExistent: If remote_dir cannot be entered
            ReplyError: If a DELE or RMD is refused
        """
        _check_remote_path(remote_dir)
        with self._session.remote_directory():
            self._remove_tree(remote_dir)

    def _remove_tree(self, remote_dir: str) -> None:
        session = self._session
        logger.debug(f"Changing working remote dir to: {remote_dir}")
        parent = session.pwd()
        try:
            session.cwd(remote_dir)
        except FTPError as e:
            raise DirectoryNonExistent(remote_dir, e)

        logger.debug(f"Cleaning up remote folder: {remote_dir}")
        for line in session.dir():
            entry = parse_list_line(line)
            if entry is None or entry.name in (".", ".."):
                continue
            if entry.is_directory:
                self._remove_tree(entry.name)
            else:
                session.delete(entry.name)

        session.cwd(parent)
        session.rmd(remote_dir)


def _check_remote_path(path: str) -> None:
    is_valid, error = validate_ftp_path(path)
    if not is_valid:
        raise ConfigurationError(error)


def _enter(session: FTPSession, remote_dir: str) -> None:
    # Worker sessions start in the login directory
    if remote_dir:
        session.cwd(remote_dir)


def _upload_one(
    session: FTPSession,
    remote_dir: str,
    name: str,
    local_path: Path,
    callback: Optional[ProgressCallback],
) -> int:
    _enter(session, remote_dir)
    return session.upload_file(name, local_path, callback=callback).bytes_transferred


def _download_one(
    session: FTPSession,
    remote_dir: str,
    name: str,
    local_path: Path,
    callback: Optional[ProgressCallback],
) -> int:
    _enter(session, remote_dir)
    return session.download_file(name, local_path, callback=callback).bytes_transferred


class _Dispatcher:
    """Runs the file jobs of one directory level inline or on a pool."""

    def __init__(self, session: FTPSession, max_workers: int):
        self._session = session
        self._max_workers = max_workers
        self._pool: Optional[WorkerPool] = None

    @property
    def parallel(self) -> bool:
        return self._max_workers > 1

    @property
    def pool(self) -> Optional[WorkerPool]:
        return self._pool

    def run(
        self,
        jobs: List[Tuple[str, Path]],
        task: Callable[[FTPSession, str, Path], int],
        result: TreeTransferResult,
    ) -> None:
        """
        Run every job, counting successes into result.

        Raises:
            FTPError: The first failure, once the whole level has finished
        """
        if not jobs:
            return
        if not self.parallel:
            for name, local_path in jobs:
                result.bytes_transferred += task(self._session, name, local_path)
                result.files_transferred += 1
            return

        if self._pool is None:
            self._pool = WorkerPool(
                self._max_workers, self._session.clone, lambda s: s.disconnect()
            )
        handles: List[TaskHandle[int]] = [
            self._pool.submit(task, name, local_path) for name, local_path in jobs
        ]

        first_error: Optional[Exception] = None
        for handle in handles:
            outcome = handle.wait()
            if outcome.ok:
                result.files_transferred += 1
                result.bytes_transferred += outcome.result or 0
            elif first_error is None and outcome.error is not None:
                first_error = outcome.error
                # Jobs that have not started yet are dropped
                for pending in handles:
                    pending.cancel()
        if first_error is not None:
            raise first_error

    def __enter__(self) -> "_Dispatcher":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._pool is not None:
            self._pool.shutdown()
