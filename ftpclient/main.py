"""Command-line entry point for the FTP transfer client.

Runs one batch operation (get, put, ls, upload, download, remove) against
a server. Connection defaults come from the saved settings; passwords come
from the command line or the system keyring.
"""

import argparse
import sys
from pathlib import Path, PurePosixPath
from typing import List, Optional

from .config.credentials import CredentialManager
from .config.paths import get_log_file_path
from .config.settings import ClientSettings, SettingsManager
from .ftp.connection import FTPConnectionConfig, FTPSession
from .ftp.exceptions import FTPError
from .ftp.transfer import TransferProgress
from .ftp.tree import TreeOrchestrator, TreeTransferResult
from .utils.logging import setup_logging


class Application:
    """
    Batch command runner.

    Wires settings, credentials, logging and one FTP session together for
    a single command.
    """

    def __init__(
        self,
        settings_manager: Optional[SettingsManager] = None,
        credentials: Optional[CredentialManager] = None,
        log_file: Optional[Path] = None,
    ):
        self._settings_manager = settings_manager or SettingsManager()
        self._settings = self._settings_manager.load()
        self._credentials = credentials or CredentialManager()
        self._log_file = log_file
        self._logger = None

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    def _setup_logging(self, verbose: bool) -> None:
        level = "DEBUG" if verbose else self._settings.log_level
        self._logger = setup_logging(level, log_file=self._log_file or get_log_file_path())

    def build_config(self, args: argparse.Namespace) -> FTPConnectionConfig:
        """Merge command-line options over the saved settings."""
        settings = self._settings
        return FTPConnectionConfig(
            host=args.host or settings.host,
            port=args.port or settings.port,
            username=args.user or settings.username,
            passive_mode=settings.passive_mode and not args.active,
            timeout=args.timeout or settings.timeout,
            encoding=args.encoding or settings.encoding,
            proxy_url=args.proxy if args.proxy is not None else settings.proxy_url,
            block_size=settings.block_size,
        )

    def run(self, args: argparse.Namespace) -> int:
        """
        Connect, run the selected command and disconnect.

        Returns:
            Process exit code (0 on success)
        """
        self._setup_logging(args.verbose)
        try:
            config = self.build_config(args)
        except ValueError as e:
            self._logger.error(f"Invalid connection settings: {e}")
            return 2

        if args.save_password and args.password:
            self._credentials.save_password(config.host, config.username, args.password)
        if args.remember:
            self._settings = self._settings_manager.update(
                host=config.host, port=config.port, username=config.username
            )

        session = FTPSession(self._credentials)
        try:
            session.connect(config, password=args.password)
            return args.func(self, session, args)
        except FTPError as e:
            self._logger.error(f"{args.command} failed: {e}")
            return 1
        finally:
            session.disconnect()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def cmd_get(self, session: FTPSession, args: argparse.Namespace) -> int:
        local = Path(args.local or PurePosixPath(args.remote).name)
        offset = 0
        if args.resume and local.is_file():
            offset = local.stat().st_size
        result = session.download_file(
            args.remote, local, line_mode=args.ascii, offset=offset, callback=_print_progress
        )
        print(f"{args.remote} -> {local}: {result.bytes_transferred} bytes")
        return 0

    def cmd_put(self, session: FTPSession, args: argparse.Namespace) -> int:
        local = Path(args.local)
        remote = args.remote or local.name
        result = session.upload_file(remote, local, line_mode=args.ascii, callback=_print_progress)
        print(f"{local} -> {remote}: {result.bytes_transferred} bytes")
        return 0

    def cmd_ls(self, session: FTPSession, args: argparse.Namespace) -> int:
        lines = session.nlst(*args.path) if args.names else session.dir(*args.path)
        for line in lines:
            print(line)
        return 0

    def cmd_upload(self, session: FTPSession, args: argparse.Namespace) -> int:
        orchestrator = TreeOrchestrator(session, tolerate_existing=args.tolerate_existing)
        result = orchestrator.upload_dir_tree(
            args.local_dir,
            args.remote_root,
            max_workers=self._workers(args),
            excluded_dirs=self._excluded(args),
        )
        return self._report(result)

    def cmd_download(self, session: FTPSession, args: argparse.Namespace) -> int:
        result = TreeOrchestrator(session).download_dir_tree(
            args.remote_dir,
            args.local_root,
            max_workers=self._workers(args),
            excluded_dirs=self._excluded(args),
        )
        return self._report(result)

    def cmd_remove(self, session: FTPSession, args: argparse.Namespace) -> int:
        TreeOrchestrator(session).remove_remote_dir_tree(args.remote_dir)
        print(f"Removed {args.remote_dir}")
        return 0

    def _workers(self, args: argparse.Namespace) -> int:
        return args.workers or self._settings.max_workers

    def _excluded(self, args: argparse.Namespace) -> List[str]:
        return list(self._settings.excluded_dirs) + list(args.exclude)

    def _report(self, result: TreeTransferResult) -> int:
        print(f"{result.files_transferred} files, {result.bytes_transferred} bytes")
        if result.error is not None:
            self._logger.error(f"Tree transfer stopped: {result.error}")
            return 1
        return 0


def _print_progress(progress: TransferProgress) -> None:
    if not progress.end_of_stream:
        return
    percent = progress.percent
    suffix = f" ({percent:.0f}%)" if percent is not None else ""
    print(f"  {progress.remote_name}: {progress.bytes_transferred} bytes{suffix}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ftpclient", description="FTP file and directory tree transfers.")
    p.add_argument("--host", default="")
    p.add_argument("--port", type=int, default=0)
    p.add_argument("--user", default="")
    p.add_argument("--password", default=None,
                   help="Password (looked up in the system keyring when omitted)")
    p.add_argument("--save-password", action="store_true", help="Store --password in the keyring")
    p.add_argument("--remember", action="store_true", help="Save host, port and user as defaults")
    p.add_argument("--active", action="store_true", help="Use PORT instead of PASV")
    p.add_argument("--proxy", default=None, help="socks5://[user:pass@]host[:port]")
    p.add_argument("--timeout", type=int, default=0)
    p.add_argument("--encoding", default="")
    p.add_argument("-v", "--verbose", action="store_true")
    sub = p.add_subparsers(dest="command", required=True)

    get = sub.add_parser("get", help="Download one file")
    get.add_argument("remote")
    get.add_argument("local", nargs="?")
    get.add_argument("--ascii", action="store_true", help="Line mode (TYPE A)")
    get.add_argument("--resume", action="store_true", help="Continue a partial binary download")
    get.set_defaults(func=Application.cmd_get)

    put = sub.add_parser("put", help="Upload one file")
    put.add_argument("local")
    put.add_argument("remote", nargs="?")
    put.add_argument("--ascii", action="store_true", help="Line mode (TYPE A)")
    put.set_defaults(func=Application.cmd_put)

    ls = sub.add_parser("ls", help="List a remote directory")
    ls.add_argument("path", nargs="*")
    ls.add_argument("--names", action="store_true", help="Names only (NLST)")
    ls.set_defaults(func=Application.cmd_ls)

    def add_tree_options(x: argparse.ArgumentParser) -> None:
        x.add_argument("--workers", type=int, default=0)
        x.add_argument("--exclude", action="append", default=[], metavar="DIR",
                       help="Folder name to skip (repeatable, case-insensitive)")

    upload = sub.add_parser("upload", help="Upload a directory tree")
    upload.add_argument("local_dir")
    upload.add_argument("remote_root")
    upload.add_argument("--tolerate-existing", action="store_true",
                        help="Reuse remote directories that already exist")
    add_tree_options(upload)
    upload.set_defaults(func=Application.cmd_upload)

    download = sub.add_parser("download", help="Download a directory tree")
    download.add_argument("remote_dir")
    download.add_argument("local_root")
    add_tree_options(download)
    download.set_defaults(func=Application.cmd_download)

    remove = sub.add_parser("remove", help="Remove a remote directory tree")
    remove.add_argument("remote_dir")
    remove.set_defaults(func=Application.cmd_remove)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)
    return Application().run(args)


if __name__ == "__main__":
    raise SystemExit(main())
