"""Staging transports: place a CSV where the database server can read it."""

import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .exceptions import TransferError

logger = logging.getLogger(__name__)

# [user@]host:/path, as accepted by scp. A single drive letter is not a host.
_REMOTE_RE = re.compile(r"^(?P<host>(?:[^@/:\s]+@)?[^@/:\s]{2,}):(?P<path>.+)$")

STAGING_MODES = ("local", "scp")


@dataclass(frozen=True)
class StagedFile:
    """A staged copy of a source file."""

    # Path the database server reads in COPY ... FROM
    server_path: str
    # Where the copy lives from this host's point of view (path or host:path)
    location: str


def staged_file_name(table_name: str) -> str:
    """Deterministic staging file name for a table, so reruns overwrite."""
    if not table_name or "/" in table_name or "\\" in table_name or table_name in (".", ".."):
        raise TransferError(f"cannot derive a staging file name from table name {table_name!r}", table=table_name)
    return f"{table_name}.csv"


class LocalStager:
    """Copies the file into a directory on this host (database on the same machine or a shared mount)."""

    def __init__(self, directory: str):
        self.directory = directory

    def stage(self, file_path: str, table_name: str) -> StagedFile:
        target = Path(self.directory) / staged_file_name(table_name)
        logger.info(f"staging {file_path} to {target}")
        try:
            shutil.copyfile(file_path, target)
        except OSError as e:
            logger.error(f"error copying {file_path} to {target}: {e}")
            raise TransferError(f"could not stage {file_path} to {target}", table=table_name) from e
        resolved = str(target.resolve())
        return StagedFile(server_path=resolved, location=resolved)

    def remove(self, staged: StagedFile) -> None:
        logger.info(f"removing staged file {staged.location}")
        try:
            os.remove(staged.location)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"error removing staged file {staged.location}: {e}")
            raise TransferError(f"could not remove staged file {staged.location}") from e


class ScpStager:
    """Copies the file to the database server with scp and removes it with ssh."""

    def __init__(self, remote_directory: str):
        match = _REMOTE_RE.match(remote_directory or "")
        if not match:
            raise ValueError(
                f"expected the staging directory to look like user@server.com:/home/user, got {remote_directory!r}"
            )
        self.host = match.group("host")
        self.directory = match.group("path").rstrip("/") or "/"

    def _server_path(self, table_name: str) -> str:
        if self.directory == "/":
            return "/" + staged_file_name(table_name)
        return f"{self.directory}/{staged_file_name(table_name)}"

    def stage(self, file_path: str, table_name: str) -> StagedFile:
        server_path = self._server_path(table_name)
        location = f"{self.host}:{server_path}"
        logger.info(f"copying {file_path} to remote postgres server {location}")
        _run(["scp", file_path, location], f"could not copy {file_path} to {location}", table_name)
        return StagedFile(server_path=server_path, location=location)

    def remove(self, staged: StagedFile) -> None:
        logger.info(f"removing the data file {staged.server_path} from {self.host}")
        _run(["ssh", self.host, "rm", "-f", staged.server_path], f"could not remove {staged.location}", None)


def _run(cmd: list, message: str, table_name: Optional[str]) -> None:
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        logger.error(f"{message}: {(e.stderr or '').strip()}")
        raise TransferError(message, table=table_name) from e
    except OSError as e:
        logger.error(f"{message}: {e}")
        raise TransferError(message, table=table_name) from e


def is_remote_directory(directory: str) -> bool:
    return bool(_REMOTE_RE.match(directory or ""))


def make_stager(directory: str, mode: Optional[str] = None):
    """Build the stager for a staging directory.

    Args:
        directory: Local directory, or [user@]host:/path for a remote server.
        mode: "local", "scp" or None to pick from the shape of directory.
    """
    if not directory:
        raise ValueError("staging directory can't be empty")
    mode = (mode or "").strip().lower() or None
    if mode is None:
        mode = "scp" if is_remote_directory(directory) else "local"
    if mode == "local":
        return LocalStager(directory)
    if mode == "scp":
        return ScpStager(directory)
    raise ValueError(f"unknown staging mode {mode!r}; expected one of {', '.join(STAGING_MODES)}")
