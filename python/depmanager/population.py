"""At-most-once population of dependency sources, across runs and processes.

Directory layout:
    {base_dir}/
        {safe_name}/             checkout of each primary dependency
    {stamp_dir}/
        fingerprints.txt         safe_name=sha1 of the last successful fetch
        {safe_name}.lock         advisory lock held while fetching it
        .fingerprints.txt.lock   advisory lock held while rewriting the record
"""

import hashlib
import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

try:
    import fcntl  # POSIX systems

    HAVE_FCNTL = True
except ImportError:
    HAVE_FCNTL = False

try:
    import msvcrt  # Windows

    HAVE_MSVCRT = True
except ImportError:
    HAVE_MSVCRT = False

from .exceptions import FetchFailed

logger = logging.getLogger(__name__)

RECORD_FILE_NAME = "fingerprints.txt"


def safe_name(name: str) -> str:
    """
    Turn a dependency name into a single path component.

    Names that need rewriting get a short hash of the original appended, so
    'org/lib' and 'org_lib' never share a directory, lock or record entry.
    """
    sanitized = re.sub(r'[^A-Za-z0-9._-]', '_', name)
    if sanitized == name and name not in ('', '.', '..'):
        return name
    return f"{sanitized}-{hashlib.sha1(name.encode('utf-8')).hexdigest()[:8]}"


class FileLock:
    """
    Cross-process exclusive lock on a lock file.

    Uses fcntl on POSIX systems, msvcrt on Windows. The lock file is left in
    place on release; removing it would let a waiter lock an unlinked inode.
    """

    def __init__(self, lock_path: Path):
        self.lock_path = Path(lock_path)
        self.lock_file = None

    def __enter__(self):
        """Acquire exclusive lock, blocking until it is free."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock_file = open(self.lock_path, "a+")

        if HAVE_FCNTL:
            fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_EX)
        elif HAVE_MSVCRT:
            self.lock_file.seek(0)
            msvcrt.locking(self.lock_file.fileno(), msvcrt.LK_LOCK, 1)
        else:
            logger.warning(f"File locking not available on this platform; {self.lock_path} is not locked")

        logger.debug(f"Acquired lock {self.lock_path}")
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        """Release lock."""
        if self.lock_file:
            if HAVE_FCNTL:
                fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_UN)
            elif HAVE_MSVCRT:
                self.lock_file.seek(0)
                msvcrt.locking(self.lock_file.fileno(), msvcrt.LK_UNLCK, 1)
            self.lock_file.close()
            self.lock_file = None
            logger.debug(f"Released lock {self.lock_path}")


class FingerprintRecord:
    """
    Persisted name -> fingerprint map, one 'name=hash' entry per line.

    Updates re-read the file under a lock and replace it atomically
    (temp file + rename), so concurrent builds never see a partial file.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock_path = self.path.parent / f".{self.path.name}.lock"

    def load(self) -> Dict[str, str]:
        entries: Dict[str, str] = {}
        if not self.path.exists():
            return entries

        with open(self.path, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' not in line:
                    logger.warning(f"{self.path}:{line_num}: ignoring malformed entry '{line}'")
                    continue
                name, value = line.rsplit('=', 1)
                entries[name.strip()] = value.strip()
        return entries

    def get(self, name: str) -> Optional[str]:
        return self.load().get(name)

    def update(self, name: str, fingerprint: str) -> None:
        """Set the fingerprint for name and rewrite the file atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(self.lock_path):
            entries = self.load()
            entries[name] = fingerprint

            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp", text=True
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    for key in sorted(entries):
                        f.write(f"{key}={entries[key]}\n")
                os.replace(tmp_path, self.path)
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass
                raise
        logger.debug(f"Recorded fingerprint {fingerprint} for '{name}' in {self.path}")


@dataclass
class PopulationResult:
    """Outcome of a populate() call."""

    name: str
    fingerprint: str
    source_dir: Path
    fetched: bool  # False when reused from this run or from a previous run


class PopulationGuard:
    """
    Ensures each (name, repository, reference) is fetched at most once.

    Within a process, a per-fingerprint lock and a populated map make later
    callers wait for the first fetch and reuse its directory. Across
    processes, a lock file per dependency serializes fetch and record update.
    Across runs, a persisted fingerprint whose directory still exists skips
    the fetch entirely unless force_update is set.
    """

    def __init__(self, fetcher, base_dir: Path, stamp_dir: Optional[Path] = None, force_update: bool = False):
        self.fetcher = fetcher
        self.base_dir = Path(base_dir)
        self.stamp_dir = Path(stamp_dir) if stamp_dir else self.base_dir / ".stamps"
        self.force_update = force_update
        self.record = FingerprintRecord(self.stamp_dir / RECORD_FILE_NAME)
        self.fetch_count = 0

        self._populated: Dict[str, Path] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @staticmethod
    def fingerprint(name: str, repository: str, reference: str) -> str:
        """SHA-1 identifying a fetch target."""
        payload = "\n".join((name, repository or "", reference or ""))
        return hashlib.sha1(payload.encode('utf-8')).hexdigest()

    def source_dir_for(self, name: str) -> Path:
        return self.base_dir / safe_name(name)

    def is_populated(self, fingerprint: str) -> bool:
        return fingerprint in self._populated

    def populate(
        self,
        name: str,
        repository: str,
        reference: str,
        patch_command: Optional[str] = None
    ) -> PopulationResult:
        """
        Make the sources of a dependency available, fetching only if needed.

        Raises:
            FetchFailed: If the fetch primitive fails; nothing is retried
        """
        fingerprint = self.fingerprint(name, repository, reference)

        with self._locks_guard:
            lock = self._locks.setdefault(fingerprint, threading.Lock())

        with lock:
            if fingerprint in self._populated:
                logger.debug(f"'{name}' already populated in this run")
                return PopulationResult(name, fingerprint, self._populated[fingerprint], False)

            destination = self.source_dir_for(name)
            with FileLock(self.stamp_dir / f"{safe_name(name)}.lock"):
                if self._is_up_to_date(name, fingerprint, destination):
                    logger.info(f"'{name}' is up to date at {destination} (fingerprint {fingerprint[:12]})")
                    fetched = False
                else:
                    self._fetch(name, repository, reference, destination, patch_command)
                    self.record.update(safe_name(name), fingerprint)
                    fetched = True

            self._populated[fingerprint] = destination
            return PopulationResult(name, fingerprint, destination, fetched)

    def _is_up_to_date(self, name: str, fingerprint: str, destination: Path) -> bool:
        if self.force_update:
            logger.debug(f"Force update requested, ignoring recorded fingerprint for '{name}'")
            return False
        if self.record.get(safe_name(name)) != fingerprint:
            return False
        return destination.is_dir() and any(destination.iterdir())

    def _fetch(self, name: str, repository: str, reference: str, destination: Path,
               patch_command: Optional[str]) -> None:
        logger.info(f"Fetching '{name}' from {repository} at {reference}")
        self.fetch_count += 1
        try:
            self.fetcher.fetch_source(repository, reference, destination, patch_command)
        except Exception as e:
            raise FetchFailed(name, reference, e) from e
