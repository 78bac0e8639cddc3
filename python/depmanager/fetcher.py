"""Source fetchers: git checkouts and source archive downloads."""

import logging
import shlex
import shutil
import subprocess
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import List, Optional

import requests

from . import __version__
from .exceptions import FetchError
from .parsers import ManifestReader
from .version_parser import VersionSpec

logger = logging.getLogger(__name__)


class SourceFetcher:
    """Interface of the fetch primitive the resolver builds on."""

    def fetch_source(self, repository: str, reference: str, destination: Path,
                     patch_command: Optional[str] = None) -> Path:
        """Make repository at reference available in destination and return it."""
        raise NotImplementedError

    def read_declared_version(self, source_dir: Path) -> Optional[VersionSpec]:
        """Version the dependency declares in its own sources, if any."""
        return ManifestReader.read_declared_version(source_dir)

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class GitSourceFetcher(SourceFetcher):
    """
    Fetches git repositories with the git CLI and source archives over HTTP.

    Repositories whose URL ends in an archive suffix are downloaded and
    extracted; a '{reference}' placeholder in such a URL is replaced by the
    requested reference. Everything else is cloned (or updated in place when
    the destination is already a checkout) and the reference checked out
    detached. Both paths are idempotent for identical arguments.
    """

    ARCHIVE_SUFFIXES = ('.tar.gz', '.tgz', '.tar.bz2', '.tar.xz', '.tar', '.zip')

    def __init__(self, git_executable: str = "git", timeout: int = 300):
        self.git_executable = git_executable
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            "User-Agent": f"depmanager/{__version__}"
        })

    def fetch_source(self, repository: str, reference: str, destination: Path,
                     patch_command: Optional[str] = None) -> Path:
        destination = Path(destination)
        if self.is_archive(repository):
            self._download_archive(repository, reference, destination)
        else:
            self._checkout(repository, reference, destination)

        if patch_command:
            self._run_patch(patch_command, destination)
        return destination

    @classmethod
    def is_archive(cls, repository: str) -> bool:
        path = repository.split('?', 1)[0].lower()
        return path.startswith(('http://', 'https://')) and path.endswith(cls.ARCHIVE_SUFFIXES)

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()

    def _git(self, args: List[str], cwd: Optional[Path] = None, check: bool = True) -> subprocess.CompletedProcess:
        cmd = [self.git_executable] + args
        logger.debug(f"Running {' '.join(cmd)}" + (f" in {cwd}" if cwd else ""))
        try:
            result = subprocess.run(
                cmd, cwd=str(cwd) if cwd else None,
                capture_output=True, text=True, timeout=self.timeout
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise FetchError(f"Could not run {' '.join(cmd)}: {e}") from e

        if check and result.returncode != 0:
            raise FetchError(
                f"{' '.join(cmd)} failed with exit code {result.returncode}: {result.stderr.strip()}"
            )
        return result

    def _checkout(self, repository: str, reference: str, destination: Path) -> None:
        if (destination / ".git").exists():
            logger.info(f"Updating existing checkout {destination}")
            self._git(["fetch", "--quiet", "--tags", "--force", "origin"], cwd=destination)
        elif destination.exists() and any(destination.iterdir()):
            raise FetchError(f"{destination} exists and is not a git checkout; refusing to overwrite it")
        else:
            destination.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Cloning {repository} into {destination}")
            self._git(["clone", "--quiet", repository, str(destination)])

        if reference:
            self._checkout_reference(destination, reference)

    def _checkout_reference(self, destination: Path, reference: str) -> None:
        # Branches resolve through origin/ so an update picks up new commits
        for candidate in (f"origin/{reference}", reference):
            probe = self._git(
                ["rev-parse", "--verify", "--quiet", f"{candidate}^{{commit}}"],
                cwd=destination, check=False
            )
            if probe.returncode == 0:
                self._git(["checkout", "--quiet", "--detach", candidate], cwd=destination)
                logger.debug(f"Checked out {candidate} ({probe.stdout.strip()[:12]}) in {destination}")
                return
        raise FetchError(f"Reference '{reference}' not found in {destination}")

    def _download_archive(self, repository: str, reference: str, destination: Path) -> None:
        url = repository.replace("{reference}", reference or "")
        logger.info(f"Downloading {url}")

        destination.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=destination.parent, prefix=".download-") as tmp:
            archive_path = Path(tmp) / Path(url.split('?', 1)[0]).name
            try:
                with self.session.get(url, stream=True, timeout=self.timeout) as response:
                    response.raise_for_status()
                    with open(archive_path, 'wb') as f:
                        for chunk in response.iter_content(chunk_size=65536):
                            f.write(chunk)
            except requests.RequestException as e:
                raise FetchError(f"Error downloading {url}: {e}") from e

            extract_dir = Path(tmp) / "extract"
            self._extract(archive_path, extract_dir)

            # Archives usually wrap everything in one top-level directory
            entries = list(extract_dir.iterdir())
            content_root = entries[0] if len(entries) == 1 and entries[0].is_dir() else extract_dir

            if destination.exists():
                shutil.rmtree(destination)
            shutil.move(str(content_root), str(destination))
        logger.debug(f"Extracted {url} into {destination}")

    @staticmethod
    def _extract(archive_path: Path, extract_dir: Path) -> None:
        extract_dir.mkdir(parents=True, exist_ok=True)
        try:
            if archive_path.name.lower().endswith('.zip'):
                with zipfile.ZipFile(archive_path) as archive:
                    archive.extractall(extract_dir)
            else:
                with tarfile.open(archive_path) as archive:
                    if hasattr(tarfile, 'data_filter'):
                        archive.extractall(extract_dir, filter='data')
                    else:
                        archive.extractall(extract_dir)
        except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
            raise FetchError(f"Could not extract {archive_path.name}: {e}") from e

    def _run_patch(self, patch_command: str, destination: Path) -> None:
        logger.info(f"Applying patch command in {destination}: {patch_command}")
        try:
            result = subprocess.run(
                shlex.split(patch_command), cwd=str(destination),
                capture_output=True, text=True, timeout=self.timeout
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise FetchError(f"Could not run patch command '{patch_command}': {e}") from e

        if result.returncode != 0:
            raise FetchError(
                f"Patch command '{patch_command}' failed with exit code {result.returncode}: "
                f"{result.stderr.strip()}"
            )
