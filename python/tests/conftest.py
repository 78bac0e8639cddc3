"""Shared fixtures: an in-memory fetcher that writes manifests instead of cloning."""

import json
from pathlib import Path

import pytest

from depmanager.config import ManagerConfig
from depmanager.exceptions import FetchError
from depmanager.fetcher import SourceFetcher


def repo_url(name):
    return f"https://example.com/{name}.git"


def dep(name, version_range=None, reference="main"):
    """A manifest dependency entry pointing at the fake repository of name."""
    entry = {"name": name, "repository": repo_url(name), "reference": reference}
    if version_range is not None:
        entry["version_range"] = version_range
    return entry


class FakeFetcher(SourceFetcher):
    """Fetcher that materializes a depmanager.json per repository."""

    def __init__(self, manifests=None, failing=()):
        self.manifests = dict(manifests or {})  # repository -> manifest dict
        self.failing = set(failing)
        self.calls = []
        self.closed = False

    def publish(self, name, version=None, dependencies=()):
        manifest = {"name": name, "dependencies": list(dependencies)}
        if version is not None:
            manifest["version"] = version
        self.manifests[repo_url(name)] = manifest

    def fetch_source(self, repository, reference, destination, patch_command=None):
        self.calls.append((repository, reference))
        if repository in self.failing:
            raise FetchError(f"could not clone {repository}")

        destination = Path(destination)
        destination.mkdir(parents=True, exist_ok=True)
        manifest = self.manifests.get(repository, {})
        (destination / "depmanager.json").write_text(json.dumps(manifest))
        return destination

    def close(self):
        self.closed = True


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def config(tmp_path):
    return ManagerConfig(base_dir=tmp_path / "deps")


@pytest.fixture
def write_manifest(tmp_path):
    """Write a top-level depmanager.json and return its path."""
    def _write(dependencies, name="project", version=None):
        data = {"name": name, "dependencies": list(dependencies)}
        if version is not None:
            data["version"] = version
        path = tmp_path / "project" / "depmanager.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data))
        return path
    return _write
