"""Readers for the manifests that declare a project's version and dependencies."""

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from .exceptions import MalformedVersion, ManifestError
from .models import DeclaredDependency, Manifest
from .version_parser import VersionParser, VersionSpec

logger = logging.getLogger(__name__)

JSON_MANIFEST = "depmanager.json"
CMAKE_MANIFEST = "CMakeLists.txt"

# Keywords of DependencyManager_Declare(); values run until the next keyword
DECLARE_KEYWORDS = ("GIT_REPOSITORY", "URL", "GIT_TAG", "VERSION_RANGE", "PATCH_COMMAND", "PARENT_NAME")


def _strip_cmake_comments(content: str) -> str:
    """Remove #[[ ]] block comments and # line comments outside quotes."""
    content = re.sub(r'#\[(=*)\[.*?\]\1\]', '', content, flags=re.DOTALL)
    lines = []
    for line in content.splitlines():
        in_quotes = False
        for i, char in enumerate(line):
            if char == '"' and (i == 0 or line[i - 1] != '\\'):
                in_quotes = not in_quotes
            elif char == '#' and not in_quotes:
                line = line[:i]
                break
        lines.append(line)
    return '\n'.join(lines)


def _split_arguments(arguments: str) -> List[str]:
    """Split a CMake argument list into tokens, unquoting quoted ones."""
    tokens = re.findall(r'"((?:[^"\\]|\\.)*)"|([^\s"]+)', arguments)
    return [bare or quoted for quoted, bare in tokens]


def _keyword_values(tokens: List[str], keywords) -> Dict[str, List[str]]:
    values: Dict[str, List[str]] = {}
    current = None
    for token in tokens:
        if token in keywords:
            current = token
            values.setdefault(current, [])
        elif current is not None:
            values[current].append(token)
    return values


class ManifestReader:
    """Parses depmanager.json and CMakeLists.txt manifests."""

    @staticmethod
    def detect_format(file_path) -> str:
        """Detect the manifest format from the file name."""
        name_lower = Path(file_path).name.lower()
        if name_lower.endswith('.json'):
            return 'json'
        if name_lower == 'cmakelists.txt' or name_lower.endswith('.cmake'):
            return 'cmake'
        raise ManifestError(f"Unknown manifest format: {file_path}")

    @staticmethod
    def find_manifest(source_dir) -> Optional[Path]:
        """Locate the manifest of a source tree, preferring depmanager.json."""
        for candidate in (JSON_MANIFEST, CMAKE_MANIFEST):
            path = Path(source_dir) / candidate
            if path.is_file():
                return path
        return None

    @classmethod
    def read(cls, file_path) -> Manifest:
        """Read a manifest file of either format."""
        if cls.detect_format(file_path) == 'json':
            return cls.parse_json_manifest(file_path)
        return cls.parse_cmake_file(file_path)

    @classmethod
    def read_source_tree(cls, source_dir) -> Manifest:
        """Read the manifest of a source tree; an empty Manifest if there is none."""
        path = cls.find_manifest(source_dir)
        if path is None:
            logger.debug(f"No manifest in {source_dir}")
            return Manifest()
        return cls.read(path)

    @classmethod
    def read_declared_version(cls, source_dir) -> Optional[VersionSpec]:
        """Version declared by a source tree, or None if it declares none."""
        return cls.read_source_tree(source_dir).version

    @staticmethod
    def parse_json_manifest(file_path) -> Manifest:
        """Parse a depmanager.json manifest."""
        path = Path(file_path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ManifestError(f"Error reading {path}: {e}") from e

        if not isinstance(data, dict):
            raise ManifestError(f"{path}: top level must be an object")

        dependencies = []
        for index, entry in enumerate(data.get('dependencies', [])):
            if not isinstance(entry, dict) or not entry.get('name') or not entry.get('repository'):
                raise ManifestError(f"{path}: dependency #{index} needs 'name' and 'repository'")
            dependencies.append(DeclaredDependency(
                name=entry['name'],
                repository=entry['repository'],
                reference=str(entry.get('reference', '')),
                version_range=entry.get('version_range'),
                patch_command=entry.get('patch_command'),
                parent_name=entry.get('parent_name')
            ))

        try:
            version = VersionParser.parse_optional(data.get('version'))
        except MalformedVersion:
            logger.warning(f"{path}: ignoring unparsable version '{data.get('version')}'")
            version = None

        logger.debug(f"Parsed {len(dependencies)} dependencies from {path}")
        return Manifest(name=data.get('name'), version=version, dependencies=dependencies, path=path)

    @staticmethod
    def parse_cmake_file(file_path) -> Manifest:
        """
        Parse a CMakeLists.txt for project() and DependencyManager_Declare() calls.

        Only literal arguments are understood; ${VAR} references are kept as-is.
        PARENT_NAME declares the dependency under the named dependency rather
        than under the project owning this file.
        """
        path = Path(file_path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                content = _strip_cmake_comments(f.read())
        except OSError as e:
            raise ManifestError(f"Error reading {path}: {e}") from e

        manifest = Manifest(path=path)

        project_match = re.search(r'\bproject\s*\(([^)]*)\)', content, re.IGNORECASE)
        if project_match:
            tokens = _split_arguments(project_match.group(1))
            if tokens:
                manifest.name = tokens[0]
            values = _keyword_values(tokens[1:], ("VERSION", "LANGUAGES", "DESCRIPTION", "HOMEPAGE_URL"))
            version_tokens = values.get("VERSION")
            if version_tokens:
                try:
                    manifest.version = VersionParser.parse(version_tokens[0])
                except MalformedVersion:
                    logger.warning(f"{path}: ignoring unparsable project VERSION '{version_tokens[0]}'")

        for match in re.finditer(r'\bDependencyManager_Declare\s*\(([^)]*)\)', content, re.IGNORECASE):
            tokens = _split_arguments(match.group(1))
            if not tokens:
                continue
            values = _keyword_values(tokens[1:], DECLARE_KEYWORDS)
            repository = values.get("GIT_REPOSITORY") or values.get("URL")
            if not repository:
                raise ManifestError(f"{path}: DependencyManager_Declare({tokens[0]}) has no GIT_REPOSITORY")

            reference = values.get("GIT_TAG", [""])
            version_range = values.get("VERSION_RANGE")
            patch_command = values.get("PATCH_COMMAND")
            parent_name = values.get("PARENT_NAME")
            manifest.dependencies.append(DeclaredDependency(
                name=tokens[0],
                repository=repository[0],
                reference=reference[0] if reference else "",
                version_range=version_range[0] if version_range else None,
                patch_command=" ".join(patch_command) if patch_command else None,
                parent_name=parent_name[0] if parent_name else None
            ))

        logger.debug(f"Parsed {len(manifest.dependencies)} declarations from {path}")
        return manifest
