"""Session configuration, read from DEPENDENCYMANAGER_* environment variables."""

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from .resolver import ResolutionPolicy

logger = logging.getLogger(__name__)

TRUE_VALUES = ('1', 'on', 'true', 'yes', 'y')
FALSE_VALUES = ('0', 'off', 'false', 'no', 'n', '')


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Interpret an environment flag the way CMake interprets ON/OFF."""
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    logger.warning(f"Unrecognized boolean value '{value}', using {default}")
    return default


@dataclass(frozen=True)
class ManagerConfig:
    """
    Settings of one resolution session.

    Attributes:
        base_dir: Where dependency sources are checked out
        stamp_dir: Where fingerprints and lock files live (default base_dir/.stamps)
        policy: STRICT fails on version conflicts, PERMISSIVE warns and continues
        force_update: Refetch everything and overwrite recorded fingerprints
        verbose: Log resolution details
        dotgraph: If set, write the Graphviz graph here after resolution
    """
    base_dir: Path = Path("dependencies")
    stamp_dir: Optional[Path] = None
    policy: ResolutionPolicy = ResolutionPolicy.STRICT
    force_update: bool = False
    verbose: bool = False
    dotgraph: Optional[Path] = None

    @property
    def effective_stamp_dir(self) -> Path:
        return self.stamp_dir if self.stamp_dir is not None else self.base_dir / ".stamps"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ManagerConfig':
        """Build a config from DEPENDENCYMANAGER_* variables."""
        env = os.environ if environ is None else environ

        base_dir = Path(env.get('DEPENDENCYMANAGER_BASE_DIR') or cls.base_dir)
        stamp_dir = env.get('DEPENDENCYMANAGER_STAMP_DIR')
        dotgraph = env.get('DEPENDENCYMANAGER_DOTGRAPH')
        strict = parse_bool(env.get('DEPENDENCYMANAGER_VERSION_ERROR'), default=True)

        return cls(
            base_dir=base_dir,
            stamp_dir=Path(stamp_dir) if stamp_dir else None,
            policy=ResolutionPolicy.STRICT if strict else ResolutionPolicy.PERMISSIVE,
            force_update=parse_bool(env.get('DEPENDENCYMANAGER_HASH_UPDATE')),
            verbose=parse_bool(env.get('DEPENDENCYMANAGER_VERBOSE')),
            dotgraph=Path(dotgraph) if dotgraph else None
        )

    def with_overrides(self, **overrides) -> 'ManagerConfig':
        """Copy with the given fields replaced; None values are ignored."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
