"""Main CLI entry point for depmanager."""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .commands.graph import render_graph
from .commands.stats import show_stats
from .config import ManagerConfig, parse_bool
from .exceptions import DependencyManagerError
from .formatters import FORMATS, GraphExporter
from .manager import DependencyManager
from .resolver import ResolutionPolicy
from .version_parser import VersionParser

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, log_level: Optional[str] = None):
    """Configure logging based on verbosity flags."""
    if log_level:
        level = getattr(logging, log_level.upper(), logging.WARNING)
    elif verbose or parse_bool(os.environ.get('DEPENDENCYMANAGER_VERBOSE')):
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(levelname)s: %(message)s'
    )


def build_config(args) -> ManagerConfig:
    """Environment defaults overridden by command line flags."""
    policy = None
    if getattr(args, 'permissive', False):
        policy = ResolutionPolicy.PERMISSIVE
    elif getattr(args, 'strict', False):
        policy = ResolutionPolicy.STRICT

    return ManagerConfig.from_env().with_overrides(
        base_dir=Path(args.base_dir) if getattr(args, 'base_dir', None) else None,
        stamp_dir=Path(args.stamp_dir) if getattr(args, 'stamp_dir', None) else None,
        policy=policy,
        force_update=True if getattr(args, 'force_update', False) else None,
        verbose=True if getattr(args, 'verbose', False) else None,
        dotgraph=Path(args.dot) if getattr(args, 'dot', None) else None
    )


def handle_resolve(args):
    """Handle the 'resolve' subcommand."""
    setup_logging(args.verbose, args.loglevel)
    config = build_config(args)
    logger.info(f"Manifest: {args.manifest}")
    logger.info(f"Base dir: {config.base_dir} (stamps: {config.effective_stamp_dir}, policy: {config.policy.value})")

    with DependencyManager(config) as manager:
        manager.resolve_manifest(args.manifest, make_available=not args.no_make_available)
        output = GraphExporter.export(manager.store, args.output_format)

    if args.output == '-':
        print(output, end='')
    else:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(output)
        logger.info(f"Output written to: {args.output}")
        print(f"Output written to: {args.output}")
    return 0


def handle_stats(args):
    """Handle the 'stats' subcommand."""
    setup_logging(args.verbose, args.loglevel)
    config = build_config(args)

    with DependencyManager(config) as manager:
        manager.resolve_manifest(args.manifest)
        show_stats(manager)
    return 0


def handle_compare(args):
    """Handle the 'compare' subcommand."""
    result = VersionParser.compare(VersionParser.parse(args.first), VersionParser.parse(args.second))
    print(result.value)
    return 0


def handle_check(args):
    """Handle the 'check' subcommand: exit 0 when the version satisfies the range."""
    version = VersionParser.parse_optional(args.version)
    version_range = VersionParser.parse_range(args.range)
    satisfied = VersionParser.satisfies(version, version_range)
    print(f"{version} {'satisfies' if satisfied else 'does not satisfy'} {version_range}")
    return 0 if satisfied else 1


def handle_render(args):
    """Handle the 'render' subcommand."""
    setup_logging(args.verbose, args.loglevel)
    output = render_graph(args.dotfile, args.output_format, args.output, args.open)
    print(f"Rendered graph written to: {output}")
    return 0


def _add_logging_arguments(parser):
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    parser.add_argument('--loglevel', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Set log level')


def _add_session_arguments(parser):
    parser.add_argument('manifest', help='Top-level manifest (depmanager.json or CMakeLists.txt)')
    parser.add_argument('--base-dir', help='Checkout directory (default: $DEPENDENCYMANAGER_BASE_DIR or ./dependencies)')
    parser.add_argument('--stamp-dir', help='Fingerprint/lock directory (default: <base-dir>/.stamps)')
    policy = parser.add_mutually_exclusive_group()
    policy.add_argument('--permissive', action='store_true',
                        help='Warn on version conflicts instead of failing')
    policy.add_argument('--strict', action='store_true',
                        help='Fail on version conflicts (default)')
    parser.add_argument('--force-update', action='store_true',
                        help='Ignore recorded fingerprints and refetch everything')
    parser.add_argument('--dot', help='Also write the Graphviz graph to this file')
    _add_logging_arguments(parser)


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog='depmanager',
        description='Resolve, deduplicate and fetch a tree of git source dependencies'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Subcommands')

    resolve_parser = subparsers.add_parser('resolve', help='Resolve a manifest and print the dependency graph')
    _add_session_arguments(resolve_parser)
    resolve_parser.add_argument('--format', dest='output_format', default='tree', choices=FORMATS,
                                help='Output format (dot, tree, list, sbom). Default: tree')
    resolve_parser.add_argument('-o', '--output', default='-',
                                help='Output file (default: stdout, use - for stdout)')
    resolve_parser.add_argument('--no-make-available', action='store_true',
                                help="Do not process the dependencies' own manifests")
    resolve_parser.set_defaults(func=handle_resolve)

    stats_parser = subparsers.add_parser('stats', help='Resolve a manifest and show node statistics')
    _add_session_arguments(stats_parser)
    stats_parser.set_defaults(func=handle_stats)

    compare_parser = subparsers.add_parser('compare', help='Compare two versions')
    compare_parser.add_argument('first', help='Version, e.g. 1,2,3')
    compare_parser.add_argument('second', help='Version, e.g. 1,2')
    compare_parser.set_defaults(func=handle_compare)

    check_parser = subparsers.add_parser('check', help='Check a version against a range')
    check_parser.add_argument('version', help='Version, e.g. 1,2,3')
    check_parser.add_argument('range', help='Range, e.g. ">=1,2", "==1,2,3", "~1,2"')
    check_parser.set_defaults(func=handle_check)

    render_parser = subparsers.add_parser('render', help='Render an exported dot graph with Graphviz')
    render_parser.add_argument('dotfile', help='Graph written by --dot or --format dot')
    render_parser.add_argument('--format', dest='output_format', default='svg',
                               choices=['svg', 'png', 'pdf'], help='Image format. Default: svg')
    render_parser.add_argument('-o', '--output', help='Output file (default: next to the dot file)')
    render_parser.add_argument('--open', action='store_true', help='Open the rendered graph in a browser')
    _add_logging_arguments(render_parser)
    render_parser.set_defaults(func=handle_render)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except DependencyManagerError as e:
        logger.debug("Resolution failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
