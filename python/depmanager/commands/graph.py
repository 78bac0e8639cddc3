"""
Graph command for depmanager - render an exported dependency graph.

Usage:
    depmanager resolve depmanager.json --dot deps.dot
    depmanager render deps.dot --format svg --open
"""

import logging
import shutil
import subprocess
import webbrowser
from pathlib import Path
from typing import Optional

from ..exceptions import GraphRenderError

logger = logging.getLogger(__name__)


def render_graph(dot_path, image_format: str = 'svg', output_path=None,
                 open_browser: bool = False, dot_executable: Optional[str] = None) -> str:
    """
    Render a Graphviz dot file written by the dot exporter.

    Args:
        dot_path: Path to the .dot file
        image_format: Graphviz output format (svg, png, pdf)
        output_path: Optional output path (default: dot_path with the format's suffix)
        open_browser: Whether to open the rendered file in a browser
        dot_executable: Graphviz 'dot' binary (default: looked up on PATH)

    Returns:
        Path to the rendered file
    """
    dot_path = Path(dot_path)
    if not dot_path.exists():
        raise FileNotFoundError(f"Graph file not found: {dot_path}")

    dot = dot_executable or shutil.which('dot')
    if not dot:
        raise GraphRenderError("Graphviz 'dot' executable not found on PATH")

    output = Path(output_path) if output_path else dot_path.with_suffix(f'.{image_format}')
    cmd = [dot, f'-T{image_format}', str(dot_path), '-o', str(output)]
    logger.info(f"Running {' '.join(cmd)}")

    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise GraphRenderError(f"dot failed with exit code {result.returncode}: {result.stderr.strip()}")

    if open_browser:
        webbrowser.open(f'file://{output.absolute()}')
        logger.info("Opened in browser")

    return str(output)
