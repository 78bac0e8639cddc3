"""Graph exporters for a resolved NodeStore."""

import json
import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional, TextIO

from packageurl import PackageURL
from cyclonedx.model import ExternalReference, ExternalReferenceType, Property, XsUri
from cyclonedx.model.bom import Bom
from cyclonedx.model.component import Component, ComponentType
from cyclonedx.output.json import JsonV1Dot6

from .models import DependencyNode, NodeStatus
from .node_store import NodeStore

logger = logging.getLogger(__name__)

FORMATS = ('dot', 'tree', 'list', 'sbom')

# Edge styles from a duplicate to the node it was resolved against
DUPLICATE_EDGE_STYLES = {
    NodeStatus.DUPLICATE_ACCEPTED: 'style=dashed, color=grey50, fontcolor=grey50',
    NodeStatus.DUPLICATE_REJECTED: 'style=dashed, color=red, fontcolor=red',
}

# Namespace for deterministic SBOM serial numbers
SERIAL_NAMESPACE = uuid.UUID('6f1c1f3e-4f5b-5d43-9a1e-2d0c6b7d8e21')


def _dot_escape(text: str) -> str:
    return text.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')


class GraphExporter:
    """
    Renders a NodeStore as text.

    Every format walks nodes in id order, so the same store always renders
    to the same bytes.
    """

    @classmethod
    def export(cls, store: NodeStore, fmt: str = 'dot', **options) -> str:
        """Render the store in one of FORMATS."""
        if fmt == 'dot':
            return cls.format_as_dot(store)
        if fmt == 'tree':
            return cls.format_as_tree(store)
        if fmt == 'list':
            return cls.format_as_list(store)
        if fmt == 'sbom':
            return cls.format_as_sbom(store, **options)
        raise ValueError(f"Unknown graph format '{fmt}', expected one of {', '.join(FORMATS)}")

    @classmethod
    def write(cls, store: NodeStore, sink: TextIO, fmt: str = 'dot', **options) -> None:
        """Render the store and write it to a text sink."""
        sink.write(cls.export(store, fmt, **options))

    @staticmethod
    def node_label(node: DependencyNode) -> str:
        """Multi-line label: name, reference and version when present."""
        parts = [node.name]
        if node.reference:
            parts.append(node.reference)
        if node.resolved_version is not None:
            parts.append(f"v{node.resolved_version}")
        return "\n".join(parts)

    @classmethod
    def format_as_dot(cls, store: NodeStore) -> str:
        """Format as a Graphviz digraph.

        Declaration edges are solid; each duplicate gets a dashed edge to the
        node it was resolved against, grey when accepted and red when rejected.
        """
        lines = [
            "digraph dependencies {",
            "    rankdir=TB;",
            '    node [shape=box, fontname="Helvetica"];',
        ]

        nodes = list(store.nodes())
        for node in nodes:
            attributes = [f'label="{_dot_escape(cls.node_label(node))}"']
            if node.is_root:
                attributes.append("style=bold")
            elif node.status is NodeStatus.DUPLICATE_ACCEPTED:
                attributes.append("color=grey50, fontcolor=grey50")
            elif node.status is NodeStatus.DUPLICATE_REJECTED:
                attributes.append("color=red, fontcolor=red")
            elif node.status is NodeStatus.PENDING:
                attributes.append("style=dotted")
            lines.append(f"    n{node.id} [{', '.join(attributes)}];")

        for node in nodes:
            for child_id in node.child_ids:
                lines.append(f"    n{node.id} -> n{child_id};")

        for node in nodes:
            if node.duplicate_of is None:
                continue
            style = DUPLICATE_EDGE_STYLES.get(node.status, 'style=dotted')
            lines.append(
                f'    n{node.id} -> n{node.duplicate_of} [{style}, label="{node.status.value}", constraint=false];'
            )

        lines.append("}")
        return "\n".join(lines) + "\n"

    @classmethod
    def format_as_tree(cls, store: NodeStore) -> str:
        """Format as a tree visualization in declaration order."""
        if store.root_id is None:
            return "\n"

        lines: List[str] = []
        cls._tree_lines(store, store.root_id, "", True, 0, lines)
        return "\n".join(lines) + "\n"

    @classmethod
    def _tree_lines(cls, store: NodeStore, node_id: int, prefix: str, is_last: bool,
                    depth: int, lines: List[str]) -> None:
        node = store.get(node_id)

        if depth == 0:
            text = node.name
            if node.resolved_version is not None:
                text += f" {node.resolved_version}"
            lines.append(text)
        else:
            connector = "└── " if is_last else "├── "
            lines.append(f"{prefix}{connector}{cls._tree_text(node)}")

        for i, child_id in enumerate(node.child_ids):
            is_last_child = (i == len(node.child_ids) - 1)
            if depth == 0:
                child_prefix = ""
            else:
                child_prefix = prefix + ("    " if is_last else "│   ")
            cls._tree_lines(store, child_id, child_prefix, is_last_child, depth + 1, lines)

    @staticmethod
    def _tree_text(node: DependencyNode) -> str:
        text = f"{node.name}@{node.reference}" if node.reference else node.name
        if not node.requested_range.is_any:
            text += f" {node.requested_range}"
        if node.resolved_version is not None:
            text += f" = {node.resolved_version}"
        text += f" [{node.status.value}"
        if node.duplicate_of is not None:
            text += f" -> #{node.duplicate_of}"
        text += "]"
        if node.failure:
            text += " FAILED"
        return text

    @staticmethod
    def format_as_list(store: NodeStore) -> str:
        """Format nodes as a flat list (one per line, id order)."""
        lines = []
        for node in store.nodes():
            version = str(node.resolved_version) if node.resolved_version is not None else "-"
            parent = f"#{node.parent_id}" if node.parent_id is not None else "-"
            duplicate = f"#{node.duplicate_of}" if node.duplicate_of is not None else "-"
            lines.append(
                f"#{node.id}\t{node.name}\t{node.reference or '-'}\t{version}\t"
                f"{node.status.value}\tparent={parent}\tduplicate-of={duplicate}"
            )
        return '\n'.join(lines) + '\n'

    @classmethod
    def format_as_sbom(cls, store: NodeStore, timestamp: Optional[datetime] = None) -> str:
        """
        Generate a CycloneDX SBOM in JSON format.

        Only nodes that own their sources (populated primaries) become
        components; a duplicate contributes its primary as the dependency of
        its parent. The serial number is derived from the store contents and
        the timestamp is only included when given, so output is reproducible.
        """
        from . import __version__

        bom = Bom()

        tool_component = Component(
            name="depmanager",
            version=__version__,
            type=ComponentType.APPLICATION,
            bom_ref=f"pkg:pypi/depmanager@{__version__}",
            purl=PackageURL(type="pypi", name="depmanager", version=__version__)
        )
        bom.metadata.tools.components.add(tool_component)

        nodes = list(store.nodes())
        refs: Dict[int, str] = {}
        for node in nodes:
            if node.is_root or node.status is not NodeStatus.POPULATED:
                continue
            refs[node.id] = cls._build_purl(node)
            bom.components.add(cls._node_to_component(node, refs[node.id]))

        root = store.get(store.root_id) if store.root_id is not None else None
        if root is not None:
            refs[root.id] = f"project:{root.name}"
            bom.metadata.component = Component(
                name=root.name,
                version=str(root.resolved_version) if root.resolved_version is not None else None,
                type=ComponentType.APPLICATION,
                bom_ref=refs[root.id]
            )

        bom.serial_number = uuid.uuid5(SERIAL_NAMESPACE, GraphExporter.format_as_list(store))

        sbom = json.loads(JsonV1Dot6(bom).output_as_string())

        # Dependencies are assembled by hand: duplicates redirect to their primary
        dependencies = []
        for node in nodes:
            if node.id not in refs:
                continue
            depends_on = set()
            for child_id in node.child_ids:
                child = store.get(child_id)
                effective = child.duplicate_of if child.duplicate_of is not None else child.id
                if effective in refs:
                    depends_on.add(refs[effective])
            dependencies.append({"ref": refs[node.id], "dependsOn": sorted(depends_on)})
        dependencies.sort(key=lambda d: d["ref"])
        sbom["dependencies"] = dependencies

        sbom["components"] = sorted(sbom.get("components", []), key=lambda c: c.get("bom-ref", ""))

        metadata = sbom.setdefault("metadata", {})
        if timestamp is not None:
            metadata["timestamp"] = timestamp.strftime("%Y-%m-%dT%H:%M:%SZ")
        else:
            metadata.pop("timestamp", None)

        return json.dumps(sbom, indent=2, sort_keys=True) + "\n"

    @staticmethod
    def _node_to_component(node: DependencyNode, bom_ref: str) -> Component:
        """Convert a populated node to a CycloneDX Component."""
        properties = [
            Property(name="depmanager:node-id", value=str(node.id)),
            Property(name="depmanager:reference", value=node.reference or ""),
        ]
        if not node.requested_range.is_any:
            properties.append(Property(name="depmanager:requested-range", value=str(node.requested_range)))

        external_references = []
        if node.repository.startswith(("http://", "https://", "git://", "ssh://")):
            external_references.append(ExternalReference(
                type=ExternalReferenceType.VCS,
                url=XsUri(node.repository)
            ))

        return Component(
            name=node.name,
            version=str(node.resolved_version) if node.resolved_version is not None else node.reference or None,
            type=ComponentType.LIBRARY,
            purl=PackageURL.from_string(bom_ref),
            bom_ref=bom_ref,
            properties=properties,
            external_references=external_references
        )

    @staticmethod
    def _build_purl(node: DependencyNode) -> str:
        """Build a generic Package URL carrying the fetched repository and reference."""
        qualifiers = {}
        if node.repository:
            vcs_url = f"git+{node.repository}"
            if node.reference:
                vcs_url += f"@{node.reference}"
            qualifiers["vcs_url"] = vcs_url
        version = str(node.resolved_version) if node.resolved_version is not None else (node.reference or None)
        return PackageURL(type="generic", name=node.name, version=version, qualifiers=qualifiers).to_string()
