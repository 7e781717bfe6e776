"""Dependency graph visualization as a standalone HTML page."""

import json
from pathlib import Path
from typing import Any

from .state import ModRegistry

GRAPH_FILENAME = "graph.html"

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Mod Dependency Graph</title>
    <style>
        body {
            background-color: #152333;
            margin: 0;
        }

        #cy {
            width: 100vw;
            height: 100vh;
            display: block;
        }
    </style>
    <script src="https://unpkg.com/cytoscape/dist/cytoscape.min.js"></script>
</head>
<body>
    <div id="cy"></div>
    <script>
        const cy = cytoscape({
            container: document.getElementById('cy'),
            elements: __ELEMENTS__,
            style: [
                {
                    selector: 'node',
                    style: {
                        'label': 'data(label)',
                        'background-color': '#0074D9',
                        'color': '#fff',
                        'text-valign': 'center',
                        'text-halign': 'center',
                        'font-size': 11,
                        'width': 'mapData(degree, 1, 10, 30, 80)',
                        'height': 'mapData(degree, 1, 10, 30, 80)'
                    }
                },
                {
                    selector: 'node[?disabled]',
                    style: {
                        'background-color': '#555'
                    }
                },
                {
                    selector: 'edge[label="wants"]',
                    style: {
                        'width': 2,
                        'color': '#bbb',
                        'line-color': '#00c853',
                        'target-arrow-color': '#00c853',
                        'target-arrow-shape': 'triangle',
                        'curve-style': 'bezier',
                        'label': 'data(label)',
                        'font-size': 6,
                        'text-rotation': 'autorotate',
                        'text-margin-y': -8
                    }
                }
            ],
            layout: {
                name: 'cose',
                animate: true
            },
            wheelSensitivity: 0.6
        });
    </script>
</body>
</html>
"""


def build_elements(registry: ModRegistry) -> list[dict[str, Any]]:
    """Cytoscape nodes (one per record) followed by deduplicated wants edges."""
    nodes = []
    edges = []
    seen_edges: set[tuple[str, str]] = set()

    for mod_id in registry.ordered_ids():
        record = registry.mods[mod_id]
        nodes.append(
            {
                "data": {
                    "id": mod_id,
                    "label": mod_id,
                    "degree": len(record.wanted_by),
                    "disabled": not record.enabled,
                }
            }
        )
        # wanted_by is derived from wants, so one direction is enough
        for dep_id in record.wants:
            if dep_id not in registry or (mod_id, dep_id) in seen_edges:
                continue
            seen_edges.add((mod_id, dep_id))
            edges.append({"data": {"source": mod_id, "target": dep_id, "label": "wants"}})

    return nodes + edges


def write_graph(registry: ModRegistry, output: Path) -> Path:
    """Render the registry's dependency graph into an HTML file."""
    # Escape "</" so a mod id can't close the script tag
    elements = json.dumps(build_elements(registry)).replace("</", "<\\/")
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(HTML_TEMPLATE.replace("__ELEMENTS__", elements), encoding="utf-8")
    return output
