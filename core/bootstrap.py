"""
Bootstrap graph shown before the first reload.

Kept raw so it goes through the same transformer as anything the tool
channel pushes.
"""
from typing import Any, Dict

BOOTSTRAP_GRAPH: Dict[str, Any] = {
    "entities": [
        {
            "name": "NERON-CORE",
            "type": "SYSTEM",
            "observations": [
                "Core #system of the neural graph client",
                "Routes tool-call updates into the interaction engine",
            ],
        },
        {
            "name": "DATA-FLOW",
            "type": "PROCESS",
            "observations": [
                "Transforms raw entities and relations into an enhanced graph",
                "Caches snapshots by content",
            ],
        },
        {
            "name": "NEURAL-INTERFACE",
            "type": "INTERFACE",
            "observations": [
                "Renders the graph in 3D with hover and selection cards",
            ],
        },
        {
            "name": "MEMORY-BANK",
            "type": "STORAGE",
            "observations": [
                "Holds the knowledge graph behind the tool channel",
            ],
        },
    ],
    "relations": [
        {"source": "NERON-CORE", "target": "DATA-FLOW", "relationType": "controls"},
        {"source": "NERON-CORE", "target": "NEURAL-INTERFACE", "relationType": "drives"},
        {"source": "DATA-FLOW", "target": "MEMORY-BANK", "relationType": "reads"},
        {"source": "NEURAL-INTERFACE", "target": "MEMORY-BANK", "relationType": "displays"},
    ],
}
