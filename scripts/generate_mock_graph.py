#!/usr/bin/env python3
"""Generate a synthetic pricing graph in the `GET /graph` wire format.

Graphs are layered DAGs: market inputs feed several intermediate layers
which feed a handful of outputs. Sizes are chosen to exercise the
raster backend (>500 nodes) and LOD clustering (>10k nodes).
"""

import argparse
import json
import random
from datetime import datetime, timezone
from pathlib import Path

OUTPUT_DIR = Path(__file__).parent.parent / "tests" / "fixtures"

INTERMEDIATE_TYPES = ["add", "sub", "mul", "div", "exp", "log", "sqrt", "max", "min"]
INPUT_LABELS = ["Spot", "Vol", "Rate", "Dividend", "Strike", "Expiry", "Fx", "Basis"]


def generate_graph(
    node_count: int,
    layers: int = 6,
    fan_in: int = 2,
    sensitivity_share: float = 0.1,
    seed: int = 42,
    subject_id: str | None = None,
) -> dict:
    """Build a layered DAG with roughly node_count nodes."""
    rng = random.Random(seed)

    n_inputs = max(2, node_count // 10)
    n_outputs = max(1, node_count // 50)
    n_intermediate = max(0, node_count - n_inputs - n_outputs)
    per_layer = max(1, n_intermediate // max(layers, 1))

    nodes: list[dict] = []
    links: list[dict] = []
    tiers: list[list[str]] = []

    inputs = []
    for i in range(n_inputs):
        node_id = f"in_{i}"
        nodes.append({
            "id": node_id,
            "label": f"{INPUT_LABELS[i % len(INPUT_LABELS)]} {i}",
            "type": "input",
            "group": "input",
            "value": round(rng.uniform(0.01, 150.0), 4),
            "is_sensitivity_target": rng.random() < sensitivity_share,
        })
        inputs.append(node_id)
    tiers.append(inputs)

    remaining = n_intermediate
    layer = 0
    while remaining > 0:
        size = min(per_layer, remaining)
        tier = []
        for i in range(size):
            node_id = f"op_{layer}_{i}"
            op = rng.choice(INTERMEDIATE_TYPES)
            nodes.append({
                "id": node_id,
                "label": f"{op}({layer}.{i})",
                "type": op,
                "group": "intermediate",
                "value": round(rng.gauss(0.0, 10.0), 4),
            })
            tier.append(node_id)
        tiers.append(tier)
        remaining -= size
        layer += 1

    outputs = []
    for i in range(n_outputs):
        node_id = f"out_{i}"
        nodes.append({
            "id": node_id,
            "label": f"PV {i}",
            "type": "output",
            "group": "output",
            "value": round(rng.uniform(-1000.0, 1000.0), 2),
        })
        outputs.append(node_id)
    tiers.append(outputs)

    # Each node draws its operands from any earlier tier, so the result is acyclic
    for t in range(1, len(tiers)):
        upstream = [node_id for tier in tiers[:t] for node_id in tier]
        for node_id in tiers[t]:
            operands = rng.sample(upstream, min(fan_in, len(upstream)))
            for source in operands:
                links.append({"source": source, "target": node_id})

    return {
        "nodes": nodes,
        "links": links,
        "metadata": {
            "node_count": len(nodes),
            "edge_count": len(links),
            "depth": len(tiers) - 1,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "trade_id": subject_id,
        },
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a mock pricing graph")
    parser.add_argument("--nodes", type=int, default=600, help="Approximate node count")
    parser.add_argument("--layers", type=int, default=6, help="Intermediate layers")
    parser.add_argument("--fan-in", type=int, default=2, help="Operands per node")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--subject", help="Trade id recorded in metadata")
    parser.add_argument(
        "--output",
        type=Path,
        help=f"Output file (default: {OUTPUT_DIR}/mock_graph_<nodes>.json)",
    )
    args = parser.parse_args()

    graph = generate_graph(
        args.nodes,
        layers=args.layers,
        fan_in=args.fan_in,
        seed=args.seed,
        subject_id=args.subject,
    )

    output = args.output or OUTPUT_DIR / f"mock_graph_{args.nodes}.json"
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(graph, indent=2), encoding="utf-8")

    meta = graph["metadata"]
    print(f"Wrote {meta['node_count']} nodes, {meta['edge_count']} edges to {output}")


if __name__ == "__main__":
    main()
