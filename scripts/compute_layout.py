#!/usr/bin/env python3
"""Compute a force-directed layout for a pricing graph and report on it.

This script:
1. Loads a snapshot from the graph service or from a JSON file
2. Runs the force simulation until it cools (or the tick limit is hit)
3. Reports render backend, convergence, critical path and LOD clustering
4. Optionally writes the snapshot back out with x/y positions filled in

Useful for tuning layout and clustering settings against real trades
without starting the API.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from tqdm import tqdm

# Load .env file from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")

from calcgraph.analysis import critical_path, sensitivity_paths  # noqa: E402
from calcgraph.config import settings  # noqa: E402
from calcgraph.errors import FetchError  # noqa: E402
from calcgraph.layout import ForceLayout  # noqa: E402
from calcgraph.lod import build_clusters  # noqa: E402
from calcgraph.models import GraphSnapshot  # noqa: E402
from calcgraph.render import collision_radius_for, select_render_mode  # noqa: E402
from calcgraph.sync import GraphManager  # noqa: E402

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def load_snapshot(args: argparse.Namespace) -> GraphSnapshot:
    if args.input:
        print(f"Reading graph from {args.input}...")
        payload = json.loads(args.input.read_text(encoding="utf-8"))
        return GraphSnapshot.from_dict(payload, subject_id=args.subject)

    print(f"Fetching graph from {settings.graph_api_base_url}...")
    manager = GraphManager()
    try:
        return await manager.fetch(args.subject)
    finally:
        await manager.close()


def run_layout(layout: ForceLayout, max_ticks: int, chunk: int = 10) -> int:
    """Tick in chunks so progress is visible on large graphs."""
    with tqdm(total=max_ticks, desc="Layout", unit="tick") as bar:
        while layout.iterations < max_ticks and not layout.converged:
            step = min(chunk, max_ticks - layout.iterations)
            layout.tick(step)
            bar.update(step)
            bar.set_postfix(alpha=f"{layout.alpha:.4f}")
    layout.sync_positions()
    return layout.iterations


def report_clusters(snapshot: GraphSnapshot) -> None:
    clusters = build_clusters(
        snapshot.nodes, settings.lod_min_cluster_size, settings.lod_cluster_radius
    )
    sizes = sorted((c.member_count for c in clusters), reverse=True)
    will_cluster = snapshot.node_count > settings.lod_node_threshold
    print(
        f"\nLOD: {len(clusters)} clusters "
        f"(threshold {settings.lod_node_threshold}, "
        f"{'enabled' if will_cluster else 'not enabled'} for this graph)"
    )
    if sizes:
        print(f"  Largest: {sizes[:5]}  Smallest: {sizes[-1]}")
    by_group: dict[str, int] = {}
    for cluster in clusters:
        by_group[cluster.group] = by_group.get(cluster.group, 0) + 1
    for group, count in sorted(by_group.items()):
        print(f"  {group}: {count}")


async def main(args: argparse.Namespace) -> int:
    try:
        snapshot = await load_snapshot(args)
    except FetchError as e:
        print(f"Error: {e}")
        return 1

    print(f"Graph: {snapshot.node_count} nodes, {len(snapshot.edges)} edges")

    mode = select_render_mode(snapshot.node_count)
    layout = ForceLayout(
        collision_radius=collision_radius_for(mode),
        seed=args.seed,
    )
    layout.set_graph(snapshot.nodes, snapshot.edges)
    print(f"Backend: {mode.value} (collision radius {layout.collision_radius:g})")

    ticks = run_layout(layout, args.max_ticks)
    status = "converged" if layout.converged else "stopped at tick limit"
    print(f"Layout {status} after {ticks} ticks (alpha={layout.alpha:.5f})")

    positions = list(layout.positions().values())
    if positions:
        xs = [p[0] for p in positions]
        ys = [p[1] for p in positions]
        print(f"Bounding box: x=[{min(xs):.1f}, {max(xs):.1f}], y=[{min(ys):.1f}, {max(ys):.1f}]")

    result = critical_path(snapshot)
    if result.ok:
        print(f"\nCritical path ({result.length} edges): {' -> '.join(result.path)}")
    else:
        print(f"\nCritical path unavailable: {result.error}")
    paths = sensitivity_paths(snapshot)
    print(f"Sensitivity paths: {len(paths)}")

    report_clusters(snapshot)

    if args.output:
        args.output.write_text(json.dumps(snapshot.to_dict(), indent=2), encoding="utf-8")
        print(f"\nWrote positioned graph to {args.output}")

    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Compute and inspect a pricing graph layout",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python scripts/compute_layout.py --subject T1
    python scripts/compute_layout.py --input graph.json --output positioned.json
    python scripts/compute_layout.py --input big.json --max-ticks 1000
        """,
    )
    parser.add_argument("--subject", help="Trade/portfolio id to fetch (default: full graph)")
    parser.add_argument("--input", type=Path, help="Read the graph from a JSON file instead")
    parser.add_argument("--output", type=Path, help="Write the graph with positions to this file")
    parser.add_argument(
        "--max-ticks",
        type=int,
        default=settings.layout_max_iterations,
        help=f"Tick limit (default: {settings.layout_max_iterations})",
    )
    parser.add_argument("--seed", type=int, default=settings.layout_seed)

    sys.exit(asyncio.run(main(parser.parse_args())))
