"""
NERON MAIN - Entry Point and CLI

Commands:
    serve     - Start the API server
    transform - Transform a raw {entities, relations} file into an enhanced graph
    export    - Export the bootstrap graph (or a given graph file) as JSON

Usage:
    # Start API (development, auto-reload)
    python main.py serve

    # Start API without reload
    python main.py serve --prod

    # Enhance a raw graph dump from the memory server
    python main.py transform memory.json --output enhanced.json

    # Export the bootstrap graph
    python main.py export --output ./export

The interaction state lives in the server process, so the server always
runs a single worker.
"""
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

# Add neron to path for imports
sys.path.insert(0, str(Path(__file__).parent))

console = Console()


def run_server(host: str, port: int, reload: bool = True):
    """Run the API server with Granian."""
    from granian import Granian
    from granian.constants import Interfaces

    console.print(f"Starting Neron API server on [bold]{host}:{port}[/bold]")
    console.print("Press Ctrl+C to stop")

    granian = Granian(
        target="api.routes:app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        workers=1,
        reload=reload,
    )

    granian.serve()


def cmd_serve(args):
    """Handle serve command."""
    from infrastructure.config import get_config

    config = get_config()
    run_server(
        args.host or config.api.host,
        args.port or config.api.port,
        reload=not args.prod,
    )


def _read_payload(path: Path):
    from core.errors import PayloadError
    from core.schemas import decode_payload

    try:
        return decode_payload(path.read_bytes())
    except (OSError, PayloadError) as e:
        console.print(f"[red]Cannot read {path}: {e}[/red]")
        sys.exit(1)


def _print_summary(graph, warnings) -> None:
    table = Table(title="Graph summary")
    table.add_column("Layer")
    table.add_column("z", justify="right")
    table.add_column("Nodes", justify="right")
    for layer in graph.layers:
        table.add_row(layer.name, f"{layer.z_position:g}", str(layer.node_count))
    console.print(table)
    console.print(f"{len(graph.nodes)} nodes, {len(graph.links)} links, {len(graph.tag_index)} tags")
    for warning in warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


def cmd_transform(args):
    """Handle transform command - raw file in, enhanced JSON out."""
    from core.transformer import prepare_graph
    from infrastructure.config import get_config
    from viz.core import write_export

    source = Path(args.input)
    graph, report = prepare_graph(_read_payload(source))
    _print_summary(graph, report.warnings)

    output = Path(args.output) if args.output else source.with_name(source.stem + ".enhanced.json")
    write_export(graph, output.parent, output.name, indent=get_config().export.indent)
    console.print(f"Wrote [bold]{output}[/bold]")


def cmd_export(args):
    """Handle export command - bootstrap or given graph to neron-graph-export.json."""
    from core.bootstrap import BOOTSTRAP_GRAPH
    from core.transformer import prepare_graph
    from infrastructure.config import get_config
    from viz.core import write_export

    config = get_config()
    payload = _read_payload(Path(args.graph)) if args.graph else BOOTSTRAP_GRAPH
    graph, report = prepare_graph(payload)
    _print_summary(graph, report.warnings)

    path = write_export(graph, args.output, config.export.filename, indent=config.export.indent)
    console.print(f"Exported to [bold]{path}[/bold]")


def main(argv: Optional[list] = None):
    """Main entry point with subcommands."""
    import argparse

    from infrastructure.config import get_config, load_config, set_config
    from infrastructure.logger import configure_logging

    parser = argparse.ArgumentParser(
        description="Neron - Knowledge graph sync and interaction engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", help="Path to a neron.toml file")
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start API server")
    serve_parser.add_argument("--host", help="Host to bind to (default from config)")
    serve_parser.add_argument("--port", type=int, help="Port to bind to (default from config)")
    serve_parser.add_argument("--prod", action="store_true", help="Disable auto-reload")
    serve_parser.set_defaults(func=cmd_serve)

    # transform command
    transform_parser = subparsers.add_parser("transform", help="Enhance a raw graph file")
    transform_parser.add_argument("input", help="Path to a {entities, relations} JSON file")
    transform_parser.add_argument("--output", "-o", help="Output file (default: <input>.enhanced.json)")
    transform_parser.set_defaults(func=cmd_transform)

    # export command
    export_parser = subparsers.add_parser("export", help="Export a graph as JSON")
    export_parser.add_argument("--graph", help="Graph file to export (default: bootstrap graph)")
    export_parser.add_argument("--output", "-o", default=".", help="Output directory")
    export_parser.set_defaults(func=cmd_export)

    args = parser.parse_args(argv)

    if args.config:
        set_config(load_config(args.config))
    configure_logging(args.log_level or get_config().logging.level)

    if args.command is None:
        # Default to serve
        args.host = None
        args.port = None
        args.prod = False
        args.func = cmd_serve

    args.func(args)


if __name__ == "__main__":
    main()
