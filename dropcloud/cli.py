"""Operator CLI: validate configuration and inspect a pool's account.

    dropcloud validate
    dropcloud droplets do1
    dropcloud test-connection do1
    dropcloud sizes do1
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from dropcloud.client import DigitalOceanGateway, image_identifier, size_label
from dropcloud.config import resolve_cloud, resolve_clouds
from dropcloud.constants import NetworkType
from dropcloud.exceptions import DropcloudError
from dropcloud.logging import LogConfig, setup_logging, teardown_logging
from dropcloud.naming import parse_droplet_name
from dropcloud.types import CloudConfig

console = Console()


def _validate(args: argparse.Namespace) -> int:
    clouds = resolve_clouds(project_dir=args.project_dir, global_path=args.global_config)
    if not clouds:
        console.print("[yellow]No clouds configured[/yellow]")
        return 1

    table = Table(title="Clouds")
    table.add_column("Cloud", style="cyan")
    table.add_column("Cap")
    table.add_column("Template")
    table.add_column("Image")
    table.add_column("Size")
    table.add_column("Region")
    table.add_column("Labels")
    for cloud in clouds.values():
        cap = cloud.effective_instance_cap
        for template in cloud.templates:
            table.add_row(
                cloud.name,
                "unlimited" if cap is None else str(cap),
                template.name,
                template.image,
                template.size,
                template.region,
                template.labels,
            )
    console.print(table)
    return 0


def _droplets(cloud: CloudConfig, gateway: DigitalOceanGateway) -> int:
    table = Table(title=f"Droplets of {cloud.name}")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Template")
    table.add_column("Status")
    table.add_column("IP")
    for droplet in gateway.list_droplets():
        parsed = parse_droplet_name(droplet.name)
        if parsed is None or parsed[0] != cloud.name:
            continue
        table.add_row(
            str(droplet.id),
            droplet.name,
            parsed[1],
            droplet.status,
            droplet.ip_address(cloud.network_type) or droplet.ip_address(NetworkType.PUBLIC) or "-",
        )
    console.print(table)
    return 0


def _test_connection(cloud: CloudConfig, gateway: DigitalOceanGateway) -> int:
    account = gateway.test_connection()
    console.print(
        f"[green]Connected[/green] to DigitalOcean as {account.get('email', '?')} "
        f"(droplet limit {account.get('droplet_limit', '?')})"
    )
    return 0


def _sizes(cloud: CloudConfig, gateway: DigitalOceanGateway) -> int:
    table = Table(title="Sizes")
    table.add_column("Slug", style="cyan")
    table.add_column("Description")
    for size in gateway.list_sizes():
        table.add_row(size.get("slug", ""), size_label(size))
    console.print(table)
    return 0


def _regions(cloud: CloudConfig, gateway: DigitalOceanGateway) -> int:
    table = Table(title="Regions")
    table.add_column("Slug", style="cyan")
    table.add_column("Name")
    for region in gateway.list_regions():
        table.add_row(region.get("slug", ""), region.get("name", ""))
    console.print(table)
    return 0


def _images(cloud: CloudConfig, gateway: DigitalOceanGateway) -> int:
    table = Table(title="Images")
    table.add_column("Image")
    table.add_column("Identifier", style="cyan")
    for label, image in gateway.list_images().items():
        table.add_row(label, image_identifier(image))
    console.print(table)
    return 0


_CLOUD_COMMANDS = {
    "droplets": (_droplets, "List droplets belonging to a cloud"),
    "test-connection": (_test_connection, "Check the cloud's API token"),
    "sizes": (_sizes, "List droplet sizes"),
    "regions": (_regions, "List available regions"),
    "images": (_images, "List images"),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dropcloud", description="DigitalOcean worker pools")
    parser.add_argument("--project-dir", type=Path, default=None, help="Directory containing dropcloud.toml")
    parser.add_argument("--global-config", type=Path, default=None, help="Path to the global defaults.toml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("validate", help="Load and validate the configuration")
    for command, (_, help_text) in _CLOUD_COMMANDS.items():
        p = sub.add_parser(command, help=help_text)
        p.add_argument("cloud", help="Cloud name from the configuration")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    handlers = setup_logging(LogConfig(level="DEBUG")) if args.verbose else []
    try:
        if args.command == "validate":
            return _validate(args)
        cloud = resolve_cloud(args.cloud, project_dir=args.project_dir, global_path=args.global_config)
        handler, _ = _CLOUD_COMMANDS[args.command]
        return handler(cloud, DigitalOceanGateway(cloud.token))
    except (DropcloudError, KeyError) as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1
    finally:
        teardown_logging(handlers)


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
