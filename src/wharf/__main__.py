"""Entry point for `python -m wharf` / `wharf`.

Subcommands:
    wharf status        Runtime availability, version and local images
    wharf build         Build the sandbox image from a Dockerfile
    wharf pull          Pull the sandbox image from its registry and tag it
    wharf ls            List persisted sessions with their live state
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from wharf.config import get_settings
from wharf.container_manager import ContainerManager
from wharf.container_manager._persistence import read_snapshot
from wharf.errors import InvalidIdentifierError, WharfError
from wharf.logger import set_level


async def _status() -> int:
    manager = ContainerManager()
    if not await manager.check_runtime():
        print("Container runtime: unavailable", file=sys.stderr)
        return 1
    print(f"Container runtime: {await manager.runtime_version() or 'unknown version'}")
    for image in await manager.list_images():
        print(f"  {image}")
    return 0


async def _build(dockerfile: str, tag: str) -> int:
    if not Path(dockerfile).is_file():
        print(f"Error: No Dockerfile at {dockerfile}", file=sys.stderr)
        return 1
    print(f"Building {tag}...")
    try:
        print(await ContainerManager().build_image(dockerfile, tag))
    except WharfError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


async def _pull(tag: str) -> int:
    remote = ContainerManager.registry_image_for(tag)
    if remote is None:
        print(f"Error: no registry image known for {tag}", file=sys.stderr)
        return 1
    ok = await ContainerManager().pull_image(remote, tag, on_progress=print)
    return 0 if ok else 1


async def _ls(state_path: Path) -> int:
    try:
        entries = read_snapshot(state_path)
    except WharfError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    manager = ContainerManager()
    for session_id, info in entries:
        try:
            live = await manager.is_container_alive(info.container_id)
        except InvalidIdentifierError:
            live = "invalid"
        ports = ", ".join(f"{m.container_port}->{m.host_port}" for m in info.port_mappings)
        print(f"{session_id}\t{info.name}\t{info.image}\t{live}\t{ports}")
    return 0


def main() -> None:
    s = get_settings()
    set_level(s.logging.level)
    parser = argparse.ArgumentParser(
        prog="wharf",
        description="Sandbox containers for coding agents",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show container runtime status and local images")

    build = sub.add_parser("build", help="Build the sandbox image")
    build.add_argument("--dockerfile", default="Dockerfile", help="Path to the Dockerfile")
    build.add_argument("--tag", default=s.images.default_tag, help="Image tag")

    pull = sub.add_parser("pull", help="Pull the sandbox image from its registry")
    pull.add_argument("--tag", default=s.images.default_tag, help="Local image tag")

    ls = sub.add_parser("ls", help="List persisted sessions")
    ls.add_argument("--state", type=Path, default=s.state_path, help="Snapshot path")

    args = parser.parse_args()

    match args.command:
        case "status":
            code = asyncio.run(_status())
        case "build":
            code = asyncio.run(_build(args.dockerfile, args.tag))
        case "pull":
            code = asyncio.run(_pull(args.tag))
        case "ls":
            code = asyncio.run(_ls(args.state))
        case _:
            parser.error(f"unknown command {args.command}")
    sys.exit(code)


if __name__ == "__main__":
    main()
