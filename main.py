#!/usr/bin/env python3
"""
Wan Video Generator - Main Entry Point

Runs the HTTP API or drives generations directly from the command line.

Usage:
    # Start the API server
    python main.py server

    # Generate a video and watch it to completion
    python main.py generate --prompt "a cat walking on the beach" --preset quick

    # Resume watching whatever was in flight
    python main.py watch
"""

import argparse
import asyncio
import base64
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Any, Optional

import aiofiles

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("wan-generator")


def start_server(host: str = "0.0.0.0", port: int = 3000, reload: bool = False):
    """Start the HTTP API."""
    import uvicorn

    logger.info(f"Wan video generator API running at http://{host}:{port}")
    uvicorn.run("services.api.server:app", host=host, port=port, reload=reload)


async def read_image(path: str) -> str:
    """Read an image file as a data URL."""
    mime_type = mimetypes.guess_type(path)[0] or "image/png"
    async with aiofiles.open(path, "rb") as f:
        data = await f.read()
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


async def build_payload(args: argparse.Namespace) -> dict[str, Any]:
    """Merge preset values with explicit flags (flags win)."""
    from cli import PresetLibrary
    from services.video_generation.presets import apply_preset

    overrides = {
        "prompt": args.prompt,
        "resolution": args.resolution,
        "num_inference_steps": args.steps,
        "guidance_scale": args.guidance,
        "guidance_scale_2": args.guidance_2,
        "num_frames": args.frames,
        "fps": args.fps,
        "seed": args.seed,
    }
    if args.image:
        overrides["image"] = await read_image(args.image)

    presets = await PresetLibrary().all()
    return apply_preset(args.preset, overrides, presets)


async def save_preset(name: str, payload: dict[str, Any]) -> None:
    from cli import PresetLibrary

    try:
        preset = await PresetLibrary().add(name, payload)
    except ValueError as e:
        logger.error(f"Cannot save preset: {e}")
        return
    print(f"Saved preset {preset.id}")


async def open_session():
    from cli import GenerationSession, ProgressMonitor, ViewCache
    from services.video_generation import create_coordinator

    coordinator = await create_coordinator()
    monitor = ProgressMonitor()
    session = GenerationSession(coordinator, ViewCache(), on_update=monitor.update)
    await session.start()
    return session, monitor


async def generate_video(args: argparse.Namespace) -> bool:
    """Submit a generation and (unless --no-wait) watch it to the end."""
    from core.errors import ValidationError
    from services.video_generation import GenerationStatus

    try:
        payload = await build_payload(args)
    except KeyError:
        logger.error(f"Unknown preset: {args.preset}")
        return False

    session, monitor = await open_session()
    try:
        if session.view.is_generating:
            logger.warning(f"Generation {session.view.current.id} is still in flight; starting another")

        try:
            record = await session.submit(payload)
        except ValidationError as e:
            for detail in e.details:
                print(f"  {detail['field']}: {detail['message']}")
            return False

        if args.save_preset:
            await save_preset(args.save_preset, payload)

        monitor.header(record)
        if args.no_wait:
            print(f"Submitted {record.id} (estimated {record.estimated_time}s)")
            return True

        final = await session.watch()
        return final is not None and final.status == GenerationStatus.COMPLETED
    finally:
        await session.close()
        await session.coordinator.close()


async def watch_generation(job_id: Optional[str]) -> bool:
    from core.errors import GenerationNotFound
    from services.video_generation import GenerationStatus

    session, monitor = await open_session()
    try:
        if job_id:
            try:
                await session.follow(job_id)
            except GenerationNotFound:
                logger.error(f"Generation {job_id} not found")
                return False

        if session.view.current is None:
            print("Nothing to watch.")
            return True

        monitor.header(session.view.current)
        final = await session.watch()
        return final is not None and final.status == GenerationStatus.COMPLETED
    finally:
        await session.close()
        await session.coordinator.close()


async def cancel_generation(job_id: Optional[str]) -> bool:
    from core.errors import CancelError, GenerationNotFound

    session, _ = await open_session()
    try:
        if job_id:
            await session.follow(job_id)
        record = await session.cancel()
        print(f"Generation {record.id}: {record.status.value}")
        return True
    except (CancelError, GenerationNotFound) as e:
        logger.error(str(e))
        return False
    finally:
        await session.close()
        await session.coordinator.close()


async def show_history(query: Optional[str], status: Optional[str]) -> bool:
    from cli.progress_monitor import format_history_row
    from services.video_generation import GenerationStatus, create_coordinator

    coordinator = await create_coordinator()
    try:
        records = await coordinator.history(
            query=query,
            status=GenerationStatus(status) if status else None,
        )
        if not records:
            print("No generations found.")
        for record in records:
            print(format_history_row(record))
        return True
    finally:
        await coordinator.close()


async def delete_generation(job_id: str) -> bool:
    from services.video_generation import create_coordinator

    coordinator = await create_coordinator()
    try:
        deleted = await coordinator.delete(job_id)
        print(f"Deleted {job_id}" if deleted else f"Generation {job_id} not found")
        return deleted
    finally:
        await coordinator.close()


async def regenerate_thumbnail(job_id: str) -> bool:
    from core.errors import ArtifactTransferError, GenerationNotFound, ProviderError
    from services.video_generation import create_coordinator

    coordinator = await create_coordinator()
    try:
        record = await coordinator.regenerate_thumbnail(job_id)
        print(f"Thumbnail for {job_id}: {record.thumbnail_url}")
        return True
    except (ArtifactTransferError, GenerationNotFound, ProviderError) as e:
        logger.error(str(e))
        return False
    finally:
        await coordinator.close()


async def manage_presets(delete_id: Optional[str]) -> bool:
    from cli import PresetLibrary

    library = PresetLibrary()
    if delete_id:
        try:
            deleted = await library.delete(delete_id)
        except ValueError as e:
            logger.error(str(e))
            return False
        print(f"Deleted preset {delete_id}" if deleted else f"No saved preset {delete_id}")
        return deleted

    for preset in await library.all():
        params = ", ".join(f"{k}={v}" for k, v in preset.params.items())
        print(f"{preset.id:<16} {preset.name:<18} {params}")
    return True


async def clear_history() -> bool:
    from cli import ViewCache
    from services.video_generation import create_coordinator

    coordinator = await create_coordinator()
    try:
        count = await coordinator.purge()
        await ViewCache().clear()
        print(f"Deleted {count} generation(s)")
        return True
    finally:
        await coordinator.close()


def main():
    parser = argparse.ArgumentParser(
        description="Wan Video Generator - RunPod video generation service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start the API server
    python main.py server --port 3000

    # Text to video
    python main.py generate --prompt "a paper boat drifting down a rainy street"

    # Image to video with a preset, overriding the frame count
    python main.py generate --image still.png --preset smooth-motion --frames 49

    # Save the settings of a run as a reusable preset
    python main.py generate --prompt "tide pools" --steps 45 --fps 20 --save-preset "Tide"

    # Browse history
    python main.py history --status completed
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Server command
    server_parser = subparsers.add_parser("server", help="Start the HTTP API")
    server_parser.add_argument("--host", default="0.0.0.0", help="Host to bind")
    server_parser.add_argument("--port", type=int, default=3000, help="Port to bind")
    server_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    # Generate command
    gen_parser = subparsers.add_parser("generate", help="Generate a video")
    gen_parser.add_argument("--prompt", "-p", help="Text prompt (required without --image)")
    gen_parser.add_argument("--image", "-i", help="Source image file (image-to-video)")
    gen_parser.add_argument("--preset", help="Preset id (see `presets`)")
    gen_parser.add_argument("--resolution", "-r", choices=["480p", "720p"], help="Output resolution")
    gen_parser.add_argument("--steps", type=int, help="Inference steps (20-50)")
    gen_parser.add_argument("--guidance", type=float, help="Guidance scale (1-20)")
    gen_parser.add_argument("--guidance-2", type=float, help="Second-stage guidance scale (1-20)")
    gen_parser.add_argument("--frames", type=int, help="Frame count (25-81)")
    gen_parser.add_argument("--fps", type=int, help="Frames per second (8-30)")
    gen_parser.add_argument("--seed", type=int, help="Random seed")
    gen_parser.add_argument("--no-wait", action="store_true", help="Submit and exit without watching")
    gen_parser.add_argument("--save-preset", metavar="NAME", help="Also save these settings as a preset")

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Watch a generation (default: the one in flight)")
    watch_parser.add_argument("job_id", nargs="?", help="Generation id")

    # Cancel command
    cancel_parser = subparsers.add_parser("cancel", help="Cancel a generation (default: the one in flight)")
    cancel_parser.add_argument("job_id", nargs="?", help="Generation id")

    # History command
    history_parser = subparsers.add_parser("history", help="List past generations")
    history_parser.add_argument("--query", "-q", help="Search prompts")
    history_parser.add_argument(
        "--status",
        "-s",
        choices=["queued", "processing", "completed", "failed", "cancelled"],
        help="Filter by status",
    )

    # Delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a generation and its files")
    delete_parser.add_argument("job_id", help="Generation id")

    # Thumbnail command
    thumb_parser = subparsers.add_parser("thumbnail", help="Re-fetch a missing thumbnail")
    thumb_parser.add_argument("job_id", help="Generation id")

    # Presets command
    presets_parser = subparsers.add_parser("presets", help="List presets or delete a saved one")
    presets_parser.add_argument("--delete", metavar="ID", help="Delete a saved preset")

    # Clear history command
    clear_parser = subparsers.add_parser("clear-history", help="Delete every generation and file")
    clear_parser.add_argument("--yes", action="store_true", help="Skip confirmation")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Run appropriate command
    if args.command == "server":
        start_server(host=args.host, port=args.port, reload=args.reload)
        return

    if args.command == "generate":
        if not args.prompt and not args.image:
            gen_parser.error("--prompt is required when no --image is given")
        if args.image and not Path(args.image).is_file():
            gen_parser.error(f"image not found: {args.image}")
        runner = generate_video(args)

    elif args.command == "watch":
        runner = watch_generation(args.job_id)

    elif args.command == "cancel":
        runner = cancel_generation(args.job_id)

    elif args.command == "history":
        runner = show_history(args.query, args.status)

    elif args.command == "delete":
        runner = delete_generation(args.job_id)

    elif args.command == "thumbnail":
        runner = regenerate_thumbnail(args.job_id)

    elif args.command == "presets":
        runner = manage_presets(args.delete)

    elif args.command == "clear-history":
        if not args.yes:
            answer = input("Delete ALL generations and their files? [y/N] ")
            if answer.strip().lower() != "y":
                print("Aborted.")
                sys.exit(1)
        runner = clear_history()

    try:
        ok = asyncio.run(runner)
    except KeyboardInterrupt:
        # Polling stops here; the provider job keeps running and `watch` resumes it
        print("\n\nInterrupted. Run `python main.py watch` to resume.")
        sys.exit(130)

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
