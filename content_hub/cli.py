from __future__ import annotations

import argparse
import asyncio
import subprocess
import sys
from typing import Optional

from rich.console import Console
from rich.table import Table

from content_hub.core.config import Settings, get_settings
from content_hub.core.db import create_all, create_engine, session_scope
from content_hub.core.errors import AssetNotFound, InvalidTransition, QueueUnavailable
from content_hub.core.jobs import QUEUE_NAMES, ProcessingPayload, build_queue_client
from content_hub.core.logging import configure_logging, level_from_name
from content_hub.db.repository import AssetRepository
from content_hub.services.dispatch import JobDispatcher, asset_category_for_mime

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    settings = get_settings()
    configure_logging(level_from_name(settings.log_level), settings.log_format)
    args.func(args, settings)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Content Hub media-processing CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg/ffprobe dependencies")

    subparsers = parser.add_subparsers(dest="command")

    init_parser = subparsers.add_parser("init-db", help="Create the processing tables if they do not exist")
    init_parser.set_defaults(func=_cmd_init_db)

    worker_parser = subparsers.add_parser("worker", help="Run the RQ worker pool for one queue")
    worker_parser.add_argument("--queue", required=True, choices=QUEUE_NAMES)
    worker_parser.add_argument("--burst", action="store_true", help="Exit once the queue is empty")
    worker_parser.set_defaults(func=_cmd_worker)

    register_parser = subparsers.add_parser("register", help="Record an uploaded original and dispatch it")
    register_parser.add_argument("--file-key", required=True, help="Blob key of the uploaded original")
    register_parser.add_argument("--mime-type", required=True)
    register_parser.add_argument("--asset-id", default=None)
    register_parser.set_defaults(func=_cmd_register)

    dispatch_parser = subparsers.add_parser("dispatch", help="Dispatch processing for a PENDING asset")
    dispatch_parser.add_argument("--asset-id", required=True)
    dispatch_parser.set_defaults(func=_cmd_dispatch)

    reprocess_parser = subparsers.add_parser("reprocess", help="Reset an asset to PENDING and dispatch it again")
    reprocess_parser.add_argument("--asset-id", required=True)
    reprocess_parser.set_defaults(func=_cmd_reprocess)

    status_parser = subparsers.add_parser("status", help="Show processing counts and stuck assets")
    status_parser.set_defaults(func=_cmd_status)

    failed_parser = subparsers.add_parser("failed-jobs", help="List jobs kept after exhausting their attempts")
    failed_parser.add_argument("--queue", required=True, choices=QUEUE_NAMES)
    failed_parser.set_defaults(func=_cmd_failed_jobs)
    return parser


def _cmd_init_db(args: argparse.Namespace, settings: Settings) -> None:
    async def _run() -> None:
        engine = create_engine(settings)
        try:
            await create_all(engine)
        finally:
            await engine.dispose()

    asyncio.run(_run())
    console.print(f"[green]Tables ready at {settings.database_url}[/]")


def _cmd_worker(args: argparse.Namespace, settings: Settings) -> None:
    from content_hub.workers.pool import start_worker_pool

    if settings.normalized_job_backend != "rq":
        console.print("[red]Workers need CONTENT_HUB_JOB_QUEUE_BACKEND=rq; inline jobs run in the calling process.[/]")
        sys.exit(2)
    start_worker_pool(args.queue, burst=args.burst, settings=settings)


def _cmd_register(args: argparse.Namespace, settings: Settings) -> None:
    async def _run() -> None:
        queue_client = build_queue_client(settings)
        try:
            async with session_scope(settings) as session:
                asset = await AssetRepository(session).create_asset(
                    file_key=args.file_key, mime_type=args.mime_type, asset_id=args.asset_id
                )
                payload = ProcessingPayload(asset_id=asset.id, file_key=asset.file_key, mime_type=asset.mime_type)
                await JobDispatcher(queue_client, session).dispatch_processing_job(
                    asset_category_for_mime(asset.mime_type), payload
                )
                console.print(f"[green]Registered asset {asset.id}[/]")
                await _print_asset(AssetRepository(session), asset.id)
        finally:
            queue_client.close()

    asyncio.run(_run())


def _cmd_dispatch(args: argparse.Namespace, settings: Settings) -> None:
    async def _run() -> bool:
        queue_client = build_queue_client(settings)
        try:
            async with session_scope(settings) as session:
                repository = AssetRepository(session)
                asset = await repository.get_asset(args.asset_id)
                if asset is None:
                    return False
                payload = ProcessingPayload(asset_id=asset.id, file_key=asset.file_key, mime_type=asset.mime_type)
                await JobDispatcher(queue_client, session).dispatch_processing_job(
                    asset_category_for_mime(asset.mime_type), payload
                )
                await _print_asset(repository, asset.id)
                return True
        finally:
            queue_client.close()

    if not asyncio.run(_run()):
        console.print(f"[red]Asset not found: {args.asset_id}[/]")
        sys.exit(2)


def _cmd_reprocess(args: argparse.Namespace, settings: Settings) -> None:
    async def _run() -> None:
        queue_client = build_queue_client(settings)
        try:
            async with session_scope(settings) as session:
                handle = await JobDispatcher(queue_client, session).reprocess(args.asset_id)
                if handle is not None and not handle.enqueued:
                    console.print("[yellow]Queue unavailable; the asset stays PENDING.[/]")
                await _print_asset(AssetRepository(session), args.asset_id)
        finally:
            queue_client.close()

    try:
        asyncio.run(_run())
    except AssetNotFound:
        console.print(f"[red]Asset not found: {args.asset_id}[/]")
        sys.exit(2)
    except InvalidTransition as exc:
        console.print(f"[red]{exc}[/]")
        sys.exit(3)


def _cmd_status(args: argparse.Namespace, settings: Settings) -> None:
    async def _run() -> None:
        queue_client = build_queue_client(settings)
        try:
            async with session_scope(settings) as session:
                repository = AssetRepository(session)
                counts = await repository.count_by_status()
                stuck = await repository.list_stuck(settings.stuck_after_s)
            available = queue_client.available
        finally:
            queue_client.close()

        console.rule("[bold]Processing status")
        state = "[green]available[/]" if available else "[red]unavailable[/]"
        console.print(f"[bold]Queue backend[/] ({settings.normalized_job_backend}): {state}")
        table = Table("Status", "Assets")
        for status, count in counts.items():
            table.add_row(status.value, str(count))
        console.print(table)
        if stuck:
            stuck_table = Table("Asset", "MIME type", "Created", title="Stuck in PENDING")
            for asset in stuck:
                stuck_table.add_row(asset.id, asset.mime_type, asset.created_at.isoformat())
            console.print(stuck_table)

    asyncio.run(_run())


def _cmd_failed_jobs(args: argparse.Namespace, settings: Settings) -> None:
    queue_client = build_queue_client(settings)
    try:
        failed = queue_client.failed_jobs(args.queue)
    except QueueUnavailable as exc:
        console.print(f"[red]Queue unavailable: {exc}[/]")
        sys.exit(2)
    finally:
        queue_client.close()

    table = Table("Job", "Type", "Asset", "Error", title=f"Failed jobs on {args.queue}")
    for job in failed:
        error_line = (job.error or "").strip().splitlines()[-1:] or [""]
        table.add_row(job.id, job.job_type or "-", str(job.payload.get("asset_id", "-")), error_line[0])
    console.print(table)


async def _print_asset(repository: AssetRepository, asset_id: str) -> None:
    asset = await repository.get_asset(asset_id)
    if asset is None:
        return
    console.print_json(
        data={
            "asset_id": asset.id,
            "processing_status": asset.processing_status.value,
            "processing_error": asset.processing_error,
            "thumbnail_key": asset.thumbnail_key,
            "preview_key": asset.preview_key,
        }
    )


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    checks = {
        "ffmpeg": ["ffmpeg", "-version"],
        "ffprobe": ["ffprobe", "-version"],
    }
    results = {}
    for label, cmd in checks.items():
        try:
            subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=True)
            results[label] = True
        except (OSError, subprocess.CalledProcessError):
            results[label] = False

    settings = get_settings()
    if settings.normalized_job_backend == "rq":
        queue_client = build_queue_client(settings)
        results["redis"] = queue_client.available
        queue_client.close()

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not all(results.values()):
        console.print("[red]Missing dependencies detected. Consult pyproject.toml.[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
