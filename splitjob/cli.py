from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Sequence

from splitjob.core.config import Settings, get_settings
from splitjob.core.models import Job, JobStatus, JobStatusPayload, summarize_pages
from splitjob.runtime.artifact_fetcher import ArtifactFetcher
from splitjob.runtime.credentials import EnvCredentialProvider
from splitjob.runtime.errors import JobNotFoundError, ServiceClientError
from splitjob.runtime.orchestrator import SplitJobOrchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Drive remote PDF split/OCR jobs")
    parser.add_argument(
        "--api-base-url",
        default=None,
        help="Base URL of the split/OCR service (default from env SPLITJOB_API_BASE_URL)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List documents known to the service")

    upload_parser = subparsers.add_parser("upload", help="Upload a PDF to split")
    upload_parser.add_argument("path", type=Path)

    watch_parser = subparsers.add_parser("watch", help="Start (or resume) a job and follow it to completion")
    watch_parser.add_argument("job_id", help="Document name")
    watch_parser.add_argument("--resume", action="store_true", help="Continue an uploaded job without restarting it")
    watch_parser.add_argument("--interval", type=float, default=None, help="Seconds between status polls")

    status_parser = subparsers.add_parser("status", help="Print the current status of a job")
    status_parser.add_argument("job_id")

    page_parser = subparsers.add_parser("set-page", help="Change the remote status of one page")
    page_parser.add_argument("job_id")
    page_parser.add_argument("page", type=int)
    page_parser.add_argument("status", help="READY, IGNORE or PROCESSED")
    page_parser.add_argument("--document-id", default=None, help="Linked document id for PROCESSED pages")

    delete_parser = subparsers.add_parser("delete", help="Delete all remote state for a job")
    delete_parser.add_argument("job_id")

    return parser


def _elapsed(job: Job) -> str:
    if job.started_at is None:
        return "-"
    seconds = int(((job.ended_at or datetime.now(UTC)) - job.started_at).total_seconds())
    minutes, seconds = divmod(max(0, seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def _page_bar(done: int, total: int, width: int = 20) -> str:
    filled = min(width, done * width // total) if total > 0 else 0
    return f"[{'#' * filled}{'.' * (width - filled)}] {done}/{total} pages"


def format_job_line(job: Job) -> str:
    summary = summarize_pages(job)
    return (
        f"{job.job_id} [{job.status.value}] {_page_bar(job.done_pages(), job.total_pages)} | "
        f"pending {summary.pending} processing {summary.processing} ready {summary.ready} "
        f"uploaded {summary.uploaded} ignored {summary.ignore} error {summary.error} | {_elapsed(job)}"
    )


def format_status(payload: JobStatusPayload) -> list[str]:
    lines = [f"{payload.page_count} pages"]
    for page_key, page in payload.pages.items():
        artifact = page.artifact_name or "-"
        linked = f" -> {page.document_uri}" if page.document_uri else ""
        lines.append(f"  {page_key:<10} {page.status:<10} {artifact}{linked}")
    return lines


def _build_fetcher(settings: Settings, api_base_url: str | None) -> ArtifactFetcher:
    if api_base_url:
        settings = settings.model_copy(update={"api_base_url": api_base_url})
    return ArtifactFetcher.from_settings(settings, EnvCredentialProvider.from_settings(settings))


async def run_watch(settings: Settings, args: argparse.Namespace) -> int:
    if args.interval is not None:
        settings = settings.model_copy(update={"poll_interval_seconds": args.interval})

    async with _build_fetcher(settings, args.api_base_url) as fetcher:
        orchestrator = SplitJobOrchestrator.from_settings(settings, fetcher)
        last_line: list[str] = []

        def _print_change(job: Job) -> None:
            line = format_job_line(job)
            if not last_line or last_line[-1] != line:
                last_line.append(line)
                print(line, flush=True)

        orchestrator.on_change(args.job_id, _print_change)
        task = await orchestrator.start_or_resume(args.job_id, resume=args.resume)
        try:
            outcome = await task
        finally:
            orchestrator.request_cancel(args.job_id)
            await orchestrator.shutdown()

    print(f"{outcome.job_id}: {outcome.status.value}")
    return 0 if outcome.status == JobStatus.COMPLETE else 1


async def run_command(settings: Settings, args: argparse.Namespace) -> int:
    if args.command == "watch":
        return await run_watch(settings, args)

    async with _build_fetcher(settings, args.api_base_url) as fetcher:
        if args.command == "list":
            for job_id in await fetcher.list_jobs():
                print(job_id)
            return 0

        if args.command == "upload":
            await fetcher.upload_document(args.path)
            print(args.path.stem)
            return 0

        if args.command == "status":
            payload = await fetcher.fetch_validated_status(args.job_id)
            print("\n".join(format_status(payload)))
            return 0

        orchestrator = SplitJobOrchestrator.from_settings(settings, fetcher)

        if args.command == "set-page":
            payload = await orchestrator.update_page_status(
                args.job_id, args.page, args.status.upper(), args.document_id
            )
            print("\n".join(format_status(payload)))
            return 0

        if args.command == "delete":
            await orchestrator.delete_job(args.job_id)
            print(f"Deleted {args.job_id}")
            return 0

    return 2


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        code = asyncio.run(run_command(settings, args))
    except KeyboardInterrupt:
        print("Interrupted; polling cancelled", file=sys.stderr)
        code = 130
    except (ServiceClientError, JobNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = 1
    raise SystemExit(code)


if __name__ == "__main__":
    main()
