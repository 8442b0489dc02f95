from __future__ import annotations

import argparse
import json
import logging
import threading
from dataclasses import asdict, replace
from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

from .config import AppConfig, load_config, reset_app_state, save_config, update_config
from .errors import ClipError, JobCancelled
from .license import clear_license, get_license_status, verify_license
from .metadata import probe_source
from .paths import ToolPaths, config_path, default_output_dir, resolve_tools
from .pipeline import ClipPipeline, ClipRequest, is_local_source
from .progress import ProgressRecord
from .quality import ContainerFormat, QualityTier
from .timeparse import convert_time_token_to_seconds, format_clock

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130
TIP_TEXT = "Tip: press Ctrl+C while a clip is running to cancel it and remove partial files"

_console = Console()
_err_console = Console(stderr=True)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    handler: Callable[[argparse.Namespace], int] = args.handler
    try:
        return handler(args)
    except (ClipError, ValueError) as exc:
        _err_console.print(f"[red]Error:[/red] {exc}")
        return EXIT_ERROR


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clipme",
        description="Cut a clip out of a video URL or local file.",
        epilog=f"Config file: {config_path()}",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    probe = commands.add_parser("probe", help="Show title, duration and available qualities")
    probe.add_argument("source", help="Video URL or local file")
    probe.add_argument("--json", action="store_true", help="Print metadata as JSON")
    probe.set_defaults(handler=_cmd_probe)

    clip = commands.add_parser("clip", help="Download or cut a clip")
    clip.add_argument("source", help="Video URL or local file")
    clip.add_argument("--start", required=True, help="Start time, e.g. 90, 1:30 or 1m30s")
    clip.add_argument("--end", required=True, help="End time")
    clip.add_argument("--quality", help="Best, 8K, 4K, 1440p, 1080p, 720p, 480p or audio")
    clip.add_argument("--format", help="Output container: mp4, mkv, mov, webm or avi")
    clip.add_argument("--title", help="Title used for the output filename")
    clip.add_argument("--output-dir", help="Directory for the finished clip")
    clip.set_defaults(handler=_cmd_clip)

    config = commands.add_parser("config", help="Show or change saved settings")
    config_commands = config.add_subparsers(dest="config_command", required=True)
    config_commands.add_parser("show", help="Print saved settings").set_defaults(
        handler=_cmd_config_show
    )
    config_set = config_commands.add_parser("set", help="Change one setting")
    config_set.add_argument("key", choices=["output_dir", "output_format", "preferred_quality"])
    config_set.add_argument("value", help="New value; empty string clears it")
    config_set.set_defaults(handler=_cmd_config_set)
    config_commands.add_parser("reset", help="Forget onboarding and license").set_defaults(
        handler=_cmd_config_reset
    )

    license_parser = commands.add_parser("license", help="Manage the Pro license")
    license_commands = license_parser.add_subparsers(dest="license_command", required=True)
    verify = license_commands.add_parser("verify", help="Activate a license key")
    verify.add_argument("key")
    verify.set_defaults(handler=_cmd_license_verify)
    license_commands.add_parser("status", help="Show the stored license").set_defaults(
        handler=_cmd_license_status
    )
    license_commands.add_parser("clear", help="Remove the stored license").set_defaults(
        handler=_cmd_license_clear
    )
    return parser


def _cmd_probe(args: argparse.Namespace) -> int:
    metadata = probe_source(args.source, resolve_tools())
    if args.json:
        payload = asdict(metadata)
        payload["qualities"] = [tier.value for tier in metadata.qualities]
        _console.print_json(json.dumps(payload))
        return EXIT_OK
    _console.print(f"[bold]{metadata.title}[/bold]")
    _console.print(f"Duration: {format_clock(metadata.duration)}")
    _console.print(f"Max height: {metadata.max_height}p")
    _console.print("Qualities: " + ", ".join(tier.value for tier in metadata.qualities))
    return EXIT_OK


def _cmd_clip(args: argparse.Namespace) -> int:
    config = _load_config_or_warn()
    if not config.onboarding_complete:
        _console.print(f"[dim]{TIP_TEXT}[/dim]")
        _save_config_or_warn(replace(config, onboarding_complete=True))

    tools = resolve_tools()
    quality = QualityTier.parse(args.quality or config.preferred_quality or QualityTier.BEST.value)
    container = ContainerFormat.parse(args.format or config.output_format)
    start = convert_time_token_to_seconds(args.start)
    end = convert_time_token_to_seconds(args.end)
    title = args.title or _default_title(args.source, tools)

    pipeline = ClipPipeline(tools)
    output_dir = args.output_dir or config.output_dir
    if output_dir:
        pipeline.set_output_dir(Path(output_dir).expanduser())
    request = ClipRequest(
        source=args.source,
        title=title,
        start=start,
        end=end,
        quality=quality,
        container=container,
        job_id=1,
    )
    return run_clip(pipeline, request)


def run_clip(pipeline: ClipPipeline, request: ClipRequest) -> int:
    outcome: dict[str, object] = {}
    progress = Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("{task.fields[rate]}"),
        TextColumn("ETA {task.fields[eta]}"),
        console=_console,
        transient=True,
    )
    task = progress.add_task("Starting", total=100, rate="", eta="--:--")

    def on_progress(record: ProgressRecord) -> None:
        progress.update(
            task,
            completed=record.percent,
            description=f"{record.downloaded} of {record.total}" if record.total else "Clipping",
            rate=record.rate,
            eta=record.eta,
        )

    def worker() -> None:
        try:
            outcome["path"] = pipeline.start_clip(request, on_progress)
        except Exception as exc:
            outcome["error"] = exc

    thread = threading.Thread(target=worker, daemon=True)
    with progress:
        thread.start()
        while thread.is_alive():
            try:
                thread.join(timeout=0.1)
            except KeyboardInterrupt:
                logger.info("Interrupted; cancelling active job")
                pipeline.cancel_active_job()

    error = outcome.get("error")
    if isinstance(error, JobCancelled):
        _err_console.print("[yellow]Cancelled[/yellow]; partial files removed")
        return EXIT_CANCELLED
    if isinstance(error, BaseException):
        raise error
    _console.print(f"[green]Saved[/green] {outcome['path']}")
    return EXIT_OK


def _cmd_config_show(args: argparse.Namespace) -> int:
    config = _load_config_or_warn()
    payload = asdict(config)
    payload["effective_output_dir"] = config.output_dir or str(default_output_dir())
    _console.print_json(json.dumps(payload))
    return EXIT_OK


def _cmd_config_set(args: argparse.Namespace) -> int:
    config = _load_config_or_warn()
    updated = update_config(config, args.key, args.value)
    error = save_config(updated)
    if error is not None:
        _err_console.print(f"[red]Error:[/red] {error}")
        return EXIT_ERROR
    _console.print(f"{args.key} = {getattr(updated, args.key)}")
    return EXIT_OK


def _cmd_config_reset(args: argparse.Namespace) -> int:
    error = reset_app_state()
    if error is not None:
        _err_console.print(f"[red]Error:[/red] {error}")
        return EXIT_ERROR
    _console.print("Onboarding and license reset")
    return EXIT_OK


def _cmd_license_verify(args: argparse.Namespace) -> int:
    info = verify_license(args.key)
    if not info.is_valid:
        _err_console.print("[yellow]License is no longer active[/yellow]")
        return EXIT_ERROR
    _console.print(f"[green]Pro license activated[/green] for {info.email or 'unknown email'}")
    return EXIT_OK


def _cmd_license_status(args: argparse.Namespace) -> int:
    info = get_license_status()
    status = "Pro" if info.is_pro else "Free"
    _console.print(f"License: {status}" + (f" ({info.email})" if info.email else ""))
    return EXIT_OK


def _cmd_license_clear(args: argparse.Namespace) -> int:
    clear_license()
    _console.print("License removed")
    return EXIT_OK


def _default_title(source: str, tools: ToolPaths) -> str:
    if is_local_source(source):
        return Path(source).stem
    return probe_source(source, tools).title


def _load_config_or_warn() -> AppConfig:
    config, error = load_config()
    if error is not None:
        _err_console.print(f"[yellow]Warning:[/yellow] {error}")
    return config


def _save_config_or_warn(config: AppConfig) -> None:
    error = save_config(config)
    if error is not None:
        _err_console.print(f"[yellow]Warning:[/yellow] {error}")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=_err_console, show_path=False)],
    )
