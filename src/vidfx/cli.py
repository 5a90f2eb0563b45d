"""vidfx command-line interface with subcommands.

Usage:
    vidfx-cli effects
    vidfx-cli apply <video> --effect sepia [--mode client|remote] [-d output_dir]
                    [--api-url URL] [--upload-endpoint URL] [--token TOKEN --user USER_ID]
    vidfx-cli list --token TOKEN --user USER_ID [--api-url URL]
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from vidfx.config import settings
from vidfx.effects import list_effects
from vidfx.errors import VidFXError
from vidfx.models.processing import Principal, ProcessingMode, Stage, UploadProgressState
from vidfx.orchestrator import (
    LocalStrategy,
    OrchestratorState,
    ProcessingOrchestrator,
    RemoteStrategy,
)
from vidfx.services.local_engine import FFmpegRuntime, LocalExecutionEngine
from vidfx.services.remote import RemoteExecutionCoordinator
from vidfx.services.upload import FingerprintStore, ResumableUploader


def _progress_bar(percent: float, width: int = 30) -> str:
    filled = int(width * min(max(percent, 0.0), 100.0) / 100)
    return "=" * filled + "-" * (width - filled)


def _principal(args: argparse.Namespace) -> Principal | None:
    if args.token and args.user:
        return Principal(user_id=args.user, access_token=args.token)
    return None


# --- effects subcommand ---


def cmd_effects(args: argparse.Namespace) -> None:
    """Print the effect catalog."""
    for effect_id, label in list_effects():
        print(f"  {effect_id:<10} {label}")


# --- apply subcommand ---


def _render(state: OrchestratorState) -> None:
    if state.stage != Stage.PROCESSING:
        return
    upload: UploadProgressState | None = state.upload_progress
    if upload is not None and upload.percentage < 100:
        print(f"\r  upload [{_progress_bar(upload.percentage)}] {upload.percentage:.0f}%", end="", flush=True)
        return
    metrics = state.metrics
    line = f"\r  encode [{_progress_bar(metrics.progress)}] {metrics.progress}% {metrics.time}"
    if metrics.kind == "remote":
        line += f" {metrics.fps:.0f}fps {metrics.speed:.0f}kbps"
    print(line, end="", flush=True)


async def cmd_apply(args: argparse.Namespace) -> None:
    """Apply an effect locally or through the backend."""
    output_dir = Path(args.output_dir) if args.output_dir else settings.output_dir
    principal = _principal(args)

    engine = LocalExecutionEngine(
        lambda: FFmpegRuntime(settings.ffmpeg_binary, settings.scratch_dir)
    )
    coordinator = RemoteExecutionCoordinator(args.api_url, principal)
    uploader = ResumableUploader(
        args.upload_endpoint,
        bucket=settings.bucket,
        chunk_size=settings.upload_chunk_size,
        retry_delays=settings.upload_retry_delays,
        fingerprints=FingerprintStore(settings.fingerprint_store),
    )
    orchestrator = ProcessingOrchestrator(
        {
            ProcessingMode.CLIENT: LocalStrategy(engine, output_dir),
            ProcessingMode.REMOTE: RemoteStrategy(uploader, coordinator),
        },
        principal=principal,
    )
    orchestrator.add_listener(_render)

    try:
        mode = ProcessingMode(args.mode)
        if not orchestrator.switch_mode(mode):
            print(f"Error: {orchestrator.notice}", file=sys.stderr)
            sys.exit(1)
        selected = orchestrator.select_file(args.input)
        orchestrator.select_effect(args.effect)

        print(f"Applying {args.effect} to {selected.name} ({mode.value} mode)")
        try:
            stage = await orchestrator.apply_effect()
        except asyncio.CancelledError:
            await orchestrator.cancel()
            raise
        print()  # newline after progress bar
    except VidFXError as e:
        print(f"Error ({e.kind}): {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        await coordinator.aclose()
        engine.cancel()

    if stage != Stage.COMPLETE:
        error = orchestrator.error
        print(f"Failed ({error.kind}): {error.message}" if error else "Cancelled", file=sys.stderr)
        sys.exit(1)

    print(f"\nDone: {orchestrator.result_url}")
    print(f"  Save as: {orchestrator.download_filename}")


# --- list subcommand ---


async def cmd_list(args: argparse.Namespace) -> None:
    """List the user's server-side transformations."""
    coordinator = RemoteExecutionCoordinator(args.api_url, _principal(args))
    try:
        records = await coordinator.list_transformations()
    except VidFXError as e:
        print(f"Error ({e.kind}): {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        await coordinator.aclose()

    if not records:
        print("No transformations yet")
        return
    for record in records:
        print(
            f"  {record.id}  {record.status.value:<10} {record.progress:>3}%  "
            f"{record.effect:<10} {record.created_at:%Y-%m-%d %H:%M}"
        )


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="vidfx-cli",
        description="vidfx - apply video effects locally or on the server",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- effects ---
    subparsers.add_parser("effects", help="List available effects")

    # --- apply ---
    p_apply = subparsers.add_parser("apply", help="Apply an effect to a video")
    p_apply.add_argument("input", type=str, help="Input video file")
    p_apply.add_argument("-e", "--effect", required=True, help="Effect id (see `effects`)")
    p_apply.add_argument(
        "--mode",
        choices=[m.value for m in ProcessingMode],
        default=ProcessingMode.CLIENT.value,
        help="Where to run the effect (default: client)",
    )
    p_apply.add_argument("-d", "--output-dir", type=str, help="Output directory for client mode")
    p_apply.add_argument("--api-url", default=settings.api_base_url, help="Backend URL")
    p_apply.add_argument("--upload-endpoint", default=settings.upload_endpoint, help="tus upload endpoint")
    p_apply.add_argument("--token", help="Bearer token for server-side processing")
    p_apply.add_argument("--user", help="User id the token belongs to")

    # --- list ---
    p_list = subparsers.add_parser("list", help="List server-side transformations")
    p_list.add_argument("--api-url", default=settings.api_base_url, help="Backend URL")
    p_list.add_argument("--token", required=True, help="Bearer token")
    p_list.add_argument("--user", required=True, help="User id the token belongs to")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Dispatch
    if args.command == "effects":
        cmd_effects(args)
    elif args.command == "apply":
        asyncio.run(cmd_apply(args))
    elif args.command == "list":
        asyncio.run(cmd_list(args))


if __name__ == "__main__":
    main()
