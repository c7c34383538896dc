from __future__ import annotations

import argparse
import logging
import signal
import threading
from dataclasses import replace
from pathlib import Path

from .batch import run_batch
from .logs import configure_logging
from .presets import PRESETS, apply_preset
from .report import build_report, save_report_json
from .settings import TARGET_FORMATS, PipelineConfig
from .stats import format_bytes, run_stats

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mediaopt",
        description="Upload media optimizer (batch, stats and admin server)",
    )
    p.add_argument("--root", default=None, help="Uploads root (default: $MEDIAOPT_UPLOADS_ROOT or ./uploads)")
    p.add_argument("--env-file", default=None, help="Read settings from this .env file")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    opt = sub.add_parser("optimize", help="Re-encode every image under the upload folders")
    opt.add_argument(
        "dirs",
        nargs="*",
        help="Folders to process (default: every configured upload subdirectory)",
    )
    opt.add_argument("--preset", choices=sorted(PRESETS), default=None, help="Start from a named preset")
    opt.add_argument("--format", choices=TARGET_FORMATS, default=None, help="Output format (default: webp)")
    opt.add_argument("--quality", type=int, default=None, help="Encoder quality (1-100)")
    opt.add_argument("--max-width", type=int, default=None, help="Max width (keeps aspect)")
    opt.add_argument("--max-height", type=int, default=None, help="Max height (keeps aspect)")
    opt.add_argument("--no-recursive", action="store_true", help="Do not descend into subfolders")
    opt.add_argument("--limit", type=int, default=None, help="Max simultaneous transforms per folder")
    opt.add_argument("--report", default=None, help="Write a JSON report to this path")

    sub.add_parser("stats", help="Show file counts and sizes of the upload folders")

    serve = sub.add_parser("serve", help="Run the admin HTTP endpoints")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)

    return p


def _load_config(args: argparse.Namespace) -> PipelineConfig:
    config = PipelineConfig.from_env(args.env_file)
    if args.root:
        config = replace(config, uploads_root=Path(args.root))
    if args.verbose:
        config = replace(config, log_level="DEBUG")
    return config


def _optimize(args: argparse.Namespace, config: PipelineConfig) -> int:
    options = config.batch_options
    if args.preset:
        options = apply_preset(args.preset, options)

    overrides = {}
    if args.format:
        overrides["target_format"] = args.format
    if args.quality is not None:
        overrides["quality"] = args.quality
    if args.max_width is not None:
        overrides["max_width"] = args.max_width
    if args.max_height is not None:
        overrides["max_height"] = args.max_height
    if args.no_recursive:
        overrides["recursive"] = False
    try:
        options = replace(options, **overrides)
    except ValueError as e:
        print(f"error: {e}")
        return 2

    if args.limit is not None:
        try:
            config = replace(config, max_concurrency=args.limit or None)
        except ValueError as e:
            print(f"error: {e}")
            return 2

    directories = None
    if args.dirs:
        directories = [(d, Path(d)) for d in args.dirs]

    # First Ctrl-C stops new work; files already being encoded still finish.
    cancel_event = threading.Event()

    def _on_sigint(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        print("\nCancelling... (press Ctrl-C again to abort)")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        summary = run_batch(config, options, cancel_event=cancel_event, directories=directories)
    except OSError as e:
        logger.error("Batch run failed: %s", e)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous)

    print("\n=== Batch Summary ===")
    for r in summary.results:
        if r.report is None:
            print(f"  {r.directory:<14} skipped ({r.skipped_reason})")
        else:
            print(
                f"  {r.directory:<14} processed={r.report.processed} "
                f"failed={r.report.failed} saved={format_bytes(r.report.saved_bytes)}"
            )
    print("Processed  :", summary.processed)
    print("Failed     :", summary.failed)
    print("Saved      :", format_bytes(summary.saved_bytes), f"({summary.saved_bytes} bytes)")
    if summary.cancelled:
        print("Run was cancelled before every file was processed.")

    # Failure breakdown by kind
    kinds: dict[str, int] = {}
    for f in summary.total.files:
        if f.error_kind:
            kinds[f.error_kind] = kinds.get(f.error_kind, 0) + 1

    if kinds:
        print("\nFailures:")
        for k, v in sorted(kinds.items(), key=lambda x: (-x[1], x[0])):
            print(f"  {k}: {v}")

    if args.report:
        report_path = Path(args.report)
        save_report_json(build_report(summary), report_path)
        print("\nReport written:", report_path)

    return 0


def _stats(config: PipelineConfig) -> int:
    summary = run_stats(config)

    print(f"\n=== Upload folders under {config.uploads_root} ===")
    for d in summary.details:
        if not d.exists:
            print(f"  {d.directory:<14} (missing)")
            continue
        print(f"  {d.directory:<14} {d.stats.file_count:>6} files  {format_bytes(d.stats.total_bytes)}")
    print(f"Total: {summary.total_files} files, {format_bytes(summary.total_bytes)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _load_config(args)
    except ValueError as e:
        print(f"error: {e}")
        return 2
    configure_logging(config.log_level, config.log_file)

    if args.command == "optimize":
        return _optimize(args, config)

    if args.command == "stats":
        return _stats(config)

    if args.command == "serve":
        from .web import create_app

        app = create_app(config)
        app.run(host=args.host, port=args.port, threaded=True)
        return 0

    parser.print_help()
    return 2
