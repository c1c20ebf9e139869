"""
Restyle - Command Line Entry Point

Browse the model catalog, install and verify models, and rewrite text files
in a chosen style with a local llama.cpp engine.
"""

import argparse
import queue
import sys
from concurrent.futures import TimeoutError as FuturesTimeout
from pathlib import Path

from restyle.catalog import MODEL_TYPES, RepositoryClient
from restyle.convert import (
    CancelledEvent,
    CompleteEvent,
    ErrorEvent,
    RewritePipeline,
    SeparatorEvent,
    StartEvent,
    TokenEvent,
)
from restyle.downloads import DownloadManager
from restyle.engine import ActivationCoordinator
from restyle.errors import RestyleError
from restyle.library import ModelStore
from restyle.logging_config import close_debug_log, info
from restyle.preferences import get_user_preferences
from restyle.text import leading_text

_TYPE_CHOICES = list(MODEL_TYPES) + ['voice']


def _format_size(size_bytes) -> str:
    """Format bytes to human-readable size."""
    if not size_bytes:
        return "?"
    size = float(size_bytes)
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def cmd_catalog(args) -> int:
    client = RepositoryClient()
    entries = client.list_catalog(args.type, page_size=args.limit)
    if not entries:
        print("No models found.")
        return 0
    for entry in entries:
        base = f"  base={entry.base_repo}" if entry.base_repo else ""
        print(f"[{entry.type:5}] {entry.repo}  {_format_size(entry.size_bytes)}{base}")
    return 0


def cmd_resolve(args) -> int:
    entry = RepositoryClient().resolve_repo(args.repo)
    for key, value in entry.to_dict().items():
        print(f"{key}: {value}")
    return 0


def _drain_progress(events: queue.Queue, last_percent: dict):
    while True:
        try:
            kind, payload = events.get_nowait()
        except queue.Empty:
            return
        if kind != 'download_progress':
            continue
        percent = payload.percentage
        if percent is not None and percent != last_percent.get('value'):
            last_percent['value'] = percent
            print(f"\r{payload.repo}: {percent:3d}% ({_format_size(payload.downloaded_bytes)})",
                  end='', file=sys.stderr, flush=True)


def cmd_download(args) -> int:
    events = queue.Queue()
    manager = DownloadManager(RepositoryClient(), ModelStore(), event_queue=events)
    task = manager.start(args.repo, args.type)
    last_percent = {}
    try:
        while not task.is_terminal:
            try:
                manager.wait(task.id, timeout=0.5)
            except FuturesTimeout:
                pass
            _drain_progress(events, last_percent)
            task = manager.status(task.id)
    except KeyboardInterrupt:
        manager.cancel(task.id)
        task = manager.wait(task.id)
    finally:
        manager.shutdown(cancel_running=False)
    print(file=sys.stderr)

    if task.state == 'completed':
        print(f"Installed {args.repo} -> {task.status.path}")
        return 0
    if task.state == 'cancelled':
        print(f"Download of {args.repo} cancelled", file=sys.stderr)
        return 130
    print(f"Download of {args.repo} failed: {task.status.error}", file=sys.stderr)
    return 1


def cmd_models(args) -> int:
    store = ModelStore()
    installed = store.list_installed()
    for label, key in (("Base models", 'bases'), ("Styles", 'voices')):
        print(f"{label}:")
        if not installed[key]:
            print("  (none)")
        for model in installed[key]:
            mark = "ok" if model.verified else "incomplete"
            print(f"  {model.repo or model.id}  [{mark}]  rev={model.revision or '-'}")
    stats = store.stats()
    disk = store.disk_space()
    print(f"Storage: {_format_size(stats.total_bytes)} used, {_format_size(disk.free_bytes)} free")
    return 0


def cmd_verify(args) -> int:
    result = ModelStore().verify(args.repo)
    if result.ok:
        print(f"{args.repo}: OK")
        return 0
    print(f"{args.repo}: {result.error['code']}: {result.error['message']}", file=sys.stderr)
    return 1


def cmd_delete(args) -> int:
    result = ModelStore().delete(args.repo, args.type)
    if result.ok:
        print(f"Deleted {args.repo}")
        return 0
    print(f"{args.repo}: {result.error['message']}", file=sys.stderr)
    return 1


def cmd_convert(args) -> int:
    if args.input == '-':
        text = sys.stdin.read()
    else:
        text = Path(args.input).read_text(encoding='utf-8')

    store = ModelStore()
    client = RepositoryClient()
    preferences = get_user_preferences()
    downloads = DownloadManager(client, store)
    coordinator = ActivationCoordinator(store, client, downloads, preferences=preferences)
    pipeline = RewritePipeline(coordinator.engine_state, store, preferences=preferences,
                               max_char_length=args.max_chars)

    try:
        state = coordinator.activate(args.base, args.style)
        info(f"Engine ready at {state.url}")
        job = pipeline.start_job(text)
        final = None
        try:
            for event in job.events():
                if isinstance(event, StartEvent):
                    sys.stdout.write(leading_text(text, job.chunks))
                elif isinstance(event, (TokenEvent, SeparatorEvent)):
                    sys.stdout.write(event.text)
                    sys.stdout.flush()
                elif event.terminal:
                    final = event
        except KeyboardInterrupt:
            pipeline.cancel(job.job_id)
            final = job.wait()
        print()

        if isinstance(final, CompleteEvent):
            if args.output:
                Path(args.output).write_text(final.result.text, encoding='utf-8')
                print(f"Wrote {args.output}", file=sys.stderr)
            return 0
        if isinstance(final, CancelledEvent):
            print("Conversion cancelled", file=sys.stderr)
            return 130
        if isinstance(final, ErrorEvent):
            print(final.message, file=sys.stderr)
        return 1
    finally:
        coordinator.deactivate()
        downloads.shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='restyle',
        description="Restyle - rewrite text in a chosen style with local models",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Browse available styles
  restyle catalog --type style

  # Install a base model
  restyle download Rewritelikeme/some-base --type base

  # Rewrite a file (base is taken from the style's metadata)
  restyle convert --style Rewritelikeme/some-style essay.txt

  # Debug mode (verbose logging)
  DEBUG=true restyle models
        """
    )
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('catalog', help='List models published by the organization')
    p.add_argument('--type', choices=_TYPE_CHOICES, help='Only this model type')
    p.add_argument('--limit', type=int, default=20, help='Page size, 1-50 (default: 20)')
    p.set_defaults(func=cmd_catalog)

    p = sub.add_parser('resolve', help='Show catalog details for one repository')
    p.add_argument('repo')
    p.set_defaults(func=cmd_resolve)

    p = sub.add_parser('download', help='Install a model')
    p.add_argument('repo')
    p.add_argument('--type', choices=_TYPE_CHOICES, help='Model type (inferred when omitted)')
    p.set_defaults(func=cmd_download)

    p = sub.add_parser('models', help='List installed models and storage use')
    p.set_defaults(func=cmd_models)

    p = sub.add_parser('verify', help='Check an installed model is complete')
    p.add_argument('repo')
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser('delete', help='Remove an installed model')
    p.add_argument('repo')
    p.add_argument('--type', choices=_TYPE_CHOICES)
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser('convert', help='Rewrite a text file in a style')
    p.add_argument('input', help="Input text file, or '-' for stdin")
    p.add_argument('--base', help='Base model repository')
    p.add_argument('--style', help='Style model repository')
    p.add_argument('--max-chars', type=int, default=None, help='Maximum chunk size in characters')
    p.add_argument('--output', help='Also write the final document here')
    p.set_defaults(func=cmd_convert)

    return parser


def main(argv=None) -> int:
    """Command-line interface for Restyle."""
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except RestyleError as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        close_debug_log()


if __name__ == "__main__":
    sys.exit(main())
