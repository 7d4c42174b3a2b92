"""CLI with subcommands: categorize, faces, people, platforms, publish."""
from __future__ import annotations

import argparse
import signal
import sys
from pathlib import Path
from typing import Optional

from .core.cancellation import CancellationToken
from .core.config import AppConfig, ProviderKind
from .core.errors import ConfigurationError
from .core.models import BoundingRect, CommandResponse, PostContent
from .logging.rich_logger import QuietProgressReporter, RichProgressReporter, setup_logging
from .providers.media import IMAGE_EXTENSIONS
from .services.app_context import AppContext


DEFAULT_DATA_DIR = Path("~/.mediadesk")


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="mediadesk",
        description="Media desk: categorize photos, find faces, manage people, publish posts.",
    )

    # Global options
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=DEFAULT_DATA_DIR,
        help="Directory for the database (default: ~/.mediadesk)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Database path (default: DATA_DIR/mediadesk.sqlite)",
    )
    parser.add_argument(
        "--device",
        type=str,
        default="auto",
        help="Device for local models: auto, cpu, cuda (default: auto)",
    )
    parser.add_argument(
        "--cloud",
        action="store_true",
        help="Use the cloud vision API instead of local models",
    )
    parser.add_argument(
        "--no-exiftool",
        action="store_true",
        help="Do not look for exiftool",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Analyze every file again instead of reusing stored results",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ============ CATEGORIZE command ============
    categorize_parser = subparsers.add_parser(
        "categorize",
        help="Assign categories to images",
    )
    categorize_parser.add_argument(
        "paths",
        nargs="+",
        type=Path,
        help="Image files or directories",
    )
    categorize_parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Minimum tag confidence (0-1)",
    )
    categorize_parser.add_argument(
        "--max-tags",
        type=int,
        default=None,
        help="Maximum tags per image",
    )
    categorize_parser.add_argument(
        "--category",
        dest="categories",
        action="append",
        default=[],
        help="Extra custom category (repeatable)",
    )
    categorize_parser.add_argument(
        "--no-colors",
        action="store_true",
        help="Skip dominant color extraction",
    )
    categorize_parser.add_argument(
        "--write-tags",
        action="store_true",
        help="Write categories to file metadata as XMP keywords",
    )

    # ============ FACES command ============
    faces_parser = subparsers.add_parser(
        "faces",
        help="Detect faces in images",
    )
    faces_parser.add_argument(
        "paths",
        nargs="+",
        type=Path,
        help="Image files or directories",
    )
    faces_parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Minimum detection confidence (0-1)",
    )
    faces_parser.add_argument(
        "--min-size",
        type=int,
        default=None,
        help="Minimum face size in pixels",
    )
    faces_parser.add_argument(
        "--max-faces",
        type=int,
        default=None,
        help="Maximum faces per image",
    )

    # ============ PEOPLE command ============
    people_parser = subparsers.add_parser(
        "people",
        help="Manage known people and their faces",
    )
    people_sub = people_parser.add_subparsers(dest="people_command", required=True)

    people_sub.add_parser("list", help="List people")

    show_parser = people_sub.add_parser("show", help="Show a person and their faces")
    show_parser.add_argument("person_id")

    add_parser = people_sub.add_parser("add", help="Add a person")
    add_parser.add_argument("name")

    rename_parser = people_sub.add_parser("rename", help="Rename a person")
    rename_parser.add_argument("person_id")
    rename_parser.add_argument("name")

    rm_parser = people_sub.add_parser("rm", help="Delete a person and their faces")
    rm_parser.add_argument("person_id")

    add_face_parser = people_sub.add_parser("add-face", help="Attach a face to a person")
    add_face_parser.add_argument("person_id")
    add_face_parser.add_argument("image", type=Path)
    add_face_parser.add_argument(
        "rect",
        nargs=4,
        type=int,
        metavar=("X", "Y", "WIDTH", "HEIGHT"),
        help="Face rectangle in image pixels",
    )

    rm_face_parser = people_sub.add_parser("rm-face", help="Remove a face from a person")
    rm_face_parser.add_argument("person_id")
    rm_face_parser.add_argument("face_id")

    # ============ PLATFORMS command ============
    platforms_parser = subparsers.add_parser(
        "platforms",
        help="Manage social platform connections",
    )
    platforms_sub = platforms_parser.add_subparsers(dest="platforms_command", required=True)

    platforms_sub.add_parser("list", help="List platforms")

    auth_parser = platforms_sub.add_parser("auth", help="Connect a platform")
    auth_parser.add_argument("platform_id")
    auth_parser.add_argument(
        "--code",
        type=str,
        default=None,
        help="Authorization code",
    )

    disconnect_parser = platforms_sub.add_parser("disconnect", help="Disconnect a platform")
    disconnect_parser.add_argument("platform_id")

    # ============ CACHE command ============
    cache_parser = subparsers.add_parser(
        "cache",
        help="Manage stored analysis results",
    )
    cache_sub = cache_parser.add_subparsers(dest="cache_command", required=True)
    clear_parser = cache_sub.add_parser("clear", help="Forget stored results")
    clear_parser.add_argument(
        "--kind",
        choices=[k.value for k in ProviderKind],
        default=None,
        help="Only results of this provider kind",
    )

    # ============ PUBLISH command ============
    publish_parser = subparsers.add_parser(
        "publish",
        help="Publish one post to several platforms",
    )
    publish_parser.add_argument(
        "platforms",
        nargs="+",
        help="Platform ids",
    )
    publish_parser.add_argument(
        "-t", "--text",
        type=str,
        default="",
        help="Post text",
    )
    publish_parser.add_argument(
        "-m", "--media",
        type=Path,
        action="append",
        default=[],
        help="Media file to attach (repeatable)",
    )
    publish_parser.add_argument(
        "--link",
        type=str,
        default=None,
        help="Link to attach",
    )
    publish_parser.add_argument(
        "--tag",
        dest="tags",
        action="append",
        default=[],
        help="Hashtag (repeatable)",
    )

    return parser


def build_config(args: argparse.Namespace) -> AppConfig:
    """Translate global options into an AppConfig."""
    config = AppConfig(
        data_dir=args.data_dir,
        db_path=args.db,
        device=args.device,
        use_exiftool=not args.no_exiftool,
        cache_results=not args.no_cache,
        verbose=args.verbose,
    )
    if args.cloud:
        config = config.with_overrides(
            categorizer=config.categorizer.with_overrides(use_local_model=False),
            faces=config.faces.with_overrides(use_local_model=False),
        )
    return config


def collect_items(paths: list[Path]) -> list[str]:
    """Expand directories into their image files (sorted); keep files as given."""
    items: list[str] = []
    for path in paths:
        if path.is_dir():
            items.extend(
                str(p) for p in sorted(path.rglob("*"))
                if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
            )
        else:
            items.append(str(path))
    return items


def _fail(reporter, response: CommandResponse) -> int:
    reporter.error(response.error or "Unknown error")
    return 1


def _run_batch(ctx: AppContext, kind: ProviderKind, items: list[str], reporter):
    """Run a batch with Ctrl+C mapped to cancellation."""
    cancel = CancellationToken()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.cancel())
    try:
        return ctx.run_batch(kind, items, sink=reporter, cancel=cancel)
    finally:
        signal.signal(signal.SIGINT, previous)


def cmd_categorize(args: argparse.Namespace, ctx: AppContext, reporter) -> int:
    """Handle the categorize command."""
    items = collect_items(args.paths)
    if not items:
        reporter.error("No images found")
        return 1

    options = {}
    if args.threshold is not None:
        options["confidence_threshold"] = args.threshold
    if args.max_tags is not None:
        options["max_tags"] = args.max_tags
    if args.no_colors:
        options["include_dominant_colors"] = False

    response = ctx.configure_provider(ProviderKind.CATEGORIZER, options)
    if not response.success:
        return _fail(reporter, response)
    if args.categories:
        ctx.add_custom_categories(args.categories)

    reporter.set_title("Categorizing")
    response = _run_batch(ctx, ProviderKind.CATEGORIZER, items, reporter)
    if response.data is None:
        return _fail(reporter, response)

    outcome = response.data
    for result in outcome.results:
        if result.ok:
            tags = ", ".join(f"{t.name} ({t.confidence:.2f})" for t in result.payload.tags)
            reporter.info(f"{result.item}: [bold]{result.payload.primary_category or '-'}[/bold] {tags}")
    reporter.print_batch_summary(outcome, title="Categorization Complete")

    if args.write_tags:
        written = ctx.write_categories(outcome)
        if not written.success:
            return _fail(reporter, written)
        reporter.success(f"Wrote keywords to {len(written.data['written'])} files")
        if written.data["failed"]:
            return 1

    return 0 if response.success and outcome.failed == 0 else 1


def cmd_faces(args: argparse.Namespace, ctx: AppContext, reporter) -> int:
    """Handle the faces command."""
    items = collect_items(args.paths)
    if not items:
        reporter.error("No images found")
        return 1

    options = {}
    if args.threshold is not None:
        options["confidence_threshold"] = args.threshold
    if args.min_size is not None:
        options["min_face_size"] = args.min_size
    if args.max_faces is not None:
        options["max_faces_per_image"] = args.max_faces

    response = ctx.configure_provider(ProviderKind.FACES, options)
    if not response.success:
        return _fail(reporter, response)

    reporter.set_title("Detecting faces")
    response = _run_batch(ctx, ProviderKind.FACES, items, reporter)
    if response.data is None:
        return _fail(reporter, response)

    outcome = response.data
    for result in outcome.results:
        if result.ok:
            rects = " ".join(
                f"[{f.bounding_rect.x},{f.bounding_rect.y} {f.bounding_rect.width}x{f.bounding_rect.height}]"
                for f in result.payload.faces
            )
            reporter.info(f"{result.item}: {result.payload.count} face(s) {rects}")
    reporter.print_batch_summary(outcome, title="Face Detection Complete")
    return 0 if response.success and outcome.failed == 0 else 1


def cmd_people(args: argparse.Namespace, ctx: AppContext, reporter) -> int:
    """Handle the people subcommands."""
    sub = args.people_command

    if sub == "list":
        response = ctx.list_persons()
        if not response.success:
            return _fail(reporter, response)
        reporter.print_persons(response.data)
        return 0

    if sub == "show":
        response = ctx.get_person(args.person_id)
    elif sub == "add":
        response = ctx.create_or_update_person(args.name)
    elif sub == "rename":
        if not ctx.get_person(args.person_id).data:
            reporter.error(f"Person not found: {args.person_id}")
            return 1
        response = ctx.create_or_update_person(args.name, args.person_id)
    elif sub == "rm":
        response = ctx.delete_person(args.person_id)
        if response.success and response.data:
            reporter.success(f"Deleted {args.person_id}")
            return 0
    elif sub == "add-face":
        x, y, width, height = args.rect
        try:
            rect = BoundingRect(x=x, y=y, width=width, height=height)
        except ValueError as e:
            reporter.error(str(e))
            return 1
        response = ctx.add_face_to_person(args.person_id, str(args.image), rect)
    elif sub == "rm-face":
        response = ctx.remove_face_from_person(args.person_id, args.face_id)
    else:
        reporter.error(f"Unknown people command: {sub}")
        return 1

    if not response.success:
        return _fail(reporter, response)
    if not response.data:
        reporter.error(f"Not found: {args.person_id}")
        return 1
    reporter.print_person(response.data)
    return 0


def cmd_platforms(args: argparse.Namespace, ctx: AppContext, reporter) -> int:
    """Handle the platforms subcommands."""
    sub = args.platforms_command

    if sub == "list":
        response = ctx.list_platforms()
        if not response.success:
            return _fail(reporter, response)
        reporter.print_platforms(response.data)
        return 0

    if sub == "auth":
        response = ctx.authenticate_platform(args.platform_id, args.code)
        if not response.success:
            return _fail(reporter, response)
        reporter.success(f"Connected to {response.data.name}")
        return 0

    if sub == "disconnect":
        response = ctx.disconnect_platform(args.platform_id)
        if not response.success:
            return _fail(reporter, response)
        if not response.data:
            reporter.error(f"Platform not found: {args.platform_id}")
            return 1
        reporter.success(f"Disconnected {args.platform_id}")
        return 0

    reporter.error(f"Unknown platforms command: {sub}")
    return 1


def cmd_publish(args: argparse.Namespace, ctx: AppContext, reporter) -> int:
    """Handle the publish command."""
    content = PostContent(
        text=args.text,
        media=tuple(str(m) for m in args.media),
        link=args.link,
        tags=tuple(args.tags),
    )
    response = ctx.publish_many(args.platforms, content)
    if response.data is None:
        return _fail(reporter, response)

    reporter.print_publish_outcome(response.data)
    if response.success:
        reporter.success(f"Published to {len(response.data.results)} platform(s)")
        return 0
    reporter.warning(response.error)
    return 1


def cmd_cache(args: argparse.Namespace, ctx: AppContext, reporter) -> int:
    """Handle the cache subcommands."""
    if args.cache_command == "clear":
        response = ctx.clear_result_cache(args.kind)
        if not response.success:
            return _fail(reporter, response)
        reporter.success(f"Removed {response.data} stored result(s)")
        return 0

    reporter.error(f"Unknown cache command: {args.cache_command}")
    return 1


COMMANDS = {
    "categorize": cmd_categorize,
    "faces": cmd_faces,
    "people": cmd_people,
    "platforms": cmd_platforms,
    "publish": cmd_publish,
    "cache": cmd_cache,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # No command specified - show help
    if not args.command:
        parser.print_help()
        return 0

    setup_logging(verbose=args.verbose, quiet=args.quiet)

    # Create reporter
    if args.quiet:
        reporter = QuietProgressReporter()
    else:
        reporter = RichProgressReporter(verbose=args.verbose)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        reporter.error(f"Invalid configuration: {e}")
        return 2

    try:
        with AppContext(config) as ctx:
            if args.verbose:
                reporter.print_config(config.to_display())
            return COMMANDS[args.command](args, ctx, reporter)

    except KeyboardInterrupt:
        # Clean exit on Ctrl+C - no stack trace
        return 130
    except Exception as e:
        reporter.error(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
