"""CLI entry point: python -m blogmigrate --records FILE [options]"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table

from blogmigrate import settings
from blogmigrate.extractors.urlnorm import SlugMappingError
from blogmigrate.manifest import ManifestError
from blogmigrate.pipeline import (
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_UNCHANGED,
    STATUS_WRITTEN,
    MigrationReport,
    build_pipeline,
)
from blogmigrate.records import RecordSourceError, load_records

logger = logging.getLogger(__name__)

MISSING_ASSETS_FILE = "missing_assets.jsonl"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blogmigrate",
        description=(
            "Convert legacy blog export records into static-site MDX documents.\n"
            "Images are resolved from a media manifest, a local archive, or the network."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--records", required=True, metavar="FILE",
                        help="JSON array or JSON Lines file of exported posts")
    parser.add_argument("--out", default=settings.OUTPUT_DIR, metavar="DIR",
                        help=f"Document output directory (default: {settings.OUTPUT_DIR})")
    parser.add_argument("--assets-dir", default=settings.ASSETS_DIR, metavar="DIR",
                        help=f"Image output directory (default: {settings.ASSETS_DIR})")
    parser.add_argument("--assets-url-prefix", default=settings.ASSETS_URL_PREFIX, metavar="PATH",
                        help=f"Path images are referenced under (default: {settings.ASSETS_URL_PREFIX})")
    parser.add_argument("--manifest", default=None, metavar="FILE",
                        help="Media manifest: JSON {url: path} or a WordPress media export")
    parser.add_argument("--archive-root", default=None, metavar="DIR",
                        help="Local uploads archive searched by filename")
    parser.add_argument("--slug-map", default=None, metavar="FILE",
                        help="JSON object mapping legacy slugs to canonical slugs")
    parser.add_argument("--legacy-domain", action="append", default=None, metavar="HOST",
                        help="Legacy site domain; repeatable (default: $BLOGMIGRATE_LEGACY_DOMAINS)")
    parser.add_argument("--blog-prefix", default=settings.BLOG_PREFIX, metavar="PATH",
                        help=f"Prefix for canonical document links (default: {settings.BLOG_PREFIX})")
    parser.add_argument("--no-network", action="store_true", default=False,
                        help="Disable the network download tier")
    parser.add_argument("--skip-existing", action="store_true", default=False,
                        help="Leave documents that already exist untouched")
    parser.add_argument("--workers", type=int, default=settings.ASSET_WORKERS, metavar="N",
                        help=f"Concurrent image resolutions per document (default: {settings.ASSET_WORKERS})")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        metavar="{DEBUG,INFO,WARNING,ERROR}",
                        help=f"Logging level (default: {settings.LOG_LEVEL})")
    return parser


def _config_from_args(args: argparse.Namespace) -> settings.MigrationConfig:
    values = {
        "output_dir": Path(args.out),
        "assets_dir": Path(args.assets_dir),
        "assets_url_prefix": args.assets_url_prefix,
        "manifest_path": Path(args.manifest) if args.manifest else None,
        "archive_root": Path(args.archive_root) if args.archive_root else None,
        "slug_map_path": Path(args.slug_map) if args.slug_map else None,
        "blog_prefix": args.blog_prefix,
        "network": not args.no_network,
        "skip_existing": args.skip_existing,
        "asset_workers": args.workers,
    }
    if args.legacy_domain:
        values["legacy_domains"] = args.legacy_domain
    return settings.MigrationConfig(**values)


def _print_banner(console: Console, config: settings.MigrationConfig, records: str) -> None:
    console.print(
        Panel.fit(
            f"[bold cyan]blogmigrate[/bold cyan]\n"
            f"Records:        [green]{records}[/green]\n"
            f"Documents:      [yellow]{config.output_dir}[/yellow]\n"
            f"Assets:         [yellow]{config.assets_dir}[/yellow] -> {config.assets_url_prefix}\n"
            f"Legacy domains: {', '.join(config.legacy_domains) or '-'}\n"
            f"Manifest:       {config.manifest_path or '-'}\n"
            f"Archive:        {config.archive_root or '-'}\n"
            f"Slug map:       {config.slug_map_path or '-'}\n"
            f"Network tier:   {'on' if config.network else 'off'}\n"
            f"Workers:        {config.asset_workers}",
            border_style="cyan",
            title="[bold]Configuration[/bold]",
        ),
    )


def _write_missing_report(out_dir: Path, report: MigrationReport) -> Path:
    path = out_dir / MISSING_ASSETS_FILE
    out_dir.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        for slug, url in report.missing_assets:
            fh.write(json.dumps({"slug": slug, "url": url}, ensure_ascii=False) + "\n")
    return path


def _print_summary(console: Console, report: MigrationReport, missing_file: Path) -> None:
    console.print()
    console.print(Rule("[bold cyan]Migration Summary[/bold cyan]"))
    console.print(f"  [bold]Documents written   :[/bold] [green]{report.count(STATUS_WRITTEN)}[/green]")
    console.print(f"  [bold]Documents unchanged :[/bold] {report.count(STATUS_UNCHANGED)}")
    console.print(f"  [bold]Documents skipped   :[/bold] {report.count(STATUS_SKIPPED)}")
    console.print(f"  [bold]Unpublished ignored :[/bold] {report.ignored}")
    console.print(f"  [bold]Documents failed    :[/bold] [red]{report.count(STATUS_FAILED)}[/red]")
    console.print(f"  [bold]Missing assets      :[/bold] [yellow]{len(report.missing_assets)}[/yellow]")
    console.print(f"  [bold]Missing report      :[/bold] [green]{missing_file}[/green]")
    console.print(f"  [bold]Shortcodes flagged  :[/bold] [yellow]{len(report.unrecognized_shortcodes)}[/yellow]")
    console.print()

    if report.missing_assets:
        tbl = Table(
            title=f"[bold yellow]Missing Assets ({len(report.missing_assets)})[/bold yellow]",
            box=box.SIMPLE_HEAVY,
            show_lines=False,
        )
        tbl.add_column("#",        style="dim",  justify="right", width=4, no_wrap=True)
        tbl.add_column("Document", style="cyan", max_width=40,             no_wrap=True)
        tbl.add_column("URL",      style="blue", max_width=70,             no_wrap=True)
        for i, (slug, url) in enumerate(report.missing_assets, 1):
            tbl.add_row(str(i), slug[:40], url[:70])
        console.print(tbl)

    if report.unrecognized_shortcodes:
        tbl = Table(
            title=f"[bold yellow]Unrecognized Shortcodes ({len(report.unrecognized_shortcodes)})[/bold yellow]",
            box=box.SIMPLE_HEAVY,
            show_lines=False,
        )
        tbl.add_column("#",         style="dim",    justify="right", width=4, no_wrap=True)
        tbl.add_column("Document",  style="cyan",   max_width=40,             no_wrap=True)
        tbl.add_column("Shortcode", style="yellow", max_width=70,             no_wrap=True)
        for i, (slug, tag) in enumerate(report.unrecognized_shortcodes, 1):
            tbl.add_row(str(i), slug[:40], tag[:70])
        console.print(tbl)

    if report.failures:
        tbl = Table(
            title=f"[bold red]Failed Documents ({len(report.failures)})[/bold red]",
            box=box.SIMPLE_HEAVY,
            show_lines=False,
        )
        tbl.add_column("#",        style="dim",  justify="right", width=4, no_wrap=True)
        tbl.add_column("Document", style="cyan", max_width=40,             no_wrap=True)
        tbl.add_column("Error",    style="red",  max_width=70,             no_wrap=True)
        for i, result in enumerate(report.failures, 1):
            tbl.add_row(str(i), result.slug[:40], (result.error or "")[:70])
        console.print(tbl)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level, format=settings.LOG_FORMAT)

    try:
        config = _config_from_args(args)
    except ValidationError as exc:
        print(f"ERROR: invalid option: {exc}", file=sys.stderr)
        return 1

    console = Console()
    _print_banner(console, config, args.records)

    try:
        records = load_records(args.records)
        pipeline = build_pipeline(config)
    except (RecordSourceError, ManifestError, SlugMappingError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    report = pipeline.run(records)
    missing_file = _write_missing_report(config.output_dir, report)
    _print_summary(console, report, missing_file)
    return 0


if __name__ == "__main__":
    sys.exit(main())
