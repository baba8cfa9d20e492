"""Command-line interface for metadata extraction and CSV export.

Provides subcommands for single documents, folders of documents and the AI
result cache.
"""

import argparse
import asyncio
import csv
import json
import sys
from pathlib import Path

from docfusion.errors import DocfusionError
from docfusion.fusion.models import FIELDS, AnalyzeOptions, MergedMetadata
from docfusion.ocr.worker_pool import SUPPORTED_IMAGE_EXTENSIONS
from docfusion.pipeline import DocumentPipeline, build_cache
from docfusion.text.cascade import PDF_EXTENSIONS, TEXT_EXTENSIONS
from docfusion.utils.config import AppConfig, load_config
from docfusion.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = PDF_EXTENSIONS | SUPPORTED_IMAGE_EXTENSIONS | TEXT_EXTENSIONS
_META_COLUMNS = ["filename", "status", "source", "confidence", "methods_used"]


def _find_documents(input_dir: Path) -> list[Path]:
    """Find all supported document files in a directory.

    Args:
        input_dir: Directory to scan for documents.

    Returns:
        Sorted list of document file paths.
    """
    return sorted(
        p
        for p in input_dir.iterdir()
        if p.is_file() and p.suffix.lower() in _SUPPORTED_EXTENSIONS
    )


def _to_row(path: Path, merged: MergedMetadata) -> dict[str, object]:
    failed = bool(merged.errors) and not any(
        merged.get_field(n).value for n in FIELDS
    )
    row: dict[str, object] = {
        "filename": path.name,
        "status": "failed" if failed else "success",
        "source": merged.source,
        "confidence": round(merged.confidence, 3),
        "methods_used": "+".join(merged.methods_used),
    }
    for name in FIELDS:
        value = merged.get_field(name)
        row[name] = value.value or ""
        row[f"{name}_confidence"] = round(value.confidence, 3)
    row["error"] = "; ".join(merged.errors)
    return row


def _write_csv(rows: list[dict[str, object]], output_path: Path) -> None:
    """Write extraction results to a CSV file.

    Args:
        rows: One result dictionary per document.
        output_path: Path for the output CSV file.
    """
    if not rows:
        return

    columns = list(_META_COLUMNS)
    for name in FIELDS:
        columns += [name, f"{name}_confidence"]
    columns.append("error")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(rows)


def _print_summary(summary: dict[str, int], output_csv: Path) -> None:
    """Print batch processing summary to stdout.

    Args:
        summary: Counts of total, successful, failed and AI-assisted documents.
        output_csv: Path to the output CSV.
    """
    print(f"\n{'=' * 50}")
    print("Batch Processing Complete")
    print(f"{'=' * 50}")
    print(f"Total:       {summary['total']}")
    print(f"Successful:  {summary['successful']}")
    print(f"Failed:      {summary['failed']}")
    print(f"AI assisted: {summary['ai_assisted']}")
    print(f"Output:      {output_csv}")


async def extract_single(
    file_path: Path, config: AppConfig, options: AnalyzeOptions
) -> dict[str, object]:
    """Process one document and return its metadata record.

    Args:
        file_path: Path to the document file.
        config: Application configuration.
        options: Analysis options.

    Returns:
        The merged metadata as a dictionary.
    """
    pipeline = DocumentPipeline(config)
    await pipeline.initialize()
    try:
        merged = await pipeline.process(file_path, options)
    finally:
        await pipeline.close()
    return merged.to_dict()


async def process_folder(
    input_dir: Path,
    output_csv: Path,
    config: AppConfig,
    options: AnalyzeOptions,
    verbose: bool = False,
) -> dict[str, int]:
    """Process all documents in a folder and export results to CSV.

    Args:
        input_dir: Directory containing document files.
        output_csv: Path for the output CSV file.
        config: Application configuration.
        options: Analysis options applied to every document.
        verbose: Whether to print per-file results.

    Returns:
        Summary dict with total, successful, failed and AI-assisted counts.
    """
    files = _find_documents(input_dir)
    if not files:
        logger.warning("No documents found in %s", input_dir)
        return {"total": 0, "successful": 0, "failed": 0, "ai_assisted": 0}

    logger.info("Found %d documents to process", len(files))
    pipeline = DocumentPipeline(config)
    await pipeline.initialize()
    try:
        results = await pipeline.process_many(files, options)
    finally:
        await pipeline.close()

    rows = [_to_row(path, merged) for path, merged in zip(files, results)]
    if verbose:
        for i, row in enumerate(rows, 1):
            print(
                f"[{i}/{len(rows)}] {row['filename']}: {row['status']} "
                f"({row['source']}, {row['confidence']})"
            )

    _write_csv(rows, output_csv)
    logger.info("Results written to %s", output_csv)

    failed = sum(1 for row in rows if row["status"] == "failed")
    summary = {
        "total": len(files),
        "successful": len(files) - failed,
        "failed": failed,
        "ai_assisted": sum(1 for m in results if m.source != "regex"),
    }
    _print_summary(summary, output_csv)
    return summary


async def cache_command(action: str, config: AppConfig) -> dict[str, object]:
    """Show or clear the persisted AI result cache.

    Args:
        action: ``"stats"`` or ``"clear"``.
        config: Application configuration.

    Returns:
        Cache statistics after the action.

    Raises:
        DocfusionError: If caching is disabled.
    """
    cache = build_cache(config)
    if cache is None:
        raise DocfusionError("Result cache is disabled in the configuration")
    await cache.initialize()
    try:
        if action == "clear":
            await cache.clear()
        stats = cache.get_stats()
    finally:
        await cache.close()
    return stats


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="Document metadata extraction",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=Path, help="Path to a YAML config file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    batch_parser = subparsers.add_parser("batch", help="Process a folder of documents")
    batch_parser.add_argument(
        "input_dir", type=Path, help="Input directory with documents"
    )
    batch_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("results.csv"),
        help="Output CSV file (default: results.csv)",
    )
    batch_parser.add_argument(
        "--force-ai", action="store_true", help="Always call the AI service"
    )
    batch_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output"
    )

    single_parser = subparsers.add_parser("extract", help="Process a single document")
    single_parser.add_argument("file", type=Path, help="Document file to process")
    single_parser.add_argument(
        "--force-ai", action="store_true", help="Always call the AI service"
    )
    single_parser.add_argument(
        "--force-refresh", action="store_true", help="Ignore cached AI results"
    )
    single_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    cache_parser = subparsers.add_parser("cache", help="Inspect the AI result cache")
    cache_parser.add_argument("action", choices=["stats", "clear"])

    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging(config.log_level)

    if args.command == "batch":
        if not args.input_dir.is_dir():
            print(f"Error: {args.input_dir} is not a directory", file=sys.stderr)
            sys.exit(1)
        asyncio.run(
            process_folder(
                args.input_dir,
                args.output,
                config,
                AnalyzeOptions(force_ai=args.force_ai),
                args.verbose,
            )
        )
    elif args.command == "extract":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        options = AnalyzeOptions(
            force_ai=args.force_ai, force_refresh=args.force_refresh
        )
        try:
            result = asyncio.run(extract_single(args.file, config, options))
        except DocfusionError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(1)
        output_str = json.dumps(result, indent=2)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(output_str)
            print(f"Output written to {args.output}")
        else:
            print(output_str)
    elif args.command == "cache":
        try:
            stats = asyncio.run(cache_command(args.action, config))
        except DocfusionError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(stats, indent=2))
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
