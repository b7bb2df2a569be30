"""
Yuque Exporter - Command Line Interface

Exports a Yuque knowledge base to local storage as JSON records, standalone
HTML pages, Word documents and PDFs, and retrieves stored documents.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from . import __version__
from .config_loader import ConfigLoader, get_nested, source_config_from
from .errors import AuthorizationError, ExportError, StorageError, TransportError
from .logger import log_config, log_section, setup_logging
from .models import ExportFormat, ProgressLevel
from .orchestrator import ExportOrchestrator, ExportReport
from .storage import StorageEngine
from .yuque_client import YuqueClient

DOWNLOAD_FORMATS = [fmt.value for fmt in ExportFormat] + ['md']


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog='yuque-export',
        description="Export a Yuque knowledge base to JSON, HTML, Word and PDF files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Export every format configured in config.yaml
  yuque-export --config config.yaml

  # Export HTML and PDF only into ./export
  yuque-export --formats html,pdf --data-dir ./export

  # Check the token and repository access
  yuque-export --validate-only

  # Write a stored document to a file
  yuque-export --download yuque_kb_123 --format pdf --output ./guide.pdf

  # Verbose logging
  yuque-export -vv
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--config',
        type=str,
        default='config.yaml',
        help='Path to configuration YAML file (default: config.yaml)'
    )

    parser.add_argument(
        '--data-dir',
        type=str,
        help='Storage root directory (overrides storage.root)'
    )

    parser.add_argument(
        '--formats',
        type=str,
        help='Comma-separated output formats (json,html,docx,pdf)'
    )

    parser.add_argument(
        '--token',
        type=str,
        help='Yuque access token (overrides yuque.token)'
    )

    parser.add_argument(
        '--no-embed-images',
        action='store_true',
        help='Keep image references instead of embedding them as data URIs'
    )

    parser.add_argument(
        '--validate-only',
        action='store_true',
        help='Validate configuration and credentials, then exit'
    )

    parser.add_argument(
        '--download',
        metavar='DOC_ID',
        type=str,
        help='Write a stored document to --output instead of exporting'
    )

    parser.add_argument(
        '--format',
        dest='download_format',
        choices=DOWNLOAD_FORMATS,
        help='Format for --download (default: the document\'s own format)'
    )

    parser.add_argument(
        '--output',
        type=str,
        help='Output file or directory for --download'
    )

    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bars'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        help='Write logs to this file as well'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Explicit log level (overrides -v)'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (-v for INFO, -vv for DEBUG)'
    )

    return parser


def load_configuration(args: argparse.Namespace, require_source: bool = True) -> dict:
    """
    Load, merge and validate configuration.

    Without a source requirement (``--download``) a missing config file falls
    back to the defaults.

    Raises:
        FileNotFoundError: If the config file is required and missing
        ValueError: If validation fails
    """
    if not require_source and not os.path.exists(args.config):
        config = ConfigLoader.with_defaults({})
    else:
        config = ConfigLoader.load(args.config)

    config = ConfigLoader.merge_with_args(config, args)

    if require_source:
        ConfigLoader.validate(config)
    return config


def print_progress(message: str, level: ProgressLevel) -> None:
    """Progress sink printing orchestrator events to stdout."""
    marker = {
        ProgressLevel.INFO: ' ',
        ProgressLevel.SUCCESS: '+',
        ProgressLevel.ERROR: '!',
    }[level]
    print(f"[{marker}] {message}", flush=True)


def run_validation(config: dict, logger: logging.Logger) -> int:
    """Check the token and repository access."""
    source = source_config_from(config)
    client = YuqueClient.from_source(source, config)
    try:
        user = client.validate_credentials()
    except AuthorizationError as e:
        logger.error(f"Credential check failed: {e}")
        print(f"ERROR: {e}. {e.hint}", file=sys.stderr)
        return 1
    except TransportError as e:
        logger.error(f"Credential check failed: {e}")
        print(f"ERROR: {e}. Check network connection", file=sys.stderr)
        return 1
    finally:
        client.close()

    name = user.get('name') or user.get('login') or 'unknown'
    print(f"Credentials valid for {name}; {source.group_login}/{source.book_slug} is accessible")
    return 0


def run_download(config: dict, args: argparse.Namespace, logger: logging.Logger) -> int:
    """Write a stored document to ``--output``."""
    storage = StorageEngine(
        get_nested(config, 'storage.root', './data'),
        lock_timeout=get_nested(config, 'storage.lock_timeout', 10),
        lock_retries=get_nested(config, 'storage.lock_retries', 5),
    )

    try:
        filename, data, content_type = storage.download(args.download, args.download_format)
    except StorageError as e:
        logger.error(f"Download failed: {e}")
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    output = Path(args.output) if args.output else Path(filename)
    if output.is_dir():
        output = output / filename
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(data)
    except OSError as e:
        logger.error(f"Failed to write {output}: {e}")
        print(f"ERROR: Failed to write {output}: {e}", file=sys.stderr)
        return 1

    logger.info(f"Wrote {len(data)} bytes ({content_type}) to {output}")
    print(f"Saved {output}")
    return 0


def run_export(config: dict, logger: logging.Logger) -> int:
    """Execute the complete export pipeline."""
    source = source_config_from(config)
    orchestrator = ExportOrchestrator(source, config, logger=logging.getLogger('yuque_exporter.orchestrator'))

    try:
        result = orchestrator.export(print_progress)
    finally:
        orchestrator.close()

    report_generator = ExportReport(logger)
    print("\n" + report_generator.format_console_report(result.summary, source.name))

    if not result.success:
        logger.error(f"Export failed: {result.message}")
        print(f"ERROR: {result.message}", file=sys.stderr)
        return 1

    if result.summary.get('documents_failed', 0) > 0:
        logger.warning(f"Export completed with {result.summary['documents_failed']} failed document(s)")
        return 1

    logger.info("Export completed successfully")
    return 0


def main(argv=None) -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if (args.download_format or args.output) and not args.download:
        parser.error("--format and --output require --download")

    try:
        setup_logging(verbosity=args.verbose, level=args.log_level)
        logger = logging.getLogger('yuque_exporter.cli')

        log_section("Yuque Exporter")
        logger.info(f"Version: {__version__}")

        logger.info(f"Loading configuration from {args.config}")
        config = load_configuration(args, require_source=not args.download)

        # Reconfigure logging with config file settings
        setup_logging(
            verbosity=args.verbose,
            log_file=get_nested(config, 'logging.file'),
            level=args.log_level or get_nested(config, 'logging.level'),
        )
        log_config(config)

        if args.download:
            return run_download(config, args, logger)

        if args.validate_only:
            return run_validation(config, logger)

        return run_export(config, logger)

    except FileNotFoundError as e:
        print(f"ERROR: File not found: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return 1
    except ExportError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nExport interrupted by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
