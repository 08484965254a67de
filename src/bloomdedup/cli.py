import argparse
import logging
import sys
import textwrap
from pathlib import Path

from . import ConfigurationError, Deduplicator, DuplicateReport, Processor
from .hashing import ErrorPolicy
from .ordering import OrderingBackend
from .settings import Confirmation
from .utils.profiling import profile_main

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

EXIT_INCOMPLETE = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='bloomdedup',
        description='Find likely duplicate files in a large directory tree using streaming hashes and a Bloom '
                    'filter.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent('''
            Examples:
              bloomdedup scan /data
              bloomdedup scan /data --capacity 5000000 --on-error skip
            ''').strip()
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Log progress to standard error')
    parser.add_argument(
        '--log-file',
        metavar='PATH',
        help='Path to log file for operation logging. If not provided, uses logging.path from the settings file or no '
             'logging.')
    parser.add_argument(
        '--log-level',
        metavar='LEVEL',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Defaults to INFO.')
    subparsers = parser.add_subparsers(
        dest='command',
        title='Commands',
        required=True,
        help='Use "bloomdedup COMMAND --help" for command-specific help'
    )

    parser_scan = subparsers.add_parser(
        'scan',
        help='Report duplicate files under a directory',
        description='Walks the directory, hashes every regular file in size-balanced batches and reports each file '
                    'whose content was already seen. Settings are read from ROOT/.bloomdedup/settings.toml unless '
                    '--config is given; command-line options take precedence.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent('''
            Settings file keys:
              batch.max_bytes, filter.capacity, filter.false_positive_rate, hash.algorithm,
              errors.policy, confirmation.mode, processing.concurrency,
              processing.batch_timeout, ordering.backend, logging.path

            Exit status is 2 when some files could not be hashed.
            ''').strip())
    parser_scan.add_argument(
        'root',
        metavar='ROOT',
        help='Directory to scan')
    parser_scan.add_argument(
        '--config',
        metavar='PATH',
        help='Settings file to use instead of ROOT/.bloomdedup/settings.toml')
    parser_scan.add_argument(
        '--max-batch-bytes',
        type=int,
        metavar='N',
        help='Minimum cumulative size of a hashing batch (default: 5 MiB)')
    parser_scan.add_argument(
        '--capacity',
        type=int,
        metavar='N',
        help='Number of files the Bloom filter is sized for (default: 2000000)')
    parser_scan.add_argument(
        '--false-positive-rate',
        type=float,
        metavar='P',
        help='Target false-positive rate of the Bloom filter (default: 1/capacity)')
    parser_scan.add_argument(
        '--hash-algorithm',
        metavar='NAME',
        help='hashlib algorithm used for content digests (default: md5)')
    parser_scan.add_argument(
        '--on-error',
        choices=[policy.value for policy in ErrorPolicy],
        help='What to do with a file that cannot be read: abort its batch (default) or skip the file')
    parser_scan.add_argument(
        '--confirm',
        choices=[mode.value for mode in Confirmation],
        help='How Bloom filter hits are confirmed: none, digest or content (default)')
    parser_scan.add_argument(
        '--concurrency',
        type=int,
        metavar='N',
        help='Number of hashing processes (default: number of CPUs)')
    parser_scan.add_argument(
        '--batch-timeout',
        type=float,
        metavar='SECONDS',
        help='Give up on a batch that takes longer than this to hash')
    parser_scan.add_argument(
        '--ordering',
        choices=[backend.value for backend in OrderingBackend],
        help='Where the size-ordered file list is kept: memory (default) or a scratch LevelDB database')
    parser_scan.set_defaults(method=_scan)

    return parser


def _configure_logging(args, log_path_setting=None):
    level = getattr(logging, args.log_level or 'INFO')

    if args.log_file:
        logging.basicConfig(filename=args.log_file, level=level, format=LOG_FORMAT)
    elif log_path_setting:
        logging.basicConfig(filename=str(log_path_setting), level=level, format=LOG_FORMAT)
    elif args.verbose:
        logging.basicConfig(stream=sys.stderr, level=level, format=LOG_FORMAT)


@profile_main
def bloomdedup_main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        return args.method(args)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _scan(args) -> int:
    root = Path(args.root)
    if not root.is_dir():
        print(f"Error: not a directory: {root}", file=sys.stderr)
        return 1

    settings, settings_file = Deduplicator.load_settings(
        root,
        args.config,
        max_batch_bytes=args.max_batch_bytes,
        capacity=args.capacity,
        false_positive_rate=args.false_positive_rate,
        hash_algorithm=args.hash_algorithm,
        error_policy=args.on_error,
        confirmation=args.confirm,
        concurrency=args.concurrency,
        batch_timeout=args.batch_timeout,
        ordering=args.ordering)
    _configure_logging(args, settings_file.get('logging.path'))

    with Processor(settings.concurrency) as processor:
        report = Deduplicator(processor, settings).scan(root)

    _print_report(report)
    return 0 if report.complete else EXIT_INCOMPLETE


def _print_report(report: DuplicateReport, output=None):
    output = output or sys.stdout
    for path in report.duplicates:
        print(f"Duplicate found: {path}", file=output)

    if report.complete:
        return

    print("Warning: the report is incomplete.", file=sys.stderr)
    for failure in report.failed_batches:
        print(f"  Batch {failure.batch_id} failed ({len(failure.paths)} files not checked): {failure.error}",
              file=sys.stderr)
    for batch_id in report.cancelled_batches:
        print(f"  Batch {batch_id} was cancelled", file=sys.stderr)
    for skipped in report.skipped:
        print(f"  Skipped {skipped.path}: {skipped.reason}", file=sys.stderr)


if __name__ == '__main__':
    sys.exit(bloomdedup_main())
