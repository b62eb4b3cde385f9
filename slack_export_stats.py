"""slack_export_stats.py

Build a per-user, per-day, per-channel engagement report from an unpacked
Slack export directory.

The export root must hold ``users.json`` and one folder per channel of daily
message logs.  The report is written to the current directory, named after
the export path with every ``.`` and ``/`` removed (``./export/`` becomes
``export.csv``).

Only ``-h``/``--help`` is read as an option; any other argument, including
one starting with ``-``, is taken as the export path.
"""

from __future__ import annotations

import argparse
import os
import sys

from engagement import (
    USERS_FILENAME,
    TimestampError,
    aggregate_export,
    export_csv,
    load_users,
    output_filename,
    print_summary_report,
    summarize_table,
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="slack-export-stats",
        description="Aggregate Slack export engagement statistics into a CSV report",
    )
    parser.add_argument('paths', nargs='*', metavar='PATH',
                        help='Path to the unpacked Slack export directory')
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: load, aggregate and export one Slack export directory.

    Exits with status 1 after printing the error when any stage fails.  No
    report is written unless loading and aggregation both succeed.
    """
    parser = _build_parser()
    if argv is None:
        argv = sys.argv[1:]

    # Check for help flag first; every other argument is a path, even "-export"
    if any(arg in ('-h', '--help') for arg in argv):
        parser.print_help()
        sys.exit(0)
    if '--' not in argv:
        argv = ['--', *argv]
    args = parser.parse_args(argv)

    if not args.paths:
        parser.error("No directory path specified.")
    if len(args.paths) > 1:
        parser.error("Too many arguments. The correct usage is `slack-export-stats PATH`.")

    base_path = args.paths[0]

    try:
        users = load_users(os.path.join(base_path, USERS_FILENAME))
    except (OSError, ValueError) as e:
        print(f"Error loading users: {e}")
        sys.exit(1)

    try:
        stats_by_channel = aggregate_export(base_path, users)
    except TimestampError as e:
        print(f"Error parsing timestamp: {e}")
        sys.exit(1)
    except (OSError, ValueError) as e:
        print(f"Error processing files: {e}")
        sys.exit(1)

    output_name = output_filename(base_path)
    try:
        export_csv(output_name, stats_by_channel)
    except OSError as e:
        print(f"Error writing {output_name}: {e}")
        sys.exit(1)

    print(f"{output_name} file created successfully.")
    print_summary_report(summarize_table(stats_by_channel))


if __name__ == '__main__':
    main()
