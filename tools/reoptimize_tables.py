"""Run the table reoptimization from the command line.

Prints the same JSON report the web endpoint returns.  Use ``--dry-run`` to
see what would change without touching the database.
"""

import argparse
import json
import logging
import os
import sys

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, BASE_DIR)

import app
from reoptimizer.api import ValidationError, parse_request, reoptimize
from reoptimizer.store import SqliteStore


def build_parser():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('--db', help='database path (defaults to the app database)')
    parser.add_argument('--dry-run', action='store_true', help='simulate without saving')
    parser.add_argument('--date', help='only process this exam date (YYYY-MM-DD)')
    parser.add_argument('--shift', help='only process this shift (1 or 2)')
    parser.add_argument('--relocate', action='store_true', help='allow moving singles to other slots')
    parser.add_argument('--use-donors', action='store_true', help='allow splitting full groups')
    parser.add_argument('-v', '--verbose', action='store_true')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    if args.db:
        app.DB_PATH = args.db

    try:
        req = parse_request({
            'dry_run': args.dry_run,
            'date': args.date,
            'shift': args.shift,
            'relocate': args.relocate,
            'use_donors': args.use_donors,
        })
    except ValidationError as exc:
        print(f'error: {exc}', file=sys.stderr)
        return 2

    app.init_db()
    conn = app.get_db()
    try:
        result = reoptimize(SqliteStore(conn), req, progress_callback=logging.info)
    except Exception as exc:
        print(f'error: reoptimization failed and was rolled back: {exc}', file=sys.stderr)
        return 1
    finally:
        conn.close()

    print(json.dumps(result.as_dict(), indent=2, ensure_ascii=False))
    return 0


if __name__ == '__main__':
    sys.exit(main())
