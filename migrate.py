"""
Apply database migrations without starting the web server.

Usage:
  python migrate.py            # upgrade to head
  python migrate.py <revision> # upgrade to a specific revision
"""

import os
import sys

from alembic import command
from alembic.config import Config
from dotenv import load_dotenv

HERE = os.path.dirname(os.path.abspath(__file__))


def alembic_config():
    config = Config(os.path.join(HERE, 'alembic.ini'))
    config.set_main_option('script_location', os.path.join(HERE, 'migrations'))
    return config


def main(argv=None):
    load_dotenv()
    argv = sys.argv[1:] if argv is None else argv
    revision = argv[0] if argv else 'head'
    if not (os.environ.get('DATABASE_URL') or '').strip():
        print("DATABASE_URL not found. Set it in .env", file=sys.stderr)
        return 1

    try:
        print(f"Applying database migrations (target: {revision})...")
        command.upgrade(alembic_config(), revision)
        print("Migrations completed successfully.")
    except Exception as e:
        print(f"Migration failed: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
