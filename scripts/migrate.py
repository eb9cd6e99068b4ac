"""Run or create Alembic migrations for the appointments database."""

import argparse
import sys

from alembic import command
from alembic.config import Config


def _config() -> Config:
    return Config("alembic.ini")


def main() -> None:
    """Dispatch the requested migration command."""
    parser = argparse.ArgumentParser(description="Appointment service migrations")
    subparsers = parser.add_subparsers(dest="command")

    upgrade = subparsers.add_parser("upgrade", help="Upgrade to a revision (default: head)")
    upgrade.add_argument("revision", nargs="?", default="head")

    downgrade = subparsers.add_parser("downgrade", help="Downgrade to a revision")
    downgrade.add_argument("revision")

    create = subparsers.add_parser("create", help="Autogenerate a new revision")
    create.add_argument("message", nargs="+")

    args = parser.parse_args()
    alembic_cfg = _config()

    try:
        if args.command == "downgrade":
            print(f"Downgrading database to {args.revision}...")
            command.downgrade(alembic_cfg, args.revision)
        elif args.command == "create":
            message = " ".join(args.message)
            print(f"Creating migration: {message}")
            command.revision(alembic_cfg, message=message, autogenerate=True)
        else:
            revision = getattr(args, "revision", "head")
            print(f"Upgrading database to {revision}...")
            command.upgrade(alembic_cfg, revision)
        print("✓ Done")
    except Exception as e:
        print(f"✗ Migration command failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
