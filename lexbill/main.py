"""Command-line entry point for lexbill.

    lexbill serve            start the billing API (default)
    lexbill migrate          apply database migrations up to head
    uvicorn lexbill.main:app run the API under an external uvicorn
"""

import argparse
from pathlib import Path

import uvicorn

from lexbill.api.app import create_app
from lexbill.core.config import Settings

app = create_app()

_MIGRATIONS = Path(__file__).resolve().parent / "db" / "migrations"


def _serve(settings: Settings) -> None:
    # reload needs an import string rather than the app object
    target = "lexbill.main:app" if settings.debug else app
    uvicorn.run(
        target,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )


def _migrate(revision: str) -> None:
    from alembic import command
    from alembic.config import Config

    config = Config()
    config.set_main_option("script_location", str(_MIGRATIONS))
    command.upgrade(config, revision)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="lexbill")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("serve", help="run the billing API")
    migrate = sub.add_parser("migrate", help="upgrade the database schema")
    migrate.add_argument("revision", nargs="?", default="head")

    args = parser.parse_args(argv)
    if args.command == "migrate":
        _migrate(args.revision)
    else:
        _serve(Settings())


if __name__ == "__main__":
    main()
