"""CLI entry point.

Usage:
    python -m agency_crm <command> [OPTIONS]

Commands:
    create-admin    Create the initial ADMIN account
"""

from agency_crm.cli import cli


def main() -> None:
    """Entry point for ``python -m agency_crm``."""
    cli()


if __name__ == "__main__":
    main()
