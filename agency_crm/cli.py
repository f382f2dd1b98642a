"""Click CLI commands for account administration."""

import asyncio
import sys

import click

from agency_crm.config import get_settings
from agency_crm.database import close_database, init_database, run_migrations
from agency_crm.errors import ConflictError
from agency_crm.models.account import Role
from agency_crm.services.logging_service import configure_logging
from agency_crm.services.password_hasher import MAX_PASSWORD_BYTES
from agency_crm.services.session_manager import SessionManager, create_credential_store


@click.group()
def cli() -> None:
    """Agency CRM auth administration."""
    pass


async def _create_admin(
    session_manager: SessionManager,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
) -> bool:
    """Register an ADMIN account; returns False if the email is taken."""
    try:
        await session_manager.register(
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            role=Role.ADMIN,
        )
    except ConflictError:
        return False
    return True


async def _run_create_admin(email, password, first_name, last_name) -> bool:
    settings = get_settings()
    uses_postgres = settings.storage_backend == "postgres"

    if uses_postgres:
        await init_database(settings)
        await run_migrations()

    try:
        session_manager = SessionManager(create_credential_store(settings), settings=settings)
        return await _create_admin(session_manager, email, password, first_name, last_name)
    finally:
        if uses_postgres:
            await close_database()


@cli.command("create-admin")
@click.option("--email", required=True, help="Admin login email.")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="Admin password (prompted when omitted).",
)
@click.option("--first-name", default="System", show_default=True)
@click.option("--last-name", default="Administrator", show_default=True)
def create_admin(email: str, password: str, first_name: str, last_name: str) -> None:
    """Create an ADMIN account unless the email is already registered."""
    if len(password) < 8:
        click.echo("Password must be at least 8 characters.", err=True)
        sys.exit(2)
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        click.echo(f"Password must not exceed {MAX_PASSWORD_BYTES} bytes.", err=True)
        sys.exit(2)

    configure_logging(get_settings().log_level)
    created = asyncio.run(_run_create_admin(email, password, first_name, last_name))

    if created:
        click.echo(f"Created admin user: {email.lower()}")
    else:
        click.echo(f"Admin user already exists: {email.lower()}")
