import click


@click.group()
def main() -> None:
    """Yardmaster - template-driven workspace provisioning orchestrator."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from YARD_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from YARD_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the orchestrator API server."""
    import uvicorn

    from yardmaster.orchestrator.settings import YardSettings

    settings = YardSettings()

    uvicorn.run(
        "yardmaster.orchestrator.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
        timeout_graceful_shutdown=settings.graceful_shutdown_timeout,
    )


@main.command("check-template")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--var", "variables", multiple=True, metavar="NAME=VALUE", help="Variable override (repeatable).")
def check_template(path: str, variables: tuple[str, ...]) -> None:
    """Validate a template JSON file and resolve its variables."""
    from pathlib import Path

    from pydantic import ValidationError as SchemaError

    from yardmaster.orchestrator.errors import DuplicateSlugError, ValidationError
    from yardmaster.orchestrator.execution.resolver import resolve_variables, validate_template
    from yardmaster.orchestrator.models.template import WorkspaceTemplate

    overrides: dict[str, str] = {}
    for item in variables:
        name, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected NAME=VALUE, got '{item}'", param_hint="--var")
        overrides[name] = value

    try:
        template = WorkspaceTemplate.model_validate_json(Path(path).read_text())
        validate_template(template)
        resolved = resolve_variables(template.variables, overrides)
    except (SchemaError, ValidationError, DuplicateSlugError) as exc:
        raise click.ClickException(str(exc)) from None

    sensitive = {v.name for v in template.variables if v.sensitive}
    click.echo(f"Template '{template.name}' is valid.")
    for name, value in resolved.items():
        click.echo(f"  {name} = {'********' if name in sensitive else value}")


# ---------------------------------------------------------------------------
# Database management
# ---------------------------------------------------------------------------


def _alembic_config():
    """Build an Alembic Config from the package's alembic.ini.

    Both alembic.ini and the alembic/ directory live inside the package,
    so this works whether running from source or from an installed package.
    """
    from pathlib import Path

    from alembic.config import Config

    ini_path = Path(__file__).parent / "orchestrator" / "alembic.ini"
    cfg = Config(str(ini_path))
    return cfg


@main.group()
def db() -> None:
    """Database migration and management commands."""


@db.command()
@click.option("--revision", default="head", help="Target revision (default: head).")
def upgrade(revision: str) -> None:
    """Run database migrations forward."""
    from alembic import command

    command.upgrade(_alembic_config(), revision)
    click.echo(f"Database upgraded to {revision}.")


@db.command()
@click.option("--revision", default="-1", help="Target revision (default: -1, one step back).")
def downgrade(revision: str) -> None:
    """Roll back database migrations."""
    from alembic import command

    command.downgrade(_alembic_config(), revision)
    click.echo(f"Database downgraded to {revision}.")


@db.command()
@click.argument("message")
def migrate(message: str) -> None:
    """Autogenerate a new migration from model changes."""
    from alembic import command

    command.revision(_alembic_config(), message=message, autogenerate=True)
    click.echo(f"Migration generated: {message}")


@db.command()
def current() -> None:
    """Show current database revision."""
    from alembic import command

    command.current(_alembic_config(), verbose=True)


@db.command()
def history() -> None:
    """Show migration history."""
    from alembic import command

    command.history(_alembic_config(), verbose=True)


if __name__ == "__main__":
    main()
