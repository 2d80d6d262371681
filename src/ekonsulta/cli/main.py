"""eKonsulta CLI: run the API and manage its database.

Usage:
    ekonsulta serve --port 5000 --reload     # Run the API under uvicorn
    ekonsulta init-db                        # Create tables (development)
    ekonsulta seed-admin --password ...      # Create the first administrator
    ekonsulta health                         # Query a running API's health
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx
from pydantic import ValidationError as PydanticValidationError

from ekonsulta import __version__
from ekonsulta.config import Settings, get_settings

DEFAULT_API_URL = "http://localhost:5000"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop: normal CLI invocation
        return asyncio.run(coro)
    else:
        # Already inside an event loop (e.g. test runner): run in a thread
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _settings() -> Settings:
    """Load Settings or exit with the reason it could not be built."""
    try:
        return get_settings()
    except PydanticValidationError as e:
        click.secho("Invalid configuration:", fg="red", err=True)
        for error in e.errors():
            field = ".".join(str(p) for p in error["loc"]) or "settings"
            click.secho(f"  {field}: {error['msg']}", fg="red", err=True)
        sys.exit(1)


def _api_url() -> str:
    return os.environ.get("EKONSULTA_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(api_url: str) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at a running eKonsulta API."""
    return httpx.AsyncClient(base_url=api_url, timeout=10.0)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="ekonsulta")
def main():
    """eKonsulta: authentication and user administration API."""


# ---------------------------------------------------------------------------
# ekonsulta serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", help="Bind address (default: EKONSULTA_HOST)")
@click.option("--port", type=int, help="Port (default: EKONSULTA_PORT)")
@click.option("--reload", is_flag=True, help="Restart on code changes (development)")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API under uvicorn."""
    import uvicorn

    settings = _settings()
    uvicorn.run(
        "ekonsulta.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        proxy_headers=True,
        log_level=settings.log_level.lower(),
    )


# ---------------------------------------------------------------------------
# ekonsulta init-db
# ---------------------------------------------------------------------------


@main.command("init-db")
def init_db():
    """Create all tables from the ORM models.

    For development databases; deployed databases use `alembic upgrade head`.
    """
    _run(_init_db_impl(_settings()))
    click.secho("Database tables created", fg="green")


async def _init_db_impl(settings: Settings):
    from ekonsulta.db.engine import build_engine
    from ekonsulta.db.models import Base

    engine = build_engine(settings)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    finally:
        await engine.dispose()


# ---------------------------------------------------------------------------
# ekonsulta seed-admin
# ---------------------------------------------------------------------------


@main.command("seed-admin")
@click.option("--email", help="Administrator email")
@click.option("--username", help="Administrator username")
@click.option("--name", help="Display name")
@click.option(
    "--password",
    help="Administrator password (default: EKONSULTA_BOOTSTRAP_ADMIN_PASSWORD)",
)
def seed_admin(
    email: Optional[str],
    username: Optional[str],
    name: Optional[str],
    password: Optional[str],
):
    """Create the administrator account if it does not exist yet."""
    settings = _settings()
    password = password or settings.bootstrap_admin_password
    if not password:
        click.secho(
            "Error: --password required (or set EKONSULTA_BOOTSTRAP_ADMIN_PASSWORD)",
            fg="red",
            err=True,
        )
        sys.exit(1)

    from ekonsulta.db.models import Role
    from ekonsulta.schemas.user import UserCreate

    try:
        data = UserCreate(
            name=name or settings.bootstrap_admin_name,
            username=username or settings.bootstrap_admin_username,
            email=email or settings.bootstrap_admin_email,
            password=password,
            role=Role.ADMINISTRATOR,
            phone=settings.bootstrap_admin_phone,
            address=settings.bootstrap_admin_address,
        )
    except PydanticValidationError as e:
        for error in e.errors():
            click.secho(f"Error: {error['loc'][0]}: {error['msg']}", fg="red", err=True)
        sys.exit(1)

    created = _run(_seed_admin_impl(settings, data))
    if created:
        click.secho(f"Administrator created: {data.email}", fg="green")
    else:
        click.echo("Administrator already exists")


async def _seed_admin_impl(settings: Settings, data) -> bool:
    from ekonsulta.db.engine import build_engine, build_session_factory
    from ekonsulta.services.user_service import UserService

    engine = build_engine(settings)
    try:
        async with build_session_factory(engine)() as db:
            svc = UserService(db, bcrypt_rounds=settings.bcrypt_rounds)
            if await svc.find_by_identifier(email=data.email):
                return False
            await svc.create(data)
            return True
    finally:
        await engine.dispose()


# ---------------------------------------------------------------------------
# ekonsulta health
# ---------------------------------------------------------------------------


@main.command()
@click.option("--api-url", help="API base URL (default: EKONSULTA_API_URL)")
def health(api_url: Optional[str]):
    """Query a running API's health endpoint."""
    ok = _run(_health_impl(api_url or _api_url()))
    if not ok:
        sys.exit(1)


async def _health_impl(api_url: str) -> bool:
    async with _client(api_url) as c:
        try:
            r = await c.get("/api/v1/health")
        except httpx.HTTPError as e:
            click.secho(f"API unreachable at {api_url}: {e}", fg="red", err=True)
            return False

    if r.status_code != 200:
        click.secho(f"API unhealthy: HTTP {r.status_code}", fg="red", err=True)
        return False

    body = r.json()
    click.secho(f"{body['message']} ({body['environment']}, up {body['uptime']})", fg="green")
    click.echo(json.dumps(body["security"], indent=2))
    return True


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
