"""
userpool command-line interface.

Usage::

    userpool configure --pool-id us-east-1_AbCdEf123 --client-id 3n4b5urk1ft4fl3mg5e62d9ado
    userpool sign-in alice
    userpool sign-in alice --custom-auth
    userpool session alice
    userpool forget-device alice
    userpool sign-out alice --global
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Awaitable, Optional, TypeVar

import click

from userpool import __version__
from userpool.challenges import (
    AuthFailure,
    AuthFlow,
    AuthResult,
    ChallengeName,
    CustomChallengeRequired,
    MfaRequired,
    NewPasswordRequired,
)
from userpool.config import load_config, load_settings, save_config
from userpool.errors import UserPoolError
from userpool.pool import UserPool
from userpool.storage import KeyringStorage, MemoryStorage
from userpool.user import User

STORAGE_CHOICES = ["keyring", "memory"]

T = TypeVar("T")


def _build_pool(storage: Optional[str]) -> UserPool:
    settings = load_settings(storage=storage)
    backend = KeyringStorage() if settings.storage == "keyring" else MemoryStorage()
    return UserPool.from_settings(settings, storage=backend)


def _run(pool: UserPool, coro: Awaitable[T]) -> T:
    async def _wrapper() -> T:
        try:
            return await coro
        finally:
            aclose = getattr(pool.client, "aclose", None)
            if aclose is not None:
                await aclose()

    return asyncio.run(_wrapper())


def _format_expiry(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="userpool")
@click.option("--verbose", "-v", is_flag=True, help="Log remote calls to stderr.")
def main(verbose: bool) -> None:
    """userpool: sign in to a hosted user pool from the terminal."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


# ---------------------------------------------------------------------------
# userpool configure
# ---------------------------------------------------------------------------


@main.command()
@click.option("--pool-id", required=True, help="User pool id, e.g. us-east-1_AbCdEf123.")
@click.option("--client-id", required=True, help="App client id.")
@click.option("--endpoint", default=None, help="Override the identity provider endpoint.")
@click.option("--storage", type=click.Choice(STORAGE_CHOICES), default=None, help="Token cache backend.")
def configure(pool_id: str, client_id: str, endpoint: Optional[str], storage: Optional[str]) -> None:
    """Save pool settings to ~/.userpool/config.json."""
    cfg = load_config()
    cfg.update({"user_pool_id": pool_id, "client_id": client_id})
    if endpoint:
        cfg["endpoint"] = endpoint
    if storage:
        cfg["storage"] = storage
    save_config(cfg)
    click.echo("Settings saved to ~/.userpool/config.json")


# ---------------------------------------------------------------------------
# userpool sign-in
# ---------------------------------------------------------------------------


async def _drive_sign_in(user: User, password: str) -> AuthResult:
    """Run authenticate() and prompt for each challenge until a terminal result."""
    result = await user.authenticate(password)
    while True:
        if isinstance(result, MfaRequired):
            label = "Authenticator code" if result.challenge_name == ChallengeName.SOFTWARE_TOKEN_MFA else "SMS code"
            if result.destination:
                label += f" (sent to {result.destination})"
            code = click.prompt(label)
            result = await user.send_mfa_code(code, result.challenge_name)
        elif isinstance(result, CustomChallengeRequired):
            answer = click.prompt("Challenge answer")
            result = await user.send_custom_challenge_answer(answer)
        elif isinstance(result, NewPasswordRequired):
            new_password = click.prompt("New password", hide_input=True, confirmation_prompt=True)
            attributes = {name: click.prompt(name) for name in result.required_attributes}
            result = await user.complete_new_password_challenge(new_password, attributes)
        else:
            return result


@main.command("sign-in")
@click.argument("username")
@click.option("--password", prompt=True, hide_input=True, help="Account password.")
@click.option("--custom-auth", is_flag=True, help="Use the CUSTOM_AUTH flow with SRP.")
@click.option("--storage", type=click.Choice(STORAGE_CHOICES), default=None, help="Token cache backend.")
def sign_in(username: str, password: str, custom_auth: bool, storage: Optional[str]) -> None:
    """Sign in with SRP, answering MFA and custom challenges interactively."""
    try:
        pool = _build_pool(storage)
        user = pool.get_user(username)
        if custom_auth:
            user.authentication_flow_type = AuthFlow.CUSTOM_AUTH
        result = _run(pool, _drive_sign_in(user, password))
    except UserPoolError as exc:
        click.echo(f"Sign-in failed: {exc}", err=True)
        sys.exit(1)
    if isinstance(result, AuthFailure):
        click.echo(f"Sign-in failed: {result.error}", err=True)
        sys.exit(1)
    click.echo(click.style(f"Signed in as {user.username}", fg="green"))
    click.echo(f"  Session valid until {_format_expiry(result.session.access_token.expiration)}")
    if user.device_identity is not None:
        click.echo(f"  Device: {user.device_identity.device_key}")
    if result.user_confirmation_necessary:
        click.echo("  This device must be confirmed before it is remembered.")


# ---------------------------------------------------------------------------
# userpool session
# ---------------------------------------------------------------------------


@main.command()
@click.argument("username")
@click.option("--storage", type=click.Choice(STORAGE_CHOICES), default=None, help="Token cache backend.")
def session(username: str, storage: Optional[str]) -> None:
    """Show the cached session, refreshing it if it has expired."""
    try:
        pool = _build_pool(storage)
        user_session = _run(pool, pool.get_user(username).get_session())
    except UserPoolError as exc:
        click.echo(f"No session: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Session for {username} valid until {_format_expiry(user_session.access_token.expiration)}")


# ---------------------------------------------------------------------------
# userpool sign-out / forget-device
# ---------------------------------------------------------------------------


@main.command("sign-out")
@click.argument("username")
@click.option("--global", "global_", is_flag=True, help="Revoke tokens on every device.")
@click.option("--storage", type=click.Choice(STORAGE_CHOICES), default=None, help="Token cache backend.")
def sign_out(username: str, global_: bool, storage: Optional[str]) -> None:
    """Sign out and clear the cached tokens."""

    async def _sign_out(user: User) -> None:
        if global_:
            await user.get_session()
            await user.global_sign_out()
        else:
            user.sign_out()

    try:
        pool = _build_pool(storage)
        _run(pool, _sign_out(pool.get_user(username)))
    except UserPoolError as exc:
        click.echo(f"Sign-out failed: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Signed out {username}")


@main.command("forget-device")
@click.argument("username")
@click.option("--storage", type=click.Choice(STORAGE_CHOICES), default=None, help="Token cache backend.")
def forget_device(username: str, storage: Optional[str]) -> None:
    """Stop remembering this device for USERNAME."""

    async def _forget(user: User) -> None:
        await user.get_session()
        await user.forget_device()

    try:
        pool = _build_pool(storage)
        _run(pool, _forget(pool.get_user(username)))
    except UserPoolError as exc:
        click.echo(f"Could not forget device: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Device forgotten for {username}")


if __name__ == "__main__":
    main()
