"""Command-line interface for notesauth."""

from __future__ import annotations

import argparse
import asyncio
import sys

from typing import TYPE_CHECKING

from .exceptions import ApiError, NotesAuthError
from .identity import ButtonMount
from .log import configure_from_settings, enable_debug
from .models import Authenticated, OtpPending


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .config import NotesAuthSettings
    from .context import AuthContext
    from .models import AuthState, OtpChallenge, User
    from .notifications import Notification


RESEND = "r"


def build_parser() -> argparse.ArgumentParser:
    """Build the ``notesauth`` argument parser."""
    parser = argparse.ArgumentParser(
        prog="notesauth",
        description="Sign in to the notes backend and manage the local session",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log API, storage and bridge activity to stderr",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # config command
    config_parser = subparsers.add_parser("config", help="Show or export configuration")
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration (default)",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )

    subparsers.add_parser("status", help="Restore the stored session and print the auth state")

    # signup command
    signup_parser = subparsers.add_parser("signup", help="Create an account with an emailed OTP")
    signup_parser.add_argument("email", help="Email address of the new account")
    signup_parser.add_argument("--name", required=True, help="Display name")
    signup_parser.add_argument("--dob", required=True, help="Date of birth (YYYY-MM-DD)")

    # signin command
    signin_parser = subparsers.add_parser("signin", help="Sign in with an emailed OTP")
    signin_parser.add_argument("email", help="Email address of the account")
    signin_parser.add_argument(
        "--keep",
        action="store_true",
        help="Keep me signed in (store the session in the persistent tier)",
    )

    subparsers.add_parser("google", help="Sign in with Google in the browser")
    subparsers.add_parser("logout", help="Sign out and clear the local session")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    from .config import NotesAuthSettings

    settings = NotesAuthSettings()
    configure_from_settings(settings.log)
    if args.debug:
        enable_debug()

    if args.command == "config":
        return handle_config(args, settings)
    if args.command in _HANDLERS:
        return asyncio.run(_run(args, settings))
    parser.print_help()
    return 0


def handle_config(args: argparse.Namespace, settings: NotesAuthSettings) -> int:
    """Handle the config command."""
    if args.env:
        print(settings.to_env())
    else:
        print(settings.show())
    return 0


async def _run(args: argparse.Namespace, settings: NotesAuthSettings) -> int:
    from .context import create_auth_context

    mount = ButtonMount() if settings.google.strategy == "button" else None
    async with create_auth_context(settings, mount=mount) as ctx:
        ctx.notifier.subscribe(_print_notification)
        try:
            return await _HANDLERS[args.command](ctx, args)
        except (NotesAuthError, ValueError) as exc:
            # API failures were already reported through the notifier
            if not isinstance(exc, ApiError):
                print(f"Error: {exc}", file=sys.stderr)
            return 1


def _print_notification(notification: Notification) -> None:
    stream = sys.stderr if notification.is_error else sys.stdout
    print(f"{notification.title} {notification.description}", file=stream)


def _describe(state: AuthState) -> str:
    if isinstance(state, Authenticated):
        return f"Signed in as {state.user.name} <{state.user.email}>"
    if isinstance(state, OtpPending):
        return f"Waiting for {state.purpose.value} OTP for {state.email}"
    return "Not signed in"


async def _ask(prompt: str) -> str:
    return (await asyncio.to_thread(input, prompt)).strip()


def _show_challenge(ctx: AuthContext, challenge: OtpChallenge) -> None:
    if ctx.settings.api.show_dev_otp and challenge.code:
        print(f"(development OTP: {challenge.code})")


async def _enter_code(
    ctx: AuthContext, confirm: Callable[[str], Awaitable[User]]
) -> User | None:
    """Prompt for the OTP until it is accepted; None if the user cancels."""
    while True:
        code = await _ask("OTP (r to resend, empty to cancel): ")
        if not code:
            return None
        if code.lower() == RESEND:
            _show_challenge(ctx, await ctx.controller.resend_otp())
            continue
        try:
            return await confirm(code)
        except ApiError:
            # rejected codes are reported through the notifier; ask again
            continue


async def handle_status(ctx: AuthContext, args: argparse.Namespace) -> int:  # noqa: ARG001
    """Handle the status command."""
    state = await ctx.controller.bootstrap()
    print(_describe(state))
    return 0


async def handle_signup(ctx: AuthContext, args: argparse.Namespace) -> int:
    """Handle the signup command."""
    controller = ctx.controller
    await controller.bootstrap()

    challenge = await controller.request_signup_otp(args.email, args.name, args.dob)
    _show_challenge(ctx, challenge)

    user = await _enter_code(ctx, controller.confirm_signup_otp)
    if user is None:
        return 1
    print(f"Welcome, {user.name}")
    return 0


async def handle_signin(ctx: AuthContext, args: argparse.Namespace) -> int:
    """Handle the signin command."""
    controller = ctx.controller
    await controller.bootstrap()

    challenge = await controller.request_signin_otp(args.email)
    _show_challenge(ctx, challenge)

    user = await _enter_code(
        ctx, lambda code: controller.confirm_signin_otp(code, keep_signed_in=args.keep)
    )
    if user is None:
        return 1
    print(f"Welcome back, {user.name}")
    return 0


async def handle_google(ctx: AuthContext, args: argparse.Namespace) -> int:  # noqa: ARG001
    """Handle the google command."""
    controller = ctx.controller
    state = await controller.bootstrap()
    if isinstance(state, Authenticated):
        print(_describe(state))
        return 0

    mount = ctx.mount if isinstance(ctx.mount, ButtonMount) else None
    await ctx.load_identity()
    await ctx.bridge.initialize()

    if mount is not None:
        if mount.button is None:
            print("Error: sign-in button could not be rendered", file=sys.stderr)
            return 1
        await _ask(f"Press Enter to {mount.button.label.lower()}")
        mount.press()

    print("Complete the sign-in in your browser...")
    await ctx.library.join()
    await ctx.bridge.drain()

    print(_describe(controller.state))
    return 0 if controller.is_authenticated else 1


async def handle_logout(ctx: AuthContext, args: argparse.Namespace) -> int:  # noqa: ARG001
    """Handle the logout command."""
    await ctx.controller.bootstrap()
    await ctx.bridge.sign_out()
    await ctx.controller.logout()
    return 0


_HANDLERS = {
    "status": handle_status,
    "signup": handle_signup,
    "signin": handle_signin,
    "google": handle_google,
    "logout": handle_logout,
}


if __name__ == "__main__":
    sys.exit(main())
