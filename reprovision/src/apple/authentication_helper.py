import getpass
from typing import Optional, Tuple

from reprovision.src.core.errors import ConfigError
from reprovision.src.utils.config_loader import get_apple_credentials, is_non_interactive


def resolve_apple_credentials(console, apple_id: Optional[str] = None) -> Optional[Tuple[str, str]]:
    """Get Apple ID and password from arguments, config or an interactive prompt."""
    try:
        credentials = get_apple_credentials()
        config_id, apple_password = credentials["apple_id"], credentials["apple_password"]
    except ConfigError as e:
        if not apple_id:
            console.print(f"[red]Error: {e}[/]")
            return None
        config_id, apple_password = None, None

    apple_id = apple_id or config_id
    if apple_id != config_id:
        # A password from config belongs to a different account
        apple_password = None

    if not apple_password:
        console.print("[yellow]No Apple password found in configuration.[/]")
        console.print(
            "[yellow]You can set your apple_password under `[apple]` in your config.toml file.[/]"
        )
        if is_non_interactive():
            console.print("[red]NON_INTERACTIVE mode detected. Cannot prompt for password.[/]")
            return None
        try:
            apple_password = getpass.getpass(f"Enter password for {apple_id}: ")
        except (EOFError, KeyboardInterrupt):
            console.print("[red]Password input canceled[/]")
            return None

    if not apple_password:
        console.print("[red]An Apple ID password is required[/]")
        return None
    return apple_id, apple_password


def prompt_verification_code(console) -> Optional[str]:
    """Ask for the two-factor code shown on a trusted device."""
    if is_non_interactive():
        console.print("[red]2FA required but NON_INTERACTIVE mode is enabled[/]")
        return None
    try:
        code = console.input("[yellow]Enter the verification code: [/]").strip()
    except (EOFError, KeyboardInterrupt):
        console.print("[red]Verification canceled[/]")
        return None
    return code or None
