import asyncio
from pathlib import Path
import sys
from typing import Optional

from reprovision.logger import get_console
from reprovision.src.apple.authentication_helper import (
    prompt_verification_code,
    resolve_apple_credentials,
)
from reprovision.src.core.errors import AuthenticationRequiresTwoFactor, ReprovisionError
from reprovision.src.core.models import Certificate, Device
from reprovision.src.core.orchestrator import SideloadServer
from reprovision.src.core.pipeline import InstallRequest, PipelineResult
from reprovision.src.core.signing_identity import certificate_from_p12


def load_local_certificate(p12_path: Optional[Path], password: str) -> Optional[Certificate]:
    if p12_path is None:
        return None
    return certificate_from_p12(p12_path.read_bytes(), password.encode() or None)


def print_summary(console, result: PipelineResult) -> None:
    state = result.state
    console.print("\n[bold blue]Provisioning summary:[/]")
    if state.team:
        console.print(f"[cyan]Team:[/] {state.team.name} ({state.team.identifier})")
    if state.certificate:
        console.print(f"[cyan]Certificate:[/] {state.certificate.serial_number}")
    for app_id in state.app_ids:
        console.print(f"  • App ID {app_id.bundle_identifier}")
    for profile in state.profiles:
        console.print(f"  • Profile {profile.name} [dim]({profile.uuid})[/]")


def main(args) -> int:
    console = get_console()

    if not args.app_path.exists():
        console.print(f"[red]Error:[/] App not found: {args.app_path}")
        return 1

    credentials = resolve_apple_credentials(console, args.apple_id)
    if not credentials:
        return 1
    apple_id, apple_password = credentials

    try:
        certificate = load_local_certificate(args.p12, args.p12_password)
        request = InstallRequest(
            app_path=args.app_path,
            device=Device(identifier=args.udid, name=args.device_name),
            apple_id=apple_id,
            password=apple_password,
            certificate=certificate,
        )

        with SideloadServer() as server:
            result = asyncio.run(server.install_app(request))

            # One more run once the user has the code from a trusted device
            if isinstance(result.error, AuthenticationRequiresTwoFactor):
                code = prompt_verification_code(console)
                if not code:
                    return 1
                request.verification_code = code
                result = asyncio.run(server.install_app(request))
    except ReprovisionError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1

    print_summary(console, result)
    if not result.succeeded:
        console.print(f"\n[red]Failed at {result.stage.value}:[/] {result.error}")
        return 1

    console.print(f"\n[green]Done! {result.state.sign_result.bundle_identifier} is on {result.state.device.name}[/]")
    return 0


def run_install_command(args):
    """Entry point for the install command from CLI"""
    return main(args)


if __name__ == "__main__":
    from reprovision.cli import main as cli_main

    sys.exit(cli_main())
