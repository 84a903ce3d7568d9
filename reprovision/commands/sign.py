import sys

from reprovision.logger import get_console
from reprovision.src.core.errors import ReprovisionError
from reprovision.src.core.signer import AppSigner
from reprovision.src.core.signing_engine import LdidSigningEngine
from reprovision.src.core.signing_identity import build_signing_identity, certificate_from_p12
from reprovision.src.core.trust_store import TrustStore
from reprovision.src.ipa.provisioning_profile import ProfileDecodeError, load_profile
from reprovision.src.utils.config_loader import (
    get_settle_timeout,
    get_tool_path,
    get_trust_anchor_path,
)


def main(args) -> int:
    console = get_console()

    for path in [args.app_path, args.p12, *args.profiles]:
        if not path.exists():
            console.print(f"[red]Error:[/] File not found: {path}")
            return 1

    try:
        profiles = [load_profile(path) for path in args.profiles]
    except ProfileDecodeError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1

    console.print("\n[bold blue]Signing Configuration:[/]")
    console.print(f"[cyan]App:[/] {args.app_path}")
    for profile in profiles:
        console.print(f"  • {profile.bundle_identifier} [dim]({profile.name})[/]")

    try:
        trust_store = TrustStore.from_pem_file(get_trust_anchor_path())
        certificate = certificate_from_p12(args.p12.read_bytes(), args.p12_password.encode() or None)
        identity = build_signing_identity(certificate, trust_store)

        ldid = get_tool_path("ldid")
        signer = AppSigner(LdidSigningEngine(ldid), settle_timeout=get_settle_timeout(), ldid=ldid)
        result = signer.sign(args.app_path, profiles, identity)
    except ReprovisionError as e:
        console.print(f"\n[red]Error during signing:[/] {e}")
        return 1

    console.print(f"\n[green]Signed {len(result.signed_bundles)} bundle(s):[/] {result.output_path}")
    return 0


def run_sign_command(args):
    """Entry point for the sign command from CLI"""
    return main(args)


if __name__ == "__main__":
    from reprovision.cli import main as cli_main

    sys.exit(cli_main())
