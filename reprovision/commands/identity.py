import sys

from reprovision.logger import get_console
from reprovision.src.core.errors import ReprovisionError
from reprovision.src.core.signing_identity import build_signing_identity, certificate_from_p12
from reprovision.src.core.trust_store import TrustStore
from reprovision.src.utils.config_loader import get_trust_anchor_path


def main(args) -> int:
    console = get_console()

    if not args.p12.exists():
        console.print(f"[red]Error:[/] Certificate not found: {args.p12}")
        return 1

    try:
        trust_store = TrustStore.from_pem_file(get_trust_anchor_path())
        certificate = certificate_from_p12(args.p12.read_bytes(), args.p12_password.encode() or None)
        identity = build_signing_identity(certificate, trust_store)
    except ReprovisionError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1

    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_bytes(identity)
    console.print(f"[green]Signing identity written to[/] {args.output}")
    return 0


def run_identity_command(args):
    """Entry point for the identity command from CLI"""
    return main(args)


if __name__ == "__main__":
    from reprovision.cli import main as cli_main

    sys.exit(cli_main())
