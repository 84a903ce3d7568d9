import argparse
import sys
from rich.console import Console
from rich.panel import Panel
from rich.text import Text
from rich.theme import Theme
from rich_argparse import RichHelpFormatter
from reprovision.arguments import (
    add_identity_arguments,
    add_install_arguments,
    add_sign_arguments,
)
from reprovision.src.constants.cli_constants import (
    __version__,
    get_banner_text,
    APP_DESCRIPTION,
)


class ReprovisionHelpFormatter(RichHelpFormatter):
    """Help formatter with the reprovision colour scheme."""

    def __init__(self, prog):
        super().__init__(prog, max_help_position=30, width=100)
        self.console = Console(
            theme=Theme(
                {
                    "command": "bold cyan",
                    "argument": "green",
                    "option": "yellow",
                    "version": "blue",
                    "title": "bold magenta",
                }
            )
        )

    def start_section(self, heading):
        heading_text = Text(heading, style="title")
        super().start_section(str(heading_text))


def display_banner():
    console = Console()
    version_info = Text(f"v{__version__}", style="version")
    tagline = Text(APP_DESCRIPTION, style="italic")

    panel = Panel.fit(
        Text.assemble(get_banner_text(), "\n", tagline, "\n", version_info),
        border_style="green",
        padding=(1, 2),
    )
    console.print(panel)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reprovision",
        description=f"reprovision: {APP_DESCRIPTION}",
        formatter_class=ReprovisionHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"reprovision {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command")

    install_parser = subparsers.add_parser(
        "install",
        help="Provision, sign and install an app on a device",
        formatter_class=ReprovisionHelpFormatter,
        description="Sign in with your Apple ID, register the app and device, "
        "sign the app and install it over USB or Wi-Fi.",
    )
    add_install_arguments(install_parser)

    sign_parser = subparsers.add_parser(
        "sign",
        help="Sign an app with a certificate and provisioning profiles",
        formatter_class=ReprovisionHelpFormatter,
        description="Embed the given provisioning profiles and sign the app in place. "
        "No Apple ID needed.",
    )
    add_sign_arguments(sign_parser)

    identity_parser = subparsers.add_parser(
        "identity",
        help="Export a signing identity with the root certificate chain",
        formatter_class=ReprovisionHelpFormatter,
        description="Merge a certificate and its key with the configured root "
        "certificates into a password-less .p12.",
    )
    add_identity_arguments(identity_parser)

    return parser


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv or "-h" in argv or "--help" in argv:
        display_banner()

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command == "install":
        from reprovision.commands.install import run_install_command

        return run_install_command(args)
    elif args.command == "sign":
        from reprovision.commands.sign import run_sign_command

        return run_sign_command(args)
    elif args.command == "identity":
        from reprovision.commands.identity import run_identity_command

        return run_identity_command(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
