from pathlib import Path


def add_install_arguments(parser):
    """Arguments for provisioning, signing and installing in one go."""
    parser.add_argument("app_path", type=Path, help="Path to the .ipa or .app to install")

    parser.add_argument(
        "--udid",
        required=True,
        help="UDID of the target device",
    )

    parser.add_argument(
        "--device-name",
        default="iPhone",
        help="Name to register the device under [default: iPhone]",
    )

    parser.add_argument(
        "--apple-id",
        help="Apple ID to sign in with [default: APPLE_ID or config.toml]",
    )

    parser.add_argument(
        "--p12",
        type=Path,
        help="Reuse an already issued development certificate (.p12 with private key)",
    )

    parser.add_argument(
        "--p12-password",
        default="",
        help="Password of the .p12 file [default: none]",
    )


def add_sign_arguments(parser):
    """Arguments for local signing with an existing certificate and profiles."""
    parser.add_argument("app_path", type=Path, help="Path to the .ipa or .app to sign in place")

    parser.add_argument(
        "--p12",
        type=Path,
        required=True,
        help="Development certificate with its private key (.p12)",
    )

    parser.add_argument(
        "--p12-password",
        default="",
        help="Password of the .p12 file [default: none]",
    )

    parser.add_argument(
        "--profile",
        type=Path,
        action="append",
        required=True,
        dest="profiles",
        help="Provisioning profile, repeat once per app extension",
    )


def add_identity_arguments(parser):
    """Arguments for exporting a merged signing identity."""
    parser.add_argument(
        "--p12",
        type=Path,
        required=True,
        help="Development certificate with its private key (.p12)",
    )

    parser.add_argument(
        "--p12-password",
        default="",
        help="Password of the .p12 file [default: none]",
    )

    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        required=True,
        help="Where to write the signing identity (.p12, no password)",
    )
