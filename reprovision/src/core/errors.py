from pathlib import Path
from typing import Optional


class ReprovisionError(Exception):
    """Base class for every error raised by reprovision"""


# Configuration


class ConfigError(ReprovisionError):
    """Invalid or incomplete configuration"""


class MissingTrustAnchor(ReprovisionError):
    def __init__(self, path: Optional[Path] = None):
        self.path = path
        location = f" at {path}" if path else ""
        super().__init__(f"Root certificate not found{location}")


# Credentials and authorisation


class InvalidCredentials(ReprovisionError):
    def __init__(self, apple_id: str, detail: str = ""):
        self.apple_id = apple_id
        message = f"Invalid Apple ID or password for {apple_id}"
        super().__init__(f"{message}: {detail}" if detail else message)


class AuthenticationRequiresTwoFactor(ReprovisionError):
    """Raised when the account needs a verification code to continue.

    The caller supplies the code on a new authentication attempt.
    """

    def __init__(self, apple_id: str, method: str = "trusted_device"):
        self.apple_id = apple_id
        self.method = method
        super().__init__(f"Two-factor authentication required for {apple_id} ({method})")


class NoTeamFound(ReprovisionError):
    def __init__(self, apple_id: str):
        self.apple_id = apple_id
        super().__init__(f"No development team found for {apple_id}")


class CertificateLimitReached(ReprovisionError):
    def __init__(self, team_id: str):
        self.team_id = team_id
        super().__init__(
            f"Team {team_id} already has the maximum number of active certificates"
        )


# Resource mismatch


class InvalidCertificate(ReprovisionError):
    def __init__(self, identifier: str = "", detail: str = "no private key material"):
        self.identifier = identifier
        name = f" {identifier}" if identifier else ""
        super().__init__(f"Invalid certificate{name}: {detail}")


class InvalidBundle(ReprovisionError):
    def __init__(self, path: Path, detail: str):
        self.path = path
        super().__init__(f"Invalid app bundle {path}: {detail}")


class MissingProvisioningProfile(ReprovisionError):
    def __init__(self, bundle_identifier: str):
        self.bundle_identifier = bundle_identifier
        super().__init__(f"No provisioning profile matches {bundle_identifier}")


# External collaborators


class RemoteAPIError(ReprovisionError):
    def __init__(self, action: str, message: str, code: Optional[int] = None):
        self.action = action
        self.code = code
        self.message = message
        suffix = f" ({code})" if code is not None else ""
        super().__init__(f"Developer services {action} failed{suffix}: {message}")


class AnisetteError(ReprovisionError):
    """Machine provisioning headers could not be obtained"""


class SigningEngineError(ReprovisionError):
    """The binary signing engine rejected a bundle"""


class ArchiveError(ReprovisionError):
    """An app archive could not be read or written"""


class InstallError(ReprovisionError):
    """The device installer failed"""


class RepackageError(ReprovisionError):
    """Signing succeeded but the signed bundle could not be archived or swapped in.

    The original archive is left untouched.
    """

    def __init__(self, archive_path: Path, cause: BaseException):
        self.archive_path = archive_path
        self.cause = cause
        super().__init__(f"Signed {archive_path.name} but could not repackage it: {cause}")


class PipelineCancelled(ReprovisionError):
    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Cancelled before {stage}")
