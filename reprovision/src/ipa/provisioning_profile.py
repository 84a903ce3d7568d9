import plistlib
from pathlib import Path
from typing import Any, Dict, Optional

from asn1crypto.cms import ContentInfo

from reprovision.src.core.models import ProvisioningProfile


class ProfileDecodeError(ValueError):
    pass


def dump_prov(data: bytes) -> Dict[str, Any]:
    """Read a provisioning profile's plist without the macOS security command"""
    try:
        content_info = ContentInfo.load(data)
        signed_data = content_info["content"]
        # The actual plist is the encapsulated content of the signed data
        plist_data = signed_data["encap_content_info"]["content"].native
    except (ValueError, TypeError, KeyError) as e:
        raise ProfileDecodeError(f"Not a signed provisioning profile: {e}") from e

    if not plist_data:
        raise ProfileDecodeError("Provisioning profile has no content")

    try:
        return plistlib.loads(plist_data)
    except plistlib.InvalidFileException as e:
        raise ProfileDecodeError(f"Provisioning profile content is not a plist: {e}") from e


def bundle_identifier_from_entitlements(entitlements: Dict[str, Any], team_id: str) -> str:
    """Strip the team prefix from the application-identifier entitlement"""
    app_identifier = entitlements.get("application-identifier", "")
    prefix = f"{team_id}."
    if team_id and app_identifier.startswith(prefix):
        return app_identifier[len(prefix) :]
    # Fall back to dropping whatever ten character prefix is there
    _, _, rest = app_identifier.partition(".")
    return rest or app_identifier


def parse_profile(data: bytes, identifier: Optional[str] = None) -> ProvisioningProfile:
    """Build a ProvisioningProfile from raw .mobileprovision bytes"""
    plist = dump_prov(data)
    entitlements = plist.get("Entitlements", {})

    team_ids = plist.get("TeamIdentifier") or plist.get("ApplicationIdentifierPrefix") or [""]
    team_id = entitlements.get("com.apple.developer.team-identifier") or team_ids[0]

    return ProvisioningProfile(
        uuid=plist.get("UUID", ""),
        name=plist.get("Name", ""),
        bundle_identifier=bundle_identifier_from_entitlements(entitlements, team_id),
        team_identifier=team_id,
        entitlements=entitlements,
        device_identifiers=list(plist.get("ProvisionedDevices", [])),
        identifier=identifier,
        creation_date=plist.get("CreationDate"),
        expiration_date=plist.get("ExpirationDate"),
        data=data,
    )


def load_profile(path: Path) -> ProvisioningProfile:
    """Load a .mobileprovision file from disk"""
    with open(path, "rb") as f:
        return parse_profile(f.read())


def entitlements_xml(profile: ProvisioningProfile) -> str:
    """Serialise a profile's entitlements the way the signing engine expects"""
    return plistlib.dumps(profile.entitlements, fmt=plistlib.FMT_XML).decode("utf-8")
