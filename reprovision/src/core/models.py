from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class TeamType(Enum):
    FREE = "free"
    INDIVIDUAL = "individual"
    ORGANIZATION = "organization"
    UNKNOWN = "unknown"


class DeviceType(Enum):
    IPHONE = "iphone"
    IPAD = "ipad"
    APPLE_TV = "tvOS"
    UNKNOWN = "unknown"


@dataclass
class Account:
    apple_id: str
    identifier: str  # directory services id (dsid)
    first_name: str = ""
    last_name: str = ""

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.apple_id


@dataclass
class Team:
    identifier: str
    name: str
    type: TeamType = TeamType.UNKNOWN


@dataclass
class Certificate:
    identifier: str
    serial_number: str
    name: str
    machine_name: Optional[str] = None
    machine_identifier: Optional[str] = None
    expiration_date: Optional[datetime] = None
    data: Optional[bytes] = field(default=None, repr=False)  # DER certificate
    p12_data: Optional[bytes] = field(default=None, repr=False)  # key + certificate

    @property
    def has_private_key(self) -> bool:
        return bool(self.p12_data)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiration_date is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires = self.expiration_date
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires <= now


@dataclass
class AppID:
    identifier: str
    bundle_identifier: str
    name: str
    features: Dict[str, Any] = field(default_factory=dict)
    expiration_date: Optional[datetime] = None


@dataclass
class Device:
    identifier: str  # UDID
    name: str
    type: DeviceType = DeviceType.IPHONE


@dataclass
class ProvisioningProfile:
    uuid: str
    name: str
    bundle_identifier: str
    team_identifier: str
    entitlements: Dict[str, Any] = field(default_factory=dict)
    device_identifiers: List[str] = field(default_factory=list)
    identifier: Optional[str] = None
    creation_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    data: bytes = field(default=b"", repr=False)  # raw signed profile


@dataclass
class AppleAPISession:
    """Opaque session handed to every developer services call"""

    dsid: str
    auth_token: str = field(repr=False)
    anisette: Dict[str, str] = field(default_factory=dict, repr=False)


@dataclass
class SignResult:
    output_path: Path
    bundle_identifier: str
    signed_bundles: List[Path] = field(default_factory=list)
