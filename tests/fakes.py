"""Certificate, profile and bundle builders plus in-memory collaborators."""

import datetime
import plistlib
from pathlib import Path
from typing import Any, Dict, List, Optional

from asn1crypto import cms
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from reprovision.src.core.models import (
    Account,
    AppID,
    AppleAPISession,
    Certificate,
    Device,
    Team,
    TeamType,
)
from reprovision.src.ipa.application import Application, bundle_relative_path
from reprovision.src.ipa.provisioning_profile import parse_profile

MISSING_LDID = "reprovision-test-missing-ldid"
TEAM_ID = "TEAMID1234"


# Certificates


def make_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def make_certificate(
    common_name: str,
    key: rsa.RSAPrivateKey,
    issuer_key: Optional[rsa.RSAPrivateKey] = None,
    issuer_name: Optional[x509.Name] = None,
    is_ca: bool = False,
    serial_number: Optional[int] = None,
    days: int = 365,
) -> x509.Certificate:
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name or subject)
        .public_key(key.public_key())
        .serial_number(serial_number or x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        .sign(issuer_key or key, hashes.SHA256())
    )


def to_p12(key, cert, password: Optional[bytes] = None) -> bytes:
    encryption = (
        serialization.BestAvailableEncryption(password)
        if password
        else serialization.NoEncryption()
    )
    return pkcs12.serialize_key_and_certificates(
        name=b"test", key=key, cert=cert, cas=None, encryption_algorithm=encryption
    )


def make_developer_certificate(ca_key, ca_cert, p12: bool = True, serial_number: int = 0x1A2B3C) -> Certificate:
    key = make_key()
    cert = make_certificate(
        "Apple Development: dev@example.com",
        key,
        issuer_key=ca_key,
        issuer_name=ca_cert.subject,
        serial_number=serial_number,
    )
    return Certificate(
        identifier="CERT1",
        serial_number=format(serial_number, "X"),
        name="Apple Development: dev@example.com",
        expiration_date=cert.not_valid_after_utc,
        data=cert.public_bytes(serialization.Encoding.DER),
        p12_data=to_p12(key, cert) if p12 else None,
    )


# Provisioning profiles


def make_profile_bytes(
    bundle_identifier: str,
    team_id: str = TEAM_ID,
    devices: Optional[List[str]] = None,
    entitlements: Optional[Dict[str, Any]] = None,
    name: Optional[str] = None,
    uuid: str = "00000000-1111-2222-3333-444444444444",
) -> bytes:
    """A CMS signed-data envelope around a profile plist, like the real thing"""
    profile_entitlements = {
        "application-identifier": f"{team_id}.{bundle_identifier}",
        "com.apple.developer.team-identifier": team_id,
        "get-task-allow": True,
        "keychain-access-groups": [f"{team_id}.*"],
    }
    profile_entitlements.update(entitlements or {})

    plist = {
        "AppIDName": bundle_identifier,
        "ApplicationIdentifierPrefix": [team_id],
        "CreationDate": datetime.datetime(2024, 1, 1, 12, 0, 0),
        "ExpirationDate": datetime.datetime(2024, 1, 8, 12, 0, 0),
        "Entitlements": profile_entitlements,
        "Name": name or f"iOS Team Provisioning Profile: {bundle_identifier}",
        "ProvisionedDevices": list(devices or []),
        "TeamIdentifier": [team_id],
        "TeamName": "Test Team",
        "UUID": uuid,
        "Version": 1,
    }

    signed_data = cms.SignedData(
        {
            "version": "v1",
            "digest_algorithms": [],
            "encap_content_info": {
                "content_type": "data",
                "content": plistlib.dumps(plist, fmt=plistlib.FMT_XML),
            },
            "signer_infos": [],
        }
    )
    return cms.ContentInfo({"content_type": "signed_data", "content": signed_data}).dump()


def make_profile(bundle_identifier: str, **kwargs):
    return parse_profile(make_profile_bytes(bundle_identifier, **kwargs))


# App bundles


def make_bundle(path: Path, bundle_identifier: str, name: str = "Test") -> Path:
    path.mkdir(parents=True, exist_ok=True)
    info = {
        "CFBundleIdentifier": bundle_identifier,
        "CFBundleName": name,
        "CFBundleExecutable": name,
        "CFBundlePackageType": "APPL" if path.suffix == ".app" else "XPC!",
    }
    with open(path / "Info.plist", "wb") as f:
        plistlib.dump(info, f)
    (path / name).write_bytes(b"\xcf\xfa\xed\xfe" + name.encode())
    return path


def make_app(
    parent: Path,
    bundle_identifier: str = "com.example.app",
    extensions: Optional[List[str]] = None,
    name: str = "Test",
) -> Path:
    """An unpacked .app with one .appex under PlugIns/ per extension identifier"""
    app = make_bundle(parent / f"{name}.app", bundle_identifier, name)
    (app / "Assets.car").write_bytes(b"assets")
    for index, extension_id in enumerate(extensions or []):
        make_bundle(app / "PlugIns" / f"Extension{index}.appex", extension_id, f"Extension{index}")
    return app


# Collaborators


class FakeSigningEngine:
    """Writes a marker signature into every bundle instead of real code signatures"""

    def __init__(self, complete: bool = True, error: Optional[Exception] = None):
        self.complete = complete
        self.error = error
        self.calls: List[Path] = []
        self.identities: List[bytes] = []
        self.entitlements: Dict[str, Optional[str]] = {}
        self.progress: List[str] = []

    def sign(self, bundle_path, identity, entitlements_for, progress, completion):
        if self.error is not None:
            raise self.error
        self.calls.append(Path(bundle_path))
        self.identities.append(identity)

        app = Application(bundle_path, MISSING_LDID)
        for bundle in app.all_bundles():
            relative = bundle_relative_path(app.path, bundle.path)
            self.entitlements[relative] = entitlements_for(relative)
            signature_dir = bundle.path / "_CodeSignature"
            signature_dir.mkdir(exist_ok=True)
            (signature_dir / "CodeResources").write_bytes(b"signed")
            progress(relative)
            self.progress.append(relative)

        if self.complete:
            completion()


class FakeInstaller:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.installs: List[tuple] = []

    def install(self, signed_app_path, device):
        self.installs.append((Path(signed_app_path), device))
        if self.error is not None:
            raise self.error


class FakeRemoteAPI:
    """In-memory developer account; registrations persist across runs"""

    def __init__(self, teams=None, certificates=None, app_ids=None, devices=None, errors=None):
        self.teams = teams if teams is not None else [Team(TEAM_ID, "Test Team", TeamType.FREE)]
        self.certificates = list(certificates or [])
        self.app_ids = list(app_ids or [])
        self.devices = list(devices or [])
        self.errors: Dict[str, Exception] = dict(errors or {})
        self.calls: List[str] = []
        self.issued_certificate: Optional[Certificate] = None
        self.on_call = None

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.on_call is not None:
            self.on_call(name)
        if name in self.errors:
            raise self.errors[name]

    def authenticate(self, apple_id, password, anisette, verification_code=None):
        self._record("authenticate")
        return Account(apple_id, "123456"), AppleAPISession("123456", "token")

    def fetch_teams(self, account, session):
        self._record("fetch_teams")
        return list(self.teams)

    def fetch_certificates(self, team, session):
        self._record("fetch_certificates")
        return list(self.certificates)

    def add_certificate(self, machine_name, team, session):
        self._record("add_certificate")
        self.certificates.append(self.issued_certificate)
        return self.issued_certificate

    def fetch_app_ids(self, team, session):
        self._record("fetch_app_ids")
        return list(self.app_ids)

    def add_app_id(self, name, bundle_identifier, team, session):
        self._record("add_app_id")
        app_id = AppID(f"APPID{len(self.app_ids) + 1}", bundle_identifier, name)
        self.app_ids.append(app_id)
        return app_id

    def update_app_id(self, app_id, team, session):
        self._record("update_app_id")
        self.app_ids = [app_id if a.identifier == app_id.identifier else a for a in self.app_ids]
        return app_id

    def fetch_devices(self, team, session):
        self._record("fetch_devices")
        return list(self.devices)

    def register_device(self, name, identifier, team, session):
        self._record("register_device")
        device = Device(identifier, name)
        self.devices.append(device)
        return device

    def fetch_provisioning_profile(self, app_id, team, session):
        self._record("fetch_provisioning_profile")
        data = make_profile_bytes(
            app_id.bundle_identifier,
            team_id=team.identifier,
            devices=[d.identifier for d in self.devices],
        )
        return parse_profile(data, identifier=f"PROFILE-{app_id.identifier}")
