import base64
import plistlib
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from reprovision.logger import get_console
from reprovision.src.apple.account_login import CLIENT_INFO, XCODE_APP_ID, XCODE_VERSION, GrandSlamAuth
from reprovision.src.apple.anisette import AnisetteProvider
from reprovision.src.core.errors import CertificateLimitReached, RemoteAPIError
from reprovision.src.core.models import (
    Account,
    AppID,
    AppleAPISession,
    Certificate,
    Device,
    DeviceType,
    ProvisioningProfile,
    Team,
    TeamType,
)
from reprovision.src.core.signing_identity import pair_key_with_certificate
from reprovision.src.ipa.provisioning_profile import ProfileDecodeError, parse_profile

console = get_console()

SERVICES_URL = "https://developerservices2.apple.com/services"
PROTOCOL_VERSION = "QH65B2"
CLIENT_ID = "XABBG36SBA"

# Result codes reported in developer services responses
CERTIFICATE_LIMIT_CODES = {7460}

DEVICE_CLASSES = {
    "iphone": DeviceType.IPHONE,
    "ipad": DeviceType.IPAD,
    "tvos": DeviceType.APPLE_TV,
}


def _as_bytes(value: Any) -> Optional[bytes]:
    """Plist <data> arrives as bytes, but some responses base64 encode it as a string"""
    if not value:
        return None
    if isinstance(value, bytes):
        return value
    try:
        return base64.b64decode(value)
    except ValueError:
        return None


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def team_type_from_response(team: Dict[str, Any]) -> TeamType:
    team_type = team.get("type", "")
    if team_type == "Company/Organization":
        return TeamType.ORGANIZATION
    if team_type == "Individual":
        memberships = team.get("memberships", [])
        if any("free" in m.get("name", "").lower() for m in memberships) or not memberships:
            return TeamType.FREE
        return TeamType.INDIVIDUAL
    return TeamType.UNKNOWN


def generate_csr() -> Tuple[rsa.RSAPrivateKey, str]:
    """RSA-2048 key pair and a PEM certificate signing request for it"""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([]))
        .sign(private_key, hashes.SHA256())
    )
    return private_key, csr.public_bytes(serialization.Encoding.PEM).decode()


class DeveloperServicesAPI:
    """Xcode's developer services API (plist actions under QH65B2).

    Works with free, individual and organization teams using the app token
    obtained by :class:`GrandSlamAuth`.
    """

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def _request(
        self,
        action: str,
        session: AppleAPISession,
        params: Optional[Dict[str, Any]] = None,
        platform: Optional[str] = "ios",
    ) -> Dict[str, Any]:
        body = {
            "clientId": CLIENT_ID,
            "protocolVersion": PROTOCOL_VERSION,
            "requestId": str(uuid.uuid4()).upper(),
            "userLocale": ["en_US"],
        }
        if params:
            body.update(params)

        path = f"{platform}/{action}" if platform else action
        url = f"{SERVICES_URL}/{PROTOCOL_VERSION}/{path}.action?clientId={CLIENT_ID}"

        headers = {
            "Content-Type": "text/x-xml-plist",
            "Accept": "text/x-xml-plist",
            "Accept-Language": "en-us",
            "User-Agent": "Xcode",
            "X-Apple-I-Identity-Id": session.dsid,
            "X-Apple-GS-Token": session.auth_token,
            "X-Xcode-Version": XCODE_VERSION,
            "X-Apple-App-Info": XCODE_APP_ID,
            "X-MMe-Client-Info": CLIENT_INFO,
        }
        headers.update(session.anisette)

        try:
            response = self.session.post(
                url, headers=headers, data=plistlib.dumps(body, fmt=plistlib.FMT_XML), timeout=45
            )
            result = plistlib.loads(response.content)
        except requests.RequestException as e:
            raise RemoteAPIError(action, str(e)) from e
        except plistlib.InvalidFileException as e:
            raise RemoteAPIError(action, f"non-plist response (HTTP {response.status_code})") from e

        code = result.get("resultCode", 0)
        if code != 0:
            message = result.get("userString") or result.get("resultString") or "Unknown error"
            raise RemoteAPIError(action, message, code)
        return result

    # Account

    def authenticate(
        self,
        apple_id: str,
        password: str,
        anisette: AnisetteProvider,
        verification_code: Optional[str] = None,
    ) -> Tuple[Account, AppleAPISession]:
        return GrandSlamAuth(anisette, self.session).authenticate(apple_id, password, verification_code)

    def fetch_teams(self, account: Account, session: AppleAPISession) -> List[Team]:
        console.print("[blue]Fetching teams...")
        result = self._request("listTeams", session, platform=None)
        teams = [
            Team(
                identifier=team["teamId"],
                name=team.get("name", ""),
                type=team_type_from_response(team),
            )
            for team in result.get("teams", [])
        ]
        console.print(f"[green]Found {len(teams)} teams")
        return teams

    # Certificates

    def _certificate_from_response(self, cert: Dict[str, Any]) -> Certificate:
        return Certificate(
            identifier=cert.get("certificateId", ""),
            serial_number=cert.get("serialNumber") or cert.get("serialNum", ""),
            name=cert.get("name", ""),
            machine_name=cert.get("machineName"),
            machine_identifier=cert.get("machineId"),
            expiration_date=_as_datetime(cert.get("expirationDate")),
            data=_as_bytes(cert.get("certContent")),
        )

    def fetch_certificates(self, team: Team, session: AppleAPISession) -> List[Certificate]:
        console.print(f"[blue]Fetching certificates for team {team.identifier}...")
        result = self._request("listAllDevelopmentCerts", session, {"teamId": team.identifier})
        certificates = [self._certificate_from_response(c) for c in result.get("certificates", [])]
        console.print(f"[green]Found {len(certificates)} certificates")
        return certificates

    def add_certificate(self, machine_name: str, team: Team, session: AppleAPISession) -> Certificate:
        """Issue a development certificate for a freshly generated key"""
        private_key, csr_pem = generate_csr()
        console.print(f"[blue]Requesting development certificate for {machine_name}...")

        try:
            result = self._request(
                "submitDevelopmentCSR",
                session,
                {
                    "teamId": team.identifier,
                    "machineId": str(uuid.uuid4()).upper(),
                    "machineName": machine_name,
                    "csrContent": csr_pem,
                },
            )
        except RemoteAPIError as e:
            if e.code in CERTIFICATE_LIMIT_CODES or "maximum" in e.message.lower():
                raise CertificateLimitReached(team.identifier) from e
            raise

        request = result.get("certRequest", {})
        certificate = self._certificate_from_response(request)
        if not certificate.data:
            certificate = self._find_issued_certificate(private_key, request, team, session)

        key_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        certificate.p12_data = pair_key_with_certificate(key_pem, certificate.data)
        certificate.machine_name = certificate.machine_name or machine_name
        console.print(f"[green]Issued certificate {certificate.serial_number}")
        return certificate

    def _find_issued_certificate(
        self,
        private_key: rsa.RSAPrivateKey,
        request: Dict[str, Any],
        team: Team,
        session: AppleAPISession,
    ) -> Certificate:
        """Look the new certificate up by serial number, then by public key"""
        serial = request.get("serialNum") or request.get("serialNumber")
        public_key = private_key.public_key().public_bytes(
            serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        for certificate in self.fetch_certificates(team, session):
            if not certificate.data:
                continue
            if serial and certificate.serial_number == serial:
                return certificate
            issued = x509.load_der_x509_certificate(certificate.data)
            issued_key = issued.public_key().public_bytes(
                serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
            )
            if issued_key == public_key:
                return certificate
        raise RemoteAPIError("submitDevelopmentCSR", "issued certificate not found in team")

    # App IDs

    def _app_id_from_response(self, app_id: Dict[str, Any]) -> AppID:
        return AppID(
            identifier=app_id.get("appIdId", ""),
            bundle_identifier=app_id.get("identifier", ""),
            name=app_id.get("name", ""),
            features=dict(app_id.get("features", {})),
            expiration_date=_as_datetime(app_id.get("expirationDate")),
        )

    def fetch_app_ids(self, team: Team, session: AppleAPISession) -> List[AppID]:
        console.print(f"[blue]Fetching App IDs for team {team.identifier}...")
        result = self._request("listAppIds", session, {"teamId": team.identifier})
        return [self._app_id_from_response(a) for a in result.get("appIds", [])]

    def add_app_id(self, name: str, bundle_identifier: str, team: Team, session: AppleAPISession) -> AppID:
        console.print(f"[blue]Registering App ID {bundle_identifier}...")
        # App ID names only allow alphanumerics and spaces
        clean_name = "".join(c for c in name if c.isalnum() or c == " ").strip() or "App"
        result = self._request(
            "addAppId",
            session,
            {"teamId": team.identifier, "identifier": bundle_identifier, "name": clean_name},
        )
        app_id = self._app_id_from_response(result.get("appId", {}))
        console.print(f"[green]Registered App ID {app_id.bundle_identifier}")
        return app_id

    def update_app_id(self, app_id: AppID, team: Team, session: AppleAPISession) -> AppID:
        console.print(f"[blue]Updating features of App ID {app_id.bundle_identifier}...")
        params = {"teamId": team.identifier, "appIdId": app_id.identifier}
        params.update(app_id.features)
        result = self._request("updateAppId", session, params)
        return self._app_id_from_response(result.get("appId", {}))

    # Devices

    def fetch_devices(self, team: Team, session: AppleAPISession) -> List[Device]:
        result = self._request("listDevices", session, {"teamId": team.identifier})
        return [
            Device(
                identifier=device.get("deviceNumber", ""),
                name=device.get("name", ""),
                type=DEVICE_CLASSES.get(device.get("deviceClass", "").lower(), DeviceType.UNKNOWN),
            )
            for device in result.get("devices", [])
        ]

    def register_device(self, name: str, identifier: str, team: Team, session: AppleAPISession) -> Device:
        console.print(f"[blue]Registering device {name} [dim]({identifier})[/]")
        result = self._request(
            "addDevice",
            session,
            {"teamId": team.identifier, "deviceNumber": identifier, "name": name},
        )
        device = result.get("device", {})
        return Device(
            identifier=device.get("deviceNumber", identifier),
            name=device.get("name", name),
            type=DEVICE_CLASSES.get(device.get("deviceClass", "").lower(), DeviceType.IPHONE),
        )

    # Provisioning profiles

    def fetch_provisioning_profile(
        self, app_id: AppID, team: Team, session: AppleAPISession
    ) -> ProvisioningProfile:
        console.print(f"[blue]Downloading provisioning profile for {app_id.bundle_identifier}...")
        result = self._request(
            "downloadTeamProvisioningProfile",
            session,
            {"teamId": team.identifier, "appIdId": app_id.identifier},
        )
        profile = result.get("provisioningProfile", {})
        data = _as_bytes(profile.get("encodedProfile"))
        if not data:
            raise RemoteAPIError("downloadTeamProvisioningProfile", "response had no profile data")

        try:
            return parse_profile(data, identifier=profile.get("provisioningProfileId"))
        except ProfileDecodeError as e:
            raise RemoteAPIError("downloadTeamProvisioningProfile", str(e)) from e
