import base64
import hashlib
import hmac
import plistlib
from typing import Any, Dict, Optional, Tuple

import requests
import srp
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from reprovision.logger import get_console
from reprovision.src.apple.anisette import AnisetteProvider
from reprovision.src.core.errors import (
    AuthenticationRequiresTwoFactor,
    InvalidCredentials,
    RemoteAPIError,
)
from reprovision.src.core.models import Account, AppleAPISession

console = get_console()

GSA_URL = "https://gsa.apple.com/grandslam/GsService2"
TRUSTED_DEVICE_URL = "https://gsa.apple.com/auth/verify/trusteddevice"
VALIDATE_URL = "https://gsa.apple.com/grandslam/GsService2/validate"

XCODE_APP_ID = "com.apple.gs.xcode.auth"
XCODE_VERSION = "15.2 (15C500b)"
CLIENT_INFO = (
    "<MacBookPro15,1> <Mac OS X;13.5;22G74> "
    "<com.apple.AuthKit/1 (com.apple.dt.Xcode/3594.4.19)>"
)
USER_AGENT = "akd/1.0 CFNetwork/1494 Darwin/23.4.0"

# GrandSlam status codes
INVALID_CREDENTIALS = -20101
ACCOUNT_LOCKED = -22406
SECONDARY_AUTH = ("trustedDeviceSecondaryAuth", "secondaryAuth")


class SrpPassword:
    """Password wrapper that derives the SRP secret once the salt is known"""

    def __init__(self, password: str):
        if not isinstance(password, str):
            raise ValueError("Password must be a string")
        self.password = password
        self.protocol = "s2k"

    def set_encrypt_info(self, salt: bytes, iterations: int, key_length: int, protocol: str = "s2k"):
        self.salt = salt
        self.iterations = iterations
        self.key_length = key_length
        self.protocol = protocol

    def encode(self):
        password_hash = hashlib.sha256(self.password.encode("utf-8")).digest()
        if self.protocol == "s2k_fo":
            password_hash = password_hash.hex().encode()
        return hashlib.pbkdf2_hmac(
            "sha256",
            password_hash,
            self.salt,
            self.iterations,
            self.key_length,
        )


def _parse_plist(data: bytes) -> Dict[str, Any]:
    """Parse a GrandSlam plist, some of which arrive as a bare <dict>"""
    stripped = data.strip(b"\x00").strip()
    if stripped.startswith(b"<dict>"):
        stripped = (
            b'<?xml version="1.0" encoding="UTF-8"?>\n<plist version="1.0">\n'
            + stripped
            + b"\n</plist>"
        )
    return plistlib.loads(stripped)


def _extra_data_key(session_key: bytes) -> Tuple[bytes, bytes]:
    key = hmac.new(session_key, b"extra data key:", hashlib.sha256).digest()
    iv = hmac.new(session_key, b"extra data iv:", hashlib.sha256).digest()
    return key, iv


def decrypt_server_data(session_key: bytes, data: bytes, encryption_type: int = 2) -> bytes:
    """Decrypt the spd blob, AES-CBC for older accounts and AES-GCM for newer ones"""
    key, iv = _extra_data_key(session_key)
    if encryption_type == 4:
        return AESGCM(key).decrypt(iv[:12], data, None)

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv[:16])).decryptor()
    decrypted = decryptor.update(data) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    return unpadder.update(decrypted) + unpadder.finalize()


def decrypt_app_token(key: bytes, data: bytes) -> bytes:
    # 3 byte header, 16 byte nonce, then ciphertext and tag
    header, nonce, ciphertext = data[:3], data[3:19], data[19:]
    return AESGCM(key).decrypt(nonce, ciphertext, header)


class GrandSlamAuth:
    """Apple ID login through GrandSlam (GSA) using SRP-6a.

    Produces the Xcode app token used by the developer services API.
    Credentials are only held in memory for the duration of a login.
    """

    def __init__(self, anisette: AnisetteProvider, session: Optional[requests.Session] = None):
        self.anisette = anisette
        self.session = session or requests.Session()

    def _request(self, params: Dict[str, Any], timeout: int = 30) -> Dict[str, Any]:
        body = {
            "Header": {"Version": "1.0.1"},
            "Request": {"cpd": self.anisette.client_provided_data()},
        }
        body["Request"].update(params)

        headers = {
            "Content-Type": "text/x-xml-plist",
            "Accept": "text/x-xml-plist",
            "User-Agent": USER_AGENT,
            "X-MMe-Client-Info": CLIENT_INFO,
        }
        operation = params.get("o", "request")
        try:
            response = self.session.post(
                GSA_URL,
                headers=headers,
                data=plistlib.dumps(body, fmt=plistlib.FMT_XML),
                timeout=timeout,
            )
            parsed = plistlib.loads(response.content)
        except requests.RequestException as e:
            raise RemoteAPIError(f"gsa.{operation}", str(e)) from e
        except plistlib.InvalidFileException as e:
            raise RemoteAPIError(
                f"gsa.{operation}", f"non-plist response (HTTP {response.status_code})"
            ) from e
        return parsed.get("Response", parsed)

    def _check_status(self, apple_id: str, operation: str, response: Dict[str, Any]) -> Dict[str, Any]:
        status = response.get("Status", {})
        ec = status.get("ec", -1)
        if ec == 0:
            return status
        message = status.get("em", "Unknown error")
        if ec == INVALID_CREDENTIALS:
            raise InvalidCredentials(apple_id)
        if ec == ACCOUNT_LOCKED:
            raise InvalidCredentials(apple_id, "account locked for security reasons")
        raise RemoteAPIError(f"gsa.{operation}", message, ec)

    def _login(self, apple_id: str, password: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Run the SRP exchange and return (status, decrypted server data)"""
        srp_password = SrpPassword(password)
        srp.rfc5054_enable()
        srp.no_username_in_x()
        usr = srp.User(apple_id, srp_password, hash_alg=srp.SHA256, ng_type=srp.NG_2048)
        _, A = usr.start_authentication()

        console.print(f"[blue]Signing in as[/] {apple_id}")
        init = self._request({"A2k": A, "ps": ["s2k", "s2k_fo"], "u": apple_id, "o": "init"})
        self._check_status(apple_id, "init", init)

        srp_password.set_encrypt_info(init["s"], init["i"], 32, init.get("sp", "s2k"))
        m1 = usr.process_challenge(init["s"], init["B"])
        if m1 is None:
            raise InvalidCredentials(apple_id, "SRP challenge rejected")

        complete = self._request({"c": init["c"], "M1": m1, "u": apple_id, "o": "complete"})
        status = self._check_status(apple_id, "complete", complete)

        usr.verify_session(complete["M2"])
        if not usr.authenticated():
            raise InvalidCredentials(apple_id, "server proof did not verify")

        spd_bytes = decrypt_server_data(usr.get_session_key(), complete["spd"], complete.get("et", 2))
        return status, _parse_plist(spd_bytes)

    def _identity_headers(self, spd: Dict[str, Any]) -> Dict[str, str]:
        identity = base64.b64encode(f"{spd['adsid']}:{spd['GsIdmsToken']}".encode()).decode()
        headers = {
            "Content-Type": "text/x-xml-plist",
            "User-Agent": "Xcode",
            "Accept": "text/x-xml-plist",
            "Accept-Language": "en-us",
            "X-Apple-Identity-Token": identity,
            "X-Apple-App-Info": XCODE_APP_ID,
            "X-Xcode-Version": XCODE_VERSION,
            "X-Mme-Client-Info": CLIENT_INFO,
        }
        headers.update(self.anisette.headers())
        return headers

    def request_verification_code(self, spd: Dict[str, Any]) -> None:
        """Push a verification code to the account's trusted devices"""
        try:
            self.session.get(TRUSTED_DEVICE_URL, headers=self._identity_headers(spd), timeout=15)
        except requests.RequestException as e:
            raise RemoteAPIError("gsa.trusteddevice", str(e)) from e
        console.print("[yellow]A verification code was sent to your trusted devices[/]")

    def submit_verification_code(self, apple_id: str, spd: Dict[str, Any], code: str) -> None:
        headers = self._identity_headers(spd)
        headers["security-code"] = code.strip()
        try:
            response = self.session.get(VALIDATE_URL, headers=headers, timeout=15)
        except requests.RequestException as e:
            raise RemoteAPIError("gsa.validate", str(e)) from e

        try:
            result = plistlib.loads(response.content)
        except plistlib.InvalidFileException:
            result = {"ec": 0 if response.status_code in (200, 204) else response.status_code}

        if result.get("ec", -1) != 0:
            raise InvalidCredentials(apple_id, "verification code rejected")
        console.print("[green]Verification code accepted[/]")

    def fetch_xcode_token(self, spd: Dict[str, Any]) -> str:
        session_key, cookie = spd.get("sk"), spd.get("c")
        if not session_key or not cookie:
            raise RemoteAPIError("gsa.apptokens", "login response had no session key")

        checksum = hmac.new(session_key, b"", hashlib.sha256)
        for part in (b"apptokens", spd["adsid"].encode(), XCODE_APP_ID.encode()):
            checksum.update(part)

        response = self._request(
            {
                "u": spd["adsid"],
                "app": [XCODE_APP_ID],
                "c": cookie,
                "t": spd["GsIdmsToken"],
                "checksum": checksum.digest(),
                "o": "apptokens",
            },
            timeout=45,
        )
        status = response.get("Status", {})
        if status.get("ec", -1) != 0:
            raise RemoteAPIError("gsa.apptokens", status.get("em", "Unknown error"), status.get("ec"))
        if not response.get("et"):
            raise RemoteAPIError("gsa.apptokens", "no encrypted token in response")

        tokens = _parse_plist(decrypt_app_token(session_key, response["et"]))
        token = tokens.get("t", {}).get(XCODE_APP_ID, {}).get("token")
        if not token:
            raise RemoteAPIError("gsa.apptokens", "Xcode token missing from response")
        return token.decode("utf-8") if isinstance(token, bytes) else token

    def authenticate(
        self, apple_id: str, password: str, verification_code: Optional[str] = None
    ) -> Tuple[Account, AppleAPISession]:
        """Sign in and return the account with a developer services session.

        Raises AuthenticationRequiresTwoFactor after pushing a code to the
        trusted devices when one is needed and ``verification_code`` is not
        given; call again with the code to finish.
        """
        if not apple_id or not password:
            raise InvalidCredentials(apple_id or "", "Apple ID and password are required")

        status, spd = self._login(apple_id, password)

        if status.get("au") in SECONDARY_AUTH:
            if not verification_code:
                self.request_verification_code(spd)
                raise AuthenticationRequiresTwoFactor(apple_id)
            self.submit_verification_code(apple_id, spd, verification_code)
            # A fresh login picks up the now trusted session
            status, spd = self._login(apple_id, password)

        token = self.fetch_xcode_token(spd)
        console.print(f"[green]Authenticated as[/] {apple_id}")

        account = Account(
            apple_id=apple_id,
            identifier=spd["adsid"],
            first_name=spd.get("fn", ""),
            last_name=spd.get("ln", ""),
        )
        session = AppleAPISession(dsid=spd["adsid"], auth_token=token, anisette=self.anisette.headers())
        return account, session
