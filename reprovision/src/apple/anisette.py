import base64
from datetime import datetime, timezone
import uuid
from typing import Dict, Optional

import requests

from reprovision.logger import get_console
from reprovision.src.core.errors import AnisetteError
from reprovision.src.utils.config_loader import DEFAULT_ANISETTE_URL

console = get_console()


class AnisetteProvider:
    """Fetches machine provisioning headers (X-Apple-I-MD*) from an anisette server.

    Any server speaking the omnisette protocol works, for example:
        docker run -d -p 6969:80 ghcr.io/sidestore/omnisette-server:latest
    """

    def __init__(self, server_url: str = DEFAULT_ANISETTE_URL, session: Optional[requests.Session] = None):
        self.server_url = server_url.rstrip("/")
        self.session = session or requests.Session()
        # Stable for the lifetime of the provider so every request looks like one machine
        self.device_id = str(uuid.uuid4()).upper()
        self.local_user_id = str(uuid.uuid4()).upper()

    def fetch(self) -> Dict[str, str]:
        try:
            response = self.session.get(self.server_url, timeout=10)
            response.raise_for_status()
            data = response.json()
        except requests.ConnectionError as e:
            raise AnisetteError(f"Cannot connect to anisette server at {self.server_url}") from e
        except (requests.RequestException, ValueError) as e:
            raise AnisetteError(f"Anisette fetch from {self.server_url} failed: {e}") from e

        missing = [key for key in ("X-Apple-I-MD", "X-Apple-I-MD-M") if key not in data]
        if missing:
            raise AnisetteError(f"Anisette server response is missing {', '.join(missing)}")
        console.log(f"[dim]Fetched anisette data from {self.server_url}[/]")
        return data

    def headers(self) -> Dict[str, str]:
        """Full set of client headers expected by Apple's authentication services"""
        anisette = self.fetch()
        now = datetime.now(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")

        return {
            "X-Apple-I-Client-Time": now,
            "X-Apple-I-TimeZone": "UTC",
            "X-Apple-Locale": "en_US",
            "X-Apple-I-MD": anisette["X-Apple-I-MD"],
            "X-Apple-I-MD-M": anisette["X-Apple-I-MD-M"],
            "X-Apple-I-MD-LU": base64.b64encode(self.local_user_id.encode()).decode(),
            "X-Apple-I-MD-RINFO": anisette.get("X-Apple-I-MD-RINFO", "17106176"),
            "X-Apple-I-SRL-NO": anisette.get("X-Apple-I-SRL-NO", "0"),
            "X-Mme-Device-Id": self.device_id,
        }

    def client_provided_data(self) -> Dict[str, object]:
        """Headers plus the flags GrandSlam expects in a request's cpd dict"""
        cpd: Dict[str, object] = dict(self.headers())
        cpd.update(
            {
                "bootstrap": True,
                "icscrec": True,
                "pbe": False,
                "prkgen": True,
                "svct": "iCloud",
                "loc": "en_US",
            }
        )
        return cpd

    def check_server(self) -> bool:
        try:
            return self.session.get(self.server_url, timeout=3).status_code == 200
        except requests.RequestException:
            return False
