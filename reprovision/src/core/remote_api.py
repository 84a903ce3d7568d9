from typing import Any, List, Optional, Protocol, Tuple

from reprovision.src.core.models import (
    Account,
    AppID,
    AppleAPISession,
    Certificate,
    Device,
    ProvisioningProfile,
    Team,
)


class RemoteAPIClient(Protocol):
    """Developer account operations the provisioning pipeline depends on.

    Every call is blocking; the pipeline runs them on its worker pool.
    """

    def authenticate(
        self,
        apple_id: str,
        password: str,
        anisette: Any,
        verification_code: Optional[str] = None,
    ) -> Tuple[Account, AppleAPISession]: ...

    def fetch_teams(self, account: Account, session: AppleAPISession) -> List[Team]: ...

    def fetch_certificates(self, team: Team, session: AppleAPISession) -> List[Certificate]: ...

    def add_certificate(self, machine_name: str, team: Team, session: AppleAPISession) -> Certificate: ...

    def fetch_app_ids(self, team: Team, session: AppleAPISession) -> List[AppID]: ...

    def add_app_id(self, name: str, bundle_identifier: str, team: Team, session: AppleAPISession) -> AppID: ...

    def update_app_id(self, app_id: AppID, team: Team, session: AppleAPISession) -> AppID: ...

    def fetch_devices(self, team: Team, session: AppleAPISession) -> List[Device]: ...

    def register_device(self, name: str, identifier: str, team: Team, session: AppleAPISession) -> Device: ...

    def fetch_provisioning_profile(
        self, app_id: AppID, team: Team, session: AppleAPISession
    ) -> ProvisioningProfile: ...
