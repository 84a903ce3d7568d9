import asyncio
from concurrent.futures import Executor
from dataclasses import dataclass, field, replace
from enum import Enum
import functools
from pathlib import Path
import threading
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from reprovision.logger import get_console
from reprovision.src.apple.capability_mappings import features_for_entitlements
from reprovision.src.core.errors import NoTeamFound, PipelineCancelled
from reprovision.src.core.installer import DeviceInstaller
from reprovision.src.core.models import (
    Account,
    AppID,
    AppleAPISession,
    Certificate,
    Device,
    ProvisioningProfile,
    SignResult,
    Team,
)
from reprovision.src.core.remote_api import RemoteAPIClient
from reprovision.src.core.signer import AppSigner
from reprovision.src.core.signing_identity import build_signing_identity
from reprovision.src.core.trust_store import TrustStore
from reprovision.src.ipa.application import BundleInfo, inspect_app
from reprovision.src.ipa.archiver import Archiver

console = get_console()


class Stage(Enum):
    AUTHENTICATE = "Authenticate"
    FETCH_TEAM = "FetchTeam"
    FETCH_CERTIFICATE = "FetchOrCreateCertificate"
    REGISTER_APP_ID = "RegisterAppID"
    REGISTER_DEVICE = "RegisterDevice"
    FETCH_PROFILE = "FetchProvisioningProfile"
    SIGN = "Sign"
    INSTALL = "Install"
    DONE = "Done"


@dataclass
class InstallRequest:
    """Everything one provisioning run needs from its caller"""

    app_path: Path
    device: Device
    apple_id: str
    password: str = field(repr=False)
    verification_code: Optional[str] = field(default=None, repr=False)
    # A previously issued certificate that still has its private key
    certificate: Optional[Certificate] = None


@dataclass
class PipelineState:
    """Outputs of each completed stage of a single run"""

    request: InstallRequest
    account: Optional[Account] = None
    session: Optional[AppleAPISession] = None
    team: Optional[Team] = None
    certificate: Optional[Certificate] = None
    bundles: List[BundleInfo] = field(default_factory=list)
    app_ids: List[AppID] = field(default_factory=list)
    device: Optional[Device] = None
    profiles: List[ProvisioningProfile] = field(default_factory=list)
    sign_result: Optional[SignResult] = None


@dataclass
class PipelineResult:
    stage: Stage  # Stage.DONE on success, otherwise the stage that failed
    error: Optional[Exception]
    state: PipelineState

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ProvisioningPipeline:
    """Provision, sign and install one app on one device.

    Stages run strictly in order, each on the shared executor so the event
    loop is free for other runs. The first failure ends the run; nothing is
    retried and nothing is carried over from a previous run.
    """

    def __init__(
        self,
        client: RemoteAPIClient,
        signer: AppSigner,
        installer: DeviceInstaller,
        trust_store: TrustStore,
        anisette: Any = None,
        executor: Optional[Executor] = None,
        archiver: Optional[Archiver] = None,
        ldid: str = "ldid",
        machine_name: str = "reprovision",
    ):
        self.client = client
        self.signer = signer
        self.installer = installer
        self.trust_store = trust_store
        self.anisette = anisette
        self.executor = executor
        self.archiver = archiver or Archiver()
        self.ldid = ldid
        self.machine_name = machine_name
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop the run at the next stage boundary"""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def _call(self, func: Callable, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, functools.partial(func, *args))

    def _stages(self) -> List[Tuple[Stage, Callable[[PipelineState], Awaitable[None]]]]:
        return [
            (Stage.AUTHENTICATE, self._authenticate),
            (Stage.FETCH_TEAM, self._fetch_team),
            (Stage.FETCH_CERTIFICATE, self._fetch_certificate),
            (Stage.REGISTER_APP_ID, self._register_app_ids),
            (Stage.REGISTER_DEVICE, self._register_device),
            (Stage.FETCH_PROFILE, self._fetch_profiles),
            (Stage.SIGN, self._sign),
            (Stage.INSTALL, self._install),
        ]

    async def run(self, request: InstallRequest) -> PipelineResult:
        state = PipelineState(request=request)
        stage = Stage.AUTHENTICATE

        try:
            for stage, step in self._stages():
                if self.cancelled:
                    raise PipelineCancelled(stage.value)
                console.log(f"[blue]{stage.value}[/]")
                await step(state)
        except Exception as e:
            # Every failure is terminal for the run and reported, not raised
            console.print(f"[red]{stage.value} failed:[/] {e}")
            return PipelineResult(stage, e, state)

        console.print(f"[green]Installed {state.sign_result.bundle_identifier} on {state.device.name}[/]")
        return PipelineResult(Stage.DONE, None, state)

    async def _authenticate(self, state: PipelineState) -> None:
        request = state.request
        state.account, state.session = await self._call(
            self.client.authenticate,
            request.apple_id,
            request.password,
            self.anisette,
            request.verification_code,
        )

    async def _fetch_team(self, state: PipelineState) -> None:
        teams = await self._call(self.client.fetch_teams, state.account, state.session)
        if not teams:
            raise NoTeamFound(state.account.apple_id)
        state.team = teams[0]
        console.log(f"[green]Using team[/] {state.team.name} [dim]({state.team.identifier})[/]")

    async def _fetch_certificate(self, state: PipelineState) -> None:
        certificates = await self._call(self.client.fetch_certificates, state.team, state.session)
        active = [c for c in certificates if not c.is_expired()]

        local = state.request.certificate
        if local is not None and local.has_private_key and not local.is_expired():
            if any(c.serial_number == local.serial_number for c in active):
                console.log(f"[yellow]Reusing certificate[/] {local.serial_number}")
                state.certificate = local
                return

        for certificate in active:
            if certificate.has_private_key:
                console.log(f"[yellow]Reusing certificate[/] {certificate.serial_number}")
                state.certificate = certificate
                return

        # Raises CertificateLimitReached when the team has no free slot
        state.certificate = await self._call(
            self.client.add_certificate, self.machine_name, state.team, state.session
        )

    async def _register_app_ids(self, state: PipelineState) -> None:
        state.bundles = await self._call(inspect_app, state.request.app_path, self.archiver, self.ldid)
        existing = {
            app_id.bundle_identifier: app_id
            for app_id in await self._call(self.client.fetch_app_ids, state.team, state.session)
        }

        for bundle in state.bundles:
            app_id = existing.get(bundle.bundle_identifier)
            if app_id is not None:
                # Registered App IDs are used as they are
                console.log(f"[yellow]App ID already registered:[/] {bundle.bundle_identifier}")
                state.app_ids.append(app_id)
                continue

            app_id = await self._call(
                self.client.add_app_id, bundle.name, bundle.bundle_identifier, state.team, state.session
            )
            required = features_for_entitlements(bundle.entitlements)
            if required:
                app_id = replace(app_id, features={**app_id.features, **required})
                app_id = await self._call(self.client.update_app_id, app_id, state.team, state.session)

            state.app_ids.append(app_id)

    async def _register_device(self, state: PipelineState) -> None:
        device = state.request.device
        devices = await self._call(self.client.fetch_devices, state.team, state.session)

        for registered in devices:
            if registered.identifier.lower() == device.identifier.lower():
                console.log(f"[yellow]Device already registered:[/] {registered.name}")
                state.device = registered
                return

        state.device = await self._call(
            self.client.register_device, device.name, device.identifier, state.team, state.session
        )

    async def _fetch_profiles(self, state: PipelineState) -> None:
        # Always fresh: a profile must list the device registered above
        for app_id in state.app_ids:
            profile = await self._call(
                self.client.fetch_provisioning_profile, app_id, state.team, state.session
            )
            state.profiles.append(profile)

    async def _sign(self, state: PipelineState) -> None:
        identity = await self._call(build_signing_identity, state.certificate, self.trust_store)
        state.sign_result = await self._call(
            self.signer.sign, state.request.app_path, state.profiles, identity
        )

    async def _install(self, state: PipelineState) -> None:
        await self._call(self.installer.install, state.sign_result.output_path, state.device)
