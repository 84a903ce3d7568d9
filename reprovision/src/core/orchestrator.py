from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Optional

from reprovision.logger import get_console
from reprovision.src.apple.anisette import AnisetteProvider
from reprovision.src.apple.developer_services_api import DeveloperServicesAPI
from reprovision.src.core.installer import DeviceInstaller, IDeviceInstaller
from reprovision.src.core.pipeline import InstallRequest, PipelineResult, ProvisioningPipeline
from reprovision.src.core.remote_api import RemoteAPIClient
from reprovision.src.core.signer import AppSigner
from reprovision.src.core.signing_engine import LdidSigningEngine, SigningEngine
from reprovision.src.core.trust_store import TrustStore
from reprovision.src.ipa.archiver import Archiver
from reprovision.src.utils.config_loader import (
    get_anisette_url,
    get_settle_timeout,
    get_tool_path,
    get_trust_anchor_path,
)

console = get_console()


class SideloadServer:
    """Owns what provisioning runs share: the worker pool and the trust store.

    Collaborators default to the real adapters built from configuration and
    can all be injected. Each call to :meth:`install_app` gets its own
    pipeline, so runs never see each other's state.
    """

    def __init__(
        self,
        client: Optional[RemoteAPIClient] = None,
        installer: Optional[DeviceInstaller] = None,
        engine: Optional[SigningEngine] = None,
        trust_store: Optional[TrustStore] = None,
        trust_anchor: Optional[Path] = None,
        anisette: Any = None,
        settle_timeout: Optional[float] = None,
        max_workers: int = 4,
        ldid: Optional[str] = None,
    ):
        self.ldid = ldid or get_tool_path("ldid")
        self.client = client
        self.installer = installer
        self.engine = engine
        self.anisette = anisette
        self.settle_timeout = get_settle_timeout() if settle_timeout is None else settle_timeout
        self.max_workers = max_workers
        self.trust_anchor = trust_anchor
        self.archiver = Archiver()
        self._trust_store = trust_store
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def running(self) -> bool:
        return self._executor is not None

    @property
    def trust_store(self) -> Optional[TrustStore]:
        return self._trust_store

    def start(self) -> None:
        if self.running:
            return

        if self._trust_store is None:
            # Raises MissingTrustAnchor, so a misconfigured server never starts
            self._trust_store = TrustStore.from_pem_file(self.trust_anchor or get_trust_anchor_path())

        if self.client is None:
            self.client = DeveloperServicesAPI()
        if self.anisette is None:
            self.anisette = AnisetteProvider(get_anisette_url())
        if self.installer is None:
            self.installer = IDeviceInstaller(get_tool_path("ideviceinstaller"))
        if self.engine is None:
            self.engine = LdidSigningEngine(self.ldid)

        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="reprovision")
        console.log(f"[green]Sideload server started[/] [dim]({self.max_workers} workers)[/]")

    def stop(self) -> None:
        if not self.running:
            return
        self._executor.shutdown(wait=True)
        self._executor = None
        console.log("[green]Sideload server stopped[/]")

    def __enter__(self) -> "SideloadServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def create_pipeline(self) -> ProvisioningPipeline:
        if not self.running:
            raise RuntimeError("SideloadServer is not started")

        signer = AppSigner(self.engine, self.archiver, self.settle_timeout, self.ldid)
        return ProvisioningPipeline(
            client=self.client,
            signer=signer,
            installer=self.installer,
            trust_store=self._trust_store,
            anisette=self.anisette,
            executor=self._executor,
            archiver=self.archiver,
            ldid=self.ldid,
        )

    async def install_app(self, request: InstallRequest) -> PipelineResult:
        console.print(f"[blue]Installing[/] {Path(request.app_path).name} on {request.device.name}")
        return await self.create_pipeline().run(request)
