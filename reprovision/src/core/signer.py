import os
from pathlib import Path
import shutil
import threading
import uuid
from typing import Dict, Iterable, List, Optional

from reprovision.logger import get_console
from reprovision.src.core.errors import (
    ArchiveError,
    MissingProvisioningProfile,
    RepackageError,
)
from reprovision.src.core.models import ProvisioningProfile, SignResult
from reprovision.src.core.signing_engine import EntitlementsLookup, SigningEngine
from reprovision.src.ipa.application import Application
from reprovision.src.ipa.archiver import Archiver, is_archive
from reprovision.src.ipa.provisioning_profile import entitlements_xml

EMBEDDED_PROFILE_NAME = "embedded.mobileprovision"


def profile_for_bundle(
    app: Application, profiles: Iterable[ProvisioningProfile]
) -> ProvisioningProfile:
    """Find the profile whose bundle identifier exactly matches the app's"""
    for profile in profiles:
        if profile.bundle_identifier == app.bundle_identifier:
            return profile
    raise MissingProvisioningProfile(app.bundle_identifier)


def make_entitlements_lookup(root: Path, entitlements_by_path: Dict[str, str]) -> EntitlementsLookup:
    """Pure lookup from a root-relative bundle path to embedded entitlements"""
    table = dict(entitlements_by_path)

    def entitlements_for(relative_path: str) -> Optional[str]:
        bundle_path = root / relative_path if relative_path else root
        return table.get(str(bundle_path))

    return entitlements_for


class AppSigner:
    """Embeds provisioning profiles into an app and signs it with an identity.

    Accepts an unpacked .app directory or an .ipa archive. Archives are
    extracted to a uniquely named scratch directory next to the original and
    atomically swapped back in once signed. The scratch directory never
    outlives a call to :meth:`sign`.
    """

    def __init__(
        self,
        engine: SigningEngine,
        archiver: Optional[Archiver] = None,
        settle_timeout: float = 0.5,
        ldid: str = "ldid",
    ):
        self.engine = engine
        self.archiver = archiver or Archiver()
        self.settle_timeout = settle_timeout
        self.ldid = ldid
        self.console = get_console()

    def sign(
        self,
        app_path: Path,
        profiles: Iterable[ProvisioningProfile],
        identity: bytes,
    ) -> SignResult:
        app_path = Path(app_path)
        profiles = list(profiles)
        self.console.print(f"[blue]Signing[/] {app_path.name}")

        if not is_archive(app_path):
            return self._sign_bundle(app_path, profiles, identity)

        scratch_dir = app_path.parent / f"{app_path.stem}-{uuid.uuid4()}"
        scratch_dir.mkdir()
        try:
            bundle_dir = self.archiver.unpack(app_path, scratch_dir)
            result = self._sign_bundle(bundle_dir, profiles, identity)
            self._replace_archive(app_path, bundle_dir, scratch_dir)
            result.output_path = app_path
            return result
        finally:
            # Signed or not, nothing extracted may remain beside the archive
            shutil.rmtree(scratch_dir, ignore_errors=True)

    def _sign_bundle(
        self, bundle_dir: Path, profiles: List[ProvisioningProfile], identity: bytes
    ) -> SignResult:
        app = Application(bundle_dir, self.ldid)
        bundles = app.all_bundles()

        # Resolve every profile before touching the bundle
        matched = [(bundle, profile_for_bundle(bundle, profiles)) for bundle in bundles]

        entitlements_by_path: Dict[str, str] = {}
        for bundle, profile in matched:
            profile_path = bundle.path / EMBEDDED_PROFILE_NAME
            with open(profile_path, "wb") as f:
                f.write(profile.data)
            entitlements_by_path[str(bundle.path)] = entitlements_xml(profile)
            self.console.log(
                f"[green]Embedded profile[/] {profile.name or profile.uuid} "
                f"[dim]→ {bundle.bundle_identifier}[/]"
            )

        finished = threading.Event()
        self.engine.sign(
            app.path,
            identity,
            make_entitlements_lookup(app.path, entitlements_by_path),
            lambda path: None,
            finished.set,
        )

        # Repackaging must not start before the engine has flushed its output
        if not finished.wait(self.settle_timeout):
            self.console.log(
                f"[yellow]Signing engine gave no completion signal after {self.settle_timeout}s, continuing[/]"
            )

        self.console.print(f"[green]Signed[/] {app.bundle_identifier}")
        return SignResult(
            output_path=app.path,
            bundle_identifier=app.bundle_identifier,
            signed_bundles=[bundle.path for bundle in bundles],
        )

    def _replace_archive(self, archive_path: Path, bundle_dir: Path, scratch_dir: Path) -> None:
        """Re-archive the signed bundle and swap it in for the original"""
        try:
            signed_archive = self.archiver.pack(
                bundle_dir, scratch_dir / f"{archive_path.stem}-signed{archive_path.suffix}"
            )
            # Same directory, same filesystem: the original is either intact or replaced
            os.replace(signed_archive, archive_path)
        except (ArchiveError, OSError) as e:
            self.console.print(f"[red]Could not repackage {archive_path.name}:[/] {e}")
            raise RepackageError(archive_path, e) from e

        self.console.print(f"[green]Replaced archive:[/] {archive_path}")
