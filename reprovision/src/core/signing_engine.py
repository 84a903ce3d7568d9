from pathlib import Path
import shutil
import subprocess
import tempfile
from typing import Callable, Optional, Protocol

from reprovision.logger import get_console
from reprovision.src.core.errors import SigningEngineError
from reprovision.src.ipa.application import Application, bundle_relative_path

EntitlementsLookup = Callable[[str], Optional[str]]
ProgressCallback = Callable[[str], None]
CompletionCallback = Callable[[], None]


class SigningEngine(Protocol):
    """Binary signing primitive: writes code signatures into a bundle tree.

    ``entitlements_for`` receives a bundle path relative to the root bundle
    ("" for the root itself). ``completion`` is called once every signature
    has been flushed to disk.
    """

    def sign(
        self,
        bundle_path: Path,
        identity: bytes,
        entitlements_for: EntitlementsLookup,
        progress: ProgressCallback,
        completion: CompletionCallback,
    ) -> None: ...


class LdidSigningEngine:
    """Signs bundles by shelling out to ldid with a PKCS#12 identity.

    ldid applies one entitlements file per invocation, so every bundle is
    signed on its own with its own entitlements, deepest first, and the root
    bundle last.
    """

    def __init__(self, ldid: str = "ldid"):
        self.ldid = ldid
        self.console = get_console()

    def sign(
        self,
        bundle_path: Path,
        identity: bytes,
        entitlements_for: EntitlementsLookup,
        progress: ProgressCallback,
        completion: CompletionCallback,
    ) -> None:
        if not shutil.which(self.ldid):
            raise SigningEngineError(f"{self.ldid} not found in PATH")

        app = Application(bundle_path, self.ldid)
        # Nested bundles before the bundles that contain them
        bundles = sorted(app.all_bundles(), key=lambda b: len(b.path.parts), reverse=True)

        with tempfile.TemporaryDirectory(prefix="reprovision-sign-") as temp_dir:
            key_path = Path(temp_dir) / "identity.p12"
            key_path.write_bytes(identity)

            for index, bundle in enumerate(bundles):
                relative = bundle_relative_path(app.path, bundle.path)
                ents_path = Path(temp_dir) / f"entitlements-{index}.plist"
                self._run_ldid(bundle.path, key_path, entitlements_for(relative), ents_path)
                progress(relative)

        completion()

    def _run_ldid(
        self, bundle_path: Path, key_path: Path, entitlements: Optional[str], ents_path: Path
    ) -> None:
        cmd = [self.ldid, f"-K{key_path}", "-U"]
        if entitlements:
            ents_path.write_text(entitlements, encoding="utf-8")
            cmd.append(f"-S{ents_path}")
        else:
            cmd.append("-S")
        cmd.append(str(bundle_path))

        self.console.log(f"[cyan]Running ldid on[/] {bundle_path.name}")
        try:
            result = subprocess.run(cmd, check=True, capture_output=True, text=True)
        except subprocess.CalledProcessError as e:
            raise SigningEngineError(
                f"ldid failed on {bundle_path.name} (exit {e.returncode}): {e.stderr.strip()}"
            ) from e
        if result.stdout:
            self.console.log(f"[dim]{result.stdout.strip()}[/]")
