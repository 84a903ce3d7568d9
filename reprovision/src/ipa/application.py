from dataclasses import dataclass
from pathlib import Path
import plistlib
import shutil
import subprocess
import tempfile
from typing import Any, Dict, List, Optional

from reprovision.logger import get_console
from reprovision.src.core.errors import InvalidBundle
from reprovision.src.ipa.archiver import Archiver, is_archive

# Nested bundles that need their own App ID and provisioning profile
EXTENSION_DIRECTORIES = ("PlugIns", "Extensions")


def decode_clean(b: bytes) -> str:
    """Clean up command output"""
    return "" if not b else b.decode("utf-8").strip()


def dump_entitlements(executable: Path, ldid: str = "ldid") -> Dict[str, Any]:
    """Dump entitlements from binary using ldid, empty when unavailable"""
    if not shutil.which(ldid):
        return {}
    try:
        proc = subprocess.run([ldid, "-e", str(executable)], capture_output=True, check=True)
    except subprocess.CalledProcessError as e:
        get_console().print(
            f"[yellow]Could not read entitlements of {executable.name}:[/] {decode_clean(e.stderr)}"
        )
        return {}
    output = proc.stdout.strip()
    if not output:
        return {}
    try:
        return plistlib.loads(output)
    except plistlib.InvalidFileException:
        return {}


class Application:
    """An app bundle on disk along with its nested extension bundles"""

    def __init__(self, path: Path, ldid: str = "ldid"):
        self.path = Path(path)
        self._ldid = ldid
        self._entitlements: Optional[Dict[str, Any]] = None
        self._extensions: Optional[List["Application"]] = None

        info_plist = self.path / "Info.plist"
        if not info_plist.is_file():
            raise InvalidBundle(self.path, "no Info.plist")

        try:
            with open(info_plist, "rb") as f:
                self.info = plistlib.load(f)
        except plistlib.InvalidFileException as e:
            raise InvalidBundle(self.path, "unreadable Info.plist") from e

        if not isinstance(self.info, dict) or "CFBundleIdentifier" not in self.info:
            raise InvalidBundle(self.path, "Info.plist has no CFBundleIdentifier")

    @property
    def bundle_identifier(self) -> str:
        return self.info["CFBundleIdentifier"]

    @property
    def name(self) -> str:
        return (
            self.info.get("CFBundleDisplayName")
            or self.info.get("CFBundleName")
            or self.path.stem
        )

    @property
    def executable(self) -> Optional[Path]:
        executable_name = self.info.get("CFBundleExecutable")
        return self.path / executable_name if executable_name else None

    @property
    def entitlements(self) -> Dict[str, Any]:
        """Entitlements the app binary currently declares"""
        if self._entitlements is None:
            executable = self.executable
            if executable and executable.exists():
                self._entitlements = dump_entitlements(executable, self._ldid)
            else:
                self._entitlements = {}
        return self._entitlements

    @property
    def app_extensions(self) -> List["Application"]:
        """Direct child extension bundles, sorted for a stable signing order"""
        if self._extensions is None:
            extensions = []
            for directory in EXTENSION_DIRECTORIES:
                for bundle in sorted((self.path / directory).glob("*.appex")):
                    if (bundle / "Info.plist").exists():
                        extensions.append(Application(bundle, self._ldid))
            self._extensions = extensions
        return self._extensions

    def all_bundles(self) -> List["Application"]:
        """This bundle followed by every nested extension, depth first"""
        bundles = [self]
        for extension in self.app_extensions:
            bundles.extend(extension.all_bundles())
        return bundles

    def __repr__(self) -> str:
        return f"Application({self.bundle_identifier!r}, {str(self.path)!r})"


def bundle_relative_path(root: Path, bundle: Path) -> str:
    """Path of a bundle inside the root bundle, "" for the root itself"""
    relative = Path(bundle).relative_to(root).as_posix()
    return "" if relative == "." else relative


@dataclass
class BundleInfo:
    """What provisioning needs to know about one signable bundle"""

    bundle_identifier: str
    name: str
    entitlements: Dict[str, Any]
    relative_path: str  # "" for the main app


def inspect_app(app_path: Path, archiver: Optional[Archiver] = None, ldid: str = "ldid") -> List[BundleInfo]:
    """Describe the main app and its extensions without modifying anything.

    Archives are extracted to a temporary directory that is removed on return.
    """
    app_path = Path(app_path)

    def describe(app: Application) -> List[BundleInfo]:
        return [
            BundleInfo(
                bundle_identifier=bundle.bundle_identifier,
                name=bundle.name,
                entitlements=dict(bundle.entitlements),
                relative_path=bundle_relative_path(app.path, bundle.path),
            )
            for bundle in app.all_bundles()
        ]

    if not is_archive(app_path):
        return describe(Application(app_path, ldid))

    archiver = archiver or Archiver()
    with tempfile.TemporaryDirectory(prefix="reprovision-inspect-") as temp_dir:
        return describe(Application(archiver.unpack(app_path, Path(temp_dir)), ldid))
