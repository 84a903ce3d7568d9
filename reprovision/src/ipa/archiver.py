from pathlib import Path
import zipfile

from reprovision.logger import get_console
from reprovision.src.core.errors import ArchiveError

PAYLOAD_DIR = "Payload"


def is_archive(path: Path) -> bool:
    return Path(path).suffix.lower() == ".ipa"


class Archiver:
    """Unpacks and packs .ipa archives (a zip with a Payload/*.app folder)"""

    def __init__(self):
        self.console = get_console()

    def unpack(self, archive_path: Path, dest_dir: Path) -> Path:
        """Extract an archive and return the .app bundle inside it"""
        archive_path = Path(archive_path)
        dest_dir = Path(dest_dir)
        self.console.log(f"[blue]Extracting[/] {archive_path.name} [dim]→ {dest_dir}[/]")

        try:
            with zipfile.ZipFile(archive_path) as zf:
                for member in zf.namelist():
                    target = (dest_dir / member).resolve()
                    if not target.is_relative_to(dest_dir.resolve()):
                        raise ArchiveError(f"{archive_path.name} has an unsafe entry: {member}")
                zf.extractall(dest_dir)
        except (zipfile.BadZipFile, OSError) as e:
            raise ArchiveError(f"Could not extract {archive_path}: {e}") from e

        bundles = sorted((dest_dir / PAYLOAD_DIR).glob("*.app"))
        if not bundles:
            raise ArchiveError(f"No .app bundle found in {archive_path.name}")
        if len(bundles) > 1:
            self.console.print(
                f"[yellow]Multiple .app bundles found, using first:[/] {bundles[0].name}"
            )
        return bundles[0]

    def pack(self, bundle_dir: Path, output_path: Path) -> Path:
        """Zip a .app bundle into Payload/ of a new archive"""
        bundle_dir = Path(bundle_dir)
        output_path = Path(output_path)
        self.console.log(f"[blue]Creating archive[/] {output_path.name}")

        try:
            with zipfile.ZipFile(output_path, "w", zipfile.ZIP_DEFLATED) as zf:
                zf.write(bundle_dir, f"{PAYLOAD_DIR}/{bundle_dir.name}/")
                for file_path in sorted(bundle_dir.rglob("*")):
                    arcname = Path(PAYLOAD_DIR, bundle_dir.name, file_path.relative_to(bundle_dir))
                    if file_path.is_dir():
                        zf.write(file_path, f"{arcname.as_posix()}/")
                    else:
                        zf.write(file_path, arcname.as_posix())
        except OSError as e:
            raise ArchiveError(f"Could not create {output_path}: {e}") from e

        return output_path
