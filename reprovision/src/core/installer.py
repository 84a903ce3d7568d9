from pathlib import Path
import shutil
import subprocess
from typing import Protocol

from reprovision.logger import get_console
from reprovision.src.core.errors import InstallError
from reprovision.src.core.models import Device


class DeviceInstaller(Protocol):
    def install(self, signed_app_path: Path, device: Device) -> None: ...


class IDeviceInstaller:
    """Installs signed apps on a USB or network paired device via ideviceinstaller"""

    def __init__(self, tool: str = "ideviceinstaller"):
        self.tool = tool
        self.console = get_console()

    def install(self, signed_app_path: Path, device: Device) -> None:
        tool_path = shutil.which(self.tool)
        if not tool_path:
            raise InstallError(
                f"{self.tool} not found. Install libimobiledevice "
                "(macOS: brew install ideviceinstaller, Linux: apt install ideviceinstaller)"
            )

        signed_app_path = Path(signed_app_path)
        cmd = [tool_path, "-u", device.identifier, "install", str(signed_app_path)]

        self.console.print(
            f"[blue]Installing[/] {signed_app_path.name} on {device.name} [dim]({device.identifier})[/]"
        )
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            raise InstallError(
                f"{self.tool} failed for {device.identifier} (exit {result.returncode}): {detail}"
            )

        self.console.print("[green]Installation complete[/]")
