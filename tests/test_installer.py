import subprocess

import pytest

from fakes import MISSING_LDID
from reprovision.src.core import installer as installer_module
from reprovision.src.core.errors import InstallError
from reprovision.src.core.installer import IDeviceInstaller
from reprovision.src.core.models import Device

DEVICE = Device("00008030-001A2B3C4D5E6F70", "Test iPhone")


def test_missing_tool():
    with pytest.raises(InstallError, match="not found"):
        IDeviceInstaller(MISSING_LDID).install("Test.ipa", DEVICE)


def test_runs_ideviceinstaller(monkeypatch, tmp_path):
    commands = []
    monkeypatch.setattr(installer_module.shutil, "which", lambda tool: f"/usr/bin/{tool}")
    monkeypatch.setattr(
        installer_module.subprocess,
        "run",
        lambda cmd, **kwargs: commands.append(cmd) or subprocess.CompletedProcess(cmd, 0, "", ""),
    )

    IDeviceInstaller().install(tmp_path / "Test.ipa", DEVICE)

    assert commands == [
        ["/usr/bin/ideviceinstaller", "-u", DEVICE.identifier, "install", str(tmp_path / "Test.ipa")]
    ]


def test_failure_is_reported(monkeypatch, tmp_path):
    monkeypatch.setattr(installer_module.shutil, "which", lambda tool: f"/usr/bin/{tool}")
    monkeypatch.setattr(
        installer_module.subprocess,
        "run",
        lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 1, "", "ERROR: Device is locked\n"),
    )

    with pytest.raises(InstallError, match="Device is locked"):
        IDeviceInstaller().install(tmp_path / "Test.ipa", DEVICE)
