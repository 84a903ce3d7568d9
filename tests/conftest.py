from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization

from fakes import (
    FakeInstaller,
    FakeRemoteAPI,
    FakeSigningEngine,
    make_app,
    make_certificate,
    make_developer_certificate,
    make_key,
)
from reprovision.src.core.signing_identity import build_signing_identity
from reprovision.src.core.trust_store import TrustStore
from reprovision.src.ipa.archiver import Archiver


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point configuration at an empty directory and clear related env vars."""
    home = tmp_path / "reprovision-home"
    home.mkdir()
    monkeypatch.setenv("REPROVISION_HOME", str(home))
    for name in (
        "APPLE_ID",
        "APPLE_PASSWORD",
        "REPROVISION_TRUST_ANCHOR",
        "REPROVISION_ANISETTE_URL",
        "NON_INTERACTIVE",
    ):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture(scope="session")
def root_ca():
    key = make_key()
    return key, make_certificate("Test Root CA", key, is_ca=True)


@pytest.fixture(scope="session")
def intermediate_ca(root_ca):
    root_key, root_cert = root_ca
    key = make_key()
    cert = make_certificate(
        "Test WWDR CA", key, issuer_key=root_key, issuer_name=root_cert.subject, is_ca=True
    )
    return key, cert


@pytest.fixture
def trust_anchor_path(tmp_path, root_ca, intermediate_ca) -> Path:
    """PEM bundle with the intermediate first, then the root"""
    path = tmp_path / "apple.pem"
    path.write_bytes(
        intermediate_ca[1].public_bytes(serialization.Encoding.PEM)
        + root_ca[1].public_bytes(serialization.Encoding.PEM)
    )
    return path


@pytest.fixture
def trust_store(trust_anchor_path) -> TrustStore:
    return TrustStore.from_pem_file(trust_anchor_path)


@pytest.fixture
def developer_certificate(intermediate_ca):
    return make_developer_certificate(*intermediate_ca)


@pytest.fixture
def identity(developer_certificate, trust_store) -> bytes:
    return build_signing_identity(developer_certificate, trust_store)


@pytest.fixture
def app_dir(tmp_path) -> Path:
    return make_app(tmp_path / "build")


@pytest.fixture
def ipa_path(tmp_path) -> Path:
    """An archive alone in its own directory, so leftovers are easy to spot"""
    source = make_app(tmp_path / "source", extensions=["com.example.app.widget"])
    apps = tmp_path / "apps"
    apps.mkdir()
    return Archiver().pack(source, apps / "Test.ipa")


@pytest.fixture
def engine() -> FakeSigningEngine:
    return FakeSigningEngine()


@pytest.fixture
def installer() -> FakeInstaller:
    return FakeInstaller()


@pytest.fixture
def remote(developer_certificate) -> FakeRemoteAPI:
    """Empty team that issues developer_certificate when asked for one"""
    remote = FakeRemoteAPI()
    remote.issued_certificate = developer_certificate
    return remote
