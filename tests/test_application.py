import plistlib

import pytest

from fakes import MISSING_LDID, make_app, make_bundle
from reprovision.src.core.errors import InvalidBundle
from reprovision.src.ipa import application
from reprovision.src.ipa.application import (
    Application,
    bundle_relative_path,
    dump_entitlements,
    inspect_app,
)


def test_reads_info_plist(app_dir):
    app = Application(app_dir, MISSING_LDID)

    assert app.bundle_identifier == "com.example.app"
    assert app.name == "Test"
    assert app.executable == app_dir / "Test"
    assert app.app_extensions == []


def test_display_name_wins(tmp_path):
    bundle = make_bundle(tmp_path / "Named.app", "com.example.named")
    with open(bundle / "Info.plist", "rb") as f:
        info = plistlib.load(f)
    info["CFBundleDisplayName"] = "Pretty Name"
    with open(bundle / "Info.plist", "wb") as f:
        plistlib.dump(info, f)

    assert Application(bundle, MISSING_LDID).name == "Pretty Name"


def test_missing_info_plist(tmp_path):
    (tmp_path / "Empty.app").mkdir()

    with pytest.raises(InvalidBundle, match="no Info.plist") as excinfo:
        Application(tmp_path / "Empty.app")

    assert excinfo.value.path == tmp_path / "Empty.app"


def test_missing_bundle_identifier(tmp_path):
    bundle = tmp_path / "Broken.app"
    bundle.mkdir()
    with open(bundle / "Info.plist", "wb") as f:
        plistlib.dump({"CFBundleName": "Broken"}, f)

    with pytest.raises(InvalidBundle, match="CFBundleIdentifier"):
        Application(bundle)


def test_unreadable_info_plist(tmp_path):
    bundle = tmp_path / "Garbled.app"
    bundle.mkdir()
    (bundle / "Info.plist").write_bytes(b"not a property list")

    with pytest.raises(InvalidBundle, match="unreadable"):
        Application(bundle)


def test_all_bundles_is_depth_first(tmp_path):
    app_path = make_app(tmp_path, extensions=["com.example.app.a", "com.example.app.b"])
    make_bundle(
        app_path / "PlugIns" / "Extension0.appex" / "PlugIns" / "Nested.appex",
        "com.example.app.a.nested",
        "Nested",
    )

    bundles = Application(app_path, MISSING_LDID).all_bundles()

    assert [b.bundle_identifier for b in bundles] == [
        "com.example.app",
        "com.example.app.a",
        "com.example.app.a.nested",
        "com.example.app.b",
    ]


def test_bundle_relative_path(app_dir):
    assert bundle_relative_path(app_dir, app_dir) == ""
    assert bundle_relative_path(app_dir, app_dir / "PlugIns" / "X.appex") == "PlugIns/X.appex"


def test_dump_entitlements_without_ldid(app_dir):
    assert dump_entitlements(app_dir / "Test", MISSING_LDID) == {}


def test_inspect_directory(tmp_path, monkeypatch):
    app_path = make_app(tmp_path, extensions=["com.example.app.widget"])
    monkeypatch.setattr(
        application,
        "dump_entitlements",
        lambda executable, ldid: {"aps-environment": "development"} if executable.name == "Test" else {},
    )

    bundles = inspect_app(app_path, ldid=MISSING_LDID)

    assert [(b.bundle_identifier, b.relative_path) for b in bundles] == [
        ("com.example.app", ""),
        ("com.example.app.widget", "PlugIns/Extension0.appex"),
    ]
    assert bundles[0].entitlements == {"aps-environment": "development"}
    assert bundles[1].entitlements == {}


def test_inspect_archive_leaves_nothing_behind(ipa_path):
    before = ipa_path.read_bytes()

    bundles = inspect_app(ipa_path, ldid=MISSING_LDID)

    assert [b.bundle_identifier for b in bundles] == ["com.example.app", "com.example.app.widget"]
    assert ipa_path.read_bytes() == before
    assert list(ipa_path.parent.iterdir()) == [ipa_path]
