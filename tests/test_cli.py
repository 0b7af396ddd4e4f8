import plistlib
import subprocess

import pytest

import xctovscode


def _fake_xcodebuild(build_dir, calls=None):
    def run(cmd, **kwargs):
        if calls is not None:
            calls.append(cmd)
        output = f'Build settings for action build and target Foo:\n    BUILD_DIR = "{build_dir}"\n'
        return subprocess.CompletedProcess(args=cmd, returncode=0, stdout=output)
    return run


def _build_app(build_dir, variant="Debug", name="Foo.app", bundle_id="com.foo.app"):
    app = build_dir / f"{variant}-iphonesimulator" / name
    app.mkdir(parents=True)
    with open(app / "Info.plist", "wb") as f:
        plistlib.dump({"CFBundleIdentifier": bundle_id}, f)
    return app


def test_end_to_end(tmp_path, monkeypatch, capsys) -> None:
    build_dir = tmp_path / "build"
    _build_app(build_dir)
    calls = []
    monkeypatch.setattr(xctovscode.subprocess, "run", _fake_xcodebuild(build_dir, calls))

    status = xctovscode.main(["--project", "Foo.xcodeproj", "--scheme", "Debug", "--path", str(tmp_path)])

    out, err = capsys.readouterr()
    assert status == 0
    assert out == f"BUILD_DIR {build_dir}\nAPP_NAME Foo.app\nBUNDLE_ID com.foo.app\n"
    assert err == ""
    assert calls == [["xcodebuild", "-showBuildSettings", "-project", "Foo.xcodeproj", "-scheme", "Debug"]]


def test_verbose_prints_diagnostics_first(tmp_path, monkeypatch, capsys) -> None:
    build_dir = tmp_path / "build"
    _build_app(build_dir, variant="Release")
    monkeypatch.setattr(xctovscode.subprocess, "run", _fake_xcodebuild(build_dir))

    status = xctovscode.main([
        "-p", "Foo.xcodeproj", "-c", "Release", "--path", str(tmp_path), "-v",
    ])

    out, _ = capsys.readouterr()
    lines = out.splitlines()
    assert status == 0
    assert lines[:4] == [
        "Running with scheme: nil",
        "Running with configuration: Release",
        "Running with project: Foo.xcodeproj",
        "Running with workspace: nil",
    ]
    assert "['Foo.app']" in lines
    assert lines[-3:] == [f"BUILD_DIR {build_dir}", "APP_NAME Foo.app", "BUNDLE_ID com.foo.app"]


def test_workspace_uses_scheme_directory(tmp_path, monkeypatch, capsys) -> None:
    build_dir = tmp_path / "build"
    _build_app(build_dir, variant="Staging", name="Bar.app", bundle_id="com.bar.app")
    monkeypatch.setattr(xctovscode.subprocess, "run", _fake_xcodebuild(build_dir))

    status = xctovscode.main([
        "-p", "Bar.xcodeproj", "-w", "Bar.xcworkspace", "-s", "Staging", "--path", str(tmp_path),
    ])

    out, _ = capsys.readouterr()
    assert status == 0
    assert out.splitlines()[1:] == ["APP_NAME Bar.app", "BUNDLE_ID com.bar.app"]


def test_not_built_reports_guidance(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(xctovscode.subprocess, "run", _fake_xcodebuild(tmp_path / "build"))

    status = xctovscode.main(["-p", "Foo.xcodeproj", "-s", "Foo", "--path", str(tmp_path)])

    out, err = capsys.readouterr()
    assert status == 1
    assert out == ""
    assert err.startswith("error: ")
    assert "Run the app in simulator first" in err


def test_missing_scheme_and_configuration(tmp_path, capsys) -> None:
    status = xctovscode.main(["-p", "Foo.xcodeproj", "--path", str(tmp_path)])

    _, err = capsys.readouterr()
    assert status == 1
    assert "scheme or configuration" in err


def test_project_is_required(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        xctovscode.main(["--scheme", "Foo"])

    assert excinfo.value.code == 2
    assert "--project" in capsys.readouterr().err


def test_malformed_timeout_is_usage_error(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        xctovscode.main(["-p", "Foo.xcodeproj", "--timeout", "soon"])

    assert excinfo.value.code == 2
    assert "invalid number of seconds" in capsys.readouterr().err


def test_parse_args_defaults(tmp_path) -> None:
    config = xctovscode.parse_args(["-p", "Foo.xcodeproj"], cwd=str(tmp_path), environ={})

    assert config.path == str(tmp_path)
    assert config.timeout == xctovscode.DEFAULT_TIMEOUT
    assert config.platform == "iphonesimulator"
    assert config.verbose is False


def test_timeout_from_environment(tmp_path) -> None:
    config = xctovscode.parse_args(
        ["-p", "Foo.xcodeproj"], cwd=str(tmp_path), environ={"XCTOVSCODE_TIMEOUT": "7.5"}
    )
    assert config.timeout == 7.5

    config = xctovscode.parse_args(
        ["-p", "Foo.xcodeproj", "--timeout", "3"], cwd=str(tmp_path), environ={"XCTOVSCODE_TIMEOUT": "7.5"}
    )
    assert config.timeout == 3


def test_bad_timeout_in_environment(tmp_path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        xctovscode.parse_args(["-p", "Foo.xcodeproj"], cwd=str(tmp_path), environ={"XCTOVSCODE_TIMEOUT": "-1"})
    assert excinfo.value.code == 2


def test_unreadable_output_dir_is_reported(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(xctovscode.subprocess, "run", _fake_xcodebuild(tmp_path / "build"))
    listdir = xctovscode.os.listdir

    def denied(path):
        if str(path).endswith("-iphonesimulator"):
            raise PermissionError(13, "Permission denied", path)
        return listdir(path)

    monkeypatch.setattr(xctovscode.os, "listdir", denied)

    status = xctovscode.main(["-p", "Foo.xcodeproj", "-s", "Foo", "--path", str(tmp_path)])

    out, err = capsys.readouterr()
    assert status == 1
    assert out == ""
    assert err.count("error:") == 1
    assert "Permission denied" in err


def test_unreadable_discovery_dir_propagates(tmp_path, monkeypatch) -> None:
    def denied(path):
        raise PermissionError(13, "Permission denied", path)

    monkeypatch.setattr(xctovscode.os, "listdir", denied)
    config = xctovscode.InvocationConfig(path=str(tmp_path), scheme="Foo")

    with pytest.raises(PermissionError):
        xctovscode.resolve(config)


def test_xcodebuild_not_executable(tmp_path, monkeypatch, capsys) -> None:
    def denied(cmd, **kwargs):
        raise PermissionError(13, "Permission denied", cmd[0])

    monkeypatch.setattr(xctovscode.subprocess, "run", denied)

    status = xctovscode.main(["-p", "Foo.xcodeproj", "-s", "Foo", "--path", str(tmp_path)])

    _, err = capsys.readouterr()
    assert status == 1
    assert "Unable to run xcodebuild" in err


@pytest.mark.parametrize("value", ["nan", "inf", "-inf", "0"])
def test_non_finite_timeout_is_usage_error(value, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        xctovscode.main(["-p", "Foo.xcodeproj", f"--timeout={value}"])

    assert excinfo.value.code == 2
    assert "positive number of seconds" in capsys.readouterr().err


@pytest.mark.parametrize("value", ["nan", "inf"])
def test_non_finite_timeout_in_environment(tmp_path, value) -> None:
    with pytest.raises(SystemExit) as excinfo:
        xctovscode.parse_args(["-p", "Foo.xcodeproj"], cwd=str(tmp_path), environ={"XCTOVSCODE_TIMEOUT": value})
    assert excinfo.value.code == 2
