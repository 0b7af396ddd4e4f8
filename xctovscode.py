#!/usr/bin/env python3
"""
xcToVSCode - resolve the simulator build of an iOS app for external tooling

Finds the workspace or project, asks xcodebuild for BUILD_DIR, locates the
.app inside the simulator products directory and reads its bundle identifier
from Info.plist. The result is printed as three labeled lines so an editor
launch configuration can pick them up:

    BUILD_DIR /path/to/Build/Products
    APP_NAME MyApp.app
    BUNDLE_ID com.example.myapp
"""

import argparse
import enum
import logging
import math
import os
import plistlib
import re
import subprocess
import sys
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence
from xml.parsers.expat import ExpatError

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0
DEFAULT_PLATFORM = "iphonesimulator"
DEFAULT_VARIANT = "Debug"
TIMEOUT_ENV_VAR = "XCTOVSCODE_TIMEOUT"

WORKSPACE_SUFFIX = ".xcworkspace"
PROJECT_SUFFIX = ".xcodeproj"
APP_SUFFIX = ".app"

BUILD_DIR_PATTERN = re.compile(r"\bBUILD_DIR = (.*)$")


# ============================================================================
# ERRORS
# ============================================================================

class XcToVSCodeError(Exception):
    def __init__(self, message):
        self.message = message
        super().__init__(self.message)

class ConfigurationError(XcToVSCodeError):
    pass

class AmbiguousTargetError(XcToVSCodeError):
    pass

class TargetNotFoundError(XcToVSCodeError):
    pass

class BuildSettingsError(XcToVSCodeError):
    def __init__(self, message, output: str = "", returncode: Optional[int] = None):
        self.output = output
        self.returncode = returncode
        super().__init__(message)

class BuildSettingsTimeoutError(BuildSettingsError):
    pass

class AppNotBuiltError(XcToVSCodeError):
    pass

class BundleIdentifierError(XcToVSCodeError):
    pass


# ============================================================================
# CONFIGURATION
# ============================================================================

class ResolutionMode(enum.Enum):
    PROJECT = "project"
    WORKSPACE = "workspace"


@dataclass(frozen=True)
class InvocationConfig:
    path: str
    project: Optional[str] = None
    scheme: Optional[str] = None
    configuration: Optional[str] = None
    workspace: Optional[str] = None
    verbose: bool = False
    timeout: float = DEFAULT_TIMEOUT
    platform: str = DEFAULT_PLATFORM


@dataclass(frozen=True)
class BuildTarget:
    mode: ResolutionMode
    path: str
    workspace: str

    @property
    def is_project(self) -> bool:
        return self.mode is ResolutionMode.PROJECT


@dataclass(frozen=True)
class AppBundle:
    target: BuildTarget
    build_dir: str
    output_dir: str
    name: str
    bundle_id: str

    @property
    def path(self) -> str:
        return os.path.join(self.output_dir, self.name)


def default_timeout(environ=None) -> float:
    """Timeout for xcodebuild, from $XCTOVSCODE_TIMEOUT or the built-in default."""
    environ = os.environ if environ is None else environ
    value = environ.get(TIMEOUT_ENV_VAR)
    if not value:
        return DEFAULT_TIMEOUT
    try:
        timeout = float(value)
    except ValueError:
        raise ConfigurationError(f"{TIMEOUT_ENV_VAR} must be a number of seconds, got '{value}'")
    if not math.isfinite(timeout) or timeout <= 0:
        raise ConfigurationError(f"{TIMEOUT_ENV_VAR} must be a positive number of seconds, got '{value}'")
    return timeout


def _positive_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number of seconds: '{value}'")
    if not math.isfinite(seconds) or seconds <= 0:
        raise argparse.ArgumentTypeError(f"timeout must be a positive number of seconds: '{value}'")
    return seconds


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xctovscode",
        description="Print BUILD_DIR, APP_NAME and BUNDLE_ID of an iOS simulator build.",
    )
    parser.add_argument("--version", action="version", version=f"xctovscode {__version__}")
    parser.add_argument("--path", help="Directory containing the xcworkspace or xcodeproj (default: current directory).")
    parser.add_argument("-s", "--scheme", help="The workspace scheme.")
    parser.add_argument("-c", "--configuration", help="The project configuration.")
    parser.add_argument("-p", "--project", required=True, help="The project name. Should include file extension.")
    parser.add_argument("-w", "--workspace", help="The workspace name. Should include file extension.")
    parser.add_argument("--timeout", type=_positive_seconds,
                        help=f"Seconds to wait for xcodebuild (default: ${TIMEOUT_ENV_VAR} or {DEFAULT_TIMEOUT:g}).")
    parser.add_argument("--platform", default=DEFAULT_PLATFORM,
                        help=f"SDK platform of the products directory (default: {DEFAULT_PLATFORM}).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print status updates while resolving.")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None, cwd: Optional[str] = None,
               environ=None) -> InvocationConfig:
    parser = build_parser()
    args = parser.parse_args(argv)

    timeout = args.timeout
    if timeout is None:
        try:
            timeout = default_timeout(environ)
        except ConfigurationError as e:
            parser.error(e.message)

    return InvocationConfig(
        path=args.path or cwd or os.getcwd(),
        project=args.project,
        scheme=args.scheme,
        configuration=args.configuration,
        workspace=args.workspace,
        verbose=args.verbose,
        timeout=timeout,
        platform=args.platform,
    )


def configure_logging(verbose: bool, stream=None) -> None:
    """Verbose output goes to stdout ahead of the report; otherwise only warnings, to stderr."""
    if stream is None:
        stream = sys.stdout if verbose else sys.stderr
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(message)s"))
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


# ============================================================================
# TARGET RESOLUTION
# ============================================================================

def _sorted_entries(directory: str) -> List[str]:
    return sorted(os.listdir(directory))


def discover_workspace(directory: str) -> str:
    """
    Find the single workspace in a directory.

    Top-level *.xcworkspace entries win. Failing those, the workspaces nested
    inside *.xcodeproj bundles are considered.

    Returns:
        Path of the workspace relative to the directory
    """
    entries = _sorted_entries(directory)

    workspaces = [e for e in entries if e.endswith(WORKSPACE_SUFFIX)]
    if len(workspaces) > 1:
        raise AmbiguousTargetError(
            f"there are multiple xcworkspace in {directory}, please specify one: {', '.join(workspaces)}"
        )
    if workspaces:
        return workspaces[0]

    nested = []
    for project_dir in entries:
        if not project_dir.endswith(PROJECT_SUFFIX):
            continue
        full = os.path.join(directory, project_dir)
        if not os.path.isdir(full):
            continue
        for inner in _sorted_entries(full):
            if inner.endswith(WORKSPACE_SUFFIX):
                nested.append(os.path.join(project_dir, inner))

    if len(nested) > 1:
        raise AmbiguousTargetError(
            f"there are multiple xcodeproj in {directory}, please specify one: {', '.join(nested)}"
        )
    if nested:
        return nested[0]

    raise TargetNotFoundError(
        f"there is no {WORKSPACE_SUFFIX} or {PROJECT_SUFFIX} in {directory}, please specify one"
    )


def resolve_target(config: InvocationConfig) -> BuildTarget:
    if not os.path.isdir(config.path):
        raise ConfigurationError(f"Can't get path: '{config.path}' is not a directory")

    if config.scheme is None and config.configuration is None:
        raise ConfigurationError("Can't get command. Please specify scheme or configuration.")

    if config.workspace:
        target = BuildTarget(ResolutionMode.WORKSPACE, config.workspace, config.workspace)
    elif config.project:
        target = BuildTarget(
            ResolutionMode.PROJECT,
            config.project,
            os.path.join(config.project, "project" + WORKSPACE_SUFFIX),
        )
    else:
        workspace = discover_workspace(config.path)
        target = BuildTarget(ResolutionMode.WORKSPACE, workspace, workspace)

    logger.debug(f"Resolved {target.mode.value}: {target.path}")
    return target


# ============================================================================
# BUILD SETTINGS
# ============================================================================

def build_settings_command(target: BuildTarget, config: InvocationConfig) -> List[str]:
    cmd = ["xcodebuild", "-showBuildSettings"]

    if target.is_project:
        cmd.extend(["-project", target.path])
    else:
        cmd.extend(["-workspace", target.path])

    # xcodebuild refuses a workspace without a scheme
    scheme = config.scheme
    if scheme is None and not target.is_project:
        scheme = config.configuration
    if scheme:
        cmd.extend(["-scheme", scheme])

    if config.configuration:
        cmd.extend(["-configuration", config.configuration])

    return cmd


def parse_build_dir(output: str) -> Optional[str]:
    """Return the first BUILD_DIR value in xcodebuild -showBuildSettings output, unquoted."""
    for line in output.splitlines():
        match = BUILD_DIR_PATTERN.search(line)
        if match:
            # only the first BUILD_DIR line counts, even when its value is empty
            value = match.group(1).strip().strip("\"'")
            return value or None
    return None


def query_build_dir(target: BuildTarget, config: InvocationConfig,
                    runner: Optional[Callable[..., subprocess.CompletedProcess]] = None) -> str:
    runner = runner or subprocess.run
    cmd = build_settings_command(target, config)
    logger.debug(f"Running \"{' '.join(cmd)}\" in {config.path}")

    try:
        result = runner(
            cmd,
            cwd=config.path,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=config.timeout,
        )
    except subprocess.TimeoutExpired:
        raise BuildSettingsTimeoutError(
            f"xcodebuild did not finish within {config.timeout:g} seconds"
        )
    except OSError as e:
        raise BuildSettingsError(f"Unable to run xcodebuild: {e}") from e

    output = result.stdout or ""
    build_dir = parse_build_dir(output)
    if build_dir is None:
        message = f"could not determine build directory from xcodebuild output (exit status {result.returncode})"
        if config.verbose and output.strip():
            message += "\n" + output.strip()
        raise BuildSettingsError(message, output=output, returncode=result.returncode)

    return build_dir


def output_dir(build_dir: str, target: BuildTarget, config: InvocationConfig) -> str:
    variant = config.configuration if target.is_project else config.scheme
    return f"{build_dir}/{variant or DEFAULT_VARIANT}-{config.platform}"


# ============================================================================
# APP BUNDLE
# ============================================================================

def find_app_name(app_dir: str) -> str:
    try:
        files = _sorted_entries(app_dir)
    except FileNotFoundError:
        raise AppNotBuiltError(
            f"Can't find {app_dir}. Run the app in simulator first. You can use Xcode to build the app."
        )
    logger.debug(files)

    apps = [f for f in files if f.endswith(APP_SUFFIX) and os.path.isdir(os.path.join(app_dir, f))]
    if not apps:
        raise AppNotBuiltError(
            f"Can't get app name inside {app_dir}. Run the app in simulator first. You can use Xcode to build the app."
        )
    if len(apps) > 1:
        logger.warning(f"Multiple apps in {app_dir}, using {apps[0]} (ignoring {', '.join(apps[1:])})")
    return apps[0]


def read_bundle_id(app_path: str) -> str:
    plist_path = os.path.join(app_path, "Info.plist")
    try:
        with open(plist_path, "rb") as f:
            plist_data = plistlib.load(f)
    except (OSError, plistlib.InvalidFileException, ExpatError, ValueError) as e:
        raise BundleIdentifierError(f"Error decoding Plist file {plist_path}: {e}") from e

    if not isinstance(plist_data, dict):
        raise BundleIdentifierError(f"Error decoding Plist file {plist_path}: top level is not a dictionary")

    bundle_id = plist_data.get("CFBundleIdentifier")
    if not isinstance(bundle_id, str) or not bundle_id:
        raise BundleIdentifierError(f"Error decoding Plist file {plist_path}: no CFBundleIdentifier string")
    return bundle_id


# ============================================================================
# PIPELINE
# ============================================================================

def resolve(config: InvocationConfig, runner=None) -> AppBundle:
    logger.debug(f"Running with scheme: {config.scheme or 'nil'}")
    logger.debug(f"Running with configuration: {config.configuration or 'nil'}")
    logger.debug(f"Running with project: {config.project or 'nil'}")
    logger.debug(f"Running with workspace: {config.workspace or 'nil'}")

    target = resolve_target(config)
    build_dir = query_build_dir(target, config, runner=runner)
    app_dir = output_dir(build_dir, target, config)
    app_name = find_app_name(app_dir)
    bundle_id = read_bundle_id(os.path.join(app_dir, app_name))
    return AppBundle(target=target, build_dir=build_dir, output_dir=app_dir, name=app_name, bundle_id=bundle_id)


def report(bundle: AppBundle, stream=None) -> None:
    stream = stream if stream is not None else sys.stdout
    print("BUILD_DIR", bundle.build_dir, file=stream)
    print("APP_NAME", bundle.name, file=stream)
    print("BUNDLE_ID", bundle.bundle_id, file=stream)


def main(argv: Optional[Sequence[str]] = None) -> int:
    config = parse_args(argv)
    configure_logging(config.verbose)

    try:
        bundle = resolve(config)
    except XcToVSCodeError as e:
        print(f"error: {e.message}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    report(bundle)
    return 0


if __name__ == "__main__":
    sys.exit(main())
