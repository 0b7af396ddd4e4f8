#!/usr/bin/env python3
"""
xcToVSCode MCP Server - hand an editor the simulator build of an iOS app

Tools:
- Find the workspace or project in a directory
- Read BUILD_DIR from xcodebuild build settings
- Read the bundle identifier of a built .app
- Resolve everything at once (build dir, app name, bundle id)
"""

from pathlib import Path
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

import xctovscode
from xctovscode import InvocationConfig, XcToVSCodeError

mcp = FastMCP("xcToVSCode")


def _error(e: Exception) -> Dict[str, Any]:
    return {"error": getattr(e, "message", str(e)), "kind": type(e).__name__}


def _config_for(
    path: str,
    project: Optional[str] = None,
    workspace: Optional[str] = None,
    scheme: Optional[str] = None,
    configuration: Optional[str] = None,
    timeout: Optional[float] = None,
) -> InvocationConfig:
    return InvocationConfig(
        path=str(Path(path).expanduser().resolve()),
        project=project,
        workspace=workspace,
        scheme=scheme,
        configuration=configuration,
        timeout=timeout or xctovscode.default_timeout(),
    )


# ============================================================================
# PROJECT DISCOVERY
# ============================================================================

@mcp.tool()
def find_build_target(path: str) -> Dict[str, Any]:
    """
    Find the single xcworkspace to build in a directory.

    Args:
        path: Directory containing the .xcworkspace or .xcodeproj

    Returns:
        The workspace path, or an error if none or several were found
    """
    p = Path(path).expanduser().resolve()

    if not p.is_dir():
        return {"error": f"Directory not found: {path}", "kind": "ConfigurationError"}

    try:
        workspace = xctovscode.discover_workspace(str(p))
    except (XcToVSCodeError, OSError) as e:
        return _error(e)

    return {
        "directory": str(p),
        "mode": xctovscode.ResolutionMode.WORKSPACE.value,
        "workspace": workspace,
    }


# ============================================================================
# BUILD SETTINGS
# ============================================================================

@mcp.tool()
def read_build_dir(
    project_path: str,
    scheme: Optional[str] = None,
    configuration: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Ask xcodebuild for BUILD_DIR of a project or workspace.

    Args:
        project_path: Path to .xcodeproj or .xcworkspace
        scheme: Scheme name (required for workspaces unless configuration is given)
        configuration: Build configuration (Debug/Release)
        timeout: Seconds to wait for xcodebuild

    Returns:
        Build directory and the simulator products directory
    """
    p = Path(project_path).expanduser().resolve()

    if not p.exists():
        return {"error": f"Project not found: {project_path}", "kind": "ConfigurationError"}

    is_workspace = p.suffix == xctovscode.WORKSPACE_SUFFIX
    try:
        config = _config_for(
            str(p.parent),
            project=None if is_workspace else str(p),
            workspace=str(p) if is_workspace else None,
            scheme=scheme,
            configuration=configuration,
            timeout=timeout,
        )
        target = xctovscode.resolve_target(config)
        build_dir = xctovscode.query_build_dir(target, config)
    except (XcToVSCodeError, OSError) as e:
        return _error(e)

    return {
        "mode": target.mode.value,
        "scheme": scheme,
        "configuration": configuration,
        "build_dir": build_dir,
        "output_dir": xctovscode.output_dir(build_dir, target, config),
    }


# ============================================================================
# INFO.PLIST
# ============================================================================

@mcp.tool()
def read_bundle_identifier(app_path: str) -> Dict[str, Any]:
    """
    Read CFBundleIdentifier from a built .app bundle.

    Args:
        app_path: Path to the .app directory
    """
    p = Path(app_path).expanduser().resolve()

    if p.suffix != xctovscode.APP_SUFFIX:
        return {"error": "Expected a path to a .app bundle", "kind": "ConfigurationError"}

    try:
        bundle_id = xctovscode.read_bundle_id(str(p))
    except (XcToVSCodeError, OSError) as e:
        return _error(e)

    return {
        "app_path": str(p),
        "app_name": p.name,
        "bundle_id": bundle_id,
    }


# ============================================================================
# FULL RESOLUTION
# ============================================================================

@mcp.tool()
def resolve_app_bundle(
    path: str,
    project: Optional[str] = None,
    workspace: Optional[str] = None,
    scheme: Optional[str] = None,
    configuration: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Resolve build dir, app name and bundle id of the simulator build.
    Use this to configure a debugger attach or launch for the app.

    Args:
        path: Directory containing the project or workspace
        project: Project name including .xcodeproj (optional)
        workspace: Workspace name including .xcworkspace (optional)
        scheme: Workspace scheme
        configuration: Project configuration

    Returns:
        BUILD_DIR, APP_NAME and BUNDLE_ID as reported by the command line tool
    """
    try:
        config = _config_for(path, project, workspace, scheme, configuration, timeout)
        bundle = xctovscode.resolve(config)
    except (XcToVSCodeError, OSError) as e:
        return _error(e)

    return {
        "mode": bundle.target.mode.value,
        "target": bundle.target.path,
        "build_dir": bundle.build_dir,
        "app_name": bundle.name,
        "bundle_id": bundle.bundle_id,
        "app_path": bundle.path,
    }


def main():
    mcp.run()


if __name__ == "__main__":
    main()
