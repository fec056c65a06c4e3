"""Run command and run mode inference for a checked-out workspace.

Pure functions of a directory's contents (plus the command text). Nothing here
spawns processes; a missed signal degrades to a CLI run, never to an error.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Optional

from commitreel.core.errors import ManifestError
from commitreel.core.models import RunMode

logger = logging.getLogger(__name__)

AUTO_MODE = "auto"

_REPLIT_FILE = ".replit"
_PACKAGE_JSON = "package.json"

_REPLIT_RUN_PATTERNS = (
    re.compile(r'run\s*=\s*"([^"]+)"'),
    re.compile(r"run\s*=\s*'([^']+)'"),
    re.compile(r"run\s*=\s*([^\n]+)"),
)

# package.json script name -> command, in priority order
_NPM_SCRIPTS = (
    ("dev", "npm run dev"),
    ("start", "npm start"),
    ("preview", "npm run preview"),
)

_ENTRYPOINTS = ("index.js", "server.js", "main.py", "app.py")

_WEB_JS_DEPENDENCIES = frozenset(
    {
        "next",
        "react",
        "react-dom",
        "react-scripts",
        "vite",
        "svelte",
        "astro",
        "nuxt",
        "@remix-run/dev",
        "gatsby",
        "express",
        "fastify",
        "koa",
        "hono",
        "nestjs",
        "angular",
    }
)

_WEB_PY_FRAMEWORKS = (
    "flask",
    "fastapi",
    "django",
    "uvicorn",
    "gunicorn",
    "starlette",
    "bottle",
    "falcon",
    "aiohttp",
    "tornado",
)

_WEB_COMMAND_TOKENS = (
    "next",
    "vite",
    "react-scripts",
    "nuxt",
    "svelte",
    "astro",
    "remix",
    "gatsby",
    "ng serve",
    "webpack",
    "parcel",
    "serve",
    "flask",
    "django",
    "uvicorn",
    "gunicorn",
    "fastapi",
    "starlette",
    "rails",
    "phoenix",
)

_SERVER_ENTRYPOINTS = ("server.js", "app.js", "main.py", "app.py")

_NODE_COMMAND = re.compile(r"(^|\s)(node|npm|pnpm|yarn|bun|npx)\b")


def normalize_run_mode(value: Optional[str]) -> str:
    """Map user input to "web", "cli" or "auto"; anything unrecognized is "auto"."""
    if not value:
        return AUTO_MODE
    mode = str(value).strip().lower()
    if mode in (RunMode.WEB.value, RunMode.CLI.value, AUTO_MODE):
        return mode
    return AUTO_MODE


def detect_run_command(workdir: Path | str) -> Optional[str]:
    """Infer how to run the project in `workdir`.

    Checks, in order: the `run` entry of `.replit`, the dev/start/preview npm
    scripts, then a conventional entrypoint file.

    Returns:
        Shell command, or None when nothing runnable is found
    """
    root = Path(workdir)

    replit_text = _read_text(root / _REPLIT_FILE)
    if replit_text:
        for pattern in _REPLIT_RUN_PATTERNS:
            match = pattern.search(replit_text)
            if match and match.group(1).strip():
                return match.group(1).strip()

    pkg_path = root / _PACKAGE_JSON
    if pkg_path.exists():
        pkg = _load_package_json(pkg_path)
        if pkg is None:
            logger.warning("failed to parse %s", pkg_path)
        else:
            scripts = pkg.get("scripts") or {}
            if isinstance(scripts, dict):
                for name, command in _NPM_SCRIPTS:
                    if scripts.get(name):
                        return command

    for entry in _ENTRYPOINTS:
        if (root / entry).exists():
            return f"python {entry}" if entry.endswith(".py") else f"node {entry}"

    return None


def resolve_run_command(workdir: Path | str, override: Optional[str] = None) -> Optional[str]:
    """An explicit override wins over inference."""
    if override:
        return override
    return detect_run_command(workdir)


def detect_run_mode(workdir: Path | str, run_command: Optional[str], override: Optional[str] = None) -> RunMode:
    """Decide whether a run serves HTTP (web) or is a plain process (cli)."""
    mode = normalize_run_mode(override)
    if mode != AUTO_MODE:
        return RunMode(mode)

    root = Path(workdir)
    if _read_text(root / _REPLIT_FILE):
        return RunMode.WEB

    pkg_path = root / _PACKAGE_JSON
    if pkg_path.exists():
        pkg = _load_package_json(pkg_path)
        if pkg is not None and _has_web_dependencies(pkg):
            return RunMode.WEB

    requirements_text = _read_text(root / "requirements.txt")
    pyproject_text = _read_text(root / "pyproject.toml")
    if _text_has_any(requirements_text, _WEB_PY_FRAMEWORKS) or _text_has_any(pyproject_text, _WEB_PY_FRAMEWORKS):
        return RunMode.WEB

    command = (run_command or "").lower()
    if _text_has_any(command, _WEB_COMMAND_TOKENS):
        return RunMode.WEB
    if any(entry in command for entry in _SERVER_ENTRYPOINTS):
        return RunMode.WEB

    return RunMode.CLI


def validate_manifest(workdir: Path | str, run_command: Optional[str]) -> None:
    """Fail fast on a broken package.json when the command would need it.

    Raises:
        ManifestError: If a node-style command meets an unparseable package.json
    """
    pkg_path = Path(workdir) / _PACKAGE_JSON
    if not pkg_path.exists():
        return
    if not _NODE_COMMAND.search(run_command or ""):
        return
    try:
        json.loads(pkg_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ManifestError(f"Invalid package.json in checkpoint: {pkg_path}") from exc


def _has_web_dependencies(pkg: dict[str, Any]) -> bool:
    names: set[str] = set()
    for key in ("dependencies", "devDependencies"):
        deps = pkg.get(key)
        if isinstance(deps, dict):
            names.update(str(name).lower() for name in deps)
    return not names.isdisjoint(_WEB_JS_DEPENDENCIES)


def _load_package_json(path: Path) -> Optional[dict[str, Any]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return ""


def _text_has_any(text: str, tokens: tuple[str, ...]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(token in lowered for token in tokens)
