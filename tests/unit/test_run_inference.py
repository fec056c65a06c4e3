"""Unit tests for run command and run mode inference."""

import json

import pytest

from commitreel.core.errors import ManifestError
from commitreel.core.models import RunMode
from commitreel.core.run_inference import (
    detect_run_command,
    detect_run_mode,
    normalize_run_mode,
    resolve_run_command,
    validate_manifest,
)


def _write_package(path, **data):
    (path / "package.json").write_text(json.dumps(data), encoding="utf-8")


@pytest.mark.unit
def test_replit_run_entry_wins(tmp_path):
    (tmp_path / ".replit").write_text('run = "npm run serve"\n')
    _write_package(tmp_path, scripts={"start": "node index.js"})

    assert detect_run_command(tmp_path) == "npm run serve"


@pytest.mark.unit
def test_replit_unquoted_run_entry(tmp_path):
    (tmp_path / ".replit").write_text("language = python\nrun = python main.py\n")

    assert detect_run_command(tmp_path) == "python main.py"


@pytest.mark.unit
@pytest.mark.parametrize(
    "scripts,expected",
    [
        ({"dev": "vite", "start": "node server.js"}, "npm run dev"),
        ({"start": "node server.js", "preview": "vite preview"}, "npm start"),
        ({"preview": "vite preview"}, "npm run preview"),
    ],
)
def test_package_scripts_in_priority_order(tmp_path, scripts, expected):
    _write_package(tmp_path, scripts=scripts)

    assert detect_run_command(tmp_path) == expected


@pytest.mark.unit
@pytest.mark.parametrize(
    "entry,expected",
    [
        ("index.js", "node index.js"),
        ("server.js", "node server.js"),
        ("main.py", "python main.py"),
        ("app.py", "python app.py"),
    ],
)
def test_entrypoint_fallback(tmp_path, entry, expected):
    (tmp_path / entry).write_text("")

    assert detect_run_command(tmp_path) == expected


@pytest.mark.unit
def test_entrypoints_checked_in_order(tmp_path):
    (tmp_path / "app.py").write_text("")
    (tmp_path / "index.js").write_text("")

    assert detect_run_command(tmp_path) == "node index.js"


@pytest.mark.unit
def test_package_without_known_scripts_falls_through(tmp_path):
    _write_package(tmp_path, scripts={"test": "jest"})
    (tmp_path / "main.py").write_text("")

    assert detect_run_command(tmp_path) == "python main.py"


@pytest.mark.unit
def test_unparseable_package_json_falls_through(tmp_path):
    (tmp_path / "package.json").write_text("{not json")
    (tmp_path / "server.js").write_text("")

    assert detect_run_command(tmp_path) == "node server.js"


@pytest.mark.unit
def test_nothing_runnable(tmp_path):
    (tmp_path / "notes.txt").write_text("hi")

    assert detect_run_command(tmp_path) is None


@pytest.mark.unit
def test_resolve_prefers_override(tmp_path):
    (tmp_path / "main.py").write_text("")

    assert resolve_run_command(tmp_path, "make run") == "make run"
    assert resolve_run_command(tmp_path, None) == "python main.py"


@pytest.mark.unit
def test_normalize_run_mode():
    assert normalize_run_mode(None) == "auto"
    assert normalize_run_mode(" WEB ") == "web"
    assert normalize_run_mode("cli") == "cli"
    assert normalize_run_mode("desktop") == "auto"


@pytest.mark.unit
def test_explicit_mode_overrides_detection(tmp_path):
    (tmp_path / ".replit").write_text('run = "python app.py"')

    assert detect_run_mode(tmp_path, "python app.py", "cli") is RunMode.CLI
    assert detect_run_mode(tmp_path, "python tool.py", "web") is RunMode.WEB


@pytest.mark.unit
def test_web_mode_from_js_dependencies(tmp_path):
    _write_package(tmp_path, dependencies={"express": "^4"}, scripts={"start": "node index.js"})

    assert detect_run_mode(tmp_path, "npm start") is RunMode.WEB


@pytest.mark.unit
def test_web_mode_from_python_requirements(tmp_path):
    (tmp_path / "requirements.txt").write_text("Flask==3.0\n")

    assert detect_run_mode(tmp_path, "python run.py") is RunMode.WEB


@pytest.mark.unit
def test_web_mode_from_command_tokens(tmp_path):
    assert detect_run_mode(tmp_path, "uvicorn api:app") is RunMode.WEB
    assert detect_run_mode(tmp_path, "node server.js") is RunMode.WEB


@pytest.mark.unit
def test_cli_mode_by_default(tmp_path):
    _write_package(tmp_path, dependencies={"lodash": "^4"})

    assert detect_run_mode(tmp_path, "python script.py") is RunMode.CLI


@pytest.mark.unit
def test_validate_manifest_rejects_broken_package_json_for_node_commands(tmp_path):
    (tmp_path / "package.json").write_text("{broken")

    with pytest.raises(ManifestError, match="Invalid package.json"):
        validate_manifest(tmp_path, "npm start")


@pytest.mark.unit
def test_validate_manifest_ignores_non_node_commands(tmp_path):
    (tmp_path / "package.json").write_text("{broken")

    validate_manifest(tmp_path, "python main.py")
    validate_manifest(tmp_path / "missing", "npm start")
