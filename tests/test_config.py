"""Tests for TOML configuration loading."""

from pathlib import Path

from typer.testing import CliRunner

from codemap import config
from codemap.cli import app
from codemap.config_manager import MindMapConfig, load_config, save_project_config

runner = CliRunner()


def test_defaults_without_files(temp_dir: Path):
    settings = load_config(temp_dir)
    assert settings.critical_dependents == config.CRITICAL_DEPENDENTS
    assert settings.coupling_threshold == config.COUPLING_THRESHOLD
    assert "node_modules" in settings.exclude_dirs
    assert settings.extensions == config.SUPPORTED_EXTENSIONS


def test_project_overrides_global(temp_dir: Path):
    """Project settings win; exclude lists accumulate."""
    config.GLOBAL_CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    config.GLOBAL_CONFIG_FILE.write_text(
        "[impact]\ncritical_dependents = 9\n\n[scan]\nexclude_dirs = [\"vendor\"]\n",
        encoding="utf-8",
    )
    save_project_config(temp_dir, {"impact": {"critical_dependents": 3}, "scan": {"exclude_dirs": ["gen"]}})

    settings = load_config(temp_dir)
    assert settings.critical_dependents == 3
    assert {"vendor", "gen"} <= settings.exclude_dirs


def test_malformed_toml_is_ignored(temp_dir: Path):
    path = config.project_state_dir(temp_dir) / config.PROJECT_CONFIG_FILENAME
    path.parent.mkdir(parents=True)
    path.write_text("[impact\ncritical_dependents = ", encoding="utf-8")
    assert load_config(temp_dir).critical_dependents == config.CRITICAL_DEPENDENTS


def test_unsupported_extensions_are_dropped():
    settings = MindMapConfig().merged({"scan": {"extensions": ["ts", ".tsx", ".py"]}})
    assert settings.extensions == {".ts", ".tsx"}


def test_save_keeps_other_sections(temp_dir: Path):
    save_project_config(temp_dir, {"impact": {"critical_dependents": 2}})
    save_project_config(temp_dir, {"coherence": {"coupling_threshold": 4}})
    settings = load_config(temp_dir)
    assert (settings.critical_dependents, settings.coupling_threshold) == (2, 4)


def test_excluded_dir_is_not_scanned(sample_app: Path):
    from codemap.scanner import SourceScanner

    save_project_config(sample_app, {"scan": {"exclude_dirs": ["hooks"]}})
    result = SourceScanner(sample_app, load_config(sample_app)).scan()
    assert not any(n.path.startswith("src/hooks/") for n in result.nodes)


def test_config_command(temp_dir: Path):
    result = runner.invoke(
        app, ["config", "--path", str(temp_dir), "--critical-dependents", "8", "--exclude", "generated"]
    )

    assert result.exit_code == 0
    assert "critical_dependents" in result.stdout
    settings = load_config(temp_dir)
    assert settings.critical_dependents == 8
    assert "generated" in settings.exclude_dirs
