"""Tests for the hoststack CLI."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import yaml
from conftest import FakeExecutor
from typer.testing import CliRunner

from hoststack import __version__
from hoststack import cli as cli_module
from hoststack.cli import app
from hoststack.locking import LockManager

runner = CliRunner()


def _extract_json(output: str) -> Any:
    """Extract the JSON document embedded in *output*."""
    starts = [index for index in (output.find("{"), output.find("[")) if index != -1]
    assert starts, f"No JSON payload found in output: {output}"
    start = min(starts)
    end = max(output.rfind("}"), output.rfind("]"))
    return json.loads(output[start : end + 1])


def _prepare_environment(
    tmp_path: Path,
    *,
    secrets: dict[str, object] | None = None,
    config: dict[str, object] | None = None,
) -> dict[str, str]:
    secrets_file = tmp_path / "secrets.yml"
    if secrets is None:
        secrets = {"webui_secret_key": "webui-secret", "n8n_encryption_key": "n8n-secret"}
    secrets_file.write_text(yaml.safe_dump(secrets), encoding="utf-8")
    secrets_file.chmod(0o600)

    config_file = tmp_path / "config.yml"
    config_file.write_text(yaml.safe_dump(config or {}), encoding="utf-8")

    return {
        "HOSTSTACK_CONFIG_FILE": str(config_file),
        "HOSTSTACK_LOGS_DIR": str(tmp_path / "logs"),
        "HOSTSTACK_RUNTIME_DIR": str(tmp_path / "run"),
        "HOSTSTACK_TEMPLATES_DIR": str(tmp_path / "templates"),
        "HOSTSTACK_SECRETS_FILE": str(secrets_file),
        "HOSTSTACK_DEBUG_DIR": str(tmp_path / "debug"),
    }


@pytest.fixture
def executor(monkeypatch: pytest.MonkeyPatch) -> FakeExecutor:
    """Replace the docker executor with an in-memory fake."""
    fake = FakeExecutor(resources={"proxy"})
    fake.factory_kwargs = {}  # type: ignore[attr-defined]

    def factory(**kwargs: object) -> FakeExecutor:
        fake.factory_kwargs = kwargs  # type: ignore[attr-defined]
        return fake

    monkeypatch.setattr(cli_module, "DockerExecutor", factory)
    return fake


def _operations(tmp_path: Path) -> list[dict[str, Any]]:
    log_path = tmp_path / "logs" / "operations.jsonl"
    return [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]


def test_version_flag(tmp_path: Path) -> None:
    """``--version`` prints the package version."""
    result = runner.invoke(app, ["--version"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0
    assert f"hoststack {__version__}" in result.stdout


def test_deploy_applies_enabled_groups(tmp_path: Path, executor: FakeExecutor) -> None:
    """A full deploy applies every unit of the enabled groups."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["deploy", "--json"], env=env)

    assert result.exit_code == 0, result.output
    payload = _extract_json(result.stdout)
    assert payload["summary"]["exit_code"] == 0
    assert payload["summary"]["units"]["applied"] == 3
    assert [group["state"] for group in payload["groups"]] == [
        "processed",
        "processed",
        "disabled",
    ]
    assert executor.calls_for("apply") == ["ollama", "open-webui", "n8n"]
    assert "n8n-secret" in executor.applied["n8n"]
    assert "n8n-secret" not in result.stdout

    (record,) = _operations(tmp_path)
    assert record["command"] == "deploy"
    assert record["result"]["status"] == "success"
    assert record["result"]["changed"] == 3
    step_names = [step["name"] for step in record["steps"]]
    assert step_names == [
        "lock",
        "unit:llms/ollama",
        "unit:llms/open-webui",
        "unit:automation/n8n",
        "group:monitoring",
    ]


def test_deploy_table_output(tmp_path: Path, executor: FakeExecutor) -> None:
    """Without ``--json`` a table and a summary line are printed."""
    executor.units.add("n8n")

    result = runner.invoke(app, ["deploy"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0, result.output
    assert "n8n" in result.stdout
    assert "SKIPPED" in result.stdout
    assert "Deployment completed successfully." in result.stdout


def test_deploy_missing_resource_exits_environment(
    tmp_path: Path,
    executor: FakeExecutor,
) -> None:
    """Groups whose network is missing are skipped and the run exits 3."""
    executor.resources.clear()

    result = runner.invoke(app, ["deploy", "--json"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 3
    payload = _extract_json(result.stdout)
    assert payload["groups"][0]["state"] == "skipped_precondition"
    assert payload["groups"][0]["error"]["subject"] == "proxy"
    assert executor.calls_for("probe") == []
    (record,) = _operations(tmp_path)
    assert record["result"]["status"] == "error"
    assert record["result"]["rc"] == 3


def test_deploy_missing_required_variable(tmp_path: Path, executor: FakeExecutor) -> None:
    """A missing variable skips only the group that needs it; the run exits 2."""
    env = _prepare_environment(tmp_path, secrets={"webui_secret_key": "x"})

    result = runner.invoke(app, ["deploy", "--json"], env=env)

    assert result.exit_code == 2
    payload = _extract_json(result.stdout)
    states = {group["group"]: group["state"] for group in payload["groups"]}
    assert states["automation"] == "skipped_configuration"
    assert states["llms"] == "processed"
    automation = next(group for group in payload["groups"] if group["group"] == "automation")
    assert automation["error"]["subject"] == "n8n_encryption_key"
    assert executor.calls_for("apply") == ["ollama", "open-webui"]
    assert "n8n" not in executor.calls_for("probe")
    (record,) = _operations(tmp_path)
    assert record["result"]["rc"] == 2


def test_deploy_set_override_satisfies_requirement(
    tmp_path: Path,
    executor: FakeExecutor,
) -> None:
    """``--set`` supplies variables at the highest precedence."""
    env = _prepare_environment(tmp_path, secrets={"webui_secret_key": "x"})

    result = runner.invoke(
        app,
        ["deploy", "--set", "n8n_encryption_key=from-cli", "--set", "n8n_port=9999"],
        env=env,
    )

    assert result.exit_code == 0, result.output
    assert "from-cli" in executor.applied["n8n"]
    assert '"9999"' in executor.applied["n8n"]
    (record,) = _operations(tmp_path)
    assert record["args"]["set"] == ["n8n_encryption_key", "n8n_port"]


def test_deploy_group_toggles(tmp_path: Path, executor: FakeExecutor) -> None:
    """``--enable``/``--disable`` override stack and configuration flags."""
    env = _prepare_environment(tmp_path, config={"groups": {"automation": False}})

    result = runner.invoke(
        app,
        ["deploy", "--disable", "llms", "--enable", "monitoring", "--json"],
        env=env,
    )

    assert result.exit_code == 0, result.output
    assert executor.calls_for("apply") == ["uptime-kuma"]
    payload = _extract_json(result.stdout)
    assert [group["state"] for group in payload["groups"]] == [
        "disabled",
        "disabled",
        "processed",
    ]


def test_deploy_unknown_group_is_validation_error(
    tmp_path: Path,
    executor: FakeExecutor,
) -> None:
    """Naming a group that does not exist exits 2."""
    result = runner.invoke(
        app, ["deploy", "--enable", "nope"], env=_prepare_environment(tmp_path)
    )

    assert result.exit_code == 2
    assert "Unknown groups: nope" in result.stdout
    assert executor.calls == []


def test_deploy_debug_writes_artifacts(tmp_path: Path, executor: FakeExecutor) -> None:
    """``--debug`` persists every applied artifact under ``--debug-dir``."""
    debug_dir = tmp_path / "inspect"

    result = runner.invoke(
        app,
        ["deploy", "--debug", "--debug-dir", str(debug_dir), "--disable", "llms"],
        env=_prepare_environment(tmp_path),
    )

    assert result.exit_code == 0, result.output
    artifact = debug_dir / "automation" / "n8n.yml"
    assert artifact.read_text(encoding="utf-8") == executor.applied["n8n"]


def test_deploy_dry_run_configures_executor(tmp_path: Path, executor: FakeExecutor) -> None:
    """``--dry-run`` is forwarded to the executor and reported."""
    result = runner.invoke(
        app, ["deploy", "--dry-run"], env=_prepare_environment(tmp_path)
    )

    assert result.exit_code == 0, result.output
    assert executor.factory_kwargs["dry_run"] is True  # type: ignore[attr-defined]
    assert "Dry run" in result.stdout
    (record,) = _operations(tmp_path)
    assert record["result"]["changed"] == 0


def test_deploy_lock_timeout(tmp_path: Path, executor: FakeExecutor) -> None:
    """A held deploy lock makes a second run exit 3."""
    env = _prepare_environment(tmp_path)
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.deploy_lock():
        result = runner.invoke(app, ["--lock-timeout", "0.1", "deploy"], env=env)

    assert result.exit_code == 3
    assert executor.calls == []


def test_invalid_config_exits_validation(tmp_path: Path) -> None:
    """A malformed configuration file exits 2 before any command runs."""
    env = _prepare_environment(tmp_path, config={"unknown": 1})

    result = runner.invoke(app, ["groups"], env=env)

    assert result.exit_code == 2
    assert "Unknown configuration keys" in result.stdout


def test_groups_lists_effective_flags(tmp_path: Path) -> None:
    """Configuration toggles are reflected in ``groups``."""
    env = _prepare_environment(tmp_path)
    env["HOSTSTACK_GROUPS__LLMS"] = "false"

    result = runner.invoke(app, ["groups", "--json"], env=env)

    assert result.exit_code == 0, result.output
    payload = _extract_json(result.stdout)
    flags = {group["name"]: group["enabled"] for group in payload}
    assert flags == {"llms": False, "automation": True, "monitoring": False}

    table = runner.invoke(app, ["groups"], env=env)
    assert table.exit_code == 0
    assert "open-webui" in table.stdout


def test_render_prints_artifact(tmp_path: Path) -> None:
    """``render`` prints the artifact without contacting Docker."""
    result = runner.invoke(
        app,
        ["render", "n8n", "--set", "n8n_host=automation.example"],
        env=_prepare_environment(tmp_path),
    )

    assert result.exit_code == 0, result.output
    document = yaml.safe_load(result.stdout)
    assert document["services"]["n8n"]["environment"]["N8N_HOST"] == "automation.example"


def test_render_unknown_unit(tmp_path: Path) -> None:
    """Unknown units are a validation error."""
    result = runner.invoke(app, ["render", "nope"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 2
    assert "Unknown unit 'nope'" in result.stdout


def test_render_unresolved_placeholder(tmp_path: Path) -> None:
    """A template referencing an unknown variable fails to render."""
    env = _prepare_environment(tmp_path)
    override = tmp_path / "templates" / "llms"
    override.mkdir(parents=True)
    (override / "ollama.yml.j2").write_text("gpu: {{ gpu_count }}\n", encoding="utf-8")

    result = runner.invoke(app, ["render", "ollama"], env=env)

    assert result.exit_code == 2
    assert "unresolved-placeholder: gpu_count" in result.stdout


def test_config_show_json(tmp_path: Path) -> None:
    """``config show --json`` prints effective settings."""
    result = runner.invoke(app, ["config", "show", "--json"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0, result.output
    payload = _extract_json(result.stdout)
    assert payload["logs_dir"] == str(tmp_path / "logs")
    assert payload["docker"] == {"bin": "docker", "timeout": 600.0}


def test_config_vars_redacts_secrets(tmp_path: Path) -> None:
    """Secret-store values are redacted unless ``--show-secrets`` is given."""
    env = _prepare_environment(tmp_path)
    env["HOSTSTACK_VAR_TIMEZONE"] = "Europe/Berlin"

    result = runner.invoke(app, ["config", "vars", "--json"], env=env)

    assert result.exit_code == 0, result.output
    payload = _extract_json(result.stdout)
    assert payload["n8n_encryption_key"] == {"value": "***", "source": "secrets"}
    assert payload["timezone"] == {"value": "Europe/Berlin", "source": "environment"}
    assert payload["n8n_port"]["source"] == "defaults"

    shown = runner.invoke(app, ["config", "vars", "--json", "--show-secrets"], env=env)
    assert _extract_json(shown.stdout)["n8n_encryption_key"]["value"] == "n8n-secret"
