from __future__ import annotations

import re
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from image_tasks import __version__
from image_tasks.main import image_tasks

pytestmark = [
    allure.epic("Operations"),
    allure.feature("CLI"),
]

_TASK_ID = re.compile(r"task_id=([0-9a-f-]{36})")


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("IMAGE_TASKS_OUTPUT_DIRECTORY", str(tmp_path / "output"))
    monkeypatch.setenv("IMAGE_TASKS_WORKER_POLL_INTERVAL_SECONDS", "0")
    return tmp_path / "cli.db"


def _submit(runner: CliRunner, db_path: Path, source: str) -> str:
    result = runner.invoke(image_tasks, ["tasks", "submit", "--db-path", str(db_path), source])
    assert result.exit_code == 0, result.output
    match = _TASK_ID.search(result.output)
    assert match is not None
    return match.group(1)


def test_version_option() -> None:
    result = CliRunner().invoke(image_tasks, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_submit_prints_pending_task_with_price(cli_env: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(
        image_tasks,
        ["tasks", "submit", "--db-path", str(cli_env), "/tmp/img.jpg"],
    )

    assert result.exit_code == 0, result.output
    assert "status=pending" in result.output
    assert re.search(r"price=\d{1,2}\.\d{2}", result.output)


def test_submit_blank_path_is_a_usage_error(cli_env: Path) -> None:
    result = CliRunner().invoke(image_tasks, ["tasks", "submit", "--db-path", str(cli_env), " "])

    assert result.exit_code != 0
    assert "must not be empty" in result.output


def test_worker_run_processes_submitted_tasks(cli_env: Path, tmp_path: Path, image_bytes) -> None:
    source = tmp_path / "photo.jpg"
    source.write_bytes(image_bytes(1100, 800))
    runner = CliRunner()
    good = _submit(runner, cli_env, str(source))
    bad = _submit(runner, cli_env, "ftp://host/img.jpg")

    run = runner.invoke(
        image_tasks,
        ["worker", "run", "--db-path", str(cli_env), "--concurrency", "2", "--loop"],
    )
    assert run.exit_code == 0, run.output
    assert "processed=2" in run.output
    assert "acked=2" in run.output

    shown = runner.invoke(
        image_tasks,
        ["tasks", "show", "--db-path", str(cli_env), "--task-id", good],
    )
    assert shown.exit_code == 0, shown.output
    assert "Status: completed" in shown.output
    assert "Variants: 2" in shown.output
    assert "processing -> completed" in shown.output

    failed = runner.invoke(
        image_tasks,
        ["tasks", "show", "--db-path", str(cli_env), "--task-id", bad],
    )
    assert "Status: failed" in failed.output
    assert "Error: File not found: ftp://host/img.jpg" in failed.output
    assert "Failure kind: not_found" in failed.output

    listed = runner.invoke(
        image_tasks,
        ["tasks", "list", "--db-path", str(cli_env), "--status", "completed"],
    )
    assert "Tasks: 1" in listed.output
    assert good in listed.output

    stats = runner.invoke(image_tasks, ["queue", "stats", "--db-path", str(cli_env)])
    assert "queued=0 claimed=0 done=2 dead=0" in stats.output

    purged = runner.invoke(
        image_tasks,
        ["tasks", "purge", "--db-path", str(cli_env), "--task-id", good],
    )
    assert purged.exit_code == 0, purged.output
    assert not (tmp_path / "output" / good).exists()


def test_worker_once_handles_a_single_job(cli_env: Path) -> None:
    runner = CliRunner()
    _submit(runner, cli_env, "/tmp/first.jpg")
    _submit(runner, cli_env, "/tmp/second.jpg")

    run = runner.invoke(image_tasks, ["worker", "run", "--db-path", str(cli_env), "--once"])

    assert run.exit_code == 0, run.output
    assert "processed=1" in run.output
    stats = runner.invoke(image_tasks, ["queue", "stats", "--db-path", str(cli_env)])
    assert "queued=1" in stats.output


def test_show_unknown_task_fails_cleanly(cli_env: Path) -> None:
    result = CliRunner().invoke(
        image_tasks,
        ["tasks", "show", "--db-path", str(cli_env), "--task-id", "missing"],
    )

    assert result.exit_code != 0
    assert "Task not found: missing" in result.output


def test_reconcile_reports_nothing_when_every_task_has_a_job(cli_env: Path) -> None:
    runner = CliRunner()
    _submit(runner, cli_env, "/tmp/img.jpg")

    result = runner.invoke(
        image_tasks,
        ["tasks", "reconcile", "--db-path", str(cli_env), "--older-than-seconds", "0"],
    )

    assert result.exit_code == 0, result.output
    assert "Orphaned tasks re-enqueued: 0" in result.output


def test_log_level_option_is_validated() -> None:
    result = CliRunner().invoke(image_tasks, ["--log-level", "LOUD", "queue", "stats"])

    assert result.exit_code != 0
