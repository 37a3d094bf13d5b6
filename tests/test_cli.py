"""Tests for docflow.cli — commands run against a file-backed SQLite database."""

import json
from datetime import date, timedelta

import pytest

from docflow.cli import main


@pytest.fixture
def cli_env(tmp_path):
    """A docflow.yaml writing logs under tmp_path, plus a SQLite URL."""
    log_dir = tmp_path / "logs"
    config_file = tmp_path / "docflow.yaml"
    config_file.write_text(
        "docflow:\n"
        "  environment: dev\n"
        "logging:\n"
        f"  directory: {log_dir.as_posix()}\n"
        "  async_queue:\n"
        "    flush_interval_ms: 10\n",
        encoding="utf-8",
    )
    args = ["--config", str(config_file), "--db-url", f"sqlite:///{(tmp_path / 'docflow.db').as_posix()}"]
    yield args, log_dir

    from docflow.db.session import close_db
    close_db()


def run(capsys, *argv):
    code = main(list(argv))
    return code, capsys.readouterr().out


@pytest.fixture
def seeded(cli_env, capsys):
    """Tables plus a Secretary (id 1), Team Leader (id 2) and Officer (id 3)."""
    args, _ = cli_env
    assert run(capsys, "init-db", *args)[0] == 0
    assert run(capsys, "add-user", "vanthu", "--role", "Văn thư", *args)[0] == 0
    assert run(capsys, "add-user", "truong", "--role", "team_leader", "--name", "Trưởng", *args)[0] == 0
    assert run(capsys, "add-user", "canbo", "--role", "OFFICER", *args)[0] == 0
    return args


def test_no_command_prints_help(capsys):
    code, out = run(capsys)
    assert code == 0
    assert "usage: docflow" in out


def test_init_db(cli_env, capsys):
    args, _ = cli_env
    code, out = run(capsys, "init-db", *args)
    assert code == 0
    assert "[OK] Tables ready (docflow 1.0.0, dev)" in out


def test_init_db_bad_config(tmp_path, capsys):
    bad = tmp_path / "docflow.yaml"
    bad.write_text("docflow:\n  environment: moon\n", encoding="utf-8")
    code, out = run(capsys, "init-db", "--config", str(bad), "--db-url", "sqlite://")
    assert code == 1
    assert "[ERROR] Invalid configuration" in out


class TestAddUser:
    def test_labels_and_names(self, seeded, capsys):
        code, out = run(capsys, "add-user", "pho", "--role", "Phó Công An Xã", *seeded)
        assert code == 0
        assert "[OK] User 4 'pho' (Phó Công An Xã)" in out

    def test_unknown_role(self, seeded, capsys):
        code, out = run(capsys, "add-user", "x", "--role", "janitor", *seeded)
        assert code == 1
        assert "Unknown Role" in out

    def test_duplicate_username(self, seeded, capsys):
        code, out = run(capsys, "add-user", "vanthu", "--role", "secretary", *seeded)
        assert code == 1
        assert "already taken" in out


class TestWorkflowCommands:
    def test_create_assign_history(self, seeded, capsys):
        code, out = run(capsys, "create-task", "--actor", "1", "--description", "Công văn 12",
                        "--deadline", "2026-12-01T17:00", *seeded)
        assert code == 0
        assert "[OK] Task 1: - -> not_started (assignee: -)" in out

        code, out = run(capsys, "execute", "assign", "--actor", "1", "--task", "1", "--target", "2", *seeded)
        assert code == 0
        assert "[OK] Task 1: not_started -> received (assignee: 2)" in out

        code, out = run(capsys, "execute", "delegate", "--actor", "2", "--task", "1", "--target", "3",
                        "--note", "xử lý gấp", *seeded)
        assert code == 0
        assert "received -> in_progress (assignee: 3)" in out

        code, out = run(capsys, "history", "1", "--json", *seeded)
        assert code == 0
        entries = json.loads(out)
        assert [e["sequence"] for e in entries] == [1, 2, 3]
        assert entries[0]["old_status"] is None
        assert entries[2]["note"] == "xử lý gấp"
        assert entries[2]["new_assignee_id"] == 3

        code, out = run(capsys, "history", "1", *seeded)
        assert code == 0
        assert "assignee 2 -> 3" in out

    def test_denied_operation(self, seeded, capsys):
        run(capsys, "create-task", "--actor", "1", *seeded)
        code, out = run(capsys, "execute", "delegate", "--actor", "3", "--task", "1", "--target", "2", *seeded)
        assert code == 1
        assert out.startswith("[ERROR]")

    def test_officer_cannot_create(self, seeded, capsys):
        code, out = run(capsys, "create-task", "--actor", "3", *seeded)
        assert code == 1
        assert "[ERROR]" in out

    def test_bad_deadline(self, seeded, capsys):
        code, out = run(capsys, "create-task", "--actor", "1", "--deadline", "tomorrow", *seeded)
        assert code == 1
        assert "Invalid --deadline" in out

    def test_history_of_unknown_task(self, seeded, capsys):
        code, out = run(capsys, "history", "99", *seeded)
        assert code == 1
        assert "No history for task 99" in out

    def test_update_progress(self, seeded, capsys):
        run(capsys, "create-task", "--actor", "1", *seeded)
        run(capsys, "execute", "assign", "--actor", "1", "--task", "1", "--target", "2", *seeded)
        code, out = run(capsys, "execute", "update_progress", "--actor", "2", "--task", "1",
                        "--content", "Đã liên hệ", *seeded)
        assert code == 0
        assert "received -> received" in out

    def test_edit_clears_deadline(self, seeded, capsys):
        run(capsys, "create-task", "--actor", "1", "--deadline", "2020-01-01T00:00", *seeded)
        assert "overdue" in run(capsys, "tasks", "--as", "1", *seeded)[1]

        code, out = run(capsys, "execute", "edit", "--actor", "1", "--task", "1", "--clear-deadline", *seeded)
        assert code == 0
        assert "not_started -> not_started" in out

        code, out = run(capsys, "tasks", "--as", "1", *seeded)
        assert "overdue" not in out
        assert "normal" in out

    def test_operations_write_audit_log(self, cli_env, seeded, capsys):
        _, log_dir = cli_env
        run(capsys, "create-task", "--actor", "1", *seeded)
        run(capsys, "execute", "assign", "--actor", "1", "--task", "1", "--target", "2", *seeded)
        assert list((log_dir / "tasks" / "execution").glob("*.jsonl"))


class TestTasks:
    def test_visible_tasks(self, seeded, capsys):
        run(capsys, "create-task", "--actor", "1", "--description", "Báo cáo tháng", *seeded)
        run(capsys, "create-task", "--actor", "1", "--description", "Tờ trình", *seeded)
        run(capsys, "execute", "assign", "--actor", "1", "--task", "1", "--target", "2", *seeded)

        code, out = run(capsys, "tasks", "--as", "2", *seeded)
        assert code == 0
        assert "Báo cáo tháng" in out
        assert "Tờ trình" not in out
        assert "1 task(s) visible to truong (Trưởng Công An Xã)" in out

        code, out = run(capsys, "tasks", "--as", "1", *seeded)
        assert "2 task(s) visible" in out

    def test_unknown_viewer(self, seeded, capsys):
        code, out = run(capsys, "tasks", "--as", "42", *seeded)
        assert code == 1
        assert "[ERROR]" in out


def test_roles(capsys):
    code, out = run(capsys, "roles")
    assert code == 0
    assert "assign" in out
    assert "secretary      (Văn thư): team_leader, deputy" in out
    assert "officer        (Cán bộ): -" in out


def test_cleanup_logs(cli_env, capsys):
    args, log_dir = cli_env
    category = log_dir / "tasks" / "execution"
    category.mkdir(parents=True)
    (category / "2020-01-01.jsonl").write_text("{}\n", encoding="utf-8")
    (category / f"{(date.today() - timedelta(days=10)).isoformat()}.jsonl").write_text("{}\n", encoding="utf-8")

    code, out = run(capsys, "cleanup-logs", "--config", args[1])
    assert code == 0
    assert "[OK] Deleted 1 file(s), compressed 1" in out
