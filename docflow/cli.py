"""
docflow CLI — database bootstrap and workflow commands.

Commands:
- docflow init-db       — Create the users / tasks / task_status_history tables
- docflow add-user      — Add a user to the directory
- docflow create-task   — Create a NotStarted task (Secretary / Administrator)
- docflow execute KIND  — Run one workflow operation (assign, delegate, ...)
- docflow history ID    — Print a task's status ledger
- docflow tasks         — List the tasks a user can see, with deadline urgency
- docflow roles         — Print the role hierarchy table
- docflow cleanup-logs  — Apply log retention (delete / gzip old audit logs)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("docflow.cli")

OPERATION_CHOICES = [
    "assign", "delegate", "forward", "submit_for_review",
    "review_approve", "review_reject", "edit", "delete", "update_progress",
]


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="Path to docflow.yaml (default: auto-discover)")
    common.add_argument("--db-url", default=None, help="Override database.url from the config")

    parser = argparse.ArgumentParser(
        prog="docflow",
        description="docflow — task workflow and delegation engine",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # docflow init-db
    subparsers.add_parser("init-db", parents=[common], help="Create database tables")

    # docflow add-user
    user_parser = subparsers.add_parser("add-user", parents=[common], help="Add a user")
    user_parser.add_argument("username", help="Unique login name")
    user_parser.add_argument("--role", required=True, help="Role value, name or Vietnamese label")
    user_parser.add_argument("--name", default="", help="Display name")
    user_parser.add_argument("--inactive", action="store_true", help="Create the user deactivated")

    # docflow create-task
    create_parser = subparsers.add_parser("create-task", parents=[common], help="Create a task")
    create_parser.add_argument("--actor", type=int, required=True, help="Creating user id")
    create_parser.add_argument("--description", default="", help="Task description")
    create_parser.add_argument("--deadline", help="ISO-8601 deadline (UTC if no offset)")
    create_parser.add_argument(
        "--deadline-type", default="specific", choices=["specific", "monthly", "quarterly", "yearly"],
    )
    create_parser.add_argument("--task-type", default="independent", choices=["independent", "document_linked"])
    create_parser.add_argument("--document-id", type=int, help="Linked incoming document id")
    create_parser.add_argument("--note", help="Ledger note")

    # docflow execute
    exec_parser = subparsers.add_parser("execute", parents=[common], help="Run a workflow operation")
    exec_parser.add_argument("kind", choices=OPERATION_CHOICES, help="Operation to run")
    exec_parser.add_argument("--actor", type=int, required=True, help="Acting user id")
    exec_parser.add_argument("--task", type=int, required=True, help="Task id")
    exec_parser.add_argument("--target", type=int, help="Target user id (assign / delegate / forward)")
    exec_parser.add_argument("--note", help="Ledger note")
    exec_parser.add_argument("--description", help="New description (edit)")
    exec_parser.add_argument("--deadline", help="New ISO-8601 deadline (edit)")
    exec_parser.add_argument("--clear-deadline", action="store_true", help="Remove the deadline (edit)")
    exec_parser.add_argument("--content", help="Processing content (update_progress)")
    exec_parser.add_argument("--notes", help="Processing notes (update_progress)")

    # docflow history
    history_parser = subparsers.add_parser("history", parents=[common], help="Print a task's ledger")
    history_parser.add_argument("task_id", type=int)
    history_parser.add_argument("--json", action="store_true", help="Print JSON instead of text")

    # docflow tasks
    tasks_parser = subparsers.add_parser("tasks", parents=[common], help="List tasks visible to a user")
    tasks_parser.add_argument("--as", dest="user_id", type=int, required=True, help="Viewing user id")

    # docflow roles
    subparsers.add_parser("roles", help="Print the role hierarchy")

    # docflow cleanup-logs
    subparsers.add_parser("cleanup-logs", parents=[common], help="Apply audit log retention")

    args = parser.parse_args(argv)

    if args.command == "init-db":
        return cmd_init_db(args)
    elif args.command == "add-user":
        return cmd_add_user(args)
    elif args.command == "create-task":
        return cmd_create_task(args)
    elif args.command == "execute":
        return cmd_execute(args)
    elif args.command == "history":
        return cmd_history(args)
    elif args.command == "tasks":
        return cmd_tasks(args)
    elif args.command == "roles":
        return cmd_roles(args)
    elif args.command == "cleanup-logs":
        return cmd_cleanup_logs(args)
    else:
        parser.print_help()
        return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load(args: argparse.Namespace):
    """Load config (with --db-url override) and initialise the database."""
    from docflow.db.session import init_db_from_config
    from docflow.engine.config import load_config

    config = load_config(args.config)
    if args.db_url:
        config = config.model_copy(
            update={"database": config.database.model_copy(update={"url": args.db_url})}
        )
    factory = init_db_from_config(config, create_tables=args.command == "init-db")
    return config, factory


def _build_engine(config, factory):
    from docflow.db.sql_store import SqlUserDirectory, SqlWorkflowStore
    from docflow.workflow.engine import WorkflowEngine

    store = SqlWorkflowStore(factory)
    users = SqlUserDirectory(factory)
    return WorkflowEngine(store, store, users, config=config), users


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _print_result(result) -> int:
    if not result.ok:
        print(f"[ERROR] {result.error.error_type}: {result.error.message}")
        return 1
    task, entry = result.task, result.entry
    old = entry.old_status.value if entry.old_status else "-"
    print(f"[OK] Task {task.id}: {old} -> {entry.new_status.value} (assignee: {task.assigned_to_id or '-'})")
    return 0


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_init_db(args: argparse.Namespace) -> int:
    from sqlalchemy.exc import SQLAlchemyError

    from docflow.engine.errors import ConfigError

    try:
        config, _ = _load(args)
    except ConfigError as e:
        print(f"[ERROR] {e.message}")
        return 1
    except SQLAlchemyError as e:
        print(f"[ERROR] Failed to create tables: {e}")
        print("  Check database.url in docflow.yaml or pass --db-url.")
        return 1
    print(f"[OK] Tables ready ({config.name} {config.version}, {config.environment})")
    return 0


def cmd_add_user(args: argparse.Namespace) -> int:
    from docflow.engine.errors import WorkflowError
    from docflow.engine.logging import init_logging_from_config, shutdown_logging
    from docflow.workflow.models import Role

    try:
        role = Role.parse(args.role)
    except ValueError as e:
        print(f"[ERROR] {e}")
        return 1

    try:
        config, factory = _load(args)
    except WorkflowError as e:
        print(f"[ERROR] {e.message}")
        return 1

    from docflow.db.sql_store import SqlUserDirectory

    init_logging_from_config(config)
    try:
        user = SqlUserDirectory(factory).add_user(
            args.username, role, name=args.name, is_active=not args.inactive,
        )
    except WorkflowError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        shutdown_logging()
    print(f"[OK] User {user.id} '{user.username}' ({user.role.label})")
    return 0


def cmd_create_task(args: argparse.Namespace) -> int:
    from docflow.engine.errors import WorkflowError
    from docflow.engine.logging import init_logging_from_config, shutdown_logging
    from docflow.workflow.models import DeadlineType, TaskType

    try:
        deadline = _parse_datetime(args.deadline)
    except ValueError as e:
        print(f"[ERROR] Invalid --deadline: {e}")
        return 1

    try:
        config, factory = _load(args)
        engine, _ = _build_engine(config, factory)
    except WorkflowError as e:
        print(f"[ERROR] {e.message}")
        return 1

    init_logging_from_config(config)
    try:
        result = engine.create_task(
            args.actor,
            args.description,
            deadline=deadline,
            deadline_type=DeadlineType(args.deadline_type),
            task_type=TaskType(args.task_type),
            incoming_document_id=args.document_id,
            note=args.note,
        )
    finally:
        shutdown_logging()
    return _print_result(result)


def cmd_execute(args: argparse.Namespace) -> int:
    from pydantic import ValidationError

    from docflow.engine.errors import WorkflowError
    from docflow.engine.logging import init_logging_from_config, shutdown_logging
    from docflow.workflow.models import OperationKind, OperationRequest, ProgressUpdate, TaskChanges

    kind = OperationKind(args.kind)
    changes = None
    progress = None
    try:
        edits = {}
        if args.description is not None:
            edits["description"] = args.description
        if args.deadline is not None:
            edits["deadline"] = _parse_datetime(args.deadline)
        if args.clear_deadline:
            edits["deadline"] = None
        if edits:
            changes = TaskChanges(**edits)
        if args.content is not None or args.notes is not None:
            progress = ProgressUpdate(processing_content=args.content or "", processing_notes=args.notes or "")
        request = OperationRequest(
            kind=kind,
            actor_id=args.actor,
            task_id=args.task,
            target_user_id=args.target,
            note=args.note,
            changes=changes,
            progress=progress,
        )
    except (ValueError, ValidationError) as e:
        print(f"[ERROR] Invalid request: {e}")
        return 1

    try:
        config, factory = _load(args)
        engine, _ = _build_engine(config, factory)
    except WorkflowError as e:
        print(f"[ERROR] {e.message}")
        return 1

    init_logging_from_config(config)
    try:
        result = engine.execute(request)
    finally:
        shutdown_logging()
    return _print_result(result)


def cmd_history(args: argparse.Namespace) -> int:
    from docflow.engine.errors import WorkflowError

    try:
        config, factory = _load(args)
        engine, _ = _build_engine(config, factory)
        entries = engine.history(args.task_id)
    except WorkflowError as e:
        print(f"[ERROR] {e.message}")
        return 1

    if not entries:
        print(f"[ERROR] No history for task {args.task_id}")
        return 1

    if args.json:
        print(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return 0

    for entry in entries:
        old = entry.old_status.value if entry.old_status else "-"
        op = entry.operation.value if entry.operation else "create"
        line = f"{entry.sequence:>3}  {entry.timestamp.isoformat()}  {op:<17} {old} -> {entry.new_status.value}  by {entry.changed_by_id}"
        if entry.assignee_changed:
            line += f"  assignee {entry.old_assignee_id or '-'} -> {entry.new_assignee_id}"
        if entry.note:
            line += f"  \"{entry.note}\""
        print(line)
    return 0


def cmd_tasks(args: argparse.Namespace) -> int:
    from docflow.engine.errors import WorkflowError
    from docflow.workflow.projections import classify_urgency, visible_tasks

    try:
        config, factory = _load(args)
    except WorkflowError as e:
        print(f"[ERROR] {e.message}")
        return 1

    from docflow.db.sql_store import SqlUserDirectory, SqlWorkflowStore

    try:
        viewer = SqlUserDirectory(factory).get_user(args.user_id)
    except WorkflowError as e:
        print(f"[ERROR] {e.message}")
        return 1

    thresholds = config.workflow.urgency
    tasks = visible_tasks(viewer.role, viewer.id, SqlWorkflowStore(factory).list())
    for task in tasks:
        urgency = classify_urgency(
            task, high_days=thresholds.high_days, urgent_days=thresholds.urgent_days,
        ).value
        print(f"{task.id:>5}  {task.status.label:<18} {urgency:<8} {task.description[:60]}")
    print(f"\n{len(tasks)} task(s) visible to {viewer.username or viewer.id} ({viewer.role.label})")
    return 0


def cmd_roles(args: argparse.Namespace) -> int:
    from docflow.workflow.models import Role
    from docflow.workflow.roles import describe_hierarchy

    for operation, rows in describe_hierarchy().items():
        print(operation)
        for role_value, targets in rows.items():
            label = Role(role_value).label
            print(f"  {role_value:<14} ({label}): {', '.join(targets) or '-'}")
    return 0


def cmd_cleanup_logs(args: argparse.Namespace) -> int:
    from docflow.engine.config import load_config
    from docflow.engine.errors import ConfigError
    from docflow.engine.logging import LogRetentionManager

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"[ERROR] {e.message}")
        return 1

    retention = config.logging.retention
    manager = LogRetentionManager(
        log_dir=config.logging.directory,
        retention_days=retention.as_dict(),
        compress_after_days=retention.compress_after_days,
    )
    result = manager.cleanup()
    print(f"[OK] Deleted {result['deleted']} file(s), compressed {result['compressed']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
