"""CLI: context-session config validate, templates, snapshots."""

from __future__ import annotations

import argparse
import logging
import sys

import yaml

from ..config import load_config, validate_config
from ..presets import get_template, list_templates
from ..storage.filesystem import SnapshotDirectory


def _get_snapshots(config_path: str | None = None):
    config = load_config(config_path)
    return SnapshotDirectory(root=config.snapshots.root), config


def cmd_config_validate(args):
    """Validate the config file."""
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config errors:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        sys.exit(1)

    w = config.window
    print("Config is valid.")
    print(f"Window:    {w.capacity:,} tokens (reserve {w.reserve_margin}, prune 1/{w.prune_divisor})")
    print(f"Template:  {config.template}")
    print(f"Snapshots: {config.snapshots.root}")


def cmd_templates(args):
    """List templates or show one."""
    action = getattr(args, "templates_action", None) or "list"

    if action == "show":
        template = get_template(args.template_name)
        if template is None:
            print(f"Unknown template: {args.template_name}", file=sys.stderr)
            sys.exit(1)
        print(yaml.dump(
            {
                "name": template.name,
                "description": template.description,
                "system": template.system,
                "prompt": template.prompt,
                "exchange": template.exchange,
                "stop_strings": template.stop_strings,
            },
            default_flow_style=False,
            sort_keys=False,
        ).rstrip())
        return

    print(f"{'Template':<12} Description")
    print("-" * 60)
    for t in list_templates():
        print(f"{t.name:<12} {t.description}")


def cmd_snapshots(args):
    """List or delete stored snapshots."""
    snapshots, config = _get_snapshots(args.config)
    action = getattr(args, "snapshots_action", None) or "list"

    if action == "delete":
        deleted = snapshots.delete(args.conversation_id, args.model)
        if not deleted:
            print(f"No snapshots for conversation: {args.conversation_id}", file=sys.stderr)
            sys.exit(1)
        print(f"Deleted {deleted} snapshot(s).")
        return

    entries = snapshots.list_entries()
    if not entries:
        print("No snapshots yet.")
        return

    print(f"{'Conversation':<38} {'Model':<28} {'Tokens':>7} {'Bytes':>12} {'Saved':>17}")
    print("-" * 106)
    for e in sorted(entries, key=lambda e: e.saved_at, reverse=True):
        print(
            f"{e.conversation_id:<38} {e.model_name:<28} {e.occupied:>7,} "
            f"{e.size:>12,} {e.saved_at.strftime('%Y-%m-%d %H:%M'):>17}"
        )


def main():
    parser = argparse.ArgumentParser(
        prog="context-session",
        description="Sliding-window session manager for local LLM backends",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    # templates
    templates_parser = subparsers.add_parser("templates", help="List or inspect chat templates")
    templates_sub = templates_parser.add_subparsers(dest="templates_action")
    templates_sub.add_parser("list", help="List all available templates")
    templates_show_parser = templates_sub.add_parser("show", help="Show a template as YAML")
    templates_show_parser.add_argument("template_name", help="Template name to show")

    # snapshots
    snapshots_parser = subparsers.add_parser("snapshots", help="Manage stored snapshots")
    snapshots_sub = snapshots_parser.add_subparsers(dest="snapshots_action")
    snapshots_sub.add_parser("list", help="List recorded snapshots")
    snapshots_delete_parser = snapshots_sub.add_parser("delete", help="Delete snapshots")
    snapshots_delete_parser.add_argument("conversation_id", help="Conversation id")
    snapshots_delete_parser.add_argument("--model", "-m", default=None, help="Only this model's snapshot")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            config_parser.print_help()
            sys.exit(1)
    elif args.command == "templates":
        cmd_templates(args)
    elif args.command == "snapshots":
        cmd_snapshots(args)


if __name__ == "__main__":
    main()
