#!/usr/bin/env python3
"""
Kontextor - Zone-ordered context blocks for language model prompts

Main entry point for the Kontextor command line. Each command opens the
database, performs one operation through the reference manager (or the
workflow, snapshot and agent layers built on it) and prints the result.
"""

import logging
import sys
import argparse
import json
from typing import List

from kontextor.agents import AgentRunner
from kontextor.assembly import assemble_context, export_context, extract_system_prompt, zone_metrics, EXPORT_FORMATS
from kontextor.config import config
from kontextor.database import DatabaseManager
from kontextor.exceptions import KontextorError
from kontextor.models import Block, Zone
from kontextor.references import ReferenceManager
from kontextor.snapshots import SnapshotSerializer
from kontextor.workflows import WorkflowManager


def setup_logging(verbose: bool = False):
    """Configure logging for the application."""
    level_name = "DEBUG" if verbose else config.get("logging.level", "INFO")
    level = getattr(logging, level_name.upper())
    format_str = config.get("logging.format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = config.log_filename

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file)
        ]
    )


def format_block(block: Block) -> str:
    """
    Render one resolved block as a single listing line.

    Linked blocks are marked with the id of the block they share content with.
    """
    marker = f" -> {block.reference_id}" if block.is_linked else ""
    draft = " [draft]" if block.is_draft else ""
    preview = block.content.replace("\n", " ")
    if len(preview) > 60:
        preview = preview[:57] + "..."
    return f"{block.block_id}  {block.zone.value:<9} {block.order_key:<8g} {block.kind:<14}{draft}{marker}  {preview}"


def print_blocks(blocks: List[Block]):
    if not blocks:
        print("(no blocks)")
        return
    for block in blocks:
        print(format_block(block))


def run_command(args, db: DatabaseManager) -> int:
    """
    Dispatch a parsed command.

    Returns:
        Process exit code
    """
    references = ReferenceManager(db)

    if args.command == "init":
        print(f"Database initialized at {db.db_path}")

    elif args.command == "workspace":
        if args.action == "create":
            with db.transaction():
                workspace = db.create_workspace(name=args.name)
            print(workspace.workspace_id)
        elif args.action == "list":
            for workspace in db.list_workspaces():
                step = f" (step {workspace.step_number} of {workspace.workflow_name})" if workspace.workflow_name else ""
                print(f"{workspace.workspace_id}  {workspace.name}{step}")
        elif args.action == "destroy":
            print(json.dumps(references.destroy_workspace(args.workspace_id)))
        elif args.action == "clear":
            print(json.dumps(references.clear_workspace(args.workspace_id)))

    elif args.command == "block":
        if args.action == "add":
            block = references.create_block(args.workspace_id, args.content, kind=args.kind, zone=args.zone)
            print(block.block_id)
            duplicate = references.find_duplicate(args.content, exclude_workspace_id=args.workspace_id)
            if duplicate:
                print(f"Same content exists in workspace {duplicate.workspace_id} as block {duplicate.block_id}; "
                      f"consider linking instead")
        elif args.action == "link":
            print(references.create_linked(args.workspace_id, args.canonical_id, zone=args.zone).block_id)
        elif args.action == "edit":
            print(format_block(references.edit(args.block_id, content=args.content, kind=args.kind)))
        elif args.action == "unlink":
            print(format_block(references.unlink(args.block_id)))
        elif args.action == "delete":
            promoted = references.delete_block(args.block_id)
            print(f"Deleted {args.block_id}; promoted {promoted} reference(s)")
        elif args.action == "move":
            print(format_block(references.move(args.block_id, args.zone)))
        elif args.action == "draft":
            print(format_block(references.toggle_draft(args.block_id)))
        elif args.action == "list":
            print_blocks(references.list_blocks(args.workspace_id, args.zone))
        elif args.action == "reorder":
            if args.before or args.after:
                block = references.reorder_relative(args.block_id, args.before or args.after, before=bool(args.before))
            elif args.index is not None:
                block = references.reorder_to_index(args.block_id, args.index, zone=args.zone)
            elif args.zone:
                block = references.move_and_reorder(args.block_id, args.zone, args.key)
            else:
                block = references.reorder(args.block_id, args.key)
            print(format_block(block))
        elif args.action == "renumber":
            if not args.force and not references.zone_needs_renumber(args.workspace_id, args.zone):
                print(f"Order keys in {args.zone} are well spaced; nothing to do (use --force to renumber anyway)")
            else:
                print(f"Renumbered {references.renumber_zone(args.workspace_id, args.zone)} block(s)")

    elif args.command == "assemble":
        blocks = references.list_blocks(args.workspace_id)
        output = {
            "system_prompt": extract_system_prompt(blocks),
            "messages": [m.model_dump() for m in assemble_context(blocks, args.prompt)]
        }
        print(json.dumps(output, indent=2))

    elif args.command == "export":
        result = export_context(references.list_blocks(args.workspace_id), args.format, not args.no_placeholder)
        print(result["text"])
        logging.info(f"Exported {result['block_count']} block(s), ~{result['tokens']} tokens")

    elif args.command == "metrics":
        print(json.dumps(zone_metrics(references.list_blocks(args.workspace_id)), indent=2))

    elif args.command == "workflow":
        workflows = WorkflowManager(references)
        if args.action == "list":
            for name in workflows.list_workflows():
                steps = " -> ".join(step.name for step in workflows.get_workflow(name).steps)
                print(f"{name}: {steps}")
        elif args.action == "start":
            print(workflows.start(args.workflow_name, args.name).workspace_id)
        elif args.action == "advance":
            workspace, created = workflows.advance(args.workspace_id)
            print(f"{workspace.workspace_id}  {workspace.name}{'' if created else ' (existing)'}")

    elif args.command == "snapshot":
        snapshots = SnapshotSerializer(references)
        if args.action == "create":
            print(snapshots.create(args.workspace_id, args.name).snapshot_id)
        elif args.action == "restore":
            print(f"Restored into workspace {snapshots.restore(args.snapshot_id)}")
        elif args.action == "list":
            for snapshot in snapshots.list(args.workspace_id):
                print(f"{snapshot.snapshot_id}  {snapshot.name}  ({len(snapshot.blocks)} blocks, {snapshot.created_at})")

    elif args.command == "generate":
        with AgentRunner(references) as runner:
            print(runner.generate(args.workspace_id, args.prompt))

    elif args.command == "compress":
        with AgentRunner(references) as runner:
            print(format_block(runner.compress_block(args.block_id)))

    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    zones = [zone.value for zone in Zone]

    parser = argparse.ArgumentParser(
        description="Kontextor - zone-ordered context blocks with shared, linked content"
    )
    parser.add_argument("--db", default=None, help="Path to the DuckDB database (defaults to config value)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("init", help="Create the database tables")

    workspace = commands.add_parser("workspace", help="Manage workspaces")
    workspace_actions = workspace.add_subparsers(dest="action", required=True)
    create = workspace_actions.add_parser("create")
    create.add_argument("name")
    workspace_actions.add_parser("list")
    for action in ("destroy", "clear"):
        workspace_actions.add_parser(action).add_argument("workspace_id")

    block = commands.add_parser("block", help="Manage blocks")
    block_actions = block.add_subparsers(dest="action", required=True)
    add = block_actions.add_parser("add")
    add.add_argument("workspace_id")
    add.add_argument("content")
    add.add_argument("--kind", default=None)
    add.add_argument("--zone", choices=zones, default=None)
    link = block_actions.add_parser("link")
    link.add_argument("workspace_id")
    link.add_argument("canonical_id")
    link.add_argument("--zone", choices=zones, default=None)
    edit = block_actions.add_parser("edit")
    edit.add_argument("block_id")
    edit.add_argument("content", nargs="?", default=None)
    edit.add_argument("--kind", default=None)
    for action in ("unlink", "delete", "draft"):
        block_actions.add_parser(action).add_argument("block_id")
    move = block_actions.add_parser("move")
    move.add_argument("block_id")
    move.add_argument("zone", choices=zones)
    listing = block_actions.add_parser("list")
    listing.add_argument("workspace_id")
    listing.add_argument("--zone", choices=zones, default=None)
    renumber = block_actions.add_parser("renumber")
    renumber.add_argument("workspace_id")
    renumber.add_argument("zone", choices=zones)
    renumber.add_argument("--force", action="store_true", help="Renumber even if keys are well spaced")
    reorder = block_actions.add_parser("reorder")
    reorder.add_argument("block_id")
    position = reorder.add_mutually_exclusive_group(required=True)
    position.add_argument("--key", type=float, help="Explicit order key")
    position.add_argument("--index", type=int, help="Position among the zone's other blocks")
    position.add_argument("--before", metavar="BLOCK_ID", help="Place directly before this block")
    position.add_argument("--after", metavar="BLOCK_ID", help="Place directly after this block")
    reorder.add_argument("--zone", choices=zones, default=None, help="Target zone for --key or --index")

    assemble = commands.add_parser("assemble", help="Print the model messages for a prompt")
    assemble.add_argument("workspace_id")
    assemble.add_argument("prompt")

    export = commands.add_parser("export", help="Export a workspace's context as text")
    export.add_argument("workspace_id")
    export.add_argument("--format", choices=EXPORT_FORMATS, default="plain")
    export.add_argument("--no-placeholder", action="store_true")

    metrics = commands.add_parser("metrics", help="Show per-zone token usage")
    metrics.add_argument("workspace_id")

    workflow = commands.add_parser("workflow", help="Run multi-step workflows")
    workflow_actions = workflow.add_subparsers(dest="action", required=True)
    workflow_actions.add_parser("list")
    start = workflow_actions.add_parser("start")
    start.add_argument("workflow_name")
    start.add_argument("name")
    workflow_actions.add_parser("advance").add_argument("workspace_id")

    snapshot = commands.add_parser("snapshot", help="Save and restore workspace snapshots")
    snapshot_actions = snapshot.add_subparsers(dest="action", required=True)
    snap_create = snapshot_actions.add_parser("create")
    snap_create.add_argument("workspace_id")
    snap_create.add_argument("name")
    snapshot_actions.add_parser("restore").add_argument("snapshot_id")
    snapshot_actions.add_parser("list").add_argument("workspace_id")

    generate = commands.add_parser("generate", help="Answer a prompt with the workspace context")
    generate.add_argument("workspace_id")
    generate.add_argument("prompt")

    commands.add_parser("compress", help="Compress a block with the model").add_argument("block_id")

    return parser


def main(argv=None) -> int:
    """Main entry point for Kontextor."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    db_path = args.db or config.database_filename
    try:
        with DatabaseManager(db_path) as db:
            db.initialize_database()
            return run_command(args, db)
    except KontextorError as e:
        logging.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
