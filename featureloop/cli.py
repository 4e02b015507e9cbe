#!/usr/bin/env python3
"""
featureloop CLI

Command-line interface for coordinating parallel feature agents.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console

from . import __version__
from .config import load_config
from .dashboard import render_snapshot, take_snapshot
from .features import (
    FeatureError,
    NoFeaturesError,
    normalize_feature_name,
    remove_feature,
    validate_feature_name,
)
from .hosts.base import AgentHostError
from .hosts.selector import select_host
from .layout import ProjectLayout
from .mailbox import Mailbox, MailboxRouter, RouterCursor
from .phases import PhasePipeline
from .prompts import PROJECT_SPEC_TEMPLATE
from .session import ProjectSession
from .workspace import GitWorkspaceManager, WorkspaceError

console = Console()


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def get_context(args):
    """Project layout and config for --dir."""
    project_dir = Path(args.dir or ".").resolve()
    config = load_config(project_dir)
    return ProjectLayout.for_project(project_dir, config.state_dir), config


def make_session(layout, config) -> ProjectSession:
    return ProjectSession(
        layout,
        config,
        host=select_host(layout, config),
        workspaces=GitWorkspaceManager(layout, session_prefix=config.session_prefix),
    )


def cmd_init(args):
    """Create the state directory and the project spec."""
    layout, _ = get_context(args)

    if layout.project_spec.exists() and not args.force:
        console.print(f"[yellow]{layout.project_spec} already exists (use --force to overwrite)[/yellow]")
        sys.exit(1)

    layout.feature_specs_dir.mkdir(parents=True, exist_ok=True)
    layout.qa_reports_dir.mkdir(parents=True, exist_ok=True)
    layout.project_spec.write_text(PROJECT_SPEC_TEMPLATE.render({
        "project_name": layout.project_name,
        "description": args.description,
    }))
    Mailbox(layout.mailbox).ensure()

    console.print(f"[green]Created {layout.project_spec}[/green]")
    console.print("\nNext steps:")
    console.print("  1. featureloop phases     # research, specs and standards")
    console.print("  2. featureloop run        # launch agents and supervise")


def cmd_phases(args):
    """Run research -> spec -> standards."""
    layout, config = get_context(args)

    context = args.context
    if not context and layout.project_spec.exists():
        context = layout.project_spec.read_text(errors="replace")

    with console.status("Starting...") as status:
        def on_progress(phase: str, description: str) -> None:
            status.update(f"[cyan]{phase}[/cyan] agent working... [dim]{description}[/dim]")

        pipeline = PhasePipeline(layout, select_host(layout, config), config, on_progress=on_progress)
        try:
            outcomes = pipeline.run_all(context or "")
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted by user[/yellow]")
            sys.exit(130)

    for outcome in outcomes:
        if outcome.succeeded and not outcome.fallback_used:
            console.print(f"[green]✓[/green] {outcome.name}")
        else:
            console.print(f"[yellow]![/yellow] {outcome.name} (fallback used)")


def cmd_add(args):
    """Add a feature, joining a running session if there is one."""
    layout, config = get_context(args)

    feature_id = normalize_feature_name(args.feature)
    try:
        validate_feature_name(feature_id)
    except FeatureError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    description = args.description or ""
    if args.from_file:
        description = Path(args.from_file).read_text(errors="replace")

    try:
        launched = make_session(layout, config).add_feature(feature_id, description)
    except (FeatureError, WorkspaceError, AgentHostError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]Feature added: {feature_id}[/green]")
    if launched:
        console.print(f"Worker launched for {feature_id}")
    else:
        console.print("Start: featureloop run")


def cmd_remove(args):
    """Drop a feature from the feature list."""
    layout, config = get_context(args)

    if not remove_feature(layout, args.feature):
        console.print(f"[yellow]{args.feature} is not in the feature list[/yellow]")
        sys.exit(1)

    if args.workspace:
        GitWorkspaceManager(layout, session_prefix=config.session_prefix).remove(args.feature)
    console.print(f"[green]Removed {args.feature}[/green]")


def cmd_run(args):
    """Launch agents, route messages and supervise until complete."""
    layout, config = get_context(args)
    if args.auto_pr:
        config.auto_pr = True
    session = make_session(layout, config)

    try:
        outcome = session.run(launch=not args.no_launch)
    except NoFeaturesError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    except (WorkspaceError, AgentHostError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if outcome is not None and outcome.done and outcome.archive is not None:
        console.print(f"[green]PROJECT COMPLETE[/green] State archived to {outcome.archive.archive_dir}")
        pull_request = outcome.pull_request
        if pull_request is not None:
            if pull_request.created:
                console.print(f"[green]PR created:[/green] {pull_request.url}")
            else:
                console.print(f"[yellow]PR skipped: {pull_request.reason}[/yellow]")


def cmd_route(args):
    """Run only the mailbox router, in the foreground."""
    layout, config = get_context(args)

    router = MailboxRouter(
        Mailbox(layout.mailbox),
        select_host(layout, config),
        cursor=RouterCursor(layout.cursor_file),
        interval=config.router_interval,
    )
    try:
        router.run()
    except KeyboardInterrupt:
        router.stop()


def cmd_status(args):
    """Show workers, project state and recent messages."""
    layout, _ = get_context(args)
    snapshot = take_snapshot(layout, message_limit=args.messages)

    if args.json:
        print(json.dumps(snapshot.to_dict(), indent=2, default=str))
    else:
        console.print(render_snapshot(snapshot))


def cmd_send(args):
    """Append a message to the mailbox."""
    layout, _ = get_context(args)
    body = args.body.replace("\\n", "\n")
    if not body.strip():
        console.print("[red]Error: message body is empty[/red]")
        sys.exit(1)

    Mailbox(layout.mailbox).post(args.sender, args.to, body)
    console.print(f"Sent {args.sender} -> {args.to}")


def main():
    parser = argparse.ArgumentParser(
        description="featureloop - coordinate parallel feature agents through merge, QA and fixes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  featureloop init "A todo app with tags and due dates"
  featureloop phases
  featureloop add search --description "Full-text search over todos"
  featureloop run
  featureloop status
  featureloop send qa RUN_QA
        """
    )

    parser.add_argument('--dir', '-d', default='.', help='Project directory (default: current)')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--version', '-v', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    init_parser = subparsers.add_parser('init', help='Create the state directory and project spec')
    init_parser.add_argument('description', help='Project description')
    init_parser.add_argument('--force', '-f', action='store_true', help='Overwrite an existing project spec')
    init_parser.set_defaults(func=cmd_init)

    phases_parser = subparsers.add_parser('phases', help='Run research, spec enrichment and standards')
    phases_parser.add_argument('--context', help='Project context (default: the project spec)')
    phases_parser.set_defaults(func=cmd_phases)

    add_parser = subparsers.add_parser('add', help='Add a feature')
    add_parser.add_argument('feature', help='Feature name')
    add_parser.add_argument('--description', help='Feature description')
    add_parser.add_argument('--from-file', help='Read the feature description from a file')
    add_parser.set_defaults(func=cmd_add)

    remove_parser = subparsers.add_parser('remove', help='Remove a feature from the feature list')
    remove_parser.add_argument('feature', help='Feature id')
    remove_parser.add_argument('--workspace', action='store_true', help='Also remove its workspace')
    remove_parser.set_defaults(func=cmd_remove)

    run_parser = subparsers.add_parser('run', help='Launch agents and supervise')
    run_parser.add_argument('--no-launch', action='store_true',
                            help='Reattach to agents that are already running')
    run_parser.add_argument('--auto-pr', action='store_true',
                            help='Open a pull request for the base branch when the project completes')
    run_parser.set_defaults(func=cmd_run)

    route_parser = subparsers.add_parser('route', help='Run only the mailbox router')
    route_parser.set_defaults(func=cmd_route)

    status_parser = subparsers.add_parser('status', help='Show project status')
    status_parser.add_argument('--json', action='store_true', help='Output as JSON')
    status_parser.add_argument('--messages', type=int, default=5, help='Recent messages to show')
    status_parser.set_defaults(func=cmd_status)

    send_parser = subparsers.add_parser('send', help='Post a message to the mailbox')
    send_parser.add_argument('to', help='Recipient agent id')
    send_parser.add_argument('body', help='Message body (\\n for newlines)')
    send_parser.add_argument('--sender', default='human', help='Sender id (default: human)')
    send_parser.set_defaults(func=cmd_send)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.verbose)
    args.func(args)


if __name__ == '__main__':
    main()
