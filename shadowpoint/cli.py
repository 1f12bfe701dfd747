#!/usr/bin/env python3
"""Command line entry point for hooks and for people."""

import argparse
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from . import __version__
from .cleanup import (expire_all, expire_project, parse_timestamp,
                      remove_orphaned_repos, repair_metadata)
from .config import CheckpointConfig
from .log import setup_logging
from .metadata import CheckpointMetadata
from .orchestrator import CheckpointOrchestrator, HookOutcome
from .paths import checkpoint_base
from .shadow import ShadowRepository

STATUS_ICONS = {
    'success': '✓',
    'failed': '✗',
    'pending': '⋯',
}


def format_timestamp(timestamp_str: str, now: Optional[datetime] = None) -> str:
    """Render a timestamp relative to now, e.g. '5 minutes ago'."""
    moment = parse_timestamp(timestamp_str)
    if moment is None:
        return timestamp_str
    delta = (now or datetime.now(timezone.utc)) - moment

    if delta < timedelta(minutes=1):
        return "just now"
    if delta < timedelta(hours=1):
        minutes = int(delta.total_seconds() // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if delta < timedelta(days=1):
        hours = int(delta.total_seconds() // 3600)
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    return f"{delta.days} day{'s' if delta.days != 1 else ''} ago"


def _shadow(args) -> ShadowRepository:
    return ShadowRepository(args.project, checkpoint_base=args.checkpoint_base)


def _resolve(shadow: ShadowRepository, checkpoint_id: str) -> Optional[dict]:
    """Find the one listed checkpoint whose hash starts with ``checkpoint_id``."""
    matching = [cp for cp in shadow.list_checkpoints() if cp['hash'].startswith(checkpoint_id)]
    if not matching:
        print(f"Error: No checkpoint found matching '{checkpoint_id}'", file=sys.stderr)
        return None
    if len(matching) > 1:
        print("Error: Ambiguous checkpoint ID. Matches:", file=sys.stderr)
        for cp in matching:
            print(f"  - {cp['hash'][:8]}: {cp['message']}", file=sys.stderr)
        return None
    return matching[0]


def cmd_hook(args) -> int:
    try:
        event = json.load(sys.stdin)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        print(f"Error: Invalid JSON input: {e}", file=sys.stderr)
        return 1
    if not isinstance(event, dict):
        print("Error: Invalid JSON input: expected an object", file=sys.stderr)
        return 1

    event_cwd = event.get('cwd')
    project = args.project if args.project_given or not event_cwd else Path(event_cwd)
    orchestrator = CheckpointOrchestrator(CheckpointConfig(args.config), project,
                                          checkpoint_base=args.checkpoint_base)
    outcome = orchestrator.dispatch(event, post=args.post)
    if outcome is HookOutcome.CREATED:
        print("Created checkpoint", file=sys.stderr)
    elif outcome is HookOutcome.FAILED:
        print("Warning: Could not complete checkpoint step", file=sys.stderr)
    return outcome.exit_code


def cmd_list(args) -> int:
    shadow = _shadow(args)
    checkpoints = shadow.list_checkpoints()
    if not checkpoints:
        print("No checkpoints found for this project.")
        return 0

    print(f"\nCheckpoints for: {shadow.project_path}")
    print("=" * 80)
    for i, checkpoint in enumerate(checkpoints[:args.limit], start=1):
        meta = checkpoint['metadata']
        icon = STATUS_ICONS.get(meta.get('status'), '?')
        print(f"{i}. [{icon}] {checkpoint['hash'][:8]} - "
              f"{format_timestamp(checkpoint['timestamp'])} ({meta.get('tool_name') or 'Unknown'})")
        print(f"   {checkpoint['message']}")
        if meta.get('files_affected'):
            print(f"   Files: {', '.join(meta['files_affected'])}")
        print()

    if len(checkpoints) > args.limit:
        print(f"Showing {args.limit} of {len(checkpoints)} checkpoints. Use --limit to show more.")
    return 0


def cmd_status(args) -> int:
    shadow = _shadow(args)
    stats = shadow.metadata.get_project_stats(shadow.project_hash)

    print(f"Checkpoint Status for: {shadow.project_path}")
    print(f"Project Hash: {shadow.project_hash}")
    print("-" * 50)
    print(f"Total Checkpoints: {stats['total_checkpoints']}")
    print(f"Successful: {stats['successful']}")
    print(f"Failed: {stats['failed']}")
    print(f"Pending: {stats['pending']}")
    if stats.get('latest_checkpoint'):
        print(f"Latest Checkpoint: {stats['latest_checkpoint']}")
    if stats.get('most_modified_files'):
        print("\nMost Modified Files:")
        for file, count in stats['most_modified_files']:
            print(f"  {file}: {count} times")
    return 0


def _parse_setting(raw: str):
    key, sep, value = raw.partition('=')
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {raw!r}")
    try:
        return key.strip(), json.loads(value)
    except json.JSONDecodeError:
        return key.strip(), value


def cmd_config(args) -> int:
    config = CheckpointConfig(args.config)
    if args.set:
        try:
            config.update(**dict(args.set))
        except (KeyError, OSError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    print("\nConfiguration")
    print("-" * 40)
    print(f"File: {config.config_path}")
    print(f"Enabled: {'Yes' if config.enabled else 'No'}")
    print(f"Retention Days: {config.retention_days}")
    print(f"Max File Size: {config.max_file_size_mb} MB")
    print(f"Auto Cleanup: {'Yes' if config.auto_cleanup else 'No'}")
    print(f"Checkpoint on Stop: {'Yes' if config.checkpoint_on_stop else 'No'}")
    print("\nExclude Patterns:")
    for pattern in config.exclude_patterns:
        print(f"  - {pattern}")
    return 0


def cmd_restore(args) -> int:
    shadow = _shadow(args)
    selected = _resolve(shadow, args.checkpoint_id)
    if selected is None:
        return 1

    if args.dry_run:
        print(f"Would restore to checkpoint: {selected['hash'][:8]}")
        print(f"Message: {selected['message']}")
        diff = shadow.get_checkpoint_diff(selected['hash'])
        if diff:
            print(diff)
        return 0 if shadow.restore_checkpoint(selected['hash'], dry_run=True) else 1

    print(f"Restoring to checkpoint {selected['hash'][:8]}...")
    if not shadow.restore_checkpoint(selected['hash'], prune=args.prune):
        print("Error: Failed to restore checkpoint.", file=sys.stderr)
        return 1
    print("Successfully restored checkpoint.")
    return 0


def cmd_diff(args) -> int:
    shadow = _shadow(args)
    checkpoint_hash = None
    if args.checkpoint_id:
        selected = _resolve(shadow, args.checkpoint_id)
        if selected is None:
            return 1
        checkpoint_hash = selected['hash']
    diff = shadow.get_checkpoint_diff(checkpoint_hash)
    print(diff if diff else "No changes.")
    return 0


def cmd_search(args) -> int:
    shadow = _shadow(args)
    term = args.term.lower()
    matching = [
        cp for cp in shadow.list_checkpoints()
        if term in cp['message'].lower()
        or any(term in f.lower() for f in cp['metadata'].get('files_affected', []))
    ]
    if not matching:
        print(f"No checkpoints found matching '{args.term}'")
        return 0
    print(f"\nCheckpoints matching '{args.term}':")
    print("=" * 80)
    for checkpoint in matching[:args.limit]:
        print(f"{checkpoint['hash'][:8]} - {checkpoint['message']}")
        print(f"  Timestamp: {checkpoint['timestamp']}")
    return 0


def cmd_cleanup(args) -> int:
    config = CheckpointConfig(args.config)
    base = args.checkpoint_base or checkpoint_base()
    metadata = CheckpointMetadata(base)
    retention_days = args.retention_days or config.retention_days

    if not config.auto_cleanup and not args.dry_run:
        print("Auto cleanup is disabled in configuration.")
        print("Use --dry-run to see what would be cleaned up.")
        return 0

    verb = 'Would remove' if args.dry_run else 'Removed'
    if args.orphaned:
        orphans = remove_orphaned_repos(base, metadata, dry_run=args.dry_run)
        for repo in orphans:
            print(f"{verb} orphaned checkpoint repo: {repo.name}")
        if not orphans:
            print("No orphaned checkpoint repositories found.")
        return 0

    if args.all:
        results = expire_all(metadata, retention_days, dry_run=args.dry_run)
    else:
        shadow = _shadow(args)
        expired = expire_project(metadata, shadow.project_hash, retention_days,
                                 dry_run=args.dry_run)
        results = {shadow.project_hash: expired} if expired else {}

    total = 0
    for project_hash, hashes in results.items():
        for checkpoint_hash in hashes:
            print(f"{verb} checkpoint {checkpoint_hash[:8]} ({project_hash})")
        total += len(hashes)
    print(f"\n{verb} {total} checkpoint{'s' if total != 1 else ''} "
          f"older than {retention_days} days")
    return 0


def cmd_repair(args) -> int:
    shadow = _shadow(args)
    adopted = repair_metadata(shadow, shadow.metadata,
                              retention_days=CheckpointConfig(args.config).retention_days)
    for checkpoint_hash in adopted:
        print(f"Recovered checkpoint {checkpoint_hash[:8]}")
    print(f"Recovered {len(adopted)} unrecorded checkpoint{'s' if len(adopted) != 1 else ''}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='shadowpoint',
        description='Automatic checkpoints of a project before file edits'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--project', '-p', type=Path, default=None,
                        help='Project directory (default: current directory)')
    parser.add_argument('--config', type=Path, default=None, help='Path to config.json')
    parser.add_argument('--checkpoint-base', type=Path, default=None,
                        help='Directory holding metadata and shadow repositories')
    parser.set_defaults(func=cmd_hook, post=False)
    sub = parser.add_subparsers(dest='command')

    hook = sub.add_parser('hook', help='Handle a hook event read from stdin (default)')
    hook.add_argument('--post', '--update-status', dest='post', action='store_true',
                      help='Treat the event as a post-edit status update')
    hook.set_defaults(func=cmd_hook)

    lst = sub.add_parser('list', aliases=['l'], help='List checkpoints')
    lst.add_argument('--limit', '-n', type=int, default=20,
                     help='Number of checkpoints shown (default: 20)')
    lst.set_defaults(func=cmd_list)

    sub.add_parser('status', help='Show checkpoint statistics').set_defaults(func=cmd_status)

    cfg = sub.add_parser('config', help='Show or change configuration')
    cfg.add_argument('--set', action='append', type=_parse_setting, metavar='KEY=VALUE',
                     help='Change a setting; VALUE is parsed as JSON when possible')
    cfg.set_defaults(func=cmd_config)

    restore = sub.add_parser('restore', help='Restore a checkpoint')
    restore.add_argument('checkpoint_id', help='Checkpoint hash or unique prefix')
    restore.add_argument('--dry-run', '-n', action='store_true',
                         help='Show what would be restored without changing files')
    restore.add_argument('--prune', action='store_true',
                         help='Also delete files that are not in the checkpoint')
    restore.set_defaults(func=cmd_restore)

    diff = sub.add_parser('diff', help='Summarise changes since a checkpoint')
    diff.add_argument('checkpoint_id', nargs='?', help='Defaults to the latest checkpoint')
    diff.set_defaults(func=cmd_diff)

    search = sub.add_parser('search', help='Search checkpoints by message or file')
    search.add_argument('term')
    search.add_argument('--limit', type=int, default=10)
    search.set_defaults(func=cmd_search)

    cleanup = sub.add_parser('cleanup', help='Expire old checkpoint records')
    cleanup.add_argument('--retention-days', type=int, help='Override retention period')
    cleanup.add_argument('--dry-run', '-n', action='store_true')
    cleanup.add_argument('--orphaned', action='store_true',
                         help='Remove shadow repositories with no remaining records')
    cleanup.add_argument('--all', '-a', action='store_true', help='Process every project')
    cleanup.set_defaults(func=cmd_cleanup)

    sub.add_parser('repair', help='Record checkpoint commits missing from metadata'
                   ).set_defaults(func=cmd_repair)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    args.project_given = args.project is not None
    args.project = (args.project or Path.cwd()).resolve()
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
