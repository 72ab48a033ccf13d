#!/usr/bin/env python3
"""claw CLI entrypoint."""

import argparse
import logging
import sys
from pathlib import Path

from claw.lib.config import VALID_MODELS, ConfigError, find_workspace_root, load_workspace_config
from claw.commands import resume as cmd_resume_module
from claw.commands import run as cmd_run_module
from claw.commands import status as cmd_status_module


def get_workspace_config(args):
    """Load workspace.env from --workspace or the nearest parent directory."""
    start = Path(args.workspace) if args.workspace else Path.cwd()
    root = find_workspace_root(start)
    if root is None:
        raise ConfigError(f"No workspace.env found in {start} or any parent directory")
    return load_workspace_config(root)


def cmd_run(args):
    return cmd_run_module.cmd_run(args, get_workspace_config(args))


def cmd_resume(args):
    return cmd_resume_module.cmd_resume(args, get_workspace_config(args))


def cmd_status(args):
    return cmd_status_module.cmd_status(args, get_workspace_config(args))


def add_budget_arguments(parser: argparse.ArgumentParser) -> None:
    """Flags shared by run and resume. Unset flags are None so resume can tell them apart."""
    parser.add_argument('--hours', type=float, help='Time budget in hours (0 = unlimited)')
    parser.add_argument('--stories', type=int, help='Maximum number of stories to run')
    parser.add_argument('--stop-on-blocker', action='store_true', default=None,
                        help='Stop the session at the first blocked story')
    parser.add_argument('--model', choices=VALID_MODELS, help='Model for the execution agent')
    parser.add_argument('--retry', action='store_true', default=None,
                        help='Retry each story until green')
    parser.add_argument('--max-retries', type=int, help='Attempts per story in retry mode')
    parser.add_argument('--pr-per-story', action='store_true', default=None,
                        help='Open a pull request after each completed story')
    parser.add_argument('--pr-on-complete', action='store_true', default=None,
                        help='Open one pull request for the feature at the end')
    parser.add_argument('--no-pause', action='store_true', help='Do not confirm between stories')
    parser.add_argument('--yes', '-y', action='store_true', help='Never prompt; accept defaults')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='claw', description='Autonomous story execution')
    parser.add_argument('--workspace', '-w', help='Workspace directory (default: search from cwd)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # claw run
    p_run = subparsers.add_parser('run', help='Run a feature')
    p_run.add_argument('feature', help='Feature ID')
    add_budget_arguments(p_run)
    p_run.set_defaults(func=cmd_run)

    # claw resume
    p_resume = subparsers.add_parser('resume', help='Resume a feature from its checkpoint')
    p_resume.add_argument('feature', help='Feature ID')
    add_budget_arguments(p_resume)
    p_resume.add_argument('--force', action='store_true',
                          help='Resume even if the checkpoint ended completed, timed out or errored')
    p_resume.set_defaults(func=cmd_resume)

    # claw status
    p_status = subparsers.add_parser('status', help='Show feature and checkpoint status')
    p_status.add_argument('feature', help='Feature ID')
    p_status.set_defaults(func=cmd_status)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return 2


if __name__ == '__main__':
    sys.exit(main())
