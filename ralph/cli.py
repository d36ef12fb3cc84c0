#!/usr/bin/env python3
"""ralph CLI entrypoint."""

import argparse
import logging
import sys

from ralph import __version__
from ralph.commands import init as cmd_init_module
from ralph.commands import run as cmd_run_module
from ralph.lib.constants import DEFAULT_PRD_PATH


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ralph',
        description='Drive a coding agent through the features of a PRD, one feature per iteration.',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    # Files
    parser.add_argument('--prd', '-p', default=DEFAULT_PRD_PATH, help=f'PRD file (default: {DEFAULT_PRD_PATH})')
    parser.add_argument('--prompt', '-P', help='Custom prompt template with {placeholders}')

    # Setup actions
    parser.add_argument('--init', action='store_true', help='Write a PRD template to --prd and exit')
    parser.add_argument('--init-prompt', action='store_true', help='Write the default prompt template and exit')
    parser.add_argument('--dry-run', action='store_true', help='Show PRD status and run verification commands only')

    # Loop
    parser.add_argument('--max-iterations', '-m', type=int, help='Stop after N iterations, 0 = unlimited (default: 10)')
    parser.add_argument('--delay', '-d', type=float, help='Seconds between iterations (default: 2)')
    parser.add_argument('--timeout', '-t', type=float, help='Agent timeout per iteration in seconds (default: 1800)')
    parser.add_argument('--completion-marker', '-c', help="Override the PRD's completion marker")
    parser.add_argument('--skip-init', action='store_true', help='Skip the initialization overview')
    parser.add_argument('--reset-in-progress', action='store_true',
                        help='Reset in-progress features to pending before starting')

    # Agent
    parser.add_argument('--permission-mode', help='Claude permission mode (default: acceptEdits)')
    parser.add_argument('--continue-session', action='store_true', help='Continue the previous Claude session')
    parser.add_argument('--dangerously-skip-permissions', action='store_true',
                        help='Pass --dangerously-skip-permissions to Claude')

    # Policy
    parser.add_argument('--max-failures', type=int, help='Consecutive failures before aborting (default: 3)')
    parser.add_argument('--max-feature-errors', type=int,
                        help='Failures before a feature is auto-blocked, 0 = never (default: 0)')
    parser.add_argument('--cooldown', type=float, help='Rate-limit cooldown in seconds (default: 60)')
    parser.add_argument('--max-rate-limit-retries', type=int,
                        help='Consecutive rate-limit retries before counting as failure, 0 = unlimited (default: 10)')
    parser.add_argument('--stuck-window', type=int, help='Identical iterations that count as stuck (default: 3)')

    # Misc
    parser.add_argument('--webhook', help='POST session events to this URL')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if args.init:
        return cmd_init_module.cmd_init(args)
    if args.init_prompt:
        return cmd_init_module.cmd_init_prompt(args)
    return cmd_run_module.cmd_run(args)


if __name__ == '__main__':
    sys.exit(main())
