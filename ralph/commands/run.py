"""
ralph - run the feature loop until every feature is complete or a terminal state is hit.
"""

import logging
from functools import partial

from ralph.agents.claude import ClaudeAgent
from ralph.commands.dry_run import cmd_dry_run
from ralph.commands.init import show_init_phase
from ralph.lib.config import RunConfig, build_config, load_profile
from ralph.lib.constants import EXIT_CONFIG_ERROR, EXIT_LOCKED
from ralph.lib.document import DocumentStore
from ralph.lib.errors import ConfigError
from ralph.runner import output
from ralph.runner.cancel import CancelToken, cancel_on_signals
from ralph.runner.controller import Controller, RunResult
from ralph.runner.locking import LockTimeout, run_lock

logger = logging.getLogger(__name__)


def make_agent(config: RunConfig) -> ClaudeAgent:
    return ClaudeAgent(
        cwd=config.project_dir,
        permission_mode=config.permission_mode,
        skip_permissions=config.skip_permissions,
        continue_session=config.continue_session,
        echo=config.echo_output,
    )


def print_result(result: RunResult) -> None:
    output.section(f"Finished: {result.state.value}")
    output.say(result.message)
    output.say(f"Iterations: {result.iterations}, elapsed {output.format_duration(result.elapsed)}")
    print(result.summary)
    output.separator()


def cmd_run(args) -> int:
    try:
        config = build_config(args, load_profile(args.prd))
    except ConfigError as e:
        print(f"ERROR: {e}")
        return EXIT_CONFIG_ERROR

    if not config.prd_path.exists():
        print(f"ERROR: PRD file not found: {config.prd_path}")
        print("Create one with: ralph --init")
        return EXIT_CONFIG_ERROR

    if getattr(args, "dry_run", False):
        try:
            doc = DocumentStore(config.prd_path).load()
        except ConfigError as e:
            print(f"ERROR: {e}")
            return EXIT_CONFIG_ERROR
        return cmd_dry_run(config, doc)

    output.say(f"PRD: {config.prd_path}")
    output.say(f"Max iterations: {config.max_iterations or 'unlimited'}, "
               f"timeout {output.format_duration(config.timeout)}, "
               f"permission mode {config.permission_mode}")

    token = CancelToken()
    controller = Controller(
        config,
        make_agent(config),
        cancel=token,
        preflight=partial(show_init_phase, config),
    )

    try:
        with run_lock(config.lock_path), cancel_on_signals(token):
            result = controller.run()
    except LockTimeout as e:
        print(f"ERROR: {e}")
        return EXIT_LOCKED

    print_result(result)
    return result.exit_code
