"""
ralph --init / --init-prompt, and the init phase shown before a run.
"""

import logging
from pathlib import Path

from ralph import git
from ralph.lib.config import RunConfig
from ralph.lib.constants import DEFAULT_PROMPT_PATH
from ralph.lib.document import RequirementsDocument, write_template
from ralph.lib.errors import ConfigError
from ralph.lib.prompts import write_prompt_template
from ralph.runner import output
from ralph.runner.progress import load_records

logger = logging.getLogger(__name__)


def cmd_init(args) -> int:
    """Write a commented PRD template to --prd."""
    path = Path(args.prd)
    try:
        write_template(path)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return 2
    output.say(f"Created PRD template: {path}")
    output.say("Edit the features and verification commands, then run: ralph")
    return 0


def cmd_init_prompt(args) -> int:
    """Write the default prompt template to --prompt (or prompt.md)."""
    path = Path(args.prompt or DEFAULT_PROMPT_PATH)
    try:
        write_prompt_template(path)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return 2
    output.say(f"Created prompt template: {path}")
    output.say(f"Use it with: ralph --prompt {path}")
    return 0


def show_git_status(project_dir: Path) -> None:
    if not git.is_git_repo(project_dir):
        output.warn("Not a git repository - git checks skipped")
        return
    branch = git.get_current_branch(project_dir) or "(detached HEAD)"
    changed = git.get_changed_files(project_dir)
    if changed:
        output.warn(f"Branch: {branch} ({len(changed)} uncommitted change(s))")
    else:
        output.say(f"Branch: {branch} (clean)")


def show_init_phase(config: RunConfig, doc: RequirementsDocument) -> None:
    """Print the pre-run overview: git state, PRD counts, progress, recent commits."""
    output.section("Initialization")

    output.say("Checking git status...")
    show_git_status(config.project_dir)

    output.say("Reading PRD...")
    output.say(f"PRD: {len(doc.features)} features ({doc.status_counts().describe()})")
    output.say(f"PRD file: {config.prd_path}")

    output.say("Checking progress...")
    records = load_records(config.iteration_log_path)
    if records:
        runs = len({r.run_id for r in records})
        output.say(f"Progress: {len(records)} iteration(s) over {runs} previous run(s)")
    else:
        output.say("Progress: no previous iterations recorded")
    output.say(f"Progress file: {config.progress_path}")

    commits = git.get_log_oneline(config.project_dir, 5)
    if commits:
        output.say("Recent commits:")
        for line in commits:
            print(f"  {line}")

    output.separator()
