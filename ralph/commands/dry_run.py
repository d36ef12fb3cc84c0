"""
ralph --dry-run - show what a run would work on and check the verification commands.
"""

from ralph.lib.config import RunConfig
from ralph.lib.constants import EXIT_SUCCESS, EXIT_VERIFICATION_FAILED
from ralph.lib.document import RequirementsDocument
from ralph.commands.init import show_git_status
from ralph.runner import output
from ralph.runner.verify import all_passed, run_command


def cmd_dry_run(config: RunConfig, doc: RequirementsDocument) -> int:
    output.section("Dry Run")

    output.header("PRD Summary")
    output.say(f"Project: {doc.project.name}")
    output.say(f"PRD file: {config.prd_path}")
    nxt = doc.next_feature()
    output.say(f"Next feature: {nxt.id if nxt else '(none)'}")
    print()

    counts = doc.status_counts()
    output.header("Feature Status")
    output.say(f"Total features: {len(doc.features)}")
    output.say(f"  Pending:     {counts.pending}")
    output.say(f"  In-progress: {counts.in_progress}")
    output.say(f"  Complete:    {counts.complete}")
    output.say(f"  Blocked:     {counts.blocked}")
    print()

    output.header("Git Status")
    show_git_status(config.project_dir)
    print()

    output.header("Verification Commands")
    results = []
    for cmd in doc.verification.commands:
        res = run_command(cmd, config.project_dir)
        results.append(res)
        output.say(f"{res.name}: {res.label}")
    if not results:
        output.say("(none configured)")
    print()

    output.separator()
    if all_passed(results):
        output.say("Dry run complete - all verifications passed")
        code = EXIT_SUCCESS
    else:
        output.warn("Dry run complete - some verifications failed")
        code = EXIT_VERIFICATION_FAILED
    output.separator()
    return code
