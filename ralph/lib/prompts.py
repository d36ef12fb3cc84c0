"""
Prompt construction for agent iterations.

Templates carry a closed set of {placeholder} names. Substitution is a
literal replace of each known placeholder, so any other braces (JSON
examples, code) pass through untouched and no escaping is needed.

HTML comments (<!-- ... -->) are stripped before rendering - use them for
documentation that shouldn't be sent to the agent.
"""

import logging
import re
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional

from ralph.lib.document import Feature, RequirementsDocument
from ralph.lib.errors import ConfigError

logger = logging.getLogger(__name__)

__all__ = [
    "Placeholder", "substitute", "load_template", "build_prompt",
    "format_verification_commands", "write_prompt_template", "PROMPTS_DIR",
]

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
DEFAULT_TEMPLATE = "system"

# Pattern to strip HTML comments (including multiline)
_HTML_COMMENT_PATTERN = re.compile(r'<!--.*?-->\s*', re.DOTALL)


class Placeholder(str, Enum):
    PRD_PATH = "prd_path"
    PROGRESS_PATH = "progress_path"
    VERIFICATION_COMMANDS = "verification_commands"
    COMPLETION_MARKER = "completion_marker"
    PRD_CONTENT = "prd_content"
    FEATURE_ID = "feature_id"
    FEATURE_DESCRIPTION = "feature_description"
    FEATURE_STEPS = "feature_steps"

    @property
    def token(self) -> str:
        return "{" + self.value + "}"


def substitute(template: str, values: Mapping[Placeholder, str]) -> str:
    """
    Replace each known placeholder with its value.

    Placeholders missing from values are left as-is, as is anything else in
    braces. Values are never re-scanned, so a value containing "{prd_path}"
    stays literal.
    """
    tokens = {p.token: values[p] for p in Placeholder if p in values}
    if not tokens:
        return template
    pattern = re.compile("|".join(re.escape(t) for t in tokens))
    return pattern.sub(lambda m: tokens[m.group(0)], template)


def _strip_comments(content: str) -> str:
    return _HTML_COMMENT_PATTERN.sub('', content).lstrip()


@lru_cache(maxsize=4)
def _load_packaged(name: str) -> str:
    return (PROMPTS_DIR / f"{name}.md").read_text()


def load_template(path: Optional[Path] = None) -> str:
    """
    Load a custom prompt file, or the packaged default when path is None.

    Raises:
        ConfigError: if the custom prompt file can't be read
    """
    if path is None:
        logger.debug("Using default prompt template")
        return _strip_comments(_load_packaged(DEFAULT_TEMPLATE))
    try:
        content = Path(path).read_text()
    except OSError as e:
        raise ConfigError(f"Failed to read prompt file {path}: {e}") from e
    logger.debug(f"Loaded prompt template from {path}")
    return _strip_comments(content)


def format_verification_commands(doc: RequirementsDocument) -> str:
    if not doc.verification.commands:
        return "(none configured)"
    return "\n".join(
        f"- `{c.command}` - {c.description or c.name}"
        for c in doc.verification.commands
    )


def build_prompt(
    template: str,
    doc: RequirementsDocument,
    feature: Feature,
    prd_path: Path,
    progress_path: Path,
    prd_content: str,
    completion_marker: Optional[str] = None,
) -> str:
    """Render the prompt for one iteration on one feature."""
    steps = "\n".join(f"{i}. {step}" for i, step in enumerate(feature.steps, 1))
    values = {
        Placeholder.PRD_PATH: str(prd_path),
        Placeholder.PROGRESS_PATH: str(progress_path),
        Placeholder.VERIFICATION_COMMANDS: format_verification_commands(doc),
        Placeholder.COMPLETION_MARKER: completion_marker or doc.completion.marker,
        Placeholder.PRD_CONTENT: prd_content.rstrip("\n"),
        Placeholder.FEATURE_ID: feature.id,
        Placeholder.FEATURE_DESCRIPTION: feature.description,
        Placeholder.FEATURE_STEPS: steps or "(no steps listed)",
    }
    return substitute(template, values)


def write_prompt_template(path: Path) -> None:
    """Write the default template (comments included) for editing. Refuses to overwrite."""
    path = Path(path)
    if path.exists():
        raise ConfigError(f"Refusing to overwrite existing file: {path}")
    path.write_text(_load_packaged(DEFAULT_TEMPLATE))
