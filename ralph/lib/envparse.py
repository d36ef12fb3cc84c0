"""
Safe parser for the optional ralph.env profile.

Parses KEY=value lines without shell execution and rejects values that
look like shell injection. Keys must be upper-case identifiers.
"""

import re
from pathlib import Path

from ralph.lib.errors import ConfigError

FORBIDDEN_PATTERNS = [
    r'`',           # backticks
    r'\$\(',        # command substitution
    r'\$\{',        # variable expansion
    r';',           # command chaining
    r'&&',          # AND chaining
    r'\|',          # pipe / OR chaining
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')


def parse_env(text: str, source: str = "<string>") -> dict[str, str]:
    """
    Parse env-file content into a dict.

    Raises:
        ConfigError: on a line without '=', a bad key, or a forbidden pattern
    """
    result = {}

    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line or line.startswith('#'):
            continue

        if '=' not in line:
            raise ConfigError(f"{source}:{lineno}: invalid syntax (no '=')")

        key, _, value = line.partition('=')
        key = key.strip()
        value = value.strip()

        if key.startswith("export "):
            key = key[len("export "):].strip()
        if not KEY_PATTERN.match(key):
            raise ConfigError(f"{source}:{lineno}: invalid key '{key}'")

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]

        for pattern in FORBIDDEN_PATTERNS:
            if re.search(pattern, value):
                raise ConfigError(f"{source}:{lineno}: forbidden pattern in value of {key}")

        result[key] = value

    return result


def load_env(filepath: Path, missing_ok: bool = True) -> dict[str, str]:
    """Load an env file. A missing file yields {} unless missing_ok is False."""
    path = Path(filepath)
    if not path.exists():
        if missing_ok:
            return {}
        raise ConfigError(f"Profile not found: {path}")
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigError(f"Failed to read profile {path}: {e}") from e
    return parse_env(text, str(path))
