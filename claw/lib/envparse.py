"""
Safe .env parser for workspace.env.

Parses KEY=value lines without shell execution and rejects values that look
like shell injection. Also provides typed accessors for the parsed dict.
"""

import re
from pathlib import Path

FORBIDDEN_PATTERNS = [
    r'`',           # backticks
    r'\$\(',        # command substitution
    r'\$\{',        # variable expansion
    r';',           # command chaining
    r'&&',          # AND chaining
    r'\|',          # pipe / OR chaining
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')

TRUE_VALUES = ("1", "true", "yes", "on")


def parse_env(text: str) -> dict[str, str]:
    """
    Parse env-file text into a dict.

    Raises:
        ValueError: if syntax invalid or forbidden pattern found
    """
    result = {}

    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()

        if not line or line.startswith('#'):
            continue

        if '=' not in line:
            raise ValueError(f"Line {lineno}: Invalid syntax (no '=')")

        key, _, value = line.partition('=')
        key = key.strip()
        value = value.strip()

        if not KEY_PATTERN.match(key):
            raise ValueError(f"Line {lineno}: Invalid key '{key}'")

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]

        for pattern in FORBIDDEN_PATTERNS:
            if re.search(pattern, value):
                raise ValueError(f"Line {lineno}: Forbidden pattern in value of {key}")

        result[key] = value

    return result


def load_env(filepath: Path) -> dict[str, str]:
    """
    Parse an env file from disk.

    Raises:
        FileNotFoundError: if file doesn't exist
        ValueError: if syntax invalid or forbidden pattern found
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Env file not found: {filepath}")
    return parse_env(path.read_text())


def get_bool(env: dict, key: str, default: bool = False) -> bool:
    if key not in env or env[key] == "":
        return default
    return env[key].strip().lower() in TRUE_VALUES


def get_int(env: dict, key: str, default: int | None = None) -> int | None:
    if not env.get(key):
        return default
    try:
        return int(env[key])
    except ValueError:
        raise ValueError(f"{key} must be an integer, got '{env[key]}'") from None


def get_float(env: dict, key: str, default: float | None = None) -> float | None:
    if not env.get(key):
        return default
    try:
        return float(env[key])
    except ValueError:
        raise ValueError(f"{key} must be a number, got '{env[key]}'") from None


def get_mapping(env: dict, key: str) -> dict[str, str]:
    """Parse `name=value,name2=value2` into a dict (order preserved)."""
    mapping = {}
    raw = env.get(key, "")
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise ValueError(f"{key}: expected name=value, got '{item}'")
        name, _, value = item.partition("=")
        mapping[name.strip()] = value.strip()
    return mapping
