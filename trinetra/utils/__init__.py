"""Small helpers shared by the config layer."""

import os
import re

# ${NAME} or ${NAME:-fallback}
_ENV_REF = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}")


def _substitute(match: re.Match[str]) -> str:
    value = os.environ.get(match.group("name"))
    fallback = match.group("fallback")
    if fallback is not None and not value:
        return fallback
    return value if value is not None else match.group(0)


def expand_env_vars(value: object) -> object:
    """Expand ${NAME} references in every string of a parsed YAML document.

    `${NAME:-fallback}` uses the fallback when NAME is unset or empty. A plain
    reference to an unset variable is left as written so the mistake stays
    visible in the resulting config.
    """
    if isinstance(value, dict):
        return {key: expand_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    if isinstance(value, str):
        return _ENV_REF.sub(_substitute, value)
    return value
