"""Mustache-style template substitution and loop condition evaluation.

Pure functions over a flat ``dict[str, str]`` variable store. Keys look like
``feature_spec`` or ``steps.<name>.output``; step names may contain hyphens.
"""

import re

_TOKEN = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")

# Conditions are two fixed, anchored grammars. No expression evaluation.
_CONTAINS = re.compile(r'^([\w.\-]+)\s+contains\s+"?([^"]+)"?$', re.IGNORECASE)
_EQUALS = re.compile(r"^([\w.\-]+)\s*==\s*(.+)$")

# Prefix used to find which step a loop condition refers to
STEP_REFERENCE = re.compile(r"^steps\.([\w\-.]+)\.")


def resolve_template(template: str, variables: dict[str, str]) -> str:
    """Replace ``{{ key }}`` tokens with values from ``variables``.

    Unresolved tokens are left verbatim so dry runs show what is missing.
    """

    def _substitute(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        return match.group(0) if value is None else value

    return _TOKEN.sub(_substitute, template)


def evaluate_condition(condition: str, variables: dict[str, str]) -> bool:
    """Evaluate ``<path> contains <text>`` or ``<path> == <text>``.

    ``contains`` is case-insensitive and accepts a double-quoted right-hand
    side. ``==`` compares after trimming surrounding whitespace. Any other
    shape is false; a missing path reads as the empty string.
    """
    condition = condition.strip()

    match = _CONTAINS.match(condition)
    if match:
        path, keyword = match.groups()
        value = variables.get(path, "")
        return keyword.upper() in value.upper()

    match = _EQUALS.match(condition)
    if match:
        path, expected = match.groups()
        value = variables.get(path, "")
        return value.strip() == expected.strip()

    return False


def referenced_step(condition: str) -> str | None:
    """Step name a ``steps.<name>.<field>`` condition refers to, if any.

    Step names may contain dots, so the match is greedy up to the last dot
    before the field name.
    """
    match = STEP_REFERENCE.match(condition.strip())
    return match.group(1) if match else None
