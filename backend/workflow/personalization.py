"""Template personalization.

Tokens look like ``{{first_name}}``, ``{{ first_name }}`` or
``{{contact.first_name}}``. Replacement is literal text substitution:
no expressions, no filters, no HTML escaping. Tokens with no matching
variable are left in the output exactly as written.
"""

import re
from typing import Any, Mapping

TOKEN_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")

STANDARD_FIELDS = ("email", "first_name", "last_name", "company")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def build_variables(contact: Any) -> dict[str, str]:
    """Build the variable map for a contact.

    Works with anything exposing the standard contact attributes (ORM row
    or snapshot). Custom fields are included as-is; standard fields win on
    a name clash.
    """
    variables: dict[str, str] = {}

    custom_fields = getattr(contact, "custom_fields", None) or {}
    if isinstance(custom_fields, Mapping):
        for key, value in custom_fields.items():
            if isinstance(value, (dict, list)):
                continue
            variables[str(key)] = _as_text(value)

    for name in STANDARD_FIELDS:
        variables[name] = _as_text(getattr(contact, name, None))

    return variables


def _lookup(token: str, variables: Mapping[str, str]):
    if token in variables:
        return variables[token]
    if token.startswith("contact."):
        return variables.get(token[len("contact."):])
    return None


def render(text: str, variables: Mapping[str, str]) -> str:
    """Substitute every known token in ``text``."""
    if not text:
        return text or ""

    def _replace(match: re.Match) -> str:
        value = _lookup(match.group(1), variables)
        return match.group(0) if value is None else value

    return TOKEN_PATTERN.sub(_replace, text)


def extract_variables(text: str) -> list[str]:
    """Distinct token names used in ``text``, in order of first use."""
    seen: list[str] = []
    for match in TOKEN_PATTERN.finditer(text or ""):
        name = match.group(1)
        if name.startswith("contact."):
            name = name[len("contact."):]
        if name not in seen:
            seen.append(name)
    return seen
