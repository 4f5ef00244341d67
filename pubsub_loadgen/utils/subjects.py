from uuid import uuid4

from .validation import GUID_PLACEHOLDER


def has_placeholder(template: str) -> bool:
    return GUID_PLACEHOLDER in template


def resolve_subject(template: str) -> str:
    """Replace every {guid} in the template with a fresh random token."""
    if not has_placeholder(template):
        return template
    return template.replace(GUID_PLACEHOLDER, str(uuid4()))
