import re

GUID_PLACEHOLDER = "{guid}"


def validate_subject(name: str) -> bool:
    if not name or len(name) > 255:
        return False
    if not re.match(r'^\S+$', name):
        return False
    return True
