import re
import secrets

_DOCUMENT_ID_PATTERN = re.compile(r'^[0-9a-fA-F]{24}$')


def new_document_id() -> str:
    return secrets.token_hex(12)


def is_document_id(value: str) -> bool:
    return bool(_DOCUMENT_ID_PATTERN.match(value))


def normalize_document_id(value: str) -> str:
    """Lower-case well-formed 24-hex ids; anything else is returned trimmed but otherwise untouched."""
    value = value.strip()
    if is_document_id(value):
        return value.lower()
    return value
