# Overview: Opaque record identifiers for products and receipts.

import re
import secrets

RECORD_ID_LENGTH = 24

_RECORD_ID_RE = re.compile(r"^[0-9a-f]{24}$")


def new_record_id() -> str:
    """
    Generate an opaque 24-character hex identifier (12 bytes of entropy).

    Product and receipt ids are handed to clients and echoed back in carts,
    so they are not sequential and carry no meaning.
    """
    return secrets.token_hex(RECORD_ID_LENGTH // 2)


def is_record_id(value) -> bool:
    return isinstance(value, str) and bool(_RECORD_ID_RE.match(value))
