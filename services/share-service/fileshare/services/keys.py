# services/share-service/fileshare/services/keys.py
"""Object key generation.

Keys look like ``<owner_id>/<folder/path/>?<millis>-<suffix>-<safe_name>``.
They are generated once at upload and never recomputed, so renaming or
moving a folder later does not touch keys that already exist.
"""
import re
import secrets
import string
import time
from typing import Optional

UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
SUFFIX_LENGTH = 6


def sanitize_name(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9._-]`` with ``_``"""
    return UNSAFE_CHARS.sub("_", name) or "_"


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


def generate_object_key(owner_id: str, original_name: str, folder_path: Optional[str] = "",
                        timestamp_ms: Optional[int] = None) -> str:
    prefix = (folder_path or "").strip("/")
    if prefix:
        prefix += "/"
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{owner_id}/{prefix}{timestamp_ms}-{random_suffix()}-{sanitize_name(original_name)}"
