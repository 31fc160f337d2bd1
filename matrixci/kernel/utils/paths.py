"""Filesystem helpers shared by workspaces and the local artifact store."""

import re

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def safe_name(name: str) -> str:
    """Percent-encode a run id or stash name into a single path component.

    Examples
    --------
    >>> safe_name("main-line#7")
    'main-line%237'
    >>> safe_name("wheel@accel:11.0")
    'wheel%40accel%3A11.0'
    >>> safe_name("..")
    '%2E%2E'
    """
    if set(name) <= {"."}:
        return "%2E" * len(name)
    return _UNSAFE.sub(lambda m: f"%{ord(m.group()):02X}", name)
