"""
Target fingerprinting for cache keys and artifact names.
"""

import hashlib


def fingerprint(target: str) -> str:
    """
    Fingerprint a target string.

    The same target always maps to the same namespace, so cache entries,
    frame directories and output videos from earlier runs can be found
    again without consulting anything else.

    Args:
        target: The literal target URL, exactly as submitted

    Returns:
        MD5 hex digest (32 chars)
    """
    return hashlib.md5(target.encode('utf-8', errors='replace')).hexdigest()
