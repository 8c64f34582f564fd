"""ULID generation for quarantine record ids and operation correlation ids.

A ULID is 26 characters of Crockford Base32: a 48-bit millisecond timestamp
followed by 80 random bits. Record ids built from it sort by creation time.

Uses the ``python-ulid`` library (see pyproject.toml).
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Example::

        record_id = generate_ulid()
        # "01KJ0JRVHYA7KX32VPN5ZSCTMV"
        assert len(record_id) == 26
    """
    return str(ULID())
