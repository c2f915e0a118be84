"""Deterministic port assignment for bundle servers.

The port depends only on the bundle id, so it is stable across processes
and restarts.  Python's ``hash()`` is salted per process and cannot be
used; this is the 32-bit polynomial string hash (``s[0]*31^(n-1) + ...``
over UTF-16 code units, wrapped to a signed int).
"""

from __future__ import annotations

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


def string_hash32(value: str) -> int:
    """Signed 32-bit polynomial hash of *value*'s UTF-16 code units."""
    h = 0
    data = value.encode("utf-16-be")
    for i in range(0, len(data), 2):
        unit = (data[i] << 8) | data[i + 1]
        h = (31 * h + unit) & _INT32_MASK
    return h - (1 << 32) if h & _INT32_SIGN else h


def allocate_port(bundle_id: str, base: int = 8080, port_range: int = 1000) -> int:
    """``base + |hash(bundle_id)| mod port_range``.

    Raises
    ------
    ValueError
        If *port_range* is not positive.
    """
    if port_range <= 0:
        raise ValueError("port_range must be positive")
    return base + abs(string_hash32(bundle_id)) % port_range
