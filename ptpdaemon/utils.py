"""Small helpers shared across the daemon."""

from __future__ import annotations


def get_alias(ifname: str) -> str:
    """Mask an interface name for metric reporting.

    The character before the first dot (or the last character when there is
    no dot) is replaced with ``x``: ``ens1f0`` becomes ``ens1fx`` and
    ``ens1f0.100`` becomes ``ens1fx.100``.
    """
    if not ifname:
        return ""
    dot = ifname.find(".")
    if dot == -1:
        return ifname[:-1] + "x"
    if dot == 0:
        raise ValueError(f"interface name {ifname!r} has no base name before the VLAN suffix")
    return ifname[: dot - 1] + "x" + ifname[dot:]