"""Permissions carried in identity tokens.

Each role has a set of DEFAULT permissions (defined here, not in DB).  The
identity service embeds the effective list in the JWT, so checks are
token-only.  A ``*`` entry grants everything.

Permission naming: `<resource>.<action>`
  Resources: tray, scan
  Actions:   read, create, start, finish
"""

from __future__ import annotations


# ── All known permissions ───────────────────────────────────

ALL_PERMISSIONS: set[str] = {
    "tray.read",
    "tray.create",      # create tray documents (mints the root lot)

    "scan.read",
    "scan.start",       # open a scan at the operator's station
    "scan.finish",      # close a scan and apply lineage transforms
}

WILDCARD = "*"


# ── Role → default permissions ──────────────────────────────

ROLE_DEFAULTS: dict[str, set[str]] = {
    "admin": ALL_PERMISSIONS.copy(),

    "manager": {
        "tray.read",
        "scan.read",
    },

    "operator": {
        "tray.read",
        "scan.read", "scan.start", "scan.finish",
    },
}


def resolve_permissions(role: str) -> list[str]:
    """Default permissions of ``role`` as a sorted list (stable JWT claims)."""
    return sorted(ROLE_DEFAULTS.get(role, set()))


def has_permission(user_permissions: list[str] | set[str], required: str) -> bool:
    """Check whether a permission set satisfies a requirement."""
    return WILDCARD in user_permissions or required in user_permissions
