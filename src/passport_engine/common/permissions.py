"""Role -> capability table.

Built once from defaults plus the ``PASSPORT_ROLE_CAPABILITIES`` JSON override
and then only read. Capability names follow ``{area}.{action}``.
"""

import json
from types import MappingProxyType
from typing import Mapping

DEFAULT_ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    "user": frozenset(),
    "reviewer": frozenset({
        "reports.review",
        "risk.read",
        "risk.resolve",
        "evidence.review",
    }),
    "admin": frozenset({
        "reports.review",
        "risk.read",
        "risk.resolve",
        "risk.evaluate",
        "evidence.review",
        "identity.manage",
        "trustscore.recalculate",
        "audit.read",
    }),
}


def load_capabilities(override_json: str = "") -> Mapping[str, frozenset[str]]:
    """Merge the JSON override over the defaults and freeze the result.

    The override replaces a role's capability set entirely; unknown roles
    are added.
    """
    table = dict(DEFAULT_ROLE_CAPABILITIES)
    if override_json:
        try:
            raw = json.loads(override_json)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ValueError(
                f"PASSPORT_ROLE_CAPABILITIES must be a JSON object of role -> list, got: {override_json!r}"
            ) from exc
        if not isinstance(raw, dict):
            raise ValueError("PASSPORT_ROLE_CAPABILITIES must be a JSON object")
        for role, caps in raw.items():
            table[str(role)] = frozenset(str(c) for c in caps)
    return MappingProxyType(table)


def has_capability(table: Mapping[str, frozenset[str]], role: str, capability: str) -> bool:
    return capability in table.get(role, frozenset())
