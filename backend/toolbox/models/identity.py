"""Caller identity handed to every credit operation.

Built once per request at the API boundary from the verified token. The
credit service never looks at the request itself.
"""

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(frozen=True)
class CallerIdentity:
    uid: str
    claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_supervisor(self) -> bool:
        # Claim must be exactly True; truthy strings do not count
        return self.claims.get("supervisor") is True
