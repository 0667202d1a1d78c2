"""Last-write-wins reconciliation of two account sets.

For each remote account:

    id unknown locally              → appended            (added)
    remote.updatedAt > local's      → replaces local copy (updated)
    otherwise (ties included)       → local copy kept     (skipped)

A missing ``updatedAt`` counts as 0. There are no deletion tombstones: an
account deleted on one device comes back if the other device still has it
in its snapshot.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from ..models import Account


@dataclass
class MergeCounts:
    added: int = 0
    updated: int = 0
    skipped: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated)

    def to_dict(self) -> dict:
        return {"added": self.added, "updated": self.updated, "skipped": self.skipped}


@dataclass
class MergeResult:
    accounts: List[Account] = field(default_factory=list)
    counts: MergeCounts = field(default_factory=MergeCounts)


def _stamp(account: Account) -> int:
    return account.updated_at or 0


def reconcile(local: List[Account], remote: List[Account]) -> MergeResult:
    """Merge ``remote`` into ``local`` without mutating either list.

    Local order is preserved; replaced accounts keep their position and new
    accounts are appended in remote order.
    """
    merged: Dict[str, Account] = {account.id: account for account in local}
    counts = MergeCounts()

    for theirs in remote:
        ours = merged.get(theirs.id)
        if ours is None:
            merged[theirs.id] = theirs
            counts.added += 1
        elif _stamp(theirs) > _stamp(ours):
            merged[theirs.id] = theirs
            counts.updated += 1
        else:
            counts.skipped += 1

    return MergeResult(accounts=list(merged.values()), counts=counts)
