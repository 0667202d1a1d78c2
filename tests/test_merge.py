"""Tests for last-write-wins account reconciliation."""

from otphaven.models import Account
from otphaven.sync.merge import MergeCounts, reconcile


def _acc(account_id, updated_at=None, issuer="Svc"):
    return Account(id=account_id, issuer=issuer, secret="JBSWY3DPEHPK3PXP", updated_at=updated_at)


class TestReconcile:
    def test_added(self):
        result = reconcile([_acc("a", 1)], [_acc("b", 1)])
        assert [a.id for a in result.accounts] == ["a", "b"]
        assert result.counts == MergeCounts(added=1, updated=0, skipped=0)

    def test_newer_remote_replaces(self):
        result = reconcile([_acc("a", 1, "old")], [_acc("a", 2, "new")])
        assert result.accounts[0].issuer == "new"
        assert result.counts == MergeCounts(added=0, updated=1, skipped=0)

    def test_older_remote_skipped(self):
        result = reconcile([_acc("a", 5, "mine")], [_acc("a", 3, "theirs")])
        assert result.accounts[0].issuer == "mine"
        assert result.counts.skipped == 1

    def test_tie_keeps_local(self):
        result = reconcile([_acc("a", 7, "mine")], [_acc("a", 7, "theirs")])
        assert result.accounts[0].issuer == "mine"
        assert result.counts == MergeCounts(added=0, updated=0, skipped=1)

    def test_missing_timestamp_counts_as_zero(self):
        result = reconcile([_acc("a", None, "mine")], [_acc("a", 1, "theirs")])
        assert result.accounts[0].issuer == "theirs"

        result = reconcile([_acc("a", 1, "mine")], [_acc("a", None, "theirs")])
        assert result.accounts[0].issuer == "mine"

    def test_order_preserved(self):
        local = [_acc("a", 1), _acc("b", 1), _acc("c", 1)]
        remote = [_acc("d", 1), _acc("b", 9, "newer"), _acc("e", 1)]
        result = reconcile(local, remote)
        assert [a.id for a in result.accounts] == ["a", "b", "c", "d", "e"]
        assert result.accounts[1].issuer == "newer"

    def test_inputs_not_mutated(self):
        local = [_acc("a", 1)]
        remote = [_acc("a", 2), _acc("b", 1)]
        reconcile(local, remote)
        assert len(local) == 1
        assert local[0].updated_at == 1

    def test_no_tombstones(self):
        # Deleted locally, still present remotely: it comes back
        result = reconcile([], [_acc("deleted-here", 1)])
        assert [a.id for a in result.accounts] == ["deleted-here"]

    def test_idempotent(self):
        local = [_acc("a", 1), _acc("b", 5)]
        remote = [_acc("b", 6), _acc("c", 2)]
        once = reconcile(local, remote)
        twice = reconcile(once.accounts, remote)
        assert twice.accounts == once.accounts
        assert twice.counts.changed is False

    def test_both_sides_converge(self):
        left = [_acc("a", 1, "L"), _acc("shared", 10, "L")]
        right = [_acc("b", 1, "R"), _acc("shared", 20, "R")]
        left_merged = reconcile(left, right).accounts
        right_merged = reconcile(right, left).accounts
        assert {a.id: a for a in left_merged} == {a.id: a for a in right_merged}


class TestMergeCounts:
    def test_changed(self):
        assert MergeCounts(added=1).changed is True
        assert MergeCounts(updated=1).changed is True
        assert MergeCounts(skipped=3).changed is False

    def test_to_dict(self):
        assert MergeCounts(1, 2, 3).to_dict() == {"added": 1, "updated": 2, "skipped": 3}
