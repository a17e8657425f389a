"""Unit tests for SubscriptionRegistry."""

from unittest.mock import MagicMock

from lpwatch.realtime.registry import SubscriptionKind, SubscriptionRegistry
from lpwatch.utils.scheduling import CancelHandle


class TestSubscriptionRegistry:
    """Tests for add/remove/snapshot/clear semantics."""

    def test_add_and_snapshot_in_order(self):
        registry = SubscriptionRegistry()
        registry.add("wallet", SubscriptionKind.WALLET, MagicMock())
        registry.add("pos-1", SubscriptionKind.POSITION, MagicMock())
        registry.add("sig-1", SubscriptionKind.SIGNATURE, MagicMock())

        snapshot = registry.snapshot()

        assert [e.key for e in snapshot] == ["wallet", "pos-1", "sig-1"]
        assert [e.kind for e in snapshot] == [
            SubscriptionKind.WALLET,
            SubscriptionKind.POSITION,
            SubscriptionKind.SIGNATURE,
        ]
        assert len(registry) == 3

    def test_remove_invokes_cancel_exactly_once(self):
        registry = SubscriptionRegistry()
        cancel = MagicMock()
        registry.add("pos-1", SubscriptionKind.POSITION, cancel)

        assert registry.remove("pos-1") is True
        assert registry.remove("pos-1") is False

        cancel.assert_called_once()
        assert "pos-1" not in registry

    def test_resubscribing_same_key_cancels_previous(self):
        registry = SubscriptionRegistry()
        first, second = MagicMock(), MagicMock()

        registry.add("pos-1", SubscriptionKind.POSITION, first)
        registry.add("pos-1", SubscriptionKind.POSITION, second)

        first.assert_called_once()
        second.assert_not_called()
        assert len(registry) == 1
        assert registry.get("pos-1").cancel is second

    def test_clear_cancels_everything(self):
        registry = SubscriptionRegistry()
        cancels = [MagicMock() for _ in range(3)]
        for i, cancel in enumerate(cancels):
            registry.add(f"pos-{i}", SubscriptionKind.POSITION, cancel)

        registry.clear()

        for cancel in cancels:
            cancel.assert_called_once()
        assert len(registry) == 0

    def test_failing_cancel_does_not_block_others(self):
        registry = SubscriptionRegistry()
        broken = MagicMock(side_effect=RuntimeError("listener already gone"))
        healthy = MagicMock()
        registry.add("a", SubscriptionKind.POSITION, broken)
        registry.add("b", SubscriptionKind.POSITION, healthy)

        registry.clear()

        healthy.assert_called_once()
        assert len(registry) == 0

    def test_snapshot_is_detached(self):
        registry = SubscriptionRegistry()
        registry.add("a", SubscriptionKind.POSITION, MagicMock())
        snapshot = registry.snapshot()

        registry.clear()

        assert [e.key for e in snapshot] == ["a"]

    def test_remove_token_only_removes_owner(self):
        registry = SubscriptionRegistry()
        old_token, new_token = object(), object()
        registry.add("a", SubscriptionKind.POSITION, MagicMock(), token=old_token)
        registry.add("a", SubscriptionKind.POSITION, MagicMock(), token=new_token)

        assert registry.remove_token("a", old_token) is False
        assert "a" in registry
        assert registry.remove_token("a", new_token) is True
        assert "a" not in registry

    def test_dormant_entries_keep_identity(self):
        registry = SubscriptionRegistry()
        callback = MagicMock()
        token = object()
        entry = registry.add("a", SubscriptionKind.WALLET, MagicMock(), callback=callback, token=token)
        registry.clear()

        registry.add_dormant(entry)

        dormant = registry.get("a")
        assert dormant.dormant is True
        assert dormant.token is token
        assert dormant.callback is callback
        assert dormant.kind is SubscriptionKind.WALLET
        # Removing a dormant entry is safe
        assert registry.remove_token("a", token) is True

    def test_dormant_does_not_replace_newer_entry(self):
        registry = SubscriptionRegistry()
        entry = registry.add("a", SubscriptionKind.POSITION, MagicMock())
        registry.clear()
        fresh_cancel = MagicMock()
        registry.add("a", SubscriptionKind.POSITION, fresh_cancel)

        registry.add_dormant(entry)

        assert registry.get("a").cancel is fresh_cancel
        assert registry.get("a").dormant is False

    def test_released_entry_is_not_kept_dormant(self):
        registry = SubscriptionRegistry()
        handle = CancelHandle(lambda: None)
        entry = registry.add("a", SubscriptionKind.POSITION, MagicMock(), token=handle)
        registry.clear()
        handle.cancel()

        assert entry.released is True
        registry.add_dormant(entry)

        assert "a" not in registry
