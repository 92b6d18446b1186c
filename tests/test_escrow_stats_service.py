"""
Escrow Stats Service Tests
"""

from decimal import Decimal

from services.escrow_stats_service import EscrowStatsService

CREATOR_WALLET = "0x1111111111111111111111111111111111111111"
RECIPIENT_WALLET = "0x2222222222222222222222222222222222222222"


class TestEscrowStatsService:

    def test_empty_account(self, store, carol):
        stats = EscrowStatsService(store).summarize(carol)

        assert stats.total == 0
        assert stats.total_value == Decimal("0")
        assert stats.by_status == {"pending": 0, "completed": 0, "disputed": 0}

    def test_counts_by_display_label(self, store, engine, make_escrow, alice, bob):
        make_escrow(amount="1")                           # open (unlinked)

        active = make_escrow(amount="2")
        engine.link_recipient(active.id, bob, "bob@example.com")

        completed = make_escrow(amount="3", creator_wallet=CREATOR_WALLET)
        engine.link_recipient(completed.id, bob, "bob@example.com")
        engine.set_settlement_address(completed.id, bob, RECIPIENT_WALLET)
        engine.confirm(completed.id, alice)
        engine.confirm(completed.id, bob)

        disputed = make_escrow(amount="4.5")
        engine.dispute(disputed.id, alice)

        stats = EscrowStatsService(store).summarize(alice)

        assert (stats.open, stats.active, stats.completed, stats.disputed) == (1, 1, 1, 1)
        assert stats.total == 4
        assert stats.total_value == Decimal("10.5")
        assert stats.by_status == {"pending": 2, "completed": 1, "disputed": 1}

    def test_recipient_counts_only_linked_escrows(self, store, engine, make_escrow, bob):
        linked = make_escrow(amount="7")
        make_escrow(amount="8")
        engine.link_recipient(linked.id, bob, "bob@example.com")

        stats = EscrowStatsService(store).summarize(bob)

        assert stats.total == 1
        assert stats.active == 1
        assert stats.total_value == Decimal("7")

    def test_values_summed_across_assets_without_conversion(self, store, make_escrow, alice):
        make_escrow(amount="100", asset_symbol="USDT")
        make_escrow(amount="0.5", asset_id="native", asset_symbol="ETH")

        assert EscrowStatsService(store).summarize(alice).total_value == Decimal("100.5")
