"""
test_redemption.py - Unit tests for the Coin redemption shop
"""

import pytest
import re

from mcreward import (
    GOOGLE_PLAY_TIERS, TransactionKind, TransactionStatus,
    generate_redeem_code, redeem_google_play, transfer_minecraft_coins,
    InsufficientFunds, ValidationError,
)


class TestGooglePlay:

    def test_tiers(self):
        assert sorted(GOOGLE_PLAY_TIERS) == [10, 20, 30, 100, 1000]
        assert GOOGLE_PLAY_TIERS[10].cost == 1200
        assert GOOGLE_PLAY_TIERS[1000].label == "1000rs"

    def test_redeem_code_shape(self):
        assert re.fullmatch(r"[A-Z0-9]{8}-[A-Z0-9]{4}", generate_redeem_code())

    def test_redeem(self, engine, alice):
        account = redeem_google_play(engine.ledger, "alice", 10)
        assert account.coin_balance == alice.coin_balance - 1200
        assert account.lifetime_coins == alice.lifetime_coins
        entry = account.transactions[-1]
        assert entry.kind == TransactionKind.SHOP
        assert entry.status == TransactionStatus.SUCCESS
        assert entry.coin_amount == -1200
        assert entry.reward_type == "10rs Google Play Code"
        assert entry.destination_id == "Shop"
        assert re.fullmatch(r"[A-Z0-9]{8}-[A-Z0-9]{4}", entry.redeem_code)

    def test_insufficient(self, engine, carol):
        with pytest.raises(InsufficientFunds, match="Insufficient coins!"):
            redeem_google_play(engine.ledger, "carol", 10)
        assert engine.account("carol") == carol

    def test_unknown_tier(self, engine, alice):
        with pytest.raises(ValidationError):
            redeem_google_play(engine.ledger, "alice", 15)


class TestMinecraftTransfer:

    def test_transfer(self, engine, alice):
        account = transfer_minecraft_coins(engine.ledger, "alice", "25", " Notch ")
        assert account.coin_balance == alice.coin_balance - 2500
        assert account.minecraft_username == "Notch"
        entry = account.transactions[-1]
        assert entry.status == TransactionStatus.PENDING
        assert entry.destination_id == "Notch"
        assert entry.reward_type == "Minecraft Transfer: 25 Coins"
        assert entry.redeem_code is None

    @pytest.mark.parametrize("amount", [0, -3, "abc", None, True])
    def test_invalid_amount(self, engine, alice, amount):
        with pytest.raises(ValidationError, match="Please enter a valid amount."):
            transfer_minecraft_coins(engine.ledger, "alice", amount, "Notch")

    def test_blank_nametag(self, engine, alice):
        with pytest.raises(ValidationError, match="Please enter a Minecraft nametag."):
            transfer_minecraft_coins(engine.ledger, "alice", 1, "  ")

    def test_insufficient(self, engine, carol):
        with pytest.raises(InsufficientFunds, match="Insufficient coins!"):
            transfer_minecraft_coins(engine.ledger, "carol", 6, "Notch")
