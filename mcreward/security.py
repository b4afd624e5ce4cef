"""
security.py - Security Gate

Owns the 2-digit PIN that authorizes outbound value movements (Sell,
Transfer). Provides:
- validate_pin_format(): reject anything but exactly PIN_LENGTH digits
- PinGate.set_or_update_pin(): store a PIN, honouring the change cooldown
- PinGate.verify(): check a candidate PIN, failing closed when none is set
- PinGate.cooldown_remaining(): time until the PIN may change again

Consecutive wrong guesses are counted per account in memory; after
``max_pin_attempts`` of them verification is locked for ``pin_lockout``.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
import secrets
import threading
from typing import Dict, Optional

from .config import EngineConfig
from .core import (
    Account, PIN_LENGTH,
    IncorrectPin, PinCooldownActive, PinLocked, PinNotSet, ValidationError,
)
from .ledger import RewardsLedger, build_update


PIN_NOT_SET_MESSAGE = "Please set a security PIN in your profile first."
INCORRECT_PIN_MESSAGE = "Incorrect Security PIN."


def validate_pin_format(pin: str) -> str:
    """
    Raises:
        ValidationError: If ``pin`` is not exactly PIN_LENGTH ASCII digits
    """
    if (not isinstance(pin, str) or len(pin) != PIN_LENGTH
            or not pin.isascii() or not pin.isdigit()):
        raise ValidationError(f"PIN must be exactly {PIN_LENGTH} digits.")
    return pin


def cooldown_remaining(
    last_update: Optional[datetime],
    now: datetime,
    cooldown: timedelta,
) -> timedelta:
    """Time left before the PIN may change again (zero when allowed)."""
    if last_update is None:
        return timedelta(0)
    remaining = cooldown - (now - last_update)
    return max(remaining, timedelta(0))


@dataclass
class _FailureRecord:
    failures: int = 0
    locked_until: Optional[datetime] = None


class PinGate:
    """
    PIN lifecycle and verification for every account.

    Example:
        gate = PinGate(ledger)
        gate.set_or_update_pin("u1", "42")
        gate.verify(ledger.get_account("u1"), "42")
    """

    def __init__(
        self,
        ledger: RewardsLedger,
        config: Optional[EngineConfig] = None,
        verbose: bool = True,
    ):
        self.ledger = ledger
        self.config = config or ledger.config
        self.verbose = verbose
        self._failures: Dict[str, _FailureRecord] = {}
        self._lock = threading.Lock()

    def cooldown_remaining(self, account: Account) -> timedelta:
        return cooldown_remaining(account.last_pin_update, self.ledger.now(), self.config.pin_cooldown)

    def set_or_update_pin(self, account_id: str, new_pin: str) -> Account:
        """
        Set the account's PIN, or replace it once the cooldown has passed.

        The cooldown runs from the last change; a change at exactly
        ``pin_cooldown`` after it is allowed.

        Raises:
            ValidationError: If the PIN is not exactly 2 digits
            PinCooldownActive: If the last change was too recent
            AccountNotFound: If the account does not exist
        """
        validate_pin_format(new_pin)
        account = self.ledger.get_account(account_id)
        now = self.ledger.now()
        remaining = cooldown_remaining(account.last_pin_update, now, self.config.pin_cooldown)
        if remaining > timedelta(0):
            if self.verbose:
                print(f"✗ REJECTED: PIN change for {account_id}, {remaining} of cooldown left")
            raise PinCooldownActive(remaining, self.config.pin_cooldown)

        update = build_update(account, extra_fields={'pin': new_pin, 'last_pin_update': now})
        stored = self.ledger.commit(update)
        with self._lock:
            self._failures.pop(account_id, None)
        return stored

    def verify(self, account: Account, candidate: str) -> None:
        """
        Check ``candidate`` against the account's PIN.

        Raises:
            PinNotSet: If the account has no PIN (never authorizes)
            PinLocked: If too many wrong PINs were entered recently
            IncorrectPin: If the candidate does not match
        """
        if not account.has_pin:
            raise PinNotSet(PIN_NOT_SET_MESSAGE)

        now = self.ledger.now()
        with self._lock:
            record = self._failures.get(account.id)
            if record and record.locked_until is not None:
                if now < record.locked_until:
                    raise PinLocked(record.locked_until - now)
                del self._failures[account.id]
                record = None

            if (isinstance(candidate, str) and candidate.isascii()
                    and secrets.compare_digest(candidate, account.pin)):
                self._failures.pop(account.id, None)
                return

            if record is None:
                record = self._failures.setdefault(account.id, _FailureRecord())
            record.failures += 1
            limit = self.config.max_pin_attempts
            if limit is not None and record.failures >= limit:
                record.locked_until = now + self.config.pin_lockout
                if self.verbose:
                    print(f"⚠️  PIN LOCKED: {account.id} after {record.failures} failed attempts")

        if self.verbose:
            print(f"✗ REJECTED: incorrect PIN for {account.id}")
        raise IncorrectPin(INCORRECT_PIN_MESSAGE)

    def failed_attempts(self, account_id: str) -> int:
        with self._lock:
            record = self._failures.get(account_id)
            return record.failures if record else 0
