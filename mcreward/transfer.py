"""
transfer.py - Peer-to-peer $ZPEXK Transfer Protocol

A transfer attempt moves through a small state machine:

    COMPOSE -> REVIEW -> AUTHORIZED -> COMMITTED
       |          |          |
       +----------+----------+--> CANCELLED

- compose(): validate destination, amount and balance; nothing is written
- review(): the user has seen the bill
- authorize(): PIN verified through the Security Gate
- commit(): re-check that the PIN is unchanged, resolve the recipient and
  move the funds in one atomic two-account update

A failed commit puts the attempt back in REVIEW. Nothing retries
automatically. The ledger entries are fixed at the first commit, so a user
retrying an attempt whose earlier commit timed out can never send it twice.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
import secrets
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .core import (
    Account, DisplayUnit, Transaction, TransactionKind, TransactionStatus,
    SYSTEM_DESTINATION, PUBLIC_ID_LENGTH,
    AuthorizationExpired, InsufficientFunds, InvalidTransition, RecipientNotFound, RewardsError,
    ValidationError,
    format_units, is_public_id, require_positive_quantity, new_transaction_id,
)
from .ledger import RewardsLedger, build_update
from .security import PinGate


INVALID_DESTINATION_MESSAGE = f"Please enter a valid {PUBLIC_ID_LENGTH}-digit ZPEXK Number."
INSUFFICIENT_BALANCE_MESSAGE = "Insufficient ZPEXK balance."
SELF_TRANSFER_MESSAGE = "You cannot transfer to yourself."
RECIPIENT_NOT_FOUND_MESSAGE = "Recipient not found. Check the ZPEXK Number."
INVALID_SCAN_MESSAGE = "Scanned code is not a ZPEXK Number."
PIN_CHANGED_MESSAGE = "Your PIN changed since you confirmed this transfer. Please enter it again."


class TransferState(Enum):
    COMPOSE = "COMPOSE"
    REVIEW = "REVIEW"
    AUTHORIZED = "AUTHORIZED"
    COMMITTED = "COMMITTED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferState.COMMITTED, TransferState.CANCELLED)


class TransferSource(Enum):
    """How the destination was entered. Only changes the ledger labels."""
    MANUAL = "MANUAL"
    SCAN = "SCAN"


_TRANSITIONS: Dict[TransferState, FrozenSet[TransferState]] = {
    TransferState.COMPOSE: frozenset({TransferState.REVIEW, TransferState.CANCELLED}),
    TransferState.REVIEW: frozenset({TransferState.AUTHORIZED, TransferState.CANCELLED}),
    TransferState.AUTHORIZED: frozenset({
        TransferState.COMMITTED, TransferState.REVIEW, TransferState.CANCELLED,
    }),
    TransferState.COMMITTED: frozenset(),
    TransferState.CANCELLED: frozenset(),
}


@dataclass
class TransferAttempt:
    """
    One user's in-progress transfer.

    After compose the protocol moves ``state``, records which PIN authorized
    the attempt, and fixes the ledger entries at the first commit.
    """
    id: str
    sender_id: str
    sender_public_id: Optional[str]
    destination: str
    amount: Decimal
    source: TransferSource = TransferSource.MANUAL
    state: TransferState = TransferState.COMPOSE
    created_at: Optional[datetime] = None
    entries: Tuple[Transaction, ...] = field(default=())
    authorized_pin_update: Optional[datetime] = None

    def __repr__(self) -> str:
        return (f"TransferAttempt({self.id}: {self.amount} $ZPEXK {self.sender_public_id} -> "
                f"{self.destination} [{self.source.value}] {self.state.value})")


def parse_scanned_code(text: str) -> str:
    """
    Accept a decoded scan only if it is exactly a 10-digit public id.

    Raises:
        ValidationError: For anything else
    """
    if not is_public_id(text):
        raise ValidationError(INVALID_SCAN_MESSAGE)
    return text


def _labels(source: TransferSource, destination: str, origin: str) -> Tuple[str, str]:
    via = " via Scan" if source == TransferSource.SCAN else ""
    return (
        f"Sent ZPEXK{via} to {destination}",
        f"Received ZPEXK{via} from {origin}",
    )


def _has_entry(account: Account, entry: Transaction) -> bool:
    return any(t.id == entry.id for t in account.transactions)


class TransferProtocol:
    """
    Drives TransferAttempts from compose to commit.

    Example:
        protocol = TransferProtocol(ledger, gate)
        attempt = protocol.compose("u1", "4821093375", Decimal("1.5"))
        protocol.review(attempt)
        protocol.authorize(attempt, "42")
        protocol.commit(attempt)
    """

    def __init__(self, ledger: RewardsLedger, gate: Optional[PinGate] = None, verbose: bool = True):
        self.ledger = ledger
        self.gate = gate or PinGate(ledger, verbose=verbose)
        self.verbose = verbose

    # ------------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------------

    def _move(self, attempt: TransferAttempt, to: TransferState) -> None:
        if to not in _TRANSITIONS[attempt.state]:
            raise InvalidTransition(
                f"Transfer {attempt.id} cannot go from {attempt.state.value} to {to.value}"
            )
        attempt.state = to

    def compose(
        self,
        sender_id: str,
        destination: str,
        amount: Any,
        source: TransferSource = TransferSource.MANUAL,
    ) -> TransferAttempt:
        """
        Start a transfer after validating it locally.

        Raises:
            ValidationError: Malformed destination, bad amount, or self-transfer
            InsufficientFunds: If the sender holds less than ``amount``
        """
        destination = (destination or "").strip()
        if not is_public_id(destination):
            raise ValidationError(INVALID_DESTINATION_MESSAGE)
        amount = require_positive_quantity(amount, "amount to transfer")
        sender = self.ledger.get_account(sender_id)
        if sender.asset_balance < amount:
            raise InsufficientFunds(INSUFFICIENT_BALANCE_MESSAGE)
        if destination == sender.public_id:
            raise ValidationError(SELF_TRANSFER_MESSAGE)

        now = self.ledger.now()
        attempt = TransferAttempt(
            id=f"xfer_{secrets.token_hex(6)}",
            sender_id=sender_id,
            sender_public_id=sender.public_id,
            destination=destination,
            amount=amount,
            source=source,
            created_at=now,
        )
        if self.verbose:
            print(f"📝 Composed: {attempt!r}")
        return attempt

    def compose_from_scan(self, sender_id: str, scanned: str, amount: Any) -> TransferAttempt:
        return self.compose(sender_id, parse_scanned_code(scanned), amount, TransferSource.SCAN)

    def review(self, attempt: TransferAttempt) -> TransferAttempt:
        self._move(attempt, TransferState.REVIEW)
        return attempt

    def authorize(self, attempt: TransferAttempt, pin: str) -> TransferAttempt:
        """
        Verify the sender's PIN. A failed check leaves the attempt in REVIEW.

        Raises:
            InvalidTransition: If the attempt is not in REVIEW
            PinNotSet, IncorrectPin, PinLocked: From the Security Gate
        """
        if attempt.state != TransferState.REVIEW:
            raise InvalidTransition(
                f"Transfer {attempt.id} must be in REVIEW to authorize, is {attempt.state.value}"
            )
        sender = self.ledger.get_account(attempt.sender_id)
        self.gate.verify(sender, pin)
        attempt.authorized_pin_update = sender.last_pin_update
        self._move(attempt, TransferState.AUTHORIZED)
        return attempt

    def cancel(self, attempt: TransferAttempt) -> TransferAttempt:
        self._move(attempt, TransferState.CANCELLED)
        if self.verbose:
            print(f"✗ CANCELLED: {attempt!r}")
        return attempt

    def commit(self, attempt: TransferAttempt) -> Tuple[Account, Account]:
        """
        Move the funds: sender -amount, recipient +amount, one entry each,
        in a single atomic update conditional on both record versions.

        The two entries are built at the first commit and kept on the
        attempt, so committing the same attempt again never moves the funds
        twice: if an earlier commit timed out and landed later, the entries
        are already in the sender's log and the attempt simply completes.

        The sender's PIN must not have changed since authorize().

        Returns:
            (sender, recipient) as stored

        Raises:
            InvalidTransition: If the attempt is not AUTHORIZED
            AuthorizationExpired: If the PIN changed after authorization
            RecipientNotFound: If no account carries the destination id
            InsufficientFunds: If the sender's balance dropped since compose
            StoreError: If the atomic update fails
            WriteOutcomeUnknown: If the update timed out unconfirmed; the
                attempt can be committed again safely
        """
        if attempt.state != TransferState.AUTHORIZED:
            raise InvalidTransition(
                f"Transfer {attempt.id} must be AUTHORIZED to commit, is {attempt.state.value}"
            )
        try:
            sender, recipient = self._commit(attempt)
        except RewardsError as e:
            self._move(attempt, TransferState.REVIEW)
            if self.verbose:
                print(f"✗ REJECTED: {attempt!r}: {e}")
            raise
        self._move(attempt, TransferState.COMMITTED)
        return sender, recipient

    def _commit(self, attempt: TransferAttempt) -> Tuple[Account, Account]:
        sender = self.ledger.get_account(attempt.sender_id)
        recipient = self.ledger.find_by_public_id(attempt.destination)
        if attempt.entries and _has_entry(sender, attempt.entries[0]):
            if self.verbose:
                print(f"✓ ALREADY APPLIED: {attempt!r}")
            if recipient is None:
                raise RecipientNotFound(RECIPIENT_NOT_FOUND_MESSAGE)
            return sender, recipient

        if not sender.has_pin or sender.last_pin_update != attempt.authorized_pin_update:
            raise AuthorizationExpired(PIN_CHANGED_MESSAGE)
        if recipient is None:
            raise RecipientNotFound(RECIPIENT_NOT_FOUND_MESSAGE)
        if recipient.id == sender.id:
            raise ValidationError(SELF_TRANSFER_MESSAGE)
        if sender.asset_balance < attempt.amount:
            raise InsufficientFunds(INSUFFICIENT_BALANCE_MESSAGE)

        if not attempt.entries:
            attempt.entries = self._entries(attempt, sender)
        sent, received = attempt.entries
        updates = [
            build_update(sender, asset_delta=-attempt.amount, entry=sent),
            build_update(recipient, asset_delta=attempt.amount, entry=received),
        ]
        stored = self.ledger.commit_atomic(updates)
        return stored[0], stored[1]

    def _entries(self, attempt: TransferAttempt, sender: Account) -> Tuple[Transaction, Transaction]:
        now = self.ledger.now()
        prefix = "zpexk_scan" if attempt.source == TransferSource.SCAN else "zpexk_tx"
        origin = sender.public_id or SYSTEM_DESTINATION
        sent_label, received_label = _labels(attempt.source, attempt.destination, origin)
        sent = Transaction(
            id=new_transaction_id(f"{prefix}_sent", now),
            amount=attempt.amount,
            coin_amount=0,
            reward_type=sent_label,
            timestamp=now,
            status=TransactionStatus.SUCCESS,
            destination_id=attempt.destination,
            kind=TransactionKind.TRANSFER,
            unit=DisplayUnit.ZPEXK,
        )
        received = Transaction(
            id=new_transaction_id(f"{prefix}_recv", now),
            amount=attempt.amount,
            coin_amount=0,
            reward_type=received_label,
            timestamp=now,
            status=TransactionStatus.SUCCESS,
            destination_id=origin,
            kind=TransactionKind.EARN,
            unit=DisplayUnit.ZPEXK,
        )
        return sent, received

    def summary(self, attempt: TransferAttempt) -> str:
        """The bill shown in REVIEW."""
        return f"Send {format_units(attempt.amount)} $ZPEXK to {attempt.destination}"
