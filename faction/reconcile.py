"""Payment reconciliation against the faction news feed.

News entries are free text such as

    "Admin increased John [123]'s Fatality money balance by $1,000,000 from ..."

There is no transfer id linking an entry back to a payout, so a payout is
matched on the exact amount plus a case-insensitive substring match of the
recipient name in either direction. Two recipients sharing a name fragment and
an identical amount can therefore match each other; amounts are large and
rarely identical, so this is accepted.
"""

import re
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .models import (
    DoublePayment,
    DuplicateGroup,
    ExpectedPayout,
    NewsEntry,
    PaymentRecord,
    PaymentVerification,
    Transfer,
)

TRANSFER_PATTERN = re.compile(
    r"^(?P<admin>.+?) increased (?P<recipient>.+?)'s(?: [^$]+?)? money balance by "
    r"\$(?P<amount>[\d,]+) from"
)
MEMBER_ID_PATTERN = re.compile(r"\[(\d+)\]")


def parse_amount(value) -> Optional[int]:
    """Parse an integer amount that may carry thousands separators or a `$`."""
    if value is None:
        return None
    text = str(value).replace(",", "").replace("$", "").strip()
    if not text:
        return None
    try:
        return int(float(text))
    except ValueError:
        return None


def parse_transfer(text: str) -> Optional[Transfer]:
    """Parse a balance-increase news entry, or return None if it is not one."""
    match = TRANSFER_PATTERN.match(text or "")
    if not match:
        return None
    amount = parse_amount(match.group("amount"))
    if amount is None:
        return None
    recipient = match.group("recipient").strip()
    id_match = MEMBER_ID_PATTERN.search(recipient)
    return Transfer(
        admin=match.group("admin").strip(),
        recipient=recipient,
        amount=amount,
        recipient_id=id_match.group(1) if id_match else None,
    )


def names_match(expected: str, recipient: str) -> bool:
    expected = expected.lower()
    recipient = recipient.lower()
    return bool(expected and recipient) and (expected in recipient or recipient in expected)


def _parsed(news: Iterable[NewsEntry]) -> List[Tuple[Transfer, NewsEntry]]:
    transfers = []
    for entry in news:
        transfer = parse_transfer(entry.text)
        if transfer is not None:
            transfers.append((transfer, entry))
    return transfers


def verify_payments(expected: Iterable[ExpectedPayout], news: Iterable[NewsEntry]
                    ) -> Tuple[Dict[str, PaymentVerification], Dict[str, DoublePayment]]:
    """Match expected payouts against transfers in the news feed.

    Returns the verification of every positive payout keyed by member id, and
    the subset matched by more than one transfer.
    """
    transfers = _parsed(news)
    verified: Dict[str, PaymentVerification] = {}
    doubles: Dict[str, DoublePayment] = {}

    for payout in expected:
        if not payout.member_id or not payout.name or payout.amount <= 0:
            continue

        matches = [
            PaymentRecord(admin=transfer.admin, timestamp=entry.timestamp)
            for transfer, entry in transfers
            if transfer.amount == payout.amount and names_match(payout.name, transfer.recipient)
        ]
        if not matches:
            verified[payout.member_id] = PaymentVerification(verified=False)
            continue

        matches.sort(key=lambda record: record.timestamp, reverse=True)
        latest = matches[0]
        verified[payout.member_id] = PaymentVerification(True, latest.admin, latest.timestamp)
        if len(matches) > 1:
            doubles[payout.member_id] = DoublePayment(
                member_id=payout.member_id,
                verified_by=latest.admin,
                timestamp=latest.timestamp,
                count=len(matches),
                payments=matches,
            )

    return verified, doubles


@dataclass
class TransferAudit:
    """Result of scanning the whole feed for suspected duplicate transfers."""
    total_transfers: int
    unique_recipients: int
    duplicates: List[DuplicateGroup] = field(default_factory=list)
    top_recipients: List[Tuple[str, str, int]] = field(default_factory=list)  # (id, name, count)


def audit_transfers(news: Iterable[NewsEntry], top: int = 5) -> TransferAudit:
    """Group all transfers by (recipient id, amount) and flag repeated groups.

    Repeats are only suspects: separate payouts of the same amount to the
    same member for different wars look identical here.
    """
    names: Dict[str, str] = {}
    per_recipient: Counter = Counter()
    groups: Dict[Tuple[str, int], List[str]] = defaultdict(list)
    total = 0

    for transfer, _entry in _parsed(news):
        total += 1
        recipient_id = transfer.recipient_id or "unknown"
        names.setdefault(recipient_id, transfer.recipient_name)
        per_recipient[recipient_id] += 1
        groups[(recipient_id, transfer.amount)].append(transfer.admin)

    duplicates = []
    for (recipient_id, amount), admins in groups.items():
        if len(admins) > 1:
            duplicates.append(DuplicateGroup(
                recipient_id=recipient_id,
                name=names[recipient_id],
                amount=amount,
                count=len(admins),
                admins=list(dict.fromkeys(admins)),
            ))
    duplicates.sort(key=lambda group: group.count, reverse=True)

    top_recipients = [
        (recipient_id, names[recipient_id], count)
        for recipient_id, count in per_recipient.most_common(top)
    ]
    return TransferAudit(
        total_transfers=total,
        unique_recipients=len(per_recipient),
        duplicates=duplicates,
        top_recipients=top_recipients,
    )


def member_history(member_id: str, news: Iterable[NewsEntry]) -> Dict[int, List[PaymentRecord]]:
    """Transfers to one member, grouped by amount (newest first within a group)."""
    history: Dict[int, List[PaymentRecord]] = defaultdict(list)
    for transfer, entry in _parsed(news):
        if transfer.recipient_id == str(member_id):
            history[transfer.amount].append(PaymentRecord(transfer.admin, entry.timestamp))
    for records in history.values():
        records.sort(key=lambda record: record.timestamp, reverse=True)
    return dict(history)
