"""CSV import and export of war reports and payout ledgers."""

import csv
import io
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .models import ExpectedPayout, MemberContribution, PaymentVerification, PayoutLedger
from .reconcile import MEMBER_ID_PATTERN, parse_amount
from .timeutils import format_timestamp


logger = logging.getLogger(__name__)

PAYOUT_HEADERS = [
    'Member ID', 'Member Name', 'War Hits', 'Under Respect Hits', 'Non War Hits',
    'Assists', 'Points', 'Payment Amount', 'Status',
]

STATUS_HEADERS = [
    'Member ID', 'Member Name', 'War Hits', 'Assists', 'Payment Amount', 'Status', 'Paid By', 'Payment Time',
]

WAR_REPORT_HEADERS = [
    'Member ID', 'Member Name', 'Position', 'Level', 'War Hits', 'Under Respect Hits',
    'Non-War Hits', 'Total Hits', 'Hospitalizations', 'Mugs', 'Assists', 'Draws',
    'Losses', 'Respect Gained',
]


def _to_int(value) -> int:
    amount = parse_amount(value)
    return amount if amount is not None else 0


def parse_report_csv(content: str) -> List[ExpectedPayout]:
    """Read expected payouts from an uploaded war report.

    The `Member` column holds "Name [id]"; rows without an id or with a
    non-positive `Total_Payout` are skipped.
    """
    reader = csv.DictReader(io.StringIO(content.lstrip('\ufeff')))
    if reader.fieldnames:
        reader.fieldnames = [name.strip() for name in reader.fieldnames]

    payouts = []
    for line_number, row in enumerate(reader, start=2):
        member = (row.get('Member') or '').strip()
        id_match = MEMBER_ID_PATTERN.search(member)
        if not id_match:
            logger.debug(f"Skipping CSV line {line_number}: no member id in {member!r}")
            continue

        amount = parse_amount(row.get('Total_Payout'))
        if amount is None or amount <= 0:
            continue

        payouts.append(ExpectedPayout(
            member_id=id_match.group(1),
            name=member.split('[')[0].strip(),
            amount=amount,
            label=(row.get('Readable') or '').strip() or member,
            link=(row.get('Link') or '').strip(),
            war_hits=_to_int(row.get('War_hits')),
            assists=_to_int(row.get('Assists')),
        ))
    return payouts


def export_payout_csv(ledger: PayoutLedger, verified: Optional[Dict[str, PaymentVerification]] = None) -> str:
    """Render a payout ledger, marking items paid in the ledger or by verification."""
    verified = verified or {}
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(PAYOUT_HEADERS)
    for item in ledger.items:
        verification = verified.get(str(item.member_id))
        paid = item.paid or bool(verification and verification.verified)
        writer.writerow([
            item.member_id,
            item.member_name,
            item.war_hits,
            item.under_respect_hits,
            item.non_war_hits,
            item.assists,
            f"{item.points:.2f}",
            item.payment_amount,
            'PAID' if paid else 'PENDING',
        ])
    return buffer.getvalue()


def parse_payout_csv(content: str) -> List[Tuple[int, int, str]]:
    """Read (member id, amount, status) tuples back from an exported ledger."""
    rows = []
    for row in csv.DictReader(io.StringIO(content)):
        amount = parse_amount(row.get('Payment Amount'))
        try:
            member_id = int(row.get('Member ID') or '')
        except ValueError:
            continue
        if amount is None:
            continue
        rows.append((member_id, amount, (row.get('Status') or '').strip()))
    return rows


def export_war_report_csv(contributions: Iterable[MemberContribution]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(WAR_REPORT_HEADERS)
    for member in sorted(contributions, key=lambda c: c.war_hits, reverse=True):
        writer.writerow([
            member.member_id,
            member.member_name,
            member.position or 'Unknown',
            member.level or '',
            member.war_hits,
            member.under_respect_hits,
            member.non_war_hits,
            member.total_hits,
            member.hospitalizations,
            member.mugs,
            member.assists,
            member.draws,
            member.losses,
            f"{member.respect:.2f}",
        ])
    return buffer.getvalue()


def export_status_csv(entries: Iterable[ExpectedPayout], verified: Dict[str, PaymentVerification]) -> str:
    """Payment status of an uploaded report's payouts."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(STATUS_HEADERS)
    for entry in entries:
        verification = verified.get(entry.member_id) or PaymentVerification(False)
        writer.writerow([
            entry.member_id,
            entry.label or entry.name,
            entry.war_hits,
            entry.assists,
            entry.amount,
            'PAID' if verification.verified else 'PENDING',
            verification.verified_by or '',
            format_timestamp(verification.timestamp) if verification.timestamp else '',
        ])
    return buffer.getvalue()
