"""Data models for the faction bot."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import HOSPITAL_STATE

IN_WINDOW = "in-window"
AVAILABLE = "available"


@dataclass
class RosterMember:
    """A member of a monitored faction, fetched fresh every poll."""
    id: int
    name: str
    level: int
    state: str
    until: int = 0
    description: str = ""
    position: str = ""
    days_in_faction: int = 0
    last_action: str = ""
    life_current: Optional[int] = None
    life_maximum: Optional[int] = None
    is_revivable: bool = False
    has_early_discharge: bool = False

    @property
    def hospitalized(self) -> bool:
        return self.state == HOSPITAL_STATE

    @property
    def vitality(self) -> Optional[float]:
        """Current life as a fraction of maximum, if known."""
        if not self.life_maximum or self.life_current is None:
            return None
        return self.life_current / self.life_maximum

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RosterMember":
        status = data.get("status") or {}
        life = data.get("life") or {}
        last_action = data.get("last_action") or {}
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            level=int(data.get("level") or 0),
            state=status.get("state") or "",
            until=int(status.get("until") or 0),
            description=status.get("description") or "",
            position=data.get("position") or "",
            days_in_faction=int(data.get("days_in_faction") or 0),
            last_action=last_action.get("relative") or "",
            life_current=life.get("current"),
            life_maximum=life.get("maximum"),
            is_revivable=bool(data.get("is_revivable")),
            has_early_discharge=bool(data.get("has_early_discharge")),
        )


@dataclass
class TrackedAlert:
    """The chat message currently representing one roster member."""
    member_id: int
    message_id: int
    classification: str  # IN_WINDOW or AVAILABLE


@dataclass
class Claim:
    """A manual reservation of a roster member."""
    member_id: int
    user_id: int
    user_name: str
    claimed_at: int


@dataclass
class MonitorSettings:
    """Runtime settings of the target monitor."""
    faction_id: int
    horizon: int = 300  # seconds
    interval: int = 20  # seconds
    max_available: int = 5
    max_level: Optional[int] = None


@dataclass
class WarReportSummary:
    """Aggregated statistics of one ranked war."""
    war_id: int
    start_time: int
    end_time: int
    opponent_id: int
    opponent_name: str
    our_score: int
    their_score: int
    winner: str
    total_hits: int = 0
    total_assists: int = 0
    total_respect: float = 0.0


@dataclass
class MemberContribution:
    """One member's counters for one war."""
    member_id: int
    member_name: str
    position: str = ""
    level: int = 0
    war_hits: int = 0
    under_respect_hits: int = 0
    non_war_hits: int = 0
    total_hits: int = 0
    hospitalizations: int = 0
    mugs: int = 0
    assists: int = 0
    draws: int = 0
    losses: int = 0
    respect: float = 0.0


@dataclass
class PayoutLineItem:
    """A single member's share of a payout ledger."""
    member_id: int
    member_name: str
    war_hits: int
    under_respect_hits: int
    non_war_hits: int
    assists: int
    points: float
    payment_amount: int
    paid: bool = False
    paid_at: Optional[str] = None
    paid_by: Optional[str] = None


@dataclass
class PayoutLedger:
    """The computed distribution of a war's cash pool."""
    war_id: int
    total_rw_cash: float
    payout_percentage: float
    total_payout: float
    reserved_amount: float
    total_points: float
    payment_per_point: float
    items: List[PayoutLineItem] = field(default_factory=list)


@dataclass
class NewsEntry:
    """A free-text entry from the faction news feed."""
    id: str
    text: str
    timestamp: int


@dataclass
class Transfer:
    """A money transfer parsed out of a news entry."""
    admin: str
    recipient: str
    amount: int
    recipient_id: Optional[str] = None

    @property
    def recipient_name(self) -> str:
        if self.recipient_id:
            return self.recipient.split('[')[0].strip()
        return self.recipient


@dataclass
class ExpectedPayout:
    """A payout we expect to find evidence of in the news feed."""
    member_id: str
    name: str
    amount: int
    label: str = ""
    link: str = ""
    war_hits: int = 0
    assists: int = 0


@dataclass
class PaymentRecord:
    admin: str
    timestamp: int


@dataclass
class PaymentVerification:
    verified: bool
    verified_by: Optional[str] = None
    timestamp: Optional[int] = None


@dataclass
class DoublePayment:
    """More than one matching transfer for a single expected payout."""
    member_id: str
    verified_by: str
    timestamp: int
    count: int
    payments: List[PaymentRecord] = field(default_factory=list)


@dataclass
class DuplicateGroup:
    """Transfers of the same amount to the same recipient, flagged for review."""
    recipient_id: str
    name: str
    amount: int
    count: int
    admins: List[str] = field(default_factory=list)


@dataclass
class FundSnapshot:
    total_money: int
    members_money: int
    faction_money: int
    id: Optional[int] = None
    timestamp: Optional[str] = None


@dataclass
class FundTransaction:
    transaction_date: str
    amount: int
    type: str  # 'expense' or 'income'
    category: str
    description: str
    recorded_by: str
    message_link: Optional[str] = None
    balance_after: Optional[int] = None
    id: Optional[int] = None
    timestamp: Optional[str] = None


@dataclass
class PaymentConfigEntry:
    key: str
    value: float
    description: str
    updated_at: Optional[str] = None


@dataclass
class ActionResult:
    """Result of a service operation."""
    success: bool
    message: str
    data: Any = None
