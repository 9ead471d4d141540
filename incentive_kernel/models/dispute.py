"""
Module: incentive_kernel.models.dispute
Responsibility: ORM persistence for payee disputes against a calculated
    payout, and the status transition map governing them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Status transitions follow VALID_TRANSITIONS:
      open -> investigating -> resolved | rejected | escalated.
      resolved and rejected are terminal; an escalated dispute may be
      re-investigated.

Failure modes:
    - InvalidDisputeTransitionError (raised by the resolution service) on
      a transition not in the map.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from incentive_kernel.db.base import TrackedBase, UUIDString


class DisputeStatus(str, Enum):
    """Dispute lifecycle."""

    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    ESCALATED = "escalated"


VALID_TRANSITIONS: dict[DisputeStatus, frozenset[DisputeStatus]] = {
    DisputeStatus.OPEN: frozenset({DisputeStatus.INVESTIGATING}),
    DisputeStatus.INVESTIGATING: frozenset({
        DisputeStatus.RESOLVED, DisputeStatus.REJECTED, DisputeStatus.ESCALATED,
    }),
    DisputeStatus.ESCALATED: frozenset({DisputeStatus.INVESTIGATING}),
    # Terminal states
    DisputeStatus.RESOLVED: frozenset(),
    DisputeStatus.REJECTED: frozenset(),
}


def can_transition(from_status: DisputeStatus, to_status: DisputeStatus) -> bool:
    """Return True if ``from_status -> to_status`` is allowed."""
    return to_status in VALID_TRANSITIONS.get(DisputeStatus(from_status), frozenset())


class Dispute(TrackedBase):
    """
    A payee's challenge of a calculated amount.

    ``component_name`` narrows the dispute to one component; when NULL the
    dispute is about the total.  ``resolution`` holds the investigation
    summary once the dispute leaves ``investigating``.
    """

    __tablename__ = "disputes"

    __table_args__ = (
        Index("idx_dispute_tenant_status", "tenant_id", "status"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id"),
        nullable=False,
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("entities.id"),
        nullable=False,
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("periods.id"),
        nullable=False,
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("calculation_batches.id"),
        nullable=False,
    )

    component_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    category: Mapped[str] = mapped_column(String(50), nullable=False)

    description: Mapped[str] = mapped_column(Text, default="", nullable=False)

    amount_disputed: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        default=Decimal("0"),
        nullable=False,
    )

    status: Mapped[DisputeStatus] = mapped_column(
        String(20),
        default=DisputeStatus.OPEN,
        nullable=False,
    )

    resolution: Mapped[dict | None] = mapped_column(JSON, nullable=True)
