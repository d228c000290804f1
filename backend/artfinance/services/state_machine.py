"""
State machine for pending auth requests.
ALL status changes must go through this module.

Transitions are applied as a single conditional UPDATE guarded by the
expected current status, so two concurrent callers can never both move
the same record out of PENDING.
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import update, and_

from artfinance.models.pending_auth_request import (
    PendingAuthRequest,
    AuthRequestKind,
    AuthRequestStatus,
)

logger = logging.getLogger(__name__)


# Define allowed state transitions
ALLOWED_TRANSITIONS: Dict[AuthRequestStatus, list[AuthRequestStatus]] = {
    AuthRequestStatus.PENDING: [AuthRequestStatus.COMPLETED, AuthRequestStatus.EXPIRED],
    AuthRequestStatus.COMPLETED: [],  # Terminal state
    AuthRequestStatus.EXPIRED: [],  # Terminal state
}


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted"""
    pass


def can_transition(from_state: AuthRequestStatus, to_state: AuthRequestStatus) -> bool:
    """Check if a transition is allowed without touching the database"""
    return to_state in ALLOWED_TRANSITIONS.get(from_state, [])


async def transition_request(
    db: AsyncSession,
    token: str,
    from_state: AuthRequestStatus,
    to_state: AuthRequestStatus,
    *,
    now: datetime,
    requester_ip: Optional[str] = None,
    kind: Optional[AuthRequestKind] = None,
    not_expired: bool = False,
) -> bool:
    """
    Conditionally move a request from from_state to to_state.

    The caller owns the transaction: nothing is committed here.

    Args:
        db: Database session
        token: Token (primary key) of the request
        from_state: Status the record must currently have
        to_state: Target status
        now: Current time, stamped as verified_at on completion
        requester_ip: Audit IP recorded on completion
        kind: If given, the record must also be of this kind
        not_expired: If True, the record must not be past expires_at

    Returns:
        True if exactly this call changed the record, False if the guard
        did not match (missing record, other status, other kind, expired).

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(
            f"Invalid transition from {from_state.value} to {to_state.value}"
        )

    conditions = [
        PendingAuthRequest.token == token,
        PendingAuthRequest.status == from_state,
    ]
    if kind is not None:
        conditions.append(PendingAuthRequest.kind == kind)
    if not_expired:
        conditions.append(PendingAuthRequest.expires_at >= now)

    values: Dict[str, Any] = {"status": to_state}
    if to_state == AuthRequestStatus.COMPLETED:
        values["verified_at"] = now
        values["requester_ip"] = requester_ip

    result = await db.execute(
        update(PendingAuthRequest)
        .where(and_(*conditions))
        .values(**values)
    )
    changed = result.rowcount == 1

    if changed:
        logger.info(
            f"Auth request state transition: {from_state.value} → {to_state.value}",
            extra={"token_prefix": token[:10], "to_state": to_state.value},
        )

    return changed
