from sqlalchemy import Column, String, DateTime, Text, Enum as SQLEnum, Index
import enum

from artfinance.clock import utcnow
from artfinance.database import Base


class AuthRequestKind(str, enum.Enum):
    """Which flow created the request. Both share one state machine."""
    REGISTRATION = "registration"
    SIGN_IN = "sign_in"


class AuthRequestStatus(str, enum.Enum):
    PENDING = "pending"  # Initial state
    COMPLETED = "completed"  # Terminal: token consumed
    EXPIRED = "expired"  # Terminal: verified too late or reaped


class PendingAuthRequest(Base):
    """
    A pending registration or sign-in, keyed by its token.

    The token is the primary key, so one record per token is structural.
    status / verified_at / requester_ip only change together, at
    verification time, through the state machine.
    """
    __tablename__ = "pending_auth_requests"

    token = Column(String(64), primary_key=True)
    email = Column(String(320), nullable=False, index=True)
    display_name = Column(String(100), nullable=True)  # Absent for sign-in of a nameless profile
    continue_url = Column(Text, nullable=False)

    kind = Column(
        SQLEnum(AuthRequestKind, name="auth_request_kind", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    status = Column(
        SQLEnum(AuthRequestStatus, name="auth_request_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AuthRequestStatus.PENDING,
        index=True,
    )

    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    verified_at = Column(DateTime, nullable=True)  # Set iff status == completed
    requester_ip = Column(String(45), nullable=True)  # Audit only, IPv4 or IPv6

    __table_args__ = (
        Index("ix_pending_auth_requests_email_kind_status", "email", "kind", "status"),
    )
