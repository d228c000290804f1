from sqlalchemy import Column, String, DateTime, Boolean
import uuid

from artfinance.clock import utcnow
from artfinance.database import Base


def new_uid() -> str:
    return uuid.uuid4().hex


class IdentityAccount(Base):
    """
    Account record of the identity provider.

    The unique email constraint is the authoritative duplicate-account gate;
    the orchestrators' existence checks are only a fast path.
    """
    __tablename__ = "identity_accounts"

    uid = Column(String(64), primary_key=True, default=new_uid)
    email = Column(String(320), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=True)
    email_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
