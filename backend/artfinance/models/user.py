from sqlalchemy import Column, String, DateTime, Integer

from artfinance.clock import utcnow
from artfinance.database import Base


class AppUserProfile(Base):
    """
    Application profile for an identity-provider account.

    Keyed by the identity provider's uid. The auth flow creates it on a
    completed registration and touches the login fields on every sign-in;
    everything else about its lifecycle belongs to the rest of the app.
    """
    __tablename__ = "user_profiles"

    uid = Column(String(64), primary_key=True)
    email = Column(String(320), nullable=False, index=True)
    name = Column(String(100), nullable=True)

    # Login metadata
    last_login_at = Column(DateTime, nullable=True)
    last_login_ip = Column(String(45), nullable=True)  # IPv4 or IPv6
    last_device = Column(String(255), nullable=True)  # User-Agent of the verifying client
    login_count = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def record_login(self, now, ip: str | None, device: str | None) -> None:
        """Touch login metadata after a successful verification."""
        self.last_login_at = now
        self.last_login_ip = ip
        if device:
            self.last_device = device[:255]
        self.login_count = (self.login_count or 0) + 1
