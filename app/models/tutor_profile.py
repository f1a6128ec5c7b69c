from sqlalchemy import Column, String, Integer

from app.core.database import Base


class TutorProfile(Base):
    __tablename__ = "tutor_profiles"

    # Opaque identity of the tutor
    tutor_id = Column(String(64), nullable=False, unique=True, index=True)

    # Rate in cents, snapshotted onto each generated slot
    hourly_rate_cents = Column(Integer, nullable=False, default=0)

    # Fallback timezone when the availability pattern has none
    time_zone = Column(String(64), nullable=True)

    def __repr__(self):
        return f"<TutorProfile(tutor_id={self.tutor_id}, hourly_rate_cents={self.hourly_rate_cents})>"
