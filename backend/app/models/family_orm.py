"""Family group membership ORM model."""
import uuid
from sqlalchemy import Column, String, UniqueConstraint

from backend.app.core.database import Base, UTCDateTime, utcnow


class FamilyMembershipORM(Base):
    __tablename__ = "family_memberships"
    __table_args__ = (
        UniqueConstraint("family_group_id", "user_id", name="uq_family_membership"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    family_group_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="member")  # owner | member
    status = Column(String(20), nullable=False, default="active")  # active | invited | removed
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<FamilyMembership {self.user_id} in {self.family_group_id} ({self.status})>"
