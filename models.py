from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp; every stored datetime is aware UTC."""
    return datetime.now(timezone.utc)


def _timestamp(**kwargs):
    return Field(sa_type=DateTime(timezone=True), **kwargs)


class Role(str, Enum):
    DONOR = "donor"
    VOLUNTEER = "volunteer"
    ORGANIZATION = "organization"
    ADMIN = "admin"


class DonationCategory(str, Enum):
    FOOD = "FOOD"
    CLOTHES = "CLOTHES"
    MEDICINE = "MEDICINE"
    OTHER = "OTHER"


class DonationStatus(str, Enum):
    AVAILABLE = "available"
    CLAIMING = "claiming"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class RequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(max_length=50, unique=True, index=True)
    email: str = Field(max_length=100, unique=True, index=True)
    first_name: str = Field(max_length=50)
    last_name: str = Field(max_length=50)
    phone: Optional[str] = Field(default=None, max_length=20)
    role: Role
    password_hash: str
    created_at: datetime = _timestamp(default_factory=utcnow)


class Donation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="user.id", ondelete="CASCADE", index=True)

    title: str = Field(max_length=100)
    description: Optional[str] = None
    category: DonationCategory
    quantity: int
    unit: str = Field(max_length=20)
    expiry_date: datetime = _timestamp()
    pickup_address: str
    pickup_time: Optional[datetime] = _timestamp(default=None)
    image_url: Optional[str] = None

    status: DonationStatus = Field(default=DonationStatus.AVAILABLE, index=True)
    organization_id: Optional[int] = Field(
        default=None, foreign_key="user.id", ondelete="SET NULL", index=True
    )
    volunteer_id: Optional[int] = Field(
        default=None, foreign_key="user.id", ondelete="SET NULL", index=True
    )
    volunteer_count: int = 0

    created_at: datetime = _timestamp(default_factory=utcnow)
    updated_at: datetime = _timestamp(default_factory=utcnow)


class VolunteerRequest(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("donation_id", "volunteer_id", name="uq_request_donation_volunteer"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    donation_id: int = Field(foreign_key="donation.id", ondelete="CASCADE", index=True)
    organization_id: int = Field(foreign_key="user.id", ondelete="CASCADE", index=True)
    volunteer_id: int = Field(foreign_key="user.id", ondelete="CASCADE", index=True)

    status: RequestStatus = Field(default=RequestStatus.PENDING)
    message: Optional[str] = None

    created_at: datetime = _timestamp(default_factory=utcnow)
    updated_at: datetime = _timestamp(default_factory=utcnow)


class Conversation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    participant1_id: int = Field(foreign_key="user.id", ondelete="CASCADE", index=True)
    participant2_id: int = Field(foreign_key="user.id", ondelete="CASCADE", index=True)
    participant2_type: Role
    # "<lower id>:<higher id>", so (a, b) and (b, a) collide
    pair_key: str = Field(unique=True, max_length=50)

    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = _timestamp(default=None)
    created_at: datetime = _timestamp(default_factory=utcnow)

    def has_participant(self, user_id: Optional[int]) -> bool:
        return user_id in (self.participant1_id, self.participant2_id)


class Message(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: int = Field(foreign_key="conversation.id", ondelete="CASCADE", index=True)
    sender_id: int = Field(foreign_key="user.id", ondelete="CASCADE")

    text: str
    is_read: bool = False
    created_at: datetime = _timestamp(default_factory=utcnow)
