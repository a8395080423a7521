from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from models import DonationCategory, DonationStatus, Role


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=20)
    # admins are provisioned out of band
    role: Literal["donor", "volunteer", "organization"]


class UserRead(BaseModel):
    id: int
    username: str
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: Role

    model_config = ConfigDict(from_attributes=True)


class UserSummary(BaseModel):
    id: int
    username: str
    first_name: str
    last_name: str
    role: Role

    model_config = ConfigDict(from_attributes=True)


class LoginData(BaseModel):
    email_or_username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class DonationCreate(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    category: DonationCategory
    quantity: int = Field(gt=0)
    unit: str = Field(min_length=1, max_length=20)
    expiry_date: datetime
    pickup_address: str = Field(min_length=1)
    pickup_time: Optional[datetime] = None
    image_url: Optional[str] = None


class DonationUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    category: Optional[DonationCategory] = None
    quantity: Optional[int] = Field(default=None, gt=0)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=20)
    expiry_date: Optional[datetime] = None
    pickup_address: Optional[str] = Field(default=None, min_length=1)
    pickup_time: Optional[datetime] = None
    image_url: Optional[str] = None


class StatusUpdate(BaseModel):
    status: DonationStatus


class VolunteerRequestCreate(BaseModel):
    volunteer_id: int
    message: Optional[str] = None


class VolunteerBatchCreate(BaseModel):
    volunteer_count: int = Field(ge=1)
    message: Optional[str] = None


class RequestResponse(BaseModel):
    status: Literal["accepted", "rejected"]
    message: Optional[str] = None


class ConversationCreate(BaseModel):
    participant2_id: int
    participant2_type: Literal["donor", "volunteer", "organization"]


class MessageCreate(BaseModel):
    text: str = Field(min_length=1)


def envelope(message: Optional[str] = None, data: Any = None) -> dict:
    """Body for action endpoints: {"success": true, "message": ..., "data": ...}."""
    return {"success": True, "message": message, "data": data}
