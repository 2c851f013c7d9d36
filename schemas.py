"""
Database Schemas for FitTrack

Each Pydantic model maps to a MongoDB collection:
User -> "users", Subscriber -> "subscribers", Trainer -> "trainers",
FitnessClass -> "classes", Slot -> "slots", ForumPost -> "forumPosts",
Booking -> "bookings", Review -> "reviews"
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    member = "member"
    trainer = "trainer"
    admin = "admin"


class TrainerStatus(str, Enum):
    pending = "pending"
    verified = "Verified"
    rejected = "Rejected"


class User(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: EmailStr
    name: Optional[str] = None
    image: Optional[str] = None
    role: Role = Field(Role.member, description="member|trainer|admin")
    timestamp: Optional[int] = Field(None, description="Creation time in epoch milliseconds")


class Subscriber(BaseModel):
    email: EmailStr
    name: Optional[str] = None


class Trainer(BaseModel):
    """Trainer application; bio, skills and availability are kept as sent"""
    model_config = ConfigDict(extra="allow")

    email: EmailStr
    name: Optional[str] = None
    image: Optional[str] = None
    status: TrainerStatus = TrainerStatus.pending
    feedback: Optional[str] = None


class TrainerRef(BaseModel):
    """Trainer entry inside a class' trainers list"""
    model_config = ConfigDict(extra="allow")

    id: str
    name: Optional[str] = None
    image: Optional[str] = None


class FitnessClass(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    trainers: List[TrainerRef] = Field(default_factory=list)
    totalBookings: int = Field(0, ge=0)


class Slot(BaseModel):
    model_config = ConfigDict(extra="allow")

    trainerEmail: Optional[EmailStr] = Field(None, description="Taken from the signed-in trainer")
    slotName: Optional[str] = None
    slotTime: Optional[str] = None
    days: List[str] = Field(default_factory=list)
    className: Optional[str] = None


class Votes(BaseModel):
    upvotes: int = Field(0, ge=0)
    downvotes: int = Field(0, ge=0)


class ForumPost(BaseModel):
    title: str
    content: str
    author: Optional[str] = None
    authorEmail: Optional[str] = None
    authorRole: Optional[Role] = None
    date: Optional[str] = Field(None, description="ISO-8601 publish time")
    votes: Votes = Field(default_factory=Votes)


class Booking(BaseModel):
    model_config = ConfigDict(extra="allow")

    userEmail: EmailStr
    price: float = Field(..., ge=0)
    packageName: str
    paymentId: str
    className: Optional[str] = None
    trainerId: Optional[str] = None
    slotId: Optional[str] = None
    timestamp: Optional[int] = None


class Review(BaseModel):
    model_config = ConfigDict(extra="allow")

    classId: Optional[str] = None
    userEmail: Optional[EmailStr] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    comment: Optional[str] = None
