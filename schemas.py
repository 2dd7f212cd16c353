"""
Database Schemas for SkillSwap

Each Pydantic model corresponds to a MongoDB collection, named in the
model docstring. Nested document paths of the hosted store
(users/{id}/scheduled_sessions, swap_requests/{id}/chat_messages) are flat
collections carrying the parent id.
"""
from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, Field

SwapStatusLiteral = Literal["pending", "accepted", "declined", "completed", "cancelled"]


class SkillRef(BaseModel):
    id: str
    name: str


class UserProfile(BaseModel):
    """
    Collection: users
    A SkillSwap member with teach/learn skills, reputation and credit balance.
    """
    name: str = Field(..., description="Display name")
    email: str = Field(..., description="Unique email")
    avatar_url: Optional[str] = Field(None, description="Avatar image URL")
    bio: str = Field("", description="Free-text bio")
    credits: int = Field(0, description="Credit balance earned by teaching")
    rating: float = Field(0.0, description="Average rating, 0 when unrated")
    rating_count: int = Field(0, description="Number of ratings received")
    skills_to_teach: List[SkillRef] = Field(default_factory=list)
    skills_to_learn: List[SkillRef] = Field(default_factory=list)
    availability: List[str] = Field(default_factory=list, description="Opaque availability descriptors, e.g. 'weekday evenings'")


class Skill(BaseModel):
    """
    Collection: skills
    A skill a user offers to teach.
    """
    name: str
    description: str = ""
    category: str
    user_id: str = Field(..., description="Owning user")
    image_url: Optional[str] = None
    image_hint: Optional[str] = None


class SwapRequest(BaseModel):
    """
    Collection: swap_requests
    A request by `requester_id` to learn `skill_id` from `receiver_id`.
    """
    requester_id: str
    receiver_id: str
    skill_id: str
    status: SwapStatusLiteral = "pending"
    message: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ChatMessage(BaseModel):
    """
    Collection: chat_messages
    Append-only message inside a swap request thread.
    """
    swap_request_id: str
    sender_id: str
    text: str
    timestamp: datetime


class ScheduledSession(BaseModel):
    """
    Collection: scheduled_sessions
    Canonical record of an agreed session between the two swap participants.
    """
    title: str
    participants: List[str] = Field(..., min_length=2, max_length=2)
    start_time: datetime
    end_time: datetime
    swap_request_id: str


class UserScheduledSession(BaseModel):
    """
    Collection: user_scheduled_sessions
    Per-participant denormalized copy of a ScheduledSession.
    """
    user_id: str
    session_id: str
    title: str
    participants: List[str]
    start_time: datetime
    end_time: datetime
    swap_request_id: str


class CreditTransaction(BaseModel):
    """
    Collection: credit_transactions
    Ledger of credit adjustments.
    """
    user_id: str
    amount: int
    reason: str
