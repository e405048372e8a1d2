"""
groupify/features/analytics/models.py
Read models consumed by the analytics engine and the ephemeral views it derives.
"""

from pydantic import BaseModel, Field, ConfigDict, AfterValidator
from datetime import datetime, timezone
from typing import Annotated, Optional, List, Dict
from enum import Enum


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDateTime = Annotated[datetime, AfterValidator(_as_utc)]


class TimeRange(str, Enum):
    """Window selector shared by the activity, vibe and reflex views"""
    LAST_24H = "24h"
    LAST_7D = "7d"
    LAST_30D = "30d"
    LAST_90D = "90d"
    ALL = "all"


class ActivityMode(str, Enum):
    """shares counts shares only; engagement adds likes and listens"""
    SHARES = "shares"
    ENGAGEMENT = "engagement"


class ReflexMode(str, Enum):
    """received: how fast others listen to my shares. shared: how fast I listen."""
    RECEIVED = "received"
    SHARED = "shared"


class ReflexCategory(str, Enum):
    """Speed band of a member's median reaction time"""
    INSTANT = "instant"
    QUICK = "quick"
    SLOW = "slow"
    LONG_TAIL = "longTail"


# ---- Input read models (owned by the persistence collaborator) ----


class ShareLike(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    liked_at: UtcDateTime


class ShareListener(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    listened_at: UtcDateTime
    time_to_listen_ms: Optional[int] = Field(default=None, description="listened_at - share.created_at in ms")


class ShareEvent(BaseModel):
    """One track shared into one group.

    like_count / listen_count are denormalized caches of len(likes) / len(listeners)
    maintained by the writer; per-user breakdowns always read the lists.
    """

    model_config = ConfigDict(frozen=True)

    share_id: str
    group_id: str
    shared_by_user_id: str
    created_at: UtcDateTime
    artist_name: str
    track_name: str = ""
    spotify_track_id: str = ""
    like_count: int = Field(default=0, ge=0)
    likes: List[ShareLike] = Field(default_factory=list)
    listen_count: int = Field(default=0, ge=0)
    listeners: List[ShareListener] = Field(default_factory=list)


class GroupRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    group_id: str
    name: str
    member_ids: List[str] = Field(default_factory=list, description="Membership order")


class UserProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: str
    profile_image: Optional[str] = None


class GroupMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: str
    profile_image: Optional[str] = None


# ---- Derived views (recomputed per request, never persisted) ----


class ActivityBucket(BaseModel):
    """One point of the activity waveform"""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(description="Bucket start, epoch-aligned UTC")
    share_count: int = Field(ge=0)
    activity_score: int = Field(ge=0, description="shares, or shares + likes + listens in engagement mode")


class VibeScores(BaseModel):
    model_config = ConfigDict(frozen=True)

    activity: int = Field(ge=0, le=100)
    popularity: int = Field(ge=0, le=100)
    support: int = Field(ge=0, le=100)
    variety: int = Field(ge=0, le=100)
    freshness: int = Field(ge=0, le=100)


class VibeRaw(BaseModel):
    model_config = ConfigDict(frozen=True)

    shares: int = Field(ge=0)
    likes_given: int = Field(ge=0)
    avg_likes_received: float = Field(ge=0, description="Rounded to one decimal")


class MemberVibeProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: str
    profile_image: Optional[str] = None
    scores: VibeScores
    raw: VibeRaw


class Superlative(BaseModel):
    """Winner of one hall-of-fame rule"""

    model_config = ConfigDict(frozen=True)

    rule_key: str
    winner_user_id: str
    winner: UserProfile
    value: int = Field(ge=0)
    label: str
    description: str
    icon: str


class ReflexPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    share_id: str
    user_id: str = Field(description="The listener")
    ms: int = Field(ge=0, description="Time from share to listen")
    listened_at: datetime


class ListenerReflexMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: str
    profile_image: Optional[str] = None
    listens: int = Field(ge=0)
    median_ms: Optional[float] = Field(default=None, ge=0)
    average_ms: Optional[float] = Field(default=None, ge=0)
    fastest_ms: Optional[int] = Field(default=None, ge=0)
    category: Optional[ReflexCategory] = Field(default=None, description="None when the member has no listens")
    points: List[ReflexPoint] = Field(default_factory=list, description="Sorted by listened_at")


class ListenerReflexReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    range: TimeRange
    mode: ReflexMode
    members: List[ListenerReflexMember]
    group_median_ms: Optional[float] = Field(default=None, ge=0)
    group_average_listens: float = Field(ge=0)
    total_listens: int = Field(ge=0)
    instant_reactor_count: int = Field(default=0, ge=0)


class GroupAnalytics(BaseModel):
    """Combined dashboard payload: activity + vibes + superlatives from one request"""

    model_config = ConfigDict(frozen=True)

    group_id: str
    activity: List[ActivityBucket]
    vibes: List[MemberVibeProfile]
    superlatives: Dict[str, Superlative]


class MemberStats(BaseModel):
    """One planet of the member engagement view"""

    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: str
    profile_image: Optional[str] = None
    share_count: int = Field(ge=0)
    likes_received: int = Field(ge=0)
    last_shared_at: Optional[datetime] = None
    planet_size: int = Field(ge=0, description="share_count + likes_received")
    orbit_distance: float = Field(description="Days since the last share; -1 when the member never shared")
