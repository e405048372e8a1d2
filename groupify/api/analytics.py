"""
groupify/api/analytics.py

Group analytics endpoints.
Store snapshot -> reducers -> read models -> {"success": true, "data": ...}.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query

from groupify.core.errors import ValidationError
from groupify.features.analytics.service import AnalyticsService

router = APIRouter()


def _parse_now(now: Optional[str]) -> Optional[datetime]:
    """Optional fixed timestamp for deterministic results (testing only)."""
    if not now:
        return None
    try:
        parsed = datetime.fromisoformat(now.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid now '{now}'. Expected an ISO-8601 timestamp")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_service() -> AnalyticsService:
    return AnalyticsService()


@router.get("/{group_id}/activity", response_model=Dict[str, Any])
async def get_group_activity(
    group_id: str,
    timeRange: Optional[str] = Query("7d", description="24h | 7d | 30d | 90d | all; anything else means 7d"),
    mode: Optional[str] = Query("shares", description="shares | engagement"),
    now: Optional[str] = Query(None, description="ISO timestamp for deterministic results (testing only)"),
) -> Dict[str, Any]:
    """
    Activity waveform for a group.

    One bucket per hour (24h) or per day (other ranges), zero-filled,
    ascending. engagement mode adds likes and listens to the share count.
    """
    series = await get_service().get_group_activity(group_id, timeRange, mode, now=_parse_now(now))
    return {
        "success": True,
        "data": [bucket.model_dump(mode="json") for bucket in series],
    }


@router.get("/{group_id}/vibes", response_model=Dict[str, Any])
async def get_member_vibes(
    group_id: str,
    timeRange: Optional[str] = Query("all", description="24h | 7d | 30d | 90d | all"),
    now: Optional[str] = Query(None, description="ISO timestamp for deterministic results (testing only)"),
) -> Dict[str, Any]:
    """Per-member 0-100 scores: activity, popularity, support, variety, freshness."""
    vibes = await get_service().get_member_vibes(group_id, timeRange, now=_parse_now(now))
    return {
        "success": True,
        "data": [profile.model_dump(mode="json") for profile in vibes],
    }


@router.get("/{group_id}/superlatives", response_model=Dict[str, Any])
async def get_superlatives(group_id: str) -> Dict[str, Any]:
    superlatives = await get_service().get_superlatives(group_id)
    return {
        "success": True,
        "data": {key: s.model_dump(mode="json") for key, s in superlatives.items()},
    }


@router.get("/{group_id}/listener-reflex", response_model=Dict[str, Any])
async def get_listener_reflex(
    group_id: str,
    range: Optional[str] = Query("30d", description="24h | 7d | 30d | 90d"),
    mode: Optional[str] = Query("received", description="received | shared"),
    now: Optional[str] = Query(None, description="ISO timestamp for deterministic results (testing only)"),
) -> Dict[str, Any]:
    """
    Reaction-time profile per member.

    received: how fast the group listens to each member's shares.
    shared: how fast each member listens to the group's shares.
    """
    report = await get_service().get_listener_reflex(group_id, range, mode, now=_parse_now(now))
    return {
        "success": True,
        "data": report.model_dump(mode="json"),
    }


@router.get("/{group_id}/members", response_model=Dict[str, Any])
async def get_member_stats(
    group_id: str,
    now: Optional[str] = Query(None, description="ISO timestamp for deterministic results (testing only)"),
) -> Dict[str, Any]:
    """Member engagement: planet size from shares and likes received, orbit from recency (-1 = never shared)."""
    stats = await get_service().get_member_stats(group_id, now=_parse_now(now))
    return {
        "success": True,
        "data": [s.model_dump(mode="json") for s in stats],
    }


@router.get("/{group_id}/dashboard", response_model=Dict[str, Any])
async def get_group_dashboard(
    group_id: str,
    timeRange: Optional[str] = Query("7d", description="Activity window: 24h | 7d | 30d | 90d | all"),
    mode: Optional[str] = Query("shares", description="shares | engagement"),
    now: Optional[str] = Query(None, description="ISO timestamp for deterministic results (testing only)"),
) -> Dict[str, Any]:
    """Activity, vibes and superlatives together; fails as a whole if any part fails."""
    analytics = await get_service().get_group_analytics(group_id, timeRange, mode, now=_parse_now(now))
    return {
        "success": True,
        "data": analytics.model_dump(mode="json"),
    }
