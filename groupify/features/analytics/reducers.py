"""
groupify/features/analytics/reducers.py

Pure deterministic reducers for group analytics.
All reducers: (share snapshot, members, now) -> immutable read model.
Same inputs + same now => identical output.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from statistics import mean, median
from typing import Callable, Dict, List, Optional

from groupify.features.analytics.models import (
    ActivityBucket,
    ActivityMode,
    GroupMember,
    ListenerReflexMember,
    ListenerReflexReport,
    MemberStats,
    MemberVibeProfile,
    ReflexCategory,
    ReflexMode,
    ReflexPoint,
    ShareEvent,
    TimeRange,
    VibeRaw,
    VibeScores,
)
from groupify.features.analytics.pipeline import (
    AddToSet,
    Count,
    GroupRow,
    Max,
    Sum,
    first,
    group_by,
    match,
    sort_rows,
    unwind,
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
HOUR_MS = 3600 * 1000
DAY_MS = 24 * HOUR_MS

DEFAULT_ALL_RANGE_MAX_DAYS = 365
DEFAULT_FRESHNESS_DECAY_PER_DAY = 5.0

_RANGE_DELTAS: Dict[TimeRange, timedelta] = {
    TimeRange.LAST_24H: timedelta(hours=24),
    TimeRange.LAST_7D: timedelta(days=7),
    TimeRange.LAST_30D: timedelta(days=30),
    TimeRange.LAST_90D: timedelta(days=90),
}


# ---- time helpers ----


def now_or_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def to_epoch_ms(ts: datetime) -> int:
    """Exact integer milliseconds since the epoch (no float rounding)."""
    return (now_or_utc(ts) - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=ms)


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; scores round .5 upwards
    return int(math.floor(value + 0.5))


def bucket_width_ms(time_range: TimeRange) -> int:
    return HOUR_MS if time_range == TimeRange.LAST_24H else DAY_MS


def range_filter_start(time_range: TimeRange, now: datetime) -> Optional[datetime]:
    """Lower bound for a filtered view; None means the whole history."""
    if time_range == TimeRange.ALL:
        return None
    return now - _RANGE_DELTAS[time_range]


def resolve_activity_start(
    time_range: TimeRange,
    now: datetime,
    earliest_share_at: Optional[datetime] = None,
    max_days: int = DEFAULT_ALL_RANGE_MAX_DAYS,
) -> datetime:
    """
    Start of the activity window.

    'all' starts at the group's earliest share (epoch zero when it has none)
    but never reaches further back than max_days.
    """
    if time_range != TimeRange.ALL:
        return now - _RANGE_DELTAS[time_range]

    start = now_or_utc(earliest_share_at) if earliest_share_at else EPOCH
    if now - start > timedelta(days=max_days):
        start = now - timedelta(days=max_days)
    return start


# ---- activity series ----


def reduce_activity_series(
    shares: List[ShareEvent],
    *,
    start: datetime,
    time_range: TimeRange = TimeRange.LAST_7D,
    mode: ActivityMode = ActivityMode.SHARES,
    now: Optional[datetime] = None,
) -> List[ActivityBucket]:
    """
    Bucket shares into fixed-width epoch-aligned windows and backfill gaps.

    Returns one bucket per boundary from floor(start) to floor(now) inclusive,
    ascending, whether or not any share landed in it.
    """
    now = now_or_utc(now)
    width = bucket_width_ms(time_range)
    start_ms = to_epoch_ms(start)

    in_window = match(shares, lambda s: to_epoch_ms(s.created_at) >= start_ms)
    rows = group_by(
        in_window,
        key=lambda s: to_epoch_ms(s.created_at) - to_epoch_ms(s.created_at) % width,
        accumulators={
            "shares": Count(),
            "likes": Sum(lambda s: s.like_count),
            "listens": Sum(lambda s: s.listen_count),
        },
    )
    by_bucket: Dict[int, GroupRow] = {row.key: row for row in rows}

    aligned_start = start_ms - start_ms % width
    now_ms = to_epoch_ms(now)
    aligned_end = now_ms - now_ms % width

    series: List[ActivityBucket] = []
    for t in range(aligned_start, aligned_end + 1, width):
        row = by_bucket.get(t)
        if row is None:
            series.append(ActivityBucket(timestamp=from_epoch_ms(t), share_count=0, activity_score=0))
            continue
        if mode == ActivityMode.ENGAGEMENT:
            score = row["shares"] + row["likes"] + row["listens"]
        else:
            score = row["shares"]
        series.append(ActivityBucket(timestamp=from_epoch_ms(t), share_count=row["shares"], activity_score=score))

    return series


# ---- member vibes ----


def _scale(value: float, maximum: float) -> int:
    if maximum <= 0:
        return 0
    return round_half_up(value / maximum * 100)


def reduce_member_vibes(
    members: List[GroupMember],
    shares: List[ShareEvent],
    now: Optional[datetime] = None,
    freshness_decay_per_day: float = DEFAULT_FRESHNESS_DECAY_PER_DAY,
) -> List[MemberVibeProfile]:
    """
    Score every member 0-100 on activity, popularity, support, variety, freshness.

    The first four axes are linear against the maximum among current members.
    Freshness decays from 100 by freshness_decay_per_day per idle day.
    Sorted by activity descending; ties keep membership order.
    """
    now = now_or_utc(now)

    share_rows = group_by(
        shares,
        key=lambda s: s.shared_by_user_id,
        accumulators={
            "share_count": Count(),
            "total_likes_received": Sum(lambda s: s.like_count),
            "unique_artists": AddToSet(lambda s: s.artist_name),
            "last_shared_at": Max(lambda s: s.created_at),
        },
    )
    like_rows = group_by(
        unwind(shares, lambda s: s.likes),
        key=lambda pair: pair[1].user_id,
        accumulators={"likes_given": Count()},
    )

    share_stats: Dict[str, Dict[str, object]] = {}
    for row in share_rows:
        share_stats[row.key] = {
            "share_count": row["share_count"],
            "avg_likes_received": row["total_likes_received"] / row["share_count"],
            "variety": len(row["unique_artists"]),
            "last_shared_at": row["last_shared_at"],
        }
    support: Dict[str, int] = {row.key: row["likes_given"] for row in like_rows}

    # former members may still own shares and likes; they never set the scale
    member_ids = {m.user_id for m in members}
    share_stats = {uid: s for uid, s in share_stats.items() if uid in member_ids}
    support = {uid: n for uid, n in support.items() if uid in member_ids}

    max_activity = max((s["share_count"] for s in share_stats.values()), default=0)
    max_popularity = max((s["avg_likes_received"] for s in share_stats.values()), default=0)
    max_variety = max((s["variety"] for s in share_stats.values()), default=0)
    max_support = max(support.values(), default=0)

    empty = {"share_count": 0, "avg_likes_received": 0.0, "variety": 0, "last_shared_at": None}
    profiles: List[MemberVibeProfile] = []
    for member in members:
        stats = share_stats.get(member.user_id, empty)
        likes_given = support.get(member.user_id, 0)

        freshness = 0
        if stats["last_shared_at"] is not None:
            idle_days = (now - stats["last_shared_at"]).total_seconds() / 86400
            freshness = min(100, max(0, round_half_up(100 - idle_days * freshness_decay_per_day)))

        profiles.append(MemberVibeProfile(
            user_id=member.user_id,
            display_name=member.display_name,
            profile_image=member.profile_image,
            scores=VibeScores(
                activity=_scale(stats["share_count"], max_activity),
                popularity=_scale(stats["avg_likes_received"], max_popularity),
                support=_scale(likes_given, max_support),
                variety=_scale(stats["variety"], max_variety),
                freshness=freshness,
            ),
            raw=VibeRaw(
                shares=stats["share_count"],
                likes_given=likes_given,
                avg_likes_received=round_half_up(stats["avg_likes_received"] * 10) / 10,
            ),
        ))

    # sorted() is stable: equal activity keeps membership order
    return sorted(profiles, key=lambda p: p.scores.activity, reverse=True)


# ---- superlatives ----


@dataclass(frozen=True)
class SuperlativeRule:
    """One winner-take-all award: rank() groups the snapshot into (user, value) rows."""

    key: str
    label: str
    description: str
    icon: str
    rank: Callable[[List[ShareEvent]], List[GroupRow]]


def _likes_given(shares: List[ShareEvent]) -> List[GroupRow]:
    return group_by(unwind(shares, lambda s: s.likes), key=lambda pair: pair[1].user_id, accumulators={"value": Count()})


def _likes_received(shares: List[ShareEvent]) -> List[GroupRow]:
    return group_by(shares, key=lambda s: s.shared_by_user_id, accumulators={"value": Sum(lambda s: s.like_count)})


def _tracks_shared(shares: List[ShareEvent]) -> List[GroupRow]:
    return group_by(shares, key=lambda s: s.shared_by_user_id, accumulators={"value": Count()})


def _tracks_listened(shares: List[ShareEvent]) -> List[GroupRow]:
    return group_by(unwind(shares, lambda s: s.listeners), key=lambda pair: pair[1].user_id, accumulators={"value": Count()})


SUPERLATIVE_RULES = (
    SuperlativeRule("hypeMan", "The Hype Man", "Most likes given", "❤️", _likes_given),
    SuperlativeRule("trendsetter", "The Trendsetter", "Most likes received", "✨", _likes_received),
    SuperlativeRule("dj", "The DJ", "Most tracks shared", "\U0001f3a7", _tracks_shared),
    SuperlativeRule("diehard", "The Diehard", "Most tracks listened", "\U0001f442", _tracks_listened),
)


def reduce_superlative(rule: SuperlativeRule, shares: List[ShareEvent]) -> Optional[GroupRow]:
    """
    Winning row for one rule, or None when nothing qualifies.

    Rows with value 0 do not qualify. Ties: highest value, then lowest user id.
    """
    rows = match(rule.rank(shares), lambda row: row["value"] > 0)
    return first(sort_rows(rows, key=lambda row: (-row["value"], row.key)))


# ---- listener reflex ----


# upper bounds (exclusive) on the median reaction time
_REFLEX_BANDS = (
    (60 * 1000, ReflexCategory.INSTANT),
    (HOUR_MS, ReflexCategory.QUICK),
    (12 * HOUR_MS, ReflexCategory.SLOW),
)


def reflex_category(median_ms: Optional[float]) -> Optional[ReflexCategory]:
    if median_ms is None:
        return None
    for bound, category in _REFLEX_BANDS:
        if median_ms < bound:
            return category
    return ReflexCategory.LONG_TAIL


def _reaction_ms(share: ShareEvent, listener) -> int:
    if listener.time_to_listen_ms is not None:
        return max(0, listener.time_to_listen_ms)
    return max(0, to_epoch_ms(listener.listened_at) - to_epoch_ms(share.created_at))


def reduce_listener_reflex(
    members: List[GroupMember],
    shares: List[ShareEvent],
    *,
    time_range: TimeRange = TimeRange.LAST_30D,
    mode: ReflexMode = ReflexMode.RECEIVED,
    now: Optional[datetime] = None,
) -> ListenerReflexReport:
    """
    Reaction-time profile per member.

    received: listens on the member's shares, i.e. how fast the group reacts to them.
    shared: the member's own listens, i.e. how fast they react to the group.
    Self-listens are ignored. Members with no listens report null statistics.
    """
    now = now_or_utc(now)
    start = range_filter_start(time_range, now)

    listens = match(
        unwind(shares, lambda s: s.listeners),
        lambda pair: pair[1].user_id != pair[0].shared_by_user_id
        and (start is None or pair[1].listened_at >= start),
    )

    points_by_member: Dict[str, List[ReflexPoint]] = {}
    for share, listener in listens:
        owner = share.shared_by_user_id if mode == ReflexMode.RECEIVED else listener.user_id
        points_by_member.setdefault(owner, []).append(ReflexPoint(
            share_id=share.share_id,
            user_id=listener.user_id,
            ms=_reaction_ms(share, listener),
            listened_at=listener.listened_at,
        ))

    order = {member.user_id: idx for idx, member in enumerate(members)}
    reported: List[ListenerReflexMember] = []
    all_ms: List[int] = []
    for member in members:
        points = sorted(points_by_member.get(member.user_id, []), key=lambda p: (p.listened_at, p.share_id))
        values = [p.ms for p in points]
        all_ms.extend(values)
        median_ms = float(median(values)) if values else None
        reported.append(ListenerReflexMember(
            user_id=member.user_id,
            display_name=member.display_name,
            profile_image=member.profile_image,
            listens=len(points),
            median_ms=median_ms,
            average_ms=float(mean(values)) if values else None,
            fastest_ms=min(values) if values else None,
            category=reflex_category(median_ms),
            points=points,
        ))

    active = [m for m in reported if m.listens > 0]
    reported.sort(key=lambda m: (m.median_ms is None, m.median_ms or 0.0, order[m.user_id]))

    return ListenerReflexReport(
        range=time_range,
        mode=mode,
        members=reported,
        group_median_ms=float(median(all_ms)) if all_ms else None,
        group_average_listens=(sum(m.listens for m in active) / len(active)) if active else 0.0,
        total_listens=len(all_ms),
        instant_reactor_count=sum(1 for m in reported if m.category == ReflexCategory.INSTANT),
    )


# ---- member engagement ----


def reduce_member_stats(
    members: List[GroupMember],
    shares: List[ShareEvent],
    now: Optional[datetime] = None,
) -> List[MemberStats]:
    """
    Engagement per member: planet size grows with shares and likes received,
    orbit distance with days since the last share.

    Every member is listed. Members who never shared orbit at -1 and come
    last; the rest are ordered nearest first, ties in membership order.
    """
    now = now_or_utc(now)
    rows = group_by(
        shares,
        key=lambda s: s.shared_by_user_id,
        accumulators={
            "share_count": Count(),
            "likes_received": Sum(lambda s: s.like_count),
            "last_shared_at": Max(lambda s: s.created_at),
        },
    )
    by_user: Dict[str, GroupRow] = {row.key: row for row in rows}

    stats: List[MemberStats] = []
    for member in members:
        row = by_user.get(member.user_id)
        if row is None:
            stats.append(MemberStats(
                user_id=member.user_id,
                display_name=member.display_name,
                profile_image=member.profile_image,
                share_count=0,
                likes_received=0,
                planet_size=0,
                orbit_distance=-1,
            ))
            continue
        idle_days = max(0.0, (now - row["last_shared_at"]).total_seconds() / 86400)
        stats.append(MemberStats(
            user_id=member.user_id,
            display_name=member.display_name,
            profile_image=member.profile_image,
            share_count=row["share_count"],
            likes_received=row["likes_received"],
            last_shared_at=row["last_shared_at"],
            planet_size=row["share_count"] + row["likes_received"],
            orbit_distance=round_half_up(idle_days * 10) / 10,
        ))

    return sorted(stats, key=lambda s: (s.orbit_distance < 0, s.orbit_distance))
