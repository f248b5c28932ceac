"""Feed definitions for every live surface of the Mini App."""

from typing import Dict, List

from oddsflow.entities import EVENT_INSERT, EVENT_UPDATE, FeedSpec

_SIGNAL_FIELDS = (
    "league_name",
    "home_name",
    "away_name",
    "clock",
    "line",
    "selection",
)

FEEDS: Dict[str, FeedSpec] = {
    spec.name: spec
    for spec in (
        # Community lounge
        FeedSpec(
            name="global_chat",
            table="global_chat_messages",
            content_fields=("content",),
            sender_fields=("sender_name",),
            sender_name_column="sender_name",
            sender_id_column=None,
            outbound_defaults={"role": "user"},
        ),
        FeedSpec(
            name="global_messages",
            table="global_messages",
            outbound_defaults={"is_bot": False},
        ),
        # Per-match persona chat; null match_id is the global room
        FeedSpec(
            name="match_chat",
            table="chat_history",
            scope_column="match_id",
            content_fields=("content",),
            sender_fields=("persona_name", "username"),
            role_fields=("persona_role", "role"),
            sender_name_column="persona_name",
            sender_id_column="user_id",
            like_rpc="increment_like_count",
        ),
        FeedSpec(
            name="war_room",
            table="war_room_messages",
            scope_column="fixture_id",
            content_fields=("content",),
            sender_fields=("sender_name",),
            role_fields=("sender_type",),
            sender_name_column="sender_name",
            sender_id_column=None,
            outbound_defaults={"sender_type": "user"},
        ),
        FeedSpec(
            name="live_chat",
            table="live_messages",
            scope_column="fixture_id",
            outbound_defaults={"is_bot": False},
        ),
        # Odds project signal tables
        FeedSpec(
            name="radar_handicap",
            table="handicap",
            scope_column="fixture_id",
            backend="odds",
            limit=20,
            events=(EVENT_INSERT, EVENT_UPDATE),
            content_fields=("signal",),
            fallback_content="System analyzing handicap movement...",
            sender_fields=("source",),
            extra_fields=_SIGNAL_FIELDS + ("home_odds", "away_odds"),
            writable=False,
        ),
        FeedSpec(
            name="radar_over_under",
            table="OverUnder",
            scope_column="fixture_id",
            backend="odds",
            limit=20,
            events=(EVENT_INSERT, EVENT_UPDATE),
            content_fields=("signal",),
            fallback_content="Analyzing goal expectancy...",
            sender_fields=("source",),
            extra_fields=_SIGNAL_FIELDS + ("over", "under"),
            writable=False,
        ),
        FeedSpec(
            name="radar_moneyline",
            table="moneyline",
            scope_column="fixture_id",
            backend="odds",
            limit=20,
            events=(EVENT_INSERT, EVENT_UPDATE),
            content_fields=("signal",),
            fallback_content="Tracking 1x2 price action...",
            sender_fields=("source",),
            extra_fields=_SIGNAL_FIELDS
            + ("moneyline_1x2_home", "moneyline_1x2_draw", "moneyline_1x2_away"),
            writable=False,
        ),
    )
}


def get_feed(name: str) -> FeedSpec:
    """Return the feed called ``name``; raises ``KeyError`` if unknown."""

    return FEEDS[name]


def feed_names() -> List[str]:
    return sorted(FEEDS)
