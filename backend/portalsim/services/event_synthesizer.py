"""
Learning-event synthesis.

Scenario engagement is planned first as dated ``PlannedEvent``s, placed on
the pattern's cluster dates (first view, recorded actions, declared
clustering) so activity visibly bunches around them. The pipeline then
materializes the plan month by month. Live generation uses
``synthesize_event_batch`` which draws from a weighted event mix instead.
"""

from __future__ import annotations

import random
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from portalsim.schemas.scenario import LearningEventsDefinition, PatternCategory, PatternDefinition
from portalsim.services.entities import GeneratedEvent, random_id
from portalsim.services.timeline import business_hours_timestamp, clamp_date, random_date

PRACTICE_SESSION = "practice_session"
CLUSTER_SHARE = 0.70
JITTER_DAYS = 2
PRACTICE_QUESTIONS = 10
CORRECTION_THRESHOLD = 7

EVENT_CONTEXTS = {
    "dashboard_viewed": "dashboard",
    "pattern_viewed": "insights",
    "insight_expanded": "insights",
    "insight_dismissed": "insights",
    "claim_inspected": "claims",
    "filter_applied": "claims",
    "export_claims": "claims",
    "policy_learned": "policies",
    "claim_lab_test": "claim-lab",
    "practice_started": "claim-lab",
    "practice_completed": "claim-lab",
    "correction_applied": "claim-lab",
    "action_recorded": "insights",
}

LIVE_EVENT_MIX = [
    ("dashboard_viewed", 0.15),
    ("pattern_viewed", 0.20),
    ("claim_inspected", 0.25),
    ("policy_learned", 0.10),
    ("filter_applied", 0.15),
    ("export_claims", 0.05),
    ("insight_expanded", 0.05),
    ("claim_lab_test", 0.05),
]

DEVICE_MIX = [("desktop", 0.70), ("mobile", 0.20), ("tablet", 0.10)]


@dataclass(frozen=True)
class PlannedEvent:
    event_type: str
    on_date: date
    pattern_id: str | None = None
    metadata: dict = field(default_factory=dict, hash=False, compare=False)


def _weighted(rng: random.Random, items: list[tuple[str, float]]) -> str:
    roll = rng.random() * sum(w for _, w in items)
    for value, weight in items:
        roll -= weight
        if roll < 0:
            return value
    return items[-1][0]


def make_event(
    rng: random.Random,
    event_type: str,
    occurred_at: datetime,
    *,
    scenario_id: str | None = None,
    pattern_id: str | None = None,
    claim_id: str | None = None,
    session_id: str | None = None,
    metadata: dict | None = None,
) -> GeneratedEvent:
    return GeneratedEvent(
        event_id=random_id(rng, "EVT"),
        event_type=event_type,
        occurred_at=occurred_at,
        scenario_id=scenario_id,
        pattern_id=pattern_id,
        claim_id=claim_id,
        session_id=session_id,
        context=EVENT_CONTEXTS.get(event_type, "dashboard"),
        device=_weighted(rng, DEVICE_MIX),
        metadata=dict(metadata or {}),
    )


def synthesize_practice_session(
    rng: random.Random,
    pattern_id: str,
    category: PatternCategory | None,
    started_at: datetime,
    *,
    scenario_id: str | None = None,
) -> list[GeneratedEvent]:
    """A Claim Lab practice run: start, 3-8 inspections, completion, maybe a correction."""
    session_id = random_id(rng, "SES", 8)
    duration = timedelta(minutes=rng.randint(5, 20))
    inspections = rng.randint(3, 8)

    def at(fraction: float) -> datetime:
        return started_at + duration * fraction

    events = [make_event(
        rng, "practice_started", started_at,
        scenario_id=scenario_id, pattern_id=pattern_id, session_id=session_id,
    )]
    for i in range(inspections):
        events.append(make_event(
            rng, "claim_inspected", at((i + 1) / (inspections + 1)),
            scenario_id=scenario_id, pattern_id=pattern_id, session_id=session_id,
            claim_id=random_id(rng, "CLM", 8),
            metadata={"source": "claim_lab"},
        ))

    correct = rng.randint(6, PRACTICE_QUESTIONS)
    events.append(make_event(
        rng, "practice_completed", at(1.0),
        scenario_id=scenario_id, pattern_id=pattern_id, session_id=session_id,
        metadata={
            "questions": PRACTICE_QUESTIONS,
            "correct": correct,
            "score": round(correct / PRACTICE_QUESTIONS * 100),
            "duration_minutes": int(duration.total_seconds() // 60),
        },
    ))
    if correct >= CORRECTION_THRESHOLD:
        action = "add_modifier" if category == PatternCategory.MODIFIER_MISSING else "update_workflow"
        events.append(make_event(
            rng, "correction_applied", at(1.0) + timedelta(minutes=rng.randint(1, 30)),
            scenario_id=scenario_id, pattern_id=pattern_id, session_id=session_id,
            metadata={"action": action},
        ))
    return events


def cluster_dates_for(pattern: PatternDefinition, learning_events: LearningEventsDefinition) -> list[date]:
    """Dates engagement for *pattern* concentrates around, sorted and de-duplicated."""
    dates: set[date] = set(learning_events.event_clustering.get(pattern.id, []))
    if pattern.engagement.first_viewed_date:
        dates.add(pattern.engagement.first_viewed_date)
    dates.update(a.on_date for a in pattern.engagement.actions_recorded)
    return sorted(dates)


def _near(rng: random.Random, anchor: date, start: date, end: date, jitter_days: int) -> date:
    shifted = anchor + timedelta(days=rng.randint(-jitter_days, jitter_days))
    return clamp_date(shifted, start, end)


def plan_pattern_events(
    rng: random.Random,
    pattern: PatternDefinition,
    cluster_dates: list[date],
    *,
    start: date,
    end: date,
    jitter_days: int = JITTER_DAYS,
) -> list[PlannedEvent]:
    """Plan the engagement profile of one pattern onto its cluster dates."""
    engagement = pattern.engagement
    anchors = cluster_dates or [engagement.first_viewed_date or start]
    planned: list[PlannedEvent] = []

    for i in range(engagement.total_views):
        if i == 0 and engagement.first_viewed_date:
            day = clamp_date(engagement.first_viewed_date, start, end)
        else:
            day = _near(rng, rng.choice(anchors), start, end, jitter_days)
        planned.append(PlannedEvent("pattern_viewed", day, pattern.id))

    for _ in range(engagement.claim_lab_tests):
        day = _near(rng, rng.choice(anchors), start, end, jitter_days)
        planned.append(PlannedEvent(PRACTICE_SESSION, day, pattern.id))

    for _ in range(engagement.claims_exported):
        day = _near(rng, rng.choice(anchors), start, end, jitter_days)
        planned.append(PlannedEvent("export_claims", day, pattern.id))

    for action in engagement.actions_recorded:
        planned.append(PlannedEvent(
            "action_recorded",
            clamp_date(action.on_date, start, end),
            pattern.id,
            {"action_id": action.id, "action_type": action.type, "notes": action.notes},
        ))
    return planned


def plan_distribution_events(
    rng: random.Random,
    learning_events: LearningEventsDefinition,
    *,
    start: date,
    end: date,
    jitter_days: int = JITTER_DAYS,
    cluster_share: float = CLUSTER_SHARE,
) -> list[PlannedEvent]:
    """Plan scenario-level event counts: most near cluster dates, the rest anywhere."""
    clusters = [(pid, dates) for pid, dates in learning_events.event_clustering.items() if dates]
    planned: list[PlannedEvent] = []
    for event_type, count in learning_events.event_distribution.items():
        for _ in range(count):
            if clusters and rng.random() < cluster_share:
                pattern_id, dates = rng.choice(clusters)
                day = _near(rng, rng.choice(dates), start, end, jitter_days)
                planned.append(PlannedEvent(event_type, day, pattern_id))
            else:
                planned.append(PlannedEvent(event_type, random_date(rng, start, end)))
    return planned


def synthesize_planned(
    rng: random.Random,
    planned: list[PlannedEvent],
    *,
    scenario_id: str | None = None,
    categories: dict[str, PatternCategory] | None = None,
) -> list[GeneratedEvent]:
    """Turn planned events into entities; practice sessions expand to several events."""
    categories = categories or {}
    events: list[GeneratedEvent] = []
    for item in planned:
        occurred_at = business_hours_timestamp(rng, item.on_date)
        if item.event_type == PRACTICE_SESSION:
            events.extend(synthesize_practice_session(
                rng, item.pattern_id, categories.get(item.pattern_id), occurred_at,
                scenario_id=scenario_id,
            ))
            continue
        claim_id = random_id(rng, "CLM", 8) if item.event_type == "claim_inspected" else None
        events.append(make_event(
            rng, item.event_type, occurred_at,
            scenario_id=scenario_id, pattern_id=item.pattern_id,
            claim_id=claim_id, metadata=item.metadata,
        ))
    return events


def synthesize_event_batch(
    rng: random.Random,
    count: int,
    *,
    now: datetime,
    pattern_ids: list[str] | None = None,
    scenario_id: str | None = None,
    window_minutes: int = 60,
) -> list[GeneratedEvent]:
    """Live drip of *count* events from the weighted mix over the last hour."""
    events: list[GeneratedEvent] = []
    for _ in range(count):
        event_type = _weighted(rng, LIVE_EVENT_MIX)
        occurred_at = now - timedelta(minutes=rng.randint(0, window_minutes))
        pattern_id = rng.choice(pattern_ids) if pattern_ids and event_type in (
            "pattern_viewed", "insight_expanded", "claim_lab_test",
        ) else None
        claim_id = random_id(rng, "CLM", 8) if event_type == "claim_inspected" else None
        events.append(make_event(
            rng, event_type, occurred_at,
            scenario_id=scenario_id, pattern_id=pattern_id, claim_id=claim_id,
        ))
    return events


def engagement_metrics(events: list[GeneratedEvent]) -> dict:
    by_type = Counter(e.event_type for e in events)
    scores = [
        e.metadata["score"] for e in events
        if e.event_type == "practice_completed" and "score" in e.metadata
    ]
    return {
        "total_events": len(events),
        "events_by_type": dict(by_type),
        "events_by_device": dict(Counter(e.device for e in events)),
        "practice_sessions": by_type.get("practice_started", 0),
        "average_practice_score": round(sum(scores) / len(scores), 1) if scores else 0.0,
        "corrections_applied": by_type.get("correction_applied", 0),
        "unique_patterns": len({e.pattern_id for e in events if e.pattern_id}),
    }
