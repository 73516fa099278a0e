"""
Suggestion Ranking Service

Proposes appointment slots for a provider, scored against:
- Provider working hours (candidate generation)
- Patient preferred hours and weekdays
- Urgency (how far ahead to look, how much soonness matters)
- Existing bookings (conflicts lower confidence)
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from medflow_scheduler.config import Settings, settings as default_settings
from medflow_scheduler.models.schemas import (
    AppointmentSuggestion,
    Booking,
    Priority,
    SuggestionPreferences,
    SuggestionScores,
    WorkingHoursTemplate,
)
from medflow_scheduler.scheduling.availability import (
    candidate_slots,
    is_fully_covered,
    template_from_settings,
)
from medflow_scheduler.scheduling.conflicts import ConflictReport, check_conflicts

logger = logging.getLogger(__name__)

SUGGESTION_FILTERS = ("all", "today", "week", "urgent")


class SuggestionRanker:
    """
    Generates ranked slot suggestions.

    Scoring weights, horizons and durations come from Settings so the
    policy can be tuned without code changes.
    """

    def __init__(self, config: Optional[Settings] = None):
        self.settings = config or default_settings

    def horizon_end(self, preferences: SuggestionPreferences, now: datetime) -> datetime:
        """Latest instant (exclusive) a suggested slot may start at."""
        end = now + self.settings.horizon_for(preferences.urgency)
        if preferences.max_wait_days is not None:
            end = min(end, now + timedelta(days=preferences.max_wait_days))
        return end

    def suggest(
        self,
        provider_id: str,
        bookings: Iterable[Booking],
        preferences: Optional[SuggestionPreferences] = None,
        now: Optional[datetime] = None,
        template: Optional[WorkingHoursTemplate] = None,
        limit: Optional[int] = None,
    ) -> List[AppointmentSuggestion]:
        """
        Produce ranked suggestions for one provider.

        Args:
            provider_id: provider to schedule with
            bookings: known bookings; other providers' bookings are ignored
            preferences: patient preferences and urgency
            now: reference instant (defaults to the current local time)
            template: provider working hours (defaults to settings)
            limit: maximum suggestions returned (defaults to settings)

        Returns:
            list[AppointmentSuggestion]: confidence descending, then start
            ascending; empty when nothing is bookable within the horizon
        """
        preferences = preferences or SuggestionPreferences()
        now = now or datetime.now()
        template = template or template_from_settings(self.settings)
        limit = limit if limit is not None else self.settings.max_suggestions

        urgency = preferences.urgency
        duration = self.settings.duration_for(urgency)
        window_end = self.horizon_end(preferences, now)

        provider_bookings = [
            booking for booking in bookings if booking.provider_id == provider_id
        ]

        suggestions = []
        for slot_start in candidate_slots(template, now, window_end, duration):
            slot_end = slot_start + timedelta(minutes=duration)

            if is_fully_covered(slot_start, slot_end, provider_bookings):
                continue

            report = check_conflicts(slot_start, slot_end, provider_bookings)
            suggestions.append(
                self._score(
                    provider_id, slot_start, duration, urgency, preferences,
                    now, window_end, report,
                )
            )

        suggestions.sort(key=lambda s: (-s.confidence, s.start))

        logger.info(
            f"Generated {len(suggestions)} suggestions for provider {provider_id} "
            f"({urgency.value}, until {window_end:%Y-%m-%d %H:%M})"
        )

        if limit is not None:
            suggestions = suggestions[:limit]
        return suggestions

    def preference_score(self, slot_start: datetime, preferences: SuggestionPreferences) -> float:
        """
        Score how well a slot matches preferred hours and weekdays.

        Hour fit falls off linearly with the distance to the nearest
        preferred hour and reaches zero at ``preferred_hour_tolerance``.
        Weekday fit is all or nothing. Without any preference the score is
        neutral (1.0).
        """
        components = []

        if preferences.preferred_hours:
            distance = min(abs(slot_start.hour - hour) for hour in preferences.preferred_hours)
            tolerance = self.settings.preferred_hour_tolerance
            components.append(max(0.0, 1.0 - distance / tolerance))

        if preferences.preferred_weekdays:
            components.append(1.0 if slot_start.weekday() in preferences.preferred_weekdays else 0.0)

        if not components:
            return 1.0
        return sum(components) / len(components)

    @staticmethod
    def urgency_score(slot_start: datetime, now: datetime, window_end: datetime) -> float:
        """1.0 for a slot right now, decaying to 0.0 at the end of the horizon."""
        horizon = (window_end - now).total_seconds()
        if horizon <= 0:
            return 0.0
        elapsed = (slot_start - now).total_seconds()
        return min(1.0, max(0.0, 1.0 - elapsed / horizon))

    def _score(
        self,
        provider_id: str,
        slot_start: datetime,
        duration: int,
        urgency: Priority,
        preferences: SuggestionPreferences,
        now: datetime,
        window_end: datetime,
        report: ConflictReport,
    ) -> AppointmentSuggestion:
        preference = self.preference_score(slot_start, preferences)
        soonness = self.urgency_score(slot_start, now, window_end)
        penalty = self.settings.conflict_penalty if report.has_conflict else 0.0

        weight = self.settings.preference_weight_for(urgency)
        confidence = weight * preference + (1.0 - weight) * soonness - penalty
        confidence = round(min(1.0, max(0.0, confidence)), 4)

        return AppointmentSuggestion(
            start=slot_start,
            duration_minutes=duration,
            priority=urgency,
            confidence=confidence,
            conflicts=report.descriptions,
            conflicting_booking_ids=report.booking_ids,
            reasoning=self._reasoning(slot_start, preferences, now, report),
            provider_id=provider_id,
            scores=SuggestionScores(
                preference=round(preference, 4),
                urgency=round(soonness, 4),
                conflict_penalty=penalty,
            ),
        )

    @staticmethod
    def _reasoning(
        slot_start: datetime,
        preferences: SuggestionPreferences,
        now: datetime,
        report: ConflictReport,
    ) -> str:
        reasons = []

        if preferences.preferred_hours:
            if slot_start.hour in preferences.preferred_hours:
                reasons.append("within preferred hours")
            else:
                reasons.append("outside preferred hours")

        if preferences.preferred_weekdays:
            day_name = slot_start.strftime("%A")
            if slot_start.weekday() in preferences.preferred_weekdays:
                reasons.append(f"{day_name} is a preferred day")
            else:
                reasons.append(f"{day_name} is not a preferred day")

        days_ahead = (slot_start.date() - now.date()).days
        if days_ahead == 0:
            reasons.append("available today")
        elif days_ahead == 1:
            reasons.append("available tomorrow")
        else:
            reasons.append(f"available in {days_ahead} days")

        if preferences.urgency in (Priority.URGENT, Priority.HIGH):
            reasons.append(f"{preferences.urgency.value} request favours the earliest slots")

        if report.has_conflict:
            count = len(report.booking_ids)
            reasons.append(f"overlaps {count} existing booking{'s' if count != 1 else ''}")

        text = "; ".join(reasons)
        return text[:1].upper() + text[1:]


def filter_suggestions(
    suggestions: Iterable[AppointmentSuggestion],
    filter_by: str = "all",
    now: Optional[datetime] = None,
) -> List[AppointmentSuggestion]:
    """
    Narrow a suggestion list for display.

    Args:
        suggestions: ranked suggestions
        filter_by: "all", "today", "week" (next 7 days) or "urgent"
        now: reference instant

    Returns:
        list: matching suggestions, order preserved

    Raises:
        ValueError: If the filter name is unknown
    """
    if filter_by not in SUGGESTION_FILTERS:
        raise ValueError(f"Unknown suggestion filter: {filter_by}")

    now = now or datetime.now()
    week_from_now = now + timedelta(days=7)

    def matches(suggestion: AppointmentSuggestion) -> bool:
        if filter_by == "today":
            return suggestion.start.date() == now.date()
        if filter_by == "week":
            return suggestion.start <= week_from_now
        if filter_by == "urgent":
            return suggestion.priority in (Priority.HIGH, Priority.URGENT)
        return True

    return [suggestion for suggestion in suggestions if matches(suggestion)]


def confidence_stars(confidence: float) -> int:
    """Map confidence to a 1-5 star rating."""
    for threshold, stars in ((0.9, 5), (0.8, 4), (0.7, 3), (0.6, 2)):
        if confidence >= threshold:
            return stars
    return 1


def schedule_analytics(
    template: WorkingHoursTemplate,
    bookings: Iterable[Booking],
    window_start: datetime,
    window_end: datetime,
    duration_minutes: int,
    peak_hour_count: int = 4,
) -> Dict[str, Any]:
    """
    Summarize a provider's load over a window.

    Args:
        template: provider working hours
        bookings: the provider's bookings
        window_start: start of the analysed window
        window_end: end of the analysed window
        duration_minutes: appointment length used to count slots
        peak_hour_count: how many busiest hours to report

    Returns:
        dict: {
            "total_slots": int,
            "available_slots": int,
            "average_wait_days": float,
            "peak_hours": ["09:00", ...]
        }
    """
    active = [booking for booking in bookings if booking.is_active]
    slots = candidate_slots(template, window_start, window_end, duration_minutes)

    available = [
        slot for slot in slots
        if not check_conflicts(slot, slot + timedelta(minutes=duration_minutes), active).has_conflict
    ]

    if available:
        waits = [(slot - window_start).total_seconds() / 86400 for slot in available]
        average_wait = round(sum(waits) / len(waits), 1)
    else:
        average_wait = 0.0

    in_window = [b for b in active if window_start <= b.start < window_end]
    hour_counts = Counter(booking.start.hour for booking in in_window)
    busiest = sorted(hour_counts.items(), key=lambda item: (-item[1], item[0]))[:peak_hour_count]
    peak_hours = [f"{hour:02d}:00" for hour, _ in sorted(busiest)]

    return {
        "total_slots": len(slots),
        "available_slots": len(available),
        "average_wait_days": average_wait,
        "peak_hours": peak_hours,
    }
