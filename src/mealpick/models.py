from __future__ import annotations

import datetime
import re
from dataclasses import dataclass, field

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Meal slots shown on the landing page, in display order.
MEAL_SLOTS = [
    ("breakfast_brunch", "Breakfast / Brunch"),
    ("lunch", "Lunch"),
    ("dinner", "Dinner"),
]
PICKS_PER_SLOT = 3


def normalize_email(raw) -> str:
    """Trim and lower-case an address; non-strings normalize to ''."""
    if raw is None:
        return ""
    return str(raw).strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(email) and EMAIL_RE.match(email) is not None


def utc_timestamp(now: datetime.datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. '2026-02-13T08:00:00.000Z'."""
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    now = now.astimezone(datetime.timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


@dataclass
class Subscriber:
    """A confirmed subscriber. Existence of the record is the confirmation."""

    email: str
    subscribed_at: str = field(default_factory=utc_timestamp)

    def to_record(self) -> dict:
        return {"subscribedAt": self.subscribed_at}

    @classmethod
    def from_record(cls, email: str, record: dict | None) -> Subscriber:
        record = record or {}
        return cls(email=email, subscribed_at=record.get("subscribedAt", ""))


@dataclass
class Picks:
    """The day's curated picks, stored as a single overwritten record."""

    date_str: str
    meals: dict
    location_map: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload) -> Picks | None:
        """Return Picks if ``payload`` has the required fields, else None.

        Only the presence of ``date_str`` and ``meals`` is checked; nested
        structure is taken as-is. An empty ``meals`` object or list counts as
        present, other falsy values do not.
        """
        if not isinstance(payload, dict):
            return None
        meals = payload.get("meals")
        if not payload.get("date_str") or meals is None:
            return None
        if not meals and not isinstance(meals, (dict, list)):
            return None
        return cls(
            date_str=payload["date_str"],
            meals=payload["meals"],
            location_map=payload.get("location_map") or {},
        )

    def slots(self) -> list[dict]:
        """Meal sections for display: title plus up to three picks with locations."""
        sections = []
        meals = self.meals if isinstance(self.meals, dict) else {}
        locations = self.location_map if isinstance(self.location_map, dict) else {}
        for key, title in MEAL_SLOTS:
            meal = meals.get(key) or {}
            picks = meal.get("picks") if isinstance(meal, dict) else None
            if not isinstance(picks, list) or not picks:
                continue
            items = []
            for pick in picks[:PICKS_PER_SLOT]:
                if not isinstance(pick, dict):
                    pick = {}
                eatery = pick.get("eatery")
                eatery = "" if eatery is None else str(eatery)
                dishes = pick.get("dishes")
                if not isinstance(dishes, list):
                    dishes = []
                items.append({
                    "eatery": eatery,
                    "dishes": list(dishes),
                    "location": locations.get(eatery, ""),
                })
            sections.append({"key": key, "title": title, "picks": items})
        return sections
