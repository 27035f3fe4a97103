"""Category-to-skill mapping, keyword severity analysis and SLA windows."""

from datetime import datetime, timedelta
from typing import Optional

from campusfix.config import settings
from campusfix.models.ticket import Severity

# Ticket category -> worker skill tag. Unlisted categories match a skill of the same name.
CATEGORY_TO_SKILL = {
    "electrical": "electrical",
    "plumbing": "plumbing",
    "furniture": "carpentry",
    "carpentry": "carpentry",
    "it/network": "it",
    "it / network": "it",
    "wifi": "it",
    "computer": "it",
    "cleanliness": "cleaning",
    "cleaning": "cleaning",
    "other": "maintenance",
}

PRIORITY_KEYWORDS = {
    Severity.high: [
        "fire", "smoke", "spark", "danger", "emergency", "leak", "flood",
        "power outage", "shock", "broken security", "lock broken", "gas",
        "explosion", "burning", "critical", "injury", "safety",
    ],
    Severity.medium: [
        "not working", "malfunction", "stuck", "slow", "noise", "internet",
        "wifi", "connection", "leaking", "drip", "ac not cooling", "heating",
        "appliance", "broken handle", "unavailable",
    ],
    Severity.low: [
        "cosmetic", "paint", "scratch", "dirty", "suggestion", "minor",
        "flickering", "bulb", "chair", "furniture", "dust", "cleaning",
    ],
}

CATEGORY_DEFAULT_SEVERITY = {
    "plumbing": Severity.high,
    "electrical": Severity.medium,
    "it/network": Severity.medium,
    "wifi": Severity.medium,
    "furniture": Severity.low,
    "cleanliness": Severity.low,
    "other": Severity.low,
}


def skill_for_category(category: str) -> str:
    key = category.strip().lower()
    return CATEGORY_TO_SKILL.get(key, key)


def categories_for_skill(skill: str) -> set[str]:
    """Every category key whose tickets a worker with ``skill`` can take."""
    skill = skill.strip().lower()
    mapped = {category for category, tag in CATEGORY_TO_SKILL.items() if tag == skill}
    mapped.add(skill)
    return mapped


def calculate_severity(title: str, description: Optional[str], category: str) -> Severity:
    """Keyword analysis, high before medium before low, then the category default."""
    text = f"{title} {description or ''}".lower()
    for level in (Severity.high, Severity.medium, Severity.low):
        if any(keyword in text for keyword in PRIORITY_KEYWORDS[level]):
            return level
    return CATEGORY_DEFAULT_SEVERITY.get(category.strip().lower(), Severity.medium)


def sla_window(severity: str) -> timedelta:
    hours = settings.sla_hours.get(str(Severity(severity).value), settings.SLA_HOURS_MEDIUM)
    return timedelta(hours=hours)


def is_sla_breached(created_at: datetime, severity: str, now: datetime) -> bool:
    return now - created_at > sla_window(severity)
