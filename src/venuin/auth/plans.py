"""Plan catalog: feature keys, limit keys, and how capabilities map to them.

Three independent axes decide a capability:

1. permission -- can this role ever do X (``permissions.py``)
2. feature    -- has the tenant's plan purchased X (``CAPABILITY_FEATURES``)
3. limit      -- how many X are left (``CAPABILITY_LIMITS``)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

UNLIMITED = -1

FEATURES: dict[str, str] = {
    "dashboard-analytics": "Dashboard & Analytics",
    "event-management": "Event & Booking Management",
    "customer-management": "Customer Management",
    "lead-management": "Lead Management & Scoring",
    "proposal-system": "Proposal Generation & Tracking",
    "stripe-payments": "Payment Processing (Stripe Connect)",
    "venue-management": "Multi-Venue Management",
    "service-packages": "Service & Package Management",
    "gmail-integration": "Gmail Integration",
    "task-management": "Task & Team Management",
    "ai-voice-booking": "AI Voice-to-Text Booking",
    "ai-scheduling": "Smart AI Scheduling",
    "ai-email-replies": "AI Email Auto-Replies",
    "ai-lead-scoring": "AI Lead Priority Scoring",
    "ai-insights": "AI-Powered Insights",
    "ai-proposal-generation": "AI Proposal Content Generation",
    "mobile-responsive": "Mobile-Responsive Interface",
    "audit-logs": "Audit Logging & Security",
    "custom-branding": "Custom Branding & Themes",
    "priority-support": "Priority Customer Support",
    "api-access": "API Access",
    "advanced-reporting": "Advanced Reports & Export",
    "calendar-integration": "Calendar Integration",
    "floor-plan-designer": "2D Floor Plan Designer",
}

MAX_USERS = "max_users"
MAX_VENUES = "max_venues"
MAX_BOOKINGS_PER_MONTH = "max_bookings_per_month"
MAX_SPACES_PER_VENUE = "max_spaces_per_venue"

LIMIT_KEYS = (MAX_USERS, MAX_VENUES, MAX_BOOKINGS_PER_MONTH, MAX_SPACES_PER_VENUE)

CAPABILITY_FEATURES: dict[str, str] = {
    "view_dashboard": "dashboard-analytics",
    "view_reports": "dashboard-analytics",
    "manage_events": "event-management",
    "manage_customers": "customer-management",
    "manage_venues": "venue-management",
    "manage_leads": "lead-management",
    "manage_proposals": "proposal-system",
    "manage_payments": "stripe-payments",
    "voice_booking": "ai-voice-booking",
    "ai_scheduling": "ai-scheduling",
    "ai_email_replies": "ai-email-replies",
    "ai_lead_scoring": "ai-lead-scoring",
    "ai_analytics": "ai-insights",
    "ai_proposal_generation": "ai-proposal-generation",
}

CAPABILITY_LIMITS: dict[str, str] = {
    "manage_users": MAX_USERS,
    "manage_venues": MAX_VENUES,
    "manage_events": MAX_BOOKINGS_PER_MONTH,
}

_STARTER_FEATURES = (
    "dashboard-analytics",
    "event-management",
    "customer-management",
    "venue-management",
    "mobile-responsive",
    "gmail-integration",
)

_PROFESSIONAL_FEATURES = _STARTER_FEATURES + (
    "lead-management",
    "proposal-system",
    "service-packages",
    "task-management",
    "calendar-integration",
    "advanced-reporting",
    "ai-lead-scoring",
    "ai-insights",
)

DEFAULT_PLANS: list[dict[str, Any]] = [
    {
        "slug": "starter",
        "name": "Starter",
        "description": "Perfect for small venues and event spaces getting started with professional management.",
        "price_monthly": 29,
        "price_yearly": 299,
        "features": {key: True for key in _STARTER_FEATURES},
        "limits": {
            MAX_USERS: 3,
            MAX_VENUES: 1,
            MAX_BOOKINGS_PER_MONTH: 50,
            MAX_SPACES_PER_VENUE: 5,
        },
    },
    {
        "slug": "professional",
        "name": "Professional",
        "description": "Complete venue management solution with lead generation, proposals, and basic AI features.",
        "price_monthly": 79,
        "price_yearly": 799,
        "features": {key: True for key in _PROFESSIONAL_FEATURES},
        "limits": {
            MAX_USERS: 10,
            MAX_VENUES: 3,
            MAX_BOOKINGS_PER_MONTH: 500,
            MAX_SPACES_PER_VENUE: 15,
        },
    },
    {
        "slug": "enterprise",
        "name": "Enterprise",
        "description": "Full-featured platform with payments, all AI capabilities, and unlimited everything.",
        "price_monthly": 149,
        "price_yearly": 1499,
        "features": {key: True for key in FEATURES},
        "limits": {key: UNLIMITED for key in LIMIT_KEYS},
    },
]


def feature_enabled(features: dict[str, Any] | None, feature_key: str) -> bool:
    """Only an explicit ``True`` enables a feature."""
    return bool(features) and features.get(feature_key) is True


def limit_for(limits: dict[str, Any] | None, limit_key: str) -> int:
    """Plan limit for a key; missing keys count as 0, -1 is unlimited."""
    value = (limits or {}).get(limit_key)
    if value is None:
        return 0
    return int(value)


def within_limit(maximum: int, current: int, delta: int) -> bool:
    if maximum == UNLIMITED:
        return True
    return current + delta <= maximum


def usage_period_start(now: datetime | None = None) -> datetime:
    """Start of the current monthly usage window (first of the month, UTC)."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def validate_plan_maps(features: dict[str, Any], limits: dict[str, Any]) -> list[str]:
    """Return a list of problems with a plan's feature and limit maps."""
    problems: list[str] = []
    for key, enabled in features.items():
        if key not in FEATURES:
            problems.append(f"unknown feature '{key}'")
        elif not isinstance(enabled, bool):
            problems.append(f"feature '{key}' must be true or false")
    for key, value in limits.items():
        if key not in LIMIT_KEYS:
            problems.append(f"unknown limit '{key}'")
        elif isinstance(value, bool) or not isinstance(value, int) or value < UNLIMITED:
            problems.append(f"limit '{key}' must be an integer >= -1")
    return problems
