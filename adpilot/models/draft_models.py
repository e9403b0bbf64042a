"""AdPilot — Draft Models.

A Draft is the complete, not-yet-published specification of ONE ad:
creatives, copy, targeting, destination and budget. Editing flows own it;
the publish pipeline only reads it.
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class Goal(str, Enum):
    LEADS = "leads"
    WEBSITE_VISITS = "website-visits"
    CALLS = "calls"


class DestinationType(str, Enum):
    WEBSITE = "website"
    FORM = "form"
    CALL = "call"


Placement = Literal["feed", "story", "reel"]


# ─────────────────────────────────────────────
# PLATFORM MAPPINGS
# ─────────────────────────────────────────────

GOAL_TO_OBJECTIVE = {
    Goal.LEADS: {
        "objective": "OUTCOME_LEADS",
        "optimization_goal": "LEAD_GENERATION",
        "billing_event": "IMPRESSIONS",
        "bid_strategy": "LOWEST_COST_WITHOUT_CAP",
    },
    Goal.WEBSITE_VISITS: {
        "objective": "OUTCOME_TRAFFIC",
        "optimization_goal": "LINK_CLICKS",
        "billing_event": "IMPRESSIONS",
        "bid_strategy": "LOWEST_COST_WITHOUT_CAP",
    },
    Goal.CALLS: {
        "objective": "OUTCOME_TRAFFIC",
        "optimization_goal": "LINK_CLICKS",
        "billing_event": "IMPRESSIONS",
        "bid_strategy": "LOWEST_COST_WITHOUT_CAP",
    },
}

DEFAULT_CTA_BY_GOAL = {
    Goal.LEADS: "LEARN_MORE",
    Goal.WEBSITE_VISITS: "LEARN_MORE",
    Goal.CALLS: "CALL_NOW",
}

ALLOWED_DESTINATIONS = {
    Goal.LEADS: {DestinationType.FORM, DestinationType.WEBSITE},
    Goal.WEBSITE_VISITS: {DestinationType.WEBSITE},
    Goal.CALLS: {DestinationType.CALL},
}

TEXT_LIMITS = {"primary_text": 2200, "headline": 40, "description": 30}

# Minimum daily budget in minor currency units
BUDGET_MINIMUMS = {
    "USD": 100,
    "EUR": 100,
    "GBP": 100,
    "CAD": 100,
    "AUD": 150,
    "JPY": 100,
    "INR": 4000,
    "BRL": 500,
    "MXN": 2000,
}
DEFAULT_BUDGET_MINIMUM = 100
ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "CLP", "VND"}


def to_minor_units(amount: float, currency: str) -> int:
    """Convert a major-unit amount to the platform's minor units."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(round(amount))
    return int(round(amount * 100))


def minimum_budget(currency: str) -> int:
    return BUDGET_MINIMUMS.get(currency.upper(), DEFAULT_BUDGET_MINIMUM)


# ─────────────────────────────────────────────
# DRAFT SECTIONS
# ─────────────────────────────────────────────


class CreativeAsset(BaseModel):
    """Reference to an image in creative storage."""

    ref: str
    required: bool = True
    placement: Placement = "feed"


class CopyVariant(BaseModel):
    primary_text: str
    headline: str
    description: Optional[str] = None
    cta_type: Optional[str] = None


class LocationTarget(BaseModel):
    """One include/exclude location.

    ``kind`` is one of country | region | city | radius. For radius targets
    ``latitude``/``longitude``/``radius_km`` are used instead of ``key``.
    """

    kind: Literal["country", "region", "city", "radius"] = "country"
    key: str = ""
    name: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius_km: Optional[float] = None
    mode: Literal["include", "exclude"] = "include"


class Targeting(BaseModel):
    locations: List[LocationTarget] = []
    age_min: int = 18
    age_max: int = 65
    genders: List[int] = []  # 1 = male, 2 = female; empty = all


class Destination(BaseModel):
    type: DestinationType
    page_id: str = ""
    instagram_actor_id: Optional[str] = None
    url: Optional[str] = None
    lead_form_id: Optional[str] = None
    phone_number: Optional[str] = None


class Budget(BaseModel):
    daily_budget: float
    currency: str = "USD"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def daily_budget_minor(self) -> int:
        return to_minor_units(self.daily_budget, self.currency)

    @property
    def duration_days(self) -> Optional[int]:
        if not self.start_time or not self.end_time:
            return None
        return max((self.end_time - self.start_time).days, 0)


class DraftIssue(BaseModel):
    """One entity-validation problem."""

    field: str
    message: str


class Draft(BaseModel):
    """Complete in-progress specification of one ad."""

    id: str
    owner_id: str
    campaign_id: str
    name: str
    goal: Goal
    ad_account_id: str
    creatives: List[CreativeAsset] = []
    copy_variants: List[CopyVariant] = []
    targeting: Targeting = Field(default_factory=Targeting)
    destination: Optional[Destination] = None
    budget: Optional[Budget] = None

    @property
    def normalized_ad_account_id(self) -> str:
        account = self.ad_account_id.strip()
        return account if account.startswith("act_") else f"act_{account}"

    @property
    def required_creatives(self) -> List[CreativeAsset]:
        return [c for c in self.creatives if c.required]

    def validate_for_publish(self) -> List[DraftIssue]:
        """Entity-level validation. An empty list means publishable."""
        issues: List[DraftIssue] = []

        if not self.name.strip():
            issues.append(DraftIssue(field="name", message="Ad name is required"))
        if not self.ad_account_id.strip():
            issues.append(
                DraftIssue(field="ad_account_id", message="No ad account selected")
            )

        # Creatives
        if not self.creatives:
            issues.append(
                DraftIssue(field="creatives", message="At least one image is required")
            )
        elif not self.required_creatives:
            issues.append(
                DraftIssue(
                    field="creatives",
                    message="At least one image must be marked required",
                )
            )

        # Copy
        if not self.copy_variants:
            issues.append(
                DraftIssue(field="copy_variants", message="Ad copy is required")
            )
        for i, variant in enumerate(self.copy_variants):
            for field_name, limit in TEXT_LIMITS.items():
                value = getattr(variant, field_name) or ""
                if len(value) > limit:
                    issues.append(
                        DraftIssue(
                            field=f"copy_variants[{i}].{field_name}",
                            message=f"{field_name} exceeds {limit} characters",
                        )
                    )
            if not variant.primary_text.strip() or not variant.headline.strip():
                issues.append(
                    DraftIssue(
                        field=f"copy_variants[{i}]",
                        message="Primary text and headline are required",
                    )
                )

        # Targeting
        if not any(loc.mode == "include" for loc in self.targeting.locations):
            issues.append(
                DraftIssue(
                    field="targeting.locations",
                    message="At least one included location is required",
                )
            )
        for i, loc in enumerate(self.targeting.locations):
            if loc.kind == "radius":
                if loc.latitude is None or loc.longitude is None or not loc.radius_km:
                    issues.append(
                        DraftIssue(
                            field=f"targeting.locations[{i}]",
                            message="Radius targets need latitude, longitude and radius",
                        )
                    )
            elif not loc.key:
                issues.append(
                    DraftIssue(
                        field=f"targeting.locations[{i}]",
                        message="Location key is required",
                    )
                )
        if not 13 <= self.targeting.age_min <= self.targeting.age_max <= 65:
            issues.append(
                DraftIssue(field="targeting.age", message="Invalid age range")
            )

        # Destination
        issues.extend(self._validate_destination())

        # Budget
        if self.budget is None:
            issues.append(DraftIssue(field="budget", message="Budget is required"))
        else:
            minimum = minimum_budget(self.budget.currency)
            if self.budget.daily_budget_minor < minimum:
                issues.append(
                    DraftIssue(
                        field="budget.daily_budget",
                        message=f"Daily budget below minimum of {minimum} minor units "
                        f"for {self.budget.currency.upper()}",
                    )
                )
            if (
                self.budget.start_time
                and self.budget.end_time
                and self.budget.end_time <= self.budget.start_time
            ):
                issues.append(
                    DraftIssue(
                        field="budget.end_time", message="End time must be after start"
                    )
                )

        return issues

    def _validate_destination(self) -> List[DraftIssue]:
        dest = self.destination
        if dest is None:
            return [DraftIssue(field="destination", message="Destination is required")]

        issues: List[DraftIssue] = []
        if not dest.page_id:
            issues.append(
                DraftIssue(field="destination.page_id", message="Facebook Page required")
            )
        if dest.type not in ALLOWED_DESTINATIONS[self.goal]:
            issues.append(
                DraftIssue(
                    field="destination.type",
                    message=f"Destination '{dest.type.value}' does not fit goal "
                    f"'{self.goal.value}'",
                )
            )
        if dest.type == DestinationType.WEBSITE:
            if not dest.url or not dest.url.startswith(("http://", "https://")):
                issues.append(
                    DraftIssue(field="destination.url", message="Valid website URL required")
                )
        elif dest.type == DestinationType.FORM:
            if not dest.lead_form_id:
                issues.append(
                    DraftIssue(
                        field="destination.lead_form_id", message="Lead form required"
                    )
                )
        elif dest.type == DestinationType.CALL:
            if not dest.phone_number:
                issues.append(
                    DraftIssue(
                        field="destination.phone_number", message="Phone number required"
                    )
                )
        return issues
