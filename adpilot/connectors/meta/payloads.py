"""AdPilot — Draft → Meta payload builders.

Pure functions: each takes the draft plus the remote ids of already-created
parents and returns the request body for the next resource.
"""

from typing import Any, Dict, List

from adpilot.config import settings
from adpilot.models.draft_models import (
    DEFAULT_CTA_BY_GOAL,
    GOAL_TO_OBJECTIVE,
    Draft,
    DestinationType,
    Goal,
    Targeting,
    minimum_budget,
)

FORM_FALLBACK_LINK = "https://www.facebook.com/"


def build_campaign_payload(draft: Draft) -> Dict[str, Any]:
    mapping = GOAL_TO_OBJECTIVE[draft.goal]
    return {
        "name": draft.name,
        "objective": mapping["objective"],
        "status": settings.publish_initial_status,
        "buying_type": "AUCTION",
        "special_ad_categories": [],
    }


def build_targeting(targeting: Targeting) -> Dict[str, Any]:
    """Translate location/age/gender targeting to the platform spec."""

    def _geo(mode: str) -> Dict[str, Any]:
        geo: Dict[str, Any] = {}
        for loc in targeting.locations:
            if loc.mode != mode:
                continue
            if loc.kind == "country":
                geo.setdefault("countries", []).append(loc.key)
            elif loc.kind == "region":
                geo.setdefault("regions", []).append({"key": loc.key})
            elif loc.kind == "city":
                geo.setdefault("cities", []).append({"key": loc.key})
            else:
                geo.setdefault("custom_locations", []).append(
                    {
                        "latitude": loc.latitude,
                        "longitude": loc.longitude,
                        "radius": loc.radius_km,
                        "distance_unit": "kilometer",
                    }
                )
        return geo

    spec: Dict[str, Any] = {
        "geo_locations": {**_geo("include"), "location_types": ["home", "recent"]},
        "age_min": targeting.age_min,
        "age_max": targeting.age_max,
    }
    excluded = _geo("exclude")
    if excluded:
        spec["excluded_geo_locations"] = excluded
    if targeting.genders:
        spec["genders"] = targeting.genders
    return spec


def build_adset_payload(draft: Draft, campaign_remote_id: str) -> Dict[str, Any]:
    mapping = GOAL_TO_OBJECTIVE[draft.goal]
    budget = draft.budget
    daily = max(budget.daily_budget_minor, minimum_budget(budget.currency))

    payload: Dict[str, Any] = {
        "name": f"{draft.name} Ad Set",
        "campaign_id": campaign_remote_id,
        "billing_event": mapping["billing_event"],
        "optimization_goal": mapping["optimization_goal"],
        "bid_strategy": mapping["bid_strategy"],
        "targeting": build_targeting(draft.targeting),
        "status": settings.publish_initial_status,
    }

    days = budget.duration_days
    if days and 0 < days <= 365:
        payload["lifetime_budget"] = daily * days
    else:
        payload["daily_budget"] = daily
    if budget.start_time:
        payload["start_time"] = budget.start_time.isoformat()
    if budget.end_time:
        payload["end_time"] = budget.end_time.isoformat()

    if draft.goal == Goal.LEADS and draft.destination.type == DestinationType.FORM:
        payload["promoted_object"] = {"page_id": draft.destination.page_id}
    return payload


def _destination_link(draft: Draft) -> str:
    dest = draft.destination
    if dest.type == DestinationType.CALL:
        return f"tel:{dest.phone_number}"
    if dest.type == DestinationType.FORM:
        return dest.url or FORM_FALLBACK_LINK
    return dest.url or ""


def _call_to_action(draft: Draft, cta_type: str) -> Dict[str, Any]:
    dest = draft.destination
    if dest.type == DestinationType.FORM:
        value: Dict[str, Any] = {"lead_gen_form_id": dest.lead_form_id}
    else:
        value = {"link": _destination_link(draft)}
    return {"type": cta_type, "value": value}


def build_creative_spec(draft: Draft, image_hashes: List[str]) -> Dict[str, Any]:
    """Inline creative for the ad.

    One image and one copy variant produce a plain link ad; anything more is
    sent as an asset feed so the platform can rotate the combinations.
    """
    dest = draft.destination
    primary = draft.copy_variants[0]
    cta_type = primary.cta_type or DEFAULT_CTA_BY_GOAL[draft.goal]

    story: Dict[str, Any] = {"page_id": dest.page_id}
    if dest.instagram_actor_id:
        story["instagram_actor_id"] = dest.instagram_actor_id

    if len(image_hashes) == 1 and len(draft.copy_variants) == 1:
        link_data: Dict[str, Any] = {
            "link": _destination_link(draft),
            "message": primary.primary_text,
            "name": primary.headline,
            "image_hash": image_hashes[0],
            "call_to_action": _call_to_action(draft, cta_type),
        }
        if primary.description:
            link_data["description"] = primary.description
        story["link_data"] = link_data
        return {"name": f"{draft.name} Creative", "object_story_spec": story}

    feed: Dict[str, Any] = {
        "images": [{"hash": h} for h in image_hashes],
        "bodies": [{"text": v.primary_text} for v in draft.copy_variants],
        "titles": [{"text": v.headline} for v in draft.copy_variants],
        "link_urls": [{"website_url": _destination_link(draft)}],
        "call_to_action_types": [cta_type],
        "ad_formats": ["SINGLE_IMAGE"],
    }
    descriptions = [v.description for v in draft.copy_variants if v.description]
    if descriptions:
        feed["descriptions"] = [{"text": d} for d in descriptions]
    return {
        "name": f"{draft.name} Creative",
        "object_story_spec": story,
        "asset_feed_spec": feed,
    }


def build_ad_payload(
    draft: Draft, adset_remote_id: str, image_hashes: List[str]
) -> Dict[str, Any]:
    return {
        "name": draft.name,
        "adset_id": adset_remote_id,
        "status": settings.publish_initial_status,
        "creative": build_creative_spec(draft, image_hashes),
    }
