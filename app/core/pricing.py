"""
Plan catalogue, usage limits and model pricing.
A limit of None means the plan is unbounded.
"""
from typing import Optional
from app.models.account import PlanType


USAGE_LIMITS = {
    PlanType.FREE: {
        "messages_per_month": 100,
        "websites": 1,
        "analytics": False,
    },
    PlanType.STARTER: {
        "messages_per_month": 1000,
        "websites": 2,
        "analytics": True,
    },
    PlanType.PROFESSIONAL: {
        "messages_per_month": 5000,
        "websites": 10,
        "analytics": True,
    },
    PlanType.ENTERPRISE: {
        "messages_per_month": None,  # unlimited
        "websites": None,
        "analytics": True,
    },
}


PRICING_PLANS = {
    PlanType.FREE: {
        "name": "Free",
        "price": 0,
        "currency": "INR",
        "interval": "month",
        "description": "Perfect for testing and small websites",
    },
    PlanType.STARTER: {
        "name": "Starter",
        "price": 299,
        "currency": "INR",
        "interval": "month",
        "description": "Great for small businesses and startups",
    },
    PlanType.PROFESSIONAL: {
        "name": "Professional",
        "price": 999,
        "currency": "INR",
        "interval": "month",
        "description": "Perfect for growing businesses",
    },
    PlanType.ENTERPRISE: {
        "name": "Enterprise",
        "price": 2999,
        "currency": "INR",
        "interval": "month",
        "description": "Unlimited messages for large deployments",
    },
}


# USD per 1K tokens
MODEL_PRICING = {
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
}

FALLBACK_COST_PER_TOKEN = 0.00001


def monthly_message_limit(plan: PlanType) -> Optional[int]:
    return USAGE_LIMITS[PlanType(plan)]["messages_per_month"]


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        return (prompt_tokens + completion_tokens) * FALLBACK_COST_PER_TOKEN
    return (prompt_tokens / 1000) * pricing["input"] + (completion_tokens / 1000) * pricing["output"]


def plan_catalogue() -> list:
    return [
        {"id": plan.value, **PRICING_PLANS[plan], "limits": USAGE_LIMITS[plan]}
        for plan in PlanType
    ]
