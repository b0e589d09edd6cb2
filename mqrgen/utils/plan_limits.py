# mqrgen/utils/plan_limits.py

# Prices are in minor units (paise). Daily windows reset at UTC midnight.
PLAN_LIMITS = {
    "free": {
        "name": "Free",
        "daily": 100,
        "total": 1000,
        "rank": 0,
        "price": 0,
        "features": [
            "100 QR codes per day",
            "Basic customization",
            "PNG download",
        ],
    },
    "pro": {
        "name": "Pro",
        "daily": 10000,
        "total": 100000,
        "rank": 1,
        "price": 59900,
        "features": [
            "10,000 QR codes per day",
            "Advanced customization",
            "Bulk generation",
            "API access",
        ],
    },
    "enterprise": {
        "name": "Enterprise",
        "daily": 100000,
        "total": 1000000,
        "rank": 2,
        "price": 479900,
        "features": [
            "100,000 QR codes per day",
            "Everything in Pro",
            "Priority support",
            "Custom integrations",
        ],
    },
}

DEFAULT_PLAN = "free"
CURRENCY = "INR"
BILLING_PERIOD_DAYS = 30


def is_known_plan(plan) -> bool:
    return plan in PLAN_LIMITS


def plan_limits(plan) -> dict:
    # Unknown plans fall back to free limits.
    return PLAN_LIMITS.get(plan, PLAN_LIMITS[DEFAULT_PLAN])


def plan_rank(plan) -> int:
    return plan_limits(plan)["rank"]


def paid_plans() -> list[str]:
    return [name for name, entry in PLAN_LIMITS.items() if entry["price"] > 0]


def plan_catalog() -> list[dict]:
    """Public plan list, cheapest first."""
    catalog = []
    for plan_id, entry in sorted(PLAN_LIMITS.items(), key=lambda item: item[1]["rank"]):
        catalog.append({
            "id": plan_id,
            "name": entry["name"],
            "price": entry["price"],
            "currency": CURRENCY,
            "interval": "month" if entry["price"] else None,
            "limits": {"daily": entry["daily"], "total": entry["total"]},
            "features": list(entry["features"]),
        })
    return catalog
