"""
Fixed option tables for the tree customization wizard.

These tables are part of the product offering rather than admin-editable
configuration, so they live in code.
"""

PRODUCT_CATEGORIES = ("decorations", "ribbons", "trees", "centrepieces")

# Categories that check out without a scheduling step
NON_SCHEDULED_CATEGORIES = ("decorations", "ribbons", "centrepieces")

PRODUCT_COLORS = [
    {"name": "Blue", "value": "blue", "hex": "#3B82F6"},
    {"name": "Burlap", "value": "burlap", "hex": "#D2B48C"},
    {"name": "Champagne Gold", "value": "champagne-gold", "hex": "#F7E7CE"},
    {"name": "Gold", "value": "gold", "hex": "#FFD700"},
    {"name": "Green", "value": "green", "hex": "#10B981"},
    {"name": "Platinum", "value": "platinum", "hex": "#E5E7EB"},
    {"name": "Red", "value": "red", "hex": "#EF4444"},
    {"name": "Silver", "value": "silver", "hex": "#9CA3AF"},
    {"name": "White", "value": "white", "hex": "#FFFFFF"},
]

# (height, width) pairs, metric and imperial labels
TREE_SIZES = [
    {"height": {"metric": "1.5 m", "imperial": "4–5 ft"}, "width": {"metric": "0.9 m", "imperial": "2–3 ft"}},
    {"height": {"metric": "1.8 m", "imperial": "5–6 ft"}, "width": {"metric": "1.2 m", "imperial": "3–4 ft"}},
    {"height": {"metric": "2.1 m", "imperial": "6–7 ft"}, "width": {"metric": "1.5 m", "imperial": "4–5 ft"}},
    {"height": {"metric": "2.4 m", "imperial": "7–8 ft"}, "width": {"metric": "1.8 m", "imperial": "5–6 ft"}},
    {"height": {"metric": "2.7 m", "imperial": "8–9 ft"}, "width": {"metric": "2.1 m", "imperial": "6–7 ft"}},
    {"height": {"metric": "3.0 m", "imperial": "9–10 ft"}, "width": {"metric": "2.4 m", "imperial": "7–8 ft"}},
    {"height": {"metric": "3.3 m", "imperial": "10–11 ft"}, "width": {"metric": "2.7 m", "imperial": "8–9 ft"}},
    {"height": {"metric": "3.6 m", "imperial": "11–12 ft"}, "width": {"metric": "3.0 m", "imperial": "9–10 ft"}},
    {"height": {"metric": "4.5 m", "imperial": "14–15 ft"}, "width": {"metric": "3.9 m", "imperial": "12–13 ft"}},
    {"height": {"metric": "5.4 m", "imperial": "17–18 ft"}, "width": {"metric": "4.8 m", "imperial": "15–16 ft"}},
]

TREE_TYPES = [
    {"name": "Noble Fir", "category": "Live", "status": "available"},
    {"name": "Nordmann Fir", "category": "Live", "status": "available"},
    {"name": "Fraser Fir", "category": "Live", "status": "available"},
    {"name": "Balsam Fir", "category": "Live", "status": "unavailable"},
    {"name": "Blue Spruce", "category": "Live", "status": "unavailable"},
    {"name": "Douglas Fir", "category": "Live", "status": "unavailable"},
    {"name": "Scotch Pine", "category": "Live", "status": "unavailable"},
    {"name": "Virginia Pine", "category": "Live", "status": "unavailable"},
    {"name": "White Pine", "category": "Live", "status": "unavailable"},
    {"name": "Hyper-realistic Artificial Fir Tree", "category": "Artificial", "status": "available"},
    {"name": "Custom Tree", "category": "Artificial", "status": "custom"},
]

RENTAL_PERIODS = [
    {"days": 45, "label": "45 Days", "additional_cost": 0},
    {"days": 60, "label": "60 Days", "additional_cost": 100},
    {"days": 90, "label": "90 Days", "additional_cost": 200},
]

DECOR_LEVELS = [
    {"percentage": 50, "label": "Basic Decor"},
    {"percentage": 75, "label": "Standard Decor"},
    {"percentage": 100, "label": "Premium Decor"},
]

EVENT_SIZES = ("small", "medium", "large")


def is_tree_size(height: str, width: str) -> bool:
    """True when height and width form one row of TREE_SIZES, in either unit system."""
    for size in TREE_SIZES:
        for unit in ("metric", "imperial"):
            if size["height"][unit] == height and size["width"][unit] == width:
                return True
    return False


def is_orderable_tree_type(name: str) -> bool:
    return any(t["name"] == name and t["status"] != "unavailable" for t in TREE_TYPES)


def tree_options_payload() -> dict:
    return {
        "sizes": TREE_SIZES,
        "types": TREE_TYPES,
        "rental_periods": RENTAL_PERIODS,
        "decor_levels": DECOR_LEVELS,
        "event_sizes": list(EVENT_SIZES),
        "colors": PRODUCT_COLORS,
    }
