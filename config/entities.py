"""
Legal entity definitions for the farm operation.
Customize these with your actual entity names.
"""

ENTITIES = {
    "farm_1": {
        "name": "Farm Entity 1",
    },
    "farm_2": {
        "name": "Farm Entity 2",
    },
}

# Commodities the engine prices and allocates
COMMODITIES = ["corn", "soybeans", "wheat"]

# Direct cost categories summed per farm-year
DIRECT_COST_CATEGORIES = [
    "fertilizer",
    "chemical",
    "seed",
    "land_rent",
    "insurance",
    "other",
]
