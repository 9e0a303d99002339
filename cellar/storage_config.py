"""Shared configuration for cellar storage and placement.

This module centralizes the enumerations and weights used by both the
placement core and the web API.  Adjust the values here and all modules will
pick up the changes automatically.
"""

from __future__ import annotations

# Enumerations ---------------------------------------------------------------

LOCATION_TYPES = ("shelf", "case", "drawer", "rack", "cellar", "fridge", "other")

WINE_COLORS = ("red", "white", "rose", "sparkling", "fortified")

IN_STOCK = "in_stock"
CONSUMED = "consumed"
GIFTED = "gifted"
LOST = "lost"

BOTTLE_STATUSES = (IN_STOCK, CONSUMED, GIFTED, LOST)

# Statuses a bottle can move to once it leaves the cellar.  There is no way
# back to ``IN_STOCK``.
RETIRED_STATUSES = (CONSUMED, GIFTED, LOST)

# Affinity scoring -----------------------------------------------------------

# Weights for the advanced placement.  The order identity > colour > region
# is strict and the contributions are summed.
WINE_AFFINITY = 10
COLOR_AFFINITY = 5
REGION_AFFINITY = 3

# Reorganisation -------------------------------------------------------------

# Colour order used when a single location is laid out again.  Bottles without
# a joined wine fall in the ``UNKNOWN`` group placed last.
UNKNOWN = "unknown"
COLOR_ORDER = (*WINE_COLORS, UNKNOWN)

# Vintage used for sorting bottles without one so they come last.
MISSING_VINTAGE = 9999
