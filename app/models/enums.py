# app/models/enums.py
"""
Closed value sets shared by models, services and schemas.
Stored as their string values so the DB stays readable.
"""

import enum


class Phase(str, enum.Enum):
    ARRIVAL = "ARRIVAL"
    DEPARTURE = "DEPARTURE"


class OccupancyState(str, enum.Enum):
    NONE = "NONE"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"    # terminal
