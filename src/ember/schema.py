"""Fixed output schema shared by the fire and non-fire exports."""

from __future__ import annotations

from typing import Tuple

# Stands in for "source had no coverage here". Serialized as an empty cell.
SENTINEL = None

OUTPUT_COLUMNS: Tuple[str, ...] = (
    "ID",
    "creationDate",
    "Lat",
    "Long",
    "temperatureMean",
    "Min_Temperature",
    "Max_Temperature",
    "ndviMean",
    "slope",
    "elevation",
    "Dis_Water",
    "Dis_Road",
    "population",
    "windspeed",
    "evaporation",
    "precipitation",
    "fire",
)

# Columns filled by the record assembler from the event itself.
EVENT_COLUMNS: Tuple[str, ...] = ("ID", "creationDate", "Lat", "Long", "Dis_Water", "Dis_Road", "fire")

# Columns every source registry must produce between them.
SOURCE_COLUMNS: Tuple[str, ...] = tuple(c for c in OUTPUT_COLUMNS if c not in EVENT_COLUMNS)

# Input collection fields (output name <- input name for the pass-through ones).
REQUIRED_EVENT_FIELDS: Tuple[str, ...] = ("ID", "CONT_DATE", "Lat", "Long", "D_Road", "D_Water")
ATTRIBUTE_FIELDS = {"Lat": "Lat", "Long": "Long", "Dis_Road": "D_Road", "Dis_Water": "D_Water"}

STATISTICS: Tuple[str, ...] = ("mean", "min", "max")

FIRE = 1
NON_FIRE = 0
