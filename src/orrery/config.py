"""
===============================================================================
ORRERY SIM - Star-System Configuration
===============================================================================
Typed body definitions and the loader that builds them from a YAML (or TOML)
star-system file:

    name: taale
    bodies:
      - name: Taale
        class: star
        lumens: 3.0e28
        mass: "1 massSol"
      - name: Kerbin
        parent: Taale
        mass: "1.2 massEarth"
        radius: "6371 km"
        semi_major: "1 au"
        period: "365.25 d"
        eccentricity: 0.0167
        rotation_period: "23.93 h"

Quantities may be plain numbers (base SI unit) or "<value> <unit>" strings.
Angles are radians; epochs are Modified Julian Dates. Bodies must be listed
parents-first, which makes cycles impossible.

Any malformed entry raises OrreryConfigError at load time; there is no
partial load.
===============================================================================
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

import yaml

from core.constants import (
    MASS_EARTH,
    MASS_SOL,
    KILOMETER,
    AU,
    LIGHT_YEAR,
    PARSEC,
    SECONDS_PER_HOUR,
    SECONDS_PER_DAY,
    SECONDS_PER_JULIAN_YEAR,
)

logger = logging.getLogger(__name__)


class OrreryConfigError(ValueError):
    """Raised for any invalid star-system definition."""


# =============================================================================
# UNIT TABLES (factor to base unit)
# =============================================================================

MASS_UNITS = {
    "": 1.0, "kg": 1.0,
    "massearth": MASS_EARTH, "mearth": MASS_EARTH,
    "masssol": MASS_SOL, "msol": MASS_SOL, "masssun": MASS_SOL,
}

DISTANCE_UNITS = {
    "": 1.0, "m": 1.0,
    "km": KILOMETER,
    "au": AU,
    "ly": LIGHT_YEAR, "lightyear": LIGHT_YEAR, "lightyears": LIGHT_YEAR,
    "pc": PARSEC, "parsec": PARSEC, "parsecs": PARSEC,
}

TIME_UNITS = {
    "": 1.0, "s": 1.0, "sec": 1.0, "secs": 1.0, "second": 1.0, "seconds": 1.0,
    "h": SECONDS_PER_HOUR, "hr": SECONDS_PER_HOUR, "hrs": SECONDS_PER_HOUR,
    "hour": SECONDS_PER_HOUR, "hours": SECONDS_PER_HOUR,
    "d": SECONDS_PER_DAY, "day": SECONDS_PER_DAY, "days": SECONDS_PER_DAY,
    "yr": SECONDS_PER_JULIAN_YEAR, "year": SECONDS_PER_JULIAN_YEAR,
    "years": SECONDS_PER_JULIAN_YEAR,
}


def parse_quantity(value: Any, units: Mapping[str, float], kind: str) -> float:
    """
    Convert a config quantity to its base unit.

    Parameters
    ----------
    value : int, float or str
        A number (already in the base unit) or "<number> <unit>".
    units : mapping
        Lower-case unit name -> factor to the base unit.
    kind : str
        Quantity name used in error messages ("mass", "distance", "time").

    Raises
    ------
    OrreryConfigError
        Unknown unit, missing or non-numeric value, or a non-scalar input.
    """
    if isinstance(value, bool):
        raise OrreryConfigError(f"invalid {kind}: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise OrreryConfigError(
            f"invalid {kind}: expected a number or a string like \"1 au\", got {value!r}"
        )

    parts = value.split()
    if not parts:
        raise OrreryConfigError(f"invalid {kind}: missing value")
    if len(parts) > 2:
        raise OrreryConfigError(f"invalid {kind}: {value!r}")

    try:
        number = float(parts[0])
    except ValueError:
        raise OrreryConfigError(f"invalid {kind} value: {parts[0]!r}") from None

    unit = parts[1].lower() if len(parts) == 2 else ""
    if unit not in units:
        raise OrreryConfigError(f"unknown {kind} unit: {parts[1]}")

    return number * units[unit]


def parse_mass(value: Any) -> float:
    """Mass in kg; units kg, massEarth, massSol."""
    return parse_quantity(value, MASS_UNITS, "mass")


def parse_distance(value: Any) -> float:
    """Distance in m; units m, km, au, ly, pc."""
    return parse_quantity(value, DISTANCE_UNITS, "distance")


def parse_time(value: Any) -> float:
    """Duration in s; units s, h, d, yr."""
    return parse_quantity(value, TIME_UNITS, "time")


def _parse_number(value: Any, key: str) -> float:
    # YAML 1.1 reads exponents without a sign ("3.8e28") as strings.
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise OrreryConfigError(f"invalid {key}: expected a number, got {value!r}")
    return float(value)


# =============================================================================
# BODY DEFINITIONS
# =============================================================================

class BodyKind(Enum):
    """Closed set of celestial classes."""
    STAR = "star"
    PLANET = "planet"


@dataclass(frozen=True)
class BodyClass:
    """Class tag of a body; stars carry their luminous output."""
    kind: BodyKind = BodyKind.PLANET
    lumens: float = 0.0

    @property
    def is_star(self) -> bool:
        return self.kind is BodyKind.STAR


@dataclass(frozen=True)
class Orbit:
    """
    Keplerian elements relative to the parent body.

    Attributes
    ----------
    semi_major : float
        Semi-major axis (m). Zero pins the body to its parent.
    period : float
        Orbital period (s). Zero means "derive from Kepler's third law".
    eccentricity : float
    inclination, ascending_node, arg_of_pericenter, mean_anomaly : float
        Angles in radians; mean_anomaly is the value at *epoch*.
    epoch : float
        Reference epoch (MJD).
    """
    semi_major: float = 0.0
    period: float = 0.0
    eccentricity: float = 0.0
    inclination: float = 0.0
    ascending_node: float = 0.0
    arg_of_pericenter: float = 0.0
    mean_anomaly: float = 0.0
    epoch: float = 0.0


@dataclass(frozen=True)
class Rotation:
    """
    Spin state: period (s), obliquity and equatorial ascending node (rad)
    within the orbital plane, and the MJD at which the spin phase is zero.
    """
    rotation_period: float = 0.0
    obliquity: float = 0.0
    eq_ascend_node: float = 0.0
    rotation_epoch: float = 0.0


@dataclass(frozen=True)
class Body:
    """One celestial body of a star system."""
    name: str
    parent: Optional[str] = None
    body_class: BodyClass = field(default_factory=BodyClass)
    orbit: Orbit = field(default_factory=Orbit)
    rotation: Rotation = field(default_factory=Rotation)
    mass: float = 0.0
    radius: float = 0.0


@dataclass
class OrreryConfig:
    """A named, parents-first list of body definitions."""
    name: str
    bodies: List[Body] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'OrreryConfig':
        """
        Build a config from the mapping produced by a YAML/TOML parser.

        Raises
        ------
        OrreryConfigError
            If the mapping or any body entry is malformed.
        """
        if not isinstance(data, Mapping):
            raise OrreryConfigError("star system definition must be a mapping")
        if "name" not in data:
            raise OrreryConfigError("star system definition is missing 'name'")

        raw_bodies = data.get("bodies", [])
        if not isinstance(raw_bodies, list):
            raise OrreryConfigError("'bodies' must be a list")

        bodies = [body_from_dict(entry) for entry in raw_bodies]
        return cls(name=str(data["name"]), bodies=bodies)


_ORBIT_ANGLES = ("eccentricity", "inclination", "ascending_node",
                 "arg_of_pericenter", "mean_anomaly", "epoch")
_ROTATION_ANGLES = ("obliquity", "eq_ascend_node", "rotation_epoch")


def body_from_dict(entry: Mapping[str, Any]) -> Body:
    """Parse one body entry (flat mapping, as in the star file)."""
    if not isinstance(entry, Mapping):
        raise OrreryConfigError(f"body entry must be a mapping, got {entry!r}")
    if "name" not in entry:
        raise OrreryConfigError(f"body entry is missing 'name': {dict(entry)!r}")

    name = str(entry["name"])
    try:
        body_class = _parse_class(entry)

        orbit = Orbit(
            semi_major=parse_distance(entry.get("semi_major", 0.0)),
            period=parse_time(entry.get("period", 0.0)),
            **{key: _parse_number(entry.get(key, 0.0), key) for key in _ORBIT_ANGLES},
        )
        rotation = Rotation(
            rotation_period=parse_time(entry.get("rotation_period", 0.0)),
            **{key: _parse_number(entry.get(key, 0.0), key) for key in _ROTATION_ANGLES},
        )
        mass = parse_mass(entry.get("mass", 0.0))
        radius = parse_distance(entry.get("radius", 0.0))
    except OrreryConfigError as exc:
        raise OrreryConfigError(f"body {name}: {exc}") from None

    parent = entry.get("parent")
    return Body(
        name=name,
        parent=str(parent) if parent is not None else None,
        body_class=body_class,
        orbit=orbit,
        rotation=rotation,
        mass=mass,
        radius=radius,
    )


def _parse_class(entry: Mapping[str, Any]) -> BodyClass:
    tag = str(entry.get("class", "planet")).lower()
    if tag == BodyKind.PLANET.value:
        return BodyClass(BodyKind.PLANET)
    if tag == BodyKind.STAR.value:
        if "lumens" not in entry:
            raise OrreryConfigError("star class requires 'lumens'")
        return BodyClass(BodyKind.STAR, _parse_number(entry["lumens"], "lumens"))
    raise OrreryConfigError(f"unknown body class: {tag}")


# =============================================================================
# FILE LOADING
# =============================================================================

def load_orrery_config(path: Union[str, Path]) -> OrreryConfig:
    """
    Load a star-system definition from disk.

    ``.yaml``/``.yml`` files are read with ``yaml.safe_load``; ``.toml``
    files with ``tomllib``.

    Raises
    ------
    OrreryConfigError
        Unsupported file type or invalid content.
    """
    path = Path(path)
    logger.info("Loading star system from: %s", path)

    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    elif suffix == ".toml":
        with open(path, "rb") as f:
            data = tomllib.load(f)
    else:
        raise OrreryConfigError(f"unsupported star system file type: {path.suffix}")

    cfg = OrreryConfig.from_dict(data)
    logger.info("Star system '%s': %d bodies", cfg.name, len(cfg.bodies))
    return cfg


def config_from_yaml(text: str) -> OrreryConfig:
    """Parse a star-system definition from a YAML string."""
    return OrreryConfig.from_dict(yaml.safe_load(text))
