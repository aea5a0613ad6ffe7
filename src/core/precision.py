"""
===============================================================================
ORRERY SIM - High-Precision Spatial Representation
===============================================================================
Absolute positions live in 64-bit integer millimeters paired with a
double-precision orientation (PreciseTransform). Rendering and most physics
consumers work in single precision, which jitters visibly once coordinates
pass ~1e4-1e5 units. The floating origin solves this: every tick a precise
reference pose is chosen and every top-level precise transform is re-expressed
relative to it in float32 (RenderTransform).

    render = R_origin^-1 * ((p - p_origin) / 1000)       [m, float32]
    precise = p_origin + 1000 * (R_origin * render)      [mm, int64]

Integer arithmetic on positions saturates instead of wrapping, so a transform
at the edge of the int64 range degrades gracefully rather than teleporting.

Conversions
-----------
    to_millimeters : meters (float) -> millimeters (int64), round half away
                     from zero, saturating.
    to_meters      : millimeters (int64) -> meters (float64).
===============================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping

import numpy as np

from core.constants import (
    MILLIMETERS_PER_METER,
    INT64_MIN,
    INT64_MAX,
    FLOAT_INT64_MAX,
)
from core.quaternion import Quaternion

logger = logging.getLogger(__name__)


# =============================================================================
# UNIT CONVERSIONS
# =============================================================================

def to_millimeters(meters) -> np.ndarray:
    """
    Convert meters to integer millimeters.

    Parameters
    ----------
    meters : array_like
        Float vector(s) in meters, any shape.

    Returns
    -------
    np.ndarray
        int64 array of the same shape. Halves round away from zero, values
        beyond the int64 range saturate and NaN maps to zero.
    """
    scaled = np.asarray(meters, dtype=np.float64) * MILLIMETERS_PER_METER

    truncated = np.trunc(scaled)
    frac = scaled - truncated
    rounded = np.where(np.abs(frac) >= 0.5, truncated + np.sign(scaled), truncated)

    rounded = np.nan_to_num(rounded, nan=0.0, posinf=FLOAT_INT64_MAX,
                            neginf=float(INT64_MIN))
    return np.clip(rounded, float(INT64_MIN), FLOAT_INT64_MAX).astype(np.int64)


def to_meters(millimeters) -> np.ndarray:
    """Convert integer millimeters to float64 meters."""
    return np.asarray(millimeters, dtype=np.int64).astype(np.float64) / MILLIMETERS_PER_METER


def _saturate(values) -> np.ndarray:
    return np.array([min(max(v, INT64_MIN), INT64_MAX) for v in values], dtype=np.int64)


def saturating_add(a, b) -> np.ndarray:
    """Element-wise int64 addition clamped to the int64 range."""
    return _saturate([int(x) + int(y) for x, y in zip(np.ravel(a), np.ravel(b))])


def saturating_sub(a, b) -> np.ndarray:
    """Element-wise int64 subtraction clamped to the int64 range."""
    return _saturate([int(x) - int(y) for x, y in zip(np.ravel(a), np.ravel(b))])


def any_orthonormal_vector(v: np.ndarray) -> np.ndarray:
    """
    Some unit vector orthogonal to *v*.

    Branch-free construction of Duff et al. (2017), "Building an Orthonormal
    Basis, Revisited". Falls back to +X when *v* is zero.
    """
    v = np.asarray(v, dtype=np.float64)
    n = np.linalg.norm(v)
    if n < 1e-300:
        return np.array([1.0, 0.0, 0.0])
    x, y, z = v / n

    sign = np.copysign(1.0, z)
    a = -1.0 / (sign + z)
    b = x * y * a
    return np.array([1.0 + sign * x * x * a, sign * b, -sign * x])


# =============================================================================
# TRANSFORMS
# =============================================================================

def _zero_mm() -> np.ndarray:
    return np.zeros(3, dtype=np.int64)


@dataclass
class PreciseTransform:
    """
    High-precision pose: millimeter translation plus unit quaternion.

    Attributes
    ----------
    translation_mm : np.ndarray
        int64 (3,) absolute position in millimeters.
    rotation : Quaternion
        Orientation; local -Z is "forward".
    """
    translation_mm: np.ndarray = field(default_factory=_zero_mm)
    rotation: Quaternion = field(default_factory=Quaternion.identity)

    def __post_init__(self):
        self.translation_mm = np.asarray(self.translation_mm, dtype=np.int64).reshape(3).copy()

    @classmethod
    def from_meters(cls, translation_m, rotation: Quaternion = None) -> 'PreciseTransform':
        return cls(to_millimeters(translation_m),
                   rotation if rotation is not None else Quaternion.identity())

    @property
    def translation_m(self) -> np.ndarray:
        """Translation in meters (float64)."""
        return to_meters(self.translation_mm)

    def copy(self) -> 'PreciseTransform':
        return PreciseTransform(self.translation_mm.copy(), self.rotation.copy())

    def compose(self, local: 'PreciseTransform') -> 'PreciseTransform':
        """
        World pose of a frame given relative to this one.

        Used for docked children, whose pose is stored as an offset from the
        parent's local frame.
        """
        offset_world = self.rotation.rotate_vector(local.translation_m)
        return PreciseTransform(
            saturating_add(self.translation_mm, to_millimeters(offset_world)),
            self.rotation * local.rotation,
        )

    def look_at(self, target_mm, up) -> None:
        """
        Point local -Z at *target_mm*, keeping local +Y as close to *up*
        as possible.

        A target at this transform's own position leaves the rotation
        unchanged.
        """
        direction = to_meters(saturating_sub(target_mm, self.translation_mm))
        self.look_to(direction, up)

    def look_to(self, direction, up) -> None:
        """
        Point local -Z along *direction*.

        The basis is right = normalize(up x back), up' = back x right. When
        *up* is parallel to the direction the cross product vanishes and an
        arbitrary vector orthogonal to *up* stands in for right.
        """
        direction = np.asarray(direction, dtype=np.float64)
        up = np.asarray(up, dtype=np.float64)

        length = np.linalg.norm(direction)
        if not np.isfinite(length) or length < 1e-12:
            logger.debug("look_to with zero-length direction; rotation unchanged")
            return

        back = -direction / length
        right = np.cross(up, back)
        right_norm = np.linalg.norm(right)
        if right_norm < 1e-12:
            reference = up if np.linalg.norm(up) > 1e-12 else back
            right = any_orthonormal_vector(reference)
            # Re-orthogonalize against back in case *up* was zero.
            right = right - np.dot(right, back) * back
            right /= np.linalg.norm(right)
        else:
            right /= right_norm

        new_up = np.cross(back, right)
        self.rotation = Quaternion.from_dcm(np.column_stack([right, new_up, back]))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PreciseTransform):
            return NotImplemented
        return (np.array_equal(self.translation_mm, other.translation_mm)
                and self.rotation == other.rotation)


@dataclass
class RenderTransform:
    """
    Single-precision render-space pose relative to the floating origin.

    Attributes
    ----------
    translation : np.ndarray
        float32 (3,) offset from the origin in meters, origin axes.
    rotation : np.ndarray
        float32 (4,) quaternion [w, x, y, z] relative to the origin.
    """
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=np.float32))
    rotation: np.ndarray = field(
        default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float32)
    )

    def __post_init__(self):
        self.translation = np.asarray(self.translation, dtype=np.float32).reshape(3)
        self.rotation = np.asarray(self.rotation, dtype=np.float32).reshape(4)


# =============================================================================
# FLOATING ORIGIN
# =============================================================================

class FloatingOrigin:
    """
    The precise pose that render space is currently expressed relative to.

    Single writer (the origin selector, once per tick), many readers. The
    simulation context owns exactly one instance; nothing here is global.
    """

    def __init__(self, transform: PreciseTransform = None) -> None:
        self.transform = transform.copy() if transform is not None else PreciseTransform()

    def set(self, transform: PreciseTransform) -> None:
        """Move the origin. Must complete before any projection in the tick."""
        self.transform = transform.copy()

    def project_loc(self, loc_mm) -> np.ndarray:
        """Precise location (mm) -> render-space location (m, float32)."""
        rel_mm = saturating_sub(loc_mm, self.transform.translation_mm)
        rotated = self.transform.rotation.conjugate().rotate_vector(to_meters(rel_mm))
        return rotated.astype(np.float32)

    def project(self, ptf: PreciseTransform) -> RenderTransform:
        """Precise transform -> render transform relative to this origin."""
        rel_rotation = self.transform.rotation.conjugate() * ptf.rotation
        return RenderTransform(self.project_loc(ptf.translation_mm),
                               rel_rotation.as_float32())

    def deproject(self, tf: RenderTransform) -> PreciseTransform:
        """
        Render transform -> precise transform; the inverse of project.

        Exact up to float32 narrowing and millimeter rounding, so a round
        trip reproduces the translation within one millimeter whenever the
        object is close enough to the origin for float32 to resolve it.
        """
        origin = self.transform
        rotation = origin.rotation * Quaternion.from_array(tf.rotation)

        rel_world = origin.rotation.rotate_vector(np.asarray(tf.translation, dtype=np.float64))
        translation_mm = saturating_add(origin.translation_mm, to_millimeters(rel_world))

        return PreciseTransform(translation_mm, rotation)

    def rebase(self, transforms: Mapping[str, PreciseTransform]) -> Dict[str, RenderTransform]:
        """
        Project every top-level transform into render space.

        Callers pass only transforms that are not parented to another
        precise transform; attached children stay relative to their parent.
        """
        return {name: self.project(ptf) for name, ptf in transforms.items()}

    def __repr__(self) -> str:
        t = self.transform.translation_mm
        return f"FloatingOrigin(translation_mm=[{t[0]}, {t[1]}, {t[2]}])"
