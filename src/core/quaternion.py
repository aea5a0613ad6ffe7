"""
===============================================================================
ORRERY SIM - Quaternion Mathematics
===============================================================================

Double-precision unit quaternions for body and vessel orientation. Every
precise transform in the simulation carries one of these; render-space
transforms carry a single-precision copy produced by the floating origin.

Convention
----------
Scalar-first, Hamilton product:

    q = [q_w, q_x, q_y, q_z] = q_w + q_x*i + q_y*j + q_z*k

A quaternion acts on a vector by the sandwich product v' = q * v * q*, so the
product a * b applies b first and a second. Axis rotations compose in the
order they are written:

    Rz(node) * Rx(inclination) * Rz(pericenter)

rotates by the pericenter angle first and by the node angle last.

Unit quaternion constraint: |q| = 1. Every constructor and product
re-normalizes, so drift from repeated composition never accumulates.

References
----------
    [1] Markley & Crassidis, "Fundamentals of Spacecraft Attitude
        Determination and Control", Springer, 2014.
    [2] Shepperd, "Quaternion from rotation matrix", JGCD, 1978.
===============================================================================
"""

import numpy as np


class Quaternion:
    """
    Unit quaternion class for 3D rotation representation.

    A rotation by angle theta about unit axis n is encoded as

        q = [cos(theta/2), sin(theta/2) * n]

    Attributes
    ----------
    w, x, y, z : float
        Scalar and vector components.

    Examples
    --------
    >>> q = Quaternion.from_rotation_z(np.pi / 2)
    >>> q.rotate_vector(np.array([1.0, 0.0, 0.0]))   # -> [0, 1, 0]
    """

    _NORM_TOLERANCE = 1e-12
    _COMPARISON_TOLERANCE = 1e-9

    def __init__(self, w: float, x: float, y: float, z: float,
                 normalize: bool = True) -> None:
        """
        Parameters
        ----------
        w : float
            Scalar part.
        x, y, z : float
            Vector part.
        normalize : bool, optional
            Normalize to unit length (default). Pass False only for values
            already known to be unit length.

        Notes
        -----
        q and -q describe the same rotation; normalization picks the one
        with w >= 0 so that equal orientations have equal components.
        """
        self._q = np.array([w, x, y, z], dtype=np.float64)

        if normalize:
            self._normalize_in_place()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def w(self) -> float:
        """Scalar (real) part."""
        return float(self._q[0])

    @property
    def x(self) -> float:
        return float(self._q[1])

    @property
    def y(self) -> float:
        return float(self._q[2])

    @property
    def z(self) -> float:
        return float(self._q[3])

    @property
    def vector(self) -> np.ndarray:
        """Vector part [x, y, z] as a copy."""
        return self._q[1:4].copy()

    @property
    def components(self) -> np.ndarray:
        """Full quaternion [w, x, y, z] as a copy."""
        return self._q.copy()

    @property
    def norm(self) -> float:
        return float(np.linalg.norm(self._q))

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _normalize_in_place(self) -> None:
        """
        Normalize to unit magnitude and enforce w >= 0.

        Raises
        ------
        ValueError
            If the quaternion has near-zero norm or non-finite components.
        """
        n = self.norm

        if not np.isfinite(n) or n < self._NORM_TOLERANCE:
            raise ValueError(
                f"Cannot normalize degenerate quaternion (norm = {n:.2e})."
            )

        self._q /= n

        if self._q[0] < 0.0:
            self._q = -self._q

    # =========================================================================
    # FACTORY METHODS
    # =========================================================================

    @staticmethod
    def identity() -> 'Quaternion':
        """The identity rotation [1, 0, 0, 0]."""
        return Quaternion(1.0, 0.0, 0.0, 0.0, normalize=False)

    @staticmethod
    def from_array(q) -> 'Quaternion':
        """
        Build a quaternion from any 4-element [w, x, y, z] sequence.

        Single-precision inputs (render-space rotations) are promoted to
        float64 and re-normalized.
        """
        q = np.asarray(q, dtype=np.float64)
        if q.shape != (4,):
            raise ValueError(f"Quaternion array must have shape (4,), got {q.shape}")
        return Quaternion(q[0], q[1], q[2], q[3])

    @staticmethod
    def from_axis_angle(axis: np.ndarray, angle: float) -> 'Quaternion':
        """
        Rotation by *angle* radians about *axis*.

        Parameters
        ----------
        axis : np.ndarray
            3-element axis, normalized internally.
        angle : float
            Rotation angle in radians.

        Raises
        ------
        ValueError
            If the axis has near-zero magnitude.
        """
        axis = np.asarray(axis, dtype=np.float64)
        axis_norm = np.linalg.norm(axis)

        if axis_norm < 1e-12:
            raise ValueError(
                "Rotation axis has near-zero magnitude. "
                "Cannot define a rotation about a zero vector."
            )

        n = axis / axis_norm
        half_angle = 0.5 * angle
        sin_half = np.sin(half_angle)

        return Quaternion(np.cos(half_angle),
                          sin_half * n[0], sin_half * n[1], sin_half * n[2])

    @staticmethod
    def from_rotation_x(angle: float) -> 'Quaternion':
        """Rotation about the X axis."""
        return Quaternion(np.cos(0.5 * angle), np.sin(0.5 * angle), 0.0, 0.0)

    @staticmethod
    def from_rotation_y(angle: float) -> 'Quaternion':
        """Rotation about the Y axis."""
        return Quaternion(np.cos(0.5 * angle), 0.0, np.sin(0.5 * angle), 0.0)

    @staticmethod
    def from_rotation_z(angle: float) -> 'Quaternion':
        """Rotation about the Z axis."""
        return Quaternion(np.cos(0.5 * angle), 0.0, 0.0, np.sin(0.5 * angle))

    @staticmethod
    def from_rotation_vector(rot_vec: np.ndarray) -> 'Quaternion':
        """
        Exponential map of a rotation vector (scaled axis).

        The direction of *rot_vec* is the axis and its magnitude the angle.
        The integrator feeds ``omega * dt`` through here to advance an
        orientation by one tick.

        Parameters
        ----------
        rot_vec : np.ndarray
            3-element rotation vector (radians).

        Returns
        -------
        Quaternion
            Identity for a (near-)zero vector.
        """
        rot_vec = np.asarray(rot_vec, dtype=np.float64)
        angle = np.linalg.norm(rot_vec)

        if angle < 1e-12:
            return Quaternion.identity()

        return Quaternion.from_axis_angle(rot_vec / angle, angle)

    @staticmethod
    def from_dcm(dcm: np.ndarray) -> 'Quaternion':
        """
        Quaternion from a rotation matrix using Shepperd's method.

        The matrix is the active rotation, i.e. ``q.rotate_vector(v)`` equals
        ``dcm @ v``. Its columns are therefore the images of the local X, Y
        and Z axes.

        Parameters
        ----------
        dcm : np.ndarray
            3x3 proper orthogonal matrix.

        Raises
        ------
        ValueError
            If the matrix is not 3x3 or not orthogonal.
        """
        dcm = np.asarray(dcm, dtype=np.float64)

        if dcm.shape != (3, 3):
            raise ValueError(f"DCM must be 3x3, got shape {dcm.shape}")

        orthogonality_error = np.linalg.norm(dcm.T @ dcm - np.eye(3))
        if orthogonality_error > 1e-6:
            raise ValueError(
                f"Input matrix is not orthogonal (error = {orthogonality_error:.2e})."
            )

        trace = np.trace(dcm)

        # Extract the largest component first; the others follow from the
        # off-diagonal terms without cancellation.
        d0 = 1.0 + trace
        d1 = 1.0 + 2.0 * dcm[0, 0] - trace
        d2 = 1.0 + 2.0 * dcm[1, 1] - trace
        d3 = 1.0 + 2.0 * dcm[2, 2] - trace
        d_max = max(d0, d1, d2, d3)

        if d_max == d0:
            w = 0.5 * np.sqrt(d0)
            scale = 0.25 / w
            x = (dcm[2, 1] - dcm[1, 2]) * scale
            y = (dcm[0, 2] - dcm[2, 0]) * scale
            z = (dcm[1, 0] - dcm[0, 1]) * scale
        elif d_max == d1:
            x = 0.5 * np.sqrt(d1)
            scale = 0.25 / x
            w = (dcm[2, 1] - dcm[1, 2]) * scale
            y = (dcm[0, 1] + dcm[1, 0]) * scale
            z = (dcm[0, 2] + dcm[2, 0]) * scale
        elif d_max == d2:
            y = 0.5 * np.sqrt(d2)
            scale = 0.25 / y
            w = (dcm[0, 2] - dcm[2, 0]) * scale
            x = (dcm[0, 1] + dcm[1, 0]) * scale
            z = (dcm[1, 2] + dcm[2, 1]) * scale
        else:
            z = 0.5 * np.sqrt(d3)
            scale = 0.25 / z
            w = (dcm[1, 0] - dcm[0, 1]) * scale
            x = (dcm[0, 2] + dcm[2, 0]) * scale
            y = (dcm[1, 2] + dcm[2, 1]) * scale

        return Quaternion(w, x, y, z)

    # =========================================================================
    # ARITHMETIC
    # =========================================================================

    def conjugate(self) -> 'Quaternion':
        """[w, -x, -y, -z]; the reverse rotation for a unit quaternion."""
        return Quaternion(self.w, -self.x, -self.y, -self.z, normalize=False)

    def normalize(self) -> 'Quaternion':
        """Return a re-normalized copy."""
        return Quaternion(self.w, self.x, self.y, self.z, normalize=True)

    def multiply(self, other: 'Quaternion') -> 'Quaternion':
        """
        Hamilton product self * other (apply *other* first, then *self*).

        The result is re-normalized.
        """
        a1, b1, c1, d1 = self._q
        a2, b2, c2, d2 = other._q

        w = a1 * a2 - b1 * b2 - c1 * c2 - d1 * d2
        x = a1 * b2 + b1 * a2 + c1 * d2 - d1 * c2
        y = a1 * c2 - b1 * d2 + c1 * a2 + d1 * b2
        z = a1 * d2 + b1 * c2 - c1 * b2 + d1 * a2

        return Quaternion(w, x, y, z)

    def __mul__(self, other: 'Quaternion') -> 'Quaternion':
        if isinstance(other, Quaternion):
            return self.multiply(other)
        return NotImplemented

    # =========================================================================
    # ROTATION OPERATIONS
    # =========================================================================

    def rotate_vector(self, v: np.ndarray) -> np.ndarray:
        """
        Rotate a 3-vector (or an (N, 3) stack of them) by this quaternion.

        Uses the Rodrigues form v' = v + w*t + u x t with t = 2 * (u x v),
        which is equivalent to the sandwich product.
        """
        v = np.asarray(v, dtype=np.float64)
        u = self.vector

        t = 2.0 * np.cross(u, v)
        return v + self._q[0] * t + np.cross(u, t)

    def to_dcm(self) -> np.ndarray:
        """
        Active rotation matrix R with R @ v == self.rotate_vector(v).
        """
        w, x, y, z = self._q

        xx, yy, zz = x * x, y * y, z * z
        xy, xz, yz = x * y, x * z, y * z
        wx, wy, wz = w * x, w * y, w * z

        return np.array([
            [1.0 - 2.0 * (yy + zz),  2.0 * (xy - wz),        2.0 * (xz + wy)],
            [2.0 * (xy + wz),         1.0 - 2.0 * (xx + zz),  2.0 * (yz - wx)],
            [2.0 * (xz - wy),         2.0 * (yz + wx),         1.0 - 2.0 * (xx + yy)],
        ], dtype=np.float64)

    def as_float32(self) -> np.ndarray:
        """Components narrowed to single precision for render space."""
        return self._q.astype(np.float32)

    # =========================================================================
    # COMPARISON / DISPLAY
    # =========================================================================

    def __eq__(self, other: object) -> bool:
        """Equal if both describe the same rotation within tolerance."""
        if not isinstance(other, Quaternion):
            return NotImplemented

        diff_pos = np.linalg.norm(self._q - other._q)
        diff_neg = np.linalg.norm(self._q + other._q)
        return min(diff_pos, diff_neg) < self._COMPARISON_TOLERANCE

    __hash__ = None

    def copy(self) -> 'Quaternion':
        return Quaternion(self.w, self.x, self.y, self.z, normalize=False)

    def __repr__(self) -> str:
        return (f"Quaternion(w={self.w:+.8f}, x={self.x:+.8f}, "
                f"y={self.y:+.8f}, z={self.z:+.8f})")
