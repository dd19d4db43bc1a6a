"""Armband reading models."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence


@dataclass(frozen=True)
class Quaternion:
    """Orientation reading (unit quaternion as reported by the armband)."""
    w: float = 1.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __add__(self, other: "Quaternion") -> "Quaternion":
        if not isinstance(other, Quaternion):
            return NotImplemented
        return Quaternion(
            w=self.w + other.w,
            x=self.x + other.x,
            y=self.y + other.y,
            z=self.z + other.z,
        )

    def as_dict(self) -> Dict[str, float]:
        return {"w": self.w, "x": self.x, "y": self.y, "z": self.z}

    @classmethod
    def parse(cls, raw: Any) -> Optional["Quaternion"]:
        if not isinstance(raw, Mapping):
            return None
        try:
            return cls(
                w=float(raw["w"]),
                x=float(raw["x"]),
                y=float(raw["y"]),
                z=float(raw["z"]),
            )
        except (KeyError, TypeError, ValueError):
            return None


@dataclass(frozen=True)
class Vector3:
    """Accelerometer (g) or gyroscope (deg/s) reading."""
    x: float
    y: float
    z: float

    def as_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}

    @classmethod
    def parse(cls, raw: Any) -> Optional["Vector3"]:
        # Myo Connect sends [x, y, z]
        if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)) or len(raw) != 3:
            return None
        try:
            return cls(x=float(raw[0]), y=float(raw[1]), z=float(raw[2]))
        except (TypeError, ValueError):
            return None
