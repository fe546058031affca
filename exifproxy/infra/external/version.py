"""Module: version.py

Date: 2026-10-19

exiftool version numbers and the features gated on them.
"""

from __future__ import annotations

from enum import Enum


class VersionNumber:
    """Dotted version number, e.g. 12.40 or 8.36.1."""

    def __init__(self, *numbers: int) -> None:
        if not numbers:
            raise ValueError("A version needs at least one component")
        self.numbers: tuple[int, ...] = tuple(int(n) for n in numbers)

    @classmethod
    def parse(cls, text: str) -> VersionNumber:
        """Parse '12.40' style text.

        Raises:
            ValueError: If a component is not an integer.

        """
        parts = text.strip().split(".")
        return cls(*(int(part) for part in parts))

    def is_before_or_equal_to(self, other: VersionNumber) -> bool:
        """Compare component-wise.

        When one version is a prefix of the other, the one with more
        components is the newer (8.36.1 is after 8.36).
        """
        for mine, theirs in zip(self.numbers, other.numbers):
            if mine > theirs:
                return False
            if mine < theirs:
                return True
        return len(self.numbers) <= len(other.numbers)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionNumber):
            return NotImplemented
        return self.numbers == other.numbers

    def __hash__(self) -> int:
        return hash(self.numbers)

    def __str__(self) -> str:
        return ".".join(str(n) for n in self.numbers)

    def __repr__(self) -> str:
        return f"VersionNumber({self})"


class Feature(Enum):
    """Optional exiftool capabilities and the version that introduced them."""

    STAY_OPEN = ((8, 36), ())
    MWG_MODULE = ((8, 36), ("-use", "MWG"))

    def __init__(self, required: tuple[int, ...], base_args: tuple[str, ...]) -> None:
        self.required_version = VersionNumber(*required)
        self.base_args = base_args

    def is_supported(self, version: VersionNumber) -> bool:
        return self.required_version.is_before_or_equal_to(version)
