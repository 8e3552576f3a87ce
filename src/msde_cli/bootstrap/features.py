"""Optional capability groups of the developer stack.

Each feature brings up exactly one compose file on top of the base group.
Declaration order of the enum is the boot order.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

# Compose files, relative to <project>/docker
BASE_COMPOSE_FILE = "docker-compose-base.yml"
MAIN_COMPOSE_FILE = "docker-compose.yml"


class Feature(Enum):
    """Optional capability bundle."""

    METRICS = "metrics"
    OTEL = "otel"
    WEB3 = "web3"
    BOT = "bot"

    @property
    def rank(self) -> int:
        """Position in the fixed boot order."""
        return _ORDER.index(self)

    @property
    def compose_file(self) -> str:
        """Compose file that defines this feature's group."""
        return f"docker-compose-{self.value}.yml"

    def __lt__(self, other: Feature) -> bool:
        if not isinstance(other, Feature):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: str) -> Feature:
        """Parse a feature from its CLI name.

        Args:
            value: Feature name, case-insensitive

        Returns:
            Matching Feature

        Raises:
            ValueError: If the name is unknown
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(f.value for f in cls)
            raise ValueError(f"Unknown feature '{value}'. Valid features: {valid}") from None


_ORDER = list(Feature)


def sort_features(features: Iterable[Feature]) -> list[Feature]:
    """Deduplicate and sort features into boot order."""
    return sorted(set(features))

