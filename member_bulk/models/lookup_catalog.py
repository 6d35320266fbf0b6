from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""LookupCatalog: closed-vocabulary reference data.

Pure data provider. Validation code reads the sets, the template renderer
reads the ordered lists, and the lookup endpoint serializes the whole thing.
"""

__all__ = [
    "LookupCatalog",
]


@dataclass(frozen=True)
class LookupCatalog:
    genders: tuple[str, ...]
    hobbies: tuple[str, ...]
    tech_interests: tuple[str, ...]
    cities_by_state: dict[str, tuple[str, ...]]  # state -> cities (config order)
    # Unused by validation, kept for the lookup contract
    roles: tuple[str, ...] = field(default_factory=tuple)
    departments: tuple[str, ...] = field(default_factory=tuple)
    statuses: tuple[str, ...] = field(default_factory=tuple)

    @property
    def states(self) -> tuple[str, ...]:
        return tuple(self.cities_by_state.keys())

    @property
    def cities(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for cities in self.cities_by_state.values():
            for city in cities:
                seen.setdefault(city, None)
        return tuple(seen)

    def has_state(self, state: str) -> bool:
        return state in self.cities_by_state

    def city_in_state(self, city: str, state: str) -> bool:
        return city in self.cities_by_state.get(state, ())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LookupCatalog:
        """Build a catalog from the parsed (already schema-validated) YAML asset."""
        return cls(
            genders=tuple(data["genders"]),
            hobbies=tuple(data["hobbies"]),
            tech_interests=tuple(data["tech_interests"]),
            cities_by_state={
                str(state): tuple(cities) for state, cities in data["cities_by_state"].items()
            },
            roles=tuple(data.get("roles", [])),
            departments=tuple(data.get("departments", [])),
            statuses=tuple(data.get("statuses", [])),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the lookup endpoint's JSON shape."""
        return {
            "genders": list(self.genders),
            "hobbies": list(self.hobbies),
            "techInterests": list(self.tech_interests),
            "states": list(self.states),
            "cities": list(self.cities),
            "citiesByState": {state: list(cities) for state, cities in self.cities_by_state.items()},
            "roles": list(self.roles),
            "departments": list(self.departments),
            "statuses": list(self.statuses),
        }
