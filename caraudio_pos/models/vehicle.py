from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from caraudio_pos.utils.sizes import canonicalize


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Vehicle(_CamelModel):
    year: int
    make: str
    model: str
    trim: Optional[str] = None


class DinSizes(_CamelModel):
    single_din: bool = False
    double_din: bool = False


class SpeakerLocation(_CamelModel):
    role: str  # e.g. "Front Door", "Rear Deck"
    sizes: list[str] = []  # canonical sizes, authoring order

    @model_validator(mode="before")
    @classmethod
    def _legacy_keys(cls, data: Any) -> Any:
        # Older records use "location"/"name" and a single "size"
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("role"):
            data["role"] = data.get("location") or data.get("name") or "Other"
        if "sizes" not in data and "size" in data:
            data["sizes"] = data["size"]
        return data

    @field_validator("sizes", mode="before")
    @classmethod
    def _canonical_sizes(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, (str, int, float)):
            value = [value]
        sizes: list[str] = []
        for raw in value:
            size = canonicalize(raw)
            if size and size not in sizes:
                sizes.append(size)
        return sizes


class RadioParts(_CamelModel):
    """Install parts some hand-authored records carry next to the speakers."""

    dash_kit: Optional[str] = None
    harness: Optional[str] = None
    antenna_adapter: Optional[str] = None
    amp_bypass: Optional[str] = None

    def part_numbers(self) -> set[str]:
        return {
            p.strip()
            for p in (self.dash_kit, self.harness, self.antenna_adapter, self.amp_bypass)
            if p and p.strip()
        }


class VehicleFitmentRecord(_CamelModel):
    """Speaker openings for one vehicle year range.

    Accepts both authored shapes:
        locations: [{"role": "Front Door", "sizes": ["6.5"]}]
        speakers:  {"front": [{"location": "Front Door", "size": '6.5"'}], "rear": [...]}
    """

    year_start: int
    year_end: int
    make: str
    model: str
    trim: Optional[str] = None
    body: Optional[str] = None
    locations: list[SpeakerLocation] = Field(default_factory=list)
    radio: Optional[RadioParts] = None
    source: Optional[str] = None  # "manual", "vendor sheet", table name, ...

    @model_validator(mode="before")
    @classmethod
    def _speakers_to_locations(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("speakers"), dict):
            return data
        data = dict(data)
        locations = list(data.get("locations") or [])
        for group in ("front", "rear", "other"):
            for speaker in data["speakers"].get(group) or []:
                role = speaker.get("location") or group.title()
                locations.append({"role": role, "sizes": speaker.get("size")})
        data["locations"] = locations
        data.pop("speakers")
        return data

    @model_validator(mode="after")
    def _ordered_years(self) -> "VehicleFitmentRecord":
        if self.year_start > self.year_end:
            self.year_start, self.year_end = self.year_end, self.year_start
        return self

    def covers(self, year: int) -> bool:
        return self.year_start <= year <= self.year_end

    def all_sizes(self) -> set[str]:
        return {size for loc in self.locations for size in loc.sizes}
