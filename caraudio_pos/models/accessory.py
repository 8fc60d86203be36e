"""Vehicle -> install accessory part numbers, as merged from vendor sheets.

JSON shape (camelCase, part lists sorted on dump):

    {
      "dashKits":  {"singleDin": [...], "doubleDin": [...]},
      "harnesses": {"amplified":    {"intoCar": [], "intoRadio": [], "bypass": []},
                    "nonAmplified": {"intoCar": [], "intoRadio": [], "bypass": []}},
      "antennas":  {"adapter": [], "power": [], "fixed": [], "antenna": []},
      "maestro":   [],
      "scosche":   {...}
    }
"""

from typing import Annotated, Any, Iterator

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel

from caraudio_pos.utils.parts import is_sentinel, split_part_numbers

PartSet = Annotated[
    set[str],
    PlainSerializer(lambda parts: sorted(parts), return_type=list[str]),
]


class _AccessoryBlock(BaseModel):
    """Base for every nested block: camelCase aliases and set-union merge."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def _drop_sentinels(cls, value: Any, info: ValidationInfo) -> Any:
        # null means "nothing known"; a bare string is a raw vendor cell
        if value is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        if isinstance(value, str):
            return set(split_part_numbers(value))
        if isinstance(value, (list, set, tuple)):
            return {str(v).strip() for v in value if v and not is_sentinel(v)}
        return value

    def merge(self, other: "_AccessoryBlock") -> None:
        """Union every part set of ``other`` into this block, in place."""
        for name in type(self).model_fields:
            mine = getattr(self, name)
            theirs = getattr(other, name)
            if isinstance(mine, _AccessoryBlock):
                mine.merge(theirs)
            elif isinstance(mine, set):
                mine |= theirs

    def iter_parts(self) -> Iterator[str]:
        for name in type(self).model_fields:
            value = getattr(self, name)
            if isinstance(value, _AccessoryBlock):
                yield from value.iter_parts()
            elif isinstance(value, set):
                yield from value

    def is_empty(self) -> bool:
        return next(self.iter_parts(), None) is None


class DashKits(_AccessoryBlock):
    single_din: PartSet = Field(default_factory=set)
    double_din: PartSet = Field(default_factory=set)


class HarnessRoles(_AccessoryBlock):
    into_car: PartSet = Field(default_factory=set)
    into_radio: PartSet = Field(default_factory=set)
    bypass: PartSet = Field(default_factory=set)


class Harnesses(_AccessoryBlock):
    amplified: HarnessRoles = Field(default_factory=HarnessRoles)
    non_amplified: HarnessRoles = Field(default_factory=HarnessRoles)


class Antennas(_AccessoryBlock):
    adapter: PartSet = Field(default_factory=set)
    power: PartSet = Field(default_factory=set)
    fixed: PartSet = Field(default_factory=set)
    antenna: PartSet = Field(default_factory=set)


# -----------------------------------------------------------------------------
# Scosche vendor block
# -----------------------------------------------------------------------------


class ScoscheHarnesses(_AccessoryBlock):
    wiring: PartSet = Field(default_factory=set)
    generic: PartSet = Field(default_factory=set)
    reverse: PartSet = Field(default_factory=set)
    usb_aux: PartSet = Field(default_factory=set)
    camera: PartSet = Field(default_factory=set)
    speaker: PartSet = Field(default_factory=set)


class ScoscheAntennas(_AccessoryBlock):
    adapter: PartSet = Field(default_factory=set)
    reverse: PartSet = Field(default_factory=set)


class ScoscheInterfaces(_AccessoryBlock):
    link_plus_premier: PartSet = Field(default_factory=set)
    link_swc: PartSet = Field(default_factory=set)


class ScoscheSpeaker(_AccessoryBlock):
    front_adapter: PartSet = Field(default_factory=set)
    rear_adapter: PartSet = Field(default_factory=set)


class ScoscheMeta(_AccessoryBlock):
    """Guide navigation text, not part numbers."""

    nav: PartSet = Field(default_factory=set)
    pages: PartSet = Field(default_factory=set)
    sections: PartSet = Field(default_factory=set)

    def iter_parts(self) -> Iterator[str]:
        return iter(())


class ScoscheBlock(_AccessoryBlock):
    dash_kits: DashKits = Field(default_factory=DashKits)
    harnesses: ScoscheHarnesses = Field(default_factory=ScoscheHarnesses)
    antennas: ScoscheAntennas = Field(default_factory=ScoscheAntennas)
    interfaces: ScoscheInterfaces = Field(default_factory=ScoscheInterfaces)
    speaker: ScoscheSpeaker = Field(default_factory=ScoscheSpeaker)
    oem_qi: PartSet = Field(default_factory=set)
    meta: ScoscheMeta = Field(default_factory=ScoscheMeta)


# -----------------------------------------------------------------------------
# Record
# -----------------------------------------------------------------------------


class VehicleAccessoryRecord(_AccessoryBlock):
    """Accessory part numbers for one vehicle key.

    Top-level ``dash_kits`` is the union the matcher reads; vendor blocks keep
    their own copy so the source of a part stays visible.
    """

    dash_kits: DashKits = Field(default_factory=DashKits)
    harnesses: Harnesses = Field(default_factory=Harnesses)
    antennas: Antennas = Field(default_factory=Antennas)
    maestro: PartSet = Field(default_factory=set)
    scosche: ScoscheBlock = Field(default_factory=ScoscheBlock)

    def all_part_numbers(self) -> set[str]:
        """Every part number in the record, top-level and vendor block."""
        return set(self.iter_parts())

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
