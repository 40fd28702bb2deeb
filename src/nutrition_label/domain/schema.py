"""Nutrition-facts schema definitions."""

from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, create_model


class Unit(StrEnum):
    """Units that may accompany a nutrient amount on a label."""

    GRAM = "g"
    MILLIGRAM = "mg"
    MICROGRAM = "mcg"
    KILOCALORIE = "kcal"
    KILOJOULE = "kJ"
    MILLILITRE = "ml"
    OUNCE = "oz"


class FieldKind(Enum):
    """How a field is represented in model output."""

    NUMBER = "number"
    QUANTITY = "quantity"


class SchemaVariant(StrEnum):
    """Selectable shapes of the nutrition schema."""

    LABELED = "labeled"
    MINIMAL = "minimal"


@dataclass(frozen=True)
class FieldSpec:
    """A single schema field."""

    name: str
    kind: FieldKind
    units: tuple[Unit, ...] = ()
    required: bool = False

    def to_json_schema(self) -> dict[str, object]:
        """Return the JSON Schema fragment for this field."""
        if self.kind is FieldKind.NUMBER:
            return {"type": "number"}
        return {
            "type": "object",
            "properties": {
                "value": {"type": "number"},
                "unit": {"type": "string", "enum": [unit.value for unit in self.units]},
            },
            "required": ["value", "unit"],
            "additionalProperties": False,
        }


class StructuredRecord(BaseModel):
    """Base class for records decoded from constrained model output."""

    model_config = ConfigDict(strict=True, frozen=True, extra="forbid")

    def to_payload(self) -> dict[str, object]:
        """Return the JSON-ready representation, omitting absent fields."""
        return self.model_dump(mode="json", exclude_none=True)


class Quantity(BaseModel):
    """An amount with its unit, as printed on the label."""

    model_config = ConfigDict(strict=True, frozen=True, extra="forbid")

    value: float
    unit: str


@dataclass(frozen=True)
class NutritionSchema:
    """Ordered, immutable set of fields describing a nutrition record."""

    version: int
    variant: SchemaVariant
    fields: tuple[FieldSpec, ...]

    def __post_init__(self) -> None:
        names = [spec.name for spec in self.fields]
        if len(set(names)) != len(names):
            raise ValueError("Schema field names must be unique")
        if not self.required_fields:
            raise ValueError("Schema must declare at least one required field")

    @property
    def field_names(self) -> tuple[str, ...]:
        """Names of all declared fields, in order."""
        return tuple(spec.name for spec in self.fields)

    @property
    def required_fields(self) -> tuple[str, ...]:
        """Names of required fields, in declaration order."""
        return tuple(spec.name for spec in self.fields if spec.required)

    def to_json_schema(self) -> dict[str, object]:
        """Return the JSON Schema document the generator is constrained to."""
        return {
            "type": "object",
            "properties": {spec.name: spec.to_json_schema() for spec in self.fields},
            "required": list(self.required_fields),
            "additionalProperties": False,
        }

    def record_model(self) -> type[StructuredRecord]:
        """Build the strict pydantic model used to decode model output."""
        definitions: dict[str, object] = {}
        for spec in self.fields:
            annotation = _field_annotation(spec)
            if spec.required:
                definitions[spec.name] = (annotation, ...)
            else:
                # Absent is allowed; an explicit null still fails validation.
                definitions[spec.name] = (annotation, Field(default=None))
        return create_model(  # type: ignore[call-overload]
            f"NutritionRecordV{self.version}",
            __base__=StructuredRecord,
            **definitions,
        )


def _field_annotation(spec: FieldSpec) -> object:
    if spec.kind is FieldKind.NUMBER:
        return float
    allowed = tuple(unit.value for unit in spec.units)
    return create_model(
        f"{spec.name[0].upper()}{spec.name[1:]}Quantity",
        __base__=Quantity,
        unit=(Literal[allowed], ...),
    )


_REQUIRED = frozenset({"calories", "totalFat", "carbohydrates", "protein"})

_FIELD_UNITS: tuple[tuple[str, tuple[Unit, ...]], ...] = (
    ("servingSize", (Unit.GRAM, Unit.MILLILITRE, Unit.OUNCE)),
    ("calories", (Unit.KILOCALORIE, Unit.KILOJOULE)),
    ("totalFat", (Unit.GRAM,)),
    ("carbohydrates", (Unit.GRAM,)),
    ("fiber", (Unit.GRAM,)),
    ("sugars", (Unit.GRAM,)),
    ("protein", (Unit.GRAM,)),
    ("cholesterol", (Unit.MILLIGRAM, Unit.GRAM)),
    ("sodium", (Unit.MILLIGRAM, Unit.GRAM)),
)

_VERSIONS = {SchemaVariant.MINIMAL: 1, SchemaVariant.LABELED: 2}


def build_schema(variant: SchemaVariant | str = SchemaVariant.LABELED) -> NutritionSchema:
    """Return the nutrition schema for the selected variant."""
    resolved = SchemaVariant(variant)
    kind = FieldKind.QUANTITY if resolved is SchemaVariant.LABELED else FieldKind.NUMBER
    fields = tuple(
        FieldSpec(
            name=name,
            kind=kind,
            units=units if kind is FieldKind.QUANTITY else (),
            required=name in _REQUIRED,
        )
        for name, units in _FIELD_UNITS
    )
    return NutritionSchema(version=_VERSIONS[resolved], variant=resolved, fields=fields)
