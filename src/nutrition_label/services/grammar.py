"""Schema compilation and strict decoding of constrained model output."""

import json
import logging
from dataclasses import dataclass, field

import pydantic
from llama_cpp.llama_grammar import json_schema_to_gbnf

from nutrition_label.domain.schema import NutritionSchema, StructuredRecord
from nutrition_label.errors import DecodeError, DecodeReason

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConstraintArtifact:
    """Compiled grammar restricting generation to schema-valid JSON."""

    schema_version: int
    json_schema_text: str
    grammar: str


@dataclass(frozen=True)
class SchemaGrammar:
    """Pairs a compiled constraint artifact with its decoder.

    The generator is restricted token-by-token to ``artifact.grammar``, so a
    well-formed artifact can only yield schema-valid JSON. ``decode`` still
    validates strictly and never repairs or coerces: a failure here means the
    artifact and the decoder disagree.
    """

    schema: NutritionSchema
    artifact: ConstraintArtifact
    record_model: type[StructuredRecord] = field(repr=False)

    @classmethod
    def compile(cls, schema: NutritionSchema) -> "SchemaGrammar":
        """Compile the schema into a constraint artifact and decoder."""
        json_schema_text = json.dumps(schema.to_json_schema())
        artifact = ConstraintArtifact(
            schema_version=schema.version,
            json_schema_text=json_schema_text,
            grammar=json_schema_to_gbnf(
                json_schema_text, prop_order=list(schema.field_names)
            ),
        )
        return cls(schema=schema, artifact=artifact, record_model=schema.record_model())

    def decode(self, raw_output: str) -> StructuredRecord:
        """Decode raw model output into a record or raise ``DecodeError``."""
        try:
            return self.record_model.model_validate_json(raw_output)
        except pydantic.ValidationError as exc:
            errors = exc.errors(include_url=False)
            reason = _decode_reason(errors)
            if reason is DecodeReason.INVALID_JSON:
                _logger.error(
                    "Constrained output is not valid JSON (schema v%s)",
                    self.schema.version,
                )
            raise DecodeError(reason, _summarize(errors)) from exc


def _decode_reason(errors: list[dict[str, object]]) -> DecodeReason:
    error_types = {str(error.get("type")) for error in errors}
    if "json_invalid" in error_types:
        return DecodeReason.INVALID_JSON
    if "missing" in error_types:
        return DecodeReason.MISSING_REQUIRED_FIELD
    return DecodeReason.TYPE_MISMATCH


def _summarize(errors: list[dict[str, object]]) -> str:
    parts = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ())) or "<root>"
        parts.append(f"{location} ({error.get('type')})")
    return ", ".join(parts)
