"""
Dynamic form schema for approval templates.

A template's form is an ordered list of field definitions. Each field type is
its own class carrying its own normalisation rule; ``validate_submission``
is a single dispatch over that list:

    errors, cleaned = validate_submission(template.schema, request_json["data"])

Stored shape (``FormSchema.to_dict``), also the accepted input shape:

    {
        "items": [
            {"id": "purpose", "label": "Purpose", "type": "text", "required": true},
            {"id": "amount", "label": "Amount", "type": "number", "min": 0},
            {"id": "category", "label": "Category", "type": "select",
             "options": [{"label": "Equipment", "value": "equipment"}]}
        ],
        "instructions": "...",
        "version": 1
    }

File fields hold an opaque storage reference obtained from the attachment
service beforehand; raw bytes and inline data URIs are refused.
"""

from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any, ClassVar, Mapping

from app.core.exceptions import ValidationError

_FIELD_ID_RE = re.compile(r"^[-_a-zA-Z0-9]+$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class FieldValueError(Exception):
    """A single submitted value does not fit its field definition."""


@dataclass(frozen=True)
class FieldOption:
    label: str
    value: str

    def to_dict(self) -> dict:
        return {"label": self.label, "value": self.value}


def _is_empty(value) -> bool:
    if value is None or value == "":
        return True
    if isinstance(value, list):
        return len(value) == 0
    return False


@dataclass(frozen=True)
class FieldDefinition(ABC):
    """Common attributes of every form field. Subclasses set ``type`` and ``normalize``."""

    id: str
    label: str
    required: bool = False
    placeholder: str | None = None
    help_text: str | None = None
    default_value: Any = None

    type: ClassVar[str] = ""

    @abstractmethod
    def normalize(self, raw: Any) -> Any:
        """Return the cleaned value for ``raw`` or raise FieldValueError."""

    def initial_value(self) -> Any:
        return self.default_value

    def to_dict(self) -> dict:
        result = {"id": self.id, "label": self.label, "type": self.type, "required": self.required}
        if self.placeholder is not None:
            result["placeholder"] = self.placeholder
        if self.help_text is not None:
            result["helpText"] = self.help_text
        if self.default_value is not None:
            result["defaultValue"] = self.default_value
        return result


@dataclass(frozen=True)
class TextField(FieldDefinition):
    type: ClassVar[str] = "text"

    def normalize(self, raw):
        if raw is None:
            return None
        if not isinstance(raw, str):
            raise FieldValueError(f"{self.label} must be text.")
        return raw.strip()


@dataclass(frozen=True)
class TextAreaField(TextField):
    type: ClassVar[str] = "textarea"


@dataclass(frozen=True)
class NumberField(FieldDefinition):
    min: float | None = None
    max: float | None = None

    type: ClassVar[str] = "number"

    def normalize(self, raw):
        if raw is None or raw == "":
            return None
        if isinstance(raw, bool):
            raise FieldValueError(f"{self.label} must be a number.")
        if isinstance(raw, (int, float)):
            number = float(raw)
        elif isinstance(raw, str):
            try:
                number = float(raw.strip())
            except ValueError:
                raise FieldValueError(f"{self.label} must be a number.") from None
        else:
            raise FieldValueError(f"{self.label} must be a number.")
        if not math.isfinite(number):
            raise FieldValueError(f"{self.label} must be a number.")
        if self.min is not None and number < self.min:
            raise FieldValueError(f"{self.label} must be at least {self.min:g}.")
        if self.max is not None and number > self.max:
            raise FieldValueError(f"{self.label} must be at most {self.max:g}.")
        return int(number) if number.is_integer() else number

    def to_dict(self) -> dict:
        result = super().to_dict()
        if self.min is not None:
            result["min"] = self.min
        if self.max is not None:
            result["max"] = self.max
        return result


@dataclass(frozen=True)
class DateField(FieldDefinition):
    type: ClassVar[str] = "date"

    def normalize(self, raw):
        if raw is None or raw == "":
            return None
        if not isinstance(raw, str):
            raise FieldValueError(f"{self.label} must be a date.")
        value = raw.strip()
        if not _DATE_RE.match(value):
            raise FieldValueError(f"{self.label} must use the YYYY-MM-DD format.")
        try:
            date.fromisoformat(value)
        except ValueError:
            raise FieldValueError(f"{self.label} is not a valid date.") from None
        return value


@dataclass(frozen=True)
class SelectField(FieldDefinition):
    options: tuple[FieldOption, ...] = ()

    type: ClassVar[str] = "select"

    def _check_option(self, value) -> str:
        if not isinstance(value, str):
            raise FieldValueError(f"{self.label} has an invalid value.")
        if value not in {option.value for option in self.options}:
            raise FieldValueError(f"{self.label} has an invalid choice.")
        return value

    def normalize(self, raw):
        if raw is None or raw == "":
            return None
        return self._check_option(raw)

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["options"] = [option.to_dict() for option in self.options]
        return result


@dataclass(frozen=True)
class MultiSelectField(SelectField):
    type: ClassVar[str] = "multiSelect"

    def normalize(self, raw):
        if raw is None:
            return []
        values = raw if isinstance(raw, list) else [raw]
        cleaned: list[str] = []
        for item in values:
            value = self._check_option(item)
            if value not in cleaned:
                cleaned.append(value)
        return cleaned

    def initial_value(self):
        return self.default_value if self.default_value is not None else []


@dataclass(frozen=True)
class CheckboxField(FieldDefinition):
    type: ClassVar[str] = "checkbox"

    _TRUE = ("true", "1")
    _FALSE = ("false", "0")

    def normalize(self, raw):
        if raw is None:
            return False
        if isinstance(raw, bool):
            return raw
        if raw in self._TRUE:
            return True
        if raw in self._FALSE:
            return False
        raise FieldValueError(f"{self.label} has an invalid value.")

    def initial_value(self):
        return self.default_value if self.default_value is not None else False


@dataclass(frozen=True)
class FileField(FieldDefinition):
    """Opaque reference returned by the attachment store, never file content."""

    type: ClassVar[str] = "file"

    def normalize(self, raw):
        if raw is None:
            return None
        if isinstance(raw, (bytes, bytearray, memoryview)):
            raise FieldValueError(f"{self.label} must be an uploaded file reference.")
        if not isinstance(raw, str):
            raise FieldValueError(f"{self.label} must be an uploaded file reference.")
        value = raw.strip()
        if not value:
            return None
        if value.lower().startswith("data:"):
            raise FieldValueError(f"{self.label} must be an uploaded file reference.")
        return value


FIELD_TYPES: dict[str, type[FieldDefinition]] = {
    cls.type: cls
    for cls in (
        TextField,
        TextAreaField,
        NumberField,
        DateField,
        SelectField,
        MultiSelectField,
        CheckboxField,
        FileField,
    )
}


@dataclass(frozen=True)
class FormSchema:
    items: tuple[FieldDefinition, ...]
    instructions: str | None = None
    version: int | None = None

    def to_dict(self) -> dict:
        result: dict = {"items": [item.to_dict() for item in self.items]}
        if self.instructions is not None:
            result["instructions"] = self.instructions
        if self.version is not None:
            result["version"] = self.version
        return result


# ── Parsing ──────────────────────────────────────────────────────────────────


def _parse_options(record: Mapping, index: int, field_type: str) -> tuple[FieldOption, ...]:
    raw_options = record.get("options")
    if not isinstance(raw_options, list) or not raw_options:
        raise ValidationError(f"fields.items[{index}] ({field_type}) needs at least one option.")
    options = []
    for option_index, option in enumerate(raw_options):
        if not isinstance(option, Mapping):
            raise ValidationError(f"fields.items[{index}].options[{option_index}] is invalid.")
        label, value = option.get("label"), option.get("value")
        if not isinstance(label, str) or not label.strip():
            raise ValidationError(f"fields.items[{index}].options[{option_index}] needs a label.")
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"fields.items[{index}].options[{option_index}] needs a value.")
        options.append(FieldOption(label=label.strip(), value=value.strip()))
    return tuple(options)


def _number_or_none(record: Mapping, key: str) -> float | None:
    value = record.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return value
    return None


def _parse_field(item: Any, index: int, seen_ids: set[str]) -> FieldDefinition:
    if not isinstance(item, Mapping):
        raise ValidationError(f"fields.items[{index}] is invalid.")

    raw_id = item.get("id")
    if not isinstance(raw_id, str) or not raw_id.strip():
        raise ValidationError(f"fields.items[{index}] needs an id.")
    field_id = raw_id.strip()
    if not _FIELD_ID_RE.match(field_id):
        raise ValidationError(
            f"fields.items[{index}] id may only contain letters, digits, '-' and '_'."
        )
    if field_id in seen_ids:
        raise ValidationError(f"fields.items id '{field_id}' is duplicated.")
    seen_ids.add(field_id)

    label = item.get("label")
    if not isinstance(label, str) or not label.strip():
        raise ValidationError(f"fields.items[{index}] needs a label.")

    field_type = item.get("type")
    cls = FIELD_TYPES.get(field_type.strip()) if isinstance(field_type, str) else None
    if cls is None:
        raise ValidationError(f"fields.items[{index}] type {field_type!r} is not supported.")

    kwargs: dict[str, Any] = {
        "id": field_id,
        "label": label.strip(),
        "required": item.get("required") is True,
        "placeholder": item.get("placeholder") if isinstance(item.get("placeholder"), str) else None,
        "help_text": item.get("helpText") if isinstance(item.get("helpText"), str) else None,
        "default_value": item.get("defaultValue"),
    }
    if issubclass(cls, SelectField):
        kwargs["options"] = _parse_options(item, index, cls.type)
    if cls is NumberField:
        kwargs["min"] = _number_or_none(item, "min")
        kwargs["max"] = _number_or_none(item, "max")
        if kwargs["min"] is not None and kwargs["max"] is not None and kwargs["min"] > kwargs["max"]:
            raise ValidationError(f"fields.items[{index}] min must not exceed max.")
    return cls(**kwargs)


def parse_form_schema(value: Any) -> FormSchema:
    """Parse and validate a template field schema.

    Raises:
        ValidationError: on the first structural problem found (missing id or
            label, unsupported type, select without options, duplicate id,
            empty schema).
    """
    if isinstance(value, FormSchema):
        return value
    if isinstance(value, list):
        value = {"items": value}
    if not isinstance(value, Mapping):
        raise ValidationError("fields must be an object.")
    raw_items = value.get("items")
    if not isinstance(raw_items, list):
        raise ValidationError("fields.items must be an array.")

    seen_ids: set[str] = set()
    items = tuple(_parse_field(item, index, seen_ids) for index, item in enumerate(raw_items))
    if not items:
        raise ValidationError("fields.items must define at least one field.")

    instructions = value.get("instructions")
    version = value.get("version")
    return FormSchema(
        items=items,
        instructions=instructions.strip() if isinstance(instructions, str) else None,
        version=version if isinstance(version, int) and not isinstance(version, bool) else None,
    )


# ── Submission ───────────────────────────────────────────────────────────────


def validate_submission(schema: FormSchema, raw_data: Any) -> tuple[list[str], dict]:
    """Validate a submitted payload against ``schema``.

    Every field is checked; all errors are returned together. Keys that are
    not declared in the schema are dropped.

    Returns:
        (errors, cleaned) — ``cleaned`` maps field id → normalised value.
    """
    if not isinstance(raw_data, Mapping):
        return ["Submission data must be an object."], {}

    errors: list[str] = []
    cleaned: dict = {}
    for definition in schema.items:
        try:
            value = definition.normalize(raw_data.get(definition.id))
        except FieldValueError as exc:
            errors.append(str(exc))
            continue
        cleaned[definition.id] = value
        if definition.required and _is_empty(value):
            errors.append(f"{definition.label} is required.")
    return errors, cleaned


def build_initial_values(schema: FormSchema) -> dict:
    """Default form values for a blank submission."""
    return {definition.id: definition.initial_value() for definition in schema.items}


DEFAULT_FORM_SCHEMA = parse_form_schema({
    "items": [
        {"id": "purpose", "label": "Purpose", "type": "text", "required": True,
         "placeholder": "e.g. reason for the equipment purchase"},
        {"id": "amount", "label": "Amount", "type": "number", "min": 0, "placeholder": "e.g. 10000"},
        {"id": "attachment", "label": "Attachment", "type": "file"},
        {"id": "neededBy", "label": "Needed by", "type": "date"},
        {"id": "details", "label": "Details", "type": "textarea",
         "placeholder": "Background or additional notes"},
    ],
})
