"""
Validated request structs for the document workflow.

Blueprints turn the JSON body into one of these with ``from_payload``;
every field problem is collected and raised as a single ``ValidationError``
before the workflow touches the database.
"""

from dataclasses import dataclass
from datetime import date

from sigedoc.core.exceptions import ValidationError
from sigedoc.models.document import PRIORITIES
from sigedoc.utils.helpers import parse_date

ORIGINS = ("EXTERNO", "INTERNO")
MAX_TEXT = 5000


def _text(payload, key, errors, *, required=False, max_len=MAX_TEXT):
    value = payload.get(key)
    if value is None:
        value = ""
    if not isinstance(value, str):
        errors[key] = "must be a string"
        return ""
    value = value.strip()
    if required and not value:
        errors[key] = "is required"
    elif len(value) > max_len:
        errors[key] = f"must be at most {max_len} characters"
    return value


def _optional_int(payload, key, errors):
    value = payload.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        errors[key] = "must be an integer"
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        errors[key] = "must be an integer"
        return None


def _require_mapping(payload):
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


@dataclass(frozen=True)
class ReceiveDocumentRequest:
    registration_number: str
    office_number: str
    origin: str
    document_date: date | None = None
    document_type: str = "OFICIO"
    procedencia: str = ""
    content: str = ""
    observations: str = ""
    priority: str = "NORMAL"
    initial_area_id: int | None = None

    @classmethod
    def from_payload(cls, payload):
        payload = _require_mapping(payload)
        errors = {}
        registration_number = _text(payload, "registration_number", errors, required=True, max_len=50)
        office_number = _text(payload, "office_number", errors, required=True, max_len=100)
        origin = _text(payload, "origin", errors, required=True, max_len=60).upper()
        if origin and "origin" not in errors and origin not in ORIGINS:
            errors["origin"] = f"must be one of {list(ORIGINS)}"

        document_date = None
        if payload.get("document_date"):
            document_date = parse_date(payload.get("document_date"))
            if document_date is None:
                errors["document_date"] = "invalid date, use YYYY-MM-DD"

        priority = (_text(payload, "priority", errors, max_len=20) or "NORMAL").upper()
        if priority not in PRIORITIES:
            errors["priority"] = f"must be one of {list(PRIORITIES)}"

        req = cls(
            registration_number=registration_number,
            office_number=office_number,
            origin=origin,
            document_date=document_date,
            document_type=(_text(payload, "document_type", errors, max_len=60) or "OFICIO").upper(),
            procedencia=_text(payload, "procedencia", errors, max_len=200),
            content=_text(payload, "content", errors),
            observations=_text(payload, "observations", errors),
            priority=priority,
            initial_area_id=_optional_int(payload, "initial_area_id", errors),
        )
        if errors:
            raise ValidationError("Invalid document data", errors)
        return req


@dataclass(frozen=True)
class DeriveRequest:
    destination_area_id: int
    observations: str = ""
    expected_version: int | None = None

    @classmethod
    def from_payload(cls, payload):
        payload = _require_mapping(payload)
        errors = {}
        destination = _optional_int(payload, "destination_area_id", errors)
        if destination is None and "destination_area_id" not in errors:
            errors["destination_area_id"] = "is required"
        observations = _text(payload, "observations", errors)
        expected_version = _optional_int(payload, "expected_version", errors)
        if errors:
            raise ValidationError("Invalid derivation data", errors)
        return cls(destination, observations, expected_version)


@dataclass(frozen=True)
class RejectRequest:
    reason: str

    @classmethod
    def from_payload(cls, payload):
        payload = _require_mapping(payload)
        errors = {}
        reason = _text(payload, "reason", errors, required=True)
        if errors:
            raise ValidationError("A rejection reason is required", errors)
        return cls(reason)


@dataclass(frozen=True)
class DocumentUpdateRequest:
    """Metadata edit; only the keys present in the payload are applied."""

    changes: dict
    expected_version: int | None = None

    EDITABLE = ("office_number", "document_type", "procedencia", "content", "observations", "priority", "document_date")

    @classmethod
    def from_payload(cls, payload):
        payload = _require_mapping(payload)
        errors = {}
        changes = {}
        for key in cls.EDITABLE:
            if key not in payload:
                continue
            if key == "document_date":
                parsed = parse_date(payload[key]) if payload[key] else None
                if payload[key] and parsed is None:
                    errors[key] = "invalid date, use YYYY-MM-DD"
                changes[key] = parsed
            elif key == "priority":
                value = _text(payload, key, errors, max_len=20).upper()
                if value not in PRIORITIES:
                    errors[key] = f"must be one of {list(PRIORITIES)}"
                changes[key] = value
            else:
                changes[key] = _text(payload, key, errors, required=(key == "office_number"))
        unknown = sorted(set(payload) - set(cls.EDITABLE) - {"expected_version"})
        for key in unknown:
            errors[key] = "cannot be modified"
        if not changes and not errors:
            errors["_"] = "no editable fields supplied"
        expected_version = _optional_int(payload, "expected_version", errors)
        if errors:
            raise ValidationError("Invalid document update", errors)
        return cls(changes, expected_version)
