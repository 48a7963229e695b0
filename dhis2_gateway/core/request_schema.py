from typing import Any, Dict, List

from jsonschema import Draft7Validator

AGGREGATE_REQUEST_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Aggregate submission",
    "type": "object",
    "required": ["orgUnit", "period", "dataSet", "dataValues"],
    "properties": {
        "orgUnit": {"type": "string", "minLength": 1},
        "orgUnitName": {"type": "string"},
        "period": {"type": "string", "minLength": 1},
        "dataSet": {"type": "string", "minLength": 1},
        # Free-form values; the transformer coerces what DHIS2 cannot take to ""
        "dataValues": {"type": "object"},
    },
}

_validator = Draft7Validator(AGGREGATE_REQUEST_SCHEMA)


def _describe(error) -> str:
    location = ".".join(str(p) for p in error.absolute_path)
    if error.validator == "required":
        return error.message
    if location:
        return f"{location}: {error.message}"
    return error.message


def validate_aggregate_request(document: Any) -> List[str]:
    """Return every schema violation of the document; an empty list means valid."""
    errors = sorted(_validator.iter_errors(document), key=lambda e: [str(p) for p in e.absolute_path])
    return [_describe(e) for e in errors]
