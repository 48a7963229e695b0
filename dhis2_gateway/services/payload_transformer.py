from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping

from dhis2_gateway.models.dhis2_mapping import Dhis2Mapping
from dhis2_gateway.schemas.aggregate import AggregateRequest, DataValue, DataValueSetPayload

Clock = Callable[[], datetime]


def coerce_value(value: Any) -> str:
    """
    Render a submitted value the way DHIS2 expects it.

    Strings pass through, booleans become ``true``/``false`` and numbers use
    their plain textual form. Objects with their own ``__str__`` are
    stringified. Anything else (None, lists, dicts) becomes an empty string.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        # 10.0 and 10 are the same number on the wire
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, int):
        return str(value)
    if value is None or isinstance(value, (list, tuple, dict, set)):
        return ""
    if type(value).__str__ is not object.__str__:
        return str(value)
    return ""


def convert_data_values(
    data_values: Dict[str, Any],
    mappings: Mapping[str, Dhis2Mapping],
) -> List[DataValue]:
    """Map submitted keys to DHIS2 data values; keys without a mapping are skipped."""
    converted = []
    for key, value in data_values.items():
        mapping = mappings.get(key)
        if mapping is None:
            continue
        converted.append(DataValue(
            dataElement=mapping.dataelement,
            value=coerce_value(value),
            categoryOptionCombo=mapping.category_option_combo,
        ))
    return converted


def to_dhis2_payload(
    request: AggregateRequest,
    mappings: Mapping[str, Dhis2Mapping],
    clock: Clock = datetime.utcnow,
) -> DataValueSetPayload:
    """Build the dataValueSets body for a request, stamped as completed today."""
    return DataValueSetPayload(
        dataSet=request.dataSet,
        period=request.period,
        orgUnit=request.orgUnit,
        completeDate=clock().strftime("%Y-%m-%d"),
        dataValues=convert_data_values(request.dataValues, mappings),
    )
