"""N-central response normalization and mapping.

Field names of the upstream API live here and nowhere else. Every record
type gets exactly one normalization function that returns a fully-populated
dataclass before any filtering happens.
"""

from collections import abc
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from common.util import parse_timestamp

# Envelope fields used by paginated collection responses
ENVELOPE_ITEM_FIELDS = ('data', 'items')
ENVELOPE_TOTAL_FIELDS = ('totalItems', 'total', 'totalCount')

# Candidate fields, tried in priority order
ORG_ID_FIELDS = ('customerId', 'orgUnitId', 'id')
ORG_NAME_FIELDS = ('customerName', 'name')
SUB_UNIT_ID_FIELDS = ('siteId', 'orgUnitId', 'id')
SUB_UNIT_NAME_FIELDS = ('siteName', 'name')
DEVICE_ID_FIELDS = ('deviceId', 'id')
DEVICE_NAME_FIELDS = ('longName', 'deviceName', 'name')
DEVICE_ORG_ID_FIELDS = ('customerId', 'soId')
DEVICE_ORG_NAME_FIELDS = ('customerName', 'soName')
DEVICE_SUB_UNIT_ID_FIELDS = ('siteId',)
DEVICE_SUB_UNIT_NAME_FIELDS = ('siteName',)
SERVICE_MODULE_FIELDS = ('moduleName', 'serviceName', 'displayName')
SERVICE_STATE_FIELDS = ('stateStatus', 'status', 'state')
SERVICE_TASK_FIELDS = ('taskId', 'taskID')
SERVICE_CHECKED_FIELDS = ('lastUpdated', 'lastScanTime', 'lastChecked')
TASK_DETAIL_COLLECTION_FIELDS = ('details', 'detailList', 'taskDetails')
TASK_DETAIL_KEY_FIELDS = ('detailName', 'name', 'key')
TASK_DETAIL_VALUE_FIELDS = ('detailValue', 'value')

# Filter expression accepted by the devices endpoint
ORG_FILTER_PARAM = 'filter'
ORG_FILTER_BATCH_SIZE = 50


@dataclass(frozen=True)
class Organization:
    """Top-level customer"""
    org_id: int
    name: str


@dataclass(frozen=True)
class SubUnit:
    """Site belonging to one customer"""
    sub_unit_id: int
    name: str
    org_id: Optional[int]


@dataclass(frozen=True)
class Device:
    """Monitored device"""
    device_id: int
    name: str
    org_id: Optional[int]
    org_name: str
    sub_unit_id: Optional[int]
    sub_unit_name: str


@dataclass(frozen=True)
class ServiceState:
    """Current state of one monitored service on a device"""
    module_name: str
    state: str
    task_id: Optional[str]
    last_checked: Optional[datetime]


def first_field(record: Any, candidates: Sequence[str], default: Any = None) -> Any:
    """
    Return the first non-absent value among candidate fields.

    Args:
        record: Raw API record (non-dict records have no fields)
        candidates: Field names in priority order
        default: Value returned when no candidate is present

    Returns:
        The value of the first candidate that exists and is not None
    """
    if not isinstance(record, dict):
        return default
    for field_name in candidates:
        value = record.get(field_name)
        if value is not None:
            return value
    return default


def _to_int(value: Any) -> Optional[int]:
    """Convert an identifier to int, or None when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_str(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def unwrap_page(response: Any) -> Tuple[List[Any], Optional[int]]:
    """
    Extract the items of one page and the reported total, if any.

    An envelope is a dict carrying an item field or a total field; a null
    item field is an empty page. A list is used as-is; any other value is
    treated as a single item.

    Returns:
        tuple: (items, total) where total is None when not reported
    """
    if isinstance(response, dict):
        if any(key in response for key in ENVELOPE_ITEM_FIELDS + ENVELOPE_TOTAL_FIELDS):
            items = first_field(response, ENVELOPE_ITEM_FIELDS)
            total = _to_int(first_field(response, ENVELOPE_TOTAL_FIELDS))
            if items is None:
                return [], total
            if isinstance(items, list):
                return items, total
        return [response], None
    if isinstance(response, list):
        return response, None
    if isinstance(response, (str, bytes)):
        return [response], None
    if isinstance(response, abc.Iterable):
        return list(response), None
    return [response], None


def normalize_organization(raw: Dict[str, Any]) -> Optional[Organization]:
    """Normalize a raw customer record; records without an id are dropped."""
    org_id = _to_int(first_field(raw, ORG_ID_FIELDS))
    if org_id is None:
        return None
    return Organization(org_id=org_id, name=_to_str(first_field(raw, ORG_NAME_FIELDS)))


def normalize_sub_unit(raw: Dict[str, Any], org_id: Optional[int] = None) -> Optional[SubUnit]:
    """Normalize a raw site record; records without an id are dropped."""
    sub_unit_id = _to_int(first_field(raw, SUB_UNIT_ID_FIELDS))
    if sub_unit_id is None:
        return None
    parent_id = _to_int(first_field(raw, ('customerId', 'parentId')))
    return SubUnit(
        sub_unit_id=sub_unit_id,
        name=_to_str(first_field(raw, SUB_UNIT_NAME_FIELDS)),
        org_id=parent_id if parent_id is not None else org_id,
    )


def normalize_device(raw: Dict[str, Any]) -> Optional[Device]:
    """
    Normalize a raw device record.

    Args:
        raw: Raw device dictionary from the devices endpoint

    Returns:
        Device, or None when the record carries no numeric device id
    """
    device_id = _to_int(first_field(raw, DEVICE_ID_FIELDS))
    if device_id is None:
        return None
    return Device(
        device_id=device_id,
        name=_to_str(first_field(raw, DEVICE_NAME_FIELDS)),
        org_id=_to_int(first_field(raw, DEVICE_ORG_ID_FIELDS)),
        org_name=_to_str(first_field(raw, DEVICE_ORG_NAME_FIELDS)),
        sub_unit_id=_to_int(first_field(raw, DEVICE_SUB_UNIT_ID_FIELDS)),
        sub_unit_name=_to_str(first_field(raw, DEVICE_SUB_UNIT_NAME_FIELDS)),
    )


def normalize_service_state(raw: Dict[str, Any]) -> ServiceState:
    """Normalize a raw service-monitor-status record."""
    task_id = _to_str(first_field(raw, SERVICE_TASK_FIELDS))
    return ServiceState(
        module_name=_to_str(first_field(raw, SERVICE_MODULE_FIELDS)),
        state=_to_str(first_field(raw, SERVICE_STATE_FIELDS)),
        task_id=task_id or None,
        last_checked=parse_timestamp(first_field(raw, SERVICE_CHECKED_FIELDS)),
    )


def task_detail_entries(task: Any) -> Optional[List[Any]]:
    """
    Locate the detail-entry collection of a task record.

    Detail collections come either as a list of name/value entries or as a
    plain mapping of detail name to value; the mapping form is converted to
    entries.

    Returns:
        The entry list, or None when the collection is absent or malformed
    """
    details = first_field(task, TASK_DETAIL_COLLECTION_FIELDS)
    if isinstance(details, dict):
        return [
            {TASK_DETAIL_KEY_FIELDS[0]: name, TASK_DETAIL_VALUE_FIELDS[0]: value}
            for name, value in details.items()
        ]
    if not isinstance(details, list):
        return None
    return details


def detail_entry_key(entry: Any) -> str:
    """Name of one task detail entry, lower-cased."""
    return _to_str(first_field(entry, TASK_DETAIL_KEY_FIELDS)).lower()


def detail_entry_value(entry: Any) -> str:
    """Value of one task detail entry."""
    return _to_str(first_field(entry, TASK_DETAIL_VALUE_FIELDS))


def org_filter_expressions(org_ids: Iterable[int]) -> List[str]:
    """
    Build set-membership filter expressions for the devices endpoint.

    Ids are de-duplicated, sorted and split into batches so no single
    query string grows without bound.
    """
    unique_ids = sorted(set(org_ids))
    expressions = []
    for start in range(0, len(unique_ids), ORG_FILTER_BATCH_SIZE):
        batch = unique_ids[start:start + ORG_FILTER_BATCH_SIZE]
        expressions.append(f"customerId in ({', '.join(str(i) for i in batch)})")
    return expressions
