"""Resolve customer/site/device filters into the set of devices to scan."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from common.logging import get_logger

from .api import NCentralAPI, RequestFailedError
from .mapping import (
    ORG_FILTER_PARAM,
    ORG_NAME_FIELDS,
    SUB_UNIT_NAME_FIELDS,
    Device,
    Organization,
    normalize_device,
    normalize_organization,
    normalize_sub_unit,
    org_filter_expressions,
)


@dataclass(frozen=True)
class ScanScope:
    """User-supplied filters; ids take precedence over names at the same level."""
    org_name: Optional[str] = None
    org_id: Optional[int] = None
    sub_unit_name: Optional[str] = None
    sub_unit_id: Optional[int] = None
    device_name: Optional[str] = None


def name_matches(record: Dict[str, Any], needle: str, fields: Sequence[str]) -> bool:
    """
    Case-insensitive substring match against any of the candidate name fields.

    Upstream records are not uniform about which field carries the display
    name, so every candidate is checked.
    """
    needle = needle.lower()
    if not isinstance(record, dict):
        return False
    for field_name in fields:
        value = record.get(field_name)
        if value is not None and needle in str(value).lower():
            return True
    return False


class ScopeResolver:
    """Turn a ScanScope into concrete customer, site and device selections."""

    def __init__(self, api: NCentralAPI):
        self.api = api
        self.logger = get_logger(__name__)

    def _warn(self, message: str) -> None:
        self.logger.warning(message)
        self.api.warnings.append(message)

    def _fetch(self, what: str, fetch: Callable[..., List[Any]], *args: Any) -> List[Any]:
        """Run a collection fetch; a failed request is recorded and gives no records."""
        try:
            return fetch(*args)
        except RequestFailedError as e:
            self._warn(f"Could not fetch {what}: {e}")
            return []

    def list_organizations(self) -> List[Organization]:
        """All customers visible to the access token."""
        organizations = []
        for raw in self._fetch("customers", self.api.get_organizations):
            org = normalize_organization(raw)
            if org is not None:
                organizations.append(org)
        return organizations

    def resolve_organizations(
        self,
        org_name: Optional[str] = None,
        org_id: Optional[int] = None,
    ) -> Optional[List[int]]:
        """
        Resolve the customer filter.

        Returns:
            list: Matching customer ids, or None for "no customer filter"
        """
        if org_id is not None:
            return [org_id]
        if not org_name:
            return None

        matched = []
        for raw in self._fetch("customers", self.api.get_organizations):
            if not name_matches(raw, org_name, ORG_NAME_FIELDS):
                continue
            org = normalize_organization(raw)
            if org is not None:
                matched.append(org.org_id)

        if not matched:
            self._warn(f"No customer matches '{org_name}'; scanning all customers")
            return None

        self.logger.info(f"Customer filter '{org_name}' matched {len(matched)} customers")
        return matched

    def resolve_sub_units(
        self,
        org_ids: Optional[Iterable[int]] = None,
        sub_unit_name: Optional[str] = None,
        sub_unit_id: Optional[int] = None,
    ) -> Optional[Set[int]]:
        """
        Resolve the site filter.

        Filtering by site name without a customer filter queries the sites of
        every customer, one customer at a time.

        Returns:
            set: Matching site ids, or None for "no site filter"
        """
        if sub_unit_id is not None:
            return {sub_unit_id}
        if not sub_unit_name:
            return None

        if org_ids is None:
            org_ids = [org.org_id for org in self.list_organizations()]

        matched: Set[int] = set()
        for org_id in org_ids:
            for raw in self._fetch(f"sites of customer {org_id}", self.api.get_sub_units, org_id):
                if not name_matches(raw, sub_unit_name, SUB_UNIT_NAME_FIELDS):
                    continue
                sub_unit = normalize_sub_unit(raw, org_id)
                if sub_unit is not None:
                    matched.add(sub_unit.sub_unit_id)

        if not matched:
            self._warn(f"No site matches '{sub_unit_name}'; scanning all sites")
            return None

        self.logger.info(f"Site filter '{sub_unit_name}' matched {len(matched)} sites")
        return matched

    def list_devices(
        self,
        org_ids: Optional[Iterable[int]] = None,
        sub_unit_ids: Optional[Set[int]] = None,
        device_name: Optional[str] = None,
    ) -> List[Device]:
        """
        Enumerate devices in scope.

        The customer filter is applied server-side; the site and device name
        filters are applied to the returned records.
        """
        raw_devices: List[Any] = []
        if org_ids is not None:
            for expression in org_filter_expressions(org_ids):
                raw_devices.extend(self._fetch("devices", self.api.get_devices, {ORG_FILTER_PARAM: expression}))
        else:
            raw_devices = self._fetch("devices", self.api.get_devices)

        devices = []
        for raw in raw_devices:
            device = normalize_device(raw)
            if device is not None:
                devices.append(device)

        if sub_unit_ids is not None:
            devices = [d for d in devices if d.sub_unit_id in sub_unit_ids]

        if device_name:
            needle = device_name.lower()
            devices = [d for d in devices if needle in d.name.lower()]
            if not devices:
                self._warn(f"No device name contains '{device_name}'")

        self.logger.info(f"Resolved {len(devices)} devices in scope")
        return devices

    def resolve(self, scope: ScanScope) -> List[Device]:
        """Resolve a full ScanScope to the ordered list of devices to scan."""
        org_ids = self.resolve_organizations(scope.org_name, scope.org_id)
        sub_unit_ids = self.resolve_sub_units(org_ids, scope.sub_unit_name, scope.sub_unit_id)
        return self.list_devices(org_ids, sub_unit_ids, scope.device_name)
