"""Windows patch status aggregation across devices."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple, Union

from common.logging import get_logger, log_context

from .api import NCentralAPI, RequestFailedError
from .mapping import (
    Device,
    ServiceState,
    detail_entry_key,
    detail_entry_value,
    normalize_service_state,
    task_detail_entries,
)

# Monitored services whose module name contains one of these are patch services
PATCH_CATEGORY_MARKERS = ('patch status', 'patch management')

# Service states that are not patch issues
HEALTHY_STATES = ('Normal', 'Disconnected')

STATUS_DETAIL_KEY = 'pme_status'
THRESHOLD_DETAIL_KEY = 'pme_threshold_status'

NORMAL_STATE = 'Normal'
NOT_APPLICABLE = 'N/A'
UNKNOWN = 'Unknown'

PROGRESS_INTERVAL = 25


class StatusFilter(Enum):
    """Which service states to keep in the report"""
    ALL = 'All'
    FAILED = 'Failed'
    WARNING = 'Warning'


@dataclass(frozen=True)
class ReportRow:
    """One line of the patch report"""
    device_name: str
    org_name: str
    sub_unit_name: str
    state: str
    status_message: str
    threshold_status: str
    last_checked: Optional[datetime]
    device_id: int


@dataclass
class ScanResult:
    """Rows produced by a scan plus scan-level summary data"""
    rows: List[ReportRow]
    devices_scanned: int
    warnings: List[str] = field(default_factory=list)


def is_patch_service(module_name: str) -> bool:
    """Case-insensitive check for the patch status/management service category."""
    name = module_name.lower()
    return any(marker in name for marker in PATCH_CATEGORY_MARKERS)


def is_degraded(state: str) -> bool:
    """Every state except the healthy ones, including unrecognized ones, is an issue."""
    return state not in HEALTHY_STATES


def extract_task_status(task: Any) -> Tuple[str, str]:
    """
    Pull the patch status message and threshold status out of a task record.

    Every detail entry is inspected, so with duplicate keys the last entry
    wins. Key comparison ignores case.

    Returns:
        tuple: (status_message, threshold_status). ("Unknown", "Unknown")
        when the task has no usable detail collection; "N/A" for a field
        whose detail entry is missing.
    """
    entries = task_detail_entries(task)
    if entries is None:
        return UNKNOWN, UNKNOWN

    status_message = NOT_APPLICABLE
    threshold_status = NOT_APPLICABLE
    for entry in entries:
        key = detail_entry_key(entry)
        if key == STATUS_DETAIL_KEY:
            status_message = detail_entry_value(entry) or NOT_APPLICABLE
        elif key == THRESHOLD_DETAIL_KEY:
            threshold_status = detail_entry_value(entry) or NOT_APPLICABLE
    return status_message, threshold_status


def filter_rows(
    rows: Sequence[ReportRow],
    mode: Union[StatusFilter, str] = StatusFilter.ALL,
) -> Sequence[ReportRow]:
    """
    Keep only rows whose state equals the requested status exactly.

    StatusFilter.ALL returns the input unchanged.
    """
    mode = StatusFilter(mode)
    if mode is StatusFilter.ALL:
        return rows
    return [row for row in rows if row.state == mode.value]


class PatchStatusAggregator:
    """
    Collect patch issues for a list of devices.

    Devices are processed one at a time. For each device the monitored
    service states are fetched, narrowed to patch services, and every
    degraded one is resolved to a human readable status through its task
    detail record.
    """

    def __init__(self, api: NCentralAPI, include_healthy: bool = False):
        """
        Args:
            api: Client used for every API call
            include_healthy: Emit one "Normal" row for devices without issues
        """
        self.api = api
        self.include_healthy = include_healthy
        self.logger = get_logger(__name__)

    def scan(self, devices: Sequence[Device]) -> ScanResult:
        """
        Scan devices in order and collect their report rows.

        Only UnauthorizedError and RetriesExhaustedError end the scan; other
        request failures become warnings on the result.

        Raises:
            ScanCancelled: when the API client's cancel event is set
        """
        rows: List[ReportRow] = []
        processed = 0

        self.logger.info(f"Scanning patch status for {len(devices)} devices")

        for device in devices:
            self.api.check_cancelled()

            device_rows = self.collect_device(device)
            rows.extend(device_rows)
            processed += 1

            if device_rows:
                self.logger.debug(
                    "Device patch rows collected",
                    **log_context(device_id=device.device_id, device_name=device.name, rows=len(device_rows))
                )

            if processed % PROGRESS_INTERVAL == 0:
                self.logger.info(f"Progress: {processed}/{len(devices)} devices scanned, {len(rows)} rows")

        self.logger.info(f"Scan completed. Devices: {processed}, rows: {len(rows)}")
        return ScanResult(rows=rows, devices_scanned=processed, warnings=list(self.api.warnings))

    def _warn(self, message: str) -> None:
        self.logger.warning(message)
        self.api.warnings.append(message)

    def collect_device(self, device: Device) -> List[ReportRow]:
        """
        Report rows for a single device, in service enumeration order.

        A failed service status request is recorded as a warning and the
        device contributes no rows.
        """
        try:
            raw_services = self.api.get_service_states(device.device_id)
        except RequestFailedError as e:
            self._warn(f"Could not fetch services of device {device.name}: {e}")
            return []

        services = [normalize_service_state(raw) for raw in raw_services]
        if not services:
            return self._healthy_rows(device)

        patch_services = [s for s in services if is_patch_service(s.module_name)]
        if not patch_services:
            return self._healthy_rows(device)

        degraded = [s for s in patch_services if is_degraded(s.state)]
        if not degraded:
            return self._healthy_rows(device, _latest_check(patch_services))

        return [self._issue_row(device, service) for service in degraded]

    def _healthy_rows(self, device: Device, last_checked: Optional[datetime] = None) -> List[ReportRow]:
        if not self.include_healthy:
            return []
        return [ReportRow(
            device_name=device.name,
            org_name=device.org_name,
            sub_unit_name=device.sub_unit_name,
            state=NORMAL_STATE,
            status_message=NOT_APPLICABLE,
            threshold_status=NOT_APPLICABLE,
            last_checked=last_checked,
            device_id=device.device_id,
        )]

    def _issue_row(self, device: Device, service: ServiceState) -> ReportRow:
        status_message = NOT_APPLICABLE
        threshold_status = NOT_APPLICABLE

        if service.task_id:
            try:
                task = self.api.get_task(service.task_id)
            except RequestFailedError as e:
                self._warn(f"Could not fetch task {service.task_id} for device {device.name}: {e}")
            else:
                if task is None:
                    self._warn(
                        f"Task {service.task_id} not found for device {device.name}; keeping row without details"
                    )
                else:
                    status_message, threshold_status = extract_task_status(task)

        return ReportRow(
            device_name=device.name,
            org_name=device.org_name,
            sub_unit_name=device.sub_unit_name,
            state=service.state,
            status_message=status_message,
            threshold_status=threshold_status,
            last_checked=service.last_checked,
            device_id=device.device_id,
        )


def _latest_check(services: Sequence[ServiceState]) -> Optional[datetime]:
    checked = [s.last_checked for s in services if s.last_checked is not None]
    return max(checked) if checked else None
