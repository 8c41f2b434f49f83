"""Hand-off formats for patch report rows."""

import csv
import json
from collections import Counter
from typing import Any, Dict, List, Sequence

from tabulate import tabulate

from common.util import utcnow

from .patch_status import ReportRow, ScanResult

CSV_COLUMNS = [
    ('device_name', 'Device'),
    ('org_name', 'Customer'),
    ('sub_unit_name', 'Site'),
    ('state', 'Patch State'),
    ('status_message', 'Status'),
    ('threshold_status', 'Threshold'),
    ('last_checked', 'Last Checked'),
    ('device_id', 'Device ID'),
]


def row_to_dict(row: ReportRow) -> Dict[str, Any]:
    """Flatten a row to JSON/CSV friendly values."""
    return {
        'device_name': row.device_name,
        'org_name': row.org_name,
        'sub_unit_name': row.sub_unit_name,
        'state': row.state,
        'status_message': row.status_message,
        'threshold_status': row.threshold_status,
        'last_checked': row.last_checked.isoformat() if row.last_checked else None,
        'device_id': row.device_id,
    }


def write_csv(rows: Sequence[ReportRow], path: str) -> int:
    """
    Write rows to a CSV file with a header line.

    Returns:
        int: Number of data rows written
    """
    with open(path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow([title for _, title in CSV_COLUMNS])
        for row in rows:
            values = row_to_dict(row)
            writer.writerow(['' if values[key] is None else values[key] for key, _ in CSV_COLUMNS])
    return len(rows)


def result_to_json(result: ScanResult) -> str:
    """Serialize a scan result, rows in report order."""
    return json.dumps({
        'generated_at': utcnow().isoformat(),
        'devices_scanned': result.devices_scanned,
        'row_count': len(result.rows),
        'warnings': result.warnings,
        'rows': [row_to_dict(row) for row in result.rows],
    }, indent=2)


def format_rows(rows: Sequence[ReportRow]) -> str:
    """Render rows as a plain console table."""
    table: List[List[Any]] = []
    for row in rows:
        values = row_to_dict(row)
        table.append(['' if values[key] is None else values[key] for key, _ in CSV_COLUMNS])
    return tabulate(table, headers=[title for _, title in CSV_COLUMNS], tablefmt='simple')


def format_summary(result: ScanResult) -> str:
    """Render per-state row counts and the number of devices scanned."""
    counts = Counter(row.state for row in result.rows)
    table = [[state, count] for state, count in sorted(counts.items())]
    table.append(['Devices scanned', result.devices_scanned])
    return tabulate(table, headers=['Patch State', 'Count'], tablefmt='simple')
