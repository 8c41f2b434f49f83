"""
N-central Windows patch status collector
"""

from .api import (
    NCentralAPI,
    NCentralAPIError,
    RequestFailedError,
    RetriesExhaustedError,
    ScanCancelled,
    UnauthorizedError,
)
from .patch_status import PatchStatusAggregator, ReportRow, ScanResult, StatusFilter, filter_rows
from .scope import ScanScope, ScopeResolver

__all__ = [
    'NCentralAPI',
    'NCentralAPIError',
    'RequestFailedError',
    'RetriesExhaustedError',
    'ScanCancelled',
    'UnauthorizedError',
    'PatchStatusAggregator',
    'ReportRow',
    'ScanResult',
    'StatusFilter',
    'filter_rows',
    'ScanScope',
    'ScopeResolver',
]
