"""
Tests for the N-central request executor and collection pager
"""
import threading

import pytest
import requests

from collectors.ncentral.api import (
    NCentralAPI,
    RequestFailedError,
    RetriesExhaustedError,
    ScanCancelled,
    UnauthorizedError,
    is_retryable_status,
)
from tests.fakes import (
    BASE_URL,
    FakeNCentral,
    make_config,
    make_response,
    recording_sleep,
    sequence_session,
)


def make_api(session, **config_overrides):
    delays, sleep = recording_sleep()
    api = NCentralAPI(make_config(**config_overrides), session=session, sleep=sleep)
    return api, delays


class TestRequestExecutor:
    """Test status classification and retry policy"""

    def test_success_returns_payload(self):
        """Test 2xx responses return the decoded body"""
        session = sequence_session([make_response(200, {'data': [1, 2]})])
        api, delays = make_api(session)

        assert api.get('/customers') == {'data': [1, 2]}
        assert session.request.call_count == 1
        assert delays == []

    def test_bearer_token_header(self):
        """Test the access token is sent as a bearer credential"""
        session = sequence_session([])
        make_api(session, access_token='abc123')

        assert session.headers['Authorization'] == 'Bearer abc123'
        assert session.headers['Accept'] == 'application/json'

    def test_empty_body_returns_none(self):
        """Test a 204 without content decodes to None"""
        session = sequence_session([make_response(204)])
        api, _ = make_api(session)

        assert api.get('/customers') is None

    def test_not_found_returns_none(self):
        """Test 404 is an absent value, not an error"""
        session = sequence_session([make_response(404, {'message': 'Not Found'})])
        api, delays = make_api(session)

        assert api.get('/appliance-tasks/1') is None
        assert session.request.call_count == 1
        assert delays == []

    def test_unauthorized_is_not_retried(self):
        """Test 401 fails at once with guidance to refresh the token"""
        session = sequence_session([make_response(401), make_response(200, {})])
        api, delays = make_api(session)

        with pytest.raises(UnauthorizedError, match="Refresh NCENTRAL_ACCESS_TOKEN") as exc_info:
            api.get('/customers')

        assert exc_info.value.status_code == 401
        assert session.request.call_count == 1
        assert delays == []

    @pytest.mark.parametrize('status_code', [400, 403, 405, 409, 422])
    def test_other_client_errors_are_not_retried(self, status_code):
        """Test 4xx other than 401/404/429 fail immediately"""
        session = sequence_session([make_response(status_code), make_response(200, {})])
        api, delays = make_api(session)

        with pytest.raises(RequestFailedError) as exc_info:
            api.get('/customers')

        assert exc_info.value.status_code == status_code
        assert session.request.call_count == 1
        assert delays == []

    def test_transport_error_is_not_retried(self):
        """Test connection failures fail fast"""
        session = sequence_session([requests.exceptions.ConnectionError("connection reset")])
        api, delays = make_api(session)

        with pytest.raises(RequestFailedError, match="connection reset"):
            api.get('/customers')

        assert session.request.call_count == 1
        assert delays == []

    def test_invalid_json_fails(self):
        """Test a 2xx body that is not JSON is reported as a failure"""
        response = make_response(200)
        response._content = b'<html>maintenance</html>'
        session = sequence_session([response])
        api, _ = make_api(session)

        with pytest.raises(RequestFailedError, match="Invalid JSON"):
            api.get('/customers')

    @pytest.mark.parametrize('failures', [1, 2, 3, 4])
    def test_retryable_failures_then_success(self, failures):
        """Test back-off doubles from 1 second until the call succeeds"""
        statuses = [429, 500, 502, 503][:failures]
        responses = [make_response(s) for s in statuses] + [make_response(200, {'ok': True})]
        session = sequence_session(responses)
        api, delays = make_api(session)

        assert api.get('/customers') == {'ok': True}
        assert session.request.call_count == failures + 1
        assert delays == [2 ** i for i in range(failures)]
        assert sum(delays) == 2 ** failures - 1

    def test_retries_exhausted(self):
        """Test persistent retryable failures stop at the attempt cap"""
        session = sequence_session([make_response(503) for _ in range(10)])
        api, delays = make_api(session)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            api.get('/customers')

        assert session.request.call_count == 5
        assert delays == [1, 2, 4, 8]
        assert exc_info.value.attempts == 5
        assert exc_info.value.status_code == 503

    def test_retry_cap_is_configurable(self):
        """Test max_retries bounds the number of calls"""
        session = sequence_session([make_response(429) for _ in range(10)])
        api, delays = make_api(session, max_retries=3)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            api.get('/customers')

        assert session.request.call_count == 3
        assert delays == [1, 2]
        assert exc_info.value.status_code == 429

    def test_cancel_before_backoff(self):
        """Test a set cancel event stops the retry loop before sleeping"""
        session = sequence_session([make_response(503), make_response(200, {})])
        delays, sleep = recording_sleep()
        cancel_event = threading.Event()
        cancel_event.set()
        api = NCentralAPI(make_config(), session=session, sleep=sleep, cancel_event=cancel_event)

        with pytest.raises(ScanCancelled):
            api.get('/customers')

        assert session.request.call_count == 1
        assert delays == []

    def test_retryable_status_classification(self):
        """Test which statuses are retryable"""
        assert is_retryable_status(429) is True
        assert is_retryable_status(500) is True
        assert is_retryable_status(599) is True
        assert is_retryable_status(401) is False
        assert is_retryable_status(404) is False
        assert is_retryable_status(400) is False


class TestBuildUrl:
    """Test request URL construction"""

    def test_query_values_are_percent_encoded(self):
        """Test each query value is encoded on its own"""
        api, _ = make_api(sequence_session([]))

        url = api.build_url('/devices', {'filter': 'customerId in (1, 2)', 'pageSize': 5})

        assert url == f"{BASE_URL}/api/devices?filter=customerId%20in%20%281%2C%202%29&pageSize=5"

    def test_none_params_are_omitted(self):
        """Test unset parameters do not appear in the query"""
        api, _ = make_api(sequence_session([]))

        assert api.build_url('devices', {'filter': None}) == f"{BASE_URL}/api/devices"

    def test_trailing_slash_in_base_url(self):
        """Test the base URL is joined without doubled slashes"""
        api, _ = make_api(sequence_session([]), base_url=f"{BASE_URL}/")

        assert api.build_url('/customers') == f"{BASE_URL}/api/customers"


class TestCollectionPager:
    """Test paginated collection retrieval"""

    def test_envelope_total_stops_exactly(self):
        """Test N items with page size dividing N take N/P calls"""
        server = FakeNCentral()
        server.add('/customers', [{'customerId': i} for i in range(10)])
        api, _ = make_api(server)

        items = api.fetch_all('/customers', page_size=5)

        assert [item['customerId'] for item in items] == list(range(10))
        assert server.count('/customers') == 2
        assert [query['pageNumber'] for _, query in server.calls] == ['1', '2']
        assert all(query['pageSize'] == '5' for _, query in server.calls)

    def test_envelope_total_with_partial_last_page(self):
        """Test a short final page ends pagination"""
        server = FakeNCentral()
        server.add('/customers', [{'customerId': i} for i in range(12)])
        api, _ = make_api(server)

        items = api.fetch_all('/customers', page_size=5)

        assert len(items) == 12
        assert server.count('/customers') == 3

    def test_partial_page_without_total(self):
        """Test a page shorter than the page size is the last page"""
        server = FakeNCentral(include_totals=False)
        server.add('/customers', [{'customerId': i} for i in range(7)])
        api, _ = make_api(server)

        items = api.fetch_all('/customers', page_size=5)

        assert len(items) == 7
        assert server.count('/customers') == 2

    def test_plain_list_empty_page_stops(self):
        """Test without a total an empty page ends pagination"""
        items = [{'customerId': i} for i in range(10)]
        server = FakeNCentral()
        server.add('/customers', lambda query: items[
            (int(query['pageNumber']) - 1) * 5:int(query['pageNumber']) * 5
        ])
        api, _ = make_api(server)

        result = api.fetch_all('/customers', page_size=5)

        assert result == items
        assert server.count('/customers') == 3

    def test_runaway_endpoint_hits_page_cap(self):
        """Test a server that never ends stops at max_pages with a warning"""
        server = FakeNCentral()
        server.add('/customers', lambda query: [{'page': query['pageNumber']}] * 4)
        api, _ = make_api(server, max_pages=3)

        items = api.fetch_all('/customers', page_size=4)

        assert len(items) == 12
        assert server.count('/customers') == 3
        assert len(api.warnings) == 1
        assert '3 pages' in api.warnings[0]

    def test_not_found_yields_empty(self):
        """Test a 404 collection is empty rather than an error"""
        server = FakeNCentral()
        api, _ = make_api(server)

        assert api.fetch_all('/customers/9/sites') == []
        assert server.count('/customers/9/sites') == 1

    def test_scalar_response_is_one_item(self):
        """Test a single object response is wrapped as one item"""
        server = FakeNCentral()
        server.add('/devices/1/service-monitor-status', {'moduleName': 'Patch Status v2'})
        api, _ = make_api(server)

        items = api.fetch_all('/devices/1/service-monitor-status')

        assert items == [{'moduleName': 'Patch Status v2'}]
        assert server.count('/devices/1/service-monitor-status') == 1

    def test_extra_params_sent_on_every_page(self):
        """Test caller query parameters accompany the paging cursor"""
        server = FakeNCentral()
        server.add('/devices', [{'deviceId': i} for i in range(6)])
        api, _ = make_api(server)

        api.fetch_all('/devices', params={'filter': 'customerId in (1)'}, page_size=3)

        assert [query['filter'] for _, query in server.calls] == ['customerId in (1)'] * 2

    def test_default_page_size_from_config(self):
        """Test the configured page size is used when none is given"""
        server = FakeNCentral()
        server.add('/customers', [])
        api, _ = make_api(server, page_size=250)

        assert api.fetch_all('/customers') == []
        assert server.calls[0][1]['pageSize'] == '250'
