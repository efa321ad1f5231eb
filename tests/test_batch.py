import json
import math

import pytest
import pydicom
import responses

from dicomweb_bridge.batch import (
    BatchAccumulator,
    BatchSender,
    _get_sequence_size,
    generate_boundary,
)
from dicomweb_bridge.config import BatchLimits
from dicomweb_bridge.error import NotEnoughMemory, ProtocolError, StoreError
from dicomweb_bridge.multipart import decode_multipart_message
from dicomweb_bridge.negotiation import validate_inbound_framing
from dicomweb_bridge.status import dump_xml_dataset
from dicomweb_bridge.transport import DICOMwebTransport


_URL = 'http://stow.example.com/dicom-web'


def _create_response(n_referenced, n_failed=None, n_other=None):
    item = {'00081155': {'vr': 'UI', 'Value': ['1.2.3']}}
    response = {'00081199': {'vr': 'SQ', 'Value': [item] * n_referenced}}
    if n_failed is not None:
        response['00081198'] = {'vr': 'SQ', 'Value': [item] * n_failed}
    if n_other is not None:
        response['0008119A'] = {'vr': 'SQ', 'Value': [item] * n_other}
    return response


class StowServerMock:

    '''Callback answering each STOW-RS request with all parts accepted.'''

    def __init__(self):
        self.part_counts = []
        self.requests = []

    def __call__(self, request):
        framing = validate_inbound_framing(request.headers['Content-Type'])
        parts = decode_multipart_message(request.body, framing.boundary)
        self.part_counts.append(len(parts))
        self.requests.append(request)
        body = json.dumps(_create_response(len(parts)))
        return (200, {'Content-Type': 'application/dicom+json'}, body)


@pytest.fixture
def stow_transport():
    transport = DICOMwebTransport(_URL)
    transport.set_http_retry_params(retry=False)
    return transport


@pytest.fixture
def populated_store(store):
    for i in range(7):
        store.add_instance(f'i{i}', bytes([i]) * (100 + i))
    return store


def test_generate_boundary():
    assert generate_boundary(lambda: 'abc') == 'abc'
    assert len(generate_boundary()) == 36


def test_generate_boundary_out_of_memory():
    def generator():
        raise MemoryError()

    with pytest.raises(NotEnoughMemory):
        generate_boundary(generator)


def test_accumulator():
    accumulator = BatchAccumulator('xyz')
    accumulator.append(b'12345')
    accumulator.append(b'678')
    assert accumulator.instance_count == 2
    body = accumulator.close()
    assert body.endswith(b'\r\n--xyz--\r\n')
    assert accumulator.size == len(body) - len(b'\r\n--xyz--\r\n')
    parts = decode_multipart_message(body, 'xyz')
    assert [p.payload for p in parts] == [b'12345', b'678']
    assert all(p.content_type == 'application/dicom' for p in parts)
    accumulator.reset()
    assert accumulator.instance_count == 0
    assert accumulator.size == 0
    assert accumulator.boundary == 'xyz'


@pytest.mark.parametrize('max_instances', [1, 2, 3, 7, 10])
@responses.activate
def test_flush_by_instance_count(populated_store, stow_transport,
                                 max_instances):
    mock = StowServerMock()
    responses.add_callback(responses.POST, f'{_URL}/studies', callback=mock)
    sender = BatchSender(
        populated_store,
        stow_transport,
        BatchLimits(max_instances=max_instances, max_bytes=0),
        boundary='boundary'
    )
    for i in range(7):
        sender.add(f'i{i}')
    sender.finish()
    assert len(mock.part_counts) == math.ceil(7 / max_instances)
    assert sender.sent_counts == mock.part_counts
    assert sum(sender.sent_counts) == 7
    assert sender.pending_count == 0


@responses.activate
def test_flush_by_size(populated_store, stow_transport):
    mock = StowServerMock()
    responses.add_callback(responses.POST, f'{_URL}/studies', callback=mock)
    sender = BatchSender(
        populated_store,
        stow_transport,
        BatchLimits(max_instances=0, max_bytes=250),
        boundary='boundary'
    )
    for i in range(7):
        sender.add(f'i{i}')
    sender.finish()
    # Each part exceeds 100 bytes, hence every second part crosses the limit
    assert mock.part_counts == [2, 2, 2, 1]
    assert sum(sender.sent_counts) == 7


@responses.activate
def test_no_limits_sends_single_request(populated_store, stow_transport):
    mock = StowServerMock()
    responses.add_callback(responses.POST, f'{_URL}/studies', callback=mock)
    sender = BatchSender(
        populated_store, stow_transport, BatchLimits(0, 0)
    )
    for i in range(7):
        sender.add(f'i{i}')
    assert mock.part_counts == []
    sender.finish()
    assert mock.part_counts == [7]


@responses.activate
def test_finish_without_instances(store, stow_transport):
    sender = BatchSender(store, stow_transport)
    sender.finish()
    assert len(responses.calls) == 0
    assert sender.sent_counts == []


@responses.activate
def test_boundary_shared_by_all_requests(populated_store, stow_transport):
    mock = StowServerMock()
    responses.add_callback(responses.POST, f'{_URL}/studies', callback=mock)
    sender = BatchSender(
        populated_store, stow_transport, BatchLimits(max_instances=3)
    )
    for i in range(7):
        sender.add(f'i{i}')
    sender.finish()
    content_types = {r.headers['Content-Type'] for r in mock.requests}
    assert content_types == {
        'multipart/related; type="application/dicom"; '
        f'boundary={sender.boundary}'
    }
    for request in mock.requests:
        assert request.headers['Accept'] == 'application/dicom+json'


@responses.activate
def test_caller_headers_and_params(populated_store, stow_transport):
    mock = StowServerMock()
    responses.add_callback(responses.POST, f'{_URL}/studies', callback=mock)
    sender = BatchSender(
        populated_store,
        stow_transport,
        headers={'accept': 'application/json', 'X-Token': 'secret'},
        params={'foo': 'bar'}
    )
    sender.add('i0')
    sender.finish()
    request = mock.requests[0]
    assert request.headers['Accept'] == 'application/json'
    assert request.headers['X-Token'] == 'secret'
    assert request.url == f'{_URL}/studies?foo=bar'


@responses.activate
def test_missing_instance_is_skipped(populated_store, stow_transport):
    mock = StowServerMock()
    responses.add_callback(responses.POST, f'{_URL}/studies', callback=mock)
    sender = BatchSender(populated_store, stow_transport)
    sender.add('i0')
    sender.add('missing')
    sender.finish()
    assert mock.part_counts == [1]


def test_store_failure_propagates(store, stow_transport):
    def get_instance_file(instance_id):
        raise StoreError('Object store is down')

    store.get_instance_file = get_instance_file
    sender = BatchSender(store, stow_transport)
    with pytest.raises(StoreError):
        sender.add('i0')


@responses.activate
def test_partially_accepted(populated_store, stow_transport):
    responses.add(
        responses.POST,
        f'{_URL}/studies',
        json=_create_response(1),
        content_type='application/dicom+json'
    )
    sender = BatchSender(populated_store, stow_transport)
    sender.add('i0')
    sender.add('i1')
    with pytest.raises(ProtocolError, match='accepted only 1 of 2'):
        sender.finish()


@pytest.mark.parametrize('response', [
    _create_response(1, n_failed=1),
    _create_response(1, n_other=2),
    {},
    [],
    {'00081199': []},
    {'00081199': {'vr': 'SQ', 'Value': {}}},
])
@responses.activate
def test_rejected_responses(populated_store, stow_transport, response):
    responses.add(
        responses.POST,
        f'{_URL}/studies',
        json=response,
        content_type='application/dicom+json'
    )
    sender = BatchSender(populated_store, stow_transport)
    sender.add('i0')
    with pytest.raises(ProtocolError):
        sender.finish()


@responses.activate
def test_response_without_json(populated_store, stow_transport):
    responses.add(responses.POST, f'{_URL}/studies', body=b'<html/>')
    sender = BatchSender(populated_store, stow_transport)
    sender.add('i0')
    with pytest.raises(ProtocolError):
        sender.finish()


@responses.activate
def test_accepted_with_empty_failure_sequences(populated_store,
                                               stow_transport):
    response = _create_response(1)
    response['00081198'] = {'vr': 'SQ'}
    response['0008119a'] = {'vr': 'SQ', 'Value': []}
    responses.add(
        responses.POST,
        f'{_URL}/studies',
        json=response,
        content_type='application/dicom+json'
    )
    sender = BatchSender(populated_store, stow_transport)
    sender.add('i0')
    sender.finish()
    assert sender.sent_counts == [1]


@responses.activate
def test_xml_response(populated_store, stow_transport):
    items = []
    for uid in ('1.2.3', '1.2.4'):
        item = pydicom.Dataset()
        item.ReferencedSOPInstanceUID = uid
        items.append(item)
    dataset = pydicom.Dataset()
    dataset.ReferencedSOPSequence = items
    dataset.FailedSOPSequence = []
    responses.add(
        responses.POST,
        f'{_URL}/studies',
        body=dump_xml_dataset(dataset),
        content_type='application/dicom+xml'
    )
    sender = BatchSender(populated_store, stow_transport)
    sender.add('i0')
    sender.add('i1')
    sender.finish()
    assert sender.sent_counts == [2]


def test_get_sequence_size_lower_case_tag():
    response = {'0008119a': {'vr': 'SQ', 'Value': [{}, {}]}}
    assert _get_sequence_size(response, '0008119A', False, _URL) == 2


def test_get_sequence_size_missing():
    assert _get_sequence_size({}, '00081198', False, _URL) is None
    with pytest.raises(ProtocolError):
        _get_sequence_size({}, '00081199', True, _URL)


def test_get_sequence_size_without_value():
    response = {'00081199': {'vr': 'SQ'}}
    assert _get_sequence_size(response, '00081199', True, _URL) == 0
