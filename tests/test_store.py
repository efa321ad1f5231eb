import pytest
import requests
import responses

from dicomweb_bridge.config import ObjectStoreDescriptor
from dicomweb_bridge.error import StoreError
from dicomweb_bridge.protocol import ObjectStore, ResourceLevel
from dicomweb_bridge.store import RestObjectStore


_URL = 'http://orthanc.example.com:8042'


@pytest.fixture
def rest_store():
    return RestObjectStore(_URL)


def test_implements_protocol(rest_store):
    assert isinstance(rest_store, ObjectStore)


def test_from_descriptor():
    rest_store = RestObjectStore.from_descriptor(
        ObjectStoreDescriptor(_URL, 'orthanc', 'secret')
    )
    assert rest_store.base_url == _URL
    assert rest_store._session.auth == ('orthanc', 'secret')


@responses.activate
def test_get_instance_file(rest_store):
    responses.add(
        responses.GET, f'{_URL}/instances/abc/file', body=b'DICM'
    )
    assert rest_store.get_instance_file('abc') == b'DICM'


@responses.activate
def test_get_missing_instance_file(rest_store):
    responses.add(
        responses.GET, f'{_URL}/instances/abc/file', status=404
    )
    assert rest_store.get_instance_file('abc') is None


@responses.activate
def test_get_instance_file_failure(rest_store):
    responses.add(
        responses.GET, f'{_URL}/instances/abc/file', status=500
    )
    with pytest.raises(StoreError):
        rest_store.get_instance_file('abc')


@responses.activate
def test_unreachable_store(rest_store):
    responses.add(
        responses.GET,
        f'{_URL}/instances/abc/file',
        body=requests.exceptions.ConnectionError('refused')
    )
    with pytest.raises(StoreError, match='Cannot reach'):
        rest_store.get_instance_file('abc')


@responses.activate
def test_exists(rest_store):
    responses.add(responses.GET, f'{_URL}/series/s1', json={'ID': 's1'})
    responses.add(responses.GET, f'{_URL}/studies/s1', status=404)
    assert rest_store.exists(ResourceLevel.SERIES, 's1')
    assert not rest_store.exists(ResourceLevel.STUDY, 's1')


@responses.activate
def test_list_instances(rest_store):
    responses.add(
        responses.GET,
        f'{_URL}/patients/p1/instances',
        json=[{'ID': 'i1'}, {'ID': 'i2'}]
    )
    assert rest_store.list_instances(ResourceLevel.PATIENT, 'p1') == [
        {'ID': 'i1'}, {'ID': 'i2'}
    ]


def test_list_instances_of_instance(rest_store):
    assert rest_store.list_instances(ResourceLevel.INSTANCE, 'i1') == ['i1']


@responses.activate
def test_list_instances_not_array(rest_store):
    responses.add(
        responses.GET, f'{_URL}/studies/s1/instances', json={'ID': 'i1'}
    )
    with pytest.raises(StoreError):
        rest_store.list_instances(ResourceLevel.STUDY, 's1')


@responses.activate
def test_store_instance(rest_store):
    responses.add(
        responses.POST,
        f'{_URL}/instances',
        json={'ID': 'abc', 'Status': 'Success'}
    )
    assert rest_store.store_instance(b'DICM') == 'abc'
    request = responses.calls[0].request
    assert request.headers['Content-Type'] == 'application/dicom'
    assert request.body == b'DICM'


@pytest.mark.parametrize('status,body', [
    (400, '{}'),
    (200, 'not json'),
    (200, '{"Status": "Success"}'),
])
@responses.activate
def test_store_instance_failure(rest_store, status, body):
    responses.add(
        responses.POST, f'{_URL}/instances', status=status, body=body
    )
    with pytest.raises(StoreError):
        rest_store.store_instance(b'DICM')


@responses.activate
def test_lookup(rest_store):
    responses.add(
        responses.POST,
        f'{_URL}/tools/lookup',
        json=[
            {'Type': 'Study', 'ID': 'st1'},
            {'Type': 'Instance', 'ID': 'i1'},
        ]
    )
    assert rest_store.lookup(ResourceLevel.INSTANCE, '1.2.3') == 'i1'
    assert rest_store.lookup(ResourceLevel.STUDY, '1.2.3') == 'st1'
    assert rest_store.lookup(ResourceLevel.SERIES, '1.2.3') is None
    assert responses.calls[0].request.body == '1.2.3'


@responses.activate
def test_get_parent_tags(rest_store):
    responses.add(
        responses.GET,
        f'{_URL}/instances/i1/series',
        json={'ID': 'se1', 'MainDicomTags': {'SeriesInstanceUID': '1.2'}}
    )
    responses.add(responses.GET, f'{_URL}/instances/i1/study', status=404)
    tags = rest_store.get_parent_tags('i1', ResourceLevel.SERIES)
    assert tags == {'SeriesInstanceUID': '1.2'}
    assert rest_store.get_parent_tags('i1', ResourceLevel.STUDY) == {}


def test_get_parent_tags_of_instance_level(rest_store):
    with pytest.raises(ValueError):
        rest_store.get_parent_tags('i1', ResourceLevel.INSTANCE)


@responses.activate
def test_get_preview(rest_store):
    responses.add(
        responses.GET,
        f'{_URL}/instances/i1/preview',
        body=b'\x89PNG',
        content_type='image/png'
    )
    assert rest_store.get_preview('i1') == b'\x89PNG'
