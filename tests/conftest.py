from io import BytesIO

import pytest
import pydicom
from pydicom import config as pydicom_config
from pydicom.dataset import FileMetaDataset
from pydicom.uid import CTImageStorage, ExplicitVRLittleEndian

from dicomweb_bridge.cli import _get_parser
from dicomweb_bridge.config import BridgeConfig, ServerDescriptor
from dicomweb_bridge.error import StoreError
from dicomweb_bridge.protocol import ResourceLevel
from dicomweb_bridge.transport import DICOMwebTransport


pydicom_config.settings.reading_validation_mode = pydicom_config.WARN
pydicom_config.settings.writing_validation_mode = pydicom_config.WARN


def _create_dicom_file(
    study_instance_uid='1.2.3',
    series_instance_uid='1.2.3.4',
    sop_instance_uid='1.2.3.4.5',
    sop_class_uid=CTImageStorage
):
    dataset = pydicom.Dataset()
    dataset.PatientID = 'P1'
    dataset.StudyInstanceUID = study_instance_uid
    dataset.SeriesInstanceUID = series_instance_uid
    dataset.SOPInstanceUID = sop_instance_uid
    dataset.SOPClassUID = sop_class_uid
    dataset.Modality = 'CT'
    dataset.file_meta = FileMetaDataset()
    dataset.file_meta.TransferSyntaxUID = ExplicitVRLittleEndian
    dataset.file_meta.MediaStorageSOPClassUID = sop_class_uid
    dataset.file_meta.MediaStorageSOPInstanceUID = sop_instance_uid
    with BytesIO() as fp:
        pydicom.dcmwrite(fp, dataset, enforce_file_format=True)
        return fp.getvalue()


class FakeObjectStore:

    '''In-memory object store.'''

    def __init__(self):
        self.files = {}
        self.children = {
            ResourceLevel.PATIENT: {},
            ResourceLevel.STUDY: {},
            ResourceLevel.SERIES: {},
        }
        self.stored = []
        self.fail_store = False
        self.previews = {}
        self.uids = {}
        self.parent_tags = {}
        self.file_reads = []

    def add_instance(self, instance_id, data, series=None, study=None,
                     patient=None):
        self.files[instance_id] = data
        parents = (
            (ResourceLevel.SERIES, series),
            (ResourceLevel.STUDY, study),
            (ResourceLevel.PATIENT, patient),
        )
        for level, parent_id in parents:
            if parent_id is not None:
                self.children[level].setdefault(parent_id, [])
                self.children[level][parent_id].append(instance_id)

    def get_instance_file(self, instance_id):
        self.file_reads.append(instance_id)
        return self.files.get(instance_id)

    def exists(self, level, resource_id):
        if level == ResourceLevel.INSTANCE:
            return resource_id in self.files
        return resource_id in self.children[level]

    def list_instances(self, level, resource_id):
        if level == ResourceLevel.INSTANCE:
            return [resource_id]
        return [
            {'ID': instance_id}
            for instance_id in self.children[level].get(resource_id, [])
        ]

    def store_instance(self, data):
        if self.fail_store:
            raise StoreError('Object store is read-only')
        instance_id = f'stored-{len(self.stored) + 1:03d}'
        self.stored.append(data)
        self.files[instance_id] = data
        return instance_id

    def lookup(self, level, uid):
        return self.uids.get((level, uid))

    def get_parent_tags(self, instance_id, level):
        return self.parent_tags.get((instance_id, level), {})

    def get_preview(self, instance_id):
        return self.previews.get(instance_id)


@pytest.fixture
def parser():
    '''Instance of `argparse.Argparser`.'''
    return _get_parser()


@pytest.fixture
def create_dicom_file():
    '''Function creating a DICOM Part10 file for given UIDs.'''
    return _create_dicom_file


@pytest.fixture
def store():
    '''Instance of an in-memory object store.'''
    return FakeObjectStore()


@pytest.fixture
def transport(httpserver):
    '''Instance of `dicomweb_bridge.transport.DICOMwebTransport`.'''
    transport = DICOMwebTransport(httpserver.url)
    transport.set_http_retry_params(retry=False)
    return transport


@pytest.fixture
def config(httpserver):
    '''Configuration with a single remote server named "remote".'''
    return BridgeConfig(
        public_root='http://localhost:8042/dicom-web/',
        servers={
            'remote': ServerDescriptor('remote', httpserver.url),
        }
    )
