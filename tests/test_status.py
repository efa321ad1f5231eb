import json
import xml.etree.ElementTree as ET

import pytest
import pydicom

from dicomweb_bridge import status
from dicomweb_bridge.error import ProtocolError
from dicomweb_bridge.status import (
    Failure,
    StatusSequenceBuilder,
    Success,
    WarningOutcome,
    dump_json_dataset,
    dump_xml_dataset,
    load_xml_dataset,
    to_dataset,
)


_CT = '1.2.840.10008.5.1.4.1.1.2'


@pytest.fixture
def builder():
    builder = StatusSequenceBuilder()
    builder.record(
        _CT, '1.1', Success('http://x/studies/1/series/2/instances/1.1')
    )
    builder.record(_CT, '1.2', WarningOutcome('B006'))
    builder.record(_CT, '1.3', Failure('0110'))
    builder.record('', '', Failure('C000'))
    return builder


def test_record_partitions_outcomes(builder):
    pair = builder.assemble()
    assert [r.sop_instance_uid for r in pair.success] == ['1.1', '1.2']
    assert [r.sop_instance_uid for r in pair.failed] == ['1.3', '']
    assert len(pair.success) + len(pair.failed) == 4


def test_record_unknown_outcome():
    builder = StatusSequenceBuilder()
    with pytest.raises(TypeError):
        builder.record(_CT, '1.1', 'stored')


def test_retrieve_url_keeps_first():
    builder = StatusSequenceBuilder()
    assert builder.assemble().retrieve_url is None
    builder.set_retrieve_url('http://x/studies/1')
    builder.set_retrieve_url('http://x/studies/2')
    assert builder.assemble().retrieve_url == 'http://x/studies/1'


def test_to_dataset(builder):
    builder.set_retrieve_url('http://x/studies/1')
    dataset = to_dataset(builder.assemble())
    assert dataset.RetrieveURL == 'http://x/studies/1'
    assert len(dataset.ReferencedSOPSequence) == 2
    assert len(dataset.FailedSOPSequence) == 2

    stored = dataset.ReferencedSOPSequence[0]
    assert stored.ReferencedSOPClassUID == _CT
    assert stored.ReferencedSOPInstanceUID == '1.1'
    assert stored.RetrieveURL == 'http://x/studies/1/series/2/instances/1.1'
    assert 'WarningReason' not in stored

    discarded = dataset.ReferencedSOPSequence[1]
    assert discarded.WarningReason == 0xB006
    assert 'RetrieveURL' not in discarded

    failed = dataset.FailedSOPSequence[0]
    assert failed.FailureReason == 0x0110
    assert dataset.FailedSOPSequence[1].FailureReason == 0xC000


def test_to_dataset_without_instances():
    dataset = to_dataset(StatusSequenceBuilder().assemble())
    assert 'RetrieveURL' not in dataset
    assert len(dataset.ReferencedSOPSequence) == 0
    assert len(dataset.FailedSOPSequence) == 0


def test_dump_json_dataset(builder):
    builder.set_retrieve_url('http://x/studies/1')
    document = json.loads(dump_json_dataset(to_dataset(builder.assemble())))
    assert document['00081190']['Value'] == ['http://x/studies/1']
    assert len(document['00081199']['Value']) == 2
    assert len(document['00081198']['Value']) == 2
    warning = document['00081199']['Value'][1]
    assert warning['00081196'] == {'vr': 'US', 'Value': [0xB006]}
    failure = document['00081198']['Value'][0]
    assert failure['00081197'] == {'vr': 'US', 'Value': [0x0110]}


def test_dump_xml_dataset(builder):
    dataset = to_dataset(builder.assemble())
    root = ET.fromstring(dump_xml_dataset(dataset))
    assert root.tag == 'NativeDicomModel'
    attributes = {e.attrib['tag']: e for e in root}
    referenced = attributes['00081199']
    assert referenced.attrib['vr'] == 'SQ'
    assert referenced.attrib['keyword'] == 'ReferencedSOPSequence'
    items = referenced.findall('Item')
    assert [item.attrib['number'] for item in items] == ['1', '2']
    uid = items[0].find("DicomAttribute[@tag='00081155']/Value")
    assert uid.attrib['number'] == '1'
    assert uid.text == '1.1'


def test_load_dumped_xml_dataset(builder):
    builder.set_retrieve_url('http://x/studies/1')
    dataset = to_dataset(builder.assemble())
    loaded = load_xml_dataset(dump_xml_dataset(dataset))
    assert loaded.RetrieveURL == 'http://x/studies/1'
    assert len(loaded.ReferencedSOPSequence) == 2
    assert loaded.ReferencedSOPSequence[1].WarningReason == 0xB006
    assert loaded.FailedSOPSequence[0].FailureReason == 0x0110


def test_load_xml_dataset_multiple_values():
    document = b'''<?xml version="1.0" encoding="UTF-8"?>
    <NativeDicomModel>
      <DicomAttribute tag="00080060" vr="CS" keyword="Modality">
        <Value number="1">CT</Value>
      </DicomAttribute>
      <DicomAttribute tag="00280030" vr="DS" keyword="PixelSpacing">
        <Value number="1">0.5</Value>
        <Value number="2">0.25</Value>
      </DicomAttribute>
      <DicomAttribute tag="00100010" vr="PN" keyword="PatientName"/>
    </NativeDicomModel>
    '''
    dataset = load_xml_dataset(document)
    assert isinstance(dataset, pydicom.Dataset)
    assert dataset.Modality == 'CT'
    assert [float(v) for v in dataset.PixelSpacing] == [0.5, 0.25]
    assert dataset.PatientName is None or dataset.PatientName == ''


def test_load_xml_dataset_malformed():
    with pytest.raises(ProtocolError):
        load_xml_dataset(b'<NativeDicomModel><DicomAttribute')


def test_builtin_warning_not_shadowed():
    assert 'Warning' not in vars(status)
    assert issubclass(status.WarningOutcome, tuple)
