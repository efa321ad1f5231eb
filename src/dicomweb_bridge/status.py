"""Accounting and serialization of STOW-RS per-instance outcomes."""
import json
import logging
from typing import Any, List, NamedTuple, Optional, Union
from xml.etree.ElementTree import Element, SubElement, fromstring, tostring

import pydicom
from pydicom.datadict import keyword_for_tag
from pydicom.tag import Tag

from dicomweb_bridge.error import ProtocolError


logger = logging.getLogger(__name__)

#: Warning: coercion of data elements (elements discarded)
ELEMENTS_DISCARDED = 'B006'
#: Failure: processing failure
PROCESSING_FAILURE = '0110'
#: Failure: cannot understand
CANNOT_UNDERSTAND = 'C000'

_INTEGER_VRS = {'US', 'SS', 'UL', 'SL', 'UV', 'SV'}
_FLOAT_VRS = {'FL', 'FD'}


class Success(NamedTuple):

    """Instance has been stored."""

    retrieve_url: Optional[str] = None


class WarningOutcome(NamedTuple):

    """Instance has been accepted with a warning (e.g., not stored)."""

    code: str
    retrieve_url: Optional[str] = None


class Failure(NamedTuple):

    """Instance could not be stored."""

    code: str


Outcome = Union[Success, WarningOutcome, Failure]


class StatusRecord(NamedTuple):

    """Outcome of the processing of an individual instance."""

    sop_class_uid: str
    sop_instance_uid: str
    outcome: Outcome


class StatusSequencePair(NamedTuple):

    """Referenced SOP Sequence and Failed SOP Sequence of a response."""

    success: List[StatusRecord]
    failed: List[StatusRecord]
    retrieve_url: Optional[str] = None


class StatusSequenceBuilder:

    """Builder of the status sequences of a STOW-RS response message.

    Each recorded instance ends up in exactly one of both sequences:
    successes and warnings in the Referenced SOP Sequence and failures in
    the Failed SOP Sequence.

    """

    def __init__(self) -> None:
        self._success: List[StatusRecord] = []
        self._failed: List[StatusRecord] = []
        self._retrieve_url: Optional[str] = None

    def record(
        self,
        sop_class_uid: str,
        sop_instance_uid: str,
        outcome: Outcome
    ) -> None:
        """Record the outcome for an instance.

        Parameters
        ----------
        sop_class_uid: str
            SOP Class UID of the instance (empty if unknown)
        sop_instance_uid: str
            SOP Instance UID of the instance (empty if unknown)
        outcome: Union[dicomweb_bridge.status.Success, dicomweb_bridge.status.WarningOutcome, dicomweb_bridge.status.Failure]
            Outcome of the processing of the instance

        """  # noqa: E501
        record = StatusRecord(sop_class_uid, sop_instance_uid, outcome)
        if isinstance(outcome, Failure):
            logger.debug(
                f'instance "{sop_instance_uid}" failed with reason '
                f'{outcome.code}'
            )
            self._failed.append(record)
        elif isinstance(outcome, (Success, WarningOutcome)):
            self._success.append(record)
        else:
            raise TypeError(f'Unknown outcome: {outcome!r}')

    def set_retrieve_url(self, url: str) -> None:
        """Set the retrieve URL of the response unless already set."""
        if self._retrieve_url is None:
            self._retrieve_url = url

    def assemble(self) -> StatusSequencePair:
        return StatusSequencePair(
            success=list(self._success),
            failed=list(self._failed),
            retrieve_url=self._retrieve_url,
        )


def _create_item(record: StatusRecord) -> pydicom.Dataset:
    item = pydicom.Dataset()
    item.ReferencedSOPClassUID = record.sop_class_uid
    item.ReferencedSOPInstanceUID = record.sop_instance_uid
    outcome = record.outcome
    if isinstance(outcome, Failure):
        item.FailureReason = int(outcome.code, 16)
        return item
    if outcome.retrieve_url is not None:
        item.RetrieveURL = outcome.retrieve_url
    if isinstance(outcome, WarningOutcome):
        item.WarningReason = int(outcome.code, 16)
    return item


def to_dataset(pair: StatusSequencePair) -> pydicom.Dataset:
    """Build the data set of a STOW-RS response message.

    Parameters
    ----------
    pair: dicomweb_bridge.status.StatusSequencePair
        Assembled status sequences

    Returns
    -------
    pydicom.dataset.Dataset
        Data set with Retrieve URL (if any instance was stored),
        Failed SOP Sequence and Referenced SOP Sequence

    """
    dataset = pydicom.Dataset()
    if pair.retrieve_url is not None:
        dataset.RetrieveURL = pair.retrieve_url
    dataset.FailedSOPSequence = [_create_item(r) for r in pair.failed]
    dataset.ReferencedSOPSequence = [_create_item(r) for r in pair.success]
    return dataset


def dump_json_dataset(dataset: pydicom.Dataset) -> bytes:
    """Serialize a data set in DICOM JSON format.

    Parameters
    ----------
    dataset: pydicom.dataset.Dataset
        Data set

    Returns
    -------
    bytes
        UTF-8 encoded JSON document

    """
    return json.dumps(dataset.to_json_dict()).encode('utf-8')


def _append_xml_values(
    attribute: Element,
    element: pydicom.DataElement
) -> None:
    if element.VR == 'SQ':
        for i, item in enumerate(element.value, start=1):
            item_element = SubElement(attribute, 'Item', number=str(i))
            _append_xml_dataset(item_element, item)
        return
    if element.value is None or element.value == '':
        return
    if element.VM > 1:
        values = list(element.value)
    else:
        values = [element.value]
    for i, value in enumerate(values, start=1):
        value_element = SubElement(attribute, 'Value', number=str(i))
        value_element.text = str(value)


def _append_xml_dataset(parent: Element, dataset: pydicom.Dataset) -> None:
    for element in dataset:
        attrib = {
            'tag': f'{element.tag:08X}',
            'vr': element.VR,
        }
        keyword = keyword_for_tag(element.tag)
        if keyword:
            attrib['keyword'] = keyword
        attribute = SubElement(parent, 'DicomAttribute', attrib)
        _append_xml_values(attribute, element)


def dump_xml_dataset(dataset: pydicom.Dataset) -> bytes:
    """Serialize a data set in DICOM Native XML format (PS3.19 Annex A).

    Parameters
    ----------
    dataset: pydicom.dataset.Dataset
        Data set

    Returns
    -------
    bytes
        UTF-8 encoded XML document

    """
    root = Element('NativeDicomModel')
    _append_xml_dataset(root, dataset)
    return tostring(root, encoding='utf-8', xml_declaration=True)


def _convert_xml_value(vr: str, text: Optional[str]) -> Any:
    text = (text or '').strip()
    if vr in _INTEGER_VRS:
        return int(text)
    if vr in _FLOAT_VRS:
        return float(text)
    return text


def _load_xml_dataset(dataset: Element) -> pydicom.Dataset:
    ds = pydicom.Dataset()
    for element in dataset:
        if element.tag != 'DicomAttribute':
            continue
        tag = Tag(element.attrib['tag'])
        vr = element.attrib['vr']
        value: Any
        if vr == 'SQ':
            value = [
                _load_xml_dataset(item)
                for item in element
                if item.tag == 'Item'
            ]
        else:
            values = [
                _convert_xml_value(vr, v.text)
                for v in element
                if v.tag == 'Value'
            ]
            if len(values) == 1:
                value = values[0]
            elif len(values) > 1:
                value = values
            else:
                value = None
        ds.add_new(tag, vr, value)
    return ds


def load_xml_dataset(data: bytes) -> pydicom.Dataset:
    """Load a data set in DICOM Native XML format.

    Parameters
    ----------
    data: bytes
        XML document with a ``NativeDicomModel`` root element

    Returns
    -------
    pydicom.dataset.Dataset
        Data set

    Raises
    ------
    dicomweb_bridge.error.ProtocolError
        When the document cannot be parsed

    """
    try:
        root = fromstring(data)
        return _load_xml_dataset(root)
    except (SyntaxError, KeyError, ValueError) as error:
        # ParseError is a subclass of SyntaxError
        raise ProtocolError(f'Cannot parse DICOM XML document: {error}')
