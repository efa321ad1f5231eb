"""STOW-RS server endpoint and client trigger."""
import json
import logging
import struct
import uuid
from io import BytesIO
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
)

import pydicom
from pydicom.errors import BytesLengthException, InvalidDicomError

from dicomweb_bridge.batch import BatchSender, generate_boundary
from dicomweb_bridge.config import BatchLimits
from dicomweb_bridge.error import (
    MalformedInput,
    ProtocolError,
    StoreError,
    UnsupportedMediaType,
)
from dicomweb_bridge.multipart import (
    APPLICATION_DICOM,
    MultipartPart,
    decode_multipart_message,
)
from dicomweb_bridge.negotiation import (
    ResponseFormat,
    choose_response_format,
    parse_content_type,
    validate_inbound_framing,
)
from dicomweb_bridge.protocol import ObjectStore, Transport
from dicomweb_bridge.resolver import ResourceResolver
from dicomweb_bridge.status import (
    CANNOT_UNDERSTAND,
    ELEMENTS_DISCARDED,
    PROCESSING_FAILURE,
    Failure,
    StatusSequenceBuilder,
    StatusSequencePair,
    Success,
    WarningOutcome,
    dump_json_dataset,
    dump_xml_dataset,
    to_dataset,
)


logger = logging.getLogger(__name__)


class StowRequest(NamedTuple):

    """Resources to send to a remote server and the request options."""

    resources: List[str]
    headers: Dict[str, str]
    arguments: Dict[str, str]


def parse_json_body(body: bytes, description: str) -> Dict[str, Any]:
    """Parse the JSON object in the body of a request message.

    Parameters
    ----------
    body: bytes
        Request message body
    description: str
        Expected content, used for error messages

    Returns
    -------
    Dict[str, Any]
        Parsed object

    Raises
    ------
    dicomweb_bridge.error.MalformedInput
        When the body is not a JSON object

    """
    try:
        document = json.loads(body)
    except ValueError:
        document = None
    if not isinstance(document, dict):
        message = (
            f'A request to the DICOMweb client must provide {description}'
        )
        logger.error(message)
        raise MalformedInput(message)
    return document


def parse_string_mapping(
    document: Mapping[str, Any],
    key: str
) -> Dict[str, str]:
    """Get an optional mapping of strings to strings from a JSON object.

    Parameters
    ----------
    document: Mapping[str, Any]
        JSON object
    key: str
        Name of the field

    Returns
    -------
    Dict[str, str]
        Mapping (empty if the field is missing)

    Raises
    ------
    dicomweb_bridge.error.MalformedInput
        When the field is not an object with string values

    """
    value = document.get(key, {})
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise MalformedInput(
            f'The field "{key}" must be a JSON object mapping strings to '
            'strings.'
        )
    return dict(value)


def parse_stow_request(body: bytes) -> StowRequest:
    """Parse the body of a request to the STOW-RS client.

    Parameters
    ----------
    body: bytes
        JSON object with the fields ``"Resources"`` (array of identifiers),
        and optionally ``"HttpHeaders"`` and ``"Arguments"``

    Returns
    -------
    dicomweb_bridge.stow.StowRequest
        Parsed request

    Raises
    ------
    dicomweb_bridge.error.MalformedInput
        When the body is malformed

    """
    description = (
        'a JSON object with the field "Resources" containing an array of '
        'resources to be sent'
    )
    document = parse_json_body(body, description)
    resources = document.get('Resources')
    if not isinstance(resources, list):
        message = (
            f'A request to the STOW-RS client must provide {description}'
        )
        logger.error(message)
        raise MalformedInput(message)
    for resource in resources:
        if not isinstance(resource, str):
            raise MalformedInput(
                f'Resources must be given as strings: {resource!r}'
            )
    return StowRequest(
        resources=resources,
        headers=parse_string_mapping(document, 'HttpHeaders'),
        arguments=parse_string_mapping(document, 'Arguments'),
    )


class StowClient:

    """Client sending resources of the object store to a STOW-RS service.

    Examples
    --------
    >>> transport = DICOMwebTransport('http://localhost:8080/dicom-web')
    >>> client = StowClient(store, transport)
    >>> client.send(StowRequest(['6e2c0ec2-...'], {}, {}))
    {}

    """

    def __init__(
        self,
        store: ObjectStore,
        transport: Transport,
        limits: Optional[BatchLimits] = None,
        boundary_generator: Callable[[], Any] = uuid.uuid4
    ) -> None:
        """
        Parameters
        ----------
        store: dicomweb_bridge.protocol.ObjectStore
            Store holding the instances
        transport: dicomweb_bridge.protocol.Transport
            Transport to the remote STOW-RS service
        limits: Union[dicomweb_bridge.config.BatchLimits, None], optional
            Thresholds that trigger the flush of a batch
        boundary_generator: Callable[[], Any], optional
            Source of the boundary token of each request

        """
        self._store = store
        self._transport = transport
        self._limits = limits if limits is not None else BatchLimits()
        self._boundary_generator = boundary_generator
        self._resolver = ResourceResolver(store)

    @property
    def _server(self) -> str:
        return getattr(self._transport, 'base_url', '')

    def send(self, request: StowRequest) -> Dict[str, Any]:
        """Send the instances of resources to the remote server.

        Parameters
        ----------
        request: dicomweb_bridge.stow.StowRequest
            Resources and request options

        Returns
        -------
        Dict[str, Any]
            Empty object

        Raises
        ------
        dicomweb_bridge.error.MalformedInput
            When a resource identifier is malformed
        dicomweb_bridge.error.UnknownResource
            When a resource does not exist
        dicomweb_bridge.error.ProtocolError
            When the remote server does not accept all instances

        """
        instances = self._resolver.expand_all(request.resources)
        boundary = generate_boundary(self._boundary_generator)
        logger.info(
            f'send {len(instances)} instances using STOW-RS to DICOMweb '
            f'server: {self._server}'
        )
        sender = BatchSender(
            self._store,
            self._transport,
            self._limits,
            boundary=boundary,
            headers=request.headers,
            params=request.arguments,
            server=self._server
        )
        for instance_id in instances:
            sender.add(instance_id)
        sender.finish()
        logger.info(
            f'sent {sum(sender.sent_counts)} instances in '
            f'{len(sender.sent_counts)} requests'
        )
        return {}


class _Identifiers(NamedTuple):

    study_instance_uid: str
    series_instance_uid: str
    sop_class_uid: str
    sop_instance_uid: str


def _read_identifiers(payload: bytes) -> _Identifiers:
    dataset = pydicom.dcmread(
        BytesIO(payload),
        stop_before_pixels=True,
        specific_tags=[
            'StudyInstanceUID',
            'SeriesInstanceUID',
            'SOPClassUID',
            'SOPInstanceUID',
        ]
    )
    return _Identifiers(
        study_instance_uid=str(dataset.get('StudyInstanceUID', '')),
        series_instance_uid=str(dataset.get('SeriesInstanceUID', '')),
        sop_class_uid=str(dataset.get('SOPClassUID', '')),
        sop_instance_uid=str(dataset.get('SOPInstanceUID', '')),
    )


class StowServer:

    """STOW-RS service storing received instances in the object store."""

    def __init__(self, store: ObjectStore, base_url: str) -> None:
        """
        Parameters
        ----------
        store: dicomweb_bridge.protocol.ObjectStore
            Store in which received instances are stored
        base_url: str
            Absolute URL of the DICOMweb endpoints, used to build retrieve
            URLs (e.g. ``"http://localhost:8042/dicom-web/"``)

        """
        self._store = store
        if not base_url.endswith('/'):
            base_url += '/'
        self._base_url = base_url

    def store_parts(
        self,
        parts: Sequence[MultipartPart],
        expected_study: Optional[str] = None
    ) -> StatusSequencePair:
        """Store DICOM files and record the outcome for each of them.

        Parameters
        ----------
        parts: Sequence[dicomweb_bridge.multipart.MultipartPart]
            Parts of a request message
        expected_study: Union[str, None], optional
            Study Instance UID to which the request is restricted; instances
            of other studies are not stored

        Returns
        -------
        dicomweb_bridge.status.StatusSequencePair
            One status record for each part

        Raises
        ------
        dicomweb_bridge.error.UnsupportedMediaType
            When a part is not of media type ``application/dicom`` (no part
            is stored in that case)

        """
        for part in parts:
            logger.debug(
                f'detected multipart item with content type '
                f'"{part.content_type}" of size {part.length}'
            )
            media_type, _ = parse_content_type(part.content_type)
            if media_type and media_type != APPLICATION_DICOM:
                message = (
                    'The STOW-RS request contains a part that is not '
                    f'"{APPLICATION_DICOM}" (it is: "{part.content_type}")'
                )
                logger.error(message)
                raise UnsupportedMediaType(message)

        builder = StatusSequenceBuilder()
        for part in parts:
            try:
                identifiers = _read_identifiers(part.payload)
            except (
                InvalidDicomError,
                BytesLengthException,
                NotImplementedError,
                struct.error,
                EOFError,
                ValueError,
            ) as error:
                logger.warning(f'cannot parse part as DICOM file: {error}')
                builder.record('', '', Failure(CANNOT_UNDERSTAND))
                continue

            study = identifiers.study_instance_uid
            if expected_study and study != expected_study:
                logger.info(
                    f'STOW-RS request restricted to study [{expected_study}]: '
                    f'ignore instance from study [{study}]'
                )
                builder.record(
                    identifiers.sop_class_uid,
                    identifiers.sop_instance_uid,
                    WarningOutcome(ELEMENTS_DISCARDED)
                )
                continue

            try:
                self._store.store_instance(part.payload)
            except StoreError as error:
                logger.error(
                    'object store was unable to store instance through '
                    f'STOW-RS request: {error}'
                )
                builder.record(
                    identifiers.sop_class_uid,
                    identifiers.sop_instance_uid,
                    Failure(PROCESSING_FAILURE)
                )
                continue

            builder.set_retrieve_url(f'{self._base_url}studies/{study}')
            path = (
                f'studies/{study}/series/{identifiers.series_instance_uid}'
                f'/instances/{identifiers.sop_instance_uid}'
            )
            builder.record(
                identifiers.sop_class_uid,
                identifiers.sop_instance_uid,
                Success(f'{self._base_url}{path}')
            )
        return builder.assemble()

    def handle(
        self,
        body: bytes,
        content_type: Optional[str],
        accept: Optional[str] = None,
        expected_study: Optional[str] = None
    ) -> Tuple[bytes, str]:
        """Handle a STOW-RS request message.

        Parameters
        ----------
        body: bytes
            Request message body
        content_type: Union[str, None]
            Value of the Content-Type header field
        accept: Union[str, None], optional
            Value of the Accept header field
        expected_study: Union[str, None], optional
            Study Instance UID given in the request path

        Returns
        -------
        Tuple[bytes, str]
            Response message body and its media type

        Raises
        ------
        dicomweb_bridge.error.UnsupportedMediaType
            When the request is not ``multipart/related`` with type
            ``application/dicom``
        dicomweb_bridge.error.MalformedInput
            When the request body cannot be split into parts

        """
        if expected_study:
            logger.info(
                f'STOW-RS request restricted to study UID {expected_study}'
            )
        else:
            logger.info('STOW-RS request without study')
        response_format = choose_response_format(accept)
        framing = validate_inbound_framing(content_type)
        try:
            parts = decode_multipart_message(body, framing.boundary)
        except ProtocolError as error:
            raise MalformedInput(f'Malformed STOW-RS request body: {error}')

        pair = self.store_parts(parts, expected_study)
        dataset = to_dataset(pair)
        if response_format == ResponseFormat.XML:
            return dump_xml_dataset(dataset), ResponseFormat.XML.value
        return dump_json_dataset(dataset), ResponseFormat.JSON.value
