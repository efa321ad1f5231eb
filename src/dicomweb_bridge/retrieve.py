"""WADO-RS retrieve client and GET passthrough to remote servers."""
import logging
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Set,
)

from dicomweb_bridge.error import MalformedInput, ProtocolError
from dicomweb_bridge.multipart import APPLICATION_DICOM, iter_multipart_parts
from dicomweb_bridge.negotiation import (
    MULTIPART_RELATED,
    parse_content_type,
    validate_multipart_response,
)
from dicomweb_bridge.protocol import ObjectStore, Transport
from dicomweb_bridge.stow import parse_json_body, parse_string_mapping
from dicomweb_bridge.uri import build_resource_path


logger = logging.getLogger(__name__)

_DEFAULT_ACCEPT = f'{MULTIPART_RELATED}; type="{APPLICATION_DICOM}"'

# Not relayed to the caller, the body has already been decoded
_DISCARDED_HEADERS = {
    'connection',
    'content-encoding',
    'content-length',
    'content-type',
    'keep-alive',
    'transfer-encoding',
}


def _get_string(resource: Mapping[str, Any], key: str) -> Optional[str]:
    value = resource.get(key)
    if value is not None and not isinstance(value, str):
        message = f'The field "{key}" in a JSON object should be a string'
        logger.error(message)
        raise MalformedInput(message)
    return value


class RetrieveSelector:

    """Study, series or instance to retrieve from a WADO-RS service.

    Attributes
    ----------
    study_instance_uid: str
        Study Instance UID
    series_instance_uid: Union[str, None]
        Series Instance UID
    sop_instance_uid: Union[str, None]
        SOP Instance UID

    """

    def __init__(
        self,
        study_instance_uid: str,
        series_instance_uid: Optional[str] = None,
        sop_instance_uid: Optional[str] = None
    ) -> None:
        """
        Parameters
        ----------
        study_instance_uid: str
            Study Instance UID
        series_instance_uid: Union[str, None], optional
            Series Instance UID
        sop_instance_uid: Union[str, None], optional
            SOP Instance UID (requires `series_instance_uid`)

        Raises
        ------
        dicomweb_bridge.error.MalformedInput
            When the study is missing or an instance is given without its
            series

        """
        if not isinstance(study_instance_uid, str) or not study_instance_uid:
            message = (
                'A non-empty "Study" field is mandatory for the DICOMweb '
                'WADO-RS Retrieve client'
            )
            logger.error(message)
            raise MalformedInput(message)
        if sop_instance_uid and not series_instance_uid:
            message = (
                'When specifying an "Instance" field in a call to DICOMweb '
                'WADO-RS Retrieve client, the "Series" field is mandatory'
            )
            logger.error(message)
            raise MalformedInput(message)
        self.study_instance_uid = study_instance_uid
        self.series_instance_uid = series_instance_uid or None
        self.sop_instance_uid = sop_instance_uid or None

    @classmethod
    def from_json(cls, resource: Any) -> 'RetrieveSelector':
        """Create a selector from an object with ``"Study"``, ``"Series"``
        and ``"Instance"`` fields.
        """
        if not isinstance(resource, dict):
            message = (
                'Resources of interest for the DICOMweb WADO-RS Retrieve '
                'client must be provided as a JSON object'
            )
            logger.error(message)
            raise MalformedInput(message)
        return cls(
            _get_string(resource, 'Study') or '',
            _get_string(resource, 'Series'),
            _get_string(resource, 'Instance')
        )

    @property
    def path(self) -> str:
        return build_resource_path(
            self.study_instance_uid,
            self.series_instance_uid,
            self.sop_instance_uid
        )

    def __repr__(self) -> str:
        return f'RetrieveSelector({self.path!r})'

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RetrieveSelector):
            return NotImplemented
        return self.path == other.path


class RetrieveRequest(NamedTuple):

    """Resources to retrieve from a remote server and request options."""

    selectors: List[RetrieveSelector]
    headers: Dict[str, str]
    arguments: Dict[str, str]


class GetRequest(NamedTuple):

    """Request to forward to a remote server."""

    uri: str
    headers: Dict[str, str]
    arguments: Dict[str, str]


class PassthroughResponse(NamedTuple):

    """Response of a remote server relayed to the caller."""

    status_code: int
    body: bytes
    content_type: str
    headers: Dict[str, str]


def parse_retrieve_request(body: bytes) -> RetrieveRequest:
    """Parse the body of a request to the WADO-RS retrieve client.

    Parameters
    ----------
    body: bytes
        JSON object with the field ``"Resources"`` (array of objects with
        ``"Study"``, ``"Series"`` and ``"Instance"`` fields), and
        optionally ``"HttpHeaders"`` and ``"Arguments"``

    Returns
    -------
    dicomweb_bridge.retrieve.RetrieveRequest
        Parsed request

    Raises
    ------
    dicomweb_bridge.error.MalformedInput
        When the body is malformed

    """
    description = (
        'a JSON object with the field "Resources" containing an array of '
        'resources'
    )
    document = parse_json_body(body, description)
    resources = document.get('Resources')
    if not isinstance(resources, list):
        message = (
            'A request to the DICOMweb WADO-RS Retrieve client must provide '
            f'{description}'
        )
        logger.error(message)
        raise MalformedInput(message)
    return RetrieveRequest(
        selectors=[RetrieveSelector.from_json(r) for r in resources],
        headers=parse_string_mapping(document, 'HttpHeaders'),
        arguments=parse_string_mapping(document, 'Arguments'),
    )


def parse_get_request(body: bytes) -> GetRequest:
    """Parse the body of a request to forward a GET to a remote server.

    Parameters
    ----------
    body: bytes
        JSON object with the field ``"Uri"``, and optionally
        ``"HttpHeaders"`` and ``"Arguments"``

    Returns
    -------
    dicomweb_bridge.retrieve.GetRequest
        Parsed request

    Raises
    ------
    dicomweb_bridge.error.MalformedInput
        When the body is malformed

    """
    description = (
        'a JSON object with the field "Uri" containing the URI of interest'
    )
    document = parse_json_body(body, description)
    uri = _get_string(document, 'Uri')
    if uri is None:
        message = (
            f'A request to the DICOMweb client must provide {description}'
        )
        logger.error(message)
        raise MalformedInput(message)
    return GetRequest(
        uri=uri,
        headers=parse_string_mapping(document, 'HttpHeaders'),
        arguments=parse_string_mapping(document, 'Arguments'),
    )


def _merge_headers(
    defaults: Mapping[str, str],
    headers: Optional[Mapping[str, str]]
) -> Dict[str, str]:
    if headers is None:
        return dict(defaults)
    overridden = {key.lower() for key in headers}
    merged = {
        key: value
        for key, value in defaults.items()
        if key.lower() not in overridden
    }
    merged.update(headers)
    return merged


class RetrieveOrchestrator:

    """Retriever of instances from a WADO-RS service into the object store.

    Examples
    --------
    >>> transport = DICOMwebTransport('http://localhost:8080/dicom-web')
    >>> orchestrator = RetrieveOrchestrator(store, transport)
    >>> orchestrator.retrieve([RetrieveSelector('1.2.3')])
    ['6e2c0ec2-...', 'd4dd9a5e-...']

    """

    def __init__(
        self,
        store: ObjectStore,
        transport: Transport,
        chunk_size: int = 10**6
    ) -> None:
        """
        Parameters
        ----------
        store: dicomweb_bridge.protocol.ObjectStore
            Store in which retrieved instances are stored
        transport: dicomweb_bridge.protocol.Transport
            Transport to the remote WADO-RS service
        chunk_size: int, optional
            Maximum number of bytes read from the response per chunk

        """
        self._store = store
        self._transport = transport
        self._chunk_size = chunk_size

    def _retrieve_resource(
        self,
        selector: RetrieveSelector,
        headers: Mapping[str, str],
        params: Optional[Mapping[str, Any]],
        instances: Set[str]
    ) -> None:
        response = self._transport.send(
            'GET',
            selector.path,
            headers=headers,
            params=params,
            stream=True
        )
        try:
            framing = validate_multipart_response(
                response.headers.get('Content-Type')
            )
            count = 0
            chunks = response.iter_content(chunk_size=self._chunk_size)
            for part in iter_multipart_parts(chunks, framing.boundary):
                media_type, _ = parse_content_type(part.content_type)
                if media_type and media_type != APPLICATION_DICOM:
                    message = (
                        'The remote WADO-RS server has provided a non-DICOM '
                        f'file in its multipart answer: "{part.content_type}"'
                    )
                    logger.error(message)
                    raise ProtocolError(message)
                instances.add(self._store.store_instance(part.payload))
                count += 1
        finally:
            response.close()
        logger.info(
            f'the remote WADO-RS server has provided {count} DICOM '
            f'instances for {selector.path}'
        )

    def retrieve(
        self,
        selectors: Iterable[RetrieveSelector],
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None
    ) -> List[str]:
        """Retrieve instances and store them in the object store.

        Parameters
        ----------
        selectors: Iterable[dicomweb_bridge.retrieve.RetrieveSelector]
            Studies, series or instances to retrieve
        headers: Union[Mapping[str, str], None], optional
            Additional request header fields, which take precedence over the
            default ``Accept`` field
        params: Union[Mapping[str, Any], None], optional
            Query parameters of each request

        Returns
        -------
        List[str]
            Sorted identifiers of the stored instances (without duplicates)

        Raises
        ------
        dicomweb_bridge.error.ProtocolError
            When a response is not a multipart message of DICOM files
        dicomweb_bridge.error.StoreError
            When a retrieved instance cannot be stored

        """
        request_headers = _merge_headers({'Accept': _DEFAULT_ACCEPT}, headers)
        instances: Set[str] = set()
        for selector in selectors:
            logger.debug(f'retrieve {selector.path}')
            self._retrieve_resource(
                selector, request_headers, params, instances
            )
        return sorted(instances)


def get_from_server(
    transport: Transport,
    request: GetRequest
) -> PassthroughResponse:
    """Forward a GET request to a remote server.

    Parameters
    ----------
    transport: dicomweb_bridge.protocol.Transport
        Transport to the remote server
    request: dicomweb_bridge.retrieve.GetRequest
        URI, header fields and query parameters of the request

    Returns
    -------
    dicomweb_bridge.retrieve.PassthroughResponse
        Status code, body, media type (``application/octet-stream`` if the
        remote server provides none) and header fields of the response

    """
    response = transport.send(
        'GET',
        request.uri,
        headers=request.headers,
        params=request.arguments
    )
    content_type = 'application/octet-stream'
    headers = {}
    for key, value in response.headers.items():
        name = key.strip().lower()
        if name == 'content-type':
            content_type = value
        elif name not in _DISCARDED_HEADERS:
            headers[key] = value
    return PassthroughResponse(
        status_code=response.status_code,
        body=response.content,
        content_type=content_type,
        headers=headers,
    )
