"""Batching of outbound STOW-RS request messages."""
import logging
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests

from dicomweb_bridge.config import BatchLimits
from dicomweb_bridge.error import NotEnoughMemory, ProtocolError
from dicomweb_bridge.multipart import (
    APPLICATION_DICOM,
    encode_close,
    encode_part,
)
from dicomweb_bridge.negotiation import (
    MULTIPART_RELATED,
    ResponseFormat,
    parse_content_type,
)
from dicomweb_bridge.protocol import ObjectStore, Transport
from dicomweb_bridge.status import load_xml_dataset


logger = logging.getLogger(__name__)

REFERENCED_SOP_SEQUENCE = '00081199'
FAILED_SOP_SEQUENCE = '00081198'
OTHER_FAILURES_SEQUENCE = '0008119A'

_XML_MEDIA_TYPES = {
    ResponseFormat.XML.value,
    'application/xml',
    'text/xml',
}


def generate_boundary(
    generator: Callable[[], Any] = uuid.uuid4
) -> str:
    """Generate the boundary token of a multipart message.

    Parameters
    ----------
    generator: Callable[[], Any], optional
        Source of random tokens, rendered with ``str()``

    Returns
    -------
    str
        Boundary token

    Raises
    ------
    dicomweb_bridge.error.NotEnoughMemory
        When no token can be generated

    """
    try:
        return str(generator())
    except MemoryError:
        raise NotEnoughMemory('Cannot generate a multipart boundary token.')


class BatchAccumulator:

    """Buffer of the encoded parts of a batch that has not been sent yet.

    Attributes
    ----------
    boundary: str
        Boundary token of all messages of a request
    instance_count: int
        Number of parts appended since the last reset
    size: int
        Number of bytes appended since the last reset

    """

    def __init__(self, boundary: str) -> None:
        self.boundary = boundary
        self._chunks: List[bytes] = []
        self.size = 0
        self.instance_count = 0

    def append(self, payload: bytes) -> None:
        """Encode a DICOM file as a part and append it to the buffer."""
        part = encode_part(APPLICATION_DICOM, payload, self.boundary)
        self._chunks.append(part)
        self.size += len(part)
        self.instance_count += 1

    def close(self) -> bytes:
        """Get the complete message body including the close delimiter."""
        return b''.join(self._chunks) + encode_close(self.boundary)

    def reset(self) -> None:
        self._chunks = []
        self.size = 0
        self.instance_count = 0


def _get_sequence_size(
    response: Mapping[str, Any],
    tag: str,
    mandatory: bool,
    server: str
) -> Optional[int]:
    """Count the items of a sequence in a DICOM JSON response.

    Parameters
    ----------
    response: Mapping[str, Any]
        DICOM JSON data set
    tag: str
        Tag of the sequence as eight hexadecimal digits
    mandatory: bool
        Whether a missing sequence is an error
    server: str
        URL of the remote server (for error messages)

    Returns
    -------
    Union[int, None]
        Number of items or ``None`` if an optional sequence is missing

    Raises
    ------
    dicomweb_bridge.error.ProtocolError
        When the sequence is missing but mandatory or is malformed

    """
    for key in (tag.upper(), tag.lower()):
        if key in response:
            value = response[key]
            break
    else:
        if mandatory:
            message = (
                f'The STOW-RS JSON response from DICOMweb server {server} '
                f'does not contain the mandatory tag {tag}'
            )
            logger.error(message)
            raise ProtocolError(message)
        return None

    if not isinstance(value, dict):
        raise ProtocolError(
            f'Unable to parse STOW-RS JSON response from DICOMweb server '
            f'{server}: tag {tag} is not an object'
        )
    if 'Value' not in value:
        return 0
    if not isinstance(value['Value'], list):
        raise ProtocolError(
            f'Unable to parse STOW-RS JSON response from DICOMweb server '
            f'{server}: value of tag {tag} is not an array'
        )
    return len(value['Value'])


def _parse_response(response: requests.Response, server: str) -> Any:
    content_type = response.headers.get('Content-Type', '')
    media_type, _ = parse_content_type(content_type)
    if media_type in _XML_MEDIA_TYPES:
        logger.debug('parse DICOM XML response')
        return load_xml_dataset(response.content).to_json_dict()
    try:
        return response.json()
    except ValueError:
        message = (
            f'Unable to parse STOW-RS JSON response from DICOMweb server '
            f'{server}'
        )
        logger.error(message)
        raise ProtocolError(message)


class BatchSender:

    """Sender of instances to a remote server in one or more batches.

    Instances are encoded as they are added and the accumulated batch is
    sent as soon as the number of instances or the number of bytes reaches
    a limit. All batches of one sender share the same boundary token.

    Examples
    --------
    >>> sender = BatchSender(store, transport, BatchLimits())
    >>> for instance_id in instance_ids:
    ...     sender.add(instance_id)
    >>> sender.finish()
    >>> sum(sender.sent_counts) == len(instance_ids)
    True

    """

    def __init__(
        self,
        store: ObjectStore,
        transport: Transport,
        limits: Optional[BatchLimits] = None,
        boundary: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        server: str = ''
    ) -> None:
        """
        Parameters
        ----------
        store: dicomweb_bridge.protocol.ObjectStore
            Store from which the DICOM files are read
        transport: dicomweb_bridge.protocol.Transport
            Transport to the remote STOW-RS service
        limits: Union[dicomweb_bridge.config.BatchLimits, None], optional
            Thresholds that trigger the flush of a batch
        boundary: Union[str, None], optional
            Boundary token (a random token is generated by default)
        headers: Union[Mapping[str, str], None], optional
            Additional request header fields, which take precedence over the
            default ``Accept`` and ``Content-Type`` fields
        params: Union[Mapping[str, Any], None], optional
            Query parameters of each request
        server: str, optional
            Name or URL of the remote server (for messages)

        """
        self._store = store
        self._transport = transport
        self._limits = limits if limits is not None else BatchLimits()
        if boundary is None:
            boundary = generate_boundary()
        self._accumulator = BatchAccumulator(boundary)
        self._headers: Dict[str, str] = {
            'Accept': ResponseFormat.JSON.value,
            'Content-Type': (
                f'{MULTIPART_RELATED}; type="{APPLICATION_DICOM}"; '
                f'boundary={boundary}'
            ),
        }
        if headers is not None:
            # Header names are case-insensitive
            overridden = {key.lower() for key in headers}
            self._headers = {
                key: value
                for key, value in self._headers.items()
                if key.lower() not in overridden
            }
            self._headers.update(headers)
        self._params = params
        self._server = server
        self.sent_counts: List[int] = []

    @property
    def boundary(self) -> str:
        return self._accumulator.boundary

    @property
    def pending_count(self) -> int:
        """Number of instances that have not been sent yet."""
        return self._accumulator.instance_count

    def add(self, instance_id: str) -> None:
        """Add an instance to the current batch.

        Parameters
        ----------
        instance_id: str
            Identifier of the instance in the store

        Raises
        ------
        dicomweb_bridge.error.StoreError
            When the store cannot be read
        dicomweb_bridge.error.ProtocolError
            When a batch is sent and the response reports failures

        """
        data = self._store.get_instance_file(instance_id)
        if data is None:
            logger.warning(
                f'instance "{instance_id}" does not exist, skip it'
            )
            return
        self._accumulator.append(data)
        self.maybe_flush(force=False)

    def maybe_flush(self, force: bool = False) -> bool:
        """Send the current batch if a limit is reached.

        Parameters
        ----------
        force: bool, optional
            Whether the batch should be sent irrespective of the limits
            (an empty batch is never sent)

        Returns
        -------
        bool
            Whether the batch has been sent

        """
        count = self._accumulator.instance_count
        size = self._accumulator.size
        if (
            (force and count > 0) or
            (self._limits.max_instances != 0 and
             count >= self._limits.max_instances) or
            (self._limits.max_bytes != 0 and
             size >= self._limits.max_bytes)
        ):
            self._flush()
            return True
        return False

    def _flush(self) -> None:
        count = self._accumulator.instance_count
        body = self._accumulator.close()
        logger.info(
            f'send {count} instances ({len(body)} bytes) to DICOMweb '
            f'server {self._server}'
        )
        response = self._transport.send(
            'POST',
            'studies',
            headers=self._headers,
            params=self._params,
            body=body
        )
        result = _parse_response(response, self._server)
        if not isinstance(result, dict):
            message = (
                f'Unable to parse STOW-RS JSON response from DICOMweb '
                f'server {self._server}: not an object'
            )
            logger.error(message)
            raise ProtocolError(message)

        accepted = _get_sequence_size(
            result, REFERENCED_SOP_SEQUENCE, True, self._server
        )
        if accepted != count:
            message = (
                f'The STOW-RS server {self._server} accepted only '
                f'{accepted} of {count} instances'
            )
            logger.error(message)
            raise ProtocolError(message)
        failed = _get_sequence_size(
            result, FAILED_SOP_SEQUENCE, False, self._server
        )
        if failed:
            message = (
                f'The response from the STOW-RS server {self._server} '
                f'contains {failed} items in its Failed SOP Sequence '
                f'(0008,1198) tag'
            )
            logger.error(message)
            raise ProtocolError(message)
        other_failures = _get_sequence_size(
            result, OTHER_FAILURES_SEQUENCE, False, self._server
        )
        if other_failures:
            message = (
                f'The response from the STOW-RS server {self._server} '
                f'contains {other_failures} items in its Other Failures '
                f'Sequence (0008,119A) tag'
            )
            logger.error(message)
            raise ProtocolError(message)

        self.sent_counts.append(count)
        self._accumulator.reset()

    def finish(self) -> None:
        """Send the remaining instances."""
        self.maybe_flush(force=True)
