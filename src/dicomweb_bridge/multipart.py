"""Encoding and decoding of multipart/related message bodies.

Outbound messages are framed as::

    CRLF --boundary CRLF
    Content-Type: application/dicom CRLF
    Content-Length: 1234 CRLF
    CRLF
    <payload>
    ...
    CRLF --boundary-- CRLF

Payloads are never scanned for occurrences of the boundary. Decoding
detects a collision only indirectly, through a ``Content-Length`` header
that disagrees with the extracted part.

"""
import logging
from typing import Iterable, Iterator, List, NamedTuple, Sequence, Union

from dicomweb_bridge.error import ProtocolError


logger = logging.getLogger(__name__)

_CRLF = b'\r\n'
_HEADER_TERMINATOR = b'\r\n\r\n'
_LINEAR_WHITESPACE = b' \t'

APPLICATION_DICOM = 'application/dicom'


class MultipartPart(NamedTuple):

    """Individual part of a multipart message."""

    content_type: str
    payload: bytes

    @property
    def length(self) -> int:
        return len(self.payload)


def _as_bytes(boundary: Union[str, bytes]) -> bytes:
    if isinstance(boundary, bytes):
        return boundary
    return boundary.encode('utf-8')


def encode_part(
    content_type: str,
    payload: bytes,
    boundary: Union[str, bytes]
) -> bytes:
    """Frame an individual part of a multipart message.

    Parameters
    ----------
    content_type: str
        Media type of the part
    payload: bytes
        Content of the part
    boundary: Union[str, bytes]
        Boundary token of the message

    Returns
    -------
    bytes
        Part delimiter, header fields and content

    """
    header = b''.join((
        _CRLF, b'--', _as_bytes(boundary), _CRLF,
        f'Content-Type: {content_type}'.encode('utf-8'), _CRLF,
        f'Content-Length: {len(payload)}'.encode('utf-8'), _CRLF,
        _CRLF,
    ))
    return header + payload


def encode_close(boundary: Union[str, bytes]) -> bytes:
    """Build the close delimiter that terminates a multipart message.

    Parameters
    ----------
    boundary: Union[str, bytes]
        Boundary token of the message

    Returns
    -------
    bytes
        Close delimiter

    """
    return b''.join((_CRLF, b'--', _as_bytes(boundary), b'--', _CRLF))


def encode_multipart_message(
    parts: Sequence[MultipartPart],
    boundary: Union[str, bytes]
) -> bytes:
    """Encode a complete multipart message body.

    Parameters
    ----------
    parts: Sequence[dicomweb_bridge.multipart.MultipartPart]
        Parts in message order
    boundary: Union[str, bytes]
        Boundary token of the message

    Returns
    -------
    bytes
        HTTP message body

    """
    body = b''.join(
        encode_part(part.content_type, part.payload, boundary)
        for part in parts
    )
    return body + encode_close(boundary)


def _parse_part_headers(header_block: bytes) -> dict:
    headers = {}
    for line in header_block.split(_CRLF):
        if not line.strip():
            continue
        name, sep, value = line.partition(b':')
        if not sep:
            raise ProtocolError(
                'Multipart message part has a malformed header field: '
                f'{line[:80]!r}'
            )
        try:
            key = name.decode('ascii').strip().lower()
        except UnicodeDecodeError:
            raise ProtocolError(
                'Multipart message part has a non-ASCII header field name.'
            )
        headers[key] = value.decode('utf-8', errors='replace').strip()
    return headers


def _extract_part(section: bytes) -> MultipartPart:
    """Extract header fields and content of a single part.

    Parameters
    ----------
    section: bytes
        Bytes between a delimiter (excluding the boundary token) and the
        next delimiter

    Returns
    -------
    dicomweb_bridge.multipart.MultipartPart
        Decoded part

    Raises
    ------
    dicomweb_bridge.error.ProtocolError
        When the section is not a well-formed body part

    """
    # Transport padding may follow the boundary token on the delimiter line.
    section = section.lstrip(_LINEAR_WHITESPACE)
    if not section.startswith(_CRLF):
        raise ProtocolError(
            'Multipart delimiter line is not terminated by CRLF.'
        )
    section = section[len(_CRLF):]
    if section.startswith(_CRLF):
        headers: dict = {}
        content = section[len(_CRLF):]
    else:
        idx = section.find(_HEADER_TERMINATOR)
        if idx == -1:
            raise ProtocolError('Message part does not contain CRLF CRLF')
        headers = _parse_part_headers(section[:idx])
        content = section[idx + len(_HEADER_TERMINATOR):]

    if 'content-length' in headers:
        try:
            expected_length = int(headers['content-length'])
        except ValueError:
            raise ProtocolError(
                'Message part has an invalid Content-Length header: '
                f'"{headers["content-length"]}"'
            )
        if expected_length != len(content):
            raise ProtocolError(
                f'Message part announces {expected_length} bytes but '
                f'contains {len(content)} bytes.'
            )
    return MultipartPart(headers.get('content-type', ''), content)


def iter_multipart_parts(
    chunks: Iterable[bytes],
    boundary: Union[str, bytes]
) -> Iterator[MultipartPart]:
    """Decode parts of a multipart message received in chunks.

    Parameters
    ----------
    chunks: Iterable[bytes]
        Consecutive chunks of the message body (e.g., as returned by
        ``requests.Response.iter_content()``)
    boundary: Union[str, bytes]
        Boundary token of the message

    Returns
    -------
    Iterator[dicomweb_bridge.multipart.MultipartPart]
        Message parts in message order

    Raises
    ------
    dicomweb_bridge.error.ProtocolError
        When the body does not contain any delimiter or a part is malformed

    Note
    ----
    An optional preamble before the first delimiter and an epilogue after
    the close delimiter are ignored. The close delimiter itself is optional.

    """
    boundary = _as_bytes(boundary)
    if not boundary:
        raise ProtocolError('Empty multipart boundary.')
    delimiter = b''.join((_CRLF, b'--', boundary))
    # Prefix CRLF so that a delimiter at the very start of the body is found.
    data = _CRLF
    found_delimiter = False
    j = 0
    for chunk in chunks:
        data += chunk
        while delimiter in data:
            section, data = data.split(delimiter, maxsplit=1)
            if not found_delimiter:
                found_delimiter = True
                if section:
                    logger.debug(f'skip preamble of {len(section)} bytes')
                continue
            if section.startswith(b'--'):
                logger.debug('reached close delimiter')
                return
            j += 1
            part = _extract_part(section)
            logger.debug(f'extracted {part.length} bytes from part #{j}')
            yield part
        if found_delimiter and data.startswith(b'--'):
            logger.debug('reached close delimiter')
            return

    if not found_delimiter:
        raise ProtocolError(
            'Multipart message body does not contain the boundary '
            f'"{boundary.decode("utf-8", errors="replace")}".'
        )
    if data.startswith(b'--'):
        return
    # Last part of a message that lacks the close delimiter.
    if data.strip():
        j += 1
        part = _extract_part(data)
        logger.debug(f'extracted {part.length} bytes from part #{j}')
        yield part


def decode_multipart_message(
    body: bytes,
    boundary: Union[str, bytes]
) -> List[MultipartPart]:
    """Decode a complete multipart message body.

    Parameters
    ----------
    body: bytes
        HTTP message body
    boundary: Union[str, bytes]
        Boundary token of the message

    Returns
    -------
    List[dicomweb_bridge.multipart.MultipartPart]
        Message parts in message order

    Raises
    ------
    dicomweb_bridge.error.ProtocolError
        When the body cannot be split into well-formed parts

    """
    logger.debug('decode multipart message')
    return list(iter_multipart_parts([body], boundary))
