"""Content negotiation and validation of multipart/related framing."""
import logging
from enum import Enum
from http import HTTPStatus
from typing import Dict, NamedTuple, Optional, Tuple, Type

from dicomweb_bridge.error import (
    DICOMwebBridgeError,
    ProtocolError,
    UnsupportedMediaType,
)
from dicomweb_bridge.multipart import APPLICATION_DICOM


logger = logging.getLogger(__name__)

MULTIPART_RELATED = 'multipart/related'

_JSON_MEDIA_TYPES = {
    'application/dicom+json',
    'application/json',
    '*/*',
}
_XML_MEDIA_TYPES = {
    'application/dicom+xml',
    'application/xml',
    'text/xml',
}


class ResponseFormat(Enum):

    """Representation of a DICOM response message."""

    JSON = 'application/dicom+json'
    XML = 'application/dicom+xml'


class MultipartFraming(NamedTuple):

    """Parameters of a validated multipart/related media type."""

    boundary: str
    part_type: str


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return value[1:-1]
    return value


def parse_content_type(content_type: str) -> Tuple[str, Dict[str, str]]:
    """Parse a media type and its parameters.

    Parameters
    ----------
    content_type: str
        Value of a Content-Type header field,
        e.g. ``'multipart/related; type="application/dicom"; boundary=x'``

    Returns
    -------
    Tuple[str, Dict[str, str]]
        Lower-case media type and mapping of lower-case parameter names to
        unquoted parameter values

    """
    media_type, *ct_info = [ct.strip() for ct in content_type.split(';')]
    parameters = {}
    for item in ct_info:
        name, sep, value = item.partition('=')
        if not sep:
            continue
        parameters[name.strip().lower()] = _unquote(value)
    return media_type.lower(), parameters


def choose_response_format(accept: Optional[str]) -> ResponseFormat:
    """Choose the representation of a response from an Accept header.

    Parameters
    ----------
    accept: Union[str, None]
        Value of the Accept header field of the request message

    Returns
    -------
    dicomweb_bridge.negotiation.ResponseFormat
        DICOM JSON unless one of the DICOM XML media types was requested

    """
    if not accept:
        return ResponseFormat.JSON
    value = accept.strip().lower()
    if value in _JSON_MEDIA_TYPES:
        return ResponseFormat.JSON
    if value in _XML_MEDIA_TYPES:
        return ResponseFormat.XML
    logger.warning(
        f'unsupported return media type "{accept}", will return DICOM JSON'
    )
    return ResponseFormat.JSON


def _validate_framing(
    content_type: Optional[str],
    error_class: Type[DICOMwebBridgeError],
    sender: str
) -> MultipartFraming:
    if not content_type:
        raise error_class(
            f'No Content-Type provided by the {sender}.',
            HTTPStatus.BAD_REQUEST
        )
    media_type, parameters = parse_content_type(content_type)
    if media_type != MULTIPART_RELATED:
        raise error_class(
            f'The {sender} uses Content-Type "{media_type}", '
            f'but "{MULTIPART_RELATED}" is expected.',
            HTTPStatus.BAD_REQUEST
        )
    if 'type' not in parameters:
        raise error_class(
            f'No "type" parameter found in Content-Type of the {sender}.',
            HTTPStatus.BAD_REQUEST
        )
    boundary = parameters.get('boundary', '')
    if not boundary:
        raise error_class(
            f'No "boundary" parameter found in Content-Type of the {sender}.',
            HTTPStatus.BAD_REQUEST
        )
    part_type = parameters['type'].lower()
    if part_type != APPLICATION_DICOM:
        raise error_class(
            f'The {sender} uses multipart type "{part_type}", '
            f'but "{APPLICATION_DICOM}" is expected.',
            HTTPStatus.UNSUPPORTED_MEDIA_TYPE
        )
    return MultipartFraming(boundary, part_type)


def validate_inbound_framing(content_type: Optional[str]) -> MultipartFraming:
    """Validate the Content-Type of an inbound STOW-RS request message.

    Parameters
    ----------
    content_type: Union[str, None]
        Value of the Content-Type header field

    Returns
    -------
    dicomweb_bridge.negotiation.MultipartFraming
        Boundary and type of the message parts

    Raises
    ------
    dicomweb_bridge.error.UnsupportedMediaType
        When the media type is not ``multipart/related`` with type
        ``application/dicom`` and a boundary (the status code of the error
        is 415 for a wrong type and 400 for missing or malformed framing)

    """
    return _validate_framing(content_type, UnsupportedMediaType, 'request')


def validate_multipart_response(
    content_type: Optional[str]
) -> MultipartFraming:
    """Validate the Content-Type of a WADO-RS response message.

    Parameters
    ----------
    content_type: Union[str, None]
        Value of the Content-Type header field

    Returns
    -------
    dicomweb_bridge.negotiation.MultipartFraming
        Boundary and type of the message parts

    Raises
    ------
    dicomweb_bridge.error.ProtocolError
        When the remote server did not answer with ``multipart/related``
        with type ``application/dicom`` and a boundary

    """
    try:
        return _validate_framing(
            content_type, ProtocolError, 'remote WADO-RS server'
        )
    except ProtocolError as error:
        logger.error(str(error))
        # Remote framing failures always report the default status code
        raise ProtocolError(str(error)) from error
