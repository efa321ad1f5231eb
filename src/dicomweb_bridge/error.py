'''Custom error classes'''
from http import HTTPStatus
from typing import Optional

import requests


class DICOMwebBridgeError(Exception):
    '''Base exception class; carries the HTTP status reported to callers.'''

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None
    ) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class MalformedInput(DICOMwebBridgeError, ValueError):
    '''Exception class for structurally invalid client-supplied input.'''
    status_code = HTTPStatus.BAD_REQUEST


class UnknownResource(DICOMwebBridgeError, LookupError):
    '''Exception class for identifiers that cannot be located.'''
    status_code = HTTPStatus.NOT_FOUND


class UnsupportedMediaType(DICOMwebBridgeError):
    '''Exception class for request messages violating multipart framing.'''
    status_code = HTTPStatus.UNSUPPORTED_MEDIA_TYPE


class ProtocolError(DICOMwebBridgeError):
    '''Exception class for responses violating the DICOMweb contract.'''
    pass


class StoreError(DICOMwebBridgeError):
    '''Exception class for rejected object store reads or writes.'''
    pass


class NotEnoughMemory(DICOMwebBridgeError, MemoryError):
    '''Exception class for failures to generate internal tokens.'''
    pass


class HTTPError(requests.exceptions.HTTPError):
    '''Exception class for HTTP requests with failure status codes.'''
    pass
