"""Transport of request messages to a remote DICOMweb server over HTTP."""
import logging
import re
from http import HTTPStatus
from typing import (
    Any,
    Dict,
    Iterator,
    Mapping,
    NamedTuple,
    Optional,
    Tuple,
)

import requests
import retrying

from dicomweb_bridge.config import ServerDescriptor
from dicomweb_bridge.error import HTTPError
from dicomweb_bridge.session_utils import create_session_from_descriptor
from dicomweb_bridge.uri import build_query_string, join_url


logger = logging.getLogger(__name__)


class RetryPolicy(NamedTuple):

    """Repetition of requests answered with a transient failure."""

    max_attempts: int = 5
    wait_exponential_multiplier: int = 1000
    retriable_status_codes: Tuple[HTTPStatus, ...] = (
        HTTPStatus.TOO_MANY_REQUESTS,
        HTTPStatus.REQUEST_TIMEOUT,
        HTTPStatus.SERVICE_UNAVAILABLE,
        HTTPStatus.GATEWAY_TIMEOUT,
    )


class DICOMwebTransport:

    """Class for sending request messages to a DICOMweb RESTful service.

    Attributes
    ----------
    base_url: str
        Unique resource locator of the DICOMweb service
    protocol: str
        Name of the protocol, e.g. ``"https"``
    host: str
        IP address or DNS name of the machine that hosts the server
    port: int
        Number of the port to which the server listens
    chunk_size: int
        Maximum number of bytes that should be transferred per data chunk
        when streaming request or response message bodies

    """

    def set_chunk_size(self, chunk_size: int) -> None:
        """Set the size of the chunks of streamed message bodies."""
        self._chunk_size = chunk_size

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def set_http_retry_params(
        self,
        retry: bool = True,
        max_attempts: int = 5,
        wait_exponential_multiplier: int = 1000,
        retriable_error_codes: Tuple[HTTPStatus, ...] = (
            RetryPolicy().retriable_status_codes
        )
    ) -> None:
        """Configure how requests are repeated when the server is busy.

        A request is sent again, after an exponentially growing delay, as
        long as the server answers with one of `retriable_error_codes` and
        fewer than `max_attempts` attempts were made.

        Parameters
        ----------
        retry: bool, optional
            Whether requests are repeated at all (if ``False``, every request
            is sent exactly once and the other parameters are ignored)
        max_attempts: int, optional
            Maximum number of attempts per request
        wait_exponential_multiplier: int, optional
            Multiplier of the exponential delay between attempts in ms
        retriable_error_codes: Tuple[http.HTTPStatus, ...], optional
            Status codes that cause a request to be repeated

        """
        if retry:
            self._retry_policy = RetryPolicy(
                max_attempts,
                wait_exponential_multiplier,
                tuple(retriable_error_codes)
            )
        else:
            self._retry_policy = RetryPolicy(1, 1, ())

    def _is_retriable_http_error(
        self,
        response: requests.models.Response
    ) -> bool:
        codes = self._retry_policy.retriable_status_codes
        return response.status_code in codes

    def __init__(
        self,
        url: str,
        session: Optional[requests.Session] = None,
        chunk_size: int = 10**6,
        timeout: Optional[float] = None
    ) -> None:
        """Instatiate transport.

        Parameters
        ----------
        url: str
            Unique resource locator of the DICOMweb service consisting of
            protocol, hostname (IP address or DNS name) of the machine that
            hosts the service and optionally port number and path prefix
        session: Union[requests.Session, None], optional
            Session required to make connections to the DICOMweb service
            (see ``dicomweb_bridge.session_utils`` module to create a valid
            session if necessary)
        chunk_size: int, optional
            Maximum number of bytes that should be transferred per data chunk
            when streaming request or response message bodies; defaults to
            ``10**6`` bytes (1MB)
        timeout: Union[float, None], optional
            Number of seconds to wait for the server before giving up

        """
        if session is None:
            logger.debug('initialize HTTP session')
            session = requests.session()
        self._session = session
        self.base_url = url

        # <scheme>://<host>(:<port>)(/<prefix>)
        pattern = re.compile(
            r'(?P<scheme>[https]+)://(?P<host>[^/:]+)'
            r'(?::(?P<port>\d+))?(?:(?P<prefix>/[\w/.-]*))?'
        )
        match = re.match(pattern, self.base_url)
        if match is None:
            raise ValueError(f'Malformed URL: {self.base_url}')
        self.protocol = match.group('scheme')
        self.host = match.group('host')
        port = match.group('port')
        if port:
            self.port = int(port)
        elif self.protocol == 'http':
            self.port = 80
        elif self.protocol == 'https':
            self.port = 443
        else:
            raise ValueError(
                f'URL scheme "{self.protocol}" is not supported.'
            )
        self._timeout = timeout
        self._chunk_size = chunk_size
        self.set_http_retry_params()

    @classmethod
    def from_descriptor(
        cls,
        descriptor: ServerDescriptor,
        **kwargs: Any
    ) -> 'DICOMwebTransport':
        """Instantiate transport for a configured remote server.

        Parameters
        ----------
        descriptor: dicomweb_bridge.config.ServerDescriptor
            Remote server
        **kwargs: Any
            Additional arguments passed to the constructor

        Returns
        -------
        dicomweb_bridge.transport.DICOMwebTransport
            Transport

        """
        session = create_session_from_descriptor(descriptor)
        return cls(descriptor.url, session=session, **kwargs)

    def _serve_data_chunks(self, data: bytes) -> Iterator[bytes]:
        for i, offset in enumerate(range(0, len(data), self._chunk_size)):
            logger.debug(f'serve data chunk #{i}')
            end = offset + self._chunk_size
            yield data[offset:end]

    def send(
        self,
        method: str,
        uri: str,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        body: Optional[bytes] = None,
        stream: bool = False
    ) -> requests.Response:
        """Perform an HTTP request.

        Parameters
        ----------
        method: str
            HTTP method (e.g. ``"GET"`` or ``"POST"``)
        uri: str
            Path relative to the base URL of the service
        headers: Union[Mapping[str, str], None], optional
            Request message headers
        params: Union[Mapping[str, Any], None], optional
            Query parameters
        body: Union[bytes, None], optional
            Request message payload; payloads larger than `chunk_size` are
            sent using chunked transfer encoding
        stream: bool, optional
            Whether the response message body should be streamed

        Returns
        -------
        requests.Response
            Response message

        Raises
        ------
        dicomweb_bridge.error.HTTPError
            When the server responds with a failure status code
        retrying.RetryError
            When a retriable status code persists after all attempts

        """
        policy = self._retry_policy

        @retrying.retry(
            retry_on_result=self._is_retriable_http_error,
            wait_exponential_multiplier=policy.wait_exponential_multiplier,
            stop_max_attempt_number=policy.max_attempts
        )
        def _invoke_request(
            url: str,
            headers: Dict[str, str],
            chunked: bool
        ) -> requests.models.Response:
            logger.debug(f'{method}: {url} {headers}')
            # A generator is exhausted by each attempt
            data: Any = self._serve_data_chunks(body) if chunked else body
            return self._session.request(
                method,
                url,
                headers=headers,
                data=data,
                stream=stream,
                timeout=self._timeout
            )

        request_headers = dict(headers) if headers is not None else {}
        url = join_url(self.base_url, uri) + build_query_string(params)
        chunked = body is not None and len(body) > self._chunk_size
        if chunked:
            logger.info('send data in chunks using chunked transfer encoding')
            request_headers['Transfer-Encoding'] = 'chunked'
            request_headers.setdefault('Cache-Control', 'no-cache')
            request_headers.setdefault('Connection', 'Keep-Alive')
        response = _invoke_request(url, request_headers, chunked)
        logger.debug(f'request status code: {response.status_code}')
        if not response.ok:
            message = (
                f'{method} {url} failed with status code '
                f'{response.status_code}: {response.reason}'
            )
            logger.error(message)
            response.close()
            raise HTTPError(message, response=response)
        return response
