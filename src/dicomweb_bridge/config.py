"""Configuration of the bridge: limits, remote servers and object store."""
import json
import logging
import os
from typing import Any, List, Mapping, NamedTuple, Optional

from dicomweb_bridge.error import MalformedInput, UnknownResource


logger = logging.getLogger(__name__)

_MEGABYTE = 1024 * 1024
_DEFAULT_STORE_URL = 'http://localhost:8042'


class ServerDescriptor(NamedTuple):

    """Remote DICOMweb server."""

    name: str
    url: str
    username: Optional[str] = None
    password: Optional[str] = None
    http_headers: Mapping[str, str] = {}
    ca_bundle: Optional[str] = None
    cert: Optional[str] = None


class ObjectStoreDescriptor(NamedTuple):

    """REST API of the local object store."""

    url: str = _DEFAULT_STORE_URL
    username: Optional[str] = None
    password: Optional[str] = None


class BatchLimits(NamedTuple):

    """Thresholds that trigger the flush of an outbound STOW-RS batch.

    A value of zero disables the corresponding threshold.

    """

    max_instances: int = 10
    max_bytes: int = 10 * _MEGABYTE


def _get_int(section: Mapping[str, Any], key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedInput(
            f'Configuration option "{key}" must be a non-negative integer.'
        )
    return value


def _get_str(
    section: Mapping[str, Any],
    key: str,
    default: Optional[str] = None
) -> Optional[str]:
    value = section.get(key, default)
    if value is not None and not isinstance(value, str):
        raise MalformedInput(f'Configuration option "{key}" must be a string.')
    return value


def _parse_server(name: str, value: Any) -> ServerDescriptor:
    if isinstance(value, list):
        # Short form: [url] or [url, username, password]
        if len(value) not in (1, 3) or \
                not all(isinstance(v, str) for v in value):
            raise MalformedInput(
                f'DICOMweb server "{name}" must be given as [url] or '
                '[url, username, password].'
            )
        if len(value) == 1:
            return ServerDescriptor(name, value[0])
        return ServerDescriptor(name, value[0], value[1], value[2])
    if not isinstance(value, dict):
        raise MalformedInput(
            f'DICOMweb server "{name}" must be a JSON object or array.'
        )
    url = _get_str(value, 'Url')
    if not url:
        raise MalformedInput(f'DICOMweb server "{name}" has no "Url".')
    http_headers = value.get('HttpHeaders', {})
    if not isinstance(http_headers, dict) or not all(
        isinstance(v, str) for v in http_headers.values()
    ):
        raise MalformedInput(
            f'"HttpHeaders" of DICOMweb server "{name}" must map strings '
            'to strings.'
        )
    return ServerDescriptor(
        name=name,
        url=url,
        username=_get_str(value, 'Username'),
        password=_get_str(value, 'Password'),
        http_headers=dict(http_headers),
        ca_bundle=_get_str(value, 'CaBundle'),
        cert=_get_str(value, 'CertificateFile'),
    )


class BridgeConfig:

    """Configuration shared read-only by all requests.

    Attributes
    ----------
    root: str
        URL path under which the DICOMweb endpoints are served
    public_root: Union[str, None]
        Absolute URL of the DICOMweb endpoints as seen by clients, used to
        build retrieve URLs (derived from each request if ``None``)
    limits: dicomweb_bridge.config.BatchLimits
        Thresholds of outbound STOW-RS batches
    servers: Dict[str, dicomweb_bridge.config.ServerDescriptor]
        Remote DICOMweb servers by name
    object_store: dicomweb_bridge.config.ObjectStoreDescriptor
        Local object store

    """

    def __init__(
        self,
        root: str = '/dicom-web/',
        public_root: Optional[str] = None,
        limits: Optional[BatchLimits] = None,
        servers: Optional[Mapping[str, ServerDescriptor]] = None,
        object_store: Optional[ObjectStoreDescriptor] = None
    ) -> None:
        if not root.startswith('/'):
            root = '/' + root
        if not root.endswith('/'):
            root += '/'
        self.root = root
        if public_root is not None and not public_root.endswith('/'):
            public_root += '/'
        self.public_root = public_root
        self.limits = limits if limits is not None else BatchLimits()
        self.servers = dict(servers) if servers is not None else {}
        if object_store is None:
            object_store = ObjectStoreDescriptor()
        self.object_store = object_store

    @classmethod
    def from_dict(cls, document: Mapping[str, Any]) -> 'BridgeConfig':
        """Create the configuration from a parsed JSON document.

        Parameters
        ----------
        document: Mapping[str, Any]
            Configuration with a ``"DicomWeb"`` and an optional
            ``"ObjectStore"`` section

        Returns
        -------
        dicomweb_bridge.config.BridgeConfig
            Configuration

        Raises
        ------
        dicomweb_bridge.error.MalformedInput
            When an option has an invalid type or value

        """
        section = document.get('DicomWeb', {})
        if not isinstance(section, dict):
            raise MalformedInput('"DicomWeb" section must be a JSON object.')
        limits = BatchLimits(
            max_instances=_get_int(section, 'StowMaxInstances', 10),
            max_bytes=_get_int(section, 'StowMaxSize', 10) * _MEGABYTE,
        )
        servers_section = section.get('Servers', {})
        if not isinstance(servers_section, dict):
            raise MalformedInput('"Servers" must be a JSON object.')
        servers = {
            name: _parse_server(name, value)
            for name, value in servers_section.items()
        }
        store_section = document.get('ObjectStore', {})
        if not isinstance(store_section, dict):
            raise MalformedInput(
                '"ObjectStore" section must be a JSON object.'
            )
        object_store = ObjectStoreDescriptor(
            url=_get_str(store_section, 'Url', _DEFAULT_STORE_URL),
            username=_get_str(store_section, 'Username'),
            password=_get_str(store_section, 'Password'),
        )
        return cls(
            root=_get_str(section, 'Root', '/dicom-web/'),
            public_root=_get_str(section, 'PublicRoot'),
            limits=limits,
            servers=servers,
            object_store=object_store,
        )

    def get_server(self, name: str) -> ServerDescriptor:
        """Look up a remote DICOMweb server.

        Parameters
        ----------
        name: str
            Name of the server in the configuration

        Returns
        -------
        dicomweb_bridge.config.ServerDescriptor
            Server

        Raises
        ------
        dicomweb_bridge.error.UnknownResource
            When no server of that name is configured

        """
        try:
            return self.servers[name]
        except KeyError:
            raise UnknownResource(
                f'Inexistent DICOMweb server: "{name}"'
            )

    def list_servers(self) -> List[str]:
        return sorted(self.servers)


def load_config(filename: str) -> BridgeConfig:
    """Load the configuration from a JSON file.

    Parameters
    ----------
    filename: str
        Path to the configuration file (``~`` and environment variables
        are expanded)

    Returns
    -------
    dicomweb_bridge.config.BridgeConfig
        Configuration

    """
    filename = os.path.expanduser(os.path.expandvars(filename))
    logger.debug(f'read configuration file: {filename}')
    with open(filename, 'r') as f:
        try:
            document = json.load(f)
        except json.JSONDecodeError as error:
            raise MalformedInput(
                f'Configuration file "{filename}" is not valid JSON: {error}'
            )
    if not isinstance(document, dict):
        raise MalformedInput(
            f'Configuration file "{filename}" must contain a JSON object.'
        )
    return BridgeConfig.from_dict(document)
