import enum
from typing import (
    Any,
    Dict,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

import requests


class ResourceLevel(enum.Enum):

    """Level of a resource in the patient/study/series/instance hierarchy."""

    PATIENT = 'patients'
    STUDY = 'studies'
    SERIES = 'series'
    INSTANCE = 'instances'


@runtime_checkable
class ObjectStore(Protocol):

    """Protocol for the object store holding DICOM instances."""

    def get_instance_file(self, instance_id: str) -> Optional[bytes]:
        """Read the DICOM file of an instance.

        Parameters
        ----------
        instance_id: str
            Identifier of the instance in the store

        Returns
        -------
        Union[bytes, None]
            DICOM Part10 file or ``None`` if the instance does not exist

        Raises
        ------
        dicomweb_bridge.error.StoreError
            When the store cannot be read

        """
        pass

    def exists(self, level: ResourceLevel, resource_id: str) -> bool:
        """Determine whether a resource exists at a given level.

        Parameters
        ----------
        level: dicomweb_bridge.protocol.ResourceLevel
            Level of the resource
        resource_id: str
            Identifier of the resource in the store

        Returns
        -------
        bool
            Whether the store knows the resource at this level

        """
        pass

    def list_instances(
        self,
        level: ResourceLevel,
        resource_id: str
    ) -> Sequence[Any]:
        """List the instances contained in a resource.

        Parameters
        ----------
        level: dicomweb_bridge.protocol.ResourceLevel
            Level of the resource
        resource_id: str
            Identifier of the resource in the store

        Returns
        -------
        Sequence[Any]
            Instance records, either identifiers or mappings with an
            ``"ID"`` field

        """
        pass

    def store_instance(self, data: bytes) -> str:
        """Store a DICOM file.

        Parameters
        ----------
        data: bytes
            DICOM Part10 file

        Returns
        -------
        str
            Identifier assigned to the instance by the store

        Raises
        ------
        dicomweb_bridge.error.StoreError
            When the store rejects the file

        """
        pass

    def lookup(self, level: ResourceLevel, uid: str) -> Optional[str]:
        """Map a DICOM UID to the identifier of a resource in the store.

        Parameters
        ----------
        level: dicomweb_bridge.protocol.ResourceLevel
            Level of the resource (study, series or instance)
        uid: str
            Study, Series or SOP Instance UID

        Returns
        -------
        Union[str, None]
            Identifier or ``None`` if no such resource is stored

        """
        pass

    def get_parent_tags(
        self,
        instance_id: str,
        level: ResourceLevel
    ) -> Dict[str, str]:
        """Get the main DICOM tags of the series or study of an instance.

        Parameters
        ----------
        instance_id: str
            Identifier of the instance in the store
        level: dicomweb_bridge.protocol.ResourceLevel
            Level of the parent (series or study)

        Returns
        -------
        Dict[str, str]
            Tag values by keyword (e.g. ``"SeriesInstanceUID"``)

        """
        pass

    def get_preview(self, instance_id: str) -> Optional[bytes]:
        """Get a PNG preview image of an instance.

        Parameters
        ----------
        instance_id: str
            Identifier of the instance in the store

        Returns
        -------
        Union[bytes, None]
            PNG image or ``None`` if no preview could be generated

        """
        pass


@runtime_checkable
class Transport(Protocol):

    """Protocol for the HTTP transport to a remote DICOMweb server."""

    def send(
        self,
        method: str,
        uri: str,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        body: Optional[bytes] = None,
        stream: bool = False
    ) -> requests.Response:
        """Send a request message to the remote server.

        Parameters
        ----------
        method: str
            HTTP method (e.g. ``"POST"``)
        uri: str
            Path relative to the base URL of the server (e.g. ``"studies"``)
        headers: Union[Mapping[str, str], None], optional
            Request header fields, passed through unmodified
        params: Union[Mapping[str, Any], None], optional
            Query parameters
        body: Union[bytes, None], optional
            Request message body
        stream: bool, optional
            Whether the response body should be streamed

        Returns
        -------
        requests.Response
            Response message with a successful status code

        """
        pass
