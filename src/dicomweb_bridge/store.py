"""Object store reached through an Orthanc-compatible REST API."""
import logging
from http import HTTPStatus
from typing import Any, Dict, List, Optional

import requests

from dicomweb_bridge.config import ObjectStoreDescriptor
from dicomweb_bridge.error import StoreError
from dicomweb_bridge.protocol import ResourceLevel
from dicomweb_bridge.session_utils import create_store_session
from dicomweb_bridge.uri import join_url


logger = logging.getLogger(__name__)

_LOOKUP_TYPES = {
    'Patient': ResourceLevel.PATIENT,
    'Study': ResourceLevel.STUDY,
    'Series': ResourceLevel.SERIES,
    'Instance': ResourceLevel.INSTANCE,
}
_PARENT_PATHS = {
    ResourceLevel.PATIENT: 'patient',
    ResourceLevel.STUDY: 'study',
    ResourceLevel.SERIES: 'series',
}


class RestObjectStore:

    """Object store exposing patients, studies, series and instances.

    Resources are addressed as ``/{level}/{id}``; the instances of a
    resource are listed at ``/{level}/{id}/instances`` and DICOM files are
    read from ``/instances/{id}/file`` and written to ``/instances``.

    """

    def __init__(
        self,
        url: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None
    ) -> None:
        """
        Parameters
        ----------
        url: str
            Base URL of the REST API (e.g. ``"http://localhost:8042"``)
        session: Union[requests.Session, None], optional
            Session used for all requests
        timeout: Union[float, None], optional
            Number of seconds to wait for the store before giving up

        """
        self.base_url = url
        if session is None:
            session = requests.Session()
        self._session = session
        self._timeout = timeout

    @classmethod
    def from_descriptor(
        cls,
        descriptor: ObjectStoreDescriptor
    ) -> 'RestObjectStore':
        return cls(descriptor.url, session=create_store_session(descriptor))

    def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any
    ) -> requests.Response:
        url = join_url(self.base_url, path)
        logger.debug(f'{method} object store: {url}')
        try:
            return self._session.request(
                method, url, timeout=self._timeout, **kwargs
            )
        except requests.exceptions.RequestException as error:
            raise StoreError(f'Cannot reach object store at {url}: {error}')

    def _get(self, path: str) -> Optional[requests.Response]:
        response = self._request('GET', path)
        if response.status_code == HTTPStatus.NOT_FOUND:
            return None
        if not response.ok:
            raise StoreError(
                f'Object store answered {response.status_code} to GET {path}'
            )
        return response

    def _get_json(self, path: str) -> Optional[Any]:
        response = self._get(path)
        if response is None:
            return None
        try:
            return response.json()
        except ValueError:
            raise StoreError(f'Object store answered invalid JSON to {path}')

    def get_instance_file(self, instance_id: str) -> Optional[bytes]:
        response = self._get(f'instances/{instance_id}/file')
        if response is None:
            return None
        return response.content

    def exists(self, level: ResourceLevel, resource_id: str) -> bool:
        return self._get(f'{level.value}/{resource_id}') is not None

    def list_instances(
        self,
        level: ResourceLevel,
        resource_id: str
    ) -> List[Any]:
        if level == ResourceLevel.INSTANCE:
            return [resource_id]
        instances = self._get_json(f'{level.value}/{resource_id}/instances')
        if instances is None:
            return []
        if not isinstance(instances, list):
            raise StoreError(
                f'Object store did not list the instances of {level.value} '
                f'"{resource_id}" as an array.'
            )
        return instances

    def store_instance(self, data: bytes) -> str:
        response = self._request(
            'POST',
            'instances',
            data=data,
            headers={'Content-Type': 'application/dicom'}
        )
        if not response.ok:
            raise StoreError(
                f'Object store was unable to store instance '
                f'(status code {response.status_code})'
            )
        try:
            result = response.json()
        except ValueError:
            raise StoreError('Object store answered invalid JSON to a store')
        if not isinstance(result, dict) or \
                not isinstance(result.get('ID'), str):
            raise StoreError(
                'Object store did not return the identifier of the stored '
                'instance.'
            )
        return result['ID']

    def lookup(self, level: ResourceLevel, uid: str) -> Optional[str]:
        response = self._request('POST', 'tools/lookup', data=uid)
        if not response.ok:
            raise StoreError(
                f'Object store answered {response.status_code} to a lookup'
            )
        try:
            matches = response.json()
        except ValueError:
            raise StoreError('Object store answered invalid JSON to a lookup')
        if not isinstance(matches, list):
            raise StoreError('Object store did not answer a lookup as array')
        for match in matches:
            if not isinstance(match, dict):
                continue
            if _LOOKUP_TYPES.get(match.get('Type')) == level:
                return match.get('ID')
        return None

    def get_parent_tags(
        self,
        instance_id: str,
        level: ResourceLevel
    ) -> Dict[str, str]:
        try:
            parent_path = _PARENT_PATHS[level]
        except KeyError:
            raise ValueError(f'Instances have no parent at level {level}.')
        parent = self._get_json(f'instances/{instance_id}/{parent_path}')
        if not isinstance(parent, dict):
            return {}
        return parent.get('MainDicomTags', {})

    def get_preview(self, instance_id: str) -> Optional[bytes]:
        response = self._get(f'instances/{instance_id}/preview')
        if response is None:
            return None
        return response.content
