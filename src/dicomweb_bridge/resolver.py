"""Expansion of resources into the instances they contain."""
import logging
from typing import Any, Iterable, List, NamedTuple, Sequence, Union

from dicomweb_bridge.error import MalformedInput, UnknownResource
from dicomweb_bridge.protocol import ObjectStore, ResourceLevel


logger = logging.getLogger(__name__)

# Order in which the levels of an untyped identifier are tried
_RESOLUTION_ORDER = (
    ResourceLevel.INSTANCE,
    ResourceLevel.SERIES,
    ResourceLevel.STUDY,
    ResourceLevel.PATIENT,
)


class ResourceSelector(NamedTuple):

    """Identifier of a resource at a known level of the hierarchy."""

    level: ResourceLevel
    identifier: str


def _parse_instance_record(record: Any) -> str:
    if isinstance(record, str) and record:
        return record
    if isinstance(record, dict):
        for key in ('ID', 'id'):
            value = record.get(key)
            if isinstance(value, str) and value:
                return value
    raise MalformedInput(
        f'Cannot parse instance identifier from record: {record!r}'
    )


class ResourceResolver:

    """Resolver of patients, studies, series and instances into instances.

    Examples
    --------
    >>> resolver = ResourceResolver(store)
    >>> resolver.expand('6e2c0ec2-5d99c8ca-c1c21cee-79a09605-68391d12')
    ['d4dd9a5e-...', '8d5fd0a3-...']

    """

    def __init__(self, store: ObjectStore) -> None:
        """
        Parameters
        ----------
        store: dicomweb_bridge.protocol.ObjectStore
            Store that is queried for resources and their instances

        """
        self._store = store

    def expand(
        self,
        resource: Union[str, ResourceSelector]
    ) -> List[str]:
        """Expand a resource into the ordered identifiers of its instances.

        Parameters
        ----------
        resource: Union[str, dicomweb_bridge.resolver.ResourceSelector]
            Identifier of a resource at any level, which is tried as
            instance, series, study and patient in that order, or a selector
            of a resource at a known level

        Returns
        -------
        List[str]
            Identifiers of the instances contained in the resource

        Raises
        ------
        dicomweb_bridge.error.MalformedInput
            When the identifier is empty or an instance record returned by
            the store cannot be parsed
        dicomweb_bridge.error.UnknownResource
            When the store knows the identifier at none of the levels

        """
        if isinstance(resource, ResourceSelector):
            identifier = resource.identifier
            levels: Sequence[ResourceLevel] = (resource.level, )
        else:
            identifier = resource
            levels = _RESOLUTION_ORDER
        if not isinstance(identifier, str) or not identifier:
            raise MalformedInput(
                f'Resource identifier must be a non-empty string: '
                f'{identifier!r}'
            )

        for level in levels:
            if not self._store.exists(level, identifier):
                continue
            logger.debug(f'resource "{identifier}" is a {level.name.lower()}')
            if level == ResourceLevel.INSTANCE:
                return [identifier]
            records = self._store.list_instances(level, identifier)
            return [_parse_instance_record(r) for r in records]

        raise UnknownResource(f'Unknown resource: "{identifier}"')

    def expand_all(
        self,
        resources: Iterable[Union[str, ResourceSelector]]
    ) -> List[str]:
        """Expand resources into the concatenated identifiers of instances.

        Parameters
        ----------
        resources: Iterable[Union[str, dicomweb_bridge.resolver.ResourceSelector]]
            Resources in the order in which their instances are returned

        Returns
        -------
        List[str]
            Identifiers of instances

        """  # noqa: E501
        instances = []
        for resource in resources:
            instances.extend(self.expand(resource))
        return instances
