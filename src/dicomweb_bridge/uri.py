"""Utilities for DICOMweb URI manipulation."""
from typing import Any, Mapping, Optional
from urllib.parse import quote_plus


def build_query_string(params: Optional[Mapping[str, Any]] = None) -> str:
    """Build query string for a request message.

    Parameters
    ----------
    params: Union[Mapping[str, Any], None], optional
        Query parameters as mapping of key-value pairs;
        in case a key should be included more than once with different
        values, values need to be provided in form of an iterable (e.g.,
        ``{"key": ["value1", "value2"]}`` will result in
        ``"?key=value1&key=value2"``)

    Returns
    -------
    str
        Query string

    """
    if params is None:
        return ''
    components = []
    for key, value in params.items():
        if isinstance(value, (list, tuple, set)):
            for v in value:
                c = '='.join([key, quote_plus(str(v))])
                components.append(c)
        else:
            c = '='.join([key, quote_plus(str(value))])
            components.append(c)
    if len(components) > 0:
        return '?{}'.format('&'.join(components))
    return ''


def build_resource_path(
    study_instance_uid: str,
    series_instance_uid: Optional[str] = None,
    sop_instance_uid: Optional[str] = None
) -> str:
    """Build the hierarchical path of a WADO-RS resource.

    Parameters
    ----------
    study_instance_uid: str
        Study Instance UID
    series_instance_uid: Union[str, None], optional
        Series Instance UID
    sop_instance_uid: Union[str, None], optional
        SOP Instance UID (requires `series_instance_uid`)

    Returns
    -------
    str
        Relative path, e.g. ``"studies/1.2.3/series/1.2.4"``

    """
    if not study_instance_uid:
        raise ValueError('Study Instance UID is required.')
    if sop_instance_uid and not series_instance_uid:
        raise ValueError(
            'Series Instance UID is required to build the path of an instance.'
        )
    path = f'studies/{study_instance_uid}'
    if series_instance_uid:
        path += f'/series/{series_instance_uid}'
        if sop_instance_uid:
            path += f'/instances/{sop_instance_uid}'
    return path


def join_url(base_url: str, uri: str) -> str:
    """Append a relative URI to a base URL.

    Parameters
    ----------
    base_url: str
        Base URL, e.g. ``"http://localhost:8042/dicom-web"``
    uri: str
        Relative path, e.g. ``"studies"``

    Returns
    -------
    str
        Absolute URL with exactly one slash between both components

    """
    if not uri:
        return base_url
    return '/'.join([base_url.rstrip('/'), uri.lstrip('/')])
