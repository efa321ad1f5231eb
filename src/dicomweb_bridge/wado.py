"""Legacy WADO-URI service (DICOM PS3.18 Section 6.2)."""
import io
import logging
from typing import Mapping, Tuple

from PIL import Image

from dicomweb_bridge.error import MalformedInput, StoreError, UnknownResource
from dicomweb_bridge.multipart import APPLICATION_DICOM
from dicomweb_bridge.protocol import ObjectStore, ResourceLevel


logger = logging.getLogger(__name__)

#: Media type returned if the request does not specify any
DEFAULT_CONTENT_TYPE = 'image/jpg'

_JPEG_CONTENT_TYPES = {'image/jpeg', 'image/jpg'}
_PNG_CONTENT_TYPE = 'image/png'


def _check_parent(
    store: ObjectStore,
    instance_id: str,
    object_uid: str,
    level: ResourceLevel,
    keyword: str,
    uid: str
) -> None:
    name = level.name.capitalize()
    if store.lookup(level, uid) is None:
        message = f'WADO: No such {keyword}: "{uid}"'
        logger.error(message)
        raise UnknownResource(message)
    tags = store.get_parent_tags(instance_id, level)
    if tags.get(keyword) != uid:
        message = (
            f'WADO: Instance {object_uid} does not belong to '
            f'{name.lower()} {uid}'
        )
        logger.error(message)
        raise MalformedInput(message)


def locate_instance(store: ObjectStore, args: Mapping[str, str]) -> str:
    """Find the instance addressed by the query parameters of a request.

    Parameters
    ----------
    store: dicomweb_bridge.protocol.ObjectStore
        Object store
    args: Mapping[str, str]
        Query parameters ``requestType``, ``objectUID`` and optionally
        ``studyUID`` and ``seriesUID``

    Returns
    -------
    str
        Identifier of the instance in the store

    Raises
    ------
    dicomweb_bridge.error.MalformedInput
        When a parameter is missing or invalid or the instance is not part
        of the given study or series
    dicomweb_bridge.error.UnknownResource
        When an UID is unknown to the store

    """
    request_type = args.get('requestType', '')
    if request_type != 'WADO':
        message = f'WADO: Invalid requestType: "{request_type}"'
        logger.error(message)
        raise MalformedInput(message)
    object_uid = args.get('objectUID', '')
    if not object_uid:
        message = 'WADO: No SOPInstanceUID provided'
        logger.error(message)
        raise MalformedInput(message)

    instance_id = store.lookup(ResourceLevel.INSTANCE, object_uid)
    if instance_id is None:
        message = f'WADO: No such SOPInstanceUID: "{object_uid}"'
        logger.error(message)
        raise UnknownResource(message)

    series_uid = args.get('seriesUID', '')
    if series_uid:
        _check_parent(
            store, instance_id, object_uid,
            ResourceLevel.SERIES, 'SeriesInstanceUID', series_uid
        )
    study_uid = args.get('studyUID', '')
    if study_uid:
        _check_parent(
            store, instance_id, object_uid,
            ResourceLevel.STUDY, 'StudyInstanceUID', study_uid
        )
    return instance_id


def _get_png_preview(store: ObjectStore, instance_id: str) -> bytes:
    png = store.get_preview(instance_id)
    if png is None:
        message = (
            f'WADO: Unable to generate a preview image for instance '
            f'"{instance_id}"'
        )
        logger.error(message)
        raise StoreError(message)
    return png


def convert_png_to_jpeg(png: bytes) -> bytes:
    """Re-encode a PNG image as JPEG.

    Parameters
    ----------
    png: bytes
        PNG image

    Returns
    -------
    bytes
        JPEG image

    Raises
    ------
    dicomweb_bridge.error.StoreError
        When ``png`` cannot be decoded

    """
    try:
        image = Image.open(io.BytesIO(png))
        if image.mode not in ('L', 'RGB'):
            image = image.convert('RGB')
        with io.BytesIO() as fp:
            image.save(fp, 'jpeg')
            fp.seek(0)
            return fp.read()
    except OSError as error:
        message = f'WADO: Unable to decode the preview image: {error}'
        logger.error(message)
        raise StoreError(message) from error


def answer_wado_request(
    store: ObjectStore,
    args: Mapping[str, str]
) -> Tuple[bytes, str]:
    """Answer a WADO-URI request.

    Parameters
    ----------
    store: dicomweb_bridge.protocol.ObjectStore
        Object store
    args: Mapping[str, str]
        Query parameters of the request

    Returns
    -------
    Tuple[bytes, str]
        Response message body and its media type

    Raises
    ------
    dicomweb_bridge.error.MalformedInput
        When the request is invalid or asks for an unsupported content type
    dicomweb_bridge.error.UnknownResource
        When the instance cannot be found
    dicomweb_bridge.error.StoreError
        When the file or the preview cannot be read from the store

    """
    instance_id = locate_instance(store, args)
    content_type = args.get('contentType') or DEFAULT_CONTENT_TYPE
    logger.debug(f'WADO: answer instance "{instance_id}" as {content_type}')

    if content_type == APPLICATION_DICOM:
        data = store.get_instance_file(instance_id)
        if data is None:
            message = (
                f'WADO: Unable to retrieve DICOM file of instance '
                f'"{instance_id}"'
            )
            logger.error(message)
            raise StoreError(message)
        return data, APPLICATION_DICOM
    if content_type == _PNG_CONTENT_TYPE:
        return _get_png_preview(store, instance_id), _PNG_CONTENT_TYPE
    if content_type in _JPEG_CONTENT_TYPES:
        png = _get_png_preview(store, instance_id)
        return convert_png_to_jpeg(png), 'image/jpeg'

    message = f'WADO: Unsupported content type: "{content_type}"'
    logger.error(message)
    raise MalformedInput(message)
