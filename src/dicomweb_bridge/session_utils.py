import logging
import os
from typing import Optional

import requests

from dicomweb_bridge.config import ObjectStoreDescriptor, ServerDescriptor


logger = logging.getLogger(__name__)


def create_session() -> requests.Session:
    """Creates an unauthorized session.

    Returns
    -------
    requests.Session
        unauthorized session

    """
    logger.debug('initialize HTTP session')
    return requests.Session()


def create_session_from_user_pass(
    username: str,
    password: str
) -> requests.Session:
    """Creates a session from a given username and password.

    Parameters
    ----------
    username: str
        username for authentication with services
    password: str
        password for authentication with services

    Returns
    -------
    requests.Session
        authorized session

    """
    session = create_session()
    logger.debug('authenticate and authorize HTTP session')
    session.auth = (username, password)
    return session


def add_certs_to_session(
    session: requests.Session,
    ca_bundle: Optional[str] = None,
    cert: Optional[str] = None
) -> requests.Session:
    """Adds CA bundle and certificate to an existing session.

    Parameters
    ----------
    session: requests.Session
        input session
    ca_bundle: str, optional
        path to CA bundle file
    cert: str, optional
        path to client certificate file in Privacy Enhanced Mail (PEM) format

    Returns
    -------
    requests.Session
        verified session

    """
    if ca_bundle is not None:
        ca_bundle = os.path.expanduser(os.path.expandvars(ca_bundle))
        if not os.path.exists(ca_bundle):
            raise OSError(f'CA bundle file does not exist: {ca_bundle}')
        logger.debug(f'use CA bundle file: {ca_bundle}')
        session.verify = ca_bundle
    if cert is not None:
        cert = os.path.expanduser(os.path.expandvars(cert))
        if not os.path.exists(cert):
            raise OSError(f'Certificate file does not exist: {cert}')
        logger.debug(f'use certificate file: {cert}')
        session.cert = cert
    return session


def create_session_from_descriptor(
    descriptor: ServerDescriptor
) -> requests.Session:
    """Creates a session for a configured remote DICOMweb server.

    Parameters
    ----------
    descriptor: dicomweb_bridge.config.ServerDescriptor
        remote server

    Returns
    -------
    requests.Session
        session carrying the credentials, certificates and static header
        fields of the server

    """
    if descriptor.username is not None:
        session = create_session_from_user_pass(
            descriptor.username,
            descriptor.password or ''
        )
    else:
        session = create_session()
    session.headers.update(descriptor.http_headers)
    return add_certs_to_session(
        session,
        ca_bundle=descriptor.ca_bundle,
        cert=descriptor.cert
    )


def create_store_session(
    descriptor: ObjectStoreDescriptor
) -> requests.Session:
    """Creates a session for the REST API of the object store.

    Parameters
    ----------
    descriptor: dicomweb_bridge.config.ObjectStoreDescriptor
        object store

    Returns
    -------
    requests.Session
        session

    """
    if descriptor.username is not None:
        return create_session_from_user_pass(
            descriptor.username,
            descriptor.password or ''
        )
    return create_session()
