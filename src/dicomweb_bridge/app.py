"""Flask application exposing the DICOMweb endpoints of the bridge."""
import json
import logging
from http import HTTPStatus
from typing import Callable, Optional

import flask
import requests
import retrying

from dicomweb_bridge.config import BridgeConfig, ServerDescriptor
from dicomweb_bridge.error import DICOMwebBridgeError
from dicomweb_bridge.protocol import ObjectStore, Transport
from dicomweb_bridge.retrieve import (
    RetrieveOrchestrator,
    get_from_server,
    parse_get_request,
    parse_retrieve_request,
)
from dicomweb_bridge.store import RestObjectStore
from dicomweb_bridge.stow import StowClient, StowServer, parse_stow_request
from dicomweb_bridge.transport import DICOMwebTransport
from dicomweb_bridge.wado import answer_wado_request


logger = logging.getLogger(__name__)

TransportFactory = Callable[[ServerDescriptor], Transport]

_JSON = 'application/json'


def _json_response(
    document: object,
    status: int = HTTPStatus.OK
) -> flask.Response:
    return flask.Response(
        response=json.dumps(document, indent=2) + '\n',
        status=status,
        content_type=_JSON,
    )


def _error_response(
    status: int,
    message: str,
    error: str
) -> flask.Response:
    return _json_response(
        {
            'HttpStatus': int(status),
            'Message': message,
            'Error': error,
        },
        status=status
    )


def create_blueprint(
    config: BridgeConfig,
    store: ObjectStore,
    transport_factory: TransportFactory
) -> flask.Blueprint:
    """Create the blueprint serving the endpoints below the DICOMweb root.

    Parameters
    ----------
    config: dicomweb_bridge.config.BridgeConfig
        Configuration
    store: dicomweb_bridge.protocol.ObjectStore
        Object store
    transport_factory: Callable[[dicomweb_bridge.config.ServerDescriptor], dicomweb_bridge.protocol.Transport]
        Factory of transports to configured remote servers

    Returns
    -------
    flask.Blueprint
        Blueprint

    """  # noqa: E501
    blueprint = flask.Blueprint(
        'dicomweb',
        __name__,
        url_prefix=config.root.rstrip('/') or None,
    )

    def _get_transport(name: str) -> Transport:
        return transport_factory(config.get_server(name))

    def _get_public_root() -> str:
        if config.public_root is not None:
            return config.public_root
        return flask.request.host_url.rstrip('/') + config.root

    @blueprint.route('/studies', methods=['POST'])
    @blueprint.route('/studies/<string:study>', methods=['POST'])
    def stow_server(study: Optional[str] = None) -> flask.Response:
        server = StowServer(store, _get_public_root())
        body, content_type = server.handle(
            flask.request.get_data(),
            flask.request.headers.get('Content-Type'),
            accept=flask.request.headers.get('Accept'),
            expected_study=study
        )
        return flask.Response(
            response=body,
            status=HTTPStatus.OK,
            content_type=content_type,
        )

    @blueprint.route('/servers', methods=['GET'])
    def list_servers() -> flask.Response:
        return _json_response(config.list_servers())

    @blueprint.route('/servers/<string:name>/stow', methods=['POST'])
    def stow_client(name: str) -> flask.Response:
        request = parse_stow_request(flask.request.get_data())
        client = StowClient(store, _get_transport(name), config.limits)
        return _json_response(client.send(request))

    @blueprint.route('/servers/<string:name>/get', methods=['POST'])
    def get_client(name: str) -> flask.Response:
        request = parse_get_request(flask.request.get_data())
        answer = get_from_server(_get_transport(name), request)
        return flask.Response(
            response=answer.body,
            status=answer.status_code,
            headers=answer.headers,
            content_type=answer.content_type,
        )

    @blueprint.route('/servers/<string:name>/retrieve', methods=['POST'])
    def retrieve_client(name: str) -> flask.Response:
        request = parse_retrieve_request(flask.request.get_data())
        orchestrator = RetrieveOrchestrator(store, _get_transport(name))
        instances = orchestrator.retrieve(
            request.selectors,
            headers=request.headers,
            params=request.arguments
        )
        return _json_response({'Instances': instances})

    return blueprint


def create_wado_blueprint(store: ObjectStore) -> flask.Blueprint:
    """Create the blueprint serving the legacy WADO-URI endpoint."""
    blueprint = flask.Blueprint('wado', __name__)

    @blueprint.route('/wado', methods=['GET'])
    def wado() -> flask.Response:
        body, content_type = answer_wado_request(store, flask.request.args)
        return flask.Response(response=body, content_type=content_type)

    return blueprint


def _handle_bridge_error(error: DICOMwebBridgeError) -> flask.Response:
    logger.error(f'{type(error).__name__}: {error}')
    return _error_response(error.status_code, str(error), type(error).__name__)


def _handle_transport_error(error: Exception) -> flask.Response:
    logger.error(f'error in communication with remote server: {error}')
    return _error_response(
        HTTPStatus.INTERNAL_SERVER_ERROR,
        str(error),
        type(error).__name__
    )


def create_app(
    config: BridgeConfig,
    store: Optional[ObjectStore] = None,
    transport_factory: Optional[TransportFactory] = None
) -> flask.Flask:
    """Create the Flask application.

    Parameters
    ----------
    config: dicomweb_bridge.config.BridgeConfig
        Configuration
    store: Union[dicomweb_bridge.protocol.ObjectStore, None], optional
        Object store (by default, the REST API configured in `config`)
    transport_factory: Union[Callable[[dicomweb_bridge.config.ServerDescriptor], dicomweb_bridge.protocol.Transport], None], optional
        Factory of transports to remote servers (by default, a
        :class:`dicomweb_bridge.transport.DICOMwebTransport` with a session
        configured for the server)

    Returns
    -------
    flask.Flask
        Application

    Examples
    --------
    >>> app = create_app(load_config('~/.dicomweb_bridge.json'))
    >>> app.run(port=8042, threaded=True)

    """  # noqa: E501
    if store is None:
        store = RestObjectStore.from_descriptor(config.object_store)
    if transport_factory is None:
        transport_factory = DICOMwebTransport.from_descriptor

    app = flask.Flask(__name__)
    app.register_blueprint(create_blueprint(config, store, transport_factory))
    app.register_blueprint(create_wado_blueprint(store))
    app.register_error_handler(DICOMwebBridgeError, _handle_bridge_error)
    app.register_error_handler(
        requests.exceptions.RequestException,
        _handle_transport_error
    )
    app.register_error_handler(retrying.RetryError, _handle_transport_error)
    logger.info(
        f'serve DICOMweb endpoints under {config.root} for '
        f'{len(config.servers)} remote servers'
    )
    return app
