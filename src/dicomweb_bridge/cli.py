'''Command Line Interface (CLI)'''
import sys
import json
import logging
import argparse
import traceback

from dicomweb_bridge.app import create_app
from dicomweb_bridge.config import BridgeConfig, load_config
from dicomweb_bridge.error import MalformedInput
from dicomweb_bridge.log import configure_logging
from dicomweb_bridge.retrieve import RetrieveOrchestrator, RetrieveSelector
from dicomweb_bridge.store import RestObjectStore
from dicomweb_bridge.stow import StowClient, StowRequest
from dicomweb_bridge.transport import DICOMwebTransport


logger = logging.getLogger(__name__)


def _get_parser():
    '''Builds the object for parsing command line arguments.

    Returns
    -------
    argparse.ArgumentParser

    '''
    parser = argparse.ArgumentParser(
        description='Bridge between an object store and DICOMweb services.',
        prog='dicomweb_bridge'
    )
    parser.add_argument(
        '-v', '--verbosity', dest='logging_verbosity', default=0,
        action='count',
        help=(
            'logging verbosity that maps to a logging level '
            '(default: error, -v: warning, -vv: info, -vvv: debug, '
            '-vvvv: debug + traceback); '
            'all log messages are written to standard error'
        )
    )
    parser.add_argument(
        '-c', '--config', dest='config_file', metavar='PATH',
        help='path to JSON configuration file'
    )

    abstract_server_parser = argparse.ArgumentParser(add_help=False)
    abstract_server_parser.add_argument(
        '--server', metavar='NAME', dest='server', required=True,
        help='name of the remote DICOMweb server in the configuration'
    )
    abstract_server_parser.add_argument(
        '--header', metavar='KEY=VALUE', dest='http_headers',
        action='append', default=[],
        help='additional HTTP header field of each request'
    )
    abstract_server_parser.add_argument(
        '--arg', metavar='KEY=VALUE', dest='arguments',
        action='append', default=[],
        help='additional query parameter of each request'
    )

    subparsers = parser.add_subparsers(dest='method', help='services')
    subparsers.required = True

    serve_parser = subparsers.add_parser(
        'serve',
        description='Serve the DICOMweb endpoints over HTTP.'
    )
    serve_parser.add_argument(
        '--host', metavar='HOST', dest='host', default='127.0.0.1',
        help='network interface the server listens to'
    )
    serve_parser.add_argument(
        '--port', metavar='NUM', type=int, dest='port', default=8042,
        help='port the server listens to'
    )
    serve_parser.set_defaults(func=_serve)

    stow_parser = subparsers.add_parser(
        'stow',
        description=(
            'STOW-RS: send patients, studies, series or instances of the '
            'object store to a remote server.'
        ),
        parents=[abstract_server_parser]
    )
    stow_parser.add_argument(
        metavar='ID', dest='resources', nargs='+',
        help='identifiers of the resources in the object store'
    )
    stow_parser.set_defaults(func=_stow)

    retrieve_parser = subparsers.add_parser(
        'retrieve',
        description=(
            'WADO-RS: retrieve a study, series or instance from a remote '
            'server into the object store.'
        ),
        parents=[abstract_server_parser]
    )
    retrieve_parser.add_argument(
        '--study', metavar='UID', dest='study_instance_uid', required=True,
        help='unique study identifier (StudyInstanceUID)'
    )
    retrieve_parser.add_argument(
        '--series', metavar='UID', dest='series_instance_uid',
        help='unique series identifier (SeriesInstanceUID)'
    )
    retrieve_parser.add_argument(
        '--instance', metavar='UID', dest='sop_instance_uid',
        help='unique instance identifier (SOPInstanceUID)'
    )
    retrieve_parser.set_defaults(func=_retrieve)

    return parser


def _parse_key_value_pairs(pairs):
    '''Parses "KEY=VALUE" strings into a dictionary.'''
    mapping = {}
    for pair in pairs:
        key, sep, value = pair.partition('=')
        if not sep or not key:
            raise MalformedInput(f'Expected "KEY=VALUE", got "{pair}".')
        mapping[key] = value
    return mapping


def _get_config(args):
    if args.config_file is None:
        return BridgeConfig()
    return load_config(args.config_file)


def _get_transport(config, args):
    return DICOMwebTransport.from_descriptor(config.get_server(args.server))


def _serve(args):
    '''Serves the DICOMweb endpoints.'''
    config = _get_config(args)
    app = create_app(config)
    app.run(host=args.host, port=args.port, threaded=True)


def _stow(args):
    '''Sends resources of the object store to a remote server.'''
    config = _get_config(args)
    store = RestObjectStore.from_descriptor(config.object_store)
    client = StowClient(store, _get_transport(config, args), config.limits)
    request = StowRequest(
        resources=args.resources,
        headers=_parse_key_value_pairs(args.http_headers),
        arguments=_parse_key_value_pairs(args.arguments),
    )
    print(json.dumps(client.send(request)))


def _retrieve(args):
    '''Retrieves a resource from a remote server into the object store.'''
    config = _get_config(args)
    store = RestObjectStore.from_descriptor(config.object_store)
    selector = RetrieveSelector(
        args.study_instance_uid,
        args.series_instance_uid,
        args.sop_instance_uid
    )
    orchestrator = RetrieveOrchestrator(store, _get_transport(config, args))
    instances = orchestrator.retrieve(
        [selector],
        headers=_parse_key_value_pairs(args.http_headers),
        params=_parse_key_value_pairs(args.arguments)
    )
    print(json.dumps({'Instances': instances}, indent=2))


def main():
    '''Main entry point for the ``dicomweb_bridge`` command line program.'''
    parser = _get_parser()
    args = parser.parse_args()

    configure_logging(args.logging_verbosity)
    try:
        args.func(args)
        sys.exit(0)
    except Exception as err:
        logger.error(str(err))
        if args.logging_verbosity > 3:
            tb = traceback.format_exc()
            logger.error(tb)
        sys.exit(1)


if __name__ == '__main__':

    main()
