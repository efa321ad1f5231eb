import json
import sys

import pytest

from dicomweb_bridge import cli
from dicomweb_bridge.cli import _parse_key_value_pairs, main
from dicomweb_bridge.error import MalformedInput
from dicomweb_bridge.multipart import MultipartPart, encode_multipart_message


@pytest.fixture
def config_file(tmp_path, httpserver):
    filename = tmp_path.joinpath('bridge.json')
    filename.write_text(json.dumps({
        'DicomWeb': {
            'Servers': {'remote': [httpserver.url]},
        },
    }))
    return str(filename)


def test_parse_serve(parser):
    args = parser.parse_args(['serve'])
    assert getattr(args, 'method') == 'serve'
    assert getattr(args, 'host') == '127.0.0.1'
    assert getattr(args, 'port') == 8042
    assert getattr(args, 'config_file') is None
    assert getattr(args, 'logging_verbosity') == 0
    with pytest.raises(AttributeError):
        getattr(args, 'server')


def test_parse_serve_port(parser):
    args = parser.parse_args([
        '-vv', '--config', 'bridge.json', 'serve', '--port', '9000'
    ])
    assert getattr(args, 'port') == 9000
    assert getattr(args, 'config_file') == 'bridge.json'
    assert getattr(args, 'logging_verbosity') == 2


def test_parse_stow(parser):
    args = parser.parse_args([
        'stow', '--server', 'remote', '--header', 'X-Token=secret', 'a', 'b'
    ])
    assert getattr(args, 'method') == 'stow'
    assert getattr(args, 'server') == 'remote'
    assert getattr(args, 'resources') == ['a', 'b']
    assert getattr(args, 'http_headers') == ['X-Token=secret']
    assert getattr(args, 'arguments') == []


def test_parse_stow_missing_resources(parser):
    with pytest.raises(SystemExit):
        parser.parse_args(['stow', '--server', 'remote'])


def test_parse_stow_missing_server(parser):
    with pytest.raises(SystemExit):
        parser.parse_args(['stow', 'a'])


def test_parse_retrieve(parser):
    args = parser.parse_args([
        'retrieve', '--server', 'remote', '--study', '1.2.3',
        '--series', '1.2.4', '--arg', 'foo=bar'
    ])
    assert getattr(args, 'method') == 'retrieve'
    assert getattr(args, 'study_instance_uid') == '1.2.3'
    assert getattr(args, 'series_instance_uid') == '1.2.4'
    assert getattr(args, 'sop_instance_uid') is None
    assert getattr(args, 'arguments') == ['foo=bar']


def test_parse_retrieve_missing_study(parser):
    with pytest.raises(SystemExit):
        parser.parse_args(['retrieve', '--server', 'remote'])


def test_parse_without_method(parser):
    with pytest.raises(SystemExit):
        parser.parse_args([])


def test_parse_key_value_pairs():
    pairs = ['Accept=application/json', 'empty=', 'query=a=b']
    assert _parse_key_value_pairs(pairs) == {
        'Accept': 'application/json',
        'empty': '',
        'query': 'a=b',
    }


@pytest.mark.parametrize('pair', ['novalue', '=value'])
def test_parse_key_value_pairs_malformed(pair):
    with pytest.raises(MalformedInput):
        _parse_key_value_pairs([pair])


def test_stow(monkeypatch, httpserver, config_file, store, capsys):
    store.add_instance('i1', b'DICM', series='s1')
    monkeypatch.setattr(
        cli.RestObjectStore, 'from_descriptor', lambda descriptor: store
    )
    httpserver.serve_content(
        content=json.dumps({'00081199': {'vr': 'SQ', 'Value': [{}]}}),
        code=200,
        headers={'content-type': 'application/dicom+json'}
    )
    monkeypatch.setattr(sys, 'argv', [
        'dicomweb_bridge', '--config', config_file,
        'stow', '--server', 'remote', 's1'
    ])
    with pytest.raises(SystemExit) as exit:
        main()
    assert exit.value.code == 0
    stdout, stderr = capsys.readouterr()
    assert json.loads(stdout) == {}
    assert httpserver.requests[0].path == '/studies'


def test_retrieve(monkeypatch, httpserver, config_file, store, capsys):
    monkeypatch.setattr(
        cli.RestObjectStore, 'from_descriptor', lambda descriptor: store
    )
    httpserver.serve_content(
        content=encode_multipart_message(
            [MultipartPart('application/dicom', b'DICM')], 'xyz'
        ),
        code=200,
        headers={
            'content-type': (
                'multipart/related; type="application/dicom"; boundary=xyz'
            ),
        }
    )
    monkeypatch.setattr(sys, 'argv', [
        'dicomweb_bridge', '--config', config_file,
        'retrieve', '--server', 'remote', '--study', '1.2.3'
    ])
    with pytest.raises(SystemExit) as exit:
        main()
    assert exit.value.code == 0
    stdout, stderr = capsys.readouterr()
    assert json.loads(stdout) == {'Instances': ['stored-001']}
    assert httpserver.requests[0].path == '/studies/1.2.3'


def test_unknown_server(monkeypatch, config_file, capsys):
    monkeypatch.setattr(sys, 'argv', [
        'dicomweb_bridge', '--config', config_file,
        'retrieve', '--server', 'other', '--study', '1.2.3'
    ])
    with pytest.raises(SystemExit) as exit:
        main()
    assert exit.value.code == 1
    stdout, stderr = capsys.readouterr()
    assert stdout == ''
