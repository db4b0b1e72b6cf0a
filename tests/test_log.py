import logging
import pytest

from mqttsn_dtls import log

from conftest import Recorder


def test_absent_levels():

    empty = log.Log()
    for level in log.levels:
        assert empty.enabled(level) == False

    empty.debug('nothing')
    empty.error('nothing', {'clientKey': 'x'})

    partial = log.Log(Recorder('warn'))
    assert partial.enabled('warn') == True
    assert partial.enabled('debug') == False
    partial.debug('skipped')
    partial.warn('kept', {'a': 1})

    assert partial.target.calls == [('warn', 'kept', {'a': 1})]


def test_default_fields():

    recorder = Recorder('info')
    log.Log(recorder).info('message')

    assert recorder.calls == [('info', 'message', {})]


def test_not_callable():

    class Broken:
        debug = 'not a method'

    with pytest.raises(TypeError):
        log.Log(Broken())


def test_wrap():

    wrapped = log.Log()
    assert log.wrap(wrapped) is wrapped
    assert isinstance(log.wrap(None), log.Log)


def test_logging_adapter(caplog):

    logger = logging.getLogger('mqttsn_dtls.test')
    caplog.set_level(logging.DEBUG, logger='mqttsn_dtls.test')

    adapted = log.Log(logger)
    for level in log.levels:
        assert adapted.enabled(level)

    adapted.warn('Parser error: short', {'clientKey': '::1_1', 'message_id': log.PARSER_ERROR})
    adapted.debug('Ingress datagram', {'data': '0216'})

    warning, debug = caplog.records
    assert warning.levelno == logging.WARNING
    assert warning.getMessage() == 'Parser error: short'
    assert warning.fields['clientKey'] == '::1_1'
    assert debug.levelno == logging.DEBUG
    assert debug.fields == {'data': '0216'}


def test_logging_level_respected():

    logger = logging.getLogger('mqttsn_dtls.test.quiet')
    logger.setLevel(logging.INFO)

    try:
        adapted = log.Log(logger)
        assert adapted.enabled('debug') == False
        assert adapted.enabled('info') == True
        assert adapted.enabled('warn') == True

        logger.setLevel(logging.ERROR)
        assert adapted.enabled('warn') == False
        assert adapted.enabled('error') == True
    finally:
        logger.setLevel(logging.NOTSET)


def test_message_ids_unique():

    identifiers = [value for name, value in vars(log).items() if name.isupper()]
    assert len(identifiers) == len(set(identifiers))

    for identifier in identifiers:
        assert len(identifier) == 32
        int(identifier, 16)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
