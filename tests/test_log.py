import logging

import pytest

from meshrtc.log import PeerLoggerAdapter, configLogger, configRoot, getLevel


def test_level_lookup_order(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv('LOGGER_MESHRTC_SESSION_LEVEL', raising=False)
    monkeypatch.delenv('LOGGER_MESHRTC_LEVEL', raising=False)
    monkeypatch.delenv('LOGGER_LEVEL', raising=False)
    assert getLevel('meshrtc-session') is None
    monkeypatch.setenv('LOGGER_LEVEL', 'warning')
    assert getLevel('meshrtc-session') == 'WARNING'
    monkeypatch.setenv('LOGGER_MESHRTC_LEVEL', 'info')
    assert getLevel('meshrtc-session') == 'INFO'
    monkeypatch.setenv('LOGGER_MESHRTC_SESSION_LEVEL', '10')
    assert getLevel('meshrtc-session') == 10

def test_config_logger(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv('LOGGER_MESHRTC_TEST_LEVEL', 'debug')
    logger = configLogger(logging.getLogger('meshrtc-test'))
    assert logger.level == logging.DEBUG

def test_peer_prefix(caplog: pytest.LogCaptureFixture):
    logger = logging.getLogger('meshrtc-test-peer')
    with caplog.at_level(logging.INFO, logger='meshrtc-test-peer'):
        PeerLoggerAdapter(logger, 'p2').info('offer sent')
        PeerLoggerAdapter(logger).info('no peer')
    assert [r.getMessage() for r in caplog.records] == ['[peer p2] offer sent', 'no peer']

def test_config_root_log_file(monkeypatch: pytest.MonkeyPatch, tmp_path):
    log_file = tmp_path / 'meshrtc.log'
    monkeypatch.setenv('LOGGER_FILE', str(log_file))
    before = list(logging.root.handlers)
    configRoot()
    added = [h for h in logging.root.handlers if h not in before and isinstance(h, logging.FileHandler)]
    try:
        assert len(added) == 1
        assert added[0].baseFilename == str(log_file)
    finally:
        for handler in added:
            logging.root.removeHandler(handler)
            handler.close()
