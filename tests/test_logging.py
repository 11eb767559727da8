import logging

from playit.logging import get_logger, with_context


def test_plain_records_get_default_context(capsys):
    logger = get_logger('playit.test.plain')
    logger.warning('no context here')
    err = capsys.readouterr().err
    assert 'cid=- attempt=0' in err
    assert 'no context here' in err


def test_with_context_binds_cid(capsys):
    log, cid = with_context(get_logger('playit.test.ctx'), attempt=2)
    log.info('bound')
    assert f'cid={cid} attempt=2' in capsys.readouterr().err
    _, same = with_context(get_logger('playit.test.ctx'), cid=cid)
    assert same == cid


def test_log_level_from_environment(monkeypatch):
    monkeypatch.setenv('PLAYIT_LOG_LEVEL', 'warning')
    assert get_logger('playit.test.level').level == logging.WARNING
    monkeypatch.setenv('PLAYIT_LOG_LEVEL', 'chatty')
    assert get_logger('playit.test.level2').level == logging.INFO
