import json
import logging

from escape_room.logging_utils import ColorFormatter, JsonFormatter, request_id_ctx


def make_record(msg='score_committed', **extra):
    record = logging.LogRecord('escape_room.verification', logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_carries_game_fields():
    token = request_id_ctx.set('rid-1')
    try:
        line = JsonFormatter().format(make_record(team='Alpha', badge='gold', duration_seconds=42, ignored='x'))
    finally:
        request_id_ctx.reset(token)
    payload = json.loads(line)
    assert payload['message'] == 'score_committed'
    assert payload['request_id'] == 'rid-1'
    assert payload['team'] == 'Alpha'
    assert payload['badge'] == 'gold'
    assert payload['duration_seconds'] == 42
    assert 'ignored' not in payload


def test_pretty_formatter_without_color():
    line = ColorFormatter(use_color=False).format(
        make_record('request', method='GET', path='/api/scores', status=200, duration_ms=3)
    )
    assert 'GET /api/scores 200 3ms - request' in line
    assert '\033[' not in line

    line = ColorFormatter(use_color=False).format(make_record('verify_conflict', team='Alpha', reason='time expired'))
    assert '[team=Alpha reason=time expired]' in line
