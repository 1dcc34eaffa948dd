"""
Settings loading and log formatting.
"""
import json
import logging

from jewel_pricing.config.log import ConsoleFormatter, JsonFormatter, configure_logging, job_logger
from jewel_pricing.config.settings import Settings


def test_settings_defaults(tmp_path, monkeypatch):
    for name in ('JEWEL_PRICING_DATA_DIR', 'JEWEL_PRICING_STONE_CACHE_TTL', 'LOG_FORMAT'):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.load(project_root=tmp_path)

    assert settings.data_dir == tmp_path / 'data'
    assert settings.stone_cache_ttl_seconds == 300
    assert settings.job_retention_seconds == 3600
    assert settings.default_metal_rates['gold22kt'] == 6500


def test_settings_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv('JEWEL_PRICING_DATA_DIR', str(tmp_path / 'shop'))
    monkeypatch.setenv('JEWEL_PRICING_JOB_RETENTION', '60')
    monkeypatch.setenv('LOG_LEVEL', 'debug')
    monkeypatch.setenv('LOG_FORMAT', 'JSON')

    settings = Settings.load(project_root=tmp_path)

    assert settings.data_dir == tmp_path / 'shop'
    assert settings.job_retention_seconds == 60
    assert settings.log_level == 'DEBUG'
    assert settings.log_format == 'json'


def _record(job_id=None):
    record = logging.LogRecord('jewel_pricing.jobs.refresh', logging.INFO, __file__, 1, 'Found %d products', (4,), None)
    if job_id:
        record.job_id = job_id
    return record


def test_console_format_includes_job_id():
    line = ConsoleFormatter().format(_record('refresh-1'))
    assert line.endswith('[INFO] [Job: refresh-1]: Found 4 products')


def test_json_format():
    payload = json.loads(JsonFormatter().format(_record('refresh-1')))
    assert payload['level'] == 'info'
    assert payload['service'] == 'jewel-pricing'
    assert payload['jobId'] == 'refresh-1'
    assert payload['message'] == 'Found 4 products'


def test_configure_logging_and_job_logger(tmp_path):
    configure_logging(Settings(data_dir=tmp_path, log_format='json', log_level='WARNING'))
    root = logging.getLogger('jewel_pricing')
    try:
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert root.level == logging.WARNING

        adapter = job_logger(logging.getLogger('jewel_pricing.jobs.refresh'), 'refresh-9')
        assert adapter.process('msg', {}) == ('msg', {'extra': {'job_id': 'refresh-9'}})
    finally:
        root.handlers = []
        root.propagate = True
        root.setLevel(logging.NOTSET)
