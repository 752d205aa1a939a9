"""Command-line interface."""

import io
import json

import pytest
from click.testing import CliRunner
from rich.console import Console

from calmirror import cli as cli_module
from calmirror.cli import cli
from calmirror.mapping_store import MappingStore
from calmirror.models import SyncOperation, SyncReport, SyncResult, TargetReport
from calmirror.sync_engine import SyncEngine, SyncTarget

from conftest import InMemoryTarget, StaticFetcher, make_event


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / 'calmirror.env'
    path.write_text(
        "SOURCE_CALENDAR_ID=work@example.com\n"
        f"DATA_DIR={tmp_path / 'data'}\n"
        'TARGETS=[{"name": "personal", "calendar_id": "me@gmail.com"}]\n'
        "SYNC_CONFIG__OPERATION_DELAY_SECONDS=0\n"
    )
    return path


@pytest.fixture
def fake_engine(monkeypatch):
    """Replace the Google-backed engine with in-memory services."""
    created = {}

    def from_settings(settings):
        target = InMemoryTarget('personal')
        engine = SyncEngine(
            settings,
            StaticFetcher([make_event('E1'), make_event('E2', offset_hours=1)]),
            [SyncTarget(target, MappingStore(settings.mapping_file_for(settings.targets[0])))],
        )
        created['engine'] = engine
        created['target'] = target
        return engine

    monkeypatch.setattr(SyncEngine, 'from_settings', staticmethod(from_settings))
    return created


def test_config_create_writes_example(runner, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv('DATA_DIR', str(tmp_path / 'data'))

    result = runner.invoke(cli, ['config', 'create', '--path', 'example.env'])

    assert result.exit_code == 0, result.output
    assert 'SOURCE_CALENDAR_ID' in (tmp_path / 'example.env').read_text()


def test_config_create_refuses_to_overwrite(runner, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv('DATA_DIR', str(tmp_path / 'data'))
    (tmp_path / 'example.env').write_text('KEEP=1\n')

    result = runner.invoke(cli, ['config', 'create', '--path', 'example.env'])

    assert result.exit_code == 1
    assert (tmp_path / 'example.env').read_text() == 'KEEP=1\n'


def test_config_validate_lists_targets(runner, config_file):
    result = runner.invoke(cli, ['--config', str(config_file), 'config', 'validate'])

    assert result.exit_code == 0, result.output
    assert 'Configuration is valid' in result.output
    assert 'personal' in result.output


def test_config_validate_reports_missing_values(runner, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / 'empty.env'
    path.write_text(f"DATA_DIR={tmp_path / 'data'}\n")

    result = runner.invoke(cli, ['--config', str(path), 'config', 'validate'])

    assert result.exit_code == 1
    assert 'SOURCE_CALENDAR_ID' in result.output


def test_mappings_shows_stored_pairs(runner, config_file, tmp_path):
    mapping_file = tmp_path / 'data' / 'mappings' / 'personal.json'
    mapping_file.parent.mkdir(parents=True)
    mapping_file.write_text(json.dumps({'E1': 'g-111'}))

    result = runner.invoke(cli, ['--config', str(config_file), 'mappings'])

    assert result.exit_code == 0, result.output
    assert 'E1' in result.output
    assert 'g-111' in result.output


def test_sync_runs_one_pass(runner, config_file, tmp_path, fake_engine):
    result = runner.invoke(cli, ['--config', str(config_file), 'sync'])

    assert result.exit_code == 0, result.output
    assert len(fake_engine['target'].ops('create')) == 2
    stored = json.loads((tmp_path / 'data' / 'mappings' / 'personal.json').read_text())
    assert set(stored) == {'E1', 'E2'}


def test_sync_exits_nonzero_when_fetch_fails(runner, config_file, monkeypatch, fake_engine):
    from calmirror.services import PermanentProviderError

    original = SyncEngine.from_settings

    def failing(settings):
        engine = original(settings)
        engine.source.error = PermanentProviderError('source down')
        return engine

    monkeypatch.setattr(SyncEngine, 'from_settings', staticmethod(failing))
    result = runner.invoke(cli, ['--config', str(config_file), 'sync'])

    assert result.exit_code == 1
    assert 'source down' in result.output
    assert fake_engine['target'].calls == []


def test_sync_without_configuration_exits(runner, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / 'empty.env'
    path.write_text(f"DATA_DIR={tmp_path / 'data'}\n")

    result = runner.invoke(cli, ['--config', str(path), 'sync'])

    assert result.exit_code == 1
    assert 'Missing required configuration' in result.output


def test_daemon_stops_after_max_runs(runner, config_file, fake_engine):
    result = runner.invoke(cli, ['--config', str(config_file), 'daemon', '--max-runs', '1'])

    assert result.exit_code == 0, result.output
    assert 'personal: +2' in result.output


def test_auth_google_rejects_unknown_target(runner, config_file):
    result = runner.invoke(cli, ['--config', str(config_file), 'auth', 'google', '--target', 'nope'])

    assert result.exit_code == 1
    assert 'Unknown target' in result.output


@pytest.mark.parametrize('compact', [False, True])
def test_sync_results_show_bracketed_errors_verbatim(monkeypatch, compact):
    output = io.StringIO()
    monkeypatch.setattr(cli_module, 'console', Console(file=output, width=200, color_system=None))
    report = SyncReport(targets=[
        TargetReport(target='nextcloud', error='[Errno 111] Connection refused'),
        TargetReport(target='personal', failed=1, results=[
            SyncResult(
                operation=SyncOperation.CREATE, source_event_id='E1', target='personal',
                success=False, error_message='Failed to create event: [bold]quota[/bold]',
            ),
        ]),
    ])

    cli_module._display_sync_results(report, compact=compact)

    text = output.getvalue()
    assert '[Errno 111] Connection refused' in text
    if not compact:
        assert '[bold]quota[/bold]' in text


def test_aborted_sync_shows_bracketed_error(monkeypatch):
    output = io.StringIO()
    monkeypatch.setattr(cli_module, 'console', Console(file=output, width=200, color_system=None))

    cli_module._display_sync_results(SyncReport(error='[SSL] handshake failed'))

    assert '[SSL] handshake failed' in output.getvalue()
