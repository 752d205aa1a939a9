"""Settings loading, target resolution and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from calmirror.config import ConfigurationError, Settings, create_example_config, load_settings
from calmirror.models import TargetConfig, TargetKind

from conftest import TestSettings, make_settings


class TestSettingsDefaults:

    def test_sync_defaults(self, settings):
        config = settings.sync_config
        assert config.sync_interval_minutes == 30
        assert config.sync_past_days == 7
        assert config.sync_future_days == 30
        assert config.operation_delay_seconds == 0.1
        assert config.retry_attempts == 1
        assert config.persist_each_operation is False

    def test_credentials_default_under_data_dir(self, tmp_path):
        settings = make_settings(tmp_path)
        assert settings.credentials_path == tmp_path / 'credentials'
        assert settings.resolved_source_token_path == tmp_path / 'credentials' / 'source_token.json'

    def test_ensure_directories(self, tmp_path):
        settings = make_settings(tmp_path / 'data')
        settings.ensure_directories()
        assert (tmp_path / 'data' / 'credentials').is_dir()

    def test_invalid_log_level(self, tmp_path):
        with pytest.raises(ValidationError):
            make_settings(tmp_path, log_level='LOUD')

    def test_log_level_is_normalized(self, tmp_path):
        assert make_settings(tmp_path, log_level='debug').log_level == 'DEBUG'

    def test_work_calendar_alias(self, tmp_path):
        settings = TestSettings(work_calendar_id='work@example.com', data_dir=tmp_path)
        assert settings.source_calendar_id == 'work@example.com'


class TestTargets:

    def test_duplicate_target_names_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            make_settings(tmp_path, targets=[
                {'name': 'a', 'calendar_id': 'x'},
                {'name': 'a', 'calendar_id': 'y'},
            ])

    def test_target_name_must_be_file_safe(self):
        with pytest.raises(ValidationError):
            TargetConfig(name='../etc', calendar_id='x')

    def test_disabled_targets_are_inactive(self, tmp_path):
        settings = make_settings(tmp_path, targets=[
            {'name': 'a', 'calendar_id': 'x'},
            {'name': 'b', 'calendar_id': 'y', 'enabled': False},
        ])
        assert [t.name for t in settings.get_active_targets()] == ['a']

    def test_personal_shorthand_adds_google_target(self, tmp_path):
        settings = make_settings(tmp_path, targets=[], personal_calendar_id='me@gmail.com')

        [target] = settings.get_active_targets()

        assert target.name == 'personal'
        assert target.kind == TargetKind.GOOGLE
        assert settings.mapping_file_for(target) == tmp_path / 'synced_events.json'

    def test_explicit_personal_target_wins_over_shorthand(self, tmp_path):
        settings = make_settings(tmp_path, personal_calendar_id='other@gmail.com')

        targets = settings.get_active_targets()

        assert len(targets) == 1
        assert targets[0].calendar_id == 'me@gmail.com'

    def test_default_paths_per_target(self, tmp_path):
        settings = make_settings(tmp_path)
        target = settings.targets[0]

        assert settings.mapping_file_for(target) == tmp_path / 'mappings' / 'personal.json'
        assert settings.token_path_for(target) == tmp_path / 'credentials' / 'personal_token.json'

    def test_explicit_paths_per_target(self, tmp_path):
        target = TargetConfig(
            name='x', calendar_id='c',
            mapping_file=tmp_path / 'm.json', token_path=tmp_path / 't.json',
        )
        settings = make_settings(tmp_path, targets=[target])

        assert settings.mapping_file_for(target) == tmp_path / 'm.json'
        assert settings.token_path_for(target) == tmp_path / 't.json'


class TestValidation:

    def test_complete_configuration(self, settings):
        assert settings.validate_required_settings() == []
        settings.require_complete()

    def test_missing_source_and_targets(self, tmp_path):
        settings = make_settings(tmp_path, source_calendar_id='', targets=[])

        missing = settings.validate_required_settings()

        assert 'SOURCE_CALENDAR_ID' in missing
        assert 'TARGETS or PERSONAL_CALENDAR_ID' in missing
        with pytest.raises(ConfigurationError):
            settings.require_complete()

    def test_caldav_target_needs_credentials(self, tmp_path):
        settings = make_settings(tmp_path, targets=[
            {'name': 'nc', 'kind': 'caldav', 'calendar_id': 'Work', 'caldav_url': 'https://dav'},
        ])

        assert settings.validate_required_settings() == [
            'TARGETS[nc].caldav_username',
            'TARGETS[nc].caldav_password',
        ]


class TestLoading:

    def test_load_from_env_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config_file = tmp_path / 'calmirror.env'
        config_file.write_text(
            f"SOURCE_CALENDAR_ID=work@example.com\n"
            f"DATA_DIR={tmp_path / 'data'}\n"
            'TARGETS=[{"name": "nc", "kind": "caldav", "calendar_id": "Work", '
            '"caldav_url": "https://dav", "caldav_username": "u", "caldav_password": "p"}]\n'
            "SYNC_CONFIG__SYNC_INTERVAL_MINUTES=15\n"
            "SYNC_CONFIG__PERSIST_EACH_OPERATION=true\n"
        )

        settings = load_settings(str(config_file))

        assert settings.source_calendar_id == 'work@example.com'
        assert settings.targets[0].kind == TargetKind.CALDAV
        assert settings.sync_config.sync_interval_minutes == 15
        assert settings.sync_config.persist_each_operation is True
        assert (tmp_path / 'data' / 'credentials').is_dir()

    def test_example_config_is_loadable(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv('DATA_DIR', str(tmp_path / 'data'))
        path = tmp_path / 'example.env'

        create_example_config(path)
        settings = Settings(_env_file=str(path))

        assert settings.source_calendar_id == 'you@work.example.com'
        assert [t.name for t in settings.get_active_targets()] == ['personal']
        assert settings.validate_required_settings() == []
