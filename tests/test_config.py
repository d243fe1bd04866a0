import pytest
from pathlib import Path

from engine.config import ConfigManager, ConfigError


def test_defaults_and_roundtrip(tmp_path):
    cfg_path = tmp_path / 'config.yaml'
    cm = ConfigManager(config_path=str(cfg_path))
    cfg = cm.load_config()
    assert cfg['msgstore']['port'] == 7754
    assert cfg['cache']['refresh_min_delay_seconds'] == 10
    cfg['msgstore']['host'] = 'node.example'
    cfg['logging']['level'] = 'DEBUG'
    cm.save_config(cfg)
    cm2 = ConfigManager(config_path=str(cfg_path))
    loaded = cm2.load_config()
    assert loaded['msgstore']['host'] == 'node.example'
    assert loaded['logging']['level'] == 'DEBUG'
    assert not (tmp_path / 'config.yaml.tmp').exists()


def test_partial_file_merged_with_defaults(tmp_path):
    cfg_path = tmp_path / 'config.yaml'
    cfg_path.write_text("cache:\n  refresh_min_delay_seconds: 30\n")
    cm = ConfigManager(config_path=str(cfg_path))
    assert cm.get('cache.refresh_min_delay_seconds') == 30
    assert cm.get('cache.background_refresh') is False
    assert cm.get('msgstore.timeout_seconds') == 30
    assert cm.get('missing.key', 'fallback') == 'fallback'


def test_load_missing_returns_defaults(tmp_path):
    cfg_path = tmp_path / 'missing.yaml'
    cm = ConfigManager(config_path=str(cfg_path))
    assert cm.load_config() == cm.get_default_config()


def test_corrupt_yaml_raises(tmp_path):
    cfg_path = tmp_path / 'cfg.yaml'
    cfg_path.write_text('[')
    cm = ConfigManager(config_path=str(cfg_path))
    with pytest.raises(ConfigError):
        cm.load_config()


def test_non_mapping_raises(tmp_path):
    cfg_path = tmp_path / 'cfg.yaml'
    cfg_path.write_text('- a\n- b\n')
    with pytest.raises(ConfigError):
        ConfigManager(config_path=str(cfg_path)).load_config()


def test_permission_error(monkeypatch, tmp_path):
    cfg_path = tmp_path / 'cfg.yaml'
    cfg_path.write_text('x')
    cm = ConfigManager(config_path=str(cfg_path))

    def bad_open(*a, **k):
        raise PermissionError("nope")

    monkeypatch.setattr(Path, 'open', lambda self, *a, **k: bad_open())
    with pytest.raises(ConfigError):
        cm.load_config()


def test_set_dot_notation(tmp_path):
    cm = ConfigManager(config_path=str(tmp_path / 'none.yaml'))
    cm.set('cache.path', str(tmp_path / 'c'))
    cm.set('extra.nested.value', 3)
    assert cm.get('cache.path') == str(tmp_path / 'c')
    assert cm.get('extra.nested.value') == 3


def test_validate_defaults_ok(tmp_path):
    cm = ConfigManager(config_path=str(tmp_path / 'none.yaml'))
    assert cm.validate_config() == []


def test_validate_reports_errors(tmp_path):
    cm = ConfigManager(config_path=str(tmp_path / 'none.yaml'))
    cm.set('cache.path', '')
    cm.set('msgstore.port', 70000)
    cm.set('cache.refresh_min_delay_seconds', -1)
    errors = cm.validate_config()
    assert any('in-memory' in e for e in errors)
    assert any('port' in e for e in errors)
    assert any('Refresh delay' in e for e in errors)
