from metacfg.core.config import Settings
from metacfg.repositories.db import DbConfigRepository


def test_defaults():
    settings = Settings()
    assert settings.FETCH_SIZE == 100
    assert settings.table_mapping() == {
        "configs": "configs",
        "config_attributes": "config_attributes",
        "properties": "properties",
        "property_attributes": "property_attributes",
    }


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'env.db'}")
    monkeypatch.setenv("FETCH_SIZE", "7")
    monkeypatch.setenv("CONFIGS_TABLE", "env_configs")

    settings = Settings()
    repository = DbConfigRepository.from_settings(settings)
    try:
        assert settings.table_mapping()["configs"] == "env_configs"
        assert repository.tables.configs.name == "env_configs"
        assert repository.find_names() == []
    finally:
        repository.engine.dispose()
