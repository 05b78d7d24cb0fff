import pytest

from neurotensor.config import SETTINGS, Settings, load_settings


def test_defaults():
    settings = load_settings({})
    assert settings == Settings()
    assert settings.matmul_threshold == 1024
    assert settings.tile_size == 32
    assert settings.pool_cap == 100
    assert settings.pooling_enabled is True
    assert settings.auto_accelerate is True


def test_environment_overrides():
    settings = load_settings({
        "NEUROTENSOR_MATMUL_THRESHOLD": "4096",
        "NEUROTENSOR_TILE_SIZE": "64",
        "NEUROTENSOR_POOL_CAP": "8",
        "NEUROTENSOR_POOLING": "off",
        "NEUROTENSOR_AUTO_ACCELERATE": "False",
    })
    assert settings.matmul_threshold == 4096
    assert settings.tile_size == 64
    assert settings.pool_cap == 8
    assert settings.pooling_enabled is False
    assert settings.auto_accelerate is False


def test_blank_values_fall_back_to_defaults():
    settings = load_settings({"NEUROTENSOR_TILE_SIZE": " ", "NEUROTENSOR_POOLING": ""})
    assert settings.tile_size == 32
    assert settings.pooling_enabled is True


@pytest.mark.parametrize("raw", ["0", "-5", "abc"])
def test_invalid_integers_rejected(raw):
    with pytest.raises(ValueError):
        load_settings({"NEUROTENSOR_POOL_CAP": raw})


def test_module_settings_loaded():
    assert isinstance(SETTINGS, Settings)
