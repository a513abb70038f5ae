from pixelforge.config import Settings, get_settings


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.interpolation == "bicubic"
    assert settings.scale == 1.0
    assert settings.quality == 0.9
    assert settings.background_mode == "ai"
    assert settings.color_tolerance == 30
    assert settings.edge_threshold == 50
    assert settings.smoothing == 1
    assert settings.segmentation_threshold == 0.7
    assert settings.watermark_method == "blur"
    assert settings.blur_intensity == 10
    assert settings.inpaint_radius == 5
    assert settings.iterations == 3
    assert settings.auto_detect is True
    assert settings.remove_background is False
    assert settings.remove_watermark is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PIXELFORGE_SCALE", "2.5")
    monkeypatch.setenv("PIXELFORGE_WATERMARK_METHOD", "clone")
    monkeypatch.setenv("PIXELFORGE_AUTO_DETECT", "false")
    settings = Settings(_env_file=None)
    assert settings.scale == 2.5
    assert settings.watermark_method == "clone"
    assert settings.auto_detect is False


def test_settings_are_cached():
    assert get_settings() is get_settings()
