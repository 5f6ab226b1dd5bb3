from pathlib import Path

import yaml

from zaplight.core.config import Settings, validate_settings

REPO_ROOT = Path(__file__).resolve().parents[2]


def test_example_config_is_valid() -> None:
    settings = Settings.from_file(REPO_ROOT / "config" / "zaplight.example.yaml")

    validate_settings(settings)
    rapid = settings.get_playlist("rapid-fire")
    assert rapid.presets == ["A", "B", "C", "D"]
    assert rapid.durations == [10, 10, 10, 30]
    assert rapid.transitions == [7, 7, 7, 0]


def test_yaml_and_toml_load_the_same_settings(tmp_path: Path) -> None:
    yaml_path = tmp_path / "zaplight.yaml"
    yaml_path.write_text(
        yaml.safe_dump({"osc": {"address": "127.0.0.1:9000"}, "dedup": {"window_s": 30}}),
        encoding="utf-8",
    )
    toml_path = tmp_path / "zaplight.toml"
    toml_path.write_text(
        '[osc]\naddress = "127.0.0.1:9000"\n\n[dedup]\nwindow_s = 30\n',
        encoding="utf-8",
    )

    from_yaml = Settings.from_file(yaml_path)
    from_toml = Settings.from_file(toml_path)

    assert from_yaml.osc == from_toml.osc
    assert from_yaml.dedup.window_s == from_toml.dedup.window_s == 30
    assert from_yaml.dedup.capacity == 4096


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("ZAPLIGHT_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("ZAPLIGHT_DEDUP__WINDOW_S", "45")

    settings = Settings()

    assert settings.log_level == "DEBUG"
    assert settings.dedup.window_s == 45


def test_defaults() -> None:
    settings = Settings()

    assert settings.selection.policy == "round_robin"
    assert settings.scheduler.preemption == "finish_step"
    assert settings.dedup.window_s == 120
    assert settings.zaps is None and settings.wled is None
