# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from config import AppConfig


def test_defaults_without_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "AUDIO_SAMPLE_RATE",
        "AUDIO_STORAGE_TYPE",
        "AUDIO_RECORDING_LAYOUT",
        "S3_BUCKET",
        "SUPABASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)

    config = AppConfig.load_from_env()

    assert config.audio_sample_rate == 16000
    assert config.storage_type == "local"
    assert config.recording_layout == "mono"
    assert config.local_storage_path == "./public/recordings"
    assert config.s3_bucket is None


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUDIO_SAMPLE_RATE", "24000")
    monkeypatch.setenv("AUDIO_STORAGE_TYPE", "S3")
    monkeypatch.setenv("S3_BUCKET", "calls")
    monkeypatch.setenv("S3_REGION", "eu-central-1")
    monkeypatch.setenv("AUDIO_RECORDING_LAYOUT", "Stereo")
    monkeypatch.setenv("UPLOAD_TIMEOUT_S", "2.5")
    monkeypatch.setenv("SUPABASE_STORAGE_BUCKET", "audio")

    config = AppConfig.load_from_env()

    assert config.audio_sample_rate == 24000
    assert config.storage_type == "s3"
    assert config.s3_bucket == "calls"
    assert config.s3_region == "eu-central-1"
    assert config.recording_layout == "stereo"
    assert config.upload_timeout_s == 2.5
    assert config.supabase_bucket == "audio"


def test_bad_number_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUDIO_SAMPLE_RATE", "fast")

    with pytest.raises(ValueError):
        AppConfig.load_from_env()
