"""Settings loading from YAML and the environment."""

from __future__ import annotations

from pathlib import Path

import pytest

from BinDepot.BinaryFetch.errors import ConfigError
from BinDepot.BinaryFetch.settings import (
    BinaryFetchSettings,
    CatalogSource,
    get_settings,
    load_settings,
    reset_settings_cache,
)


def test_defaults():
    settings = BinaryFetchSettings()

    assert settings.install_dir == Path.home() / ".local" / "bin"
    assert settings.retake_ownership is False
    assert settings.store_root == "/nix/store"
    assert settings.http.chunk_size == 4096
    assert [source.label for source in settings.sources] == ["Toolpacks", "Baseutils"]


def test_load_settings_from_yaml(tmp_path):
    config = tmp_path / "binfetch.yaml"
    config.write_text(
        "install_dir: ~/tools\n"
        "retake_ownership: true\n"
        "store_root: /gnu/store/\n"
        "http:\n"
        "  max_retries: 5\n"
        "sources:\n"
        "  - label: Mirror\n"
        "    url: https://mirror.example/{arch}/METADATA.json\n",
        encoding="utf-8",
    )

    settings = load_settings(config)

    assert settings.install_dir == Path("~/tools").expanduser()
    assert settings.retake_ownership is True
    assert settings.store_root == "/gnu/store"
    assert settings.http.max_retries == 5
    assert settings.sources[0].urls_for("aarch64_Linux") == (
        "https://mirror.example/aarch64_Linux/METADATA.json",
        None,
    )
    assert settings.destination_for("jq") == Path("~/tools").expanduser() / "jq"


def test_environment_overrides_yaml(tmp_path, monkeypatch):
    config = tmp_path / "binfetch.yaml"
    config.write_text(f"install_dir: {tmp_path / 'yaml'}\n", encoding="utf-8")
    monkeypatch.setenv("BINFETCH_INSTALL_DIR", str(tmp_path / "env"))
    monkeypatch.setenv("BINFETCH_HTTP__TIMEOUT_SEC", "12.5")

    settings = load_settings(config)

    assert settings.install_dir == tmp_path / "env"
    assert settings.http.timeout_sec == 12.5


@pytest.mark.parametrize(
    "text",
    [
        "concurrent_installs: 0\n",
        "ownership_backend: registry\n",
        "store_root: relative/store\n",
        "logging:\n  level: LOUD\n",
        "- not\n- a mapping\n",
        "install_dir: [unterminated\n",
    ],
)
def test_invalid_configuration_raises_config_error(tmp_path, text):
    config = tmp_path / "binfetch.yaml"
    config.write_text(text, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings(config)


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "absent.yaml")


def test_empty_config_file_uses_defaults(tmp_path):
    config = tmp_path / "binfetch.yaml"
    config.write_text("", encoding="utf-8")

    assert load_settings(config).concurrent_installs == 4


def test_get_settings_is_memoised(monkeypatch, tmp_path):
    monkeypatch.setenv("BINFETCH_INSTALL_DIR", str(tmp_path))

    first = get_settings()
    assert get_settings() is first
    reset_settings_cache()
    assert get_settings() is not first


def test_catalog_source_fallback_expansion():
    source = CatalogSource(
        label="Toolpacks",
        url="https://a.example/{arch}/METADATA.json",
        fallback_url="https://b.example/{arch}/METADATA.json?download=true",
    )

    assert source.urls_for("x86_64_Linux") == (
        "https://a.example/x86_64_Linux/METADATA.json",
        "https://b.example/x86_64_Linux/METADATA.json?download=true",
    )


@pytest.mark.parametrize("name", ["", ".", "..", "../escaped", "/etc/passwd", "tools/jq", "jq\x00"])
def test_destination_for_rejects_names_outside_install_dir(tmp_path, name):
    settings = BinaryFetchSettings(install_dir=tmp_path / "bin")

    with pytest.raises(ConfigError):
        settings.destination_for(name)


def test_destination_for_keeps_plain_names_flat(tmp_path):
    settings = BinaryFetchSettings(install_dir=tmp_path / "bin")

    assert settings.destination_for("..jq").parent == tmp_path / "bin"
    assert settings.destination_for("jq.v2").parent == tmp_path / "bin"
