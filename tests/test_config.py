"""
Tests for rubedo.config.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from rubedo.config import (
    DEFAULT_MUSIC_FOLDER,
    ConfigError,
    DjConfig,
    IcecastConfig,
    load_config,
    parse_config,
)

EXAMPLE = """
radio_name = "Test Radio"
music_folder = "{music}"
database = "data/shared.db"
log_folder = "logs"
dj_log_file = "dj.log"
interrupt_empty_queue = true
idle_interval = 30
chunk_size = 8192

[icecast]
server = "icecast.local"
port = 8001
mount = "/live"
username = "dj"
password = "secret"
"""


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "nope.toml")
        assert config == DjConfig()

    def test_full_file(self, tmp_path: Path) -> None:
        music = tmp_path / "music"
        music.mkdir()
        path = tmp_path / "config.toml"
        path.write_text(EXAMPLE.format(music=music.as_posix()))

        config = load_config(path)

        assert config.radio_name == "Test Radio"
        assert config.music_folder == music
        assert config.library_root == music
        assert config.database == Path("data/shared.db")
        assert config.log_path == Path("logs/dj.log")
        assert config.interrupt_empty_queue is True
        assert config.idle_interval == 30.0
        assert config.chunk_size == 8192
        assert config.icecast == IcecastConfig(
            server="icecast.local",
            port=8001,
            mount="/live",
            username="dj",
            password="secret",
        )

    def test_malformed_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text("radio_name = ")

        with pytest.raises(ConfigError):
            load_config(path)


class TestParseConfig:
    def test_defaults(self) -> None:
        config = parse_config({})
        assert config.chunk_size == 16384
        assert config.idle_interval == 500.0
        assert config.interrupt_empty_queue is False
        assert config.log_path is None

    @pytest.mark.parametrize(
        "data",
        [
            {"icecast": {"port": "8000"}},
            {"icecast": {"port": True}},
            {"icecast": "localhost"},
            {"interrupt_empty_queue": "yes"},
            {"chunk_size": 0},
            {"idle_interval": -1},
            {"radio_name": 5},
        ],
    )
    def test_invalid_values(self, data: dict) -> None:
        with pytest.raises(ConfigError):
            parse_config(data)

    def test_empty_log_file_disables_file_logging(self) -> None:
        assert parse_config({"dj_log_file": ""}).log_path is None


def test_music_folder_falls_back_when_missing(tmp_path: Path) -> None:
    config = DjConfig(music_folder=tmp_path / "does-not-exist")
    assert config.library_root == DEFAULT_MUSIC_FOLDER
