"""Tests for configuration loading."""

import json

from relaybot.config.loader import camel_to_snake, convert_keys, load_config, save_config, snake_to_camel
from relaybot.config.schema import Config, Mode


class TestKeyConversion:
    def test_camel_to_snake(self):
        assert camel_to_snake("bridgeUrl") == "bridge_url"
        assert camel_to_snake("maxDelayS") == "max_delay_s"

    def test_snake_to_camel(self):
        assert snake_to_camel("max_delay_s") == "maxDelayS"
        assert snake_to_camel("session_id") == "sessionId"

    def test_convert_keys_nested(self):
        data = {"announce": {"greetSelf": False, "groups": ["x"]}}
        assert convert_keys(data) == {"announce": {"greet_self": False, "groups": ["x"]}}


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.json")

        assert config.bot.mode == Mode.PUBLIC
        assert config.session.remote_marker == "XEON-XTECH~"
        assert config.reconnect.max_attempts == 0

    def test_camel_case_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "session": {"sessionId": "POPKID$abc", "sessionDir": str(tmp_path / "s")},
            "bot": {"mode": 0, "timeZone": "UTC", "ownerNumber": "254711000000"},
            "reconnect": {"maxAttempts": 5},
        }))

        config = load_config(path)

        assert config.session.session_id == "POPKID$abc"
        assert config.session_path == tmp_path / "s"
        assert config.bot.mode == Mode.PRIVATE
        assert not config.is_public
        assert config.bot.owner_jid == "254711000000@s.whatsapp.net"
        assert config.reconnect.max_attempts == 5

    def test_legacy_root_session_id(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"sessionId": "abc"}))

        assert load_config(path).session.session_id == "abc"

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"bot": {"mode": 1, "name": "from-file"}}))
        monkeypatch.setenv("RELAYBOT_BOT__MODE", "0")

        config = load_config(path)

        assert config.bot.mode == Mode.PRIVATE
        assert config.bot.name == "from-file"

    def test_invalid_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        assert load_config(path).bot.name == "relaybot"

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "config.json"
        config = Config()
        config.announce.channels = ["1@newsletter"]

        save_config(config, path)

        assert "greetSelf" in json.loads(path.read_text())["announce"]
        assert load_config(path).announce.channels == ["1@newsletter"]
