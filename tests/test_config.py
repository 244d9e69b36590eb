import argparse

import pytest

from headphone_dashboard.config import Settings, add_broker_args, settings_from_args
from headphone_dashboard.memory_broker import MemoryBroker


def test_defaults_without_environment():
    s = Settings.from_env({})
    assert s == Settings()
    assert s.broker_type == "mqtt"
    assert s.device_count == 10


def test_reads_environment():
    s = Settings.from_env(
        {
            "BROKER_TYPE": " Redis ",
            "DEVICE_COUNT": "4",
            "MQTT_HOST": "mqtt.local",
            "MQTT_PORT": "1884",
            "MQTT_CLIENT_ID": "dash",
            "REDIS_HOST": "redis.local",
            "REDIS_PORT": "6380",
        }
    )
    assert s.broker_type == "redis"
    assert s.device_count == 4
    assert (s.mqtt_host, s.mqtt_port, s.mqtt_client_id) == ("mqtt.local", 1884, "dash")
    assert s.broker_params() == {"host": "redis.local", "port": 6380}


def test_invalid_integer_names_the_variable():
    with pytest.raises(ValueError, match="MQTT_PORT"):
        Settings.from_env({"MQTT_PORT": "abc"})


def test_unknown_broker_type_is_rejected():
    with pytest.raises(ValueError, match="BROKER_TYPE"):
        Settings.from_env({"BROKER_TYPE": "kafka"})


def test_broker_params_per_backend():
    assert Settings(broker_type="memory").broker_params() == {}
    assert Settings(broker_type="mqtt", mqtt_client_id="x").broker_params() == {
        "host": "localhost",
        "port": 1883,
        "client_id": "x",
    }


def test_memory_settings_create_memory_broker():
    assert isinstance(Settings(broker_type="memory").create_broker(), MemoryBroker)


def test_command_line_overrides_environment_defaults():
    parser = argparse.ArgumentParser()
    add_broker_args(parser, Settings.from_env({"BROKER_TYPE": "redis", "DEVICE_COUNT": "3"}))

    args = parser.parse_args([])
    assert settings_from_args(args).broker_type == "redis"
    assert settings_from_args(args).device_count == 3

    args = parser.parse_args(["--broker", "memory", "--devices", "7"])
    s = settings_from_args(args)
    assert (s.broker_type, s.device_count) == ("memory", 7)
