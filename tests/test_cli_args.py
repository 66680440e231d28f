"""Unit tests for KEY=VALUE parsing and environment readers."""

import pytest

from cli_args import ConfigError, env_flag, env_float, env_int, parse_key_values, require


KEYS = ("REGION", "VPC_ID")


def test_parse_key_values_keeps_recognized_keys():
    values = parse_key_values(["REGION=eu-west-1", "VPC_ID=vpc-0abc"], KEYS)
    assert values == {"REGION": "eu-west-1", "VPC_ID": "vpc-0abc"}


def test_parse_key_values_ignores_unknown_keys_and_bare_tokens():
    values = parse_key_values(["COLOR=blue", "REGION", "REGION=us-east-1"], KEYS)
    assert values == {"REGION": "us-east-1"}


def test_parse_key_values_splits_on_first_equals():
    assert parse_key_values(["VPC_ID=a=b"], KEYS) == {"VPC_ID": "a=b"}


def test_parse_key_values_last_token_wins():
    assert parse_key_values(["REGION=a", "REGION=b"], KEYS) == {"REGION": "b"}


def test_require_rejects_missing_and_empty():
    with pytest.raises(ConfigError, match="VPC_ID"):
        require({}, "VPC_ID")
    with pytest.raises(ConfigError, match="VPC_ID"):
        require({"VPC_ID": ""}, "VPC_ID")
    assert require({"VPC_ID": "vpc-1"}, "VPC_ID") == "vpc-1"


def test_env_int():
    assert env_int({}, "N", 4) == 4
    assert env_int({"N": "8"}, "N", 4) == 8
    with pytest.raises(ConfigError):
        env_int({"N": "many"}, "N", 4)
    with pytest.raises(ConfigError):
        env_int({"N": "0"}, "N", 4)


def test_env_float():
    assert env_float({}, "T") is None
    assert env_float({"T": "2.5"}, "T") == 2.5
    with pytest.raises(ConfigError):
        env_float({"T": "-1"}, "T")


@pytest.mark.parametrize("raw,expected", [("1", True), ("TRUE", True), ("yes", True), ("0", False), ("", False)])
def test_env_flag(raw, expected):
    assert env_flag({"F": raw}, "F") is expected
