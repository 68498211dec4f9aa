"""
Test Suite: Deployment Environment
==================================

Mock payment confirmation is opt-in and never available in production.
"""

import pytest

from utils.environment import allow_mock_data, current_environment


class TestCurrentEnvironment:

    def test_unset_is_production(self, monkeypatch):
        monkeypatch.delenv("ENVIRONMENT", raising=False)

        assert current_environment() == "production"

    def test_unknown_value_is_production(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "staging")

        assert current_environment() == "production"

    def test_value_is_normalized(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", " Development ")

        assert current_environment() == "development"


class TestAllowMockData:

    @pytest.mark.parametrize("environment,flag,expected", [
        ("development", "true", True),
        ("test", "1", True),
        ("development", "", False),
        ("test", "false", False),
        ("production", "true", False),
    ])
    def test_requires_flag_outside_production(self, monkeypatch, environment, flag, expected):
        monkeypatch.setenv("ENVIRONMENT", environment)
        monkeypatch.setenv("ALLOW_MOCK_PAYMENTS", flag)

        assert allow_mock_data() is expected

    def test_unset_environment_refuses_even_with_flag(self, monkeypatch):
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        monkeypatch.setenv("ALLOW_MOCK_PAYMENTS", "true")

        assert allow_mock_data() is False
