"""Tests for the identity store."""

from __future__ import annotations

import re
from unittest.mock import patch

import pytest

from trackline.errors import PropertyValidationError
from trackline.identity import (
    IdentityStore,
    MachineIdentifierProvider,
    RandomIdentifierProvider,
)

from tests.utils import SequenceIdentifierProvider


class TestDefaultIdentifier:
    """Test default distinct id derivation."""

    def test_provider_supplies_initial_id(self):
        store = IdentityStore(SequenceIdentifierProvider())
        assert store.distinct_id == "device-1"

    def test_random_provider_returns_uuid(self):
        value = RandomIdentifierProvider().default_identifier()
        assert re.fullmatch(r"[0-9a-f-]{36}", value)

    @patch("trackline.identity.getpass.getuser", return_value="ada")
    @patch("trackline.identity.socket.gethostname", return_value="build-host")
    def test_machine_provider_is_stable(self, mock_host, mock_user):
        provider = MachineIdentifierProvider()
        assert provider.default_identifier() == provider.default_identifier()
        assert len(provider.default_identifier()) == 32

    def test_empty_provider_value_falls_back(self):
        class EmptyProvider:
            def default_identifier(self):
                return ""

        store = IdentityStore(EmptyProvider())
        assert store.distinct_id


class TestIdentify:
    def test_identify_replaces_id(self):
        store = IdentityStore(SequenceIdentifierProvider())
        assert store.identify("u1") is True
        assert store.distinct_id == "u1"

    def test_empty_id_ignored(self):
        store = IdentityStore(SequenceIdentifierProvider())
        assert store.identify("") is False
        assert store.distinct_id == "device-1"


class TestSuperProperties:
    """Test registering and removing super properties."""

    def test_register_overwrites(self):
        store = IdentityStore()
        store.register_super_properties({"plan": "free", "a": 1})
        store.register_super_properties({"plan": "pro"})
        assert store.current_super_properties() == {"plan": "pro", "a": 1}

    def test_register_once_keeps_existing(self):
        store = IdentityStore()
        store.register_super_properties({"plan": "free"})
        store.register_super_properties_once({"plan": "pro", "source": "ad"})
        assert store.current_super_properties() == {"plan": "free", "source": "ad"}

    def test_register_once_replaces_default_value(self):
        store = IdentityStore()
        store.register_super_properties({"plan": "unknown", "seats": 1})
        store.register_super_properties_once({"plan": "pro", "seats": 5}, default_value="unknown")
        assert store.current_super_properties() == {"plan": "pro", "seats": 1}

    def test_register_once_with_none_default(self):
        store = IdentityStore()
        store.register_super_properties({"referrer": None})
        store.register_super_properties_once({"referrer": "news"}, default_value=None)
        assert store.current_super_properties() == {"referrer": "news"}

    def test_unregister_missing_is_noop(self):
        store = IdentityStore()
        store.register_super_properties({"a": 1})
        store.unregister_super_property("missing")
        store.unregister_super_property("a")
        assert store.current_super_properties() == {}

    def test_current_super_properties_is_a_copy(self):
        store = IdentityStore()
        store.register_super_properties({"tags": ["a"]})
        snapshot = store.current_super_properties()
        snapshot["tags"].append("b")
        assert store.current_super_properties() == {"tags": ["a"]}

    def test_invalid_values_raise(self):
        store = IdentityStore()
        with pytest.raises(PropertyValidationError):
            store.register_super_properties({"bad": float("nan")})
        assert store.current_super_properties() == {}


class TestReset:
    def test_reset_clears_and_regenerates(self):
        store = IdentityStore(SequenceIdentifierProvider())
        store.identify("u1")
        store.name_tag = "Ada"
        store.register_super_properties({"plan": "pro"})

        store.reset()

        assert store.distinct_id == "device-2"
        assert store.name_tag is None
        assert store.current_super_properties() == {}
