"""
Unit tests for scim_docstore/core/mapper.py

Covers rule-table validation, type coercion and both mapping directions.
"""

import pytest

from scim_docstore.core.errors import MappingConfigError, MappingTypeError
from scim_docstore.core.mapper import (
    DEFAULT_MAPPING,
    AttributeMapper,
    MappingRule,
    ResourceKind,
    coerce,
    flatten,
    get_path,
    set_path,
)


def _config(**user_rules):
    return {
        "user": {"userName": {"mapTo": "userName"}, **user_rules},
        "group": {"displayName": {"mapTo": "displayName"}},
    }


# ============================================================================
# Rule table validation
# ============================================================================

def test_default_mapping_compiles():
    mapper = AttributeMapper.from_config(DEFAULT_MAPPING)

    externals = {rule.external_name for rule in mapper.rules("user")}
    assert {"userName", "active", "emails.work.value", "phoneNumbers.home.value"} <= externals
    assert [rule.external_name for rule in mapper.rules("group")] == ["id", "displayName"]


def test_unsupported_type_rejected():
    with pytest.raises(MappingConfigError, match="unsupported type 'date'"):
        AttributeMapper.from_config(_config(createdAt={"mapTo": "meta.created", "type": "date"}))


def test_missing_map_to_rejected():
    with pytest.raises(MappingConfigError, match="'mapTo' is required"):
        AttributeMapper.from_config(_config(active={"type": "boolean"}))


def test_overlapping_external_names_rejected():
    config = _config(
        **{
            "name": {"mapTo": "name"},
            "name.givenName": {"mapTo": "name.givenName"},
        }
    )
    with pytest.raises(MappingConfigError, match="overlaps"):
        AttributeMapper.from_config(config)


def test_duplicate_external_names_rejected():
    config = _config(
        **{
            "mail": {"mapTo": "emails.work.value"},
            "email": {"mapTo": "emails.work.value"},
        }
    )
    with pytest.raises(MappingConfigError, match="duplicate external name"):
        AttributeMapper.from_config(config)


def test_empty_path_segment_rejected():
    with pytest.raises(MappingConfigError, match="invalid attribute path"):
        AttributeMapper.from_config(_config(**{"a..b": {"mapTo": "x"}}))


def test_primary_name_must_be_mapped():
    config = {
        "user": {"login": {"mapTo": "login"}},
        "group": {"displayName": {"mapTo": "displayName"}},
    }
    with pytest.raises(MappingConfigError, match="'userName' must be mapped"):
        AttributeMapper.from_config(config)


def test_both_kinds_required():
    with pytest.raises(MappingConfigError, match="mapping for 'group' is missing"):
        AttributeMapper({"user": [MappingRule("userName", "userName")]})


def test_unknown_kind_rejected():
    with pytest.raises(ValueError, match="Unknown resource kind 'device'"):
        AttributeMapper.default().to_internal("device", {})


# ============================================================================
# Coercion
# ============================================================================

class TestCoerce:
    def test_string_accepts_numbers(self):
        assert coerce(MappingRule("a", "a", "string"), 42) == "42"

    def test_string_rejects_boolean(self):
        with pytest.raises(MappingTypeError):
            coerce(MappingRule("a", "a", "string"), True)

    @pytest.mark.parametrize("raw,expected", [(True, True), ("true", True), ("FALSE", False), (" True ", True)])
    def test_boolean(self, raw, expected):
        assert coerce(MappingRule("active", "active", "boolean"), raw) is expected

    def test_boolean_rejects_other_strings(self):
        with pytest.raises(MappingTypeError) as exc_info:
            coerce(MappingRule("active", "active", "boolean"), "yes")
        assert exc_info.value.attribute == "active"
        assert exc_info.value.expected == "boolean"

    @pytest.mark.parametrize("raw,expected", [(3, 3), ("7", 7), ("2.5", 2.5)])
    def test_number(self, raw, expected):
        assert coerce(MappingRule("n", "n", "number"), raw) == expected

    def test_number_rejects_text(self):
        with pytest.raises(MappingTypeError):
            coerce(MappingRule("n", "n", "number"), "seven")

    @pytest.mark.parametrize("raw", ["nan", "inf", "-Infinity", "1_000", float("nan"), float("inf")])
    def test_number_rejects_non_finite_and_separators(self, raw):
        with pytest.raises(MappingTypeError):
            coerce(MappingRule("n", "n", "number"), raw)

    def test_none_passes_through(self):
        assert coerce(MappingRule("n", "n", "number"), None) is None


# ============================================================================
# Mapping directions
# ============================================================================

def test_to_internal_maps_typed_emails_and_booleans(mapper):
    doc = mapper.to_internal(
        "user",
        {
            "userName": "alice",
            "active": "true",
            "emails": [{"type": "work", "value": "alice@example.com", "primary": True}],
            "name": {"givenName": "Alice"},
        },
    )

    assert doc == {
        "userName": "alice",
        "active": True,
        "attributes": {"email": "alice@example.com"},
        "name": {"givenName": "Alice"},
    }


def test_to_internal_accepts_dotted_keys(mapper):
    doc = mapper.to_internal("user", {"phoneNumbers.home.value": "555-0100"})
    assert doc == {"phoneNumbers": {"home": "555-0100"}}


def test_to_internal_drops_unmapped_attributes(mapper):
    doc = mapper.to_internal("group", {"displayName": "admins", "members": [{"value": "alice"}]})
    assert doc == {"displayName": "admins"}


def test_to_internal_raises_on_uncoercible_value(mapper):
    with pytest.raises(MappingTypeError, match="attribute 'active' expects boolean"):
        mapper.to_internal(ResourceKind.USER, {"userName": "alice", "active": "maybe"})


def test_to_external_skips_absent_and_null_fields(mapper):
    resource = mapper.to_external(
        "user",
        {"id": "u-1", "userName": "alice", "attributes": {"email": None}, "internalOnly": "x"},
    )
    assert resource == {"id": "u-1", "userName": "alice"}


def test_to_external_rebuilds_nested_shape(mapper):
    resource = mapper.to_external(
        "user",
        {"userName": "bob", "attributes": {"email": "bob@example.com", "telephoneNumber": "555"}},
    )
    assert resource["emails"] == {"work": {"value": "bob@example.com"}}
    assert resource["phoneNumbers"] == {"work": {"value": "555"}}


def test_custom_mapping_renames_primary_field():
    mapper = AttributeMapper.from_config(
        {
            "user": {"login": {"mapTo": "userName"}, "profile.mail": {"mapTo": "emails.work.value"}},
            "group": {"title": {"mapTo": "displayName"}},
        }
    )

    assert mapper.to_internal("user", {"userName": "carol"}) == {"login": "carol"}
    assert mapper.to_external("group", {"title": "ops"}) == {"displayName": "ops"}


FULL_USER_RECORD = {
    "id": "u-1",
    "userName": "alice",
    "active": False,
    "name": {"givenName": "Alice", "familyName": "Wonder", "formatted": "Alice Wonder"},
    "attributes": {"email": "alice@example.com", "telephoneNumber": "555-0100"},
    "phoneNumbers": {"home": "555-0199"},
    "addresses": {"work": "1 Main St"},
    "password": "s3cret",
}

COUNTER_MAPPING = {
    "user": {
        "id": {"mapTo": "id"},
        "login": {"mapTo": "userName"},
        "profile.age": {"mapTo": "age", "type": "number"},
        "profile.score": {"mapTo": "stats.score", "type": "number"},
        "flags.enabled": {"mapTo": "active", "type": "boolean"},
    },
    "group": {"title": {"mapTo": "displayName"}},
}

COUNTER_RECORD = {
    "id": "u-2",
    "login": "bob",
    "profile": {"age": 41, "score": 2.5},
    "flags": {"enabled": True},
}


@pytest.mark.parametrize(
    "config,record",
    [(DEFAULT_MAPPING, FULL_USER_RECORD), (COUNTER_MAPPING, COUNTER_RECORD)],
    ids=["default", "numbers"],
)
def test_fully_populated_record_round_trips(config, record):
    mapper = AttributeMapper.from_config(config)

    assert mapper.to_internal("user", mapper.to_external("user", record)) == record


def test_round_trip_survives_wire_list_rendering(mapper):
    external = mapper.to_external("user", FULL_USER_RECORD)
    wire = dict(external, emails=[{"type": "work", **external["emails"]["work"]}])

    assert mapper.to_internal("user", wire) == FULL_USER_RECORD


# ============================================================================
# Path helpers
# ============================================================================

def test_flatten_keys_typed_lists_by_type():
    flat = flatten({"emails": [{"type": "work", "value": "a"}, {"type": "home", "value": "b"}], "tags": ["x"]})
    assert flat == {"emails.work.value": "a", "emails.home.value": "b", "tags": ["x"]}


def test_set_and_get_path():
    doc = {}
    set_path(doc, "name.givenName", "Alice")
    assert doc == {"name": {"givenName": "Alice"}}
    assert get_path(doc, "name.givenName") == "Alice"
    assert get_path(doc, "name.familyName") is None
