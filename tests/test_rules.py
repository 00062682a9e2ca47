"""Unit tests for MappingRule and RuleBuilder."""

import dataclasses

import pytest

from automapping import ConfigurationError, MappingRule, NullPolicy, RuleBuilder, TypePair
from automapping.core.metadata import MetadataCache
from tests.models import CustomerSummary, RenamedDestination, SimpleDestination, SimpleSource


@pytest.fixture
def renaming_rule() -> MappingRule:
    return (
        RuleBuilder(SimpleSource, RenamedDestination)
        .map_field("identifier", "id")
        .map_field("full_name", "name")
        .transform("name", str.upper)
        .ignore_field("is_active")
        .build()
    )


@pytest.mark.unit
class TestMappingRule:
    """Tests for rule lookups and immutability."""

    def test_rule_without_configuration_should_have_empty_read_only_mappings(self) -> None:
        """Test the defaults of a bare rule.

        Given: Two rules created with only their type pair.
        When: Their rename, transformer and resolver mappings are read.
        Then: Each is empty, read-only and not shared between the rules.
        """
        first = MappingRule(SimpleSource, SimpleDestination)
        second = MappingRule(SimpleSource, RenamedDestination)

        for rule in (first, second):
            assert dict(rule.field_renames) == {}
            assert dict(rule.transformers) == {}
            assert dict(rule.resolvers) == {}
            with pytest.raises(TypeError):
                rule.field_renames["id"] = "id"

        assert first.field_renames is not second.field_renames
        assert not first.has_custom_functions

    def test_lookups_should_be_case_insensitive(self, renaming_rule: MappingRule) -> None:
        """Test rule name lookups.

        Given: A rule with renames, a transformer and an ignored field.
        When: They are looked up with different casing.
        Then: The configured entries are found.
        """
        assert renaming_rule.source_field_for("IDENTIFIER") == "id"
        assert renaming_rule.source_field_for("unmapped") == "unmapped"
        assert renaming_rule.transformer_for("Name") is str.upper
        assert renaming_rule.is_ignored("IS_ACTIVE")

    def test_rule_should_be_immutable(self, renaming_rule: MappingRule) -> None:
        """Test that a built rule cannot be changed.

        Given: A built rule.
        When: Its attributes or mappings are assigned.
        Then: Both attempts fail.
        """
        with pytest.raises(dataclasses.FrozenInstanceError):
            renaming_rule.null_policy = NullPolicy.SKIP

        with pytest.raises(TypeError):
            renaming_rule.field_renames["other"] = "x"

    def test_builder_changes_after_build_should_not_affect_rule(self) -> None:
        builder = RuleBuilder(SimpleSource, RenamedDestination).map_field("identifier", "id")
        rule = builder.build()

        builder.map_field("full_name", "name")

        assert dict(rule.field_renames) == {"identifier": "id"}

    def test_names_differing_only_by_case_should_be_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            MappingRule(SimpleSource, RenamedDestination, field_renames={"identifier": "id", "IDENTIFIER": "id"})

        assert exc_info.value.code == "duplicate_field"

    def test_reverse_should_invert_renames_and_drop_functions(self, renaming_rule: MappingRule) -> None:
        """Test reverse rule construction.

        Given: A rule with renames, a transformer and an ignored field.
        When: It is reversed.
        Then: Types swap, renames invert and one-way configuration is dropped.
        """
        reverse = renaming_rule.reverse()

        assert reverse.pair == TypePair(RenamedDestination, SimpleSource)
        assert dict(reverse.field_renames) == {"id": "identifier", "name": "full_name"}
        assert not reverse.transformers
        assert not reverse.ignored_source_fields

    def test_narrow_should_copy_only_policies(self) -> None:
        rule = (
            RuleBuilder(SimpleSource, SimpleDestination)
            .ignore_nulls()
            .map_nested(False)
            .transform("name", str.upper)
            .build()
        )

        narrowed = rule.narrow(dict, SimpleDestination)

        assert narrowed.null_policy is NullPolicy.SKIP
        assert not narrowed.map_nested
        assert not narrowed.transformers

    def test_has_custom_functions(self, renaming_rule: MappingRule) -> None:
        assert renaming_rule.has_custom_functions
        assert not MappingRule.convention(SimpleSource, SimpleDestination).has_custom_functions


@pytest.mark.unit
class TestRuleValidation:
    """Tests for rule validation against the declared types."""

    def test_valid_rule_should_pass(self, renaming_rule: MappingRule, metadata: MetadataCache) -> None:
        renaming_rule.validate(metadata)

    def test_unknown_names_should_be_reported_together(self, metadata: MetadataCache) -> None:
        """Test validation failures.

        Given: A rule naming missing source and destination fields.
        When: It is validated.
        Then: ConfigurationError lists every problem.
        """
        rule = (
            RuleBuilder(SimpleSource, RenamedDestination)
            .map_field("missing_dest", "id")
            .ignore_field("missing_source")
            .resolve_field("also_missing", lambda s: s)
            .build()
        )

        with pytest.raises(ConfigurationError) as exc_info:
            rule.validate(metadata)

        error = exc_info.value
        assert error.code == "unknown_field"
        assert len(error.details["problems"]) == 3
        assert "missing_dest" in str(error)

    def test_dict_sources_should_skip_source_checks(self, metadata: MetadataCache) -> None:
        rule = RuleBuilder(dict, CustomerSummary).map_field("email_address", "email").build()

        rule.validate(metadata)


@pytest.mark.unit
class TestRuleBuilder:
    """Tests for builder argument checks and registration."""

    @pytest.mark.parametrize("name", ["", "   ", None, 5])
    def test_invalid_field_names_should_be_rejected(self, name) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            RuleBuilder(SimpleSource, SimpleDestination).map_field(name, "id")

        assert exc_info.value.code == "invalid_field_name"

    def test_non_callable_transformer_should_be_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            RuleBuilder(SimpleSource, SimpleDestination).transform("name", "upper")

        assert exc_info.value.code == "not_callable"

    def test_unbound_builder_should_not_register(self) -> None:
        with pytest.raises(ConfigurationError):
            RuleBuilder(SimpleSource, SimpleDestination).register()

    def test_from_rule_should_copy_configuration(self, renaming_rule: MappingRule) -> None:
        copy = RuleBuilder.from_rule(renaming_rule).build()

        assert dict(copy.field_renames) == dict(renaming_rule.field_renames)
        assert copy.ignored_source_fields == renaming_rule.ignored_source_fields
        assert copy.transformers["name"] is str.upper
