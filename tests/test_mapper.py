"""Unit tests for the AutoMapper facade, profiles and the global mapper."""

import logging

import pytest

from automapping import AutoMapper, ConfigurationError, MappingProfile, TypePair
from automapping.config import ConfigManager
from automapping.core import mapping as mapping_module
from automapping.core.mapping import get_mapper, reset_mapper
from tests.models import (
    Address,
    AddressDto,
    Customer,
    CustomerDto,
    RenamedDestination,
    SimpleDestination,
    SimpleSource,
)


class CustomerProfile(MappingProfile):
    def configure(self, mapper: AutoMapper) -> None:
        mapper.create_map(Customer, CustomerDto).register()
        mapper.create_map(Address, AddressDto, lambda b: b.transform("city", str.upper))


def renaming_profile(mapper: AutoMapper) -> None:
    mapper.create_map(SimpleSource, RenamedDestination, lambda b: b.map_field("identifier", "id"))


@pytest.mark.unit
class TestProfiles:
    """Tests for grouped mapping declarations."""

    def test_profile_class_should_be_instantiated_and_applied(
        self, mapper: AutoMapper, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test profile classes.

        Given: A MappingProfile subclass.
        When: It is added to the mapper.
        Then: Its rules are registered and the load is logged.
        """
        with caplog.at_level(logging.INFO, logger="automapping.core.mapping"):
            mapper.add_profile(CustomerProfile)

        assert mapper.get_all_mapping_configurations() == [
            TypePair(Customer, CustomerDto),
            TypePair(Address, AddressDto),
        ]
        assert "Loaded mapping profile CustomerProfile" in caplog.text

    def test_profile_instances_and_functions_should_be_applied(self, mapper: AutoMapper) -> None:
        mapper.add_profiles(CustomerProfile(), renaming_profile)

        assert mapper.get_rule(SimpleSource, RenamedDestination) is not None
        assert mapper.map(Customer(address=Address(city="rome")), CustomerDto).address.city == "ROME"

    def test_invalid_profile_should_be_rejected(self, mapper: AutoMapper) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            mapper.add_profile(42)

        assert exc_info.value.code == "invalid_profile"

    def test_base_profile_should_require_configure(self, mapper: AutoMapper) -> None:
        with pytest.raises(NotImplementedError):
            mapper.add_profile(MappingProfile)

    def test_failing_profile_should_be_logged_and_reraised(
        self, mapper: AutoMapper, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test profile failures.

        Given: A profile function referencing a field the source does not have.
        When: It is added to the mapper.
        Then: The ConfigurationError propagates and is logged with its traceback.
        """
        def broken_profile(m: AutoMapper) -> None:
            m.create_map(SimpleSource, RenamedDestination, lambda b: b.map_field("identifier", "missing"))

        with caplog.at_level(logging.ERROR, logger="automapping.core.mapping"):
            with pytest.raises(ConfigurationError):
                mapper.add_profile(broken_profile)

        assert "Failed to load mapping profile broken_profile" in caplog.text
        assert "Traceback:" in caplog.text


@pytest.mark.unit
class TestMapperIsolation:
    """Tests for independent mapper instances."""

    def test_rules_should_not_leak_between_mappers(self, mapper_factory) -> None:
        """Test registry isolation.

        Given: Two mappers, one with a renaming rule.
        When: Both map the same source.
        Then: Only the configured mapper applies the rename.
        """
        configured = mapper_factory()
        plain = mapper_factory()
        renaming_profile(configured)

        source = SimpleSource(id=7)

        assert configured.map(source, RenamedDestination).identifier == 7
        assert plain.map(source, RenamedDestination).identifier == 0

    def test_create_map_with_configure_should_return_registered_rule(self, mapper: AutoMapper) -> None:
        rule = mapper.create_map(SimpleSource, SimpleDestination, lambda b: b.ignore_field("name"))

        assert mapper.get_rule(SimpleSource, SimpleDestination) is rule


@pytest.mark.unit
class TestGlobalMapper:
    """Tests for the lazily created global mapper."""

    def test_get_mapper_should_return_singleton_until_reset(self) -> None:
        reset_mapper()
        try:
            first = get_mapper()

            assert get_mapper() is first

            reset_mapper()

            assert get_mapper() is not first
        finally:
            reset_mapper()

    def test_get_mapper_should_configure_logging_when_enabled(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls = []
        monkeypatch.setenv("AUTOMAPPING_CONFIGURE_LOGGING", "true")
        monkeypatch.setattr(mapping_module, "setup_logging", lambda *args: calls.append(args))
        monkeypatch.setattr(mapping_module, "get_config", ConfigManager)
        reset_mapper()
        try:
            get_mapper()
        finally:
            reset_mapper()

        assert len(calls) == 1
        assert calls[0][0] == "INFO"
