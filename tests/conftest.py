"""Pytest configuration and shared factories for the mapping engine tests."""

import os
from collections.abc import Callable, Iterator
from typing import Any, Dict, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from automapping.config import ConfigManager
from automapping.core.classifier import TypeClassifier
from automapping.core.conversion import ConversionChain
from automapping.core.mapping import AutoMapper
from automapping.core.metadata import MetadataCache
from automapping.core.registry import MappingRegistry
from tests.models import Base


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep host AUTOMAPPING_ variables and .env files out of every test."""
    for key in list(os.environ):
        if key.startswith("AUTOMAPPING_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def config_factory() -> Callable[..., ConfigManager]:
    """Factory to create ConfigManager instances from explicit overrides.

    Returns:
        A callable that builds a validated configuration.
    """

    def _make_config(**overrides: Any) -> ConfigManager:
        return ConfigManager(overrides=overrides)

    return _make_config


@pytest.fixture
def mapper_factory(config_factory: Callable[..., ConfigManager]) -> Callable[..., AutoMapper]:
    """Factory to create isolated AutoMapper instances.

    Returns:
        A callable accepting setting overrides and returning a fresh mapper.
    """

    def _make_mapper(**overrides: Any) -> AutoMapper:
        return AutoMapper(config_factory(**overrides))

    return _make_mapper


@pytest.fixture
def mapper(mapper_factory: Callable[..., AutoMapper]) -> AutoMapper:
    """Fresh mapper with default settings and an empty registry."""
    return mapper_factory()


@pytest.fixture
def metadata() -> MetadataCache:
    return MetadataCache()


@pytest.fixture
def classifier(metadata: MetadataCache) -> TypeClassifier:
    return TypeClassifier(metadata)


@pytest.fixture
def registry(metadata: MetadataCache, classifier: TypeClassifier) -> MappingRegistry:
    return MappingRegistry(metadata, classifier)


@pytest.fixture
def converter(registry: MappingRegistry) -> ConversionChain:
    return ConversionChain(registry)


@pytest.fixture
def session() -> Iterator[Session]:
    """In-memory SQLite session with the test schema created."""
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    db = factory()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def settings_file_factory(tmp_path) -> Callable[..., str]:
    """Factory writing JSON settings files into a temporary directory.

    Returns:
        A callable taking the raw file content and returning its path.
    """
    counter: Dict[str, int] = {"n": 0}

    def _make_file(content: str, name: Optional[str] = None) -> str:
        counter["n"] += 1
        path = tmp_path / (name or f"settings_{counter['n']}.json")
        path.write_text(content)
        return str(path)

    return _make_file
