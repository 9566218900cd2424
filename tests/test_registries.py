import pytest

from api.v1.core.exceptions import ConfigurationError, UnknownJobTypeError
from api.v1.core.registries import ProcessorRegistry, Registry


class AsyncProcessor:
    async def process(self, job, report_progress):
        return {"ok": True}


class SyncProcessor:
    def process(self, job, report_progress):
        return {"ok": True}


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str]("Test")

    # Test empty registry
    assert registry.list() == []

    # Test register and get
    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.list() == ["test_impl"]
    assert "test_impl" in registry

    # Test KeyError for missing implementation
    with pytest.raises(KeyError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_last_registration_wins():
    registry = Registry[str]("Test")

    registry.register("impl", "first")
    registry.register("impl", "second")

    assert registry.get("impl") == "second"
    assert registry.list() == ["impl"]


def test_registry_freeze():
    """Test that frozen registries reject registration."""
    registry = Registry[str]("Test")
    registry.register("impl1", "value1")

    registry.freeze()

    assert registry.is_frozen()
    with pytest.raises(RuntimeError, match="registry is frozen"):
        registry.register("impl2", "value2")
    assert registry.get("impl1") == "value1"


def test_processor_registry_accepts_async_processors():
    registry = ProcessorRegistry()
    processor = AsyncProcessor()

    registry.register("export", processor)

    assert registry.get("export") is processor


def test_processor_registry_rejects_sync_process():
    registry = ProcessorRegistry()

    with pytest.raises(ConfigurationError, match="must define 'async def process"):
        registry.register("export", SyncProcessor())
    with pytest.raises(ConfigurationError):
        registry.register("export", object())


def test_processor_registry_rejects_blank_type():
    with pytest.raises(ConfigurationError):
        ProcessorRegistry().register("  ", AsyncProcessor())


def test_processor_registry_unknown_type():
    with pytest.raises(UnknownJobTypeError, match="No processor registered for job type: ghost"):
        ProcessorRegistry().get("ghost")
