import pytest

from metacfg.models import Config, PageRequest
from metacfg.services.config_service import ConfigService


@pytest.fixture
def service(memory_repository):
    return ConfigService(memory_repository)


class TestConfigService:
    def test_update_notifies_consumers(self, service):
        received = []
        service.add_consumer(received.append)

        saved = service.update([Config(name="a"), Config(name="b")])

        assert received == saved

    def test_skipped_configs_are_not_announced(self, service):
        (saved,) = service.update([Config(name="a")])
        received = []
        service.add_consumer(received.append)

        assert service.update([saved.evolve(updated=saved.updated)]) == []
        assert received == []

    def test_failing_consumer_does_not_stop_the_others(self, service):
        def broken(config):
            raise RuntimeError("consumer down")

        received = []
        service.add_consumer(broken)
        service.add_consumer(received.append)

        service.update([Config(name="a")])

        assert [c.name for c in received] == ["a"]
        assert service.get_names() == ["a"]

    def test_reads(self, service):
        service.update([Config(name="a"), Config(name="b")])

        assert service.get_names() == ["a", "b"]
        assert [c.name for c in service.get(["b"])] == ["b"]
        assert service.get_one("a").name == "a"
        assert service.get_one("missing") is None
        assert [c.name for c in service.get_all()] == ["a", "b"]
        assert service.page(PageRequest(size=1)).names == ["a"]

    def test_remove(self, service):
        service.update([Config(name="a")])
        assert service.remove(["a"]) == 1
        assert service.get_names() == []

    def test_accept(self, service):
        (saved,) = service.update([Config(name="a")])
        received = []
        service.add_consumer(received.append)

        assert service.accept("a") is True
        assert received == [saved]
        assert service.accept("missing") is False
        assert received == [saved]
