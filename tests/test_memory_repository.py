import threading

from metacfg.models import Config, PageRequest, Property
from tests.factories import BASE_UPDATED, build_config, strip_identity


class TestInMemoryConfigRepository:
    def test_insert_assigns_ids_and_first_version(self, memory_repository):
        original = build_config(depth=2)
        (saved,) = memory_repository.save_and_flush([original])

        assert saved.id > 0
        assert saved.version == 1
        assert all(p.id > 0 for p in saved.properties)
        assert strip_identity(saved) == original
        assert memory_repository.find_by_names([original.name]) == [saved]

    def test_update_requires_newer_stamp_and_same_version(self, memory_repository):
        (saved,) = memory_repository.save_and_flush([build_config()])

        assert memory_repository.save_and_flush([saved.evolve(updated=saved.updated)]) == []
        (updated,) = memory_repository.save_and_flush([saved.evolve(description="new")])
        assert updated.version == 2
        assert memory_repository.save_and_flush([saved.evolve(updated=updated.updated + 1)]) == []

    def test_update_keeps_stored_properties_that_are_not_newer(self, memory_repository):
        (saved,) = memory_repository.save_and_flush(
            [Config(name="cfg", updated=BASE_UPDATED, properties=[Property.of("p", "v", updated=BASE_UPDATED)])]
        )
        stale = saved.properties[0].model_copy(update={"value": "ignored"})
        fresh = Property.of("q", 1)

        (updated,) = memory_repository.save_and_flush([saved.evolve(properties=[stale, fresh])])

        assert updated.properties[0].value == "v"
        assert updated.properties[1].id > 0
        assert updated.get_property("q").as_long() == 1

    def test_names_paging_and_delete(self, memory_repository):
        memory_repository.save_and_flush(
            [Config(name=n, attributes={"env": "prod"} if n in ("b", "d") else {}) for n in "edcba"]
        )

        assert memory_repository.find_names() == ["a", "b", "c", "d", "e"]
        page = memory_repository.find_by_page_request(PageRequest(page=1, size=2))
        assert (page.names, page.total) == (["c", "d"], 5)
        filtered = memory_repository.find_by_page_request(PageRequest(attributes={"env": "pro"}))
        assert filtered.names == ["b", "d"]

        assert memory_repository.delete(["a", "z"]) == 1
        assert memory_repository.find_by_names(["a"]) == []

    def test_empty_inputs(self, memory_repository):
        assert memory_repository.save_and_flush([]) == []
        assert memory_repository.find_by_names([]) == []
        assert memory_repository.delete([]) == 0

    def test_concurrent_inserts_get_distinct_ids(self, memory_repository):
        def insert(i):
            memory_repository.save_and_flush([Config(name=f"config-{i}", properties=[Property(name="p")])])

        threads = [threading.Thread(target=insert, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        configs = memory_repository.find_by_names(memory_repository.find_names())
        assert len({c.id for c in configs}) == 20
        assert len({c.properties[0].id for c in configs}) == 20

    def test_callers_cannot_change_stored_configs(self, memory_repository):
        attributes = {"env": "prod"}
        (saved,) = memory_repository.save_and_flush(
            [Config(name="cfg", attributes=attributes, properties=[Property(name="p", attributes={"k": "v"})])]
        )

        attributes["env"] = "changed by input"
        saved.attributes["env"] = "changed by result"
        (fetched,) = memory_repository.find_by_names(["cfg"])
        fetched.properties[0].attributes["k"] = "changed by read"

        (again,) = memory_repository.find_by_names(["cfg"])
        assert again.attributes == {"env": "prod"}
        assert again.properties[0].attributes == {"k": "v"}

    def test_stale_property_comes_back_with_stored_values(self, memory_repository):
        (saved,) = memory_repository.save_and_flush(
            [Config(name="cfg", updated=BASE_UPDATED, properties=[Property.of("p", "v", updated=BASE_UPDATED)])]
        )
        stale = saved.properties[0].model_copy(update={"value": "ignored"})

        (result,) = memory_repository.save_and_flush([saved.evolve(properties=[stale])])

        assert result == memory_repository.find_by_names(["cfg"])[0]
        assert result.properties[0].value == "v"
