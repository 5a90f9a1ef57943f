"""Unit tests for the attribute/extension registry."""
from registry import AttributeRegistry


class TestAttributes:
    """Tests for attribute definition deduplication."""

    def test_same_key_and_type_created_once(self, fake_store):
        """Test resolving the same (key, type) twice writes one definition."""
        registry = AttributeRegistry(fake_store)
        first = registry.resolve_attribute("concept:name", "string")
        second = registry.resolve_attribute("concept:name", "string")
        assert first == second
        assert len(fake_store.table("attribute")) == 1
        assert registry.attribute_count == 1

    def test_different_types_are_different_definitions(self, fake_store):
        """Test the type is part of the attribute identity."""
        registry = AttributeRegistry(fake_store)
        as_string = registry.resolve_attribute("cost", "string")
        as_int = registry.resolve_attribute("cost", "int")
        assert as_string != as_int
        assert [row["type"] for row in fake_store.table("attribute")] == ["string", "int"]

    def test_missing_type_defaults_to_string(self, fake_store):
        registry = AttributeRegistry(fake_store)
        assert registry.resolve_attribute("x") == registry.resolve_attribute("x", "string")

    def test_prefixed_key_links_registered_extension(self, fake_store):
        """Test an attribute whose prefix names an extension references it."""
        registry = AttributeRegistry(fake_store)
        ext_id = registry.register_extension("Concept", "concept", "http://www.xes-standard.org/concept.xesext")
        registry.resolve_attribute("concept:name", "string")
        registry.resolve_attribute("org:resource", "string")
        registry.resolve_attribute("cost", "int")

        rows = {row["key"]: row for row in fake_store.table("attribute")}
        assert rows["concept:name"]["ext_id"] == ext_id
        assert rows["org:resource"]["ext_id"] is None
        assert rows["cost"]["ext_id"] is None
        assert all(row["parent_id"] is None for row in rows.values())


    def test_linkage_goes_through_resolve_extension(self, fake_store, monkeypatch):
        """Test attribute linkage asks resolve_extension for the key prefix."""
        registry = AttributeRegistry(fake_store)
        ext_id = registry.register_extension("Lifecycle", "lifecycle", "http://www.xes-standard.org/lifecycle.xesext")
        original = registry.resolve_extension
        prefixes = []

        def recording_resolve(prefix):
            prefixes.append(prefix)
            return original(prefix)

        monkeypatch.setattr(registry, "resolve_extension", recording_resolve)
        registry.resolve_attribute("lifecycle:transition")
        registry.resolve_attribute("plain")

        assert prefixes == ["lifecycle"]
        assert fake_store.table("attribute")[0]["ext_id"] == ext_id


class TestExtensions:
    """Tests for extension deduplication by prefix."""

    def test_extension_created_once_per_prefix(self, fake_store):
        registry = AttributeRegistry(fake_store)
        first = registry.register_extension("Time", "time", "http://www.xes-standard.org/time.xesext")
        second = registry.register_extension("Time again", "time", "http://example.org/other")
        assert first == second
        assert fake_store.table("extension") == [
            {"name": "Time", "prefix": "time", "uri": "http://www.xes-standard.org/time.xesext", "id": first},
        ]

    def test_resolve_unknown_extension_is_none(self, fake_store):
        registry = AttributeRegistry(fake_store)
        assert registry.resolve_extension("lifecycle") is None
        ext_id = registry.register_extension("Lifecycle", "lifecycle", None)
        assert registry.resolve_extension("lifecycle") == ext_id

    def test_missing_values_stored_empty(self, fake_store):
        """Test absent extension attributes are stored as empty strings."""
        registry = AttributeRegistry(fake_store)
        registry.register_extension(None, None, None)
        row = fake_store.table("extension")[0]
        assert (row["name"], row["prefix"], row["uri"]) == ("", "", "")
        assert registry.extension_count == 1
