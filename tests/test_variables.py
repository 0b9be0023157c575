"""
Tests for the execution variable store.
"""

from stepflow.execution.variables import VariableStore


class TestVariableAccess:
    """Tests for get/set/merge."""

    def test_basic_operations(self):
        store = VariableStore({"name": "Ada", "count": 2})

        assert store.get("name") == "Ada"
        assert store.get("missing") is None
        assert store.get("missing", "fallback") == "fallback"
        assert "count" in store
        assert len(store) == 2

        store.set("count", 3)
        store.delete("name")

        assert store.get("count") == 3
        assert not store.has("name")

    def test_dotted_access(self):
        store = VariableStore({
            "user": {"name": "Ada", "langs": ["en", "fr"]},
            "items": [{"id": 1}, {"id": 2}],
        })

        assert store.get("user.name") == "Ada"
        assert store.get("user.langs.1") == "fr"
        assert store.get("items.0.id") == 1
        assert store.get("items.5.id") is None
        assert store.get("user.missing") is None

    def test_exact_name_wins_over_path(self):
        store = VariableStore()
        store.set("a", {"b": 2})
        store.set("a.b", 1)

        assert store.get("a.b") == 1

    def test_values_are_coerced(self):
        store = VariableStore()

        class Token:
            def __str__(self):
                return "tok"

        store.set("token", Token())
        store.set("pair", (1, 2))
        store.set("nothing", None)

        assert store.get("token") == "tok"
        assert store.get("pair") == [1, 2]
        assert store.get("nothing") == ""

    def test_snapshot_is_deep_copy(self):
        store = VariableStore({"files": ["a.txt"]})

        snapshot = store.snapshot()
        snapshot["files"].append("b.txt")

        assert store.get("files") == ["a.txt"]

    def test_merge(self):
        store = VariableStore({"a": 1})
        store.merge({"a": 2, "b": "x"})

        assert store.snapshot() == {"a": 2, "b": "x"}
        assert sorted(store.names()) == ["a", "b"]


class TestInterpolation:
    """Tests for ${var} interpolation."""

    def test_interpolate(self):
        store = VariableStore({
            "name": "Ada",
            "enabled": True,
            "tags": ["x", "y"],
            "user": {"city": "London"},
        })

        assert store.interpolate("Hello ${name}") == "Hello Ada"
        assert store.interpolate("${ name }!") == "Ada!"
        assert store.interpolate("on=${enabled}") == "on=true"
        assert store.interpolate("tags=${tags}") == 'tags=["x", "y"]'
        assert store.interpolate("city=${user.city}") == "city=London"

    def test_unresolved_placeholders_are_verbatim(self):
        store = VariableStore({"a": 1})

        assert store.interpolate("${a} and ${missing}") == "1 and ${missing}"
        assert store.interpolate("no placeholders") == "no placeholders"

    def test_non_string_passthrough(self):
        store = VariableStore()

        assert store.interpolate(5) == 5

    def test_resolve_keeps_types(self):
        store = VariableStore({"count": 3, "files": ["a", "b"], "name": "Ada"})

        params = {
            "limit": "${count}",
            "label": "n=${count}",
            "targets": ["${files}", "static"],
            "nested": {"who": "${name}"},
            "flag": False,
            "unknown": "${nope}",
        }

        resolved = store.resolve(params)

        assert resolved["limit"] == 3
        assert resolved["label"] == "n=3"
        assert resolved["targets"] == [["a", "b"], "static"]
        assert resolved["nested"] == {"who": "Ada"}
        assert resolved["flag"] is False
        assert resolved["unknown"] == "${nope}"

    def test_resolve_does_not_alias_store(self):
        store = VariableStore({"files": ["a"]})

        resolved = store.resolve("${files}")
        resolved.append("b")

        assert store.get("files") == ["a"]

    def test_padded_placeholder_stays_a_string(self):
        store = VariableStore({"count": 3})

        assert store.resolve("  ${count}  ") == "  3  "
        assert store.resolve("${count}") == 3
