"""
Integration tests for PropertyStore on SQLite.

Tests cover:
- Version progression for writes, no-op writes and stale writes
- Reads: single collection, filtered, enumeration, no-content vs not-found
- Deletes: collection, properties, whole document
- Collections shared between documents
- Owner isolation in the user scope
- Value round-trips
"""

import pytest
from sqlalchemy import update

from dbaas.propsdb_server.errors import NotFoundError, ValidationError, VersionConflictError
from dbaas.propsdb_server.store import CollectionInput, DeleteCollectionInput, deleter, writer

OWNER_1 = "11111111-1111-1111-1111-111111111111"
OWNER_2 = "22222222-2222-2222-2222-222222222222"


def cfg(**props):
    return [CollectionInput("cfg", props)]


class TestVersioning:
    """Optimistic concurrency on writes."""

    def test_create_document(self, app_store):
        """First write at version 0 creates the document at version 1."""
        result = app_store.set_properties("doc1", 0, cfg(a=1))

        assert result.new_version == 1
        assert result.affected_rows == 1
        assert app_store.get_properties("doc1", "cfg").to_dict() == {
            "doc1": {"__version": "1", "cfg": {"a": 1}}
        }

    def test_stale_write_rejected(self, app_store):
        """A write with an old version fails and changes nothing."""
        app_store.set_properties("doc1", 0, cfg(a=1))

        with pytest.raises(VersionConflictError) as exc_info:
            app_store.set_properties("doc1", 0, cfg(a=2))

        assert exc_info.value.expected_version == 0
        assert exc_info.value.actual_version == 1
        tree = app_store.get_properties("doc1", "cfg")
        assert tree["doc1"].version == 1
        assert tree["doc1"].collections["cfg"].properties == {"a": 1}

    def test_same_value_is_noop(self, app_store):
        """Writing identical values is accepted without a version change."""
        app_store.set_properties("doc1", 0, cfg(a=1))

        result = app_store.set_properties("doc1", 1, cfg(a=1))

        assert result.new_version == 1
        assert result.affected_rows == 0
        assert app_store.get_properties("doc1", "cfg")["doc1"].version == 1

    def test_noop_with_wrong_version_rejected(self, app_store):
        """No-op writes still check the version."""
        app_store.set_properties("doc1", 0, cfg(a=1))

        with pytest.raises(VersionConflictError):
            app_store.set_properties("doc1", 5, cfg(a=1))

    def test_new_document_requires_version_zero(self, app_store):
        with pytest.raises(VersionConflictError) as exc_info:
            app_store.set_properties("missing", 3, cfg(a=1))
        assert exc_info.value.actual_version is None

        with pytest.raises(NotFoundError):
            app_store.get_collections("missing")

    def test_sequential_writes(self, app_store):
        """Each changing write advances the version by exactly 1."""
        version = 0
        values = [1, 2, 2, 3, 3, 3, 4]
        expected = [1, 2, 2, 3, 3, 3, 4]
        for value, want in zip(values, expected):
            version = app_store.set_properties("doc", version, cfg(a=value)).new_version
            assert version == want

    def test_key_order_is_not_a_change(self, app_store):
        app_store.set_properties("doc", 0, cfg(obj={"x": 1, "y": 2}))
        result = app_store.set_properties("doc", 1, cfg(obj={"y": 2, "x": 1}))
        assert result.affected_rows == 0

    def test_adding_existing_collection_link_is_change(self, app_store):
        """Linking a collection to a document is a change even without new values."""
        app_store.set_properties("doc1", 0, [CollectionInput("shared", {"a": 1})])
        app_store.set_properties("doc2", 0, [CollectionInput("other", {"b": 1})])

        result = app_store.set_properties("doc2", 1, [CollectionInput("shared", {"a": 1})])

        assert result.new_version == 2
        assert app_store.get_properties("doc2", "shared").to_dict()["doc2"]["shared"] == {"a": 1}


class TestValidation:
    """Argument validation."""

    def test_empty_collections(self, app_store):
        with pytest.raises(ValidationError):
            app_store.set_properties("doc", 0, [])

    def test_blank_document(self, app_store):
        with pytest.raises(ValidationError):
            app_store.set_properties("", 0, cfg(a=1))

    def test_negative_version(self, app_store):
        with pytest.raises(ValidationError):
            app_store.set_properties("doc", -1, cfg(a=1))

    def test_owner_required_for_user_scope(self, user_store):
        with pytest.raises(ValidationError):
            user_store.set_properties("doc", 0, cfg(a=1))

    def test_owner_rejected_for_application_scope(self, app_store):
        with pytest.raises(ValidationError):
            app_store.get_documents(owner=OWNER_1)

    def test_bad_value_writes_nothing(self, app_store):
        with pytest.raises(ValidationError):
            app_store.set_properties("doc", 0, cfg(a=float("inf")))
        with pytest.raises(NotFoundError):
            app_store.get_documents()


class TestReads:
    """Read path."""

    @pytest.fixture
    def populated(self, app_store):
        app_store.set_properties(
            "home",
            0,
            [
                CollectionInput("hero", {"title": "Hi", "image": "a.png"}),
                CollectionInput("footer", {"year": 2026}),
                CollectionInput("nav", {"items": ["a", "b"]}),
            ],
        )
        app_store.set_properties("about", 0, [CollectionInput("body", {"text": "x"})])
        return app_store

    def test_single_collection(self, populated):
        tree = populated.get_properties("home", "hero")
        assert tree.to_dict() == {
            "home": {"__version": "1", "hero": {"title": "Hi", "image": "a.png"}}
        }

    def test_single_collection_missing(self, populated):
        with pytest.raises(NotFoundError):
            populated.get_properties("home", "body")
        with pytest.raises(NotFoundError):
            populated.get_properties("nope", "hero")

    def test_filtered(self, populated):
        tree = populated.get_collections("home", ["hero", "nav", "unknown"])
        assert set(tree["home"].collections) == {"hero", "nav"}

    def test_filter_matching_nothing(self, populated):
        with pytest.raises(NotFoundError):
            populated.get_collections("home", ["unknown"])

    def test_blank_filter_means_all(self, populated):
        for blank in (None, [], [""], [" "], ["", "hero"]):
            tree = populated.get_collections("home", blank)
            assert set(tree["home"].collections) == {"hero", "footer", "nav"}

    def test_enumerate(self, populated):
        tree = populated.get_documents()
        assert set(tree.documents) == {"home", "about"}

    def test_enumerate_empty(self, app_store):
        with pytest.raises(NotFoundError):
            app_store.get_documents()

    def test_emptied_collection_is_no_content(self, populated):
        """A collection whose properties were all removed reads as empty, not missing."""
        populated.delete_properties("home", 1, [DeleteCollectionInput("footer", ["year"])])

        tree = populated.get_properties("home", "footer")

        assert tree.has_content is False
        assert tree.to_dict() == {"home": {"__version": "2", "footer": {}}}

    def test_round_trip(self, app_store):
        """Nested values and numbers come back unchanged."""
        value = {
            "nested": {"list": [1, 2.5, None, True, "x"], "deep": {"k": [{"a": {}}]}},
            "big": 2**62,
            "precise": 0.1 + 0.2,
            "unicode": "grüße 🙂",
            "empty": [],
        }
        app_store.set_properties("doc", 0, cfg(v=value, s="plain", n=None))

        props = app_store.get_properties("doc", "cfg")["doc"].collections["cfg"].properties

        assert props == {"v": value, "s": "plain", "n": None}
        assert props["v"]["precise"] == 0.1 + 0.2


class TestDeletes:
    """Delete path."""

    def test_delete_collection(self, app_store):
        """Deleting the only collection advances the version; reads then miss."""
        app_store.set_properties("doc1", 0, cfg(a=1))

        result = app_store.delete_collection("doc1", 1, "cfg")

        assert result.new_version == 2
        with pytest.raises(NotFoundError):
            app_store.get_properties("doc1", "cfg")
        assert app_store.get_collections("doc1")["doc1"].version == 2

    def test_delete_unlinked_collection_is_noop(self, app_store):
        app_store.set_properties("doc1", 0, cfg(a=1))

        result = app_store.delete_collection("doc1", 1, "other")

        assert result.new_version == 1
        assert result.affected_rows == 0

    def test_delete_collection_stale(self, app_store):
        app_store.set_properties("doc1", 0, cfg(a=1))
        with pytest.raises(VersionConflictError):
            app_store.delete_collection("doc1", 0, "cfg")
        assert app_store.get_properties("doc1", "cfg").has_content

    def test_delete_from_missing_document(self, app_store):
        with pytest.raises(NotFoundError):
            app_store.delete_collection("nope", 0, "cfg")
        with pytest.raises(NotFoundError):
            app_store.delete_properties("nope", 0, [DeleteCollectionInput("cfg")])
        with pytest.raises(NotFoundError):
            app_store.delete_document("nope", 0)

    def test_delete_properties(self, app_store):
        app_store.set_properties(
            "doc", 0, [CollectionInput("a", {"x": 1, "y": 2}), CollectionInput("b", {"z": 3})]
        )

        result = app_store.delete_properties(
            "doc",
            1,
            [
                DeleteCollectionInput("a", ["x", "missing"]),
                DeleteCollectionInput("b"),
                DeleteCollectionInput("not-on-doc", ["q"]),
            ],
        )

        assert result.new_version == 2
        assert app_store.get_collections("doc").to_dict() == {
            "doc": {"__version": "2", "a": {"y": 2}}
        }

    def test_delete_locks_collections_in_name_order(self, app_store, monkeypatch):
        """Deletes lock collection rows in the order writes do."""
        app_store.set_properties("doc", 0, [CollectionInput("a", {"y": 1}), CollectionInput("b", {"x": 1})])
        locked = []
        linked_collection = deleter._linked_collection

        def spy(conn, tables, document_id, name):
            locked.append(name)
            return linked_collection(conn, tables, document_id, name)

        monkeypatch.setattr(deleter, "_linked_collection", spy)
        app_store.delete_properties(
            "doc", 1, [DeleteCollectionInput("b", ["x"]), DeleteCollectionInput("a", ["y"])]
        )

        assert locked == ["a", "b"]

    def test_delete_properties_nothing_matched(self, app_store):
        """A batch that changes nothing keeps the version."""
        app_store.set_properties("doc", 0, cfg(a=1))

        result = app_store.delete_properties(
            "doc", 1, [DeleteCollectionInput("cfg", ["b"]), DeleteCollectionInput("zzz")]
        )

        assert result.new_version == 1
        assert result.affected_rows == 0

    def test_delete_document(self, app_store):
        app_store.set_properties("doc", 0, cfg(a=1))

        result = app_store.delete_document("doc", 1)

        assert result.new_version == 0
        assert result.affected_rows == 1
        with pytest.raises(NotFoundError):
            app_store.get_collections("doc")

    def test_delete_document_via_delete_properties(self, app_store):
        app_store.set_properties("doc", 0, cfg(a=1))

        result = app_store.delete_properties("doc", 1, None, delete_document=True)

        assert result.affected_rows == 1
        with pytest.raises(NotFoundError):
            app_store.get_documents()

    def test_delete_document_stale(self, app_store):
        app_store.set_properties("doc", 0, cfg(a=1))
        with pytest.raises(VersionConflictError):
            app_store.delete_document("doc", 0)

    def test_recreate_after_delete(self, app_store):
        """A deleted document starts over at version 0."""
        app_store.set_properties("doc", 0, cfg(a=1))
        app_store.delete_document("doc", 1)

        result = app_store.set_properties("doc", 0, cfg(a=2))

        assert result.new_version == 1
        assert app_store.get_properties("doc", "cfg")["doc"].collections["cfg"].properties == {"a": 2}

    def test_document_kept_without_collections(self, app_store):
        """Removing the last collection keeps the document."""
        app_store.set_properties("doc", 0, cfg(a=1))
        app_store.delete_collection("doc", 1, "cfg")

        tree = app_store.get_documents()

        assert tree.to_dict() == {"doc": {"__version": "2"}}
        assert tree.has_content is False


def bump_version_after(fn):
    """Wrap a store step so another writer's commit lands right after it."""

    def wrapper(conn, tables, *args, **kwargs):
        result = fn(conn, tables, *args, **kwargs)
        docs = tables.documents
        conn.execute(update(docs).values(document_version=docs.c.document_version + 1))
        return result

    return wrapper


class TestCommitTimeCheck:
    """The guarded version update catches writers the lock did not stop."""

    def test_guarded_update(self, app_store, monkeypatch):
        """A version change after the lock-time check fails the write."""
        app_store.set_properties("doc", 0, cfg(a=1))
        monkeypatch.setattr(writer, "reclaim_orphans", bump_version_after(writer.reclaim_orphans))

        with pytest.raises(VersionConflictError, match="concurrent modification"):
            app_store.set_properties("doc", 1, cfg(a=2))

        tree = app_store.get_properties("doc", "cfg")
        assert tree["doc"].version == 1
        assert tree["doc"].collections["cfg"].properties == {"a": 1}

    def test_guarded_update_on_delete_collection(self, app_store, monkeypatch):
        app_store.set_properties("doc", 0, cfg(a=1))
        monkeypatch.setattr(deleter, "reclaim_orphans", bump_version_after(deleter.reclaim_orphans))

        with pytest.raises(VersionConflictError):
            app_store.delete_collection("doc", 1, "cfg")

        assert app_store.get_properties("doc", "cfg")["doc"].version == 1

    def test_guarded_document_delete(self, app_store, monkeypatch):
        """The document row is only deleted at the version read under lock."""
        app_store.set_properties("doc", 0, cfg(a=1))
        monkeypatch.setattr(deleter, "_lock_existing", bump_version_after(deleter._lock_existing))

        with pytest.raises(VersionConflictError, match="Failed to delete document"):
            app_store.delete_document("doc", 1)

        tree = app_store.get_properties("doc", "cfg")
        assert tree["doc"].version == 1
        assert tree["doc"].collections["cfg"].properties == {"a": 1}

    def test_concurrent_create(self, app_store, monkeypatch):
        """A duplicate insert of a new document is a version conflict."""
        app_store.set_properties("doc", 0, cfg(a=1))
        monkeypatch.setattr(writer, "lock_document", lambda *args, **kwargs: None)

        with pytest.raises(VersionConflictError, match="created concurrently"):
            app_store.set_properties("doc", 0, cfg(a=2))

        tree = app_store.get_properties("doc", "cfg")
        assert tree["doc"].version == 1
        assert tree["doc"].collections["cfg"].properties == {"a": 1}


class TestSharedCollections:
    """Collections are shared by name within a scope."""

    def test_delete_from_one_document_keeps_other(self, app_store):
        app_store.set_properties("doc1", 0, [CollectionInput("shared", {"k": "v"})])
        app_store.set_properties("doc2", 0, [CollectionInput("shared", {"k": "v"})])

        app_store.delete_collection("doc1", 1, "shared")

        with pytest.raises(NotFoundError):
            app_store.get_properties("doc1", "shared")
        tree = app_store.get_properties("doc2", "shared")
        assert tree["doc2"].collections["shared"].properties == {"k": "v"}

    def test_delete_document_keeps_shared_collection(self, app_store):
        app_store.set_properties("doc1", 0, [CollectionInput("shared", {"k": "v"})])
        app_store.set_properties("doc2", 0, [CollectionInput("shared", {"k": "v"})])

        app_store.delete_document("doc1", 1)

        assert app_store.get_properties("doc2", "shared").has_content

    def test_write_through_one_document_visible_in_other(self, app_store):
        app_store.set_properties("doc1", 0, [CollectionInput("shared", {"k": 1})])
        app_store.set_properties("doc2", 0, [CollectionInput("shared", {"k": 1})])

        app_store.set_properties("doc1", 1, [CollectionInput("shared", {"k": 2})])

        tree = app_store.get_properties("doc2", "shared")
        assert tree["doc2"].collections["shared"].properties == {"k": 2}
        assert tree["doc2"].version == 1


class TestOwnerIsolation:
    """User documents are only visible to their owner."""

    def test_same_name_different_owners(self, user_store):
        user_store.set_properties("doc1", 0, [CollectionInput("prefs", {"a": 1})], owner=OWNER_1)
        user_store.set_properties("doc1", 0, [CollectionInput("other", {"b": 2})], owner=OWNER_2)

        assert set(user_store.get_documents(owner=OWNER_1)["doc1"].collections) == {"prefs"}
        assert set(user_store.get_documents(owner=OWNER_2)["doc1"].collections) == {"other"}
        with pytest.raises(NotFoundError):
            user_store.get_properties("doc1", "prefs", owner=OWNER_2)

    def test_other_owner_sees_nothing(self, user_store):
        user_store.set_properties("doc1", 0, cfg(a=1), owner=OWNER_1)

        with pytest.raises(NotFoundError):
            user_store.get_documents(owner=OWNER_2)
        with pytest.raises(NotFoundError):
            user_store.get_collections("doc1", owner=OWNER_2)
        with pytest.raises(NotFoundError):
            user_store.delete_document("doc1", 1, owner=OWNER_2)

    def test_versions_are_per_owner(self, user_store):
        user_store.set_properties("doc1", 0, cfg(a=1), owner=OWNER_1)
        user_store.set_properties("doc1", 1, cfg(a=2), owner=OWNER_1)

        result = user_store.set_properties("doc1", 0, cfg(a=1), owner=OWNER_2)

        assert result.new_version == 1

    def test_scopes_are_separate(self, app_store, user_store):
        app_store.set_properties("doc1", 0, cfg(a=1))

        with pytest.raises(NotFoundError):
            user_store.get_collections("doc1", owner=OWNER_1)
        user_store.set_properties("doc1", 0, cfg(a=9), owner=OWNER_1)
        assert app_store.get_properties("doc1", "cfg")["doc1"].collections["cfg"].properties == {"a": 1}
