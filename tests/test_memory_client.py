from __future__ import annotations

from datetime import datetime

import pytest

from schemaguard.core.errors import DataClientError, UniqueConstraintError, UnknownModelError


def _user(raw, uid, email, **extra):
    return raw.create("User", data={"id": uid, "email": email, "password": "h", **extra})


def test_create_fills_defaults(raw):
    first = raw.create("Post", data={"title": "one", "authorId": "u-1"})
    assert first["id"] == 1
    assert first["published"] is False
    assert first["views"] == 0
    assert isinstance(first["createdAt"], datetime)
    assert raw.create("Post", data={"title": "two", "authorId": "u-1"})["id"] == 2

    raw.create("Post", data={"id": 10, "title": "ten", "authorId": "u-1"})
    assert raw.create("Post", data={"title": "next", "authorId": "u-1"})["id"] == 11

    user = _user(raw, "u-1", "a@x.io")
    assert user["name"] is None
    assert user["role"] == "USER"


def test_create_generates_uuid_ids(raw):
    a = raw.create("Booking", data={"ownerId": "u-1"})
    b = raw.create("Booking", data={"ownerId": "u-1"})
    assert a["id"] and b["id"] and a["id"] != b["id"]


def test_create_rejects_bad_data(raw):
    with pytest.raises(DataClientError, match="required field Post.title"):
        raw.create("Post", data={"authorId": "u-1"})
    with pytest.raises(DataClientError, match="Unknown field"):
        raw.create("Post", data={"title": "x", "authorId": "u-1", "bogus": 1})
    with pytest.raises(DataClientError, match="cannot be written directly"):
        raw.create("Post", data={"title": "x", "authorId": "u-1", "author": {"id": "u-1"}})
    with pytest.raises(UnknownModelError):
        raw.create("Nope", data={})


def test_unique_constraints(raw):
    _user(raw, "u-1", "a@x.io")
    _user(raw, "u-2", "b@x.io")
    with pytest.raises(UniqueConstraintError) as exc:
        _user(raw, "u-3", "a@x.io")
    assert exc.value.field == "email"
    with pytest.raises(UniqueConstraintError):
        _user(raw, "u-1", "c@x.io")
    with pytest.raises(UniqueConstraintError):
        raw.update("User", where={"id": "u-2"}, data={"email": "a@x.io"})

    # updating a row to its own value is fine
    assert raw.update("User", where={"id": "u-2"}, data={"email": "b@x.io"})["email"] == "b@x.io"
    assert raw.count("User") == 2


def test_rows_are_copied(raw):
    row = _user(raw, "u-1", "a@x.io")
    row["email"] = "changed@x.io"
    fetched = raw.find_first("User", where={"id": "u-1"})
    assert fetched["email"] == "a@x.io"
    fetched["email"] = "again@x.io"
    assert raw.find_first("User", where={"id": "u-1"})["email"] == "a@x.io"


@pytest.fixture()
def users(raw):
    _user(raw, "u-1", "ann@x.io", name="Ann")
    _user(raw, "u-2", "bob@x.io", name="Bob", role="ADMIN")
    _user(raw, "u-3", "cy@x.io")
    return raw


def _ids(rows):
    return [r["id"] for r in rows]


def test_scalar_operators(users):
    find = users.find_many
    assert _ids(find("User", where={"name": "Ann"})) == ["u-1"]
    assert _ids(find("User", where={"name": {"equals": "Bob"}})) == ["u-2"]
    assert _ids(find("User", where={"role": {"in": ["ADMIN"]}})) == ["u-2"]
    assert _ids(find("User", where={"id": {"notIn": ["u-1"]}})) == ["u-2", "u-3"]
    assert _ids(find("User", where={"email": {"startsWith": "b"}})) == ["u-2"]
    assert _ids(find("User", where={"email": {"endsWith": "@x.io"}})) == ["u-1", "u-2", "u-3"]
    assert _ids(find("User", where={"name": {"contains": "AN", "mode": "insensitive"}})) == ["u-1"]
    assert find("User", where={"name": {"contains": "AN"}}) == []
    assert _ids(find("User", where={"id": {"gt": "u-1", "lte": "u-2"}})) == ["u-2"]


def test_null_semantics(users):
    find = users.find_many
    assert _ids(find("User", where={"name": None})) == ["u-3"]
    assert _ids(find("User", where={"name": {"not": None}})) == ["u-1", "u-2"]
    # an absent value satisfies no comparison, negated or not
    assert _ids(find("User", where={"name": {"not": "Ann"}})) == ["u-2"]
    assert _ids(find("User", where={"name": {"notIn": ["Ann"]}})) == ["u-2"]
    assert find("User", where={"name": {"lt": "Zed"}, "id": "u-3"}) == []


def test_logical_combinators(users):
    find = users.find_many
    assert _ids(find("User", where={"OR": [{"name": "Ann"}, {"role": "ADMIN"}]})) == ["u-1", "u-2"]
    assert _ids(find("User", where={"AND": [{"email": {"contains": "bob"}}, {"name": {"not": None}}]})) == ["u-2"]
    assert _ids(find("User", where={"NOT": {"name": None}})) == ["u-1", "u-2"]
    assert len(find("User", where={"AND": []})) == 3
    assert find("User", where={"OR": []}) == []


def test_field_references(raw):
    raw.create("Event", data={"title": "ok", "start": 1, "end": 2})
    raw.create("Event", data={"title": "same", "start": 3, "end": 3})
    assert [e["title"] for e in raw.find_many("Event", where={"end": {"gt": {"$field": "start"}}})] == ["ok"]
    assert [e["title"] for e in raw.find_many("Event", where={"end": {"$field": "start"}})] == ["same"]
    assert [e["title"] for e in raw.find_many("Event", where={"end": {"not": {"$field": "start"}}})] == ["ok"]


def test_relation_filters(users):
    users.create("Post", data={"id": 1, "title": "a", "published": True, "authorId": "u-1"})
    users.create("Post", data={"id": 2, "title": "b", "authorId": "u-1"})
    users.create("Post", data={"id": 3, "title": "c", "published": True, "authorId": "u-2"})
    find = users.find_many

    assert _ids(find("User", where={"posts": {"some": {"published": False}}})) == ["u-1"]
    assert _ids(find("User", where={"posts": {"every": {"published": True}}})) == ["u-2", "u-3"]
    assert _ids(find("User", where={"posts": {"none": {}}})) == ["u-3"]
    assert _ids(find("Post", where={"author": {"name": "Bob"}})) == [3]
    assert _ids(find("Post", where={"author": {"is": {"role": "ADMIN"}}})) == [3]
    assert _ids(find("Post", where={"author": {"isNot": {"role": "ADMIN"}}})) == [1, 2]

    # dangling foreign key: no related row
    users.create("Post", data={"id": 4, "title": "d", "authorId": "u-9"})
    assert _ids(find("Post", where={"author": None})) == [4]
    assert _ids(find("Post", where={"author": {"isNot": None}})) == [1, 2, 3]

    with pytest.raises(DataClientError, match="some/every/none"):
        find("User", where={"posts": {"published": True}})
    with pytest.raises(DataClientError, match="Unknown filter operator"):
        find("User", where={"name": {"like": "A%"}})
    with pytest.raises(DataClientError, match="Unknown field"):
        find("User", where={"nickname": "x"})


def test_ordering_and_paging(users):
    assert _ids(users.find_many("User", order_by={"name": "asc"})) == ["u-3", "u-1", "u-2"]
    assert _ids(users.find_many("User", order_by={"name": "desc"})) == ["u-2", "u-1", "u-3"]
    assert _ids(users.find_many("User", order_by=[{"role": "desc"}, {"id": "desc"}])) == ["u-3", "u-1", "u-2"]
    assert _ids(users.find_many("User", order_by={"id": "asc"}, skip=1, take=1)) == ["u-2"]
    assert users.find_first("User", order_by={"id": "desc"})["id"] == "u-3"


def test_includes(users):
    users.create("Post", data={"id": 1, "title": "a", "authorId": "u-1"})
    users.create("Post", data={"id": 2, "title": "b", "published": True, "authorId": "u-1"})

    ann = users.find_first(
        "User",
        where={"id": "u-1"},
        include={"posts": {"where": {"published": True}}, "memberships": False},
    )
    assert _ids(ann["posts"]) == [2]
    assert "memberships" not in ann

    ordered = users.find_first("User", where={"id": "u-1"}, include={"posts": {"order_by": {"id": "desc"}, "take": 1}})
    assert _ids(ordered["posts"]) == [2]

    post = users.find_first("Post", where={"id": 1}, include={"author": {"include": {"posts": True}}})
    assert post["author"]["name"] == "Ann"
    assert _ids(post["author"]["posts"]) == [1, 2]

    with pytest.raises(DataClientError, match="not a relation"):
        users.find_many("User", include={"name": True})


def test_update_and_delete(users):
    assert users.update("User", where={"id": "u-9"}, data={"name": "x"}) is None
    assert users.update("User", where={"id": "u-3"}, data={"name": "Cy"})["name"] == "Cy"
    assert users.update_many("User", where={"role": "USER"}, data={"name": "Someone"}) == 2
    assert _ids(users.find_many("User", where={"name": "Someone"})) == ["u-1", "u-3"]

    assert users.delete("User", where={"id": "u-9"}) is None
    assert users.delete("User", where={"id": "u-1"})["email"] == "ann@x.io"
    assert users.delete_many("User", where={"role": "USER"}) == 1
    assert _ids(users.find_many("User")) == ["u-2"]


def test_update_many_is_atomic(users):
    with pytest.raises(UniqueConstraintError):
        users.update_many("User", data={"email": "same@x.io"})
    assert sorted(u["email"] for u in users.find_many("User")) == ["ann@x.io", "bob@x.io", "cy@x.io"]


def test_transaction_rolls_back_rows_and_sequences(raw):
    raw.create("Post", data={"title": "kept", "authorId": "u-1"})
    with pytest.raises(RuntimeError):
        with raw.transaction() as tx:
            tx.create("Post", data={"title": "gone", "authorId": "u-1"})
            with tx.transaction():
                tx.update("Post", where={"id": 1}, data={"title": "renamed"})
            raise RuntimeError("abort")

    assert [p["title"] for p in raw.find_many("Post")] == ["kept"]
    assert raw.create("Post", data={"title": "again", "authorId": "u-1"})["id"] == 2

    with raw.transaction():
        raw.delete("Post", where={"id": 1})
    assert _ids(raw.find_many("Post")) == [2]
