from __future__ import annotations

import pytest

from schemaguard.core.client.base import is_false_filter, is_true_filter
from schemaguard.core.client.memory import InMemoryClient
from schemaguard.core.compiler import Operation, load_schema
from schemaguard.core.policy import EvaluationContext, ExpressionEvaluator, FilterBuilder, decide

DOCS = """
model User {
  id        String  @id
  name      String?
  managerId String?
  manager   User?   @relation("mgr", fields: [managerId], references: [id])
  reports   User[]  @relation("mgr")
  docs      Doc[]
}

model Doc {
  id      Int     @id
  title   String
  ownerId String?
  owner   User?   @relation(fields: [ownerId], references: [id])

  @@allow('read', owner.manager == principal() || owner == null)
  @@allow('update', owner.name != null && contains(title, 'Draft', true))
  @@allow('delete', !(title in ['keep', 'KEEP']) && ownerId != null)
  @@deny('delete', owner.reports?[name == 'intern'])
}
"""

PRINCIPALS = [None, "u-1", "u-2", {"id": "u-3"}, "nobody"]


def _seed_docs(raw):
    raw.create("User", data={"id": "u-1", "name": "boss"})
    raw.create("User", data={"id": "u-2", "name": None, "managerId": "u-1"})
    raw.create("User", data={"id": "u-3", "name": "lead", "managerId": "u-1"})
    raw.create("User", data={"id": "u-4", "name": "intern", "managerId": "u-3"})
    raw.create("Doc", data={"id": 1, "title": "Plan", "ownerId": "u-2"})
    raw.create("Doc", data={"id": 2, "title": "draft notes", "ownerId": "u-3"})
    raw.create("Doc", data={"id": 3, "title": "keep", "ownerId": None})
    raw.create("Doc", data={"id": 4, "title": "DRAFT", "ownerId": "ghost"})
    raw.create("Doc", data={"id": 5, "title": "memo", "ownerId": "u-1"})
    raw.create("Doc", data={"id": 6, "title": "KEEP", "ownerId": "u-4"})


def _seed_app(raw):
    raw.create("Post", data={"id": 1, "title": "hello", "published": True, "authorId": "u-1"})
    raw.create("Post", data={"id": 2, "title": "draft", "published": False, "authorId": "u-1"})
    raw.create("Post", data={"id": 3, "title": "other", "published": False, "authorId": "u-2"})
    raw.create("Booking", data={"id": "b-1", "ownerId": "u-1"})
    raw.create("Booking", data={"id": "b-2", "ownerId": "u-2"})
    raw.create("Space", data={"id": "s-1", "name": "one"})
    raw.create("Space", data={"id": "s-2", "name": "two"})
    raw.create("Membership", data={"id": "m-1", "spaceId": "s-1", "userId": "u-1", "role": "ADMIN"})
    raw.create("Membership", data={"id": "m-2", "spaceId": "s-2", "userId": "u-1"})
    raw.create("Membership", data={"id": "m-3", "spaceId": "s-2", "userId": "u-2", "role": "ADMIN"})
    raw.create("User", data={"id": "u-1", "email": "a@x.io", "password": "x"})
    raw.create("User", data={"id": "u-2", "email": "b@x.io", "password": "x"})


def _ids(schema, rows, model):
    id_field = schema.model(model).id_field
    return sorted(r[id_field] for r in rows)


def _assert_agreement(schema, raw, model, op, principal):
    evaluator = ExpressionEvaluator(schema, raw)
    builder = FilterBuilder(schema, evaluator)
    where = builder.for_operation(model, op, EvaluationContext.build(model, {}, principal))

    rows = raw.find_many(model)
    expected = [
        r
        for r in rows
        if decide(
            schema.model(model),
            op,
            lambda expr, r=r: evaluator.evaluate(expr, EvaluationContext.build(model, r, principal)),
        ).allowed
    ]
    assert _ids(schema, raw.find_many(model, where=where), model) == _ids(schema, expected, model)


@pytest.mark.parametrize("principal", PRINCIPALS)
@pytest.mark.parametrize("op", [Operation.READ, Operation.UPDATE, Operation.DELETE])
def test_nested_paths_agree_with_evaluator(principal, op):
    schema = load_schema(DOCS)
    raw = InMemoryClient(schema)
    _seed_docs(raw)
    _assert_agreement(schema, raw, "Doc", op, principal)


@pytest.mark.parametrize("principal", [None, "u-1", "u-2", {"id": "u-1", "role": "ADMIN"}, {"id": "u-2", "role": "USER"}])
@pytest.mark.parametrize(
    "model,op",
    [
        ("Post", Operation.READ),
        ("Post", Operation.UPDATE),
        ("Post", Operation.DELETE),
        ("Booking", Operation.READ),
        ("Booking", Operation.DELETE),
        ("Space", Operation.READ),
        ("Space", Operation.UPDATE),
        ("User", Operation.UPDATE),
        ("Membership", Operation.READ),
    ],
)
def test_schema_rules_agree_with_evaluator(schema, raw, model, op, principal):
    _seed_app(raw)
    _assert_agreement(schema, raw, model, op, principal)


def test_constant_rules_fold(schema, raw):
    evaluator = ExpressionEvaluator(schema, raw)
    builder = FilterBuilder(schema, evaluator)
    ctx = EvaluationContext.build("Membership", {}, None)
    assert is_true_filter(builder.for_operation("Membership", Operation.READ, ctx))
    # an anonymous principal never owns a booking
    assert is_false_filter(builder.for_operation("Booking", Operation.UPDATE, EvaluationContext.build("Booking", {}, None)))


def test_filter_shapes(schema, raw):
    evaluator = ExpressionEvaluator(schema, raw)
    builder = FilterBuilder(schema, evaluator)

    anon = builder.for_operation("Post", Operation.READ, EvaluationContext.build("Post", {}, None))
    assert anon == {"published": {"equals": True}}

    owner = builder.for_operation("Booking", Operation.READ, EvaluationContext.build("Booking", {}, "u-1"))
    assert owner == {"ownerId": {"equals": "u-1"}}

    member = builder.for_operation("Space", Operation.READ, EvaluationContext.build("Space", {}, "u-1"))
    assert member == {"members": {"some": {"userId": {"equals": "u-1"}}}}


NOTES = """
model User { id String @id }

model Note {
  id      Int     @id
  ownerId String?
  owner   User?   @relation(fields: [ownerId], references: [id])

  @@allow('read', true)
  @@deny('read', principal() != owner)
}
"""


@pytest.mark.parametrize("principal", [None, "u-1", "u-2", {"id": "u-1"}])
def test_anonymous_inequality_agrees_with_evaluator(principal):
    schema = load_schema(NOTES)
    raw = InMemoryClient(schema)
    raw.create("User", data={"id": "u-1"})
    raw.create("Note", data={"id": 1, "ownerId": "u-1"})
    raw.create("Note", data={"id": 2, "ownerId": None})
    raw.create("Note", data={"id": 3, "ownerId": "ghost"})
    _assert_agreement(schema, raw, "Note", Operation.READ, principal)


def test_anonymous_inequality_filter_shape():
    schema = load_schema(NOTES)
    builder = FilterBuilder(schema, ExpressionEvaluator(schema))
    where = builder.for_operation("Note", Operation.READ, EvaluationContext.build("Note", {}, None))
    assert where == {"NOT": {"ownerId": {"not": None}}}
