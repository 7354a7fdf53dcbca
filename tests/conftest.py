from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from schemaguard.core.behaviors.crypto import generate_key
from schemaguard.core.client.memory import InMemoryClient
from schemaguard.core.compiler import load_schema
from schemaguard.core.config import EnforcementConfig
from schemaguard.core.enforcement import enhance
from schemaguard.core.observability.metrics import reset_metrics

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

SCHEMA = """
enum Role {
  USER
  ADMIN
}

model User {
  id          String       @id @default(uuid())
  email       String       @unique @trim @lower @email
  name        String?      @length(min: 1, max: 50)
  password    String       @password @omit
  role        Role         @default(USER)
  posts       Post[]
  bookings    Booking[]
  memberships Membership[]

  @@allow('create,read', true)
  @@allow('update,delete', this == principal())
}

model Post {
  id        Int      @id @default(autoincrement())
  title     String   @length(min: 3)
  published Boolean  @default(false)
  views     Int      @default(0) @gte(0)
  authorId  String
  author    User     @relation(fields: [authorId], references: [id])
  createdAt DateTime @default(now())

  @@allow('read', published || author == principal())
  @@allow('create,update,delete', author == principal())
  @@deny('update', published && principal().role != ADMIN)
}

model Booking {
  id      String  @id @default(uuid())
  note    String?
  ownerId String
  owner   User    @relation(fields: [ownerId], references: [id])

  @@allow('create', true)
  @@allow('all', principal() == owner)
}

model Space {
  id      String       @id @default(uuid())
  name    String
  members Membership[]

  @@allow('create', principal() != null)
  @@allow('read', members?[user == principal()])
  @@allow('update,delete', members?[user == principal() && role == ADMIN])
}

model Membership {
  id      String @id @default(uuid())
  role    Role   @default(USER)
  spaceId String
  space   Space  @relation(fields: [spaceId], references: [id])
  userId  String
  user    User   @relation(fields: [userId], references: [id])

  @@allow('all', true)
}

model Account {
  id       Int     @id @default(autoincrement())
  ownerId  String
  balance  Int     @default(0)
  secret   String? @encrypted
  internal String? @allow('read', principal().role == ADMIN) @deny('update', true)

  @@allow('all', ownerId == principal().id)
  @@allow('post-update', balance >= 0)
  @@deny('post-update', ownerId != before().ownerId)
}

model Event {
  id    Int    @id @default(autoincrement())
  title String @trim
  start Int
  end   Int

  @@validate(start < end, 'start must be before end')
  @@allow('all', true)
}
"""


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture(scope="session")
def schema():
    return load_schema(SCHEMA)


@pytest.fixture(scope="session")
def encryption_key():
    return generate_key()


@pytest.fixture()
def config(encryption_key):
    return EnforcementConfig(password_rounds=4, encryption_key=encryption_key)


@pytest.fixture()
def raw(schema):
    return InMemoryClient(schema)


@pytest.fixture()
def as_user(raw, schema, config):
    """Factory: enforced client for a principal (None = anonymous)."""

    def _make(principal=None, **overrides):
        return enhance(raw, schema, principal, config=replace(config, **overrides), now=NOW)

    return _make
