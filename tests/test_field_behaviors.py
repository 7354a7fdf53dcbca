from __future__ import annotations

from datetime import datetime, timezone

import pytest

from schemaguard.core.behaviors import FieldBehaviorPipeline, FieldCipher, generate_key, hash_password, verify_password
from schemaguard.core.behaviors.crypto import is_encrypted
from schemaguard.core.behaviors.transforms import is_password_hash
from schemaguard.core.behaviors.validators import VALIDATORS
from schemaguard.core.config import EnforcementConfig
from schemaguard.core.errors import CryptoError, ValidationError
from schemaguard.core.observability.metrics import snapshot_named


@pytest.fixture()
def pipeline(schema, config):
    return FieldBehaviorPipeline(schema, config)


def test_password_hash_is_one_way_and_idempotent():
    hashed = hash_password("s3cret", 4)
    assert hashed != "s3cret"
    assert is_password_hash(hashed)
    assert hash_password(hashed, 4) == hashed
    assert verify_password("s3cret", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("s3cret", "s3cret")


def test_cipher_round_trip_binds_field_name():
    cipher = FieldCipher(generate_key())
    sealed = cipher.encrypt("pin 1234", model="Account", field="secret")
    assert is_encrypted(sealed)
    assert "1234" not in sealed
    assert cipher.encrypt(sealed, model="Account", field="secret") == sealed
    assert cipher.decrypt(sealed, model="Account", field="secret") == "pin 1234"
    assert cipher.decrypt("plain", model="Account", field="secret") == "plain"

    with pytest.raises(CryptoError):
        cipher.decrypt(sealed, model="Account", field="internal")
    with pytest.raises(CryptoError):
        FieldCipher(generate_key()).decrypt(sealed, model="Account", field="secret")


def test_cipher_without_key():
    with pytest.raises(CryptoError) as exc:
        FieldCipher(None).encrypt("x", model="Account", field="secret")
    assert exc.value.field == "secret"
    with pytest.raises(CryptoError):
        FieldCipher("not base64 at all!")


@pytest.mark.parametrize(
    "name,value,params,ok",
    [
        ("email", "a@b.io", {}, True),
        ("email", "not-an-email", {}, False),
        ("url", "https://example.com/x", {}, True),
        ("url", "ftp://example.com", {}, False),
        ("url", "https://", {}, False),
        ("length", "abc", {"min": 3, "max": 3}, True),
        ("length", "ab", {"min": 3}, False),
        ("length", "abcd", {"max": 3}, False),
        ("regex", "AB-12", {"pattern": "^[A-Z]+-\\d+$"}, True),
        ("regex", "ab", {"pattern": "^[A-Z]+$"}, False),
        ("startsWith", "https://x", {"text": "https"}, True),
        ("endsWith", "file.txt", {"text": ".png"}, False),
        ("contains", "hello world", {"text": "lo w"}, True),
        ("gt", 5, {"value": 5}, False),
        ("gte", 5, {"value": 5}, True),
        ("lt", 4.5, {"value": 5}, True),
        ("lte", True, {"value": 5}, False),
    ],
)
def test_validators(name, value, params, ok):
    assert (VALIDATORS[name](value, params) is None) is ok


def test_normalize_applies_string_transforms(schema, pipeline):
    user = schema.model("User")
    out = pipeline.normalize(user, {"email": "  Ann@Example.COM ", "name": " Ann "})
    assert out == {"email": "ann@example.com", "name": " Ann "}


def test_validate_collects_every_failing_field(schema, pipeline):
    user = schema.model("User")
    with pytest.raises(ValidationError) as exc:
        pipeline.validate(user, {"email": "nope", "name": "", "role": "ROOT"}, operation="create")
    assert sorted(exc.value.fields) == ["email", "name", "role"]
    assert exc.value.model == "User"
    assert "nope" not in str(exc.value)
    assert snapshot_named()["validation_failures"] == 1


def test_validate_full_reports_missing_required_fields(schema, pipeline):
    user = schema.model("User")
    with pytest.raises(ValidationError) as exc:
        pipeline.validate(user, {"email": "a@b.io"}, operation="create", full=True)
    assert exc.value.fields == ["password"]
    # id and role have defaults, name is optional
    pipeline.validate(user, {"email": "a@b.io", "password": "x"}, operation="create", full=True)


def test_validate_types(schema, pipeline):
    post = schema.model("Post")
    with pytest.raises(ValidationError) as exc:
        pipeline.validate(post, {"title": 12, "views": "3", "published": 1}, operation="update")
    assert sorted(exc.value.fields) == ["published", "title", "views"]
    with pytest.raises(ValidationError):
        pipeline.validate(post, {"views": -1}, operation="update")
    pipeline.validate(post, {"views": 0, "title": "abc"}, operation="update")


def test_validate_rejects_naive_datetimes(schema, pipeline):
    post = schema.model("Post")
    with pytest.raises(ValidationError) as exc:
        pipeline.validate(post, {"createdAt": datetime(2026, 1, 1)}, operation="update")
    assert exc.value.fields == ["createdAt"]
    pipeline.validate(post, {"createdAt": datetime(2026, 1, 1, tzinfo=timezone.utc)}, operation="update")


def test_model_level_validation(schema, pipeline):
    event = schema.model("Event")
    pipeline.validate(event, {"start": 1, "end": 2}, operation="create")
    with pytest.raises(ValidationError) as exc:
        pipeline.validate(event, {"start": 3, "end": 2}, operation="create")
    assert exc.value.fields == ["@@validate"]
    assert exc.value.issues[0][1] == "start must be before end"
    # updates are checked against the resulting record
    with pytest.raises(ValidationError):
        pipeline.validate(event, {"end": 0}, operation="update", record={"start": 1, "end": 0})


def test_transform_on_write_and_redact(schema, pipeline):
    user = schema.model("User")
    stored = pipeline.transform_on_write(user, {"email": "a@b.io", "password": "pw"})
    assert is_password_hash(stored["password"])
    assert verify_password("pw", stored["password"])
    assert pipeline.transform_on_write(user, stored) == stored
    assert "password" not in pipeline.redact(user, stored)

    account = schema.model("Account")
    sealed = pipeline.transform_on_write(account, {"secret": "xyz", "balance": 1})
    assert is_encrypted(sealed["secret"])
    assert pipeline.redact(account, sealed) == {"secret": "xyz", "balance": 1}
    assert pipeline.transform_on_write(account, {"secret": None}) == {"secret": None}


def test_encrypted_field_without_key_fails_on_write(schema):
    pipeline = FieldBehaviorPipeline(schema, EnforcementConfig(password_rounds=4))
    with pytest.raises(CryptoError):
        pipeline.transform_on_write(schema.model("Account"), {"secret": "xyz"})
