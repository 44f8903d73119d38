import time

import pytest
from bson import ObjectId

from errors import ValidationError
from schemas import Contact, User, validate_document


def contact_data(**overrides):
    data = {"name": "Visitor", "email": "visitor@example.com", "message": "Hello there, friend"}
    data.update(overrides)
    return data


@pytest.mark.parametrize("email", [
    "jane@example.com",
    "jane.doe@example.co",
    "jane-doe@mail.example.org",
    "j_d99@sub-domain.example.net",
])
def test_valid_emails_pass(email):
    user = validate_document(User, {"name": "Jane", "email": email})
    assert user.email == email


@pytest.mark.parametrize("email", [
    "janeexample.com",
    "jane@",
    "@example.com",
    "jane@example",
    "jane@example.",
    "jane doe@example.com",
])
def test_invalid_emails_fail(email):
    with pytest.raises(ValidationError) as excinfo:
        validate_document(User, {"name": "Jane", "email": email})
    assert excinfo.value.errors == [{"field": "email", "message": "Please provide a valid email"}]


@pytest.mark.parametrize("email", [
    "a" * 5000 + "!",
    "a.b-" * 2000 + "!",
    "jane@" + "a" * 5000 + "!",
])
def test_long_invalid_email_fails_fast(email):
    started = time.perf_counter()
    with pytest.raises(ValidationError) as excinfo:
        validate_document(Contact, contact_data(email=email))
    assert time.perf_counter() - started < 1.0
    assert excinfo.value.errors == [{"field": "email", "message": "Please provide a valid email"}]


def test_empty_email_is_missing():
    with pytest.raises(ValidationError) as excinfo:
        validate_document(User, {"name": "Jane", "email": ""})
    assert excinfo.value.errors == [{"field": "email", "message": "Please provide an email"}]


def test_email_is_lowercased_before_matching():
    user = validate_document(User, {"name": "Jane", "email": "Jane.Doe@Example.COM"})
    assert user.email == "jane.doe@example.com"


def test_user_defaults():
    user = validate_document(User, {"name": "  Jane  ", "email": "jane@example.com"})
    assert user.name == "Jane"
    assert user.password is None
    assert user.google_id is None
    assert user.profile_image is None
    assert user.role == "user"
    assert user.is_active is True
    assert user.is_email_verified is False


def test_multiple_failures_are_collected():
    with pytest.raises(ValidationError) as excinfo:
        validate_document(User, {"name": "   ", "email": "nope", "role": "owner"})
    err = excinfo.value
    assert err.status_code == 422
    assert err.message == "Validation failed"
    assert {e["field"]: e["message"] for e in err.errors} == {
        "name": "Please provide a name",
        "email": "Please provide a valid email",
        "role": "Role must be either user or admin",
    }


def test_missing_and_null_fields_use_required_messages():
    with pytest.raises(ValidationError) as excinfo:
        validate_document(Contact, {"name": None})
    assert {e["field"]: e["message"] for e in excinfo.value.errors} == {
        "name": "Please provide a name",
        "email": "Please provide an email",
        "message": "Please provide a message",
    }


@pytest.mark.parametrize("length", [10, 11, 500, 1000])
def test_contact_message_within_bounds(length):
    contact = validate_document(Contact, contact_data(message="x" * length))
    assert len(contact.message) == length


@pytest.mark.parametrize("length, message", [
    (9, "Message must be at least 10 characters long"),
    (1, "Message must be at least 10 characters long"),
    (1001, "Message cannot be longer than 1000 characters"),
])
def test_contact_message_out_of_bounds(length, message):
    with pytest.raises(ValidationError) as excinfo:
        validate_document(Contact, contact_data(message="x" * length))
    assert excinfo.value.errors == [{"field": "message", "message": message}]


def test_contact_message_length_counts_after_trim():
    with pytest.raises(ValidationError):
        validate_document(Contact, contact_data(message="   123456789   "))
    contact = validate_document(Contact, contact_data(message="  1234567890  "))
    assert contact.message == "1234567890"


def test_contact_name_limit():
    assert validate_document(Contact, contact_data(name="n" * 50)).name == "n" * 50
    with pytest.raises(ValidationError) as excinfo:
        validate_document(Contact, contact_data(name="n" * 51))
    assert excinfo.value.errors[0]["message"] == "Name cannot be longer than 50 characters"


def test_contact_user_id():
    oid = ObjectId()
    assert validate_document(Contact, contact_data()).user_id is None
    assert validate_document(Contact, contact_data(user_id=oid)).user_id == str(oid)
    assert validate_document(Contact, contact_data(user_id=str(oid))).user_id == str(oid)
    with pytest.raises(ValidationError) as excinfo:
        validate_document(Contact, contact_data(user_id="not-an-id"))
    assert excinfo.value.errors == [{"field": "user_id", "message": "Invalid user id"}]


def test_contact_defaults_to_unread():
    assert validate_document(Contact, contact_data()).is_read is False
