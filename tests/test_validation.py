import pytest

from bot.errors import ValidationError
from bot.utils.email import mask_email, validate_email
from bot.utils.validators import clean_description, parse_visibility, validate_name, validate_slug


@pytest.mark.parametrize("raw", ["Alice@Acme.org", "  alice@acme.org  ", "ALICE@ACME.ORG"])
def test_email_is_trimmed_and_lowercased(raw):
    result = validate_email(raw)
    assert result.is_valid
    assert result.normalized_email == "alice@acme.org"


@pytest.mark.parametrize("raw", ["", "alice", "a@@acme.org", "a@b@acme.org", "alice..x@acme.org", ".alice@acme.org", "alice@acme.org.", "alice.@acme.org"])
def test_invalid_emails_have_no_normalized_value(raw):
    result = validate_email(raw)
    assert not result.is_valid
    assert result.normalized_email is None
    assert result.error


def test_overlong_email():
    result = validate_email("a" * 320 + "@acme.org")
    assert not result.is_valid
    assert "too long" in result.error


def test_mask_email():
    assert mask_email("john.doe@example.com") == "j***@e***"
    assert mask_email("bob@acme.org") == "b**@a***"
    assert mask_email(None) == "***"


def test_slug_rules():
    assert validate_slug("tech_talk-2") == "tech_talk-2"
    for bad in ["ab", "x" * 51, "Tech", "has space", "dots.no", "abc\n", "abc\ndef"]:
        with pytest.raises(ValidationError):
            validate_slug(bad)


def test_name_and_description_rules():
    assert validate_name("  Book Club  ") == "Book Club"
    with pytest.raises(ValidationError):
        validate_name("ab")
    assert clean_description("") is None
    assert clean_description("<script>x</script>ok") == "xok"
    with pytest.raises(ValidationError):
        clean_description("y" * 501)


def test_visibility_choice():
    assert parse_visibility("PUBLIC") is False
    assert parse_visibility(" private ") is True
    with pytest.raises(ValidationError):
        parse_visibility("hidden")
