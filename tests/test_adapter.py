import pytest

from vcard_envelopes.adapter import (
    AdapterOptions,
    decompose_phone,
    derive_person_id,
    import_vcards,
    parse_birth_date,
    to_envelopes,
)
from vcard_envelopes.common import deterministic_uuid
from vcard_envelopes.models import CardType, DateOfBirth
from vcard_envelopes.parser import parse

FIXED_OPTIONS = AdapterOptions(imported_at="2024-01-01T00:00:00+00:00")


def _card(*lines):
    return "\r\n".join(["BEGIN:VCARD", "VERSION:3.0", *lines, "END:VCARD", ""])


def _by_type(envelopes, card_type):
    return [envelope for envelope in envelopes if envelope.card_type is card_type]


def test_identity_and_primary_work_email():
    text = "BEGIN:VCARD\r\nVERSION:3.0\r\nFN:Jane Doe\r\nEMAIL;TYPE=WORK,PREF=1:jane@example.com\r\nEND:VCARD\r\n"
    envelopes = to_envelopes(parse(text), FIXED_OPTIONS)
    assert [envelope.card_type for envelope in envelopes] == [CardType.PERSONAL_IDENTITY, CardType.EMAIL]

    identity, email = envelopes
    assert identity.data.display_name == "Jane Doe"
    assert identity.card_id == f"{identity.person_id}-identity"
    assert email.card_id == f"{identity.person_id}-email-0"
    assert email.data.to_dict() == {
        "username": "jane",
        "domain": "example.com",
        "fullAddress": "jane@example.com",
        "labels": ["work"],
        "isPrimary": True,
    }


def test_phone_is_decomposed_and_labelled_mobile():
    text = _card("FN:Pat Lee", "TEL;TYPE=CELL:(415) 555-0100")
    (phone,) = _by_type(import_vcards(text, FIXED_OPTIONS), CardType.PHONE)
    assert phone.data.country_code == "1"
    assert phone.data.area_code == "415"
    assert phone.data.exchange == "555"
    assert phone.data.line_number == "0100"
    assert phone.data.labels == ["mobile"]
    assert phone.data.e164 == "+14155550100"


def test_address_components_and_country_mapping():
    text = _card("FN:Sam Hill", "ADR;TYPE=HOME:;;123 Main St;Springfield;IL;62704;USA")
    (raw,) = _by_type(to_envelopes(parse(text), FIXED_OPTIONS), CardType.ADDRESS)
    assert raw.data.po_box is None
    assert raw.data.street_address == "123 Main St"
    assert raw.data.locality == "Springfield"
    assert raw.data.region == "IL"
    assert raw.data.postal_code == "62704"
    assert raw.data.country == "USA"
    assert raw.data.labels == ["home"]

    (normalized,) = _by_type(import_vcards(text, FIXED_OPTIONS), CardType.ADDRESS)
    assert normalized.data.postal_code == "62704"
    assert normalized.data.country == "US"


def test_first_email_is_primary_without_preference():
    text = _card("FN:Alex Kim", "EMAIL:alex@home.example", "EMAIL:alex@work.example")
    emails = _by_type(to_envelopes(parse(text), FIXED_OPTIONS), CardType.EMAIL)
    assert [email.data.is_primary for email in emails] == [True, False]
    assert all(email.data.labels == ["other"] for email in emails)


def test_declared_preference_wins_over_position():
    text = _card("FN:Alex Kim", "EMAIL:alex@home.example", "EMAIL;PREF:alex@work.example")
    emails = _by_type(to_envelopes(parse(text), FIXED_OPTIONS), CardType.EMAIL)
    assert [email.data.is_primary for email in emails] == [False, True]


def test_multiple_preferences_pass_through():
    text = _card(
        "FN:Alex Kim",
        "TEL;TYPE=HOME,pref:555-0100",
        "TEL;TYPE=WORK;PREF=1:555-0101",
    )
    phones = _by_type(to_envelopes(parse(text), FIXED_OPTIONS), CardType.PHONE)
    assert [phone.data.is_primary for phone in phones] == [True, True]
    assert phones[0].data.labels == ["home", "pref"]


def test_invalid_email_is_skipped_and_index_kept():
    text = _card("FN:Alex Kim", "EMAIL:not-an-address", "EMAIL:alex@example.com")
    emails = _by_type(to_envelopes(parse(text), FIXED_OPTIONS), CardType.EMAIL)
    assert len(emails) == 1
    assert emails[0].card_id.endswith("-email-1")
    assert emails[0].data.username == "alex"


def test_vcard21_bare_type_flags_become_labels():
    text = _card("FN:Old Phone", "TEL;WORK;VOICE:555-0101", "EMAIL;INTERNET:old@example.com")
    envelopes = to_envelopes(parse(text), FIXED_OPTIONS)
    (phone,) = _by_type(envelopes, CardType.PHONE)
    (email,) = _by_type(envelopes, CardType.EMAIL)
    assert phone.data.labels == ["work", "voice"]
    assert email.data.labels == ["internet"]


def test_apple_group_label_is_added():
    text = _card(
        "FN:Apple User",
        "item1.TEL;type=CELL:+1 415 555 0100",
        "item1.X-ABLabel:_$!<Mobile>!$_",
        "item2.EMAIL:apple@example.com",
        "item2.X-ABLabel:Side Project",
    )
    envelopes = to_envelopes(parse(text), FIXED_OPTIONS)
    (phone,) = _by_type(envelopes, CardType.PHONE)
    (email,) = _by_type(envelopes, CardType.EMAIL)
    assert phone.data.labels == ["cell", "mobile"]
    assert phone.data.area_code == "415"
    assert email.data.labels == ["side project"]


def test_identity_fields_are_extracted():
    text = _card(
        "FN:Dr. John Paul Doe Jr.",
        "N:Doe;John;Paul,George;Dr.;Jr.",
        "NICKNAME:JD,Johnny",
        "BDAY:1985-04-12",
        "PHOTO;VALUE=URI:https://example.com/john.jpg",
        "ORG:Acme Corp;Engineering",
        "TITLE:Staff Engineer",
    )
    identity = _by_type(to_envelopes(parse(text), FIXED_OPTIONS), CardType.PERSONAL_IDENTITY)[0]
    data = identity.data
    assert data.given_name == "John"
    assert data.family_name == "Doe"
    assert data.middle_names == ["Paul", "George"]
    assert data.honorific_prefix == "Dr."
    assert data.honorific_suffix == "Jr."
    assert data.nicknames == ["JD", "Johnny"]
    assert data.date_of_birth == DateOfBirth(year=1985, month=4, day=12)
    assert data.profile_photo.url == "https://example.com/john.jpg"
    assert data.organization.name == "Acme Corp"
    assert data.organization.department == "Engineering"
    assert data.organization.division is None
    assert data.job_title == "Staff Engineer"


def test_base64_photo_is_kept_and_garbage_dropped():
    good = _card("FN:Pic", "PHOTO;ENCODING=b;TYPE=JPEG:aGVsbG8=")
    bad = _card("FN:Pic", "PHOTO;ENCODING=b;TYPE=JPEG:not base64!!")
    identity = to_envelopes(parse(good), FIXED_OPTIONS)[0]
    assert identity.data.profile_photo.data == "aGVsbG8="
    assert identity.data.profile_photo.mime_type == "image/jpeg"
    assert to_envelopes(parse(bad), FIXED_OPTIONS)[0].data.profile_photo is None


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1985-04-12", DateOfBirth(1985, 4, 12)),
        ("19850412", DateOfBirth(1985, 4, 12)),
        ("1985-04", DateOfBirth(1985, 4, None)),
        ("1985-04-12T10:00:00Z", DateOfBirth(1985, 4, 12)),
        ("--0412", None),
        ("", None),
    ],
)
def test_parse_birth_date(value, expected):
    assert parse_birth_date(value) == expected


def test_decompose_phone_only_handles_nanp_numbers():
    assert decompose_phone("1-415-555-0100") == {
        "country_code": "1",
        "area_code": "415",
        "exchange": "555",
        "line_number": "0100",
    }
    assert decompose_phone("+44 20 7946 0958") == {}
    assert decompose_phone("555-0100") == {}


def test_person_id_precedence():
    with_uid = parse(_card("UID:abc-123", "FN:Jane Doe"))
    named = parse(_card("FN:Jane Doe"))
    n_only = parse(_card("N:Doe;Jane;;;"))
    anonymous = parse(_card("EMAIL:who@example.com"))

    assert derive_person_id(with_uid, "explicit-1") == "explicit-1"
    assert derive_person_id(with_uid) == "abc-123"
    assert derive_person_id(named) == f"person-{deterministic_uuid('Jane Doe')}"
    assert derive_person_id(n_only) == f"person-{deterministic_uuid('Doe;Jane;;;')}"
    assert derive_person_id(anonymous).startswith("person-")
    assert derive_person_id(anonymous) != derive_person_id(anonymous)


def test_provenance_and_owner_are_stamped():
    text = _card("UID:abc-123", "FN:Jane Doe", "EMAIL:jane@example.com")
    options = AdapterOptions(
        owner_id="user-9",
        source="phone_sync",
        confidence=0.75,
        imported_at="2024-01-01T00:00:00+00:00",
    )
    for envelope in to_envelopes(parse(text), options):
        assert envelope.person_id == "abc-123"
        assert envelope.owner_user_id == "user-9"
        assert envelope.provenance.source == "phone_sync"
        assert envelope.provenance.confidence == 0.75
        assert envelope.provenance.precedence == "imported"
        assert envelope.provenance.source_id == "abc-123"
        assert envelope.provenance.imported_at == "2024-01-01T00:00:00+00:00"


def test_adaptation_is_deterministic():
    text = _card("FN:Jane Doe", "EMAIL:jane@example.com", "TEL:415-555-0100", "ADR:;;1 Main;Town;;;")
    first = to_envelopes(parse(text), FIXED_OPTIONS)
    second = to_envelopes(parse(text), FIXED_OPTIONS)
    assert [envelope.card_id for envelope in first] == [envelope.card_id for envelope in second]
    assert first == second


def test_no_identity_without_name_properties():
    envelopes = to_envelopes(parse(_card("EMAIL:who@example.com")), FIXED_OPTIONS)
    assert [envelope.card_type for envelope in envelopes] == [CardType.EMAIL]


def test_middle_names_keep_escaped_commas():
    identity = to_envelopes(parse(_card("N:B;A;X\\, Jr;;")), FIXED_OPTIONS)[0]
    assert identity.data.middle_names == ["X, Jr"]


def test_import_vcards_collects_diagnostics():
    text = _card("FN:John Doe", "no separator here") + "BEGIN:VCARD\r\nFN:Cut Off\r\n"
    diagnostics = []
    envelopes = import_vcards(text, FIXED_OPTIONS, diagnostics=diagnostics)
    assert len(envelopes) == 1
    assert diagnostics[0] == "Unterminated vCard block dropped"
    assert "no colon" in diagnostics[1]


def test_import_vcards_handles_many_blocks():
    text = _card("FN:John Doe", "EMAIL:john@example.com") + _card("FN:Jane Smith")
    envelopes = import_vcards(text, FIXED_OPTIONS)
    assert len({envelope.person_id for envelope in envelopes}) == 2
    assert len(envelopes) == 3


if __name__ == "__main__":
    pytest.main(["-q"])
