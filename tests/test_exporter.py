from datetime import datetime, timezone

import pytest

from vcard_envelopes.exporter import (
    VCARD_MEDIA_TYPE,
    ExportOptions,
    escape_text,
    export_filename,
    export_vcards,
    group_by_person,
    to_vcard_text,
)
from vcard_envelopes.models import (
    AddressData,
    CardEnvelope,
    CardType,
    DateOfBirth,
    EmailData,
    IdentityData,
    Organization,
    PhoneData,
    ProfilePhoto,
    unescape_text,
)

REV = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
OPTIONS = ExportOptions(revision=REV)


def _envelope(card_type, data, card_id, person_id="p1"):
    return CardEnvelope(card_id=card_id, person_id=person_id, card_type=card_type, data=data)


def _jane():
    return [
        _envelope(
            CardType.PERSONAL_IDENTITY,
            IdentityData(
                given_name="Jane",
                family_name="Doe",
                middle_names=["Q"],
                display_name="Jane Doe",
                nicknames=["JD", "Janie"],
                date_of_birth=DateOfBirth(year=1990, month=2, day=3),
                organization=Organization(name="Acme, Inc.", department="R&D"),
                job_title="Lead",
            ),
            "p1-identity",
        ),
        _envelope(
            CardType.EMAIL,
            EmailData(
                full_address="jane@example.com",
                username="jane",
                domain="example.com",
                labels=["work"],
                is_primary=True,
            ),
            "p1-email-0",
        ),
        _envelope(
            CardType.PHONE,
            PhoneData(full_number="+1 415 555 0100", labels=["mobile", "primary"]),
            "p1-phone-0",
        ),
        _envelope(
            CardType.ADDRESS,
            AddressData(
                street_address="1 Main St; Apt 2",
                locality="Springfield",
                region="IL",
                postal_code="62704",
                country="US",
                labels=["home"],
            ),
            "p1-address-0",
        ),
    ]


def test_to_vcard_text_writes_expected_lines():
    text = to_vcard_text(_jane(), OPTIONS)
    assert text.split("\r\n") == [
        "BEGIN:VCARD",
        "VERSION:3.0",
        "FN:Jane Doe",
        "N:Doe;Jane;Q;;",
        "NICKNAME:JD,Janie",
        "BDAY:1990-02-03",
        "ORG:Acme\\, Inc.;R&D",
        "TITLE:Lead",
        "EMAIL;TYPE=WORK;PREF=1:jane@example.com",
        "TEL;TYPE=CELL,PREF:+1 415 555 0100",
        "ADR;TYPE=HOME:;;1 Main St\\; Apt 2;Springfield;IL;62704;US",
        "REV:2024-05-06T07:08:09Z",
        "END:VCARD",
        "",
    ]


def test_every_line_ends_with_crlf():
    text = to_vcard_text(_jane(), OPTIONS)
    assert text.endswith("END:VCARD\r\n")
    assert "\n" not in text.replace("\r\n", "")


def test_empty_input_gives_empty_text():
    assert to_vcard_text([], OPTIONS) == ""
    assert export_vcards([], OPTIONS) == ""


def test_fn_is_synthesized_from_name_parts():
    identity = _envelope(
        CardType.PERSONAL_IDENTITY, IdentityData(given_name="Jane", family_name="Doe"), "p1-identity"
    )
    assert "FN:Jane Doe\r\n" in to_vcard_text([identity], OPTIONS)


def test_other_label_emits_no_type_and_empty_values_are_skipped():
    envelopes = [
        _envelope(CardType.EMAIL, EmailData(full_address="x@example.com"), "p1-email-0"),
        _envelope(CardType.EMAIL, EmailData(full_address=""), "p1-email-1"),
        _envelope(CardType.PHONE, PhoneData(full_number=""), "p1-phone-0"),
    ]
    lines = to_vcard_text(envelopes, OPTIONS).split("\r\n")
    assert "EMAIL:x@example.com" in lines
    assert not any(line.startswith("TEL") for line in lines)
    assert sum(line.startswith("EMAIL") for line in lines) == 1


def test_photo_rendering_and_opt_out():
    url_photo = _envelope(
        CardType.PERSONAL_IDENTITY,
        IdentityData(display_name="P", profile_photo=ProfilePhoto(url="https://example.com/p.png")),
        "p1-identity",
    )
    data_photo = _envelope(
        CardType.PERSONAL_IDENTITY,
        IdentityData(
            display_name="P", profile_photo=ProfilePhoto(data="aGVsbG8=", mime_type="image/png")
        ),
        "p1-identity",
    )
    assert "PHOTO;VALUE=URI:https://example.com/p.png\r\n" in to_vcard_text([url_photo], OPTIONS)
    assert "PHOTO;ENCODING=b;TYPE=PNG:aGVsbG8=\r\n" in to_vcard_text([data_photo], OPTIONS)
    no_photo = ExportOptions(revision=REV, include_photo=False)
    assert "PHOTO" not in to_vcard_text([data_photo], no_photo)


def test_partial_birthday_omits_missing_parts():
    identity = _envelope(
        CardType.PERSONAL_IDENTITY,
        IdentityData(display_name="P", date_of_birth=DateOfBirth(year=1990, month=7)),
        "p1-identity",
    )
    assert "BDAY:1990-07\r\n" in to_vcard_text([identity], OPTIONS)


def test_long_lines_are_folded():
    identity = _envelope(
        CardType.PERSONAL_IDENTITY, IdentityData(display_name="x" * 200), "p1-identity"
    )
    folded = to_vcard_text([identity], OPTIONS).split("\r\n")
    assert all(len(line) <= 75 for line in folded)
    assert folded[2] == "FN:" + "x" * 72
    assert folded[3] == " " + "x" * 74

    unfolded = to_vcard_text([identity], ExportOptions(revision=REV, fold_lines=False))
    assert "FN:" + "x" * 200 + "\r\n" in unfolded


def test_only_first_person_is_exported():
    envelopes = _jane() + [
        _envelope(CardType.PERSONAL_IDENTITY, IdentityData(display_name="Other"), "p2-identity", "p2")
    ]
    assert "Other" not in to_vcard_text(envelopes, OPTIONS)


def test_export_vcards_groups_people():
    other = _envelope(
        CardType.PERSONAL_IDENTITY, IdentityData(display_name="Other"), "p2-identity", "p2"
    )
    envelopes = _jane() + [other]
    assert [len(group) for group in group_by_person(envelopes)] == [4, 1]
    text = export_vcards(envelopes, OPTIONS)
    assert text.count("BEGIN:VCARD\r\n") == 2
    assert text == export_vcards([_jane(), [other]], OPTIONS)


def test_export_filename():
    assert export_filename(_jane()) == "jane_doe.vcf"
    assert export_filename(_jane()[1:]) == "contact.vcf"
    assert VCARD_MEDIA_TYPE == "text/vcard;charset=utf-8"


def test_carriage_returns_are_written_as_escaped_newlines():
    assert escape_text("a\r\nb\rc\nd") == "a\\nb\\nc\\nd"
    address = _envelope(
        CardType.ADDRESS,
        AddressData(street_address="1 Main St\r\nApt 2", locality="Town"),
        "p1-address-0",
    )
    lines = to_vcard_text([address], OPTIONS).split("\r\n")
    assert "ADR:;;1 Main St\\nApt 2;Town;;;" in lines


def test_empty_organization_writes_no_org_line():
    identity = _envelope(
        CardType.PERSONAL_IDENTITY,
        IdentityData(display_name="P", organization=Organization()),
        "p1-identity",
    )
    assert "ORG" not in to_vcard_text([identity], OPTIONS)
    from_json = IdentityData.from_mapping({"displayName": "P", "organization": {}})
    assert from_json.organization == Organization()
    assert "ORG" not in to_vcard_text(
        [_envelope(CardType.PERSONAL_IDENTITY, from_json, "p1-identity")], OPTIONS
    )


@pytest.mark.parametrize(
    "value",
    ["plain", "a;b", "a,b", "back\\slash", "multi\nline", "\\n literal", ";,\\\n", ""],
)
def test_escape_round_trips(value):
    assert unescape_text(escape_text(value)) == value


if __name__ == "__main__":
    pytest.main(["-q"])
