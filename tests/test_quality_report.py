from types import SimpleNamespace

import pandas as pd
import pytest

from vcard_envelopes import quality_report as qr
from vcard_envelopes.common import write_envelopes_json
from vcard_envelopes.models import (
    CardEnvelope,
    CardType,
    EmailData,
    IdentityData,
    PhoneData,
)


def _envelopes():
    return [
        CardEnvelope(
            card_id="p1-identity",
            person_id="p1",
            card_type=CardType.PERSONAL_IDENTITY,
            data=IdentityData(given_name="Jane", family_name="Doe", display_name="Jane Doe"),
        ),
        CardEnvelope(
            card_id="p1-email-0",
            person_id="p1",
            card_type=CardType.EMAIL,
            data=EmailData(
                full_address="jane@example.com",
                username="jane",
                domain="example.com",
                labels=["work"],
                is_primary=True,
            ),
        ),
        CardEnvelope(
            card_id="p2-email-0",
            person_id="p2",
            card_type=CardType.EMAIL,
            data=EmailData(full_address="broken", username="broken"),
        ),
        CardEnvelope(
            card_id="p2-phone-0",
            person_id="p2",
            card_type=CardType.PHONE,
            data=PhoneData(full_number="415-555-0100", area_code="415"),
        ),
    ]


def test_build_quality_frame_columns_and_rows():
    frame = qr.build_quality_frame(_envelopes())
    assert list(frame.columns) == qr.REPORT_COLUMNS
    assert frame["card_id"].tolist() == ["p1-identity", "p1-email-0", "p2-email-0", "p2-phone-0"]
    assert frame["valid"].tolist() == [True, True, False, True]
    broken = frame.iloc[2]
    assert broken["error_count"] == 2
    assert broken["errors"] == "Invalid email format|Email card missing domain"
    assert frame.iloc[1]["labels"] == "work"
    assert frame.iloc[0]["labels"] == ""
    assert bool(frame.iloc[1]["is_primary"]) is True


def test_summarize_counts_by_type():
    summary = qr.summarize(qr.build_quality_frame(_envelopes()))
    assert summary["envelopes_total"] == 4
    assert summary["persons_total"] == 2
    assert summary["valid_pct"] == 75.0
    assert summary["email_count"] == 2
    assert summary["email_valid_pct"] == 50.0
    assert summary["address_count"] == 0
    assert summary["address_valid_pct"] == 0.0
    assert summary["address_mean_completeness"] == 0.0
    assert summary["personal_identity_mean_completeness"] == 43.0


def test_summarize_empty_frame():
    frame = pd.DataFrame(columns=qr.REPORT_COLUMNS)
    summary = qr.summarize(frame)
    assert summary["envelopes_total"] == 0
    assert summary["phone_count"] == 0
    assert summary["valid_pct"] == 0.0


def test_build_reads_envelopes_json(tmp_path):
    path = tmp_path / "envelopes.json"
    write_envelopes_json(str(path), _envelopes())
    frame = qr.build(SimpleNamespace(envelopes_json=str(path)))
    assert len(frame) == 4
    assert qr.build(SimpleNamespace(envelopes_json=str(tmp_path / "missing.json"))).empty


def test_pct():
    assert qr.pct(1, 3) == 33.33
    assert qr.pct(5, 0) == 0.0


if __name__ == "__main__":
    pytest.main(["-q"])
