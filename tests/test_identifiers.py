from schoolmgmt.services.identifiers import (
    format_identifier, next_sequence_number, rename_identifier, role_prefix,
)


def test_format_pads_to_three_digits():
    assert format_identifier("aia", "TCHR", 1) == "AIA-TCHR-001"
    assert format_identifier("AIA", "STU", 1234) == "AIA-STU-1234"


def test_role_prefixes():
    assert role_prefix("teacher") == "TCHR"
    assert role_prefix("Bursar") == "BURS"
    assert role_prefix("admin") == "USER"
    assert role_prefix(None) == "USER"


def test_next_number_continues_after_highest():
    existing = ["AIA-TCHR-001", "AIA-TCHR-007", "AIA-TCHR-003"]
    assert next_sequence_number(existing, "AIA-TCHR-") == 8


def test_next_number_ignores_other_prefixes_and_malformed_ids():
    existing = ["AIA-BURS-009", "AIA-TCHR-abc", None, "", "XYZ-TCHR-004"]
    assert next_sequence_number(existing, "AIA-TCHR-") == 1


def test_next_number_starts_at_one():
    assert next_sequence_number([], "AIA-STU-") == 1


def test_rename_only_touches_leading_short_code():
    assert rename_identifier("AIA-TCHR-001", "AIA", "NEW") == "NEW-TCHR-001"
    assert rename_identifier("OTHER-STU-001", "AIA", "NEW") == "OTHER-STU-001"
    assert rename_identifier("MANUAL42", "AIA", "NEW") == "MANUAL42"
    assert rename_identifier(None, "AIA", "NEW") is None
