"""Tests for certificate fingerprints and student access codes."""

import re
from datetime import datetime, timedelta, timezone

import pytest

from certchain.services.fingerprint import (
    canonical_timestamp,
    compute_fingerprint,
    generate_access_code,
    to_base36,
)

from conftest import build_request

ISSUED_AT = datetime(2024, 6, 1, 9, 30, 15, 123456, tzinfo=timezone.utc)
ACCESS_CODE = re.compile(r"^([A-Z0-9]+)-(\d{4})-([0-9A-Z]+)-([0-9A-Z]{6})$")


class TestCanonicalTimestamp:
    """Tests for canonical_timestamp."""

    def test_millisecond_precision(self):
        assert canonical_timestamp(ISSUED_AT) == "2024-06-01T09:30:15.123Z"

    def test_naive_is_utc(self):
        assert canonical_timestamp(ISSUED_AT.replace(tzinfo=None)) == canonical_timestamp(ISSUED_AT)

    def test_other_timezone_normalised(self):
        ist = timezone(timedelta(hours=5, minutes=30))
        assert canonical_timestamp(ISSUED_AT.astimezone(ist)) == "2024-06-01T09:30:15.123Z"


class TestComputeFingerprint:
    """Tests for compute_fingerprint."""

    def test_is_64_lowercase_hex(self):
        request = build_request()
        fingerprint = compute_fingerprint(request.student_data, request.academic_data, ISSUED_AT)
        assert re.fullmatch(r"[0-9a-f]{64}", fingerprint)

    def test_deterministic(self):
        first = build_request()
        second = build_request()
        assert compute_fingerprint(first.student_data, first.academic_data, ISSUED_AT) == \
            compute_fingerprint(second.student_data, second.academic_data, ISSUED_AT)

    def test_sub_millisecond_difference_ignored(self):
        request = build_request()
        later = ISSUED_AT + timedelta(microseconds=500)
        assert compute_fingerprint(request.student_data, request.academic_data, ISSUED_AT) == \
            compute_fingerprint(request.student_data, request.academic_data, later)

    def test_issued_at_changes_fingerprint(self):
        request = build_request()
        later = ISSUED_AT + timedelta(milliseconds=1)
        assert compute_fingerprint(request.student_data, request.academic_data, ISSUED_AT) != \
            compute_fingerprint(request.student_data, request.academic_data, later)

    @pytest.mark.parametrize("override", [
        {"name": "Asha V."},
        {"email": "asha.verma@example.edu"},
        {"student_id": "CS2020-042"},
        {"degree": "B.Tech Electronics"},
        {"specialization": None},
        {"classification": "First Class"},
        {"admission_year": 2019},
        {"graduation_year": 2025},
        {"overall_cgpa": 8.6},
        {"overall_percentage": 82.4},
    ])
    def test_each_identity_field_changes_fingerprint(self, override):
        base = build_request()
        changed = build_request(**override)
        assert compute_fingerprint(base.student_data, base.academic_data, ISSUED_AT) != \
            compute_fingerprint(changed.student_data, changed.academic_data, ISSUED_AT)

    def test_field_boundaries_cannot_be_shifted(self):
        left = build_request(name="Asha-CS2020", student_id="041")
        right = build_request(name="Asha", student_id="CS2020-041")
        assert compute_fingerprint(left.student_data, left.academic_data, ISSUED_AT) != \
            compute_fingerprint(right.student_data, right.academic_data, ISSUED_AT)

    def test_non_identity_fields_do_not_matter(self):
        base = build_request()
        with_skills = build_request(technical_skills=["Python"], phone="+911234567890")
        assert compute_fingerprint(base.student_data, base.academic_data, ISSUED_AT) == \
            compute_fingerprint(with_skills.student_data, with_skills.academic_data, ISSUED_AT)


class TestBase36:
    """Tests for to_base36."""

    @pytest.mark.parametrize("value,expected", [(0, "0"), (9, "9"), (10, "A"), (35, "Z"), (36, "10"), (1295, "ZZ")])
    def test_values(self, value, expected):
        assert to_base36(value) == expected

    def test_round_trip_with_int(self):
        millis = 1717234215123
        assert int(to_base36(millis), 36) == millis

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            to_base36(-1)


class TestGenerateAccessCode:
    """Tests for generate_access_code."""

    def test_format(self):
        code = generate_access_code("test01", 2024, ISSUED_AT)
        match = ACCESS_CODE.match(code)
        assert match is not None
        prefix, year, stamp, suffix = match.groups()
        assert prefix == "TEST01"
        assert year == "2024"
        assert int(stamp, 36) == int(ISSUED_AT.timestamp() * 1000)
        assert len(suffix) == 6

    def test_default_prefix(self):
        assert generate_access_code(None, 2024, ISSUED_AT).startswith("CERT-2024-")

    def test_random_suffix_differs(self):
        codes = {generate_access_code("TEST01", 2024, ISSUED_AT) for _ in range(200)}
        assert len(codes) > 190

    def test_uses_current_time_by_default(self):
        before = int(datetime.now(timezone.utc).timestamp() * 1000)
        stamp = ACCESS_CODE.match(generate_access_code("X", 2024)).group(3)
        after = int(datetime.now(timezone.utc).timestamp() * 1000)
        assert before <= int(stamp, 36) <= after
