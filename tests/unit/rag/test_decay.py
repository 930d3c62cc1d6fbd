"""Tests for temporal decay."""

from __future__ import annotations

import math
import os
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from memoria.rag.decay import age_in_days, apply_temporal_decay, is_evergreen_path

UTC = ZoneInfo("UTC")


# ------------------------------------------------------------------
# apply_temporal_decay
# ------------------------------------------------------------------


def test_zero_age_keeps_score():
    assert apply_temporal_decay(0.8, 0.0) == pytest.approx(0.8)


def test_half_life_halves_score():
    assert apply_temporal_decay(1.0, 30.0, half_life_days=30.0) == pytest.approx(0.5)


def test_two_half_lives_quarter_score():
    assert apply_temporal_decay(1.0, 60.0, half_life_days=30.0) == pytest.approx(0.25)


def test_negative_age_treated_as_zero():
    assert apply_temporal_decay(0.6, -5.0) == pytest.approx(0.6)


def test_non_positive_half_life_disables_decay():
    assert apply_temporal_decay(0.6, 100.0, half_life_days=0) == 0.6


def test_decay_is_monotonic():
    scores = [apply_temporal_decay(1.0, age) for age in (0, 1, 7, 30, 365)]
    assert scores == sorted(scores, reverse=True)
    assert all(s > 0 for s in scores)


# ------------------------------------------------------------------
# is_evergreen_path
# ------------------------------------------------------------------


@pytest.mark.parametrize("path,expected", [
    ("data/memory/g1/MEMORY.md", True),
    ("data/memory/g1/topics.md", True),
    ("data/memory/g1/2026-03-14.md", False),
    ("data/memory/g1/notes.txt", False),
])
def test_is_evergreen_path(path, expected):
    assert is_evergreen_path(path) is expected


# ------------------------------------------------------------------
# age_in_days
# ------------------------------------------------------------------


def test_evergreen_has_no_age():
    assert age_in_days("memory/g1/MEMORY.md") is None


def test_dated_file_ages_from_local_midnight():
    now = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)
    assert age_in_days("memory/g1/2026-03-14.md", now=now, tz=UTC) == pytest.approx(1.5)


def test_dated_file_uses_configured_timezone():
    tokyo = ZoneInfo("Asia/Tokyo")
    # 2026-03-15 00:00 JST is 2026-03-14 15:00 UTC.
    now = datetime(2026, 3, 14, 15, 0, tzinfo=UTC)
    assert age_in_days("2026-03-15.md", now=now, tz=tokyo) == pytest.approx(0.0)


def test_future_dated_file_has_zero_age():
    now = datetime(2026, 3, 1, tzinfo=UTC)
    assert age_in_days("2026-04-01.md", now=now, tz=UTC) == 0.0


def test_undated_file_uses_mtime(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("x", encoding="utf-8")
    now = datetime(2026, 3, 15, tzinfo=UTC)
    ten_days_ago = now.timestamp() - 10 * 86_400
    os.utime(path, (ten_days_ago, ten_days_ago))
    assert age_in_days(path, now=now) == pytest.approx(10.0)


def test_missing_undated_file_has_zero_age(tmp_path):
    assert age_in_days(tmp_path / "missing.txt") == 0.0


def test_decay_matches_exponential_formula():
    score = apply_temporal_decay(0.9, 7.0, half_life_days=30.0)
    assert score == pytest.approx(0.9 * math.exp(-math.log(2) / 30.0 * 7.0))
