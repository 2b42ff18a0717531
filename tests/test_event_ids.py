from datetime import datetime, timedelta, timezone

import pytest

from core.errors import FormatError, REASON_INVALID_FORMAT
from datetime_utils import to_millis
from services.event_ids import event_age_ms, mint_event_id, parse_event_id


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_minted_id_embeds_creation_millis():
    event_id = mint_event_id(NOW)
    parsed = parse_event_id(event_id)
    assert parsed.timestamp_ms == to_millis(NOW)
    assert parsed.suffix
    assert event_id.startswith(f"{to_millis(NOW)}-")


def test_minted_ids_are_unique_for_same_instant():
    ids = {mint_event_id(NOW) for _ in range(200)}
    assert len(ids) == 200


def test_suffix_may_contain_dashes():
    parsed = parse_event_id("1717243200000-abc-def")
    assert parsed.timestamp_ms == 1717243200000
    assert parsed.suffix == "abc-def"


@pytest.mark.parametrize(
    "value",
    [
        "",
        "no-timestamp",
        "1717243200000",
        "171724320000-short",
        "17172432000000-toolong",
        "17172432000x0-abc",
        "١٧١٧٢٤٣٢٠٠٠٠٠-abc",
        None,
        1717243200000,
    ],
)
def test_malformed_ids_are_rejected(value):
    with pytest.raises(FormatError) as excinfo:
        parse_event_id(value)
    assert excinfo.value.reason == REASON_INVALID_FORMAT
    assert excinfo.value.retryable is False


def test_event_age():
    event_id = mint_event_id(NOW - timedelta(minutes=5))
    assert event_age_ms(event_id, NOW) == 5 * 60 * 1000
