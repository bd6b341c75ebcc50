import re
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from offsync.utils.ids import generate_operation_id
from offsync.utils.ids import generate_sync_token
from offsync.utils.ids import random_suffix
from offsync.utils.json_helpers import canonical_json
from offsync.utils.json_helpers import digest
from offsync.utils.json_helpers import json_equal
from offsync.utils.time import to_naive_utc


class TestIdentifiers:
    def test_layout(self):
        now = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)

        assert re.fullmatch(r"20260304050607-[A-Za-z0-9]{8}", generate_operation_id(now))
        assert re.fullmatch(r"20260304050607-[A-Za-z0-9]{16}", generate_sync_token(now))

    def test_unique_within_one_second(self):
        now = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)

        assert len({generate_operation_id(now) for _ in range(200)}) == 200

    def test_suffix_length_must_be_positive(self):
        with pytest.raises(ValueError):
            random_suffix(0)


class TestCanonicalJson:
    def test_key_order_does_not_matter(self):
        assert digest({"b": 1, "a": [1, {"y": 2, "x": 1}]}) == digest({"a": [1, {"x": 1, "y": 2}], "b": 1})

    def test_compact_and_unicode(self):
        assert canonical_json({"name": "café", "n": 1}) == '{"n":1,"name":"café"}'

    def test_json_equal(self):
        assert json_equal({"a": [1, 2]}, {"a": [1, 2]})
        assert not json_equal(1, 1.0)
        assert not json_equal(1, True)

    def test_unserialisable(self):
        with pytest.raises(TypeError):
            canonical_json({"when": object()})


class TestTime:
    def test_aware_values_are_converted(self):
        value = datetime(2026, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        assert to_naive_utc(value) == datetime(2026, 1, 1, 12, 0)

    def test_naive_values_pass_through(self):
        value = datetime(2026, 1, 1, 12, 0)

        assert to_naive_utc(value) is value
