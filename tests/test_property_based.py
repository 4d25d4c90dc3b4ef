"""
Property-based tests for range validation and insert clamping using Hypothesis.
"""

import pytest
from hypothesis import given, settings, strategies as st

from mcp_server_notebook.errors import RangeOutOfBounds
from mcp_server_notebook.validation import clamp_insert_position, validate_range

counts = st.integers(min_value=0, max_value=500)


@st.composite
def valid_ranges(draw):
    n = draw(st.integers(min_value=1, max_value=500))
    start = draw(st.integers(min_value=0, max_value=n - 1))
    stop = draw(st.integers(min_value=start + 1, max_value=n))
    return start, stop, n


@given(valid_ranges())
def test_every_valid_range_accepted(case):
    start, stop, n = case
    assert validate_range(start, stop, n) == (start, stop)


@given(n=counts, start=st.integers(min_value=-1000, max_value=1000), stop=st.integers(min_value=-1000, max_value=1000))
@settings(max_examples=300)
def test_invalid_ranges_report_actual_count(n, start, stop):
    valid = 0 <= start < n and start < stop <= n
    if valid:
        assert validate_range(start, stop, n) == (start, stop)
        return
    with pytest.raises(RangeOutOfBounds) as exc:
        validate_range(start, stop, n, "execute_notebook_cells")
    assert exc.value.context["cellCount"] == n
    assert exc.value.context["startIndex"] == start
    assert exc.value.context["stopIndex"] == stop


@given(n=counts, point=st.integers(min_value=-1000, max_value=1000))
def test_empty_range_always_rejected(n, point):
    with pytest.raises(RangeOutOfBounds):
        validate_range(point, point, n)


@given(n=counts, position=st.one_of(st.none(), st.integers(min_value=-1000, max_value=1000)))
def test_insert_position_always_within_bounds(n, position):
    clamped = clamp_insert_position(position, n)
    assert 0 <= clamped <= n
    if position is None:
        assert clamped == n
    elif 0 <= position <= n:
        assert clamped == position
