import pytest

from plotbatch.memory import GIB, DeviceMemInfo, InsufficientVramError
from plotbatch.peaks import (
    streaming_minimal_peak_bytes,
    streaming_peak_bytes,
    streaming_plain_peak_bytes,
)
from plotbatch.tiers import (
    STREAMING_MARGIN_BYTES,
    StreamingTier,
    pinned_capacity,
    select_streaming_tier,
)


def _mem(free):
    return DeviceMemInfo(free_bytes=free, total_bytes=free)


def test_pinned_capacity_k28():
    assert pinned_capacity(28) == (1 << 28) + (1 << 22)


@pytest.mark.parametrize("k", [18, 20, 24, 27, 28, 29, 30, 32])
def test_pinned_capacity_exceeds_plot_size(k):
    assert pinned_capacity(k) > 1 << k


@pytest.mark.parametrize("k", [18, 22, 26, 28, 30])
def test_pinned_capacity_grows_with_k(k):
    assert pinned_capacity(k + 1) > pinned_capacity(k)


def test_auto_picks_plain_with_plenty_of_memory():
    choice = select_streaming_tier(28, _mem(64 * GIB))
    assert choice.tier is StreamingTier.PLAIN
    assert choice.plain_mode is True
    assert choice.required_bytes == streaming_plain_peak_bytes(28)


def test_auto_picks_compact_at_its_threshold():
    free = streaming_peak_bytes(28) + STREAMING_MARGIN_BYTES
    choice = select_streaming_tier(28, _mem(free))
    assert choice.tier is StreamingTier.COMPACT
    assert choice.plain_mode is False
    assert choice.t2_tile_count == 2
    assert choice.gather_tile_count == 1


def test_auto_picks_plain_exactly_at_threshold():
    free = streaming_plain_peak_bytes(28) + STREAMING_MARGIN_BYTES
    choice = select_streaming_tier(28, _mem(free))
    assert choice.tier is StreamingTier.PLAIN


def test_auto_picks_minimal_below_compact():
    free = streaming_peak_bytes(28) + STREAMING_MARGIN_BYTES - 1
    choice = select_streaming_tier(28, _mem(free))
    assert choice.tier is StreamingTier.MINIMAL
    assert choice.t2_tile_count == 8
    assert choice.gather_tile_count == 4
    assert choice.forced_below_floor is False


def test_minimal_too_small_raises():
    free = streaming_minimal_peak_bytes(28) + STREAMING_MARGIN_BYTES - 1
    with pytest.raises(InsufficientVramError) as info:
        select_streaming_tier(28, _mem(free))
    err = info.value
    assert err.required_bytes == streaming_minimal_peak_bytes(28) + STREAMING_MARGIN_BYTES
    assert err.free_bytes == free
    assert "minimal tier" in str(err)


def test_forced_minimal_too_small_raises():
    with pytest.raises(InsufficientVramError):
        select_streaming_tier(28, _mem(0), preference="minimal")


def test_forced_plain_below_floor_warns_and_proceeds(capsys):
    choice = select_streaming_tier(28, _mem(GIB), preference="plain")
    assert choice.tier is StreamingTier.PLAIN
    assert choice.forced_below_floor is True
    assert "may OOM mid-plot" in capsys.readouterr().err


def test_forced_compact_uses_compact_peak():
    choice = select_streaming_tier(28, _mem(64 * GIB), preference="compact")
    assert choice.tier is StreamingTier.COMPACT
    assert choice.required_bytes == streaming_peak_bytes(28)


def test_enum_preference_accepted():
    choice = select_streaming_tier(28, _mem(64 * GIB), preference=StreamingTier.MINIMAL)
    assert choice.tier is StreamingTier.MINIMAL


@pytest.mark.parametrize("preference", [None, "", "bogus", "PLAIN"])
def test_unknown_preference_falls_back_to_auto(preference):
    choice = select_streaming_tier(28, _mem(64 * GIB), preference=preference)
    assert choice.tier is StreamingTier.PLAIN


def test_adjustment_raises_thresholds():
    free = streaming_plain_peak_bytes(28) + STREAMING_MARGIN_BYTES
    assert select_streaming_tier(28, _mem(free)).tier is StreamingTier.PLAIN
    choice = select_streaming_tier(28, _mem(free), adjustment=1)
    assert choice.tier is StreamingTier.COMPACT
    assert choice.required_bytes == streaming_peak_bytes(28, 1)


def test_plain_floor_reported():
    choice = select_streaming_tier(26, _mem(64 * GIB))
    assert choice.plain_floor_bytes == streaming_plain_peak_bytes(26) + STREAMING_MARGIN_BYTES
    assert choice.free_bytes == 64 * GIB


@pytest.mark.parametrize("name", ["plain", "compact", "minimal"])
def test_string_preference_selects_tier_of_that_name(name):
    choice = select_streaming_tier(28, _mem(64 * GIB), preference=name)
    assert choice.tier.value == name
    assert choice.tier is StreamingTier(name)