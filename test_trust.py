"""Unit tests for the trust layer."""

import pytest

from domain.errors import ConfigError
from domain.geometry import classify, parse_ratios
from domain.models import Rectangle, Offset
from trust.config import CropOptions, Mode, PreventChangeBias
from trust.trust_store import TrustStore, TrustedEntry, TrustedOffsetSet
from trust.candidate_buffer import CandidateBuffer
from trust.correction import find_correction, is_correctable
from realtime.stability import find_stable_entry
from realtime.sensitivity import SensitivityController, LimitDirection

SOURCE = Rectangle(1920, 1080, 0, 0)
RATIOS = parse_ratios("2.4 2.39 2.35 2.2 2 1.85 16/9 5/3 1.5 4/3 1.25 9/16")


def meta(w, h, x, y):
    return classify(Rectangle(w, h, x, y), SOURCE, RATIOS, 2)


def test_options_defaults():
    """Test default options and derived timers."""
    opts = CropOptions()
    assert opts.mode == Mode.DYNAMIC_AUTO
    assert opts.prevent_change_bias == PreventChangeBias.SMALLER
    assert opts.fallback_enabled
    assert opts.known_ratio_ms == 5000
    assert opts.fallback_ms == 20000
    assert opts.buffer_window_ms == 20000
    assert abs(opts.ratios[6] - 16 / 9) < 1e-9
    print("✓ Options defaults test passed")


def test_options_fallback_disabled():
    """Test fallback is disabled by 0 or by a timer shorter than the known ratio timer."""
    assert not CropOptions(new_fallback_timer=0).fallback_enabled
    assert not CropOptions(new_fallback_timer=3).fallback_enabled
    assert CropOptions(new_fallback_timer=0).buffer_window_ms == 5000


def test_options_from_script_opts():
    """Test player style option strings."""
    opts = CropOptions.from_script_opts("dynacrop-mode=2, ratios=2.4 16/9,prevent_change_timer=1.5")
    assert opts.mode == Mode.ONE_SHOT
    assert len(opts.ratios) == 2
    assert opts.prevent_change_ms == 1500
    assert CropOptions.from_script_opts("").mode == Mode.DYNAMIC_AUTO


def test_options_invalid():
    """Test invalid options raise ConfigError."""
    with pytest.raises(ConfigError):
        CropOptions(mode=7)
    with pytest.raises(ConfigError):
        CropOptions(correction=1.5)
    with pytest.raises(ConfigError):
        CropOptions(detect_round=0)
    with pytest.raises(ConfigError):
        CropOptions.from_dict({"colour": 1})
    with pytest.raises(ConfigError):
        CropOptions.from_dict({"mode": "auto"})
    with pytest.raises(ValueError):
        CropOptions.from_script_opts("mode")


def test_trusted_offsets():
    """Test offset tolerance and seeding."""
    offsets = TrustedOffsetSet(2, seed=Offset(0, 0))
    assert offsets.is_trusted(Offset(0, 0))
    assert offsets.is_trusted(Offset(-1, 2)), "Within tolerance"
    assert not offsets.is_trusted(Offset(0, -40))
    assert offsets.add(Offset(0, -40))
    assert offsets.is_trusted(Offset(1, -39))
    assert not offsets.add(Offset(1, -39)), "Already trusted"
    assert offsets.y == [0, -40]
    print("✓ Trusted offsets test passed")


def test_trust_store_seed_and_last_seen():
    """Test seeding and last_seen cycling."""
    store = TrustStore()
    source = store.seed(meta(1920, 1080, 0, 0))
    letterbox = store.add(TrustedEntry(meta(1920, 800, 0, 140)))
    assert len(store) == 2
    assert source.applied_count == 1

    store.cycle_last_seen(letterbox.key, 500)
    store.cycle_last_seen(letterbox.key, 500)
    assert letterbox.last_seen_time == 1000
    assert source.last_seen_time == -1000

    store.cycle_last_seen(source.key, 200)
    assert source.last_seen_time == 200, "Unseen time is dropped once current again"
    assert letterbox.last_seen_time == -200

    with pytest.raises(KeyError):
        store.add(TrustedEntry(meta(1920, 800, 0, 140)))


def test_buffer_segmentation():
    """Test dwell survives brief interruptions and expires with the window."""
    buffer = CandidateBuffer(window_ms=5000, known_window_ms=5000, segmentation=0.5)
    a = meta(1920, 700, 0, 190)  # not a known ratio
    b = meta(1920, 690, 0, 195)

    for m in (a, a, a, b, a, a):
        buffer.record(m, 1000, trusted=False)
    buffer.evict()
    assert buffer.get(a.key).buffered_dwell_time == 5000, "Interruption by b is tolerated"

    buffer.record(b, 1000, trusted=False)
    buffer.record(b, 1000, trusted=False)
    buffer.evict()
    assert buffer.total_time == 5000, "Window is 5s * 1.5"
    assert buffer.get(a.key).buffered_dwell_time == 2000, "Oldest run of a was evicted"
    assert buffer.get(b.key).buffered_dwell_time == 3000
    print("✓ Buffer segmentation test passed")


def test_buffer_drops_stale_candidates():
    """Test a candidate is dropped once its dwell falls to zero."""
    buffer = CandidateBuffer(window_ms=2000, known_window_ms=2000, segmentation=0)
    old = meta(1920, 700, 0, 190)
    new = meta(1920, 690, 0, 195)
    buffer.record(old, 1000, trusted=False)
    for _ in range(2):
        buffer.record(new, 1000, trusted=False)
    dropped = buffer.evict()
    assert dropped == 1
    assert old.key not in buffer
    assert buffer.get(new.key).buffered_dwell_time == 2000


def test_buffer_proactive_eviction():
    """Test many unique candidates are purged early."""
    buffer = CandidateBuffer(window_ms=20000, known_window_ms=5000, segmentation=0.5)
    metas = [meta(1920, 600 + i, 0, 200) for i in range(10)]
    for m in metas:
        buffer.record(m, 100, trusted=False)
    buffer.evict()
    assert len(buffer) == 1, "Only the latest noise candidate is kept"
    assert metas[-1].key in buffer


def test_buffer_known_window():
    """Test known-ratio dwell is bounded by the known window."""
    buffer = CandidateBuffer(window_ms=20000, known_window_ms=5000, segmentation=0.5)
    letterbox = meta(1920, 800, 0, 140)
    for _ in range(10):
        buffer.record(letterbox, 1000, trusted=False)
        buffer.evict()
        entry = buffer.get(letterbox.key)
        assert entry.known_dwell_time <= 7500
    assert entry.buffered_dwell_time == 10000
    assert entry.known_dwell_time == 2000, "New run started after the first one was popped"
    assert buffer.known_time == 2000
    assert buffer.ledger_size == 2


def test_buffer_trusted_not_owned():
    """Test trusted observations use window time but own no entry."""
    buffer = CandidateBuffer(window_ms=5000, known_window_ms=5000, segmentation=0.5)
    source = meta(1920, 1080, 0, 0)
    assert buffer.record(source, 1000, trusted=True) is None
    assert source.key not in buffer
    assert buffer.total_time == 1000

    letterbox = meta(1920, 800, 0, 140)
    entry = buffer.record(letterbox, 1000, trusted=False)
    assert buffer.take(letterbox.key) is entry
    assert letterbox.key not in buffer
    buffer.clear()
    assert buffer.total_time == 0 and buffer.ledger_size == 0


def test_correction_closest_trusted():
    """Test a noisy candidate maps to the trusted rectangle sharing its margins."""
    store = TrustStore()
    store.seed(meta(1920, 1080, 0, 0))
    letterbox = store.add(TrustedEntry(meta(1920, 800, 0, 140)))

    noisy = meta(1918, 798, 0, 140)
    assert is_correctable(noisy, SOURCE, 0.6)
    assert find_correction(noisy, store, 2, applied_key=SOURCE) is letterbox
    assert find_correction(noisy, store, 2, applied_key=letterbox.key) is None, "Already applied"

    centered = meta(1918, 798, 1, 141)
    assert find_correction(centered, store, 2, applied_key=SOURCE) is letterbox, "All margins within tolerance"
    print("✓ Correction test passed")


def test_correction_in_between():
    """Test a candidate halfway between two trusted rectangles is left alone."""
    store = TrustStore()
    store.add(TrustedEntry(meta(1920, 816, 0, 132)))
    store.add(TrustedEntry(meta(1920, 784, 0, 148)))
    candidate = meta(1920, 800, 0, 140)
    assert find_correction(candidate, store, 2) is None


def test_correction_small_candidate():
    """Test small candidates are never corrected."""
    assert not is_correctable(meta(1000, 800, 460, 140), SOURCE, 0.6)
    assert not is_correctable(meta(1920, 800, 0, 140), SOURCE, 1)
    assert not is_correctable(meta(-1, 800, 0, 140), SOURCE, 0.6)


def test_stability_prefers_longer_history():
    """Test near-identical trusted rectangles collapse to the better observed one."""
    store = TrustStore()
    store.seed(meta(1920, 1080, 0, 0))
    main = store.add(TrustedEntry(meta(1920, 800, 0, 140), total_dwell_time=20000))
    odd = store.add(TrustedEntry(meta(1920, 802, 0, 139), total_dwell_time=2000))
    far = store.add(TrustedEntry(meta(1920, 816, 0, 132), total_dwell_time=90000))

    assert find_stable_entry(odd, store, detect_round=2) is main
    assert find_stable_entry(main, store, detect_round=2) is None, "Main is already the best"
    assert find_stable_entry(far, store, detect_round=2) is None
    assert find_stable_entry(odd, store, detect_round=16) is None, "Coarse rounding skips stabilization"

    odd.total_dwell_time = 19000
    assert find_stable_entry(odd, store, detect_round=2) is None, "Advantage below 10%"


def test_sensitivity_controller():
    """Test threshold ramps."""
    controller = SensitivityController(maximum=24)
    source = meta(1920, 1080, 0, 0)
    letterbox = meta(1920, 800, 0, 140)

    assert controller.adjust(letterbox, letterbox, None), "First non-source sample lowers"
    assert controller.current == 23 and controller.direction == LimitDirection.DOWN
    assert not controller.adjust(letterbox, letterbox, letterbox), "Stable sample holds"
    assert controller.direction == LimitDirection.HOLD
    assert controller.adjust(source, source, letterbox)
    assert controller.current == 22, "Change to source is still a change"
    assert controller.adjust(source, source, source)
    assert controller.current == 24 and controller.raised
    assert not controller.adjust(source, source, source), "Capped at the maximum"

    controller.current = 0
    assert not controller.adjust(letterbox, letterbox, source), "Floor at zero"
    assert controller.current == 0


def test_sensitivity_return_to_source():
    """Test the first source sample after a crop steps down, then stable source ramps up."""
    controller = SensitivityController(maximum=24)
    source = meta(1920, 1080, 0, 0)
    letterbox = meta(1920, 800, 0, 140)
    controller.current = 23

    steps = []
    last = letterbox
    for _ in range(3):
        controller.adjust(source, source, last)
        steps.append((controller.current, controller.direction))
        last = source
    assert steps == [(22, LimitDirection.DOWN), (24, LimitDirection.UP), (24, LimitDirection.UP)]


def run_all_tests():
    """Run all tests."""
    print("Running trust layer tests...\n")

    try:
        test_options_defaults()
        test_trusted_offsets()
        test_buffer_segmentation()
        test_correction_closest_trusted()
        test_stability_prefers_longer_history()
        test_sensitivity_controller()

        print("\n✅ All tests passed!")
        return True
    except AssertionError as e:
        print(f"\n❌ Test failed: {e}")
        return False


if __name__ == "__main__":
    run_all_tests()
