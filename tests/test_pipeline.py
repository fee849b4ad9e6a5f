import pytest

from conftest import CLOSED_H, FRAME_MS, OPEN_H, SCREEN, build_sample, run_frames

from GazeBlinkTracker.control.events import (
    CalibrationProgress,
    CalibrationResult,
    ClickEvent,
    TrackerOutput,
)
from GazeBlinkTracker.tracking.calibration import AffineMapping
from GazeBlinkTracker.tracking.landmarks import LandmarkSample
from GazeBlinkTracker.tracking.pipeline import GazeTracker


def _blink(tracker, t_close, duration, closed_step=FRAME_MS):
    """Close the eye at t_close, reopen at t_close + duration; returns outputs."""
    outs = []
    t = t_close
    while t < t_close + duration:
        outs.append(tracker.process(build_sample(t, eye_h=CLOSED_H)))
        t += closed_step
    outs.append(tracker.process(build_sample(t_close + duration, eye_h=OPEN_H)))
    return outs


def _clicks(outs):
    return [o.click for o in outs if o.click is not None]


def test_first_frame_reports_screen_center_uncalibrated(tracker, make_sample):
    out = tracker.process(make_sample(0.0))
    assert isinstance(out, TrackerOutput)
    assert (out.x, out.y) == pytest.approx((960.0, 540.0))
    assert out.calibrated is False
    assert out.click is None


def test_no_blink_classification_during_warmup(tracker):
    _, outs = run_frames(tracker, 0.0, 1000.0)
    outs += _blink(tracker, 1000.0, 150.0)
    assert tracker.ear_baseline == 0.0
    assert _clicks(outs) == []
    assert not tracker.blink.is_closed


def test_blink_of_150ms_with_stable_buffer_clicks_once(warmed_tracker):
    before = warmed_tracker.position
    outs = _blink(warmed_tracker, 3000.0, 150.0)
    _, tail = run_frames(warmed_tracker, 3200.0, 4000.0)
    clicks = _clicks(outs + tail)
    assert len(clicks) == 1
    assert clicks[0].timestamp_ms == 3150.0
    assert (clicks[0].x, clicks[0].y) == (round(before[0]), round(before[1]))
    assert outs[-1].click == clicks[0]


@pytest.mark.parametrize("duration", [30.0, 800.0])
def test_blinks_outside_duration_bounds_never_click(warmed_tracker, duration):
    outs = _blink(warmed_tracker, 3000.0, duration, closed_step=10.0)
    assert _clicks(outs) == []


def test_position_is_frozen_while_eye_closed(warmed_tracker):
    # drift the gaze so the pre-closure position is not trivially the center
    _, outs = run_frames(warmed_tracker, 3000.0, 3300.0, iris=(0.432, 0.401))
    last = outs[-1]
    closed = []
    t = 3300.0
    for i in range(10):
        # iris jumps around under the lid; none of it may leak into the output
        closed.append(warmed_tracker.process(build_sample(t, eye_h=CLOSED_H, iris=(0.40 + 0.01 * i, 0.45))))
        t += FRAME_MS
    assert warmed_tracker.blink.is_closed
    for out in closed:
        assert (out.x, out.y) == (last.x, last.y)
    assert len(warmed_tracker.stabilizer.buffer) == 11


def test_click_clears_buffer_and_freezes_briefly(warmed_tracker):
    outs = _blink(warmed_tracker, 3000.0, 150.0)
    assert outs[-1].click is not None
    frozen_at = (outs[-1].x, outs[-1].y)
    assert len(warmed_tracker.stabilizer.buffer) == 1
    _, during = run_frames(warmed_tracker, 3180.0, 3420.0, iris=(0.45, 0.41))
    assert all((o.x, o.y) == frozen_at for o in during)
    _, after = run_frames(warmed_tracker, 3450.0, 3600.0, iris=(0.45, 0.41))
    assert (after[-1].x, after[-1].y) != frozen_at


def test_clicks_respect_cooldown_under_rapid_blinking(warmed_tracker):
    outs = []
    t = 3000.0
    for _ in range(20):
        outs += _blink(warmed_tracker, t, 90.0, closed_step=30.0)
        t += 90.0
        _, o = run_frames(warmed_tracker, t + 30.0, t + 200.0, step=30.0)
        outs += o
        t += 210.0
    stamps = [c.timestamp_ms for c in _clicks(outs)]
    assert len(stamps) >= 2
    assert all(b - a >= 600.0 for a, b in zip(stamps, stamps[1:]))


def test_blink_while_gaze_moving_is_not_a_click(warmed_tracker):
    t = 3000.0
    for i in range(11):
        # cycle the iris across the socket so candidates scatter widely
        iris = (0.43 + 0.02 * ((i % 4) - 1.5), 0.40)
        warmed_tracker.process(build_sample(t, iris=iris))
        t += FRAME_MS
    assert warmed_tracker.stabilizer.mad() > 12.0
    outs = _blink(warmed_tracker, t, 150.0)
    assert _clicks(outs) == []


def test_non_monotonic_timestamps_are_bumped(tracker, make_sample):
    a = tracker.process(make_sample(100.0))
    b = tracker.process(make_sample(100.0))
    c = tracker.process(make_sample(50.0))
    d = tracker.process(make_sample(5.0), timestamp=400.0)
    assert [a.timestamp_ms, b.timestamp_ms, c.timestamp_ms, d.timestamp_ms] == [100.0, 101.0, 102.0, 400.0]


def test_degenerate_samples_never_raise(tracker):
    t = 0.0
    for _ in range(100):
        out = tracker.process(LandmarkSample(points={}, timestamp_ms=t))
        t += FRAME_MS
    assert (out.x, out.y) == pytest.approx((960.0, 540.0))
    assert tracker.ear_baseline == 0.0
    assert out.click is None


def test_apply_calibration_switches_to_absolute_mapping(tracker, make_sample):
    # iris center is (u + 0.05, v) with the default right-eye offset
    mapping = AffineMapping(ax=10000.0, bx=0.0, cx=-3600.0, ay=0.0, by=10000.0, cy=-3300.0)
    tracker.apply_calibration(mapping)
    assert tracker.calibrated
    out = None
    t = 0.0
    for _ in range(30):
        out = tracker.process(make_sample(t, iris=(0.43, 0.40)))
        t += FRAME_MS
    assert out.calibrated
    assert (out.x, out.y) == pytest.approx(mapping.map(0.48, 0.40))


def test_resize_reclamps_without_losing_calibration(tracker, make_sample):
    mapping = AffineMapping(ax=0.0, bx=0.0, cx=1800.0, ay=0.0, by=0.0, cy=1000.0)
    tracker.apply_calibration(mapping)
    t = 0.0
    for _ in range(30):
        tracker.process(make_sample(t))
        t += FRAME_MS
    assert tracker.position == pytest.approx((1800.0, 1000.0))
    tracker.resize(1280, 720)
    assert tracker.position == (1280.0, 720.0)
    assert all(p[0] <= 1280.0 and p[1] <= 720.0 for p in tracker.stabilizer.buffer)
    assert tracker.calibrated
    out = tracker.process(make_sample(t))
    assert 0.0 <= out.x <= 1280.0 and 0.0 <= out.y <= 720.0


def _calibration_iris(t, t0, tracker):
    """Iris position a user fixating the active dot would produce."""
    cfg = tracker.calibrator.config
    rel = t - t0 - cfg.lead_in_ms
    if rel >= 0:
        i = int(rel // (cfg.dwell_ms + cfg.pause_ms))
        if i < len(cfg.points) and rel - i * (cfg.dwell_ms + cfg.pause_ms) < cfg.dwell_ms:
            fx, fy = cfg.points[i]
            return (0.40 + 0.06 * fx, 0.38 + 0.04 * fy)
    return (0.43, 0.40)


def test_end_to_end_guided_calibration(tracker):
    events = []
    tracker.add_listener(events.append)
    tracker.start_calibration()
    t0 = 0.0
    t = t0
    outs = []
    while t < 12000.0:
        outs.append(tracker.process(build_sample(t, iris=_calibration_iris(t, t0, tracker))))
        t += 30.0

    progress = [e for e in events if isinstance(e, CalibrationProgress)]
    assert [p.point_index for p in progress] == list(range(9))
    results = [e for e in events if isinstance(e, CalibrationResult)]
    assert len(results) == 1 and results[0].success
    assert tracker.calibrated
    assert outs[-1].calibrated
    assert not outs[0].calibrated
    assert sum(len(o.calibration_events) for o in outs) == 10

    centre_iris = (0.40 + 0.06 * 0.5, 0.38 + 0.04 * 0.5)
    for _ in range(40):
        out = tracker.process(build_sample(t, iris=centre_iris))
        t += 30.0
    assert (out.x, out.y) == pytest.approx((960.0, 540.0), abs=1e-3)


def test_abort_calibration_falls_back(tracker):
    tracker.start_calibration()
    run_frames(tracker, 0.0, 3000.0)
    tracker.abort_calibration()
    run_frames(tracker, 3000.0, 14000.0)
    assert not tracker.calibrated
    assert not tracker.calibrator.running


def test_listeners_receive_outputs_and_clicks(warmed_tracker):
    got = []

    def broken(_event):
        raise RuntimeError("listener bug")

    warmed_tracker.add_listener(broken)
    warmed_tracker.add_listener(got.append)
    outs = _blink(warmed_tracker, 3000.0, 150.0)
    assert len([e for e in got if isinstance(e, TrackerOutput)]) == len(outs)
    assert [e for e in got if isinstance(e, ClickEvent)] == [outs[-1].click]

    warmed_tracker.remove_listener(got.append)
    warmed_tracker.remove_listener(got.append)
    n = len(got)
    warmed_tracker.process(build_sample(4000.0))
    assert len(got) == n


def test_tracker_honours_settings(settings):
    settings.set("blink", "max_blink_ms", 100)
    tracker = GazeTracker(SCREEN, settings=settings)
    run_frames(tracker, 0.0, 2600.0)
    outs = _blink(tracker, 3000.0, 150.0)
    assert _clicks(outs) == []
    assert tracker.blink.config.max_blink_ms == 100.0


def test_non_finite_first_timestamp_does_not_disable_blinks(tracker):
    first = tracker.process(build_sample(float("nan")))
    assert first.timestamp_ms == 1.0
    run_frames(tracker, 0.0, 3000.0)
    assert tracker.ear_baseline == pytest.approx(0.30)


def test_non_finite_closing_timestamp_keeps_duration_filter(warmed_tracker):
    closing = warmed_tracker.process(build_sample(float("inf"), eye_h=CLOSED_H))
    assert closing.timestamp_ms == 2575.0
    assert warmed_tracker.blink.is_closed
    _, outs = run_frames(warmed_tracker, 2600.0, 3400.0, eye_h=CLOSED_H)
    outs.append(warmed_tracker.process(build_sample(3400.0)))
    assert _clicks(outs) == []


def test_calibration_survives_non_finite_timestamp(tracker):
    tracker.start_calibration()
    tracker.process(build_sample(float("nan")))
    run_frames(tracker, 0.0, 13000.0, step=30.0)
    assert not tracker.calibrator.running
