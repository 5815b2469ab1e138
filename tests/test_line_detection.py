import math

import numpy as np
import pytest

from horizon_tracker import HorizonTracker, TrackedState
from line_detection import (
    LineExtractor,
    LoopControl,
    cluster_lines,
    draw_horizon,
    draw_horizon_line,
    line_endpoints,
    make_pipeline,
    process_stream,
)
from pipeline import HorizonDefaults, preprocess_frame, resolve_horizon_params

HORIZONTAL = np.pi / 2
RED = [0, 0, 255]


# ---------- clustering ----------

def test_cluster_lines_groups_close_offsets():
    lines = [[50, HORIZONTAL], [52, HORIZONTAL], [51, HORIZONTAL], [200, HORIZONTAL]]

    clusters = cluster_lines(lines, distance=30)

    assert len(clusters) == 2
    assert clusters[0].offset == pytest.approx(51.0)
    assert clusters[0].support == 3
    assert clusters[1].offset == pytest.approx(200.0)
    assert clusters[1].support == 1


def test_cluster_lines_is_transitive():
    clusters = cluster_lines([[0, 1.5], [25, 1.5], [50, 1.5]], distance=30)
    assert len(clusters) == 1
    assert clusters[0].support == 3


def test_cluster_lines_gap_equal_to_distance_splits():
    clusters = cluster_lines([[100, 1.5], [130, 1.5]], distance=30)
    assert [c.support for c in clusters] == [1, 1]


def test_cluster_lines_averages_angle_and_ignores_it_for_grouping():
    clusters = cluster_lines([[110, 1.6], [100, 1.5]], distance=30)
    assert len(clusters) == 1
    assert clusters[0].offset == pytest.approx(105.0)
    assert clusters[0].angle == pytest.approx(1.55)


def test_cluster_lines_empty():
    assert cluster_lines(np.empty((0, 2))) == []


def test_clusters_are_ordered_by_offset():
    clusters = cluster_lines([[300, 1.5], [10, 1.5], [150, 1.5]], distance=30)
    assert [c.offset for c in clusters] == [10.0, 150.0, 300.0]
    assert all(c.support >= 1 for c in clusters)


# ---------- projection & drawing ----------

def test_endpoints_of_horizontal_line():
    p1, p2 = line_endpoints(TrackedState(100.0, HORIZONTAL), 640)
    assert p1 == (0, 100)
    assert p2 == (640, 100)


def test_endpoints_of_tilted_line():
    theta = HORIZONTAL + 0.05
    p1, p2 = line_endpoints(TrackedState(100.0, theta), 400)
    assert p1 == (0, round(100.0 / math.sin(theta)))
    assert p2 == (400, round((100.0 - 400 * math.cos(theta)) / math.sin(theta)))


@pytest.mark.parametrize("angle", [0.0, math.pi, -0.1])
def test_endpoints_guard_degenerate_angles(angle):
    p1, p2 = line_endpoints(TrackedState(50.0, angle), 320)
    assert isinstance(p1[1], int)
    assert isinstance(p2[1], int)


def test_draw_horizon_line_copies_frame():
    frame = np.zeros((100, 200, 3), dtype=np.uint8)
    out = draw_horizon_line(frame, TrackedState(50.0, HORIZONTAL))
    assert out[50, 100].tolist() == RED
    assert not frame.any()


def test_draw_horizon_without_state_is_plain_copy():
    frame = np.full((20, 30, 3), 7, dtype=np.uint8)
    out = draw_horizon(frame, None)
    assert np.array_equal(out, frame)
    assert out is not frame


# ---------- strategy / pipeline ----------

def test_line_extractor_finds_flat_horizon(make_horizon_frame):
    params = HorizonDefaults()
    gray, threshold = preprocess_frame(make_horizon_frame(), params)

    candidates = LineExtractor(params).extract(gray, threshold)

    assert len(candidates) == 1
    assert abs(candidates[0].offset - 60) <= 1
    assert candidates[0].angle == pytest.approx(HORIZONTAL, abs=1e-3)
    assert candidates[0].support >= 1


def test_make_pipeline_modes():
    params = resolve_horizon_params({"history_size": 7})
    pipeline = make_pipeline("line", params)
    assert isinstance(pipeline.tracker, HorizonTracker)
    assert pipeline.tracker.history_size == 7

    with pytest.raises(ValueError):
        make_pipeline("stereo")


def test_end_to_end_flat_horizon(make_horizon_frame):
    pipeline = make_pipeline("line")
    frames = [make_horizon_frame(), make_horizon_frame()]

    for frame in frames:
        result = pipeline.process_frame(frame)

        assert result.updated
        assert abs(result.state.offset - 60) <= 1
        p1, p2 = line_endpoints(result.state, frame.shape[1])
        assert abs(p1[1] - 60) <= 1
        assert abs(p2[1] - 60) <= 1
        assert result.frame[p1[1], frame.shape[1] // 2].tolist() == RED
        # input is left untouched
        assert frame[p1[1], frame.shape[1] // 2].tolist() != RED

    assert len(pipeline.tracker.history) == 2
    assert pipeline.tracker.is_cold_start


def test_frame_without_detection_keeps_state(make_horizon_frame):
    pipeline = make_pipeline("line")
    first = pipeline.process_frame(make_horizon_frame())

    blank = np.full((240, 320, 3), 128, dtype=np.uint8)
    second = pipeline.process_frame(blank)

    assert not second.updated
    assert second.candidates == []
    assert second.state == first.state
    y = line_endpoints(second.state, 320)[0][1]
    assert second.frame[y, 160].tolist() == RED


def test_empty_frame_is_rejected():
    with pytest.raises(ValueError):
        make_pipeline("line").process_frame(np.zeros((0, 0, 3), dtype=np.uint8))


def test_independent_pipelines_do_not_share_state(make_horizon_frame):
    a = make_pipeline("line")
    b = make_pipeline("line")
    a.process_frame(make_horizon_frame())
    assert a.tracker.state is not None
    assert b.tracker.state is None


# ---------- stream loop ----------

def test_process_stream_renders_every_frame(make_horizon_frame):
    rendered = []
    count = process_stream([make_horizon_frame() for _ in range(3)], make_pipeline("line"), rendered.append)
    assert count == 3
    assert len(rendered) == 3


def test_process_stream_stops_at_frame_boundary(make_horizon_frame):
    rendered = []
    control = LoopControl()

    def stop_after_first(ctrl):
        ctrl.request_stop()

    count = process_stream(
        [make_horizon_frame() for _ in range(5)],
        make_pipeline("line"),
        rendered.append,
        control=control,
        wait=stop_after_first,
    )
    assert count == 1
    assert len(rendered) == 1


def test_process_stream_with_stop_already_requested(make_horizon_frame):
    control = LoopControl(stop=True)
    assert process_stream([make_horizon_frame()], make_pipeline("line"), lambda f: None, control=control) == 0


def test_delay_toggle_does_not_change_tracking(make_horizon_frame):
    frames = [make_horizon_frame() for _ in range(3)]

    plain = make_pipeline("line")
    process_stream(frames, plain, lambda f: None)

    toggled = make_pipeline("line")
    process_stream(frames, toggled, lambda f: None, wait=lambda ctrl: ctrl.toggle_delay())

    assert plain.tracker.state == toggled.tracker.state


def test_loop_control_toggle():
    control = LoopControl()
    assert control.toggle_delay() is True
    assert control.toggle_delay() is False


def test_draw_horizon_line_on_grayscale_frame():
    frame = np.full((100, 200), 30, dtype=np.uint8)
    out = draw_horizon_line(frame, TrackedState(50.0, HORIZONTAL))
    assert out.shape == (100, 200, 3)
    assert out[50, 100].tolist() == RED
    assert out[10, 100].tolist() == [30, 30, 30]
    assert frame.ndim == 2


def test_grayscale_frames_render_in_color(make_horizon_frame):
    gray = make_horizon_frame()[:, :, 0].copy()
    result = make_pipeline("line").process_frame(gray)
    y = line_endpoints(result.state, gray.shape[1])[0][1]
    assert result.frame.shape == gray.shape + (3,)
    assert result.frame[y, 160].tolist() == RED


def test_stop_does_not_pull_another_frame(make_horizon_frame):
    pulled = []

    def frames():
        for i in range(5):
            pulled.append(i)
            yield make_horizon_frame()

    count = process_stream(
        frames(),
        make_pipeline("line"),
        lambda f: None,
        wait=lambda ctrl: ctrl.request_stop(),
    )
    assert count == 1
    assert pulled == [0]
