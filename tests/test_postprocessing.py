from __future__ import annotations

import numpy as np
import pytest

from birefnet_onnx.errors import UnsupportedOutputShapeError
from birefnet_onnx.postprocessing import (
    apply_threshold,
    clamp01_inplace,
    extract_first_channel,
    postprocess_output,
    resize,
    sigmoid_inplace,
    smooth_mask,
    threshold_to_byte,
    to_bytes,
)


class TestExtractFirstChannel:
    def test_rank4_takes_first_channel_of_first_item(self: TestExtractFirstChannel) -> None:
        output = np.arange(2 * 3 * 4 * 5, dtype=np.float32).reshape(2, 3, 4, 5)

        prob, width, height = extract_first_channel(output)

        assert (width, height) == (5, 4)
        np.testing.assert_array_equal(prob, output[0, 0])

    def test_rank3(self: TestExtractFirstChannel) -> None:
        output = np.ones((1, 3, 7), dtype=np.float32)

        prob, width, height = extract_first_channel(output)

        assert prob.shape == (3, 7)
        assert (width, height) == (7, 3)

    def test_rank2_non_square(self: TestExtractFirstChannel) -> None:
        output = np.zeros((2, 9), dtype=np.float32)

        prob, width, height = extract_first_channel(output)

        assert (width, height) == (9, 2)

    def test_returns_independent_copy(self: TestExtractFirstChannel) -> None:
        output = np.zeros((1, 1, 2, 2), dtype=np.float32)

        prob, _, _ = extract_first_channel(output)
        prob[:] = 5.0

        assert output.max() == 0.0

    @pytest.mark.parametrize("shape", [(4,), (1, 1, 1, 2, 2)])
    def test_unsupported_rank(self: TestExtractFirstChannel, shape: tuple[int, ...]) -> None:
        with pytest.raises(UnsupportedOutputShapeError) as exc_info:
            extract_first_channel(np.zeros(shape, dtype=np.float32))

        assert exc_info.value.shape == shape
        assert "Unexpected output shape" in str(exc_info.value)


class TestActivation:
    def test_sigmoid_of_zero_is_half(self: TestActivation) -> None:
        buf = np.zeros(4, dtype=np.float32)

        sigmoid_inplace(buf)

        np.testing.assert_array_equal(buf, np.full(4, 0.5, dtype=np.float32))

    def test_sigmoid_range_open_interval(self: TestActivation) -> None:
        buf = np.linspace(-10.0, 10.0, 101, dtype=np.float32)

        sigmoid_inplace(buf)

        assert np.all(buf > 0.0)
        assert np.all(buf < 1.0)
        assert np.all(np.diff(buf) > 0)

    def test_sigmoid_is_in_place(self: TestActivation) -> None:
        buf = np.array([1.0, -1.0], dtype=np.float32)

        result = sigmoid_inplace(buf)

        assert result is buf
        assert buf[0] == pytest.approx(1.0 / (1.0 + np.exp(-1.0)), rel=1e-6)

    def test_sigmoid_large_logits_do_not_warn(self: TestActivation) -> None:
        # float32 saturates: exp(-1000) underflows to 0 and exp(1000) overflows
        # to inf, so the outputs land exactly on the bounds rather than inside.
        buf = np.array([-1000.0, 1000.0], dtype=np.float32)

        with np.errstate(all="raise"):
            sigmoid_inplace(buf)

        np.testing.assert_array_equal(buf, [0.0, 1.0])

    def test_clamp01_bounds_and_idempotent(self: TestActivation) -> None:
        buf = np.array([-3.0, -0.0, 0.25, 1.0, 7.5], dtype=np.float32)

        clamp01_inplace(buf)
        once = buf.copy()
        clamp01_inplace(buf)

        assert buf.min() >= 0.0 and buf.max() <= 1.0
        np.testing.assert_array_equal(buf, once)
        np.testing.assert_array_equal(once, [0.0, 0.0, 0.25, 1.0, 1.0])


class TestScaling:
    def test_to_bytes_rounds_half_up(self: TestScaling) -> None:
        values = np.array([0.0, 0.5, 1.0, 0.002, 0.998], dtype=np.float32)

        np.testing.assert_array_equal(to_bytes(values), [0, 128, 255, 1, 254])

    def test_to_bytes_clamps_out_of_range(self: TestScaling) -> None:
        values = np.array([-0.5, 1.5], dtype=np.float32)

        result = to_bytes(values)

        assert result.dtype == np.uint8
        np.testing.assert_array_equal(result, [0, 255])

    @pytest.mark.parametrize(
        ("threshold", "expected"),
        [(1.0, 255), (0.5, 128), (0.1, 26), (0.01, 3), (0.001, 1)],
    )
    def test_threshold_to_byte(self: TestScaling, threshold: float, expected: int) -> None:
        assert threshold_to_byte(threshold) == expected

    @pytest.mark.parametrize("threshold", [0.0, -0.2, 1.01])
    def test_threshold_out_of_range(self: TestScaling, threshold: float) -> None:
        with pytest.raises(ValueError):
            threshold_to_byte(threshold)


class TestResize:
    def test_same_size_returns_input(self: TestResize) -> None:
        src = np.random.default_rng(1).random((3, 4)).astype(np.float32)

        result = resize(src, 4, 3, 4, 3)

        assert result is src

    def test_bilinear_upsample_with_edge_clamp(self: TestResize) -> None:
        src = np.array([[0.0, 1.0], [2.0, 3.0]], dtype=np.float32)

        result = resize(src, 2, 2, 4, 4)

        expected = np.array(
            [
                [0.0, 0.5, 1.0, 1.0],
                [1.0, 1.5, 2.0, 2.0],
                [2.0, 2.5, 3.0, 3.0],
                [2.0, 2.5, 3.0, 3.0],
            ],
            dtype=np.float32,
        )
        np.testing.assert_allclose(result, expected)

    def test_downsample_picks_aligned_samples(self: TestResize) -> None:
        src = np.arange(16, dtype=np.float32).reshape(4, 4)

        result = resize(src, 4, 4, 2, 2)

        np.testing.assert_allclose(result, [[0.0, 2.0], [8.0, 10.0]])

    def test_non_square_target(self: TestResize) -> None:
        src = np.full((2, 2), 0.25, dtype=np.float32)

        result = resize(src, 2, 2, 5, 3)

        assert result.shape == (3, 5)
        np.testing.assert_allclose(result, 0.25)

    def test_accepts_flat_buffer(self: TestResize) -> None:
        src = np.array([0.0, 1.0, 2.0, 3.0], dtype=np.float32)

        result = resize(src, 2, 2, 1, 1)

        assert result.shape == (1, 1)
        assert result[0, 0] == 0.0


class TestPostprocessOutput:
    def test_zero_logits_upsample_to_128(self: TestPostprocessOutput) -> None:
        mask = postprocess_output(np.zeros((2, 2), dtype=np.float32), 2, 2, 100, 100)

        assert mask.shape == (100, 100)
        assert mask.dtype == np.uint8
        assert np.all(mask == 128)

    def test_length_must_match_dimensions(self: TestPostprocessOutput) -> None:
        with pytest.raises(ValueError):
            postprocess_output(np.zeros(6, dtype=np.float32), 2, 2, 4, 4)

    def test_does_not_modify_input(self: TestPostprocessOutput) -> None:
        logits = np.full((2, 3), 4.0, dtype=np.float32)

        postprocess_output(logits, 3, 2, 3, 2)

        np.testing.assert_array_equal(logits, 4.0)


class TestMaskRefinement:
    def test_smooth_keeps_constant_mask(self: TestMaskRefinement) -> None:
        mask = np.full((20, 20), 128, dtype=np.uint8)

        np.testing.assert_array_equal(smooth_mask(mask, 2.0), mask)

    def test_smooth_softens_edges(self: TestMaskRefinement) -> None:
        mask = np.zeros((20, 20), dtype=np.uint8)
        mask[:, 10:] = 255

        smoothed = smooth_mask(mask, 2.0)

        assert 0 < smoothed[10, 9] < 255
        assert 0 < smoothed[10, 10] < 255
        assert smoothed[10, 0] == 0
        assert smoothed[10, 19] == 255

    def test_smooth_zero_sigma_copies(self: TestMaskRefinement) -> None:
        mask = np.arange(9, dtype=np.uint8).reshape(3, 3)

        result = smooth_mask(mask, 0)

        assert result is not mask
        np.testing.assert_array_equal(result, mask)

    def test_apply_threshold_binary(self: TestMaskRefinement) -> None:
        mask = np.array([[0, 127], [128, 255]], dtype=np.uint8)

        np.testing.assert_array_equal(apply_threshold(mask), [[0, 0], [255, 255]])
