# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from audio.errors import ConfigurationError
from audio.pcm import encode_pcm16le, float32_to_pcm16, pcm16_to_float32
from spec import PCM16_MAX, PCM16_MIN


def test_full_scale_maps_to_pcm16_bounds():
    out = float32_to_pcm16([1.0, -1.0, 0.0])

    assert out.dtype == np.int16
    assert out.tolist() == [PCM16_MAX, PCM16_MIN, 0]


def test_out_of_range_is_clamped():
    out = float32_to_pcm16([2.5, -3.0, np.inf, -np.inf])

    assert out.tolist() == [32767, -32768, 32767, -32768]


def test_nan_becomes_silence():
    assert float32_to_pcm16([np.nan]).tolist() == [0]


def test_asymmetric_scaling_rounds_to_nearest():
    out = float32_to_pcm16([0.5, -0.5])

    # 0.5 * 32767 = 16383.5 -> banker's rounding to 16384; -0.5 * 32768 exact
    assert out.tolist() == [16384, -16384]


def test_encode_is_two_bytes_per_sample_little_endian():
    payload = encode_pcm16le(np.array([1.0, -1.0], dtype=np.float32))

    assert payload == b"\xff\x7f\x00\x80"


def test_decode_inverts_full_scale_exactly():
    samples = pcm16_to_float32(b"\xff\x7f\x00\x80\x00\x00")

    assert samples.dtype == np.float32
    assert samples.tolist() == [1.0, -1.0, 0.0]


def test_decode_drops_trailing_odd_byte():
    assert len(pcm16_to_float32(b"\x00\x00\x01")) == 1


def test_decode_big_endian():
    assert pcm16_to_float32(b"\x7f\xff", byte_order="big").tolist() == [1.0]


def test_decode_rejects_unknown_byte_order():
    with pytest.raises(ConfigurationError):
        pcm16_to_float32(b"\x00\x00", byte_order="middle")


def test_round_trip_error_is_within_one_lsb():
    rng = np.random.default_rng(7)
    original = rng.uniform(-1.0, 1.0, 4096).astype(np.float32)

    restored = pcm16_to_float32(encode_pcm16le(original))

    assert np.max(np.abs(restored - original)) <= 1.0 / 32767
