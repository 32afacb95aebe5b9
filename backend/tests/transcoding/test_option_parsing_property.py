"""Property-based tests for transcoding option parsing.

**Feature: video-transcoder, Property 1: Option Validation**
"""

import pytest
from hypothesis import assume, given, settings, strategies as st

from transcoder.modules.transcoding.errors import InvalidRequest, InvalidTranscodingOption
from transcoder.modules.transcoding.models import (
    CODEC_CONTAINERS,
    MAX_DIMENSION,
    MIN_DIMENSION,
    RESOLUTION_DIMENSIONS,
    Resolution,
)
from transcoder.modules.transcoding.schemas import (
    parse_codec,
    parse_resolution,
    parse_transcoding_option,
)


even_dimension = st.integers(min_value=MIN_DIMENSION // 2, max_value=MAX_DIMENSION // 2).map(
    lambda n: n * 2
)
codec_strategy = st.sampled_from(sorted(CODEC_CONTAINERS))


class TestValidOptions:
    """Every whitelisted option parses to the requested dimensions and codec."""

    @given(width=even_dimension, height=even_dimension, codec=codec_strategy)
    @settings(max_examples=100)
    def test_dimensions_and_codec_round_trip(self, width: int, height: int, codec: str) -> None:
        """**Feature: video-transcoder, Property 1: Option Validation**

        For any even WxH within bounds and any allowed codec, parsing SHALL
        preserve the values and pick the codec's container.
        """
        option = parse_transcoding_option(f"{width}x{height}-{codec}")

        assert (option.width, option.height) == (width, height)
        assert option.codec == codec
        assert option.resolution == f"{width}x{height}"
        assert option.container == CODEC_CONTAINERS[codec]

    @given(preset=st.sampled_from(list(Resolution)), codec=codec_strategy)
    @settings(max_examples=50)
    def test_named_presets(self, preset: Resolution, codec: str) -> None:
        """**Feature: video-transcoder, Property 1: Option Validation**

        Named presets SHALL resolve to their fixed dimensions.
        """
        option = parse_transcoding_option(f"{preset.value}-{codec}")
        assert (option.width, option.height) == RESOLUTION_DIMENSIONS[preset]

    def test_vp9_keeps_its_hyphen(self) -> None:
        option = parse_transcoding_option("1920x1080-libvpx-vp9")
        assert option.codec == "libvpx-vp9"
        assert option.container == "webm"

    def test_vp8_uses_webm(self) -> None:
        assert parse_transcoding_option("1280x720-libvpx").container == "webm"

    def test_whitespace_and_case_are_normalized(self) -> None:
        option = parse_transcoding_option("  1280X720-LIBX264 ")
        assert option.resolution == "1280x720"
        assert option.codec == "libx264"


class TestRejectedOptions:
    """Anything outside the whitelist is refused before an encoder is spawned."""

    @pytest.mark.parametrize("option", [None, "", "   ", "1280x720", "1280x720-", "-libx264"])
    def test_missing_parts(self, option) -> None:
        with pytest.raises(InvalidTranscodingOption):
            parse_transcoding_option(option)

    def test_option_errors_are_invalid_requests(self) -> None:
        with pytest.raises(InvalidRequest):
            parse_transcoding_option("1280x720")

    @given(codec=st.text(min_size=1, max_size=20))
    @settings(max_examples=100)
    def test_unknown_codecs_are_rejected(self, codec: str) -> None:
        """**Feature: video-transcoder, Property 1: Option Validation**

        For any codec outside the whitelist, parsing SHALL fail.
        """
        assume(codec.strip().lower() not in CODEC_CONTAINERS)
        with pytest.raises(InvalidTranscodingOption):
            parse_codec(codec)

    @given(width=st.integers(min_value=1, max_value=99999), height=even_dimension)
    @settings(max_examples=100)
    def test_odd_or_out_of_range_widths_are_rejected(self, width: int, height: int) -> None:
        """**Feature: video-transcoder, Property 1: Option Validation**

        For any width that is odd or outside the allowed range, parsing SHALL fail.
        """
        assume(width % 2 == 1 or not MIN_DIMENSION <= width <= MAX_DIMENSION)
        with pytest.raises(InvalidTranscodingOption):
            parse_resolution(f"{width}x{height}")

    @pytest.mark.parametrize(
        "option",
        [
            "1280x720-libx264; rm -rf /",
            "1280x720-libx264 -f null",
            "../../etc-libx264",
            "1280x720x2-libx264",
            "8k-libx264",
        ],
    )
    def test_injection_attempts(self, option: str) -> None:
        with pytest.raises(InvalidTranscodingOption):
            parse_transcoding_option(option)
