from services.providers.subtitles import (
    format_srt_timestamp,
    normalize_segments,
    segments_to_srt,
    subtitle_stats,
)


def test_format_srt_timestamp():
    assert format_srt_timestamp(0) == "00:00:00,000"
    assert format_srt_timestamp(3723.456) == "01:02:03,456"
    assert format_srt_timestamp(-2) == "00:00:00,000"


def test_normalize_segments_accepts_duration_and_end_styles():
    segments = normalize_segments(
        [
            {"text": "Hello", "start": 0, "duration": 1.5},
            {"content": "world", "startTime": 1.5, "endTime": 3},
            {"text": "   "},
            "not a segment",
        ]
    )
    assert [segment.text for segment in segments] == ["Hello", "world"]
    assert segments[0].end == 1.5
    assert segments[1].start == 1.5
    assert segments[1].end == 3.0


def test_segments_to_srt_renders_numbered_cues():
    srt = segments_to_srt(
        [
            {"text": "First line", "start": 0, "end": 2},
            {"text": "Second line", "start": 2, "end": 4.25},
        ]
    )
    assert srt == (
        "1\n00:00:00,000 --> 00:00:02,000\nFirst line\n"
        "\n"
        "2\n00:00:02,000 --> 00:00:04,250\nSecond line\n"
    )
    assert segments_to_srt([]) is None
    assert segments_to_srt([{"start": 1}]) is None


def test_subtitle_stats_ignores_srt_scaffolding():
    srt = segments_to_srt(
        [
            {"text": "abc", "start": 0, "end": 1},
            {"text": "defg", "start": 1, "end": 2},
        ]
    )
    char_count, line_count = subtitle_stats(srt)
    assert line_count == 2
    assert char_count == len("abc\ndefg")


def test_subtitle_stats_plain_text():
    assert subtitle_stats("x" * 500) == (500, 1)
    assert subtitle_stats("") == (0, 0)
    assert subtitle_stats(None) == (0, 0)
