from services.media_url import (
    clean_tiktok_url,
    detect_platform,
    extract_tiktok_video_id,
    extract_youtube_video_id,
    format_youtube_url,
    generate_video_fingerprint,
    is_supported_media_url,
    normalize_video_url,
)


def test_detect_platform_recognises_youtube_and_tiktok_hosts():
    assert detect_platform("https://www.youtube.com/watch?v=abc123") == "youtube"
    assert detect_platform("https://youtu.be/abc123") == "youtube"
    assert detect_platform("https://m.youtube.com/shorts/abc123") == "youtube"
    assert detect_platform("https://www.tiktok.com/@user/video/7234567890") == "tiktok"
    assert detect_platform("https://vm.tiktok.com/ZMabc/") == "tiktok"
    assert detect_platform("https://vimeo.com/123") is None
    assert detect_platform("not a url") is None
    assert detect_platform("https://notyoutube.com/watch?v=abc") is None


def test_is_supported_media_url_requires_http_scheme():
    assert is_supported_media_url("https://youtu.be/abc123")
    assert not is_supported_media_url("ftp://youtu.be/abc123")
    assert not is_supported_media_url("youtu.be/abc123")
    assert not is_supported_media_url("")


def test_extract_youtube_video_id_from_every_url_form():
    assert extract_youtube_video_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=10s") == "dQw4w9WgXcQ"
    assert extract_youtube_video_id("https://youtu.be/dQw4w9WgXcQ?si=share") == "dQw4w9WgXcQ"
    assert extract_youtube_video_id("https://www.youtube.com/shorts/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert extract_youtube_video_id("https://www.youtube.com/embed/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert extract_youtube_video_id("https://www.youtube.com/live/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert extract_youtube_video_id("https://www.youtube.com/channel/xyz") is None
    assert extract_youtube_video_id("https://example.com/watch?v=dQw4w9WgXcQ") is None


def test_extract_tiktok_video_id():
    assert extract_tiktok_video_id("https://www.tiktok.com/@some.user/video/7234567890123") == "7234567890123"
    assert extract_tiktok_video_id("https://vm.tiktok.com/ZMabc123/") == "ZMabc123"
    assert extract_tiktok_video_id("https://www.tiktok.com/explore") is None


def test_youtube_forms_share_one_fingerprint():
    variants = [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://www.youtube.com/shorts/dQw4w9WgXcQ",
        "  https://m.youtube.com/watch?v=dQw4w9WgXcQ&feature=share  ",
    ]
    fingerprints = {generate_video_fingerprint(url) for url in variants}
    assert len(fingerprints) == 1
    assert format_youtube_url(variants[1]) == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def test_tiktok_query_string_does_not_change_fingerprint():
    base = "https://www.tiktok.com/@user/video/7234567890"
    assert clean_tiktok_url(base + "?is_from_webapp=1&sender_device=pc#top") == base
    assert generate_video_fingerprint(base + "?lang=en") == generate_video_fingerprint(base)


def test_fingerprint_is_sha256_hex_and_tolerates_garbage():
    fingerprint = generate_video_fingerprint("https://youtu.be/abc")
    assert len(fingerprint) == 64
    assert all(ch in "0123456789abcdef" for ch in fingerprint)
    assert generate_video_fingerprint("::::") == generate_video_fingerprint("  ::::  ")
    assert normalize_video_url("https://example.com/a?b=c") == "https://example.com/a?b=c"


def test_different_videos_have_different_fingerprints():
    assert generate_video_fingerprint("https://youtu.be/aaa") != generate_video_fingerprint("https://youtu.be/bbb")
