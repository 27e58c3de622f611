from frontcache.utils.formatting import format_duration, format_size, format_ttl


def test_format_size():
    assert format_size(0) == "0 B"
    assert format_size(512) == "512.0 B"
    assert format_size(1536) == "1.5 KB"
    assert format_size(3 * 1024**3) == "3.0 GB"


def test_format_duration_and_ttl():
    assert format_duration(0) == "0s"
    assert format_duration(3725) == "1h 2m 5s"
    assert format_ttl(90 * 24 * 60 * 60 * 1000) == "90d"
    assert format_ttl(None) == "never expires"
