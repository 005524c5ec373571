import json

import pytest
import requests

from esp32_flasher.core.manifest import DeviceDescriptor, fetch_manifest, parse_manifest


SAMPLE_MANIFEST = """
{
  "M5Stack": [
    {"id": "m5stack-cardputer", "name": "M5Stack Cardputer"},
    {"id": "m5stack-cplus2",
     "name": "M5StickC Plus2"}
  ],
  "LilyGo": [
    { "id" : "lilygo-t-embed-cc1101", "name" : "T-Embed CC1101", "extra": true }
  ]
}
"""


@pytest.mark.parametrize("document", [
    "",
    "   \n",
    "not json",
    "{",
    "[]",
    "null",
    '"text"',
    "{}",
    '{"Category": "not a list"}',
    '{"Category": [1, "x", null]}',
    '{"Category": [{"id": "", "name": "Blank"}]}',
    '{"Category": [{"name": "No id"}]}',
    '{"Category": [{"id": 5, "name": "Numeric id"}]}',
])
def test_malformed_manifest_yields_empty_list(document):
    assert parse_manifest(document) == []


def test_parse_preserves_pairs_and_order():
    devices = parse_manifest(SAMPLE_MANIFEST)

    assert [(d.id, d.display_name) for d in devices] == [
        ("m5stack-cardputer", "M5Stack Cardputer"),
        ("m5stack-cplus2", "M5StickC Plus2"),
        ("lilygo-t-embed-cc1101", "T-Embed CC1101"),
    ]
    assert devices[0].category == "M5Stack"
    assert devices[2].category == "LilyGo"


def test_parse_counts_every_record():
    data = {f"cat{c}": [{"id": f"dev-{c}-{i}", "name": f"Device {c}.{i}"} for i in range(4)]
            for c in range(3)}

    devices = parse_manifest(json.dumps(data))

    assert len(devices) == 12
    assert {d.id for d in devices} == {f"dev-{c}-{i}" for c in range(3) for i in range(4)}


def test_duplicate_ids_are_all_kept():
    document = json.dumps({
        "A": [{"id": "same", "name": "First"}],
        "B": [{"id": "same", "name": "Second"}],
    })

    devices = parse_manifest(document)

    assert [d.display_name for d in devices] == ["First", "Second"]


def test_bad_records_do_not_hide_good_ones():
    document = json.dumps({
        "Mixed": [{"id": "ok", "name": "Good"}, {"oops": 1}, "junk"],
        "Broken": 42,
    })

    assert parse_manifest(document) == [DeviceDescriptor("ok", "Good", "Mixed")]


def test_fetch_manifest_uses_downloader():
    calls = []

    def downloader(url):
        calls.append(url)
        return SAMPLE_MANIFEST.encode("utf-8")

    devices = fetch_manifest("https://example.invalid/manifest.json", downloader)

    assert calls == ["https://example.invalid/manifest.json"]
    assert len(devices) == 3


def test_fetch_manifest_download_failure_is_empty():
    def downloader(url):
        raise requests.ConnectionError("offline")

    assert fetch_manifest("https://example.invalid/manifest.json", downloader) == []
