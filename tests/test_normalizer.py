"""
Unit tests for CIP-60 metadata normalization.

Tests:
- Version 3 release/track merging
- Version 1 and 2 field layouts
- Artist forms and the unknown artist sentinel
- Unknown versions pass through unchanged
"""

from cip60_indexer.normalizer import (
    UNKNOWN_ARTIST,
    artist_name,
    metadata_version,
    normalize,
    normalize_copyright,
)


def v3_payload(**release):
    base_release = {"release_type": "Single", "release_title": "First Light"}
    base_release.update(release)
    return {
        "name": "First Light",
        "image": "ipfs://QmCover",
        "music_metadata_version": 3,
        "release": base_release,
        "files": [
            {
                "name": "First Light",
                "mediaType": "audio/mpeg",
                "src": "ipfs://QmSong",
                "song": {
                    "song_title": "First Light",
                    "song_duration": "PT3M12S",
                    "track_number": 1,
                    "artists": [{"B": {}}],
                    "genres": ["ambient"],
                    "explicit": True,
                },
            }
        ],
    }


class TestVersion3:
    def test_release_and_track_artists_merge_in_order(self):
        doc = normalize(v3_payload(artists=["A"]))
        assert doc["artists"] == ["A", "B"]

    def test_duplicate_artists_collapse(self):
        payload = v3_payload(artists=["A", {"name": "B"}])
        payload["files"][0]["song"]["artists"] = ["B", {"A": {"links": {}}}]
        assert normalize(payload)["artists"] == ["A", "B"]

    def test_release_genres_win_over_track_genres(self):
        doc = normalize(v3_payload(genres=["electronic", "electronic", "house"]))
        assert doc["genres"] == ["electronic", "house"]

    def test_track_genres_merged_across_files_without_release_genres(self):
        payload = v3_payload()
        payload["files"].append({"name": "Second", "src": "ipfs://Qm2", "song": {"genres": ["drone", "ambient"]}})
        assert normalize(payload)["genres"] == ["ambient", "drone"]

    def test_copyright_string_expands(self):
        doc = normalize(v3_payload(copyright="℗ 2023 Label"))
        assert doc["copyright"] == {"master": "℗ 2023 Label", "composition": "℗ 2023 Label"}

    def test_release_copyright_preferred_over_track(self):
        payload = v3_payload(copyright={"master": "M", "composition": "C"})
        payload["files"][0]["song"]["copyright"] = "track"
        assert normalize(payload)["copyright"] == {"master": "M", "composition": "C"}

    def test_song_fields(self):
        doc = normalize(v3_payload())
        assert doc["version"] == 3
        assert doc["title"] == "First Light"
        assert doc["release_type"] == "Single"
        assert doc["song"]["title"] == "First Light"
        assert doc["song"]["src"] == "ipfs://QmSong"
        assert doc["song"]["media_type"] == "audio/mpeg"
        assert doc["song"]["explicit"] is True
        assert doc["song"]["ai_generated"] is False
        assert doc["song"]["track_number"] == 1

    def test_source_payload_is_kept(self):
        payload = v3_payload()
        assert normalize(payload)["metadata"] is payload

    def test_chunked_src_is_joined(self):
        payload = v3_payload()
        payload["files"][0]["src"] = ["ipfs://QmFirstHalf", "SecondHalf"]
        assert normalize(payload)["song"]["src"] == "ipfs://QmFirstHalfSecondHalf"


class TestOlderVersions:
    def test_version_2_defaults_to_single(self):
        payload = {
            "name": "Track",
            "music_metadata_version": 2,
            "release": {"release_title": "EP", "copyright": "release"},
            "files": [{"name": "Track", "src": "ipfs://Qm", "song": {"song_title": "Track", "copyright": "track"}}],
        }
        doc = normalize(payload)
        assert doc["release_type"] == "Single"
        assert doc["release_title"] == "EP"
        # version 2 lets the track copyright win
        assert doc["copyright"]["master"] == "track"

    def test_version_1_top_level_fields(self):
        payload = {
            "name": "Old Song",
            "music_metadata_version": 1,
            "release_type": "Single",
            "album_title": "Old Album",
            "song_title": "Old Song",
            "artists": [{"name": "Solo"}],
            "genres": ["rock"],
            "copyright": "© 2022",
            "files": [{"name": "Old Song", "mediaType": "audio/flac", "src": "ipfs://QmOld", "artists": ["Guest"]}],
        }
        doc = normalize(payload)
        assert doc["song"]["title"] == "Old Song"
        assert doc["release_title"] == "Old Album"
        assert doc["artists"] == ["Solo", "Guest"]
        assert doc["genres"] == ["rock"]
        assert doc["copyright"] == {"master": "© 2022", "composition": "© 2022"}
        assert doc["song"]["media_type"] == "audio/flac"

    def test_string_version_marker(self):
        assert metadata_version({"music_metadata_version": "2"}) == 2
        assert normalize({"music_metadata_version": "3", "name": "x"})["version"] == 3


class TestFallbacks:
    def test_unknown_version_returns_payload_unchanged(self):
        payload = {"music_metadata_version": 9, "name": "future"}
        assert normalize(payload) is payload

    def test_missing_version_returns_payload_unchanged(self):
        payload = {"music_metadata_version": None, "name": "x"}
        assert normalize(payload) is payload

    def test_non_object_payload(self):
        assert normalize(["not", "a", "payload"]) is None


class TestArtists:
    def test_plain_string(self):
        assert artist_name("Artist") == "Artist"

    def test_name_field(self):
        assert artist_name({"name": "Artist", "isni": "0000"}) == "Artist"

    def test_single_key_object(self):
        assert artist_name({"Artist": {"links": {"web": "https://example.com"}}}) == "Artist"

    def test_nameless_object_maps_to_sentinel(self):
        assert artist_name({}) == UNKNOWN_ARTIST
        assert artist_name({"name": ""}) == UNKNOWN_ARTIST
        assert artist_name(42) == UNKNOWN_ARTIST

    def test_nameless_artist_is_kept(self):
        doc = normalize(v3_payload(artists=[{}]))
        assert doc["artists"] == [UNKNOWN_ARTIST, "B"]


class TestCopyright:
    def test_object_with_text_only(self):
        assert normalize_copyright({"text": "© X"}) == {"master": "© X", "composition": "© X"}

    def test_empty_object(self):
        assert normalize_copyright({}) is None
