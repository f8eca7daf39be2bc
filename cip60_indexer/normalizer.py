"""CIP-60 music metadata normalization.

Each known ``music_metadata_version`` is described by a field table of dotted
paths into the payload. ``*`` walks every element of a list, digits index one
element. Scalar fields take the first path yielding a value; list fields are a
sequence of alternatives, each alternative merging all its paths, and the first
non-empty alternative wins. Adding a version means adding a table.
"""

from typing import Any, Dict, Iterator, List, Optional

from .util import parse_int


VERSION_MARKER = "music_metadata_version"
UNKNOWN_ARTIST = "Unknown Artist"

_V1 = {
    "release_type": ["release_type"],
    "release_title": ["album_title"],
    "copyright": ["copyright"],
    "song_title": ["song_title", "files.0.song_title", "files.0.name"],
    "duration": ["song_duration", "files.0.song_duration"],
    "track_number": ["track_number", "files.0.track_number"],
    "media_type": ["files.0.mediaType"],
    "src": ["files.0.src"],
    "explicit": ["explicit", "files.0.explicit"],
    "ai_generated": ["ai_generated", "files.0.ai_generated"],
    "isrc": ["isrc", "files.0.isrc"],
    "iswc": ["iswc", "files.0.iswc"],
    "artists": [["artists.*", "files.*.artists.*"]],
    "genres": [["genres.*"], ["files.*.genres.*"]],
}

_V2 = {
    "release_type": ["release_type", "release.release_type"],
    "release_title": ["release.release_title"],
    "copyright": ["files.0.song.copyright", "release.copyright"],
    "song_title": ["files.0.song.song_title", "files.0.name"],
    "duration": ["files.0.song.song_duration"],
    "track_number": ["files.0.song.track_number"],
    "media_type": ["files.0.mediaType"],
    "src": ["files.0.src"],
    "explicit": ["files.0.song.explicit"],
    "ai_generated": ["files.0.song.ai_generated"],
    "isrc": ["files.0.song.isrc"],
    "iswc": ["files.0.song.iswc"],
    "artists": [["release.artists.*", "files.*.song.artists.*"]],
    "genres": [["release.genres.*"], ["files.*.song.genres.*"]],
}

_V3 = dict(
    _V2,
    release_type=["release.release_type"],
    copyright=["release.copyright", "files.0.song.copyright"],
)

FIELD_TABLES: Dict[int, Dict[str, list]] = {1: _V1, 2: _V2, 3: _V3}

# v1 and v2 payloads usually leave release_type out for singles
DEFAULT_RELEASE_TYPE = {1: "Single", 2: "Single"}


def _walk(node: Any, parts: List[str]) -> Iterator[Any]:
    if not parts:
        if node is not None:
            yield node
        return
    head, rest = parts[0], parts[1:]
    if head == "*":
        if isinstance(node, list):
            for item in node:
                yield from _walk(item, rest)
        return
    if isinstance(node, list) and head.isdigit():
        index = int(head)
        if index < len(node):
            yield from _walk(node[index], rest)
        return
    if isinstance(node, dict) and head in node:
        yield from _walk(node[head], rest)


def _values(payload: Dict[str, Any], path: str) -> Iterator[Any]:
    return _walk(payload, path.split("."))


def _first(payload: Dict[str, Any], paths: List[str]) -> Any:
    for path in paths:
        for value in _values(payload, path):
            if value == "" or value == [] or value == {}:
                continue
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    # metadata strings are capped at 64 bytes, longer ones arrive chunked
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return "".join(value)
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "explicit")
    return False


def artist_name(artist: Any) -> str:
    if isinstance(artist, (str, list)):
        name = _text(artist)
        return name if name else UNKNOWN_ARTIST
    if isinstance(artist, dict):
        if "name" in artist:
            name = _text(artist.get("name"))
            return name if name else UNKNOWN_ARTIST
        # {"Artist Name": {"links": {...}}}
        for key in artist:
            if isinstance(key, str) and key:
                return key
    return UNKNOWN_ARTIST


def _unique(items: List[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _merged(payload: Dict[str, Any], alternatives: List[List[str]], convert) -> List[str]:
    for paths in alternatives:
        found = []
        for path in paths:
            for value in _values(payload, path):
                item = convert(value)
                if item:
                    found.append(item)
        if found:
            return _unique(found)
    return []


def normalize_copyright(value: Any) -> Optional[Dict[str, Optional[str]]]:
    text = _text(value)
    if text is not None:
        return {"master": text, "composition": text}
    if isinstance(value, dict):
        fallback = _text(value.get("text"))
        master = _text(value.get("master")) or fallback
        composition = _text(value.get("composition")) or fallback
        if master is None and composition is None:
            return None
        return {"master": master, "composition": composition}
    return None


def metadata_version(payload: Any) -> Optional[int]:
    if not isinstance(payload, dict):
        return None
    try:
        return parse_int(payload.get(VERSION_MARKER))
    except (TypeError, ValueError):
        return None


def normalize(payload: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return None
    version = metadata_version(payload)
    table = FIELD_TABLES.get(version)
    if table is None:
        return payload

    track_number = _first(payload, table["track_number"])
    try:
        track_number = parse_int(track_number) if track_number is not None else 1
    except (TypeError, ValueError):
        track_number = 1

    return {
        "version": version,
        "title": _text(payload.get("name")) or "",
        "image": _text(payload.get("image")),
        "release_type": _text(_first(payload, table["release_type"])) or DEFAULT_RELEASE_TYPE.get(version),
        "release_title": _text(_first(payload, table["release_title"])),
        "artists": _merged(payload, table["artists"], artist_name),
        "genres": _merged(payload, table["genres"], _text),
        "copyright": normalize_copyright(_first(payload, table["copyright"])),
        "song": {
            "title": _text(_first(payload, table["song_title"])) or "",
            "duration": _text(_first(payload, table["duration"])),
            "track_number": track_number,
            "media_type": _text(_first(payload, table["media_type"])),
            "src": _text(_first(payload, table["src"])),
            "explicit": _flag(_first(payload, table["explicit"])),
            "ai_generated": _flag(_first(payload, table["ai_generated"])),
            "isrc": _text(_first(payload, table["isrc"])),
            "iswc": _text(_first(payload, table["iswc"])),
        },
        "metadata": payload,
    }
