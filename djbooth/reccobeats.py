import os
import re
import logging
import requests


logger = logging.getLogger(__name__)

RECCOBEATS_BASE_URL = "https://api.reccobeats.com/v1"
REQUEST_TIMEOUT = 15
FEATURE_KEYS = ["tempo", "energy", "danceability", "valence", "acousticness",
                "instrumentalness", "loudness", "speechiness", "liveness", "key", "mode", "time_signature"]

_SPOTIFY_ID_PATTERNS = [
    re.compile(r"open\.spotify\.com/track/([A-Za-z0-9]+)"),
    re.compile(r"spotify:track:([A-Za-z0-9]+)"),
]


def recco_get(path, params=None):
    headers = {"Accept": "application/json"}
    token = os.getenv("RECCOBEATS_API_KEY")
    if token:
        headers["Authorization"] = f"Bearer {token}"

    response = requests.get(f"{RECCOBEATS_BASE_URL}{path}", params=params, headers=headers, timeout=REQUEST_TIMEOUT)
    response.raise_for_status()
    return response.json()


def _as_list(data, *keys):
    # response shapes vary between endpoints: bare list or wrapped under one of a few keys
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            if isinstance(data.get(key), list):
                return data[key]
    return []


def extract_spotify_id(track):
    candidates = [
        track.get("spotifyId"),
        track.get("spotify_id"),
        track.get("href"),
        (track.get("external_ids") or {}).get("spotify"),
        (track.get("provider_ids") or {}).get("spotify"),
    ]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate:
            for pattern in _SPOTIFY_ID_PATTERNS:
                match = pattern.search(candidate)
                if match:
                    return match.group(1)
            return candidate
    return None


def get_tracks_by_ids(ids):
    if not ids:
        return []
    data = recco_get("/track", params={"ids": ",".join(ids)})
    return _as_list(data, "data", "tracks", "content")


def resolve_recco_ids(spotify_ids):
    """
    Map spotify track ids to ReccoBeats ids (best effort).

    Falls back to positional matching when the response carries no spotify ids
    but has exactly one record per requested id.
    """
    if not spotify_ids:
        return {}

    tracks = get_tracks_by_ids(spotify_ids)
    mapping = {}
    for track in tracks:
        sid = extract_spotify_id(track)
        if sid and isinstance(track.get("id"), str):
            mapping[sid] = track["id"]

    if not mapping and len(tracks) == len(spotify_ids):
        for sid, track in zip(spotify_ids, tracks):
            if track.get("id"):
                mapping[sid] = track["id"]

    return mapping


def get_audio_features_by_ids(recco_ids):
    if not recco_ids:
        return []
    data = recco_get("/audio-features", params={"ids": ",".join(recco_ids)})
    return _as_list(data, "data", "audioFeatures", "content")


def _empty_features(spotify_id):
    features = {key: None for key in FEATURE_KEYS}
    features["id"] = spotify_id
    return features


def get_audio_features(spotify_ids):
    """
    Bulk audio features for spotify track ids, in request order.

    Lookup failures are logged and yield null-valued features for every id,
    so callers never lose tracks over missing analysis.

    Returns:
        list of dicts with 'id' plus tempo/energy/danceability/valence/... (None when unknown)
    """
    if not spotify_ids:
        return []

    try:
        recco_map = resolve_recco_ids(spotify_ids)
        recco_ids = [recco_map[sid] for sid in spotify_ids if sid in recco_map]
        by_recco_id = {}
        for f in get_audio_features_by_ids(recco_ids):
            fid = f.get("id") or f.get("trackId") or f.get("track_id")
            if isinstance(fid, str):
                by_recco_id[fid] = f
    except Exception as e:
        logger.error(f"ReccoBeats audio features lookup failed: {e}")
        return [_empty_features(sid) for sid in spotify_ids]

    results = []
    for sid in spotify_ids:
        features = _empty_features(sid)
        found = by_recco_id.get(recco_map.get(sid))
        if found:
            for key in FEATURE_KEYS:
                features[key] = found.get(key)
        results.append(features)
    return results
