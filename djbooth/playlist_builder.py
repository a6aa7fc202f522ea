import logging
from . import db
from .models import PlaylistSession, PlaylistTrack, UserInteraction
from .errors import BadRequest, NotFound
from .spotify import fetch_spotify_data, get_recommendations
from .reccobeats import get_audio_features
from .playlist_gpt import generate_playlist_suggestions, analyze_playlist_interactions, order_playlist, MAX_SUGGESTIONS
from .utils import fit_to_duration, dedupe_by_id, apply_order, split_interactions, clean_text


logger = logging.getLogger(__name__)

RECOMMENDATION_LIMIT = 30
MAX_SEEDS = 5
MAX_REFINE_SUGGESTIONS = 20

TRACK_ACTIONS = {
    "heart": {"is_hearted": True, "is_removed": False},
    "unheart": {"is_hearted": False},
    "remove": {"is_removed": True, "is_hearted": False},
    "restore": {"is_removed": False},
}

_TEXT_FIELDS = {
    "eventDescription": "event_description",
    "hometown1": "hometown1",
    "hometown2": "hometown2",
    "college1": "college1",
    "college2": "college2",
    "lastConcert1": "last_concert1",
    "lastConcert2": "last_concert2",
    "lastConcert3": "last_concert3",
}
_YEAR_FIELDS = {"graduationYear1": "graduation_year1", "graduationYear2": "graduation_year2"}


def _clean_year(value, field):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BadRequest(f"{field} must be a year")


def _clean_id_list(value, field):
    if value in (None, ""):
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise BadRequest(f"{field} must be a list of ids")
    return [v.strip() for v in value if v.strip()]


def parse_event_context(body):
    """
    Validate the intake form body into an event context.

    Returns:
        dict keyed like PlaylistSession columns: event_type, playlist_duration (minutes),
        optional descriptors (None when blank), inspiration_tracks / inspiration_artists (lists)
    """
    event_type = clean_text(body.get("eventType"))
    if not event_type:
        raise BadRequest("eventType is required")

    try:
        playlist_duration = float(body.get("playlistDuration"))
    except (TypeError, ValueError):
        raise BadRequest("playlistDuration must be a number of minutes")
    if playlist_duration <= 0:
        raise BadRequest("playlistDuration must be positive")

    context = {"event_type": event_type, "playlist_duration": playlist_duration}
    for source, target in _TEXT_FIELDS.items():
        context[target] = clean_text(body.get(source))
    for source, target in _YEAR_FIELDS.items():
        context[target] = _clean_year(body.get(source), source)
    context["inspiration_tracks"] = _clean_id_list(body.get("inspirationTracks"), "inspirationTracks")
    context["inspiration_artists"] = _clean_id_list(body.get("inspirationArtists"), "inspirationArtists")
    return context


def _features_by_id(track_ids):
    return {f["id"]: f for f in get_audio_features(track_ids) if f and f.get("id")}


def _feature_snapshot(features, extended=True):
    if not features:
        return None
    snapshot = {
        "bpm": features.get("tempo"),
        "energy": features.get("energy"),
        "valence": features.get("valence"),
        "danceability": features.get("danceability"),
    }
    if extended:
        snapshot["acousticness"] = features.get("acousticness")
    if all(value is None for value in snapshot.values()):
        return None
    return snapshot


def _primary_artist(track):
    artists = track.get("artists") or []
    return artists[0] if artists else {}


def _album_image(track):
    images = (track.get("album") or {}).get("images") or []
    return images[0]["url"] if images else None


def _track_row(session_id, track, position, features):
    genres = _primary_artist(track).get("genres") or []
    return PlaylistTrack(
        session_id=session_id,
        spotify_id=track["id"],
        name=track["name"],
        artist=_primary_artist(track).get("name") or "Unknown",
        album=(track.get("album") or {}).get("name"),
        duration=track.get("duration_ms") or 0,
        preview_url=track.get("preview_url"),
        image_url=_album_image(track),
        external_url=(track.get("external_urls") or {}).get("spotify"),
        position=position,
        audio_features=_feature_snapshot(features),
        genres=genres or None,
    )


def generate_playlist(sp, context):
    """
    Build and persist a playlist for an event context.

    The session row is committed before any external call so a failed run still
    leaves its id behind. Per-suggestion search failures and a failed recommendation
    call are logged and skipped; persistence failures propagate.
    """
    target_duration = round(context["playlist_duration"] * 60)
    session = PlaylistSession(
        target_duration=target_duration,
        **{k: v for k, v in context.items() if k not in ("inspiration_tracks", "inspiration_artists")},
        inspiration_tracks=context["inspiration_tracks"] or None,
        inspiration_artists=context["inspiration_artists"] or None,
    )
    db.session.add(session)
    db.session.commit()
    logger.info(f"Playlist session {session.id} created, target {target_duration}s")

    suggestions = generate_playlist_suggestions(context)
    found_tracks = fetch_spotify_data(sp, suggestions[:MAX_SUGGESTIONS])

    recommendations = []
    if context["inspiration_tracks"] or context["inspiration_artists"]:
        try:
            recommendations = get_recommendations(sp,
                                                  seed_tracks=context["inspiration_tracks"][:MAX_SEEDS],
                                                  seed_artists=context["inspiration_artists"][:MAX_SEEDS],
                                                  limit=RECOMMENDATION_LIMIT)
        except Exception as e:
            logger.error(f"Failed to get Spotify recommendations: {e}")

    # LLM hits first so they win id collisions with catalog recommendations
    candidates = dedupe_by_id(found_tracks + recommendations)
    features = _features_by_id([t["id"] for t in candidates])
    selected, total_duration = fit_to_duration(candidates, target_duration)

    rows = [_track_row(session.id, track, position, features.get(track["id"]))
            for position, track in enumerate(selected)]
    db.session.add_all(rows)
    db.session.commit()
    logger.info(f"Playlist session {session.id}: {len(suggestions)} suggestions, "
                f"{len(candidates)} candidates, {len(rows)} tracks selected")

    return {
        "sessionId": session.id,
        "tracks": [row.to_dict() for row in rows],
        "totalDuration": round(total_duration),
        "targetDuration": target_duration,
    }


def get_session_or_404(session_id):
    session = db.session.get(PlaylistSession, session_id) if session_id else None
    if session is None:
        raise NotFound("Session not found")
    return session


def _interaction_view(track):
    return {"name": track.name, "artist": track.artist, "genres": track.genres or []}


def _suggestion_dict(track, features):
    return {
        "spotifyId": track["id"],
        "name": track["name"],
        "artist": _primary_artist(track).get("name") or "Unknown",
        "album": (track.get("album") or {}).get("name"),
        "duration": track.get("duration_ms") or 0,
        "previewUrl": track.get("preview_url"),
        "imageUrl": _album_image(track),
        "externalUrl": (track.get("external_urls") or {}).get("spotify"),
        "audioFeatures": _feature_snapshot(features, extended=False),
    }


def refine_playlist(sp, session):
    """
    Suggest replacement tracks from the session's heart/remove history.

    Nothing is written; the caller adds accepted suggestions one by one.
    """
    hearted, removed = split_interactions(session.tracks)
    if not hearted and not removed:
        return {"message": "No interactions to analyze", "preferences": None, "suggestions": []}

    analysis = analyze_playlist_interactions([_interaction_view(t) for t in hearted],
                                             [_interaction_view(t) for t in removed])

    known_ids = {t.spotify_id for t in session.tracks}
    candidates = []
    for track in fetch_spotify_data(sp, analysis["suggestions"][:MAX_REFINE_SUGGESTIONS]):
        if track["id"] in known_ids:
            continue
        known_ids.add(track["id"])
        candidates.append(track)

    features = _features_by_id([t["id"] for t in candidates])

    active_seconds = sum(t.duration or 0 for t in session.tracks if not t.is_removed) / 1000
    remaining = session.target_duration - active_seconds
    fitted, _ = fit_to_duration(candidates, remaining)

    return {
        "preferences": analysis["preferences"],
        "suggestions": [_suggestion_dict(t, features.get(t["id"])) for t in fitted],
    }


def _order_view(track):
    features = track.audio_features or {}
    return {
        "name": track.name,
        "artist": track.artist,
        "duration": track.duration,
        "bpm": features.get("bpm"),
        "energy": features.get("energy"),
        "valence": features.get("valence"),
        "genres": track.genres or [],
    }


def reorder_playlist(session):
    """
    Re-sequence the session's active tracks with GPT.

    New order ``n`` takes the ``n``-th smallest existing position, so an identity
    order (including the unparseable-response fallback) writes nothing new and
    removed tracks keep their slots.
    """
    tracks = [t for t in session.tracks if not t.is_removed]
    if not tracks:
        return {"tracks": []}
    slots = sorted(t.position for t in tracks)

    indices = order_playlist([_order_view(t) for t in tracks], session.event_type)
    pairs = apply_order(tracks, indices)

    for track, new_order in pairs:
        if new_order < len(slots):
            track.position = slots[new_order]
        else:
            track.position = slots[-1] + new_order - len(slots) + 1
    db.session.commit()

    return {"tracks": [track.to_dict() for track, _ in pairs]}


def update_track_interaction(session, track_id, action):
    if action not in TRACK_ACTIONS:
        raise BadRequest(f"Unknown action '{action}'")

    track = PlaylistTrack.query.filter_by(id=track_id, session_id=session.id).first()
    if track is None:
        raise NotFound("Track not found")

    for field, value in TRACK_ACTIONS[action].items():
        setattr(track, field, value)
    db.session.add(UserInteraction(session_id=session.id, track_id=track.id, action=action))
    db.session.commit()
    return track


def add_track(session, payload):
    spotify_id = clean_text(payload.get("spotifyId"))
    name = clean_text(payload.get("name"))
    artist = clean_text(payload.get("artist"))
    if not spotify_id or not name or not artist:
        raise BadRequest("addTrack requires spotifyId, name, and artist")

    try:
        duration = int(payload.get("duration") or 0)
    except (TypeError, ValueError):
        raise BadRequest("addTrack duration must be a number of milliseconds")

    next_position = max((t.position for t in session.tracks), default=-1) + 1
    track = PlaylistTrack(
        session_id=session.id,
        spotify_id=spotify_id,
        name=name,
        artist=artist,
        album=payload.get("album"),
        duration=duration,
        preview_url=payload.get("previewUrl"),
        image_url=payload.get("imageUrl"),
        external_url=payload.get("externalUrl"),
        position=next_position,
        audio_features=payload.get("audioFeatures"),
        genres=payload.get("genres"),
    )
    db.session.add(track)
    db.session.commit()
    return track
