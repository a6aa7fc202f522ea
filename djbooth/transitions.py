import uuid
import logging
from flask import Blueprint, request, jsonify
from jsonschema import Draft7Validator
from . import db
from .auth import catalog_spotify
from .errors import BadRequest, NotFound, json_errors
from .models import Transition, TransitionTrack, TransitionPoint
from .spotify import fetch_track_metadata
from .utils import clean_text


transitions = Blueprint("transitions", __name__)
logger = logging.getLogger(__name__)

TRANSITION_TYPES = [
    "beat_match",
    "word_play",
    "key_change",
    "drop_swap",
    "mashup",
    "backspin",
    "echo_out",
    "filter_sweep",
    "loop_swap",
    "phrase_match",
    "other",
]
MIN_TRACKS = 2
MAX_TRACKS = 4
DEFAULT_PAGE_SIZE = 50

track_list_schema = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "spotifyId": {"type": "string", "minLength": 1},
            "position": {"type": "integer"},
            "fromTrackId": {"type": ["string", "null"]},
        },
        "required": ["spotifyId", "position"],
    },
}

point_list_schema = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "spotifyId": {"type": ["string", "null"]},
            "timestamp": {"type": "integer", "minimum": 0},
            "description": {"type": ["string", "null"]},
            "pointType": {"type": ["string", "null"]},
        },
        "required": ["timestamp"],
    },
}


def normalize_types(value):
    if isinstance(value, list):
        return [t for t in value if t]
    return [value] if value else []


def _schema_errors(instance, schema, field):
    return [f"{field}: {e.message}" for e in Draft7Validator(schema).iter_errors(instance)]


def validate_types(types):
    errors = []
    if not any(isinstance(t, str) and t.strip() for t in types):
        errors.append("At least one transition type is required")
    invalid = [str(t) for t in types if t not in TRANSITION_TYPES]
    if invalid:
        errors.append(f"Invalid transition types: {', '.join(invalid)}")
    return errors


def validate_transition_data(tracks, types):
    """
    Check a transition's track chain and types.

    Rules: at least one type, every type known; 2 to 4 tracks with positions exactly
    1..n; the first track has no ``fromTrackId``, every later track names an earlier
    track's spotify id as its ``fromTrackId``.

    Returns:
        list of str: error messages, empty when valid
    """
    errors = validate_types(normalize_types(types))

    shape_errors = _schema_errors(tracks, track_list_schema, "tracks")
    if shape_errors:
        return errors + shape_errors

    if len(tracks) < MIN_TRACKS:
        errors.append(f"At least {MIN_TRACKS} tracks are required")
    if len(tracks) > MAX_TRACKS:
        errors.append(f"Maximum {MAX_TRACKS} tracks allowed")

    if sorted(t["position"] for t in tracks) != list(range(1, len(tracks) + 1)):
        errors.append("Track positions must be sequential starting from 1")

    # a repeated spotify id refers to its first occurrence
    by_spotify_id = {}
    for track in sorted(tracks, key=lambda t: t["position"]):
        by_spotify_id.setdefault(track["spotifyId"], track)
    for track in tracks:
        position = track["position"]
        from_id = track.get("fromTrackId")
        if position == 1 and from_id:
            errors.append("First track cannot have a fromTrackId")
        if position > 1 and not from_id:
            errors.append(f"Track at position {position} must have a fromTrackId")
        if from_id:
            source = by_spotify_id.get(from_id)
            if source is None:
                errors.append(f"Track at position {position} references invalid fromTrackId ({from_id})")
            elif source["position"] >= position:
                errors.append(f"Track at position {position} cannot transition from track at position "
                              f"{source['position']} (must be earlier)")

    return errors


def generate_transition_name(tracks):
    if not tracks:
        return "Untitled Transition"
    if len(tracks) == 1:
        return tracks[0]["name"]
    if len(tracks) == 2:
        return f"{tracks[0]['name']} → {tracks[1]['name']}"
    return f"{tracks[0]['name']} → ... → {tracks[-1]['name']}"


def build_tracks(transition_id, tracks, metadata_by_spotify_id):
    """
    TransitionTrack rows in position order. ``fromTrackId`` resolves to the row of the
    earliest preceding track with that spotify id.
    """
    ordered = sorted(tracks, key=lambda t: t["position"])
    first_row_ids = {}

    rows = []
    for track in ordered:
        metadata = metadata_by_spotify_id[track["spotifyId"]]
        row_id = str(uuid.uuid4())
        from_track_id = first_row_ids.get(track.get("fromTrackId"))
        first_row_ids.setdefault(track["spotifyId"], row_id)
        rows.append(TransitionTrack(
            id=row_id,
            transition_id=transition_id,
            spotify_id=track["spotifyId"],
            position=track["position"],
            from_track_id=from_track_id,
            name=metadata["name"],
            artist=metadata["artist"],
            artists=metadata.get("artists"),
            album=metadata.get("album"),
            album_image=metadata.get("album_image"),
            duration=metadata.get("duration"),
            preview_url=metadata.get("preview_url"),
            external_url=metadata.get("external_url"),
            bpm=metadata.get("bpm"),
            key=metadata.get("key"),
            mode=metadata.get("mode"),
            energy=metadata.get("energy"),
            danceability=metadata.get("danceability"),
            valence=metadata.get("valence"),
            genres=metadata.get("genres"),
        ))
    return rows


def build_points(transition_id, points, track_rows):
    """Points attach to the track with their spotify id, or to the first track."""
    track_ids = {}
    for row in track_rows:
        track_ids.setdefault(row.spotify_id, row.id)
    fallback = track_rows[0].id if track_rows else None
    return [
        TransitionPoint(
            transition_id=transition_id,
            track_id=track_ids.get(point.get("spotifyId"), fallback),
            timestamp=point["timestamp"],
            description=point.get("description") or None,
            point_type=point.get("pointType") or None,
        )
        for point in points
    ]


def _fetch_metadata(tracks):
    sp = catalog_spotify(prefer_client_credentials=True)
    metadata = {}
    for track in tracks:
        if track["spotifyId"] not in metadata:
            metadata[track["spotifyId"]] = fetch_track_metadata(sp, track["spotifyId"])
    return metadata


def _json_body():
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _validated_points(points):
    if points is None:
        return []
    errors = _schema_errors(points, point_list_schema, "points")
    if errors:
        raise BadRequest("Validation failed", details=errors)
    return points


def _validated_tags(tags):
    if tags is None:
        return []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise BadRequest("Validation failed", details=["tags: must be a list of strings"])
    return tags


def _float_arg(name):
    value = request.args.get(name)
    if value in (None, ""):
        return None
    try:
        return float(value)
    except ValueError:
        raise BadRequest(f"{name} must be a number")


def _int_arg(name, default=None):
    value = request.args.get(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise BadRequest(f"{name} must be an integer")


def _contains(text, needle):
    return bool(text) and needle in text.lower()


def _matches_search(transition, needle):
    if any(_contains(field, needle) for field in (transition.name, transition.notes, transition.stems_notes)):
        return True
    return any(_contains(t.name, needle) or _contains(t.artist, needle) or _contains(t.album, needle)
               for t in transition.tracks)


def _in_range(value, low, high):
    if low is None and high is None:
        return True
    if value is None:
        return False
    return (low is None or value >= low) and (high is None or value <= high)


def filter_transitions(items, types=None, tags=None, search=None, min_bpm=None, max_bpm=None,
                       key=None, min_energy=None, max_energy=None, track_count=None):
    """
    Apply the browse filters in memory.

    Type and tag filters match when any requested value is present. BPM, key and
    energy bounds must all hold for at least one track of the transition.
    """
    needle = search.lower() if search else None
    track_filtered = any(v is not None for v in (min_bpm, max_bpm, key, min_energy, max_energy))

    def track_matches(track):
        return (_in_range(track.bpm, min_bpm, max_bpm)
                and (key is None or track.key == key)
                and _in_range(track.energy, min_energy, max_energy))

    matched = []
    for transition in items:
        if types and not set(types) & set(transition.types or []):
            continue
        if tags and not set(tags) & set(transition.tags or []):
            continue
        if needle and not _matches_search(transition, needle):
            continue
        if track_filtered and not any(track_matches(t) for t in transition.tracks):
            continue
        if track_count is not None and len(transition.tracks) != track_count:
            continue
        matched.append(transition)
    return matched


@transitions.route("/api/transitions", methods=["GET"])
@json_errors("Failed to fetch transitions")
def list_transitions():
    types = request.args.getlist("types") or request.args.getlist("type")
    tags = request.args.getlist("tags") or request.args.getlist("tag")
    limit = _int_arg("limit", DEFAULT_PAGE_SIZE)
    offset = _int_arg("offset", 0)
    if limit < 0 or offset < 0:
        raise BadRequest("limit and offset must not be negative")

    matched = filter_transitions(
        Transition.query.order_by(Transition.created_at.desc()).all(),
        types=types,
        tags=tags,
        search=clean_text(request.args.get("search")),
        min_bpm=_float_arg("minBpm"),
        max_bpm=_float_arg("maxBpm"),
        key=_int_arg("key"),
        min_energy=_float_arg("minEnergy"),
        max_energy=_float_arg("maxEnergy"),
        track_count=_int_arg("trackCount"),
    )
    page = matched[offset:offset + limit]

    return jsonify({
        "transitions": [t.to_dict() for t in page],
        "pagination": {
            "total": len(matched),
            "limit": limit,
            "offset": offset,
            "hasMore": offset + limit < len(matched),
        },
    })


@transitions.route("/api/transitions", methods=["POST"])
@json_errors("Failed to create transition")
def create_transition():
    body = _json_body()
    tracks = body.get("tracks") or []
    types = normalize_types(body.get("type"))

    errors = validate_transition_data(tracks, types)
    if errors:
        raise BadRequest("Validation failed", details=errors)
    points = _validated_points(body.get("points"))
    tags = _validated_tags(body.get("tags"))

    metadata = _fetch_metadata(tracks)

    transition = Transition(
        id=str(uuid.uuid4()),
        types=types,
        notes=clean_text(body.get("notes")),
        stems_notes=clean_text(body.get("stemsNotes")),
        tags=tags,
    )
    track_rows = build_tracks(transition.id, tracks, metadata)
    transition.name = clean_text(body.get("name")) or generate_transition_name(
        [{"name": row.name, "artist": row.artist} for row in track_rows])
    transition.tracks = track_rows
    transition.points = build_points(transition.id, points, track_rows)

    db.session.add(transition)
    db.session.commit()
    logger.info(f"Transition {transition.id} created with {len(track_rows)} tracks")
    return jsonify(transition.to_dict()), 201


def get_transition_or_404(transition_id):
    transition = db.session.get(Transition, transition_id)
    if transition is None:
        raise NotFound("Transition not found")
    return transition


@transitions.route("/api/transitions/<transition_id>", methods=["GET"])
@json_errors("Failed to fetch transition")
def get_transition(transition_id):
    return jsonify(get_transition_or_404(transition_id).to_dict())


@transitions.route("/api/transitions/<transition_id>", methods=["PUT"])
@json_errors("Failed to update transition")
def update_transition(transition_id):
    """
    Partial update: only fields present in the body change. New ``tracks`` replace
    the chain; existing points then move to the new track with the same spotify id.
    New ``points`` replace all points.
    """
    transition = get_transition_or_404(transition_id)
    body = _json_body()

    types = normalize_types(body["type"]) if "type" in body else list(transition.types or [])
    if "type" in body and not body.get("tracks"):
        errors = validate_types(types)
        if errors:
            raise BadRequest("Validation failed", details=errors)

    points = _validated_points(body["points"]) if body.get("points") is not None else None
    tags = _validated_tags(body["tags"]) if "tags" in body else None

    if body.get("tracks"):
        errors = validate_transition_data(body["tracks"], types)
        if errors:
            raise BadRequest("Validation failed", details=errors)

        metadata = _fetch_metadata(body["tracks"])
        if points is None:
            old_spotify_ids = {t.id: t.spotify_id for t in transition.tracks}
            points = [{"spotifyId": old_spotify_ids.get(p.track_id), "timestamp": p.timestamp,
                       "description": p.description, "pointType": p.point_type}
                      for p in transition.points]

        transition.points = []
        transition.tracks = []
        db.session.flush()
        transition.tracks = build_tracks(transition.id, body["tracks"], metadata)

    if points is not None:
        transition.points = build_points(transition.id, points, list(transition.tracks))

    if "name" in body:
        transition.name = clean_text(body["name"]) or transition.name
    if "type" in body:
        transition.types = types
    if "notes" in body:
        transition.notes = clean_text(body["notes"])
    if "stemsNotes" in body:
        transition.stems_notes = clean_text(body["stemsNotes"])
    if tags is not None:
        transition.tags = tags

    db.session.commit()
    return jsonify(transition.to_dict())


@transitions.route("/api/transitions/<transition_id>", methods=["DELETE"])
@json_errors("Failed to delete transition")
def delete_transition(transition_id):
    transition = get_transition_or_404(transition_id)
    db.session.delete(transition)
    db.session.commit()
    return jsonify({"message": "Transition deleted successfully"})
