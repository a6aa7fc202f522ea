import logging
from flask import Blueprint, request, jsonify
from .auth import require_cookie_token, user_spotify
from .errors import BadRequest, json_errors
from .playlist_builder import (
    parse_event_context, generate_playlist, get_session_or_404,
    refine_playlist, reorder_playlist, update_track_interaction, add_track,
)
from .playlist_gpt import generate_playlist_description


playlists = Blueprint("playlists", __name__)
logger = logging.getLogger(__name__)


def _json_body():
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


@playlists.route("/api/generate-playlist", methods=["POST"])
@json_errors("Failed to generate playlist")
def generate():
    # token first: no LLM spend on anonymous callers
    require_cookie_token()
    context = parse_event_context(_json_body())
    result = generate_playlist(user_spotify(), context)
    return jsonify(result)


@playlists.route("/api/playlist/<session_id>", methods=["GET"])
@json_errors("Failed to get playlist")
def get_playlist(session_id):
    session = get_session_or_404(session_id)
    return jsonify({
        "session": session.to_dict(),
        "tracks": [track.to_dict() for track in session.tracks],
    })


@playlists.route("/api/playlist/<session_id>", methods=["PATCH"])
@json_errors("Failed to update playlist")
def update_playlist(session_id):
    session = get_session_or_404(session_id)
    body = _json_body()

    if body.get("addTrack"):
        if not isinstance(body["addTrack"], dict):
            raise BadRequest("addTrack must be an object")
        track = add_track(session, body["addTrack"])
        return jsonify({"track": track.to_dict()})

    track_id = body.get("trackId")
    action = body.get("action")
    if not track_id or not action:
        raise BadRequest("trackId and action are required")

    track = update_track_interaction(session, track_id, action)
    return jsonify({"track": track.to_dict()})


@playlists.route("/api/refine-playlist", methods=["POST"])
@json_errors("Failed to refine playlist")
def refine():
    require_cookie_token()
    session = get_session_or_404(_json_body().get("sessionId"))
    return jsonify(refine_playlist(user_spotify(), session))


@playlists.route("/api/order-playlist", methods=["POST"])
@json_errors("Failed to order playlist")
def order():
    session = get_session_or_404(_json_body().get("sessionId"))
    return jsonify(reorder_playlist(session))


@playlists.route("/api/generate-description", methods=["POST"])
@json_errors("Failed to generate description")
def describe():
    body = _json_body()
    if not body.get("eventType"):
        raise BadRequest("eventType is required")
    return jsonify({"description": generate_playlist_description(body)})
