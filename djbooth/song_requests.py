import logging
from flask import Blueprint, request, jsonify
from . import db
from .auth import organizer_spotify, catalog_spotify
from .errors import BadRequest, UpstreamError, json_errors
from .models import RequestList
from .spotify import fetch_track_metadata, create_spotify_playlist
from .utils import clean_text
from .voting import (
    ensure_session_key, get_list_or_404, get_song_or_404, list_request_lists, list_view,
    check_request_allowed, create_song_request, boost_request,
    delete_request_list, delete_song_request,
)


song_requests = Blueprint("song_requests", __name__)
logger = logging.getLogger(__name__)


def _json_body():
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


@song_requests.route("/api/requests", methods=["GET"])
@json_errors("Failed to fetch request lists")
def get_request_lists():
    include_past = request.args.get("includePast") == "1"
    return jsonify({"lists": list_request_lists(include_past)})


@song_requests.route("/api/requests", methods=["POST"])
@json_errors("Failed to create request list")
def create_request_list():
    body = _json_body()
    name = clean_text(body.get("name"))
    event_type = clean_text(body.get("eventType"))
    event_date = clean_text(body.get("eventDate"))
    if not name or not event_type or not event_date:
        raise BadRequest("name, eventType, and eventDate are required")

    request_list = RequestList(
        name=name,
        event_type=event_type,
        event_date=event_date,
        event_time=clean_text(body.get("eventTime")),
        end_time=clean_text(body.get("endTime")),
        description=clean_text(body.get("description")),
    )

    # the linked playlist is optional: without an organizer token the list stays unlinked
    sp = organizer_spotify(required=False)
    if sp is not None:
        try:
            playlist = create_spotify_playlist(sp,
                                               f"{name} - Request List",
                                               f"Song requests for {name} ({event_type} on {event_date}).")
        except Exception as e:
            logger.error(f"Failed to create Spotify playlist for '{name}': {e}")
            raise UpstreamError("Failed to create Spotify playlist")
        request_list.spotify_playlist_id = playlist.get("id")
        request_list.spotify_playlist_url = (playlist.get("external_urls") or {}).get("spotify")

    db.session.add(request_list)
    db.session.commit()
    logger.info(f"Request list {request_list.id} created (linked: {bool(request_list.spotify_playlist_id)})")
    return jsonify({"list": request_list.to_dict()}), 201


@song_requests.route("/api/requests/<list_id>", methods=["GET"])
@json_errors("Failed to fetch request list")
def get_request_list(list_id):
    session_key = ensure_session_key()
    request_list = get_list_or_404(list_id)
    return jsonify(list_view(request_list, session_key))


@song_requests.route("/api/requests/<list_id>", methods=["PATCH"])
@json_errors("Failed to update request list")
def update_request_list(list_id):
    request_list = get_list_or_404(list_id)
    organizer_spotify()

    body = _json_body()
    if "description" not in body:
        raise BadRequest("description is required")
    description = body["description"]
    if description is not None and not isinstance(description, str):
        raise BadRequest("description must be a string")

    request_list.description = clean_text(description)
    db.session.commit()
    return jsonify({"list": request_list.to_dict()})


@song_requests.route("/api/requests/<list_id>", methods=["DELETE"])
@json_errors("Failed to delete request list")
def remove_request_list(list_id):
    request_list = get_list_or_404(list_id)
    sp = organizer_spotify()
    delete_request_list(sp, request_list)
    logger.info(f"Request list {list_id} deleted")
    return jsonify({"ok": True})


@song_requests.route("/api/requests/<list_id>/songs", methods=["POST"])
@json_errors("Failed to add song request")
def submit_song_request(list_id):
    session_key = ensure_session_key()

    body = _json_body()
    spotify_id = clean_text(body.get("spotifyId"))
    first_name = clean_text(body.get("requesterFirstName"))
    last_name = clean_text(body.get("requesterLastName"))
    if not spotify_id or not first_name or not last_name:
        raise BadRequest("spotifyId, requesterFirstName, and requesterLastName are required")

    request_list = get_list_or_404(list_id)
    check_request_allowed(request_list, spotify_id, session_key)

    metadata = fetch_track_metadata(catalog_spotify(prefer_client_credentials=True), spotify_id)
    song = create_song_request(request_list, spotify_id, metadata, first_name, last_name, session_key)
    return jsonify({"request": song.to_dict(has_voted=False)}), 201


@song_requests.route("/api/requests/<list_id>/songs/<song_id>/vote", methods=["POST"])
@json_errors("Failed to vote for song request")
def vote_song_request(list_id, song_id):
    session_key = ensure_session_key()
    song = boost_request(list_id, song_id, session_key)
    return jsonify({"request": song.to_dict(has_voted=True), "hasVoted": True}), 201


@song_requests.route("/api/requests/<list_id>/songs/<song_id>", methods=["DELETE"])
@json_errors("Failed to delete requested song")
def remove_song_request(list_id, song_id):
    request_list = get_list_or_404(list_id)
    song = get_song_or_404(list_id, song_id)
    sp = organizer_spotify()
    delete_song_request(sp, request_list, song)
    return jsonify({"ok": True})
