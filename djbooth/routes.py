from flask import request, redirect, Blueprint, jsonify, current_app
from .auth import ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, catalog_spotify
from .errors import ApiError, UpstreamError, json_errors
from .mailer import parse_lead, send_lead_email
from .models import TransitionTrack
from .spotify import get_authorize_url, exchange_code, search, fetch_track_metadata
from urllib.parse import quote
import traceback
import logging


routes = Blueprint('routes', __name__)
logger = logging.getLogger(__name__)

PLAYLIST_GENERATOR_PATH = "/playlist-generator"
REFRESH_COOKIE_MAX_AGE = 60 * 60 * 24 * 365
MAX_SEARCH_LIMIT = 50


@routes.route("/api/health")
def health():
    return jsonify({"ok": True})


@routes.route("/api/spotify/auth")
@json_errors("Failed to generate authorization URL")
def spotify_auth():
    state = request.args.get("state") or None
    return jsonify({"authUrl": get_authorize_url(state)})


@routes.route("/api/spotify/callback")
def spotify_callback():
    error = request.args.get("error")
    if error:
        return redirect(f"{PLAYLIST_GENERATOR_PATH}?error={quote(error)}")

    code = request.args.get("code")
    if not code:
        return redirect(f"{PLAYLIST_GENERATOR_PATH}?error=no_code")

    try:
        tokens = exchange_code(code)
    except Exception as e:
        logger.error(f"Spotify callback error: {e}\n" + traceback.format_exc())
        return redirect(f"{PLAYLIST_GENERATOR_PATH}?error=callback_failed")

    secure = current_app.config["AUTH_COOKIE_SECURE"]
    response = redirect(f"{PLAYLIST_GENERATOR_PATH}?spotify_connected=true")
    response.set_cookie(ACCESS_TOKEN_COOKIE, tokens["access_token"],
                        max_age=tokens["expires_in"], httponly=True, secure=secure, samesite="Lax")
    if tokens["refresh_token"]:
        response.set_cookie(REFRESH_TOKEN_COOKIE, tokens["refresh_token"],
                            max_age=REFRESH_COOKIE_MAX_AGE, httponly=True, secure=secure, samesite="Lax")
    return response


def _json_body():
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _search_track_view(track):
    album = track.get("album") or {}
    images = album.get("images") or []
    artists = track.get("artists") or []
    return {
        "id": track["id"],
        "name": track["name"],
        "artist": artists[0]["name"] if artists else "Unknown",
        "artists": [{"id": a.get("id"), "name": a.get("name")} for a in artists],
        "album": album.get("name"),
        "albumImage": images[0]["url"] if images else None,
        "previewUrl": track.get("preview_url"),
        "externalUrl": (track.get("external_urls") or {}).get("spotify"),
        "duration": track.get("duration_ms"),
    }


def _search_artist_view(artist):
    images = artist.get("images") or []
    return {
        "id": artist["id"],
        "name": artist["name"],
        "image": images[0]["url"] if images else None,
        "genres": artist.get("genres") or [],
        "externalUrl": (artist.get("external_urls") or {}).get("spotify"),
    }


@routes.route("/api/spotify/search")
@json_errors("Failed to search Spotify")
def spotify_search():
    query = (request.args.get("q") or "").strip()
    if not query:
        return jsonify({"tracks": [], "artists": []})

    try:
        limit = int(request.args.get("limit", 10))
    except ValueError:
        limit = 10
    limit = min(max(limit, 1), MAX_SEARCH_LIMIT)

    results = search(catalog_spotify(), query, limit=limit)
    return jsonify({
        "tracks": [_search_track_view(t) for t in results["tracks"] if t],
        "artists": [_search_artist_view(a) for a in results["artists"] if a],
    })


@routes.route("/api/send", methods=["POST"])
@json_errors("An unknown error occurred")
def send_contact():
    body = _json_body()
    lead = parse_lead(body)
    return jsonify(send_lead_email(lead))


def _track_details(spotify_id, source, values):
    return {
        "id": spotify_id,
        "releaseYear": values.get("release_year"),
        "duration": values.get("duration"),
        "bpm": values.get("bpm"),
        "key": values.get("key"),
        "mode": values.get("mode"),
        "danceability": values.get("danceability"),
        "energy": values.get("energy"),
        "valence": values.get("valence"),
        "genres": values.get("genres") or [],
        "source": source,
    }


@routes.route("/api/spotify/track/<spotify_id>")
@json_errors("Failed to fetch track details")
def spotify_track(spotify_id):
    """
    Audio details for one track. A stored transition track answers without
    calling Spotify; otherwise the track is looked up live.
    """
    stored = TransitionTrack.query.filter_by(spotify_id=spotify_id).first()
    if stored is not None:
        return jsonify(_track_details(spotify_id, "db", stored.to_dict()))

    try:
        metadata = fetch_track_metadata(catalog_spotify(), spotify_id)
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Spotify track details error: {e}")
        raise UpstreamError("Failed to fetch track from Spotify")
    return jsonify(_track_details(spotify_id, "spotify", metadata))
