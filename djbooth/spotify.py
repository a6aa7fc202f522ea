from spotipy import Spotify
from spotipy.oauth2 import SpotifyOAuth, SpotifyClientCredentials
from spotipy.cache_handler import MemoryCacheHandler
from .reccobeats import get_audio_features
import threading
import logging
import time
import os


logger = logging.getLogger(__name__)

SCOPES = " ".join([
    "user-read-private",
    "user-read-email",
    "playlist-read-private",
    "playlist-read-collaborative",
    "playlist-modify-public",
    "playlist-modify-private",
])
DEFAULT_REDIRECT_URI = "http://127.0.0.1:5000/api/spotify/callback"
TOKEN_EXPIRY_MARGIN = 60    # seconds
DEFAULT_TOKEN_LIFETIME = 3600


class SpotifyAuthError(Exception):
    pass


class TokenCache:
    """
    Process-wide cache for one server-side access token.

    A read that finds the token inside the expiry margin reports a miss, so the caller
    refreshes early. Concurrent misses may refresh twice; the later store wins.
    """

    def __init__(self, clock=time.time, margin=TOKEN_EXPIRY_MARGIN):
        self._lock = threading.Lock()
        self._clock = clock
        self._margin = margin
        self._entry = None

    def get(self, token_type=None):
        with self._lock:
            entry = self._entry
            if entry is None or self._clock() >= entry["expires_at"] - self._margin:
                return None
            if token_type is not None and entry["token_type"] != token_type:
                return None
            return dict(entry)

    def store(self, access_token, expires_in, token_type):
        with self._lock:
            self._entry = {
                "access_token": access_token,
                "expires_at": self._clock() + (expires_in or DEFAULT_TOKEN_LIFETIME),
                "token_type": token_type,
            }
            return dict(self._entry)

    def clear(self):
        with self._lock:
            self._entry = None

    def seconds_left(self, entry):
        return round(entry["expires_at"] - self._clock())


token_cache = TokenCache()


def create_sp_oauth():
    return SpotifyOAuth(client_id=os.getenv("SPOTIFY_CLIENT_ID"),
                        client_secret=os.getenv("SPOTIFY_CLIENT_SECRET"),
                        redirect_uri=os.getenv("SPOTIFY_REDIRECT_URI", DEFAULT_REDIRECT_URI),
                        scope=SCOPES,
                        cache_handler=MemoryCacheHandler())

def create_sp_oauth_clientcredentials():
    return SpotifyClientCredentials(client_id=os.getenv("SPOTIFY_CLIENT_ID"),
                                    client_secret=os.getenv("SPOTIFY_CLIENT_SECRET"),
                                    cache_handler=MemoryCacheHandler())

def spotify_client(access_token):
    return Spotify(auth=access_token)


def get_authorize_url(state=None):
    return create_sp_oauth().get_authorize_url(state=state)


def exchange_code(code):
    """
    Exchange an OAuth authorization code for the organizer's tokens.

    Returns:
        dict: 'access_token', 'refresh_token' (may be None) and 'expires_in' in seconds
    """
    token_info = create_sp_oauth().get_access_token(code=code, check_cache=False)
    return {
        "access_token": token_info["access_token"],
        "refresh_token": token_info.get("refresh_token"),
        "expires_in": token_info.get("expires_in") or DEFAULT_TOKEN_LIFETIME,
    }


def refresh_access_token(refresh_token):
    try:
        token_info = create_sp_oauth().refresh_access_token(refresh_token)
    except Exception as e:
        token_cache.clear()
        logger.error(f"Error refreshing access token: {e}")
        raise SpotifyAuthError(f"Failed to refresh access token: {e}") from e

    return token_cache.store(token_info["access_token"], token_info.get("expires_in"), "refresh")


def get_client_credentials_token():
    credentials = create_sp_oauth_clientcredentials()
    access_token = credentials.get_access_token(as_dict=False)
    cached = credentials.cache_handler.get_cached_token() or {}
    return token_cache.store(access_token, cached.get("expires_in"), "client_credentials")


def get_token_from_refresh_token():
    refresh_token = os.getenv("SPOTIFY_REFRESH_TOKEN")
    if not refresh_token:
        raise SpotifyAuthError("SPOTIFY_REFRESH_TOKEN is not set")

    cached = token_cache.get("refresh")
    if cached:
        return cached
    return refresh_access_token(refresh_token)


def get_user_access_token(cookie_token=None):
    """
    Organizer-scoped token: the OAuth cookie if present, otherwise the server refresh token.
    Never falls back to client credentials, which cannot modify playlists.
    """
    if cookie_token:
        return cookie_token
    return get_token_from_refresh_token()["access_token"]


def get_access_token_for_api(cookie_token=None, prefer_client_credentials=False):
    """
    Token for reading public catalog data.

    Order: cookie token, then (optionally) client credentials, then any valid cached token,
    then the server refresh token, then client credentials as a last resort.
    """
    if cookie_token:
        return cookie_token

    if prefer_client_credentials:
        cached = token_cache.get("client_credentials")
        if cached:
            return cached["access_token"]
        try:
            return get_client_credentials_token()["access_token"]
        except Exception as e:
            logger.warning(f"Client credentials failed, trying refresh token: {e}")

    cached = token_cache.get()
    if cached:
        logger.info(f"Using cached {cached['token_type']} token (expires in {token_cache.seconds_left(cached)}s)")
        return cached["access_token"]

    try:
        return get_token_from_refresh_token()["access_token"]
    except SpotifyAuthError as refresh_error:
        logger.warning(f"Refresh token failed, trying client credentials: {refresh_error}")
        try:
            return get_client_credentials_token()["access_token"]
        except Exception as e:
            token_cache.clear()
            raise SpotifyAuthError(f"Failed to get access token: {refresh_error}") from e


def search(sp:Spotify, query, limit=10):
    """
    Search the catalog for tracks and artists.

    Returns:
        dict: 'tracks' and 'artists', raw spotify objects
    """
    result = sp.search(q=query, type="track,artist", limit=limit)
    return {
        "tracks": (result.get("tracks") or {}).get("items") or [],
        "artists": (result.get("artists") or {}).get("items") or [],
    }


def search_top_track(sp:Spotify, query):
    result = sp.search(q=query, type="track", limit=1)
    items = result["tracks"]["items"]
    return items[0] if items else None


def fetch_spotify_data(sp:Spotify, suggestions):
    """
    Resolve "Title - Artist" suggestions to catalog tracks, one search at a time.

    A failing search is logged and skipped; the rest of the batch still resolves.

    Args:
        sp (Spotify): agent class in spotipy
        suggestions (list): suggestion strings

    Returns:
        list of raw spotify track objects, in suggestion order
    """

    found_tracks = []

    for suggestion in suggestions:
        try:
            track = search_top_track(sp, suggestion)
            if track:
                found_tracks.append(track)
        except Exception as e:
            logger.error(f"Failed to search for '{suggestion}': {e}")

    return found_tracks


def get_recommendations(sp:Spotify, seed_tracks=None, seed_artists=None, limit=20):
    result = sp.recommendations(seed_tracks=(seed_tracks or [])[:5] or None,
                                seed_artists=(seed_artists or [])[:5] or None,
                                limit=limit)
    return result["tracks"]


def get_track(sp:Spotify, track_id):
    return sp.track(track_id)


def get_artists(sp:Spotify, artist_ids):
    return sp.artists(artist_ids)["artists"]


def _release_year(release_date):
    try:
        return int(release_date[:4])
    except (TypeError, ValueError):
        return None


def fetch_track_metadata(sp:Spotify, spotify_id):
    """
    Fetch display metadata, audio features and artist genres for one track.

    Audio features and genres are optional: their failures are logged and left empty.
    A failure to fetch the track itself is raised.
    """
    track = get_track(sp, spotify_id)

    features = None
    try:
        features = (get_audio_features([spotify_id]) or [None])[0]
    except Exception as e:
        logger.warning(f"Continuing without audio features for {spotify_id}: {e}")

    genres = []
    try:
        artist_ids = [a["id"] for a in track["artists"] if a.get("id")]
        if artist_ids:
            for artist in get_artists(sp, artist_ids):
                for genre in (artist or {}).get("genres") or []:
                    if genre not in genres:
                        genres.append(genre)
    except Exception as e:
        logger.warning(f"Continuing without artist genres for {spotify_id}: {e}")

    features = features or {}
    album = track.get("album") or {}
    images = album.get("images") or []
    return {
        "name": track["name"],
        "artist": track["artists"][0]["name"] if track["artists"] else "Unknown",
        "artists": [{"id": a.get("id"), "name": a.get("name")} for a in track["artists"]],
        "album": album.get("name"),
        "album_image": images[0]["url"] if images else None,
        "release_year": _release_year(album.get("release_date")),
        "duration": track.get("duration_ms"),
        "preview_url": track.get("preview_url"),
        "external_url": (track.get("external_urls") or {}).get("spotify"),
        "bpm": features.get("tempo"),
        "key": features.get("key"),
        "mode": features.get("mode"),
        "energy": features.get("energy"),
        "danceability": features.get("danceability"),
        "valence": features.get("valence"),
        "audio_features": features or None,
        "genres": genres,
    }


def _track_uris(track_ids):
    return [tid if tid.startswith("spotify:track:") else f"spotify:track:{tid}" for tid in track_ids if tid]


def create_spotify_playlist(sp:Spotify, name, description=None, public=False):
    """
    Creates an empty playlist owned by the authenticated organizer.

    Returns:
        dict: spotify playlist object ('id', 'external_urls', ...)
    """
    user_id = sp.me()['id']
    return sp.user_playlist_create(user=user_id, name=name, public=public, description=description or "")


def remove_tracks_from_playlist(sp:Spotify, playlist_id, track_ids):
    uris = _track_uris(track_ids)
    if uris:
        sp.playlist_remove_all_occurrences_of_items(playlist_id, uris)


def unfollow_playlist(sp:Spotify, playlist_id):
    # spotify has no playlist delete; unfollowing removes it from the organizer's library
    sp.current_user_unfollow_playlist(playlist_id)
