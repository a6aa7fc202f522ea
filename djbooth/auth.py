import logging
from flask import request
from .errors import Unauthorized
from .spotify import SpotifyAuthError, get_user_access_token, get_access_token_for_api, spotify_client


logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "spotify_access_token"
REFRESH_TOKEN_COOKIE = "spotify_refresh_token"


def cookie_access_token():
    return request.cookies.get(ACCESS_TOKEN_COOKIE)


def require_cookie_token():
    """The organizer's OAuth cookie, checked before any paid call is made."""
    token = cookie_access_token()
    if not token:
        raise Unauthorized("Not authenticated with Spotify")
    return token


def organizer_spotify(required=True):
    """
    Spotify client acting as the organizer (cookie, then server refresh token).

    Returns None instead of raising when ``required`` is False and no token is available.
    """
    try:
        token = get_user_access_token(cookie_access_token())
    except SpotifyAuthError as e:
        if not required:
            logger.info(f"No organizer Spotify token: {e}")
            return None
        raise Unauthorized("Not authenticated with Spotify")
    return spotify_client(token)


def catalog_spotify(prefer_client_credentials=False):
    """Spotify client for public catalog reads; any grant will do."""
    try:
        token = get_access_token_for_api(cookie_access_token(), prefer_client_credentials=prefer_client_credentials)
    except SpotifyAuthError as e:
        raise Unauthorized("Not authenticated with Spotify", details=str(e))
    return spotify_client(token)


def user_spotify():
    return spotify_client(require_cookie_token())
