"""
Shared pytest fixtures.

The app is imported against an in-memory SQLite database; every test starts
from freshly created tables. Spotify, GPT and audio-feature calls go to the
doubles in ``tests.test_doubles``.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"
for name in ("FLASK_DEBUG", "SPOTIFY_REFRESH_TOKEN", "SPOTIFY_CLIENT_ID", "SPOTIFY_CLIENT_SECRET",
             "OPENAI_API_KEY", "RESEND", "RESEND_API_KEY"):
    os.environ.pop(name, None)

import pytest

from djbooth import app as flask_app, db
from djbooth import auth, playlist_builder, playlist_gpt, spotify
from tests.test_doubles import FakeSpotify, FakeGPT, FakeAudioFeatures, make_track


ORGANIZER_TOKEN = "organizer-token"


@pytest.fixture
def app():
    flask_app.config["TESTING"] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()


@pytest.fixture
def client(app):
    """Anonymous visitor."""
    return app.test_client()


@pytest.fixture
def other_client(app):
    """A second anonymous visitor with its own session cookie."""
    return app.test_client()


@pytest.fixture
def organizer(app):
    """Client holding the organizer's Spotify OAuth cookie."""
    organizer_client = app.test_client()
    organizer_client.set_cookie(auth.ACCESS_TOKEN_COOKIE, ORGANIZER_TOKEN)
    return organizer_client


@pytest.fixture(autouse=True)
def clear_token_cache():
    spotify.token_cache.clear()
    yield
    spotify.token_cache.clear()


@pytest.fixture
def fake_spotify(monkeypatch):
    """FakeSpotify behind every Spotify client the app builds."""
    fake = FakeSpotify([
        make_track("trk-a", "Song A", "Jordan Lee", 200, ["pop"]),
        make_track("trk-b", "Song B", "Casey Moon", 210, ["r&b"]),
        make_track("trk-c", "Song C", "Riley Fox", 180, ["house"]),
        make_track("trk-d", "Song D", "Sam Park", 190, ["hip hop"]),
    ])
    monkeypatch.setattr(auth, "spotify_client", lambda token: fake)
    # anonymous catalog reads run on a cached client-credentials token
    spotify.token_cache.store("catalog-token", 3600, "client_credentials")
    return fake


@pytest.fixture
def fake_features(monkeypatch):
    fake = FakeAudioFeatures()
    monkeypatch.setattr(spotify, "get_audio_features", fake)
    monkeypatch.setattr(playlist_builder, "get_audio_features", fake)
    return fake


@pytest.fixture
def fake_gpt(monkeypatch):
    fake = FakeGPT()
    monkeypatch.setattr(playlist_gpt, "gpt_calling", fake)
    return fake
