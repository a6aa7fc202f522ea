"""
Test doubles for the Spotify client, the GPT call and the audio-feature lookup.

They stand in at the seams the app calls through (``spotify_client``,
``gpt_calling``, ``get_audio_features``) so no test touches the network.
"""

from typing import Dict, List, Optional


def make_track(track_id: str, name: str, artist: str, duration_s: float = 200,
               genres: Optional[List[str]] = None) -> dict:
    """Spotify-shaped track object."""
    return {
        "id": track_id,
        "name": name,
        "artists": [{"id": f"artist-{artist.lower().replace(' ', '-')}", "name": artist, "genres": genres or []}],
        "album": {"name": f"{name} (Album)", "images": [{"url": f"https://img.example/{track_id}.jpg"}]},
        "duration_ms": int(duration_s * 1000),
        "preview_url": None,
        "external_urls": {"spotify": f"https://open.spotify.com/track/{track_id}"},
    }


class SpotifyDown(Exception):
    pass


class FakeSpotify:
    """
    In-memory stand-in for ``spotipy.Spotify``.

    Tracks are found by their "Title - Artist" query. Method names listed in
    ``failing`` raise, as do queries listed in ``failing_queries``.
    """

    def __init__(self, tracks: Optional[List[dict]] = None):
        self.tracks: Dict[str, dict] = {}
        self.queries: Dict[str, str] = {}
        self.recommended: List[dict] = []
        self.failing: set = set()
        self.failing_queries: set = set()
        self.created_playlists: List[dict] = []
        self.unfollowed: List[str] = []
        self.removed: List[tuple] = []
        self.search_calls: List[str] = []
        for track in tracks or []:
            self.add(track)

    def add(self, track: dict) -> dict:
        self.tracks[track["id"]] = track
        self.queries[f"{track['name']} - {track['artists'][0]['name']}"] = track["id"]
        return track

    def _check(self, method: str):
        if method in self.failing:
            raise SpotifyDown(f"{method} failed")

    def search(self, q, type="track", limit=10):
        self._check("search")
        self.search_calls.append(q)
        if q in self.failing_queries:
            raise SpotifyDown(f"search for {q} failed")

        if q in self.queries:
            track_items = [self.tracks[self.queries[q]]]
        else:
            needle = q.lower()
            track_items = [t for t in self.tracks.values() if needle in t["name"].lower()]
        result = {"tracks": {"items": track_items[:limit]}}
        if "artist" in type:
            artists = []
            for track in track_items:
                artist = dict(track["artists"][0])
                artist.setdefault("images", [])
                artist.setdefault("external_urls", {"spotify": f"https://open.spotify.com/artist/{artist['id']}"})
                artists.append(artist)
            result["artists"] = {"items": artists[:limit]}
        return result

    def track(self, track_id):
        self._check("track")
        if track_id not in self.tracks:
            raise SpotifyDown(f"unknown track {track_id}")
        return self.tracks[track_id]

    def artists(self, artist_ids):
        self._check("artists")
        found = {}
        for track in self.tracks.values():
            for artist in track["artists"]:
                found[artist["id"]] = artist
        return {"artists": [found.get(a) for a in artist_ids]}

    def recommendations(self, seed_tracks=None, seed_artists=None, limit=20):
        self._check("recommendations")
        return {"tracks": self.recommended[:limit]}

    def me(self):
        return {"id": "organizer"}

    def user_playlist_create(self, user, name, public=False, description=""):
        self._check("user_playlist_create")
        playlist = {
            "id": f"playlist-{len(self.created_playlists) + 1}",
            "name": name,
            "description": description,
            "external_urls": {"spotify": f"https://open.spotify.com/playlist/{len(self.created_playlists) + 1}"},
        }
        self.created_playlists.append(playlist)
        return playlist

    def current_user_unfollow_playlist(self, playlist_id):
        self._check("current_user_unfollow_playlist")
        self.unfollowed.append(playlist_id)

    def playlist_remove_all_occurrences_of_items(self, playlist_id, items):
        self._check("playlist_remove_all_occurrences_of_items")
        self.removed.append((playlist_id, list(items)))


class FakeGPT:
    """Scripted replacement for ``playlist_gpt.gpt_calling``; replies are consumed in order."""

    def __init__(self, *responses: str):
        self.responses = list(responses)
        self.prompts: List[str] = []

    def queue(self, *responses: str):
        self.responses.extend(responses)

    def __call__(self, prompt, system_prompt=None, temperature=0.8, max_tokens=1000):
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError("unexpected GPT call")
        return self.responses.pop(0)

    @property
    def calls(self) -> int:
        return len(self.prompts)


class FakeAudioFeatures:
    """Replacement for ``reccobeats.get_audio_features`` with per-id tempo/energy."""

    def __init__(self, features: Optional[Dict[str, dict]] = None):
        self.features = features or {}
        self.requested: List[List[str]] = []

    def __call__(self, spotify_ids):
        self.requested.append(list(spotify_ids))
        results = []
        for sid in spotify_ids:
            known = self.features.get(sid, {})
            results.append({
                "id": sid,
                "tempo": known.get("tempo", 120.0),
                "energy": known.get("energy", 0.7),
                "danceability": known.get("danceability", 0.6),
                "valence": known.get("valence", 0.5),
                "acousticness": known.get("acousticness", 0.1),
                "key": known.get("key", 5),
                "mode": known.get("mode", 1),
            })
        return results
