import uuid
from datetime import datetime, timezone
from . import db


def _new_id():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _isoformat(value):
    return value.isoformat() if value else None


class RequestList(db.Model):
    __tablename__ = "request_lists"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    name = db.Column(db.String(200), nullable=False)
    event_type = db.Column(db.String(100), nullable=False)
    event_date = db.Column(db.String(10), nullable=False)    # YYYY-MM-DD, compares lexicographically
    event_time = db.Column(db.String(20), nullable=True)
    end_time = db.Column(db.String(20), nullable=True)
    description = db.Column(db.Text, nullable=True)
    spotify_playlist_id = db.Column(db.String(64), nullable=True)
    spotify_playlist_url = db.Column(db.String(300), nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    requests = db.relationship("SongRequest", back_populates="request_list",
                               cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "eventType": self.event_type,
            "eventDate": self.event_date,
            "eventTime": self.event_time,
            "endTime": self.end_time,
            "description": self.description,
            "createdAt": _isoformat(self.created_at),
            "spotifyPlaylistId": self.spotify_playlist_id,
            "spotifyPlaylistUrl": self.spotify_playlist_url,
            "publicUrl": f"/requests/{self.id}",
        }


class SongRequest(db.Model):
    __tablename__ = "song_requests"
    __table_args__ = (db.UniqueConstraint("list_id", "spotify_id", name="uq_song_request_list_track"),)

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    list_id = db.Column(db.String(36), db.ForeignKey("request_lists.id", ondelete="CASCADE"), nullable=False, index=True)
    spotify_id = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(300), nullable=False)
    artist = db.Column(db.String(300), nullable=False)
    artists = db.Column(db.JSON, nullable=True)
    album = db.Column(db.String(300), nullable=True)
    album_image = db.Column(db.String(500), nullable=True)
    duration = db.Column(db.Integer, nullable=True)    # ms
    preview_url = db.Column(db.String(500), nullable=True)
    external_url = db.Column(db.String(500), nullable=True)
    bpm = db.Column(db.Float, nullable=True)
    energy = db.Column(db.Float, nullable=True)
    danceability = db.Column(db.Float, nullable=True)
    valence = db.Column(db.Float, nullable=True)
    audio_features = db.Column(db.JSON, nullable=True)
    genres = db.Column(db.JSON, nullable=True)
    requester_first_name = db.Column(db.String(100), nullable=False)
    requester_last_name = db.Column(db.String(100), nullable=False)
    requester_session_key = db.Column(db.String(64), nullable=True, index=True)
    vote_count = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    request_list = db.relationship("RequestList", back_populates="requests")
    votes = db.relationship("Vote", back_populates="song_request",
                            cascade="all, delete-orphan")

    def to_dict(self, has_voted=None):
        data = {
            "id": self.id,
            "listId": self.list_id,
            "spotifyId": self.spotify_id,
            "name": self.name,
            "artist": self.artist,
            "artists": self.artists,
            "album": self.album,
            "albumImage": self.album_image,
            "duration": self.duration,
            "previewUrl": self.preview_url,
            "externalUrl": self.external_url,
            "bpm": self.bpm,
            "energy": self.energy,
            "danceability": self.danceability,
            "valence": self.valence,
            "audioFeatures": self.audio_features,
            "genres": self.genres,
            "requesterFirstName": self.requester_first_name,
            "requesterLastName": self.requester_last_name,
            "voteCount": self.vote_count,
            "createdAt": _isoformat(self.created_at),
        }
        if has_voted is not None:
            data["hasVoted"] = has_voted
        return data


class Vote(db.Model):
    __tablename__ = "song_request_votes"
    __table_args__ = (db.UniqueConstraint("request_id", "session_key", name="uq_vote_request_session"),)

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    request_id = db.Column(db.String(36), db.ForeignKey("song_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    session_key = db.Column(db.String(64), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    song_request = db.relationship("SongRequest", back_populates="votes")


class PlaylistSession(db.Model):
    __tablename__ = "playlist_sessions"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    event_type = db.Column(db.String(100), nullable=False)
    playlist_duration = db.Column(db.Float, nullable=False)    # minutes, as entered
    target_duration = db.Column(db.Integer, nullable=False)    # seconds
    event_description = db.Column(db.Text, nullable=True)
    graduation_year1 = db.Column(db.Integer, nullable=True)
    graduation_year2 = db.Column(db.Integer, nullable=True)
    hometown1 = db.Column(db.String(200), nullable=True)
    hometown2 = db.Column(db.String(200), nullable=True)
    college1 = db.Column(db.String(200), nullable=True)
    college2 = db.Column(db.String(200), nullable=True)
    last_concert1 = db.Column(db.String(200), nullable=True)
    last_concert2 = db.Column(db.String(200), nullable=True)
    last_concert3 = db.Column(db.String(200), nullable=True)
    inspiration_tracks = db.Column(db.JSON, nullable=True)
    inspiration_artists = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    tracks = db.relationship("PlaylistTrack", back_populates="session",
                             order_by="PlaylistTrack.position",
                             cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "eventType": self.event_type,
            "playlistDuration": self.playlist_duration,
            "targetDuration": self.target_duration,
            "createdAt": _isoformat(self.created_at),
        }


class PlaylistTrack(db.Model):
    __tablename__ = "playlist_tracks"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    session_id = db.Column(db.String(36), db.ForeignKey("playlist_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    spotify_id = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(300), nullable=False)
    artist = db.Column(db.String(300), nullable=False)
    album = db.Column(db.String(300), nullable=True)
    duration = db.Column(db.Integer, nullable=False, default=0)    # ms
    preview_url = db.Column(db.String(500), nullable=True)
    image_url = db.Column(db.String(500), nullable=True)
    external_url = db.Column(db.String(500), nullable=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    is_hearted = db.Column(db.Boolean, nullable=False, default=False)
    is_removed = db.Column(db.Boolean, nullable=False, default=False)
    audio_features = db.Column(db.JSON, nullable=True)
    genres = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    session = db.relationship("PlaylistSession", back_populates="tracks")

    def to_dict(self):
        return {
            "id": self.id,
            "spotifyId": self.spotify_id,
            "name": self.name,
            "artist": self.artist,
            "album": self.album,
            "duration": self.duration,
            "previewUrl": self.preview_url,
            "imageUrl": self.image_url,
            "externalUrl": self.external_url,
            "position": self.position,
            "isHearted": bool(self.is_hearted),
            "isRemoved": bool(self.is_removed),
            "audioFeatures": self.audio_features,
            "genres": self.genres,
        }


class UserInteraction(db.Model):
    """Write-only audit trail of heart/remove actions on playlist tracks."""
    __tablename__ = "user_interactions"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), nullable=False, index=True)
    track_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(20), nullable=False)
    timestamp = db.Column(db.DateTime, default=_utcnow, nullable=False)


class Transition(db.Model):
    __tablename__ = "transitions"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    name = db.Column(db.String(300), nullable=False)
    types = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text, nullable=True)
    stems_notes = db.Column(db.Text, nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    tracks = db.relationship("TransitionTrack", back_populates="transition",
                             order_by="TransitionTrack.position",
                             cascade="all, delete-orphan",
                             foreign_keys="TransitionTrack.transition_id")
    points = db.relationship("TransitionPoint", back_populates="transition",
                             order_by="TransitionPoint.timestamp",
                             cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "type": list(self.types or []),
            "notes": self.notes,
            "stemsNotes": self.stems_notes,
            "tags": list(self.tags or []),
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
            "tracks": [t.to_dict() for t in self.tracks],
            "points": [p.to_dict() for p in self.points],
        }


class TransitionTrack(db.Model):
    __tablename__ = "transition_tracks"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    transition_id = db.Column(db.String(36), db.ForeignKey("transitions.id", ondelete="CASCADE"), nullable=False, index=True)
    spotify_id = db.Column(db.String(64), nullable=False)
    position = db.Column(db.Integer, nullable=False)
    from_track_id = db.Column(db.String(36), db.ForeignKey("transition_tracks.id", ondelete="SET NULL"), nullable=True)
    name = db.Column(db.String(300), nullable=False)
    artist = db.Column(db.String(300), nullable=False)
    artists = db.Column(db.JSON, nullable=True)
    album = db.Column(db.String(300), nullable=True)
    album_image = db.Column(db.String(500), nullable=True)
    duration = db.Column(db.Integer, nullable=True)
    preview_url = db.Column(db.String(500), nullable=True)
    external_url = db.Column(db.String(500), nullable=True)
    bpm = db.Column(db.Float, nullable=True)
    key = db.Column(db.Integer, nullable=True)
    mode = db.Column(db.Integer, nullable=True)
    energy = db.Column(db.Float, nullable=True)
    danceability = db.Column(db.Float, nullable=True)
    valence = db.Column(db.Float, nullable=True)
    genres = db.Column(db.JSON, nullable=True)

    transition = db.relationship("Transition", back_populates="tracks", foreign_keys=[transition_id])

    def to_dict(self):
        return {
            "id": self.id,
            "spotifyId": self.spotify_id,
            "position": self.position,
            "fromTrackId": self.from_track_id,
            "name": self.name,
            "artist": self.artist,
            "artists": self.artists,
            "album": self.album,
            "albumImage": self.album_image,
            "duration": self.duration,
            "previewUrl": self.preview_url,
            "externalUrl": self.external_url,
            "bpm": self.bpm,
            "key": self.key,
            "mode": self.mode,
            "energy": self.energy,
            "danceability": self.danceability,
            "valence": self.valence,
            "genres": self.genres,
        }


class TransitionPoint(db.Model):
    __tablename__ = "transition_points"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    transition_id = db.Column(db.String(36), db.ForeignKey("transitions.id", ondelete="CASCADE"), nullable=False, index=True)
    track_id = db.Column(db.String(36), db.ForeignKey("transition_tracks.id", ondelete="CASCADE"), nullable=True)
    timestamp = db.Column(db.Integer, nullable=False)    # ms into the track
    description = db.Column(db.Text, nullable=True)
    point_type = db.Column(db.String(50), nullable=True)

    transition = db.relationship("Transition", back_populates="points")
    track = db.relationship("TransitionTrack")

    def to_dict(self):
        return {
            "id": self.id,
            "trackId": self.track_id,
            "timestamp": self.timestamp,
            "description": self.description,
            "pointType": self.point_type,
        }
