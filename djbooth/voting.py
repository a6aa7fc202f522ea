import logging
from flask import request, after_this_request
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from . import db
from .models import RequestList, SongRequest, Vote
from .errors import NotFound, Conflict, TooManyRequests, UpstreamError
from .spotify import unfollow_playlist, remove_tracks_from_playlist
from .utils import new_session_key, today_string


logger = logging.getLogger(__name__)

SESSION_COOKIE = "song_request_session"
SESSION_COOKIE_MAX_AGE = 60 * 60 * 24 * 365
REQUESTS_PER_SESSION_LIMIT = 3
BOOSTS_PER_SESSION_LIMIT = 5


def ensure_session_key():
    """
    Return the caller's anonymous session key, minting one when the cookie is absent.

    A minted key is written back on whatever response the request ends with,
    error responses included, so a rejected first call still pins the visitor.
    """
    session_key = request.cookies.get(SESSION_COOKIE)
    if session_key:
        return session_key

    session_key = new_session_key()

    @after_this_request
    def set_session_cookie(response):
        response.set_cookie(SESSION_COOKIE, session_key,
                            max_age=SESSION_COOKIE_MAX_AGE,
                            httponly=True, samesite="Lax", path="/")
        return response

    return session_key


def get_list_or_404(list_id):
    request_list = db.session.get(RequestList, list_id)
    if request_list is None:
        raise NotFound("Request list not found")
    return request_list


def get_song_or_404(list_id, song_id):
    song = SongRequest.query.filter_by(id=song_id, list_id=list_id).first()
    if song is None:
        raise NotFound("Requested song not found")
    return song


def list_request_lists(include_past=False):
    """Upcoming lists by event date (newest first within a day), or every list newest first."""
    query = RequestList.query
    if include_past:
        query = query.order_by(RequestList.created_at.desc())
    else:
        # event_date is YYYY-MM-DD so string comparison is date comparison
        query = (query.filter(RequestList.event_date >= today_string())
                 .order_by(RequestList.event_date.asc(), RequestList.created_at.desc()))

    counts = dict(db.session.query(SongRequest.list_id, func.count(SongRequest.id))
                  .group_by(SongRequest.list_id).all())

    lists = []
    for request_list in query.all():
        data = request_list.to_dict()
        data["requestsCount"] = counts.get(request_list.id, 0)
        lists.append(data)
    return lists


def _quota(used, limit):
    return {"used": used, "limit": limit, "remaining": max(limit - used, 0)}


def count_session_requests(list_id, session_key):
    return SongRequest.query.filter_by(list_id=list_id, requester_session_key=session_key).count()


def count_session_boosts(list_id, session_key):
    return (Vote.query.join(SongRequest, Vote.request_id == SongRequest.id)
            .filter(SongRequest.list_id == list_id, Vote.session_key == session_key)
            .count())


def session_usage(list_id, session_key):
    return {
        "requests": _quota(count_session_requests(list_id, session_key), REQUESTS_PER_SESSION_LIMIT),
        "boosts": _quota(count_session_boosts(list_id, session_key), BOOSTS_PER_SESSION_LIMIT),
    }


def voted_request_ids(list_id, session_key):
    rows = (db.session.query(Vote.request_id)
            .join(SongRequest, Vote.request_id == SongRequest.id)
            .filter(SongRequest.list_id == list_id, Vote.session_key == session_key)
            .all())
    return {row.request_id for row in rows}


def ranked_requests(list_id):
    """Most boosted first; equal counts keep submission order."""
    return (SongRequest.query.filter_by(list_id=list_id)
            .order_by(SongRequest.vote_count.desc(), SongRequest.created_at.asc(), SongRequest.id.asc())
            .all())


def list_view(request_list, session_key):
    voted = voted_request_ids(request_list.id, session_key)
    return {
        "list": request_list.to_dict(),
        "session": session_usage(request_list.id, session_key),
        "requests": [song.to_dict(has_voted=song.id in voted) for song in ranked_requests(request_list.id)],
    }


def _duplicate_conflict(list_id, spotify_id):
    existing = SongRequest.query.filter_by(list_id=list_id, spotify_id=spotify_id).first()
    return Conflict("This song is already on the request list.",
                    request=existing.to_dict() if existing else None,
                    duplicate=True)


def check_request_allowed(request_list, spotify_id, session_key):
    """
    Reject a submission before any catalog call is spent on it.

    Raises:
        TooManyRequests: the session already holds its share of requests on this list
        Conflict: the track is already on the list (``duplicate: true``)
    """
    used = count_session_requests(request_list.id, session_key)
    if used >= REQUESTS_PER_SESSION_LIMIT:
        raise TooManyRequests(f"Only {REQUESTS_PER_SESSION_LIMIT} requests per person.",
                              limit=REQUESTS_PER_SESSION_LIMIT, used=used)

    if SongRequest.query.filter_by(list_id=request_list.id, spotify_id=spotify_id).first():
        raise _duplicate_conflict(request_list.id, spotify_id)


def create_song_request(request_list, spotify_id, metadata, first_name, last_name, session_key):
    """
    Insert a SongRequest from catalog metadata.

    The (list, track) unique constraint settles concurrent duplicates: the losing
    insert is rolled back and reported as a duplicate.
    """
    song = SongRequest(
        list_id=request_list.id,
        spotify_id=spotify_id,
        name=metadata["name"],
        artist=metadata["artist"],
        artists=metadata.get("artists"),
        album=metadata.get("album"),
        album_image=metadata.get("album_image"),
        duration=metadata.get("duration"),
        preview_url=metadata.get("preview_url"),
        external_url=metadata.get("external_url"),
        bpm=metadata.get("bpm"),
        energy=metadata.get("energy"),
        danceability=metadata.get("danceability"),
        valence=metadata.get("valence"),
        audio_features=metadata.get("audio_features"),
        genres=metadata.get("genres"),
        requester_first_name=first_name,
        requester_last_name=last_name,
        requester_session_key=session_key,
    )
    db.session.add(song)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Concurrent duplicate request for {spotify_id} on list {request_list.id}")
        raise _duplicate_conflict(request_list.id, spotify_id)
    return song


def boost_request(list_id, song_id, session_key):
    """
    Record one boost from ``session_key`` and bump the song's counter.

    The vote row and the counter increment commit together. The per-session boost
    cap is a count taken before that transaction, so two racing boosts near the cap
    can both land; the per-song uniqueness of a vote is enforced by the schema.

    Raises:
        NotFound: unknown list or song
        Conflict: ``hasVoted: true`` on a repeat boost, ``limit`` payload when the cap is reached
    """
    song = get_song_or_404(list_id, song_id)

    if Vote.query.filter_by(request_id=song.id, session_key=session_key).first():
        raise Conflict("You already boosted this song.", request=song.to_dict(has_voted=True), hasVoted=True)

    used = count_session_boosts(list_id, session_key)
    if used >= BOOSTS_PER_SESSION_LIMIT:
        raise Conflict(f"Only {BOOSTS_PER_SESSION_LIMIT} boosts per person.",
                       limit=BOOSTS_PER_SESSION_LIMIT, used=used)

    try:
        db.session.add(Vote(request_id=song.id, session_key=session_key))
        db.session.flush()
        song.vote_count = SongRequest.vote_count + 1
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        song = get_song_or_404(list_id, song_id)
        raise Conflict("You already boosted this song.", request=song.to_dict(has_voted=True), hasVoted=True)

    db.session.refresh(song)
    return song


def delete_external_first(external_step, local_step, what):
    """
    Two-phase delete: the external playlist change runs first and the local delete
    only runs if it succeeded. ``external_step`` is None when nothing is linked.

    Raises:
        UpstreamError: the external step failed; the local rows are untouched
    """
    if external_step is not None:
        try:
            external_step()
        except Exception as e:
            logger.error(f"External delete of {what} failed, keeping local rows: {e}")
            raise UpstreamError(f"Failed to delete {what} from Spotify playlist")

    local_step()


def _delete_and_commit(row):
    db.session.delete(row)
    db.session.commit()


def delete_request_list(sp, request_list):
    external_step = None
    if request_list.spotify_playlist_id:
        external_step = lambda: unfollow_playlist(sp, request_list.spotify_playlist_id)

    delete_external_first(external_step, lambda: _delete_and_commit(request_list), "request list")


def delete_song_request(sp, request_list, song):
    external_step = None
    if request_list.spotify_playlist_id:
        external_step = lambda: remove_tracks_from_playlist(sp, request_list.spotify_playlist_id, [song.spotify_id])

    delete_external_first(external_step, lambda: _delete_and_commit(song), "song")
