from datetime import datetime, timedelta

import pytest

from djbooth import db
from djbooth.errors import Conflict, UpstreamError
from djbooth.models import RequestList, SongRequest, Vote
from djbooth.voting import (
    SESSION_COOKIE, create_song_request, delete_external_first, ranked_requests,
)


PROM = {"name": "Prom 2026", "eventType": "School Dance", "eventDate": "2026-05-01"}


def create_list(organizer, **overrides):
    response = organizer.post("/api/requests", json={**PROM, **overrides})
    assert response.status_code == 201
    return response.get_json()["list"]


def submit(client, list_id, spotify_id, first="Jordan", last="Lee"):
    return client.post(f"/api/requests/{list_id}/songs",
                       json={"spotifyId": spotify_id, "requesterFirstName": first, "requesterLastName": last})


def boost(client, list_id, song_id):
    return client.post(f"/api/requests/{list_id}/songs/{song_id}/vote")


def add_song(list_id, spotify_id, created_at=None, vote_count=0):
    song = SongRequest(list_id=list_id, spotify_id=spotify_id, name=spotify_id, artist="Someone",
                       requester_first_name="Test", requester_last_name="Visitor",
                       vote_count=vote_count, created_at=created_at or datetime.now())
    db.session.add(song)
    db.session.commit()
    return song


class TestCreateList:

    def test_links_private_playlist_when_organizer_is_signed_in(self, organizer, fake_spotify):
        request_list = create_list(organizer)

        assert request_list["spotifyPlaylistId"] == "playlist-1"
        assert request_list["publicUrl"] == f"/requests/{request_list['id']}"
        assert fake_spotify.created_playlists[0]["name"] == "Prom 2026 - Request List"

    def test_unlinked_without_organizer_token(self, client, fake_spotify):
        response = client.post("/api/requests", json=PROM)

        assert response.status_code == 201
        assert response.get_json()["list"]["spotifyPlaylistId"] is None
        assert fake_spotify.created_playlists == []

    def test_playlist_failure_is_502_and_nothing_stored(self, organizer, fake_spotify):
        fake_spotify.failing.add("user_playlist_create")

        response = organizer.post("/api/requests", json=PROM)

        assert response.status_code == 502
        assert RequestList.query.count() == 0

    @pytest.mark.parametrize("missing", ["name", "eventType", "eventDate"])
    def test_required_fields(self, organizer, fake_spotify, missing):
        body = {k: v for k, v in PROM.items() if k != missing}

        response = organizer.post("/api/requests", json=body)

        assert response.status_code == 400
        assert "required" in response.get_json()["error"]


class TestListLists:

    def test_upcoming_by_date_and_past_on_request(self, organizer, fake_spotify):
        past = create_list(organizer, name="Old", eventDate="2000-01-01")
        later = create_list(organizer, name="Later", eventDate="2999-06-01")
        sooner = create_list(organizer, name="Sooner", eventDate="2999-01-01")
        add_song(sooner["id"], "trk-x")

        upcoming = organizer.get("/api/requests").get_json()["lists"]
        everything = organizer.get("/api/requests?includePast=1").get_json()["lists"]

        assert [l["id"] for l in upcoming] == [sooner["id"], later["id"]]
        assert upcoming[0]["requestsCount"] == 1
        assert upcoming[1]["requestsCount"] == 0
        assert {l["id"] for l in everything} == {past["id"], later["id"], sooner["id"]}


class TestGetList:

    def test_mints_session_cookie_and_reports_usage(self, organizer, client, fake_spotify, fake_features):
        request_list = create_list(organizer)

        response = client.get(f"/api/requests/{request_list['id']}")

        assert response.status_code == 200
        cookie = response.headers.get("Set-Cookie")
        assert cookie.startswith(f"{SESSION_COOKIE}=")
        assert "HttpOnly" in cookie
        assert "SameSite=Lax" in cookie
        assert "Path=/" in cookie
        assert "Max-Age=31536000" in cookie
        data = response.get_json()
        assert data["session"] == {
            "requests": {"used": 0, "limit": 3, "remaining": 3},
            "boosts": {"used": 0, "limit": 5, "remaining": 5},
        }
        assert data["requests"] == []

    def test_existing_cookie_is_kept(self, organizer, client, fake_spotify):
        request_list = create_list(organizer)
        client.get(f"/api/requests/{request_list['id']}")

        second = client.get(f"/api/requests/{request_list['id']}")

        assert second.headers.get("Set-Cookie") is None

    def test_unknown_list_is_404(self, client):
        response = client.get("/api/requests/nope")

        assert response.status_code == 404
        assert response.get_json() == {"error": "Request list not found"}

    def test_ranking_is_votes_then_oldest_first(self, organizer, client, fake_spotify):
        request_list = create_list(organizer)
        start = datetime(2026, 1, 1, 12, 0, 0)
        first = add_song(request_list["id"], "trk-1", created_at=start)
        boosted = add_song(request_list["id"], "trk-2", created_at=start + timedelta(seconds=1), vote_count=2)
        last = add_song(request_list["id"], "trk-3", created_at=start + timedelta(seconds=2))

        orders = [[r["id"] for r in client.get(f"/api/requests/{request_list['id']}").get_json()["requests"]]
                  for _ in range(3)]

        assert orders[0] == [boosted.id, first.id, last.id]
        assert orders[1] == orders[0] == orders[2]


class TestSubmitRequest:

    def test_duplicate_track_is_rejected(self, organizer, client, fake_spotify, fake_features):
        request_list = create_list(organizer)

        created = submit(client, request_list["id"], "trk-a")
        duplicate = submit(client, request_list["id"], "trk-a")

        assert created.status_code == 201
        song = created.get_json()["request"]
        assert song["name"] == "Song A"
        assert song["artist"] == "Jordan Lee"
        assert song["voteCount"] == 0
        assert song["bpm"] == 120.0
        assert song["genres"] == ["pop"]
        assert duplicate.status_code == 409
        assert duplicate.get_json()["duplicate"] is True
        assert SongRequest.query.filter_by(list_id=request_list["id"]).count() == 1

    def test_duplicate_from_another_visitor_is_rejected(self, organizer, client, other_client,
                                                         fake_spotify, fake_features):
        request_list = create_list(organizer)
        submit(client, request_list["id"], "trk-a")

        response = submit(other_client, request_list["id"], "trk-a", first="Sam", last="Park")

        assert response.status_code == 409
        assert response.get_json()["duplicate"] is True

    def test_fourth_request_from_a_session_is_429(self, organizer, client, fake_spotify, fake_features):
        request_list = create_list(organizer)
        for spotify_id in ["trk-a", "trk-b", "trk-c"]:
            assert submit(client, request_list["id"], spotify_id).status_code == 201

        response = submit(client, request_list["id"], "trk-d")

        assert response.status_code == 429
        assert response.get_json()["limit"] == 3
        usage = client.get(f"/api/requests/{request_list['id']}").get_json()["session"]["requests"]
        assert usage == {"used": 3, "limit": 3, "remaining": 0}

    def test_quota_is_per_session(self, organizer, client, other_client, fake_spotify, fake_features):
        request_list = create_list(organizer)
        for spotify_id in ["trk-a", "trk-b", "trk-c"]:
            submit(client, request_list["id"], spotify_id)

        assert submit(other_client, request_list["id"], "trk-d").status_code == 201

    def test_missing_fields_are_400(self, organizer, client, fake_spotify):
        request_list = create_list(organizer)

        response = client.post(f"/api/requests/{request_list['id']}/songs", json={"spotifyId": "trk-a"})

        assert response.status_code == 400

    def test_unknown_list_is_404(self, client, fake_spotify):
        assert submit(client, "missing", "trk-a").status_code == 404

    def test_rejected_first_call_still_sets_cookie(self, client, fake_spotify):
        response = submit(client, "missing", "trk-a")

        assert response.headers.get("Set-Cookie", "").startswith(f"{SESSION_COOKIE}=")

    def test_unique_constraint_backstops_racing_duplicates(self, app):
        request_list = RequestList(name="Race", event_type="Party", event_date="2099-01-01")
        db.session.add(request_list)
        db.session.commit()
        metadata = {"name": "Song A", "artist": "Jordan Lee"}
        create_song_request(request_list, "trk-a", metadata, "Jordan", "Lee", "s1")

        with pytest.raises(Conflict) as excinfo:
            create_song_request(request_list, "trk-a", metadata, "Sam", "Park", "s2")

        assert excinfo.value.payload["duplicate"] is True
        assert SongRequest.query.count() == 1


class TestBoost:

    def test_second_boost_from_same_session_is_409(self, organizer, client, fake_spotify, fake_features):
        request_list = create_list(organizer)
        song_a = submit(client, request_list["id"], "trk-a").get_json()["request"]
        submit(client, request_list["id"], "trk-b")

        first = boost(client, request_list["id"], song_a["id"])
        second = boost(client, request_list["id"], song_a["id"])

        assert first.status_code == 201
        assert first.get_json()["hasVoted"] is True
        assert first.get_json()["request"]["voteCount"] == 1
        assert second.status_code == 409
        assert second.get_json()["hasVoted"] is True
        assert db.session.get(SongRequest, song_a["id"]).vote_count == 1

    def test_counter_matches_vote_rows(self, organizer, client, other_client, fake_spotify, fake_features):
        request_list = create_list(organizer)
        song = submit(client, request_list["id"], "trk-a").get_json()["request"]

        boost(client, request_list["id"], song["id"])
        boost(other_client, request_list["id"], song["id"])
        boost(other_client, request_list["id"], song["id"])

        assert db.session.get(SongRequest, song["id"]).vote_count == 2
        assert Vote.query.filter_by(request_id=song["id"]).count() == 2

    def test_has_voted_is_per_session(self, organizer, client, other_client, fake_spotify, fake_features):
        request_list = create_list(organizer)
        song = submit(client, request_list["id"], "trk-a").get_json()["request"]
        boost(client, request_list["id"], song["id"])

        mine = client.get(f"/api/requests/{request_list['id']}").get_json()
        theirs = other_client.get(f"/api/requests/{request_list['id']}").get_json()

        assert mine["requests"][0]["hasVoted"] is True
        assert mine["session"]["boosts"]["used"] == 1
        assert theirs["requests"][0]["hasVoted"] is False

    def test_sixth_boost_hits_the_limit(self, organizer, client, fake_spotify):
        request_list = create_list(organizer)
        songs = [add_song(request_list["id"], f"trk-{n}") for n in range(6)]
        for song in songs[:5]:
            assert boost(client, request_list["id"], song.id).status_code == 201

        response = boost(client, request_list["id"], songs[5].id)

        assert response.status_code == 409
        assert response.get_json()["limit"] == 5
        assert db.session.get(SongRequest, songs[5].id).vote_count == 0

    def test_unknown_song_is_404(self, organizer, client, fake_spotify):
        request_list = create_list(organizer)

        assert boost(client, request_list["id"], "missing").status_code == 404

    def test_song_from_another_list_is_404(self, organizer, client, fake_spotify):
        list_one = create_list(organizer)
        list_two = create_list(organizer, name="Other")
        song = add_song(list_one["id"], "trk-a")

        assert boost(client, list_two["id"], song.id).status_code == 404


class TestOrganizerActions:

    def test_update_description_needs_organizer(self, organizer, client, fake_spotify):
        request_list = create_list(organizer)
        path = f"/api/requests/{request_list['id']}"

        anonymous = client.patch(path, json={"description": "Dress code: sparkles"})
        signed_in = organizer.patch(path, json={"description": "Dress code: sparkles"})

        assert anonymous.status_code == 401
        assert signed_in.status_code == 200
        assert signed_in.get_json()["list"]["description"] == "Dress code: sparkles"

    def test_delete_list_needs_organizer(self, organizer, client, fake_spotify):
        request_list = create_list(organizer)

        response = client.delete(f"/api/requests/{request_list['id']}")

        assert response.status_code == 401
        assert db.session.get(RequestList, request_list["id"]) is not None

    def test_delete_list_keeps_row_when_unfollow_fails(self, organizer, fake_spotify):
        request_list = create_list(organizer)
        fake_spotify.failing.add("current_user_unfollow_playlist")

        response = organizer.delete(f"/api/requests/{request_list['id']}")

        assert response.status_code == 502
        assert db.session.get(RequestList, request_list["id"]) is not None

    def test_delete_list_cascades(self, organizer, client, fake_spotify, fake_features):
        request_list = create_list(organizer)
        song = submit(client, request_list["id"], "trk-a").get_json()["request"]
        boost(client, request_list["id"], song["id"])

        response = organizer.delete(f"/api/requests/{request_list['id']}")

        assert response.status_code == 200
        assert fake_spotify.unfollowed == ["playlist-1"]
        assert RequestList.query.count() == 0
        assert SongRequest.query.count() == 0
        assert Vote.query.count() == 0

    def test_delete_unlinked_list_skips_spotify(self, organizer, client, fake_spotify):
        request_list = client.post("/api/requests", json=PROM).get_json()["list"]

        response = organizer.delete(f"/api/requests/{request_list['id']}")

        assert response.status_code == 200
        assert fake_spotify.unfollowed == []

    def test_delete_song_keeps_row_when_playlist_removal_fails(self, organizer, client, fake_spotify, fake_features):
        request_list = create_list(organizer)
        song = submit(client, request_list["id"], "trk-a").get_json()["request"]
        fake_spotify.failing.add("playlist_remove_all_occurrences_of_items")

        response = organizer.delete(f"/api/requests/{request_list['id']}/songs/{song['id']}")

        assert response.status_code == 502
        assert db.session.get(SongRequest, song["id"]) is not None

    def test_delete_song(self, organizer, client, fake_spotify, fake_features):
        request_list = create_list(organizer)
        song = submit(client, request_list["id"], "trk-a").get_json()["request"]

        response = organizer.delete(f"/api/requests/{request_list['id']}/songs/{song['id']}")

        assert response.status_code == 200
        assert fake_spotify.removed == [("playlist-1", ["spotify:track:trk-a"])]
        assert db.session.get(SongRequest, song["id"]) is None


class TestDeleteExternalFirst:

    def test_local_step_skipped_when_external_fails(self):
        calls = []

        def external():
            raise RuntimeError("spotify down")

        with pytest.raises(UpstreamError):
            delete_external_first(external, lambda: calls.append("local"), "song")

        assert calls == []

    def test_no_external_step_goes_straight_to_local(self):
        calls = []

        delete_external_first(None, lambda: calls.append("local"), "song")

        assert calls == ["local"]


def test_ranked_requests_tie_break(app):
    request_list = RequestList(name="Tie", event_type="Party", event_date="2099-01-01")
    db.session.add(request_list)
    db.session.commit()
    start = datetime(2026, 3, 1)
    later = add_song(request_list.id, "late", created_at=start + timedelta(minutes=5), vote_count=1)
    earlier = add_song(request_list.id, "early", created_at=start, vote_count=1)

    assert [s.id for s in ranked_requests(request_list.id)] == [earlier.id, later.id]
