import pytest

from cloudmpd.domain.errors import EmptyPlaylist, NotFound, OutOfRange, TemporaryFailure
from cloudmpd.domain.playlist import Playlist
from cloudmpd.tests.fakes import FakePlayer


class TestPlaylist:

    def setup_method(self):
        self.playlist = Playlist()

    def test_new_playlist_is_empty_with_no_cursor(self):
        assert self.playlist.length() == 0
        assert self.playlist.position == -1
        assert self.playlist.render() == ""

    def test_add_track_returns_sequential_indices(self):
        assert self.playlist.add_track("a") == 0
        assert self.playlist.add_track("b") == 1
        assert self.playlist.add_track("a") == 2
        assert self.playlist.track_ids() == ["a", "b", "a"]

    def test_track_ids_is_a_copy(self):
        self.playlist.add_track("a")
        ids = self.playlist.track_ids()
        ids.append("b")
        assert self.playlist.length() == 1

    def test_track_at_position(self):
        self.playlist.add_track("a")
        self.playlist.add_track("b")
        assert self.playlist.track_at_position(1) == "b"

    @pytest.mark.parametrize("pos", [-1, 2, 100])
    def test_track_at_position_out_of_range(self, pos):
        self.playlist.add_track("a")
        self.playlist.add_track("b")
        with pytest.raises(OutOfRange):
            self.playlist.track_at_position(pos)

    def test_track_position_returns_first_match(self):
        for track_id in ["x", "y", "x"]:
            self.playlist.add_track(track_id)
        assert self.playlist.track_position("x") == 0
        assert self.playlist.track_position("y") == 1
        assert self.playlist.track_position("z") == -1

    def test_current_track_on_empty_playlist(self):
        with pytest.raises(EmptyPlaylist):
            self.playlist.current_track()

    def test_current_track_before_anything_played(self):
        self.playlist.add_track("a")
        with pytest.raises(OutOfRange):
            self.playlist.current_track()

    def test_set_position_validates(self):
        self.playlist.add_track("a")
        self.playlist.set_position(0)
        assert self.playlist.current_track() == "a"
        with pytest.raises(OutOfRange):
            self.playlist.set_position(1)
        assert self.playlist.position == 0

    def test_render(self):
        self.playlist.add_track("t1")
        self.playlist.add_track("t2")
        assert self.playlist.render() == "0:file: t1\n1:file: t2\n"


class TestPlayNext:

    def setup_method(self):
        self.playlist = Playlist()
        self.player = FakePlayer()
        for track_id in ["a", "b", "c"]:
            self.playlist.add_track(track_id)

    def test_advances_and_plays(self):
        self.playlist.set_position(0)
        assert self.playlist.play_next(lambda tid: f"url:{tid}", self.player) is True
        assert self.playlist.position == 1
        assert self.player.played == ["url:b"]

    def test_from_nothing_played_starts_at_zero(self):
        assert self.playlist.play_next(lambda tid: f"url:{tid}", self.player) is True
        assert self.playlist.position == 0

    def test_stops_at_end(self):
        self.playlist.set_position(2)
        assert self.playlist.play_next(lambda tid: f"url:{tid}", self.player) is False
        assert self.playlist.position == 2
        assert self.player.played == []

    @pytest.mark.parametrize("error", [NotFound("gone"), TemporaryFailure("timeout")])
    def test_resolution_failure_leaves_state_untouched(self, error):
        self.playlist.set_position(0)

        def failing(track_id):
            raise error

        assert self.playlist.play_next(failing, self.player) is False
        assert self.playlist.position == 0
        assert self.player.played == []
