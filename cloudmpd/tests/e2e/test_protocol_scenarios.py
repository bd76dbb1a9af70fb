"""End-to-end exchanges through a client session with fake collaborators."""

from cloudmpd.application.content import ContentCache
from cloudmpd.application.daemon import Daemon
from cloudmpd.application.dispatcher import Dispatcher
from cloudmpd.application.session import ClientSession
from cloudmpd.infrastructure.store.sqlite import SqliteContentStore
from cloudmpd.tests.fakes import FakeCatalogue, FakePlayer, make_track


class TestProtocolScenarios:

    def setup_method(self):
        self.numb = make_track("cn1", title="Comfortably Numb", artist="Pink Floyd",
                               album="The Wall", duration_ms=382296)
        self.live = make_track("cn2", title="Comfortably Numb (Live)", artist="Pink Floyd",
                               album="Pulse", duration_ms=563000)
        self.catalogue = FakeCatalogue(tracks=[self.numb, self.live, make_track("other")])
        self.store = SqliteContentStore(":memory:")
        self.player = FakePlayer()
        self.daemon = Daemon(ContentCache(self.catalogue, self.store), self.player)
        self.session = ClientSession(Dispatcher(self.daemon), "test")

    def teardown_method(self):
        self.store.close()

    def test_search_by_quoted_phrase(self):
        response = self.session.feed('search any "Comfortably Numb"')
        assert response == (
            "file: cn1\nTime: 382\nArtist: Pink Floyd\nTitle: Comfortably Numb\nAlbum: The Wall\n"
            "file: cn2\nTime: 563\nArtist: Pink Floyd\nTitle: Comfortably Numb (Live)\nAlbum: Pulse\n"
            "OK\n"
        )
        assert self.catalogue.calls[0] == ("search_tracks", "Comfortably Numb", 200)

    def test_playlistfind_for_track_never_added(self):
        assert self.session.feed("playlistfind 0 track123") == "ACK [50@0] {playlistfind}\n"

    def test_command_list_ok_mode(self):
        responses = [self.session.feed(line) for line in (
            "command_list_ok_begin", "add track1", "add track2", "command_list_end")]
        assert responses[:3] == ["", "", ""]
        assert responses[3] == "list_OK\nlist_OK\nOK\n"
        assert self.daemon.playlist.length() == 2
        assert self.daemon.playlist.track_ids() == ["track1", "track2"]

    def test_status_when_stopped(self):
        for track_id in ("a", "b", "c"):
            self.session.feed(f"add {track_id}")
        response = self.session.feed("status")
        assert "playlist: 0\n" in response
        assert "playlistlength: 3\n" in response
        assert "state: stop\n" in response
        assert "song:" not in response
        assert "songid:" not in response
        assert response.endswith("OK\n")

    def test_search_results_are_persisted_for_later_lookups(self):
        self.session.feed('search any "Comfortably Numb"')
        self.session.feed("add cn2")
        response = self.session.feed("playlistinfo 0")
        assert response.startswith("file: cn2\n")
        assert self.catalogue.count("fetch_track") == 0
        assert self.store.get_track("cn1") == self.numb
