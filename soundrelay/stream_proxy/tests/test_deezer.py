import httpx
import pytest

from soundrelay.common.errors import MalformedProviderResponse, ProviderError
from soundrelay.stream_proxy.deezer import DeezerClient, normalize_track, normalize_tracks

HARDER = {
    "id": 3135556,
    "title": "Harder, Better, Faster, Stronger",
    "duration": "224",
    "preview": "https://cdns-preview-d.dzcdn.net/stream/c-d.mp3",
    "artist": {"id": 27, "name": "Daft Punk"},
    "album": {
        "id": 302127,
        "title": "Discovery",
        "cover_small": "https://e-cdns-images.dzcdn.net/56x56.jpg",
        "cover_xl": "https://e-cdns-images.dzcdn.net/1000x1000.jpg",
    },
}


def _client(handler) -> DeezerClient:
    return DeezerClient("https://api.deezer.test", transport=httpx.MockTransport(handler))


def test_normalize_track_picks_largest_album_cover() -> None:
    track = normalize_track(HARDER)

    assert track.id == "3135556"
    assert track.artist == "Daft Punk"
    assert track.album == "Discovery"
    assert track.duration_seconds == 224
    assert track.cover_url == "https://e-cdns-images.dzcdn.net/1000x1000.jpg"
    assert track.preview_url.endswith("c-d.mp3")


def test_normalize_track_accepts_flat_shapes() -> None:
    track = normalize_track(
        {"id": 1, "title": "Song", "artist": "Someone", "album": "Album", "cover": {"medium": "m.jpg"}}
    )
    assert track.artist == "Someone"
    assert track.album == "Album"
    assert track.cover_url == "m.jpg"
    assert track.preview_url is None

    assert normalize_track({"id": 2, "title": "Other", "cover": "plain.jpg"}).cover_url == "plain.jpg"


def test_normalize_track_rejects_missing_identity() -> None:
    with pytest.raises(MalformedProviderResponse):
        normalize_track({"title": "No id"})
    with pytest.raises(MalformedProviderResponse):
        normalize_track("not a dict")


def test_normalize_tracks_skips_malformed_items() -> None:
    tracks = normalize_tracks([HARDER, {"id": 9}, None])
    assert [t.id for t in tracks] == ["3135556"]

    with pytest.raises(MalformedProviderResponse):
        normalize_tracks({"data": []})


@pytest.mark.anyio
async def test_search_tracks_sends_query_and_limit() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, json={"data": [HARDER]})

    tracks = await _client(handler).search_tracks("daft punk", 3)

    assert [t.title for t in tracks] == ["Harder, Better, Faster, Stronger"]
    assert seen[0].path == "/search"
    assert seen[0].params["q"] == "daft punk"
    assert seen[0].params["limit"] == "3"


@pytest.mark.anyio
async def test_error_object_in_ok_response_raises_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": {"type": "DataException", "message": "no data"}})

    with pytest.raises(ProviderError, match="no data"):
        await _client(handler).track_by_id("0")


@pytest.mark.anyio
async def test_http_status_and_invalid_json_are_provider_errors() -> None:
    def server_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="busy")

    def garbage(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>")

    with pytest.raises(ProviderError, match="HTTP 503"):
        await _client(server_error).chart_tracks()
    with pytest.raises(MalformedProviderResponse):
        await _client(garbage).chart_tracks()


@pytest.mark.anyio
async def test_genre_tracks_skips_failing_artists() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/genre/113/artists":
            return httpx.Response(200, json={"data": [{"id": 1}, {"id": 2}, {"name": "no id"}]})
        if path == "/artist/1/top":
            return httpx.Response(200, json={"data": [HARDER]})
        return httpx.Response(500)

    tracks = await _client(handler).genre_tracks("113", limit=10)

    assert [t.id for t in tracks] == ["3135556"]


@pytest.mark.anyio
async def test_find_preview_returns_first_track_with_preview() -> None:
    no_preview = dict(HARDER, id=1, preview="")

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["q"] == "Harder Daft Punk"
        return httpx.Response(200, json={"data": [no_preview, HARDER]})

    track = await _client(handler).find_preview("Harder", "Daft Punk")

    assert track.id == "3135556"
