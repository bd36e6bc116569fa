import pytest
from aiohttp import web
from aiohttp import test_utils

from conftest import RecordingSleep
from dailydraw.backend import BackendClient, BackendError, DrawError
from dailydraw.config import BackendConfig
from dailydraw.entries import EntryLoader
from dailydraw.models import EntryStatus, NotificationType
from dailydraw.notifications import NotificationBroadcaster


def _app(routes) -> web.Application:
    app = web.Application()
    app.add_routes(routes)
    return app


async def _client(app: web.Application, **overrides):
    server = test_utils.TestServer(app)
    await server.start_server()
    config = BackendConfig(base_url=f"http://{server.host}:{server.port}", **overrides)
    return server, BackendClient(config)


@pytest.mark.asyncio
async def test_fetch_entries_accepts_envelope_and_legacy_keys():
    async def feed(request):
        return web.json_response(
            {
                "success": True,
                "photos": [
                    {"id": 7, "s3url": "https://bucket.example/7.jpg", "filename": "dawn.jpg", "user": "carol"},
                    {"id": 8, "imageRef": "https://bucket.example/8.jpg", "uploadedAt": 1772360000000},
                    {"description": "no id"},
                    "garbage",
                ],
            }
        )

    server, client = await _client(_app([web.get("/api/photos/lottery-feed", feed)]))
    try:
        entries = await client.fetch_entries()
    finally:
        await client.close()
        await server.close()

    assert [entry.id for entry in entries] == ["7", "8"]
    assert entries[0].image_ref == "https://bucket.example/7.jpg"
    assert entries[0].description == "dawn.jpg"
    assert entries[0].owner_ref == "carol"
    assert entries[1].description == "Untitled"
    assert entries[1].owner_ref == "Anonymous"
    assert entries[1].uploaded_at is not None


@pytest.mark.asyncio
async def test_fetch_entries_accepts_a_plain_list():
    async def feed(request):
        return web.json_response([{"id": "a1", "url": "https://bucket.example/a1.jpg"}])

    server, client = await _client(_app([web.get("/api/photos/lottery-feed", feed)]))
    try:
        entries = await client.fetch_entries()
    finally:
        await client.close()
        await server.close()

    assert [entry.id for entry in entries] == ["a1"]


@pytest.mark.asyncio
async def test_http_error_carries_status():
    async def feed(request):
        return web.Response(status=503, text="maintenance")

    server, client = await _client(_app([web.get("/api/photos/lottery-feed", feed)]))
    try:
        with pytest.raises(BackendError) as excinfo:
            await client.fetch_entries()
    finally:
        await client.close()
        await server.close()

    assert excinfo.value.status == 503


@pytest.mark.asyncio
async def test_trigger_draw_returns_flagged_winner_and_sends_token():
    seen_headers = []

    async def spin(request):
        seen_headers.append(request.headers.get("Authorization"))
        return web.json_response(
            {
                "success": True,
                "winner": {
                    "winnerId": 42,
                    "s3Url": "https://bucket.example/42.jpg",
                    "description": "Harbour at dawn",
                    "submittedBy": "bob",
                },
            }
        )

    server, client = await _client(
        _app([web.post("/api/photos/spin-lottery", spin)]), auth_token="secret"
    )
    try:
        winner = await client.trigger_draw()
    finally:
        await client.close()
        await server.close()

    assert winner.id == "42"
    assert winner.status is EntryStatus.WINNER
    assert winner.owner_ref == "bob"
    assert seen_headers == ["Bearer secret"]


@pytest.mark.asyncio
async def test_trigger_draw_without_winner_raises_draw_error():
    async def spin(request):
        return web.json_response({"success": False, "message": "No photos in draw"})

    server, client = await _client(_app([web.post("/api/photos/spin-lottery", spin)]))
    try:
        with pytest.raises(DrawError, match="No photos in draw"):
            await client.trigger_draw()
    finally:
        await client.close()
        await server.close()


@pytest.mark.asyncio
async def test_fetch_current_winner():
    payloads = [
        {"winner": {"id": 3, "s3Url": "https://bucket.example/3.jpg", "description": "Fog"}},
        {"winner": None},
    ]

    async def current(request):
        return web.json_response(payloads.pop(0))

    server, client = await _client(_app([web.get("/api/photos/current-winner", current)]))
    try:
        winner = await client.fetch_current_winner()
        nobody = await client.fetch_current_winner()
    finally:
        await client.close()
        await server.close()

    assert winner.id == "3"
    assert winner.is_winner
    assert nobody is None


@pytest.mark.asyncio
async def test_unreachable_backend_raises_backend_error():
    client = BackendClient(BackendConfig(base_url="http://127.0.0.1:9", timeout_seconds=2))
    try:
        with pytest.raises(BackendError):
            await client.fetch_entries()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_out_of_range_upload_timestamps_are_dropped():
    async def feed(request):
        return web.json_response(
            [
                {"id": 1, "uploadedAt": 10**30},
                {"id": 2, "uploadedAt": float("inf")},
                {"id": 3, "uploadDate": "2026-03-01T09:30:00Z"},
            ]
        )

    server, client = await _client(_app([web.get("/api/photos/lottery-feed", feed)]))
    broadcaster = NotificationBroadcaster()
    loader = EntryLoader(client, broadcaster, sleep=RecordingSleep())
    try:
        entries = await loader.load()
    finally:
        await client.close()
        await server.close()

    assert [entry.id for entry in entries] == ["1", "2", "3"]
    assert entries[0].uploaded_at is None
    assert entries[1].uploaded_at is None
    assert entries[2].uploaded_at is not None
    assert not loader.failed
    assert broadcaster.history() == ()


@pytest.mark.asyncio
async def test_undecodable_error_body_is_a_backend_error():
    async def feed(request):
        return web.Response(status=503, body=b"\xff\xfe bad", content_type="text/html")

    server, client = await _client(_app([web.get("/api/photos/lottery-feed", feed)]))
    try:
        with pytest.raises(BackendError) as excinfo:
            await client.fetch_entries()
    finally:
        await client.close()
        await server.close()

    assert excinfo.value.status == 503


@pytest.mark.asyncio
async def test_loader_turns_undecodable_errors_into_the_sticky_failure():
    calls = []

    async def feed(request):
        calls.append(request.path)
        return web.Response(status=503, body=b"\xff\xfe bad", content_type="text/html")

    server, client = await _client(_app([web.get("/api/photos/lottery-feed", feed)]))
    broadcaster = NotificationBroadcaster()
    sleeper = RecordingSleep()
    loader = EntryLoader(client, broadcaster, max_attempts=3, backoff_base=2.0, sleep=sleeper)
    try:
        entries = await loader.load()
    finally:
        await client.close()
        await server.close()

    assert entries == []
    assert len(calls) == 3
    assert sleeper.calls == [2.0, 4.0]
    assert loader.failed
    assert [n.type for n in broadcaster.history()] == [NotificationType.ERROR]
