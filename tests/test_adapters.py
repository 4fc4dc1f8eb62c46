"""Tests for the platform adapters against mocked HTTP endpoints.

WHY: Adapters translate between our publish flow and each platform's
API. A wrong status mapping leaves a post polling forever or marks a
rejected video as published; a broken refresh silently logs the user out.

HOW: Every adapter gets an httpx.AsyncClient on an httpx.MockTransport
whose handler plays the platform. Tokens live in a TokenStore under
tmp_path and client credentials come from monkeypatched env vars. No
real network access, no real sleeping.
"""

from __future__ import annotations

import asyncio
import json
import math
from urllib.parse import parse_qs

import httpx
import pytest

from clipcast.config import (
    GOOGLE_TOKEN_URL,
    INSTAGRAM_GRAPH_BASE,
    TIKTOK_TOKEN_URL,
    X_TWEET_URL,
    X_UPLOAD_URL,
    YOUTUBE_UPLOAD_URL,
    YOUTUBE_VIDEO_URL,
)
from clipcast.errors import (
    ConfigurationError,
    CredentialError,
    TerminalPlatformRejection,
    TransientNetworkError,
)
from clipcast.publish.adapters import build_adapters
from clipcast.publish.adapters.base import Credential
from clipcast.publish.adapters.instagram import InstagramAdapter
from clipcast.publish.adapters.local import LocalAdapter
from clipcast.publish.adapters.tiktok import TikTokAdapter
from clipcast.publish.adapters.youtube import YouTubeAdapter, parse_range_header
from clipcast.publish.adapters.x import XAdapter, oauth1_header
from clipcast.publish.models import Destination
from clipcast.publish.platforms import PublishContent
from clipcast.publish.tokens import TokenStore

NOW = 1_000_000.0
CREDENTIAL = Credential(access_token="tok", expires_at=NOW + 3600)


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _form(request):
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def _unexpected(request):
    raise AssertionError("unexpected request: {} {}".format(request.method, request.url))


@pytest.fixture
def tokens(tmp_path):
    return TokenStore(tmp_path / "tokens.json")


@pytest.fixture
def tiktok_env(monkeypatch):
    monkeypatch.setenv("TIKTOK_CLIENT_KEY", "key")
    monkeypatch.setenv("TIKTOK_CLIENT_SECRET", "secret")


@pytest.fixture
def google_env(monkeypatch):
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "gid")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "gsecret")


@pytest.fixture
def x_env(monkeypatch):
    monkeypatch.setenv("X_CONSUMER_KEY", "ckey")
    monkeypatch.setenv("X_CONSUMER_SECRET", "csecret")


# ---------------------------------------------------------------------------
# TestCredentials
# ---------------------------------------------------------------------------


class TestCredentials:
    """get_valid_credential() refreshes shortly before expiry."""

    def test_fresh_token_used_as_is(self, tokens):
        tokens.save_token("tiktok", "current", "r1", NOW + 3600)

        async def main():
            async with _client(_unexpected) as client:
                adapter = TikTokAdapter(tokens, client, clock=lambda: NOW)
                return await adapter.get_valid_credential()

        assert asyncio.run(main()).access_token == "current"

    def test_refresh_near_expiry(self, tokens, tiktok_env):
        tokens.save_token("tiktok", "old", "r1", NOW + 60, account_name="pod")
        calls = []

        def handler(request):
            calls.append(_form(request))
            return httpx.Response(
                200, json={"access_token": "new", "refresh_token": "r2", "expires_in": 86400}
            )

        async def main():
            async with _client(handler) as client:
                adapter = TikTokAdapter(tokens, client, clock=lambda: NOW)
                return await adapter.get_valid_credential()

        credential = asyncio.run(main())
        assert credential.access_token == "new"
        assert calls == [{
            "client_key": "key",
            "client_secret": "secret",
            "grant_type": "refresh_token",
            "refresh_token": "r1",
        }]
        stored = tokens.get_token("tiktok")
        assert stored.refresh_token == "r2"
        assert stored.expires_at == NOW + 86400
        assert stored.account_name == "pod"

    def test_refresh_keeps_old_refresh_token(self, tokens, google_env):
        tokens.save_token("youtube", "old", "keep-me", NOW - 10)

        def handler(request):
            assert str(request.url) == GOOGLE_TOKEN_URL
            return httpx.Response(200, json={"access_token": "new", "expires_in": 3600})

        async def main():
            async with _client(handler) as client:
                adapter = YouTubeAdapter(tokens, client, clock=lambda: NOW)
                return await adapter.get_valid_credential()

        assert asyncio.run(main()).refresh_token == "keep-me"

    def test_not_connected(self, tokens):
        async def main():
            async with _client(_unexpected) as client:
                await TikTokAdapter(tokens, client).get_valid_credential()

        with pytest.raises(CredentialError, match="not connected"):
            asyncio.run(main())

    def test_expired_without_refresh_token(self, tokens):
        tokens.save_token("tiktok", "old", None, NOW - 1)

        async def main():
            async with _client(_unexpected) as client:
                await TikTokAdapter(tokens, client, clock=lambda: NOW).get_valid_credential()

        with pytest.raises(CredentialError, match="reconnect"):
            asyncio.run(main())

    def test_refresh_rejected(self, tokens, tiktok_env):
        tokens.save_token("tiktok", "old", "r1", NOW + 1)

        def handler(request):
            return httpx.Response(400, json={"error": "invalid_grant"})

        async def main():
            async with _client(handler) as client:
                await TikTokAdapter(tokens, client, clock=lambda: NOW).get_valid_credential()

        with pytest.raises(CredentialError, match="refresh failed"):
            asyncio.run(main())
        assert tokens.get_token("tiktok").access_token == "old"

    def test_refresh_network_error(self, tokens, tiktok_env):
        tokens.save_token("tiktok", "old", "r1", NOW + 1)

        def handler(request):
            raise httpx.ConnectError("down", request=request)

        async def main():
            async with _client(handler) as client:
                await TikTokAdapter(tokens, client, clock=lambda: NOW).get_valid_credential()

        with pytest.raises(CredentialError):
            asyncio.run(main())

    def test_missing_client_credentials(self, tokens, monkeypatch):
        monkeypatch.delenv("TIKTOK_CLIENT_KEY", raising=False)
        monkeypatch.delenv("TIKTOK_CLIENT_SECRET", raising=False)
        tokens.save_token("tiktok", "old", "r1", NOW + 1)

        async def main():
            async with _client(_unexpected) as client:
                await TikTokAdapter(tokens, client, clock=lambda: NOW).get_valid_credential()

        with pytest.raises(ConfigurationError, match="TIKTOK_CLIENT_KEY"):
            asyncio.run(main())


# ---------------------------------------------------------------------------
# TestTikTok
# ---------------------------------------------------------------------------


class TestTikTok:
    """Direct post from URL, then status polling."""

    def test_initiate_prefers_self_only(self):
        requests = []

        def handler(request):
            requests.append(request)
            if request.url.path.endswith("/creator_info/query/"):
                return httpx.Response(
                    200, json={"data": {"privacy_level_options": ["PUBLIC_TO_EVERYONE", "SELF_ONLY"]}}
                )
            if request.url.path.endswith("/video/init/"):
                return httpx.Response(200, json={"data": {"publish_id": "pub-1"}})
            return _unexpected(request)

        progress = []

        async def main():
            async with _client(handler) as client:
                adapter = TikTokAdapter(client=client)
                return await adapter.initiate_publish(
                    CREDENTIAL,
                    PublishContent(video_url="https://cdn.example.com/v.mp4", caption="hi\n\n#pod"),
                    progress.append,
                )

        assert asyncio.run(main()) == "pub-1"
        body = json.loads(requests[1].content)
        assert body["post_info"]["privacy_level"] == "SELF_ONLY"
        assert body["post_info"]["title"] == "hi\n\n#pod"
        assert body["source_info"] == {
            "source": "PULL_FROM_URL",
            "video_url": "https://cdn.example.com/v.mp4",
        }
        assert requests[1].headers["Authorization"] == "Bearer tok"
        assert progress == [100.0]

    def test_initiate_falls_back_to_first_privacy_level(self):
        bodies = []

        def handler(request):
            if request.url.path.endswith("/creator_info/query/"):
                return httpx.Response(200, json={"data": {"privacy_level_options": ["FOLLOWER_OF_CREATOR"]}})
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"data": {"publish_id": "pub-2"}})

        async def main():
            async with _client(handler) as client:
                await TikTokAdapter(client=client).initiate_publish(
                    CREDENTIAL, PublishContent(video_url="https://cdn.example.com/v.mp4")
                )

        asyncio.run(main())
        assert bodies[0]["post_info"]["privacy_level"] == "FOLLOWER_OF_CREATOR"

    def test_init_without_publish_id(self):
        def handler(request):
            return httpx.Response(200, json={"data": {}})

        async def main():
            async with _client(handler) as client:
                await TikTokAdapter(client=client).initiate_publish(
                    CREDENTIAL, PublishContent(video_url="https://cdn.example.com/v.mp4")
                )

        with pytest.raises(TerminalPlatformRejection, match="publish_id"):
            asyncio.run(main())

    @pytest.mark.parametrize("payload,terminal,success,video_id", [
        ({"status": "PROCESSING_DOWNLOAD"}, False, False, None),
        ({"status": "PUBLISH_COMPLETE", "publicaly_available_post_id": [7321]}, True, True, "7321"),
        ({"status": "COMPLETE", "video_id": "v-9"}, True, True, "v-9"),
        ({"status": "FAILED", "fail_reason": "file_format_check_failed"}, True, False, None),
    ])
    def test_poll_status(self, payload, terminal, success, video_id):
        def handler(request):
            assert json.loads(request.content) == {"publish_id": "pub-1"}
            return httpx.Response(200, json={"data": payload})

        async def main():
            async with _client(handler) as client:
                return await TikTokAdapter(client=client).poll_status(CREDENTIAL, "pub-1")

        status = asyncio.run(main())
        assert (status.terminal, status.success, status.video_id) == (terminal, success, video_id)
        if payload["status"] == "FAILED":
            assert "file_format_check_failed" in status.message

    @pytest.mark.parametrize("code,error", [
        (429, TransientNetworkError),
        (502, TransientNetworkError),
        (400, TerminalPlatformRejection),
        (403, TerminalPlatformRejection),
    ])
    def test_http_error_mapping(self, code, error):
        def handler(request):
            return httpx.Response(code, text="nope")

        async def main():
            async with _client(handler) as client:
                await TikTokAdapter(client=client).poll_status(CREDENTIAL, "pub-1")

        with pytest.raises(error) as excinfo:
            asyncio.run(main())
        assert excinfo.value.status_code == code

    def test_transport_error_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async def main():
            async with _client(handler) as client:
                await TikTokAdapter(client=client).poll_status(CREDENTIAL, "pub-1")

        with pytest.raises(TransientNetworkError):
            asyncio.run(main())


# ---------------------------------------------------------------------------
# TestYouTube
# ---------------------------------------------------------------------------


class _YouTubeServer:
    """Resumable upload endpoint that acknowledges chunks with 308s."""

    def __init__(self, total_size, failures=None):
        self.total_size = total_size
        self.failures = list(failures or [])
        self.received = bytearray()
        self.ranges = []
        self.auth = []
        self.session_body = None

    def __call__(self, request):
        url = str(request.url)
        if request.method == "POST" and url.startswith(YOUTUBE_UPLOAD_URL):
            assert "uploadType=resumable" in url
            self.session_body = json.loads(request.content)
            return httpx.Response(200, headers={"Location": "https://upload.example.com/session-1"})
        if request.method == "PUT" and url == "https://upload.example.com/session-1":
            self.auth.append(request.headers["Authorization"])
            if self.failures:
                return httpx.Response(self.failures.pop(0), text="try later")
            content_range = request.headers["Content-Range"]
            self.ranges.append(content_range)
            self.received.extend(request.content)
            if len(self.received) < self.total_size:
                return httpx.Response(308, headers={"Range": "bytes=0-{}".format(len(self.received) - 1)})
            return httpx.Response(200, json={"id": "yt-1"})
        if request.method == "POST" and url == GOOGLE_TOKEN_URL:
            return httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})
        return _unexpected(request)


def _video(tmp_path, size=10):
    path = tmp_path / "render.mp4"
    path.write_bytes(bytes(range(size)))
    return path


class TestYouTube:
    """Chunked resumable upload with bounded per-chunk retries."""

    def _upload(self, server, video, sleeps=None, tokens=None, title="My clip"):
        sleeps = sleeps if sleeps is not None else []
        progress = []

        async def record_sleep(seconds):
            sleeps.append(seconds)

        async def main():
            async with _client(server) as client:
                adapter = YouTubeAdapter(
                    tokens, client, chunk_size=4, sleep=record_sleep, clock=lambda: NOW
                )
                return await adapter.initiate_publish(
                    CREDENTIAL,
                    PublishContent(
                        video_url=str(video), title=title, description="desc", tags=("pod",)
                    ),
                    progress.append,
                )

        return asyncio.run(main()), progress

    def test_chunked_upload(self, tmp_path):
        video = _video(tmp_path)
        server = _YouTubeServer(10)
        video_id, progress = self._upload(server, video)
        assert video_id == "yt-1"
        assert bytes(server.received) == video.read_bytes()
        assert server.ranges == ["bytes 0-3/10", "bytes 4-7/10", "bytes 8-9/10"]
        assert progress == [40.0, 80.0, 100.0]
        assert server.session_body["snippet"]["title"] == "My clip"
        assert server.session_body["snippet"]["tags"] == ["pod"]
        assert server.session_body["status"]["privacyStatus"] == "private"

    def test_transient_chunk_failure_is_retried(self, tmp_path):
        server = _YouTubeServer(10, failures=[503])
        sleeps = []
        video_id, _ = self._upload(server, _video(tmp_path), sleeps)
        assert video_id == "yt-1"
        assert sleeps == [5.0]

    def test_retries_are_bounded(self, tmp_path):
        server = _YouTubeServer(10, failures=[500, 503, 429, 500, 500])
        sleeps = []
        with pytest.raises(TransientNetworkError, match="after 4 attempts"):
            self._upload(server, _video(tmp_path), sleeps)
        assert sleeps == [5.0, 15.0, 45.0]

    def test_unauthorized_forces_refresh(self, tmp_path, tokens, google_env):
        tokens.save_token("youtube", "tok", "r1", NOW + 3600)
        server = _YouTubeServer(10, failures=[401])
        video_id, _ = self._upload(server, _video(tmp_path), tokens=tokens)
        assert video_id == "yt-1"
        assert server.auth[0] == "Bearer tok"
        assert server.auth[1] == "Bearer fresh"
        assert tokens.get_token("youtube").access_token == "fresh"

    def test_bad_request_is_not_retried(self, tmp_path):
        server = _YouTubeServer(10, failures=[400])
        sleeps = []
        with pytest.raises(TerminalPlatformRejection):
            self._upload(server, _video(tmp_path), sleeps)
        assert sleeps == []

    def test_title_required(self, tmp_path):
        with pytest.raises(TerminalPlatformRejection, match="title"):
            self._upload(_unexpected, _video(tmp_path), title="")

    @pytest.mark.parametrize("item,terminal,success,progress", [
        (None, False, False, 0.0),
        ({"processingDetails": {"processingStatus": "processing",
                                "processingProgress": {"partsTotal": 4, "partsProcessed": 1}}},
         False, False, 25.0),
        ({"processingDetails": {"processingStatus": "succeeded"}}, True, True, 100.0),
        ({"processingDetails": {"processingStatus": "failed"}}, True, False, 0.0),
        ({"status": {"uploadStatus": "rejected", "rejectionReason": "duplicate"}}, True, False, 0.0),
    ])
    def test_poll_status(self, item, terminal, success, progress):
        def handler(request):
            assert str(request.url).startswith(YOUTUBE_VIDEO_URL)
            assert request.url.params["id"] == "yt-1"
            return httpx.Response(200, json={"items": [item] if item else []})

        async def main():
            async with _client(handler) as client:
                return await YouTubeAdapter(client=client).poll_status(CREDENTIAL, "yt-1")

        status = asyncio.run(main())
        assert (status.terminal, status.success) == (terminal, success)
        assert status.processing_progress == progress
        if item and "status" in item:
            assert "duplicate" in status.message

    @pytest.mark.parametrize("header,expected", [
        ("bytes=0-524287", 524287),
        (None, None),
        ("garbage", None),
    ])
    def test_parse_range_header(self, header, expected):
        assert parse_range_header(header) == expected


# ---------------------------------------------------------------------------
# TestInstagram
# ---------------------------------------------------------------------------


IG_CREDENTIAL = Credential(access_token="igtok", expires_at=NOW + 3600, account_id="17841")


class TestInstagram:
    """Media container, status polling, then media_publish."""

    def _initiate(self, handler, destination, video_url="https://cdn.example.com/v.mp4",
                  credential=IG_CREDENTIAL):
        progress = []

        async def main():
            async with _client(handler) as client:
                return await InstagramAdapter(client=client).initiate_publish(
                    credential,
                    PublishContent(video_url=video_url, caption="hi #pod", destination=destination),
                    progress.append,
                )

        return asyncio.run(main()), progress

    def test_reels_container(self):
        forms = []

        def handler(request):
            assert request.method == "POST"
            assert str(request.url) == "{}/17841/media".format(INSTAGRAM_GRAPH_BASE)
            forms.append(_form(request))
            return httpx.Response(200, json={"id": "container-1"})

        job_id, progress = self._initiate(handler, "instagram-reels")
        assert job_id == "container-1"
        assert forms == [{
            "access_token": "igtok",
            "video_url": "https://cdn.example.com/v.mp4",
            "media_type": "REELS",
            "share_to_feed": "false",
            "caption": "hi #pod",
        }]
        assert progress == [100.0]

    def test_post_is_video_container(self):
        forms = []

        def handler(request):
            forms.append(_form(request))
            return httpx.Response(200, json={"id": "container-2"})

        self._initiate(handler, "instagram-post")
        assert forms[0]["media_type"] == "VIDEO"
        assert "share_to_feed" not in forms[0]

    def test_local_file_rejected(self):
        with pytest.raises(TerminalPlatformRejection, match="public URL"):
            self._initiate(_unexpected, "instagram-reels", video_url="/renders/clip.mp4")

    def test_account_id_required(self):
        credential = Credential(access_token="igtok", expires_at=NOW + 3600)
        with pytest.raises(CredentialError, match="account id"):
            self._initiate(_unexpected, "instagram-reels", credential=credential)

    @pytest.mark.parametrize("status_code,terminal,success", [
        ("IN_PROGRESS", False, False),
        ("ERROR", True, False),
        ("EXPIRED", True, False),
    ])
    def test_poll_without_publish(self, status_code, terminal, success):
        def handler(request):
            assert request.method == "GET"
            assert request.url.path.endswith("/container-1")
            assert request.url.params["fields"] == "status,status_code"
            return httpx.Response(200, json={"status_code": status_code, "status": "Error: 2207026"})

        async def main():
            async with _client(handler) as client:
                return await InstagramAdapter(client=client).poll_status(IG_CREDENTIAL, "container-1")

        status = asyncio.run(main())
        assert (status.terminal, status.success) == (terminal, success)
        if terminal:
            assert "2207026" in status.message

    def test_finished_container_is_published(self):
        publishes = []

        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json={"status_code": "FINISHED"})
            assert str(request.url) == "{}/17841/media_publish".format(INSTAGRAM_GRAPH_BASE)
            publishes.append(_form(request))
            return httpx.Response(200, json={"id": "media-9"})

        async def main():
            async with _client(handler) as client:
                return await InstagramAdapter(client=client).poll_status(IG_CREDENTIAL, "container-1")

        status = asyncio.run(main())
        assert (status.terminal, status.success, status.video_id) == (True, True, "media-9")
        assert publishes == [{"access_token": "igtok", "creation_id": "container-1"}]

    def test_refresh_exchanges_long_lived_token(self, tokens, monkeypatch):
        monkeypatch.setenv("INSTAGRAM_CLIENT_ID", "app")
        monkeypatch.setenv("INSTAGRAM_CLIENT_SECRET", "appsecret")
        tokens.save_token("instagram", "old", "old", NOW + 60, account_id="17841")

        def handler(request):
            assert request.url.path.endswith("/oauth/access_token")
            assert dict(request.url.params) == {
                "grant_type": "fb_exchange_token",
                "client_id": "app",
                "client_secret": "appsecret",
                "fb_exchange_token": "old",
            }
            return httpx.Response(200, json={"access_token": "long", "expires_in": 5184000})

        async def main():
            async with _client(handler) as client:
                adapter = InstagramAdapter(tokens, client, clock=lambda: NOW)
                return await adapter.get_valid_credential()

        credential = asyncio.run(main())
        assert credential.access_token == "long"
        assert credential.account_id == "17841"
        stored = tokens.get_token("instagram")
        assert stored.refresh_token == "long"
        assert stored.expires_at == NOW + 5184000


# ---------------------------------------------------------------------------
# TestX
# ---------------------------------------------------------------------------


X_CREDENTIAL = Credential(access_token="tok", expires_at=math.inf, refresh_token="tsecret")


class _XServer:
    """Media upload (INIT/APPEND/FINALIZE/STATUS) and tweet endpoints."""

    def __init__(self, states=("succeeded",)):
        self.states = list(states)
        self.commands = []
        self.segments = []
        self.tweets = []
        self.auth = []

    def __call__(self, request):
        url = str(request.url).split("?")[0]
        self.auth.append(request.headers["Authorization"])
        if url == X_UPLOAD_URL and request.method == "GET":
            assert request.url.params["command"] == "STATUS"
            state = self.states.pop(0)
            return httpx.Response(
                200, json={"processing_info": {"state": state, "progress_percent": 40}}
            )
        if url == X_UPLOAD_URL and request.url.params.get("command") == "APPEND":
            self.commands.append("APPEND")
            self.segments.append((request.url.params["segment_index"], request.content))
            return httpx.Response(204)
        if url == X_UPLOAD_URL:
            form = _form(request)
            self.commands.append(form["command"])
            if form["command"] == "INIT":
                assert form["total_bytes"] == "10"
                assert form["media_category"] == "tweet_video"
                return httpx.Response(202, json={"media_id_string": "m-1"})
            return httpx.Response(
                200, json={"media_id_string": "m-1", "processing_info": {"state": "pending"}}
            )
        if url == X_TWEET_URL:
            self.tweets.append(json.loads(request.content))
            return httpx.Response(201, json={"data": {"id": "tw-7", "text": "hi"}})
        return _unexpected(request)


class TestX:
    """Chunked media upload, STATUS polling, then the tweet."""

    def test_oauth1_signature_matches_reference(self):
        header = oauth1_header(
            "POST",
            "https://api.twitter.com/1.1/statuses/update.json",
            "xvz1evFS4wEEPTGEFPHBog",
            "kAcSOqF21Fu85e7zjz7ZN2U4ZRhfV3WpwPAoE3Z7kBw",
            "370773112-GmHxMAgYyLbNEtIKZeRNFsMKPR9EyMZeS9weJAEb",
            "LswwdoUaIvS8ltyTt5jkRh4J50vUPVVHtR2YPi5kE",
            {"include_entities": "true", "status": "Hello Ladies + Gentlemen, a signed OAuth request!"},
            nonce="kYjzVBB8Y0ZFabxSWbWovY3uYSQ2pTgmZeNu2VS4cg",
            timestamp=1318622958,
        )
        assert header.startswith("OAuth ")
        assert 'oauth_signature="hCtSmYh%2BiHYCEqBWrE7C7hYmtUk%3D"' in header
        assert 'oauth_token="370773112-GmHxMAgYyLbNEtIKZeRNFsMKPR9EyMZeS9weJAEb"' in header

    def test_chunked_upload(self, tmp_path, x_env):
        server = _XServer()
        progress = []

        async def main():
            async with _client(server) as client:
                return await XAdapter(client=client, chunk_size=4).initiate_publish(
                    X_CREDENTIAL,
                    PublishContent(video_url=str(_video(tmp_path)), caption="new episode"),
                    progress.append,
                )

        assert asyncio.run(main()) == "m-1"
        assert server.commands == ["INIT", "APPEND", "APPEND", "APPEND", "FINALIZE"]
        assert [index for index, _ in server.segments] == ["0", "1", "2"]
        assert b"\x04\x05\x06\x07" in server.segments[1][1]
        assert progress == [40.0, 80.0, 100.0]
        assert all(auth.startswith("OAuth ") for auth in server.auth)
        assert 'oauth_consumer_key="ckey"' in server.auth[0]

    def test_tweet_posted_after_processing(self, tmp_path, x_env):
        server = _XServer(states=("in_progress", "succeeded"))

        async def main():
            async with _client(server) as client:
                adapter = XAdapter(client=client, chunk_size=4)
                media_id = await adapter.initiate_publish(
                    X_CREDENTIAL,
                    PublishContent(video_url=str(_video(tmp_path)), caption="new episode"),
                )
                first = await adapter.poll_status(X_CREDENTIAL, media_id)
                second = await adapter.poll_status(X_CREDENTIAL, media_id)
                return first, second

        first, second = asyncio.run(main())
        assert (first.terminal, first.processing_progress) == (False, 40.0)
        assert (second.terminal, second.success, second.video_id) == (True, True, "tw-7")
        assert server.tweets == [{"text": "new episode", "media": {"media_ids": ["m-1"]}}]

    def test_processing_failure_is_terminal(self, x_env):
        def handler(request):
            return httpx.Response(200, json={"processing_info": {
                "state": "failed", "error": {"message": "InvalidMedia"},
            }})

        async def main():
            async with _client(handler) as client:
                return await XAdapter(client=client).poll_status(X_CREDENTIAL, "m-1")

        status = asyncio.run(main())
        assert (status.terminal, status.success) == (True, False)
        assert "InvalidMedia" in status.message

    def test_stored_token_never_refreshed(self, tokens):
        tokens.save_token("x", "tok", "tsecret", 0.0, account_name="pod")

        async def main():
            async with _client(_unexpected) as client:
                return await XAdapter(tokens, client, clock=lambda: NOW).get_valid_credential()

        credential = asyncio.run(main())
        assert (credential.access_token, credential.refresh_token) == ("tok", "tsecret")
        assert credential.expires_at == math.inf

    def test_missing_token_secret(self, tokens):
        tokens.save_token("x", "tok", None, 0.0)

        async def main():
            await XAdapter(tokens).get_valid_credential()

        with pytest.raises(CredentialError, match="secret"):
            asyncio.run(main())

    def test_missing_consumer_keys(self, monkeypatch):
        monkeypatch.delenv("X_CONSUMER_KEY", raising=False)
        monkeypatch.delenv("X_CONSUMER_SECRET", raising=False)

        async def main():
            async with _client(_unexpected) as client:
                await XAdapter(client=client).poll_status(X_CREDENTIAL, "m-1")

        with pytest.raises(ConfigurationError, match="X_CONSUMER_KEY"):
            asyncio.run(main())


# ---------------------------------------------------------------------------
# TestLocal
# ---------------------------------------------------------------------------


class TestLocal:
    """Save-to-disk needs no credential and succeeds immediately."""

    def test_copies_into_output_dir(self, tmp_path):
        video = _video(tmp_path)
        out = tmp_path / "out"

        async def main():
            adapter = LocalAdapter(output_dir=out)
            credential = await adapter.get_valid_credential()
            job_id = await adapter.initiate_publish(
                credential, PublishContent(video_url="file://{}".format(video))
            )
            return credential, job_id, await adapter.poll_status(credential, job_id)

        credential, job_id, status = asyncio.run(main())
        assert credential.expires_at == math.inf
        assert job_id == str(out / "render.mp4")
        assert (out / "render.mp4").read_bytes() == video.read_bytes()
        assert status.terminal and status.success

    def test_without_output_dir_keeps_location(self):
        async def main():
            return await LocalAdapter().initiate_publish(
                CREDENTIAL, PublishContent(video_url="https://cdn.example.com/v.mp4")
            )

        assert asyncio.run(main()) == "https://cdn.example.com/v.mp4"

    def test_missing_file(self, tmp_path):
        async def main():
            await LocalAdapter(output_dir=tmp_path / "out").initiate_publish(
                CREDENTIAL, PublishContent(video_url=str(tmp_path / "missing.mp4"))
            )

        with pytest.raises(TerminalPlatformRejection, match="not found"):
            asyncio.run(main())

    def test_refresh_is_a_credential_error(self):
        async def main():
            await LocalAdapter()._refresh("anything")

        with pytest.raises(CredentialError, match="no credentials"):
            asyncio.run(main())


# ---------------------------------------------------------------------------
# TestRegistry
# ---------------------------------------------------------------------------


class TestRegistry:
    """build_adapters() shares one instance per adapter class."""

    def test_youtube_destinations_share_adapter(self, tokens, tmp_path):
        adapters = build_adapters(tokens, output_dir=tmp_path)
        assert adapters[Destination.YOUTUBE_SHORTS] is adapters[Destination.YOUTUBE_VIDEO]
        assert isinstance(adapters[Destination.TIKTOK], TikTokAdapter)
        assert adapters[Destination.LOCAL].output_dir == tmp_path
        assert set(adapters) == set(Destination)

    def test_instagram_destinations_share_adapter(self, tokens):
        adapters = build_adapters(tokens)
        assert adapters[Destination.INSTAGRAM_REELS] is adapters[Destination.INSTAGRAM_POST]
        assert isinstance(adapters[Destination.INSTAGRAM_POST], InstagramAdapter)
        assert isinstance(adapters[Destination.X], XAdapter)
