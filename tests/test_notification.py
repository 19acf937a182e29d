"""Direct-message notifications and message formatting."""

import json

import httpx

from hedvac.services.notification_service import (
    DiscordNotifier,
    LogNotifier,
    display_amount,
    get_notifier,
    notify,
)
from tests.fakes import TOKEN, FakeMirror, RecordingNotifier


async def test_discord_notifier_opens_channel_once():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/users/@me/channels"):
            return httpx.Response(200, json={"id": "555"})
        return httpx.Response(200, json={"id": "msg"})

    notifier = DiscordNotifier(bot_token="token", transport=httpx.MockTransport(handler))
    assert await notifier.send_dm("111", "hello") is True
    assert await notifier.send_dm("111", "again") is True
    await notifier.close()

    paths = [r.url.path for r in requests]
    assert paths == [
        "/api/v10/users/@me/channels",
        "/api/v10/channels/555/messages",
        "/api/v10/channels/555/messages",
    ]
    assert requests[0].headers["Authorization"] == "Bot token"
    assert json.loads(requests[1].content) == {"content": "hello"}


async def test_discord_notifier_reports_failure():
    notifier = DiscordNotifier(
        bot_token="token", transport=httpx.MockTransport(lambda request: httpx.Response(403))
    )
    assert await notifier.send_dm("111", "hello") is False
    await notifier.close()


async def test_missing_token_skips_delivery():
    assert await DiscordNotifier(bot_token="").send_dm("111", "hello") is False


def test_log_notifier_without_token():
    assert isinstance(get_notifier(), LogNotifier)


async def test_notify_swallows_errors():
    await notify(RecordingNotifier(fail=True), "111", "hello")
    await notify(None, "111", "hello")


async def test_display_amount():
    assert await display_amount("HBAR", 150_000_000) == ("1.5", "HBAR")
    assert await display_amount(TOKEN, 250) == ("250", TOKEN)
    assert await display_amount(TOKEN, 250, FakeMirror()) == ("2.5", "TT")
