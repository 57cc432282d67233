import re

import pytest

from iptvhub.db import Payment, WatchHistory


class TestDeviceDetection:

    @pytest.mark.parametrize("ua,expected", [
        ("Mozilla/5.0 (Linux; Android 14; Pixel 8)", "mobile"),
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)", "mobile"),
        ("Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X)", "tablet"),
        ("Mozilla/5.0 (SMART-TV; Linux; Tizen 6.0)", "smart_tv"),
        ("Mozilla/5.0 (Web0S; Linux/SmartTV)", "smart_tv"),
        ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0", "desktop"),
        ("curl/8.0", "unknown"),
        (None, "unknown"),
    ])
    def test_detect(self, ua, expected):
        assert WatchHistory.detect_device_type(ua) == expected


class TestFormattedDuration:

    @pytest.mark.parametrize("seconds,expected", [(0, "0s"), (59, "59s"), (61, "1m 1s"), (3725, "1h 2m 5s")])
    def test_format(self, seconds, expected):
        assert WatchHistory(watch_duration=seconds).formatted_duration == expected


def test_transaction_id_format():
    txn = Payment.generate_transaction_id()
    assert re.fullmatch(r"TXN_\d{13}_[A-Z0-9]{6}", txn)


class TestWatchHistoryApi:

    def test_add_and_list(self, client, make_user, make_channel, auth_headers):
        user = make_user()
        channel = make_channel()
        headers = auth_headers(user)

        added = client.post("/api/v1/watch-history/add",
                            json={"channel_id": channel.id, "watch_duration": 120, "session_id": "s1"}, headers=headers)
        history = client.get("/api/v1/watch-history/my-history", headers=headers).get_json()

        assert added.status_code == 201
        assert added.get_json()["data"]["formatted_duration"] == "2m 0s"
        assert history["pagination"]["total_records"] == 1
        assert history["data"][0]["channel"]["id"] == channel.id

    def test_same_session_accumulates(self, client, make_user, make_channel, auth_headers):
        user = make_user()
        channel = make_channel()
        headers = auth_headers(user)
        payload = {"channel_id": channel.id, "watch_duration": 60, "session_id": "abc"}

        client.post("/api/v1/watch-history/add", json=payload, headers=headers)
        second = client.post("/api/v1/watch-history/add", json=payload, headers=headers)

        assert second.get_json()["data"]["watch_duration"] == 120
        assert WatchHistory.query.filter_by(user_id=user.id).count() == 1

    def test_premium_channel_needs_access(self, client, make_user, make_channel, auth_headers):
        channel = make_channel(is_premium=True)
        resp = client.post("/api/v1/watch-history/add", json={"channel_id": channel.id}, headers=auth_headers(make_user()))
        assert resp.status_code == 403

    def test_duration_update_and_ownership(self, client, make_user, make_channel, auth_headers):
        owner = make_user()
        intruder = make_user()
        channel = make_channel()
        entry_id = client.post("/api/v1/watch-history/add", json={"channel_id": channel.id},
                               headers=auth_headers(owner)).get_json()["data"]["id"]

        updated = client.put(f"/api/v1/watch-history/{entry_id}/duration", json={"additional_seconds": 30},
                             headers=auth_headers(owner))
        foreign = client.put(f"/api/v1/watch-history/{entry_id}/duration", json={"additional_seconds": 30},
                             headers=auth_headers(intruder))
        negative = client.put(f"/api/v1/watch-history/{entry_id}/duration", json={"additional_seconds": -5},
                              headers=auth_headers(owner))

        assert updated.get_json()["data"]["watch_duration"] == 30
        assert foreign.status_code == 404
        assert negative.status_code == 400

    def test_delete_and_clear(self, client, make_user, make_channel, auth_headers):
        user = make_user()
        channel = make_channel()
        headers = auth_headers(user)
        ids = [
            client.post("/api/v1/watch-history/add", json={"channel_id": channel.id, "session_id": s},
                        headers=headers).get_json()["data"]["id"]
            for s in ("a", "b", "c")
        ]

        assert client.delete(f"/api/v1/watch-history/{ids[0]}", headers=headers).status_code == 200
        cleared = client.delete("/api/v1/watch-history/clear", headers=headers)

        assert cleared.get_json()["data"]["deleted"] == 2
        assert WatchHistory.query.filter_by(user_id=user.id).count() == 0

    def test_admin_listing(self, client, make_user, make_channel, auth_headers):
        user = make_user()
        channel = make_channel()
        client.post("/api/v1/watch-history/add", json={"channel_id": channel.id}, headers=auth_headers(user))

        forbidden = client.get("/api/v1/watch-history/admin/all", headers=auth_headers(user))
        listing = client.get(f"/api/v1/watch-history/admin/all?user_id={user.id}",
                             headers=auth_headers(make_user(role="admin")))

        assert forbidden.status_code == 403
        assert listing.get_json()["pagination"]["total_records"] == 1

    def test_my_stats(self, client, make_user, make_channel, auth_headers):
        user = make_user()
        headers = auth_headers(user)
        first = make_channel(name="Somoy TV", slug="somoy-tv")
        second = make_channel()
        for channel, seconds, session in ((first, 300, "a"), (first, 100, "b"), (second, 200, "c")):
            client.post("/api/v1/watch-history/add",
                        json={"channel_id": channel.id, "watch_duration": seconds, "session_id": session}, headers=headers)
        client.post("/api/v1/watch-history/add", json={"channel_id": second.id, "watch_duration": 999},
                    headers=auth_headers(make_user()))

        stats = client.get("/api/v1/watch-history/stats/my-stats", headers=headers).get_json()["data"]

        assert stats["total_watch_time"] == 600
        assert stats["total_sessions"] == 3
        assert stats["unique_channels"] == 2
        assert stats["average_session_time"] == 200
        top = stats["most_watched_channels"][0]
        assert top["channel"]["name"] == "Somoy TV"
        assert top["total_watch_time"] == 400
        assert top["session_count"] == 2

    def test_my_stats_empty(self, client, make_user, auth_headers):
        stats = client.get("/api/v1/watch-history/stats/my-stats", headers=auth_headers(make_user())).get_json()["data"]
        assert stats["total_sessions"] == 0
        assert stats["most_watched_channels"] == []

    def test_account_aliases(self, client, make_user, make_channel, auth_headers):
        user = make_user()
        headers = auth_headers(user)
        client.post("/api/v1/watch-history/add", json={"channel_id": make_channel().id}, headers=headers)

        listing = client.get("/api/v1/user/watch-history", headers=headers).get_json()
        cleared = client.delete("/api/v1/user/watch-history", headers=headers).get_json()

        assert listing["pagination"]["total_records"] == 1
        assert cleared["data"]["deleted"] == 1
        assert WatchHistory.query.filter_by(user_id=user.id).count() == 0
