from databot import storage

from .conftest import make_update


def _seed(api):
    api.post("/telegram/webhook", json=make_update("/save email a@b.com", user_id=1, first_name="Old"))
    api.post("/telegram/webhook", json=make_update("remember milk", user_id=2, first_name="New"))


def test_admin_users_projection(api):
    _seed(api)

    resp = api.get("/admin/users")

    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 2
    newest, oldest = body["users"]
    assert newest["first_name"] == "New"
    assert oldest["first_name"] == "Old"
    assert oldest["user_data"][0]["data_key"] == "email"
    assert oldest["user_messages"][0]["message_text"] == "/save email a@b.com"
    assert newest["user_data"][0]["data_type"] == "note"


def test_admin_users_empty(api):
    assert api.get("/admin/users").json() == {"users": [], "count": 0}


def test_admin_key_required_when_configured(api, settings):
    settings.ADMIN_API_KEY = "letmein"

    assert api.get("/admin/users").status_code == 401
    assert api.get("/stats").status_code == 401
    assert api.get("/admin/users", headers={"X-Admin-Key": "letmein"}).status_code == 200


def test_stats(api):
    _seed(api)

    stats = api.get("/stats").json()

    assert stats["total_users"] == 2
    assert stats["entries_by_type"] == {"custom": 1, "note": 1}
    assert stats["total_messages"] == 2


def test_setup_registers_webhook_with_secret(api, telegram, settings):
    settings.TELEGRAM_WEBHOOK_SECRET = "s3cret"

    resp = api.post("/telegram/setup", json={"webhook_url": "https://bot.example.com/telegram/webhook"})

    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["bot"]["username"] == "databot_test"
    assert telegram.webhook == {
        "url": "https://bot.example.com/telegram/webhook",
        "secret_token": "s3cret",
    }


def test_setup_accepts_camel_case_field(api, telegram):
    api.post("/telegram/setup", json={"webhookUrl": "https://a.example/hook"})
    assert telegram.webhook["url"] == "https://a.example/hook"


def test_setup_falls_back_to_configured_url(api, telegram, settings):
    settings.TELEGRAM_WEBHOOK_URL = "https://configured.example/hook"

    resp = api.post("/telegram/setup")

    assert resp.status_code == 200
    assert telegram.webhook["url"] == "https://configured.example/hook"


def test_setup_requires_url(api, telegram):
    resp = api.post("/telegram/setup", json={})
    assert resp.status_code == 400
    assert telegram.webhook is None


def test_setup_info_and_delete(api, telegram):
    api.post("/telegram/setup", json={"webhook_url": "https://a.example/hook"})

    info = api.get("/telegram/setup").json()
    assert info["webhook_url"] == "Not configured"
    assert info["webhook"]["url"] == "https://a.example/hook"

    resp = api.delete("/telegram/setup")
    assert resp.json() == {"success": True, "result": True}
    assert telegram.webhook is None


def test_setup_upstream_failure_is_502(api, telegram):
    telegram.fail_get_me = True

    resp = api.get("/telegram/setup")

    assert resp.status_code == 502
    assert resp.json() == {"error": "Telegram API request failed"}


def test_health(api, settings):
    assert api.get("/health/live").json() == {"status": "ok"}
    assert api.get("/health/ready").status_code == 200

    settings.TELEGRAM_BOT_TOKEN = ""
    resp = api.get("/health/ready")
    assert resp.status_code == 503
    assert "TELEGRAM_BOT_TOKEN" in resp.json()["detail"]


def test_admin_does_not_touch_command_core(api, monkeypatch):
    def must_not_run(*args, **kwargs):
        raise AssertionError("admin read mutated the store")

    monkeypatch.setattr(storage, "save_entry", must_not_run)
    assert api.get("/admin/users").status_code == 200


def test_non_ascii_admin_key_is_rejected(api, settings):
    settings.ADMIN_API_KEY = "letmein"

    resp = api.get("/admin/users", headers={"X-Admin-Key": "caf\xe9".encode("latin-1")})

    assert resp.status_code == 401
