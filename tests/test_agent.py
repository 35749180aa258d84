from dataclasses import replace
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from agent import WPCli, WPCliError, create_agent_app, extract_json

KEY = "c" * 32
AUTH = {"Authorization": f"Bearer {KEY}"}
NS = "/wp-json/siteherd/v1"

INFO = {
    "name": "Shop",
    "site_url": "https://shop.example.com",
    "admin_email": "admin@example.com",
    "wp_version": "6.4.2",
    "php_version": "8.2.1",
    "plugins_count": 3,
    "themes_count": 2,
    "active_theme": "astra",
    "multisite": False,
}

UPDATES = [
    {"type": "core", "name": "WordPress", "current_version": "6.4.2", "new_version": "6.5", "package": ""},
    {"type": "plugin", "name": "Akismet", "slug": "akismet", "file": "akismet/akismet.php",
     "current_version": "5.0", "new_version": "5.1"},
]


class FakeWP:
    def __init__(self):
        self.updated = []
        self.fail = False

    def site_info(self):
        if self.fail:
            raise WPCliError("Error: This does not seem to be a WordPress installation.")
        return dict(INFO)

    def available_updates(self):
        return list(UPDATES)

    def update(self, kind, slug=None):
        self.updated.append((kind, slug))
        return "Success: Updated 1 of 1."

    def export_db(self, target):
        with open(target, "w") as f:
            f.write("-- dump\n")
        return target


@pytest.fixture
def wp():
    return FakeWP()


@pytest.fixture
def agent(config, wp):
    return TestClient(create_agent_app(replace(config, connection_key=KEY), wp=wp))


@pytest.mark.parametrize("path", ["/site-info", "/health", "/updates"])
@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": KEY}])
def test_bearer_required(agent, path, headers):
    r = agent.get(NS + path, headers=headers)
    assert r.status_code == 401
    assert r.json()["success"] is False


def test_no_configured_key_rejects_everything(config, wp):
    client = TestClient(create_agent_app(replace(config, connection_key=None), wp=wp))
    assert client.get(NS + "/site-info", headers={"Authorization": "Bearer "}).status_code == 401
    assert client.post(NS + "/connect", json={"connection_key": ""}).status_code == 401


def test_site_info(agent):
    r = agent.get(NS + "/site-info", headers=AUTH)
    assert r.status_code == 200
    body = r.json()
    assert body["wp_version"] == "6.4.2"
    assert body["connected"] is False


def test_site_info_wpcli_failure(agent, wp):
    wp.fail = True
    r = agent.get(NS + "/site-info", headers=AUTH)
    assert r.status_code == 500
    assert "WordPress installation" in r.json()["error"]


def test_health(agent):
    body = agent.get(NS + "/health", headers=AUTH).json()
    assert body["wordpress"] == {"version": "6.4.2", "updates_available": True}
    assert body["plugins"]["outdated_plugins"] == ["akismet"]
    assert body["themes"]["updates_available"] == 0
    assert body["server"]["php_version"] == "8.2.1"


def test_updates(agent):
    assert agent.get(NS + "/updates", headers=AUTH).json() == UPDATES


def test_update_plugin_by_file(agent, wp):
    r = agent.post(NS + "/update", headers=AUTH, json={"type": "plugin", "name": "Akismet",
                                                      "file": "akismet/akismet.php"})
    assert r.status_code == 200
    assert wp.updated == [("plugin", "akismet")]


def test_update_core(agent, wp):
    assert agent.post(NS + "/update", headers=AUTH, json={"type": "core", "name": "WordPress"}).json()["success"]
    assert wp.updated == [("core", None)]


@pytest.mark.parametrize("payload, error", [
    ({"type": "plugin"}, "Update type and name are required"),
    ({"type": "widget", "name": "x"}, "Invalid update type"),
    ({"type": "theme", "name": "Astra"}, "A slug or plugin file is required"),
])
def test_update_validation(agent, wp, payload, error):
    r = agent.post(NS + "/update", headers=AUTH, json=payload)
    assert r.status_code == 400
    assert r.json()["error"] == error
    assert wp.updated == []


def test_backup(agent, config):
    r = agent.post(NS + "/backup", headers=AUTH, json={"type": "full"})
    assert r.status_code == 200
    body = r.json()
    assert body["type"] == "full"
    assert body["file_size"] == len("-- dump\n")
    assert body["file_path"].startswith(config.agent_backup_dir)


def test_backup_defaults_to_incremental(agent):
    assert agent.post(NS + "/backup", headers=AUTH).json()["type"] == "incremental"


def test_backup_rejects_unknown_type(agent):
    assert agent.post(NS + "/backup", headers=AUTH, json={"type": "snapshot"}).status_code == 400


def test_connect(agent):
    r = agent.post(NS + "/connect", json={"connection_key": KEY})
    assert r.status_code == 200
    assert r.json()["site_info"] == {"name": "Shop", "wp_version": "6.4.2", "php_version": "8.2.1",
                                     "url": "https://shop.example.com"}
    assert agent.get(NS + "/site-info", headers=AUTH).json()["connected"] is True


def test_connect_bad_key(agent):
    r = agent.post(NS + "/connect", json={"connection_key": "nope"})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid connection key"


def test_extract_json_skips_noise():
    assert extract_json('PHP Warning: foo in bar.php\n[{"name": "akismet"}]') == [{"name": "akismet"}]
    assert extract_json('Deprecated: {oops\n{"a": 1}') == {"a": 1}
    assert extract_json("Success: nothing") is None
    assert extract_json("") is None


def test_wpcli_builds_command():
    wp = WPCli("wp", "/srv/site", timeout=60)
    done = Mock(stdout="6.4.2\n", stderr="", returncode=0)
    with patch("agent.subprocess.run", return_value=done) as run:
        assert wp.value(["core", "version"]) == "6.4.2"
    assert run.call_args.args[0] == ["wp", "core", "version", "--path=/srv/site", "--no-color"]
    assert run.call_args.kwargs["timeout"] == 60


def test_wpcli_nonzero_exit_raises():
    wp = WPCli("wp", "/srv/site")
    done = Mock(stdout="", stderr="Error: Plugin 'nope' not found.\n", returncode=1)
    with patch("agent.subprocess.run", return_value=done):
        with pytest.raises(WPCliError, match="not found"):
            wp.update("plugin", "nope")


def test_wpcli_missing_binary_raises():
    wp = WPCli("/nonexistent/wp", "/srv/site")
    with patch("agent.subprocess.run", side_effect=FileNotFoundError("/nonexistent/wp")):
        with pytest.raises(WPCliError):
            wp.value(["core", "version"])


def test_update_rejects_non_string_file(agent, wp):
    r = agent.post(NS + "/update", headers=AUTH, json={"type": "plugin", "name": "Akismet", "file": ["akismet"]})
    assert r.status_code == 400
    assert r.json()["success"] is False
    assert wp.updated == []


def test_wpcli_count_skips_leading_warnings():
    wp = WPCli("wp", "/srv/site")
    done = Mock(stdout="PHP Warning: Undefined index in wp-config.php\n7\n", stderr="", returncode=0)
    with patch("agent.subprocess.run", return_value=done):
        assert wp.count(["plugin", "list", "--status=active"]) == 7


def test_wpcli_count_without_number_raises():
    wp = WPCli("wp", "/srv/site")
    done = Mock(stdout="PHP Fatal error: out of memory\n", stderr="", returncode=0)
    with patch("agent.subprocess.run", return_value=done):
        with pytest.raises(WPCliError, match="no count"):
            wp.count(["theme", "list"])


def test_site_info_with_garbled_count_is_a_json_error(agent, wp):
    wp.site_info = Mock(side_effect=WPCliError("wp theme list returned no count: oops"))
    r = agent.get(NS + "/site-info", headers=AUTH)
    assert r.status_code == 500
    assert r.json() == {"success": False, "error": "wp theme list returned no count: oops"}
