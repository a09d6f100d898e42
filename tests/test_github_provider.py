"""GitHubProvider against a mocked requests session."""

import base64
from unittest.mock import MagicMock

import pytest
import requests

from folio.core.config import ProviderCredentials
from folio.core.retry import RetryPolicy
from folio.github.client import GitHubClient
from folio.github.provider import GitHubProvider, TreeEntry
from folio.utils.exceptions import ConfigError, RefUpdateRejected, UpstreamError

CREDS = ProviderCredentials(token="gh-token", owner="owner", repo="site")
REPO = "https://api.github.com/repos/owner/site"


def response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.text = "" if body is None else str(body)
    if body is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = body
    return resp


class FakeSession:
    """Routes (method, url) to queued responses and records every request."""

    def __init__(self, routes):
        self.routes = {key: list(value) if isinstance(value, list) else [value] for key, value in routes.items()}
        self.headers = {}
        self.requests = []

    def request(self, method, url, params=None, json=None, timeout=None):
        self.requests.append((method, url, params, json))
        queue = self.routes.get((method, url))
        if not queue:
            return response(404, {"message": "Not Found"})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


def make_provider(routes, branch=None, attempts=3):
    creds = ProviderCredentials(token="gh-token", owner="owner", repo="site", branch=branch)
    session = FakeSession(routes)
    client = GitHubClient(creds, retry_policy=RetryPolicy(max_attempts=attempts, sleep=lambda s: None), session=session)
    return GitHubProvider(creds, client=client), session


def tip_routes(branch):
    return {
        ("GET", f"{REPO}/git/ref/heads/{branch}"): response(200, {"object": {"sha": "c1"}}),
        ("GET", f"{REPO}/git/commits/c1"): response(200, {"tree": {"sha": "t1"}}),
    }


def test_incomplete_credentials_are_a_config_error():
    with pytest.raises(ConfigError):
        GitHubClient(ProviderCredentials(token="", owner="o", repo="r"))


def test_auth_headers():
    _, session = make_provider({})
    assert session.headers["Authorization"] == "Bearer gh-token"
    assert session.headers["Accept"] == "application/vnd.github+json"


def test_branch_tip_uses_repository_default_branch():
    routes = {("GET", REPO): response(200, {"default_branch": "trunk"}), **tip_routes("trunk")}
    provider, _ = make_provider(routes)
    tip = provider.get_branch_tip()
    assert (tip.branch, tip.commit_sha, tip.tree_sha) == ("trunk", "c1", "t1")


def test_branch_tip_falls_back_to_main_then_master():
    provider, session = make_provider(tip_routes("master"))
    tip = provider.get_branch_tip()
    assert tip.branch == "master"
    probed = [url for method, url, _, _ in session.requests if "/git/ref/heads/" in url]
    assert probed == [f"{REPO}/git/ref/heads/main", f"{REPO}/git/ref/heads/master"]


def test_configured_branch_skips_discovery():
    provider, session = make_provider(tip_routes("live"), branch="live")
    assert provider.get_branch_tip().branch == "live"
    assert all(url != REPO for _, url, _, _ in session.requests)


def test_no_branch_found():
    provider, _ = make_provider({})
    with pytest.raises(UpstreamError) as exc:
        provider.get_branch_tip()
    assert exc.value.reason == "branch_not_found"


def test_read_file_decodes_and_handles_missing():
    content = base64.b64encode('[{"id": "p1"}]'.encode()).decode()
    routes = {("GET", f"{REPO}/contents/data/products.json"): response(200, {"content": content, "sha": "s"})}
    provider, _ = make_provider(routes)
    assert provider.read_json("data/products.json", []) == [{"id": "p1"}]
    assert provider.read_file("data/missing.json") is None


def test_reads_are_retried_on_5xx():
    content = base64.b64encode(b"{}").decode()
    routes = {
        ("GET", f"{REPO}/contents/data/content.json"): [
            response(502, {"message": "Bad gateway"}),
            requests.ConnectionError(),
            response(200, {"content": content}),
        ]
    }
    provider, session = make_provider(routes)
    assert provider.read_json("data/content.json", None) == {}
    assert len(session.requests) == 3


def test_reads_give_up_after_max_attempts():
    routes = {("GET", f"{REPO}/contents/data/content.json"): response(500, {"message": "down"})}
    provider, session = make_provider(routes, attempts=2)
    with pytest.raises(UpstreamError) as exc:
        provider.read_file("data/content.json")
    assert exc.value.status == 500
    assert len(session.requests) == 2


def test_writes_are_never_retried():
    routes = {("POST", f"{REPO}/git/blobs"): response(502, {"message": "Bad gateway"})}
    provider, session = make_provider(routes)
    with pytest.raises(UpstreamError):
        provider.create_blob("{}\n")
    assert len(session.requests) == 1


def test_tree_listing_keeps_blobs_only():
    routes = {
        ("GET", f"{REPO}/git/trees/t1"): response(
            200,
            {
                "truncated": False,
                "tree": [
                    {"path": "data", "mode": "040000", "type": "tree", "sha": "d"},
                    {"path": "data/products.json", "mode": "100644", "type": "blob", "sha": "b1"},
                ],
            },
        )
    }
    provider, session = make_provider(routes)
    assert provider.list_tree_entries("t1") == [TreeEntry("data/products.json", "100644", "b1")]
    assert session.requests[0][2] == {"recursive": "1"}


def test_commit_sequence_payloads():
    routes = {
        ("POST", f"{REPO}/git/blobs"): response(201, {"sha": "b9"}),
        ("POST", f"{REPO}/git/trees"): response(201, {"sha": "t9"}),
        ("POST", f"{REPO}/git/commits"): response(201, {"sha": "c9"}),
        ("PATCH", f"{REPO}/git/refs/heads/main"): response(200, {"object": {"sha": "c9"}}),
    }
    provider, session = make_provider(routes)
    blob = provider.create_blob("[]\n")
    tree = provider.create_tree("t1", [TreeEntry("data/hero.json", "100644", blob)])
    commit = provider.create_commit("msg", tree, "c1")
    provider.update_ref("main", commit)

    payloads = [json for _, _, _, json in session.requests]
    assert payloads[0] == {"content": base64.b64encode(b"[]\n").decode(), "encoding": "base64"}
    assert payloads[1] == {
        "base_tree": "t1",
        "tree": [{"path": "data/hero.json", "mode": "100644", "type": "blob", "sha": "b9"}],
    }
    assert payloads[2] == {"message": "msg", "tree": "t9", "parents": ["c1"]}
    assert payloads[3] == {"sha": "c9", "force": False}


def test_rejected_ref_update():
    routes = {("PATCH", f"{REPO}/git/refs/heads/main"): response(422, {"message": "Update is not a fast forward"})}
    provider, _ = make_provider(routes)
    with pytest.raises(RefUpdateRejected):
        provider.update_ref("main", "c9")


def test_write_file_sends_existing_sha():
    routes = {
        ("GET", f"{REPO}/contents/data/users.json"): response(200, {"sha": "old", "content": ""}),
        ("PUT", f"{REPO}/contents/data/users.json"): response(200, {"commit": {"sha": "c5"}}),
    }
    provider, session = make_provider(routes)
    assert provider.write_file("data/users.json", "[]\n", "Update user: x") == "c5"
    put = session.requests[-1][3]
    assert put["sha"] == "old"
    assert put["message"] == "Update user: x"
