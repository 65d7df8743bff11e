"""Unit tests for the GitHub REST and Linear GraphQL clients.

HTTP traffic is served by httpx.MockTransport handlers; retry delays are
zeroed through ``base_delay=0``.
"""

import asyncio
import json
from typing import Callable, List
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from src.linear_pilot.github.client import GitHubAPIError, GitHubClient, RateLimitError
from src.linear_pilot.linear.client import LinearAPIError, LinearClient
from src.linear_pilot.linear.oauth import build_authorize_url


def run_async(coro):
    return asyncio.run(coro)


Handler = Callable[[httpx.Request], httpx.Response]


def _github(handler: Handler, max_retries: int = 2) -> GitHubClient:
    client = GitHubClient(token="ghp_test", max_retries=max_retries, base_delay=0)
    client._client = httpx.AsyncClient(
        base_url=client.base_url,
        headers=client._default_headers(),
        transport=httpx.MockTransport(handler),
    )
    return client


def _linear(handler: Handler, token: str = "lin_oauth_test", max_retries: int = 2) -> LinearClient:
    client = LinearClient(access_token=token, max_retries=max_retries, base_delay=0)
    client._client = httpx.AsyncClient(
        headers=client._default_headers(),
        transport=httpx.MockTransport(handler),
    )
    return client


PULL_REQUEST_JSON = {
    "number": 12,
    "html_url": "https://github.com/acme/widgets/pull/12",
    "state": "open",
    "head": {"ref": "linear-pilot/eng-42"},
    "base": {"ref": "main"},
}


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


class TestGitHubClient:
    def test_create_pull_request(self):
        seen: List[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json=PULL_REQUEST_JSON)

        url = run_async(
            _github(handler).create_pull_request(
                owner="acme",
                repo="widgets",
                title="Add export",
                body="Resolves ENG-42",
                head="linear-pilot/eng-42",
                base="main",
            )
        )

        assert url == "https://github.com/acme/widgets/pull/12"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/repos/acme/widgets/pulls"
        assert request.headers["Authorization"] == "Bearer ghp_test"
        assert json.loads(request.content) == {
            "title": "Add export",
            "body": "Resolves ENG-42",
            "head": "linear-pilot/eng-42",
            "base": "main",
        }

    def test_get_pull_request(self):
        def handler(request):
            assert request.url.path == "/repos/acme/widgets/pulls/12"
            return httpx.Response(200, json=PULL_REQUEST_JSON)

        pull_request = run_async(_github(handler).get_pull_request("acme", "widgets", 12))

        assert pull_request.head_ref == "linear-pilot/eng-42"
        assert pull_request.base_ref == "main"

    def test_find_open_pull_request_filters_by_head(self):
        seen: List[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[PULL_REQUEST_JSON])

        pull_request = run_async(
            _github(handler).find_open_pull_request("acme", "widgets", "linear-pilot/eng-42")
        )

        assert pull_request.html_url == "https://github.com/acme/widgets/pull/12"
        query = parse_qs(urlparse(str(seen[0].url)).query)
        assert seen[0].url.path == "/repos/acme/widgets/pulls"
        assert query == {"head": ["acme:linear-pilot/eng-42"], "state": ["open"]}

    def test_find_open_pull_request_none(self):
        def handler(request):
            return httpx.Response(200, json=[])

        assert run_async(_github(handler).find_open_pull_request("acme", "widgets", "b")) is None

    def test_replies_use_the_right_endpoints(self):
        paths: List[str] = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(201, json={"id": 1})

        async def scenario():
            github = _github(handler)
            await github.create_issue_comment("acme", "widgets", 12, "hello")
            await github.reply_to_review_comment("acme", "widgets", 12, 555, "hello")

        run_async(scenario())

        assert paths == [
            "/repos/acme/widgets/issues/12/comments",
            "/repos/acme/widgets/pulls/12/comments/555/replies",
        ]

    def test_retries_transient_errors(self):
        responses = iter([httpx.Response(502), httpx.Response(503), httpx.Response(200, json=PULL_REQUEST_JSON)])

        def handler(request):
            return next(responses)

        pull_request = run_async(_github(handler).get_pull_request("acme", "widgets", 12))
        assert pull_request.number == 12

    def test_gives_up_after_max_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, text="boom")

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(_github(handler, max_retries=2).get_pull_request("acme", "widgets", 12))

        assert exc_info.value.status_code == 500
        assert len(calls) == 3

    def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(422, json={"message": "A pull request already exists"})

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(
                _github(handler).create_pull_request("acme", "widgets", "t", "b", "head", "main")
            )

        assert exc_info.value.status_code == 422
        assert "already exists" in exc_info.value.response_body
        assert len(calls) == 1

    def test_exhausted_rate_limit(self):
        def handler(request):
            return httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "0", "retry-after": "30"},
            )

        with pytest.raises(RateLimitError) as exc_info:
            run_async(_github(handler).get_pull_request("acme", "widgets", 12))

        assert exc_info.value.retry_after == 30

    def test_forbidden_without_rate_limit_is_plain_error(self):
        def handler(request):
            return httpx.Response(403, headers={"x-ratelimit-remaining": "4000"})

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(_github(handler).get_pull_request("acme", "widgets", 12))

        assert not isinstance(exc_info.value, RateLimitError)

    def test_network_errors_are_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 2:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=PULL_REQUEST_JSON)

        run_async(_github(handler).get_pull_request("acme", "widgets", 12))
        assert len(attempts) == 2


# ---------------------------------------------------------------------------
# Linear
# ---------------------------------------------------------------------------


def _graphql(data=None, errors=None) -> httpx.Response:
    body = {}
    if data is not None:
        body["data"] = data
    if errors is not None:
        body["errors"] = errors
    return httpx.Response(200, json=body)


class TestLinearClient:
    @pytest.mark.parametrize(
        "token, expected",
        [
            ("lin_oauth_abc", "Bearer lin_oauth_abc"),
            ("lin_api_abc", "lin_api_abc"),
        ],
    )
    def test_authorization_header(self, token, expected):
        seen = []

        def handler(request):
            seen.append(request.headers["Authorization"])
            return _graphql({"viewer": {"id": "app-user"}})

        assert run_async(_linear(handler, token=token).viewer_id()) == "app-user"
        assert seen == [expected]

    def test_fetch_issue_sorts_comments_oldest_first(self):
        issue = {
            "id": "issue-1",
            "identifier": "ENG-42",
            "title": "Add export",
            "description": None,
            "url": "https://linear.app/acme/issue/ENG-42",
            "state": {"id": "st-1", "name": "Todo"},
            "creator": {"name": "Dana", "displayName": "dana"},
            "comments": {
                "nodes": [
                    {"id": "c-2", "body": "second", "createdAt": "2024-05-02T00:00:00Z"},
                    {"id": "c-1", "body": "first", "createdAt": "2024-05-01T00:00:00Z"},
                ]
            },
        }

        def handler(request):
            assert json.loads(request.content)["variables"] == {"id": "issue-1"}
            return _graphql({"issue": issue})

        details = run_async(_linear(handler).fetch_issue_with_comments("issue-1"))

        assert [c.body for c in details.comments] == ["first", "second"]
        assert details.last_comment_body == "second"
        assert details.creator_name == "dana"
        assert details.status_name == "Todo"

    def test_missing_issue_raises(self):
        with pytest.raises(LinearAPIError):
            run_async(_linear(lambda r: _graphql({"issue": None})).fetch_issue_with_comments("x"))

    def test_graphql_errors_raise(self):
        def handler(request):
            return _graphql(errors=[{"message": "Entity not found"}])

        with pytest.raises(LinearAPIError) as exc_info:
            run_async(_linear(handler).fetch_comment("c-1"))

        assert "Entity not found" in str(exc_info.value)
        assert exc_info.value.errors == [{"message": "Entity not found"}]

    def test_graphql_validation_error_on_400(self):
        def handler(request):
            return httpx.Response(400, json={"errors": [{"message": "Unknown argument"}]})

        with pytest.raises(LinearAPIError) as exc_info:
            run_async(_linear(handler).viewer_id())

        assert "Unknown argument" in str(exc_info.value)

    def test_non_json_body_raises(self):
        with pytest.raises(LinearAPIError):
            run_async(_linear(lambda r: httpx.Response(200, text="<html>")).viewer_id())

    def test_retries_then_succeeds(self):
        responses = iter([httpx.Response(503), _graphql({"organization": {"id": "org-1"}})])

        assert run_async(_linear(lambda r: next(responses)).organization_id()) == "org-1"

    def test_server_errors_exhaust_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        with pytest.raises(LinearAPIError) as exc_info:
            run_async(_linear(handler, max_retries=1).viewer_id())

        assert exc_info.value.status_code == 500
        assert len(calls) == 2

    def test_post_agent_activity_payload(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content)["variables"])
            return _graphql({"agentActivityCreate": {"success": True}})

        run_async(_linear(handler).post_agent_activity("s-1", "hello", kind="thought"))

        assert seen == [
            {"input": {"agentSessionId": "s-1", "content": {"type": "thought", "body": "hello"}}}
        ]

    def test_create_comment_returns_id(self):
        def handler(request):
            return _graphql({"commentCreate": {"success": True, "comment": {"id": "c-9"}}})

        assert run_async(_linear(handler).create_comment("issue-1", "plan")) == "c-9"

    def test_create_comment_without_id_raises(self):
        def handler(request):
            return _graphql({"commentCreate": {"success": False, "comment": None}})

        with pytest.raises(LinearAPIError):
            run_async(_linear(handler).create_comment("issue-1", "plan"))


class TestUpdateIssueStatus:
    def _handler(self, states, updates):
        def handler(request):
            payload = json.loads(request.content)
            if "IssueTeamStates" in payload["query"]:
                team = {"id": "team-1", "states": {"nodes": states}} if states is not None else None
                return _graphql({"issue": {"team": team}})
            updates.append(payload["variables"])
            return _graphql({"issueUpdate": {"success": True}})

        return handler

    def test_status_name_matches_case_insensitively(self):
        updates = []
        states = [{"id": "st-1", "name": "Todo"}, {"id": "st-2", "name": "In Review"}]

        updated = run_async(
            _linear(self._handler(states, updates)).update_issue_status("issue-1", "in review")
        )

        assert updated is True
        assert updates == [{"id": "issue-1", "input": {"stateId": "st-2"}}]

    def test_unknown_status_is_skipped(self):
        updates = []
        states = [{"id": "st-1", "name": "Todo"}]

        updated = run_async(
            _linear(self._handler(states, updates)).update_issue_status("issue-1", "In Review")
        )

        assert updated is False
        assert updates == []

    def test_issue_without_team_is_skipped(self):
        updates = []

        updated = run_async(
            _linear(self._handler(None, updates)).update_issue_status("issue-1", "In Review")
        )

        assert updated is False


class TestOAuth:
    def test_authorize_url_requests_app_actor(self):
        url = build_authorize_url("client-1", "https://pilot.example.com/oauth/callback")
        query = parse_qs(urlparse(url).query)

        assert url.startswith("https://linear.app/oauth/authorize?")
        assert query["actor"] == ["app"]
        assert query["response_type"] == ["code"]
        assert "app:assignable" in query["scope"][0].split(",")
        assert "state" not in query
