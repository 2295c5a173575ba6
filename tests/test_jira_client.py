import asyncio

import httpx
import pytest

from services.ingest.client import JiraClient, JiraError


def issue(issue_id, key, summary="s"):
    return {"id": issue_id, "key": key, "fields": {"summary": summary, "project": {"key": "EVO"}}}


def make_client(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JiraClient("https://jira.test/", "me@example.com", "token", http_client=http)


def test_fetch_all_pages_and_dedupe_by_key():
    requests = []

    def handler(request):
        requests.append(request)
        if "nextPageToken" not in request.url.params:
            return httpx.Response(200, json={
                "issues": [issue("1", "EVO-1", "old"), issue("2", "EVO-2")],
                "nextPageToken": "page-2",
                "isLast": False,
            })
        return httpx.Response(200, json={"issues": [issue("1", "EVO-1", "new")], "isLast": True})

    tickets = asyncio.run(make_client(handler).fetch_all_tickets("EVO"))

    assert [t.key for t in tickets] == ["EVO-1", "EVO-2"]
    assert tickets[0].summary == "new"
    assert len(requests) == 2
    assert requests[0].url.path == "/rest/api/3/search/jql"
    assert requests[0].url.params["jql"] == "project = EVO ORDER BY created DESC"
    assert "comment" in requests[0].url.params["fields"]
    assert requests[0].headers["Authorization"].startswith("Basic ")


def test_current_user():
    def handler(request):
        assert request.url.path == "/rest/api/3/myself"
        return httpx.Response(200, json={"emailAddress": "me@example.com", "displayName": "Me", "accountId": "x"})

    user = asyncio.run(make_client(handler).get_current_user())

    assert user.email == "me@example.com"
    assert user.display_name == "Me"


def test_health_check():
    assert asyncio.run(make_client(lambda r: httpx.Response(200, json={})).check_health())
    assert not asyncio.run(make_client(lambda r: httpx.Response(401)).check_health())


def test_server_error_raises_jira_error():
    with pytest.raises(JiraError) as exc_info:
        asyncio.run(make_client(lambda r: httpx.Response(500)).search_issues("project = EVO"))

    assert exc_info.value.status_code == 500


def test_missing_url_raises():
    client = JiraClient(base_url="", email="e", api_token="t",
                        http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))))
    client.base_url = ""

    with pytest.raises(JiraError, match="not configured"):
        asyncio.run(client.get_current_user())
