import os
import sys
import threading
from datetime import datetime
from datetime import timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest
import requests
from github.GithubException import GithubException

import git_file_utils


REPO_ROOT = git_file_utils.get_repo_root()
PIPELINE_DIR = os.path.join(REPO_ROOT, "pipeline")
if PIPELINE_DIR not in sys.path:
	sys.path.insert(0, PIPELINE_DIR)

from activitylib import enrichment
from activitylib import github_client
from activitylib import sources
from activitylib import time_window
from activitylib.contributions import ContributionKind
from activitylib.contributions import RepoContributionEntry
from activitylib.contributions import ViewerIdentity


#============================================
class StubRequester:
	"""
	Replay queued (headers, data) responses and record requests.
	"""

	def __init__(self, responses: list):
		self.responses = list(responses)
		self.requests = []

	def requestJsonAndCheck(self, verb, path, parameters=None, input=None):
		self.requests.append((verb, path, parameters, input))
		response = self.responses.pop(0)
		if isinstance(response, Exception):
			raise response
		return response


#============================================
def make_stub_client(overview_object=None, responses=None, per_page: int = 2):
	"""
	Build GitHubClient instance with mocked PyGithub internals.
	"""
	client = github_client.GitHubClient.__new__(github_client.GitHubClient)
	client.log_fn = None
	client.per_page = per_page
	client.max_jitter_seconds = 0
	client._lock = threading.Lock()
	client._rate_check_count = 0
	client._low_remaining_threshold = 5
	client._max_proactive_sleep_seconds = 10
	client._api_call_count = 0
	client._api_calls_by_context = {}
	client._github_exception_class = GithubException

	def get_rate_limit():
		if overview_object is None:
			raise RuntimeError("no rate limit data")
		return overview_object

	client.client = SimpleNamespace(
		get_rate_limit=get_rate_limit,
		requester=StubRequester(responses or []),
	)
	return client


#============================================
def test_core_rate_limit_snapshot_from_core_attribute() -> None:
	"""
	Rate limit should parse from overview.core shape.
	"""
	reset_time = datetime(2026, 2, 22, 3, 30, 0, tzinfo=timezone.utc)
	overview = SimpleNamespace(core=SimpleNamespace(remaining=42, reset=reset_time))
	client = make_stub_client(overview)
	remaining, parsed_reset = client.get_core_rate_limit_snapshot()
	assert remaining == 42
	assert parsed_reset == reset_time


#============================================
def test_core_rate_limit_snapshot_from_resources_attribute() -> None:
	"""
	Rate limit should parse from overview.resources.core shape.
	"""
	overview = SimpleNamespace(
		resources=SimpleNamespace(
			core=SimpleNamespace(remaining=9, reset="2026-02-22T03:35:00+00:00")
		)
	)
	client = make_stub_client(overview)
	remaining, parsed_reset = client.get_core_rate_limit_snapshot()
	assert remaining == 9
	assert parsed_reset.isoformat() == "2026-02-22T03:35:00+00:00"


#============================================
def test_core_rate_limit_snapshot_from_resources_dict() -> None:
	"""
	Rate limit should parse from overview.resources['core'] shape.
	"""
	overview = SimpleNamespace(resources={"core": SimpleNamespace(remaining=3, reset=1761110400)})
	client = make_stub_client(overview)
	remaining, parsed_reset = client.get_core_rate_limit_snapshot()
	assert remaining == 3
	assert parsed_reset.tzinfo is not None


#============================================
def test_maybe_wait_for_rate_limit_handles_unknown_shape() -> None:
	"""
	Unknown rate-limit shape should not crash wait checks.
	"""
	client = make_stub_client(SimpleNamespace(resources={}))
	client.maybe_wait_for_rate_limit("unit-test", force=True)


#============================================
def test_parse_last_page_and_header_value() -> None:
	"""
	Link header parsing should find the rel=last page number.
	"""
	link = (
		'<https://api.github.com/repositories/1/commits?sha=main&per_page=1&page=2>; rel="next", '
		+ '<https://api.github.com/repositories/1/commits?sha=main&per_page=1&page=812>; rel="last"'
	)
	assert github_client.parse_last_page(link) == 812
	assert github_client.parse_last_page("") is None
	assert github_client.header_value({"Link": link}, "link") == link
	assert github_client.header_value({}, "link") == ""


#============================================
def test_collect_pages_stops_on_short_page() -> None:
	"""
	A page shorter than per_page ends pagination.
	"""
	next_link = {"link": '<https://api.github.com/x?page=2>; rel="next"'}
	client = make_stub_client(
		responses=[
			(next_link, [{"n": 1}, {"n": 2}]),
			({}, [{"n": 3}]),
		]
	)
	items = client.collect_pages("GET /x", "/x", {"q": "a", "skip": None})
	assert [item["n"] for item in items] == [1, 2, 3]
	sent = client.client.requester.requests
	assert len(sent) == 2
	assert sent[1][2] == {"q": "a", "per_page": 2, "page": 2}
	assert client.api_usage_snapshot()["api_calls_by_context"] == {"GET /x": 2}


#============================================
def test_collect_pages_honors_missing_next_link_and_page_cap() -> None:
	"""
	Full pages without a next link or past the cap end pagination.
	"""
	client = make_stub_client(responses=[({}, [{"n": 1}, {"n": 2}])])
	assert len(client.collect_pages("GET /x", "/x", {})) == 2
	next_link = {"link": 'rel="next"'}
	capped = make_stub_client(
		responses=[
			(next_link, {"items": [{"n": 1}, {"n": 2}]}),
			(next_link, {"items": [{"n": 3}, {"n": 4}]}),
		]
	)
	items = capped.collect_pages("GET /s", "/s", {}, max_pages=2, items_key="items")
	assert len(items) == 4
	assert capped.client.requester.requests[-1][2]["page"] == 2


#============================================
def test_get_commit_summary_uses_last_page() -> None:
	"""
	Total commits should come from the rel=last page with per_page=1.
	"""
	link = {"Link": '<https://api.github.com/x?per_page=1&page=57>; rel="last"'}
	client = make_stub_client(
		responses=[
			(link, [{"html_url": "https://github.com/bob/lib/commit/abc"}]),
			({}, [{"html_url": "https://github.com/bob/tiny/commit/def"}]),
		]
	)
	assert client.get_commit_summary("bob/lib", "main") == (57, "https://github.com/bob/lib/commit/abc")
	assert client.get_commit_summary("bob/tiny", "main") == (1, "https://github.com/bob/tiny/commit/def")


#============================================
def test_graphql_errors_raise() -> None:
	"""
	GraphQL error lists should surface as GraphQLError.
	"""
	client = make_stub_client(
		responses=[
			({}, {"data": {"viewer": {"login": "alice"}}}),
			({}, {"errors": [{"message": "bad field"}]}),
		]
	)
	assert client.graphql("query { viewer { login } }") == {"viewer": {"login": "alice"}}
	with pytest.raises(github_client.GraphQLError):
		client.graphql("query { nope }")
	verb, path, _, payload = client.client.requester.requests[0]
	assert (verb, path) == ("POST", "/graphql")
	assert payload["variables"] == {}


#============================================
def test_github_errors_are_translated() -> None:
	"""
	403 becomes RateLimitError; other statuses become GitHubRequestError.
	"""
	client = make_stub_client(
		responses=[
			GithubException(404, {"message": "Not Found"}, None),
			GithubException(403, {"message": "rate limited"}, None),
		]
	)
	with pytest.raises(github_client.GitHubRequestError) as error_info:
		client.get_repo_info("bob/missing")
	assert error_info.value.status == 404
	assert not isinstance(error_info.value, github_client.RateLimitError)
	with pytest.raises(github_client.RateLimitError):
		client.get_repo_info("bob/limited")


#============================================
def test_transport_errors_become_request_errors() -> None:
	"""
	Connection drops and timeouts should surface as GitHubRequestError.
	"""
	client = make_stub_client(responses=[requests.exceptions.ConnectionError("connection reset")])
	with pytest.raises(github_client.GitHubRequestError) as error_info:
		client.get_repo_info("bob/lib")
	assert error_info.value.status is None
	assert isinstance(error_info.value.__cause__, requests.exceptions.ConnectionError)


#============================================
def test_search_survives_dropped_connection() -> None:
	"""
	A dropped connection during commit search should yield no results.
	"""
	window = time_window.compute_window(
		datetime(2026, 2, 22, 12, 0, tzinfo=timezone.utc),
		ZoneInfo("UTC"),
		30,
	)
	client = make_stub_client(responses=[requests.exceptions.ConnectionError("connection reset")])
	assert sources.fetch_commit_search(client, "alice", window) == {}


#============================================
def test_enrichment_survives_read_timeout() -> None:
	"""
	A timed-out fork check should leave the entry as a non-fork.
	"""
	entry = RepoContributionEntry(
		name="bob/lib",
		total=1,
		last_url="https://github.com/bob/lib/issues/4",
		last_kind=ContributionKind.ISSUE,
	)
	client = make_stub_client(responses=[requests.exceptions.ReadTimeout("timed out")])
	enrichment.enrich_entries(
		client,
		[entry],
		"alice",
		ViewerIdentity(login="alice"),
		datetime(2026, 2, 1, tzinfo=timezone.utc),
		max_workers=2,
	)
	assert entry.is_fork is False
	assert len(client.client.requester.requests) == 1
