import os
import sys
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from zoneinfo import ZoneInfo

import git_file_utils
from fake_github import FakeGitHub


REPO_ROOT = git_file_utils.get_repo_root()
PIPELINE_DIR = os.path.join(REPO_ROOT, "pipeline")
if PIPELINE_DIR not in sys.path:
	sys.path.insert(0, PIPELINE_DIR)

from activitylib import sources
from activitylib import time_window
from activitylib.contributions import ContributionKind
from activitylib.contributions import ContributionMerger


THRESHOLD = timedelta(minutes=30)
WINDOW = time_window.compute_window(
	datetime(2026, 2, 22, 12, 0, tzinfo=timezone.utc),
	ZoneInfo("UTC"),
	30,
)


#============================================
def make_pr(created: str, closed: str | None = None, merged: str | None = None, number: int = 1) -> dict:
	return {
		"repository_url": "https://api.github.com/repos/bob/lib",
		"html_url": f"https://github.com/bob/lib/pull/{number}",
		"created_at": created,
		"closed_at": closed,
		"pull_request": {"merged_at": merged},
	}


#============================================
def make_commit(sha: str, repo: str, date_text: str, fork: bool = False) -> dict:
	return {
		"sha": sha,
		"html_url": f"https://github.com/{repo}/commit/{sha}",
		"repository": {"full_name": repo, "fork": fork},
		"commit": {"author": {"date": date_text}, "committer": {"date": date_text}},
	}


#============================================
def test_quick_close_rule() -> None:
	"""
	Unmerged PRs closed within the threshold are noise; others count.
	"""
	created = "2026-02-10T10:00:00Z"
	assert sources.is_quick_closed(make_pr(created, "2026-02-10T10:29:00Z"), THRESHOLD)
	assert sources.is_quick_closed(make_pr(created, "2026-02-10T10:30:00Z"), THRESHOLD)
	assert not sources.is_quick_closed(
		make_pr(created, "2026-02-10T10:29:00Z", merged="2026-02-10T10:29:00Z"),
		THRESHOLD,
	)
	assert not sources.is_quick_closed(make_pr(created, "2026-02-10T10:31:00Z"), THRESHOLD)
	assert not sources.is_quick_closed(make_pr(created), THRESHOLD)


#============================================
def test_pr_search_skips_quick_closed() -> None:
	"""
	Quick-closed PRs should not reach the per-repo counts.
	"""
	client = FakeGitHub(
		pr_items=[
			make_pr("2026-02-10T10:00:00Z", "2026-02-10T10:29:00Z", number=1),
			make_pr("2026-02-11T10:00:00Z", "2026-02-11T10:29:00Z", merged="2026-02-11T10:29:00Z", number=2),
			make_pr("2026-02-12T10:00:00Z", "2026-02-12T10:31:00Z", number=3),
		],
	)
	by_repo = sources.fetch_issue_search(
		client,
		"alice",
		WINDOW,
		ContributionKind.PULL_REQUEST,
		THRESHOLD,
	)
	assert by_repo["bob/lib"].count == 2
	assert by_repo["bob/lib"].last_url == "https://github.com/bob/lib/pull/3"
	assert client.calls_named("search_issues") == [
		"author:alice type:pr created:2026-01-24..2026-02-22"
	]


#============================================
def test_issue_search_ignores_quick_close_rule() -> None:
	"""
	Issues closed quickly still count.
	"""
	item = make_pr("2026-02-10T10:00:00Z", "2026-02-10T10:01:00Z")
	item["html_url"] = "https://github.com/bob/lib/issues/9"
	client = FakeGitHub(issue_items=[item])
	by_repo = sources.fetch_issue_search(client, "alice", WINDOW, ContributionKind.ISSUE, THRESHOLD)
	assert by_repo["bob/lib"].count == 1


#============================================
def test_commit_search_dedupes_sha_and_drops_forks() -> None:
	"""
	Repeated SHAs and fork repositories should not be counted.
	"""
	client = FakeGitHub(
		commit_items=[
			make_commit("x1", "alice/r1", "2026-02-01T10:00:00Z"),
			make_commit("x1", "alice/r1-mirror", "2026-02-01T10:00:00Z"),
			make_commit("x2", "carol/r1", "2026-02-02T10:00:00Z", fork=True),
			make_commit("x3", "alice/r1", "2026-02-03T10:00:00Z"),
		],
	)
	by_repo = sources.fetch_commit_search(client, "alice", WINDOW)
	assert set(by_repo) == {"alice/r1"}
	assert by_repo["alice/r1"].count == 2
	assert by_repo["alice/r1"].last_url.endswith("/x3")
	assert client.calls_named("search_commits") == [
		"author:alice committer-date:2026-01-24..2026-02-22"
	]


#============================================
def test_search_failure_yields_empty_mapping() -> None:
	"""
	Search endpoint failures should be logged and replaced by no results.
	"""
	messages = []
	client = FakeGitHub(failing={"search_commits", "search_issues"})
	assert sources.fetch_commit_search(client, "alice", WINDOW, messages.append) == {}
	assert sources.fetch_issue_search(
		client, "alice", WINDOW, ContributionKind.ISSUE, THRESHOLD, messages.append
	) == {}
	assert len(messages) == 2


#============================================
def test_direct_listing_failure_is_per_repo() -> None:
	"""
	Direct listing failures should only zero out the failing repository.
	"""
	client = FakeGitHub(
		author_commits={
			"alice/private": [make_commit("p1", "alice/private", "2026-02-05T10:00:00Z")],
		},
		failing={("list_author_commits", "alice/broken")},
	)
	ok = sources.fetch_repo_commits(client, "alice/private", "alice", WINDOW)
	assert ok.count == 1
	assert sources.fetch_repo_commits(client, "alice/broken", "alice", WINDOW) is None
	assert sources.fetch_repo_commits(client, "alice/empty", "alice", WINDOW) is None


#============================================
def test_repo_name_from_api_url() -> None:
	"""
	Owner/repo should come from the structured repository URL.
	"""
	assert sources.repo_name_from_api_url("https://api.github.com/repos/bob/lib") == "bob/lib"
	assert sources.repo_name_from_api_url("https://example.com/bob") == ""


#============================================
def test_review_contributions_carry_uncounted_remainder() -> None:
	"""
	Review totals should include reviews beyond the returned nodes.
	"""
	data = {
		"user": {
			"contributionsCollection": {
				"pullRequestReviewContributionsByRepository": [
					{
						"repository": {"nameWithOwner": "bob/lib", "isFork": False, "isPrivate": False},
						"contributions": {
							"totalCount": 5,
							"nodes": [
								{
									"occurredAt": "2026-02-10T10:00:00Z",
									"pullRequestReview": {"url": "https://github.com/bob/lib/pull/4#pullrequestreview-1"},
								},
								{
									"occurredAt": "2026-02-12T10:00:00Z",
									"pullRequestReview": {"url": "https://github.com/bob/lib/pull/8#pullrequestreview-2"},
								},
							],
						},
					},
					{
						"repository": {"nameWithOwner": "dan/fork", "isFork": True, "isPrivate": False},
						"contributions": {"totalCount": 1, "nodes": [{"occurredAt": "2026-02-10T10:00:00Z"}]},
					},
				]
			}
		}
	}
	client = FakeGitHub(graphql_data=data)
	by_repo = sources.fetch_review_contributions(client, "alice", WINDOW)
	assert set(by_repo) == {"bob/lib"}
	assert by_repo["bob/lib"].count == 5
	assert "/pull/8" in by_repo["bob/lib"].last_url


#============================================
def test_cross_source_commits_are_not_deduplicated() -> None:
	"""
	A commit seen by search and direct listing counts once per source.
	"""
	client = FakeGitHub(
		commit_items=[make_commit("x1", "u/r1", "2026-02-01T10:00:00Z")],
		author_commits={"u/r1": [make_commit("x1", "u/r1", "2026-02-01T10:00:00Z")]},
	)
	merger = ContributionMerger()
	merger.add_summaries(sources.fetch_commit_search(client, "u", WINDOW), ContributionKind.COMMIT)
	direct = sources.fetch_repo_commits(client, "u/r1", "u", WINDOW)
	merger.add("u/r1", direct.count, direct.last_at, direct.last_url, ContributionKind.COMMIT)
	assert merger.get("u/r1").total == 2
