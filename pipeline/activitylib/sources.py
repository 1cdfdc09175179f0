"""
Contribution source fetchers.

Each fetcher turns one GitHub data source into a mapping of repository name
to SourceSummary. Search and GraphQL failures are logged and replaced with an
empty mapping; direct listing failures only zero out the affected repository.
"""

import re
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from activitylib import contributions
from activitylib import github_client
from activitylib.contributions import ContributionKind
from activitylib.time_window import TimeWindow


SEARCH_MAX_PAGES = 10
REPOSITORY_URL_RE = re.compile(r"/repos/([^/]+/[^/]+)$")
ISSUE_SEARCH_TYPES = {
	ContributionKind.ISSUE: "issue",
	ContributionKind.PULL_REQUEST: "pr",
}

REVIEW_CONTRIBUTIONS_QUERY = """
query($login: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $login) {
    contributionsCollection(from: $from, to: $to) {
      pullRequestReviewContributionsByRepository(maxRepositories: 100) {
        repository { nameWithOwner isFork isPrivate }
        contributions(first: 100) {
          totalCount
          nodes {
            occurredAt
            pullRequestReview { url }
            pullRequest { url }
          }
        }
      }
    }
  }
}
"""


#============================================
def _log(log_fn, message: str) -> None:
	if log_fn is not None:
		log_fn(message)


#============================================
def format_query_date(value: datetime) -> str:
	"""
	Format an instant as the UTC date used in search qualifiers.
	"""
	return value.astimezone(timezone.utc).date().isoformat()


#============================================
def build_commit_query(login: str, window: TimeWindow) -> str:
	return (
		f"author:{login} committer-date:"
		+ f"{format_query_date(window.start)}..{format_query_date(window.end)}"
	)


#============================================
def build_issue_query(login: str, window: TimeWindow, kind: ContributionKind) -> str:
	search_type = ISSUE_SEARCH_TYPES[kind]
	return (
		f"author:{login} type:{search_type} created:"
		+ f"{format_query_date(window.start)}..{format_query_date(window.end)}"
	)


#============================================
def repo_name_from_api_url(repository_url: str) -> str:
	"""
	Extract owner/repo from a REST repository URL.
	"""
	match = REPOSITORY_URL_RE.search(repository_url or "")
	if not match:
		return ""
	return match.group(1)


#============================================
def commit_timestamp(commit: dict) -> datetime | None:
	"""
	Read author date, falling back to committer date.
	"""
	commit_data = commit.get("commit") or {}
	author_data = commit_data.get("author") or {}
	committer_data = commit_data.get("committer") or {}
	return contributions.parse_optional_iso(author_data.get("date") or committer_data.get("date"))


#============================================
def is_quick_closed(item: dict, threshold: timedelta) -> bool:
	"""
	Check whether a pull request was closed unmerged within the threshold.
	"""
	pull_request = item.get("pull_request") or {}
	if item.get("merged_at") or pull_request.get("merged_at"):
		return False
	created_at = contributions.parse_optional_iso(item.get("created_at"))
	closed_at = contributions.parse_optional_iso(item.get("closed_at"))
	if created_at is None or closed_at is None:
		return False
	return (closed_at - created_at) <= threshold


#============================================
def commit_item_to_contribution(item: dict) -> contributions.RawContribution:
	repository = item.get("repository") or {}
	return contributions.RawContribution(
		repo_name=repository.get("full_name") or "",
		kind=ContributionKind.COMMIT,
		occurred_at=commit_timestamp(item),
		url=item.get("html_url"),
		is_private=bool(repository.get("private")),
		is_fork=bool(repository.get("fork")),
	)


#============================================
def issue_item_to_contribution(item: dict, kind: ContributionKind) -> contributions.RawContribution:
	return contributions.RawContribution(
		repo_name=repo_name_from_api_url(item.get("repository_url") or ""),
		kind=kind,
		occurred_at=contributions.parse_optional_iso(item.get("created_at")),
		url=item.get("html_url"),
	)


#============================================
def normalize_commit_search(items: list[dict]) -> list[contributions.RawContribution]:
	"""
	Normalize commit search items, dropping repeated SHAs.

	The same commit shows up once per fork that carries it.
	"""
	seen_shas = set()
	records = []
	for item in items:
		record = commit_item_to_contribution(item)
		if (not record.repo_name) or record.is_fork:
			continue
		sha = item.get("sha") or ""
		if sha in seen_shas:
			continue
		seen_shas.add(sha)
		records.append(record)
	return records


#============================================
def normalize_issue_search(
	items: list[dict],
	kind: ContributionKind,
	quick_close_threshold: timedelta,
) -> list[contributions.RawContribution]:
	"""
	Normalize issue or pull request search items.
	"""
	records = []
	for item in items:
		record = issue_item_to_contribution(item, kind)
		if not record.repo_name:
			continue
		if kind is ContributionKind.PULL_REQUEST and is_quick_closed(item, quick_close_threshold):
			continue
		records.append(record)
	return records


#============================================
def fetch_commit_search(client, login: str, window: TimeWindow, log_fn=None) -> dict:
	"""
	Count commits found by the commit search index.
	"""
	query = build_commit_query(login, window)
	try:
		items = client.search_commits(query, max_pages=SEARCH_MAX_PAGES)
	except github_client.GitHubRequestError as error:
		_log(log_fn, f"Commit search failed, continuing without it: {error}")
		return {}
	return contributions.summarize_by_repo(normalize_commit_search(items))


#============================================
def fetch_issue_search(
	client,
	login: str,
	window: TimeWindow,
	kind: ContributionKind,
	quick_close_threshold: timedelta,
	log_fn=None,
) -> dict:
	"""
	Count issues or pull requests opened by the viewer.
	"""
	query = build_issue_query(login, window, kind)
	try:
		items = client.search_issues(query, max_pages=SEARCH_MAX_PAGES)
	except github_client.GitHubRequestError as error:
		_log(log_fn, f"{kind.value} search failed, continuing without it: {error}")
		return {}
	records = normalize_issue_search(items, kind, quick_close_threshold)
	return contributions.summarize_by_repo(records)


#============================================
def fetch_repo_commits(
	client,
	repo_full_name: str,
	login: str,
	window: TimeWindow,
	log_fn=None,
) -> contributions.SourceSummary | None:
	"""
	List the viewer's commits in one repository directly.

	Returns None when there are no commits or the listing fails.
	"""
	try:
		commits = client.list_commits(
			repo_full_name,
			author=login,
			since=window.start,
			until=window.end,
		)
	except github_client.GitHubRequestError as error:
		_log(log_fn, f"Commit listing failed for {repo_full_name}: {error}")
		return None
	if not commits:
		return None
	records = [
		contributions.RawContribution(
			repo_name=repo_full_name,
			kind=ContributionKind.COMMIT,
			occurred_at=commit_timestamp(commit),
			url=commit.get("html_url"),
			is_private=True,
		)
		for commit in commits
	]
	return contributions.summarize_by_repo(records).get(repo_full_name)


#============================================
def review_nodes_to_contributions(repo_groups: list[dict]) -> list[contributions.RawContribution]:
	"""
	Flatten GraphQL review groups into records.

	When a group reports more reviews than the returned nodes, the remainder
	is carried on the first record so the total stays exact.
	"""
	records = []
	for group in repo_groups or []:
		repository = group.get("repository") or {}
		repo_name = repository.get("nameWithOwner") or ""
		connection = group.get("contributions") or {}
		nodes = [node for node in (connection.get("nodes") or []) if node]
		total_count = int(connection.get("totalCount") or len(nodes))
		if not nodes:
			if total_count > 0:
				records.append(
					contributions.RawContribution(
						repo_name=repo_name,
						kind=ContributionKind.REVIEW,
						occurred_at=None,
						url=None,
						weight=total_count,
						is_private=bool(repository.get("isPrivate")),
						is_fork=bool(repository.get("isFork")),
					)
				)
			continue
		extra = max(total_count - len(nodes), 0)
		for index, node in enumerate(nodes):
			review = node.get("pullRequestReview") or {}
			pull_request = node.get("pullRequest") or {}
			records.append(
				contributions.RawContribution(
					repo_name=repo_name,
					kind=ContributionKind.REVIEW,
					occurred_at=contributions.parse_optional_iso(node.get("occurredAt")),
					url=review.get("url") or pull_request.get("url"),
					weight=1 + (extra if index == 0 else 0),
					is_private=bool(repository.get("isPrivate")),
					is_fork=bool(repository.get("isFork")),
				)
			)
	return records


#============================================
def fetch_review_contributions(client, login: str, window: TimeWindow, log_fn=None) -> dict:
	"""
	Count pull request reviews from the GraphQL contributions collection.
	"""
	variables = {
		"login": login,
		"from": contributions.to_utc_iso(window.start),
		"to": contributions.to_utc_iso(window.end),
	}
	try:
		data = client.graphql(REVIEW_CONTRIBUTIONS_QUERY, variables)
	except github_client.GitHubRequestError as error:
		_log(log_fn, f"Review contributions query failed, continuing without it: {error}")
		return {}
	user = data.get("user") or {}
	collection = user.get("contributionsCollection") or {}
	groups = collection.get("pullRequestReviewContributionsByRepository") or []
	return contributions.summarize_by_repo(review_nodes_to_contributions(groups))
