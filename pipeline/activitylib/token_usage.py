"""
Token usage aggregation for the profile README.

Token totals come from a CodexBar widget snapshot; commit totals come from
the GraphQL contributions collection plus default-branch history of the
viewer's private repositories.
"""

import json
import os
from datetime import datetime
from decimal import ROUND_HALF_UP
from decimal import Decimal

from activitylib import contributions


PROVIDERS = ("codex", "claude")
PRIVATE_REPOS_MAX_PAGES = 50

VIEWER_QUERY = "query { viewer { id login } }"

PUBLIC_COMMITS_QUERY = """
query($login: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $login) {
    contributionsCollection(from: $from, to: $to) {
      commitContributionsByRepository(maxRepositories: 100) {
        repository { isFork }
        contributions(last: 100) {
          nodes { commitCount }
        }
      }
    }
  }
}
"""

PRIVATE_REPOS_QUERY = """
query($after: String) {
  viewer {
    repositories(
      first: 100,
      after: $after,
      privacy: PRIVATE,
      orderBy: { field: PUSHED_AT, direction: DESC }
    ) {
      nodes { nameWithOwner isFork }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""

PRIVATE_HISTORY_QUERY = """
query($owner: String!, $name: String!, $from: GitTimestamp!, $to: GitTimestamp!, $authorId: ID!) {
  repository(owner: $owner, name: $name) {
    defaultBranchRef {
      target {
        ... on Commit {
          history(since: $from, until: $to, author: { id: $authorId }) {
            totalCount
          }
        }
      }
    }
  }
}
"""


#============================================
def round_half_up(value: float, digits: int = 0) -> Decimal:
	quantum = Decimal(1).scaleb(-digits)
	return Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)


#============================================
def format_number(value: float, fraction_digits: int = 0) -> str:
	"""
	Format with thousands separators and fixed fraction digits.
	"""
	rounded = round_half_up(value, fraction_digits)
	return f"{rounded:,.{fraction_digits}f}"


#============================================
def format_millions(tokens: float) -> str:
	return f"{format_number(tokens / 1_000_000)}M"


#============================================
def format_millions_2dp(tokens: float) -> str:
	return f"{format_number(tokens / 1_000_000, 2)}M"


#============================================
def format_billions(tokens: float) -> str:
	return f"{format_number(tokens / 1_000_000_000, 1)}B"


#============================================
def _to_number(value) -> float | None:
	try:
		number = float(value)
	except (TypeError, ValueError):
		return None
	if number != number or number in (float("inf"), float("-inf")):
		return None
	return number


#============================================
def load_snapshot(path: str) -> dict:
	"""
	Read the widget snapshot JSON.
	"""
	if not os.path.isfile(path):
		raise RuntimeError(f"CodexBar snapshot not found: {path}")
	with open(path, "r", encoding="utf-8") as handle:
		try:
			data = json.load(handle)
		except ValueError as error:
			raise RuntimeError(f"CodexBar snapshot is not valid JSON: {path}") from error
	if not isinstance(data, dict):
		raise RuntimeError(f"CodexBar snapshot must contain an object: {path}")
	return data


#============================================
def extract_tokens(snapshot: dict, year: int) -> dict[str, dict[str, int]]:
	"""
	Collect last-30-day and year-to-date token totals per provider.
	"""
	result = {provider: {"last30": 0, "ytd": 0} for provider in PROVIDERS}
	for entry in snapshot.get("entries") or []:
		if not isinstance(entry, dict):
			continue
		if not entry.get("provider") or not entry.get("tokenUsage"):
			continue
		provider = str(entry["provider"]).lower()
		if provider not in result:
			continue
		last30 = _to_number(entry["tokenUsage"].get("last30DaysTokens") or 0)
		if last30 is not None:
			result[provider]["last30"] = int(round_half_up(last30))
		for day in entry.get("dailyUsage") or []:
			if not isinstance(day, dict):
				continue
			if not day.get("dayKey") or not day.get("totalTokens"):
				continue
			if not str(day["dayKey"]).startswith(f"{year}-"):
				continue
			tokens = _to_number(day["totalTokens"])
			if tokens is not None:
				result[provider]["ytd"] += int(round_half_up(tokens))
	return result


#============================================
def fetch_viewer_node(client) -> dict:
	data = client.graphql(VIEWER_QUERY)
	return data.get("viewer") or {}


#============================================
def fetch_public_commit_count(client, login: str, start: datetime, end: datetime) -> int:
	"""
	Sum commit counts of non-fork repositories in the contributions collection.
	"""
	data = client.graphql(
		PUBLIC_COMMITS_QUERY,
		{
			"login": login,
			"from": contributions.to_utc_iso(start),
			"to": contributions.to_utc_iso(end),
		},
	)
	collection = (data.get("user") or {}).get("contributionsCollection") or {}
	total = 0
	for group in collection.get("commitContributionsByRepository") or []:
		if (group.get("repository") or {}).get("isFork"):
			continue
		for node in (group.get("contributions") or {}).get("nodes") or []:
			total += int(node.get("commitCount") or 0)
	return total


#============================================
def fetch_private_repos(client) -> list[str]:
	"""
	List the viewer's private, non-fork repositories via cursor pagination.
	"""
	repos = []
	cursor = None
	for _ in range(PRIVATE_REPOS_MAX_PAGES):
		data = client.graphql(PRIVATE_REPOS_QUERY, {"after": cursor})
		connection = (data.get("viewer") or {}).get("repositories") or {}
		for repo in connection.get("nodes") or []:
			if not repo or not repo.get("nameWithOwner") or repo.get("isFork"):
				continue
			repos.append(repo["nameWithOwner"])
		page_info = connection.get("pageInfo") or {}
		if not page_info.get("hasNextPage"):
			break
		cursor = page_info.get("endCursor")
	return repos


#============================================
def fetch_private_commit_count(
	client,
	repo_name: str,
	viewer_id: str,
	start: datetime,
	end: datetime,
) -> int:
	owner, _, name = repo_name.partition("/")
	if not owner or not name:
		return 0
	data = client.graphql(
		PRIVATE_HISTORY_QUERY,
		{
			"owner": owner,
			"name": name,
			"from": contributions.to_utc_iso(start),
			"to": contributions.to_utc_iso(end),
			"authorId": viewer_id,
		},
	)
	repository = data.get("repository") or {}
	target = (repository.get("defaultBranchRef") or {}).get("target") or {}
	return int((target.get("history") or {}).get("totalCount") or 0)


#============================================
def count_commits(
	client,
	login: str,
	viewer_id: str,
	start: datetime,
	end: datetime,
	private_repos: list[str],
) -> int:
	"""
	Count the viewer's commits in a window across public and private repos.
	"""
	total = fetch_public_commit_count(client, login, start, end)
	for repo_name in private_repos:
		total += fetch_private_commit_count(client, repo_name, viewer_id, start, end)
	return total


#============================================
def per_commit_text(tokens: int, commit_count: int) -> str:
	if not commit_count:
		return "n/a"
	return f"{format_millions_2dp(tokens / commit_count)} / commit"


#============================================
def build_block(tokens: dict, commits_last30: int, commits_ytd: int) -> str:
	"""
	Render the token usage README block.
	"""
	total_last30 = sum(tokens[provider]["last30"] for provider in PROVIDERS)
	total_ytd = sum(tokens[provider]["ytd"] for provider in PROVIDERS)
	lines = [
		f"Past month: {format_millions(total_last30)} "
		+ f"({per_commit_text(total_last30, commits_last30)})",
		f"- Codex: {format_millions(tokens['codex']['last30'])}",
		f"- Claude: {format_millions(tokens['claude']['last30'])}",
		"",
		f"Year to date: {format_billions(total_ytd)} "
		+ f"({per_commit_text(total_ytd, commits_ytd)})",
		f"- Codex: {format_billions(tokens['codex']['ytd'])}",
		f"- Claude: {format_billions(tokens['claude']['ytd'])}",
	]
	return "\n".join(lines)
