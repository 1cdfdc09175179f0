import re

from activitylib import ranking
from activitylib.contributions import ContributionKind
from activitylib.contributions import RepoContributionEntry
from activitylib.time_window import TimeWindow


GITHUB_WEB_URL = "https://github.com"
ISSUE_NUMBER_RE = re.compile(r"/issues/(\d+)")
PULL_NUMBER_RE = re.compile(r"/pull/(\d+)")
OTHER_SECTION_LABEL = "Other people's repos"
OWN_SECTION_LABEL = "My repos"


#============================================
def _number_from_url(pattern: re.Pattern, url: str | None) -> str:
	match = pattern.search(url or "")
	if not match:
		return ""
	return match.group(1)


#============================================
def latest_link_parts(entry: RepoContributionEntry, is_own: bool) -> tuple[str, str | None]:
	"""
	Return link text and URL for an entry's latest contribution.
	"""
	commits_url = f"{GITHUB_WEB_URL}/{entry.name}/commits"
	kind = entry.last_kind
	if kind is ContributionKind.COMMIT:
		if entry.commit_total_in_repo is not None:
			text = f"commit #{entry.commit_total_in_repo}"
		else:
			text = "commits"
		if is_own:
			return text, commits_url
		url = entry.user_latest_commit_url or entry.latest_commit_url_in_repo or commits_url
		return text, url
	if kind is ContributionKind.ISSUE:
		number = _number_from_url(ISSUE_NUMBER_RE, entry.last_url)
		return (f"issue #{number}" if number else "issue"), entry.last_url
	if kind is ContributionKind.PULL_REQUEST:
		number = _number_from_url(PULL_NUMBER_RE, entry.last_url)
		return (f"PR #{number}" if number else "PR"), entry.last_url
	if kind is ContributionKind.REVIEW:
		number = _number_from_url(PULL_NUMBER_RE, entry.last_url)
		return (f"review on PR #{number}" if number else "review"), entry.last_url
	return "activity", entry.last_url


#============================================
def build_row(entry: RepoContributionEntry, login: str) -> str:
	is_own = ranking.is_own_repo(entry.name, login)
	display_name = entry.name.split("/", 1)[1] if is_own else entry.name
	repo_link = f"[{display_name}]({GITHUB_WEB_URL}/{entry.name})"
	text, url = latest_link_parts(entry, is_own)
	latest = f"[{text}]({url})" if url else text
	return f"| {repo_link} | {entry.total} | {latest} |"


#============================================
def build_table(
	own: list[RepoContributionEntry],
	other: list[RepoContributionEntry],
	window: TimeWindow,
	login: str,
) -> str:
	"""
	Render both partitions as one markdown table.
	"""
	lines = [
		f"| Repo | {window.header} | Latest |",
		"| --- | ---: | --- |",
	]
	for label, items in ((OTHER_SECTION_LABEL, other), (OWN_SECTION_LABEL, own)):
		if not items:
			lines.append(f"| **{label}** | _No contributions in the {window.label}._ | |")
			continue
		lines.append(f"| **{label}** |  |  |")
		for entry in items:
			lines.append(build_row(entry, login))
	return "\n".join(lines)
