import dataclasses
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import as_completed
from datetime import datetime

from activitylib import github_client
from activitylib import ranking
from activitylib.contributions import ContributionKind
from activitylib.contributions import RepoContributionEntry
from activitylib.contributions import ViewerIdentity


USER_COMMIT_MAX_PAGES = 5
CO_AUTHOR_TRAILER = "co-authored-by:"


#============================================
@dataclasses.dataclass(frozen=True)
class RepoMeta:
	total_count: int | None
	latest_url: str | None
	is_fork: bool


EMPTY_META = RepoMeta(total_count=None, latest_url=None, is_fork=False)


#============================================
def _log(log_fn, message: str) -> None:
	if log_fn is not None:
		log_fn(message)


#============================================
def run_bounded(fn, names: list[str], max_workers: int) -> dict:
	"""
	Run fn(name) for every name with at most max_workers in flight.

	Results are collected into a dict; callers mutate shared state only
	after this returns.
	"""
	results = {}
	if not names:
		return results
	with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(names)))) as executor:
		futures = {executor.submit(fn, name): name for name in names}
		for future in as_completed(futures):
			results[futures[future]] = future.result()
	return results


#============================================
def fetch_repo_meta(client, repo_name: str, log_fn=None) -> RepoMeta:
	"""
	Fetch fork status, total commit count and latest commit URL.
	"""
	try:
		repo = client.get_repo_info(repo_name)
		branch = repo.get("default_branch") or "main"
		total_count, latest_url = client.get_commit_summary(repo_name, branch)
	except github_client.GitHubRequestError as error:
		_log(log_fn, f"Metadata lookup failed for {repo_name}: {error}")
		return EMPTY_META
	return RepoMeta(
		total_count=total_count,
		latest_url=latest_url,
		is_fork=repo.get("fork") is True,
	)


#============================================
def check_fork(client, repo_name: str, log_fn=None) -> bool:
	"""
	Return True when the repository is a fork; failures count as not a fork.
	"""
	try:
		repo = client.get_repo_info(repo_name)
	except github_client.GitHubRequestError as error:
		_log(log_fn, f"Fork check failed for {repo_name}: {error}")
		return False
	return repo.get("fork") is True


#============================================
def viewer_aliases(viewer: ViewerIdentity) -> list[str]:
	"""
	Lowercased strings that identify the viewer in a co-author trailer.
	"""
	aliases = []
	login = (viewer.login or "").strip().lower()
	if login:
		aliases.append(login)
		aliases.append(f"{login}@users.noreply.github.com")
		if viewer.user_id:
			aliases.append(f"{viewer.user_id}+{login}@users.noreply.github.com")
	name = (viewer.name or "").strip().lower()
	if name:
		aliases.append(name)
	return aliases


#============================================
def commit_matches_viewer(commit: dict, viewer: ViewerIdentity) -> bool:
	"""
	Check author, committer and co-author trailers against the viewer.
	"""
	login = (viewer.login or "").lower()
	for role in ("author", "committer"):
		account = commit.get(role) or {}
		if login and str(account.get("login") or "").lower() == login:
			return True
	message = str((commit.get("commit") or {}).get("message") or "").lower()
	for line in message.splitlines():
		line = line.strip()
		if not line.startswith(CO_AUTHOR_TRAILER):
			continue
		trailer = line[len(CO_AUTHOR_TRAILER):]
		for alias in viewer_aliases(viewer):
			if alias in trailer:
				return True
	return False


#============================================
def find_user_commit_url(
	client,
	repo_name: str,
	viewer: ViewerIdentity,
	since: datetime,
	log_fn=None,
) -> str | None:
	"""
	Find the newest commit in a repository attributable to the viewer.
	"""
	try:
		commits = client.list_commits(repo_name, since=since, max_pages=USER_COMMIT_MAX_PAGES)
	except github_client.GitHubRequestError as error:
		_log(log_fn, f"User commit lookup failed for {repo_name}: {error}")
		return None
	for commit in commits:
		if commit_matches_viewer(commit, viewer):
			return commit.get("html_url")
	return None


#============================================
def enrich_entries(
	client,
	entries: list[RepoContributionEntry],
	login: str,
	viewer: ViewerIdentity,
	since: datetime,
	max_workers: int,
	log_fn=None,
) -> None:
	"""
	Add commit metadata, fork flags and user commit URLs to entries.

	Lookups run concurrently per repository; entries are only written from
	this thread once each batch has finished.
	"""
	by_name = {entry.name: entry for entry in entries}

	commit_names = [e.name for e in entries if e.last_kind is ContributionKind.COMMIT]
	metas = run_bounded(
		lambda name: fetch_repo_meta(client, name, log_fn),
		commit_names,
		max_workers,
	)
	for name, meta in metas.items():
		if meta.total_count is None:
			continue
		entry = by_name[name]
		entry.commit_total_in_repo = meta.total_count
		entry.latest_commit_url_in_repo = meta.latest_url
		entry.is_fork = meta.is_fork

	fork_check_names = [
		e.name for e in entries
		if (not ranking.is_own_repo(e.name, login))
		and (not e.is_fork)
		and e.last_kind is not ContributionKind.COMMIT
	]
	fork_flags = run_bounded(
		lambda name: check_fork(client, name, log_fn),
		fork_check_names,
		max_workers,
	)
	for name, is_fork in fork_flags.items():
		by_name[name].is_fork = is_fork

	url_names = [
		e.name for e in entries
		if (not ranking.is_own_repo(e.name, login))
		and (not e.is_fork)
		and e.last_kind is ContributionKind.COMMIT
	]
	user_urls = run_bounded(
		lambda name: find_user_commit_url(client, name, viewer, since, log_fn),
		url_names,
		max_workers,
	)
	for name, url in user_urls.items():
		if url:
			by_name[name].user_latest_commit_url = url
