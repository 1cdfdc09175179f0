import random
import re
import threading
import time
from datetime import datetime
from datetime import timezone

import requests

from activitylib import contributions


LAST_PAGE_RE = re.compile(r"[?&]page=(\d+)[^>]*>;\s*rel=\"last\"")
DEFAULT_PER_PAGE = 100
DEFAULT_MAX_PAGES = 10


#============================================
class GitHubRequestError(RuntimeError):
	"""
	Raised when one GitHub API request fails.
	"""

	def __init__(self, message: str, status: int | None = None):
		super().__init__(message)
		self.status = status


#============================================
class RateLimitError(GitHubRequestError):
	"""
	Raised when GitHub API rate limits block further requests.
	"""


#============================================
class GraphQLError(GitHubRequestError):
	"""
	Raised when a GraphQL response carries an errors list.
	"""


#============================================
def header_value(headers: dict, name: str) -> str:
	"""
	Read one response header case-insensitively.
	"""
	if not headers:
		return ""
	wanted = name.lower()
	for key, value in headers.items():
		if str(key).lower() == wanted:
			return str(value or "")
	return ""


#============================================
def parse_last_page(link_header: str) -> int | None:
	"""
	Extract the rel="last" page number from a Link header.
	"""
	if not link_header:
		return None
	match = LAST_PAGE_RE.search(link_header)
	if not match:
		return None
	return int(match.group(1))


#============================================
class GitHubClient:
	"""
	Thin PyGithub wrapper exposing raw REST and GraphQL payloads.
	"""

	def __init__(self, token: str, log_fn=None, per_page: int = DEFAULT_PER_PAGE):
		self.log_fn = log_fn
		self.per_page = per_page
		self.max_jitter_seconds = 0.25
		self._lock = threading.Lock()
		self._rate_check_count = 0
		self._low_remaining_threshold = 5
		self._max_proactive_sleep_seconds = 10
		self._api_call_count = 0
		self._api_calls_by_context: dict[str, int] = {}
		try:
			from github import Auth
			from github import Github
			from github.GithubException import GithubException
		except ModuleNotFoundError as error:
			raise RuntimeError(
				"Missing dependency: PyGithub. Install it with pip install PyGithub."
			) from error
		self._github_exception_class = GithubException
		self.client = Github(auth=Auth.Token(token), per_page=per_page, retry=None)

	#============================================
	def log(self, message: str) -> None:
		"""
		Emit one log line when logger is configured.
		"""
		if self.log_fn is not None:
			self.log_fn(message)

	#============================================
	def record_api_call(self, context: str) -> None:
		"""
		Track one outbound GitHub API call.
		"""
		with self._lock:
			self._api_call_count += 1
			if context not in self._api_calls_by_context:
				self._api_calls_by_context[context] = 0
			self._api_calls_by_context[context] += 1

	#============================================
	def api_usage_snapshot(self) -> dict:
		"""
		Return API counters for reporting.
		"""
		with self._lock:
			return {
				"api_call_count": self._api_call_count,
				"api_calls_by_context": dict(self._api_calls_by_context),
			}

	#============================================
	def parse_rate_limit_reset(self, reset_value) -> datetime:
		"""
		Normalize PyGithub reset values to timezone-aware UTC datetime.
		"""
		if isinstance(reset_value, datetime):
			return contributions.normalize_datetime(reset_value)
		if isinstance(reset_value, (int, float)):
			return datetime.fromtimestamp(float(reset_value), tz=timezone.utc)
		if isinstance(reset_value, str):
			return contributions.parse_iso(reset_value)
		raise RuntimeError(f"Unsupported rate-limit reset value: {reset_value!r}")

	#============================================
	def get_core_rate_limit_snapshot(self) -> tuple[int, datetime]:
		"""
		Read core rate-limit remaining/reset across PyGithub versions.
		"""
		self.record_api_call("GET /rate_limit")
		overview = self.client.get_rate_limit()
		rate_limit = getattr(overview, "core", None)
		if rate_limit is None:
			resources = getattr(overview, "resources", None)
			if isinstance(resources, dict):
				rate_limit = resources.get("core")
			elif resources is not None:
				rate_limit = getattr(resources, "core", None)
		if rate_limit is None:
			raise RuntimeError("Rate limit data does not expose core resource fields.")
		remaining = int(getattr(rate_limit, "remaining"))
		reset_time = self.parse_rate_limit_reset(getattr(rate_limit, "reset"))
		return remaining, reset_time

	#============================================
	def maybe_wait_for_rate_limit(self, context: str, force: bool = False) -> None:
		"""
		Sleep until reset when rate limit is very low.
		"""
		with self._lock:
			self._rate_check_count += 1
			check_count = self._rate_check_count
		if (not force) and (check_count % 15 != 0):
			return
		try:
			remaining, reset_time = self.get_core_rate_limit_snapshot()
		except Exception as error:
			self.log(f"Rate limit check ({context}) unavailable: {error}")
			return
		self.log(
			f"Rate limit check ({context}): remaining={remaining}, "
			+ f"reset_at={reset_time.isoformat()}"
		)
		if remaining > self._low_remaining_threshold:
			return
		sleep_seconds = int((reset_time - datetime.now(timezone.utc)).total_seconds()) + 1
		if sleep_seconds <= 0:
			return
		if sleep_seconds > self._max_proactive_sleep_seconds:
			self.log(
				"Rate limit is low, but proactive wait exceeds cap "
				+ f"({sleep_seconds}s > {self._max_proactive_sleep_seconds}s); "
				+ "skipping proactive sleep and continuing."
			)
			return
		self.log(
			f"Rate limit is low ({remaining}); sleeping {sleep_seconds}s until reset."
		)
		time.sleep(sleep_seconds)

	#============================================
	def sleep_request_jitter(self, context: str) -> None:
		"""
		Add small random jitter before API calls.
		"""
		delay = random.random() * self.max_jitter_seconds
		time.sleep(delay)

	#============================================
	def call_with_retry(self, context: str, call_fn):
		"""
		Run one API call with jitter and error translation.
		"""
		self.sleep_request_jitter(context)
		try:
			self.record_api_call(context)
			return call_fn()
		except self._github_exception_class as error:
			self.raise_from_github_error(error, context)
		except requests.exceptions.RequestException as error:
			raise GitHubRequestError(
				f"GitHub request failed while {context}: {error}",
				status=None,
			) from error

	#============================================
	def raise_from_github_error(self, error: Exception, context: str) -> None:
		"""
		Raise a human-readable rate-limit or request error.
		"""
		status = getattr(error, "status", None)
		if status not in (403, 429):
			raise GitHubRequestError(
				f"GitHub API {status} while {context}: {getattr(error, 'data', error)}",
				status=status,
			) from error
		reset_text = "unknown"
		remaining_text = "unknown"
		try:
			remaining, reset_time = self.get_core_rate_limit_snapshot()
			reset_text = reset_time.isoformat()
			remaining_text = str(remaining)
		except Exception:
			pass
		raise RateLimitError(
			"GitHub API rate limit exceeded while "
			+ f"{context}; remaining={remaining_text}; reset_at={reset_text}.",
			status=status,
		) from error

	#============================================
	def request_json(
		self,
		context: str,
		verb: str,
		path: str,
		parameters: dict | None = None,
		input_payload: dict | None = None,
	) -> tuple[dict, object]:
		"""
		Send one REST request through the PyGithub requester.
		"""
		clean_parameters = None
		if parameters is not None:
			clean_parameters = {
				key: value for key, value in parameters.items() if value is not None
			}
		return self.call_with_retry(
			context,
			lambda: self.client.requester.requestJsonAndCheck(
				verb,
				path,
				parameters=clean_parameters,
				input=input_payload,
			),
		)

	#============================================
	def fetch_page(
		self,
		context: str,
		path: str,
		params: dict,
		page: int,
		items_key: str | None = None,
	) -> tuple[list, int | None]:
		"""
		Fetch one page and return its items plus the next page number.
		"""
		page_params = dict(params)
		page_params["per_page"] = self.per_page
		page_params["page"] = page
		headers, data = self.request_json(context, "GET", path, page_params)
		if items_key is not None:
			data = (data or {}).get(items_key) or []
		if not isinstance(data, list):
			return [data], None
		if len(data) < self.per_page:
			return data, None
		if 'rel="next"' not in header_value(headers, "link"):
			return data, None
		return data, page + 1

	#============================================
	def collect_pages(
		self,
		context: str,
		path: str,
		params: dict,
		max_pages: int = DEFAULT_MAX_PAGES,
		items_key: str | None = None,
	) -> list:
		"""
		Walk pages sequentially until a short page or the page cap.
		"""
		results = []
		page: int | None = 1
		while page is not None and page <= max_pages:
			items, page = self.fetch_page(context, path, params, page, items_key=items_key)
			results.extend(items)
		return results

	#============================================
	def get_viewer(self) -> contributions.ViewerIdentity:
		"""
		Resolve the authenticated user identity.
		"""
		_, data = self.request_json("GET /user", "GET", "/user")
		return contributions.ViewerIdentity(
			login=str(data.get("login") or ""),
			name=str(data.get("name") or ""),
			user_id=data.get("id"),
		)

	#============================================
	def list_viewer_repos(self, max_pages: int = DEFAULT_MAX_PAGES) -> list[dict]:
		"""
		List repositories the viewer owns, collaborates on or reaches via orgs.
		"""
		self.maybe_wait_for_rate_limit("list_viewer_repos", force=True)
		return self.collect_pages(
			"GET /user/repos",
			"/user/repos",
			{
				"affiliation": "owner,collaborator,organization_member",
				"sort": "pushed",
				"direction": "desc",
			},
			max_pages=max_pages,
		)

	#============================================
	def search_commits(self, query: str, max_pages: int = DEFAULT_MAX_PAGES) -> list[dict]:
		"""
		Run a commit search and return raw items.
		"""
		return self.collect_pages(
			"GET /search/commits",
			"/search/commits",
			{"q": query},
			max_pages=max_pages,
			items_key="items",
		)

	#============================================
	def search_issues(self, query: str, max_pages: int = DEFAULT_MAX_PAGES) -> list[dict]:
		"""
		Run an issue or pull request search and return raw items.
		"""
		return self.collect_pages(
			"GET /search/issues",
			"/search/issues",
			{"q": query},
			max_pages=max_pages,
			items_key="items",
		)

	#============================================
	def list_commits(
		self,
		repo_full_name: str,
		author: str | None = None,
		since: datetime | None = None,
		until: datetime | None = None,
		max_pages: int = DEFAULT_MAX_PAGES,
	) -> list[dict]:
		"""
		List repository commits, optionally filtered by author and window.
		"""
		self.maybe_wait_for_rate_limit(f"list_commits {repo_full_name}")
		params = {
			"author": author,
			"since": contributions.to_utc_iso(since) or None,
			"until": contributions.to_utc_iso(until) or None,
		}
		return self.collect_pages(
			f"GET /repos/{repo_full_name}/commits",
			f"/repos/{repo_full_name}/commits",
			params,
			max_pages=max_pages,
		)

	#============================================
	def get_repo_info(self, repo_full_name: str) -> dict:
		"""
		Get one repository payload by full name.
		"""
		self.maybe_wait_for_rate_limit(f"get_repo {repo_full_name}")
		_, data = self.request_json(
			f"GET /repos/{repo_full_name}",
			"GET",
			f"/repos/{repo_full_name}",
		)
		return data or {}

	#============================================
	def get_commit_summary(self, repo_full_name: str, branch: str) -> tuple[int, str | None]:
		"""
		Return total commit count on a branch and its latest commit URL.
		"""
		headers, data = self.request_json(
			f"GET /repos/{repo_full_name}/commits",
			"GET",
			f"/repos/{repo_full_name}/commits",
			{"sha": branch, "per_page": 1},
		)
		commits = data if isinstance(data, list) else []
		latest_url = None
		if commits:
			latest_url = commits[0].get("html_url")
		total = parse_last_page(header_value(headers, "link"))
		if total is None:
			total = len(commits)
		return total, latest_url

	#============================================
	def graphql(self, query: str, variables: dict | None = None) -> dict:
		"""
		Run one GraphQL query and return its data mapping.
		"""
		_, payload = self.request_json(
			"POST /graphql",
			"POST",
			"/graphql",
			input_payload={"query": query, "variables": variables or {}},
		)
		payload = payload or {}
		errors = payload.get("errors")
		if errors:
			raise GraphQLError(f"GitHub GraphQL error: {errors}")
		return payload.get("data") or {}
