import dataclasses
import enum
from datetime import datetime
from datetime import timezone


#============================================
class ContributionKind(enum.Enum):
	"""
	Closed set of contribution kinds counted per repository.
	"""
	COMMIT = "commit"
	ISSUE = "issue"
	PULL_REQUEST = "pr"
	REVIEW = "review"


#============================================
@dataclasses.dataclass(frozen=True)
class ViewerIdentity:
	login: str
	name: str = ""
	user_id: int | None = None


#============================================
@dataclasses.dataclass(frozen=True)
class RawContribution:
	"""
	One normalized contribution record produced by a source fetcher.
	"""
	repo_name: str
	kind: ContributionKind
	occurred_at: datetime | None
	url: str | None
	weight: int = 1
	is_private: bool = False
	is_fork: bool = False


#============================================
@dataclasses.dataclass(frozen=True)
class SourceSummary:
	"""
	Per-repository aggregate of one source's records.
	"""
	count: int
	last_at: datetime | None
	last_url: str | None


#============================================
@dataclasses.dataclass
class RepoContributionEntry:
	name: str
	total: int = 0
	last_at: datetime | None = None
	last_url: str | None = None
	last_kind: ContributionKind | None = None
	commit_total_in_repo: int | None = None
	latest_commit_url_in_repo: str | None = None
	user_latest_commit_url: str | None = None
	is_fork: bool = False


#============================================
def normalize_datetime(value: datetime) -> datetime:
	"""
	Normalize datetime to timezone-aware UTC.
	"""
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


#============================================
def parse_iso(ts: str) -> datetime:
	"""
	Parse an ISO timestamp string into a timezone-aware UTC datetime.
	"""
	parsed = datetime.fromisoformat(ts.strip().replace("Z", "+00:00"))
	return normalize_datetime(parsed)


#============================================
def parse_optional_iso(ts) -> datetime | None:
	"""
	Parse an ISO timestamp, returning None for empty or malformed values.
	"""
	if isinstance(ts, datetime):
		return normalize_datetime(ts)
	if not ts:
		return None
	try:
		return parse_iso(str(ts))
	except ValueError:
		return None


#============================================
def to_utc_iso(value) -> str:
	"""
	Convert datetime-like values to ISO-8601 UTC strings.
	"""
	if value is None:
		return ""
	if isinstance(value, str):
		return value
	if isinstance(value, datetime):
		return normalize_datetime(value).isoformat().replace("+00:00", "Z")
	return str(value)


#============================================
def summarize_by_repo(records) -> dict[str, SourceSummary]:
	"""
	Group one source's records by repository, keeping the newest record.

	Fork records are dropped. Records keep their input order, so on an exact
	timestamp tie the earlier record stays the repository's latest.
	"""
	counts: dict[str, int] = {}
	latest: dict[str, tuple[datetime | None, str | None]] = {}
	for record in records:
		if (not record.repo_name) or record.is_fork:
			continue
		if record.repo_name not in counts:
			counts[record.repo_name] = 0
			latest[record.repo_name] = (None, None)
		counts[record.repo_name] += record.weight
		last_at, _ = latest[record.repo_name]
		if record.occurred_at is None:
			continue
		if last_at is None or record.occurred_at > last_at:
			latest[record.repo_name] = (record.occurred_at, record.url)
	summaries = {}
	for repo_name, count in counts.items():
		last_at, last_url = latest[repo_name]
		summaries[repo_name] = SourceSummary(count=count, last_at=last_at, last_url=last_url)
	return summaries


#============================================
class ContributionMerger:
	"""
	Fold per-source summaries into one entry per repository.

	Totals are plain sums, so they do not depend on fold order. The latest
	pointer only moves on a strictly newer timestamp, so exact ties keep the
	record folded first.
	"""

	def __init__(self, excluded_repos=()):
		self.excluded_repos = frozenset(name.lower() for name in excluded_repos)
		self._entries: dict[str, RepoContributionEntry] = {}

	#============================================
	def is_excluded(self, repo_name: str) -> bool:
		return repo_name.lower() in self.excluded_repos

	#============================================
	def add(
		self,
		repo_name: str,
		count: int,
		occurred_at: datetime | None,
		url: str | None,
		kind: ContributionKind,
	) -> None:
		"""
		Fold one per-repository count into the accumulator.
		"""
		if (not repo_name) or count <= 0 or self.is_excluded(repo_name):
			return
		entry = self._entries.get(repo_name)
		if entry is None:
			entry = RepoContributionEntry(name=repo_name)
			self._entries[repo_name] = entry
		entry.total += count
		if occurred_at is None:
			if entry.last_kind is None:
				entry.last_url = url
				entry.last_kind = kind
			return
		if entry.last_at is None or occurred_at > entry.last_at:
			entry.last_at = occurred_at
			entry.last_url = url
			entry.last_kind = kind

	#============================================
	def add_summaries(self, summaries: dict[str, SourceSummary], kind: ContributionKind) -> None:
		"""
		Fold every repository summary of one source.
		"""
		for repo_name, summary in summaries.items():
			self.add(repo_name, summary.count, summary.last_at, summary.last_url, kind)

	#============================================
	def get(self, repo_name: str) -> RepoContributionEntry | None:
		return self._entries.get(repo_name)

	#============================================
	def entries(self) -> list[RepoContributionEntry]:
		"""
		Return entries with a positive total in first-seen order.
		"""
		return [entry for entry in self._entries.values() if entry.total > 0]
