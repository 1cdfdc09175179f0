import dataclasses

from activitylib.contributions import RepoContributionEntry


#============================================
@dataclasses.dataclass(frozen=True)
class Partition:
	own: list
	other: list


#============================================
def is_own_repo(repo_name: str, login: str) -> bool:
	"""
	Check whether owner/repo belongs to login.
	"""
	return repo_name.lower().startswith(f"{login.lower()}/")


#============================================
def sort_key(entry: RepoContributionEntry) -> tuple:
	"""
	Newest first, then larger totals, then name; undated entries last.
	"""
	if entry.last_at is None:
		return (1, 0.0, -entry.total, entry.name)
	return (0, -entry.last_at.timestamp(), -entry.total, entry.name)


#============================================
def rank_entries(entries: list[RepoContributionEntry]) -> list[RepoContributionEntry]:
	return sorted(entries, key=sort_key)


#============================================
def partition_entries(entries: list[RepoContributionEntry], login: str) -> Partition:
	"""
	Split entries into own and other repositories, each ranked.

	Entries without a positive total are dropped, and forks are dropped from
	the other partition.
	"""
	own = []
	other = []
	for entry in entries:
		if entry.total <= 0:
			continue
		if is_own_repo(entry.name, login):
			own.append(entry)
		elif not entry.is_fork:
			other.append(entry)
	return Partition(own=rank_entries(own), other=rank_entries(other))
