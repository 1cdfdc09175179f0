#!/usr/bin/env python3
import argparse
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from datetime import timezone

import rich.console

from activitylib import activity_settings
from activitylib import activity_table
from activitylib import enrichment
from activitylib import github_client
from activitylib import ranking
from activitylib import readme_markers
from activitylib import sources
from activitylib import time_window
from activitylib.contributions import ContributionKind
from activitylib.contributions import ContributionMerger
from activitylib.contributions import ViewerIdentity


RICH_CONSOLE = rich.console.Console()


#============================================
def log_step(message: str) -> None:
	"""
	Print one timestamped progress line.
	"""
	now_text = datetime.now().strftime("%H:%M:%S")
	line = f"[update_gh_activity {now_text}] {message}"
	lower = message.lower()
	style = "cyan"
	if ("failed" in lower) or ("error" in lower):
		style = "bold red"
	elif ("rate limit" in lower) or ("skipping" in lower):
		style = "yellow"
	elif ("updated" in lower) or ("found" in lower):
		style = "green"
	RICH_CONSOLE.print(line, style=style, markup=False, highlight=False)


#============================================
def parse_args() -> argparse.Namespace:
	"""
	Parse command-line arguments.
	"""
	parser = argparse.ArgumentParser(
		description="Rewrite the README activity table from recent GitHub contributions."
	)
	parser.add_argument(
		"--settings",
		default="settings.yaml",
		help="YAML settings path; GH_ACTIVITY_* environment variables override it.",
	)
	parser.add_argument(
		"--dry-run",
		action="store_true",
		help="Print the rendered table instead of rewriting the README.",
	)
	args = parser.parse_args()
	return args


#============================================
def utc_now() -> datetime:
	return datetime.now(timezone.utc)


#============================================
def filter_candidate_repos(repos: list[dict], excluded_repos: frozenset) -> list[dict]:
	"""
	Drop forks and excluded repositories from the viewer's repository list.
	"""
	kept = []
	for repo in repos:
		full_name = repo.get("full_name") or ""
		if (not full_name) or repo.get("fork") or full_name.lower() in excluded_repos:
			continue
		kept.append(repo)
	return kept


#============================================
def unchecked_private_repos(private_names: list[str], merger: ContributionMerger) -> list[str]:
	"""
	Private repositories the search sources did not register a commit for.
	"""
	names = []
	for name in private_names:
		entry = merger.get(name)
		if entry is None or entry.last_kind is not ContributionKind.COMMIT:
			names.append(name)
	return names


#============================================
def commit_identity(viewer: ViewerIdentity, login: str) -> ViewerIdentity:
	"""
	Identity whose commits the permalink lookup should match.

	The authenticated viewer is used only when it is the configured login;
	otherwise commits are matched against the configured login alone.
	"""
	if viewer.login.lower() == login.lower():
		return viewer
	return ViewerIdentity(login=login)


#============================================
def fetch_search_sources(
	client,
	config: activity_settings.ActivityConfig,
	search_login: str,
	window: time_window.TimeWindow,
	log_fn=None,
) -> list[tuple[ContributionKind, dict]]:
	"""
	Run the search and GraphQL sources concurrently, in a fixed fold order.
	"""
	jobs = [
		(
			ContributionKind.COMMIT,
			lambda: sources.fetch_commit_search(client, search_login, window, log_fn),
		),
		(
			ContributionKind.ISSUE,
			lambda: sources.fetch_issue_search(
				client,
				search_login,
				window,
				ContributionKind.ISSUE,
				config.quick_close_threshold,
				log_fn,
			),
		),
		(
			ContributionKind.PULL_REQUEST,
			lambda: sources.fetch_issue_search(
				client,
				search_login,
				window,
				ContributionKind.PULL_REQUEST,
				config.quick_close_threshold,
				log_fn,
			),
		),
	]
	if config.include_reviews:
		jobs.append(
			(
				ContributionKind.REVIEW,
				lambda: sources.fetch_review_contributions(client, search_login, window, log_fn),
			)
		)
	with ThreadPoolExecutor(max_workers=len(jobs)) as executor:
		futures = [(kind, executor.submit(job)) for kind, job in jobs]
		results = [(kind, future.result()) for kind, future in futures]
	return results


#============================================
def collect_contributions(
	client,
	config: activity_settings.ActivityConfig,
	search_login: str,
	private_names: list[str],
	window: time_window.TimeWindow,
	log_fn=None,
) -> ContributionMerger:
	"""
	Fetch every source and fold the results into one merger.
	"""
	merger = ContributionMerger(config.excluded_repos)
	results = fetch_search_sources(client, config, search_login, window, log_fn)
	for kind, by_repo in results:
		if log_fn is not None:
			log_fn(f"Found {len(by_repo)} repo(s) with {kind.value} activity.")
		merger.add_summaries(by_repo, kind)

	unchecked = unchecked_private_repos(private_names, merger)
	if log_fn is not None:
		log_fn(f"Checking {len(unchecked)} private repo(s) directly.")
	direct = enrichment.run_bounded(
		lambda name: sources.fetch_repo_commits(client, name, search_login, window, log_fn),
		unchecked,
		config.concurrency,
	)
	for name in unchecked:
		summary = direct.get(name)
		if summary is None:
			continue
		merger.add(name, summary.count, summary.last_at, summary.last_url, ContributionKind.COMMIT)
	return merger


#============================================
def build_activity_partition(
	client,
	config: activity_settings.ActivityConfig,
	now: datetime,
	log_fn=None,
) -> tuple[ranking.Partition, time_window.TimeWindow]:
	"""
	Compute the window, gather contributions, enrich and rank them.
	"""
	window = time_window.compute_window(
		now,
		config.tz,
		config.window_days,
		config.use_calendar_month,
	)
	if log_fn is not None:
		log_fn(
			f"Fetching activity for {config.login} "
			+ f"({window.start.date().isoformat()} to {window.end.date().isoformat()})"
		)
	viewer = client.get_viewer()
	repos = client.list_viewer_repos()
	candidates = filter_candidate_repos(repos, config.excluded_repos)
	private_names = [repo["full_name"] for repo in candidates if repo.get("private")]
	if log_fn is not None:
		log_fn(f"Found {len(candidates)} repos ({len(private_names)} private)")

	merger = collect_contributions(client, config, viewer.login, private_names, window, log_fn)
	entries = merger.entries()
	if log_fn is not None:
		log_fn(f"Enriching metadata for {len(entries)} repo(s).")
	enrichment.enrich_entries(
		client,
		entries,
		config.login,
		commit_identity(viewer, config.login),
		window.start,
		config.concurrency,
		log_fn,
	)
	partition = ranking.partition_entries(entries, config.login)
	if log_fn is not None:
		log_fn(f"Results: {len(partition.own)} own repos, {len(partition.other)} other repos")
	return partition, window


#============================================
def main() -> None:
	"""
	Rewrite the README activity region.
	"""
	args = parse_args()
	try:
		settings, settings_path = activity_settings.load_settings(args.settings)
		log_step(f"Using settings file: {settings_path}")
		config = activity_settings.build_activity_config(settings)
		if not args.dry_run:
			readme_markers.check_file_region(
				config.readme_path,
				readme_markers.ACTIVITY_START_MARKER,
				readme_markers.ACTIVITY_END_MARKER,
			)
		client = github_client.GitHubClient(config.token, log_fn=log_step)
		partition, window = build_activity_partition(client, config, utc_now(), log_step)
		table = activity_table.build_table(partition.own, partition.other, window, config.login)
		if args.dry_run:
			print(table)
		else:
			readme_markers.update_file_region(
				config.readme_path,
				readme_markers.ACTIVITY_START_MARKER,
				readme_markers.ACTIVITY_END_MARKER,
				table,
				padding="\n\n",
			)
			log_step(f"README updated: {config.readme_path}")
	except RuntimeError as error:
		log_step(f"Run failed: {error}")
		sys.exit(1)
	usage = client.api_usage_snapshot()
	log_step(f"GitHub API usage: calls={usage.get('api_call_count', 0)}")


if __name__ == "__main__":
	main()
