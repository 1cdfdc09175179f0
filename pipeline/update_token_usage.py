#!/usr/bin/env python3
import argparse
import sys
from datetime import datetime
from datetime import timezone

import rich.console

from activitylib import activity_settings
from activitylib import github_client
from activitylib import readme_markers
from activitylib import time_window
from activitylib import token_usage


RICH_CONSOLE = rich.console.Console()
ROLLING_DAYS = 30


#============================================
def log_step(message: str) -> None:
	"""
	Print one timestamped progress line.
	"""
	now_text = datetime.now().strftime("%H:%M:%S")
	line = f"[update_token_usage {now_text}] {message}"
	lower = message.lower()
	style = "cyan"
	if ("failed" in lower) or ("error" in lower):
		style = "bold red"
	elif ("skipping" in lower) or ("not found" in lower):
		style = "yellow"
	elif "updated" in lower:
		style = "green"
	RICH_CONSOLE.print(line, style=style, markup=False, highlight=False)


#============================================
def parse_args() -> argparse.Namespace:
	"""
	Parse command-line arguments.
	"""
	parser = argparse.ArgumentParser(
		description="Rewrite the README token usage block from a CodexBar snapshot."
	)
	parser.add_argument(
		"--settings",
		default="settings.yaml",
		help="YAML settings path; environment variables override it.",
	)
	parser.add_argument(
		"--dry-run",
		action="store_true",
		help="Print the rendered block instead of rewriting the README.",
	)
	args = parser.parse_args()
	return args


#============================================
def build_token_block(
	client,
	config: activity_settings.ActivityConfig,
	snapshot: dict,
	now: datetime,
) -> str:
	"""
	Combine snapshot token totals with commit counts into the README block.
	"""
	tz = config.tz
	year = now.astimezone(tz).year
	tokens = token_usage.extract_tokens(snapshot, year)
	viewer = token_usage.fetch_viewer_node(client)
	private_repos = token_usage.fetch_private_repos(client)
	last30_start = time_window.rolling_window_start(now, ROLLING_DAYS)
	ytd_start = time_window.start_of_zoned_year(now, tz)
	viewer_id = viewer.get("id") or ""
	commits_last30 = token_usage.count_commits(
		client,
		config.login,
		viewer_id,
		last30_start,
		now,
		private_repos,
	)
	commits_ytd = token_usage.count_commits(
		client,
		config.login,
		viewer_id,
		ytd_start,
		now,
		private_repos,
	)
	return token_usage.build_block(tokens, commits_last30, commits_ytd)


#============================================
def main() -> None:
	"""
	Rewrite the README token usage region.
	"""
	args = parse_args()
	try:
		settings, _ = activity_settings.load_settings(args.settings)
		config = activity_settings.build_activity_config(settings)
		snapshot = token_usage.load_snapshot(config.snapshot_path)
		client = github_client.GitHubClient(config.token, log_fn=log_step)
		block = build_token_block(client, config, snapshot, datetime.now(timezone.utc))
	except RuntimeError as error:
		log_step(f"Run failed: {error}")
		sys.exit(1)
	if args.dry_run:
		print(block)
		return
	try:
		readme_markers.update_file_region(
			config.readme_path,
			readme_markers.TOKEN_USAGE_START_MARKER,
			readme_markers.TOKEN_USAGE_END_MARKER,
			block,
		)
	except readme_markers.MarkersNotFoundError as error:
		log_step(f"{error}; skipping update.")
		return
	log_step(f"README updated: {config.readme_path}")


if __name__ == "__main__":
	main()
