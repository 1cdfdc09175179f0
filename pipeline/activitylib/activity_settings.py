import dataclasses
import os
from datetime import timedelta
from zoneinfo import ZoneInfo
from zoneinfo import ZoneInfoNotFoundError

import yaml


DEFAULT_WINDOW_DAYS = 30
DEFAULT_TIMEZONE = "UTC"
DEFAULT_QUICK_CLOSE_MINUTES = 30
DEFAULT_CONCURRENCY = 4
DEFAULT_README = "README.md"
DEFAULT_SNAPSHOT_PATH = os.path.join(
	"~",
	"Library",
	"Group Containers",
	"group.com.steipete.codexbar",
	"widget-snapshot.json",
)
TRUE_TEXTS = {"1", "true", "yes", "on"}
FALSE_TEXTS = {"0", "false", "no", "off", ""}


#============================================
class ConfigError(RuntimeError):
	"""
	Raised when required configuration is missing or invalid.
	"""


#============================================
@dataclasses.dataclass(frozen=True)
class ActivityConfig:
	token: str
	login: str
	window_days: int = DEFAULT_WINDOW_DAYS
	timezone_name: str = DEFAULT_TIMEZONE
	use_calendar_month: bool = False
	excluded_repos: frozenset = frozenset()
	quick_close_threshold: timedelta = timedelta(minutes=DEFAULT_QUICK_CLOSE_MINUTES)
	concurrency: int = DEFAULT_CONCURRENCY
	include_reviews: bool = True
	readme_path: str = DEFAULT_README
	snapshot_path: str = DEFAULT_SNAPSHOT_PATH

	@property
	def tz(self) -> ZoneInfo:
		return resolve_timezone(self.timezone_name)


#============================================
def get_repo_root() -> str:
	"""
	Return repository root based on this module location.
	"""
	module_dir = os.path.dirname(os.path.abspath(__file__))
	pipeline_dir = os.path.dirname(module_dir)
	return os.path.dirname(pipeline_dir)


#============================================
def resolve_settings_path(path_text: str) -> str:
	"""
	Resolve settings path against cwd first, then repo root.
	"""
	if os.path.isabs(path_text):
		return path_text
	cwd_candidate = os.path.abspath(path_text)
	if os.path.isfile(cwd_candidate):
		return cwd_candidate
	repo_candidate = os.path.join(get_repo_root(), path_text)
	return os.path.abspath(repo_candidate)


#============================================
def load_settings(path_text: str) -> tuple[dict, str]:
	"""
	Load YAML settings dict and return it with resolved path.
	"""
	resolved_path = resolve_settings_path(path_text)
	if not os.path.isfile(resolved_path):
		return {}, resolved_path
	with open(resolved_path, "r", encoding="utf-8") as handle:
		data = yaml.safe_load(handle.read())
	if data is None:
		return {}, resolved_path
	if not isinstance(data, dict):
		raise ConfigError(f"Settings file must contain a mapping: {resolved_path}")
	return data, resolved_path


#============================================
def get_nested_value(settings: dict, keys: list[str], default_value):
	"""
	Read nested mapping value by key path.
	"""
	current = settings
	for key in keys:
		if not isinstance(current, dict):
			return default_value
		if key not in current:
			return default_value
		current = current[key]
	return current


#============================================
def get_setting_str(settings: dict, keys: list[str], default_value: str) -> str:
	"""
	Read a string setting from nested path with fallback.
	"""
	value = get_nested_value(settings, keys, default_value)
	if value is None:
		return default_value
	return str(value).strip()


#============================================
def get_setting_int(settings: dict, keys: list[str], default_value: int) -> int:
	"""
	Read an integer setting from nested path with fallback.
	"""
	value = get_nested_value(settings, keys, default_value)
	if value is None:
		return default_value
	try:
		return int(value)
	except ValueError as error:
		raise ConfigError(f"Invalid integer for setting path {'.'.join(keys)}: {value}") from error


#============================================
def parse_bool_text(value, label: str) -> bool:
	"""
	Interpret common truthy and falsy spellings.
	"""
	if isinstance(value, bool):
		return value
	if isinstance(value, int):
		return value != 0
	text = str(value).strip().lower()
	if text in TRUE_TEXTS:
		return True
	if text in FALSE_TEXTS:
		return False
	raise ConfigError(f"Invalid boolean for {label}: {value}")


#============================================
def get_setting_bool(settings: dict, keys: list[str], default_value: bool) -> bool:
	"""
	Read a boolean setting from nested path with fallback.
	"""
	value = get_nested_value(settings, keys, default_value)
	if value is None:
		return default_value
	return parse_bool_text(value, f"setting path {'.'.join(keys)}")


#============================================
def first_env_value(environ: dict, names: list[str]) -> str | None:
	"""
	Return the first non-empty environment value among names.
	"""
	for name in names:
		value = (environ.get(name) or "").strip()
		if value:
			return value
	return None


#============================================
def parse_excluded_repos(value) -> frozenset:
	"""
	Parse comma or newline separated repository names, lowercased.
	"""
	if value is None:
		return frozenset()
	if isinstance(value, (list, tuple, set, frozenset)):
		parts = [str(item) for item in value]
	else:
		parts = str(value).replace("\n", ",").split(",")
	return frozenset(part.strip().lower() for part in parts if part.strip())


#============================================
def resolve_timezone(name: str) -> ZoneInfo:
	"""
	Resolve an IANA zone name.
	"""
	try:
		return ZoneInfo(name)
	except (ZoneInfoNotFoundError, ValueError) as error:
		raise ConfigError(f"Unknown timezone: {name}") from error


#============================================
def resolve_quick_close_minutes(value) -> int:
	"""
	Parse the quick-close threshold, falling back on bad values.
	"""
	try:
		minutes = int(str(value).strip())
	except ValueError:
		return DEFAULT_QUICK_CLOSE_MINUTES
	if minutes < 0:
		return DEFAULT_QUICK_CLOSE_MINUTES
	return minutes


#============================================
def build_activity_config(settings: dict, environ=None) -> ActivityConfig:
	"""
	Resolve one immutable configuration from settings and environment.

	Environment values take precedence over settings.yaml values.
	"""
	if environ is None:
		environ = os.environ

	token = first_env_value(environ, ["GH_ACTIVITY_TOKEN"])
	if token is None:
		token = get_setting_str(settings, ["github", "token"], "")
	if not token:
		raise ConfigError("GH_ACTIVITY_TOKEN is required.")

	login = first_env_value(environ, ["GH_ACTIVITY_USER", "GITHUB_REPOSITORY_OWNER"])
	if login is None:
		login = get_setting_str(settings, ["github", "username"], "")
	if not login:
		raise ConfigError("GH_ACTIVITY_USER or GITHUB_REPOSITORY_OWNER is required.")

	days_text = first_env_value(environ, ["GH_ACTIVITY_DAYS"])
	try:
		if days_text is None:
			window_days = get_setting_int(settings, ["activity", "days"], DEFAULT_WINDOW_DAYS)
		else:
			window_days = int(days_text)
	except (ValueError, ConfigError) as error:
		raise ConfigError("GH_ACTIVITY_DAYS must be a positive integer.") from error
	if window_days <= 0:
		raise ConfigError("GH_ACTIVITY_DAYS must be a positive integer.")

	timezone_name = first_env_value(environ, ["GH_ACTIVITY_TIMEZONE"])
	if timezone_name is None:
		timezone_name = get_setting_str(settings, ["activity", "timezone"], DEFAULT_TIMEZONE)
	resolve_timezone(timezone_name)

	month_text = first_env_value(environ, ["GH_ACTIVITY_CALENDAR_MONTH"])
	if month_text is None:
		use_calendar_month = get_setting_bool(settings, ["activity", "calendar_month"], False)
	else:
		use_calendar_month = month_text.lower() in TRUE_TEXTS

	exclude_text = first_env_value(environ, ["GH_ACTIVITY_EXCLUDE"])
	if exclude_text is None:
		excluded_repos = parse_excluded_repos(
			get_nested_value(settings, ["activity", "exclude"], None)
		)
	else:
		excluded_repos = parse_excluded_repos(exclude_text)

	quick_close_text = first_env_value(environ, ["GH_ACTIVITY_PR_QUICK_CLOSE_MINUTES"])
	if quick_close_text is None:
		quick_close_text = get_nested_value(
			settings,
			["activity", "pr_quick_close_minutes"],
			DEFAULT_QUICK_CLOSE_MINUTES,
		)
	quick_close_minutes = resolve_quick_close_minutes(quick_close_text)

	concurrency_text = first_env_value(environ, ["GH_ACTIVITY_CONCURRENCY"])
	try:
		if concurrency_text is None:
			concurrency = get_setting_int(settings, ["activity", "concurrency"], DEFAULT_CONCURRENCY)
		else:
			concurrency = int(concurrency_text)
	except (ValueError, ConfigError) as error:
		raise ConfigError("GH_ACTIVITY_CONCURRENCY must be a positive integer.") from error
	if concurrency <= 0:
		raise ConfigError("GH_ACTIVITY_CONCURRENCY must be a positive integer.")

	reviews_text = first_env_value(environ, ["GH_ACTIVITY_INCLUDE_REVIEWS"])
	if reviews_text is None:
		include_reviews = get_setting_bool(settings, ["activity", "include_reviews"], True)
	else:
		include_reviews = parse_bool_text(reviews_text, "GH_ACTIVITY_INCLUDE_REVIEWS")

	readme_path = first_env_value(environ, ["GH_ACTIVITY_README"])
	if readme_path is None:
		readme_path = get_setting_str(settings, ["activity", "readme"], DEFAULT_README)

	snapshot_path = first_env_value(environ, ["CODEXBAR_SNAPSHOT_PATH"])
	if snapshot_path is None:
		snapshot_path = get_setting_str(
			settings,
			["token_usage", "snapshot_path"],
			DEFAULT_SNAPSHOT_PATH,
		)

	return ActivityConfig(
		token=token,
		login=login,
		window_days=window_days,
		timezone_name=timezone_name,
		use_calendar_month=use_calendar_month,
		excluded_repos=excluded_repos,
		quick_close_threshold=timedelta(minutes=quick_close_minutes),
		concurrency=concurrency,
		include_reviews=include_reviews,
		readme_path=readme_path,
		snapshot_path=os.path.expanduser(snapshot_path),
	)
