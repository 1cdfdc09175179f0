import dataclasses
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from zoneinfo import ZoneInfo


OFFSET_LOOKUP_PASSES = 2
END_OF_DAY_PRECISION = timedelta(milliseconds=1)


#============================================
@dataclasses.dataclass(frozen=True)
class TimeWindow:
	"""
	Inclusive UTC window derived from zoned calendar day boundaries.
	"""
	start: datetime
	end: datetime
	label: str
	calendar_month: bool = False
	days: int = 0

	@property
	def header(self) -> str:
		"""
		Column header text for the rendered table.
		"""
		if self.calendar_month:
			return "Past month"
		return f"Past {self.days} days"


#============================================
def zoned_date(now: datetime, tz: ZoneInfo) -> date:
	"""
	Return the calendar date of an instant in the given zone.
	"""
	if now.tzinfo is None:
		raise RuntimeError("now must be timezone-aware")
	return now.astimezone(tz).date()


#============================================
def zoned_start_of_day(day: date, tz: ZoneInfo) -> datetime:
	"""
	Return the UTC instant of local midnight for one zoned calendar date.

	The offset is looked up at the current UTC guess and the guess is
	refined, since the offset at the naive guess can differ from the one in
	force at local midnight.
	"""
	base_utc = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
	candidate = base_utc
	for _ in range(OFFSET_LOOKUP_PASSES):
		offset = candidate.astimezone(tz).utcoffset() or timedelta(0)
		adjusted = base_utc - offset
		if adjusted == candidate:
			break
		candidate = adjusted
	return candidate


#============================================
def zoned_end_of_day(day: date, tz: ZoneInfo) -> datetime:
	"""
	Return the UTC instant of 23:59:59.999 local time on one zoned date.
	"""
	next_start = zoned_start_of_day(day + timedelta(days=1), tz)
	return next_start - END_OF_DAY_PRECISION


#============================================
def previous_month_start(day: date) -> date:
	"""
	Return day 1 of the calendar month before the given date.
	"""
	if day.month == 1:
		return date(day.year - 1, 12, 1)
	return date(day.year, day.month - 1, 1)


#============================================
def compute_window(
	now: datetime,
	tz: ZoneInfo,
	window_days: int,
	use_calendar_month: bool = False,
) -> TimeWindow:
	"""
	Compute the reporting window ending at the close of now's zoned day.
	"""
	if window_days < 1:
		raise RuntimeError("window days must be >= 1")
	today = zoned_date(now, tz)
	end = zoned_end_of_day(today, tz)
	if use_calendar_month:
		start = zoned_start_of_day(previous_month_start(today), tz)
		return TimeWindow(
			start=start,
			end=end,
			label="last month",
			calendar_month=True,
			days=window_days,
		)
	first_day = today - timedelta(days=window_days - 1)
	start = zoned_start_of_day(first_day, tz)
	return TimeWindow(
		start=start,
		end=end,
		label=f"last {window_days} days",
		calendar_month=False,
		days=window_days,
	)


#============================================
def start_of_zoned_year(now: datetime, tz: ZoneInfo) -> datetime:
	"""
	Return the UTC instant of January 1st local midnight in now's zoned year.
	"""
	today = zoned_date(now, tz)
	return zoned_start_of_day(date(today.year, 1, 1), tz)


#============================================
def rolling_window_start(now: datetime, days: int) -> datetime:
	"""
	Return the instant a fixed number of 24-hour days before now.
	"""
	return now - timedelta(days=days)
