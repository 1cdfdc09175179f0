import os


ACTIVITY_START_MARKER = "<!-- GH-ACTIVITY-START -->"
ACTIVITY_END_MARKER = "<!-- GH-ACTIVITY-END -->"
TOKEN_USAGE_START_MARKER = "<!-- TOKEN-USAGE-START -->"
TOKEN_USAGE_END_MARKER = "<!-- TOKEN-USAGE-END -->"


#============================================
class MarkersNotFoundError(RuntimeError):
	"""
	Raised when region markers are missing or out of order.
	"""


#============================================
def find_region(text: str, start_marker: str, end_marker: str) -> tuple[int, int]:
	"""
	Return start-marker and end-marker offsets.
	"""
	start_index = text.find(start_marker)
	end_index = text.find(end_marker)
	if start_index == -1 or end_index == -1 or end_index < start_index:
		raise MarkersNotFoundError(
			f"Markers not found: {start_marker} ... {end_marker}"
		)
	return start_index, end_index


#============================================
def read_region(text: str, start_marker: str, end_marker: str) -> str:
	"""
	Return the text between the markers, stripped.
	"""
	start_index, end_index = find_region(text, start_marker, end_marker)
	return text[start_index + len(start_marker):end_index].strip()


#============================================
def replace_region(
	text: str,
	start_marker: str,
	end_marker: str,
	body: str,
	padding: str = "\n",
) -> str:
	"""
	Replace everything between the markers with body.
	"""
	start_index, end_index = find_region(text, start_marker, end_marker)
	return (
		text[:start_index]
		+ f"{start_marker}{padding}{body}{padding}{end_marker}"
		+ text[end_index + len(end_marker):]
	)


#============================================
def read_document(path: str) -> str:
	if not os.path.isfile(path):
		raise MarkersNotFoundError(f"Document not found: {path}")
	with open(path, "r", encoding="utf-8") as handle:
		return handle.read()


#============================================
def check_file_region(path: str, start_marker: str, end_marker: str) -> None:
	"""
	Fail early when a file lacks the markers.
	"""
	find_region(read_document(path), start_marker, end_marker)


#============================================
def update_file_region(
	path: str,
	start_marker: str,
	end_marker: str,
	body: str,
	padding: str = "\n",
) -> str:
	"""
	Rewrite one marked region of a file in place.
	"""
	text = read_document(path)
	updated = replace_region(text, start_marker, end_marker, body, padding=padding)
	with open(path, "w", encoding="utf-8") as handle:
		handle.write(updated)
	return path
