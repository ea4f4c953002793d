"""
Shared configuration and constants.
"""

import dataclasses
import os


MM_TO_POINTS = 2.83465
POINTS_PER_INCH = 72.0

PDF_SUFFIX = ".pdf"
ARCHIVE_SUFFIX = ".zip"
IMAGE_SUFFIXES = {
	".bmp",
	".gif",
	".jpeg",
	".jpg",
	".png",
	".tif",
	".tiff",
	".webp",
}

# element IDs used by the editor canvas
STACKED_STATIC_ID = "shein-pdf-1"
STACKED_REPEATING_ID = "shein-pdf-2"
MULTI_MERGE_IDS = (
	"multi-merge-pdf-1",
	"multi-merge-pdf-2",
	"multi-merge-pdf-3",
)

DEFAULT_PAGE_SIZE = "A4"
LABEL_PAGE_PRESETS = {
	"Shein": (70.0, 60.0),
}
CUSTOM_PAGE_SIZE = "custom"
ORIENTATIONS = ("portrait", "landscape")
SCALE_MODES = ("aspectFit", "stretch")
DEFAULT_JPEG_QUALITY = 0.8

RENDER_DPI = 300
RENDER_JPEG_QUALITY = 95
RENDER_POLL_SECONDS = 0.5
SPLIT_DIR_PREFIX = "pdf-split-"
SPLIT_PAGE_TEMPLATE = "page-{number}.pdf"
ARCHIVE_ENTRY_TEMPLATE = "{number}.jpg"

# error kinds reported in TaskResult.error_kind
ERROR_VALIDATION = "validation"
ERROR_SOURCE = "source"
ERROR_COMPOSITION = "composition"
ERROR_IO = "io"
ERROR_WORKER_FAULT = "worker_fault"


@dataclasses.dataclass
class TaskResult:
	success: bool
	path: str | None = None
	error: str | None = None
	error_kind: str | None = None
	output_file_size: int | None = None
	output_page_count: int | None = None
	warning: str | None = None
	data: bytes | None = None


#============================================
def pool_size() -> int:
	"""
	Number of render pool members for this machine.

	Returns:
		Pool size, never below 2.
	"""
	cpus = os.cpu_count() or 1
	return max(2, cpus // 2)


#============================================
def failure(error: str, error_kind: str) -> TaskResult:
	"""
	Build a failed TaskResult.

	Args:
		error: Human readable message.
		error_kind: One of the ERROR_* kinds.

	Returns:
		TaskResult.
	"""
	return TaskResult(success=False, error=error, error_kind=error_kind)
