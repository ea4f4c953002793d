"""
Task requests, parameter parsing and validation.

Everything here runs before any file I/O. A request that parses is
safe to hand to a worker process.
"""

# Standard Library
import dataclasses
import math
import pathlib

# local repo modules
import shipping_label_composer as slc
import shipping_label_composer.config
import shipping_label_composer.errors
import shipping_label_composer.geometry


Rect = slc.geometry.Rect
ValidationError = slc.errors.ValidationError

PDF_SUFFIX = slc.config.PDF_SUFFIX
ARCHIVE_SUFFIX = slc.config.ARCHIVE_SUFFIX
MULTI_MERGE_IDS = slc.config.MULTI_MERGE_IDS
DEFAULT_PAGE_SIZE = slc.config.DEFAULT_PAGE_SIZE
CUSTOM_PAGE_SIZE = slc.config.CUSTOM_PAGE_SIZE
ORIENTATIONS = slc.config.ORIENTATIONS
SCALE_MODES = slc.config.SCALE_MODES
DEFAULT_JPEG_QUALITY = slc.config.DEFAULT_JPEG_QUALITY
RENDER_DPI = slc.config.RENDER_DPI

RESIZE_DOCUMENT = "resize-document"
STACKED_LABEL = "stacked-label"
OVERLAY_LABEL = "overlay-label"
MULTI_PAGE_MERGE = "multi-page-merge"
SPLIT_DOCUMENT = "split-document"
PDF_TO_IMAGES = "pdf-to-images"
IMAGE_TO_PDF = "image-to-pdf"


@dataclasses.dataclass(frozen=True)
class LayoutElement:
	element_id: str
	rect: Rect


@dataclasses.dataclass(frozen=True)
class LabelSource:
	element_id: str
	path: str
	repeating: bool = False


@dataclasses.dataclass(frozen=True)
class ResizeRequest:
	source_path: str
	width: float
	height: float
	output_name: str
	output_dir: str | None = None


@dataclasses.dataclass(frozen=True)
class StackedLabelRequest:
	static_path: str
	repeating_path: str
	output_width_mm: float
	output_height_mm: float
	output_name: str
	output_dir: str | None = None


@dataclasses.dataclass(frozen=True)
class OverlayLabelRequest:
	sources: tuple[LabelSource, ...]
	elements: tuple[LayoutElement, ...]
	editor_width: float
	editor_height: float
	output_width_mm: float
	output_height_mm: float
	output_name: str
	output_dir: str | None = None


@dataclasses.dataclass(frozen=True)
class SplitRequest:
	source_path: str
	output_dir: str


@dataclasses.dataclass(frozen=True)
class PdfToImagesRequest:
	source_path: str
	output_name: str
	output_dir: str | None = None
	dpi: int = RENDER_DPI


@dataclasses.dataclass(frozen=True)
class ImagesToPdfRequest:
	image_paths: tuple[str, ...]
	page_size: str = DEFAULT_PAGE_SIZE
	custom_width_mm: float | None = None
	custom_height_mm: float | None = None
	orientation: str = "portrait"
	scale_mode: str = "aspectFit"
	quality: float = DEFAULT_JPEG_QUALITY
	output_path: str | None = None


#============================================
def normalize_output_name(name: str, suffix: str = PDF_SUFFIX) -> str:
	"""
	Make sure an output file name ends with the given suffix.

	Args:
		name: Caller supplied name.
		suffix: Required suffix, for example ".pdf".

	Returns:
		Normalized file name.
	"""
	if name.lower().endswith(suffix):
		return name
	return f"{name}{suffix}"


#============================================
def resolve_output_path(output_name: str, output_dir: str | None, fallback_source: str, suffix: str = PDF_SUFFIX) -> pathlib.Path:
	"""
	Build the final output path for a task.

	Args:
		output_name: Output file name.
		output_dir: Destination directory, or None to use the source directory.
		fallback_source: Source path whose directory is used by default.
		suffix: Required suffix.

	Returns:
		Output path.
	"""
	base_dir = pathlib.Path(output_dir) if output_dir else pathlib.Path(fallback_source).parent
	return base_dir / normalize_output_name(output_name, suffix)


#============================================
def _require_text(params: dict, key: str) -> str:
	value = params.get(key)
	if not isinstance(value, str) or not value.strip():
		raise ValidationError(f"Missing required parameter '{key}'")
	return value


#============================================
def _optional_text(params: dict, key: str) -> str | None:
	value = params.get(key)
	if value is None or value == "":
		return None
	if not isinstance(value, str):
		raise ValidationError(f"Parameter '{key}' must be a string")
	return value


#============================================
def _require_dimension(params: dict, key: str) -> float:
	value = params.get(key)
	if value is None:
		raise ValidationError(f"Missing required parameter '{key}'")
	if isinstance(value, bool) or not isinstance(value, (int, float)):
		raise ValidationError(f"Parameter '{key}' must be a number, got {value!r}")
	if not math.isfinite(value) or value <= 0:
		raise ValidationError(f"Parameter '{key}' must be positive, got {value!r}")
	return float(value)


#============================================
def _require_coordinate(element: dict, key: str, element_id: str) -> float:
	value = element.get(key)
	if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
		raise ValidationError(f"Layout element '{element_id}' has invalid '{key}': {value!r}")
	return float(value)


#============================================
def parse_elements(raw_elements) -> tuple[LayoutElement, ...]:
	"""
	Parse editor layout elements.

	Args:
		raw_elements: List of dicts with id, x, y, width, height.

	Returns:
		Tuple of LayoutElement.
	"""
	if not isinstance(raw_elements, (list, tuple)) or not raw_elements:
		raise ValidationError("Missing required parameter 'elements'")
	elements: list[LayoutElement] = []
	for raw in raw_elements:
		if isinstance(raw, LayoutElement):
			elements.append(raw)
			continue
		if not isinstance(raw, dict):
			raise ValidationError(f"Layout element must be a mapping, got {raw!r}")
		element_id = raw.get("id")
		if not isinstance(element_id, str) or not element_id:
			raise ValidationError("Layout element without an 'id'")
		rect = Rect(
			x=_require_coordinate(raw, "x", element_id),
			y=_require_coordinate(raw, "y", element_id),
			width=_require_coordinate(raw, "width", element_id),
			height=_require_coordinate(raw, "height", element_id),
		)
		if rect.width <= 0 or rect.height <= 0:
			raise ValidationError(f"Layout element '{element_id}' must have a positive size")
		elements.append(LayoutElement(element_id=element_id, rect=rect))
	return tuple(elements)


#============================================
def parse_resize(params: dict) -> ResizeRequest:
	return ResizeRequest(
		source_path=_require_text(params, "source_path"),
		width=_require_dimension(params, "width"),
		height=_require_dimension(params, "height"),
		output_name=_require_text(params, "output_name"),
		output_dir=_optional_text(params, "output_dir"),
	)


#============================================
def parse_stacked_label(params: dict) -> StackedLabelRequest:
	return StackedLabelRequest(
		static_path=_require_text(params, "static_path"),
		repeating_path=_require_text(params, "repeating_path"),
		output_width_mm=_require_dimension(params, "output_width_mm"),
		output_height_mm=_require_dimension(params, "output_height_mm"),
		output_name=_require_text(params, "output_name"),
		output_dir=_optional_text(params, "output_dir"),
	)


#============================================
def parse_overlay_label(params: dict) -> OverlayLabelRequest:
	"""
	Parse a free layout label request with two or three sources.

	Sources are a list of {"id", "path"} mappings; "repeating_id" names
	the multi-page source.
	"""
	raw_sources = params.get("sources")
	if not isinstance(raw_sources, (list, tuple)):
		raise ValidationError("Missing required parameter 'sources'")
	if len(raw_sources) not in (2, 3):
		raise ValidationError(f"Expected 2 or 3 sources, got {len(raw_sources)}")
	repeating_id = _require_text(params, "repeating_id")
	sources: list[LabelSource] = []
	seen: set[str] = set()
	for raw in raw_sources:
		if not isinstance(raw, dict):
			raise ValidationError(f"Source must be a mapping, got {raw!r}")
		element_id = _require_text(raw, "id")
		if element_id in seen:
			raise ValidationError(f"Duplicate source id '{element_id}'")
		seen.add(element_id)
		sources.append(
			LabelSource(
				element_id=element_id,
				path=_require_text(raw, "path"),
				repeating=element_id == repeating_id,
			)
		)
	if repeating_id not in seen:
		raise ValidationError(f"Repeating source '{repeating_id}' is not one of the sources")
	return OverlayLabelRequest(
		sources=tuple(sources),
		elements=parse_elements(params.get("elements")),
		editor_width=_require_dimension(params, "editor_width"),
		editor_height=_require_dimension(params, "editor_height"),
		output_width_mm=_require_dimension(params, "output_width_mm"),
		output_height_mm=_require_dimension(params, "output_height_mm"),
		output_name=_require_text(params, "output_name"),
		output_dir=_optional_text(params, "output_dir"),
	)


#============================================
def parse_multi_page_merge(params: dict) -> OverlayLabelRequest:
	"""
	Parse a three-source merge; paths bind positionally to fixed IDs.
	"""
	paths = params.get("paths")
	if not isinstance(paths, (list, tuple)) or len(paths) != len(MULTI_MERGE_IDS):
		raise ValidationError(f"Expected {len(MULTI_MERGE_IDS)} source paths")
	overlay_params = dict(params)
	overlay_params["sources"] = [
		{"id": element_id, "path": path}
		for element_id, path in zip(MULTI_MERGE_IDS, paths)
	]
	overlay_params["repeating_id"] = MULTI_MERGE_IDS[-1]
	return parse_overlay_label(overlay_params)


#============================================
def parse_split(params: dict) -> SplitRequest:
	return SplitRequest(
		source_path=_require_text(params, "source_path"),
		output_dir=_require_text(params, "output_dir"),
	)


#============================================
def parse_pdf_to_images(params: dict) -> PdfToImagesRequest:
	dpi = params.get("dpi", RENDER_DPI)
	if isinstance(dpi, bool) or not isinstance(dpi, int) or dpi <= 0:
		raise ValidationError(f"Parameter 'dpi' must be a positive integer, got {dpi!r}")
	return PdfToImagesRequest(
		source_path=_require_text(params, "source_path"),
		output_name=_require_text(params, "output_name"),
		output_dir=_optional_text(params, "output_dir"),
		dpi=dpi,
	)


#============================================
def parse_images_to_pdf(params: dict) -> ImagesToPdfRequest:
	"""
	Parse an image bundling request.
	"""
	image_paths = params.get("image_paths")
	if not isinstance(image_paths, (list, tuple)) or not image_paths:
		raise ValidationError("Missing required parameter 'image_paths'")
	for path in image_paths:
		if not isinstance(path, str) or not path:
			raise ValidationError(f"Invalid image path {path!r}")

	page_size = params.get("page_size") or DEFAULT_PAGE_SIZE
	custom_width_mm = None
	custom_height_mm = None
	if page_size == CUSTOM_PAGE_SIZE:
		custom_width_mm = _require_dimension(params, "custom_width_mm")
		custom_height_mm = _require_dimension(params, "custom_height_mm")

	orientation = params.get("orientation") or "portrait"
	if orientation not in ORIENTATIONS:
		raise ValidationError(f"Unknown orientation '{orientation}'")
	scale_mode = params.get("scale_mode") or "aspectFit"
	if scale_mode not in SCALE_MODES:
		raise ValidationError(f"Unknown scale mode '{scale_mode}'")

	quality = params.get("quality", DEFAULT_JPEG_QUALITY)
	if isinstance(quality, bool) or not isinstance(quality, (int, float)) or not 0 < quality <= 1:
		raise ValidationError(f"Parameter 'quality' must be in (0, 1], got {quality!r}")

	output_path = _optional_text(params, "output_path")
	if output_path is not None:
		output_path = normalize_output_name(output_path, PDF_SUFFIX)
	return ImagesToPdfRequest(
		image_paths=tuple(image_paths),
		page_size=page_size,
		custom_width_mm=custom_width_mm,
		custom_height_mm=custom_height_mm,
		orientation=orientation,
		scale_mode=scale_mode,
		quality=float(quality),
		output_path=output_path,
	)


PARSERS = {
	RESIZE_DOCUMENT: parse_resize,
	STACKED_LABEL: parse_stacked_label,
	OVERLAY_LABEL: parse_overlay_label,
	MULTI_PAGE_MERGE: parse_multi_page_merge,
	SPLIT_DOCUMENT: parse_split,
	PDF_TO_IMAGES: parse_pdf_to_images,
	IMAGE_TO_PDF: parse_images_to_pdf,
}


#============================================
def parse_request(recipe: str, params: dict):
	"""
	Validate raw parameters for a recipe.

	Args:
		recipe: Recipe name.
		params: Raw parameters from the shell.

	Returns:
		A frozen request dataclass.
	"""
	parser = PARSERS.get(recipe)
	if parser is None:
		raise ValidationError(f"Unknown recipe '{recipe}'")
	if not isinstance(params, dict):
		raise ValidationError("Parameters must be a mapping")
	return parser(params)
