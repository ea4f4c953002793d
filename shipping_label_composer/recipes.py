"""
Composition recipes executed inside task workers.

Each public recipe takes a parsed request and returns a TaskResult.
Output files are written only after the document is fully built.
"""

# Standard Library
import dataclasses
import io
import pathlib

# PIP3 modules
import PIL.Image
import pypdf.errors
import reportlab.lib.pagesizes
import reportlab.lib.utils
import reportlab.pdfgen.canvas

# local repo modules
import shipping_label_composer as slc
import shipping_label_composer.composer
import shipping_label_composer.config
import shipping_label_composer.errors
import shipping_label_composer.geometry
import shipping_label_composer.task_requests


TaskResult = slc.config.TaskResult
Placement = slc.geometry.Placement
SourceDocument = slc.composer.SourceDocument
PageHandle = slc.composer.PageHandle
ComposerError = slc.errors.ComposerError
SourceError = slc.errors.SourceError
LayoutError = slc.errors.LayoutError
OutputError = slc.errors.OutputError
CompositionError = slc.errors.CompositionError

LABEL_PAGE_PRESETS = slc.config.LABEL_PAGE_PRESETS
CUSTOM_PAGE_SIZE = slc.config.CUSTOM_PAGE_SIZE
SPLIT_PAGE_TEMPLATE = slc.config.SPLIT_PAGE_TEMPLATE
STACKED_STATIC_ID = slc.config.STACKED_STATIC_ID
STACKED_REPEATING_ID = slc.config.STACKED_REPEATING_ID
ERROR_SOURCE = slc.config.ERROR_SOURCE
ERROR_IO = slc.config.ERROR_IO


@dataclasses.dataclass(frozen=True)
class Region:
	element_id: str
	placement: Placement
	fit: bool


#============================================
def write_output(path: pathlib.Path, data: bytes) -> None:
	"""
	Write finished output bytes, creating the directory if needed.

	Args:
		path: Output path.
		data: File contents.
	"""
	try:
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_bytes(data)
	except OSError as error:
		raise OutputError(f"cannot write {path}: {error}") from error


#============================================
def resolve_placement(region: Region, handle: PageHandle) -> Placement:
	"""
	Compute where a source page lands inside its region.

	Args:
		region: Target region on the output page.
		handle: Source page.

	Returns:
		Placement in points.
	"""
	if region.fit:
		return slc.geometry.fit_into_region(handle.width, handle.height, region.placement)
	return region.placement


#============================================
def compose_label(
	statics: list[tuple[SourceDocument, Region]],
	repeating: tuple[SourceDocument, Region],
	page_width: float,
	page_height: float,
) -> slc.composer.OutputDocument:
	"""
	Build one output page per page of the repeating source.

	Static sources contribute their first page to every output page.

	Args:
		statics: Static sources with their regions.
		repeating: The multi-page source with its region.
		page_width: Output page width in points.
		page_height: Output page height in points.

	Returns:
		OutputDocument, not yet finalized.
	"""
	repeating_source, repeating_region = repeating
	if repeating_source.page_count == 0:
		raise SourceError(repeating_source.role, "document has no pages")
	static_pages = [
		(source.first_page(), region) for source, region in statics
	]

	document = slc.composer.new_document()
	for handle in repeating_source.pages:
		page = document.add_page(page_width, page_height)
		for static_handle, region in static_pages:
			document.embed_and_draw(page, static_handle, resolve_placement(region, static_handle))
		document.embed_and_draw(page, handle, resolve_placement(repeating_region, handle))
	return document


#============================================
def resize_document(request: slc.task_requests.ResizeRequest) -> TaskResult:
	"""
	Resize every page of a document to a fixed size, keeping aspect ratio.

	Args:
		request: ResizeRequest.

	Returns:
		TaskResult.
	"""
	output_path = slc.task_requests.resolve_output_path(
		request.output_name,
		request.output_dir,
		request.source_path,
	)
	source = slc.composer.load_source(request.source_path, "source document")
	document = slc.composer.new_document()
	for handle in source.pages:
		placement = slc.geometry.aspect_fit(handle.width, handle.height, request.width, request.height)
		page = document.add_page(request.width, request.height)
		document.embed_and_draw(page, handle, placement)
	write_output(output_path, document.finalize())
	return TaskResult(success=True, path=str(output_path), output_page_count=document.page_count)


#============================================
def stacked_label(request: slc.task_requests.StackedLabelRequest) -> TaskResult:
	"""
	Stack the repeating source over the first page of the static source.

	The repeating page fills the top half and the static page the bottom
	half, each scaled to fit and centered in its band.

	Args:
		request: StackedLabelRequest.

	Returns:
		TaskResult.
	"""
	page_width = slc.geometry.mm_to_units(request.output_width_mm)
	page_height = slc.geometry.mm_to_units(request.output_height_mm)
	output_path = slc.task_requests.resolve_output_path(
		request.output_name,
		request.output_dir,
		request.static_path,
	)
	top_band, bottom_band = slc.geometry.half_regions(page_width, page_height)

	static_source = slc.composer.load_source(request.static_path, "static source")
	repeating_source = slc.composer.load_source(request.repeating_path, "repeating source")
	document = compose_label(
		[(static_source, Region(STACKED_STATIC_ID, bottom_band, fit=True))],
		(repeating_source, Region(STACKED_REPEATING_ID, top_band, fit=True)),
		page_width,
		page_height,
	)
	write_output(output_path, document.finalize())
	return TaskResult(success=True, path=str(output_path), output_page_count=document.page_count)


#============================================
def overlay_label(request: slc.task_requests.OverlayLabelRequest) -> TaskResult:
	"""
	Compose two or three sources using editor layout rectangles.

	Args:
		request: OverlayLabelRequest.

	Returns:
		TaskResult.
	"""
	page_width = slc.geometry.mm_to_units(request.output_width_mm)
	page_height = slc.geometry.mm_to_units(request.output_height_mm)
	elements = {element.element_id: element for element in request.elements}
	regions: dict[str, Region] = {}
	for source in request.sources:
		element = elements.get(source.element_id)
		if element is None:
			raise LayoutError(source.element_id)
		placement = slc.geometry.free_layout_transform(
			element.rect,
			request.editor_width,
			request.editor_height,
			page_width,
			page_height,
		)
		regions[source.element_id] = Region(source.element_id, placement, fit=False)

	output_path = slc.task_requests.resolve_output_path(
		request.output_name,
		request.output_dir,
		request.sources[0].path,
	)
	statics: list[tuple[SourceDocument, Region]] = []
	repeating = None
	for source in request.sources:
		loaded = slc.composer.load_source(source.path, f"source '{source.element_id}'")
		if source.repeating:
			repeating = (loaded, regions[source.element_id])
		else:
			statics.append((loaded, regions[source.element_id]))
	if repeating is None:
		raise CompositionError("no repeating source")

	document = compose_label(statics, repeating, page_width, page_height)
	write_output(output_path, document.finalize())
	return TaskResult(success=True, path=str(output_path), output_page_count=document.page_count)


#============================================
def split_document(request: slc.task_requests.SplitRequest) -> TaskResult:
	"""
	Write each page of a document as its own single-page PDF.

	Args:
		request: SplitRequest.

	Returns:
		TaskResult whose path is the directory holding the pages.
	"""
	source = slc.composer.load_source(request.source_path, "source document")
	output_dir = pathlib.Path(request.output_dir)
	for number, handle in enumerate(source.pages, start=1):
		page_path = output_dir / SPLIT_PAGE_TEMPLATE.format(number=number)
		write_output(page_path, slc.composer.copy_single_page(handle))
	return TaskResult(success=True, path=str(output_dir), output_page_count=source.page_count)


#============================================
def resolve_page_size(request: slc.task_requests.ImagesToPdfRequest) -> tuple[float, float]:
	"""
	Resolve the page size of an image bundle in points.

	Args:
		request: ImagesToPdfRequest.

	Returns:
		Tuple of (width, height).
	"""
	if request.page_size in LABEL_PAGE_PRESETS:
		width_mm, height_mm = LABEL_PAGE_PRESETS[request.page_size]
		size = (slc.geometry.mm_to_units(width_mm), slc.geometry.mm_to_units(height_mm))
	elif request.page_size == CUSTOM_PAGE_SIZE:
		size = (
			slc.geometry.mm_to_units(request.custom_width_mm),
			slc.geometry.mm_to_units(request.custom_height_mm),
		)
	else:
		size = getattr(reportlab.lib.pagesizes, request.page_size.upper(), None)
		if not isinstance(size, tuple):
			size = reportlab.lib.pagesizes.A4
	if request.orientation == "landscape":
		size = (size[1], size[0])
	return (float(size[0]), float(size[1]))


#============================================
def encode_jpeg(path: pathlib.Path, quality: float) -> tuple[bytes, int, int]:
	"""
	Re-encode an image as JPEG.

	Args:
		path: Image path.
		quality: Quality in (0, 1].

	Returns:
		Tuple of (jpeg_bytes, width, height).
	"""
	jpeg_quality = max(1, min(100, round(quality * 100)))
	with PIL.Image.open(path) as image:
		image.load()
		rgb = image.convert("RGB")
	buffer = io.BytesIO()
	rgb.save(buffer, "JPEG", quality=jpeg_quality)
	return (buffer.getvalue(), rgb.width, rgb.height)


#============================================
def images_to_pdf(request: slc.task_requests.ImagesToPdfRequest) -> TaskResult:
	"""
	Bundle images into a PDF, one image per page.

	Args:
		request: ImagesToPdfRequest.

	Returns:
		TaskResult with the PDF bytes in data, or a path when an output
		path was requested.
	"""
	page_width, page_height = resolve_page_size(request)
	buffer = io.BytesIO()
	pdf = reportlab.pdfgen.canvas.Canvas(buffer, pagesize=(page_width, page_height))
	for number, image_path in enumerate(request.image_paths, start=1):
		path = pathlib.Path(image_path)
		role = f"image {number}"
		if not path.is_file():
			raise SourceError(role, f"file not found: {image_path}")
		try:
			jpeg_bytes, image_width, image_height = encode_jpeg(path, request.quality)
		except (PIL.UnidentifiedImageError, OSError) as error:
			raise SourceError(role, f"cannot read {path.name}: {error}") from error

		if request.scale_mode == "stretch":
			placement = slc.geometry.stretch(page_width, page_height)
		else:
			placement = slc.geometry.aspect_fit(image_width, image_height, page_width, page_height)
		pdf.setPageSize((page_width, page_height))
		pdf.drawImage(
			reportlab.lib.utils.ImageReader(io.BytesIO(jpeg_bytes)),
			placement.x,
			placement.y,
			width=placement.width,
			height=placement.height,
			mask=None,
			preserveAspectRatio=False,
			anchor="sw",
		)
		pdf.showPage()
	pdf.save()
	data = buffer.getvalue()
	page_count = len(request.image_paths)

	if request.output_path is None:
		return TaskResult(success=True, data=data, output_page_count=page_count)
	output_path = pathlib.Path(request.output_path)
	write_output(output_path, data)
	return TaskResult(success=True, path=str(output_path), output_page_count=page_count)


RECIPES = {
	slc.task_requests.RESIZE_DOCUMENT: resize_document,
	slc.task_requests.STACKED_LABEL: stacked_label,
	slc.task_requests.OVERLAY_LABEL: overlay_label,
	slc.task_requests.MULTI_PAGE_MERGE: overlay_label,
	slc.task_requests.SPLIT_DOCUMENT: split_document,
	slc.task_requests.IMAGE_TO_PDF: images_to_pdf,
}


#============================================
def run_recipe(recipe: str, request) -> TaskResult:
	"""
	Run a recipe and turn domain errors into a failed TaskResult.

	Unexpected exceptions propagate so the worker can report a fault.

	Args:
		recipe: Recipe name.
		request: Parsed request.

	Returns:
		TaskResult.
	"""
	func = RECIPES.get(recipe)
	if func is None:
		return slc.config.failure(f"Unknown recipe '{recipe}'", slc.config.ERROR_VALIDATION)
	try:
		return func(request)
	except ComposerError as error:
		return slc.config.failure(str(error), error.error_kind)
	except pypdf.errors.PyPdfError as error:
		return slc.config.failure(f"PDF engine error: {error}", ERROR_SOURCE)
	except OSError as error:
		return slc.config.failure(str(error), ERROR_IO)
