"""
Document composition on top of pypdf.
"""

# Standard Library
import dataclasses
import io
import pathlib

# PIP3 modules
import PIL.Image
import pypdf
import pypdf.errors
import pypdf.generic
import reportlab.lib.utils
import reportlab.pdfgen.canvas

# local repo modules
import shipping_label_composer as slc
import shipping_label_composer.config
import shipping_label_composer.errors
import shipping_label_composer.geometry


Placement = slc.geometry.Placement
SourceError = slc.errors.SourceError
CompositionError = slc.errors.CompositionError

IMAGE_SUFFIXES = slc.config.IMAGE_SUFFIXES


@dataclasses.dataclass(frozen=True)
class PageHandle:
	page: pypdf.PageObject
	width: float
	height: float
	left: float = 0.0
	bottom: float = 0.0


@dataclasses.dataclass
class SourceDocument:
	role: str
	path: str
	pages: list[PageHandle]

	@property
	def page_count(self) -> int:
		return len(self.pages)

	def first_page(self) -> PageHandle:
		if not self.pages:
			raise SourceError(self.role, "document has no pages")
		return self.pages[0]


@dataclasses.dataclass(frozen=True)
class EmbeddedPage:
	name: str
	reference: pypdf.generic.IndirectObject
	handle: PageHandle


#============================================
def build_page_handle(page: pypdf.PageObject) -> PageHandle:
	"""
	Read the geometry of a source page once.

	Args:
		page: pypdf page.

	Returns:
		PageHandle.
	"""
	box = page.mediabox
	return PageHandle(
		page=page,
		width=float(box.width),
		height=float(box.height),
		left=float(box.left),
		bottom=float(box.bottom),
	)


#============================================
def image_to_pdf_bytes(path: pathlib.Path) -> bytes:
	"""
	Wrap a raster image into a one-page PDF, one point per pixel.

	Args:
		path: Image path.

	Returns:
		PDF bytes.
	"""
	with PIL.Image.open(path) as image:
		image.load()
		if image.mode not in ("RGB", "L"):
			image = image.convert("RGB")
		width, height = image.size
		buffer = io.BytesIO()
		pdf = reportlab.pdfgen.canvas.Canvas(buffer, pagesize=(width, height))
		pdf.drawImage(
			reportlab.lib.utils.ImageReader(image),
			0,
			0,
			width=width,
			height=height,
			mask=None,
			preserveAspectRatio=False,
			anchor="sw",
		)
		pdf.showPage()
		pdf.save()
	return buffer.getvalue()


#============================================
def load_source(path: str | None, role: str, require_pages: bool = True) -> SourceDocument:
	"""
	Load a source PDF or image.

	Args:
		path: Source file path.
		role: Name used in error messages.
		require_pages: Fail when the document has no pages.

	Returns:
		SourceDocument.
	"""
	if not path:
		raise SourceError(role, "no file given")
	source_path = pathlib.Path(path)
	if not source_path.is_file():
		raise SourceError(role, f"file not found: {path}")
	try:
		if source_path.suffix.lower() in IMAGE_SUFFIXES:
			reader = pypdf.PdfReader(io.BytesIO(image_to_pdf_bytes(source_path)))
		else:
			reader = pypdf.PdfReader(str(source_path))
		pages = [build_page_handle(page) for page in reader.pages]
	except (pypdf.errors.PyPdfError, PIL.UnidentifiedImageError, ValueError) as error:
		raise SourceError(role, f"cannot read {source_path.name}: {error}") from error
	if require_pages and not pages:
		raise SourceError(role, f"{source_path.name} has no pages")
	for handle in pages:
		if handle.width <= 0 or handle.height <= 0:
			raise SourceError(role, f"{source_path.name} has a page with an empty media box")
	return SourceDocument(role=role, path=str(source_path), pages=pages)


class OutputDocument:
	"""
	A document under construction.

	Pages are appended in order and never removed. Each distinct source
	page becomes one form XObject the first time it is drawn; every later
	draw paints that shared XObject again.
	"""

	def __init__(self) -> None:
		self._writer = pypdf.PdfWriter()
		self._forms: dict[int, EmbeddedPage] = {}
		self._page_ops: dict[int, list[bytes]] = {}
		self._finalized = False
		self.embed_count = 0
		self.draw_count = 0

	@property
	def page_count(self) -> int:
		return len(self._writer.pages)

	def _check_open(self) -> None:
		if self._finalized:
			raise CompositionError("document is already finalized")

	#============================================
	def add_page(self, width: float, height: float) -> pypdf.PageObject:
		"""
		Append a blank page.

		Args:
			width: Page width in points.
			height: Page height in points.

		Returns:
			The page object owned by the writer.
		"""
		self._check_open()
		if width <= 0 or height <= 0:
			raise CompositionError(f"page size must be positive, got {width}x{height}")
		page = pypdf.PageObject.create_blank_page(width=width, height=height)
		self._writer.add_page(page)
		page = self._writer.pages[-1]
		self._page_ops[page.indirect_reference.idnum] = []
		return page

	#============================================
	def embed(self, handle: PageHandle) -> EmbeddedPage:
		"""
		Turn a source page into a form XObject owned by this document.

		The form is built once per distinct source page and reused.

		Args:
			handle: Source page.

		Returns:
			EmbeddedPage with the XObject name and reference.
		"""
		key = id(handle.page)
		embedded = self._forms.get(key)
		if embedded is not None:
			return embedded
		content = handle.page.get_contents()
		form = pypdf.generic.DecodedStreamObject()
		form.set_data(content.get_data() if content is not None else b"")
		form[pypdf.generic.NameObject("/Type")] = pypdf.generic.NameObject("/XObject")
		form[pypdf.generic.NameObject("/Subtype")] = pypdf.generic.NameObject("/Form")
		form[pypdf.generic.NameObject("/BBox")] = pypdf.generic.ArrayObject(
			[
				pypdf.generic.FloatObject(handle.left),
				pypdf.generic.FloatObject(handle.bottom),
				pypdf.generic.FloatObject(handle.left + handle.width),
				pypdf.generic.FloatObject(handle.bottom + handle.height),
			]
		)
		if "/Resources" in handle.page:
			resources = handle.page.raw_get("/Resources").clone(self._writer)
		else:
			resources = pypdf.generic.DictionaryObject()
		form[pypdf.generic.NameObject("/Resources")] = resources
		reference = self._writer._add_object(form.flate_encode())
		self.embed_count += 1
		embedded = EmbeddedPage(
			name=f"/SrcPage{self.embed_count}",
			reference=reference,
			handle=handle,
		)
		self._forms[key] = embedded
		return embedded

	#============================================
	def embed_and_draw(
		self,
		page: pypdf.PageObject,
		handle: PageHandle,
		placement: Placement,
	) -> None:
		"""
		Draw a source page onto an output page at a placement.

		Args:
			page: Output page from add_page.
			handle: Source page.
			placement: Target rectangle in points.
		"""
		self._check_open()
		if placement.width <= 0 or placement.height <= 0:
			raise CompositionError(
				f"placement size must be positive, got {placement.width}x{placement.height}"
			)
		ops = self._page_ops.get(page.indirect_reference.idnum)
		if ops is None:
			raise CompositionError("page does not belong to this document")
		try:
			embedded = self.embed(handle)
		except pypdf.errors.PyPdfError as error:
			raise CompositionError(f"cannot embed source page: {error}") from error

		resources = page[pypdf.generic.NameObject("/Resources")]
		if "/XObject" not in resources:
			resources[pypdf.generic.NameObject("/XObject")] = pypdf.generic.DictionaryObject()
		resources["/XObject"][pypdf.generic.NameObject(embedded.name)] = embedded.reference

		# the form keeps source coordinates, so shift its mediabox origin first
		scale_x = placement.width / handle.width
		scale_y = placement.height / handle.height
		offset_x = placement.x - handle.left * scale_x
		offset_y = placement.y - handle.bottom * scale_y
		ops.append(
			f"q {scale_x:.6f} 0 0 {scale_y:.6f} {offset_x:.6f} {offset_y:.6f} cm {embedded.name} Do Q\n".encode("ascii")
		)
		self.draw_count += 1

	#============================================
	def finalize(self) -> bytes:
		"""
		Serialize the document. Callable once.

		Returns:
			PDF bytes.
		"""
		self._check_open()
		self._finalized = True
		for page in self._writer.pages:
			ops = self._page_ops.get(page.indirect_reference.idnum)
			if not ops:
				continue
			stream = pypdf.generic.DecodedStreamObject()
			stream.set_data(b"".join(ops))
			page[pypdf.generic.NameObject("/Contents")] = self._writer._add_object(stream.flate_encode())
		buffer = io.BytesIO()
		self._writer.write(buffer)
		return buffer.getvalue()


#============================================
def new_document() -> OutputDocument:
	"""
	Create an empty output document.
	"""
	return OutputDocument()


#============================================
def copy_single_page(handle: PageHandle) -> bytes:
	"""
	Serialize one source page as its own PDF.

	Args:
		handle: Source page.

	Returns:
		PDF bytes.
	"""
	writer = pypdf.PdfWriter()
	writer.add_page(handle.page)
	buffer = io.BytesIO()
	writer.write(buffer)
	return buffer.getvalue()


#============================================
def count_pdf_pages(path: pathlib.Path) -> int:
	"""
	Count the pages of a PDF on disk.
	"""
	reader = pypdf.PdfReader(str(path))
	return len(reader.pages)
