"""
Render pool for PDF page rasterization.

A fixed set of member processes pulls single-page PDFs from a shared
queue and writes one JPEG per page. The first page failure aborts the
whole batch.
"""

# Standard Library
import dataclasses
import multiprocessing
import pathlib
import queue
import uuid
import zipfile

# PIP3 modules
import fitz
import PIL.Image

# local repo modules
import shipping_label_composer as slc
import shipping_label_composer.config
import shipping_label_composer.errors


RenderError = slc.errors.RenderError
OutputError = slc.errors.OutputError

POINTS_PER_INCH = slc.config.POINTS_PER_INCH
RENDER_DPI = slc.config.RENDER_DPI
RENDER_JPEG_QUALITY = slc.config.RENDER_JPEG_QUALITY
RENDER_POLL_SECONDS = slc.config.RENDER_POLL_SECONDS
ARCHIVE_ENTRY_TEMPLATE = slc.config.ARCHIVE_ENTRY_TEMPLATE


@dataclasses.dataclass(frozen=True)
class RenderTask:
	correlation_id: str
	page_index: int
	pdf_path: str
	image_path: str


#============================================
def render_page(task: RenderTask, dpi: int, quality: int) -> None:
	"""
	Rasterize the first page of a single-page PDF to JPEG.

	Args:
		task: RenderTask.
		dpi: Output resolution.
		quality: JPEG quality 1-100.
	"""
	document = fitz.open(task.pdf_path)
	try:
		page = document[0]
		scale = dpi / POINTS_PER_INCH
		matrix = fitz.Matrix(scale, scale)
		pixmap = page.get_pixmap(matrix=matrix, alpha=False)
		image = PIL.Image.frombytes("RGB", [pixmap.width, pixmap.height], pixmap.samples)
		image.save(task.image_path, "JPEG", quality=quality)
	finally:
		document.close()


#============================================
def pool_member(task_queue, result_queue, dpi: int, quality: int) -> None:
	"""
	Member loop: claim the next task until a stop marker arrives.

	Args:
		task_queue: Shared queue of RenderTask, None marks the end.
		result_queue: Completion queue of (correlation_id, error_or_None).
		dpi: Output resolution.
		quality: JPEG quality.
	"""
	while True:
		task = task_queue.get()
		if task is None:
			return
		try:
			render_page(task, dpi, quality)
		except Exception as error:
			result_queue.put((task.correlation_id, f"{type(error).__name__}: {error}"))
			return
		result_queue.put((task.correlation_id, None))


#============================================
def build_tasks(page_paths: list[pathlib.Path], output_dir: pathlib.Path) -> list[RenderTask]:
	"""
	Create one render task per page, tagged with a correlation ID.

	Args:
		page_paths: Single-page PDFs in page order.
		output_dir: Directory for the JPEG files.

	Returns:
		List of RenderTask.
	"""
	tasks: list[RenderTask] = []
	for index, path in enumerate(page_paths):
		image_name = ARCHIVE_ENTRY_TEMPLATE.format(number=index + 1)
		tasks.append(
			RenderTask(
				correlation_id=uuid.uuid4().hex,
				page_index=index,
				pdf_path=str(path),
				image_path=str(output_dir / image_name),
			)
		)
	return tasks


#============================================
def _teardown(members: list, task_queue, result_queue) -> None:
	for member in members:
		if member.is_alive():
			member.terminate()
	for member in members:
		if member.pid is not None:
			member.join()
		member.close()
	for shared in (task_queue, result_queue):
		shared.cancel_join_thread()
		shared.close()


#============================================
def _drain(result_queue) -> list[tuple[str, str | None]]:
	completions = []
	while True:
		try:
			completions.append(result_queue.get_nowait())
		except queue.Empty:
			return completions


#============================================
def collect_completions(
	tasks: list[RenderTask],
	result_queue,
	members: list,
	cancel_event=None,
	verbose: bool = False,
) -> list[pathlib.Path]:
	"""
	Match completions to tasks by correlation ID until every page is done.

	When the queue looks empty and no member is alive, completions that
	were queued just before the last member exited are drained first.

	Args:
		tasks: Render tasks of the batch.
		result_queue: Completion queue of (correlation_id, error_or_None).
		members: Pool member processes.
		cancel_event: Optional threading.Event that aborts the batch.
		verbose: Print progress.

	Returns:
		Image paths, index i holds page i + 1.
	"""
	pending = {task.correlation_id: task for task in tasks}
	slots: list[pathlib.Path | None] = [None] * len(tasks)
	while pending:
		if cancel_event is not None and cancel_event.is_set():
			raise RenderError(f"render batch cancelled with {len(pending)} pages left")
		try:
			completions = [result_queue.get(timeout=RENDER_POLL_SECONDS)]
		except queue.Empty:
			if any(member.is_alive() for member in members):
				continue
			completions = _drain(result_queue)
			if not completions:
				raise RenderError(f"render pool stopped with {len(pending)} pages left")
		for correlation_id, error in completions:
			task = pending.pop(correlation_id, None)
			if task is None:
				continue
			if error is not None:
				raise RenderError(f"page {task.page_index + 1} failed: {error}")
			slots[task.page_index] = pathlib.Path(task.image_path)
			if verbose:
				print(f"Rendered page {task.page_index + 1} of {len(tasks)}")
	return slots


#============================================
def render_batch(
	page_paths: list[pathlib.Path],
	output_dir: pathlib.Path,
	dpi: int = RENDER_DPI,
	quality: int = RENDER_JPEG_QUALITY,
	size: int | None = None,
	cancel_event=None,
	verbose: bool = False,
) -> list[pathlib.Path]:
	"""
	Render every page in parallel and return the images in page order.

	Args:
		page_paths: Single-page PDFs in page order.
		output_dir: Directory for the JPEG files.
		dpi: Output resolution.
		quality: JPEG quality 1-100.
		size: Pool size override.
		cancel_event: Optional threading.Event; once set the members are
			terminated and RenderError is raised.
		verbose: Print progress.

	Returns:
		Image paths, index i holds page i + 1.
	"""
	if not page_paths:
		return []
	if cancel_event is not None and cancel_event.is_set():
		raise RenderError("render batch cancelled before start")
	output_dir.mkdir(parents=True, exist_ok=True)
	tasks = build_tasks(page_paths, output_dir)

	member_count = min(size or slc.config.pool_size(), len(tasks))
	context = multiprocessing.get_context("spawn")
	task_queue = context.Queue()
	result_queue = context.Queue()
	for task in tasks:
		task_queue.put(task)
	for _ in range(member_count):
		task_queue.put(None)

	members = [
		context.Process(
			target=pool_member,
			args=(task_queue, result_queue, dpi, quality),
			daemon=True,
		)
		for _ in range(member_count)
	]
	if verbose:
		print(f"Rendering {len(tasks)} pages with {member_count} pool members")
	try:
		for member in members:
			member.start()
		return collect_completions(tasks, result_queue, members, cancel_event, verbose)
	finally:
		_teardown(members, task_queue, result_queue)


#============================================
def write_image_archive(image_paths: list[pathlib.Path], archive_path: pathlib.Path) -> None:
	"""
	Package page images into a ZIP named {page}.jpg.

	Args:
		image_paths: Images in page order.
		archive_path: Output archive path.
	"""
	try:
		archive_path.parent.mkdir(parents=True, exist_ok=True)
		with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
			for number, image_path in enumerate(image_paths, start=1):
				archive.write(image_path, ARCHIVE_ENTRY_TEMPLATE.format(number=number))
	except OSError as error:
		archive_path.unlink(missing_ok=True)
		raise OutputError(f"cannot write {archive_path}: {error}") from error
