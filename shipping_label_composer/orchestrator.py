"""
Task dispatch: one worker process per request.

The orchestrator runs on an asyncio loop. Each task gets its own spawned
process and a one-way pipe; a waiter thread blocks on the pipe and the
process sentinel so the loop never blocks on composition work.
"""

# Standard Library
import asyncio
import atexit
import dataclasses
import multiprocessing
import multiprocessing.connection
import pathlib
import shutil
import tempfile
import threading
import uuid
import weakref

# local repo modules
import shipping_label_composer as slc
import shipping_label_composer.composer
import shipping_label_composer.config
import shipping_label_composer.errors
import shipping_label_composer.render_pool
import shipping_label_composer.task_requests
import shipping_label_composer.worker


TaskResult = slc.config.TaskResult
ComposerError = slc.errors.ComposerError
ValidationError = slc.errors.ValidationError

PDF_SUFFIX = slc.config.PDF_SUFFIX
ARCHIVE_SUFFIX = slc.config.ARCHIVE_SUFFIX
SPLIT_DIR_PREFIX = slc.config.SPLIT_DIR_PREFIX
SPLIT_PAGE_TEMPLATE = slc.config.SPLIT_PAGE_TEMPLATE
ERROR_VALIDATION = slc.config.ERROR_VALIDATION
ERROR_IO = slc.config.ERROR_IO

WORKER_JOIN_SECONDS = 5.0

PENDING = "PENDING"
RUNNING = "RUNNING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"

# every orchestrator still alive, terminated by one exit hook
LIVE_ORCHESTRATORS = weakref.WeakSet()


class ResultCell:
	"""
	Single-assignment cell. The first value set wins; later sets are ignored.
	"""

	def __init__(self) -> None:
		self._lock = threading.Lock()
		self._resolved = False
		self._value: TaskResult | None = None

	@property
	def resolved(self) -> bool:
		return self._resolved

	@property
	def value(self) -> TaskResult | None:
		return self._value

	def set(self, value: TaskResult) -> bool:
		with self._lock:
			if self._resolved:
				return False
			self._value = value
			self._resolved = True
			return True


class TaskHandle:
	def __init__(self, recipe: str, process, connection) -> None:
		self.task_id = uuid.uuid4().hex
		self.recipe = recipe
		self.process = process
		self.connection = connection
		self.state = PENDING
		self.cell = ResultCell()

	def resolve(self, result: TaskResult) -> bool:
		if not self.cell.set(result):
			return False
		self.state = COMPLETED if result.success else FAILED
		return True

	def terminate(self) -> None:
		self.resolve(slc.worker.worker_fault(f"{self.recipe} worker was terminated"))
		if self.process.is_alive():
			self.process.terminate()


class RenderHandle(TaskHandle):
	"""
	Registry entry for a render batch running on a helper thread.

	Terminating it sets the cancel event; the batch then kills its pool
	members and the task resolves as a worker fault.
	"""

	def __init__(self, recipe: str) -> None:
		super().__init__(recipe, None, None)
		self.cancel_event = threading.Event()
		self.state = RUNNING

	def terminate(self) -> None:
		self.resolve(slc.worker.worker_fault(f"{self.recipe} render stage was terminated"))
		self.cancel_event.set()


class Orchestrator:
	"""
	Dispatches composition requests to isolated worker processes.

	Args:
		temp_root: Parent directory for temporary split directories.
		verbose: Print task progress.
	"""

	def __init__(self, temp_root: str | pathlib.Path | None = None, verbose: bool = False) -> None:
		self.temp_root = str(temp_root) if temp_root is not None else None
		self.verbose = verbose
		self._context = multiprocessing.get_context("spawn")
		self._registry: set[TaskHandle] = set()
		self._lock = threading.Lock()
		self._closed = False
		LIVE_ORCHESTRATORS.add(self)

	@property
	def active_count(self) -> int:
		with self._lock:
			return len(self._registry)

	@property
	def active_recipes(self) -> list[str]:
		with self._lock:
			return sorted(handle.recipe for handle in self._registry)

	async def __aenter__(self) -> "Orchestrator":
		return self

	async def __aexit__(self, exc_type, exc, traceback) -> None:
		await self.shutdown()

	#============================================
	def launch(self, recipe: str, request, target=None) -> TaskHandle:
		"""
		Start a worker process for one request and register it.

		Args:
			recipe: Recipe name.
			request: Parsed request.
			target: Worker entry point, defaults to worker.run_worker.

		Returns:
			TaskHandle in the RUNNING state, or already FAILED when the
			orchestrator shut down before the process started.
		"""
		if target is None:
			target = slc.worker.run_worker
		reader, writer = self._context.Pipe(duplex=False)
		process = self._context.Process(
			target=target,
			args=(writer, recipe, request),
			daemon=True,
		)
		handle = TaskHandle(recipe, process, reader)
		self._register(handle)
		if handle.cell.resolved:
			# shut down between the closed check and registration
			reader.close()
			writer.close()
			return handle
		try:
			process.start()
		except OSError:
			self._unregister(handle)
			reader.close()
			raise
		finally:
			writer.close()
		handle.state = RUNNING
		if self.verbose:
			print(f"Task {handle.task_id[:8]} started: {recipe}")
		return handle

	def _register(self, handle: TaskHandle) -> None:
		with self._lock:
			closed = self._closed
			if not closed:
				self._registry.add(handle)
		if closed:
			handle.terminate()

	def _unregister(self, handle: TaskHandle) -> None:
		with self._lock:
			self._registry.discard(handle)

	#============================================
	def wait_for_signal(self, handle: TaskHandle) -> TaskResult:
		"""
		Block until the task resolves. Runs on a helper thread.

		The first of result message, fault message, exit without a
		result, or forced termination decides the outcome.

		Args:
			handle: Running task.

		Returns:
			TaskResult.
		"""
		waitables = [handle.connection, handle.process.sentinel]
		try:
			while not handle.cell.resolved:
				ready = multiprocessing.connection.wait(waitables)
				if handle.connection in ready:
					try:
						message = handle.connection.recv()
					except (EOFError, OSError):
						waitables = [handle.process.sentinel]
						continue
					handle.resolve(slc.worker.result_from_message(message))
					continue
				if handle.process.sentinel in ready:
					if handle.connection in waitables and handle.connection.poll():
						continue
					handle.process.join()
					handle.resolve(
						slc.worker.worker_fault(
							f"{handle.recipe} worker exited with code {handle.process.exitcode} without a result"
						)
					)
			return handle.cell.value
		finally:
			handle.process.join(WORKER_JOIN_SECONDS)
			if handle.process.is_alive():
				handle.process.terminate()
				handle.process.join()
			handle.connection.close()
			self._unregister(handle)
			if self.verbose:
				print(f"Task {handle.task_id[:8]} {handle.state.lower()}: {handle.recipe}")

	#============================================
	async def run_request(self, recipe: str, request, target=None, enrich: bool = True) -> TaskResult:
		"""
		Run an already validated request in a worker process.

		Args:
			recipe: Recipe name.
			request: Parsed request.
			target: Optional worker entry point.
			enrich: Add file size and page count after success.

		Returns:
			TaskResult.
		"""
		if self._closed:
			return slc.worker.worker_fault(f"{recipe} was not started: orchestrator is shut down")
		try:
			handle = self.launch(recipe, request, target)
		except OSError as error:
			return slc.worker.worker_fault(f"cannot start {recipe} worker: {error}")
		if handle.process.pid is None:
			return handle.cell.value
		try:
			result = await asyncio.to_thread(self.wait_for_signal, handle)
		except asyncio.CancelledError:
			handle.terminate()
			raise
		if enrich and result.success and result.path:
			result = await self.enrich(result)
		return result

	#============================================
	async def run_task(self, recipe: str, params: dict) -> TaskResult:
		"""
		Validate parameters and run a recipe.

		Args:
			recipe: Recipe name.
			params: Raw parameters.

		Returns:
			TaskResult, never raises for domain or worker failures.
		"""
		try:
			request = slc.task_requests.parse_request(recipe, params)
		except ValidationError as error:
			return slc.config.failure(str(error), ERROR_VALIDATION)
		return await self.run_request(recipe, request)

	#============================================
	def read_metadata(self, path: pathlib.Path) -> tuple[int, int | None]:
		"""
		Read output file size and, for PDFs, page count.

		Args:
			path: Output file.

		Returns:
			Tuple of (file_size, page_count_or_None).
		"""
		file_size = path.stat().st_size
		page_count = None
		if path.suffix.lower() == PDF_SUFFIX:
			page_count = slc.composer.count_pdf_pages(path)
		return (file_size, page_count)

	#============================================
	async def enrich(self, result: TaskResult) -> TaskResult:
		"""
		Attach output metadata. Failure here only adds a warning.

		Args:
			result: Successful TaskResult with a path.

		Returns:
			Enriched TaskResult.
		"""
		try:
			file_size, page_count = await asyncio.to_thread(self.read_metadata, pathlib.Path(result.path))
		except Exception as error:
			warning = f"Could not read output metadata for {result.path}: {error}"
			print(f"Warning: {warning}")
			return dataclasses.replace(
				result,
				output_file_size=None,
				output_page_count=None,
				warning=warning,
			)
		if page_count is None:
			page_count = result.output_page_count
		return dataclasses.replace(result, output_file_size=file_size, output_page_count=page_count)

	async def resize_document(self, params: dict) -> TaskResult:
		return await self.run_task(slc.task_requests.RESIZE_DOCUMENT, params)

	async def stacked_label(self, params: dict) -> TaskResult:
		return await self.run_task(slc.task_requests.STACKED_LABEL, params)

	async def overlay_label(self, params: dict) -> TaskResult:
		return await self.run_task(slc.task_requests.OVERLAY_LABEL, params)

	async def multi_page_merge(self, params: dict) -> TaskResult:
		return await self.run_task(slc.task_requests.MULTI_PAGE_MERGE, params)

	async def images_to_pdf(self, params: dict) -> TaskResult:
		return await self.run_task(slc.task_requests.IMAGE_TO_PDF, params)

	#============================================
	async def pdf_to_images(self, params: dict) -> TaskResult:
		"""
		Convert every page of a PDF to JPEG and package them in a ZIP.

		The source is split in a worker, pages are rendered by the render
		pool, and the temporary directory is removed on every path.

		Args:
			params: source_path, output_name, optional output_dir and dpi.

		Returns:
			TaskResult with the archive path and size.
		"""
		try:
			request = slc.task_requests.parse_pdf_to_images(params)
		except ValidationError as error:
			return slc.config.failure(str(error), ERROR_VALIDATION)
		archive_path = slc.task_requests.resolve_output_path(
			request.output_name,
			request.output_dir,
			request.source_path,
			ARCHIVE_SUFFIX,
		)
		try:
			temp_dir = pathlib.Path(tempfile.mkdtemp(prefix=SPLIT_DIR_PREFIX, dir=self.temp_root))
		except OSError as error:
			return slc.config.failure(f"cannot create temporary directory: {error}", ERROR_IO)

		try:
			split_request = slc.task_requests.SplitRequest(
				source_path=request.source_path,
				output_dir=str(temp_dir),
			)
			split = await self.run_request(slc.task_requests.SPLIT_DOCUMENT, split_request, enrich=False)
			if not split.success:
				return split
			page_paths = [
				temp_dir / SPLIT_PAGE_TEMPLATE.format(number=number)
				for number in range(1, split.output_page_count + 1)
			]
			render_handle = RenderHandle(slc.task_requests.PDF_TO_IMAGES)
			self._register(render_handle)
			try:
				if render_handle.cell.resolved:
					return render_handle.cell.value
				images = await asyncio.to_thread(
					slc.render_pool.render_batch,
					page_paths,
					temp_dir / "images",
					request.dpi,
					cancel_event=render_handle.cancel_event,
					verbose=self.verbose,
				)
				if render_handle.cell.resolved:
					return render_handle.cell.value
				await asyncio.to_thread(slc.render_pool.write_image_archive, images, archive_path)
			except ComposerError as error:
				render_handle.resolve(slc.config.failure(str(error), error.error_kind))
				return render_handle.cell.value
			except asyncio.CancelledError:
				render_handle.terminate()
				raise
			finally:
				self._unregister(render_handle)

			result = TaskResult(success=True, path=str(archive_path), output_page_count=len(images))
			if not render_handle.resolve(result):
				# terminated while the archive was being written
				archive_path.unlink(missing_ok=True)
				return render_handle.cell.value
			return await self.enrich(result)
		finally:
			self.remove_temp_dir(temp_dir)

	def remove_temp_dir(self, temp_dir: pathlib.Path) -> None:
		try:
			shutil.rmtree(temp_dir)
		except OSError as error:
			print(f"Warning: could not remove temporary directory {temp_dir}: {error}")

	#============================================
	def terminate_all(self) -> int:
		"""
		Force-terminate every registered task and clear the registry.

		Returns:
			Number of tasks terminated.
		"""
		with self._lock:
			self._closed = True
			handles = list(self._registry)
			self._registry.clear()
		for handle in handles:
			handle.terminate()
		return len(handles)

	async def shutdown(self) -> None:
		count = self.terminate_all()
		if self.verbose and count:
			print(f"Terminated {count} running tasks")


#============================================
def terminate_live_orchestrators() -> None:
	"""
	Exit hook: no worker outlives the interpreter.
	"""
	for orchestrator in list(LIVE_ORCHESTRATORS):
		orchestrator.terminate_all()


atexit.register(terminate_live_orchestrators)
