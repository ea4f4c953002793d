import asyncio
import gc
import pathlib
import weakref
import zipfile

import pytest

import pdf_fixtures
import worker_helpers
import shipping_label_composer.config as config
import shipping_label_composer.orchestrator as orchestrator
import shipping_label_composer.task_requests as task_requests


#============================================
def _resize_params(source: pathlib.Path, name: str = "resized") -> dict:
	return {
		"source_path": str(source),
		"width": 100,
		"height": 100,
		"output_name": name,
	}


#============================================
def test_result_cell_first_value_wins() -> None:
	cell = orchestrator.ResultCell()
	first = config.TaskResult(success=True, path="/tmp/a.pdf")
	second = config.failure("late", config.ERROR_WORKER_FAULT)
	assert not cell.resolved
	assert cell.set(first)
	assert not cell.set(second)
	assert cell.value is first


#============================================
def test_resize_in_worker_is_enriched(tmp_path: pathlib.Path) -> None:
	"""
	A successful task reports file size and page count.
	"""
	source = pdf_fixtures.write_pdf(tmp_path / "source.pdf", [(200.0, 300.0), (300.0, 200.0)])

	async def scenario():
		async with orchestrator.Orchestrator() as dispatcher:
			result = await dispatcher.resize_document(_resize_params(source))
			assert dispatcher.active_count == 0
			return result

	result = asyncio.run(scenario())
	assert result.success, result.error
	output = pathlib.Path(result.path)
	assert output == tmp_path / "resized.pdf"
	assert result.output_page_count == 2
	assert result.output_file_size == output.stat().st_size
	assert result.warning is None


#============================================
def test_validation_failure_starts_no_worker() -> None:
	async def scenario():
		dispatcher = orchestrator.Orchestrator()
		result = await dispatcher.stacked_label({"static_path": "/tmp/a.pdf"})
		await dispatcher.shutdown()
		return result

	result = asyncio.run(scenario())
	assert not result.success
	assert result.error_kind == config.ERROR_VALIDATION


#============================================
def test_domain_failure_comes_back_as_result(tmp_path: pathlib.Path) -> None:
	async def scenario():
		async with orchestrator.Orchestrator() as dispatcher:
			return await dispatcher.resize_document(_resize_params(tmp_path / "missing.pdf"))

	result = asyncio.run(scenario())
	assert not result.success
	assert result.error_kind == config.ERROR_SOURCE


#============================================
@pytest.mark.parametrize(
	"target, expected_success",
	[
		(worker_helpers.exit_without_result, False),
		(worker_helpers.report_fault, False),
		(worker_helpers.result_then_crash, True),
	],
)
def test_first_signal_wins(target, expected_success: bool) -> None:
	"""
	Whichever of result, fault or exit arrives first decides the task.
	"""
	request = task_requests.SplitRequest(source_path="/tmp/none.pdf", output_dir="/tmp")

	async def scenario():
		async with orchestrator.Orchestrator() as dispatcher:
			result = await dispatcher.run_request(task_requests.SPLIT_DOCUMENT, request, target=target, enrich=False)
			return (result, dispatcher.active_count)

	result, active_count = asyncio.run(scenario())
	assert result.success is expected_success
	assert active_count == 0
	if not expected_success:
		assert result.error_kind == config.ERROR_WORKER_FAULT
	if target is worker_helpers.report_fault:
		assert result.error == "engine exploded"


#============================================
def test_shutdown_terminates_running_tasks() -> None:
	request = task_requests.SplitRequest(source_path="/tmp/none.pdf", output_dir="/tmp")

	async def scenario():
		dispatcher = orchestrator.Orchestrator()
		task = asyncio.create_task(
			dispatcher.run_request(
				task_requests.SPLIT_DOCUMENT,
				request,
				target=worker_helpers.sleep_forever,
				enrich=False,
			)
		)
		while dispatcher.active_count == 0:
			await asyncio.sleep(0.05)
		await dispatcher.shutdown()
		result = await asyncio.wait_for(task, timeout=30)
		return (result, dispatcher.active_count)

	result, active_count = asyncio.run(scenario())
	assert not result.success
	assert result.error_kind == config.ERROR_WORKER_FAULT
	assert "terminated" in result.error
	assert active_count == 0


#============================================
def test_concurrent_tasks_are_independent(tmp_path: pathlib.Path) -> None:
	source = pdf_fixtures.write_pdf(tmp_path / "source.pdf", [(100.0, 100.0)])

	async def scenario():
		async with orchestrator.Orchestrator() as dispatcher:
			return await asyncio.gather(
				dispatcher.resize_document(_resize_params(source, "one")),
				dispatcher.resize_document(_resize_params(tmp_path / "missing.pdf", "two")),
				dispatcher.resize_document(_resize_params(source, "three")),
			)

	one, two, three = asyncio.run(scenario())
	assert one.success and three.success
	assert not two.success
	assert (tmp_path / "one.pdf").is_file()
	assert (tmp_path / "three.pdf").is_file()


#============================================
def test_enrich_missing_output_adds_warning(tmp_path: pathlib.Path) -> None:
	dispatcher = orchestrator.Orchestrator()
	result = config.TaskResult(success=True, path=str(tmp_path / "vanished.pdf"), output_page_count=3)
	enriched = asyncio.run(dispatcher.enrich(result))
	asyncio.run(dispatcher.shutdown())
	assert enriched.success
	assert enriched.output_file_size is None
	assert enriched.output_page_count is None
	assert "vanished.pdf" in enriched.warning


#============================================
def test_pdf_to_images_archive(tmp_path: pathlib.Path) -> None:
	"""
	Three pages become 1.jpg, 2.jpg, 3.jpg and the split directory is removed.
	"""
	source = pdf_fixtures.write_pdf(tmp_path / "source.pdf", [(72.0, 72.0)] * 3)
	temp_root = tmp_path / "scratch"
	temp_root.mkdir()

	async def scenario():
		async with orchestrator.Orchestrator(temp_root=temp_root) as dispatcher:
			return await dispatcher.pdf_to_images(
				{"source_path": str(source), "output_name": "pages", "dpi": 72}
			)

	result = asyncio.run(scenario())
	assert result.success, result.error
	assert result.path == str(tmp_path / "pages.zip")
	assert result.output_page_count == 3
	assert result.output_file_size == (tmp_path / "pages.zip").stat().st_size
	with zipfile.ZipFile(result.path) as archive:
		assert archive.namelist() == ["1.jpg", "2.jpg", "3.jpg"]
	assert list(temp_root.glob(f"{config.SPLIT_DIR_PREFIX}*")) == []


#============================================
def test_pdf_to_images_failure_cleans_up(tmp_path: pathlib.Path) -> None:
	bad = tmp_path / "bad.pdf"
	bad.write_bytes(b"not a pdf at all")
	temp_root = tmp_path / "scratch"
	temp_root.mkdir()

	async def scenario():
		async with orchestrator.Orchestrator(temp_root=temp_root) as dispatcher:
			return await dispatcher.pdf_to_images({"source_path": str(bad), "output_name": "pages"})

	result = asyncio.run(scenario())
	assert not result.success
	assert result.error_kind == config.ERROR_SOURCE
	assert not (tmp_path / "pages.zip").exists()
	assert list(temp_root.glob(f"{config.SPLIT_DIR_PREFIX}*")) == []


#============================================
def test_shutdown_stops_render_stage(tmp_path: pathlib.Path) -> None:
	"""
	Shutdown during page rendering fails the conversion and writes no archive.
	"""
	source = pdf_fixtures.write_pdf(tmp_path / "source.pdf", [(612.0, 792.0)] * 40)
	temp_root = tmp_path / "scratch"
	temp_root.mkdir()

	async def scenario():
		dispatcher = orchestrator.Orchestrator(temp_root=temp_root)
		task = asyncio.create_task(
			dispatcher.pdf_to_images({"source_path": str(source), "output_name": "pages", "dpi": 300})
		)
		while task_requests.PDF_TO_IMAGES not in dispatcher.active_recipes:
			if task.done():
				break
			await asyncio.sleep(0.01)
		await dispatcher.shutdown()
		result = await asyncio.wait_for(task, timeout=60)
		return (result, dispatcher.active_count)

	result, active_count = asyncio.run(scenario())
	assert not result.success
	assert result.error_kind == config.ERROR_WORKER_FAULT
	assert "terminated" in result.error
	assert not (tmp_path / "pages.zip").exists()
	assert list(temp_root.glob(f"{config.SPLIT_DIR_PREFIX}*")) == []
	assert active_count == 0


#============================================
def test_no_task_starts_after_shutdown(tmp_path: pathlib.Path) -> None:
	source = pdf_fixtures.write_pdf(tmp_path / "source.pdf", [(100.0, 100.0)])

	async def scenario():
		dispatcher = orchestrator.Orchestrator()
		await dispatcher.shutdown()
		return await dispatcher.resize_document(_resize_params(source))

	result = asyncio.run(scenario())
	assert not result.success
	assert result.error_kind == config.ERROR_WORKER_FAULT
	assert not (tmp_path / "resized.pdf").exists()


#============================================
def test_orchestrators_are_not_kept_alive_by_exit_hook() -> None:
	"""
	One module-level exit hook covers every orchestrator without pinning it.
	"""
	dispatcher = orchestrator.Orchestrator()
	reference = weakref.ref(dispatcher)
	assert dispatcher in orchestrator.LIVE_ORCHESTRATORS
	del dispatcher
	gc.collect()
	assert reference() is None
	orchestrator.terminate_live_orchestrators()
