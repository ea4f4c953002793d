"""
CLI entry points for label composition tasks.
"""

# Standard Library
import argparse
import asyncio
import json
import pathlib
import sys
import time

# local repo modules
import shipping_label_composer as slc
import shipping_label_composer.config
import shipping_label_composer.orchestrator
import shipping_label_composer.task_requests


TaskResult = slc.config.TaskResult
MULTI_MERGE_IDS = slc.config.MULTI_MERGE_IDS
DEFAULT_PAGE_SIZE = slc.config.DEFAULT_PAGE_SIZE
DEFAULT_JPEG_QUALITY = slc.config.DEFAULT_JPEG_QUALITY
RENDER_DPI = slc.config.RENDER_DPI
ORIENTATIONS = slc.config.ORIENTATIONS
SCALE_MODES = slc.config.SCALE_MODES


#============================================
def load_layout(path: str) -> dict:
	"""
	Load an editor layout JSON file.

	The file holds editor_width, editor_height and a list of elements
	with id, x, y, width and height.

	Args:
		path: JSON path.

	Returns:
		Layout dict.

	Raises:
		ValueError: The file cannot be read or is not a JSON object.
	"""
	try:
		text = pathlib.Path(path).read_text(encoding="utf-8")
	except OSError as error:
		raise ValueError(f"cannot open {path}: {error}") from error
	try:
		layout = json.loads(text)
	except json.JSONDecodeError as error:
		raise ValueError(f"{path} is not valid JSON: {error}") from error
	if not isinstance(layout, dict):
		raise ValueError(f"{path} does not hold a JSON object")
	return layout


#============================================
def build_params(args: argparse.Namespace) -> tuple[str, dict]:
	"""
	Build task parameters from CLI args.

	Args:
		args: Parsed argparse namespace.

	Returns:
		Tuple of (recipe, params).
	"""
	if args.command == "resize":
		return (
			slc.task_requests.RESIZE_DOCUMENT,
			{
				"source_path": args.source,
				"width": args.width,
				"height": args.height,
				"output_name": args.output_name,
				"output_dir": args.output_dir,
			},
		)
	if args.command == "stacked":
		return (
			slc.task_requests.STACKED_LABEL,
			{
				"static_path": args.static,
				"repeating_path": args.repeating,
				"output_width_mm": args.width_mm,
				"output_height_mm": args.height_mm,
				"output_name": args.output_name,
				"output_dir": args.output_dir,
			},
		)
	if args.command in ("overlay", "merge"):
		layout = load_layout(args.layout)
		params = {
			"elements": layout.get("elements"),
			"editor_width": layout.get("editor_width"),
			"editor_height": layout.get("editor_height"),
			"output_width_mm": args.width_mm,
			"output_height_mm": args.height_mm,
			"output_name": args.output_name,
			"output_dir": args.output_dir,
		}
		if args.command == "merge":
			params["paths"] = args.sources
			return (slc.task_requests.MULTI_PAGE_MERGE, params)
		sources = []
		for entry in args.sources:
			element_id, _, path = entry.partition("=")
			sources.append({"id": element_id, "path": path})
		params["sources"] = sources
		params["repeating_id"] = args.repeating_id
		return (slc.task_requests.OVERLAY_LABEL, params)
	if args.command == "pdf-to-images":
		return (
			slc.task_requests.PDF_TO_IMAGES,
			{
				"source_path": args.source,
				"output_name": args.output_name,
				"output_dir": args.output_dir,
				"dpi": args.dpi,
			},
		)
	return (
		slc.task_requests.IMAGE_TO_PDF,
		{
			"image_paths": args.images,
			"page_size": args.page_size,
			"custom_width_mm": args.custom_width_mm,
			"custom_height_mm": args.custom_height_mm,
			"orientation": args.orientation,
			"scale_mode": args.scale_mode,
			"quality": args.quality,
			"output_path": args.output,
		},
	)


#============================================
def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
	"""
	Parse command line arguments.

	Returns:
		Parsed argparse namespace.
	"""
	parser = argparse.ArgumentParser(description="Compose and convert shipping label PDFs.")
	parser.add_argument("-v", "--verbose", dest="verbose", action="store_true", help="Print task progress.")
	subparsers = parser.add_subparsers(dest="command", required=True)

	resize = subparsers.add_parser("resize", help="Resize every page to a fixed size in points.")
	resize.add_argument("source", help="Source PDF.")
	resize.add_argument("-W", "--width", dest="width", type=float, required=True, help="Page width in points.")
	resize.add_argument("-H", "--height", dest="height", type=float, required=True, help="Page height in points.")

	stacked = subparsers.add_parser("stacked", help="Stack a repeating PDF over a static PDF.")
	stacked.add_argument("static", help="Static PDF, first page drawn in the bottom half.")
	stacked.add_argument("repeating", help="Repeating PDF, one output page per page.")

	overlay = subparsers.add_parser("overlay", help="Free layout label from 2 or 3 sources.")
	overlay.add_argument("sources", nargs="+", help="Sources as ELEMENT_ID=PATH.")
	overlay.add_argument("-r", "--repeating-id", dest="repeating_id", required=True, help="Element ID of the multi-page source.")
	overlay.add_argument("-l", "--layout", dest="layout", required=True, help="Layout JSON file.")

	merge = subparsers.add_parser("merge", help="Static + static + repeating label.")
	merge.add_argument("sources", nargs=3, help=f"Three PDFs bound to {', '.join(MULTI_MERGE_IDS)}.")
	merge.add_argument("-l", "--layout", dest="layout", required=True, help="Layout JSON file.")

	for label_parser in (stacked, overlay, merge):
		size_group = label_parser.add_argument_group("Label size")
		size_group.add_argument("-W", "--width-mm", dest="width_mm", type=float, default=70.0, help="Label width in mm.")
		size_group.add_argument("-H", "--height-mm", dest="height_mm", type=float, default=60.0, help="Label height in mm.")

	to_images = subparsers.add_parser("pdf-to-images", help="Convert PDF pages to a ZIP of JPEGs.")
	to_images.add_argument("source", help="Source PDF.")
	to_images.add_argument("-d", "--dpi", dest="dpi", type=int, default=RENDER_DPI, help="Render resolution.")

	for output_parser in (resize, stacked, overlay, merge, to_images):
		output_group = output_parser.add_argument_group("Output")
		output_group.add_argument("-o", "--output-name", dest="output_name", required=True, help="Output file name.")
		output_group.add_argument("-O", "--output-dir", dest="output_dir", default=None, help="Output directory.")

	to_pdf = subparsers.add_parser("images-to-pdf", help="Bundle images into a PDF.")
	to_pdf.add_argument("images", nargs="+", help="Images in page order.")
	to_pdf.add_argument("-o", "--output", dest="output", required=True, help="Output PDF path.")
	page_group = to_pdf.add_argument_group("Page")
	page_group.add_argument("-s", "--page-size", dest="page_size", default=DEFAULT_PAGE_SIZE, help="A4, Letter, Shein or custom.")
	page_group.add_argument("--custom-width-mm", dest="custom_width_mm", type=float, default=None, help="Custom page width in mm.")
	page_group.add_argument("--custom-height-mm", dest="custom_height_mm", type=float, default=None, help="Custom page height in mm.")
	page_group.add_argument("--orientation", dest="orientation", choices=ORIENTATIONS, default="portrait", help="Page orientation.")
	page_group.add_argument("--scale-mode", dest="scale_mode", choices=SCALE_MODES, default="aspectFit", help="Image scaling.")
	page_group.add_argument("-q", "--quality", dest="quality", type=float, default=DEFAULT_JPEG_QUALITY, help="JPEG quality 0-1.")

	args = parser.parse_args(argv)
	return args


#============================================
async def run_command(recipe: str, params: dict, verbose: bool = False) -> TaskResult:
	"""
	Run one command through the orchestrator.

	Args:
		recipe: Recipe name.
		params: Task parameters from build_params.
		verbose: Print task progress.

	Returns:
		TaskResult.
	"""
	async with slc.orchestrator.Orchestrator(verbose=verbose) as orchestrator:
		if recipe == slc.task_requests.PDF_TO_IMAGES:
			return await orchestrator.pdf_to_images(params)
		return await orchestrator.run_task(recipe, params)


#============================================
def print_result(result: TaskResult, elapsed: float) -> None:
	"""
	Print a task result summary.

	Args:
		result: TaskResult.
		elapsed: Seconds spent.
	"""
	if not result.success:
		print(f"Failed ({result.error_kind}): {result.error}")
		return
	print(f"Output written: {result.path}")
	if result.output_page_count is not None:
		print(f"Pages: {result.output_page_count}")
	if result.output_file_size is not None:
		print(f"Size: {result.output_file_size} bytes")
	if result.warning:
		print(f"Warning: {result.warning}")
	print(f"Timing: total={elapsed:.2f}s")


#============================================
def main(argv: list[str] | None = None) -> None:
	"""
	Main entry point.
	"""
	args = parse_args(argv)
	start_time = time.perf_counter()
	try:
		recipe, params = build_params(args)
	except ValueError as error:
		print(f"Cannot read layout: {error}")
		sys.exit(2)
	result = asyncio.run(run_command(recipe, params, args.verbose))
	print_result(result, time.perf_counter() - start_time)
	if not result.success:
		sys.exit(1)
