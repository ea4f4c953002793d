"""
Placement math for composing label pages.

Output space is PDF points with the origin at the bottom-left corner.
Editor space is the layout canvas of the shell, origin top-left, Y down.
"""

# Standard Library
import dataclasses
import math

# local repo modules
import shipping_label_composer as slc
import shipping_label_composer.config


MM_TO_POINTS = slc.config.MM_TO_POINTS


@dataclasses.dataclass(frozen=True)
class Placement:
	x: float
	y: float
	width: float
	height: float
	scale: float = 1.0


@dataclasses.dataclass(frozen=True)
class Rect:
	x: float
	y: float
	width: float
	height: float


#============================================
def _require_positive(**values: float) -> None:
	for name, value in values.items():
		if not isinstance(value, (int, float)) or isinstance(value, bool):
			raise ValueError(f"{name} must be a number, got {value!r}")
		if not math.isfinite(value) or value <= 0.0:
			raise ValueError(f"{name} must be positive, got {value!r}")


#============================================
def mm_to_units(value: float) -> float:
	"""
	Convert millimeters to output units (points).

	Args:
		value: Millimeter value.

	Returns:
		Points value.
	"""
	return value * MM_TO_POINTS


#============================================
def aspect_fit(src_width: float, src_height: float, dst_width: float, dst_height: float) -> Placement:
	"""
	Scale a source rectangle to fit inside a destination and center it.

	Args:
		src_width: Source width.
		src_height: Source height.
		dst_width: Destination width.
		dst_height: Destination height.

	Returns:
		Placement relative to the destination origin.
	"""
	_require_positive(
		src_width=src_width,
		src_height=src_height,
		dst_width=dst_width,
		dst_height=dst_height,
	)
	scale = min(dst_width / src_width, dst_height / src_height)
	draw_width = src_width * scale
	draw_height = src_height * scale
	offset_x = (dst_width - draw_width) / 2.0
	offset_y = (dst_height - draw_height) / 2.0
	return Placement(offset_x, offset_y, draw_width, draw_height, scale)


#============================================
def stretch(dst_width: float, dst_height: float) -> Placement:
	"""
	Fill the destination exactly, ignoring the source aspect ratio.
	"""
	_require_positive(dst_width=dst_width, dst_height=dst_height)
	return Placement(0.0, 0.0, dst_width, dst_height, 1.0)


#============================================
def offset_placement(placement: Placement, dx: float, dy: float) -> Placement:
	"""
	Move a placement into a region whose origin is (dx, dy).
	"""
	return dataclasses.replace(placement, x=placement.x + dx, y=placement.y + dy)


#============================================
def half_regions(dst_width: float, dst_height: float) -> tuple[Placement, Placement]:
	"""
	Split a page into top and bottom bands of equal height.

	Args:
		dst_width: Page width.
		dst_height: Page height.

	Returns:
		Tuple of (top_band, bottom_band) in output units.
	"""
	_require_positive(dst_width=dst_width, dst_height=dst_height)
	band_height = dst_height / 2.0
	top = Placement(0.0, band_height, dst_width, band_height)
	bottom = Placement(0.0, 0.0, dst_width, band_height)
	return (top, bottom)


#============================================
def fit_into_region(src_width: float, src_height: float, region: Placement) -> Placement:
	"""
	Aspect-fit a source into a region placed somewhere on the page.
	"""
	fitted = aspect_fit(src_width, src_height, region.width, region.height)
	return offset_placement(fitted, region.x, region.y)


#============================================
def stacked_halves(
	dst_width: float,
	dst_height: float,
	top_size: tuple[float, float],
	bottom_size: tuple[float, float],
) -> tuple[Placement, Placement]:
	"""
	Aspect-fit two sources into the top and bottom halves of a page.

	Args:
		dst_width: Page width.
		dst_height: Page height.
		top_size: (width, height) of the source drawn in the top band.
		bottom_size: (width, height) of the source drawn in the bottom band.

	Returns:
		Tuple of (top_placement, bottom_placement).
	"""
	top_band, bottom_band = half_regions(dst_width, dst_height)
	top = fit_into_region(top_size[0], top_size[1], top_band)
	bottom = fit_into_region(bottom_size[0], bottom_size[1], bottom_band)
	return (top, bottom)


#============================================
def free_layout_transform(
	rect: Rect,
	editor_width: float,
	editor_height: float,
	out_width: float,
	out_height: float,
) -> Placement:
	"""
	Map an editor rectangle onto the output page.

	Args:
		rect: Rectangle in editor coordinates (Y down).
		editor_width: Editor canvas width.
		editor_height: Editor canvas height.
		out_width: Output page width in points.
		out_height: Output page height in points.

	Returns:
		Placement in output coordinates (Y up).
	"""
	_require_positive(
		editor_width=editor_width,
		editor_height=editor_height,
		out_width=out_width,
		out_height=out_height,
	)
	scale_x = out_width / editor_width
	scale_y = out_height / editor_height
	width = rect.width * scale_x
	height = rect.height * scale_y
	x = rect.x * scale_x
	y = out_height - rect.y * scale_y - height
	return Placement(x, y, width, height, 1.0)
