import itertools

import pytest

import shipping_label_composer.geometry as geometry


EPSILON = 1e-6
SIZES = [1.0, 37.5, 100.0, 198.43, 612.0]


#============================================
def test_mm_to_units() -> None:
	"""
	Check the fixed millimeter factor.
	"""
	assert geometry.mm_to_units(1.0) == pytest.approx(2.83465)
	assert geometry.mm_to_units(70.0) == pytest.approx(198.4255)
	assert geometry.mm_to_units(60.0) == pytest.approx(170.079)


#============================================
def test_aspect_fit_stays_inside_and_touches_an_edge() -> None:
	"""
	The fitted rectangle fits the destination and touches one edge pair.
	"""
	for src_w, src_h, dst_w, dst_h in itertools.product(SIZES, repeat=4):
		placement = geometry.aspect_fit(src_w, src_h, dst_w, dst_h)
		assert placement.width <= dst_w + EPSILON
		assert placement.height <= dst_h + EPSILON
		assert min(dst_w - placement.width, dst_h - placement.height) == pytest.approx(0.0, abs=1e-6)
		assert placement.x == pytest.approx((dst_w - placement.width) / 2.0)
		assert placement.y == pytest.approx((dst_h - placement.height) / 2.0)


#============================================
def test_aspect_fit_resize_scenario() -> None:
	"""
	A 200x300 page fitted into 100x100 is scaled by one third.
	"""
	placement = geometry.aspect_fit(200.0, 300.0, 100.0, 100.0)
	assert placement.scale == pytest.approx(1.0 / 3.0)
	assert placement.width == pytest.approx(66.6667, abs=1e-3)
	assert placement.height == pytest.approx(100.0)
	assert placement.x == pytest.approx(16.6667, abs=1e-3)
	assert placement.y == pytest.approx(0.0)


#============================================
@pytest.mark.parametrize("bad", [0.0, -5.0, float("nan"), float("inf"), "10", None, True])
def test_aspect_fit_rejects_bad_sizes(bad) -> None:
	"""
	Non-positive or non-numeric sizes fail fast.
	"""
	with pytest.raises(ValueError):
		geometry.aspect_fit(bad, 10.0, 10.0, 10.0)
	with pytest.raises(ValueError):
		geometry.aspect_fit(10.0, 10.0, 10.0, bad)


#============================================
def test_stretch_fills_destination() -> None:
	placement = geometry.stretch(120.0, 45.0)
	assert (placement.x, placement.y, placement.width, placement.height) == (0.0, 0.0, 120.0, 45.0)


#============================================
def test_stacked_halves_are_disjoint_and_confined() -> None:
	"""
	Each placement stays within its own half of the page.
	"""
	for dst_w, dst_h in itertools.product(SIZES, repeat=2):
		for top_size, bottom_size in [((300.0, 200.0), (100.0, 100.0)), ((10.0, 500.0), (500.0, 10.0))]:
			top, bottom = geometry.stacked_halves(dst_w, dst_h, top_size, bottom_size)
			half = dst_h / 2.0
			assert top.y >= half - EPSILON
			assert top.y + top.height <= dst_h + EPSILON
			assert bottom.y >= -EPSILON
			assert bottom.y + bottom.height <= half + EPSILON
			assert bottom.y + bottom.height <= top.y + EPSILON
			for placement in (top, bottom):
				assert placement.x >= -EPSILON
				assert placement.x + placement.width <= dst_w + EPSILON


#============================================
def test_stacked_label_scenario_bands() -> None:
	"""
	70x60 mm label: each band is 198.43 x 85.04 points.
	"""
	width = geometry.mm_to_units(70.0)
	height = geometry.mm_to_units(60.0)
	top_band, bottom_band = geometry.half_regions(width, height)
	for band in (top_band, bottom_band):
		assert band.width == pytest.approx(198.43, abs=0.01)
		assert band.height == pytest.approx(85.04, abs=0.01)
	assert top_band.y == pytest.approx(85.04, abs=0.01)
	assert bottom_band.y == 0.0

	top, bottom = geometry.stacked_halves(width, height, (300.0, 200.0), (100.0, 100.0))
	assert top.height == pytest.approx(85.04, abs=0.01)
	assert top.width == pytest.approx(127.56, abs=0.01)
	assert bottom.width == pytest.approx(85.04, abs=0.01)
	assert bottom.x == pytest.approx((width - bottom.width) / 2.0)


#============================================
def test_free_layout_flips_y_axis() -> None:
	"""
	An element at the editor top lands at the output top.
	"""
	rect = geometry.Rect(x=0.0, y=0.0, width=100.0, height=50.0)
	placement = geometry.free_layout_transform(rect, 400.0, 200.0, 200.0, 100.0)
	assert placement.x == 0.0
	assert placement.width == pytest.approx(50.0)
	assert placement.height == pytest.approx(25.0)
	assert placement.y == pytest.approx(75.0)
	assert placement.y + placement.height == pytest.approx(100.0)

	bottom_rect = geometry.Rect(x=200.0, y=150.0, width=200.0, height=50.0)
	bottom = geometry.free_layout_transform(bottom_rect, 400.0, 200.0, 200.0, 100.0)
	assert bottom.x == pytest.approx(100.0)
	assert bottom.y == pytest.approx(0.0)


#============================================
def test_free_layout_is_linear_in_output_size() -> None:
	"""
	Scaling the output size by k scales the placement by k.
	"""
	rect = geometry.Rect(x=12.0, y=30.0, width=80.0, height=40.0)
	base = geometry.free_layout_transform(rect, 300.0, 260.0, 198.43, 170.08)
	for factor in (0.5, 2.0, 3.25):
		scaled = geometry.free_layout_transform(rect, 300.0, 260.0, 198.43 * factor, 170.08 * factor)
		assert scaled.x == pytest.approx(base.x * factor)
		assert scaled.y == pytest.approx(base.y * factor)
		assert scaled.width == pytest.approx(base.width * factor)
		assert scaled.height == pytest.approx(base.height * factor)


#============================================
def test_free_layout_rejects_empty_editor() -> None:
	rect = geometry.Rect(x=0.0, y=0.0, width=1.0, height=1.0)
	with pytest.raises(ValueError):
		geometry.free_layout_transform(rect, 0.0, 100.0, 100.0, 100.0)
