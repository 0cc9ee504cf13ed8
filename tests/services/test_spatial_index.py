# tests/services/test_spatial_index.py
import pytest
from pydantic import ValidationError

from ispy.models.game import BoundingBox, GameObject
from ispy.services import spatial_index
from conftest import square

DIAMOND = [(0.5, 0.0), (1.0, 0.5), (0.5, 1.0), (0.0, 0.5)]
# L-shape: the top-right quarter is cut away
L_SHAPE = [(0.0, 0.0), (0.5, 0.0), (0.5, 0.5), (1.0, 0.5), (1.0, 1.0), (0.0, 1.0)]


def make_object(object_id: str, mask, bounding_box=None) -> GameObject:
    return GameObject(id=object_id, label=object_id, mask=mask, color="hsla(0, 70%, 50%, 0.6)", bounding_box=bounding_box)


def test_point_in_polygon_square():
    polygon = square(0.2, 0.2, 0.6, 0.6)
    assert spatial_index.point_in_polygon((0.4, 0.4), polygon)
    assert not spatial_index.point_in_polygon((0.7, 0.4), polygon)
    assert not spatial_index.point_in_polygon((0.4, 0.1), polygon)


def test_point_in_polygon_concave_notch_is_outside():
    assert spatial_index.point_in_polygon((0.25, 0.25), L_SHAPE)
    assert spatial_index.point_in_polygon((0.75, 0.75), L_SHAPE)
    assert not spatial_index.point_in_polygon((0.75, 0.25), L_SHAPE)


def test_ray_through_vertices_counts_once():
    # y = 0.5 passes exactly through the left and right vertices of the diamond
    assert spatial_index.point_in_polygon((0.5, 0.5), DIAMOND)
    assert spatial_index.point_in_polygon((0.2, 0.5), DIAMOND)
    assert not spatial_index.point_in_polygon((-0.2, 0.5), DIAMOND)
    assert not spatial_index.point_in_polygon((1.2, 0.5), DIAMOND)


def test_degenerate_polygon_never_contains():
    assert not spatial_index.point_in_polygon((0.5, 0.5), [])
    assert not spatial_index.point_in_polygon((0.5, 0.5), [(0.0, 0.0), (1.0, 1.0)])


def test_bounding_box_area():
    assert spatial_index.bounding_box_area(square(0.1, 0.2, 0.5, 0.7)) == pytest.approx(0.2)
    assert spatial_index.bounding_box_area([(0.1, 0.1), (0.9, 0.9)]) == 0.0
    assert spatial_index.bounding_box_area([]) == 0.0


def test_hit_test_orders_smallest_first():
    objects = [
        make_object("big", square(0.0, 0.0, 1.0, 1.0)),
        make_object("small", square(0.4, 0.4, 0.6, 0.6)),
        make_object("medium", square(0.3, 0.3, 0.8, 0.8)),
    ]
    assert spatial_index.hit_test(objects, (0.5, 0.5)) == ["small", "medium", "big"]
    assert spatial_index.hit_test(objects, (0.1, 0.1)) == ["big"]


def test_hit_test_ties_keep_detection_order():
    objects = [make_object("first", square(0.2, 0.2, 0.6, 0.6)), make_object("second", square(0.2, 0.2, 0.6, 0.6))]
    assert spatial_index.hit_test(objects, (0.4, 0.4)) == ["first", "second"]


def test_hit_test_skips_degenerate_masks():
    sliver = [(0.0, 0.0), (0.5, 0.5), (1.0, 1.0)]  # Collinear, encloses no area
    objects = [make_object("sliver", sliver), make_object("box", square(0.0, 0.0, 1.0, 1.0))]
    assert spatial_index.hit_test(objects, (0.5, 0.5)) == ["box"]


def test_resolve_click_cycles_through_stack():
    objects = [make_object("big", square(0.0, 0.0, 1.0, 1.0)), make_object("small", square(0.4, 0.4, 0.6, 0.6))]
    point = (0.5, 0.5)

    selected, hit_set, index = spatial_index.resolve_click(objects, point, [], 0)
    assert (selected, hit_set, index) == ("small", ["small", "big"], 0)

    selected, hit_set, index = spatial_index.resolve_click(objects, point, hit_set, index)
    assert (selected, index) == ("big", 1)

    selected, hit_set, index = spatial_index.resolve_click(objects, point, hit_set, index)
    assert (selected, index) == ("small", 0)


def test_resolve_click_new_stack_starts_over():
    objects = [
        make_object("big", square(0.0, 0.0, 1.0, 1.0)),
        make_object("small", square(0.4, 0.4, 0.6, 0.6)),
    ]
    # Previous click cycled to "big"; a click on a different stack resets the cycle
    selected, hit_set, index = spatial_index.resolve_click(objects, (0.1, 0.1), ["small", "big"], 1)
    assert (selected, hit_set, index) == ("big", ["big"], 0)


def test_resolve_click_single_hit_never_cycles():
    objects = [make_object("only", square(0.0, 0.0, 1.0, 1.0))]
    selected, hit_set, index = spatial_index.resolve_click(objects, (0.5, 0.5), ["only"], 0)
    assert (selected, hit_set, index) == ("only", ["only"], 0)


def test_resolve_click_on_empty_space():
    objects = [make_object("box", square(0.0, 0.0, 0.5, 0.5))]
    assert spatial_index.resolve_click(objects, (0.9, 0.9), ["box"], 0) == (None, [], 0)


def test_separate_hover_prefers_smallest_rectangle():
    objects = [
        make_object("big", square(0.0, 0.0, 1.0, 1.0)),
        make_object("small", square(0.4, 0.4, 0.6, 0.6)),
    ]
    assert spatial_index.separate_hover(objects, (0.5, 0.5)) == "small"
    assert spatial_index.separate_hover(objects, (0.1, 0.1)) == "big"


def test_separate_hover_uses_supplied_bounding_box():
    # The mask covers the center but the on-screen rectangle sits in the corner
    obj = make_object("boxed", square(0.4, 0.4, 0.6, 0.6), bounding_box=BoundingBox(x=0.0, y=0.0, width=0.2, height=0.2))
    assert spatial_index.separate_hover([obj], (0.1, 0.1)) == "boxed"
    assert spatial_index.separate_hover([obj], (0.5, 0.5)) is None


def test_separate_hover_border_and_empty():
    objects = [make_object("box", square(0.2, 0.2, 0.6, 0.6))]
    assert spatial_index.separate_hover(objects, (0.2, 0.4)) is None
    assert spatial_index.separate_hover(objects, (0.9, 0.9)) is None
    assert spatial_index.separate_hover([], (0.5, 0.5)) is None


def test_mask_points_are_clamped_to_unit_square():
    obj = make_object("clamped", [(1.5, -0.2), (0.5, 0.5), (0.0, 1.0)])
    assert obj.mask == [(1.0, 0.0), (0.5, 0.5), (0.0, 1.0)]


@pytest.mark.parametrize("mask", [[], [(0.2, 0.2)], [(0.0, 0.0), (1.0, 1.0)]])
def test_game_object_needs_three_mask_points(mask):
    with pytest.raises(ValidationError):
        make_object("short", mask)
