# ispy/services/spatial_index.py
"""
Hit-testing of game objects against a normalized pointer position.

Masks may overlap (a cup on a table, a label on a bottle). Clicks resolve to the
smallest object under the pointer first, and repeated clicks on the same stack
cycle through it so every object stays reachable.
"""
import logging
from typing import List, Optional, Sequence, Tuple

from ispy.models.game import GameObject, Point

logger = logging.getLogger("ispy.services.spatial_index")  # Logger for this module

def bounding_box(mask: Sequence[Point]) -> Tuple[float, float, float, float]:
    """Returns (min_x, min_y, max_x, max_y) of a mask."""
    xs = [p[0] for p in mask]
    ys = [p[1] for p in mask]
    return min(xs), min(ys), max(xs), max(ys)

def bounding_box_area(mask: Sequence[Point]) -> float:
    """Area of the mask's axis-aligned bounding box; degenerate masks have area 0."""
    if len(mask) < 3:
        return 0.0
    min_x, min_y, max_x, max_y = bounding_box(mask)
    return (max_x - min_x) * (max_y - min_y)

def point_in_polygon(point: Point, polygon: Sequence[Point]) -> bool:
    """
    Ray casting: a horizontal ray from the point crosses the polygon edges an odd
    number of times iff the point is inside. The half-open test on y counts a ray
    through a shared vertex exactly once.
    """
    if len(polygon) < 3:
        return False
    x, y = point
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if (yi > y) != (yj > y):
            crossing_x = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < crossing_x:
                inside = not inside
        j = i
    return inside

def hit_test(objects: Sequence[GameObject], point: Point) -> List[str]:
    """Ids of every object containing the point, smallest bounding box first.

    Ties keep detection order (sorted() is stable).
    """
    hits = [obj for obj in objects if point_in_polygon(point, obj.mask)]
    hits = sorted(hits, key=lambda obj: bounding_box_area(obj.mask))
    return [obj.id for obj in hits]

def resolve_click(
    objects: Sequence[GameObject],
    point: Point,
    previous_hit_set: Sequence[str],
    previous_cycle_index: int,
) -> Tuple[Optional[str], List[str], int]:
    """
    Resolves a click to (selected_id, new_hit_set, new_cycle_index).

    Clicking again on the same stack of objects (same ids, any order) advances
    through it; any other click starts over with the smallest object.
    """
    hit_set = hit_test(objects, point)
    if not hit_set:
        return None, [], 0

    if len(hit_set) > 1 and set(hit_set) == set(previous_hit_set):
        new_cycle_index = (previous_cycle_index + 1) % len(hit_set)
        logger.debug(f"Cycling stack of {len(hit_set)} objects at {point} to index {new_cycle_index}.")
        return hit_set[new_cycle_index], hit_set, new_cycle_index

    return hit_set[0], hit_set, 0

def _screen_rect(obj: GameObject) -> Optional[Tuple[float, float, float, float]]:
    """(left, top, width, height) of the object on screen, or None for degenerate masks."""
    if obj.bounding_box is not None:
        bb = obj.bounding_box
        return bb.x, bb.y, bb.width, bb.height
    if len(obj.mask) < 3:
        return None
    min_x, min_y, max_x, max_y = bounding_box(obj.mask)
    return min_x, min_y, max_x - min_x, max_y - min_y

def separate_hover(objects: Sequence[GameObject], point: Point) -> Optional[str]:
    """
    Object to reveal while the pointer hovers at `point`.

    Candidates are objects whose screen rectangle strictly contains the pointer;
    the smallest rectangle wins, mirroring click precedence so nested objects can
    be reached by hovering precisely. Ties keep detection order.
    """
    x, y = point
    best_id: Optional[str] = None
    best_area = float("inf")
    for obj in objects:
        rect = _screen_rect(obj)
        if rect is None:
            continue
        left, top, width, height = rect
        if not (left < x < left + width and top < y < top + height):
            continue
        area = width * height
        if area < best_area:
            best_id, best_area = obj.id, area
    return best_id
