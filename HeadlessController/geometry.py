#!/usr/bin/env python3

"""
Click target geometry.

Quads come from the browser as flat lists of eight numbers,
``[x1, y1, x2, y2, x3, y3, x4, y4]``, in CSS pixels relative to the viewport.
"""

from typing import List, Optional, Sequence, Tuple

Point = Tuple[float, float]

# Quads with a clipped area at or below this are treated as invisible
MIN_QUAD_AREA = 1e-3


def quad_points(quad: Sequence[float]) -> List[Point]:
    if len(quad) != 8:
        raise ValueError("A quad has exactly 8 coordinates, got {}".format(len(quad)))
    return [(quad[i], quad[i + 1]) for i in range(0, 8, 2)]


def clip_to_viewport(points: List[Point], width: float, height: float) -> List[Point]:
    return [(min(max(x, 0), width), min(max(y, 0), height)) for x, y in points]


def polygon_area(points: List[Point]) -> float:
    """Shoelace formula."""
    area = 0.0
    for i, (x1, y1) in enumerate(points):
        x2, y2 = points[(i + 1) % len(points)]
        area += x1 * y2 - x2 * y1
    return abs(area) / 2


def centroid(points: List[Point]) -> Point:
    return (
        sum(x for x, _ in points) / len(points),
        sum(y for _, y in points) / len(points),
    )


def compute_click_point(quads: Sequence[Sequence[float]], viewport_width: float, viewport_height: float) -> Optional[Point]:
    """
    Pick the point to click for an element.

    Each quad is clipped to the viewport and quads with no remaining area
    are skipped. The centre of the first quad left is returned.

    Returns:
        (x, y), or None if no quad is visible
    """
    for quad in quads:
        points = clip_to_viewport(quad_points(quad), viewport_width, viewport_height)
        if polygon_area(points) > MIN_QUAD_AREA:
            return centroid(points)
    return None


def rect_to_quad(left: float, top: float, width: float, height: float) -> List[float]:
    """Express a DOMRect as a quad, clockwise from the top left corner."""
    right = left + width
    bottom = top + height
    return [left, top, right, top, right, bottom, left, bottom]
