"""
Routines for resolving stack locations (e.g. synapse annotations) to body IDs,
by reading the superpixel tile under each location and mapping the
superpixel through the stack's superpixel->body map.
"""
from collections import namedtuple

from ..geometry import Point2d, Point3d, NO_BODY, pixels_at_radius, as_body_set, as_point3d
from ..io_util.tiles import TILE_SIZE, tile_filename, tile_coordinates, get_superpixel_id
from ..io_util.superpixel_maps import Superpixel

import logging
logger = logging.getLogger(__name__)

# Nearest-body searches examine rings of radius 0..MAX_SEARCH_RADIUS (inclusive).
MAX_SEARCH_RADIUS = 5


class OutOfBoundsError(RuntimeError):
    pass


# Result of a nearest-body search.
# If no body was found, body is 0, radius is one past the largest radius searched,
# and point is the queried location.
NearestBody = namedtuple('NearestBody', 'body radius point')

# Result of resolving all annotations of a synapse.
# tbar is a NearestBody, psds is a list of NearestBody (one per PSD, in order),
# and unresolved lists the locations (T-bar and/or PSDs) that resolved to no body.
SynapseBodies = namedtuple('SynapseBodies', 'tbar psds unresolved')


def _check_bounds(stack, pt):
    bounds = stack.bounds
    if not bounds.include(pt):
        raise OutOfBoundsError(f"Location {pt} falls outside stack boundaries: {bounds} (stack: {stack})")


def _location_tile(stack, pt):
    """
    Returns:
        (labels, (row, col), (x, y))
        where labels is the decoded tile containing pt
        and (x, y) is pt's offset within that tile.
    """
    (row, col), tile_xy = tile_coordinates(pt.x, pt.y)
    labels = stack.read_tile(tile_filename(row, col, pt.z))
    return labels, (row, col), tile_xy


def body_of_location(stack, pt):
    """
    Read the superpixel tile that contains the given point (in stack space)
    and return the body ID of the superpixel under it.

    If the point falls on a zero (unlabeled) superpixel, a warning is logged
    and 0 is returned.  Callers must handle that case themselves.

    Raises:
        OutOfBoundsError if the point is not within the stack's bounds.
    """
    pt = as_point3d(pt)
    _check_bounds(stack, pt)
    stack.ensure_loaded()

    labels, _, (tile_x, tile_y) = _location_tile(stack, pt)
    label = get_superpixel_id(labels, tile_x, tile_y)
    if label == 0:
        logger.warning(f"Location falls in ZERO SUPERPIXEL: {pt}")
        return NO_BODY
    return stack.superpixel_to_body(Superpixel(pt.z, label))


def nearest_body_of_location(stack, pt, exclude_bodies=(), avoid_bodies=(), max_radius=MAX_SEARCH_RADIUS):
    """
    Find the body nearest to the given point, searching square rings
    of increasing radius (0..max_radius) within the point's tile.
    (The search never crosses into neighboring tiles.)

    Selection rules:

      - Bodies in exclude_bodies are never returned.
      - The first body found at the smallest radius that is NOT in avoid_bodies
        is returned immediately.
      - If only bodies in avoid_bodies are found, the one found first
        (at the smallest radius) is returned once the search is exhausted.
      - If no body is found at all, the result has body 0 and radius max_radius+1.

    Typical usage: when resolving a synapse, exclude the T-bar's own body
    and avoid the bodies already chosen for sibling PSDs.

    Returns:
        NearestBody(body, radius, point), where point is the (global) location
        at which the body was found.
    """
    pt = as_point3d(pt)
    _check_bounds(stack, pt)
    stack.ensure_loaded()

    exclude_bodies = as_body_set(exclude_bodies)
    avoid_bodies = as_body_set(avoid_bodies)

    labels, (row, col), (tile_x, tile_y) = _location_tile(stack, pt)
    tile_height, tile_width = labels.shape
    center = Point2d(tile_x, tile_y)

    fallback = None
    for radius in range(max_radius+1):
        for pixel in pixels_at_radius(center, radius, tile_width-1, tile_height-1):
            label = get_superpixel_id(labels, pixel.x, pixel.y)
            if label == 0:
                continue

            body = stack.superpixel_to_body(Superpixel(pt.z, label))
            if body == NO_BODY or body in exclude_bodies:
                continue

            found_pt = Point3d(col*TILE_SIZE + pixel.x, row*TILE_SIZE + pixel.y, pt.z)
            if body not in avoid_bodies:
                return NearestBody(body, radius, found_pt)

            if fallback is None:
                fallback = NearestBody(body, radius, found_pt)

    if fallback is not None:
        logger.warning(f"Location {pt} could only be resolved to an already-used body "
                       f"({fallback.body}, radius {fallback.radius})")
        return fallback

    logger.warning(f"Could not find any body within radius {max_radius} of {pt}")
    return NearestBody(NO_BODY, max_radius+1, pt)


def bodies_of_locations(stack, points):
    """
    Resolve many locations to bodies.

    Returns:
        (location_to_body, zero_count)
        where location_to_body is a dict of { Point3d: body }
        and zero_count is the number of locations that resolved to body 0.
    """
    location_to_body = {}
    zero_count = 0
    for pt in points:
        pt = as_point3d(pt)
        body = body_of_location(stack, pt)
        location_to_body[pt] = body
        if body == NO_BODY:
            zero_count += 1

    if zero_count:
        logger.warning(f"{zero_count} of {len(location_to_body)} locations did not resolve to a body")
    return location_to_body, zero_count


def resolve_synapse(stack, tbar, psds, max_radius=MAX_SEARCH_RADIUS):
    """
    Resolve a T-bar and its PSDs to bodies, such that
    (where possible) no PSD shares a body with the T-bar or with another PSD.

    Returns:
        SynapseBodies
    """
    unresolved = []

    tbar_result = nearest_body_of_location(stack, tbar, max_radius=max_radius)
    exclude_bodies = set()
    if tbar_result.body == NO_BODY:
        unresolved.append(as_point3d(tbar))
    else:
        exclude_bodies.add(tbar_result.body)

    chosen_bodies = set()
    psd_results = []
    for psd in psds:
        psd_result = nearest_body_of_location(stack, psd, exclude_bodies, chosen_bodies, max_radius)
        psd_results.append(psd_result)
        if psd_result.body == NO_BODY:
            unresolved.append(as_point3d(psd))
        else:
            chosen_bodies.add(psd_result.body)

    return SynapseBodies(tbar_result, psd_results, unresolved)


def transform_bodies(location_to_body, body_to_body):
    """
    Apply a body->body mapping (e.g. derived from an overlap analysis)
    to a location->body mapping.  Locations with body 0 are left alone.

    Returns:
        (transformed, altered_count)

    Raises:
        RuntimeError if any body is missing from body_to_body.
        (Each missing body is logged before raising.)
    """
    transformed = {}
    num_errors = 0
    altered = 0
    unaltered = 0
    for location, body in location_to_body.items():
        if body == NO_BODY:
            transformed[location] = body
            continue

        try:
            target_body = body_to_body[body]
        except KeyError:
            logger.error(f"Body->body map does not contain body {body} (at {location})")
            num_errors += 1
            continue

        transformed[location] = target_body
        if target_body != body:
            altered += 1
        else:
            unaltered += 1

    if num_errors > 0:
        raise RuntimeError(f"Aborting... found {num_errors} errors when transforming bodies.")

    logger.info(f"Transformed {altered} of {altered+unaltered} bodies")
    return transformed, altered
