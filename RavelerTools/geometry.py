"""
Integer voxel coordinates, bounding boxes, and body-id sets.

Points are expressed in Raveler stack coordinates: X increases to the right,
Y increases downward, and Z is the slice number.  (Note that this is XYZ order,
not the ZYX order used for numpy volumes.)
"""
from collections import namedtuple

# The 0 body is reserved for edges/background, or for "no body found".
NO_BODY = 0


class Point2d(namedtuple('Point2d', 'x y')):
    __slots__ = ()

    def sqr_distance(self, other):
        dx = self.x - other.x
        dy = self.y - other.y
        return dx*dx + dy*dy

    def __str__(self):
        return f"({self.x},{self.y})"


class Point3d(namedtuple('Point3d', 'x y z')):
    __slots__ = ()

    def xy(self):
        return Point2d(self.x, self.y)

    def sqr_distance(self, other):
        dx = self.x - other.x
        dy = self.y - other.y
        dz = self.z - other.z
        return dx*dx + dy*dy + dz*dz

    def __str__(self):
        return f"({self.x},{self.y},{self.z})"


class Bounds3d(namedtuple('Bounds3d', 'min_pt max_pt')):
    """
    Axis-aligned bounding box.  Unlike numpy-style boxes,
    BOTH corners are inclusive.
    """
    __slots__ = ()

    def include(self, pt):
        """
        Return True if the given point lies within the box (inclusive on all sides).
        """
        for axis in range(3):
            if self.min_pt[axis] > pt[axis] or self.max_pt[axis] < pt[axis]:
                return False
        return True

    def __str__(self):
        return f"{Point3d(*self.min_pt)} {Point3d(*self.max_pt)}"


def pixels_at_radius(center, radius, max_x, max_y):
    """
    Return the pixels of the square ring at (Chebyshev) distance 'radius'
    from 'center', clipped to the rectangle [0,max_x] x [0,max_y].

    The ring is returned as up to four segments, in this order:
    top row, bottom row (ascending x), left column, right column (ascending y).
    A segment whose fixed coordinate lies outside the rectangle is omitted entirely.
    The left/right columns do not repeat the corner pixels of the top/bottom rows,
    so an unclipped ring contains exactly 8*radius pixels.

    Example:

        >>> pixels_at_radius(Point2d(0,0), 1, 10, 10)
        [Point2d(x=0, y=1), Point2d(x=1, y=1), Point2d(x=1, y=0)]
    """
    x, y = int(center[0]), int(center[1])
    if radius == 0:
        return [Point2d(x, y)]

    r = radius
    min_x_coord = max(0, x-r)
    max_x_coord = min(max_x, x+r)

    # The columns skip the corner rows (y-r and y+r)
    min_col_y = max(0, y-r+1)
    max_col_y = min(max_y, y+r-1)

    pixels = []

    # top
    if 0 <= y-r <= max_y:
        pixels.extend( Point2d(ix, y-r) for ix in range(min_x_coord, max_x_coord+1) )

    # bottom
    if 0 <= y+r <= max_y:
        pixels.extend( Point2d(ix, y+r) for ix in range(min_x_coord, max_x_coord+1) )

    # left
    if 0 <= x-r <= max_x:
        pixels.extend( Point2d(x-r, iy) for iy in range(min_col_y, max_col_y+1) )

    # right
    if 0 <= x+r <= max_x:
        pixels.extend( Point2d(x+r, iy) for iy in range(min_col_y, max_col_y+1) )

    return pixels


def as_point3d(pt):
    """
    Convert any (x, y, z) sequence into a Point3d of python ints.
    Numpy coordinates (often uint32) would otherwise wrap around
    when a radius is subtracted from them.
    """
    return Point3d(*map(int, pt))


def as_body_set(bodies):
    """
    Normalize an iterable of body IDs (possibly numpy integers) into a set of python ints.
    """
    return { int(b) for b in bodies }
