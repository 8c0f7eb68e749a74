from .location import ( OutOfBoundsError, NearestBody, SynapseBodies, body_of_location,
                        nearest_body_of_location, bodies_of_locations, resolve_synapse, transform_bodies )
from .overlap import ( BestOverlap, OverlapTable, SuperpixelDriftError, overlap_analysis,
                       check_superpixel_drift, superpixel_drift, body_mapping )
