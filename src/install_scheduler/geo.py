"""
Geographic utilities module.

Provides:
- Haversine distance between coordinates (miles)
- Travel time estimates from distance with an urban/rural speed model
- Proximity clustering of jobs for routing
- Job-to-job distance matrices
"""

import math
from collections import defaultdict
from typing import Dict, List, Optional

from .config import get_settings
from .models import (
    Address,
    Coordinates,
    DistanceMatrix,
    DistanceMatrixEntry,
    GeographicCluster,
    Installation,
)

EARTH_RADIUS_MILES = 3959

# Average speeds (mph) and multipliers for traffic and route complexity
URBAN_SPEED_MPH = 25
RURAL_SPEED_MPH = 45
URBAN_BUFFER = 1.3
RURAL_BUFFER = 1.1

URBAN_CITIES = {
    'new york', 'los angeles', 'chicago', 'houston', 'phoenix',
    'philadelphia', 'san antonio', 'san diego', 'dallas', 'san jose',
    'austin', 'jacksonville', 'fort worth', 'columbus', 'charlotte',
    'san francisco', 'indianapolis', 'seattle', 'denver', 'washington',
    'boston', 'detroit', 'nashville', 'memphis', 'portland',
    'oklahoma city', 'las vegas', 'louisville', 'baltimore', 'milwaukee',
    'albuquerque', 'tucson', 'fresno', 'sacramento', 'kansas city',
    'mesa', 'atlanta', 'omaha', 'colorado springs', 'raleigh',
}

# Metro bounding boxes: (south, north, west, east)
URBAN_BOUNDS = {
    'NYC Metro': (40.4774, 40.9176, -74.2591, -73.7004),
    'LA Metro': (33.7037, 34.3373, -118.6682, -117.6462),
    'Chicago Metro': (41.6445, 42.0231, -87.9401, -87.5244),
    'Houston Metro': (29.5226, 30.1107, -95.8236, -95.0139),
    'Phoenix Metro': (33.2477, 33.8122, -112.8275, -111.5967),
    'SF Bay Area': (37.1839, 37.9298, -123.5331, -121.4944),
    'Seattle Metro': (47.4815, 47.7511, -122.4594, -122.2244),
    'Denver Metro': (39.5501, 39.9142, -105.2368, -104.6091),
}

ORIGIN = Coordinates(lat=0.0, lng=0.0)


def calculate_distance(point1: Coordinates, point2: Coordinates) -> float:
    """
    Great-circle (Haversine) distance between two points.

    Args:
        point1: First coordinate.
        point2: Second coordinate.

    Returns:
        float: Distance in miles, rounded to 2 decimals.
    """
    lat1, lng1 = math.radians(point1.lat), math.radians(point1.lng)
    lat2, lng2 = math.radians(point2.lat), math.radians(point2.lng)

    dlat = lat2 - lat1
    dlng = lng2 - lng1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_MILES * c, 2)


def estimate_travel_time(distance: float, is_urban: bool = True) -> int:
    """
    Estimates driving time for a distance.

    Urban trips assume 25 mph with a 1.3 traffic multiplier, rural trips
    45 mph with 1.1.

    Returns:
        int: Minutes, rounded.
    """
    speed = URBAN_SPEED_MPH if is_urban else RURAL_SPEED_MPH
    multiplier = URBAN_BUFFER if is_urban else RURAL_BUFFER
    return int(round(distance / speed * 60 * multiplier))


def is_urban_area(address: Address) -> bool:
    """City-name heuristic for whether an address is urban."""
    return address.city.strip().lower() in URBAN_CITIES


def is_urban_by_coordinates(coordinates: Coordinates) -> bool:
    """Whether a point falls inside one of the known metro bounding boxes."""
    for south, north, west, east in URBAN_BOUNDS.values():
        if south <= coordinates.lat <= north and west <= coordinates.lng <= east:
            return True
    return False


def _cluster_center(jobs: List[Installation]) -> Coordinates:
    coords = [job.address.coordinates for job in jobs if job.address.coordinates]
    if not coords:
        return ORIGIN
    return Coordinates(
        lat=sum(c.lat for c in coords) / len(coords),
        lng=sum(c.lng for c in coords) / len(coords),
    )


def _cluster_radius(jobs: List[Installation], center: Coordinates) -> float:
    distances = [calculate_distance(center, job.address.coordinates) for job in jobs if job.address.coordinates]
    return max(distances, default=0.0)


def create_geographic_clusters(
    jobs: List[Installation],
    max_cluster_radius: Optional[float] = None,
    min_jobs: Optional[int] = None,
) -> List[GeographicCluster]:
    """
    Groups geocoded jobs into proximity clusters.

    Each unclustered job seeds a cluster and pulls in every other unclustered
    job within max_cluster_radius of the seed. Groups smaller than min_jobs
    are split into single-job clusters so every geocoded job belongs to
    exactly one cluster. Jobs without coordinates are left out.

    Args:
        jobs: Jobs to cluster.
        max_cluster_radius: Seed radius in miles (default from settings, 25).
        min_jobs: Minimum jobs for a multi-job cluster (default from settings, 2).

    Returns:
        List[GeographicCluster]: Clusters in seed order.
    """
    settings = get_settings()
    if max_cluster_radius is None:
        max_cluster_radius = settings["cluster_radius_miles"]
    if min_jobs is None:
        min_jobs = settings["min_jobs_per_cluster"]

    clusters: List[GeographicCluster] = []
    processed = set()

    for job in jobs:
        if job.id in processed or not job.address.coordinates:
            continue

        members = [job]
        processed.add(job.id)
        for other in jobs:
            if other.id in processed or not other.address.coordinates:
                continue
            if calculate_distance(job.address.coordinates, other.address.coordinates) <= max_cluster_radius:
                members.append(other)
                processed.add(other.id)

        if len(members) >= min_jobs:
            center = _cluster_center(members)
            radius = _cluster_radius(members, center)
            # Co-located members give a zero radius
            density = len(members) / (math.pi * radius * radius) if radius > 0 else float(len(members))
            clusters.append(GeographicCluster(
                id=f"cluster_{len(clusters) + 1}",
                center=center,
                jobs=members,
                radius=radius,
                density=density,
            ))
        else:
            for single in members:
                clusters.append(GeographicCluster(
                    id=f"cluster_single_{single.id}",
                    center=single.address.coordinates,
                    jobs=[single],
                    radius=0.0,
                    density=1.0,
                ))

    return clusters


def build_distance_matrix(jobs: List[Installation]) -> DistanceMatrix:
    """
    Builds an all-pairs job distance matrix.

    Jobs without coordinates are placed at (0, 0), so their distances are
    meaningless but present. Durations use the urban model when the origin
    lies in a known metro area.

    Returns:
        DistanceMatrix: from job id -> to job id -> entry.
    """
    matrix: DistanceMatrix = {}
    for origin in jobs:
        origin_coords = origin.address.coordinates or ORIGIN
        is_urban = is_urban_by_coordinates(origin_coords)
        row: Dict[str, DistanceMatrixEntry] = {}
        for destination in jobs:
            distance = calculate_distance(origin_coords, destination.address.coordinates or ORIGIN)
            row[destination.id] = DistanceMatrixEntry(
                distance=distance,
                duration=estimate_travel_time(distance, is_urban),
                route=f"{origin.address.city} to {destination.address.city}",
            )
        matrix[origin.id] = row
    return matrix


def calculate_geographic_spread(jobs: List[Installation]) -> float:
    """Largest pairwise distance (miles) between geocoded jobs; 0 for fewer than two."""
    coords = [job.address.coordinates for job in jobs if job.address.coordinates]
    spread = 0.0
    for i, first in enumerate(coords):
        for second in coords[i + 1:]:
            spread = max(spread, calculate_distance(first, second))
    return spread


def group_jobs_by_state(jobs: List[Installation]) -> Dict[str, List[Installation]]:
    """Groups jobs by upper-cased address state."""
    grouped = defaultdict(list)
    for job in jobs:
        grouped[job.address.state.upper()].append(job)
    return dict(grouped)
