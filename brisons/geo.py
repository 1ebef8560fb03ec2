from math import asin, cos, radians, sin, sqrt

EARTH_RADIUS_KM = 6371


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the great circle distance between two points on the earth (km)."""
    lon1, lat1, lon2, lat2 = map(radians, [lon1, lat1, lon2, lat2])
    dlon = lon2 - lon1
    dlat = lat2 - lat1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return 2 * asin(sqrt(a)) * EARTH_RADIUS_KM


def coordinates(location):
    """(lat, lng) from a location dict, or None if either is missing."""
    if not location:
        return None
    lat, lng = location.get("lat"), location.get("lng")
    if lat is None or lng is None:
        return None
    return float(lat), float(lng)


def validate_coordinates(lat, lng):
    """Return floats, or raise ValueError when out of range or not numbers."""
    lat, lng = float(lat), float(lng)
    if not -90 <= lat <= 90:
        raise ValueError("latitude must be between -90 and 90")
    if not -180 <= lng <= 180:
        raise ValueError("longitude must be between -180 and 180")
    return lat, lng


# Ranking strategies: (agents, origin) -> agents in preference order.

def by_rating(agents, origin=None):
    return sorted(agents, key=lambda a: (-float(a.get("rating") or 0), -a.get("total_deliveries", 0)))


def nearest_first(agents, origin):
    """Nearest agents first; agents with no known location go last, by rating."""
    origin = coordinates(origin)
    if origin is None:
        return by_rating(agents)

    def key(agent):
        here = coordinates(agent.get("location"))
        if here is None:
            return (1, float("inf"), -float(agent.get("rating") or 0))
        return (0, haversine_km(origin[0], origin[1], here[0], here[1]), -float(agent.get("rating") or 0))

    ranked = sorted(agents, key=key)
    for agent in ranked:
        here = coordinates(agent.get("location"))
        if here is not None:
            agent["distance_km"] = round(haversine_km(origin[0], origin[1], here[0], here[1]), 2)
    return ranked
