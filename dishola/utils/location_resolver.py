"""
Location resolver: request location fallback, neighborhood lookup by
coordinates, and optional reverse geocoding.
"""
from dataclasses import dataclass, asdict
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import unquote

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential

from dishola.search.models import Location
from dishola.utils.config import get_settings
from dishola.utils.logger import app_logger

DEFAULT_LOCATION = Location(lat="37.7897", long="-122.3942", address="100 First St, San Francisco, CA")

# (name, min_lat, max_lat, min_lng, max_lng)
Bounds = Tuple[str, float, float, float, float]

CITY_NEIGHBORHOODS: List[Tuple[Tuple[float, float, float, float], List[Bounds]]] = [
    # San Francisco
    ((37.7, 37.82, -122.52, -122.35), [
        ("Mission", 37.748, 37.765, -122.426, -122.401),
        ("SoMa", 37.765, 37.789, -122.42, -122.39),
        ("Financial District", 37.789, 37.799, -122.41, -122.392),
        ("North Beach", 37.797, 37.81, -122.417, -122.395),
        ("Marina", 37.797, 37.81, -122.446, -122.42),
        ("Pacific Heights", 37.787, 37.797, -122.446, -122.42),
        ("Hayes Valley", 37.773, 37.78, -122.43, -122.418),
        ("Castro", 37.757, 37.767, -122.44, -122.425),
        ("Haight-Ashbury", 37.764, 37.775, -122.452, -122.435),
        ("Sunset", 37.74, 37.765, -122.51, -122.46),
        ("Richmond", 37.765, 37.785, -122.51, -122.46),
        ("Noe Valley", 37.74, 37.755, -122.44, -122.42),
        ("Dogpatch", 37.75, 37.765, -122.4, -122.385),
        ("Potrero Hill", 37.75, 37.765, -122.41, -122.39),
        ("Chinatown", 37.79, 37.799, -122.415, -122.4),
        ("Russian Hill", 37.797, 37.805, -122.425, -122.41),
        ("Lower Haight", 37.77, 37.775, -122.435, -122.425),
        ("Tenderloin", 37.78, 37.789, -122.42, -122.405),
        ("Japantown", 37.78, 37.788, -122.435, -122.425),
        ("Presidio", 37.785, 37.81, -122.485, -122.445),
        ("Embarcadero", 37.79, 37.81, -122.405, -122.385),
    ]),
    # New York City
    ((40.49, 40.915, -74.25, -73.7), [
        ("Manhattan", 40.7, 40.82, -74.02, -73.92),
        ("Brooklyn", 40.57, 40.74, -74.04, -73.83),
        ("Queens", 40.54, 40.8, -73.95, -73.7),
        ("Bronx", 40.785, 40.915, -73.93, -73.765),
        ("Staten Island", 40.49, 40.65, -74.25, -74.05),
    ]),
    # Austin
    ((30.22, 30.32, -97.8, -97.68), [
        ("Downtown Austin", 30.26, 30.29, -97.76, -97.73),
        ("South Congress", 30.23, 30.26, -97.76, -97.74),
        ("East Austin", 30.26, 30.29, -97.73, -97.7),
        ("Hyde Park", 30.29, 30.31, -97.74, -97.72),
        ("Zilker", 30.25, 30.27, -97.78, -97.76),
    ]),
]


@dataclass
class LocationInfo:
    """Coordinates with whatever place names could be resolved."""
    lat: str
    long: str
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    displayName: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name) if headers else None
    return unquote(value) if value else None


def location_from_request(params: Mapping[str, str], headers: Mapping[str, str]) -> Location:
    """Query parameters first, then Vercel geo headers, then the default location."""
    lat, long = params.get("lat"), params.get("long")
    if lat and long:
        return Location(lat=lat, long=long, address=params.get("address") or "")

    header_lat = _header(headers, "x-vercel-ip-latitude")
    header_long = _header(headers, "x-vercel-ip-longitude")
    if header_lat and header_long:
        parts = [
            _header(headers, "x-vercel-ip-city"),
            _header(headers, "x-vercel-ip-country-region"),
            _header(headers, "x-vercel-ip-country"),
        ]
        return Location(lat=header_lat, long=header_long, address=", ".join(p for p in parts if p))

    return DEFAULT_LOCATION.model_copy()


def get_neighborhood_from_coords(lat: float, lng: float) -> Optional[str]:
    """Neighborhood name for coordinates in San Francisco, New York City or Austin."""
    for (min_lat, max_lat, min_lng, max_lng), neighborhoods in CITY_NEIGHBORHOODS:
        if not (min_lat <= lat <= max_lat and min_lng <= lng <= max_lng):
            continue
        for name, n_min_lat, n_max_lat, n_min_lng, n_max_lng in neighborhoods:
            if n_min_lat <= lat <= n_max_lat and n_min_lng <= lng <= n_max_lng:
                return name
    return None


def get_neighborhood_info(lat: str, lng: str, headers: Optional[Mapping[str, str]] = None) -> LocationInfo:
    info = LocationInfo(lat=lat, long=lng, city=_header(headers or {}, "x-vercel-ip-city"))
    try:
        info.neighborhood = get_neighborhood_from_coords(float(lat), float(lng))
    except ValueError:
        info.neighborhood = None

    if info.neighborhood and info.city:
        info.displayName = f"{info.neighborhood}, {info.city}"
    else:
        info.displayName = info.neighborhood or info.city or f"{lat}, {lng}"
    return info


class ReverseGeocoder:
    """Look up place names with a Nominatim-compatible endpoint."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.settings = get_settings()
        self.client = client

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.5, min=0.5, max=2), reraise=True)
    async def _fetch(self, client: httpx.AsyncClient, lat: str, lng: str) -> dict:
        response = await client.get(
            self.settings.reverse_geocode_url,
            params={"lat": lat, "lon": lng, "format": "jsonv2", "zoom": 16},
            headers={"User-Agent": "dishola-search"},
        )
        response.raise_for_status()
        return response.json()

    async def lookup(self, lat: str, lng: str) -> Optional[Dict[str, Optional[str]]]:
        """Return ``{neighborhood, city}`` or None on any failure."""
        try:
            if self.client is not None:
                data = await self._fetch(self.client, lat, lng)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    data = await self._fetch(client, lat, lng)
        except Exception as e:
            app_logger.warning(f"Reverse geocoding failed for {lat},{lng}: {e}")
            return None

        address = data.get("address") or {}
        return {
            "neighborhood": address.get("neighbourhood") or address.get("suburb"),
            "city": address.get("city") or address.get("town") or address.get("village"),
        }


async def resolve_location_info(lat: str, lng: str, headers: Optional[Mapping[str, str]] = None,
                                geocoder: Optional[ReverseGeocoder] = None) -> LocationInfo:
    """Bounding-box lookup, filled in by reverse geocoding when enabled."""
    info = get_neighborhood_info(lat, lng, headers)
    if not get_settings().reverse_geocode_enabled or (info.neighborhood and info.city):
        return info

    found = await (geocoder or ReverseGeocoder()).lookup(lat, lng)
    if not found:
        return info

    info.neighborhood = info.neighborhood or found["neighborhood"]
    info.city = info.city or found["city"]
    if info.neighborhood and info.city:
        info.displayName = f"{info.neighborhood}, {info.city}"
    else:
        info.displayName = info.neighborhood or info.city or info.displayName
    return info
