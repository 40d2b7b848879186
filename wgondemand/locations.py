"""Static table of AWS commercial regions with approximate city coordinates."""

from .types import Location


def _loc(key: str, city: str, country: str, latitude: float, longitude: float) -> Location:
    return Location(key=key, city=city, country=country, latitude=latitude, longitude=longitude)


AWS_LOCATIONS: list[Location] = sorted(
    [
        _loc("af-south-1", "Cape Town", "South Africa", -33.9253, 18.4239),
        _loc("ap-east-1", "Hong Kong", "Hong Kong", 22.3050, 114.1850),
        _loc("ap-northeast-1", "Tokyo", "Japan", 35.6897, 139.6922),
        _loc("ap-northeast-2", "Seoul", "South Korea", 37.5600, 126.9900),
        _loc("ap-northeast-3", "Osaka", "Japan", 34.6939, 135.5022),
        _loc("ap-south-1", "Mumbai", "India", 19.0761, 72.8775),
        _loc("ap-south-2", "Hyderabad", "India", 17.3617, 78.4747),
        _loc("ap-southeast-1", "Singapore", "Singapore", 1.3000, 103.8000),
        _loc("ap-southeast-2", "Sydney", "Australia", -33.8678, 151.2100),
        _loc("ap-southeast-3", "Jakarta", "Indonesia", -6.1750, 106.8275),
        _loc("ap-southeast-4", "Melbourne", "Australia", -37.8142, 144.9631),
        _loc("ca-central-1", "Montreal", "Canada", 45.5089, -73.5617),
        _loc("ca-west-1", "Calgary", "Canada", 51.0500, -114.0667),
        _loc("eu-central-1", "Frankfurt", "Germany", 50.1106, 8.6822),
        _loc("eu-central-2", "Zurich", "Switzerland", 47.3744, 8.5411),
        _loc("eu-north-1", "Stockholm", "Sweden", 59.3294, 18.0686),
        _loc("eu-south-1", "Milan", "Italy", 45.4669, 9.1900),
        _loc("eu-south-2", "Madrid", "Spain", 40.4169, -3.7033),
        _loc("eu-west-1", "Dublin", "Ireland", 53.3497, -6.2603),
        _loc("eu-west-2", "London", "United Kingdom", 51.5072, -0.1275),
        _loc("eu-west-3", "Paris", "France", 48.8567, 2.3522),
        _loc("il-central-1", "Tel Aviv", "Israel", 32.0800, 34.7800),
        _loc("me-central-1", "Dubai", "United Arab Emirates", 25.2631, 55.2972),
        _loc("me-south-1", "Manama", "Bahrain", 26.2167, 50.5833),
        _loc("sa-east-1", "Sao Paulo", "Brazil", -23.5500, -46.6333),
        _loc("us-east-1", "Ashburn", "United States", 39.0437, -77.4875),
        _loc("us-east-2", "Columbus", "United States", 39.9622, -83.0006),
        _loc("us-west-1", "San Francisco", "United States", 37.7558, -122.4449),
        _loc("us-west-2", "Portland", "United States", 45.5372, -122.6500),
    ],
    key=lambda loc: loc["key"],
)
