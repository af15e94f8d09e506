"""Initial crawl targets: one map-search target per city."""
from __future__ import annotations

import logging
from typing import Dict, List, Tuple

from sqlalchemy.engine import Engine

from .store import TargetStore
from .types import SOURCE_MAP_SEARCH

logger = logging.getLogger("cafe-crawler")

US_CITIES = [
    "Seattle, WA", "Portland, OR", "San Francisco, CA", "Los Angeles, CA", "San Diego, CA",
    "Sacramento, CA", "San Jose, CA", "Oakland, CA", "Fresno, CA", "Long Beach, CA",
    "Anaheim, CA", "Irvine, CA", "Santa Ana, CA", "Riverside, CA", "Pasadena, CA",
    "Berkeley, CA", "Santa Barbara, CA", "Santa Cruz, CA", "Tacoma, WA", "Spokane, WA",
    "Eugene, OR", "Salem, OR", "Boise, ID", "Anchorage, AK", "Honolulu, HI",
    "Phoenix, AZ", "Tucson, AZ", "Mesa, AZ", "Scottsdale, AZ", "Las Vegas, NV",
    "Reno, NV", "Albuquerque, NM", "Santa Fe, NM", "El Paso, TX",
    "Denver, CO", "Colorado Springs, CO", "Boulder, CO", "Fort Collins, CO",
    "Salt Lake City, UT", "Provo, UT",
    "Austin, TX", "Houston, TX", "Dallas, TX", "San Antonio, TX", "Fort Worth, TX",
    "Arlington, TX", "Plano, TX", "Irving, TX", "Frisco, TX", "McKinney, TX",
    "Chicago, IL", "Detroit, MI", "Minneapolis, MN", "St. Paul, MN", "Milwaukee, WI",
    "Madison, WI", "Indianapolis, IN", "Columbus, OH", "Cleveland, OH", "Cincinnati, OH",
    "St. Louis, MO", "Kansas City, MO", "Omaha, NE", "Des Moines, IA", "Wichita, KS",
    "Ann Arbor, MI", "Grand Rapids, MI", "Bloomington, IN", "Champaign, IL",
    "New York, NY", "Brooklyn, NY", "Queens, NY", "Manhattan, NY", "Boston, MA",
    "Cambridge, MA", "Philadelphia, PA", "Pittsburgh, PA", "Baltimore, MD",
    "Washington, DC", "Newark, NJ", "Jersey City, NJ", "Providence, RI", "Hartford, CT",
    "New Haven, CT", "Buffalo, NY", "Rochester, NY", "Syracuse, NY", "Albany, NY",
    "Atlanta, GA", "Miami, FL", "Orlando, FL", "Tampa, FL", "Jacksonville, FL",
    "Charlotte, NC", "Raleigh, NC", "Durham, NC", "Nashville, TN", "Memphis, TN",
    "Knoxville, TN", "Louisville, KY", "Lexington, KY", "New Orleans, LA", "Baton Rouge, LA",
    "Birmingham, AL", "Charleston, SC", "Savannah, GA", "Richmond, VA", "Virginia Beach, VA",
    "Norfolk, VA", "Asheville, NC", "Greenville, SC", "Columbia, SC",
    "Oklahoma City, OK", "Tulsa, OK", "Little Rock, AR", "Fayetteville, AR",
    "Portland, ME", "Burlington, VT", "Manchester, NH", "Bozeman, MT", "Missoula, MT",
]

INTERNATIONAL_CITIES: List[Tuple[str, str, int]] = [
    ("Hanoi", "Vietnam", 15), ("Ho Chi Minh", "Vietnam", 15), ("Da Nang", "Vietnam", 15),
    ("Hai Phong", "Vietnam", 10), ("Can Tho", "Vietnam", 10), ("Nha Trang", "Vietnam", 10), ("Hue", "Vietnam", 10),
    ("Tokyo", "Japan", 20), ("Osaka", "Japan", 20), ("Kyoto", "Japan", 15),
    ("Nagoya", "Japan", 15), ("Yokohama", "Japan", 15), ("Fukuoka", "Japan", 15),
    ("Sapporo", "Japan", 15), ("Kobe", "Japan", 15),
    ("Seoul", "South Korea", 20), ("Busan", "South Korea", 15), ("Incheon", "South Korea", 15),
    ("Daegu", "South Korea", 15), ("Daejeon", "South Korea", 15),
    ("Shanghai", "China", 20), ("Beijing", "China", 20), ("Guangzhou", "China", 20),
    ("Shenzhen", "China", 20), ("Chengdu", "China", 15), ("Hangzhou", "China", 15),
    ("Nanjing", "China", 15), ("Wuhan", "China", 15), ("Xian", "China", 15),
    ("Taipei", "Taiwan", 20), ("Taichung", "Taiwan", 15), ("Kaohsiung", "Taiwan", 15), ("Tainan", "Taiwan", 15),
    ("Hong Kong", "Hong Kong", 20), ("Macau", "Macau", 10),
    ("Singapore", "Singapore", 20), ("Bangkok", "Thailand", 20), ("Chiang Mai", "Thailand", 15),
    ("Phuket", "Thailand", 10), ("Kuala Lumpur", "Malaysia", 20), ("Penang", "Malaysia", 15),
    ("Johor Bahru", "Malaysia", 10), ("Jakarta", "Indonesia", 20), ("Bali", "Indonesia", 15),
    ("Surabaya", "Indonesia", 15), ("Bandung", "Indonesia", 15), ("Manila", "Philippines", 20), ("Cebu", "Philippines", 15),
    ("Mumbai", "India", 20), ("Delhi", "India", 20), ("Bangalore", "India", 20),
    ("Hyderabad", "India", 15), ("Chennai", "India", 15), ("Kolkata", "India", 15), ("Pune", "India", 15),
    ("London", "UK", 20), ("Manchester", "UK", 15), ("Birmingham", "UK", 15),
    ("Edinburgh", "UK", 15), ("Glasgow", "UK", 15), ("Bristol", "UK", 15),
    ("Liverpool", "UK", 15), ("Leeds", "UK", 15), ("Dublin", "Ireland", 15),
    ("Berlin", "Germany", 20), ("Munich", "Germany", 20), ("Hamburg", "Germany", 15),
    ("Frankfurt", "Germany", 15), ("Cologne", "Germany", 15), ("Dusseldorf", "Germany", 15),
    ("Stuttgart", "Germany", 15), ("Essen", "Germany", 15),
    ("Paris", "France", 20), ("Lyon", "France", 15), ("Marseille", "France", 15),
    ("Toulouse", "France", 15), ("Nice", "France", 15), ("Bordeaux", "France", 15),
    ("Madrid", "Spain", 20), ("Barcelona", "Spain", 20), ("Valencia", "Spain", 15),
    ("Seville", "Spain", 15), ("Bilbao", "Spain", 15),
    ("Rome", "Italy", 20), ("Milan", "Italy", 20), ("Florence", "Italy", 15),
    ("Naples", "Italy", 15), ("Turin", "Italy", 15), ("Bologna", "Italy", 15),
    ("Amsterdam", "Netherlands", 20), ("Rotterdam", "Netherlands", 15), ("The Hague", "Netherlands", 15),
    ("Utrecht", "Netherlands", 15), ("Brussels", "Belgium", 15), ("Antwerp", "Belgium", 15),
    ("Stockholm", "Sweden", 15), ("Gothenburg", "Sweden", 15), ("Copenhagen", "Denmark", 15),
    ("Oslo", "Norway", 15), ("Helsinki", "Finland", 15),
    ("Prague", "Czech Republic", 20), ("Vienna", "Austria", 15), ("Zurich", "Switzerland", 15),
    ("Geneva", "Switzerland", 15), ("Warsaw", "Poland", 15), ("Krakow", "Poland", 15),
    ("Budapest", "Hungary", 15), ("Bucharest", "Romania", 15),
    ("Lisbon", "Portugal", 15), ("Porto", "Portugal", 15), ("Athens", "Greece", 15),
    ("Toronto", "Canada", 20), ("Vancouver", "Canada", 20), ("Montreal", "Canada", 20),
    ("Calgary", "Canada", 15), ("Edmonton", "Canada", 15), ("Ottawa", "Canada", 15),
    ("Quebec City", "Canada", 15), ("Winnipeg", "Canada", 15),
    ("Sydney", "Australia", 20), ("Melbourne", "Australia", 20), ("Brisbane", "Australia", 15),
    ("Perth", "Australia", 15), ("Adelaide", "Australia", 15), ("Auckland", "New Zealand", 15), ("Wellington", "New Zealand", 15),
    ("Mexico City", "Mexico", 20), ("Guadalajara", "Mexico", 15), ("Monterrey", "Mexico", 15),
    ("Sao Paulo", "Brazil", 20), ("Rio de Janeiro", "Brazil", 20), ("Curitiba", "Brazil", 15),
    ("Belo Horizonte", "Brazil", 15), ("Buenos Aires", "Argentina", 20), ("Santiago", "Chile", 15),
    ("Lima", "Peru", 15), ("Bogota", "Colombia", 15), ("Medellin", "Colombia", 15),
    ("Dubai", "UAE", 15), ("Abu Dhabi", "UAE", 15), ("Tel Aviv", "Israel", 15),
    ("Istanbul", "Turkey", 20), ("Ankara", "Turkey", 15),
    ("Cape Town", "South Africa", 15), ("Johannesburg", "South Africa", 15),
    ("Cairo", "Egypt", 15), ("Nairobi", "Kenya", 10), ("Lagos", "Nigeria", 10),
]


def seed_rows() -> List[Dict[str, object]]:
    rows: List[Dict[str, object]] = []
    for name in US_CITIES:
        rows.append({"name": name, "country": "United States", "region": "US", "max_results": 15})
    for name, country, max_results in INTERNATIONAL_CITIES:
        rows.append({"name": name, "country": country, "region": "International", "max_results": max_results})
    return rows


def seed_targets(engine: Engine) -> int:
    """Insert the city list unless any target exists already; returns rows added."""
    store = TargetStore(engine)
    with store.session() as conn:
        if store.count_targets(conn) > 0:
            logger.info("Targets already seeded")
            return 0
        rows = seed_rows()
        for row in rows:
            store.add_target(conn, source_type=SOURCE_MAP_SEARCH, **row)
    logger.info("Seeded %s targets", len(rows))
    return len(rows)
