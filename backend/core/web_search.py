"""
Spirit lookup through SerpApi.

Without a SERPAPI_KEY the search degrades to what can be derived from the
query alone, so the add-bottle form still gets a spirit type and, for well
known brands, a bottle image.
"""
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from core.config import settings

logger = logging.getLogger(__name__)

SERPAPI_URL = "https://serpapi.com/search"
SEARCH_TIMEOUT_SECONDS = 8.0

SPIRIT_TYPES = (
    ("bourbon", "bourbon"),
    ("scotch", "scotch"),
    ("single malt", "scotch"),
    ("rye", "rye"),
    ("irish", "irish whiskey"),
    ("japanese", "japanese whisky"),
    ("tennessee", "tennessee whiskey"),
    ("tequila", "tequila"),
    ("mezcal", "tequila"),
    ("rum", "rum"),
    ("gin", "gin"),
    ("vodka", "vodka"),
)

KNOWN_BOTTLE_IMAGES = {
    "buffalo trace": "https://www.buffalotracedistillery.com/content/dam/buffalotrace/products/buffalo-trace-bourbon-product.png",
    "eagle rare": "https://www.buffalotracedistillery.com/content/dam/buffalotrace/products/eagle-rare-bourbon-product.png",
    "weller": "https://www.buffalotracedistillery.com/content/dam/buffalotrace/products/weller-special-reserve-product.png",
    "wild turkey": "https://www.wildturkeybourbon.com/wp-content/uploads/2023/09/wt-101-750.png",
    "makers mark": "https://www.makersmark.com/sites/default/files/bottle/makers-mark-bottle_0.png",
    "woodford reserve": "https://www.woodfordreserve.com/wp-content/uploads/2022/01/Woodford_BTL_Straight_Bourbon.png",
    "four roses": "https://www.fourrosesbourbon.com/wp-content/uploads/2022/03/FR-Bottle-Single-Barrel.png",
    "old forester": "https://www.oldforester.com/wp-content/uploads/2021/09/100proof-bottle-min.png",
}

IMAGE_URL_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|webp)($|\?)", re.IGNORECASE)
PRICE_PATTERN = re.compile(r"[0-9]+(\.[0-9]+)?")


class WebSearchError(Exception):
    pass


def detect_spirit_type(query: str) -> str:
    lowered = query.lower()
    for marker, spirit_type in SPIRIT_TYPES:
        if marker in lowered:
            return spirit_type
    return "bourbon"


def known_bottle_image(query: str, distillery: str = "") -> Optional[str]:
    haystack = f"{query} {distillery}".lower()
    for brand, url in KNOWN_BOTTLE_IMAGES.items():
        if brand in haystack:
            return url
    return None


def title_case(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split())


def is_usable_image_url(url: Optional[str]) -> bool:
    if not url or url in ("null", "undefined"):
        return False
    if url.startswith("data:image/"):
        return True
    return url.startswith("http") and (bool(IMAGE_URL_PATTERN.search(url)) or "image" in url)


def extract_price_range(shopping_results: List[Dict[str, Any]]) -> Optional[Dict[str, float]]:
    prices = []
    for item in shopping_results:
        match = PRICE_PATTERN.search(str(item.get("price") or ""))
        if match:
            prices.append(float(match.group(0)))
    if not prices:
        return None
    return {"low": min(prices), "avg": round(sum(prices) / len(prices), 2), "high": max(prices)}


def build_result(query: str, distillery: str, release_year: str, serp: Dict[str, Any]) -> Dict[str, Any]:
    """Shape a SerpApi response into the payload the add-bottle form expects"""
    results = []
    for item in (serp.get("organic_results") or [])[:4]:
        link = item.get("link")
        if not link:
            continue
        results.append({
            "title": item.get("title") or "No title available",
            "description": item.get("snippet") or item.get("description") or "No description available",
            "source": urlparse(link).hostname or "",
            "url": link,
        })

    knowledge = serp.get("knowledge_graph") or {}
    distillery_name = distillery or knowledge.get("title") or " ".join(query.split()[:2])

    return {
        "query": query,
        "results": results,
        "relatedInfo": {
            "distillery": {
                "name": title_case(distillery_name),
                "location": knowledge.get("location") or "",
                "founded": knowledge.get("founded") or knowledge.get("established") or "",
                "description": knowledge.get("description") or "",
            },
            "product": {
                "type": detect_spirit_type(query),
                "price": extract_price_range(serp.get("shopping_results") or []),
                "releaseYear": release_year or None,
                "imageUrl": knowledge.get("image_url") or known_bottle_image(query, distillery),
                "webImageUrl": None,
            },
        },
    }


class WebSearchClient:
    def __init__(self, api_key: str, transport=None):
        self.api_key = api_key
        self.client = httpx.AsyncClient(timeout=SEARCH_TIMEOUT_SECONDS, transport=transport)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _get(self, params: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = await self.client.get(SERPAPI_URL, params={**params, "api_key": self.api_key})
        except httpx.TimeoutException:
            raise WebSearchError("Web search timed out")
        except httpx.RequestError as e:
            raise WebSearchError(f"Web search failed: {e}")
        if response.status_code >= 400:
            raise WebSearchError(f"Search provider returned {response.status_code}")
        return response.json()

    async def find_bottle_image(self, query: str, distillery: str = "") -> Optional[str]:
        data = await self._get({
            "q": f"{query} {distillery} bottle whiskey bourbon".strip(),
            "engine": "google_images",
            "num": "10",
        })
        images = data.get("images_results") or []
        # Bottles photograph taller than wide
        for image in images:
            height, width = image.get("height"), image.get("width")
            if height and width and height / width > 1.2 and is_usable_image_url(image.get("original")):
                return image["original"]
        for image in images[:5]:
            if is_usable_image_url(image.get("original")):
                return image["original"]
        return None

    async def search(self, query: str, distillery: str = "", release_year: str = "") -> Dict[str, Any]:
        if not self.api_key:
            logger.warning("SERPAPI_KEY not set, returning query-derived data only")
            return build_result(query, distillery, release_year, {})

        search_query = f"{query} {distillery} {release_year} whiskey bourbon information"
        serp = await self._get({"q": " ".join(search_query.split()), "engine": "google"})
        result = build_result(query, distillery, release_year, serp)

        try:
            image = await self.find_bottle_image(query, distillery)
        except WebSearchError as e:
            logger.warning(f"Bottle image search failed: {e}")
            image = None
        product = result["relatedInfo"]["product"]
        product["webImageUrl"] = image or known_bottle_image(query, distillery) or product["imageUrl"]
        return result


_web_search: Optional[WebSearchClient] = None


def get_web_search_client() -> WebSearchClient:
    global _web_search
    if _web_search is None:
        _web_search = WebSearchClient(settings.serpapi_key)
    return _web_search


async def close_web_search_client() -> None:
    global _web_search
    if _web_search is not None:
        await _web_search.aclose()
        _web_search = None
