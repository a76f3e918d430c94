from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from app.logging_config import get_logger

logger = get_logger("catalog_service")

SEARCH_LIMIT = 10
FEATURED_LIMIT = 8

CATALOG_QUERY = text(
    """
    SELECT
        p.id,
        p.name,
        p.price,
        p.description,
        p.sizes,
        p.colors,
        c.name AS category,
        (
            SELECT url FROM product_images
            WHERE product_id = p.id AND is_primary = true
            LIMIT 1
        ) AS image_url
    FROM products p
    LEFT JOIN categories c ON p.category_id = c.id
    WHERE p.is_active = true
    ORDER BY p.created_at DESC
    LIMIT :limit
    """
)


@dataclass(frozen=True)
class CatalogItem:
    id: str
    name: str
    price: Decimal
    category: Optional[str] = None
    sizes: tuple[str, ...] = ()
    colors: tuple[str, ...] = ()
    description: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "CatalogItem":
        price = Decimal(str(row["price"] or 0))
        return cls(
            id=str(row["id"]),
            name=row["name"],
            price=max(price, Decimal("0")),
            category=row.get("category"),
            sizes=tuple(row.get("sizes") or ()),
            colors=tuple(row.get("colors") or ()),
            description=row.get("description"),
            image_url=row.get("image_url"),
        )

    def matches(self, query: str) -> bool:
        return any(query in (field or "").lower() for field in (self.name, self.category, self.description))


class CatalogCache:
    """Read-only snapshot of purchasable products shared by all conversations.

    The snapshot is an immutable tuple that is swapped as a whole on refresh,
    so readers always see either the old or the new catalog, never a mix.
    """

    def __init__(self, session_factory: Callable[[], Session], *, max_items: int = 100):
        self._session_factory = session_factory
        self._max_items = max_items
        self._items: tuple[CatalogItem, ...] = ()

    @property
    def size(self) -> int:
        return len(self._items)

    def all(self) -> list[CatalogItem]:
        return list(self._items)

    def replace(self, items: Iterable[CatalogItem]) -> None:
        self._items = tuple(items)

    def refresh(self) -> bool:
        """Reload the catalog from the product store. Keeps the old snapshot on failure."""
        db = self._session_factory()
        try:
            rows = db.execute(CATALOG_QUERY, {"limit": self._max_items}).mappings().all()
            items = [CatalogItem.from_row(row) for row in rows]
        except Exception as e:
            logger.error(f"Catalog refresh failed, keeping {self.size} cached products: {e}")
            return False
        finally:
            db.close()

        self.replace(items)
        logger.info(f"Catalog loaded: {len(items)} products")
        return True

    def get(self, product_id: str) -> Optional[CatalogItem]:
        for item in self._items:
            if item.id == product_id:
                return item
        return None

    def search(self, query: str) -> list[CatalogItem]:
        """Case-insensitive substring search over name, category and description."""
        normalized = (query or "").strip().lower()
        if not normalized:
            return []
        results = []
        for item in self._items:
            if item.matches(normalized):
                results.append(item)
                if len(results) >= SEARCH_LIMIT:
                    break
        return results

    def find_by_name(self, token: str) -> Optional[CatalogItem]:
        """First product whose name contains ``token`` (case-insensitive)."""
        normalized = (token or "").lower()
        if not normalized:
            return None
        for item in self._items:
            if normalized in item.name.lower():
                return item
        return None

    def by_style(self, style: Optional[str], limit: int = FEATURED_LIMIT) -> list[CatalogItem]:
        items = self._items
        if style:
            items = [item for item in items if style in (item.description or "").lower()]
        return list(items[:limit])

    def head(self, limit: int) -> list[CatalogItem]:
        return list(self._items[:limit])
