from typing import Iterable

from .models import CartOverviewLine, Product

DEFAULT_PRODUCTS = (
    Product("Apple", 0.99, "products/apples.jpg"),
    Product("Banana", 0.59, "products/bananas.jpg"),
    Product("Orange", 0.79, "products/oranges.jpg"),
    Product("Milk", 3.99, "products/milk.jpg"),
    Product("Bread", 2.49, "products/bread.jpg"),
    Product("Eggs", 4.99, "products/eggs.jpg"),
    Product("Cheese", 5.99, "products/cheese.jpg"),
    Product("Yogurt", 1.99, "products/yogurt.jpg"),
    Product("Chicken", 7.99, "products/chicken.jpg"),
    Product("Rice", 2.99, "products/rice.jpg"),
)


class CatalogStore:
    """Fixed product list plus the current name filter."""

    def __init__(self, products: Iterable[Product] = DEFAULT_PRODUCTS):
        self._products = tuple(products)
        self._criteria: tuple[str, ...] = ()

    def get_all(self) -> tuple[Product, ...]:
        return self._products

    def find(self, name: str) -> Product | None:
        key = name.casefold()
        for product in self._products:
            if product.key == key:
                return product
        return None

    @property
    def filter_criteria(self) -> tuple[str, ...]:
        return self._criteria

    def set_filter(self, names: Iterable[str]) -> None:
        """Replace the filter criteria. An empty list shows everything."""
        self._criteria = tuple(name.casefold() for name in names)

    def get_visible(self) -> tuple[Product, ...]:
        if not self._criteria:
            return self._products
        wanted = set(self._criteria)
        return tuple(p for p in self._products if p.key in wanted)


class CartStore:
    def __init__(self, catalog: CatalogStore):
        self.catalog = catalog
        self._lines: list[Product] = []

    def add(self, name: str) -> bool:
        """Add one unit of a catalog product. Returns False if it is not in the catalog."""
        product = self.catalog.find(name)
        if product is None:
            return False
        self._lines.append(product)
        return True

    def remove(self, name: str) -> bool:
        """Remove the first cart line with this name."""
        key = name.casefold()
        for index, line in enumerate(self._lines):
            if line.key == key:
                del self._lines[index]
                return True
        return False

    def clear(self) -> None:
        self._lines.clear()

    def snapshot(self) -> tuple[Product, ...]:
        return tuple(self._lines)

    def count(self) -> int:
        return len(self._lines)

    def total(self) -> float:
        return sum(line.price for line in self._lines)

    def overview(self) -> list[CartOverviewLine]:
        """Cart grouped by product, in the order each product was first added."""
        grouped: dict[str, CartOverviewLine] = {}
        for line in self._lines:
            entry = grouped.get(line.key)
            if entry:
                entry.quantity += 1
            else:
                grouped[line.key] = CartOverviewLine(name=line.name, price=line.price, quantity=1)
        return list(grouped.values())
