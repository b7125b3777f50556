import logging
from enum import Enum
from typing import Any, Callable

from .errors import MalformedArgumentsError, UnrecognizedToolError
from .models import ToolCall, ToolResponse
from .store import CartStore, CatalogStore

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    GET_PRODUCTS = "getProducts"
    GET_NUMBER_OF_PRODUCTS = "getNumberOfProducts"
    FILTER_PRODUCTS = "filterProducts"
    ADD_TO_CART = "addToCart"
    REMOVE_FROM_CART = "removeFromCart"


def _product_list_schema(description: str) -> dict:
    return {
        "type": "array",
        "description": description,
        "items": {
            "type": "object",
            "description": "A single product with its name.",
            "properties": {
                "name": {"type": "string", "description": "The name of the product."},
            },
            "required": ["name"],
        },
    }


TOOLS = [
    {
        "type": "function",
        "function": {
            "name": ToolName.FILTER_PRODUCTS.value,
            "description": (
                "Update the visible inventory by filtering the available products. "
                "This will not change the cart. Requires an array of products to filter by. "
                "An empty array shows every product again."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "productsToFilter": _product_list_schema("Products to keep visible"),
                },
                "required": ["productsToFilter"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ToolName.GET_NUMBER_OF_PRODUCTS.value,
            "description": "Get a count of the number of products available in the inventory.",
            "parameters": {"type": "object", "properties": {}},
        },
    },
    {
        "type": "function",
        "function": {
            "name": ToolName.GET_PRODUCTS.value,
            "description": "Get an array of the products with the name and price of each product.",
            "parameters": {"type": "object", "properties": {}},
        },
    },
    {
        "type": "function",
        "function": {
            "name": ToolName.ADD_TO_CART.value,
            "description": "Add one or more products to the cart. Repeat a product to add several units.",
            "parameters": {
                "type": "object",
                "properties": {
                    "productsToAdd": _product_list_schema("Products to add, one entry per unit"),
                },
                "required": ["productsToAdd"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ToolName.REMOVE_FROM_CART.value,
            "description": "Remove one or more products from the cart.",
            "parameters": {
                "type": "object",
                "properties": {
                    "productsToRemove": _product_list_schema("Products to remove, one entry per unit"),
                },
                "required": ["productsToRemove"],
            },
        },
    },
]

if {tool["function"]["name"] for tool in TOOLS} != {name.value for name in ToolName}:
    raise RuntimeError("TOOLS declarations and ToolName members are out of sync")


def _product_names(call: ToolCall, key: str) -> list[str]:
    """Pull the ``[{name: ...}, ...]`` list out of a call's arguments."""
    items = call.arguments.get(key) if isinstance(call.arguments, dict) else None
    if not isinstance(items, list):
        raise MalformedArgumentsError(call.name, f"'{key}' must be a list of products")

    names = []
    for item in items:
        name = item.get("name") if isinstance(item, dict) else None
        if not isinstance(name, str):
            raise MalformedArgumentsError(call.name, f"every entry of '{key}' needs a string 'name'")
        names.append(name)
    return names


class ToolDispatcher:
    """Runs call-requests against the catalog and cart stores."""

    def __init__(self, catalog: CatalogStore, cart: CartStore):
        self.catalog = catalog
        self.cart = cart
        self._handlers: dict[ToolName, Callable[[ToolCall], dict[str, Any]]] = {
            ToolName.GET_PRODUCTS: self._get_products,
            ToolName.GET_NUMBER_OF_PRODUCTS: self._get_number_of_products,
            ToolName.FILTER_PRODUCTS: self._filter_products,
            ToolName.ADD_TO_CART: self._add_to_cart,
            ToolName.REMOVE_FROM_CART: self._remove_from_cart,
        }
        missing = set(ToolName) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for tools: {sorted(m.value for m in missing)}")

    def handle(self, call: ToolCall) -> ToolResponse:
        try:
            tool = ToolName(call.name)
        except ValueError:
            raise UnrecognizedToolError(call.name) from None

        result = self._handlers[tool](call)
        logger.info("%s(%s) -> %s", call.name, call.arguments, result)
        return ToolResponse(name=call.name, result=result)

    def _get_products(self, call: ToolCall) -> dict[str, Any]:
        return {"products": [p.to_dict() for p in self.catalog.get_all()]}

    def _get_number_of_products(self, call: ToolCall) -> dict[str, Any]:
        return {"numberOfItems": len(self.catalog.get_all())}

    def _filter_products(self, call: ToolCall) -> dict[str, Any]:
        names = _product_names(call, "productsToFilter")
        self.catalog.set_filter(names)
        return {"numberOfProductsFiltered": len(names)}

    def _add_to_cart(self, call: ToolCall) -> dict[str, Any]:
        names = _product_names(call, "productsToAdd")
        added = sum(1 for name in names if self.cart.add(name))
        return {"numberOfProductsAdded": added}

    def _remove_from_cart(self, call: ToolCall) -> dict[str, Any]:
        names = _product_names(call, "productsToRemove")
        removed = sum(1 for name in names if self.cart.remove(name))
        return {"numberOfProductsRemoved": removed}
