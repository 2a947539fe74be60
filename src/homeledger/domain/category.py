"""Category domain service and category-hint resolution."""

from typing import Optional
import logging

from homeledger.database.base import Database
from homeledger.domain.entities import Category
from homeledger.domain.errors import NotFoundError, ValidationError
from homeledger.utils.cache import TTLCache

logger = logging.getLogger(__name__)

_NAME_INDEX_KEY = "category-name-index"


class CategoryService:
    """Service for managing categories."""

    def __init__(self, db: Database):
        """Initialize category service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_category(self, name: str, parent_path: Optional[str] = None) -> int:
        """Create a category.

        Args:
            name: Category name
            parent_path: Optional parent category path (e.g., "Food & Dining")

        Returns:
            Category ID

        Raises:
            ValidationError: If the name is empty or contains the path separator
            NotFoundError: If parent category doesn't exist
        """
        name = name.strip()
        if not name:
            raise ValidationError("Category name cannot be empty")
        if ">" in name:
            raise ValidationError("Category name cannot contain '>'")

        parent_id = None
        if parent_path is not None:
            parent = self.db.get_category_by_path(parent_path)
            if parent is None:
                raise NotFoundError(f"Parent category '{parent_path}' not found")
            parent_id = parent.id

        return self.db.create_category(name=name, parent_id=parent_id)

    def get_category(self, category_id: int) -> Optional[Category]:
        """Get category by ID.

        Args:
            category_id: Category ID

        Returns:
            Category entity or None if not found
        """
        return self.db.get_category(category_id)

    def get_category_by_path(self, path: str) -> Optional[Category]:
        """Get category by path.

        Args:
            path: Category path (e.g., "Food & Dining > Groceries")

        Returns:
            Category entity or None if not found
        """
        return self.db.get_category_by_path(path)

    def list_categories(self, parent_id: Optional[int] = None) -> list[Category]:
        return self.db.list_categories(parent_id=parent_id)

    def get_category_tree(self) -> list[dict]:
        """Get full category tree.

        Returns:
            List of root categories with nested children
        """
        return self.db.get_category_tree()

    def format_category_path(self, category_id: int) -> str:
        """Get full path for a category.

        Args:
            category_id: Category ID

        Returns:
            Full category path (e.g., "Food & Dining > Groceries")
        """
        cat = self.get_category(category_id)
        if cat is None:
            return ""

        path_parts = [cat.name]
        current_parent_id = cat.parent_id

        while current_parent_id is not None:
            parent = self.get_category(current_parent_id)
            if parent is None:
                break
            path_parts.append(parent.name)
            current_parent_id = parent.parent_id

        return " > ".join(reversed(path_parts))


class CategoryResolver:
    """Resolves free-text category hints (e.g. from a CSV column) to category ids.

    A hint may be a full path ("Bills > Streaming") or a bare name. Full
    paths are looked up exactly; bare names (and the leaf of a path that
    did not resolve) are matched case-insensitively against every category.
    The name index is held in a shared TTL cache so repeated rows in one
    import don't hit the store.
    """

    def __init__(self, db: Database, cache: TTLCache):
        self.db = db
        self.cache = cache

    def _name_index(self) -> dict[str, int]:
        def load() -> dict[str, int]:
            index: dict[str, int] = {}
            # Lowest id wins when names repeat under different parents
            for category in self.db.list_all_categories():
                index.setdefault(category.name.strip().lower(), category.id)
            logger.debug(f"Loaded {len(index)} category names")
            return index

        return self.cache.get_or_load(_NAME_INDEX_KEY, load)

    def resolve(self, hint: Optional[str]) -> Optional[int]:
        """Return the category id for a hint, or None when it doesn't resolve."""
        if hint is None or not hint.strip():
            return None
        hint = hint.strip()

        if ">" in hint:
            category = self.db.get_category_by_path(hint)
            if category is not None:
                return category.id
            hint = hint.split(">")[-1].strip()

        return self._name_index().get(hint.lower())

    __call__ = resolve

    def invalidate(self) -> None:
        """Drop the cached name index (after categories change)."""
        self.cache.invalidate(_NAME_INDEX_KEY)
