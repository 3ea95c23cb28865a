from typing import Dict, Iterable, List, Optional, Union

from taskgrid.core.exceptions import NotFoundError
from taskgrid.schemas.property import Property, PropertyOption, PropertyType


class SchemaIndex:
    """id -> Property / Option lookup built once per board load.

    Accepts Property models or their stored JSON dicts. Properties are kept
    in display order (by ``order``, stable for ties).
    """

    def __init__(self, properties: Iterable[Union[Property, dict]]):
        parsed = [
            prop if isinstance(prop, Property) else Property.model_validate(prop)
            for prop in properties or []
        ]
        self.properties: List[Property] = sorted(parsed, key=lambda prop: prop.order)
        self._by_id: Dict[str, Property] = {prop.id: prop for prop in self.properties}
        self._options: Dict[str, Dict[str, PropertyOption]] = {
            prop.id: {option.id: option for option in prop.options or []}
            for prop in self.properties
        }

    @classmethod
    def from_board(cls, board) -> "SchemaIndex":
        return cls(board.properties or [])

    def __contains__(self, property_id: str) -> bool:
        return property_id in self._by_id

    def __len__(self) -> int:
        return len(self.properties)

    def get(self, property_id: str) -> Optional[Property]:
        return self._by_id.get(property_id)

    def require(self, property_id: str) -> Property:
        prop = self._by_id.get(property_id)
        if prop is None:
            raise NotFoundError(f"Property {property_id} not found")
        return prop

    def option(self, property_id: str, option_id: str) -> Optional[PropertyOption]:
        """Option by id; None for stale ids still stored on tasks"""
        return self._options.get(property_id, {}).get(option_id)

    def of_type(self, *types: PropertyType) -> List[Property]:
        return [prop for prop in self.properties if prop.type in types]

    def first_of_type(self, *types: PropertyType) -> Optional[Property]:
        matches = self.of_type(*types)
        return matches[0] if matches else None

    def ids(self) -> List[str]:
        return [prop.id for prop in self.properties]
