"""Parameter definitions shared by the content tool sets."""

from typing import Any, Optional

from shared.models import ParameterSchema

# Meta values may be any JSON value
META_VALUE_TYPES = ["string", "number", "boolean", "array", "object"]


def integer(
    description: str,
    required: bool = False,
    default: Optional[int] = None,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None
) -> ParameterSchema:
    return ParameterSchema(
        type="integer",
        description=description,
        required=required,
        default=default,
        minimum=minimum,
        maximum=maximum,
    )


def string(
    description: str,
    required: bool = False,
    default: Optional[str] = None,
    enum: Optional[list[str]] = None
) -> ParameterSchema:
    return ParameterSchema(
        type="string",
        description=description,
        required=required,
        default=default,
        enum=enum,
    )


def boolean(description: str, default: Optional[bool] = None, required: bool = False) -> ParameterSchema:
    return ParameterSchema(type="boolean", description=description, default=default, required=required)


def id_list(description: str) -> ParameterSchema:
    return ParameterSchema(type="array", description=description, items={"type": "integer"})


def string_list(description: str) -> ParameterSchema:
    return ParameterSchema(type="array", description=description, items={"type": "string"})


def meta_value(description: str, required: bool = False) -> ParameterSchema:
    return ParameterSchema(type=META_VALUE_TYPES, description=description, required=required)


def object_param(description: str) -> ParameterSchema:
    return ParameterSchema(type="object", description=description)


def item_id(what: str) -> ParameterSchema:
    return integer(f"Unique identifier for the {what}", required=True)


def per_page(what: str = "items") -> ParameterSchema:
    return integer(f"Maximum number of {what} to be returned in result set", default=10, minimum=1, maximum=100)


def page() -> ParameterSchema:
    return integer("Current page of the collection", default=1, minimum=1)


def search() -> ParameterSchema:
    return string("Limit results to those matching a string")


def context(*choices: str) -> ParameterSchema:
    return string(
        "Scope under which the request is made; determines fields present in response",
        default="view",
        enum=list(choices or ("view", "edit")),
    )


def force(description: str = "Whether to bypass trash and force deletion") -> ParameterSchema:
    return boolean(description, default=False)


def order(default: str) -> ParameterSchema:
    return string("Order sort attribute ascending or descending", default=default, enum=["asc", "desc"])


def orderby(choices: list[str], default: str) -> ParameterSchema:
    return string("Sort collection by object attribute", default=default, enum=choices)


def listing(what: str) -> dict[str, ParameterSchema]:
    """The pagination and search parameters every list tool accepts."""
    return {
        "per_page": per_page(what),
        "page": page(),
        "search": search(),
    }


def clean(arguments: dict[str, Any], *drop: str) -> dict[str, Any]:
    """Arguments without unset values and the named keys."""
    return {k: v for k, v in arguments.items() if v is not None and k not in drop}
