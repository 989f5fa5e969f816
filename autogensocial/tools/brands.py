from __future__ import annotations

from typing import Any

from ..core.logging import get_logger
from .context import ToolContext, require_string
from .exceptions import ToolNotFoundError
from .registry import ToolSpec

logger = get_logger(name=__name__)

GET_BRAND_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "brandId": {"type": "string", "description": "Unique identifier for the brand."},
    },
    "required": ["brandId"],
    "additionalProperties": False,
}


async def get_brand(context: ToolContext, arguments: dict[str, Any]) -> dict[str, Any]:
    brand_id = require_string(arguments, "brandId")
    brand = await context.call_store(context.store.read(context.brands, brand_id), action="read brand")
    if brand is None:
        logger.info("brand_not_found", brand_id=brand_id)
        raise ToolNotFoundError(f"Brand with id {brand_id} not found")
    return {"brand": brand}


def build_brand_tools(context: ToolContext) -> list[ToolSpec]:
    async def execute(arguments: dict[str, Any]) -> dict[str, Any]:
        return await get_brand(context, arguments)

    return [
        ToolSpec(
            name="getBrand",
            description="Retrieve a brand document by its id, including brand voice and audience details.",
            input_schema=GET_BRAND_SCHEMA,
            execute=execute,
        )
    ]
