"""Content: markup transformation for note and Ghost sources."""

from notepress.content.transformer import (
    ContentTransformer,
    TransformContext,
    TransformResult,
    generate_excerpt,
    url_hash,
)

__all__ = [
    "ContentTransformer",
    "TransformContext",
    "TransformResult",
    "generate_excerpt",
    "url_hash",
]
