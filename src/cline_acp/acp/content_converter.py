"""ACP to Cline prompt conversion.

This module converts ACP prompt content blocks (text, resource links,
embedded resources, images, audio) into the text + file references that
Cline's newTask and askResponse calls accept.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from acp.schema import (  # type: ignore[import-untyped]
    AudioContentBlock,
    EmbeddedResourceContentBlock,
    ImageContentBlock,
    ResourceContentBlock,
    TextContentBlock,
)

logger = logging.getLogger(__name__)

FILE_URI_PREFIX = "file://"


@dataclass
class ClinePrompt:
    """A prompt in Cline's format.

    Attributes:
        text: Prompt text, including inlined context
        images: Image references (file paths)
        files: File references (file paths)
        warnings: Messages about content that could not be forwarded
    """

    text: str = ""
    images: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class AcpToClineContentConverter:
    """Converts ACP content blocks to a Cline prompt.

    Supported content types:
    - TextContentBlock -> appended to the prompt text
    - ResourceContentBlock (file://) -> file reference
    - ResourceContentBlock (other URIs) -> "[uri]" appended to the text
    - EmbeddedResourceContentBlock (text) -> <context ref="uri"> block in the text
    - ImageContentBlock -> NOT FORWARDED (Cline expects file paths; warning generated)
    - AudioContentBlock -> NOT SUPPORTED (warning generated)

    Usage:
        converter = AcpToClineContentConverter()
        prompt = converter.convert(params.prompt)
        task_id = await backend.new_task(prompt.text, prompt.images, prompt.files)
    """

    def convert(self, blocks: list[Any]) -> ClinePrompt:
        """Convert ACP content blocks to a Cline prompt.

        Args:
            blocks: List of ACP content blocks

        Returns:
            ClinePrompt with text, file references, and warnings
        """
        result = ClinePrompt()
        text_parts: list[str] = []

        for block in blocks:
            self._process_block(block, result, text_parts)

        result.text = "".join(text_parts)
        for warning in result.warnings:
            logger.warning(warning)
        return result

    def _process_block(self, block: Any, result: ClinePrompt, text_parts: list[str]) -> None:
        """Process a single ACP content block."""
        if isinstance(block, TextContentBlock):
            text_parts.append(block.text)

        # Handle dict-style text block
        elif isinstance(block, dict) and block.get("type") == "text":
            text_parts.append(block.get("text", ""))

        elif isinstance(block, ResourceContentBlock):
            uri = block.uri or ""
            if uri.startswith(FILE_URI_PREFIX):
                result.files.append(uri[len(FILE_URI_PREFIX) :])
            else:
                text_parts.append(f"[{uri}]")

        elif isinstance(block, EmbeddedResourceContentBlock):
            resource = getattr(block, "resource", None)
            text = getattr(resource, "text", None)
            if text is not None:
                uri = getattr(resource, "uri", "") or ""
                text_parts.append(f'\n<context ref="{uri}">\n{text}\n</context>')
            else:
                logger.debug("Skipping embedded binary resource")

        elif isinstance(block, ImageContentBlock):
            result.warnings.append(
                "Inline images are not forwarded to Cline; attach image files instead."
            )

        elif isinstance(block, AudioContentBlock):
            result.warnings.append("Audio content is not currently supported.")

        # Handle generic object with type attribute
        elif hasattr(block, "type"):
            block_type = getattr(block, "type", None)
            if block_type == "text":
                text_parts.append(getattr(block, "text", ""))
            else:
                logger.debug(f"Skipping unsupported block type: {block_type}")
