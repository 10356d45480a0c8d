"""Parser handler - extracts title, text and links from upstream HTML."""

import json
import logging
import re

from bs4 import BeautifulSoup

from nodeflow.graph.dispatcher import StepContext, StepResult
from nodeflow.graph.schemas import SchemaRegistry

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Auto-generated document"
WHITESPACE_RE = re.compile(r"\s+")


def parse_html(source: str) -> dict:
    soup = BeautifulSoup(source, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    links = [a["href"] for a in soup.find_all("a", href=True)]
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = WHITESPACE_RE.sub(" ", soup.get_text(" ")).strip()
    return {"source": source, "title": title or DEFAULT_TITLE, "text": text, "links": links}


class ParserHandler:
    """Parses the nearest upstream content and validates it against a named schema."""

    def __init__(self, schemas: SchemaRegistry | None = None):
        self.schemas = schemas or SchemaRegistry()

    async def handle(self, step: StepContext) -> StepResult:
        settings = step.node.parser_settings()
        source = ""
        for node in reversed(step.previous_nodes):
            if node.content:
                source = node.content
                break

        payload = parse_html(source)
        # Raises SchemaValidationError before anything is written
        self.schemas.validate(settings.schema_ref, payload)

        return StepResult(
            content=json.dumps(payload, ensure_ascii=False),
            content_type="application/json",
            logs=[
                f"Parser processed HTML length {len(source)}",
                f"Extracted {len(payload['links'])} links",
            ],
        )
