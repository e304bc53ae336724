"""
anchorweb FastAPI Server
Exposes one journal per owner: entry writes and edits, anchor queries and 3D layouts.
"""

import logging
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .api import Journal, LAYOUT_PRESETS
from .config import Config
from .graph import DuplicateEntryError, EntryNotFoundError
from .layout import split_positions
from .tagging import SymbolSuggester, Tag, resolve_provider

logger = logging.getLogger(__name__)

app = FastAPI(
    title="anchorweb Server",
    description="Journal entries linked through shared anchor terms",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global Journal instances per owner
journal_instances: Dict[str, Journal] = {}
_instances_lock = threading.Lock()

# Owner names become directory names under MEMORY_DIR
OWNER_PATTERN = r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$"


# ============================================================================
# Request Models
# ============================================================================

class EntryRequest(BaseModel):
    owner: str = Field(pattern=OWNER_PATTERN, max_length=128)
    symbol: str = ""
    text: str
    tags: Optional[List[Tag]] = None
    phase: Optional[str] = None
    is_private: bool = False
    nouns: Optional[List[str]] = None


class EditRequest(BaseModel):
    owner: str = Field(pattern=OWNER_PATTERN, max_length=128)
    text: str
    tags: List[Tag] = []


# ============================================================================
# Helper Functions
# ============================================================================

def _suggester() -> Optional[SymbolSuggester]:
    provider = resolve_provider()
    return SymbolSuggester(provider) if provider is not None else None


def get_or_create_journal(owner: str) -> Journal:
    """Get existing Journal instance or open/create one."""
    with _instances_lock:
        if owner not in journal_instances:
            if Config.storage.USE_SQLITE:
                db_path = Path(Config.db_path(owner))
                db_path.parent.mkdir(parents=True, exist_ok=True)
                logger.info(f"Opening journal for '{owner}' at {db_path}")
                journal_instances[owner] = Journal.load(str(db_path), owner=owner, suggester=_suggester())
            else:
                logger.info(f"Creating in-memory journal for '{owner}'")
                journal_instances[owner] = Journal.init(owner=owner, suggester=_suggester())
        return journal_instances[owner]


def get_journal(owner: str) -> Journal:
    """Journal of an existing owner: already open, or persisted from an earlier run."""
    if not re.fullmatch(OWNER_PATTERN, owner):
        raise HTTPException(status_code=422, detail=f"Invalid owner name '{owner}'")
    if owner in journal_instances:
        return journal_instances[owner]
    if Config.storage.USE_SQLITE and Path(Config.db_path(owner)).exists():
        return get_or_create_journal(owner)
    raise HTTPException(status_code=404, detail=f"Owner '{owner}' not found")


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/")
def root():
    """Health check endpoint."""
    return {
        "status": "running",
        "service": "anchorweb Server",
        "version": "1.0.0",
        "active_owners": list(journal_instances.keys())
    }


@app.post("/entries")
def create_entry(req: EntryRequest):
    """Save an entry; anchors are extracted unless `nouns` is given."""
    journal = get_or_create_journal(req.owner)
    try:
        entry = journal.write(
            symbol=req.symbol,
            text=req.text,
            tags=req.tags,
            phase=req.phase,
            is_private=req.is_private,
            nouns=req.nouns,
        )
    except DuplicateEntryError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "status": "success",
        "entry": entry.to_dict(),
        "anchors": [journal.graph.anchor_node(n).to_dict() for n in entry.nouns],
    }


@app.patch("/entries/{entry_id}")
def edit_entry(entry_id: str, req: EditRequest):
    journal = get_journal(req.owner)
    try:
        entry = journal.edit(entry_id, req.text, req.tags)
    except EntryNotFoundError:
        raise HTTPException(status_code=404, detail=f"Entry '{entry_id}' not found")
    return {"status": "updated", "entry": entry.to_dict()}


@app.get("/entries/{owner}")
def list_entries(owner: str):
    """All entries of an owner, newest first."""
    journal = get_journal(owner)
    return {"owner": owner, "entries": [e.to_dict() for e in journal.entries()]}


@app.get("/anchors/{owner}")
def list_anchors(owner: str):
    journal = get_journal(owner)
    return {
        "owner": owner,
        "anchors": [n.to_dict() for n in journal.anchors()],
        "summary": journal.summary(),
    }


@app.get("/anchors/{owner}/{term}/entries")
def anchor_entries(owner: str, term: str):
    journal = get_journal(owner)
    node = journal.graph.anchor_node(term)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Anchor '{term}' not found")
    return {
        "anchor": node.to_dict(),
        "entries": [e.to_dict() for e in journal.entries_for_anchor(term)],
    }


@app.get("/layout/{owner}")
def get_layout(owner: str, seed: Optional[int] = None, preset: Optional[str] = None):
    """
    Run a layout over the owner's graph.

    Returns entry and anchor positions keyed by bare id/word, plus the
    entry-anchor edges a renderer needs to draw links.
    """
    journal = get_journal(owner)
    if preset is not None and preset not in LAYOUT_PRESETS:
        raise HTTPException(status_code=422, detail=f"Unknown preset '{preset}'")

    positions = journal.layout(seed=seed, preset=preset)
    entries, anchors = split_positions(positions)
    return {
        "owner": owner,
        "entries": {k: p.tolist() for k, p in entries.items()},
        "anchors": {k: p.tolist() for k, p in anchors.items()},
        "edges": [list(edge) for edge in journal.graph.edges()],
    }


# ============================================================================
# Server Startup
# ============================================================================

def start_server(host: str = None, port: int = None, reload: bool = None):
    """Start the anchorweb server."""
    host = host or Config.server.HOST
    port = port or Config.server.PORT
    if reload is None: reload = Config.server.RELOAD
    logger.info(f"anchorweb server on {host}:{port}, memory dir {Config.storage.MEMORY_DIR}")

    uvicorn.run(
        "anchorweb.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG if Config.core.DEBUG else logging.INFO)
    start_server()
