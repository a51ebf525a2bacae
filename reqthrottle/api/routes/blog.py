"""Demo routes showing router- and route-level throttling configuration.

The Blog router is disabled as a whole and only ``search`` re-enables
throttling with its own limits (see ``build_demo_registry`` in the app factory).
"""

from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["Blog"])


@router.get("/blog", name="blog_index")
def blog_index() -> dict:
    """Blog landing page; not throttled."""

    return {"message": "The blog is not throttled."}


@router.get("/blog/search", name="blog_search")
def blog_search(q: str = "") -> dict:
    """Search endpoint throttled at 2 per second and 5 per minute."""

    return {"message": "Searches are throttled.", "query": q}
