"""
Photo fetching for the AI judge.
"""
import httpx


DEFAULT_MIME_TYPE = "image/jpeg"


async def fetch_image(url: str, timeout: float = 15.0) -> tuple[bytes, str]:
    """
    Fetch image bytes and MIME type from a URL.

    Raises httpx.HTTPError on network failure or a non-2xx response.
    """
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        response = await client.get(url)
        response.raise_for_status()

    mime_type = response.headers.get("content-type", "").split(";")[0].strip()
    if not mime_type.startswith("image/"):
        mime_type = DEFAULT_MIME_TYPE
    return response.content, mime_type
