"""
Outbound HTTP helpers

- every call has a hard deadline covering both the request and the body read
- responses are always drained or closed, even when the body is not needed;
  an abandoned streaming response keeps its pooled connection checked out and
  enough of them stall every later request made through the same client
"""
import asyncio
import logging

import httpx

logger = logging.getLogger(__name__)


async def send_and_read(client: httpx.AsyncClient, request: httpx.Request, timeout: float) -> httpx.Response:
    """Send `request` and read the full body under one deadline"""
    async def _run() -> httpx.Response:
        response = await client.send(request, stream=True)
        try:
            await response.aread()
        finally:
            await response.aclose()
        return response

    try:
        return await asyncio.wait_for(_run(), timeout=timeout)
    except asyncio.TimeoutError:
        raise httpx.TimeoutException(f"{request.method} {request.url} exceeded {timeout}s", request=request)


async def send_and_discard(client: httpx.AsyncClient, request: httpx.Request, timeout: float) -> httpx.Response:
    """Send `request` when only the status code matters; the body is discarded"""
    try:
        response = await asyncio.wait_for(client.send(request, stream=True), timeout=timeout)
    except asyncio.TimeoutError:
        raise httpx.TimeoutException(f"{request.method} {request.url} exceeded {timeout}s", request=request)
    await discard_response(response)
    return response


async def discard_response(response: httpx.Response, timeout: float = 5.0) -> None:
    """Drain and close an unused response; never raises"""
    if response.is_closed:
        return
    try:
        await asyncio.wait_for(response.aread(), timeout=timeout)
    except (asyncio.TimeoutError, httpx.HTTPError, RuntimeError) as e:
        logger.debug(f"Discarding response body for {response.request.url} failed: {e}")
    finally:
        try:
            await response.aclose()
        except (httpx.HTTPError, RuntimeError) as e:
            logger.debug(f"Closing response for {response.request.url} failed: {e}")
