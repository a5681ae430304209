"""HTTP API for Warden.

    GET  /hosts          list online hosts, one "name address timestamp" line each
    GET  /hosts?format=json
    POST /hosts/{name}   heartbeat for {name} from the caller's address
    GET  /               redirects to /hosts
"""

from aiohttp import web

from warden.registry import Warden
from warden.shared.logger import get_logger

logger = get_logger("api")

WARDEN_KEY = web.AppKey("warden", Warden)
TRUST_FORWARDED_KEY = web.AppKey("trust_forwarded", bool)

UNKNOWN_ADDRESS = "unknown"


def source_address(request: web.Request, trust_forwarded: bool = False) -> str:
    """Address a heartbeat came from; optionally the first ``X-Forwarded-For`` hop."""
    if trust_forwarded:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.remote or UNKNOWN_ADDRESS


async def handle(request: web.Request) -> web.StreamResponse:
    segments = [s for s in request.path.split("/") if s]

    if not segments:
        if request.method != "GET":
            raise web.HTTPNotFound()
        raise web.HTTPSeeOther("/hosts")

    if segments[0] != "hosts":
        raise web.HTTPNotFound()

    if len(segments) == 1:
        if request.method != "GET":
            raise web.HTTPNotFound()
        return await list_hosts(request)

    if len(segments) == 2:
        if request.method != "POST":
            raise web.HTTPNotFound()
        return await heartbeat(request, segments[1])

    raise web.HTTPNotFound()


async def list_hosts(request: web.Request) -> web.Response:
    warden = request.app[WARDEN_KEY]
    hosts = sorted(await warden.hosts(), key=lambda h: h.name)

    if request.query.get("format") == "json":
        return web.json_response([h.to_dict() for h in hosts])

    body = "".join(f"{h.name} {h.address} {h.last_heartbeat_iso}\n" for h in hosts)
    return web.Response(text=body, content_type="text/plain")


async def heartbeat(request: web.Request, name: str) -> web.Response:
    warden = request.app[WARDEN_KEY]
    address = source_address(request, request.app[TRUST_FORWARDED_KEY])
    logger.debug(f"Heartbeat from {name} at {address}")
    await warden.heartbeat(name, address)
    return web.Response(text="", content_type="text/plain")


def create_app(warden: Warden, trust_forwarded: bool = False) -> web.Application:
    """Build the aiohttp application serving ``warden``."""
    app = web.Application()
    app[WARDEN_KEY] = warden
    app[TRUST_FORWARDED_KEY] = trust_forwarded
    app.router.add_route("*", "/{tail:.*}", handle)
    return app
