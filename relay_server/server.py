#!/usr/bin/env python3
"""Code Pairing Relay - Server

Lets two peers find each other with a short numeric code and then relays
their WebSocket frames verbatim:
- WebSocket endpoint for pairing and relay (see relay_server.sessions)
- REST endpoint for health and registry counts
"""

import asyncio
import logging
import resource
from contextlib import asynccontextmanager

# Raise file descriptor limit: every waiting peer holds an open socket,
# and the default soft limit is often 256 or 1024.
try:
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    target = min(hard, 65536) if hard != resource.RLIM_INFINITY else 65536
    if soft < target:
        resource.setrlimit(resource.RLIMIT_NOFILE, (target, hard))
except (ValueError, OSError):
    pass

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from relay_server import config
from relay_server.sessions import PairingCoordinator, Peer

logger = logging.getLogger("relay.server")


async def _expiry_loop(coordinator: PairingCoordinator, interval: float):
    """Periodically evict expired registry entries so idle peers get closed."""
    while True:
        try:
            await asyncio.sleep(interval)
            coordinator.purge_expired()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error(f"Expiry sweep failed: {e}")


def create_app(coordinator: PairingCoordinator | None = None) -> FastAPI:
    """Build the relay app around ``coordinator`` (a fresh one by default)."""
    coordinator = coordinator or PairingCoordinator()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweep_task = asyncio.create_task(_expiry_loop(coordinator, config.SWEEP_INTERVAL))
        logger.info(f"Relay ready on {config.RELAY_WS_PATH} (code length {coordinator.code_length})")
        yield
        sweep_task.cancel()

    app = FastAPI(title="Code Pairing Relay", lifespan=lifespan)
    app.state.coordinator = coordinator

    @app.get("/api/health")
    async def health_check():
        return JSONResponse({"status": "ok", **coordinator.stats()})

    @app.websocket(config.RELAY_WS_PATH)
    async def connect_ws(ws: WebSocket):
        """WebSocket endpoint for pairing peers.

        Reads and writes run as two tasks: inbound frames go to the
        coordinator, outbound frames are drained from the peer's outbox.
        """
        await ws.accept()
        peer = Peer()
        coordinator.on_open(peer)

        async def inbound():
            try:
                while True:
                    message = await ws.receive()
                    if message["type"] == "websocket.disconnect":
                        break
                    data = message.get("text")
                    if data is None:
                        data = message.get("bytes")
                    if data is not None:
                        coordinator.on_message(peer, data)
            except WebSocketDisconnect:
                pass
            except Exception as e:
                coordinator.on_error(peer, e)
            finally:
                coordinator.on_close(peer)

        async def outbound():
            while True:
                frame = await peer.outbox.get()
                try:
                    if frame is None:
                        await ws.close()
                        return
                    if isinstance(frame, str):
                        await ws.send_text(frame)
                    else:
                        await ws.send_bytes(frame)
                except Exception as e:
                    # Transport already gone; the inbound task reports the close
                    logger.debug(f"[{peer.id[:8]}] send failed: {e}")
                    coordinator.dispose(peer)
                    return

        await asyncio.gather(inbound(), outbound())

    return app


app = create_app()


def main():
    import uvicorn

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )
    uvicorn.run(app, host=config.RELAY_HOST, port=config.RELAY_PORT)


if __name__ == "__main__":
    main()
