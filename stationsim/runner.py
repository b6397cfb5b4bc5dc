import asyncio
import logging

import uvicorn

from .config import AUTO_CONNECT, CSMS_URL, CPID, HTTP_HOST, HTTP_PORT, LOG_LEVEL, OCPP_PROTOCOL
from .console import create_app
from .exceptions import StationConnectionError
from .station import ChargingStation


async def main():
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )
    station = ChargingStation()
    app = create_app(station)
    server = uvicorn.Server(
        uvicorn.Config(app, host=HTTP_HOST, port=HTTP_PORT, loop="asyncio", log_level="info")
    )
    if AUTO_CONNECT:
        url = f"{CSMS_URL.rstrip('/')}/{CPID}"
        try:
            await station.connect(url, OCPP_PROTOCOL)
        except StationConnectionError as e:
            # stays disconnected; the operator can retry with POST /connect
            logging.error(f"OCPP connection error: {e}")
    try:
        await server.serve()
    finally:
        await station.disconnect()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
