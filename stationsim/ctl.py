import argparse
import json
import os
from typing import Optional

import requests

API_BASE = os.getenv("STATIONSIM_API", "http://127.0.0.1:7071")


def _do_json(method: str, url: str, body: Optional[dict] = None) -> requests.Response:
    headers = {
        "Content-Type": "application/json",
        "Connection": "close",
    }
    data = json.dumps(body) if body is not None else None
    resp = requests.request(method, url, data=data, headers=headers, timeout=15)
    print(f"{method} {url} -> {resp.status_code} {resp.reason}")
    print(resp.text)
    return resp


def connect(api: str, url: Optional[str], protocol: Optional[str]) -> None:
    body = {}
    if url is not None:
        body["url"] = url
    if protocol is not None:
        body["protocol"] = protocol
    _do_json("POST", f"{api}/connect", body)


def authorize(api: str, id_token: Optional[str], token_type: Optional[str]) -> None:
    body = {}
    if id_token is not None:
        body["idToken"] = id_token
    if token_type is not None:
        body["type"] = token_type
    _do_json("POST", f"{api}/authorize", body)


def show_logs(api: str, since: int) -> None:
    resp = requests.get(f"{api}/logs", params={"since": since}, timeout=15)
    resp.raise_for_status()
    for entry in resp.json()["entries"]:
        print(f"{entry['timestamp']}  {entry['text']}")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drive the station simulator via its HTTP API")
    parser.add_argument("--api", default=API_BASE, help="simulator control API base URL")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_connect = sub.add_parser("connect", help="connect to the CSMS")
    p_connect.add_argument("url", nargs="?")
    p_connect.add_argument("protocol", nargs="?", choices=["ocpp2.0.1", "ocpp1.6"])

    sub.add_parser("disconnect", help="close the CSMS connection")

    p_status = sub.add_parser("status", help="send StatusNotification")
    p_status.add_argument("connectorStatus", nargs="?")

    p_auth = sub.add_parser("authorize", help="send Authorize")
    p_auth.add_argument("idToken", nargs="?")
    p_auth.add_argument("type", nargs="?")

    sub.add_parser("start", help="start a transaction")
    sub.add_parser("end", help="end the active transaction")
    sub.add_parser("state", help="show connection and charging state")

    p_logs = sub.add_parser("logs", help="print the event log")
    p_logs.add_argument("--since", type=int, default=0)

    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    api = args.api.rstrip("/")
    if args.cmd == "connect":
        connect(api, args.url, args.protocol)
    elif args.cmd == "disconnect":
        _do_json("POST", f"{api}/disconnect")
    elif args.cmd == "status":
        body = {"status": args.connectorStatus} if args.connectorStatus else None
        _do_json("POST", f"{api}/status_notification", body)
    elif args.cmd == "authorize":
        authorize(api, args.idToken, args.type)
    elif args.cmd == "start":
        _do_json("POST", f"{api}/transaction/start")
    elif args.cmd == "end":
        _do_json("POST", f"{api}/transaction/end")
    elif args.cmd == "state":
        _do_json("GET", f"{api}/state")
    elif args.cmd == "logs":
        show_logs(api, args.since)


if __name__ == "__main__":
    main()
