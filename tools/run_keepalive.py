# tools/run_keepalive.py
# Usage examples:
#   sudo python3 -m tools.run_keepalive --gateway 192.168.1.1
#   sudo python3 -m tools.run_keepalive --target example.com --interval 2 --count 10
#   python3 -m tools.run_keepalive fake --count 4

import json
import logging
import argparse
from echoping.config import Settings
from echoping.keepalive.controller import KeepAliveMonitor

def build_settings(args) -> Settings:
    return Settings(
        mode="ping-custom" if args.target else "ping-gateway",
        gateway_ip=args.gateway,
        custom_target=args.target or "",
        keepalive_interval_s=args.interval,
        keepalive_timeout_s=args.timeout,
        socket_kind=args.socket_kind,
    )

def run_with_fake(args):
    from echoping.engine.fake import FakePinger
    from echoping.schemas import Pong, Timeout
    target = args.target or args.gateway or "192.0.2.1"
    args.target = target
    p = FakePinger(script={target: [Pong(1, 12.5), Pong(1, 11.0), Timeout(1), Pong(1, 14.2)]})
    s = build_settings(args)
    s.keepalive_interval_s = 0
    mon = KeepAliveMonitor(p, s)
    res = mon.run(max_pings=args.count or 4)
    print(json.dumps(res, indent=2))

def run_with_engine(args):
    from echoping.engine.icmp import IcmpEchoEngine
    s = build_settings(args)
    with IcmpEchoEngine(s) as engine:
        mon = KeepAliveMonitor(engine, s)
        try:
            res = mon.run(max_pings=args.count)
        except KeyboardInterrupt:
            mon.disconnect()
            res = mon.summary()
    print(json.dumps(res, indent=2))

def build_argparser():
    ap = argparse.ArgumentParser(description="ICMP keep-alive runner")
    ap.add_argument("mode", nargs="?", choices=["fake"], help="'fake' runs against a scripted pinger")
    ap.add_argument("--gateway", help="Gateway address to ping (gateway mode)")
    ap.add_argument("--target", help="Custom host/IP to ping (switches to custom mode)")
    ap.add_argument("--interval", type=float, default=5.0, help="Seconds between pings")
    ap.add_argument("--timeout", type=float, default=2.0, help="Per-ping timeout in seconds")
    ap.add_argument("--count", type=int, default=None, help="Stop after this many pings")
    ap.add_argument("--socket-kind", default="raw", choices=["raw", "dgram"],
                    help="ICMP socket type (dgram is refused on Linux)")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return ap

if __name__ == "__main__":
    ap = build_argparser()
    args = ap.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.mode == "fake":
        run_with_fake(args)
    elif not (args.gateway or args.target):
        ap.error("Provide --gateway or --target (or 'fake')")
    else:
        run_with_engine(args)
