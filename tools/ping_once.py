# tools/ping_once.py
# Usage: sudo python3 -m tools.ping_once 8.8.8.8 [timeout_s] [-v]
import sys
import json
import logging
from echoping.config import Settings
from echoping.engine.icmp import IcmpEchoEngine

def main():
    args = [a for a in sys.argv[1:] if a not in ("-v", "--verbose")]
    if not args:
        print("Usage: python3 -m tools.ping_once <target_ip_or_host> [timeout_s] [-v]")
        return 1
    verbose = len(args) != len(sys.argv) - 1
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    target = args[0]
    timeout = float(args[1]) if len(args) > 1 else 2.0
    with IcmpEchoEngine(Settings()) as engine:
        outcome = engine.ping(target, timeout)
    print(json.dumps(outcome.to_event(host=target), indent=2))
    return 0

if __name__ == "__main__":
    sys.exit(main())
