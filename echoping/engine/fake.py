# echoping/engine/fake.py
from collections import deque
from typing import Optional

from echoping.engine.base import Pinger
from echoping.schemas import Outcome, Timeout

class FakePinger(Pinger):
    """
    script: dict[host] -> sequence of Outcome values handed out one per ping.
    Once a host's script runs dry every further ping times out.
    """
    def __init__(self, script=None):
        self.script = {}
        self.calls = []
        if script:
            for host, outcomes in script.items():
                self.script[host] = deque(outcomes)

    def ping(self, host: str, timeout: Optional[float] = None) -> Outcome:
        self.calls.append((host, timeout))
        dq = self.script.get(host)
        if dq:
            return dq.popleft()
        return Timeout(sequence_number=1)
