import logging
import threading
from typing import Optional

from .chain import GatewayContext, format_ether

logger = logging.getLogger(__name__)


class VoteListener:
    """Logs VoteCasted events of every election the Factory knew at startup.

    HTTP providers cannot push, so each election gets a log filter that is
    polled from a daemon thread.
    """

    def __init__(self, ctx: GatewayContext, poll_interval: Optional[float] = None):
        self.ctx = ctx
        self.poll_interval = (
            ctx.settings.listener_poll_interval if poll_interval is None else poll_interval
        )
        self.filters: dict = {}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def attach(self) -> int:
        """Install one VoteCasted filter per deployed election."""
        try:
            elections = self.ctx.factory.functions.getDeployedElections().call()
        except Exception as exc:
            logger.error(f"Error setting up event listener: {exc}")
            return 0

        for address in elections:
            self.resubscribe(address)
        logger.info(f"Listening for VoteCasted events on {len(self.filters)} election(s)")
        return len(self.filters)

    def resubscribe(self, address: str) -> bool:
        """(Re)install the VoteCasted filter for one election, from the latest block."""
        try:
            contract = self.ctx.election_at(address)
            self.filters[address] = contract.events.VoteCasted.create_filter(
                from_block="latest"
            )
            return True
        except Exception as exc:
            logger.error(
                f"Could not subscribe to VoteCasted: {exc}", extra={"election": address}
            )
            return False

    def handle(self, event) -> None:
        args = event["args"]
        logger.info(
            f"Vote event: {args['voter']} voted for {args['candidate']}",
            extra={
                "election": event.get("address"),
                "before_balance": f"{format_ether(args['beforeBalance'])} ETH",
                "after_balance": f"{format_ether(args['afterBalance'])} ETH",
            },
        )

    def poll_once(self) -> int:
        seen = 0
        for address, log_filter in list(self.filters.items()):
            try:
                entries = log_filter.get_new_entries()
            except Exception as exc:
                # Nodes forget idle filters; install a fresh one for the next poll.
                logger.warning(f"Polling VoteCasted failed: {exc}", extra={"election": address})
                self.resubscribe(address)
                continue
            for event in entries:
                self.handle(event)
                seen += 1
        return seen

    def run(self) -> None:
        self.attach()
        if not self.filters:
            return
        while not self._stop.wait(self.poll_interval):
            self.poll_once()

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name="vote-listener", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.poll_interval + 1)
