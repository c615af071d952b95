import argparse
import asyncio
import sys

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter

from config import Settings, load_settings
from errors import BitLabError
from log import configure
from p2p import HandshakeManager
from peer_discovery import PeerAddress, default_hostnames, resolve_seed


def print_seeds():
    for i, s in enumerate(default_hostnames()):
        print(f"{i}: {s}")


def print_peers(peers):
    if not peers:
        print("Brak adresów.")
        return
    for i, p in enumerate(peers):
        print(f"{i}: {p}")


def print_ledger(ledger):
    if not len(ledger):
        print("Brak prób handshake.")
        return
    for peer, outcome in ledger.all():
        print(f" - {peer}: {outcome}")


class BitLabCLI:
    def __init__(self, settings: Settings = None):
        self.settings = settings or load_settings()
        self.session = PromptSession()
        self.manager = HandshakeManager(network=self.settings.network, timeout=self.settings.timeout,
                                        port=self.settings.seed_port)
        self.commands = {
            'seeds': self.cmd_seeds,
            'resolve': self.cmd_resolve,
            'connect': self.cmd_connect,
            'hs': self.cmd_hs,
            'discover': self.cmd_discover,
            'ledger': self.cmd_ledger,
            'quit': self.cmd_quit,
            'help': self.cmd_help,
        }
        self.completer = WordCompleter(list(self.commands.keys()), ignore_case=True)

    def run(self):
        print("BitLab: handshake z węzłami Bitcoin. Wpisz 'help' aby zobaczyć komendy.")
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            while True:
                text = self.session.prompt('bitlab> ', completer=self.completer)
                if not text.strip():
                    continue
                parts = text.strip().split()
                cmd = parts[0].lower()
                args = parts[1:]
                func = self.commands.get(cmd)
                if not func:
                    print(f"Nieznana komenda: {cmd}")
                    continue
                try:
                    result = func(args)
                    if asyncio.iscoroutine(result):
                        loop.run_until_complete(result)
                except (BitLabError, ValueError) as e:
                    print(f"Błąd: {e}")
        except (EOFError, KeyboardInterrupt):
            print("\nKończę...")
        finally:
            loop.close()

    # Komendy
    def cmd_help(self, args):
        print("Dostępne komendy:")
        for k in sorted(self.commands.keys()):
            print("  ", k)

    def cmd_quit(self, args):
        print("Wyjście.")
        raise EOFError

    def cmd_seeds(self, args):
        """Lista DNS seedów"""
        print_seeds()

    def cmd_resolve(self, args):
        """resolve <dns index>"""
        if len(args) != 1:
            print("Użycie: resolve <dns index>")
            return
        print_peers(resolve_seed(int(args[0]), self.settings.seed_port))

    def cmd_connect(self, args):
        """connect <ip:port> | connect <ip> <port>"""
        if not args or len(args) > 2:
            print("Użycie: connect <ip:port>")
            return
        peer = PeerAddress.parse(":".join(args) if len(args) == 2 else args[0], self.settings.seed_port)
        return self._report(self.manager.handshake(peer), peer)

    def cmd_hs(self, args):
        """hs <dns index> <peer index>"""
        if len(args) != 2:
            print("Użycie: hs <dns index> <peer index>")
            return
        return self.do_hs(int(args[0]), int(args[1]))

    def cmd_discover(self, args):
        """discover [dns index]: próbuje kolejnych peerów aż do pierwszego sukcesu"""
        return self.do_discover(int(args[0]) if args else None)

    def cmd_ledger(self, args):
        print_ledger(self.manager.ledger)

    async def _report(self, coro, peer):
        outcome = await coro
        print(f"Handshake z {peer}: {outcome}")

    async def do_hs(self, dns_index, peer_index):
        peer, outcome = await self.manager.handshake_seed(dns_index, peer_index)
        print(f"Handshake z {peer}: {outcome}")

    async def do_discover(self, seed_index):
        peer = await self.manager.discover(seed_index)
        if peer is None:
            print("Żaden peer nie ukończył handshake.")
        else:
            print(f"Handshake OK z {peer}")


# ----------------------
# Tryb nieinteraktywny
# ----------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bitlab", description="Bitcoin P2P handshake tool")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("-l", dest="list_seeds", action="store_true", help="list DNS seeds")
    group.add_argument("-r", dest="resolve", type=int, metavar="DNS_INDEX",
                       help="resolve peers of a DNS seed")
    group.add_argument("-hp", dest="peer", metavar="IP:PORT", help="handshake with a peer")
    group.add_argument("-hs", dest="indexes", type=int, nargs=2, metavar=("DNS_INDEX", "PEER_INDEX"),
                       help="handshake with a peer picked by indexes")
    group.add_argument("-d", dest="discover", type=int, nargs="?", const=-1, metavar="DNS_INDEX",
                       help="try resolved peers until one completes")
    return parser


async def run_command(args, settings: Settings) -> int:
    manager = HandshakeManager(network=settings.network, timeout=settings.timeout, port=settings.seed_port)

    if args.list_seeds:
        print_seeds()
        return 0

    if args.resolve is not None:
        print_peers(resolve_seed(args.resolve, settings.seed_port))
        return 0

    if args.peer is not None:
        peer = PeerAddress.parse(args.peer, settings.seed_port)
        outcome = await manager.handshake(peer)
        print(f"Handshake z {peer}: {outcome}")
        return 0 if outcome.ok else 1

    if args.indexes is not None:
        peer, outcome = await manager.handshake_seed(*args.indexes)
        print(f"Handshake z {peer}: {outcome}")
        return 0 if outcome.ok else 1

    if args.discover is not None:
        peer = await manager.discover(None if args.discover < 0 else args.discover)
        print_ledger(manager.ledger)
        return 0 if peer is not None else 1

    return 0


def main(argv=None) -> int:
    settings = load_settings()
    configure(settings.log_level, settings.log_file)

    args = build_parser().parse_args(argv)
    if not any([args.list_seeds, args.resolve is not None, args.peer, args.indexes, args.discover is not None]):
        BitLabCLI(settings).run()
        return 0

    try:
        return asyncio.run(run_command(args, settings))
    except (BitLabError, ValueError) as e:
        print(f"Błąd: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
