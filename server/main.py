"""
WebSocket server entry point for the obby round server.

This module provides:
- WebSocket server using websockets library
- Message routing to the round engine and the shop
- Persistent stores for coins, wins, inventory and achievements
"""

import asyncio
import logging
import uuid
import argparse
from typing import Dict, Optional
from dataclasses import dataclass

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from course.geometry import Pose
from course.randomness import RandomSource
from game.achievements import AchievementEvaluator
from game.config_loader import config
from game.economy import BalanceStore
from game.inventory import InventoryStore
from game.leaderboard import WinStore, title_for
from game.shop import ShopService
from game.store import open_store
from server.events import GameEvent, GameEventType
from server.protocol import (
    Message, ClientMessageType,
    welcome_message, error_message, balance_update_message, inventory_message,
    leaderboard_update_message, purchase_result_message,
    parse_join_message, parse_vote_message, parse_toggle_away_message,
    parse_contact_message, parse_item_message, parse_leaderboard_query,
)
from server.round_engine import RoundEngine, RoundSettings
from server.status_view import StatusView
from version import VERSION, is_compatible

# Suppress websockets library errors from TCP probes (health checks that don't
# complete the WebSocket handshake).
logging.getLogger("websockets").setLevel(logging.CRITICAL)

logger = logging.getLogger(__name__)

MAX_BOARD_SIZE = 25


@dataclass
class ConnectedClient:
    """Represents a connected WebSocket client."""
    websocket: ServerConnection
    player_id: str
    username: str


class GameServer:
    """
    WebSocket server hosting one endless round cycle.

    Handles:
    - Client connections and disconnections
    - Routing requests to the round engine and shop
    - Broadcasting engine messages to every connected client
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8765,
        data_dir: Optional[str] = None,
        seed: Optional[int] = None,
        settings: Optional[RoundSettings] = None,
        status_view: Optional[StatusView] = None,
        clock=None,
    ):
        self.host = host
        self.port = port
        self.status_view = status_view

        # Connection tracking
        self.clients: Dict[str, ConnectedClient] = {}  # player_id -> client
        self.websocket_to_player: Dict[ServerConnection, str] = {}

        # Stores
        self.economy = BalanceStore(
            open_store(data_dir, "coins"),
            open_store(data_dir, "best_coins"),
            open_store(data_dir, "daily_bonus"),
        )
        self.wins = WinStore(open_store(data_dir, "wins"))
        self.inventory = InventoryStore(
            open_store(data_dir, "inventory"),
            open_store(data_dir, "equipped"),
        )
        self.achievements = AchievementEvaluator(
            self.economy, self.wins, open_store(data_dir, "achievements"))
        self.shop = ShopService(config.get_shop_items(), self.economy, self.inventory)

        self.settings = settings or RoundSettings.from_config(config)
        center = config.get("arena", "center", default=[0, 0, 0])
        self.engine = RoundEngine(
            broadcast=self.broadcast,
            send_to_player=self.send_to_player,
            economy=self.economy,
            wins=self.wins,
            achievements=self.achievements,
            settings=self.settings,
            rng=RandomSource(seed),
            clock=clock,
            center=Pose.at(*center),
        )
        self._engine_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the WebSocket server and the round cycle."""
        print(f"Starting obby server on ws://{self.host}:{self.port} (version {VERSION})")
        async with serve(self.handle_connection, self.host, self.port, reuse_address=True):
            self._engine_task = asyncio.create_task(self.engine.run_forever())
            try:
                await asyncio.Future()  # Run forever
            finally:
                self.engine.stop()
                self._engine_task.cancel()

    async def handle_connection(self, websocket: ServerConnection):
        """Handle a new WebSocket connection."""
        try:
            async for message in websocket:
                await self.handle_message(websocket, message)
        except ConnectionClosed:
            pass
        finally:
            player_id = self.websocket_to_player.get(websocket)
            if player_id:
                await self.handle_disconnect(player_id)

    async def handle_message(self, websocket: ServerConnection, raw_message: str):
        """Handle an incoming message."""
        try:
            msg = Message.from_json(raw_message)
        except ValueError:
            await self.send_to_websocket(websocket, error_message("INVALID_JSON", "Invalid JSON message"))
            return

        msg_type = msg.type

        if msg_type == ClientMessageType.JOIN.value:
            await self.handle_join(websocket, msg.data)
            return

        player_id = self.websocket_to_player.get(websocket)
        if player_id is None:
            await self.send_to_websocket(websocket, error_message("NOT_JOINED", "Send JOIN first"))
            return

        if msg_type == ClientMessageType.SUBMIT_VOTE.value:
            parsed = parse_vote_message(msg.data)
            await self.engine.handle_event(GameEvent(
                type=GameEventType.SUBMIT_VOTE, player_id=player_id, data=parsed))

        elif msg_type == ClientMessageType.TOGGLE_AWAY.value:
            parsed = parse_toggle_away_message(msg.data)
            await self.engine.handle_event(GameEvent(
                type=GameEventType.TOGGLE_AWAY, player_id=player_id, data=parsed))

        elif msg_type == ClientMessageType.CONTACT.value:
            parsed = parse_contact_message(msg.data)
            self.engine.report_contact(parsed["element_id"], player_id)

        elif msg_type == ClientMessageType.PURCHASE.value:
            await self.handle_purchase(player_id, msg.data)

        elif msg_type == ClientMessageType.EQUIP.value:
            await self.handle_equip(player_id, msg.data)

        elif msg_type == ClientMessageType.QUERY_INVENTORY.value:
            await self.send_inventory(player_id)

        elif msg_type == ClientMessageType.QUERY_LEADERBOARD.value:
            await self.handle_leaderboard_query(player_id, msg.data)

        else:
            await self.send_to_websocket(websocket, error_message("UNKNOWN_TYPE", f"Unknown message type: {msg_type}"))

    async def handle_join(self, websocket: ServerConnection, data: dict):
        """Handle JOIN message - participant joining the server."""
        parsed = parse_join_message(data)
        client_version = parsed.get("version")

        if not is_compatible(client_version):
            await self.send_to_websocket(
                websocket,
                error_message("VERSION_MISMATCH",
                              f"Version mismatch. Server: {VERSION}, Client: {client_version}")
            )
            await websocket.close()
            return

        if websocket in self.websocket_to_player:
            return

        player_id = parsed.get("player_id") or str(uuid.uuid4())
        username = parsed["username"] or f"Player_{player_id[:8]}"

        existing = self.clients.get(player_id)
        if existing is not None:
            # Same identity from a new socket; the old one stops receiving.
            self.websocket_to_player.pop(existing.websocket, None)

        self.clients[player_id] = ConnectedClient(websocket=websocket, player_id=player_id, username=username)
        self.websocket_to_player[websocket] = player_id
        logger.info("%s joined as %s", player_id, username)

        await self.send_to_websocket(websocket, welcome_message(player_id, VERSION, self.engine.phase.value))
        await self.engine.handle_event(GameEvent(
            type=GameEventType.PLAYER_JOIN, player_id=player_id, data={"username": username}))
        await self.send_to_player(player_id, balance_update_message(player_id, self.economy.get(player_id)))
        await self.send_inventory(player_id)

    async def handle_purchase(self, player_id: str, data: dict):
        """Handle PURCHASE message. Invalid purchases change nothing."""
        item_id = parse_item_message(data)["item_id"]
        success = self.shop.purchase(player_id, item_id)
        balance = self.economy.get(player_id)
        await self.send_to_player(player_id, purchase_result_message(player_id, item_id, success, balance))
        if success:
            await self.send_to_player(player_id, balance_update_message(player_id, balance))

    async def handle_equip(self, player_id: str, data: dict):
        """Handle EQUIP message. Unowned items are ignored."""
        item_id = parse_item_message(data)["item_id"]
        if self.shop.equip(player_id, item_id) is None:
            return
        await self.send_inventory(player_id)

    async def handle_leaderboard_query(self, player_id: str, data: dict):
        """Handle QUERY_LEADERBOARD message."""
        parsed = parse_leaderboard_query(data)
        limit = max(1, min(MAX_BOARD_SIZE, parsed["limit"]))
        if parsed["kind"] == "coins":
            msg = leaderboard_update_message("coins", self.economy.top_coins(limit))
        else:
            top = self.wins.get_top_n(limit)
            titles = {pid: title_for(n, self.settings.titles) for pid, n in top}
            msg = leaderboard_update_message("wins", top, titles)
        await self.send_to_player(player_id, msg)

    async def send_inventory(self, player_id: str):
        await self.send_to_player(player_id, inventory_message(
            player_id, self.inventory.list_items(player_id), self.inventory.equipped(player_id)))

    async def handle_disconnect(self, player_id: str):
        """Handle participant disconnection."""
        client = self.clients.pop(player_id, None)
        if client is None:
            return
        self.websocket_to_player.pop(client.websocket, None)
        await self.engine.handle_event(GameEvent(type=GameEventType.PLAYER_LEAVE, player_id=player_id))
        logger.info("%s disconnected", player_id)

    async def send_to_websocket(self, websocket: ServerConnection, message: Message):
        """Send a message to a specific websocket."""
        try:
            await websocket.send(message.to_json())
        except ConnectionClosed:
            pass

    async def send_to_player(self, player_id: str, message: Message):
        """Send a message to a specific participant."""
        client = self.clients.get(player_id)
        if client:
            await self.send_to_websocket(client.websocket, message)

    async def broadcast(self, message: Message):
        """Send a message to every connected participant."""
        if self.status_view is not None:
            self.status_view.observe(message)
        for player_id in list(self.clients):
            await self.send_to_player(player_id, message)


def check_port_available(host: str, port: int) -> bool:
    """Check if a port is available for binding.

    Uses SO_REUSEADDR to allow binding to ports in TIME_WAIT state.
    """
    import socket
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host if host != "0.0.0.0" else "127.0.0.1", port))
        sock.close()
        return True
    except OSError:
        sock.close()
        return False


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Obby round server")
    parser.add_argument("--host", default=config.get("server", "host", default="0.0.0.0"),
                        help="Host to bind to")
    parser.add_argument("--port", type=int, default=config.get("server", "port", default=8765),
                        help="Port to bind to")
    parser.add_argument("--data-dir", default="data", help="Directory for persistent stores")
    parser.add_argument("--seed", type=int, default=None, help="Seed for course generation")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--show-status", action="store_true", help="Print round status panels")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not check_port_available(args.host, args.port):
        print(f"ERROR: Port {args.port} is already in use by another application.")
        print("Try a different port:")
        print(f"  --port {args.port + 1}")
        return 1

    server = GameServer(
        host=args.host,
        port=args.port,
        data_dir=args.data_dir,
        seed=args.seed,
        status_view=StatusView() if args.show_status else None,
    )
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        print("\nServer stopped.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
