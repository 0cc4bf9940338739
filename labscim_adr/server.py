import logging
from collections import deque

from .adr import AdrRequest, UplinkRecord
from .lorawan import (
    LINK_ADR_CID,
    LinkADRReq,
    LoRaWANFrame,
    MAX_DR,
    MAX_TX_POWER_INDEX,
    REQUIRED_SNR,
)
from .registry import DEFAULT_HANDLER_ID, get_handler

logger = logging.getLogger(__name__)

# Taille de l'historique d'uplinks conservé par équipement
HISTORY_SIZE = 20
# Marge d'installation (dB)
MARGIN_DB = 10.0


class NetworkServer:
    """Serveur réseau LoRaWAN : collecte des uplinks et décisions ADR."""

    def __init__(
        self,
        handler_id: str = DEFAULT_HANDLER_ID,
        installation_margin: float = MARGIN_DB,
        max_dr: int = MAX_DR,
        max_tx_power_index: int = MAX_TX_POWER_INDEX,
        adr_enabled: bool = True,
    ):
        """
        :param handler_id: Identifiant de l'algorithme ADR dans le registre.
        :param installation_margin: Marge d'installation transmise à l'ADR (dB).
        :param max_dr: DR maximal autorisé pour les équipements.
        :param max_tx_power_index: Index de puissance maximal (puissance la plus faible).
        :param adr_enabled: Active les décisions ADR côté serveur.
        """
        self.handler = get_handler(handler_id)
        self.installation_margin = installation_margin
        self.max_dr = max_dr
        self.max_tx_power_index = max_tx_power_index
        self.adr_enabled = adr_enabled
        # Ensemble des identifiants d'événements déjà reçus (pour éviter les doublons)
        self.received_events = set()
        self.packets_received = 0
        self.nodes = []
        # Historique borné des uplinks par nœud (le plus ancien en premier)
        self.uplink_history: dict[int, deque] = {}
        self.downlink_buffer: dict[int, deque] = {}
        self.adr_commands_sent = 0
        self._last_event: dict[int, int] = {}

    def _find_node(self, node_id: int):
        return next((n for n in self.nodes if n.id == node_id), None)

    def history(self, node_id: int) -> tuple[UplinkRecord, ...]:
        return tuple(self.uplink_history.get(node_id, ()))

    # ------------------------------------------------------------------
    # Downlink management
    # ------------------------------------------------------------------
    def send_downlink(self, node, payload: bytes = b"", confirmed: bool = False):
        """Queue a downlink frame for a node."""
        frame = LoRaWANFrame(
            mhdr=0x60 if not confirmed else 0xA0,
            fctrl=0,
            fcnt=node.fcnt_down,
            payload=payload,
            confirmed=confirmed,
        )
        node.fcnt_down += 1
        self.downlink_buffer.setdefault(node.id, deque()).append(frame)

    def pop_downlink(self, node_id: int) -> LoRaWANFrame | None:
        queue = self.downlink_buffer.get(node_id)
        if not queue:
            return None
        return queue.popleft()

    def _replace_adr_downlink(self, node, cmd: LinkADRReq):
        # Un seul LinkADRReq en attente par nœud : le plus récent remplace l'ancien
        queue = self.downlink_buffer.get(node.id)
        if queue:
            kept = [f for f in queue if f.payload[:1] != bytes([LINK_ADR_CID])]
            queue.clear()
            queue.extend(kept)
        self.send_downlink(node, cmd.to_bytes())
        self.adr_commands_sent += 1

    # ------------------------------------------------------------------
    # Uplink handling
    # ------------------------------------------------------------------
    def receive(self, event_id: int, node_id: int, fcnt: int, snr: float,
                tx_power_index: int | None = None):
        """
        Traite la réception d'un uplink par le serveur.
        Une répétition (NbTrans) ou une copie reçue via une autre passerelle
        porte le même ``event_id`` : elle ne met à jour que le SNR max.
        :param event_id: Identifiant unique de l'uplink.
        :param node_id: Identifiant du nœud source.
        :param fcnt: Compteur de trame de l'uplink.
        :param snr: SNR mesuré pour cette copie (dB).
        :param tx_power_index: Index de puissance utilisé par le nœud
            (par défaut celui connu par le serveur).
        """
        node = self._find_node(node_id)
        if node is None:
            logger.warning(f"NetworkServer: uplink from unknown node {node_id} dropped.")
            return None
        if tx_power_index is None:
            tx_power_index = node.tx_power_index

        history = self.uplink_history.setdefault(node_id, deque(maxlen=HISTORY_SIZE))
        if event_id in self.received_events:
            if self._last_event.get(node_id) == event_id and history:
                last = history[-1]
                if snr > last.max_snr:
                    history[-1] = UplinkRecord(last.fcnt, snr, last.tx_power_index)
            logger.debug(f"NetworkServer: duplicate uplink {event_id} from node {node_id}.")
            return None

        self.received_events.add(event_id)
        self._last_event[node_id] = event_id
        self.packets_received += 1
        history.append(UplinkRecord(fcnt=fcnt, max_snr=snr, tx_power_index=tx_power_index))
        logger.debug(f"NetworkServer: uplink {event_id} (FCnt={fcnt}) from node {node_id}, SNR={snr:.1f} dB.")

        if self.adr_enabled:
            return self.evaluate_adr(node)
        return None

    def build_request(self, node) -> AdrRequest:
        return AdrRequest(
            adr=node.adr,
            dr=node.dr,
            tx_power_index=node.tx_power_index,
            nb_trans=node.nb_trans,
            max_dr=self.max_dr,
            max_tx_power_index=self.max_tx_power_index,
            required_snr_for_dr=REQUIRED_SNR.get(node.dr, REQUIRED_SNR[0]),
            installation_margin=self.installation_margin,
            uplink_history=self.history(node.id),
        )

    def evaluate_adr(self, node):
        """Run the ADR handler for ``node`` and queue a LinkADRReq if needed."""
        resp = self.handler.handle(self.build_request(node))
        if (resp.dr, resp.tx_power_index, resp.nb_trans) == (node.dr, node.tx_power_index, node.nb_trans):
            return resp
        cmd = LinkADRReq.build(resp.dr, resp.tx_power_index, resp.nb_trans)
        self._replace_adr_downlink(node, cmd)
        logger.debug(
            f"NetworkServer: LinkADRReq for node {node.id}: DR{resp.dr} "
            f"TXPower{resp.tx_power_index} NbTrans{resp.nb_trans}"
        )
        return resp
